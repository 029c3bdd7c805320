"""
Streamed-Directive Parser
--------------------------
Separates the assistant's prose from the structured tokens embedded in it.

Wire format (inside the streamed text):

    [UI_COMPONENT: {"type": "card", "data": {"title": ..., "description": ..., "url": ...}}]
    [UI_COMPONENT: {"type": "carousel", "data": {"items": [{...}, {...}]}}]
    [LEAD_CAPTURE]      -> open the lead-capture form
    [HUMAN_HANDOFF]     -> open the human-handoff prompt

Control tokens are removed wherever they appear, even inside a directive.
After a marker the JSON object is captured by balanced-brace counting from
the first `{` within BRACE_LOOKAHEAD characters, so nested objects never
truncate the span.  A marker with no `{` in that window is dropped and the
following text is shown.  A `]` within the next five characters is
consumed with the object.  Malformed JSON gets one lenient repair pass;
if that fails the raw span is kept as an error segment.

DirectiveScanner consumes the stream chunk by chunk and carries its state
(partial marker, open brace depth, captured span) across chunk
boundaries, so text already emitted is never re-scanned.
parse_directives() is the pure form over an accumulated buffer.

Layout rules applied by ParsedMessage:
  - card tokens are collected, not rendered inline
  - a carousel token is a block at the point it was found
  - one collected card -> compact card; two or more -> implicit carousel
    (only when no explicit carousel was sent)
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Iterable, Literal, Optional

import orjson
from loguru import logger
from pydantic import ValidationError

from eli.errors import DirectiveParseFailed
from eli.schemas import CarouselData, UICard
from eli.utils.helpers import dumps_compact

UI_MARKER = "[UI_COMPONENT:"
LEAD_CAPTURE_TOKEN = "[LEAD_CAPTURE]"
HUMAN_HANDOFF_TOKEN = "[HUMAN_HANDOFF]"

CONTROL_SIGNALS = {
    LEAD_CAPTURE_TOKEN: "lead_capture",
    HUMAN_HANDOFF_TOKEN: "human_handoff",
}

CLOSING_BRACKET_WINDOW = 5
BRACE_LOOKAHEAD = 16            # max chars between a marker and its `{`

_CONTROL_TOKENS = tuple(CONTROL_SIGNALS)

SegmentKind = Literal["text", "card", "carousel", "component", "error", "control"]


def format_directive(component: dict[str, Any]) -> str:
    """Serialise a component the way the model is told to emit it."""
    return f"{UI_MARKER} {dumps_compact(component)}]"


# ---------------------------------------------------------------------------
# JSON decoding
# ---------------------------------------------------------------------------

_BARE_KEY = re.compile(r"([{,]\s*)([A-Za-z_][\w\-]*)\s*:")
_TRAILING_COMMA = re.compile(r",\s*([\]}])")


def repair_json(raw: str) -> str:
    """Single lenient pass: normalise quotes, quote bare keys, drop trailing commas."""
    fixed = raw.replace("'", '"')
    fixed = _BARE_KEY.sub(r'\1"\2":', fixed)
    return _TRAILING_COMMA.sub(r"\1", fixed)


def _loads_lenient(raw: str) -> Any:
    try:
        return orjson.loads(raw)
    except orjson.JSONDecodeError:
        pass
    try:
        return orjson.loads(repair_json(raw))
    except orjson.JSONDecodeError as exc:
        raise DirectiveParseFailed(raw) from exc


@dataclass
class Segment:
    kind: SegmentKind
    text: str = ""                      # prose, raw span (error) or signal name (control)
    items: list[UICard] = field(default_factory=list)
    data: Optional[dict[str, Any]] = None


def decode_directive(raw: str) -> Segment:
    """Turn a captured JSON span into a card / carousel / component segment."""
    try:
        payload = _loads_lenient(raw)
        if not isinstance(payload, dict):
            raise DirectiveParseFailed(raw)

        kind = payload.get("type")
        if kind == "card":
            return Segment("card", items=[UICard.model_validate(payload.get("data"))])
        if kind == "carousel":
            carousel = CarouselData.model_validate(payload.get("data") or {})
            return Segment("carousel", items=list(carousel.items))
        return Segment("component", data=payload)

    except (DirectiveParseFailed, ValidationError) as exc:
        logger.warning(f"[Directives] Unparseable UI component: {exc}")
        return Segment("error", text=raw)


# ---------------------------------------------------------------------------
# Incremental scanner
# ---------------------------------------------------------------------------

def _held_suffix_len(buf: str, tokens: tuple[str, ...]) -> int:
    """Length of the longest tail of `buf` that could still grow into one of `tokens`."""
    longest = max(len(t) for t in tokens)
    i = buf.find("[", max(0, len(buf) - longest + 1))
    while i != -1:
        tail = buf[i:]
        if any(tok.startswith(tail) for tok in tokens):
            return len(buf) - i
        i = buf.find("[", i + 1)
    return 0


def _first_control(buf: str, pos: int) -> tuple[int, str]:
    hit, token = -1, ""
    for tok in _CONTROL_TOKENS:
        idx = buf.find(tok, pos)
        if idx != -1 and (hit == -1 or idx < hit):
            hit, token = idx, tok
    return hit, token


class DirectiveScanner:
    """
    Feed streamed text in with feed(); each call returns the segments that
    are now final.  Call close() at end of stream to flush what is held.

    Two stages run per chunk.  Control tokens are cut out of the raw text
    first, wherever they occur (inside a directive span too).  The cleaned
    text then goes through the directive state machine.
    """

    _TEXT, _SEEK_BRACE, _IN_JSON, _AFTER_JSON = range(4)

    def __init__(self) -> None:
        self._raw = ""                  # possible partial control token
        self._mode = self._TEXT
        self._buf = ""
        self._span: list[str] = []
        self._depth = 0

    @property
    def pending(self) -> bool:
        """True while text is held back awaiting more input."""
        return self._mode != self._TEXT or bool(self._buf) or bool(self._raw)

    def feed(self, chunk: str) -> list[Segment]:
        signals = self._strip_controls(chunk, final=False)
        return signals + self._drain(final=False)

    def close(self) -> list[Segment]:
        signals = self._strip_controls("", final=True)
        return signals + self._drain(final=True)

    def _strip_controls(self, chunk: str, final: bool) -> list[Segment]:
        """Move control-free text into the directive buffer; return the signals found."""
        raw = self._raw + chunk
        signals: list[Segment] = []
        pos = 0
        while True:
            hit, token = _first_control(raw, pos)
            if hit == -1:
                break
            self._buf += raw[pos:hit]
            signals.append(Segment("control", text=CONTROL_SIGNALS[token]))
            pos = hit + len(token)

        rest = raw[pos:]
        cut = len(rest) - (0 if final else _held_suffix_len(rest, _CONTROL_TOKENS))
        self._buf += rest[:cut]
        self._raw = rest[cut:]
        return signals

    def _drain(self, final: bool) -> list[Segment]:
        out: list[Segment] = []
        while True:
            if self._mode == self._TEXT:
                if not self._scan_text(out, final):
                    return out
            elif self._mode == self._SEEK_BRACE:
                start = self._buf.find("{", 0, BRACE_LOOKAHEAD)
                if start == -1:
                    if len(self._buf) < BRACE_LOOKAHEAD and not final:
                        return out
                    # No JSON right after the marker: drop the marker, keep the rest as text
                    self._mode = self._TEXT
                    continue
                self._buf = self._buf[start:]
                self._span, self._depth = [], 0
                self._mode = self._IN_JSON
            elif self._mode == self._IN_JSON:
                if not self._scan_json(out, final):
                    return out
            else:  # _AFTER_JSON
                window = self._buf[:CLOSING_BRACKET_WINDOW]
                close_at = window.find("]")
                if close_at != -1:
                    self._buf = self._buf[close_at + 1:]
                elif len(self._buf) < CLOSING_BRACKET_WINDOW and not final:
                    return out
                self._mode = self._TEXT

    def _scan_text(self, out: list[Segment], final: bool) -> bool:
        """Emit prose up to the next marker.  Returns False when input is exhausted."""
        hit = self._buf.find(UI_MARKER)
        if hit == -1:
            keep = 0 if final else _held_suffix_len(self._buf, (UI_MARKER,))
            emit = self._buf[: len(self._buf) - keep]
            if emit:
                out.append(Segment("text", text=emit))
            self._buf = self._buf[len(emit):]
            return False

        if hit:
            out.append(Segment("text", text=self._buf[:hit]))
        self._buf = self._buf[hit + len(UI_MARKER):]
        self._mode = self._SEEK_BRACE
        return True

    def _scan_json(self, out: list[Segment], final: bool) -> bool:
        """Advance the brace counter over new input.  Returns False when input is exhausted."""
        end = -1
        for i, ch in enumerate(self._buf):
            if ch == "{":
                self._depth += 1
            elif ch == "}":
                self._depth -= 1
            if self._depth == 0:
                end = i + 1
                break

        if end != -1:
            self._span.append(self._buf[:end])
            self._buf = self._buf[end:]
            out.append(decode_directive("".join(self._span)))
            self._span = []
            self._mode = self._AFTER_JSON
            return True

        self._span.append(self._buf)
        self._buf = ""
        if not final:
            return False

        # Unterminated object at end of stream: show it as prose
        self._buf = "".join(self._span)
        self._span = []
        self._mode = self._TEXT
        return True


# ---------------------------------------------------------------------------
# Parsed message
# ---------------------------------------------------------------------------

@dataclass
class ParsedMessage:
    segments: list[Segment] = field(default_factory=list)   # text / carousel / component / error
    cards: list[UICard] = field(default_factory=list)
    lead_capture: bool = False
    human_handoff: bool = False
    pending: bool = False

    def absorb(self, segments: Iterable[Segment]) -> None:
        for seg in segments:
            if seg.kind == "card":
                self.cards.extend(seg.items)
            elif seg.kind == "control":
                if seg.text == "lead_capture":
                    self.lead_capture = True
                else:
                    self.human_handoff = True
            elif seg.kind == "text" and self.segments and self.segments[-1].kind == "text":
                self.segments[-1].text += seg.text
            else:
                self.segments.append(seg)

    @property
    def text_segments(self) -> list[str]:
        return [s.text for s in self.segments if s.kind == "text"]

    @property
    def text(self) -> str:
        return "".join(self.text_segments)

    @property
    def explicit_carousels(self) -> list[list[UICard]]:
        return [s.items for s in self.segments if s.kind == "carousel"]

    @property
    def errors(self) -> list[str]:
        return [s.text for s in self.segments if s.kind == "error"]

    @property
    def card(self) -> Optional[UICard]:
        """The compact card, when exactly one card token was collected."""
        if len(self.cards) == 1 and not self.explicit_carousels:
            return self.cards[0]
        return None

    @property
    def carousel(self) -> Optional[list[UICard]]:
        """Items of the first explicit carousel, else the implicit one built from 2+ cards."""
        if self.explicit_carousels:
            return self.explicit_carousels[0]
        if len(self.cards) >= 2:
            return list(self.cards)
        return None


def parse_directives(text: str, complete: bool = True) -> ParsedMessage:
    """
    Pure parse of an accumulated assistant message.

    Safe to re-run on every received chunk.  With complete=False (stream
    still growing) an unterminated trailing directive is held back and
    flagged `pending` instead of being shown as prose.
    """
    scanner = DirectiveScanner()
    message = ParsedMessage()
    message.absorb(scanner.feed(text))
    if complete:
        message.absorb(scanner.close())
    else:
        message.pending = scanner.pending
    return message


# ---------------------------------------------------------------------------
# Client-side prompt state
# ---------------------------------------------------------------------------

@dataclass
class PromptState:
    """
    Visibility of the lead form and the handoff prompt.

    At most one is shown; the later signal wins, and a new user turn
    dismisses whichever is open.
    """

    lead_form: bool = False
    handoff: bool = False

    def new_turn(self) -> None:
        self.lead_form = False
        self.handoff = False

    def signal(self, name: str) -> None:
        if name == "lead_capture":
            self.lead_form, self.handoff = True, False
        elif name == "human_handoff":
            self.lead_form, self.handoff = False, True

    def apply(self, message: ParsedMessage) -> None:
        if message.lead_capture:
            self.signal("lead_capture")
        if message.human_handoff:
            self.signal("human_handoff")
