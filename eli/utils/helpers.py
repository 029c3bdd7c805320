"""Shared utility functions used across the assistant."""
from __future__ import annotations

import re
from pathlib import Path
from typing import Any

import orjson


# --- Text Utilities -----------------------------------------------------------

def single_line(text: str) -> str:
    """Replace newlines with spaces (embedding input, card descriptions)."""
    return re.sub(r"\r?\n", " ", text)


# --- JSON ---------------------------------------------------------------------

def dumps_compact(data: Any) -> str:
    """Compact JSON text (no whitespace), as embedded in UI directives."""
    return orjson.dumps(data).decode("utf-8")


def load_json(path: str | Path) -> Any:
    """Load JSON data from file."""
    with open(Path(path), "rb") as f:
        return orjson.loads(f.read())


def append_jsonl(record: Any, path: str | Path) -> None:
    """Append one record as a JSON line."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "ab") as f:
        f.write(orjson.dumps(record) + b"\n")


def load_jsonl(path: str | Path) -> list[Any]:
    """Load every JSON line from a file; a missing file yields an empty list."""
    path = Path(path)
    if not path.exists():
        return []
    with open(path, "rb") as f:
        return [orjson.loads(line) for line in f if line.strip()]
