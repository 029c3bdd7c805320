"""
Error taxonomy
---------------
Every failure the assistant can hit during a turn maps to one of these
classes.  Failures that affect the *correctness* of an answer (rate limit,
bad request, auth) are raised before any provider call and surface to the
caller as a plain-text HTTP error.  Failures that only affect
*completeness* (retrieval, tools, logging, directive parsing) are caught
where they happen and degrade the turn instead of failing it.
"""
from __future__ import annotations


class EliError(Exception):
    """Base class.  `status_code` and `public_message` drive the HTTP response."""

    status_code: int = 500
    public_message: str = "Internal error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.public_message)
        if message:
            self.public_message = message


# --- Fail-fast (surface to the caller) ----------------------------------------

class RateLimited(EliError):
    status_code = 429
    public_message = "Too many requests. Please slow down."


class BadRequest(EliError):
    status_code = 400
    public_message = "Messages are required"


class Unauthorized(EliError):
    status_code = 401
    public_message = "Unauthorized"


# --- Degrade gracefully (never reach the caller) ------------------------------

class RetrievalDegraded(EliError):
    """Embedding or similarity search failed; the turn proceeds without context."""


class ToolExecutionFailed(EliError):
    """A dashboard tool raised; the error is handed back to the model."""


class LoggingFailed(EliError):
    """Persisting a finished turn failed; reported to the operator log only."""


class DirectiveParseFailed(EliError):
    """An embedded UI directive carried malformed JSON."""

    def __init__(self, raw: str) -> None:
        super().__init__(f"Malformed directive payload: {raw[:50]!r}")
        self.raw = raw
