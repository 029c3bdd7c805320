"""
Dashboard Tools
----------------
Data-lookup callables the model may invoke on the internal surface:

  get_absent_learners  -- learners absent from training sessions on a date
  get_learner_details  -- a learner's record by ULN or name fragment

Each tool is declared with a description and a strict JSON schema (OpenAI
function-calling format) and runs against the DocumentStore under the
calling principal's scope: a principal limited to certain employers only
ever sees those employers' learners.

ToolRegistry.execute() never raises.  Bad arguments, unknown tools and
store failures come back as {"error": ...} so the model can explain the
problem to the user.
"""
from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any, Callable, Optional

import orjson
from langsmith import traceable
from loguru import logger
from pydantic import BaseModel, Field, ValidationError

from eli.auth import Principal
from eli.errors import ToolExecutionFailed
from eli.store import DocumentStore, Row

ABSENT_STATUSES = {"Absent", "Late_Absent"}

TOOL_DEFINITIONS: list[dict[str, Any]] = [
    {
        "type": "function",
        "function": {
            "name": "get_absent_learners",
            "description": (
                'List learners who were absent for a specific date or "today". '
                "Returns session counts and the name, employer and session of each absentee."
            ),
            "strict": True,
            "parameters": {
                "type": "object",
                "properties": {
                    "date_string": {
                        "type": ["string", "null"],
                        "description": "The date to check (YYYY-MM-DD). null or \"today\" means today.",
                    },
                },
                "required": ["date_string"],
                "additionalProperties": False,
            },
        },
    },
    {
        "type": "function",
        "function": {
            "name": "get_learner_details",
            "description": "Get details for a specific learner by name or ULN.",
            "strict": True,
            "parameters": {
                "type": "object",
                "properties": {
                    "search_term": {
                        "type": "string",
                        "description": "The name (or part of it) or ULN of the learner to find.",
                    },
                },
                "required": ["search_term"],
                "additionalProperties": False,
            },
        },
    },
]


class AbsentLearnersArgs(BaseModel):
    date_string: Optional[str] = None


class LearnerDetailsArgs(BaseModel):
    search_term: str = Field(min_length=1)


def _utc_today() -> date:
    return datetime.now(timezone.utc).date()


def _in_scope(learner: Optional[Row], principal: Optional[Principal]) -> bool:
    if principal is None or principal.employers is None:
        return True
    return bool(learner) and learner.get("employer") in principal.employers


def _full_name(learner: Optional[Row]) -> str:
    if not learner:
        return "Unknown"
    return f"{learner.get('first_name', '')} {learner.get('last_name', '')}".strip() or "Unknown"


# ---------------------------------------------------------------------------
# Tool implementations
# ---------------------------------------------------------------------------

async def get_absent_learners(
    store: DocumentStore,
    principal: Optional[Principal],
    date_string: Optional[str] = None,
    today: Callable[[], date] = _utc_today,
) -> dict[str, Any]:
    """
    Absent = assigned to a session that day AND (no attendance record OR
    status Absent / Late_Absent).
    """
    if not date_string or date_string.strip().lower() == "today":
        target = today()
    else:
        try:
            target = date.fromisoformat(date_string.strip())
        except ValueError as exc:
            raise ToolExecutionFailed(f"Invalid date {date_string!r}; expected YYYY-MM-DD") from exc

    sessions = await store.sessions_on(target)
    if not sessions:
        return {"date": target.isoformat(), "message": "No training sessions found for this date."}

    session_ids = [s["id"] for s in sessions]
    assignments = [
        a for a in await store.assignments_for(session_ids)
        if _in_scope(a.get("learner"), principal)
    ]
    if not assignments:
        return {"date": target.isoformat(), "message": "Sessions found, but no learners were assigned to them."}

    attendance = {
        (r.get("session_id"), r.get("learner_uln")): r.get("attendance_status")
        for r in await store.attendance_for(session_ids)
    }
    session_names = {s["id"]: s.get("session_name") for s in sessions}

    details = []
    for a in assignments:
        status = attendance.get((a.get("session_id"), a.get("learner_uln")))
        if status is None or status in ABSENT_STATUSES:
            learner = a.get("learner")
            details.append(
                {
                    "name": _full_name(learner),
                    "employer": (learner or {}).get("employer") or "Unknown",
                    "session": session_names.get(a.get("session_id")),
                    "status": "Absent",
                }
            )

    return {
        "date": target.isoformat(),
        "total_sessions": len(sessions),
        "total_assigned": len(assignments),
        "total_absent": len(details),
        "details": details,
    }


async def get_learner_details(
    store: DocumentStore,
    principal: Optional[Principal],
    search_term: str,
) -> dict[str, Any]:
    """Exact ULN match first, then a name-fragment search (max 5 rows)."""
    term = search_term.strip()
    rows = await store.find_learners_by_uln(term)
    if not rows:
        rows = await store.search_learners_by_name(term, limit=5)
    return {"data": [r for r in rows if _in_scope(r, principal)]}


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

class ToolRegistry:
    """Binds the tool definitions to a store and dispatches model tool calls."""

    def __init__(self, store: DocumentStore, today: Callable[[], date] = _utc_today) -> None:
        self.store = store
        self._today = today

    @property
    def definitions(self) -> list[dict[str, Any]]:
        return TOOL_DEFINITIONS

    @property
    def names(self) -> list[str]:
        return [d["function"]["name"] for d in TOOL_DEFINITIONS]

    @traceable(name="dashboard_tool", run_type="tool")
    async def execute(self, name: str, arguments: str, principal: Optional[Principal]) -> dict[str, Any]:
        who = principal.id if principal else "anonymous"
        logger.info(f"[Tools] {name} | principal={who} | args={arguments[:120]}")
        try:
            args = orjson.loads(arguments or "{}")
            if not isinstance(args, dict):
                raise ToolExecutionFailed("Tool arguments must be a JSON object")

            if name == "get_absent_learners":
                parsed = AbsentLearnersArgs.model_validate(args)
                return await get_absent_learners(
                    self.store, principal, parsed.date_string, today=self._today
                )
            if name == "get_learner_details":
                parsed = LearnerDetailsArgs.model_validate(args)
                return await get_learner_details(self.store, principal, parsed.search_term)

            raise ToolExecutionFailed(f"Unknown tool: {name}")

        except orjson.JSONDecodeError:
            error = "Tool arguments were not valid JSON"
        except ValidationError as exc:
            error = f"Invalid tool arguments: {exc.errors()[0].get('msg', 'validation failed')}"
        except ToolExecutionFailed as exc:
            error = str(exc)
        except Exception as exc:
            logger.exception(f"[Tools] {name} failed")
            error = f"{name} failed: {exc}"

        logger.warning(f"[Tools] {name} returned error | {error}")
        return {"error": error}
