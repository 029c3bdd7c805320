"""
Eli Assistant - Web API Server
-------------------------------
FastAPI server that wraps the ChatPipeline for the website widget and the
staff dashboard.

Endpoints:
  POST /api/eli/chat                  -> streamed text/plain assistant answer
  GET  /api/eli/history?sessionId=    -> prior messages of a session
  POST /api/eli/lead                  -> store a lead-capture form submission
  GET  /api/eli/contact               -> advisor contact details
  GET  /api/health                    -> pipeline status and corpus counts

Run from the project root:
    uvicorn app.server:app --reload --port 8000
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Header, HTTPException, Query, Request
from fastapi.exception_handlers import request_validation_exception_handler
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse, StreamingResponse
from loguru import logger
from pydantic import BaseModel

from eli.config import load_settings
from eli.errors import BadRequest, EliError
from eli.schemas import ChatRequest, LeadRecord
from eli.serving.rate_limit import client_key

# ---------------------------------------------------------------------------
# Pipeline singleton
# ---------------------------------------------------------------------------

_settings = load_settings()
_pipeline = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the chat pipeline once at startup; drop it on shutdown."""
    global _pipeline
    if _pipeline is None:
        from eli.serving.pipeline import ChatPipeline
        from eli.utils.logger import setup_logger

        setup_logger(_settings.logging.level, _settings.logging.file)
        logger.info("[Server] Loading chat pipeline...")
        _pipeline = ChatPipeline.from_settings(_settings)
    yield
    _pipeline = None
    logger.info("[Server] Pipeline unloaded.")


def _require_pipeline():
    if _pipeline is None:
        raise HTTPException(status_code=503, detail="Pipeline not ready")
    return _pipeline


# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Eli Assistant API",
    description="Retrieval-augmented chat for the public website and the staff dashboard",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.server.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(EliError)
async def eli_error_handler(request: Request, exc: EliError) -> PlainTextResponse:
    return PlainTextResponse(exc.public_message, status_code=exc.status_code)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    # A malformed `messages` list is the same client error as a missing one
    if any(tuple(err.get("loc", ()))[1:2] == ("messages",) for err in exc.errors()):
        return PlainTextResponse(BadRequest.public_message, status_code=BadRequest.status_code)
    return await request_validation_exception_handler(request, exc)


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------

class LeadRequest(BaseModel):
    name: str
    email: str
    phone: Optional[str] = None
    intent: Optional[str] = None
    source_url: Optional[str] = None
    chat_session_id: Optional[str] = None


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

@app.get("/api/health")
async def health():
    """Return pipeline status, corpus counts and model names."""
    pipeline = _require_pipeline()
    return await pipeline.health()


@app.post("/api/eli/chat")
async def chat(
    request: ChatRequest,
    x_forwarded_for: Optional[str] = Header(default=None),
    authorization: Optional[str] = Header(default=None),
):
    """
    Run one assistant turn and stream the answer as plain text.

    Rate limiting, the message check and the internal-surface credential
    check all happen before the response starts, so they come back as
    ordinary status codes.  Once streaming has begun the turn runs to
    completion and is logged even if the client disconnects.
    """
    pipeline = _require_pipeline()
    stream = await pipeline.handle_turn(
        request,
        client_key=client_key(x_forwarded_for),
        authorization=authorization,
    )
    return StreamingResponse(stream, media_type="text/plain; charset=utf-8")


@app.get("/api/eli/history")
async def history(session_id: Optional[str] = Query(default=None, alias="sessionId")):
    pipeline = _require_pipeline()
    if not session_id:
        return PlainTextResponse("Session ID is required", status_code=400)
    try:
        return await pipeline.history(session_id)
    except Exception as exc:
        logger.error(f"[Server] History fetch failed for {session_id}: {exc}")
        return PlainTextResponse("Failed to fetch history", status_code=500)


@app.post("/api/eli/lead")
async def lead(body: LeadRequest):
    pipeline = _require_pipeline()
    try:
        saved = await pipeline.capture_lead(LeadRecord(**body.model_dump()))
    except Exception as exc:
        logger.error(f"[Server] Lead save failed: {exc}")
        return PlainTextResponse("Error saving lead", status_code=500)
    return {"success": True, "lead": saved.model_dump(mode="json")}


@app.get("/api/eli/contact")
async def contact():
    return _settings.contact.model_dump()
