"""
FastAPI application for the summarycast daemon.

Exposes:
  GET  /health                      Liveness check (no auth)
  POST /v1/summarize                Start a summarize run, returns {"id": ...}
  POST /v1/chat                     Start a chat run, returns {"id": ...}
  GET  /v1/runs/{id}/events         Follow a run as Server-Sent Events
  POST /v1/runs/{id}/cancel         Stop a run

Every /v1 route requires "Authorization: Bearer <token>", where the token is
the one in the local token store (created on first start).

Runs live in a RunHub independently of the HTTP requests that read them, so
several readers can follow one run and a late reader replays what it missed.
"""

from __future__ import annotations

import asyncio
import logging
import logging.handlers
import secrets
from pathlib import Path

from fastapi import FastAPI, Header, HTTPException, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from summarycast.auth_store import ensure_token
from summarycast.config import build_env_snapshot, load_config
from summarycast.pipeline import ChatRequest, SummaryRequest, run_chat, run_summary
from summarycast.protocol import KEEPALIVE, encode_event
from summarycast.providers.base import Message
from summarycast.sessions import RunHub

config = load_config()
auth_token = ensure_token(Path(config.daemon.token_path))
hub = RunHub(ttl_s=config.daemon.run_ttl_s)

# --------------------------------------------------------------------------- #
# Logging                                                                      #
# --------------------------------------------------------------------------- #

_LOG_FILE = Path("./logs/summarycast.log")
_LOG_FILE.parent.mkdir(parents=True, exist_ok=True)

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s  %(levelname)-8s  %(name)s  %(message)s",
    handlers=[
        logging.StreamHandler(),                                   # server console
        logging.handlers.RotatingFileHandler(
            _LOG_FILE, maxBytes=2 * 1024 * 1024, backupCount=3,  # 2 MB × 3 files
            encoding="utf-8",
        ),
    ],
)
logger = logging.getLogger("summarycast")

_KEEPALIVE_INTERVAL_S = 15.0

app = FastAPI(title="summarycast")


@app.on_event("shutdown")
async def _shutdown() -> None:
    await hub.shutdown()


# --------------------------------------------------------------------------- #
# Request bodies                                                               #
# --------------------------------------------------------------------------- #

class SummarizeBody(BaseModel):
    content: str
    task: str = "text"
    model: str | None = None
    instructions: str | None = None
    source: str | None = None


class ChatMessageBody(BaseModel):
    role: str
    content: str


class ChatBody(BaseModel):
    content: str
    messages: list[ChatMessageBody] = Field(default_factory=list)
    model: str | None = None


# --------------------------------------------------------------------------- #
# Helpers                                                                      #
# --------------------------------------------------------------------------- #

def _require_auth(authorization: str | None) -> None:
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not secrets.compare_digest(token.strip(), auth_token):
        raise HTTPException(status_code=401, detail="Missing or invalid bearer token")


# --------------------------------------------------------------------------- #
# REST                                                                         #
# --------------------------------------------------------------------------- #

@app.get("/health")
def health():
    return {"ok": True}


@app.post("/v1/summarize")
async def start_summarize(body: SummarizeBody, authorization: str | None = Header(default=None)):
    _require_auth(authorization)
    request = SummaryRequest(
        content=body.content,
        task=body.task,
        model=body.model,
        instructions=body.instructions,
        source=body.source,
    )
    snapshot = build_env_snapshot(config=config)
    session = hub.start(
        lambda stop_event: run_summary(request, config=config, snapshot=snapshot, stop_event=stop_event),
        kind="summarize",
    )
    logger.info("Started summarize run %s (task=%s, model=%s)", session.run_id, body.task, body.model or "default")
    return {"id": session.run_id}


@app.post("/v1/chat")
async def start_chat(body: ChatBody, authorization: str | None = Header(default=None)):
    _require_auth(authorization)
    request = ChatRequest(
        content=body.content,
        messages=[Message(role=m.role, content=m.content) for m in body.messages],
        model=body.model,
    )
    snapshot = build_env_snapshot(config=config)
    session = hub.start(
        lambda stop_event: run_chat(request, config=config, snapshot=snapshot, stop_event=stop_event),
        kind="chat",
    )
    logger.info("Started chat run %s", session.run_id)
    return {"id": session.run_id}


@app.post("/v1/runs/{run_id}/cancel")
def cancel_run(run_id: str, authorization: str | None = Header(default=None)):
    _require_auth(authorization)
    session = hub.get(run_id)
    if session is None:
        raise HTTPException(status_code=404, detail=f"Unknown run: {run_id}")
    session.cancel()
    return {"id": run_id, "cancelled": True}


@app.get("/v1/runs/{run_id}/events")
async def run_events(run_id: str, request: Request, authorization: str | None = Header(default=None)):
    _require_auth(authorization)
    session = hub.get(run_id)
    if session is None:
        raise HTTPException(status_code=404, detail=f"Unknown run: {run_id}")

    queue = session.subscribe()

    async def _frames():
        try:
            while True:
                try:
                    event = await asyncio.wait_for(queue.get(), timeout=_KEEPALIVE_INTERVAL_S)
                except TimeoutError:
                    if await request.is_disconnected():
                        break
                    yield KEEPALIVE
                    continue
                if event is None:
                    break
                yield encode_event(event)
        finally:
            session.unsubscribe(queue)

    return StreamingResponse(
        _frames(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@app.get("/v1/runs/{run_id}")
def run_info(run_id: str, authorization: str | None = Header(default=None)):
    _require_auth(authorization)
    session = hub.get(run_id)
    if session is None:
        raise HTTPException(status_code=404, detail=f"Unknown run: {run_id}")
    return {
        "id": run_id,
        "kind": session.kind,
        "finished": session.finished,
        "events": len(session.events),
        "readers": session.subscriber_count,
    }
