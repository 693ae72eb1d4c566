"""
Cursor API service (OpenAI-compatible) -> cursor.com web chat as upstream.

Endpoints:
  GET  /healthz
  GET  /v1/models
  POST /v1/chat/completions   (stream=true -> SSE chunks, stream=false -> one completion)

Every upstream call needs a fresh x-is-human proof token (computed by running
Cursor's script in V8) and browser-looking headers; see upstream.CursorService.
"""

from __future__ import annotations

import contextlib
import json
import time
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncGenerator, AsyncIterator, Dict, List, Optional

import httpx
from fastapi import FastAPI, Header, HTTPException, Request, Response
from fastapi.responses import JSONResponse, StreamingResponse

from config import load_config
from errors import CursorWebError
from fingerprint import HeaderGenerator
from js_runtime import MiniRacerEvaluator, ScriptTemplate
from logger import setup_logging
from messages import ChatMessage, parse_messages
from models import list_models
from sse_handler import EventStream, StreamEventKind
from token_cache import XIsHumanTokenCache
from upstream import CursorService
from utils import dump_config, load_env_files

load_env_files()
config = load_config()
log = setup_logging(config.log_path, config.log_level)

DEFAULT_REQUEST_MODEL = "claude-sonnet-4.6"


@dataclass
class _UpstreamState:
    """Process-wide upstream collaborators, built on first use."""

    client: Optional[httpx.AsyncClient] = None
    cursor: Optional[CursorService] = None


_upstream = _UpstreamState()


def get_cursor_service() -> CursorService:
    """Build the shared client, identity, token cache and orchestrator once."""
    if _upstream.cursor is not None:
        return _upstream.cursor

    # One client for every request: its cookie jar is part of the browser identity.
    client = httpx.AsyncClient(timeout=httpx.Timeout(config.request_timeout_s), follow_redirects=True)
    header_generator = HeaderGenerator(config.fp)
    token_cache = XIsHumanTokenCache(
        client=client,
        header_generator=header_generator,
        evaluator=MiniRacerEvaluator(timeout_s=config.js_timeout_s),
        template=ScriptTemplate.load(),
        script_url=config.script_url,
    )
    _upstream.client = client
    _upstream.cursor = CursorService(config, client, header_generator, token_cache)
    return _upstream.cursor


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Validate config at startup, close the shared client at shutdown."""
    dump_config(config)
    config.validate()

    yield

    if _upstream.client is not None:
        with contextlib.suppress(Exception):
            await _upstream.client.aclose()
    _upstream.client = None
    _upstream.cursor = None


app = FastAPI(
    title="cursor-api-service",
    version="0.3.0",
    lifespan=lifespan
)


def _check_api_key(authorization: Optional[str]) -> None:
    if not config.api_key:
        return
    token = (authorization or "").strip()
    if token.lower().startswith("bearer "):
        token = token[len("bearer "):].strip()
    if token != config.api_key:
        raise HTTPException(status_code=401, detail="Invalid API key")


@app.get("/healthz")
async def healthz() -> Dict[str, str]:
    """Health check endpoint."""
    return {"status": "ok"}


@app.get("/v1/models")
async def v1_models(authorization: Optional[str] = Header(default=None)) -> Dict[str, Any]:
    """List the models from the static registry."""
    _check_api_key(authorization)
    now = int(time.time())
    return {"object": "list", "data": [m.to_openai_dict(now) for m in list_models()]}


def _create_chunk_dict(
    req_id: str,
    model_id: str,
    delta: Dict[str, Any],
    finish_reason: Optional[str] = None,
) -> dict:
    """Create a chat.completion.chunk dictionary."""
    return {
        "id": req_id,
        "object": "chat.completion.chunk",
        "created": int(time.time()),
        "model": model_id,
        "choices": [{"index": 0, "delta": delta, "finish_reason": finish_reason}],
    }


def _sse_data(obj: dict) -> bytes:
    """Serialize dictionary to SSE data format."""
    return ("data: " + json.dumps(obj, ensure_ascii=False) + "\n\n").encode("utf-8")


def _sse_done() -> bytes:
    """Get SSE DONE marker."""
    return b"data: [DONE]\n\n"


async def _stream_chunks(events: EventStream, req_id: str, model_id: str) -> AsyncGenerator[bytes, None]:
    """Relay EventStream items as OpenAI chunks. Client disconnect stops the upstream worker."""
    try:
        yield _sse_data(_create_chunk_dict(req_id, model_id, {"role": "assistant"}))
        async for ev in events:
            if ev.kind is StreamEventKind.ERROR:
                err = ev.error
                log.warning("Upstream stream failed req_id=%s model=%s err=%s", req_id, model_id, err)
                # Surface the failure as visible text so chat clients show something
                message = err.message if err is not None else "upstream stream failure"
                yield _sse_data(_create_chunk_dict(req_id, model_id, {"content": f"[error] {message}"}, "stop"))
                yield _sse_done()
                return
            yield _sse_data(_create_chunk_dict(req_id, model_id, {"content": ev.text}))
        yield _sse_data(_create_chunk_dict(req_id, model_id, {}, "stop"))
        yield _sse_done()
    finally:
        await events.aclose()


async def _collect_completion(events: EventStream, req_id: str, model_id: str) -> Response:
    parts: List[str] = []
    try:
        async for ev in events:
            if ev.kind is StreamEventKind.ERROR:
                err = ev.error
                if err is None:
                    raise HTTPException(status_code=502, detail="upstream stream failure")
                return JSONResponse(err.to_openai_dict(), status_code=err.status_code)
            parts.append(ev.text)
    finally:
        await events.aclose()

    return JSONResponse({
        "id": req_id,
        "object": "chat.completion",
        "created": int(time.time()),
        "model": model_id,
        "choices": [
            {
                "index": 0,
                "message": {"role": "assistant", "content": "".join(parts)},
                "finish_reason": "stop",
            }
        ],
    })


@app.post("/v1/chat/completions")
async def v1_chat_completions(
    request: Request,
    authorization: Optional[str] = Header(default=None),
) -> Response:
    """Handle chat completion requests."""
    _check_api_key(authorization)

    # Basic request size guard (prevents trivial DoS via huge JSON bodies).
    cl = request.headers.get("content-length")
    if cl:
        try:
            n = int(cl)
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Invalid Content-Length header: {cl!r}")
        if n < 0:
            raise HTTPException(status_code=400, detail="Invalid Content-Length: must be non-negative")
        if n > config.max_request_bytes:
            raise HTTPException(
                status_code=413,
                detail=f"Request too large: {n} bytes (max {config.max_request_bytes})",
            )

    try:
        body = await request.json()
    except Exception:
        raise HTTPException(status_code=400, detail="Invalid JSON body")
    if not isinstance(body, dict):
        raise HTTPException(status_code=400, detail="Invalid JSON body: expected object")

    try:
        messages: List[ChatMessage] = parse_messages(body.get("messages"))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=f"Invalid request: {e}")
    if not messages:
        raise HTTPException(status_code=400, detail="Invalid request: 'messages' array cannot be empty")

    model_id = str(body.get("model") or "").strip() or DEFAULT_REQUEST_MODEL
    stream = bool(body.get("stream", False))
    req_id = f"chatcmpl-{uuid.uuid4().hex}"
    client_ip = request.client.host if request.client else "unknown"

    log.info(
        "Incoming chat req_id=%s from=%s model=%r messages=%d stream=%s",
        req_id,
        client_ip,
        model_id,
        len(messages),
        stream,
    )

    try:
        events = await get_cursor_service().chat_completion(messages, model_id)
    except CursorWebError as e:
        log.warning("Chat failed req_id=%s status=%s message=%s", req_id, e.status_code, e.message[:500])
        return JSONResponse(e.to_openai_dict(), status_code=e.status_code)

    if stream:
        return StreamingResponse(
            _stream_chunks(events, req_id, model_id),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
        )
    return await _collect_completion(events, req_id, model_id)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=config.port, reload=False)
