"""FastAPI application: OpenAI-compatible chat endpoint for the voice platform.

Endpoints:

  POST   /v1/chat/completions        One dialogue turn (JSON or SSE stream)
  GET    /health                     Health check
  GET    /api/calls                  Active call summaries
  GET    /api/calls/{call_id}        Call detail, last turn's backend calls, event log
  DELETE /api/calls/{call_id}        Forget a call
  WS     /api/calls/{call_id}/debug  Live debug event stream

The voice platform posts the running transcript on every caller utterance.
The call id ties the requests of one call together; see
``session_store.resolve_call_id`` for where it is looked up.
"""

from __future__ import annotations

# Load .env into os.environ before settings are read.
from dotenv import load_dotenv
load_dotenv()

import json
import logging
import time
from typing import Any, AsyncIterator, Optional

# Configure root logger early so all appointment_agent loggers have a
# handler when run via `uvicorn appointment_agent.app:app`.
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(name)-20s %(levelname)-7s %(message)s",
)

from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse, StreamingResponse

from appointment_agent import verbiage
from appointment_agent.backend.http import HttpSchedulingBackend
from appointment_agent.config import Settings, settings
from appointment_agent.debug_events import get_broadcaster
from appointment_agent.graph.builder import build_dialogue_graph
from appointment_agent.oracle.client import (
    Oracle,
    OracleConfigError,
    OracleRateLimitError,
    create_oracle_client,
)
from appointment_agent.session_store import (
    InMemorySessionStore,
    redact_pii,
    resolve_call_id,
    resolve_caller_phone,
    session_summary,
)
from appointment_agent.security import InputScreen
from appointment_agent.turn import TurnController, to_chat_messages

log = logging.getLogger("appointment_agent.app")

_START_TIME = time.time()

DEFAULT_MODEL_NAME = "appointment-agent"


def build_controller(cfg: Settings) -> TurnController:
    """Wire the production collaborators from settings."""
    oracle = Oracle(create_oracle_client(cfg), timeout=cfg.oracle_timeout_seconds)
    backend = HttpSchedulingBackend(
        cfg.backend_base_url,
        api_key=cfg.backend_api_key,
        timeout=cfg.backend_timeout_seconds,
    )
    return TurnController(
        graph=build_dialogue_graph(),
        store=InMemorySessionStore(),
        backend=backend,
        oracle=oracle,
        tz=cfg.org_timezone,
        org_id=cfg.default_org_id,
    )


def _error(status: int, message: str, error_type: str) -> JSONResponse:
    return JSONResponse(
        {"error": {"message": message, "type": error_type}}, status_code=status
    )


def _completion_id(call_id: str) -> str:
    return f"chatcmpl-{int(time.time() * 1000)}-{call_id[:8]}"


def completion_body(text: str, completion_id: str, model: str) -> dict[str, Any]:
    return {
        "id": completion_id,
        "object": "chat.completion",
        "created": int(time.time()),
        "model": model,
        "choices": [
            {
                "index": 0,
                "message": {"role": "assistant", "content": text},
                "finish_reason": "stop",
            }
        ],
    }


async def stream_chunks(text: str, completion_id: str, model: str) -> AsyncIterator[str]:
    """SSE: one content chunk, one stop chunk, then ``[DONE]``."""
    created = int(time.time())
    base = {"id": completion_id, "object": "chat.completion.chunk", "created": created, "model": model}
    first = {**base, "choices": [{"index": 0, "delta": {"role": "assistant", "content": text}, "finish_reason": None}]}
    last = {**base, "choices": [{"index": 0, "delta": {}, "finish_reason": "stop"}]}
    yield f"data: {json.dumps(first)}\n\n"
    yield f"data: {json.dumps(last)}\n\n"
    yield "data: [DONE]\n\n"


def create_app(
    controller: Optional[TurnController] = None,
    cfg: Optional[Settings] = None,
    screen: Optional[InputScreen] = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        controller: Turn controller to serve; built from ``cfg`` when omitted.
        cfg: Settings; the module-level ``settings`` when omitted.
        screen: Inbound message screen; built from ``cfg`` when omitted.
    """
    cfg = cfg or settings
    app = FastAPI(
        title="Appointment Agent",
        description="LLM-driven appointment dialogue behind an OpenAI-compatible endpoint",
        version="0.1.0",
    )
    app.state.controller = controller or build_controller(cfg)
    app.state.screen = screen or InputScreen(cfg.security_filter_enabled)

    def _controller() -> TurnController:
        return app.state.controller

    # ── Health check ───────────────────────────────────────────

    @app.get("/health")
    async def health() -> JSONResponse:
        """Lightweight health check; confirms the event loop is responsive."""
        uptime = round(time.time() - _START_TIME, 1)
        return JSONResponse({"status": "ok", "uptime": uptime})

    # ── Chat completions ───────────────────────────────────────

    @app.post("/v1/chat/completions")
    async def chat_completions(request: Request):
        try:
            body = await request.json()
        except ValueError:
            return _error(400, "Request body must be JSON", "invalid_request_error")
        if not isinstance(body, dict):
            return _error(400, "Request body must be a JSON object", "invalid_request_error")

        messages = body.get("messages")
        if not isinstance(messages, list) or not messages:
            return _error(400, "messages must be a non-empty array", "invalid_request_error")

        call_id = resolve_call_id(
            body, request.headers, cfg.call_id_header, cfg.call_id_body_path
        )
        caller_phone = resolve_caller_phone(body)
        model = body.get("model") or DEFAULT_MODEL_NAME
        log.info("Chat turn for call %s (caller %s)", call_id[:8], redact_pii(caller_phone))
        completion_id = _completion_id(call_id)

        def reply(text: str):
            if body.get("stream"):
                return StreamingResponse(
                    stream_chunks(text, completion_id, model),
                    media_type="text/event-stream",
                )
            return JSONResponse(completion_body(text, completion_id, model))

        verdict = app.state.screen.screen(to_chat_messages(messages))
        if not verdict.allowed:
            log.warning("Call %s: request blocked (%s)", call_id[:8], verdict.reason)
            return reply(verbiage.SECURITY_REFUSAL)

        try:
            result = await _controller().handle_turn(call_id, messages, caller_phone)
        except OracleConfigError as exc:
            log.error("Oracle misconfigured: %s", exc)
            return _error(503, "Language model is not configured", "service_unavailable")
        except OracleRateLimitError as exc:
            log.warning("Oracle rate limited: %s", exc)
            return _error(502, "Language model rate limit reached", "rate_limit_error")
        except Exception:
            log.exception("Turn failed for call %s", call_id[:8])
            return _error(500, "Internal error", "internal_error")

        return reply(result.response)

    # ── Call inspection API ────────────────────────────────────

    @app.get("/api/calls")
    async def list_calls():
        """Return summary of all active calls."""
        store = _controller().store
        calls = []
        for call_id in await store.list_ids():
            state = await store.get(call_id)
            if state is not None:
                calls.append(session_summary(state))
        return JSONResponse({"calls": calls, "count": len(calls)})

    @app.get("/api/calls/{call_id}")
    async def get_call(call_id: str):
        """Return detailed state of a single call."""
        state = await _controller().store.get(call_id)
        if state is None:
            return JSONResponse({"error": "Call not found"}, status_code=404)
        data = session_summary(state, detail=True)
        data["api_calls"] = _controller().last_api_calls(call_id)
        data["event_log"] = get_broadcaster(call_id).event_log
        return JSONResponse(data)

    @app.delete("/api/calls/{call_id}")
    async def delete_call(call_id: str):
        state = await _controller().store.get(call_id)
        if state is None:
            return JSONResponse({"error": "Call not found"}, status_code=404)
        await _controller().end_call(call_id)
        return JSONResponse({"deleted": call_id})

    # ── Debug stream WebSocket ──────────────────────────────────

    @app.websocket("/api/calls/{call_id}/debug")
    async def debug_stream(websocket: WebSocket, call_id: str) -> None:
        """WebSocket endpoint that streams real-time debug events."""
        if await _controller().store.get(call_id) is None:
            await websocket.close(code=4004, reason="Call not found")
            return

        await websocket.accept()
        broadcaster = get_broadcaster(call_id)
        queue = broadcaster.subscribe()

        try:
            while True:
                event = await queue.get()
                await websocket.send_json(event)
        except WebSocketDisconnect:
            pass
        except Exception as e:
            log.warning("Debug stream error for %s: %s", call_id, e)
        finally:
            broadcaster.unsubscribe(queue)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    for warning in settings.validate_startup():
        log.warning(warning)

    log_config = uvicorn.config.LOGGING_CONFIG
    log_config["formatters"]["default"]["fmt"] = (
        "%(asctime)s %(name)-12s %(levelname)-8s %(message)s"
    )

    uvicorn.run(
        "appointment_agent.app:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_config=log_config,
    )
