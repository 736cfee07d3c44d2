"""Route handlers for the web bridge."""

from __future__ import annotations

from datetime import datetime, timezone
import json
import logging
from typing import TYPE_CHECKING

from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.websockets import WebSocket, WebSocketDisconnect

from ...core.errors import UnknownEvent
from ...core.schema import SchemaError
from ..cli_ui import MESSAGE_RECEIVED

if TYPE_CHECKING:
    from .plugin import WebappUI

logger = logging.getLogger("athena.plugins.webapp_ui.routes")

TOKEN_REFRESHED = "cerebrum/token-refreshed"


def _bridge(scope_owner) -> "WebappUI":
    return scope_owner.app.state.webapp


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


async def health_handler(request: Request) -> JSONResponse:
    return JSONResponse({
        "status": "ok",
        "timestamp": _now(),
        "service": "athena-webapp",
    })


async def tools_handler(request: Request) -> JSONResponse:
    athena = _bridge(request).athena
    return JSONResponse({"tools": athena.tool_schemas()})


async def events_handler(request: Request) -> JSONResponse:
    athena = _bridge(request).athena
    return JSONResponse({"events": athena.event_schemas()})


async def plugins_handler(request: Request) -> JSONResponse:
    athena = _bridge(request).athena
    return JSONResponse({
        "loaded": list(athena.plugins),
        "available": list(athena.catalog.names),
    })


async def messages_handler(request: Request) -> JSONResponse:
    """Accept a user message and emit it as ``ui/message-received``."""

    bridge = _bridge(request)
    try:
        body = await request.json()
    except json.JSONDecodeError:
        return JSONResponse({"error": "Invalid JSON"}, status_code=400)
    if not isinstance(body, dict):
        return JSONResponse({"error": "Expected a JSON object"}, status_code=400)

    content = str(body.get("content", "")).strip()
    if not content:
        return JSONResponse({"error": "Message content required"}, status_code=400)

    try:
        bridge.receive_message(content, body.get("files"))
    except SchemaError as exc:
        return JSONResponse({"error": str(exc)}, status_code=400)
    except UnknownEvent as exc:
        return JSONResponse({"error": str(exc)}, status_code=503)
    return JSONResponse({"status": "accepted"}, status_code=202)


async def token_handler(request: Request) -> JSONResponse:
    """Hand a refreshed LLM credential to the cognition loop."""

    athena = _bridge(request).athena
    try:
        body = await request.json()
    except json.JSONDecodeError:
        return JSONResponse({"error": "Invalid JSON"}, status_code=400)
    token = body.get("token") if isinstance(body, dict) else None
    if not token or not isinstance(token, str):
        return JSONResponse({"error": "Token required"}, status_code=400)
    athena.emit_private_event(TOKEN_REFRESHED, {"token": token})
    logger.info("LLM token refreshed through the web bridge.")
    return JSONResponse({"status": "ok"})


async def websocket_events_handler(websocket: WebSocket) -> None:
    """Stream private signals out; accept user messages and pings in."""

    bridge = _bridge(websocket)
    presented = websocket.headers.get("X-API-Key") or websocket.query_params.get("api_key", "")
    if not bridge.auth.validate_key(presented):
        await websocket.close(code=1008)
        return

    await websocket.accept()
    bridge.connections.add(websocket)
    logger.info("Client connected: %s", websocket.client)
    try:
        while True:
            data = await websocket.receive_json()
            kind = data.get("type") if isinstance(data, dict) else None
            if kind == "ping":
                await websocket.send_json({"type": "pong", "data": {}})
            elif kind == "message":
                payload = data.get("data") or {}
                try:
                    bridge.receive_message(str(payload.get("content", "")), payload.get("files"))
                except (SchemaError, UnknownEvent) as exc:
                    await websocket.send_json({"type": "error", "data": {"error": str(exc)}})
                    continue
                await bridge.relay(data, exclude=websocket)
            else:
                await websocket.send_json({"type": "error", "data": {"error": f"Unsupported message type: {kind}"}})
    except WebSocketDisconnect:
        logger.info("Client disconnected: %s", websocket.client)
    except json.JSONDecodeError:
        logger.warning("Closing socket %s after malformed JSON.", websocket.client)
        await websocket.close(code=1003)
    finally:
        bridge.connections.discard(websocket)


__all__ = [
    "events_handler",
    "health_handler",
    "messages_handler",
    "plugins_handler",
    "token_handler",
    "tools_handler",
    "websocket_events_handler",
]
