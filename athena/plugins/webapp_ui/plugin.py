"""HTTP/WebSocket bridge plugin served by uvicorn inside the runtime's loop."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timezone
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Set

from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.middleware.cors import CORSMiddleware
from starlette.responses import JSONResponse
from starlette.routing import Route, WebSocketRoute
from starlette.websockets import WebSocket
import uvicorn

from ...core.registry import PLUGINS_LOADED
from ...core.schema import Argument, ArgType, Event, Explanation, Tool
from ..base import PluginBase
from ..cli_ui import MESSAGE_RECEIVED, SEND_MESSAGE
from .auth import APIKeyManager
from .routes import (
    events_handler,
    health_handler,
    messages_handler,
    plugins_handler,
    token_handler,
    tools_handler,
    websocket_events_handler,
)

if TYPE_CHECKING:
    from ...core.registry import Athena

logger = logging.getLogger("athena.plugins.webapp_ui")

# Signals forwarded to every connected socket.
FORWARDED_SIGNALS = frozenset({
    "cerebrum/thinking",
    "cerebrum/busy",
    "cerebrum/error",
    "athena/tool-call",
    "athena/tool-result",
    "athena/event",
})
SHUTDOWN_GRACE_SEC = 5.0

_FILES = Argument(
    ArgType.ARRAY,
    "Attached files.",
    required=False,
    of=Argument(
        ArgType.OBJECT,
        "A file.",
        of={
            "name": Argument(ArgType.STRING, "The name of the file."),
            "location": Argument(ArgType.STRING, "A URL or absolute path to the file."),
        },
    ),
)


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


class WebappUI(PluginBase):
    """Exposes the registry over HTTP and streams activity over WebSocket."""

    def __init__(self, config: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(config)
        self.host = str(self.config.get("host", "127.0.0.1"))
        self.port = int(self.config.get("port", 8080))
        self.serve = bool(self.config.get("serve", True))
        self.cors_origins: List[str] = list(self.config.get("cors_origins") or [])
        key_file = self.config.get("api_key_file")
        self.auth = APIKeyManager(
            configured_key=self.config.get("api_key"),
            key_file=Path(key_file).expanduser() if key_file else None,
        )
        self.athena: Optional["Athena"] = None
        self.app: Optional[Starlette] = None
        self.connections: Set[WebSocket] = set()
        self._server: Optional[uvicorn.Server] = None
        self._serve_task: Optional[asyncio.Task] = None
        self._sends: Set[asyncio.Task] = set()

    def describe(self) -> Optional[str]:
        return (
            "You talk with the user through a web page: ui/message-received events bring "
            "their messages (sometimes with files) and the ui/send-message tool answers in "
            "Markdown. Ask for missing details when a request is vague, and keep the user "
            "posted on progress and obstacles."
        )

    async def load(self, athena: "Athena") -> None:
        self.athena = athena
        athena.register_event(
            Event(
                name=MESSAGE_RECEIVED,
                desc="Triggered when a message is received from the user.",
                args={
                    "content": Argument(ArgType.STRING, "The message received from the user."),
                    "files": _FILES,
                    "time": Argument(ArgType.STRING, "When the message was sent, in ISO 8601 format."),
                },
                explain_args=lambda args: Explanation("Message from the user.", args["content"]),
            )
        )
        athena.register_tool(
            Tool(
                name=SEND_MESSAGE,
                desc="Sends a message to the user.",
                args={
                    "content": Argument(ArgType.STRING, "The message to send, in Markdown."),
                    "files": _FILES,
                },
                retvals={"status": Argument(ArgType.STRING, "The status of the operation.")},
                handler=self._send_message,
            )
        )
        athena.on_private_event(self._on_private_event)
        self.app = self.create_app()
        if getattr(athena, "ready", False):
            self._start_server()
        else:
            athena.once_private_event(PLUGINS_LOADED, self._on_plugins_loaded)

    async def unload(self, athena: "Athena") -> None:
        athena.off_private_event(self._on_private_event)
        athena.off_private_event(self._on_plugins_loaded)
        for websocket in list(self.connections):
            try:
                await websocket.close(code=1001)
            except RuntimeError:
                logger.debug("Socket %s already closed.", websocket.client)
        self.connections.clear()
        for task in list(self._sends):
            task.cancel()
        await self._stop_server()
        athena.deregister_tool(SEND_MESSAGE)
        athena.deregister_event(MESSAGE_RECEIVED)

    # ------------------------------------------------------------------
    # Application
    # ------------------------------------------------------------------
    def create_app(self) -> Starlette:
        middleware = []
        if self.cors_origins:
            middleware.append(
                Middleware(
                    CORSMiddleware,
                    allow_origins=self.cors_origins,
                    allow_credentials=True,
                    allow_methods=["*"],
                    allow_headers=["*"],
                )
            )
        middleware.append(Middleware(self._auth_middleware_class()))

        routes = [
            Route("/health", health_handler, methods=["GET"]),
            Route("/api/v1/tools", tools_handler, methods=["GET"]),
            Route("/api/v1/events", events_handler, methods=["GET"]),
            Route("/api/v1/plugins", plugins_handler, methods=["GET"]),
            Route("/api/v1/messages", messages_handler, methods=["POST"]),
            Route("/api/v1/token", token_handler, methods=["POST"]),
            WebSocketRoute("/ws/events", websocket_events_handler),
        ]

        @asynccontextmanager
        async def lifespan(app: Starlette):
            logger.info("Web bridge listening on %s:%s", self.host, self.port)
            yield
            logger.info("Web bridge shutting down")

        app = Starlette(routes=routes, middleware=middleware, lifespan=lifespan)
        app.state.webapp = self
        return app

    def _auth_middleware_class(self) -> type:
        auth = self.auth

        class AuthMiddleware(BaseHTTPMiddleware):
            async def dispatch(self, request, call_next):
                if request.url.path == "/health":
                    return await call_next(request)
                api_key = request.headers.get("X-API-Key", "") or request.query_params.get("api_key", "")
                if not auth.validate_key(api_key):
                    return JSONResponse({"error": "Invalid or missing API key"}, status_code=401)
                return await call_next(request)

        return AuthMiddleware

    # ------------------------------------------------------------------
    # Server lifecycle
    # ------------------------------------------------------------------
    def _on_plugins_loaded(self, name: str, args: Dict[str, Any]) -> None:
        self._start_server()

    def _start_server(self) -> None:
        if not self.serve or self._serve_task is not None:
            return
        config = uvicorn.Config(
            self.app,
            host=self.host,
            port=self.port,
            log_level="warning",
            access_log=False,
        )
        self._server = uvicorn.Server(config)
        self._serve_task = asyncio.ensure_future(self._serve())

    async def _serve(self) -> None:
        try:
            await self._server.serve()
        except SystemExit:
            # uvicorn exits the process when it cannot bind.
            logger.error("Web bridge could not start on %s:%s", self.host, self.port)

    async def _stop_server(self) -> None:
        if self._server is not None:
            self._server.should_exit = True
        if self._serve_task is not None:
            try:
                await asyncio.wait_for(self._serve_task, timeout=SHUTDOWN_GRACE_SEC)
            except asyncio.TimeoutError:
                logger.warning("Web bridge did not stop within %ss; cancelled.", SHUTDOWN_GRACE_SEC)
        self._server = None
        self._serve_task = None

    # ------------------------------------------------------------------
    # Messaging
    # ------------------------------------------------------------------
    def receive_message(self, content: str, files: Any = None) -> None:
        args: Dict[str, Any] = {"content": content, "time": _timestamp()}
        if files:
            args["files"] = files
        self.athena.emit_event(MESSAGE_RECEIVED, args)

    async def broadcast(self, message: Dict[str, Any]) -> int:
        """Send ``message`` to every socket; returns how many received it."""

        delivered = 0
        for websocket in list(self.connections):
            try:
                await websocket.send_json(message)
            except Exception as exc:
                logger.warning("Dropping socket %s after send failure: %s", websocket.client, exc)
                self.connections.discard(websocket)
                continue
            delivered += 1
        return delivered

    async def relay(self, message: Dict[str, Any], exclude: WebSocket) -> None:
        """Echo a user message to the other open tabs."""

        for websocket in list(self.connections):
            if websocket is exclude:
                continue
            try:
                await websocket.send_json(message)
            except Exception as exc:
                logger.warning("Dropping socket %s after send failure: %s", websocket.client, exc)
                self.connections.discard(websocket)

    def _on_private_event(self, name: str, args: Dict[str, Any]) -> None:
        if name not in FORWARDED_SIGNALS or not self.connections:
            return
        task = asyncio.ensure_future(
            self.broadcast({"type": "signal", "name": name, "data": args, "timestamp": _timestamp()})
        )
        self._sends.add(task)
        task.add_done_callback(self._sends.discard)

    async def _send_message(self, args: Dict[str, Any]) -> Dict[str, Any]:
        message = {
            "type": "message",
            "data": {
                "role": "assistant",
                "content": args["content"],
                "files": args.get("files") or [],
                "timestamp": _timestamp(),
            },
        }
        delivered = await self.broadcast(message)
        if delivered == 0:
            raise RuntimeError("No user is connected to the web bridge; the message was not delivered.")
        return {"status": "success"}


__all__ = ["FORWARDED_SIGNALS", "WebappUI"]
