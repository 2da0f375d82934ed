"""Server implementation for the IPC bridge."""

from __future__ import annotations

import asyncio
import datetime
import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Self

import aiohttp
from aiohttp import web
from aiohttp.typedefs import Middleware

from ipcbridge.ids import ClientIdGenerator
from ipcbridge.liveness import LivenessMonitor
from ipcbridge.middleware import cors_middleware
from ipcbridge.registry import MethodRegistry
from ipcbridge.sessions import Session, SessionTable
from ipcbridge.types import Handler, Listener, call_maybe_async

logger = logging.getLogger(__name__)

ClientHook = Callable[[str], Awaitable[None] | None]
FrameErrorHook = Callable[[str, Exception], Awaitable[None] | None]


@dataclass(frozen=True)
class ServerConfig:
    """Configuration for the IPC bridge server."""

    host: str = "127.0.0.1"
    port: int = 3001  # 0 picks a free port, see Server.port
    ws_path: str = "/ipc"
    health_path: str = "/api/health"
    static_dir: str | None = None  # Served at / when set
    heartbeat_interval: float = 30.0  # Seconds between liveness sweeps
    include_stack_traces: bool = False  # Security: disabled by default
    max_message_size: int = 4 * 1024 * 1024
    cors: bool = False
    cors_origins: tuple[str, ...] = ("*",)
    cors_credentials: bool = False


class Server:
    """IPC bridge server.

    Accepts WebSocket connections on ``config.ws_path``, gives each one a
    client id, and routes its frames through the method registry. Handlers are
    called as ``handler(event, *args)`` where ``event.sender_id`` is the
    calling client's id.

    Each server owns its own registry, session table, and liveness monitor, so
    several servers can run in one process.

    ``middlewares`` are installed on the aiohttp application after the CORS
    middleware (when ``config.cors`` is set), so an authentication middleware
    can refuse the WebSocket upgrade before a session exists.

    Example:
        server = Server(ServerConfig(port=3001))
        server.handle("echo", lambda event, *args: list(args))
        async with server:
            await server.broadcast("ready")
    """

    def __init__(
        self,
        config: ServerConfig | None = None,
        *,
        on_connect: ClientHook | None = None,
        on_disconnect: ClientHook | None = None,
        on_frame_error: FrameErrorHook | None = None,
        middlewares: Iterable[Middleware] = (),
    ) -> None:
        self.config = config or ServerConfig()
        self.middlewares = list(middlewares)
        self.on_connect = on_connect
        self.on_disconnect = on_disconnect
        self.on_frame_error = on_frame_error

        self.sessions = SessionTable()
        self.registry = MethodRegistry(
            include_stack_traces=self.config.include_stack_traces,
            on_frame_error=self._report_frame_error,
        )
        self.liveness = LivenessMonitor(self.sessions, self.config.heartbeat_interval)
        self._client_ids = ClientIdGenerator()
        self._workers: set[asyncio.Task] = set()

        self._app: web.Application | None = None
        self._runner: web.AppRunner | None = None
        self._site: web.TCPSite | None = None

    async def __aenter__(self) -> Self:
        """Enter async context manager - starts the server."""
        await self.start()
        return self

    async def __aexit__(self, *args: object) -> None:
        """Exit async context manager - stops the server."""
        await self.stop()

    @property
    def port(self) -> int:
        """Get the actual bound port (useful when port=0 for dynamic allocation)."""
        if self._site is None:
            return self.config.port
        if self._site._server:
            return self._site._server.sockets[0].getsockname()[1]  # type: ignore[union-attr]
        return self.config.port

    @property
    def url(self) -> str:
        """WebSocket URL clients should connect to."""
        return f"ws://{self.config.host}:{self.port}{self.config.ws_path}"

    def create_app(self) -> web.Application:
        """Build the aiohttp application without binding a socket."""
        middlewares: list[Middleware] = []
        if self.config.cors:
            middlewares.append(
                cors_middleware(self.config.cors_origins, self.config.cors_credentials)
            )
        middlewares.extend(self.middlewares)

        app = web.Application(middlewares=middlewares)
        app.router.add_get(self.config.ws_path, self._handle_websocket)
        app.router.add_get(self.config.health_path, self._handle_health)
        if self.config.static_dir:
            static_dir = Path(self.config.static_dir)
            app.router.add_get("/", self._make_index_handler(static_dir))
            app.router.add_static("/", static_dir)
        return app

    async def start(self) -> None:
        """Start the server."""
        self._app = self.create_app()
        self._runner = web.AppRunner(self._app)
        await self._runner.setup()

        self._site = web.TCPSite(self._runner, self.config.host, self.config.port)
        await self._site.start()
        self.liveness.start()

        logger.info("Server listening on %s:%s", self.config.host, self.port)
        logger.info("WebSocket endpoint at %s", self.config.ws_path)

    async def stop(self) -> None:
        """Stop the server, closing every client connection."""
        await self.liveness.stop()
        for worker in list(self._workers):
            worker.cancel()
        await self.sessions.close_all()
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
        self._site = None
        self._app = None

    # Registry API

    def handle(self, channel: str, handler: Handler) -> None:
        self.registry.handle(channel, handler)

    def handle_once(self, channel: str, handler: Handler) -> None:
        self.registry.handle_once(channel, handler)

    def remove_handler(self, channel: str) -> None:
        self.registry.remove_handler(channel)

    def on(self, channel: str, listener: Listener) -> None:
        self.registry.on(channel, listener)

    def once(self, channel: str, listener: Listener) -> None:
        self.registry.once(channel, listener)

    def remove_listener(self, channel: str, listener: Listener) -> None:
        self.registry.remove_listener(channel, listener)

    def remove_all_listeners(self, channel: str | None = None) -> None:
        self.registry.remove_all_listeners(channel)

    # Session API

    def get_session(self, client_id: str) -> Session | None:
        return self.sessions.get(client_id)

    async def broadcast(self, channel: str, *args: Any) -> int:
        """Push a notification to every connected client."""
        return await self.sessions.broadcast(channel, *args)

    async def send_to(self, client_id: str, channel: str, *args: Any) -> bool:
        """Push a notification to one client."""
        return await self.sessions.send_to(client_id, channel, *args)

    # Request handlers

    async def _handle_websocket(self, request: web.Request) -> web.WebSocketResponse:
        """Handle one client connection for its whole lifetime.

        The read loop only queues data frames; a per-session worker dispatches
        them one at a time, in order. Control frames are handled inline so a
        slow handler never hides a pong from the liveness monitor. Pings are
        answered here because autoping is off.
        """
        ws = web.WebSocketResponse(
            autoping=False, max_msg_size=self.config.max_message_size
        )
        await ws.prepare(request)

        client_id = self._client_ids.generate()
        session = self.sessions.add(client_id, ws)
        await self._fire(self.on_connect, client_id)

        inbox: asyncio.Queue[str | bytes | None] = asyncio.Queue()
        worker = asyncio.create_task(self._process_frames(session, inbox))
        self._workers.add(worker)
        try:
            async for msg in ws:
                match msg.type:
                    case aiohttp.WSMsgType.TEXT | aiohttp.WSMsgType.BINARY:
                        inbox.put_nowait(msg.data)
                    case aiohttp.WSMsgType.PING:
                        await ws.pong(msg.data)
                        session.mark_alive()
                    case aiohttp.WSMsgType.PONG:
                        session.mark_alive()
                    case aiohttp.WSMsgType.ERROR:
                        logger.error(
                            "WebSocket error for %s: %s", client_id, ws.exception()
                        )
                        break
        finally:
            inbox.put_nowait(None)
            try:
                # Frames already received are still dispatched
                await asyncio.wait([worker])
            finally:
                worker.cancel()
                self._workers.discard(worker)
                self.sessions.remove(client_id)
                await self._fire(self.on_disconnect, client_id)

        return ws

    async def _process_frames(
        self, session: Session, inbox: asyncio.Queue[str | bytes | None]
    ) -> None:
        while (data := await inbox.get()) is not None:
            await self._handle_frame(session, data)

    async def _handle_frame(self, session: Session, data: str | bytes) -> None:
        try:
            await self.registry.dispatch(data, session)
        except Exception as e:
            logger.exception("Error handling message from %s", session.client_id)
            await self._report_frame_error(session.client_id, e)

    async def _handle_health(self, request: web.Request) -> web.Response:
        return web.json_response({
            "status": "ok",
            "timestamp": datetime.datetime.now(datetime.UTC).isoformat(),
            "connections": len(self.sessions),
        })

    @staticmethod
    def _make_index_handler(static_dir: Path):
        async def handle_index(request: web.Request) -> web.StreamResponse:
            index = static_dir / "index.html"
            if not index.is_file():
                raise web.HTTPNotFound()
            return web.FileResponse(index)

        return handle_index

    async def _report_frame_error(self, client_id: str, error: Exception) -> None:
        if self.on_frame_error is None:
            return
        await self._fire(self.on_frame_error, client_id, error)

    async def _fire(self, hook: Callable[..., Any] | None, *args: Any) -> None:
        if hook is None:
            return
        try:
            await call_maybe_async(hook, *args)
        except Exception:
            logger.exception("Lifecycle callback failed")
