"""Client implementation for the IPC bridge.

The client presents one logical connection regardless of transport churn:
messages issued while disconnected are queued and flushed in order once the
connection is back, and dropped connections are retried with exponential
backoff up to a fixed number of attempts.
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Any, Self

import aiohttp

from ipcbridge.error import RpcError
from ipcbridge.ids import IdAllocator
from ipcbridge.types import IpcEvent, Listener, ListenerRecord
from ipcbridge.wire import (
    RequestId,
    WireNotification,
    WireRequest,
    WireResponse,
    parse_wire_message,
    serialize_wire_message,
)

logger = logging.getLogger(__name__)

SEND_ERRORS = (ConnectionError, RuntimeError, aiohttp.ClientError)
CONNECT_ERRORS = (aiohttp.ClientError, OSError, TimeoutError)


class ConnectionState(Enum):
    """Connection state of a Client."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    FAILED = "failed"  # Reconnection attempts exhausted
    CLOSED = "closed"  # Closed by the caller

    def __str__(self) -> str:
        return self.value


@dataclass
class ClientConfig:
    """Configuration for the IPC bridge client."""

    url: str
    timeout: float | None = 30.0  # Per-call timeout in seconds, None waits forever
    base_delay: float = 1.0
    max_delay: float = 30.0
    max_attempts: int = 10
    headers: dict[str, str] | None = None  # Sent with the upgrade request, e.g. auth


def reconnect_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    """Delay before reconnection attempt ``attempt`` (0-based)."""
    return min(base_delay * 2**attempt, max_delay)


@dataclass
class PendingCall:
    """An outstanding request waiting for its response."""

    id: RequestId
    channel: str
    future: asyncio.Future[Any]
    sent: bool = False


@dataclass(frozen=True)
class QueuedFrame:
    """A serialized message waiting for the connection to come back."""

    text: str
    request_id: RequestId | None = None


class Client:
    """IPC bridge client.

    Example:
        async with Client(ClientConfig("ws://127.0.0.1:3001/ipc")) as client:
            client.on("tick", lambda event, n: print(n))
            result = await client.invoke("echo", "a", 1)
            await client.send("log", "hello")

    ``invoke`` and ``send`` may be called before the connection is up; the
    messages are queued and sent, in order, as soon as it is.
    """

    def __init__(self, config: ClientConfig) -> None:
        self.config = config
        self._state = ConnectionState.DISCONNECTED
        self._state_changed = asyncio.Event()
        self._session: aiohttp.ClientSession | None = None
        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._run_task: asyncio.Task | None = None
        self._attempt = 0

        self._ids = IdAllocator()
        self._pending: dict[RequestId, PendingCall] = {}
        self._queue: deque[QueuedFrame] = deque()
        self._listeners: dict[str, list[ListenerRecord]] = {}
        self._listener_tasks: set[asyncio.Task] = set()

    async def __aenter__(self) -> Self:
        """Async context manager entry - starts connecting."""
        await self.start()
        return self

    async def __aexit__(self, *args: object) -> None:
        """Async context manager exit."""
        await self.close()

    # State

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def queued_count(self) -> int:
        return len(self._queue)

    @property
    def attempt(self) -> int:
        """Reconnection attempts scheduled since the last successful connect."""
        return self._attempt

    def _set_state(self, state: ConnectionState) -> None:
        if self._state is ConnectionState.CLOSED or self._state is state:
            return
        logger.debug("Connection state %s -> %s", self._state, state)
        self._state = state
        # Wake everything waiting on the old event, then arm a fresh one
        self._state_changed.set()
        self._state_changed = asyncio.Event()

    async def wait_connected(self, timeout: float | None = None) -> None:
        """Wait until the client is connected.

        Raises:
            RpcError: CONNECTION_CLOSED if the client failed or was closed
            TimeoutError: If ``timeout`` elapses first
        """

        async def wait() -> None:
            while self._state is not ConnectionState.CONNECTED:
                if self._state in (ConnectionState.FAILED, ConnectionState.CLOSED):
                    msg = f"Client is {self._state}"
                    raise RpcError.connection_closed(msg)
                await self._state_changed.wait()

        await asyncio.wait_for(wait(), timeout)

    # Lifecycle

    async def start(self) -> None:
        """Start connecting in the background."""
        if self._state is ConnectionState.CLOSED:
            msg = "Client is closed"
            raise RuntimeError(msg)
        if self._run_task is not None and not self._run_task.done():
            return
        if self._session is None:
            self._session = aiohttp.ClientSession()
        self._attempt = 0
        self._set_state(ConnectionState.CONNECTING)
        self._run_task = asyncio.create_task(self._run())

    async def close(self) -> None:
        """Close the connection and stop reconnecting.

        Every pending call is rejected and queued notifications are dropped.
        """
        if self._state is ConnectionState.CLOSED:
            return
        self._set_state(ConnectionState.CLOSED)

        if self._run_task is not None:
            self._run_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._run_task
            self._run_task = None

        if self._ws is not None:
            await self._ws.close()
            self._ws = None

        self._abandon_queue(RpcError.connection_closed("Client closed"))

        for task in list(self._listener_tasks):
            task.cancel()

        if self._session is not None:
            await self._session.close()
            self._session = None

    async def _run(self) -> None:
        """Connect, serve, and reconnect with backoff until out of attempts."""
        while True:
            self._set_state(ConnectionState.CONNECTING)
            logger.info("Connecting to %s", self.config.url)
            try:
                assert self._session is not None
                ws = await self._session.ws_connect(
                    self.config.url, headers=self.config.headers
                )
            except CONNECT_ERRORS as e:
                logger.warning("Connection to %s failed: %s", self.config.url, e)
            else:
                await self._serve(ws)

            self._set_state(ConnectionState.DISCONNECTED)

            if self._attempt >= self.config.max_attempts:
                logger.error("Max reconnection attempts reached")
                self._set_state(ConnectionState.FAILED)
                self._abandon_queue(
                    RpcError.connection_closed("Reconnection attempts exhausted")
                )
                return

            delay = reconnect_delay(
                self._attempt, self.config.base_delay, self.config.max_delay
            )
            logger.info(
                "Reconnecting in %.2fs (attempt %d)", delay, self._attempt + 1
            )
            self._attempt += 1
            await asyncio.sleep(delay)

    async def _serve(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        """Drive one established connection until it drops."""
        self._ws = ws
        try:
            await self._flush_queue(ws)
            self._attempt = 0
            self._set_state(ConnectionState.CONNECTED)
            logger.info("Connected to %s", self.config.url)

            async for msg in ws:
                match msg.type:
                    case aiohttp.WSMsgType.TEXT | aiohttp.WSMsgType.BINARY:
                        self._handle_frame(msg.data)
                    case aiohttp.WSMsgType.ERROR:
                        logger.error("WebSocket error: %s", ws.exception())
                        break
        except SEND_ERRORS as e:
            logger.warning("Connection lost while flushing queue: %s", e)
        except Exception:
            logger.exception("Unexpected error on connection to %s", self.config.url)
        finally:
            self._ws = None
            if not ws.closed:
                await ws.close()
            logger.info("Disconnected from %s", self.config.url)
            self._reject_in_flight(
                RpcError.connection_closed("Connection lost before a response arrived")
            )

    async def _flush_queue(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        # Messages issued during the flush land at the back of the queue, so the
        # loop runs until it is empty and only then does the state flip.
        while self._queue:
            frame = self._queue[0]
            self._mark_sent(frame.request_id, True)
            try:
                await ws.send_str(frame.text)
            except SEND_ERRORS:
                self._mark_sent(frame.request_id, False)
                raise
            if self._queue and self._queue[0] is frame:
                self._queue.popleft()

    # Outbound

    def _check_usable(self) -> None:
        if self._state in (ConnectionState.FAILED, ConnectionState.CLOSED):
            msg = f"Client is {self._state}"
            raise RpcError.connection_closed(msg)

    def _mark_sent(self, request_id: RequestId | None, sent: bool) -> None:
        if request_id is None:
            return
        call = self._pending.get(request_id)
        if call is not None:
            call.sent = sent

    async def _transmit(self, frame: QueuedFrame) -> None:
        ws = self._ws
        if self._state is ConnectionState.CONNECTED and ws is not None and not ws.closed:
            self._mark_sent(frame.request_id, True)
            try:
                await ws.send_str(frame.text)
                return
            except SEND_ERRORS as e:
                self._mark_sent(frame.request_id, False)
                logger.warning("Send failed, queueing message: %s", e)
        self._queue.append(frame)

    def _drop_queued(self, request_id: RequestId) -> None:
        if any(frame.request_id == request_id for frame in self._queue):
            self._queue = deque(f for f in self._queue if f.request_id != request_id)

    async def invoke(self, channel: str, *args: Any) -> Any:
        """Call the handler registered for ``channel`` on the server.

        Returns:
            The handler's return value

        Raises:
            RpcError: With the server's error code and message if the handler
                failed or does not exist, TIMEOUT if no response arrived within
                ``config.timeout``, or CONNECTION_CLOSED if the connection was
                lost or given up on
        """
        self._check_usable()
        request_id = self._ids.allocate()
        text = serialize_wire_message(WireRequest(request_id, channel, list(args)))

        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._pending[request_id] = PendingCall(request_id, channel, future)
        try:
            await self._transmit(QueuedFrame(text, request_id))
            if self.config.timeout is None:
                return await future
            return await asyncio.wait_for(future, self.config.timeout)
        except TimeoutError:
            msg = f"Call to '{channel}' timed out after {self.config.timeout}s"
            raise RpcError.timeout(msg) from None
        finally:
            self._pending.pop(request_id, None)
            self._drop_queued(request_id)

    async def send(self, channel: str, *args: Any) -> None:
        """Send a one-way notification to the server's listeners.

        Once the client has failed or been closed the message is dropped.
        """
        text = serialize_wire_message(WireNotification(channel, list(args)))
        if self._state in (ConnectionState.FAILED, ConnectionState.CLOSED):
            logger.warning("Dropping message on %s: client is %s", channel, self._state)
            return
        await self._transmit(QueuedFrame(text))

    def _reject_in_flight(self, error: RpcError) -> None:
        for request_id, call in list(self._pending.items()):
            if call.sent:
                del self._pending[request_id]
                if not call.future.done():
                    call.future.set_exception(error)

    def _abandon_queue(self, error: RpcError) -> None:
        """Reject every pending call and drop queued notifications."""
        dropped = sum(1 for frame in self._queue if frame.request_id is None)
        if dropped:
            logger.warning("Dropping %d queued notification(s)", dropped)
        self._queue.clear()
        for call in self._pending.values():
            if not call.future.done():
                call.future.set_exception(error)
        self._pending.clear()

    # Inbound

    def _handle_frame(self, data: str | bytes) -> None:
        try:
            msg = parse_wire_message(data)
        except RpcError as e:
            logger.debug("Discarding undecodable frame: %s", e.message)
            return

        match msg:
            case WireResponse():
                self._handle_response(msg)
            case WireNotification():
                self._handle_notification(msg)
            case WireRequest():
                logger.debug("Discarding request %s from server", msg.id)

    def _handle_response(self, msg: WireResponse) -> None:
        if msg.id is None:
            logger.warning("Server rejected a frame: %s", msg.error)
            return
        call = self._pending.pop(msg.id, None)
        if call is None or call.future.done():
            logger.debug("Discarding response for unknown id=%s", msg.id)
            return
        if msg.error is not None:
            call.future.set_exception(msg.error)
        else:
            call.future.set_result(msg.result)

    def _handle_notification(self, msg: WireNotification) -> None:
        records = self._listeners.get(msg.channel)
        if not records:
            return

        event = IpcEvent("main")
        for record in list(records):
            if record.once and not self._claim(msg.channel, record):
                continue
            try:
                result = record.listener(event, *msg.args)
            except Exception:
                logger.exception("Error in listener for %s", msg.channel)
                continue
            if inspect.isawaitable(result):
                self._spawn_listener(msg.channel, result)

    def _spawn_listener(self, channel: str, awaitable: Any) -> None:
        async def run() -> None:
            try:
                await awaitable
            except Exception:
                logger.exception("Error in listener for %s", channel)

        task = asyncio.create_task(run())
        self._listener_tasks.add(task)
        task.add_done_callback(self._listener_tasks.discard)

    def _claim(self, channel: str, record: ListenerRecord) -> bool:
        records = self._listeners.get(channel)
        if records is None or not any(r is record for r in records):
            return False
        self._remove_record(channel, record)
        return True

    # Listener registry

    def _remove_record(self, channel: str, record: ListenerRecord) -> None:
        records = [r for r in self._listeners.get(channel, []) if r is not record]
        if records:
            self._listeners[channel] = records
        else:
            self._listeners.pop(channel, None)

    def _find(self, channel: str, listener: Listener) -> ListenerRecord | None:
        for record in self._listeners.get(channel, []):
            if record.listener is listener:
                return record
        return None

    def on(self, channel: str, listener: Listener) -> Self:
        """Listen for notifications pushed by the server on ``channel``."""
        if self._find(channel, listener) is None:
            self._listeners.setdefault(channel, []).append(ListenerRecord(listener))
        return self

    def once(self, channel: str, listener: Listener) -> Self:
        """Listen for the next notification on ``channel`` only."""
        if self._find(channel, listener) is None:
            self._listeners.setdefault(channel, []).append(
                ListenerRecord(listener, once=True)
            )
        return self

    def remove_listener(self, channel: str, listener: Listener) -> Self:
        record = self._find(channel, listener)
        if record is not None:
            self._remove_record(channel, record)
        return self

    def remove_all_listeners(self, channel: str | None = None) -> Self:
        """Remove every listener on ``channel``, or on all channels if None."""
        if channel is None:
            self._listeners.clear()
        else:
            self._listeners.pop(channel, None)
        return self

    def listener_count(self, channel: str) -> int:
        return len(self._listeners.get(channel, []))
