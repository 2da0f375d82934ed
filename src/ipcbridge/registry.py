"""Method registry: routes inbound frames to handlers and listeners.

Each channel owns at most one invoke handler (answers requests) and any number
of listeners (react to notifications). A channel's entry exists only while it
has a handler or at least one listener.
"""

from __future__ import annotations

import logging
import traceback
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from ipcbridge.error import ErrorCode, RpcError
from ipcbridge.types import Handler, Listener, ListenerRecord, call_maybe_async
from ipcbridge.wire import (
    WireMessage,
    WireNotification,
    WireRequest,
    WireResponse,
    parse_wire_message,
    peek_request_id,
    serialize_wire_message,
)

if TYPE_CHECKING:
    from ipcbridge.sessions import Session

logger = logging.getLogger(__name__)

FrameErrorHook = Callable[[str, Exception], Awaitable[None] | None]


@dataclass
class RegistryEntry:
    """Dispatch state for one channel."""

    channel: str
    handler: Handler | None = None
    handler_once: bool = False
    listeners: list[ListenerRecord] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return self.handler is None and not self.listeners

    def find(self, listener: Listener) -> ListenerRecord | None:
        for record in self.listeners:
            if record.listener is listener:
                return record
        return None


class MethodRegistry:
    """Channel routing table for one server.

    Args:
        include_stack_traces: Attach formatted tracebacks to INTERNAL errors
            sent back to callers
        on_frame_error: Called with (client_id, error) when an inbound frame
            cannot be decoded
    """

    def __init__(
        self,
        include_stack_traces: bool = False,
        on_frame_error: FrameErrorHook | None = None,
    ) -> None:
        self.include_stack_traces = include_stack_traces
        self.on_frame_error = on_frame_error
        self._entries: dict[str, RegistryEntry] = {}

    # Registration

    def _entry(self, channel: str) -> RegistryEntry:
        entry = self._entries.get(channel)
        if entry is None:
            entry = RegistryEntry(channel)
            self._entries[channel] = entry
        return entry

    def _prune(self, channel: str) -> None:
        entry = self._entries.get(channel)
        if entry is not None and entry.is_empty:
            del self._entries[channel]
            logger.debug("Route torn down: %s", channel)

    def handle(self, channel: str, handler: Handler) -> None:
        """Register the invoke handler for a channel, replacing any previous one."""
        entry = self._entry(channel)
        entry.handler = handler
        entry.handler_once = False
        logger.info("Registered handler: %s", channel)

    def handle_once(self, channel: str, handler: Handler) -> None:
        """Register a handler that is removed by its first invocation."""
        entry = self._entry(channel)
        entry.handler = handler
        entry.handler_once = True
        logger.info("Registered one-shot handler: %s", channel)

    def remove_handler(self, channel: str) -> None:
        """Remove the invoke handler for a channel."""
        entry = self._entries.get(channel)
        if entry is None or entry.handler is None:
            return
        entry.handler = None
        entry.handler_once = False
        self._prune(channel)
        logger.info("Removed handler: %s", channel)

    def on(self, channel: str, listener: Listener) -> None:
        """Add a notification listener. Adding the same listener twice is a no-op."""
        entry = self._entry(channel)
        if entry.find(listener) is None:
            entry.listeners.append(ListenerRecord(listener))

    def once(self, channel: str, listener: Listener) -> None:
        """Add a listener that removes itself before its first call."""
        entry = self._entry(channel)
        if entry.find(listener) is None:
            entry.listeners.append(ListenerRecord(listener, once=True))

    def remove_listener(self, channel: str, listener: Listener) -> None:
        entry = self._entries.get(channel)
        if entry is None:
            return
        record = entry.find(listener)
        if record is not None:
            entry.listeners.remove(record)
            self._prune(channel)

    def remove_all_listeners(self, channel: str | None = None) -> None:
        """Remove every listener on a channel, or on all channels if None."""
        channels = [channel] if channel is not None else list(self._entries)
        for name in channels:
            entry = self._entries.get(name)
            if entry is None:
                continue
            entry.listeners.clear()
            self._prune(name)

    # Introspection

    def has_handler(self, channel: str) -> bool:
        entry = self._entries.get(channel)
        return entry is not None and entry.handler is not None

    def listener_count(self, channel: str) -> int:
        entry = self._entries.get(channel)
        return len(entry.listeners) if entry is not None else 0

    def channels(self) -> list[str]:
        return list(self._entries)

    # Dispatch

    async def dispatch(self, raw: str | bytes, session: Session) -> WireResponse | None:
        """Process one inbound frame from a session.

        Requests are answered on the session; notifications fan out to
        listeners. Decoding failures are answered with an error response and
        leave the session usable.

        Returns:
            The response sent back, or None if nothing was sent
        """
        try:
            msg = parse_wire_message(raw)
        except RpcError as e:
            request_id = None if e.code == ErrorCode.PARSE_ERROR else peek_request_id(raw)
            logger.warning("Malformed frame from %s: %s", session.client_id, e.message)
            await self._report_frame_error(session.client_id, e)
            response = WireResponse.failure(request_id, e)
            await session.send_message(response)
            return response

        return await self.dispatch_message(msg, session)

    async def dispatch_message(
        self, msg: WireMessage, session: Session
    ) -> WireResponse | None:
        """Process one already-decoded message from a session."""
        match msg:
            case WireRequest():
                response = await self._handle_request(msg, session)
                await self._send_response(response, session)
                return response

            case WireNotification():
                await self._handle_notification(msg, session)
                return None

            case WireResponse():
                # The server never issues requests, so nothing awaits this
                logger.debug(
                    "Discarding response id=%s from %s", msg.id, session.client_id
                )
                return None

    async def _handle_request(self, msg: WireRequest, session: Session) -> WireResponse:
        entry = self._entries.get(msg.channel)
        handler = entry.handler if entry is not None else None
        if entry is None or handler is None:
            error = RpcError.method_not_found(f"No handler registered for '{msg.channel}'")
            return WireResponse.failure(msg.id, error)

        if entry.handler_once:
            # Claimed before the first await so a concurrent call cannot reuse it
            entry.handler = None
            entry.handler_once = False
            self._prune(msg.channel)

        try:
            result = await call_maybe_async(handler, session.event(), *msg.args)
        except RpcError as e:
            return WireResponse.failure(msg.id, e)
        except Exception as e:
            logger.exception("Error in handler %s: %s", msg.channel, e)
            stack = traceback.format_exc() if self.include_stack_traces else None
            error = RpcError.internal(str(e) or type(e).__name__, stack)
            return WireResponse.failure(msg.id, error)

        return WireResponse.success(msg.id, result)

    async def _send_response(self, response: WireResponse, session: Session) -> None:
        try:
            text = serialize_wire_message(response)
        except (TypeError, ValueError) as e:
            logger.error("Result of request %s is not serializable: %s", response.id, e)
            error = RpcError.internal(f"Result is not JSON serializable: {e}")
            text = serialize_wire_message(WireResponse.failure(response.id, error))
        await session.send_text(text)

    async def _handle_notification(
        self, msg: WireNotification, session: Session
    ) -> None:
        entry = self._entries.get(msg.channel)
        if entry is None or not entry.listeners:
            logger.debug("No listeners for %s", msg.channel)
            return

        event = session.event()
        for record in list(entry.listeners):
            if record.once and not self._claim(msg.channel, record):
                continue
            try:
                await call_maybe_async(record.listener, event, *msg.args)
            except Exception:
                logger.exception("Error in listener for %s", msg.channel)

    def _claim(self, channel: str, record: ListenerRecord) -> bool:
        """Remove a one-shot listener, returning False if it already fired."""
        entry = self._entries.get(channel)
        if entry is None or not any(r is record for r in entry.listeners):
            return False
        entry.listeners = [r for r in entry.listeners if r is not record]
        self._prune(channel)
        return True

    async def _report_frame_error(self, client_id: str, error: Exception) -> None:
        if self.on_frame_error is None:
            return
        try:
            await call_maybe_async(self.on_frame_error, client_id, error)
        except Exception:
            logger.exception("Frame error hook failed")
