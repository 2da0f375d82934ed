"""Session tracking for connected clients.

The SessionTable is the only owner of the client_id -> transport mapping.
Everything else reaches a client through ``broadcast``/``send_to`` or the
``reply`` of an IpcEvent.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterator
from dataclasses import dataclass
from typing import Any

import aiohttp

from ipcbridge.types import IpcEvent, Transport
from ipcbridge.wire import WireMessage, WireNotification, serialize_wire_message

logger = logging.getLogger(__name__)

# Errors a half-closed WebSocket may raise on send.
SEND_ERRORS = (ConnectionError, RuntimeError, aiohttp.ClientError)


@dataclass
class Session:
    """One live client connection."""

    client_id: str
    transport: Transport
    is_alive: bool = True

    @property
    def is_open(self) -> bool:
        return not self.transport.closed

    async def send_message(self, msg: WireMessage) -> bool:
        """Send one wire message if the transport is open.

        Returns:
            True if the frame was handed to the transport
        """
        return await self.send_text(serialize_wire_message(msg))

    async def send_text(self, text: str) -> bool:
        if not self.is_open:
            return False
        try:
            await self.transport.send_str(text)
        except SEND_ERRORS as e:
            logger.warning("Send to %s failed: %s", self.client_id, e)
            return False
        return True

    async def notify(self, channel: str, *args: Any) -> bool:
        """Push a notification to this session."""
        return await self.send_message(WireNotification(channel, list(args)))

    async def probe(self) -> None:
        """Send a liveness ping."""
        try:
            await self.transport.ping()
        except SEND_ERRORS as e:
            logger.debug("Ping to %s failed: %s", self.client_id, e)

    async def terminate(self) -> None:
        """Close the transport, ignoring a transport that is already gone."""
        try:
            await self.transport.close()
        except SEND_ERRORS as e:
            logger.debug("Close of %s failed: %s", self.client_id, e)

    def mark_alive(self) -> None:
        self.is_alive = True

    def event(self) -> IpcEvent:
        """Build the event context for a frame received on this session."""
        return IpcEvent(self.client_id, self.notify)


class SessionTable:
    """Live client sessions keyed by client id."""

    def __init__(self) -> None:
        self._sessions: dict[str, Session] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __iter__(self) -> Iterator[Session]:
        # Iterate over a snapshot so callers may remove while looping
        return iter(list(self._sessions.values()))

    def __contains__(self, client_id: object) -> bool:
        return client_id in self._sessions

    def add(self, client_id: str, transport: Transport) -> Session:
        """Register a new session.

        Raises:
            ValueError: If the client id is already in use
        """
        if client_id in self._sessions:
            msg = f"Client {client_id} already connected"
            raise ValueError(msg)
        session = Session(client_id, transport)
        self._sessions[client_id] = session
        logger.info("Client connected: %s (total: %d)", client_id, len(self._sessions))
        return session

    def remove(self, client_id: str) -> Session | None:
        """Forget a session. Removing an unknown id is a no-op."""
        session = self._sessions.pop(client_id, None)
        if session is not None:
            logger.info(
                "Client disconnected: %s (total: %d)", client_id, len(self._sessions)
            )
        return session

    def get(self, client_id: str) -> Session | None:
        return self._sessions.get(client_id)

    def client_ids(self) -> list[str]:
        return list(self._sessions)

    async def broadcast(self, channel: str, *args: Any) -> int:
        """Send one notification to every open session.

        Returns:
            Number of sessions the notification was delivered to
        """
        text = serialize_wire_message(WireNotification(channel, list(args)))
        targets = [session for session in self if session.is_open]
        if not targets:
            return 0
        results = await asyncio.gather(*(s.send_text(text) for s in targets))
        return sum(1 for delivered in results if delivered)

    async def send_to(self, client_id: str, channel: str, *args: Any) -> bool:
        """Send a notification to one session.

        A missing or closed session is not an error; the miss is logged and
        False is returned.
        """
        session = self._sessions.get(client_id)
        if session is None:
            logger.warning("Client %s not found", client_id)
            return False
        if not session.is_open:
            logger.warning("Client %s not connected", client_id)
            return False
        return await session.notify(channel, *args)

    async def close_all(self) -> None:
        """Close every transport and clear the table."""
        sessions = list(self._sessions.values())
        self._sessions.clear()
        for session in sessions:
            await session.terminate()
