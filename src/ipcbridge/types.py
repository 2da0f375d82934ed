"""Core type definitions for the IPC bridge."""

from __future__ import annotations

import inspect
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Protocol


@dataclass
class IpcEvent:
    """Event context passed as the first argument to handlers and listeners.

    On the server ``sender_id`` is the client id of the session the frame came
    from and ``reply`` pushes a notification back to that session. On the
    client ``sender_id`` is always ``"main"`` and ``reply`` is unset.

    Example:
        async def on_save(event: IpcEvent, doc: dict) -> None:
            await event.reply("saved", doc["id"])
    """

    sender_id: str
    _reply: Callable[..., Awaitable[bool]] | None = field(default=None, repr=False)

    async def reply(self, channel: str, *args: Any) -> bool:
        """Send a notification back to the sender.

        Returns:
            True if the notification was handed to an open transport

        Raises:
            RuntimeError: If the event has no way to reach its sender
        """
        if self._reply is None:
            msg = f"Event from {self.sender_id} cannot be replied to"
            raise RuntimeError(msg)
        return await self._reply(channel, *args)


# Handlers may be plain functions or coroutine functions.
Handler = Callable[..., Any]
Listener = Callable[..., Any]


@dataclass
class ListenerRecord:
    """A registered listener and whether it fires only once."""

    listener: Listener
    once: bool = False


async def call_maybe_async(func: Callable[..., Any], *args: Any) -> Any:
    """Call a sync or async callable and return its final result."""
    result = func(*args)
    if inspect.isawaitable(result):
        return await result
    return result


class Transport(Protocol):
    """The part of a server-side WebSocket a session relies on.

    ``aiohttp.web.WebSocketResponse`` satisfies this protocol.
    """

    @property
    def closed(self) -> bool:
        """Whether the connection is closed or closing."""
        ...

    async def send_str(self, data: str) -> None:
        """Send one text frame.

        Raises:
            Exception: If sending fails
        """
        ...

    async def ping(self, message: bytes = b"") -> None:
        """Send a liveness probe."""
        ...

    async def close(self, *, code: int = ..., message: bytes = b"") -> bool:
        """Close the connection."""
        ...
