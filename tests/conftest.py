"""Shared test helpers."""

from __future__ import annotations

import json
import socket
from typing import Any

import pytest


class FakeTransport:
    """In-memory stand-in for a server-side WebSocket."""

    def __init__(self, closed: bool = False) -> None:
        self.closed = closed
        self.sent: list[str] = []
        self.pings = 0
        self.close_calls = 0

    async def send_str(self, data: str) -> None:
        if self.closed:
            msg = "Cannot write to closing transport"
            raise ConnectionResetError(msg)
        self.sent.append(data)

    async def ping(self, message: bytes = b"") -> None:
        self.pings += 1

    async def close(self, *, code: int = 1000, message: bytes = b"") -> bool:
        self.close_calls += 1
        was_open = not self.closed
        self.closed = True
        return was_open

    def messages(self) -> list[dict[str, Any]]:
        return [json.loads(text) for text in self.sent]


@pytest.fixture
def make_transport():
    """Factory for fake transports."""

    def factory(closed: bool = False) -> FakeTransport:
        return FakeTransport(closed=closed)

    return factory


@pytest.fixture
def free_port() -> int:
    """A TCP port that was free a moment ago."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]
