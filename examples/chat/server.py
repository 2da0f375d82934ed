"""Chat server built on notifications.

Clients ``join`` with a username, then ``say`` lines that are broadcast to the
room. Private messages go to a single client with ``send_to``.

Run:
    python examples/chat/server.py
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from ipcbridge.error import RpcError
from ipcbridge.server import Server, ServerConfig
from ipcbridge.types import IpcEvent

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class ChatRoom:
    """Tracks usernames per client and relays messages."""

    def __init__(self, server: Server) -> None:
        self.server = server
        self.users: dict[str, str] = {}  # client id -> username

    def install(self) -> None:
        self.server.handle("join", self.join)
        self.server.handle("listUsers", self.list_users)
        self.server.on("say", self.say)
        self.server.on("whisper", self.whisper)

    async def join(self, event: IpcEvent, username: str) -> dict[str, Any]:
        if not isinstance(username, str) or not username:
            msg = "Username must be a non-empty string"
            raise RpcError.invalid_params(msg)
        if username in self.users.values():
            msg = f"Username {username} is already taken"
            raise RpcError.invalid_params(msg)

        self.users[event.sender_id] = username
        await self.announce(f"{username} joined the chat")
        logger.info("User %s joined (total: %d users)", username, len(self.users))
        return {
            "message": f"Welcome to the chat, {username}!",
            "users": sorted(self.users.values()),
        }

    def list_users(self, event: IpcEvent) -> list[str]:
        return sorted(self.users.values())

    async def say(self, event: IpcEvent, text: str) -> None:
        username = self.users.get(event.sender_id)
        if username is None:
            await event.reply("system", "Join the chat before sending messages")
            return
        await self.server.broadcast("message", {"username": username, "text": text})

    async def whisper(self, event: IpcEvent, to: str, text: str) -> None:
        sender = self.users.get(event.sender_id, "?")
        for client_id, username in self.users.items():
            if username == to:
                await self.server.send_to(
                    client_id, "message", {"username": sender, "text": text, "private": True}
                )
                return
        await event.reply("system", f"No user named {to}")

    async def leave(self, client_id: str) -> None:
        username = self.users.pop(client_id, None)
        if username is not None:
            await self.announce(f"{username} left the chat")

    async def announce(self, text: str) -> None:
        await self.server.broadcast("system", text)


async def main() -> None:
    server = Server(ServerConfig(host="127.0.0.1", port=3002))
    room = ChatRoom(server)
    room.install()
    server.on_disconnect = room.leave

    async with server:
        print(f"Chat server listening on {server.url}")
        await asyncio.Event().wait()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\nShutting down...")
