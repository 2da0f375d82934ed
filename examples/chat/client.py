"""Interactive chat client.

Run:
    python examples/chat/client.py
"""

import asyncio
import logging
import sys

from ipcbridge.client import Client, ClientConfig
from ipcbridge.error import RpcError

logging.basicConfig(level=logging.WARNING)


def show_message(event, message: dict) -> None:
    prefix = "(private) " if message.get("private") else ""
    print(f"{prefix}[{message['username']}] {message['text']}")


def show_system(event, text: str) -> None:
    print(f"\033[93m*** {text} ***\033[0m")


async def read_input() -> str:
    """Read a line of input without blocking the event loop."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, sys.stdin.readline)


async def main() -> None:
    print("Enter your username: ", end="", flush=True)
    username = (await read_input()).strip()
    if not username:
        print("Username cannot be empty!")
        return

    async with Client(ClientConfig(url="ws://127.0.0.1:3002/ipc")) as client:
        client.on("message", show_message).on("system", show_system)

        try:
            welcome = await client.invoke("join", username)
        except RpcError as e:
            print(f"Error joining chat: {e.message}")
            return

        print(welcome["message"])
        print(f"Connected users: {', '.join(welcome['users'])}")
        print("Type '/users', '/w <name> <text>' or '/quit'")

        while True:
            line = (await read_input()).strip()
            if not line:
                continue
            if line == "/quit":
                break
            if line == "/users":
                users = await client.invoke("listUsers")
                print(f"Connected users: {', '.join(users)}")
            elif line.startswith("/w "):
                _, to, text = (line.split(" ", 2) + [""])[:3]
                await client.send("whisper", to, text)
            else:
                await client.send("say", line)


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\nGoodbye!")
