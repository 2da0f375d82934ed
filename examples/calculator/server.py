"""Calculator server.

Answers ``add``/``subtract`` calls and pushes a ``tick`` notification to every
connected client once a second.

Run:
    python examples/calculator/server.py
"""

import asyncio
import logging

from ipcbridge.error import RpcError
from ipcbridge.server import Server, ServerConfig

logging.basicConfig(level=logging.INFO)


def check_numbers(*values: object) -> None:
    for value in values:
        if isinstance(value, bool) or not isinstance(value, int | float):
            msg = f"Expected a number, got {value!r}"
            raise RpcError.invalid_params(msg)


async def add(event, a: float, b: float) -> float:
    """Add two numbers."""
    check_numbers(a, b)
    return a + b


async def subtract(event, a: float, b: float) -> float:
    """Subtract b from a."""
    check_numbers(a, b)
    return a - b


async def main() -> None:
    config = ServerConfig(host="127.0.0.1", port=3001)
    server = Server(config)

    server.handle("add", add)
    server.handle("subtract", subtract)

    await server.start()
    print(f"Calculator server listening on {server.url}")

    ticks = 0
    try:
        while True:
            await asyncio.sleep(1)
            ticks += 1
            await server.broadcast("tick", ticks)
    finally:
        await server.stop()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\nShutting down...")
