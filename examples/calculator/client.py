# ruff: noqa: S311

import asyncio
import random

from ipcbridge.client import Client, ClientConfig


async def main() -> None:
    config = ClientConfig(url="ws://127.0.0.1:3001/ipc")

    async with Client(config) as client:
        client.on("tick", lambda event, n: print(f"tick {n}"))

        while True:
            x = random.randint(0, 100)
            y = random.randint(0, 100)
            result = await client.invoke("add", x, y)
            print(f"{x} + {y} = {result}")
            await asyncio.sleep(1)


if __name__ == "__main__":
    asyncio.run(main())
