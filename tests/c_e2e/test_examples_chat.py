"""End-to-end test for the chat example."""

import asyncio
import os
import sys
from pathlib import Path

import pytest

examples_dir = Path(__file__).parent.parent.parent / "examples"


@pytest.fixture
async def chat_server():
    """Starts the chat server as a subprocess."""
    server_path = examples_dir / "chat" / "server.py"
    process = await asyncio.create_subprocess_exec(
        sys.executable,
        str(server_path),
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )

    # Wait for the server to be ready
    await asyncio.sleep(2)

    yield process

    process.terminate()
    await process.wait()


async def run_client(lines: list[str]) -> str:
    """Feed a scripted session to the chat client and return its output."""
    process = await asyncio.create_subprocess_exec(
        sys.executable,
        "-u",
        str(examples_dir / "chat" / "client.py"),
        stdin=asyncio.subprocess.PIPE,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        env={**os.environ, "PYTHONUNBUFFERED": "1"},
    )
    script = "".join(f"{line}\n" for line in lines).encode()
    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(script), 15)
    except TimeoutError:
        process.kill()
        stdout, stderr = await process.communicate()

    print("--- Client STDOUT ---")
    print(stdout.decode())
    print("--- Client STDERR ---")
    print(stderr.decode())
    return stdout.decode()


async def test_chat_example(chat_server):
    """A scripted user joins, talks, lists users and leaves."""
    output = await run_client(["alice", "hello room", "/users", "/quit"])

    assert "Welcome to the chat, alice!" in output
    assert "[alice] hello room" in output
    assert "Connected users: alice" in output


async def test_chat_rejects_empty_username(chat_server):
    output = await run_client([""])
    assert "Username cannot be empty!" in output
