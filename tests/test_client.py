"""Unit tests for the client that do not need a server."""

from __future__ import annotations

import asyncio
import json
from typing import Any

import pytest

from ipcbridge.client import Client, ClientConfig, ConnectionState, reconnect_delay
from ipcbridge.error import ErrorCode, RpcError

URL = "ws://127.0.0.1:1/ipc"


def make_client(**kwargs: Any) -> Client:
    return Client(ClientConfig(URL, **kwargs))


def response(request_id: Any, **body: Any) -> str:
    return json.dumps({"jsonrpc": "2.0", "id": request_id, **body})


def notification(channel: str, *args: Any) -> str:
    return json.dumps({"jsonrpc": "2.0", "method": channel, "params": list(args)})


class TestReconnectDelay:
    """Tests for the backoff schedule."""

    @pytest.mark.parametrize(
        ("attempt", "expected"),
        [(0, 1.0), (1, 2.0), (2, 4.0), (4, 16.0), (5, 30.0), (9, 30.0)],
    )
    def test_schedule(self, attempt: int, expected: float) -> None:
        assert reconnect_delay(attempt, 1.0, 30.0) == expected

    def test_custom_base(self) -> None:
        assert reconnect_delay(3, 0.1, 30.0) == pytest.approx(0.8)


class TestQueueing:
    """Messages issued before the connection exists."""

    async def test_send_is_queued(self) -> None:
        client = make_client()
        await client.send("log", "one")
        await client.send("log", "two")

        assert client.state is ConnectionState.DISCONNECTED
        assert client.queued_count == 2

    async def test_invoke_times_out_and_leaves_queue(self) -> None:
        client = make_client(timeout=0.05)

        with pytest.raises(RpcError) as exc_info:
            await client.invoke("slow")

        assert exc_info.value.code is ErrorCode.TIMEOUT
        assert "slow" in exc_info.value.message
        assert client.pending_count == 0
        assert client.queued_count == 0


class TestResponses:
    """Responses matched against pending calls."""

    async def test_result_resolves_call(self) -> None:
        client = make_client(timeout=None)
        call = asyncio.create_task(client.invoke("echo", "a"))
        await asyncio.sleep(0)
        assert client.pending_count == 1

        client._handle_frame(response(1, result=["a"]))

        assert await call == ["a"]
        assert client.pending_count == 0

    async def test_error_rejects_call(self) -> None:
        client = make_client(timeout=None)
        call = asyncio.create_task(client.invoke("missing"))
        await asyncio.sleep(0)

        client._handle_frame(
            response(1, error={"code": -32601, "message": "No handler registered"})
        )

        with pytest.raises(RpcError) as exc_info:
            await call
        assert exc_info.value.code is ErrorCode.METHOD_NOT_FOUND
        assert exc_info.value.message == "No handler registered"

    async def test_unknown_id_discarded(self) -> None:
        client = make_client(timeout=None)
        call = asyncio.create_task(client.invoke("echo"))
        await asyncio.sleep(0)

        client._handle_frame(response(99, result="stray"))
        client._handle_frame("not json at all")
        assert not call.done()

        client._handle_frame(response(1, result="mine"))
        assert await call == "mine"

    async def test_deeply_nested_frame_discarded(self) -> None:
        client = make_client(timeout=None)
        call = asyncio.create_task(client.invoke("echo"))
        await asyncio.sleep(0)

        client._handle_frame("[" * 200_000)
        client._handle_frame(b"\xff\xfe{")

        client._handle_frame(response(1, result="ok"))
        assert await call == "ok"

    async def test_float_id_matches_pending_call(self) -> None:
        client = make_client(timeout=None)
        call = asyncio.create_task(client.invoke("echo"))
        await asyncio.sleep(0)

        client._handle_frame(response(1.0, result="float id"))
        assert await call == "float id"

    async def test_ids_are_sequential(self) -> None:
        client = make_client(timeout=None)
        calls = [asyncio.create_task(client.invoke("n")) for _ in range(3)]
        await asyncio.sleep(0)

        for request_id in (3, 1, 2):
            client._handle_frame(response(request_id, result=request_id))

        assert await asyncio.gather(*calls) == [1, 2, 3]


class TestListeners:
    """Listener bookkeeping and dispatch."""

    async def test_on_and_dispatch(self) -> None:
        client = make_client()
        seen: list[Any] = []
        client.on("tick", lambda event, n: seen.append((event.sender_id, n)))

        client._handle_frame(notification("tick", 42))

        assert seen == [("main", 42)]

    async def test_duplicate_listener(self) -> None:
        client = make_client()

        def listener(event) -> None:
            pass

        client.on("tick", listener).on("tick", listener)
        assert client.listener_count("tick") == 1

    async def test_once(self) -> None:
        client = make_client()
        seen: list[int] = []
        client.once("tick", lambda event, n: seen.append(n))

        client._handle_frame(notification("tick", 1))
        client._handle_frame(notification("tick", 2))

        assert seen == [1]
        assert client.listener_count("tick") == 0

    async def test_async_listener(self) -> None:
        client = make_client()
        done = asyncio.Event()
        seen: list[int] = []

        async def listener(event, n: int) -> None:
            seen.append(n)
            done.set()

        client.on("tick", listener)
        client._handle_frame(notification("tick", 7))
        await asyncio.wait_for(done.wait(), 1)

        assert seen == [7]

    async def test_failing_listener_isolated(self) -> None:
        client = make_client()
        seen: list[str] = []

        def broken(event) -> None:
            raise RuntimeError("bug")

        client.on("tick", broken)
        client.on("tick", lambda event: seen.append("ok"))
        client._handle_frame(notification("tick"))

        assert seen == ["ok"]

    async def test_remove(self) -> None:
        client = make_client()

        def a(event) -> None:
            pass

        def b(event) -> None:
            pass

        client.on("x", a).on("x", b).on("y", a)
        client.remove_listener("x", a)
        assert client.listener_count("x") == 1

        client.remove_all_listeners("x")
        assert client.listener_count("x") == 0
        assert client.listener_count("y") == 1

        client.remove_all_listeners()
        assert client.listener_count("y") == 0


class TestClose:
    """Closing the client."""

    async def test_close_rejects_pending(self) -> None:
        client = make_client(timeout=None)
        call = asyncio.create_task(client.invoke("echo"))
        await client.send("log")
        await asyncio.sleep(0)

        await client.close()

        with pytest.raises(RpcError) as exc_info:
            await call
        assert exc_info.value.code is ErrorCode.CONNECTION_CLOSED
        assert client.state is ConnectionState.CLOSED
        assert client.queued_count == 0

    async def test_unusable_after_close(self) -> None:
        client = make_client()
        await client.close()

        with pytest.raises(RpcError) as exc_info:
            await client.invoke("echo")
        assert exc_info.value.code is ErrorCode.CONNECTION_CLOSED

        await client.send("log")
        assert client.queued_count == 0

        with pytest.raises(RpcError):
            await client.wait_connected(1)

        with pytest.raises(RuntimeError, match="closed"):
            await client.start()

    async def test_close_twice(self) -> None:
        client = make_client()
        await client.close()
        await client.close()
        assert client.state is ConnectionState.CLOSED
