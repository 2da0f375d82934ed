"""Tests for the wire codec."""

import json

import pytest

from ipcbridge.error import ErrorCode, RpcError
from ipcbridge.wire import (
    WireNotification,
    WireRequest,
    WireResponse,
    parse_wire_message,
    peek_request_id,
    serialize_wire_message,
    wire_message_from_json,
)


class TestSerialize:
    """Tests for outgoing frames."""

    def test_request(self) -> None:
        frame = json.loads(serialize_wire_message(WireRequest(1, "echo", ["a", 1])))
        assert frame == {"jsonrpc": "2.0", "id": 1, "method": "echo", "params": ["a", 1]}

    def test_notification_has_no_id(self) -> None:
        frame = json.loads(serialize_wire_message(WireNotification("tick", [42])))
        assert frame == {"jsonrpc": "2.0", "method": "tick", "params": [42]}
        assert "id" not in frame

    def test_success_response(self) -> None:
        frame = json.loads(serialize_wire_message(WireResponse.success(7, None)))
        assert frame == {"jsonrpc": "2.0", "id": 7, "result": None}

    def test_error_response(self) -> None:
        error = RpcError.method_not_found("No handler registered for 'x'")
        frame = json.loads(serialize_wire_message(WireResponse.failure("abc", error)))
        assert frame["id"] == "abc"
        assert frame["error"] == {
            "code": -32601,
            "message": "No handler registered for 'x'",
        }
        assert "result" not in frame

    def test_error_response_null_id(self) -> None:
        error = RpcError.parse_error("bad json")
        frame = json.loads(serialize_wire_message(WireResponse.failure(None, error)))
        assert frame["id"] is None


class TestParse:
    """Tests for shape recognition."""

    def test_request(self) -> None:
        msg = parse_wire_message('{"jsonrpc":"2.0","id":3,"method":"add","params":[1,2]}')
        assert msg == WireRequest(3, "add", [1, 2])

    def test_request_string_id(self) -> None:
        msg = parse_wire_message('{"jsonrpc":"2.0","id":"r-1","method":"add"}')
        assert msg == WireRequest("r-1", "add", [])

    def test_notification(self) -> None:
        msg = parse_wire_message('{"jsonrpc":"2.0","method":"tick","params":[42]}')
        assert msg == WireNotification("tick", [42])

    def test_notification_null_id(self) -> None:
        msg = wire_message_from_json({"method": "tick", "id": None})
        assert isinstance(msg, WireNotification)

    def test_non_list_params_wrapped(self) -> None:
        msg = wire_message_from_json({"method": "save", "params": {"a": 1}})
        assert msg == WireNotification("save", [{"a": 1}])

    def test_success_response(self) -> None:
        msg = parse_wire_message('{"jsonrpc":"2.0","id":1,"result":["a",1,null]}')
        assert isinstance(msg, WireResponse)
        assert msg.id == 1
        assert msg.result == ["a", 1, None]
        assert not msg.is_error

    def test_error_response(self) -> None:
        msg = parse_wire_message(
            '{"jsonrpc":"2.0","id":1,"error":{"code":-32601,"message":"missing"}}'
        )
        assert isinstance(msg, WireResponse)
        assert msg.is_error
        assert msg.error is not None
        assert msg.error.code is ErrorCode.METHOD_NOT_FOUND
        assert msg.error.message == "missing"

    def test_error_response_null_id(self) -> None:
        msg = parse_wire_message(
            '{"jsonrpc":"2.0","id":null,"error":{"code":-32700,"message":"bad"}}'
        )
        assert isinstance(msg, WireResponse)
        assert msg.id is None

    def test_float_id(self) -> None:
        msg = parse_wire_message('{"jsonrpc":"2.0","id":1.5,"method":"add"}')
        assert msg == WireRequest(1.5, "add", [])

    def test_float_id_response(self) -> None:
        msg = parse_wire_message('{"jsonrpc":"2.0","id":2.0,"result":null}')
        assert isinstance(msg, WireResponse)
        assert msg.id == 2.0

    def test_bytes_frame(self) -> None:
        msg = parse_wire_message(b'{"method":"tick"}')
        assert msg == WireNotification("tick", [])


class TestParseErrors:
    """Tests for malformed input."""

    def test_invalid_json(self) -> None:
        with pytest.raises(RpcError) as exc_info:
            parse_wire_message("{not json")
        assert exc_info.value.code is ErrorCode.PARSE_ERROR

    @pytest.mark.parametrize("opener", ["[", '{"a":'])
    def test_deeply_nested(self, opener: str) -> None:
        with pytest.raises(RpcError) as exc_info:
            parse_wire_message(opener * 200_000)
        assert exc_info.value.code is ErrorCode.PARSE_ERROR

    def test_invalid_utf8(self) -> None:
        with pytest.raises(RpcError) as exc_info:
            parse_wire_message(b"\xff\xfe{")
        assert exc_info.value.code is ErrorCode.PARSE_ERROR

    @pytest.mark.parametrize(
        "payload",
        [
            "[]",
            "42",
            '"text"',
            "{}",
            '{"id": 1}',
            '{"method": ""}',
            '{"method": 5}',
            '{"method": "x", "id": true}',
            '{"method": "x", "id": [1]}',
            '{"result": 1}',
        ],
    )
    def test_invalid_request(self, payload: str) -> None:
        with pytest.raises(RpcError) as exc_info:
            parse_wire_message(payload)
        assert exc_info.value.code is ErrorCode.INVALID_REQUEST


class TestPeekRequestId:
    """Tests for best-effort id recovery."""

    def test_recovers_id(self) -> None:
        assert peek_request_id('{"id": 9, "method": 5}') == 9

    def test_invalid_json(self) -> None:
        assert peek_request_id("{") is None

    def test_deeply_nested(self) -> None:
        assert peek_request_id("[" * 200_000) is None

    def test_rejects_bool(self) -> None:
        assert peek_request_id('{"id": true}') is None
