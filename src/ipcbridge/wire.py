"""Wire protocol implementation for the IPC bridge.

Every frame is one JSON-RPC 2.0 object sent as a WebSocket text message:

    request       {"jsonrpc": "2.0", "id": 1, "method": "echo", "params": ["a"]}
    response      {"jsonrpc": "2.0", "id": 1, "result": ["a"]}
    error         {"jsonrpc": "2.0", "id": 1, "error": {"code": -32601, "message": "..."}}
    notification  {"jsonrpc": "2.0", "method": "tick", "params": [42]}

The method name is the IPC channel and params are the positional arguments
the caller passed after the channel.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

from ipcbridge.error import RpcError

PROTOCOL_VERSION = "2.0"

RequestId = int | float | str


def _check_id(value: Any) -> RequestId:
    # bool is an int subclass but never a valid id
    if isinstance(value, bool) or not isinstance(value, int | float | str):
        msg = f"Invalid request id: {value!r}"
        raise RpcError.invalid_request(msg)
    return value


def _params_to_args(params: Any) -> list[Any]:
    if params is None:
        return []
    if isinstance(params, list):
        return params
    return [params]


@dataclass(frozen=True)
class WireRequest:
    """Request message: expects exactly one response with the same id."""

    id: RequestId
    channel: str
    args: list[Any] = field(default_factory=list)

    def to_json(self) -> dict[str, Any]:
        """Convert to JSON object."""
        return {
            "jsonrpc": PROTOCOL_VERSION,
            "id": self.id,
            "method": self.channel,
            "params": list(self.args),
        }


@dataclass(frozen=True)
class WireResponse:
    """Response message: carries either a result or an error.

    The id is None only for errors answering a frame whose id could not be
    read.
    """

    id: RequestId | None
    result: Any = None
    error: RpcError | None = None

    @property
    def is_error(self) -> bool:
        return self.error is not None

    def to_json(self) -> dict[str, Any]:
        """Convert to JSON object."""
        obj: dict[str, Any] = {"jsonrpc": PROTOCOL_VERSION, "id": self.id}
        if self.error is not None:
            obj["error"] = self.error.to_json()
        else:
            obj["result"] = self.result
        return obj

    @staticmethod
    def success(request_id: RequestId | None, result: Any) -> WireResponse:
        return WireResponse(request_id, result=result)

    @staticmethod
    def failure(request_id: RequestId | None, error: RpcError) -> WireResponse:
        return WireResponse(request_id, error=error)


@dataclass(frozen=True)
class WireNotification:
    """Notification message: fire-and-forget, never answered."""

    channel: str
    args: list[Any] = field(default_factory=list)

    def to_json(self) -> dict[str, Any]:
        """Convert to JSON object."""
        return {
            "jsonrpc": PROTOCOL_VERSION,
            "method": self.channel,
            "params": list(self.args),
        }


WireMessage = WireRequest | WireResponse | WireNotification


def wire_message_from_json(obj: Any) -> WireMessage:
    """Classify an already-decoded JSON value as one of the message shapes.

    Raises:
        RpcError: INVALID_REQUEST if the value matches no shape
    """
    if not isinstance(obj, dict):
        msg = "Wire message must be a JSON object"
        raise RpcError.invalid_request(msg)

    method = obj.get("method")
    has_id = obj.get("id") is not None

    if "method" in obj:
        if not isinstance(method, str) or not method:
            msg = "Method must be a non-empty string"
            raise RpcError.invalid_request(msg)
        args = _params_to_args(obj.get("params"))
        if has_id:
            return WireRequest(_check_id(obj["id"]), method, args)
        return WireNotification(method, args)

    if "result" in obj or "error" in obj:
        if "id" not in obj:
            msg = "Response requires an id"
            raise RpcError.invalid_request(msg)
        request_id = _check_id(obj["id"]) if has_id else None
        if "error" in obj and obj["error"] is not None:
            return WireResponse.failure(request_id, RpcError.from_json(obj["error"]))
        return WireResponse.success(request_id, obj.get("result"))

    msg = "Wire message is neither a request, response, nor notification"
    raise RpcError.invalid_request(msg)


def parse_wire_message(data: str | bytes) -> WireMessage:
    """Parse a wire message from a JSON text frame.

    Raises:
        RpcError: PARSE_ERROR for invalid JSON, INVALID_REQUEST for JSON
            that is not a recognizable message
    """
    try:
        obj = json.loads(data)
    except (ValueError, RecursionError) as e:
        # JSONDecodeError and UnicodeDecodeError are ValueErrors; deep nesting
        # exhausts the decoder stack
        msg = f"Parse error: {e}"
        raise RpcError.parse_error(msg) from e
    return wire_message_from_json(obj)


def serialize_wire_message(msg: WireMessage) -> str:
    """Serialize a wire message to a JSON text frame."""
    return json.dumps(msg.to_json())


def peek_request_id(data: str | bytes) -> RequestId | None:
    """Best-effort id extraction from a frame that failed to parse as a message."""
    try:
        obj = json.loads(data)
    except (ValueError, RecursionError):
        return None
    if isinstance(obj, dict):
        value = obj.get("id")
        if isinstance(value, int | float | str) and not isinstance(value, bool):
            return value
    return None
