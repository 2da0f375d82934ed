"""Error types for the IPC bridge."""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import Any


class ErrorCode(IntEnum):
    """Numeric error codes carried in error responses.

    The first five follow JSON-RPC 2.0. TIMEOUT and CONNECTION_CLOSED are
    produced locally by the client and never travel over the wire.
    """

    PARSE_ERROR = -32700
    INVALID_REQUEST = -32600
    METHOD_NOT_FOUND = -32601
    INVALID_PARAMS = -32602
    INTERNAL = -32603
    TIMEOUT = -32001
    CONNECTION_CLOSED = -32002

    def __str__(self) -> str:
        return self.name.lower()

    @staticmethod
    def from_wire(code: Any) -> ErrorCode | int:
        """Map a wire code to an ErrorCode, keeping unknown integers as-is."""
        try:
            return ErrorCode(code)
        except ValueError:
            return code if isinstance(code, int) else ErrorCode.INTERNAL


@dataclass(eq=False)
class RpcError(Exception):
    """RPC error with code, message, and optional data.

    Not frozen: the interpreter and contextlib assign ``__traceback__`` and
    ``__context__`` on exceptions as they propagate.
    """

    code: ErrorCode | int
    message: str
    data: Any | None = None

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"

    def to_json(self) -> dict[str, Any]:
        """Convert to the JSON-RPC error object."""
        error: dict[str, Any] = {"code": int(self.code), "message": self.message}
        if self.data is not None:
            error["data"] = self.data
        return error

    @staticmethod
    def from_json(obj: Any) -> RpcError:
        """Build an RpcError from a JSON-RPC error object."""
        if not isinstance(obj, dict):
            return RpcError.internal(f"Unknown error: {obj}")
        message = obj.get("message")
        if not isinstance(message, str) or not message:
            message = "Unknown error"
        return RpcError(ErrorCode.from_wire(obj.get("code")), message, obj.get("data"))

    @staticmethod
    def parse_error(message: str, data: Any | None = None) -> RpcError:
        """Create a PARSE_ERROR error."""
        return RpcError(ErrorCode.PARSE_ERROR, message, data)

    @staticmethod
    def invalid_request(message: str, data: Any | None = None) -> RpcError:
        """Create an INVALID_REQUEST error."""
        return RpcError(ErrorCode.INVALID_REQUEST, message, data)

    @staticmethod
    def method_not_found(message: str, data: Any | None = None) -> RpcError:
        """Create a METHOD_NOT_FOUND error."""
        return RpcError(ErrorCode.METHOD_NOT_FOUND, message, data)

    @staticmethod
    def invalid_params(message: str, data: Any | None = None) -> RpcError:
        """Create an INVALID_PARAMS error."""
        return RpcError(ErrorCode.INVALID_PARAMS, message, data)

    @staticmethod
    def internal(message: str, data: Any | None = None) -> RpcError:
        """Create an INTERNAL error."""
        return RpcError(ErrorCode.INTERNAL, message, data)

    @staticmethod
    def timeout(message: str, data: Any | None = None) -> RpcError:
        """Create a TIMEOUT error."""
        return RpcError(ErrorCode.TIMEOUT, message, data)

    @staticmethod
    def connection_closed(message: str, data: Any | None = None) -> RpcError:
        """Create a CONNECTION_CLOSED error."""
        return RpcError(ErrorCode.CONNECTION_CLOSED, message, data)
