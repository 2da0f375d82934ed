"""IPC bridge - Electron-style IPC over WebSocket.

This module lets a browser-hosted client and a Python server exchange
request/response calls and fire-and-forget notifications over one
persistent JSON-RPC 2.0 WebSocket connection, with transparent
reconnection and message queuing on the client side.
"""

from ipcbridge.client import Client, ClientConfig, ConnectionState
from ipcbridge.error import ErrorCode, RpcError
from ipcbridge.ids import ClientIdGenerator, IdAllocator
from ipcbridge.registry import MethodRegistry
from ipcbridge.server import Server, ServerConfig
from ipcbridge.sessions import Session, SessionTable
from ipcbridge.types import IpcEvent

__version__ = "0.1.0"

__all__ = [
    # Client
    "Client",
    "ClientConfig",
    "ConnectionState",
    # Server
    "Server",
    "ServerConfig",
    "MethodRegistry",
    "Session",
    "SessionTable",
    # Core types
    "IpcEvent",
    "IdAllocator",
    "ClientIdGenerator",
    # Errors
    "RpcError",
    "ErrorCode",
]
