"""
=============================================================================
CORE TRANSPORT COMPONENTS
=============================================================================

The low-level networking layer. It knows nothing about HTTP: it moves
bytes between sockets and protocol-specific receivers.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                         SOCKET SERVER                                │
    │  • Listens on the bound socket, accepts forever                     │
    │  • One worker thread per accepted connection                        │
    │  • Shared cancellation signal for graceful shutdown                 │
    └─────────────────────────────────────────────────────────────────────┘
                                    │
                                    │ ReceiverFactory.make_receiver()
                                    ▼
    ┌─────────────────────────────────────────────────────────────────────┐
    │                         TRANSPORT                                    │
    │  • connect / send / shutdown_output / close                         │
    │  • receive loop: 2048-byte reads fed to a DataReceiver              │
    │  • OS failures mapped to TransportError subclasses                  │
    └─────────────────────────────────────────────────────────────────────┘
                                    │
                                    ▼
    ┌─────────────────────────────────────────────────────────────────────┐
    │                         CONNECTION                                   │
    │  • Socket + peer address + lifecycle state                          │
    │  • Exactly one close per handle                                     │
    └─────────────────────────────────────────────────────────────────────┘
=============================================================================
"""

from .connection import Connection, ConnectionState, Endpoint
from .contracts import DataReceiver, DataSender, ReceiverContext, ReceiverFactory
from .errors import (
    AddressInUseError,
    AddressResolutionError,
    BindError,
    ConnectError,
    ConnectionClosedError,
    PermissionDeniedError,
    ReceiveError,
    ResourceExhaustedError,
    SendError,
    TransportError,
)
from .socket_server import SocketServer, serve
from .workers import WorkerGroup

__all__ = [
    "Connection",
    "ConnectionState",
    "Endpoint",
    "DataReceiver",
    "DataSender",
    "ReceiverContext",
    "ReceiverFactory",
    "SocketServer",
    "serve",
    "WorkerGroup",
    "TransportError",
    "AddressResolutionError",
    "ResourceExhaustedError",
    "BindError",
    "AddressInUseError",
    "PermissionDeniedError",
    "ConnectError",
    "SendError",
    "ReceiveError",
    "ConnectionClosedError",
]
