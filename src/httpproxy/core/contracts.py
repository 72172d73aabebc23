"""
=============================================================================
CAPABILITY CONTRACTS
=============================================================================

The transport layer never knows what protocol it is carrying. It talks to
three small interfaces instead:

    ┌─────────────────────────────────────────────────────────────────────┐
    │                                                                      │
    │   DataSender        "what bytes should I put on the wire?"          │
    │       └── to_bytes()                                                 │
    │                                                                      │
    │   DataReceiver      "here are the bytes that just arrived"          │
    │       ├── on_packet_received()     every read attempt (hook)        │
    │       ├── interpret_bytes(view)    → keep reading?                  │
    │       └── on_end_of_stream()       → keep reading after EOF?        │
    │                                                                      │
    │   ReceiverFactory   "a client connected, who handles it?"           │
    │       └── make_receiver(context)  → DataReceiver                    │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

The boolean results of interpret_bytes() and on_end_of_stream() are the
ONLY way a receive loop is told to stop. A protocol handler returns False
from interpret_bytes() to say "I'm done, I've already acted on this data",
even if more bytes might be pending.

=============================================================================
BYTE VIEWS ARE BORROWED
=============================================================================

interpret_bytes() receives a memoryview over the receive loop's own buffer.
That buffer is reused for the next read, so the view is only valid for the
duration of the call:

    def interpret_bytes(self, data):
        self._kept = data          # WRONG: overwritten by the next read
        self._kept = bytes(data)   # RIGHT: copy out what you keep

Receivers run on worker threads. Each instance is owned by the one worker
that created it; anything shared between receivers must be thread-safe.
=============================================================================
"""

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, Union

from .connection import Connection


# Anything socket.sendall() accepts
Bytes = Union[bytes, bytearray, memoryview]


class DataSender(ABC):
    """
    Produces the bytes for one send operation.

    The transport does not retry, so to_bytes() may be called exactly once
    per send and must not depend on being called again. The returned object
    must stay valid until send() returns.
    """

    @abstractmethod
    def to_bytes(self) -> Bytes:
        """Return the bytes to transmit."""
        pass


class DataReceiver(ABC):
    """
    Consumes inbound data for one connection.

    The receive loop calls, for every read:

        on_packet_received()
        if read returned 0 bytes:   keep = on_end_of_stream()
        else:                       keep = interpret_bytes(view)
    """

    def on_packet_received(self) -> None:
        """Hook fired on every completed read attempt. No-op by default."""

    @abstractmethod
    def interpret_bytes(self, data: memoryview) -> bool:
        """
        Handle a chunk of inbound bytes.

        Args:
            data: Read-only view of the filled part of the receive buffer.
                  Valid only during this call.

        Returns:
            True to keep reading, False to end the receive loop.
        """
        pass

    @abstractmethod
    def on_end_of_stream(self) -> bool:
        """
        The peer shut down its write side (a read returned zero bytes).

        Returns:
            True to keep reading, False to end the receive loop.
        """
        pass

    @property
    def name(self) -> str:
        """Get the receiver name for logging."""
        return self.__class__.__name__


def _ignore(conn: Connection) -> None:
    pass


@dataclass
class ReceiverContext:
    """
    Everything a factory gets to know about a newly accepted connection.

    Attributes:
        connection: The accepted client connection.
        cancel: Shared cancellation signal. Set when the server is shutting
                down; receive loops stop at their next read.
        track: Registers an extra connection the receiver opens (an
               upstream, say) so shutdown can abort reads blocked on it.
        untrack: Removes a connection registered with track().
    """
    connection: Connection
    cancel: threading.Event = field(default_factory=threading.Event)
    track: Callable[[Connection], None] = _ignore
    untrack: Callable[[Connection], None] = _ignore


class ReceiverFactory(ABC):
    """Builds one DataReceiver per accepted connection."""

    @abstractmethod
    def make_receiver(self, context: ReceiverContext) -> DataReceiver:
        """Create the receiver for this connection."""
        pass
