"""
=============================================================================
CONNECTION HANDLES
=============================================================================

A Connection is the handle every transport operation works on. It wraps
one OS socket plus the address of the peer on the other end, and tracks
where the socket is in its lifecycle so misuse is caught early instead of
surfacing as a confusing EBADF three calls later.

=============================================================================
ONE HANDLE, ONE CLOSE
=============================================================================

The OS close() primitive is NOT idempotent. Closing a descriptor twice can
close an unrelated socket that was given the same number in between:

    Thread A: close(fd=7)
    Thread B: accept() → gets fd=7 for a brand new client
    Thread A: close(fd=7)        ← closes Thread B's client!

So a Connection refuses a second close() with ConnectionClosedError, and
any send/receive on a closed handle fails the same way. Callers that are
unsure check `conn.closed` first.

=============================================================================
HALF-CLOSE
=============================================================================

TCP lets each direction be shut down independently:

    ┌─────────────────────────────────────────────────────────────────┐
    │                    shutdown(SHUT_WR)                             │
    ├─────────────────────────────────────────────────────────────────┤
    │                                                                  │
    │   Proxy                                 Upstream                 │
    │     │   GET / HTTP/1.1 ...  ─────────────► │                     │
    │     │   FIN  ─────────────────────────────► │  "request is over" │
    │     │                                       │                     │
    │     │ ◄───────────────────────  response   │  (read side open)  │
    │     │ ◄───────────────────────  FIN        │                     │
    │   close()                                                        │
    │                                                                  │
    └─────────────────────────────────────────────────────────────────┘

The proxy half-closes the upstream connection after forwarding a request
so the server knows nothing more is coming, while still reading the
response on the same socket.
=============================================================================
"""

import socket
import time
import logging
from enum import Enum
from dataclasses import dataclass, field
from typing import NamedTuple, Optional
import uuid

from .errors import ConnectionClosedError


logger = logging.getLogger(__name__)


class Endpoint(NamedTuple):
    """A resolved IPv4 address and port."""
    host: str
    port: int

    def __str__(self) -> str:
        return f"{self.host}:{self.port}"


class ConnectionState(Enum):
    """
    Connection lifecycle states.
    """
    NEW = "new"                  # Socket allocated, not connected yet
    LISTENING = "listening"      # Bound listener socket
    OPEN = "open"                # Connected (outbound) or accepted (inbound)
    HALF_CLOSED = "half_closed"  # Our write side is shut down
    CLOSED = "closed"            # Socket released


@dataclass(eq=False)
class Connection:
    """
    Handle for one TCP endpoint.

    Handles compare and hash by identity, so live connections can be
    tracked in a set.

    Attributes:
        socket: The underlying socket.
        address: Remote endpoint (None until connected or for listeners,
                 where it holds the bound local address instead).
        id: Short unique identifier used as the log prefix.
        state: Current lifecycle state.
        created_at: Timestamp when the handle was created.
        bytes_sent: Total bytes written through transport.send().
        bytes_received: Total bytes read by the receive loop.
    """

    socket: socket.socket
    address: Optional[Endpoint] = None

    id: str = field(default_factory=lambda: str(uuid.uuid4())[:8])
    state: ConnectionState = ConnectionState.NEW
    created_at: float = field(default_factory=time.time)
    last_activity: float = field(default_factory=time.time)
    bytes_sent: int = 0
    bytes_received: int = 0

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def remote_ip(self) -> Optional[str]:
        """Get the peer IP address."""
        return self.address.host if self.address else None

    @property
    def remote_port(self) -> Optional[int]:
        """Get the peer port."""
        return self.address.port if self.address else None

    @property
    def closed(self) -> bool:
        """True once close() has released the socket."""
        return self.state == ConnectionState.CLOSED

    @property
    def age(self) -> float:
        """Get connection age in seconds."""
        return time.time() - self.created_at

    @property
    def idle_time(self) -> float:
        """Get time since last activity in seconds."""
        return time.time() - self.last_activity

    def ensure_open(self):
        """Raise ConnectionClosedError if the handle was already closed."""
        if self.closed:
            raise ConnectionClosedError(f"[{self.id}] Connection already closed")

    def touch(self):
        """Record I/O activity."""
        self.last_activity = time.time()

    # =========================================================================
    # SHUTDOWN AND CLOSE
    # =========================================================================

    def shutdown_output(self):
        """
        Half-close: stop sending, keep receiving.

        Raises:
            ConnectionClosedError: If the handle was already closed.
            OSError: If the socket is not connected.
        """
        self.ensure_open()
        self.socket.shutdown(socket.SHUT_WR)
        self.state = ConnectionState.HALF_CLOSED

    def abort(self):
        """
        Shut down both directions without releasing the descriptor.

        A thread blocked in recv() on this socket wakes up with a zero-byte
        read. Used by the server to unblock workers during shutdown; the
        owning worker still performs the one close().
        """
        if self.closed:
            return
        try:
            self.socket.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass  # Peer already gone or never connected

    def close(self):
        """
        Release the socket.

        Raises:
            ConnectionClosedError: On a second close of the same handle.
        """
        self.ensure_open()
        self.state = ConnectionState.CLOSED
        try:
            self.socket.close()
        finally:
            logger.debug(
                f"[{self.id}] Connection closed "
                f"(sent={self.bytes_sent}, received={self.bytes_received}, "
                f"age={self.age:.3f}s)"
            )

    # =========================================================================
    # CONTEXT MANAGER
    # =========================================================================

    def __enter__(self):
        """
        Allows `with` blocks that close the handle on exit:

            with transport.create_connection() as conn:
                transport.connect(conn, endpoint)
                ...
            # closed here, unless the body already closed it
        """
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if not self.closed:
            self.close()
        return False
