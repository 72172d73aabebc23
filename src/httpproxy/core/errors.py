"""
=============================================================================
TRANSPORT ERRORS
=============================================================================

Every fallible transport call either returns its value or raises one of
the exceptions below. Nothing is swallowed: the caller decides whether a
failure ends one session or is reported further up.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                        ERROR TAXONOMY                                │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   TransportError                                                     │
    │   ├── AddressResolutionError   getaddrinfo() found nothing usable   │
    │   ├── ResourceExhaustedError   socket() could not allocate          │
    │   ├── BindError                bind()/listen() failed               │
    │   │   ├── AddressInUseError    EADDRINUSE                           │
    │   │   └── PermissionDeniedError  EACCES (ports < 1024 need root)    │
    │   ├── ConnectError             refused / unreachable / timed out    │
    │   ├── SendError                broken pipe, reset, short write      │
    │   ├── ReceiveError             recv() failed                        │
    │   └── ConnectionClosedError    handle used after close()            │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

Failures are local to one connection. The accept loop never dies because
one client or one upstream misbehaved.
=============================================================================
"""

import errno as _errno
from typing import Optional


class TransportError(Exception):
    """
    Base class for all socket-level failures.

    Carries the OS errno when one is available so callers can tell
    "connection refused" from "host unreachable" without parsing strings.
    """

    def __init__(self, message: str, errno: Optional[int] = None):
        super().__init__(message)
        self.errno = errno

    @classmethod
    def from_os_error(cls, message: str, error: OSError) -> "TransportError":
        """Build the exception from an OSError, keeping its errno."""
        return cls(f"{message}: {error}", errno=error.errno)


class AddressResolutionError(TransportError):
    """Host name could not be resolved to an IPv4 endpoint."""


class ResourceExhaustedError(TransportError):
    """The OS refused to allocate a new socket (EMFILE, ENFILE, ENOBUFS...)."""


class BindError(TransportError):
    """Binding or listening on a local address failed."""


class AddressInUseError(BindError):
    """Another socket already owns the requested address."""


class PermissionDeniedError(BindError):
    """Not allowed to bind the requested port."""


class ConnectError(TransportError):
    """Outbound connection could not be established."""


class SendError(TransportError):
    """Data could not be written to the connection."""


class ReceiveError(TransportError):
    """Data could not be read from the connection."""


class ConnectionClosedError(TransportError):
    """The connection handle was already closed."""


def bind_error_for(error: OSError, address: tuple) -> BindError:
    """
    Map a bind()/listen() OSError to the matching BindError subclass.

    Args:
        error: The OSError raised by the socket call.
        address: The (host, port) we tried to bind, for the message.
    """
    message = f"Failed to bind to {address[0]}:{address[1]}"
    if error.errno == _errno.EADDRINUSE:
        return AddressInUseError.from_os_error(message, error)
    if error.errno in (_errno.EACCES, _errno.EPERM):
        return PermissionDeniedError.from_os_error(message, error)
    return BindError.from_os_error(message, error)
