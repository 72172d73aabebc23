"""
=============================================================================
TRANSPORT RUNTIME
=============================================================================

Thin functions over the socket API. Each one does a single socket step,
maps OS failures to the transport error taxonomy, and keeps the
Connection handle's bookkeeping (state, counters, activity) correct.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                      CLIENT SIDE                                     │
    ├─────────────────────────────────────────────────────────────────────┤
    │   resolve("example.com")        → Endpoint("93.184.216.34", 80)     │
    │   create_connection()           → Connection (NEW)                   │
    │   connect(conn, endpoint)       → Connection (OPEN)                  │
    │   send(conn, sender)            → bytes written                      │
    │   shutdown_output(conn)         → Connection (HALF_CLOSED)           │
    │   receive_loop_blocking(conn, receiver)                              │
    │   close(conn)                   → Connection (CLOSED)                │
    ├─────────────────────────────────────────────────────────────────────┤
    │                      SERVER SIDE                                     │
    ├─────────────────────────────────────────────────────────────────────┤
    │   create_listener(port)         → Connection (LISTENING)             │
    │   SocketServer(listener, backlog).start(factory)   (socket_server)   │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
THE RECEIVE LOOP
=============================================================================

    buffer = bytearray(2048)     ← one buffer per loop, reused every read
    while keep_reading:
        n = recv_into(buffer)
        receiver.on_packet_received()
        if n == 0:  keep_reading = receiver.on_end_of_stream()
        else:       keep_reading = receiver.interpret_bytes(buffer[:n])

2048 is the closest power of two above the common 1500 byte Ethernet MTU,
so one segment always fits in one read.

The receiver sees an explicit, length-bounded view of exactly the bytes
that arrived. Nothing is assumed about the data being text.
=============================================================================
"""

import socket
import logging
import threading
from typing import Optional, Union

from .connection import Connection, ConnectionState, Endpoint
from .contracts import DataReceiver, DataSender
from .errors import (
    AddressResolutionError,
    ConnectError,
    ReceiveError,
    ResourceExhaustedError,
    SendError,
    TransportError,
    bind_error_for,
)


logger = logging.getLogger(__name__)


RECEIVE_BUFFER_SIZE = 2048


# =============================================================================
# LIFECYCLE
# =============================================================================

_lifecycle_lock = threading.Lock()
_initialized = False


def initialize():
    """
    Prepare the networking subsystem. Safe to call more than once.

    Python's socket module needs no explicit startup on any platform
    (it performs WSAStartup itself on Windows), so this only records that
    the process is ready to open sockets.
    """
    global _initialized
    with _lifecycle_lock:
        if not _initialized:
            _initialized = True
            logger.debug("Transport initialized")


def clean():
    """Tear down the networking subsystem. Safe to call more than once."""
    global _initialized
    with _lifecycle_lock:
        if _initialized:
            _initialized = False
            logger.debug("Transport cleaned up")


def is_initialized() -> bool:
    """Check whether initialize() has run without a matching clean()."""
    return _initialized


# =============================================================================
# ADDRESSES
# =============================================================================

def resolve(host: str, service: Union[str, int] = "http") -> Endpoint:
    """
    Resolve a host name to a connectable IPv4 endpoint.

    Args:
        host: Host name or dotted-quad address.
        service: Service name ("http") or port number.

    Returns:
        The first IPv4 TCP endpoint returned by getaddrinfo().

    Raises:
        AddressResolutionError: If the name does not resolve.
    """
    try:
        infos = socket.getaddrinfo(
            host, service, socket.AF_INET, socket.SOCK_STREAM, socket.IPPROTO_TCP
        )
    except (OSError, UnicodeError) as e:
        raise AddressResolutionError(
            f"Cannot resolve {host!r} ({service}): {e}",
            errno=getattr(e, "errno", None),
        ) from e

    if not infos:
        raise AddressResolutionError(f"No IPv4 address for {host!r}")

    ip, port = infos[0][4][:2]
    return Endpoint(ip, port)


def ip_endpoint(ip: str, port: int) -> Endpoint:
    """
    Build an endpoint from a literal IPv4 address, without any lookup.

    Raises:
        AddressResolutionError: If ip is not a valid IPv4 address or the
                                port is out of range.
    """
    try:
        socket.inet_pton(socket.AF_INET, ip)
    except OSError as e:
        raise AddressResolutionError(f"Invalid IPv4 address {ip!r}") from e

    if not 0 <= port <= 65535:
        raise AddressResolutionError(f"Invalid port {port}")

    return Endpoint(ip, port)


# =============================================================================
# SOCKETS
# =============================================================================

def create_connection() -> Connection:
    """
    Allocate a new, unconnected TCP socket.

    Raises:
        ResourceExhaustedError: If the OS cannot allocate a socket.
    """
    try:
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM, socket.IPPROTO_TCP)
    except OSError as e:
        raise ResourceExhaustedError.from_os_error("Cannot allocate socket", e) from e

    # Relayed chunks should leave immediately, not wait for Nagle batching
    sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)

    return Connection(socket=sock)


def create_listener(port: int, host: str = "0.0.0.0") -> Connection:
    """
    Allocate a socket bound to (host, port).

    The socket is bound but not yet listening; the accept loop calls
    listen() with its backlog. Pass port=0 to let the OS pick a free port
    (the chosen one is in the returned handle's address).

    Raises:
        ResourceExhaustedError: If the OS cannot allocate a socket.
        AddressInUseError: If the port is taken.
        PermissionDeniedError: If the port is privileged.
    """
    conn = create_connection()

    # Restarting the proxy must not wait for TIME_WAIT to expire
    conn.socket.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)

    try:
        conn.socket.bind((host, port))
    except OSError as e:
        conn.close()
        raise bind_error_for(e, (host, port)) from e

    conn.address = Endpoint(*conn.socket.getsockname()[:2])
    conn.state = ConnectionState.LISTENING
    logger.debug(f"[{conn.id}] Listener bound to {conn.address}")
    return conn


def close(conn: Connection):
    """
    Release a connection. Call at most once per handle.

    Raises:
        ConnectionClosedError: If the handle was already closed.
    """
    conn.close()


def connect(conn: Connection, target: Endpoint):
    """
    Connect a fresh socket to target.

    Raises:
        ConnectError: If the peer refuses, is unreachable, or times out.
        ConnectionClosedError: If the handle was already closed.
    """
    conn.ensure_open()
    try:
        conn.socket.connect((target.host, target.port))
    except OSError as e:
        raise ConnectError.from_os_error(
            f"[{conn.id}] Cannot connect to {target}", e
        ) from e

    conn.address = target
    conn.state = ConnectionState.OPEN
    conn.touch()
    logger.debug(f"[{conn.id}] Connected to {target}")


def shutdown_output(conn: Connection):
    """
    Half-close the write side so the peer sees end-of-request.

    Raises:
        SendError: If the socket cannot be shut down (e.g. not connected).
        ConnectionClosedError: If the handle was already closed.
    """
    try:
        conn.shutdown_output()
    except OSError as e:
        raise SendError.from_os_error(f"[{conn.id}] Cannot shut down output", e) from e


def send(conn: Connection, sender: DataSender) -> int:
    """
    Write everything the sender produces.

    sendall() keeps writing until the whole buffer is out or the socket
    fails, so a short write is never reported as success.

    Returns:
        Number of bytes written.

    Raises:
        SendError: On a broken or reset connection.
        ConnectionClosedError: If the handle was already closed.
    """
    conn.ensure_open()
    data = sender.to_bytes()

    try:
        conn.socket.sendall(data)
    except OSError as e:
        raise SendError.from_os_error(f"[{conn.id}] Send failed", e) from e

    size = memoryview(data).nbytes
    conn.bytes_sent += size
    conn.touch()
    return size


# =============================================================================
# RECEIVING
# =============================================================================

def receive_loop_blocking(
    conn: Connection,
    receiver: DataReceiver,
    cancel: Optional[threading.Event] = None,
):
    """
    Feed inbound data to receiver until it says stop.

    Runs on the calling thread. Ends when the receiver returns False from
    interpret_bytes() or on_end_of_stream(), or when cancel is set (checked
    before every read).

    Args:
        conn: An open connection.
        receiver: Consumer of the inbound bytes.
        cancel: Optional cancellation signal.

    Raises:
        ReceiveError: If recv() fails.
        ConnectionClosedError: If the connection is closed while the
                               receiver still wants data.
    """
    buffer = bytearray(RECEIVE_BUFFER_SIZE)
    view = memoryview(buffer)
    keep_reading = True

    while keep_reading:
        if cancel is not None and cancel.is_set():
            logger.debug(f"[{conn.id}] Receive loop cancelled")
            break

        conn.ensure_open()

        try:
            size = conn.socket.recv_into(buffer)
        except OSError as e:
            raise ReceiveError.from_os_error(f"[{conn.id}] Receive failed", e) from e

        conn.touch()
        receiver.on_packet_received()

        if size == 0:
            keep_reading = receiver.on_end_of_stream()
        else:
            conn.bytes_received += size
            keep_reading = receiver.interpret_bytes(view[:size].toreadonly())


def receive_loop_async(
    conn: Connection,
    receiver: DataReceiver,
    cancel: Optional[threading.Event] = None,
) -> threading.Thread:
    """
    Run receive_loop_blocking() on a new thread and return immediately.

    Transport failures on that thread are logged, not raised, since there
    is no caller left to raise them to.

    Returns:
        The started thread (join it to wait for the loop to finish).
    """
    thread = threading.Thread(
        target=_run_receive_loop,
        args=(conn, receiver, cancel),
        name=f"Receive-{conn.id}",
        daemon=True,
    )
    thread.start()
    return thread


def _run_receive_loop(conn, receiver, cancel):
    try:
        receive_loop_blocking(conn, receiver, cancel)
    except TransportError as e:
        logger.warning(f"[{conn.id}] {receiver.name} stopped: {e}")
