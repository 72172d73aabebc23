"""
=============================================================================
HTTP PROXY RECEIVER
=============================================================================

One ProxyRequestReceiver serves one client connection. It is a small
state machine driven entirely by the client's receive loop:

    ┌─────────────────────────────────────────────────────────────────────┐
    │                     Proxy Session States                             │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   ACCUMULATING                                                       │
    │      │  interpret_bytes(): append, search for \r\n\r\n               │
    │      │     not found → stay, keep reading                            │
    │      │     found     ─────────────────────┐                          │
    │      │  on_end_of_stream() → DONE          │                         │
    │      │  header too large   → DONE          │                         │
    │                                            ▼                         │
    │   FORWARDING  (inside the same interpret_bytes() call)               │
    │      1. Host header  → "example.com[:port]"                          │
    │      2. resolve      → Endpoint                                      │
    │      3. create + connect upstream                                    │
    │      4. send the accumulated request, half-close upstream            │
    │      5. relay every upstream chunk to the client until EOF           │
    │      6. close upstream and client                                    │
    │                                            │                         │
    │                                            ▼                         │
    │   DONE    further bytes are ignored, the loop has ended              │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

FORWARDING is entered at most once per session, no matter what the client
sends afterwards. After it, interpret_bytes() returns False so the
client's receive loop ends: the client socket is already closed and the
session is over.

=============================================================================
FAILURES
=============================================================================

A missing Host header, an unresolvable host, a refused connection, or a
broken relay all end the session the same way: the failure is logged,
every connection the session opened is closed, the client gets no
response, and the receiver returns False. Nothing propagates to the
accept loop.
=============================================================================
"""

import logging
import threading
import time
from enum import Enum
from typing import Callable, Optional

from ..core import transport
from ..core.connection import Connection
from ..core.contracts import DataReceiver, ReceiverContext, ReceiverFactory
from ..core.errors import TransportError
from . import access_log
from .access_log import SessionLog, SessionOutcome
from .relay import BytesSender, ResponseRelayReceiver
from .request import (
    MalformedRequestError,
    extract_host,
    find_header_end,
    split_host_port,
)


logger = logging.getLogger(__name__)


DEFAULT_MAX_REQUEST_SIZE = 64 * 1024


class ProxyState(Enum):
    """Proxy session states."""
    ACCUMULATING = "accumulating"
    FORWARDING = "forwarding"
    DONE = "done"


class ProxyRequestReceiver(DataReceiver):
    """
    Receiver for the client side of a proxy session.

    Attributes:
        client: The accepted client connection. Owned by this receiver
                once forwarding starts; closed exactly once.
        state: Current ProxyState.
        request: Bytes accumulated from the client.
        host: Host header value, once extracted.
        upstream: The upstream connection, once created.
        relay: The response relay, once the upstream loop starts.
        outcome: How the session ended (None while running).
        error: The failure that ended the session, if any.
    """

    def __init__(
        self,
        client: Connection,
        cancel: Optional[threading.Event] = None,
        max_request_size: int = DEFAULT_MAX_REQUEST_SIZE,
        log_format: str = "text",
        track: Optional[Callable[[Connection], None]] = None,
        untrack: Optional[Callable[[Connection], None]] = None,
    ):
        self.client = client
        self.cancel = cancel
        self.max_request_size = max_request_size
        self.log_format = log_format
        self._track = track
        self._untrack = untrack

        self.state = ProxyState.ACCUMULATING
        self.request = bytearray()
        self.host: Optional[str] = None
        self.upstream: Optional[Connection] = None
        self.relay: Optional[ResponseRelayReceiver] = None
        self.outcome: Optional[SessionOutcome] = None
        self.error: Optional[Exception] = None

        self._searched = 0

    @property
    def bytes_relayed(self) -> int:
        """Response bytes sent back to the client."""
        return len(self.relay.response) if self.relay else 0

    # =========================================================================
    # DataReceiver
    # =========================================================================

    def interpret_bytes(self, data: memoryview) -> bool:
        if self.state is not ProxyState.ACCUMULATING:
            logger.debug(f"[{self.client.id}] Ignoring {len(data)} bytes after forwarding")
            return False

        self.request += data

        header_end = find_header_end(self.request, self._searched)
        self._searched = len(self.request)

        if header_end == -1:
            if len(self.request) > self.max_request_size:
                self._finish(
                    SessionOutcome.MALFORMED,
                    MalformedRequestError(
                        f"Request header exceeds {self.max_request_size} bytes"
                    ),
                )
                return False
            return True

        self.state = ProxyState.FORWARDING
        self.forward()
        return False

    def on_end_of_stream(self) -> bool:
        # The client closed its write side before finishing the header
        if self.state is ProxyState.ACCUMULATING:
            logger.debug(
                f"[{self.client.id}] Client closed after {len(self.request)} bytes "
                f"without a complete header"
            )
            self._finish(SessionOutcome.CLIENT_CLOSED)
        return False

    # =========================================================================
    # FORWARDING
    # =========================================================================

    def forward(self):
        """
        Send the accumulated request upstream and relay the response.

        Runs synchronously on the client's worker thread. Always ends the
        session: both connections are closed when this returns.

        The upstream connection is passed to track() while it is open, so
        a server shutdown can abort a relay blocked on a stalled upstream.
        """
        try:
            self.host = extract_host(self.request)
            host, port = split_host_port(self.host)

            target = transport.resolve(host, port or "http")
            logger.debug(f"[{self.client.id}] Forwarding to {self.host} ({target})")

            self.upstream = transport.create_connection()
            if self._track is not None:
                self._track(self.upstream)
            transport.connect(self.upstream, target)

            transport.send(self.upstream, BytesSender(bytes(self.request)))
            transport.shutdown_output(self.upstream)

            self.relay = ResponseRelayReceiver(self.client)
            transport.receive_loop_blocking(self.upstream, self.relay, self.cancel)

        except MalformedRequestError as e:
            self._finish(SessionOutcome.MALFORMED, e)
        except TransportError as e:
            self._finish(SessionOutcome.FAILED, e)
        else:
            if self.cancel is not None and self.cancel.is_set():
                self._finish(SessionOutcome.CANCELLED)
            else:
                self._finish(SessionOutcome.FORWARDED)

    def _finish(self, outcome: SessionOutcome, error: Optional[Exception] = None):
        self.state = ProxyState.DONE
        self.outcome = outcome
        self.error = error

        if error is not None:
            logger.warning(f"[{self.client.id}] {type(error).__name__}: {error}")

        bytes_up = self.upstream.bytes_sent if self.upstream else 0

        if self.upstream is not None and self._untrack is not None:
            self._untrack(self.upstream)

        for conn in (self.upstream, self.client):
            if conn is not None and not conn.closed:
                conn.close()

        access_log.emit(
            SessionLog(
                session_id=self.client.id,
                client_ip=self.client.remote_ip or "-",
                host=self.host or "-",
                outcome=outcome.value,
                bytes_up=bytes_up,
                bytes_down=self.bytes_relayed,
                duration_ms=self.client.age * 1000,
                timestamp=time.strftime("%d/%b/%Y:%H:%M:%S %z"),
                error=str(error) if error else None,
            ),
            self.log_format,
        )


class ProxyReceiverFactory(ReceiverFactory):
    """
    Builds a ProxyRequestReceiver for every accepted client.

    Usage:
        server = SocketServer(transport.create_listener(80))
        server.start(ProxyReceiverFactory())
    """

    def __init__(
        self,
        max_request_size: int = DEFAULT_MAX_REQUEST_SIZE,
        log_format: str = "text",
    ):
        self.max_request_size = max_request_size
        self.log_format = log_format

    def make_receiver(self, context: ReceiverContext) -> ProxyRequestReceiver:
        return ProxyRequestReceiver(
            context.connection,
            cancel=context.cancel,
            max_request_size=self.max_request_size,
            log_format=self.log_format,
            track=context.track,
            untrack=context.untrack,
        )
