"""
=============================================================================
ACCEPT LOOP
=============================================================================

The SocketServer owns a bound listener, accepts connections forever, and
hands each one to its own worker thread. The accept call is the only
thing that runs on the serving thread, so a slow or stuck client can
never delay the next accept.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                      SocketServer.start(factory)                     │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   listen(backlog)                                                    │
    │        │                                                             │
    │        ▼                                                             │
    │   while not cancelled:                                               │
    │        accept()  ───────► Connection(socket, peer address)           │
    │                                 │                                    │
    │                                 ▼                                    │
    │                     spawn worker thread:                             │
    │                        receiver = factory.make_receiver(context)     │
    │                        receive_loop_blocking(conn, receiver)         │
    │                        close(conn) if the receiver didn't            │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
CANCELLATION
=============================================================================

One threading.Event is shared by the accept loop and every connection:

    shutdown()
      └─► cancel.set()
            ├─► accept loop notices within ACCEPT_POLL_INTERVAL
            ├─► every receive loop stops before its next read
            └─► live connections are shut down (SHUT_RDWR) so reads
                blocked right now return immediately

"Live connections" are the accepted clients plus anything a receiver
registered through context.track(), such as the upstream socket a proxy
session is relaying from.

The listening socket has a short timeout purely so the accept loop can
poll the event. Client connections are fully blocking.

=============================================================================
SIGNAL HANDLING
=============================================================================

When serving on the main thread, SIGINT (Ctrl+C) and SIGTERM (docker stop,
systemd stop, kill) trigger shutdown() instead of killing the process
mid-relay. The previous handlers are restored when the server stops.
Python only allows installing signal handlers from the main thread, so a
server started with start_background() relies on shutdown() instead.
=============================================================================
"""

import socket
import signal
import logging
import threading
from typing import Optional

from . import transport
from .connection import Connection, ConnectionState, Endpoint
from .contracts import ReceiverContext, ReceiverFactory
from .errors import TransportError, bind_error_for
from .workers import WorkerGroup


logger = logging.getLogger(__name__)


ACCEPT_POLL_INTERVAL = 1.0

# accept() failures (EMFILE, ENOBUFS...) back off exponentially
ACCEPT_BACKOFF_MIN = 0.05
ACCEPT_BACKOFF_MAX = 1.0


class SocketServer:
    """
    Accept loop with one worker thread per connection.

    A SocketServer serves once: after shutdown() it cannot be restarted.

    Usage:
        listener = transport.create_listener(8080)
        server = SocketServer(listener, backlog=128)
        server.start(MyReceiverFactory())   # Blocks until shutdown()
    """

    def __init__(
        self,
        listener: Connection,
        backlog: int = socket.SOMAXCONN,
        shutdown_timeout: Optional[float] = 5.0,
    ):
        """
        Args:
            listener: A bound socket from transport.create_listener().
                      The server takes ownership and closes it on stop.
            backlog: Depth of the kernel's pending-connection queue.
            shutdown_timeout: How long to wait for live connections to
                              finish when stopping. None = forever.
        """
        self.listener = listener
        self.backlog = backlog
        self.shutdown_timeout = shutdown_timeout

        self._running = False

        # The shared cancellation signal handed to every receiver
        self._cancel = threading.Event()
        self._stopped = threading.Event()

        self._workers = WorkerGroup()

        # Live clients and tracked upstreams, so shutdown() can unblock their reads
        self._connections: set[Connection] = set()
        self._lock = threading.Lock()

        self._original_handlers: dict = {}

    @property
    def is_running(self) -> bool:
        """Check if the accept loop is running."""
        return self._running

    @property
    def address(self) -> Optional[Endpoint]:
        """Get the listener's bound address."""
        return self.listener.address

    @property
    def cancel_event(self) -> threading.Event:
        """The cancellation signal shared with every connection."""
        return self._cancel

    @property
    def workers(self) -> WorkerGroup:
        return self._workers

    @property
    def active_connections(self) -> int:
        """Get count of tracked connections (clients and their upstreams)."""
        with self._lock:
            return len(self._connections)

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def start(self, factory: ReceiverFactory):
        """
        Listen and accept connections until shutdown() is called.

        Args:
            factory: Builds the receiver for each accepted connection.

        Raises:
            BindError: If listen() fails.
            ConnectionClosedError: If the listener was already closed.
        """
        self._listen()
        self._serve(factory)

    def start_background(self, factory: ReceiverFactory) -> threading.Thread:
        """
        Listen, then run the accept loop on a new thread.

        The listener is already accepting when this returns, so clients
        may connect immediately.

        Returns:
            The serving thread.

        Raises:
            BindError: If listen() fails.
        """
        self._listen()
        thread = threading.Thread(
            target=self._serve,
            args=(factory,),
            name="SocketServer",
            daemon=True,
        )
        thread.start()
        return thread

    def shutdown(self):
        """
        Initiate graceful shutdown.

        Safe to call from a signal handler, another thread, or more than
        once.
        """
        if not self._cancel.is_set():
            logger.info("Shutting down socket server...")
        self._running = False
        self._cancel.set()

        with self._lock:
            connections = list(self._connections)
        for conn in connections:
            logger.debug(f"[{conn.id}] Aborting (idle {conn.idle_time:.1f}s)")
            conn.abort()

    def wait_for_shutdown(self, timeout: Optional[float] = None) -> bool:
        """
        Wait until the server has fully stopped.

        Returns:
            True if the server stopped, False on timeout.
        """
        return self._stopped.wait(timeout)

    # =========================================================================
    # CONNECTION TRACKING
    # =========================================================================

    def track(self, conn: Connection):
        """
        Register a live connection so shutdown() can abort it.

        A connection tracked after shutdown() has started is aborted
        right away.
        """
        with self._lock:
            self._connections.add(conn)
        if self._cancel.is_set():
            conn.abort()

    def untrack(self, conn: Connection):
        """Forget a connection registered with track()."""
        with self._lock:
            self._connections.discard(conn)

    # =========================================================================
    # ACCEPT LOOP
    # =========================================================================

    def _listen(self):
        self.listener.ensure_open()

        try:
            self.listener.socket.listen(self.backlog)
        except OSError as e:
            self.listener.close()
            raise bind_error_for(e, self.address) from e

        self.listener.socket.settimeout(ACCEPT_POLL_INTERVAL)
        self._running = True
        logger.info(f"Listening on {self.address} (backlog={self.backlog})")

    def _serve(self, factory: ReceiverFactory):
        if threading.current_thread() is threading.main_thread():
            self._setup_signals()

        try:
            self._accept_loop(factory)
        finally:
            self._cleanup()

    def _accept_loop(self, factory: ReceiverFactory):
        backoff = 0.0

        while not self._cancel.is_set():
            try:
                client_socket, client_address = self.listener.socket.accept()
            except socket.timeout:
                # Normal: lets us re-check the cancellation signal
                continue
            except OSError as e:
                if self._cancel.is_set() or self.listener.closed:
                    break
                backoff = min(max(backoff * 2, ACCEPT_BACKOFF_MIN), ACCEPT_BACKOFF_MAX)
                logger.error(f"Accept error: {e}, retrying in {backoff:.2f}s")
                self._cancel.wait(backoff)
                continue

            backoff = 0.0
            self._dispatch(factory, client_socket, client_address)

    def _dispatch(self, factory: ReceiverFactory, client_socket: socket.socket, client_address):
        """
        Wrap an accepted socket and hand it to a new worker.

        A failure here costs only this client: its socket is closed and
        the accept loop carries on.
        """
        conn = None
        try:
            client_socket.setblocking(True)
            conn = Connection(
                socket=client_socket,
                address=Endpoint(*client_address[:2]),
                state=ConnectionState.OPEN,
            )
            logger.debug(f"[{conn.id}] Accepted connection from {conn.address}")

            context = ReceiverContext(
                connection=conn,
                cancel=self._cancel,
                track=self.track,
                untrack=self.untrack,
            )
            self.track(conn)

            self._workers.spawn(
                self._serve_connection,
                args=(factory, context),
                name=f"Conn-{conn.id}",
            )
        except Exception as e:
            if conn is not None:
                self._release(conn)
            else:
                client_socket.close()
            if not self._cancel.is_set():
                logger.exception(f"Failed to set up connection from {client_address}: {e}")

    def _serve_connection(self, factory: ReceiverFactory, context: ReceiverContext):
        """
        Worker body: build the receiver and run the receive loop.

        Failures end this connection only.
        """
        conn = context.connection
        try:
            receiver = factory.make_receiver(context)
            transport.receive_loop_blocking(conn, receiver, context.cancel)
        except TransportError as e:
            logger.warning(f"[{conn.id}] Connection error: {e}")
        except Exception as e:
            logger.exception(f"[{conn.id}] Unhandled error: {e}")
        finally:
            self._release(conn)

    def _release(self, conn: Connection):
        self.untrack(conn)
        if not conn.closed:
            conn.close()

    # =========================================================================
    # SIGNALS AND CLEANUP
    # =========================================================================

    def _setup_signals(self):
        """Install SIGTERM/SIGINT handlers that call shutdown()."""
        def shutdown_handler(signum, frame):
            signal_name = signal.Signals(signum).name
            logger.info(f"Received {signal_name}, initiating shutdown...")
            self.shutdown()

        self._original_handlers[signal.SIGTERM] = signal.signal(signal.SIGTERM, shutdown_handler)
        self._original_handlers[signal.SIGINT] = signal.signal(signal.SIGINT, shutdown_handler)

    def _restore_signals(self):
        """Restore original signal handlers."""
        for sig, handler in self._original_handlers.items():
            signal.signal(sig, handler)
        self._original_handlers.clear()

    def _cleanup(self):
        self._restore_signals()

        # The loop may also end because the listener went away
        self.shutdown()

        if not self.listener.closed:
            self.listener.close()

        self._workers.shutdown(timeout=self.shutdown_timeout)

        logger.info("Socket server stopped")
        self._stopped.set()


def serve(listener: Connection, backlog: int, factory: ReceiverFactory):
    """
    Accept connections on listener forever, one worker per connection.

    Blocks the calling thread. Equivalent to
    SocketServer(listener, backlog).start(factory).
    """
    SocketServer(listener, backlog).start(factory)
