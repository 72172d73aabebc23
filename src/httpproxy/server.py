"""
=============================================================================
PROXY SERVER
=============================================================================

Top-level orchestration: configuration, logging, transport lifecycle, and
the accept loop wired to the proxy receiver factory.

    ProxyServer.run()
        ├──► _setup_logging()
        ├──► transport.initialize()
        ├──► transport.create_listener(port, host)
        ├──► SocketServer(listener, backlog).start(ProxyReceiverFactory)
        │         (blocks until SIGINT / SIGTERM / shutdown())
        └──► transport.clean()
=============================================================================
"""

import logging
import threading
from typing import Optional

from .config import ProxyConfig
from .core import transport
from .core.connection import Endpoint
from .core.socket_server import SocketServer
from .proxy.handler import ProxyReceiverFactory


logger = logging.getLogger(__name__)


class ProxyServer:
    """
    Forwarding HTTP proxy.

    Usage:
        server = ProxyServer(ProxyConfig(port=8080))
        server.run()          # Blocks until Ctrl+C

        # Or in the background (tests, embedding):
        server.start()
        ...
        server.stop()
    """

    def __init__(self, config: Optional[ProxyConfig] = None):
        """
        Args:
            config: Proxy configuration. Uses defaults if not provided.
        """
        self.config = config or ProxyConfig()
        self.config.validate()  # Fail-fast on invalid config

        self.factory = ProxyReceiverFactory(
            max_request_size=self.config.max_request_size,
            log_format=self.config.log_format,
        )

        self._socket_server: Optional[SocketServer] = None
        self._thread: Optional[threading.Thread] = None

    @property
    def address(self) -> Optional[Endpoint]:
        """Bound address, available once the listener exists."""
        return self._socket_server.address if self._socket_server else None

    @property
    def socket_server(self) -> Optional[SocketServer]:
        return self._socket_server

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def run(self):
        """
        Start the proxy (blocking).

        Raises:
            BindError: If the listen address cannot be bound.
        """
        self._setup_logging()

        try:
            self._bind()
            self._socket_server.start(self.factory)
        except KeyboardInterrupt:
            logger.info("Received keyboard interrupt")
            if self._socket_server is not None:
                self._socket_server.shutdown()
        finally:
            transport.clean()
            logger.info("Proxy stopped")

    def start(self) -> Endpoint:
        """
        Bind and serve on a background thread.

        The listener is accepting by the time this returns.

        Returns:
            The bound address (useful with port=0).
        """
        self._bind()
        self._thread = self._socket_server.start_background(self.factory)
        return self.address

    def stop(self, timeout: Optional[float] = None):
        """Stop a server started with start() and wait for it."""
        if self._socket_server is None:
            return
        self._socket_server.shutdown()
        self._socket_server.wait_for_shutdown(timeout)
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        transport.clean()

    def _bind(self):
        transport.initialize()
        listener = transport.create_listener(self.config.port, self.config.host)
        self._socket_server = SocketServer(
            listener,
            backlog=self.config.backlog,
            shutdown_timeout=self.config.shutdown_timeout,
        )
        logger.info(f"Proxy bound to {listener.address}")

    def _setup_logging(self):
        """Configure logging based on config."""
        level = getattr(logging, self.config.log_level.upper(), logging.INFO)

        logging.basicConfig(
            level=level,
            format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

        logging.getLogger("httpproxy").setLevel(level)
