"""
=============================================================================
PROXY CONFIGURATION
=============================================================================

Centralized configuration for the forwarding proxy.

=============================================================================
CONFIGURATION SOURCES
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    CONFIGURATION HIERARCHY                          │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   Priority (highest to lowest):                                     │
    │                                                                      │
    │   1. Command-line arguments                                         │
    │      └── python -m httpproxy --port 8080                           │
    │                                                                      │
    │   2. Environment variables                                          │
    │      └── PROXY_PORT=8080 python -m httpproxy                       │
    │                                                                      │
    │   3. Default values (in this dataclass)                            │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

With no flags and no environment, the proxy listens on port 80 on every
interface, like a conventional forwarding proxy.
=============================================================================
"""

import os
import socket
from dataclasses import dataclass

from .proxy.handler import DEFAULT_MAX_REQUEST_SIZE


LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
LOG_FORMATS = ("text", "json")


@dataclass
class ProxyConfig:
    """
    Configuration for the proxy server.

    Development:
        ProxyConfig(
            host="127.0.0.1",    # Localhost only
            port=8080,           # High port (no sudo)
            log_level="DEBUG",
        )

    Production:
        ProxyConfig(
            host="0.0.0.0",      # All interfaces
            port=80,             # Standard HTTP port (requires root)
            log_format="json",   # For log aggregators
        )
    """

    # ─────────────────────────────────────────────────────────────────────
    # NETWORK SETTINGS
    # ─────────────────────────────────────────────────────────────────────

    host: str = "0.0.0.0"
    """
    The IP address to bind to.
    - "0.0.0.0" - All network interfaces
    - "127.0.0.1" - Localhost only
    """

    port: int = 80
    """
    The port number to listen on. 0 lets the OS choose a free port.
    """

    backlog: int = socket.SOMAXCONN
    """
    Maximum number of queued, not yet accepted connections.
    """

    # ─────────────────────────────────────────────────────────────────────
    # PROXY SETTINGS
    # ─────────────────────────────────────────────────────────────────────

    max_request_size: int = DEFAULT_MAX_REQUEST_SIZE
    """
    Largest request header the proxy will buffer while waiting for the
    terminating blank line. Larger headers end the session.
    """

    shutdown_timeout: float = 5.0
    """
    Seconds to wait for in-flight sessions when stopping.
    """

    # ─────────────────────────────────────────────────────────────────────
    # LOGGING
    # ─────────────────────────────────────────────────────────────────────

    log_level: str = "INFO"
    """
    Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
    """

    log_format: str = "text"
    """
    Access log format: 'json' or 'text'.
    """

    @classmethod
    def from_env(cls) -> "ProxyConfig":
        """
        Create configuration from environment variables.

        PROXY_HOST              Bind address (default: 0.0.0.0)
        PROXY_PORT              Listen port (default: 80)
        PROXY_BACKLOG           Accept queue depth (default: SOMAXCONN)
        PROXY_MAX_REQUEST_SIZE  Header size limit in bytes (default: 65536)
        PROXY_SHUTDOWN_TIMEOUT  Seconds to drain sessions (default: 5)
        PROXY_LOG_LEVEL         Logging level (default: INFO)
        PROXY_LOG_FORMAT        text or json (default: text)
        """
        return cls(
            host=os.getenv("PROXY_HOST", "0.0.0.0"),
            port=int(os.getenv("PROXY_PORT", "80")),
            backlog=int(os.getenv("PROXY_BACKLOG", str(socket.SOMAXCONN))),
            max_request_size=int(
                os.getenv("PROXY_MAX_REQUEST_SIZE", str(DEFAULT_MAX_REQUEST_SIZE))
            ),
            shutdown_timeout=float(os.getenv("PROXY_SHUTDOWN_TIMEOUT", "5")),
            log_level=os.getenv("PROXY_LOG_LEVEL", "INFO"),
            log_format=os.getenv("PROXY_LOG_FORMAT", "text"),
        )

    def validate(self) -> None:
        """
        Validate configuration values at startup (fail fast).

        Raises:
            ValueError: On the first invalid value.
        """
        if not 0 <= self.port < 65536:
            raise ValueError(f"Invalid port: {self.port}. Must be 0-65535.")

        if self.backlog < 1:
            raise ValueError("backlog must be >= 1")

        if self.max_request_size < 1024:
            raise ValueError("max_request_size must be >= 1024")

        if self.shutdown_timeout <= 0:
            raise ValueError("shutdown_timeout must be > 0")

        if self.log_level.upper() not in LOG_LEVELS:
            raise ValueError(f"Invalid log_level: {self.log_level}")

        if self.log_format not in LOG_FORMATS:
            raise ValueError(f"Invalid log_format: {self.log_format}. Use 'text' or 'json'.")
