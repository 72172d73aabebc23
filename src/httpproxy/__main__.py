"""
=============================================================================
HTTP PROXY CLI ENTRY POINT
=============================================================================

    # Run with defaults (0.0.0.0:80, needs root on Unix)
    python -m httpproxy

    # Unprivileged port, localhost only
    python -m httpproxy --host 127.0.0.1 --port 8080

    # JSON access logs
    python -m httpproxy --log-format json

    # Then, from another terminal:
    curl -x http://127.0.0.1:8080 http://example.com/

Flags override environment variables (PROXY_*), which override defaults.
=============================================================================
"""

import argparse
import sys

from . import __version__
from .config import LOG_FORMATS, LOG_LEVELS, ProxyConfig
from .core.errors import BindError
from .server import ProxyServer


def main(argv=None):
    """
    Main CLI entry point.
    """
    try:
        defaults = ProxyConfig.from_env()
    except ValueError as e:
        print(f"Invalid environment configuration: {e}", file=sys.stderr)
        return 2

    parser = argparse.ArgumentParser(
        prog="httpproxy",
        description="Forwarding HTTP proxy with one thread per connection",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m httpproxy                              # 0.0.0.0:80
  python -m httpproxy --port 8080                  # Unprivileged port
  python -m httpproxy -H 127.0.0.1 -p 8080 -l DEBUG
        """
    )

    # ─────────────────────────────────────────────────────────────────────
    # NETWORK ARGUMENTS
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "--host", "-H",
        default=defaults.host,
        help=f"Host to bind to (default: {defaults.host})"
    )

    parser.add_argument(
        "--port", "-p",
        type=int,
        default=defaults.port,
        help=f"Port to listen on (default: {defaults.port})"
    )

    parser.add_argument(
        "--backlog", "-b",
        type=int,
        default=defaults.backlog,
        help=f"Pending connection queue depth (default: {defaults.backlog})"
    )

    # ─────────────────────────────────────────────────────────────────────
    # LOGGING ARGUMENTS
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "--log-level", "-l",
        type=str.upper,
        choices=LOG_LEVELS,
        default=defaults.log_level.upper(),
        help=f"Logging level (default: {defaults.log_level})"
    )

    parser.add_argument(
        "--log-format",
        choices=LOG_FORMATS,
        default=defaults.log_format,
        help=f"Access log format (default: {defaults.log_format})"
    )

    parser.add_argument(
        "--version", "-v",
        action="version",
        version=f"httpproxy {__version__}"
    )

    args = parser.parse_args(argv)

    config = ProxyConfig(
        host=args.host,
        port=args.port,
        backlog=args.backlog,
        max_request_size=defaults.max_request_size,
        shutdown_timeout=defaults.shutdown_timeout,
        log_level=args.log_level,
        log_format=args.log_format,
    )

    try:
        server = ProxyServer(config)
    except ValueError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return 2

    try:
        server.run()
    except BindError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
