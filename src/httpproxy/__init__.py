"""
=============================================================================
HTTPPROXY - Forwarding HTTP Proxy on a Minimal TCP Layer
=============================================================================

Two layers:

    ┌─────────────────────────────────────────────────────────────────────┐
    │                                                                      │
    │   1. TRANSPORT (httpproxy.core)                                     │
    │      - Socket setup: create, bind, connect, listen, accept          │
    │      - Blocking receive loop feeding a DataReceiver                 │
    │      - One worker thread per accepted connection                    │
    │      - Typed errors for every failing socket call                   │
    │                                                                      │
    │   2. PROXY (httpproxy.proxy)                                        │
    │      - Buffer the client request until \r\n\r\n                     │
    │      - Read the Host header, resolve, connect upstream              │
    │      - Forward the request verbatim, half-close                     │
    │      - Relay the response back verbatim, close both ends            │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
PACKAGE STRUCTURE
=============================================================================

    httpproxy/
    ├── __init__.py          # This file - package exports
    ├── __main__.py          # CLI entry point (python -m httpproxy)
    ├── server.py            # ProxyServer
    ├── config.py            # ProxyConfig dataclass
    ├── core/                # Transport layer
    │   ├── errors.py        # Error taxonomy
    │   ├── connection.py    # Connection handle
    │   ├── contracts.py     # Sender / Receiver / Factory interfaces
    │   ├── transport.py     # Socket operations, receive loop
    │   ├── workers.py       # Thread-per-connection workers
    │   └── socket_server.py # Accept loop
    └── proxy/               # HTTP proxy consumer
        ├── request.py       # Header boundary, Host extraction
        ├── relay.py         # Response relay
        ├── handler.py       # Proxy session state machine
        └── access_log.py    # Per-session access log

=============================================================================
QUICK START
=============================================================================

    from httpproxy import ProxyServer, ProxyConfig

    ProxyServer(ProxyConfig(host="127.0.0.1", port=8080)).run()

Or use the transport with your own protocol:

    from httpproxy.core import transport, SocketServer, ReceiverFactory

    listener = transport.create_listener(9000)
    SocketServer(listener).start(MyReceiverFactory())
=============================================================================
"""

__version__ = "1.0.0"

from .server import ProxyServer
from .config import ProxyConfig

__all__ = ["ProxyServer", "ProxyConfig", "__version__"]
