"""
pytest configuration and fixtures.
"""

import socket
import threading
import time
from typing import Generator, Iterable, Optional
import pytest

# Add src to path for imports
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from httpproxy import ProxyServer, ProxyConfig
from httpproxy.core import transport
from httpproxy.core.connection import Connection, ConnectionState, Endpoint


DEFAULT_RESPONSE = (
    b"HTTP/1.1 200 OK\r\n"
    b"Content-Type: text/plain\r\n"
    b"Content-Length: 13\r\n"
    b"Connection: close\r\n"
    b"\r\n"
    b"Hello, proxy!"
)


def build_request(host: str, path: str = "/") -> bytes:
    """Minimal GET request for the given Host header."""
    return f"GET {path} HTTP/1.1\r\nHost: {host}\r\n\r\n".encode()


def read_until_eof(sock: socket.socket, timeout: float = 5.0) -> bytes:
    """Read everything the peer sends until it closes."""
    sock.settimeout(timeout)
    data = b""
    while True:
        chunk = sock.recv(4096)
        if not chunk:
            return data
        data += chunk


def exchange(
    address: Endpoint,
    chunks: Iterable[bytes],
    delay: float = 0.05,
    timeout: float = 5.0,
) -> bytes:
    """Send chunks to address (pausing between them) and return the reply."""
    with socket.create_connection((address.host, address.port), timeout=timeout) as sock:
        for i, chunk in enumerate(chunks):
            if i:
                time.sleep(delay)
            sock.sendall(chunk)
        return read_until_eof(sock, timeout)


class UpstreamServer:
    """
    Canned-response HTTP origin running in a background thread.

    Reads each request until the client half-closes, records it, then
    writes the response (optionally in delayed chunks) and closes.
    """

    def __init__(
        self,
        response: bytes = DEFAULT_RESPONSE,
        chunk_size: Optional[int] = None,
        chunk_delay: float = 0.0,
        hold: Optional[threading.Event] = None,
    ):
        self.response = response
        self.chunk_size = chunk_size or len(response) or 1
        self.chunk_delay = chunk_delay
        self.hold = hold

        self.requests: list[bytes] = []
        self.connections = 0
        self._lock = threading.Lock()
        self._stop = threading.Event()

        self._sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self._sock.bind(("127.0.0.1", 0))
        self._sock.listen(16)
        self._sock.settimeout(0.1)
        self.port = self._sock.getsockname()[1]
        self._thread: Optional[threading.Thread] = None

    @property
    def host(self) -> str:
        """Value for a Host header pointing at this server."""
        return f"127.0.0.1:{self.port}"

    def start(self) -> "UpstreamServer":
        self._thread = threading.Thread(target=self._serve, daemon=True)
        self._thread.start()
        return self

    def stop(self):
        self._stop.set()
        if self.hold is not None:
            self.hold.set()
        if self._thread:
            self._thread.join(timeout=5.0)
        self._sock.close()

    def _serve(self):
        while not self._stop.is_set():
            try:
                client, _ = self._sock.accept()
            except socket.timeout:
                continue
            except OSError:
                return
            with self._lock:
                self.connections += 1
            threading.Thread(target=self._handle, args=(client,), daemon=True).start()

    def _handle(self, client: socket.socket):
        with client:
            request = read_until_eof(client)
            with self._lock:
                self.requests.append(request)

            if self.hold is not None:
                self.hold.wait(timeout=10.0)

            for i in range(0, len(self.response), self.chunk_size):
                if i and self.chunk_delay:
                    time.sleep(self.chunk_delay)
                try:
                    client.sendall(self.response[i:i + self.chunk_size])
                except OSError:
                    return


@pytest.fixture
def upstream() -> Generator[UpstreamServer, None, None]:
    """Upstream origin answering with DEFAULT_RESPONSE."""
    server = UpstreamServer().start()
    yield server
    server.stop()


@pytest.fixture
def make_upstream() -> Generator:
    """Factory for extra upstream servers, all stopped at teardown."""
    servers = []

    def factory(**kwargs) -> UpstreamServer:
        server = UpstreamServer(**kwargs).start()
        servers.append(server)
        return server

    yield factory

    for server in servers:
        server.stop()


@pytest.fixture
def sample_request(upstream: UpstreamServer) -> bytes:
    """GET request addressed to the upstream fixture."""
    return build_request(upstream.host, "/index.html")


@pytest.fixture
def free_port() -> int:
    """Get a free port for testing."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


@pytest.fixture
def tcp_pair() -> Generator[tuple, None, None]:
    """
    Two connected Connection handles over loopback.

    Returns (client, server): client was connected with transport.connect,
    server is the accepted side.
    """
    listener = transport.create_listener(0, "127.0.0.1")
    listener.socket.listen(1)

    client = transport.create_connection()
    transport.connect(client, listener.address)

    sock, address = listener.socket.accept()
    server = Connection(
        socket=sock,
        address=Endpoint(*address[:2]),
        state=ConnectionState.OPEN,
    )
    listener.close()

    yield client, server

    for conn in (client, server):
        if not conn.closed:
            conn.close()


@pytest.fixture
def proxy() -> Generator[ProxyServer, None, None]:
    """Proxy serving on an ephemeral loopback port in the background."""
    server = ProxyServer(ProxyConfig(
        host="127.0.0.1",
        port=0,
        shutdown_timeout=2.0,
        log_level="WARNING",
    ))
    server.start()

    yield server

    server.stop(timeout=5.0)
