"""
Unit tests for the transport runtime.
"""

import socket
import struct
import threading

import pytest

from httpproxy.core import transport
from httpproxy.core.connection import ConnectionState, Endpoint
from httpproxy.core.contracts import DataReceiver
from httpproxy.core.errors import (
    AddressInUseError,
    AddressResolutionError,
    ConnectError,
    ConnectionClosedError,
    SendError,
)
from httpproxy.proxy.relay import BytesSender


class RecordingReceiver(DataReceiver):
    """Collects every chunk; stops at end of stream or after max_chunks."""

    def __init__(self, max_chunks=None, keep_after_eof=False):
        self.chunks = []
        self.packets = 0
        self.eof_count = 0
        self.max_chunks = max_chunks
        self.keep_after_eof = keep_after_eof

    def on_packet_received(self):
        self.packets += 1

    def interpret_bytes(self, data):
        self.chunks.append(bytes(data))
        return self.max_chunks is None or len(self.chunks) < self.max_chunks

    def on_end_of_stream(self):
        self.eof_count += 1
        return self.keep_after_eof and self.eof_count < 3

    @property
    def data(self) -> bytes:
        return b"".join(self.chunks)


class TestLifecycle:
    """Tests for initialize() / clean()."""

    def test_idempotent(self):
        transport.initialize()
        transport.initialize()
        assert transport.is_initialized()

        transport.clean()
        transport.clean()
        assert not transport.is_initialized()


class TestAddresses:
    """Tests for resolve() and ip_endpoint()."""

    def test_resolve_literal(self):
        assert transport.resolve("127.0.0.1", 8080) == Endpoint("127.0.0.1", 8080)

    def test_resolve_localhost(self):
        endpoint = transport.resolve("localhost", 8080)
        assert endpoint.port == 8080
        assert endpoint.host.startswith("127.")

    def test_resolve_failure(self, monkeypatch):
        """Test that getaddrinfo errors become AddressResolutionError."""
        def fail(*args, **kwargs):
            raise socket.gaierror(socket.EAI_NONAME, "Name or service not known")

        monkeypatch.setattr(socket, "getaddrinfo", fail)

        with pytest.raises(AddressResolutionError) as exc_info:
            transport.resolve("no-such-host.invalid")
        assert exc_info.value.errno == socket.EAI_NONAME

    def test_ip_endpoint(self):
        assert transport.ip_endpoint("10.1.2.3", 80) == Endpoint("10.1.2.3", 80)

    @pytest.mark.parametrize("ip, port", [("not-an-ip", 80), ("10.0.0.1", 70000)])
    def test_ip_endpoint_invalid(self, ip, port):
        with pytest.raises(AddressResolutionError):
            transport.ip_endpoint(ip, port)


class TestSockets:
    """Tests for socket creation, binding and connecting."""

    def test_create_listener_ephemeral(self):
        """Test that port 0 binds a real port recorded in the handle."""
        listener = transport.create_listener(0, "127.0.0.1")
        try:
            assert listener.state == ConnectionState.LISTENING
            assert listener.address.host == "127.0.0.1"
            assert listener.address.port > 0
        finally:
            listener.close()

    def test_address_in_use(self):
        """Test that binding a port that is already listening fails."""
        first = transport.create_listener(0, "127.0.0.1")
        first.socket.listen(1)
        try:
            with pytest.raises(AddressInUseError):
                transport.create_listener(first.address.port, "127.0.0.1")
        finally:
            first.close()

    def test_connect_refused(self, free_port: int):
        """Test that connecting to a closed port raises ConnectError."""
        conn = transport.create_connection()
        try:
            with pytest.raises(ConnectError):
                transport.connect(conn, Endpoint("127.0.0.1", free_port))
            assert conn.state == ConnectionState.NEW
        finally:
            conn.close()

    def test_connect_sets_state_and_address(self, tcp_pair):
        client, server = tcp_pair
        assert client.state == ConnectionState.OPEN
        assert client.address == Endpoint("127.0.0.1", server.socket.getsockname()[1])

    def test_close_twice(self):
        conn = transport.create_connection()
        transport.close(conn)
        with pytest.raises(ConnectionClosedError):
            transport.close(conn)


class TestSend:
    """Tests for send() and shutdown_output()."""

    def test_send_writes_everything(self, tcp_pair):
        """Test that the sender's bytes arrive intact and are counted."""
        client, server = tcp_pair
        payload = b"x" * 100_000

        received = bytearray()

        def reader():
            while len(received) < len(payload):
                chunk = server.socket.recv(65536)
                if not chunk:
                    break
                received.extend(chunk)

        thread = threading.Thread(target=reader)
        thread.start()
        sent = transport.send(client, BytesSender(payload))
        thread.join(timeout=5.0)

        assert sent == len(payload)
        assert client.bytes_sent == len(payload)
        assert bytes(received) == payload

    def test_send_memoryview(self, tcp_pair):
        client, server = tcp_pair
        assert transport.send(client, BytesSender(memoryview(b"abc"))) == 3
        assert server.socket.recv(16) == b"abc"

    def test_send_after_close(self, tcp_pair):
        client, _ = tcp_pair
        client.close()
        with pytest.raises(ConnectionClosedError):
            transport.send(client, BytesSender(b"late"))

    def test_send_to_reset_peer(self, tcp_pair):
        """Test that writing to a peer that reset the connection fails."""
        client, server = tcp_pair
        # SO_LINGER 0 makes close() send RST instead of FIN
        server.socket.setsockopt(
            socket.SOL_SOCKET, socket.SO_LINGER, struct.pack("ii", 1, 0)
        )
        server.close()

        with pytest.raises(SendError):
            for _ in range(100):
                transport.send(client, BytesSender(b"x" * 65536))

    def test_shutdown_output_signals_eof(self, tcp_pair):
        """Test that the peer reads EOF after a half-close."""
        client, server = tcp_pair
        transport.send(client, BytesSender(b"request"))
        transport.shutdown_output(client)

        receiver = RecordingReceiver()
        transport.receive_loop_blocking(server, receiver)

        assert receiver.data == b"request"
        assert receiver.eof_count == 1

    def test_shutdown_output_unconnected(self):
        """Test that half-closing an unconnected socket fails cleanly."""
        with transport.create_connection() as conn:
            with pytest.raises(SendError):
                transport.shutdown_output(conn)


class TestReceiveLoop:
    """Tests for receive_loop_blocking() and receive_loop_async()."""

    def test_reads_until_end_of_stream(self, tcp_pair):
        """Test that every read attempt fires on_packet_received."""
        client, server = tcp_pair
        client.socket.sendall(b"hello world")
        client.shutdown_output()

        receiver = RecordingReceiver()
        transport.receive_loop_blocking(server, receiver)

        assert receiver.data == b"hello world"
        assert receiver.packets == len(receiver.chunks) + 1
        assert server.bytes_received == 11

    def test_chunks_bounded_by_buffer_size(self, tcp_pair):
        """Test that no chunk exceeds the 2048 byte receive buffer."""
        client, server = tcp_pair
        payload = bytes(range(256)) * 40

        def writer():
            client.socket.sendall(payload)
            client.shutdown_output()

        thread = threading.Thread(target=writer)
        thread.start()

        receiver = RecordingReceiver()
        transport.receive_loop_blocking(server, receiver)
        thread.join(timeout=5.0)

        assert receiver.data == payload
        assert all(len(chunk) <= transport.RECEIVE_BUFFER_SIZE for chunk in receiver.chunks)
        assert len(receiver.chunks) >= len(payload) // transport.RECEIVE_BUFFER_SIZE

    def test_receiver_false_stops_loop(self, tcp_pair):
        """Test that returning False ends the loop even with data pending."""
        client, server = tcp_pair
        client.socket.sendall(b"first")

        receiver = RecordingReceiver(max_chunks=1)
        transport.receive_loop_blocking(server, receiver)

        assert receiver.chunks == [b"first"]
        assert receiver.eof_count == 0

    def test_keep_waiting_after_end_of_stream(self, tcp_pair):
        """Test that a receiver may ask to keep reading after EOF."""
        client, server = tcp_pair
        client.shutdown_output()

        receiver = RecordingReceiver(keep_after_eof=True)
        transport.receive_loop_blocking(server, receiver)

        assert receiver.eof_count == 3
        assert receiver.chunks == []

    def test_view_is_read_only(self, tcp_pair):
        """Test that receivers cannot write into the loop's buffer."""
        client, server = tcp_pair
        client.socket.sendall(b"abc")
        errors = []

        class Writer(DataReceiver):
            def interpret_bytes(self, data):
                try:
                    data[0] = 0
                except TypeError as e:
                    errors.append(e)
                return False

            def on_end_of_stream(self):
                return False

        transport.receive_loop_blocking(server, Writer())
        assert len(errors) == 1

    def test_cancelled_before_read(self, tcp_pair):
        """Test that a set cancel event stops the loop before any read."""
        client, server = tcp_pair
        client.socket.sendall(b"ignored")
        cancel = threading.Event()
        cancel.set()

        receiver = RecordingReceiver()
        transport.receive_loop_blocking(server, receiver, cancel)

        assert receiver.packets == 0

    def test_closed_connection(self, tcp_pair):
        _, server = tcp_pair
        server.close()
        with pytest.raises(ConnectionClosedError):
            transport.receive_loop_blocking(server, RecordingReceiver())

    def test_async_returns_immediately(self, tcp_pair):
        """Test that the async loop runs on its own thread."""
        client, server = tcp_pair
        receiver = RecordingReceiver()

        thread = transport.receive_loop_async(server, receiver)
        assert thread.is_alive()

        client.socket.sendall(b"later")
        client.shutdown_output()
        thread.join(timeout=5.0)

        assert not thread.is_alive()
        assert receiver.data == b"later"
