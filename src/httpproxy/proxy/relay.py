"""
Response relay: copy everything the upstream sends back to the client.

Chunks are forwarded as they arrive, in order, without re-framing. The
client sees the upstream's bytes split however the upstream's sends
happened to arrive.
"""

import logging

from ..core import transport
from ..core.connection import Connection
from ..core.contracts import Bytes, DataReceiver, DataSender


logger = logging.getLogger(__name__)


class BytesSender(DataSender):
    """Sends a fixed byte string."""

    def __init__(self, data: Bytes):
        self.data = data

    def to_bytes(self) -> Bytes:
        return self.data


class ResponseRelayReceiver(DataReceiver):
    """
    Receiver for the upstream side of a proxy session.

    Every chunk is sent straight to the client connection and also kept in
    `response`, so the full response is available once the loop ends.

    Attributes:
        client: Connection the response is relayed to.
        response: Everything received from upstream so far.
        chunks: Number of chunks relayed.
    """

    def __init__(self, client: Connection):
        self.client = client
        self.response = bytearray()
        self.chunks = 0

    def interpret_bytes(self, data: memoryview) -> bool:
        chunk = bytes(data)
        transport.send(self.client, BytesSender(chunk))
        self.response += chunk
        self.chunks += 1
        return True

    def on_end_of_stream(self) -> bool:
        # Upstream finished its response
        logger.debug(
            f"[{self.client.id}] Upstream done after {self.chunks} chunk(s), "
            f"{len(self.response)} bytes"
        )
        return False
