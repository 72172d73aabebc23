"""
=============================================================================
REQUEST BOUNDARY AND HOST EXTRACTION
=============================================================================

The proxy understands exactly two things about an HTTP request:

    1. Where the header block ends (the first \r\n\r\n)
    2. Which host it is addressed to (the Host header)

Everything else is forwarded byte-for-byte without being parsed.

=============================================================================
TCP IS A BYTE STREAM, NOT A MESSAGE PROTOCOL
=============================================================================

A client that sends one request may have it delivered in any number of
reads:

    Client sends:
        GET / HTTP/1.1\r\nHost: a.com\r\n\r\n

    Proxy might receive:
        recv() → "GET / HTTP/1.1\r\nHo"
        recv() → "st: a.com\r\n\r\n"

So bytes are accumulated and the terminator is searched for after every
read. The terminator itself can be split across reads ("\r\n" + "\r\n"),
which is why an incremental search backs up 3 bytes before the previous
end of the buffer:

    previous buffer: ...Host: a.com\r\n        (len = N)
    new bytes:                          \r\n
    search from N - 3 ──────────────┘   finds \r\n\r\n spanning the seam

=============================================================================
THE HOST HEADER
=============================================================================

    GET /index.html HTTP/1.1\r\n
    Host: example.com:8080\r\n      ← first "Host: " (case-sensitive)
    \r\n

The token runs from after "Host: " to the next \r or \n, taken as is
(no whitespace trimming). An optional ":port" suffix overrides the
default http port.
=============================================================================
"""

from typing import Optional, Tuple, Union


HEADER_TERMINATOR = b"\r\n\r\n"
HOST_PREFIX = b"Host: "

ByteString = Union[bytes, bytearray]


class ProxyError(Exception):
    """Base class for proxy-level failures."""


class MalformedRequestError(ProxyError):
    """
    The client request cannot be forwarded.

    Raised when the Host header is missing, empty, or carries an invalid
    port, or when the header block grows past the size limit.
    """


def find_header_end(buffer: ByteString, previous_length: int = 0) -> int:
    """
    Find the header terminator in buffer.

    Args:
        buffer: Accumulated request bytes.
        previous_length: Length of the buffer at the last search. Bytes
                         before this point (minus the terminator overlap)
                         are known not to contain the terminator.

    Returns:
        Index of the first byte of \r\n\r\n, or -1 if not present.
    """
    start = max(0, previous_length - (len(HEADER_TERMINATOR) - 1))
    return buffer.find(HEADER_TERMINATOR, start)


def extract_host(buffer: ByteString) -> str:
    """
    Extract the Host header value from a request.

    Only the header block (up to the terminator) is searched, so a body
    that happens to contain "Host: " is never mistaken for the header.

    Args:
        buffer: Request bytes, normally including the terminator.

    Returns:
        The host token, e.g. "example.com" or "127.0.0.1:8080".

    Raises:
        MalformedRequestError: If there is no Host header or it is empty.
    """
    header_end = buffer.find(HEADER_TERMINATOR)
    head = buffer if header_end == -1 else buffer[:header_end + 2]

    start = head.find(HOST_PREFIX)
    if start == -1:
        raise MalformedRequestError("Missing Host header")
    start += len(HOST_PREFIX)

    ends = [i for i in (head.find(b"\r", start), head.find(b"\n", start)) if i != -1]
    stop = min(ends) if ends else len(head)

    token = bytes(head[start:stop])
    if not token:
        raise MalformedRequestError("Empty Host header")

    try:
        return token.decode("ascii")
    except UnicodeDecodeError:
        raise MalformedRequestError(f"Non-ASCII Host header: {token!r}")


def split_host_port(token: str) -> Tuple[str, Optional[int]]:
    """
    Split "host[:port]".

    Examples:
        split_host_port("example.com")       → ("example.com", None)
        split_host_port("127.0.0.1:8080")    → ("127.0.0.1", 8080)

    Raises:
        MalformedRequestError: If the port is not a number in 1-65535 or
                               the host part is empty.
    """
    if ":" not in token:
        return token, None

    host, _, port_text = token.rpartition(":")
    if not host:
        raise MalformedRequestError(f"Missing host in {token!r}")
    if not port_text.isdigit() or not 0 < int(port_text) < 65536:
        raise MalformedRequestError(f"Invalid port in Host header: {token!r}")

    return host, int(port_text)
