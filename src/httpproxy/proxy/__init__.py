"""
HTTP forwarding proxy built on the core transport.

    ProxyReceiverFactory   → one ProxyRequestReceiver per client
    ProxyRequestReceiver   → accumulate header, forward, relay, close
    ResponseRelayReceiver  → upstream chunks straight back to the client
"""

from .access_log import SessionLog, SessionOutcome
from .handler import (
    DEFAULT_MAX_REQUEST_SIZE,
    ProxyReceiverFactory,
    ProxyRequestReceiver,
    ProxyState,
)
from .relay import BytesSender, ResponseRelayReceiver
from .request import (
    HEADER_TERMINATOR,
    MalformedRequestError,
    ProxyError,
    extract_host,
    find_header_end,
    split_host_port,
)

__all__ = [
    "ProxyReceiverFactory",
    "ProxyRequestReceiver",
    "ProxyState",
    "ResponseRelayReceiver",
    "BytesSender",
    "SessionLog",
    "SessionOutcome",
    "ProxyError",
    "MalformedRequestError",
    "HEADER_TERMINATOR",
    "DEFAULT_MAX_REQUEST_SIZE",
    "extract_host",
    "find_header_end",
    "split_host_port",
]
