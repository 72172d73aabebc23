"""
=============================================================================
PROXY ACCESS LOG
=============================================================================

One log entry per proxy session, emitted when the session ends, on the
dedicated "httpproxy.access" logger. Configure it separately from the
rest of the package, e.g. to send access logs to their own file:

    logging.getLogger("httpproxy.access").addHandler(file_handler)

Two formats:

    text:  127.0.0.1 - [18/Oct/2026:10:00:00 +0000] "example.com" forwarded 47 1256 12.40ms
    json:  {"session_id": "3f2a9c1d", "client_ip": "127.0.0.1", "host": "example.com", ...}

JSON is better for log aggregators (ELK, Datadog), text for humans.
=============================================================================
"""

import json
import logging
from dataclasses import dataclass, asdict
from enum import Enum
from typing import Optional


logger = logging.getLogger("httpproxy.access")


class SessionOutcome(Enum):
    """How a proxy session ended."""
    FORWARDED = "forwarded"          # Request sent, response relayed
    MALFORMED = "malformed"          # Bad or missing Host header, oversized header
    FAILED = "failed"                # Resolve/connect/send/receive error
    CLIENT_CLOSED = "client_closed"  # Client left before a full header
    CANCELLED = "cancelled"          # Server shut down mid-relay


@dataclass
class SessionLog:
    """
    Structured log entry for one proxy session.

    Fields:
        session_id:  Client connection id (matches the [id] log prefix)
        client_ip:   Address of the downstream client
        host:        Host header value ("-" if none was extracted)
        outcome:     SessionOutcome value
        bytes_up:    Request bytes forwarded upstream
        bytes_down:  Response bytes relayed to the client
        duration_ms: Time from accept to close
        timestamp:   When the session ended
        error:       Failure message, if any
    """

    session_id: str
    client_ip: str
    host: str
    outcome: str
    bytes_up: int
    bytes_down: int
    duration_ms: float
    timestamp: str
    error: Optional[str] = None

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        data = asdict(self)
        data["duration_ms"] = round(self.duration_ms, 2)
        return data

    def to_text(self) -> str:
        text = (
            f'{self.client_ip} - [{self.timestamp}] "{self.host}" {self.outcome} '
            f'{self.bytes_up} {self.bytes_down} {self.duration_ms:.2f}ms'
        )
        if self.error:
            text += f" ({self.error})"
        return text


def emit(entry: SessionLog, log_format: str = "text"):
    """Write an access log entry in the configured format."""
    level = logging.INFO if entry.outcome == SessionOutcome.FORWARDED.value else logging.WARNING
    if log_format == "json":
        logger.log(level, json.dumps(entry.to_dict()))
    else:
        logger.log(level, entry.to_text())
