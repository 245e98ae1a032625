"""
Domain errors raised by the webhook bridge.

Routes in main.py translate these into HTTP responses; nothing below the
HTTP layer raises HTTPException.
"""

from typing import Optional


class BridgeError(Exception):
    """Base class for all bridge errors."""


class BadRequest(BridgeError):
    """Malformed or missing required input."""


class Forbidden(BridgeError):
    """Webhook verify token mismatch."""


class SendFailed(BridgeError):
    """Outbound Graph API call failed (transport error or non-2xx)."""

    def __init__(self, cause: str, status_code: Optional[int] = None):
        super().__init__(cause)
        self.cause = cause
        self.status_code = status_code


class StoreUnavailable(BridgeError):
    """Persistence layer unreachable or connection pool exhausted."""


class DuplicateKey(BridgeError):
    """A row with the same message_id already exists."""

    def __init__(self, message_id: str):
        super().__init__(f"duplicate message_id: {message_id}")
        self.message_id = message_id


class ParseSkip(BridgeError):
    """A single sub-record of a notification could not be normalized."""

    def __init__(self, reason: str, message_id: Optional[str] = None):
        super().__init__(reason)
        self.reason = reason
        self.message_id = message_id
