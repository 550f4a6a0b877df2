"""Error taxonomy for support chat operations.

Each error carries a stable ``code`` for API consumers and the HTTP status the
router renders it with.
"""

from __future__ import annotations

from typing import Any, Optional


class SupportChatError(Exception):
    """Base class for every error a support chat operation can surface."""

    code = "support_chat_error"
    status_code = 500

    def __init__(self, message: str, session_id: Optional[Any] = None) -> None:
        super().__init__(message)
        self.message = message
        self.session_id = session_id


class ValidationError(SupportChatError):
    """Malformed or missing input when opening a session or appending a message."""

    code = "validation_error"
    status_code = 400


class SessionNotFound(SupportChatError):
    code = "not_found"
    status_code = 404


class SessionClosed(SupportChatError):
    """Append attempted on a resolved session."""

    code = "session_closed"
    status_code = 409


class AlreadyResolved(SupportChatError):
    """Resolution attempted on a session that is already resolved."""

    code = "already_resolved"
    status_code = 409


class Conflict(SupportChatError):
    """Serialized update path rejected the write; retrying once is safe."""

    code = "conflict"
    status_code = 409


class StoreUnavailable(SupportChatError):
    """The durability layer could not be reached; nothing was written."""

    code = "store_unavailable"
    status_code = 503
