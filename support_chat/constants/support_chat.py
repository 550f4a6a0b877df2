"""Roles, statuses and defaults for support chat sessions."""

from enum import StrEnum


class SenderRole(StrEnum):
    """Party that authored a message (or is reading them)."""

    CUSTOMER = "customer"
    ADMIN = "admin"

    @property
    def counterpart(self) -> "SenderRole":
        if self is SenderRole.CUSTOMER:
            return SenderRole.ADMIN
        return SenderRole.CUSTOMER


class SessionStatus(StrEnum):
    """Lifecycle status; resolved is terminal."""

    ACTIVE = "active"
    RESOLVED = "resolved"


DEFAULT_CATEGORY = "order-issue"
ORDER_NUMBER_LENGTH = 6
