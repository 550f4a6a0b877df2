"""
Notifier interface and implementations.

A notifier receives committed support chat events to drive live refresh and
toasts. It is a fire-and-forget sink: the engine never waits on delivery and
never fails an operation because a notifier did.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

from support_chat.config import Settings, get_settings
from support_chat.infra.logging_config import get_logger
from support_chat.schemas.events import SupportChatEvent
from support_chat.tasks.support_chat_event_task import deliver_support_chat_event_task

logger = get_logger("notifier")


class Notifier(ABC):
    """Contract for event sinks."""

    @abstractmethod
    def notify(self, event: SupportChatEvent) -> None:
        """Deliver one event. May raise; callers treat delivery as best-effort."""
        ...

    def close(self) -> None:
        """Release resources. Override if the notifier holds any."""
        return None


class NullNotifier(Notifier):
    def notify(self, event: SupportChatEvent) -> None:
        return None


class LoggingNotifier(Notifier):
    """Writes one log line per event; useful when no live channel is wired up."""

    def notify(self, event: SupportChatEvent) -> None:
        logger.info(
            "Support chat event %s for session %s", event.event_type, event.session_id
        )


class CeleryNotifier(Notifier):
    """Queues each event as a Celery task so delivery never blocks the caller."""

    def notify(self, event: SupportChatEvent) -> None:
        deliver_support_chat_event_task.delay(event.model_dump(mode="json"))


def build_notifier(settings: Optional[Settings] = None) -> Notifier:
    """Build the notifier selected by configuration."""
    settings = settings or get_settings()
    mode = (settings.notifier_mode or "celery").lower()
    if mode == "celery":
        return CeleryNotifier()
    if mode == "log":
        return LoggingNotifier()
    if mode == "none":
        return NullNotifier()
    raise ValueError(f"Unknown notifier mode: {settings.notifier_mode!r}")
