"""Task delivering committed support chat events to the live-update sink."""

from __future__ import annotations

from typing import Dict, Optional

from pydantic import ValidationError

from support_chat.infra.celery_app import celery_app
from support_chat.infra.logging_config import get_logger
from support_chat.schemas.events import support_chat_event_adapter

logger = get_logger("support_chat_event_task")


@celery_app.task(
    name="support_chat.tasks.support_chat_event_task.deliver_support_chat_event_task"
)
def deliver_support_chat_event_task(payload: Dict) -> Optional[str]:
    """
    Deliver one support chat event.

    Runs in a Celery worker so a slow or failing sink never holds up the
    request that produced the event.

    Args:
        payload: The event as produced by ``event.model_dump(mode="json")``.

    Returns:
        Optional[str]: The session id as a string, or None on an invalid payload
    """
    try:
        event = support_chat_event_adapter.validate_python(payload)
    except ValidationError as e:
        logger.warning("Invalid support chat event payload: %s", e)
        return None

    logger.info(
        "Delivered support chat event %s for session %s",
        event.event_type,
        event.session_id,
    )
    return str(event.session_id)
