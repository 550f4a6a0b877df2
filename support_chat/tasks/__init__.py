# Import celery app first
from support_chat.infra.celery_app import celery_app

# Initialize logging configuration for Celery workers
from support_chat.infra.logging_config import LoggingConfig
from support_chat.tasks.support_chat_event_task import deliver_support_chat_event_task

LoggingConfig()  # Initialize logging

__all__ = [
    "celery_app",
    "deliver_support_chat_event_task",
]
