"""Celery application for work that runs off the request path."""

from celery import Celery

from support_chat.config import get_settings

settings = get_settings()

celery_app = Celery(
    "support_chat",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=["support_chat.tasks.support_chat_event_task"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_ignore_result=settings.celery_result_backend is None,
    task_always_eager=settings.celery_task_always_eager,
)
