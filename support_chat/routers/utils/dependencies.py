from fastapi import Depends, Request

from support_chat.services.notifier import Notifier, NullNotifier
from support_chat.services.session_store import SessionStore
from support_chat.services.support_chat_engine import SupportChatEngine


def get_session_store() -> SessionStore:
    """FastAPI dependency for the session store (overridden in tests)."""
    return SessionStore()


def get_notifier(request: Request) -> Notifier:
    """FastAPI dependency for the app-wide notifier built at startup."""
    return getattr(request.app.state, "notifier", None) or NullNotifier()


def get_support_chat_engine(
    store: SessionStore = Depends(get_session_store),
    notifier: Notifier = Depends(get_notifier),
) -> SupportChatEngine:
    """FastAPI dependency to build the support chat engine for a request."""
    return SupportChatEngine(store, notifier=notifier)
