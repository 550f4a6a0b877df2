from support_chat.services.notifier import Notifier
from support_chat.services.session_store import SessionStore
from support_chat.services.support_chat_engine import SupportChatEngine

__all__ = [
    "Notifier",
    "SessionStore",
    "SupportChatEngine",
]
