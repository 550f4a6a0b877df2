from support_chat.models.support_message import SupportMessage
from support_chat.models.support_session import SupportSession

__all__ = [
    "SupportMessage",
    "SupportSession",
]
