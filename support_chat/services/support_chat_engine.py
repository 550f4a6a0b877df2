"""SupportChatEngine: open, append, mark read, resolve; one store transaction per operation."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple
from uuid import uuid4

from fastapi_pagination import Page, Params

from support_chat.config import Settings, get_settings
from support_chat.constants.support_chat import (
    ORDER_NUMBER_LENGTH,
    SenderRole,
    SessionStatus,
)
from support_chat.core.errors import (
    AlreadyResolved,
    SessionClosed,
    SessionNotFound,
    ValidationError,
)
from support_chat.infra.logging_config import get_logger
from support_chat.schemas.events import (
    AppendEvent,
    OpenEvent,
    ReadEvent,
    ResolveEvent,
    SupportChatEvent,
)
from support_chat.schemas.support_chat import (
    ChatMessage,
    ChatSession,
    SessionDraft,
    as_utc,
)
from support_chat.services.notifier import Notifier, NullNotifier
from support_chat.services.session_store import SessionId, SessionStore

logger = get_logger("support_chat_engine")

# Smallest step the stores keep (microsecond precision on PostgreSQL and SQLite).
MIN_TIMESTAMP_STEP = timedelta(microseconds=1)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def next_message_timestamp(
    last: Optional[datetime], now: datetime
) -> datetime:
    """Return ``now``, bumped past ``last`` when the clock has not moved forward."""
    if last is not None and now <= last:
        return last + MIN_TIMESTAMP_STEP
    return now


def _parse_role(value: Any, field: str) -> SenderRole:
    try:
        return SenderRole(value)
    except ValueError:
        raise ValidationError(
            f"{field} must be one of: {', '.join(r.value for r in SenderRole)}"
        ) from None


def _with_order_number(
    order_id: str, order_details: Optional[Dict[str, Any]]
) -> Optional[Dict[str, Any]]:
    if order_details is None or order_details.get("order_number"):
        return order_details
    return {**order_details, "order_number": order_id[-ORDER_NUMBER_LENGTH:]}


class SupportChatEngine:
    """
    Caller-facing support chat operations.

    Each mutating operation is a single ``SessionStore.atomic_update`` and
    re-reads the session inside it, so the engine never acts on stale state.
    Events go to the notifier only after the store commit has succeeded.
    """

    def __init__(
        self,
        store: SessionStore,
        notifier: Optional[Notifier] = None,
        clock: Optional[Callable[[], datetime]] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._store = store
        self._notifier = notifier or NullNotifier()
        self._clock = clock or _utcnow
        self._settings = settings or get_settings()

    def _emit(self, event: SupportChatEvent) -> None:
        try:
            self._notifier.notify(event)
        except Exception:
            logger.exception(
                "Notifier failed for %s on session %s",
                event.event_type,
                event.session_id,
            )

    def _build_draft(
        self,
        order_id: str,
        customer_id: str,
        issue: str,
        category: Optional[str],
        order_details: Optional[Dict[str, Any]],
        customer_details: Optional[Dict[str, Any]],
    ) -> SessionDraft:
        if not (category or "").strip():
            category = self._settings.support_chat_default_category
        return SessionDraft(
            order_id=order_id or "",
            customer_id=customer_id or "",
            issue=issue or "",
            category=category,
            order_details=_with_order_number(order_id or "", order_details),
            customer_details=customer_details,
        )

    def open_session(
        self,
        order_id: str,
        customer_id: str,
        issue: str,
        category: Optional[str] = None,
        order_details: Optional[Dict[str, Any]] = None,
        customer_details: Optional[Dict[str, Any]] = None,
    ) -> ChatSession:
        """Open a new active session with no messages."""
        draft = self._build_draft(
            order_id, customer_id, issue, category, order_details, customer_details
        )
        session = self._store.create(draft)
        logger.info(
            "Opened support session %s for order %s", session.id, session.order_id
        )
        self._emit(OpenEvent(session=session))
        return session

    def get_or_open_session(
        self,
        order_id: str,
        customer_id: str,
        issue: str,
        category: Optional[str] = None,
        order_details: Optional[Dict[str, Any]] = None,
        customer_details: Optional[Dict[str, Any]] = None,
    ) -> Tuple[ChatSession, bool]:
        """
        Reuse the customer's active session for this order, or open one.
        Returns (session, created).
        """
        draft = self._build_draft(
            order_id, customer_id, issue, category, order_details, customer_details
        )
        session, created = self._store.get_or_create_active(draft)
        if created:
            logger.info(
                "Opened support session %s for order %s", session.id, session.order_id
            )
            self._emit(OpenEvent(session=session))
        else:
            logger.debug(
                "Reusing active support session %s for order %s",
                session.id,
                session.order_id,
            )
        return session, created

    def get_session(self, session_id: SessionId) -> ChatSession:
        return self._store.get(session_id)

    def get_session_for_order(self, order_id: str) -> ChatSession:
        """Most recent session for an order, active or resolved."""
        session = self._store.find_latest_for_order(order_id)
        if session is None:
            raise SessionNotFound(f"No support session for order {order_id}")
        return session

    def list_sessions(
        self,
        customer_id: Optional[str] = None,
        status: Optional[SessionStatus] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> Tuple[List[ChatSession], int]:
        return self._store.list_sessions(
            customer_id=customer_id, status=status, skip=skip, limit=limit
        )

    def page_sessions(
        self,
        params: Params,
        customer_id: Optional[str] = None,
        status: Optional[SessionStatus] = None,
    ) -> Page[ChatSession]:
        return self._store.paginate_sessions(
            params, customer_id=customer_id, status=status
        )

    def append_message(
        self,
        session_id: SessionId,
        sender: SenderRole,
        sender_id: str,
        content: str,
    ) -> ChatMessage:
        """
        Append a message from ``sender`` to an active session.

        Raises:
            ValidationError: empty content or sender id, unknown sender,
                content over the configured maximum length.
            SessionClosed: the session is resolved.
        """
        role = _parse_role(sender, "sender")
        if not (sender_id or "").strip():
            raise ValidationError("sender_id is required", session_id)
        if not (content or "").strip():
            raise ValidationError("Message content must not be empty", session_id)
        max_length = self._settings.support_chat_max_message_length
        if len(content) > max_length:
            raise ValidationError(
                f"Message content exceeds {max_length} characters", session_id
            )

        appended: List[ChatMessage] = []

        def mutation(session: ChatSession) -> ChatSession:
            if session.is_resolved:
                raise SessionClosed(
                    f"Session {session.id} is resolved; no more messages can be sent",
                    session.id,
                )
            last = session.last_message
            message = ChatMessage(
                id=uuid4(),
                sender=role,
                sender_id=sender_id,
                content=content,
                timestamp=next_message_timestamp(
                    last.timestamp if last else None, self._clock()
                ),
                read=False,
            )
            appended[:] = [message]
            return session.model_copy(
                update={
                    "messages": session.messages + (message,),
                    "last_message_at": message.timestamp,
                }
            )

        session = self._store.atomic_update(session_id, mutation)
        message = appended[0]
        logger.info(
            "Appended %s message %s to support session %s",
            role.value,
            message.id,
            session.id,
        )
        self._emit(AppendEvent(session_id=session.id, message=message))
        return message

    def mark_read(self, session_id: SessionId, reader: SenderRole) -> ChatSession:
        """
        Mark every unread message from the other party as read by ``reader``.

        Idempotent: with nothing unread, nothing is written and no event is sent.
        """
        role = _parse_role(reader, "reader")
        author = role.counterpart
        flipped: List[Any] = []

        def mutation(session: ChatSession) -> ChatSession:
            flipped.clear()
            messages = []
            for message in session.messages:
                if message.sender == author and not message.read:
                    message = message.model_copy(update={"read": True})
                    flipped.append(message.id)
                messages.append(message)
            if not flipped:
                return session
            return session.model_copy(update={"messages": tuple(messages)})

        session = self._store.atomic_update(session_id, mutation)
        if not flipped:
            logger.debug(
                "No unread %s messages in support session %s", author.value, session.id
            )
            return session
        logger.info(
            "Marked %d %s messages read in support session %s",
            len(flipped),
            author.value,
            session.id,
        )
        self._emit(
            ReadEvent(session_id=session.id, reader=role, message_ids=tuple(flipped))
        )
        return session

    def resolve_session(self, session_id: SessionId, resolved_by: str) -> ChatSession:
        """
        Resolve an active session. Resolution is terminal.

        Raises:
            AlreadyResolved: the session was resolved before (possibly by a
                concurrent caller); its resolution fields are left unchanged.
        """
        if not (resolved_by or "").strip():
            raise ValidationError("resolved_by is required", session_id)

        def mutation(session: ChatSession) -> ChatSession:
            if session.is_resolved:
                raise AlreadyResolved(
                    f"Session {session.id} was already resolved by {session.resolved_by}",
                    session.id,
                )
            return session.model_copy(
                update={
                    "status": SessionStatus.RESOLVED,
                    "resolved_by": resolved_by,
                    "resolved_at": as_utc(self._clock()),
                }
            )

        session = self._store.atomic_update(session_id, mutation)
        logger.info("Support session %s resolved by %s", session.id, resolved_by)
        self._emit(
            ResolveEvent(
                session_id=session.id,
                resolved_by=session.resolved_by,
                resolved_at=session.resolved_at,
            )
        )
        return session
