"""Durable store for support sessions with per-session serialized read-modify-write."""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime
from typing import Any, Callable, Iterator, List, Optional, Tuple, Union
from uuid import UUID, uuid4

from fastapi_pagination import Page, Params
from fastapi_pagination.ext.sqlalchemy import paginate
from sqlalchemy import Select, func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session as DBSession
from sqlalchemy.orm.exc import StaleDataError

from support_chat.config import get_settings
from support_chat.constants.support_chat import SessionStatus
from support_chat.core.errors import (
    Conflict,
    SessionNotFound,
    StoreUnavailable,
    SupportChatError,
    ValidationError,
)
from support_chat.db import DatabaseManager, db_manager
from support_chat.infra.logging_config import get_logger
from support_chat.models.mixins import utcnow
from support_chat.models.support_message import SupportMessage
from support_chat.models.support_session import SupportSession
from support_chat.schemas.support_chat import ChatSession, SessionDraft, as_utc
from support_chat.utils.keyed_lock import KeyedLock, LockTimeout

logger = get_logger("session_store")

Mutation = Callable[[ChatSession], ChatSession]
SessionId = Union[UUID, str]

# Shared by every store in the process so per-session serialization holds
# no matter how many store instances the request handlers build.
_session_locks = KeyedLock()

_IMMUTABLE_FIELDS = (
    "id",
    "order_id",
    "customer_id",
    "issue",
    "category",
    "created_at",
    "order_details",
    "customer_details",
)


def _coerce_id(session_id: SessionId) -> UUID:
    if isinstance(session_id, UUID):
        return session_id
    try:
        return UUID(str(session_id))
    except ValueError:
        raise SessionNotFound(f"Session {session_id} not found", session_id) from None


def _snapshot(record: SupportSession) -> ChatSession:
    return ChatSession.model_validate(record)


def _validate_draft(draft: SessionDraft) -> None:
    missing = [
        name
        for name in ("order_id", "customer_id", "issue", "category")
        if not (getattr(draft, name) or "").strip()
    ]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")


def _check_transition(current: ChatSession, updated: ChatSession) -> None:
    """Reject mutations that would break the session's history or lifecycle rules."""
    for name in _IMMUTABLE_FIELDS:
        if getattr(updated, name) != getattr(current, name):
            raise Conflict(f"Field {name} is immutable", current.id)

    if len(updated.messages) < len(current.messages):
        raise Conflict("Messages are append-only", current.id)
    for before, after in zip(current.messages, updated.messages):
        if before.read and not after.read:
            raise Conflict(f"Message {before.id} cannot be marked unread", current.id)
        if after.model_copy(update={"read": before.read}) != before:
            raise Conflict(f"Message {before.id} cannot be rewritten", current.id)

    appended = updated.messages[len(current.messages) :]
    if appended and current.is_resolved:
        raise Conflict("Cannot append to a resolved session", current.id)
    previous = current.last_message
    for message in appended:
        if previous is not None and message.sort_key <= previous.sort_key:
            raise Conflict("Appended messages must follow existing order", current.id)
        previous = message
    if appended and updated.last_message_at != appended[-1].timestamp:
        raise Conflict("last_message_at must match the last message", current.id)

    if current.is_resolved and (
        not updated.is_resolved
        or updated.resolved_by != current.resolved_by
        or updated.resolved_at != current.resolved_at
    ):
        raise Conflict("Resolution is final", current.id)
    has_resolution = updated.resolved_by is not None and updated.resolved_at is not None
    if updated.is_resolved != has_resolution:
        raise Conflict(
            "resolved_by and resolved_at are set exactly when resolved", current.id
        )


class SessionStore:
    """
    Owns persistence of support sessions.

    Every method works in its own short transaction and returns detached
    ``ChatSession`` snapshots. Writes to one session are serialized by
    ``atomic_update``; different sessions never wait on each other.
    """

    def __init__(
        self,
        database: Optional[DatabaseManager] = None,
        clock: Optional[Callable[[], datetime]] = None,
        lock_timeout: Optional[float] = None,
        locks: Optional[KeyedLock] = None,
    ) -> None:
        self._database = database or db_manager
        self._clock = clock or utcnow
        self._lock_timeout = (
            lock_timeout
            if lock_timeout is not None
            else get_settings().session_lock_timeout_seconds
        )
        self._locks = locks or _session_locks

    @contextmanager
    def _translate_errors(
        self, operation: str, session_id: Optional[Any] = None
    ) -> Iterator[None]:
        """Map storage failures onto the support chat error taxonomy."""
        try:
            yield
        except SupportChatError:
            raise
        except (StaleDataError, IntegrityError) as e:
            logger.warning(
                "Store %s rejected for session %s: %s", operation, session_id, e
            )
            raise Conflict(
                f"Concurrent update rejected for session {session_id}", session_id
            ) from e
        except SQLAlchemyError as e:
            logger.warning(
                "Store %s failed for session %s: %s", operation, session_id, e
            )
            raise StoreUnavailable(
                f"Session store unavailable during {operation}", session_id
            ) from e

    @contextmanager
    def _hold(self, key: Any) -> Iterator[None]:
        try:
            with self._locks.hold(key, timeout=self._lock_timeout):
                yield
        except LockTimeout as e:
            raise Conflict(f"Timed out waiting to update {key}") from e

    def create(self, draft: SessionDraft) -> ChatSession:
        """Persist a new active session; assigns ``id`` and ``created_at``."""
        _validate_draft(draft)
        with self._translate_errors("create"):
            with self._database.db_session() as db:
                record = self._insert(db, draft)
                db.flush()
                return _snapshot(record)

    def _insert(self, db: DBSession, draft: SessionDraft) -> SupportSession:
        now = as_utc(self._clock())
        record = SupportSession(
            id=uuid4(),
            order_id=draft.order_id,
            customer_id=draft.customer_id,
            issue=draft.issue,
            category=draft.category,
            status=SessionStatus.ACTIVE.value,
            order_details=draft.order_details,
            customer_details=draft.customer_details,
            created_at=now,
            updated_at=now,
            last_message_at=now,
            messages=[],
        )
        db.add(record)
        return record

    def get_or_create_active(self, draft: SessionDraft) -> Tuple[ChatSession, bool]:
        """
        Return the active session for the draft's order and customer, creating
        one if none exists. Returns (session, created).
        """
        _validate_draft(draft)
        with self._hold(("order", draft.order_id, draft.customer_id)):
            existing = self.find_active_for_order(draft.order_id, draft.customer_id)
            if existing is not None:
                return existing, False
            try:
                return self.create(draft), True
            except Conflict:
                # Another process opened it first; the unique index kept it single.
                existing = self.find_active_for_order(draft.order_id, draft.customer_id)
                if existing is None:
                    raise
                return existing, False

    def get(self, session_id: SessionId) -> ChatSession:
        key = _coerce_id(session_id)
        with self._translate_errors("get", key):
            with self._database.db_session() as db:
                record = db.get(SupportSession, key)
                if record is None:
                    raise SessionNotFound(f"Session {key} not found", key)
                return _snapshot(record)

    def find_latest_for_order(self, order_id: str) -> Optional[ChatSession]:
        """Most recently opened session for an order, whatever its status."""
        with self._translate_errors("find_latest"):
            with self._database.db_session() as db:
                record = db.scalars(
                    select(SupportSession)
                    .where(SupportSession.order_id == order_id)
                    .order_by(SupportSession.created_at.desc(), SupportSession.id)
                    .limit(1)
                ).first()
                return _snapshot(record) if record is not None else None

    def find_active_for_order(
        self, order_id: str, customer_id: str
    ) -> Optional[ChatSession]:
        with self._translate_errors("find_active"):
            with self._database.db_session() as db:
                record = db.scalars(
                    select(SupportSession)
                    .where(
                        SupportSession.order_id == order_id,
                        SupportSession.customer_id == customer_id,
                        SupportSession.status == SessionStatus.ACTIVE.value,
                    )
                    .order_by(SupportSession.created_at.desc())
                    .limit(1)
                ).first()
                return _snapshot(record) if record is not None else None

    @staticmethod
    def _sessions_query(
        customer_id: Optional[str] = None, status: Optional[SessionStatus] = None
    ) -> Select:
        """Sessions matching the filters, most recent activity first."""
        stmt = select(SupportSession)
        if customer_id is not None:
            stmt = stmt.where(SupportSession.customer_id == customer_id)
        if status is not None:
            stmt = stmt.where(SupportSession.status == SessionStatus(status).value)
        return stmt.order_by(SupportSession.last_message_at.desc(), SupportSession.id)

    def list_sessions(
        self,
        customer_id: Optional[str] = None,
        status: Optional[SessionStatus] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> Tuple[List[ChatSession], int]:
        """List sessions, most recent activity first. Returns (items, total)."""
        stmt = self._sessions_query(customer_id, status)
        with self._translate_errors("list"):
            with self._database.db_session() as db:
                total = db.scalar(
                    select(func.count()).select_from(stmt.order_by(None).subquery())
                )
                records = db.scalars(stmt.offset(skip).limit(limit)).all()
                return [_snapshot(r) for r in records], int(total or 0)

    def paginate_sessions(
        self,
        params: Params,
        customer_id: Optional[str] = None,
        status: Optional[SessionStatus] = None,
    ) -> Page[ChatSession]:
        """One page of sessions, most recent activity first."""
        stmt = self._sessions_query(customer_id, status)
        with self._translate_errors("paginate"):
            with self._database.db_session() as db:
                return paginate(
                    db,
                    stmt,
                    params=params,
                    transformer=lambda records: [_snapshot(r) for r in records],
                )

    def atomic_update(self, session_id: SessionId, mutation: Mutation) -> ChatSession:
        """
        Apply ``mutation`` to the current session and persist the result.

        ``mutation`` receives the current snapshot and returns the new one; it
        rejects by raising a SupportChatError, in which case nothing is
        written. Returning the snapshot unchanged writes nothing. Calls for
        the same session run one at a time.
        """
        key = _coerce_id(session_id)
        with self._hold(key):
            with self._translate_errors("update", key):
                with self._database.db_session() as db:
                    record = db.scalars(
                        select(SupportSession)
                        .where(SupportSession.id == key)
                        .with_for_update()
                    ).first()
                    if record is None:
                        raise SessionNotFound(f"Session {key} not found", key)
                    current = _snapshot(record)
                    updated = mutation(current)
                    if updated == current:
                        return current
                    _check_transition(current, updated)
                    self._apply(record, current, updated)
                    db.flush()
                    return _snapshot(record)

    def _apply(
        self, record: SupportSession, current: ChatSession, updated: ChatSession
    ) -> None:
        record.status = updated.status.value
        record.resolved_by = updated.resolved_by
        # Stored without an offset on some backends, so always write UTC.
        record.resolved_at = as_utc(updated.resolved_at)
        record.last_message_at = as_utc(updated.last_message_at)
        # Always touch the row so the version check covers every write.
        record.updated_at = as_utc(self._clock())

        existing = len(current.messages)
        for row, message in zip(record.messages, updated.messages[:existing]):
            if message.read and not row.read:
                row.read = True
        for position, message in enumerate(updated.messages[existing:], start=existing):
            record.messages.append(
                SupportMessage(
                    id=message.id,
                    position=position,
                    sender=message.sender.value,
                    sender_id=message.sender_id,
                    content=message.content,
                    timestamp=message.timestamp,
                    read=message.read,
                )
            )
