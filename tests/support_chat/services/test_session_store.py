"""Tests for SessionStore."""

import threading
from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest
from fastapi_pagination import Params
from sqlalchemy import update

from support_chat.constants.support_chat import SenderRole, SessionStatus
from support_chat.core.errors import (
    Conflict,
    SessionClosed,
    SessionNotFound,
    StoreUnavailable,
    ValidationError,
)
from support_chat.db import DatabaseManager
from support_chat.models.support_session import SupportSession
from support_chat.schemas.support_chat import ChatMessage, ChatSession, SessionDraft
from support_chat.services.session_store import SessionStore


@pytest.fixture
def draft(faker):
    return SessionDraft(
        order_id=faker.uuid4(),
        customer_id=faker.uuid4(),
        issue="cold food",
        category="food-quality",
    )


def _version(database, session_id):
    with database.db_session() as db:
        return db.get(SupportSession, session_id).version


def _append(
    session, content="hello", sender=SenderRole.CUSTOMER, offset=timedelta(microseconds=1)
):
    last = session.last_message
    base = last.timestamp if last else session.created_at
    message = ChatMessage(
        id=uuid4(),
        sender=sender,
        sender_id="someone",
        content=content,
        timestamp=base + offset,
    )
    return session.model_copy(
        update={
            "messages": session.messages + (message,),
            "last_message_at": message.timestamp,
        }
    )


def _resolve(session):
    return session.model_copy(
        update={
            "status": SessionStatus.RESOLVED,
            "resolved_by": "A1",
            "resolved_at": session.created_at + timedelta(seconds=1),
        }
    )


def test_create_assigns_id_and_created_at(store, draft):
    """create returns an active session with no messages."""
    session = store.create(draft)
    assert session.id is not None
    assert session.created_at is not None
    assert session.status == SessionStatus.ACTIVE
    assert session.messages == ()
    assert session.last_message_at == session.created_at
    assert session.resolved_by is None
    assert session.resolved_at is None


def test_create_persists(store, draft):
    session = store.create(draft)
    loaded = store.get(session.id)
    assert loaded == session


@pytest.mark.parametrize("field", ["order_id", "customer_id", "issue"])
def test_create_rejects_missing_fields(store, draft, field):
    """create raises ValidationError when a required field is blank."""
    bad = draft.model_copy(update={field: "   "})
    with pytest.raises(ValidationError):
        store.create(bad)


def test_get_not_found(store):
    with pytest.raises(SessionNotFound):
        store.get(uuid4())


def test_get_malformed_id_is_not_found(store):
    with pytest.raises(SessionNotFound):
        store.get("not-a-uuid")


def test_atomic_update_persists_append(store, draft):
    session = store.create(draft)
    updated = store.atomic_update(session.id, lambda s: _append(s, "first"))
    assert [m.content for m in updated.messages] == ["first"]
    assert store.get(session.id) == updated


def test_atomic_update_unchanged_writes_nothing(store, database, draft):
    """Returning the snapshot unchanged leaves the stored row untouched."""
    session = store.create(draft)
    before = _version(database, session.id)
    result = store.atomic_update(session.id, lambda s: s)
    assert result == session
    assert _version(database, session.id) == before


def test_atomic_update_bumps_version(store, database, draft):
    session = store.create(draft)
    before = _version(database, session.id)
    store.atomic_update(session.id, lambda s: _append(s))
    assert _version(database, session.id) == before + 1


def test_atomic_update_not_found(store):
    with pytest.raises(SessionNotFound):
        store.atomic_update(uuid4(), lambda s: s)


def test_atomic_update_rejection_propagates_and_writes_nothing(store, draft):
    session = store.create(draft)

    def reject(s):
        raise SessionClosed("closed", s.id)

    with pytest.raises(SessionClosed):
        store.atomic_update(session.id, reject)
    assert store.get(session.id) == session


def test_atomic_update_rejects_immutable_field_change(store, draft):
    session = store.create(draft)
    with pytest.raises(Conflict):
        store.atomic_update(
            session.id, lambda s: s.model_copy(update={"issue": "changed"})
        )
    assert store.get(session.id).issue == "cold food"


def test_atomic_update_rejects_rewriting_history(store, draft):
    session = store.create(draft)
    session = store.atomic_update(session.id, lambda s: _append(s, "original"))

    def rewrite(s):
        edited = s.messages[0].model_copy(update={"content": "edited"})
        return s.model_copy(update={"messages": (edited,)})

    with pytest.raises(Conflict):
        store.atomic_update(session.id, rewrite)
    assert store.get(session.id).messages[0].content == "original"


def test_atomic_update_rejects_dropping_messages(store, draft):
    session = store.create(draft)
    store.atomic_update(session.id, lambda s: _append(s))
    with pytest.raises(Conflict):
        store.atomic_update(session.id, lambda s: s.model_copy(update={"messages": ()}))


def test_atomic_update_rejects_marking_unread(store, draft):
    session = store.create(draft)
    store.atomic_update(session.id, lambda s: _append(s))

    def mark(read):
        def mutation(s):
            message = s.messages[0].model_copy(update={"read": read})
            return s.model_copy(update={"messages": (message,)})

        return mutation

    assert store.atomic_update(session.id, mark(True)).messages[0].read is True
    with pytest.raises(Conflict):
        store.atomic_update(session.id, mark(False))


def test_atomic_update_rejects_out_of_order_append(store, draft):
    session = store.create(draft)
    store.atomic_update(
        session.id, lambda s: _append(s, "first", offset=timedelta(microseconds=10))
    )
    with pytest.raises(Conflict):
        store.atomic_update(
            session.id,
            lambda s: _append(s, "second", offset=timedelta(microseconds=-5)),
        )


def test_atomic_update_rejects_reopening(store, draft):
    session = store.create(draft)
    resolved_at = session.created_at + timedelta(minutes=5)
    store.atomic_update(
        session.id,
        lambda s: s.model_copy(
            update={
                "status": SessionStatus.RESOLVED,
                "resolved_by": "A1",
                "resolved_at": resolved_at,
            }
        ),
    )
    with pytest.raises(Conflict):
        store.atomic_update(
            session.id,
            lambda s: s.model_copy(
                update={
                    "status": SessionStatus.ACTIVE,
                    "resolved_by": None,
                    "resolved_at": None,
                }
            ),
        )
    assert store.get(session.id).status == SessionStatus.RESOLVED


def test_atomic_update_rejects_resolution_without_resolver(store, draft):
    session = store.create(draft)
    with pytest.raises(Conflict):
        store.atomic_update(
            session.id,
            lambda s: s.model_copy(update={"status": SessionStatus.RESOLVED}),
        )


def test_atomic_update_stale_version_is_conflict(store, database, draft):
    """A writer that bypasses the store between read and write causes Conflict."""
    session = store.create(draft)

    def mutation(s):
        with database.db_session() as other:
            other.execute(
                update(SupportSession)
                .where(SupportSession.id == s.id)
                .values(version=SupportSession.version + 1)
            )
        return _append(s)

    with pytest.raises(Conflict):
        store.atomic_update(session.id, mutation)
    assert store.get(session.id).messages == ()


def test_atomic_update_lock_timeout_is_conflict(database, draft):
    """A writer that cannot get the session within the timeout gets Conflict."""
    store = SessionStore(database, lock_timeout=0.05)
    session = store.create(draft)
    inside = threading.Event()
    release = threading.Event()

    def slow(s):
        inside.set()
        release.wait(5)
        return _append(s)

    worker = threading.Thread(target=store.atomic_update, args=(session.id, slow))
    worker.start()
    try:
        assert inside.wait(5)
        with pytest.raises(Conflict):
            store.atomic_update(session.id, lambda s: _append(s))
    finally:
        release.set()
        worker.join(5)
    assert len(store.get(session.id).messages) == 1


def test_atomic_update_different_sessions_do_not_block(store, faker):
    """An in-flight update on one session does not hold up another session."""
    first = store.create(
        SessionDraft(
            order_id=faker.uuid4(), customer_id="C1", issue="late", category="delay"
        )
    )
    second = store.create(
        SessionDraft(
            order_id=faker.uuid4(), customer_id="C2", issue="cold", category="quality"
        )
    )
    other_done = threading.Event()
    results = {}

    def waits_for_other(s):
        results["other_finished_first"] = other_done.wait(5)
        return _append(s)

    worker = threading.Thread(
        target=store.atomic_update, args=(first.id, waits_for_other)
    )
    worker.start()
    store.atomic_update(second.id, lambda s: _append(s))
    other_done.set()
    worker.join(5)

    assert results["other_finished_first"] is True
    assert len(store.get(first.id).messages) == 1
    assert len(store.get(second.id).messages) == 1


def test_store_unavailable_when_database_unreachable(tmp_path, draft):
    broken = DatabaseManager(f"sqlite:///{tmp_path / 'missing' / 'nested' / 'x.db'}")
    store = SessionStore(broken, lock_timeout=1)
    with pytest.raises(StoreUnavailable):
        store.create(draft)
    with pytest.raises(StoreUnavailable):
        store.get(uuid4())
    broken.dispose()


def test_find_active_for_order(store, draft):
    assert store.find_active_for_order(draft.order_id, draft.customer_id) is None
    session = store.create(draft)
    found = store.find_active_for_order(draft.order_id, draft.customer_id)
    assert found is not None
    assert found.id == session.id
    assert store.find_active_for_order(draft.order_id, "someone-else") is None


def test_get_or_create_active_reuses_active_session(store, draft):
    first, created = store.get_or_create_active(draft)
    assert created is True
    again, created_again = store.get_or_create_active(draft)
    assert created_again is False
    assert again.id == first.id


def test_get_or_create_active_after_resolution_creates_new(store, draft):
    first, _ = store.get_or_create_active(draft)
    store.atomic_update(
        first.id,
        lambda s: s.model_copy(
            update={
                "status": SessionStatus.RESOLVED,
                "resolved_by": "A1",
                "resolved_at": s.created_at + timedelta(seconds=1),
            }
        ),
    )
    second, created = store.get_or_create_active(draft)
    assert created is True
    assert second.id != first.id


def test_get_or_create_active_concurrent_creates_once(store, draft):
    barrier = threading.Barrier(4)
    results = []
    lock = threading.Lock()

    def open_one():
        barrier.wait(5)
        session, created = store.get_or_create_active(draft)
        with lock:
            results.append((session.id, created))

    threads = [threading.Thread(target=open_one) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(10)

    assert len(results) == 4
    assert len({session_id for session_id, _ in results}) == 1
    assert sum(1 for _, created in results if created) == 1


def test_list_sessions_orders_by_last_activity(store, faker):
    drafts = [
        SessionDraft(
            order_id=faker.uuid4(), customer_id="C1", issue=f"issue {i}", category="x"
        )
        for i in range(3)
    ]
    sessions = [store.create(d) for d in drafts]
    # Activity on the oldest session moves it to the top.
    store.atomic_update(sessions[0].id, lambda s: _append(s, offset=timedelta(hours=1)))

    items, total = store.list_sessions()
    assert total == 3
    assert items[0].id == sessions[0].id


def test_list_sessions_filters_and_paginates(store, faker):
    for i in range(3):
        store.create(
            SessionDraft(
                order_id=faker.uuid4(), customer_id="C1", issue="a", category="x"
            )
        )
    other = store.create(
        SessionDraft(order_id=faker.uuid4(), customer_id="C2", issue="b", category="x")
    )

    items, total = store.list_sessions(customer_id="C1", limit=2)
    assert total == 3
    assert len(items) == 2
    assert all(s.customer_id == "C1" for s in items)

    items, total = store.list_sessions(customer_id="C1", skip=2, limit=2)
    assert total == 3
    assert len(items) == 1

    items, total = store.list_sessions(status=SessionStatus.RESOLVED)
    assert total == 0
    items, total = store.list_sessions(customer_id="C2", status=SessionStatus.ACTIVE)
    assert [s.id for s in items] == [other.id]


def test_paginate_sessions(store, faker):
    created = [
        store.create(
            SessionDraft(
                order_id=faker.uuid4(), customer_id="C1", issue="late", category="x"
            )
        )
        for _ in range(3)
    ]
    page = store.paginate_sessions(Params(page=1, size=2), customer_id="C1")
    assert page.total == 3
    assert [s.id for s in page.items] == [created[2].id, created[1].id]
    assert all(isinstance(s, ChatSession) for s in page.items)

    page = store.paginate_sessions(Params(page=2, size=2), customer_id="C1")
    assert [s.id for s in page.items] == [created[0].id]


def test_find_latest_for_order_ignores_status(store, draft):
    assert store.find_latest_for_order(draft.order_id) is None
    first = store.create(draft)
    store.atomic_update(first.id, _resolve)
    assert store.find_latest_for_order(draft.order_id).id == first.id

    second = store.create(draft)
    assert store.find_latest_for_order(draft.order_id).id == second.id


def test_create_second_active_session_for_order_is_conflict(store, draft):
    first = store.create(draft)
    with pytest.raises(Conflict):
        store.create(draft)
    store.atomic_update(first.id, _resolve)
    assert store.create(draft).status == SessionStatus.ACTIVE


def test_get_or_create_active_returns_session_created_elsewhere(
    store, draft, monkeypatch
):
    """Another process creating the session between lookup and insert is absorbed."""
    existing = store.create(draft)
    real_find = store.find_active_for_order
    lookups = []

    def find_after_race(order_id, customer_id):
        lookups.append(order_id)
        if len(lookups) == 1:
            return None
        return real_find(order_id, customer_id)

    monkeypatch.setattr(store, "find_active_for_order", find_after_race)
    session, created = store.get_or_create_active(draft)
    assert created is False
    assert session.id == existing.id
    assert len(lookups) == 2


def test_create_stores_utc_from_offset_clock(database, draft):
    now = datetime(2026, 1, 1, 10, 0, tzinfo=timezone(timedelta(hours=5, minutes=30)))
    store = SessionStore(database, clock=lambda: now, lock_timeout=1)
    session = store.create(draft)
    fetched = store.get(session.id)
    assert session.created_at == now
    assert fetched.created_at == now
    assert fetched.last_message_at == now
    assert fetched == session
