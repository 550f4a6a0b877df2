"""Shared fixtures: throwaway SQLite database, store, engine and API client."""

import threading

import pytest
from fastapi.testclient import TestClient

from support_chat.db import DatabaseManager
from support_chat.main import create_app
from support_chat.routers.utils.dependencies import get_notifier, get_session_store
from support_chat.services.notifier import Notifier
from support_chat.services.session_store import SessionStore
from support_chat.services.support_chat_engine import SupportChatEngine

from tests.fixtures.support_chat_fixtures import *  # noqa: F401,F403


class RecordingNotifier(Notifier):
    """Collects delivered events in order."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.events = []

    def notify(self, event) -> None:
        with self._lock:
            self.events.append(event)

    def of_type(self, event_type: str):
        return [e for e in self.events if e.event_type == event_type]

    def clear(self) -> None:
        with self._lock:
            self.events.clear()


@pytest.fixture
def database(tmp_path):
    """File-backed SQLite so each thread gets its own connection."""
    manager = DatabaseManager(f"sqlite:///{tmp_path / 'support_chat.db'}")
    manager.create_all()
    yield manager
    manager.dispose()


@pytest.fixture
def store(database):
    return SessionStore(database, lock_timeout=10)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def chat_engine(store, notifier):
    return SupportChatEngine(store, notifier=notifier)


@pytest.fixture
def client(store, notifier):
    """Client wired to the test store and recording notifier."""
    app = create_app(testing=True)
    app.dependency_overrides[get_session_store] = lambda: store
    app.dependency_overrides[get_notifier] = lambda: notifier
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
