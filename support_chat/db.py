"""Database engine, declarative base and session management."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Iterator, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.engine.url import make_url
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from support_chat.config import get_settings

Base = declarative_base()


class DatabaseManager:
    """Lazily builds the engine and hands out short-lived ORM sessions."""

    def __init__(self, database_url: Optional[str] = None, **engine_kwargs: Any) -> None:
        self._database_url = database_url
        self._engine_kwargs = engine_kwargs
        self._engine: Optional[Engine] = None
        self._session_factory: Optional[sessionmaker] = None

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            self._engine = self._create_engine()
        return self._engine

    @property
    def session_factory(self) -> sessionmaker:
        if self._session_factory is None:
            self._session_factory = sessionmaker(
                bind=self.engine, autoflush=False, expire_on_commit=False
            )
        return self._session_factory

    def _create_engine(self) -> Engine:
        settings = get_settings()
        url = make_url(self._database_url or settings.database_url)
        kwargs: dict[str, Any] = {"pool_pre_ping": True}
        if url.get_backend_name() == "sqlite":
            kwargs["connect_args"] = {"check_same_thread": False}
        else:
            kwargs["pool_size"] = settings.database_pool_size
            kwargs["max_overflow"] = settings.database_max_overflow
        kwargs.update(self._engine_kwargs)
        return create_engine(url, **kwargs)

    @contextmanager
    def db_session(self) -> Iterator[Session]:
        """Yield a session that commits on success and rolls back on error."""
        session = self.session_factory()
        try:
            yield session
            session.commit()
        except BaseException:
            session.rollback()
            raise
        finally:
            session.close()

    def create_all(self) -> None:
        # Import models so they register on Base.metadata
        import support_chat.models  # noqa: F401

        Base.metadata.create_all(self.engine)

    def dispose(self) -> None:
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None
            self._session_factory = None


db_manager = DatabaseManager()
