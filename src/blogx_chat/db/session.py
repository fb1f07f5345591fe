"""Engine and request-scoped sessions for the message store."""

from __future__ import annotations

from collections.abc import Callable, Generator
from contextlib import AbstractContextManager
from typing import Any

from sqlalchemy import create_engine, event
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from blogx_chat.core.settings import settings


class Base(DeclarativeBase):
    """Declarative base for messages and the read-only user/post views."""


# Models register themselves on Base.metadata at import time.
import blogx_chat.models  # noqa: E402,F401

_is_sqlite = settings.effective_database_url.startswith("sqlite")

engine = create_engine(
    settings.effective_database_url,
    pool_pre_ping=True,
    echo=settings.sql_debug,
    # Relay persistence runs in worker threads.
    connect_args={"check_same_thread": False} if _is_sqlite else {},
)

if _is_sqlite:

    @event.listens_for(engine, "connect")
    def _enable_sqlite_foreign_keys(dbapi_connection: Any, _record: Any) -> None:
        # shared_post_id relies on ON DELETE SET NULL.
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

SessionFactory = Callable[[], AbstractContextManager[Session]]


def get_db() -> Generator[Session, None, None]:
    """Yield a session that is closed once the request ends."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_session_factory() -> SessionFactory:
    """Return the factory live channels use to open one session per frame."""
    return SessionLocal
