# tests/conftest.py
from __future__ import annotations

import os
from collections.abc import Generator, Iterator
from contextlib import nullcontext
from itertools import count

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("SECRET_KEY", "test-secret-key-for-blogx-chat")
os.environ.setdefault("PYTEST_RUNNING", "true")

from blogx_chat.core.security import create_access_token  # noqa: E402
from blogx_chat.db.session import Base  # noqa: E402
from blogx_chat.db.session import SessionFactory, get_session_factory  # noqa: E402
from blogx_chat.db.session import get_db as app_get_session  # noqa: E402
from blogx_chat.main import app as fastapi_app  # noqa: E402
from blogx_chat.models import Post, User  # noqa: E402
from blogx_chat.repositories.message_repo import MessageRepository  # noqa: E402
from blogx_chat.services.hooks import MessagingHooks  # noqa: E402
from blogx_chat.services.registry import ConnectionRegistry  # noqa: E402
from blogx_chat.services.relay import MessageRelay  # noqa: E402

TEST_DB_URL = "sqlite://"

_USER_COUNTER = count(1)


@pytest.fixture(scope="session")
def engine() -> Generator[Engine, None, None]:
    engine = create_engine(
        TEST_DB_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture()
def db_session(engine: Engine) -> Iterator[Session]:
    SessionLocal = sessionmaker(
        bind=engine,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
    )
    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()

        # Repository writes commit; wipe every table so each test starts clean.
        with engine.begin() as cleanup_conn:
            for table in reversed(Base.metadata.sorted_tables):
                cleanup_conn.execute(table.delete())


@pytest.fixture()
def repository(db_session: Session) -> MessageRepository:
    return MessageRepository(db_session)


@pytest.fixture(scope="session")
def app() -> FastAPI:
    return fastapi_app


@pytest.fixture(autouse=True)
def override_session_dependency(app: FastAPI, db_session: Session) -> Iterator[None]:
    def _get_session_override() -> Generator[Session, None, None]:
        yield db_session

    def _session_factory_override() -> SessionFactory:
        # Live channels share the test session instead of opening their own.
        return lambda: nullcontext(db_session)

    app.dependency_overrides[app_get_session] = _get_session_override
    app.dependency_overrides[get_session_factory] = _session_factory_override
    try:
        yield
    finally:
        app.dependency_overrides.pop(app_get_session, None)
        app.dependency_overrides.pop(get_session_factory, None)


@pytest.fixture(autouse=True)
def relay(app: FastAPI) -> Iterator[MessageRelay]:
    """Give every test its own registry so presence never leaks between tests."""
    previous = app.state.relay
    fresh = MessageRelay(ConnectionRegistry(), MessagingHooks(), require_token=False)
    app.state.relay = fresh
    try:
        yield fresh
    finally:
        app.state.relay = previous


@pytest.fixture()
def client(app: FastAPI) -> Iterator[TestClient]:
    with TestClient(app, base_url="http://test") as test_client:
        yield test_client


def make_user(db_session: Session, display_name: str) -> User:
    """Persist a user with a unique username."""
    number = next(_USER_COUNTER)
    user = User(username=f"user{number}", display_name=display_name)
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


@pytest.fixture()
def test_user(db_session: Session) -> User:
    """Create and return a persisted test user."""
    return make_user(db_session, "Test User")


@pytest.fixture()
def other_user(db_session: Session) -> User:
    """Create and return a second persisted user."""
    return make_user(db_session, "Other User")


@pytest.fixture()
def third_user(db_session: Session) -> User:
    return make_user(db_session, "Third User")


@pytest.fixture()
def auth_token(test_user: User) -> dict[str, str]:
    """Return authorization headers for the primary test user."""
    token = create_access_token(test_user.id)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def other_auth_token(other_user: User) -> dict[str, str]:
    """Return authorization headers for the secondary test user."""
    token = create_access_token(other_user.id)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def test_post(db_session: Session, other_user: User) -> Post:
    """Create a blog post that can be shared in a message."""
    post = Post(
        author_id=other_user.id,
        title="Notes on realtime systems",
        content="# Heading\n\nA **bold** claim about [sockets](https://example.com) and queues.",
        image="https://example.com/cover.png",
    )
    db_session.add(post)
    db_session.commit()
    db_session.refresh(post)
    return post
