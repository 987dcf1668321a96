import os
import tempfile

import pytest
from contextlib import contextmanager
from sqlalchemy import create_engine, event, StaticPool
from sqlalchemy.orm import sessionmaker

os.environ["KONJUGO_SKIP_MIGRATIONS"] = "1"
os.environ["TESTING"] = "1"
os.environ["TASK_SYNC_ON_READ"] = "0"
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("LOG_DIR", tempfile.mkdtemp(prefix="konjugo-logs-"))

from konjugo.database import Base, get_db
from konjugo.deps import get_session_user_id
from konjugo.main import app
from konjugo.services.task_sync_state import sync_tracker


@contextmanager
def count_queries(db_session):
    """Context manager that counts SQL queries executed."""
    counter = {"count": 0}

    def _after_execute(conn, *args, **kwargs):
        counter["count"] += 1

    event.listen(db_session.bind, "after_execute", _after_execute)
    try:
        yield counter
    finally:
        event.remove(db_session.bind, "after_execute", _after_execute)


@pytest.fixture(autouse=True)
def _reset_sync_tracker():
    sync_tracker.reset()
    yield
    sync_tracker.reset()


@pytest.fixture
def db_session():
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    Session = sessionmaker(bind=engine)
    session = Session()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def session_user():
    """Mutable holder for the signed-in user id seen by the API (None = anonymous)."""
    return {"id": None}


@pytest.fixture
def client(db_session, session_user):
    from fastapi.testclient import TestClient

    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_user_id] = lambda: session_user["id"]
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
