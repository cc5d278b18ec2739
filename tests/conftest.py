"""Shared fixtures: a throwaway SQLite database per test and API clients."""

from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from taskboard.client import KanbanClient
from taskboard.config import get_settings
from taskboard.db import get_session, init_db, make_engine
from taskboard.main import app


@pytest.fixture(autouse=True)
def dev_auth(monkeypatch: pytest.MonkeyPatch):
    """Run without a JWT secret so bearer tokens are plain user ids."""
    monkeypatch.delenv("JWT_SECRET", raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def engine(tmp_path: Path) -> Engine:
    test_engine = make_engine(f"sqlite:///{tmp_path / 'taskboard-test.db'}")
    init_db(test_engine)
    yield test_engine
    test_engine.dispose()


@pytest.fixture
def session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def session(session_factory: sessionmaker):
    db = session_factory()
    yield db
    db.close()


@pytest.fixture(autouse=True)
def override_session(session_factory: sessionmaker):
    def _session():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_session] = _session
    yield
    app.dependency_overrides.clear()


def bearer(user_id: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {user_id}"}


@pytest.fixture
def http() -> TestClient:
    """Raw HTTP client authenticated as ``user-a``."""
    return TestClient(app, headers=bearer("user-a"))


@pytest.fixture
def api(http: TestClient) -> KanbanClient:
    return KanbanClient(http)


@pytest.fixture
def other_api() -> KanbanClient:
    """Client for ``user-b``, who owns nothing of ``user-a``'s."""
    return KanbanClient(TestClient(app, headers=bearer("user-b")))


@pytest.fixture
def board(api: KanbanClient) -> dict:
    """A board with Todo, Doing and Done columns, returned as the full tree."""
    created = api.create_board(
        "Launch",
        columns=[{"name": "Todo"}, {"name": "Doing"}, {"name": "Done"}],
    )
    return api.get_board(created["id"])


def column_named(tree: dict, name: str) -> dict:
    return next(c for c in tree["columns"] if c["name"] == name)


def positions_of(items: list[dict]) -> list[int]:
    return [item["position"] for item in items]
