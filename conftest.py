import re
from datetime import datetime

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from database import get_db, init_db, make_engine
from models import Book, Member

DAY_0 = datetime(2024, 1, 1, 9, 0, 0)


@pytest.fixture
def engine(tmp_path, request):
    # Unique database file per test
    safe_name = re.sub(r"[^A-Za-z0-9_.-]", "_", request.node.name)
    db_file = tmp_path / f"test_{safe_name}.db"
    engine = make_engine(f"sqlite:///{db_file}")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, expire_on_commit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def seed(session_factory):
    """Insert members and books, e.g. ``seed(members={"M001": "Angga"}, books={"JK-45": 1})``."""

    def _seed(members=None, books=None):
        with session_factory() as session:
            for code, name in (members or {}).items():
                session.add(Member(code=code, name=name))
            for code, stock in (books or {}).items():
                session.add(Book(code=code, title=f"Title {code}", author=f"Author {code}", stock=stock))
            session.commit()

    return _seed


class Clock:
    """Settable stand-in for the current time."""

    def __init__(self, now=DAY_0):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def client(session_factory, clock):
    from main import app, get_clock

    def _get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_clock] = lambda: clock
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
