import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("QUEUE_WORKER_ENABLED", "false")

import pytest  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

from agentcore.database import build_engine, init_db  # noqa: E402
from fakes import FakeChat, FakeCommerce  # noqa: E402


@pytest.fixture
def session_factory(tmp_path):
    """Sessions on a fresh file-backed SQLite database per test."""
    engine = build_engine(f"sqlite:///{tmp_path / 'agentcore.db'}")
    init_db(bind=engine)
    factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    yield factory
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def fake_chat():
    return FakeChat()


@pytest.fixture
def fake_commerce():
    return FakeCommerce(
        products=[
            {"id": 11, "sku": "GLU-100", "name": "Glucómetro Pro", "price": "250.00"},
            {"id": 12, "sku": "TIR-50", "name": "Tiras reactivas x50", "price": "180.00"},
        ]
    )
