from __future__ import annotations

import os
from typing import Generator

# Keep the background scheduler out of TestClient startup
os.environ.setdefault("AI_SCHEDULER_ENABLED", "false")

import pytest
import torch
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.config import EngineSettings
from app.models.base import Base
from app.services.ai_engine import InventoryAIEngine
from app.services.cache import CacheService


# In-memory SQLite shared across connections
engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
    future=True,
)
SessionTesting = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(scope="session", autouse=True)
def create_test_database() -> Generator[None, None, None]:
    """Create/drop all tables once per test session."""
    Base.metadata.create_all(bind=engine)
    try:
        yield
    finally:
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db_session() -> Generator:
    """Provide a transactional SQLAlchemy Session for each test.

    Each test runs in its own transaction which is rolled back afterwards,
    so DB state is isolated between tests.
    """
    connection = engine.connect()
    trans = connection.begin()
    session = SessionTesting(bind=connection)
    try:
        yield session
    finally:
        session.close()
        trans.rollback()
        connection.close()


@pytest.fixture
def settings(tmp_path) -> EngineSettings:
    """Engine settings with a throwaway model directory and a single training epoch."""
    torch.manual_seed(0)
    return EngineSettings(epochs=1, models_dir=tmp_path / "models")


@pytest.fixture
def ai_engine(settings) -> Generator[InventoryAIEngine, None, None]:
    engine_ = InventoryAIEngine(settings=settings, cache=CacheService())
    try:
        yield engine_
    finally:
        engine_.shutdown()
