"""
Pytest configuration and shared fixtures for testing.
"""
import random
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from app.core.adaptive.confidence import ConfidenceTracker, DimensionResponse
from app.core.adaptive.config import AdaptiveEngineConfig
from app.core.adaptive.dimensions import DimensionMapper
from app.core.adaptive.question_pool import QuestionPoolCache, add_items
from app.core.adaptive.repository import InMemoryQuestionRepository, Item
from app.core.adaptive.selection import SelectionContext
from app.core.adaptive.session import ResponseRecord
from app.core.adaptive.simulation import build_item_bank
from app.core.datetime_utils import utc_now
from app.models import Base, get_db


@asynccontextmanager
async def _test_lifespan(app):
    """No-op lifespan for tests; tables are managed by the db_session fixture."""
    yield


def create_test_application():
    """Create the production app with the lifespan disabled."""
    from app.main import create_application

    test_app = create_application()
    test_app.router.lifespan_context = _test_lifespan
    return test_app


# SQLite file next to this conftest so it never lands in the working directory
_TEST_DB = Path(__file__).parent / "test.db"
SQLALCHEMY_DATABASE_URL = f"sqlite:///{_TEST_DB}"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL, connect_args={"check_same_thread": False}
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


# ----------------------------------------------------------------------
# Item and response factories
# ----------------------------------------------------------------------


def make_item(question_id: str, category: str = "personality", **kwargs: Any) -> Item:
    return Item(question_id=question_id, category=category, text=f"Text {question_id}", **kwargs)


def make_response(
    item: Item,
    score: float = 50.0,
    raw_score: Optional[float] = None,
    dimensions: Optional[List[str]] = None,
) -> ResponseRecord:
    dims = dimensions if dimensions is not None else DimensionMapper.get_dimensions(item)
    return ResponseRecord.from_item(item, score=score, dimensions=tuple(dims), raw_score=raw_score)


def tracker_with_scores(scores: Dict[str, List[float]], discrimination: float = 0.7) -> ConfidenceTracker:
    """Tracker with the given response scores recorded per dimension."""
    tracker = ConfidenceTracker()
    for dimension, values in scores.items():
        for i, value in enumerate(values):
            tracker.update_confidence(
                dimension,
                DimensionResponse(
                    question_id=f"{dimension}_{i}",
                    score=value,
                    timestamp=utc_now(),
                    discrimination_index=discrimination,
                ),
            )
    return tracker


@pytest.fixture
def item_factory() -> Callable[..., Item]:
    return make_item


@pytest.fixture
def response_factory() -> Callable[..., ResponseRecord]:
    return make_response


@pytest.fixture
def tracker_factory() -> Callable[..., ConfidenceTracker]:
    return tracker_with_scores


# ----------------------------------------------------------------------
# Engine fixtures
# ----------------------------------------------------------------------


@pytest.fixture(scope="session")
def item_bank() -> List[Item]:
    """Synthetic bank covering every area the stages draw from."""
    return build_item_bank(seed=42)


@pytest.fixture
def repository(item_bank) -> InMemoryQuestionRepository:
    return InMemoryQuestionRepository(item_bank)


@pytest.fixture
def engine_config() -> AdaptiveEngineConfig:
    return AdaptiveEngineConfig()


@pytest.fixture
def context_factory(repository, engine_config) -> Callable[..., SelectionContext]:
    """Build a SelectionContext with sensible defaults for stage selector tests."""

    def _make(
        tracker: Optional[ConfidenceTracker] = None,
        responses: Optional[List[ResponseRecord]] = None,
        excluded_ids=(),
        repo=None,
        config: Optional[AdaptiveEngineConfig] = None,
        seed: int = 0,
    ) -> SelectionContext:
        responses = responses or []
        excluded = frozenset(excluded_ids) | frozenset(r.question_id for r in responses)
        return SelectionContext(
            repository=repo or repository,
            tracker=tracker or ConfidenceTracker(),
            responses=responses,
            excluded_ids=excluded,
            config=config or engine_config,
            rng=random.Random(seed),
        )

    return _make


# ----------------------------------------------------------------------
# Database / API fixtures
# ----------------------------------------------------------------------


@pytest.fixture(scope="function")
def db_session():
    """
    Create a fresh database session for each test.
    """
    Base.metadata.create_all(bind=engine)

    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def seeded_db(db_session, item_bank):
    """Database session with the synthetic bank loaded into ``questions``."""
    add_items(db_session, item_bank)
    db_session.commit()
    return db_session


@pytest.fixture
def test_app():
    return create_test_application()


@pytest.fixture(scope="function")
def client(test_app, seeded_db):
    """
    Test client with ``get_db`` overridden to use the test database.

    Each request gets its own session, as in production.
    """

    def override_get_db():
        db = TestingSessionLocal()
        try:
            yield db
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    test_app.dependency_overrides[get_db] = override_get_db
    test_app.state.question_pool_cache = QuestionPoolCache(ttl_seconds=300)
    with TestClient(test_app) as test_client:
        yield test_client
    test_app.dependency_overrides.clear()
