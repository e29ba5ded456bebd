"""
SQL-backed question repository.

The active question pool is loaded once and served from an injected
``QuestionPoolCache`` until its TTL expires or ``invalidate()`` is called
(e.g. after the bank is edited). Queries are then evaluated in memory, so a
whole stage selection costs at most one database round trip.
"""

import logging
from typing import Callable, Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.adaptive.errors import QuestionRepositoryUnavailableError
from app.core.adaptive.repository import Item, PoolBackedRepository
from app.core.cache import SimpleCache
from app.models.models import Question

logger = logging.getLogger(__name__)


class QuestionPoolCache:
    """TTL cache for the active item pool."""

    POOL_KEY = "question_pool:active"

    def __init__(self, ttl_seconds: int = 300, cache: Optional[SimpleCache] = None):
        self.ttl_seconds = ttl_seconds
        self._cache = cache if cache is not None else SimpleCache(default_ttl=ttl_seconds)

    def get_pool(self, loader: Callable[[], List[Item]]) -> List[Item]:
        if self.ttl_seconds <= 0:
            return loader()
        pool = self._cache.get(self.POOL_KEY)
        if pool is not None:
            return pool
        logger.debug("Question pool cache miss - loading from database")
        pool = loader()
        self._cache.set(self.POOL_KEY, pool, ttl=self.ttl_seconds)
        logger.info(f"Cached {len(pool)} active questions for {self.ttl_seconds}s")
        return pool

    def invalidate(self) -> None:
        self._cache.delete(self.POOL_KEY)
        logger.info("Question pool cache invalidated")


def question_to_item(question: Question) -> Optional[Item]:
    """Convert an ORM row, or return None (logged) when the row is unusable."""
    if not question.question_id or not question.category:
        logger.warning(f"Skipping malformed question row id={question.id}")
        return None
    tags = question.tags or []
    if not isinstance(tags, list):
        logger.warning(f"Question {question.question_id} has non-list tags; ignoring them")
        tags = []
    return Item(
        question_id=question.question_id,
        category=question.category,
        text=question.text or "",
        subcategory=question.subcategory,
        trait=question.trait,
        facet=question.facet,
        instrument=question.instrument,
        tags=tuple(str(t) for t in tags),
        discrimination_index=question.discrimination_index,
        difficulty=question.difficulty,
        reverse_scored=bool(question.reverse_scored),
        pair_number=question.pair_number,
        is_active=bool(question.is_active),
    )


def item_to_question(item: Item) -> Question:
    return Question(
        question_id=item.question_id,
        text=item.text,
        category=item.category,
        subcategory=item.subcategory,
        trait=item.trait,
        facet=item.facet,
        instrument=item.instrument,
        tags=list(item.tags),
        discrimination_index=item.discrimination_index,
        difficulty=item.difficulty,
        reverse_scored=item.reverse_scored,
        pair_number=item.pair_number,
        is_active=item.is_active,
    )


class SqlQuestionRepository(PoolBackedRepository):
    """QuestionRepository over the ``questions`` table."""

    def __init__(self, db: Session, pool_cache: QuestionPoolCache):
        self.db = db
        self.pool_cache = pool_cache

    def _load_active_pool(self) -> List[Item]:
        try:
            rows = self.db.scalars(
                select(Question).where(Question.is_active.is_(True)).order_by(Question.id)
            ).all()
        except SQLAlchemyError as e:
            logger.error(f"Failed to load active question pool: {e}")
            raise QuestionRepositoryUnavailableError("loading the active question pool", e) from e
        return [item for item in (question_to_item(row) for row in rows) if item is not None]

    def _active_pool(self) -> List[Item]:
        return self.pool_cache.get_pool(self._load_active_pool)

    def find_by_ids(self, question_ids: Iterable[str]) -> List[Item]:
        ids = list(question_ids)
        if not ids:
            return []
        try:
            rows = self.db.scalars(select(Question).where(Question.question_id.in_(ids))).all()
        except SQLAlchemyError as e:
            logger.error(f"Failed to look up questions by id: {e}")
            raise QuestionRepositoryUnavailableError("looking up questions by id", e) from e
        by_id = {}
        for row in rows:
            item = question_to_item(row)
            if item is not None:
                by_id[item.question_id] = item
        missing = [qid for qid in ids if qid not in by_id]
        if missing:
            logger.warning(f"Question ids not found in bank: {missing}")
        return [by_id[qid] for qid in ids if qid in by_id]


def add_items(db: Session, items: Iterable[Item]) -> int:
    """Insert items into the question bank; returns how many were added."""
    questions = [item_to_question(item) for item in items]
    db.add_all(questions)
    db.flush()
    return len(questions)
