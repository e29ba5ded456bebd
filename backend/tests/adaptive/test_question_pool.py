"""
Tests for the SQL-backed question repository and the pool cache.
"""

from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from app.core.adaptive.errors import QuestionRepositoryUnavailableError
from app.core.adaptive.question_pool import (
    QuestionPoolCache,
    SqlQuestionRepository,
    add_items,
    question_to_item,
)
from app.core.adaptive.repository import ItemQuery, ItemSort
from app.core.cache import SimpleCache
from app.models import Question
from tests.conftest import make_item


class TestQuestionPoolCache:
    def test_loads_once_within_ttl(self):
        cache = QuestionPoolCache(ttl_seconds=300)
        loader = MagicMock(return_value=[make_item("A")])
        cache.get_pool(loader)
        pool = cache.get_pool(loader)
        assert loader.call_count == 1
        assert [i.question_id for i in pool] == ["A"]

    def test_invalidate_forces_reload(self):
        cache = QuestionPoolCache(ttl_seconds=300)
        loader = MagicMock(return_value=[])
        cache.get_pool(loader)
        cache.invalidate()
        cache.get_pool(loader)
        assert loader.call_count == 2

    def test_zero_ttl_disables_caching(self):
        cache = QuestionPoolCache(ttl_seconds=0)
        loader = MagicMock(return_value=[])
        cache.get_pool(loader)
        cache.get_pool(loader)
        assert loader.call_count == 2

    def test_uses_injected_cache(self):
        backing = SimpleCache()
        cache = QuestionPoolCache(ttl_seconds=60, cache=backing)
        cache.get_pool(lambda: [make_item("A")])
        assert backing.get(QuestionPoolCache.POOL_KEY) is not None

    def test_invalidate_clears_injected_cache(self):
        backing = SimpleCache()
        cache = QuestionPoolCache(ttl_seconds=60, cache=backing)
        loader = MagicMock(return_value=[make_item("A")])
        cache.get_pool(loader)
        cache.invalidate()
        assert backing.get(QuestionPoolCache.POOL_KEY) is None
        cache.get_pool(loader)
        assert loader.call_count == 2


class TestQuestionToItem:
    def test_converts_row(self):
        row = Question(
            id=1,
            question_id="NEO_1",
            text="I have a vivid imagination",
            category="personality",
            trait="openness",
            facet="fantasy",
            tags=["anchor"],
            discrimination_index=0.8,
            reverse_scored=False,
            is_active=True,
        )
        item = question_to_item(row)
        assert item.question_id == "NEO_1"
        assert item.tags == ("anchor",)
        assert item.discrimination_index == 0.8

    def test_malformed_row_is_skipped(self):
        assert question_to_item(Question(id=2, question_id="", category="personality")) is None
        assert question_to_item(Question(id=3, question_id="X", category=None)) is None

    def test_non_list_tags_are_ignored(self):
        row = Question(id=4, question_id="X", category="personality", tags={"a": 1})
        assert question_to_item(row).tags == ()


class TestSqlQuestionRepository:
    def test_queries_against_seeded_bank(self, seeded_db, item_bank):
        repo = SqlQuestionRepository(seeded_db, QuestionPoolCache(ttl_seconds=300))
        found = repo.find_many(
            ItemQuery(category="personality", traits=("openness",), any_tags=("anchor",))
        )
        assert [i.question_id for i in found] == ["BFI_OPENNESS_ANCHOR"]
        assert repo.count_available() == len(item_bank)

    def test_inactive_rows_are_excluded(self, db_session):
        add_items(db_session, [make_item("A"), make_item("B", is_active=False)])
        db_session.commit()
        repo = SqlQuestionRepository(db_session, QuestionPoolCache(ttl_seconds=0))
        assert [i.question_id for i in repo.find_many(ItemQuery())] == ["A"]

    def test_pool_is_cached_until_invalidated(self, db_session):
        add_items(db_session, [make_item("A", discrimination_index=0.5)])
        db_session.commit()
        pool_cache = QuestionPoolCache(ttl_seconds=300)
        repo = SqlQuestionRepository(db_session, pool_cache)
        assert repo.find_one(ItemQuery(), order=ItemSort.DISCRIMINATION_DESC).question_id == "A"

        add_items(db_session, [make_item("B", discrimination_index=0.9)])
        db_session.commit()
        assert repo.find_one(ItemQuery(), order=ItemSort.DISCRIMINATION_DESC).question_id == "A"

        pool_cache.invalidate()
        assert repo.find_one(ItemQuery(), order=ItemSort.DISCRIMINATION_DESC).question_id == "B"

    def test_find_by_ids_keeps_order_and_skips_missing(self, seeded_db):
        repo = SqlQuestionRepository(seeded_db, QuestionPoolCache())
        found = repo.find_by_ids(["ANXIETY_GAD7_1", "NOPE", "DEPRESSION_PHQ9_1"])
        assert [i.question_id for i in found] == ["ANXIETY_GAD7_1", "DEPRESSION_PHQ9_1"]
        assert repo.find_by_ids([]) == []

    def test_database_failure_is_reported_unavailable(self):
        db = MagicMock()
        db.scalars.side_effect = OperationalError("SELECT", {}, Exception("connection refused"))
        repo = SqlQuestionRepository(db, QuestionPoolCache(ttl_seconds=0))
        with pytest.raises(QuestionRepositoryUnavailableError):
            repo.find_many(ItemQuery())
        with pytest.raises(QuestionRepositoryUnavailableError):
            repo.find_by_ids(["A"])


def test_add_items_round_trips_fields(db_session):
    item = make_item(
        "V_1A",
        category="validity_scales",
        subcategory="inconsistency",
        tags=("check",),
        pair_number=1,
        reverse_scored=True,
    )
    assert add_items(db_session, [item]) == 1
    db_session.commit()
    stored = question_to_item(db_session.query(Question).filter_by(question_id="V_1A").one())
    assert stored == item
