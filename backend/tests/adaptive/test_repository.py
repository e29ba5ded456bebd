"""
Tests for Item, ItemQuery and the in-memory question repository.
"""

from app.core.adaptive.repository import (
    InMemoryQuestionRepository,
    Item,
    ItemQuery,
    ItemSort,
    sort_items,
)
from tests.conftest import make_item


def _ids(items):
    return [i.question_id for i in items]


class TestItemQuery:
    """Tests for ItemQuery.matches."""

    def test_empty_query_matches_active_items(self):
        assert ItemQuery().matches(make_item("A"))
        assert not ItemQuery().matches(make_item("B", is_active=False))

    def test_category_and_subcategory(self):
        item = make_item("V1", category="validity_scales", subcategory="inconsistency")
        assert ItemQuery(category="validity_scales", subcategory="inconsistency").matches(item)
        assert not ItemQuery(category="personality").matches(item)
        assert not ItemQuery(subcategory="infrequency").matches(item)

    def test_trait_and_facet_are_case_insensitive(self):
        item = make_item("P1", trait="Openness", facet="Ideas")
        assert ItemQuery(traits=("openness",), facets=("ideas",)).matches(item)
        assert not ItemQuery(traits=("openness",), facets=("fantasy",)).matches(item)

    def test_any_tags(self):
        item = make_item("C1", category="clinical_psychopathology", tags=("Depression", "mood"))
        assert ItemQuery(any_tags=("anxiety", "depression")).matches(item)
        assert not ItemQuery(any_tags=("anxiety",)).matches(item)

    def test_instruments_are_exact(self):
        item = make_item("C1", instrument="PHQ-9")
        assert ItemQuery(instruments=("PHQ-9", "GAD-7")).matches(item)
        assert not ItemQuery(instruments=("phq-9",)).matches(item)

    def test_min_discrimination(self):
        query = ItemQuery(min_discrimination=0.5)
        assert query.matches(make_item("A", discrimination_index=0.5))
        assert not query.matches(make_item("B", discrimination_index=0.4))
        assert not query.matches(make_item("C"))

    def test_any_of_requires_one_alternative(self):
        query = ItemQuery(
            category="neurodiversity",
            any_of=(ItemQuery(any_tags=("adhd",)), ItemQuery(subcategory="adhd")),
        )
        assert query.matches(make_item("N1", category="neurodiversity", tags=("adhd",)))
        assert query.matches(make_item("N2", category="neurodiversity", subcategory="adhd"))
        assert not query.matches(make_item("N3", category="neurodiversity", tags=("autism",)))

    def test_excluding_adds_to_exclusion_set(self):
        query = ItemQuery(exclude_ids=frozenset({"A"})).excluding(["B"])
        assert query.exclude_ids == frozenset({"A", "B"})
        assert not query.matches(make_item("B"))
        assert query.matches(make_item("C"))


class TestSortItems:
    def test_discrimination_desc_puts_unknown_last(self):
        items = [
            make_item("A"),
            make_item("B", discrimination_index=0.4),
            make_item("C", discrimination_index=0.9),
        ]
        assert _ids(sort_items(items, ItemSort.DISCRIMINATION_DESC)) == ["C", "B", "A"]

    def test_difficulty_breaks_ties(self):
        items = [
            make_item("A", discrimination_index=0.8, difficulty=0.2),
            make_item("B", discrimination_index=0.8, difficulty=0.9),
            make_item("C", discrimination_index=0.8),
        ]
        ordered = sort_items(items, ItemSort.DISCRIMINATION_DIFFICULTY_DESC)
        assert _ids(ordered) == ["B", "A", "C"]

    def test_none_keeps_order(self):
        items = [make_item("B"), make_item("A")]
        assert _ids(sort_items(items, ItemSort.NONE)) == ["B", "A"]


class TestInMemoryRepository:
    def test_skips_malformed_and_duplicate_items(self):
        repo = InMemoryQuestionRepository(
            [
                make_item("A"),
                make_item("A", trait="openness"),
                Item(question_id="", category="personality"),
                Item(question_id="B", category=""),
            ]
        )
        assert len(repo) == 1
        assert repo.find_by_ids(["A"])[0].trait is None

    def test_find_many_limit_and_order(self):
        repo = InMemoryQuestionRepository(
            [make_item(f"Q{i}", discrimination_index=i / 10) for i in range(5)]
        )
        found = repo.find_many(ItemQuery(), order=ItemSort.DISCRIMINATION_DESC, limit=2)
        assert _ids(found) == ["Q4", "Q3"]
        assert repo.find_many(ItemQuery(), limit=0) == []

    def test_find_one(self):
        repo = InMemoryQuestionRepository([make_item("A", trait="openness")])
        assert repo.find_one(ItemQuery(traits=("openness",))).question_id == "A"
        assert repo.find_one(ItemQuery(traits=("extraversion",))) is None

    def test_inactive_items_are_never_returned(self):
        repo = InMemoryQuestionRepository([make_item("A", is_active=False), make_item("B")])
        assert _ids(repo.find_many(ItemQuery())) == ["B"]
        assert repo.count_available() == 1

    def test_find_by_ids_keeps_input_order(self):
        repo = InMemoryQuestionRepository([make_item("A"), make_item("B"), make_item("C")])
        assert _ids(repo.find_by_ids(["C", "missing", "A"])) == ["C", "A"]

    def test_count_available_excludes(self, repository, item_bank):
        excluded = [item_bank[0].question_id, item_bank[1].question_id]
        assert repository.count_available(excluded) == len(item_bank) - 2
