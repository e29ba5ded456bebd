"""
Question repository interface used by the adaptive stage selectors.

Selectors never touch the ORM directly. They describe what they need with an
``ItemQuery`` (category, trait, facet, instrument, tags, exclusion set,
minimum discrimination, OR-groups) and ask a ``QuestionRepository`` for one
item, many items, or a batch of ids. ``InMemoryQuestionRepository`` backs
tests and simulations; ``app.core.adaptive.question_pool.SqlQuestionRepository``
backs the API.
"""

import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Protocol, Sequence, Tuple

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Item:
    """Read-only view of one question bank item."""

    question_id: str
    category: str
    text: str = ""
    subcategory: Optional[str] = None
    trait: Optional[str] = None
    facet: Optional[str] = None
    instrument: Optional[str] = None
    tags: Tuple[str, ...] = ()
    discrimination_index: Optional[float] = None
    difficulty: Optional[float] = None
    reverse_scored: bool = False
    pair_number: Optional[int] = None
    is_active: bool = True

    def is_well_formed(self) -> bool:
        return bool(self.question_id) and bool(self.category)

    def has_tag(self, tag: str) -> bool:
        tag = tag.lower()
        return any(t.lower() == tag for t in self.tags)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "question_id": self.question_id,
            "text": self.text,
            "category": self.category,
            "subcategory": self.subcategory,
            "trait": self.trait,
            "facet": self.facet,
            "instrument": self.instrument,
            "tags": list(self.tags),
            "discrimination_index": self.discrimination_index,
            "difficulty": self.difficulty,
            "reverse_scored": self.reverse_scored,
            "pair_number": self.pair_number,
        }


class ItemSort(str, Enum):
    """Result orderings supported by every repository."""

    NONE = "none"
    DISCRIMINATION_DESC = "discrimination_desc"
    DISCRIMINATION_DIFFICULTY_DESC = "discrimination_difficulty_desc"


def _lower_all(values: Iterable[str]) -> FrozenSet[str]:
    return frozenset(v.lower() for v in values)


@dataclass(frozen=True)
class ItemQuery:
    """
    Predicate over active items.

    Scalar fields must all match. Tuple fields match when the item's value is
    any of the listed values (empty tuple = no constraint). ``any_of`` holds
    alternative sub-queries; when present at least one of them must also match.
    Trait, facet and tag comparisons are case-insensitive.
    """

    category: Optional[str] = None
    subcategory: Optional[str] = None
    traits: Tuple[str, ...] = ()
    facets: Tuple[str, ...] = ()
    instruments: Tuple[str, ...] = ()
    any_tags: Tuple[str, ...] = ()
    question_ids: Tuple[str, ...] = ()
    exclude_ids: FrozenSet[str] = field(default_factory=frozenset)
    min_discrimination: Optional[float] = None
    any_of: Tuple["ItemQuery", ...] = ()

    def matches(self, item: Item) -> bool:
        if not item.is_active:
            return False
        if item.question_id in self.exclude_ids:
            return False
        if self.category is not None and item.category != self.category:
            return False
        if self.subcategory is not None and item.subcategory != self.subcategory:
            return False
        if self.traits and (item.trait or "").lower() not in _lower_all(self.traits):
            return False
        if self.facets and (item.facet or "").lower() not in _lower_all(self.facets):
            return False
        if self.instruments and item.instrument not in self.instruments:
            return False
        if self.any_tags and not _lower_all(self.any_tags) & _lower_all(item.tags):
            return False
        if self.question_ids and item.question_id not in self.question_ids:
            return False
        if self.min_discrimination is not None and (
            item.discrimination_index is None
            or item.discrimination_index < self.min_discrimination
        ):
            return False
        if self.any_of and not any(alt.matches(item) for alt in self.any_of):
            return False
        return True

    def excluding(self, ids: Iterable[str]) -> "ItemQuery":
        """Copy of this query with ``ids`` added to the exclusion set."""
        return replace(self, exclude_ids=self.exclude_ids | frozenset(ids))


def sort_items(items: Sequence[Item], order: ItemSort) -> List[Item]:
    """
    Stable sort; items without a discrimination index (or difficulty) go last.
    """
    if order == ItemSort.NONE:
        return list(items)
    if order == ItemSort.DISCRIMINATION_DESC:
        return sorted(
            items,
            key=lambda i: (
                i.discrimination_index is None,
                -(i.discrimination_index or 0.0),
            ),
        )
    return sorted(
        items,
        key=lambda i: (
            i.discrimination_index is None,
            -(i.discrimination_index or 0.0),
            i.difficulty is None,
            -(i.difficulty or 0.0),
        ),
    )


class QuestionRepository(Protocol):
    """Read interface over the active question bank."""

    def find_one(
        self, query: ItemQuery, order: ItemSort = ItemSort.NONE
    ) -> Optional[Item]:
        ...

    def find_many(
        self,
        query: ItemQuery,
        order: ItemSort = ItemSort.NONE,
        limit: Optional[int] = None,
    ) -> List[Item]:
        ...

    def find_by_ids(self, question_ids: Iterable[str]) -> List[Item]:
        ...


class PoolBackedRepository:
    """
    Repository that evaluates queries against a fully-loaded item pool.

    Subclasses supply ``_active_pool()``; filtering and ordering are shared.
    """

    def _active_pool(self) -> List[Item]:
        raise NotImplementedError

    def find_many(
        self,
        query: ItemQuery,
        order: ItemSort = ItemSort.NONE,
        limit: Optional[int] = None,
    ) -> List[Item]:
        matched = [item for item in self._active_pool() if query.matches(item)]
        ordered = sort_items(matched, order)
        if limit is not None:
            return ordered[: max(limit, 0)]
        return ordered

    def find_one(
        self, query: ItemQuery, order: ItemSort = ItemSort.NONE
    ) -> Optional[Item]:
        found = self.find_many(query, order=order, limit=1)
        return found[0] if found else None

    def count_available(self, exclude_ids: Iterable[str] = ()) -> int:
        return len(self.find_many(ItemQuery(exclude_ids=frozenset(exclude_ids))))


class InMemoryQuestionRepository(PoolBackedRepository):
    """Repository over a fixed list of items (tests, simulations, seeding)."""

    def __init__(self, items: Iterable[Item]):
        self._items: List[Item] = []
        self._by_id: Dict[str, Item] = {}
        for item in items:
            if not item.is_well_formed():
                logger.warning(f"Skipping malformed question bank item: {item!r}")
                continue
            if item.question_id in self._by_id:
                logger.warning(f"Skipping duplicate question id: {item.question_id}")
                continue
            self._items.append(item)
            self._by_id[item.question_id] = item

    def _active_pool(self) -> List[Item]:
        return [item for item in self._items if item.is_active]

    def find_by_ids(self, question_ids: Iterable[str]) -> List[Item]:
        return [self._by_id[qid] for qid in question_ids if qid in self._by_id]

    def __len__(self) -> int:
        return len(self._items)
