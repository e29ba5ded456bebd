"""
Building blocks shared by the four stage selectors.

A stage receives a ``SelectionContext`` (repository, tracker, response
history, already-presented ids, config, RNG) and accumulates items into a
``BatchBuilder``, which owns the exclusion set so no item is ever picked
twice within a batch or across the session.
"""

import logging
import random
import re
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Sequence, Set

from app.core.adaptive.confidence import ConfidenceTracker
from app.core.adaptive.config import AdaptiveEngineConfig
from app.core.adaptive.repository import Item, ItemQuery, ItemSort, QuestionRepository
from app.core.adaptive.session import ResponseRecord

logger = logging.getLogger(__name__)

VALIDITY_CATEGORY = "validity_scales"
SHUFFLE_CHUNK_SIZE = 5

_PAIR_SUFFIX = re.compile(r"(\d+)[AB]$")


@dataclass
class SelectionContext:
    """Everything a stage selector may read while picking a batch."""

    repository: QuestionRepository
    tracker: ConfidenceTracker
    responses: List[ResponseRecord]
    excluded_ids: FrozenSet[str]
    config: AdaptiveEngineConfig
    rng: random.Random = field(default_factory=random.Random)

    @property
    def presented_count(self) -> int:
        """Items already committed to the session (answered or awaiting answers)."""
        return len(self.excluded_ids)


class BatchBuilder:
    """Ordered, de-duplicated batch with a growing exclusion set."""

    def __init__(self, repository: QuestionRepository, excluded_ids: Iterable[str] = ()):
        self.repository = repository
        self.items: List[Item] = []
        self._excluded: Set[str] = set(excluded_ids)

    def __len__(self) -> int:
        return len(self.items)

    @property
    def excluded(self) -> FrozenSet[str]:
        return frozenset(self._excluded)

    def add(self, items: Iterable[Optional[Item]]) -> List[Item]:
        """Add items not yet excluded; returns the ones actually added."""
        added = []
        for item in items:
            if item is None:
                continue
            if not item.is_well_formed():
                logger.warning(f"Ignoring malformed item returned by repository: {item!r}")
                continue
            if item.question_id in self._excluded:
                continue
            self.items.append(item)
            self._excluded.add(item.question_id)
            added.append(item)
        return added

    def find_one(self, query: ItemQuery, order: ItemSort = ItemSort.NONE) -> Optional[Item]:
        return self.repository.find_one(query.excluding(self._excluded), order)

    def find_many(
        self,
        query: ItemQuery,
        order: ItemSort = ItemSort.NONE,
        limit: Optional[int] = None,
    ) -> List[Item]:
        return self.repository.find_many(query.excluding(self._excluded), order, limit)

    def take(
        self,
        query: ItemQuery,
        limit: int,
        order: ItemSort = ItemSort.NONE,
    ) -> List[Item]:
        """Find up to ``limit`` unused matches and add them."""
        if limit <= 0:
            return []
        return self.add(self.find_many(query, order=order, limit=limit))

    def take_relaxed(
        self,
        queries: Sequence[ItemQuery],
        limit: int,
        order: ItemSort = ItemSort.NONE,
    ) -> List[Item]:
        """
        Fill ``limit`` slots trying each query in turn, from most to least
        specific, until the quota is met.
        """
        added: List[Item] = []
        for index, query in enumerate(queries):
            if len(added) >= limit:
                break
            if index > 0:
                logger.debug(
                    f"Relaxing query (attempt {index + 1}) for {limit - len(added)} more items"
                )
            added.extend(self.take(query, limit - len(added), order=order))
        return added

    def backfill(self, count: int, order: ItemSort = ItemSort.DISCRIMINATION_DESC) -> List[Item]:
        """Add the globally best unused items."""
        if count <= 0:
            return []
        added = self.take(ItemQuery(), count, order=order)
        if added:
            logger.info(f"Backfilled {len(added)} of {count} requested items")
        return added


def pair_key(item: Item) -> Optional[int]:
    """Pair number of an inconsistency item, from the column or the id suffix."""
    if item.pair_number is not None:
        return item.pair_number
    match = _PAIR_SUFFIX.search(item.question_id)
    return int(match.group(1)) if match else None


def find_inconsistency_pair(builder: BatchBuilder) -> List[Item]:
    """
    Return the complete unused inconsistency pair with the lowest pair number,
    or an empty list when no complete pair remains.
    """
    candidates = builder.find_many(
        ItemQuery(category=VALIDITY_CATEGORY, subcategory="inconsistency")
    )
    pairs: Dict[int, List[Item]] = {}
    for item in candidates:
        key = pair_key(item)
        if key is None:
            logger.warning(f"Inconsistency item {item.question_id} has no pair number")
            continue
        pairs.setdefault(key, []).append(item)

    for key in sorted(pairs):
        if len(pairs[key]) == 2:
            return sorted(pairs[key], key=lambda i: i.question_id)
    return []


def add_inconsistency_pair(builder: BatchBuilder) -> List[Item]:
    pair = find_inconsistency_pair(builder)
    if not pair:
        logger.debug("No complete inconsistency pair available")
    return builder.add(pair)


def chunked_shuffle(
    items: Sequence[Item], rng: random.Random, chunk_size: int = SHUFFLE_CHUNK_SIZE
) -> List[Item]:
    """
    Shuffle within consecutive chunks, then shuffle the chunk order.

    Keeps related items loosely spread without a fully uniform permutation.
    """
    chunks = [list(items[i:i + chunk_size]) for i in range(0, len(items), chunk_size)]
    for chunk in chunks:
        rng.shuffle(chunk)
    rng.shuffle(chunks)
    return [item for chunk in chunks for item in chunk]


def truncate_keeping(
    items: Sequence[Item], max_items: int, keep_ids: Iterable[str] = ()
) -> List[Item]:
    """
    Trim to ``max_items`` by dropping items from the end, never dropping an
    id in ``keep_ids`` (used so a validity pair is never split).
    """
    result = list(items)
    keep = set(keep_ids)
    overflow = len(result) - max_items
    index = len(result) - 1
    while overflow > 0 and index >= 0:
        if result[index].question_id not in keep:
            del result[index]
            overflow -= 1
        index -= 1
    return result[:max_items] if len(result) > max_items else result


def average_score(responses: Iterable[ResponseRecord], predicate: Any) -> Optional[float]:
    """Mean normalized score of responses matching ``predicate``, or None."""
    scores = [r.score for r in responses if predicate(r)]
    if not scores:
        return None
    return sum(scores) / len(scores)


class StageSelector:
    """Base class for the four stage selectors."""

    stage: int = 0
    name: str = ""
    description: str = ""
    target_confidence: float = 0.0
    min_questions_per_dimension: int = 0

    def select_questions(self, context: SelectionContext) -> List[Item]:
        raise NotImplementedError

    def get_stage_info(self, config: AdaptiveEngineConfig) -> Dict[str, Any]:
        info: Dict[str, Any] = {
            "stage": self.stage,
            "name": self.name,
            "description": self.description,
            "target_confidence": self.target_confidence,
            "min_questions_per_dimension": self.min_questions_per_dimension,
        }
        if self.stage in config.stage_batch_limits:
            limits = config.batch_limits_for(self.stage)
            info["target_questions"] = limits.target_items
            info["min_questions"] = limits.min_items
            info["max_questions"] = limits.max_items
        return info
