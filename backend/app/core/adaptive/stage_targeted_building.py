"""
Stage 2: Targeted Building (25-30 items).

Budget split over the stage target (27 by default):
    60% facet items for Big Five traits still below the Stage 2 bar, facets
        ranked by facet intelligence
    30% clinical expansion: the full PHQ-9 / GAD-7 only after a positive
        two-item screen
    rest neurodiversity expansion for ADHD / autism / sensory flags raised in
        Stage 1
plus one more inconsistency pair.
"""

import logging
import math
from dataclasses import dataclass
from typing import List, Optional, Sequence

from app.core.adaptive.config import AdaptiveEngineConfig
from app.core.adaptive.dimensions import BigFive, parse_dimension
from app.core.adaptive.facet_intelligence import (
    FACET_CYCLE,
    PersonalityProfile,
    prioritize_facets,
)
from app.core.adaptive.repository import Item, ItemQuery, ItemSort
from app.core.adaptive.selection import (
    BatchBuilder,
    SelectionContext,
    StageSelector,
    add_inconsistency_pair,
    average_score,
    chunked_shuffle,
    truncate_keeping,
)
from app.core.adaptive.session import ResponseRecord

logger = logging.getLogger(__name__)

FACET_SHARE = 0.6
CLINICAL_SHARE = 0.3

# Items per trait needed to approach the Stage 2 confidence target
FACET_ITEMS_PER_TRAIT = 4

# (flag name, tags, expansion size)
NEURODIVERSITY_EXPANSIONS = (
    ("adhd", ("adhd",), 4),
    ("autism", ("autism",), 4),
    ("sensory", ("sensory", "sensory_processing"), 3),
)


@dataclass(frozen=True)
class ScreenResult:
    """Outcome of one two-item clinical screener."""

    positive: bool
    total: float
    has_high_item: bool
    items_answered: int


@dataclass(frozen=True)
class ClinicalScreen:
    depression: ScreenResult
    anxiety: ScreenResult


def _screener_responses(
    responses: Sequence[ResponseRecord], screener_ids: Sequence[str], instrument: str
) -> List[ResponseRecord]:
    by_id = [r for r in responses if r.question_id in screener_ids]
    if by_id:
        return by_id
    # Banks without the canonical ids: first two answered items of the instrument
    return [r for r in responses if r.instrument == instrument][:2]


def evaluate_screen(
    responses: Sequence[ResponseRecord], config: AdaptiveEngineConfig
) -> ScreenResult:
    """
    Positive only if the pair total reaches ``clinical_screen_sum`` AND at
    least one item reaches ``clinical_screen_item``. Scores are read on the
    instrument's native scale (``ResponseRecord.screening_score``).

    Args:
        responses: Answers to the screener's items.
        config: Engine configuration holding the gate thresholds.

    Returns:
        ScreenResult; never positive when no screener item was answered.
    """
    scores = [r.screening_score for r in responses]
    total = sum(scores)
    has_high_item = any(s >= config.clinical_screen_item for s in scores)
    return ScreenResult(
        positive=bool(scores) and total >= config.clinical_screen_sum and has_high_item,
        total=total,
        has_high_item=has_high_item,
        items_answered=len(scores),
    )


def analyze_clinical_screeners(
    responses: Sequence[ResponseRecord], config: AdaptiveEngineConfig
) -> ClinicalScreen:
    return ClinicalScreen(
        depression=evaluate_screen(
            _screener_responses(responses, config.depression_screener_ids, "PHQ-9"), config
        ),
        anxiety=evaluate_screen(
            _screener_responses(responses, config.anxiety_screener_ids, "GAD-7"), config
        ),
    )


def neurodiversity_flag_average(
    responses: Sequence[ResponseRecord], tags: Sequence[str]
) -> Optional[float]:
    return average_score(
        responses,
        lambda r: r.category == "neurodiversity" and any(r.has_tag(t) for t in tags),
    )


class TargetedBuildingStage(StageSelector):
    stage = 2
    name = "Targeted Building"
    description = "Build out personality facets and expand clinical areas of concern"
    target_confidence = 75.0
    min_questions_per_dimension = 2

    def select_questions(self, context: SelectionContext) -> List[Item]:
        config = context.config
        limits = config.batch_limits_for(self.stage)
        budget = limits.target_items
        builder = BatchBuilder(context.repository, context.excluded_ids)

        facet_items = self._select_facet_items(builder, context, math.floor(budget * FACET_SHARE))
        clinical_items = self._select_clinical_expansion(
            builder, context, math.floor(budget * CLINICAL_SHARE)
        )
        neuro_items = self._select_neurodiversity_expansion(builder, context, budget)

        logger.debug(
            f"Stage 2 allocation: facets={len(facet_items)}, clinical={len(clinical_items)}, "
            f"neurodiversity={len(neuro_items)} (budget {budget})"
        )

        pair = add_inconsistency_pair(builder)
        shuffled = chunked_shuffle(builder.items, context.rng)
        return truncate_keeping(
            shuffled, limits.max_items, keep_ids=[item.question_id for item in pair]
        )

    # Facets

    def _select_facet_items(
        self, builder: BatchBuilder, context: SelectionContext, facet_budget: int
    ) -> List[Item]:
        profile = PersonalityProfile.from_scores(
            {dim: state.score for dim, state in context.tracker.dimensions.items()}
        )
        selected: List[Item] = []
        for priority in context.tracker.get_priority_dimensions(self.stage):
            if len(selected) >= facet_budget:
                break
            dimension = parse_dimension(priority["dimension"])
            if not isinstance(dimension, BigFive):
                continue
            needed = min(
                FACET_ITEMS_PER_TRAIT - priority["question_count"],
                facet_budget - len(selected),
            )
            if needed <= 0:
                continue
            selected.extend(self.select_facet_questions(builder, dimension.trait, needed, profile))
        return selected

    def select_facet_questions(
        self,
        builder: BatchBuilder,
        trait: str,
        count: int,
        profile: PersonalityProfile,
    ) -> List[Item]:
        ranked = prioritize_facets(trait, profile)
        if ranked:
            facets = [p.facet for p in ranked]
        else:
            cycle = FACET_CYCLE.get(trait, [])
            facets = [cycle[i % len(cycle)] for i in range(count)] if cycle else []

        selected: List[Item] = []
        for facet in facets:
            if len(selected) >= count:
                break
            item = builder.find_one(
                ItemQuery(category="personality", traits=(trait,), facets=(facet,)),
                order=ItemSort.DISCRIMINATION_DESC,
            )
            selected.extend(builder.add([item]))

        if len(selected) < count:
            selected.extend(
                builder.take(
                    ItemQuery(category="personality", traits=(trait,)),
                    count - len(selected),
                    order=ItemSort.DISCRIMINATION_DESC,
                )
            )
        return selected

    # Clinical

    def _select_clinical_expansion(
        self, builder: BatchBuilder, context: SelectionContext, clinical_budget: int
    ) -> List[Item]:
        screen = analyze_clinical_screeners(context.responses, context.config)
        logger.debug(
            f"Clinical screen: depression={screen.depression.positive} "
            f"(total={screen.depression.total}, high_item={screen.depression.has_high_item}), "
            f"anxiety={screen.anxiety.positive} "
            f"(total={screen.anxiety.total}, high_item={screen.anxiety.has_high_item})"
        )

        selected: List[Item] = []
        for result, instrument, remaining in (
            (screen.depression, "PHQ-9", 7),
            (screen.anxiety, "GAD-7", 5),
        ):
            if not result.positive or len(selected) >= clinical_budget:
                continue
            selected.extend(
                builder.take(
                    ItemQuery(instruments=(instrument,)),
                    min(remaining, clinical_budget - len(selected)),
                )
            )
        return selected

    # Neurodiversity

    def _select_neurodiversity_expansion(
        self, builder: BatchBuilder, context: SelectionContext, budget: int
    ) -> List[Item]:
        threshold = context.config.neurodiversity_flag_score
        selected: List[Item] = []
        for flag, tags, size in NEURODIVERSITY_EXPANSIONS:
            avg = neurodiversity_flag_average(context.responses, tags)
            flagged = avg is not None and avg >= threshold
            logger.debug(f"Neurodiversity flag {flag}: avg={avg}, flagged={flagged}")
            if not flagged or len(builder) >= budget:
                continue
            selected.extend(
                builder.take(
                    ItemQuery(category="neurodiversity", any_tags=tags),
                    min(size, budget - len(builder)),
                )
            )
        return selected
