"""
Stage 3: Precision Refinement (15-20 items, conditional).

Only targets what is still uncertain:
    40% dimensions below 85% confidence
    30% divergent facets (facet score more than 20 points from its trait)
    30% clinical patterns that need validation
When nothing qualifies the stage still returns filler items while fewer
than ``stage3_backfill_threshold`` items have been presented, so the
session keeps moving toward Stage 4.
"""

import logging
import math
from dataclasses import dataclass
from typing import List, Sequence

from app.core.adaptive.confidence import ConfidenceTracker
from app.core.adaptive.dimensions import (
    BigFive,
    Clinical,
    Facet,
    Neurodiversity,
    parse_dimension,
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

LOW_CONFIDENCE_SHARE = 0.4
DIVERGENT_SHARE = 0.3

DIVERGENCE_THRESHOLD = 20.0
MAX_LOW_CONFIDENCE_DIMENSIONS = 5
MAX_DIVERGENT_FACETS = 3
ITEMS_PER_LOW_CONFIDENCE_DIMENSION = 2
ITEMS_PER_DIVERGENT_FACET = 2
ITEMS_PER_VALIDATION = 3


@dataclass(frozen=True)
class DivergentFacet:
    trait: str
    facet: str
    trait_score: float
    facet_score: float

    @property
    def difference(self) -> float:
        return self.facet_score - self.trait_score

    @property
    def direction(self) -> str:
        return "higher" if self.difference > 0 else "lower"


@dataclass(frozen=True)
class ClinicalValidation:
    instrument: str
    reason: str
    priority: str


def detect_divergent_facets(tracker: ConfidenceTracker) -> List[DivergentFacet]:
    """Facets whose running score differs from their trait by more than 20, most divergent first."""
    divergent = []
    for key, state in tracker.dimensions.items():
        dimension = parse_dimension(key)
        if not isinstance(dimension, Facet):
            continue
        trait_state = tracker.get(dimension.trait)
        if trait_state is None:
            continue
        if abs(state.score - trait_state.score) > DIVERGENCE_THRESHOLD:
            divergent.append(
                DivergentFacet(
                    trait=dimension.trait,
                    facet=dimension.facet,
                    trait_score=trait_state.score,
                    facet_score=state.score,
                )
            )
    return sorted(divergent, key=lambda d: -abs(d.difference))


def _dimension_average(responses: Sequence[ResponseRecord], dimension: str) -> float:
    avg = average_score(responses, lambda r: dimension in r.dimensions)
    return avg if avg is not None else 0.0


def get_clinical_validation_needs(responses: Sequence[ResponseRecord]) -> List[ClinicalValidation]:
    """
    Instruments worth confirming given atypical clinical score patterns.

    Args:
        responses: Every answer recorded so far.

    Returns:
        ClinicalValidation entries in the order their patterns are checked.
    """
    needs = []
    depression = _dimension_average(responses, "depression")
    anxiety = _dimension_average(responses, "anxiety")
    mania = _dimension_average(responses, "mania")

    # Elevated depression without anxiety is atypical; confirm both
    if depression > 60 and anxiety < 40:
        needs.append(
            ClinicalValidation("PHQ-9", "Elevated depression without anxiety - validate depression", "high")
        )
        needs.append(
            ClinicalValidation("GAD-7", "Elevated depression without anxiety - validate anxiety", "medium")
        )
    if mania > 50:
        needs.append(ClinicalValidation("MDQ", "Elevated mania screening - validate thoroughly", "high"))
    return needs


def precision_queries(dimension_key: str) -> List[ItemQuery]:
    """Most specific query for a dimension, then the same query without its category."""
    dimension = parse_dimension(dimension_key)
    if isinstance(dimension, BigFive):
        return [
            ItemQuery(category="personality", traits=(dimension.trait,)),
            ItemQuery(traits=(dimension.trait,)),
        ]
    if isinstance(dimension, Facet):
        return [
            ItemQuery(category="personality", traits=(dimension.trait,), facets=(dimension.facet,)),
            ItemQuery(category="personality", traits=(dimension.trait,)),
        ]
    if isinstance(dimension, Clinical):
        return [
            ItemQuery(category="clinical_psychopathology", any_tags=(dimension.scale,)),
            ItemQuery(any_tags=(dimension.scale,)),
        ]
    if isinstance(dimension, Neurodiversity):
        return [
            ItemQuery(category="neurodiversity", any_tags=(dimension.kind,)),
            ItemQuery(any_tags=(dimension.kind,)),
        ]
    return [ItemQuery(category=dimension.category), ItemQuery(any_tags=(dimension.category,))]


class PrecisionRefinementStage(StageSelector):
    stage = 3
    name = "Precision Refinement"
    description = "Refine low-confidence dimensions and validate divergent patterns"
    target_confidence = 85.0
    min_questions_per_dimension = 3

    def select_questions(self, context: SelectionContext) -> List[Item]:
        limits = context.config.batch_limits_for(self.stage)
        budget = limits.target_items
        threshold = context.config.stage3_backfill_threshold
        presented = context.presented_count
        builder = BatchBuilder(context.repository, context.excluded_ids)

        low_confidence = context.tracker.get_priority_dimensions(self.stage)
        divergent = detect_divergent_facets(context.tracker)
        validations = get_clinical_validation_needs(context.responses)

        if not low_confidence and not divergent and not validations:
            if presented < threshold:
                needed = min(threshold - presented, limits.max_items)
                logger.info(
                    f"Stage 3 found nothing to refine; adding {needed} filler items "
                    f"toward the Stage 4 threshold ({threshold})"
                )
                return builder.backfill(needed)
            return []

        low_budget = math.floor(budget * LOW_CONFIDENCE_SHARE)
        divergent_budget = math.floor(budget * DIVERGENT_SHARE)
        clinical_budget = budget - low_budget - divergent_budget

        low_count = 0
        for priority in low_confidence[:MAX_LOW_CONFIDENCE_DIMENSIONS]:
            if low_count >= low_budget:
                break
            low_count += len(
                builder.take_relaxed(
                    precision_queries(priority["dimension"]),
                    min(ITEMS_PER_LOW_CONFIDENCE_DIMENSION, low_budget - low_count),
                    order=ItemSort.DISCRIMINATION_DESC,
                )
            )

        divergent_count = 0
        for facet in divergent[:MAX_DIVERGENT_FACETS]:
            if divergent_count >= divergent_budget:
                break
            divergent_count += len(
                builder.take(
                    ItemQuery(category="personality", traits=(facet.trait,), facets=(facet.facet,)),
                    min(ITEMS_PER_DIVERGENT_FACET, divergent_budget - divergent_count),
                    order=ItemSort.DISCRIMINATION_DESC,
                )
            )

        clinical_count = 0
        for validation in validations:
            if clinical_count >= clinical_budget:
                break
            clinical_count += len(
                builder.take(
                    ItemQuery(instruments=(validation.instrument,)),
                    min(ITEMS_PER_VALIDATION, clinical_budget - clinical_count),
                    order=ItemSort.DISCRIMINATION_DESC,
                )
            )

        logger.debug(
            f"Stage 3 allocation: low_confidence={low_count}/{low_budget}, "
            f"divergent={divergent_count}/{divergent_budget}, "
            f"clinical={clinical_count}/{clinical_budget}"
        )

        if not builder.items and presented < threshold:
            builder.backfill(min(threshold - presented, limits.max_items))

        pair = add_inconsistency_pair(builder)
        shuffled = chunked_shuffle(builder.items, context.rng)
        return truncate_keeping(
            shuffled, limits.max_items, keep_ids=[item.question_id for item in pair]
        )
