"""
Stage 4: Gap Filling (terminal).

Lands the session on exactly ``target_total`` items:
    60% coverage gaps (untouched categories and key instruments)
    rest archetype-themed items, minus one slot for a closing validity item
Any shortfall is backfilled with the best unused items overall. If the
active pool cannot cover the remaining budget the session cannot complete
and ``QuestionPoolExhaustedError`` is raised.
"""

import logging
import math
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from app.core.adaptive.confidence import ConfidenceTracker
from app.core.adaptive.errors import QuestionPoolExhaustedError
from app.core.adaptive.repository import Item, ItemQuery, ItemSort
from app.core.adaptive.selection import (
    VALIDITY_CATEGORY,
    BatchBuilder,
    SelectionContext,
    StageSelector,
    average_score,
)
from app.core.adaptive.session import ResponseRecord

logger = logging.getLogger(__name__)

GAP_SHARE = 0.6

PRIORITY_ORDER = {"high": 0, "medium": 1, "low": 2}

COVERAGE_CATEGORIES = (
    "personality",
    "clinical_psychopathology",
    "neurodiversity",
    "attachment",
    "trauma_screening",
    "cognitive_functions",
    "cognitive",
)

KEY_INSTRUMENTS: Tuple[Tuple[str, str], ...] = (
    ("ECR-R", "high"),  # attachment
    ("CD-RISC", "medium"),  # resilience
    ("IIP-32", "medium"),  # interpersonal
    ("HEXACO-60", "medium"),  # honesty-humility
    ("MSI-BPD", "high"),  # borderline
    ("AUDIT", "low"),  # alcohol
    ("DAST", "low"),  # drugs
)

VALIDITY_FALLBACK_SUBCATEGORIES = ("infrequency", "positive_impression")


@dataclass(frozen=True)
class CoverageGap:
    kind: str  # "category" or "instrument"
    value: str
    priority: str

    def query(self) -> ItemQuery:
        if self.kind == "category":
            return ItemQuery(category=self.value)
        return ItemQuery(instruments=(self.value,))


@dataclass(frozen=True)
class ArchetypeFocus:
    traits: Tuple[str, ...]
    facets: Tuple[str, ...]
    instruments: Tuple[str, ...]
    description: str

    def query(self) -> ItemQuery:
        return ItemQuery(
            any_of=(
                ItemQuery(traits=self.traits),
                ItemQuery(facets=self.facets),
                ItemQuery(instruments=self.instruments),
            )
        )


ARCHETYPE_FOCUS: Dict[str, ArchetypeFocus] = {
    "resilient": ArchetypeFocus(
        traits=("extraversion", "agreeableness"),
        facets=("positive_emotions", "warmth", "trust"),
        instruments=("CD-RISC", "MSPSS"),
        description="Strengths and social resources",
    ),
    "undercontrolled": ArchetypeFocus(
        traits=("neuroticism", "conscientiousness"),
        facets=("impulsiveness", "self_discipline", "vulnerability"),
        instruments=("MSI-BPD", "AUDIT"),
        description="Emotional regulation and impulsivity",
    ),
    "overcontrolled": ArchetypeFocus(
        traits=("conscientiousness", "neuroticism"),
        facets=("deliberation", "anxiety", "self_consciousness"),
        instruments=("GAD-7", "IIP-32"),
        description="Anxiety and interpersonal patterns",
    ),
    "creative-extrovert": ArchetypeFocus(
        traits=("openness", "extraversion"),
        facets=("ideas", "excitement_seeking", "assertiveness"),
        instruments=("HEXACO-60",),
        description="Openness and social engagement",
    ),
    "intellectual-achiever": ArchetypeFocus(
        traits=("openness", "conscientiousness"),
        facets=("ideas", "achievement_striving", "competence"),
        instruments=("BFI-2", "CD-RISC"),
        description="Cognitive complexity and drive",
    ),
    "balanced": ArchetypeFocus(
        traits=("openness", "conscientiousness", "agreeableness"),
        facets=("values", "competence", "trust"),
        instruments=("BFI-2",),
        description="Broad coverage across traits",
    ),
}


def category_priority(category: str, responses: Sequence[ResponseRecord]) -> str:
    if category == "attachment":
        relationship_context = any(
            r.has_tag("relationship") or "interpersonal" in (r.subcategory or "")
            for r in responses
        )
        return "high" if relationship_context else "medium"
    if category == "trauma_screening":
        clinical_avg = average_score(
            responses, lambda r: r.category == "clinical_psychopathology"
        )
        return "high" if clinical_avg is not None and clinical_avg > 60 else "medium"
    return "medium"


def find_coverage_gaps(responses: Sequence[ResponseRecord]) -> List[CoverageGap]:
    """
    Untouched categories and key instruments, high priority first (stable).

    Args:
        responses: Every answer recorded so far.

    Returns:
        CoverageGap entries; category gaps precede instrument gaps of equal
        priority.
    """
    asked_categories = {r.category for r in responses}
    asked_instruments = {r.instrument for r in responses if r.instrument}

    gaps = [
        CoverageGap("category", category, category_priority(category, responses))
        for category in COVERAGE_CATEGORIES
        if category not in asked_categories
    ]
    gaps.extend(
        CoverageGap("instrument", name, priority)
        for name, priority in KEY_INSTRUMENTS
        if name not in asked_instruments
    )
    return sorted(gaps, key=lambda g: PRIORITY_ORDER[g.priority])


def predict_archetype(scores: Dict[str, float]) -> str:
    """Coarse archetype from Big Five scores; missing traits read as 50."""
    o = scores.get("openness", 50.0)
    c = scores.get("conscientiousness", 50.0)
    e = scores.get("extraversion", 50.0)
    a = scores.get("agreeableness", 50.0)
    n = scores.get("neuroticism", 50.0)

    if e > 60 and a > 60 and n < 40:
        return "resilient"
    if n > 60 and (c < 40 or e < 40):
        return "undercontrolled"
    if c > 60 and a > 60 and o < 40:
        return "overcontrolled"
    if o > 60 and e > 60:
        return "creative-extrovert"
    if o > 60 and c > 60:
        return "intellectual-achiever"
    return "balanced"


def predict_archetype_from_tracker(tracker: ConfidenceTracker) -> str:
    return predict_archetype(
        {trait: state.score for trait, state in tracker.dimensions.items()}
    )


class GapFillingStage(StageSelector):
    stage = 4
    name = "Gap Filling"
    description = "Ensure comprehensive coverage and reach target question count"
    target_confidence = 90.0
    min_questions_per_dimension = 2

    def select_questions(self, context: SelectionContext) -> List[Item]:
        target_total = context.config.target_total
        budget = target_total - context.presented_count
        if budget <= 0:
            return []

        builder = BatchBuilder(context.repository, context.excluded_ids)

        gaps = find_coverage_gaps(context.responses)
        archetype = predict_archetype_from_tracker(context.tracker)
        gap_budget = math.floor(budget * GAP_SHARE)
        # One slot is reserved for the closing validity item
        archetype_budget = max(budget - gap_budget - 1, 0)

        gap_items: List[Item] = []
        for gap in gaps:
            if len(gap_items) >= gap_budget:
                break
            item = builder.find_one(gap.query(), order=ItemSort.DISCRIMINATION_DESC)
            gap_items.extend(builder.add([item]))

        archetype_items = builder.take(
            ARCHETYPE_FOCUS[archetype].query(),
            archetype_budget,
            order=ItemSort.DISCRIMINATION_DESC,
        )

        validity = builder.add([self._select_validity_item(builder)])

        logger.debug(
            f"Stage 4 allocation: budget={budget}, gaps={len(gap_items)}/{gap_budget}, "
            f"archetype={archetype} {len(archetype_items)}/{archetype_budget}, "
            f"validity={len(validity)}"
        )

        if len(builder) < budget:
            builder.backfill(
                budget - len(builder), order=ItemSort.DISCRIMINATION_DIFFICULTY_DESC
            )

        if len(builder) < budget:
            logger.error(
                f"Question pool exhausted: {budget - len(builder)} items short of "
                f"target total {target_total}"
            )
            raise QuestionPoolExhaustedError(
                answered=context.presented_count,
                target_total=target_total,
                available=len(builder),
            )

        return builder.items[:budget]

    def _select_validity_item(self, builder: BatchBuilder) -> Optional[Item]:
        for subcategory in VALIDITY_FALLBACK_SUBCATEGORIES:
            item = builder.find_one(ItemQuery(category=VALIDITY_CATEGORY, subcategory=subcategory))
            if item is not None:
                return item
        return builder.find_one(ItemQuery(category=VALIDITY_CATEGORY))
