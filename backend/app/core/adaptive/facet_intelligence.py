"""
Facet prioritization for Stage 2 facet building.

Each Big Five trait has six NEO-PI-R facets. Every facet starts at a base
priority and cross-trait rules raise or lower it depending on the
respondent's profile so far (other Big Five scores plus neurodiversity
proxies). Scores are on the engine's normalized 0-100 scale; rule thresholds
are the usual 1-5 Likert cut points converted with ``(v - 1) / 4 * 100``
(3.5 -> 62.5, 3.0 -> 50, 2.5 -> 37.5).
"""

import logging
import math
import operator
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

BASE_PRIORITY = 5
NEUTRAL_SCORE = 50.0

HIGH = 62.5  # 3.5 on a 1-5 scale
MID = 50.0  # 3.0
LOW = 37.5  # 2.5

NEO_FACETS: Dict[str, List[Tuple[str, str]]] = {
    "openness": [
        ("fantasy", "Imagination and daydreaming"),
        ("aesthetics", "Appreciation for art and beauty"),
        ("feelings", "Emotional depth and sensitivity"),
        ("actions", "Preference for variety and novelty"),
        ("ideas", "Intellectual curiosity"),
        ("values", "Willingness to re-examine social/political values"),
    ],
    "conscientiousness": [
        ("competence", "Sense of capability and effectiveness"),
        ("order", "Preference for organization and structure"),
        ("dutifulness", "Adherence to principles and obligations"),
        ("achievement_striving", "Ambition and drive for success"),
        ("self_discipline", "Ability to persist despite difficulty"),
        ("deliberation", "Tendency to think before acting"),
    ],
    "extraversion": [
        ("warmth", "Friendliness and affection"),
        ("gregariousness", "Preference for company of others"),
        ("assertiveness", "Forcefulness and social dominance"),
        ("activity", "Energy level and pace of living"),
        ("excitement_seeking", "Need for stimulation"),
        ("positive_emotions", "Tendency to experience joy"),
    ],
    "agreeableness": [
        ("trust", "Belief in others' good intentions"),
        ("straightforwardness", "Frankness and sincerity"),
        ("altruism", "Active concern for others' welfare"),
        ("compliance", "Tendency to defer in conflict"),
        ("modesty", "Humility vs arrogance"),
        ("tender_mindedness", "Sympathy and compassion"),
    ],
    "neuroticism": [
        ("anxiety", "Worry, nervousness, and apprehension"),
        ("angry_hostility", "Tendency to experience anger"),
        ("depression", "Tendency toward guilt, sadness, hopelessness"),
        ("self_consciousness", "Shyness and social anxiety"),
        ("impulsiveness", "Inability to control cravings/urges"),
        ("vulnerability", "Feeling unable to cope with stress"),
    ],
}

# Fixed cycle used when prioritization yields nothing for a trait
FACET_CYCLE: Dict[str, List[str]] = {
    trait: [name for name, _ in facets] for trait, facets in NEO_FACETS.items()
}

_OPERATORS: Dict[str, Callable[[float, float], bool]] = {
    ">": operator.gt,
    "<": operator.lt,
    ">=": operator.ge,
    "<=": operator.le,
}


@dataclass(frozen=True)
class FacetRule:
    """
    Adjust a facet's priority by ``delta`` when the source score satisfies
    ``op threshold``. ``source`` is a Big Five trait, or a neurodiversity
    proxy name when ``proxy`` is True.
    """

    source: str
    op: str
    threshold: float
    delta: int
    proxy: bool = False

    def applies(self, profile: "PersonalityProfile") -> bool:
        value = profile.proxy(self.source) if self.proxy else profile.trait(self.source)
        return _OPERATORS[self.op](value, self.threshold)


def boost(source: str, op: str, threshold: float, amount: int, proxy: bool = False) -> FacetRule:
    return FacetRule(source, op, threshold, amount, proxy)


def suppress(source: str, op: str, threshold: float, amount: int, proxy: bool = False) -> FacetRule:
    return FacetRule(source, op, threshold, -amount, proxy)


CROSS_TRAIT_CORRELATIONS: Dict[str, Dict[str, List[FacetRule]]] = {
    "neuroticism": {
        "anxiety": [
            boost("conscientiousness", "<", HIGH, 3),
            boost("emotional_regulation", ">", HIGH, 6, proxy=True),
            boost("extraversion", "<", LOW, 3),
        ],
        "angry_hostility": [
            boost("agreeableness", "<", LOW, 4),
            suppress("agreeableness", ">=", MID, 4),
            # Regulation difficulties present as anxiety rather than anger
            suppress("emotional_regulation", ">", HIGH, 3, proxy=True),
        ],
        "depression": [
            boost("extraversion", "<", LOW, 3),
            boost("conscientiousness", "<", LOW, 2),
        ],
        "vulnerability": [
            boost("emotional_regulation", ">", HIGH, 4, proxy=True),
            boost("conscientiousness", "<", LOW, 2),
        ],
        "impulsiveness": [
            boost("conscientiousness", "<", LOW, 3),
            boost("executive", ">", HIGH, 3, proxy=True),
        ],
    },
    "conscientiousness": {
        "order": [
            boost("neuroticism", ">", HIGH, 2),
            boost("executive", ">", HIGH, 3, proxy=True),
        ],
        "self_discipline": [
            boost("executive", ">", HIGH, 4, proxy=True),
        ],
        "achievement_striving": [
            boost("openness", ">", HIGH, 2),
            boost("neuroticism", "<", MID, 2),
        ],
        "competence": [
            boost("neuroticism", ">", HIGH, 2),
        ],
        "deliberation": [
            boost("executive", ">", HIGH, 3, proxy=True),
        ],
    },
    "extraversion": {
        "warmth": [
            boost("agreeableness", ">", HIGH, 2),
        ],
        "assertiveness": [
            boost("neuroticism", "<", MID, 2),
            boost("agreeableness", "<", MID, 2),
        ],
        "excitement_seeking": [
            boost("openness", ">", HIGH, 2),
            boost("executive", ">", HIGH, 2, proxy=True),
        ],
    },
    "agreeableness": {
        "compliance": [
            boost("neuroticism", ">", HIGH, 2),
            boost("social", ">", HIGH, 3, proxy=True),
        ],
        "straightforwardness": [
            suppress("social", ">", HIGH, 2, proxy=True),
        ],
    },
    "openness": {
        "fantasy": [
            boost("neuroticism", ">", HIGH, 2),
            boost("executive", ">", HIGH, 2, proxy=True),
        ],
        "feelings": [
            boost("neuroticism", ">", HIGH, 3),
            boost("sensory", ">", HIGH, 2, proxy=True),
        ],
    },
}


@dataclass
class PersonalityProfile:
    """
    Snapshot of Big Five scores and neurodiversity proxies (0-100).

    Missing values read as neutral (50).
    """

    big_five: Dict[str, float] = field(default_factory=dict)
    neurodiversity: Dict[str, float] = field(default_factory=dict)

    def trait(self, name: str) -> float:
        return self.big_five.get(name, NEUTRAL_SCORE)

    def proxy(self, name: str) -> float:
        return self.neurodiversity.get(name, NEUTRAL_SCORE)

    @classmethod
    def from_scores(cls, scores: Dict[str, float]) -> "PersonalityProfile":
        """
        Build a profile from dimension scores keyed by dimension name.

        Proxies: emotional_regulation <- borderline, executive <- max(adhd,
        executive_function), social <- autism, sensory <- sensory_processing.
        """
        big_five = {
            trait: scores[trait] for trait in NEO_FACETS if trait in scores
        }
        neurodiversity: Dict[str, float] = {}
        if "borderline" in scores:
            neurodiversity["emotional_regulation"] = scores["borderline"]
        executive = [scores[k] for k in ("adhd", "executive_function") if k in scores]
        if executive:
            neurodiversity["executive"] = max(executive)
        if "autism" in scores:
            neurodiversity["social"] = scores["autism"]
        if "sensory_processing" in scores:
            neurodiversity["sensory"] = scores["sensory_processing"]
        return cls(big_five=big_five, neurodiversity=neurodiversity)


@dataclass(frozen=True)
class FacetPriority:
    facet: str
    priority: int
    description: str


def prioritize_facets(trait: str, profile: Optional[PersonalityProfile] = None) -> List[FacetPriority]:
    """
    Rank a trait's six facets for the given profile.

    Returns an empty list for unknown traits; callers fall back to
    ``FACET_CYCLE``. Ties keep the facet declaration order.

    Args:
        trait: Big Five trait name (case-insensitive).
        profile: Trait and clinical scores; defaults to a neutral profile.

    Returns:
        FacetPriority entries, highest priority first.
    """
    facets = NEO_FACETS.get(trait.lower())
    if not facets:
        return []
    profile = profile or PersonalityProfile()
    rules_by_facet = CROSS_TRAIT_CORRELATIONS.get(trait.lower(), {})

    priorities = []
    for name, description in facets:
        priority = BASE_PRIORITY
        for rule in rules_by_facet.get(name, []):
            if rule.applies(profile):
                priority += rule.delta
        priorities.append(FacetPriority(facet=name, priority=priority, description=description))

    ranked = sorted(priorities, key=lambda p: -p.priority)
    logger.debug(
        f"Facet priorities for {trait}: "
        + ", ".join(f"{p.facet}={p.priority}" for p in ranked)
    )
    return ranked


def recommended_facet_count(trait_score: float, total_allocation: int) -> int:
    """
    How many facets to cover for a trait given how extreme its score is.

    Extremity is the distance from the neutral 50; the bands correspond to
    1.5 / 1.0 / 0.5 points on a 1-5 scale.

    Args:
        trait_score: Running trait score (0-100).
        total_allocation: Facet items available for the trait this stage.

    Returns:
        Number of facets to ask about, never more than six.
    """
    extremity = abs(trait_score - NEUTRAL_SCORE)
    if extremity >= 37.5:
        return min(6, math.ceil(total_allocation * 0.35))
    if extremity >= 25.0:
        return min(5, math.ceil(total_allocation * 0.25))
    if extremity >= 12.5:
        return min(4, math.ceil(total_allocation * 0.20))
    return min(3, math.ceil(total_allocation * 0.15))
