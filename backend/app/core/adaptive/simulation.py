"""
Simulation harness for the adaptive assessment engine.

Runs N simulated respondents through the same service flow the API uses
(start -> answer every served item -> next ... until complete) against a
synthetic item bank and an in-memory session store, then summarises the
runs with numpy. Used to check that every session lands on exactly the
target total with no repeated items.

    bank = build_item_bank(seed=7)
    summary = run_simulation(bank, n_respondents=200, profile="random", seed=7)
    print(summary.mean_items, summary.duplicate_sessions)
"""

import logging
import random
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

import numpy as np

from app.core.adaptive.confidence import ConfidenceTracker
from app.core.adaptive.config import AdaptiveEngineConfig
from app.core.adaptive.coordinator import average_big_five_confidence
from app.core.adaptive.facet_intelligence import NEO_FACETS
from app.core.adaptive.repository import InMemoryQuestionRepository, Item
from app.core.adaptive.selection import VALIDITY_CATEGORY
from app.core.adaptive.service import AdaptiveAssessmentService, SubmittedResponse
from app.core.adaptive.session import RAW_SCALE_MAX
from app.core.adaptive.session_store import InMemorySessionStore

logger = logging.getLogger(__name__)

# Synthetic discrimination ~ LogNormal, clipped into a plausible 0-1 range
DISCRIMINATION_LOGNORMAL_MEAN = -0.45
DISCRIMINATION_LOGNORMAL_SD = 0.25
DISCRIMINATION_MIN = 0.3
DISCRIMINATION_MAX = 0.95
ANCHOR_DISCRIMINATION = 0.92

# Safety limit on request round trips per simulated session
MAX_ROUND_TRIPS = 40

# (instrument, category, tags, count, subcategory)
CLINICAL_BLOCKS: Tuple[Tuple[str, str, Tuple[str, ...], int, Optional[str]], ...] = (
    ("MDQ", "clinical_psychopathology", ("mania",), 4, "bipolar"),
    ("PQ-B", "clinical_psychopathology", ("psychosis",), 3, "psychosis"),
    ("MSI-BPD", "clinical_psychopathology", ("borderline",), 3, "personality_disorder"),
    ("AUDIT", "clinical_psychopathology", ("alcohol",), 2, "substance"),
    ("DAST", "clinical_psychopathology", ("drug",), 2, "substance"),
    ("ECR-R", "attachment", ("anxious", "relationship"), 2, "interpersonal"),
    ("ECR-R", "attachment", ("avoidant", "relationship"), 2, "interpersonal"),
    ("ACE", "trauma_screening", ("aces",), 3, "childhood"),
    ("CFQ", "cognitive_functions", ("attention",), 2, "memory"),
    ("CD-RISC", "resilience", ("resilience",), 3, None),
    ("IIP-32", "interpersonal", ("interpersonal",), 3, None),
    ("MSPSS", "social_support", ("support",), 2, None),
)

# (tag, count)
NEURODIVERSITY_BLOCKS = (
    ("adhd", 6),
    ("autism", 6),
    ("sensory", 4),
    ("executive_function", 3),
)


def _discrimination(rng: np.random.Generator) -> float:
    a = rng.lognormal(mean=DISCRIMINATION_LOGNORMAL_MEAN, sigma=DISCRIMINATION_LOGNORMAL_SD)
    return round(float(np.clip(a, DISCRIMINATION_MIN, DISCRIMINATION_MAX)), 3)


def build_item_bank(
    items_per_facet: int = 2,
    inconsistency_pairs: int = 4,
    seed: int = 42,
) -> List[Item]:
    """
    Build a synthetic bank covering every area the stages draw from.

    The bank holds Big Five facet items (plus one tagged anchor per trait),
    the full PHQ-9 and GAD-7 with the canonical screener ids, and
    neurodiversity blocks. It also holds the smaller clinical, attachment,
    trauma and resilience instruments and validity items (inconsistency
    pairs, infrequency, positive impression).
    """
    rng = np.random.default_rng(seed)
    items: List[Item] = []

    for trait, facets in NEO_FACETS.items():
        items.append(
            Item(
                question_id=f"BFI_{trait.upper()}_ANCHOR",
                category="personality",
                text=f"Anchor statement for {trait}",
                trait=trait,
                instrument="BFI-2",
                tags=("anchor",),
                discrimination_index=ANCHOR_DISCRIMINATION,
                difficulty=0.5,
            )
        )
        for facet, description in facets:
            for n in range(1, items_per_facet + 1):
                items.append(
                    Item(
                        question_id=f"NEO_{trait.upper()}_{facet.upper()}_{n}",
                        category="personality",
                        text=f"{description} ({n})",
                        trait=trait,
                        facet=facet,
                        instrument="NEO-PI-R",
                        discrimination_index=_discrimination(rng),
                        difficulty=round(float(rng.uniform(0.2, 0.8)), 3),
                        reverse_scored=n % 2 == 0,
                    )
                )

    for prefix, instrument, tag, count in (
        ("DEPRESSION_PHQ9", "PHQ-9", "depression", 9),
        ("ANXIETY_GAD7", "GAD-7", "anxiety", 7),
    ):
        for n in range(1, count + 1):
            items.append(
                Item(
                    question_id=f"{prefix}_{n}",
                    category="clinical_psychopathology",
                    text=f"{instrument} item {n}",
                    subcategory=tag,
                    instrument=instrument,
                    tags=(tag,),
                    discrimination_index=_discrimination(rng),
                )
            )

    for instrument, category, tags, count, subcategory in CLINICAL_BLOCKS:
        for n in range(1, count + 1):
            items.append(
                Item(
                    question_id=f"{instrument.replace('-', '')}_{tags[0].upper()}_{n}",
                    category=category,
                    text=f"{instrument} item {n}",
                    subcategory=subcategory,
                    instrument=instrument,
                    tags=tags,
                    discrimination_index=_discrimination(rng),
                )
            )

    for tag, count in NEURODIVERSITY_BLOCKS:
        for n in range(1, count + 1):
            items.append(
                Item(
                    question_id=f"ND_{tag.upper()}_{n}",
                    category="neurodiversity",
                    text=f"{tag} screening item {n}",
                    subcategory=tag,
                    tags=(tag,),
                    discrimination_index=_discrimination(rng),
                )
            )

    for n in range(1, inconsistency_pairs + 1):
        for suffix in ("A", "B"):
            items.append(
                Item(
                    question_id=f"VALIDITY_INCONS_{n}{suffix}",
                    category=VALIDITY_CATEGORY,
                    text=f"Consistency check {n}{suffix}",
                    subcategory="inconsistency",
                    pair_number=n,
                    reverse_scored=suffix == "B",
                )
            )
    for subcategory, count in (("infrequency", 3), ("positive_impression", 2)):
        for n in range(1, count + 1):
            items.append(
                Item(
                    question_id=f"VALIDITY_{subcategory.upper()}_{n}",
                    category=VALIDITY_CATEGORY,
                    text=f"{subcategory} check {n}",
                    subcategory=subcategory,
                )
            )

    logger.info(f"Generated synthetic item bank with {len(items)} items")
    return items


# ----------------------------------------------------------------------
# Respondents
# ----------------------------------------------------------------------

Respondent = Callable[[Item], SubmittedResponse]


def _with_raw(item: Item, score: float, response_time_ms: Optional[float]) -> SubmittedResponse:
    raw_max = RAW_SCALE_MAX.get(item.instrument or "")
    raw_score = round(score / 100 * raw_max, 2) if raw_max else None
    return SubmittedResponse(
        question_id=item.question_id,
        score=score,
        raw_score=raw_score,
        response_time_ms=response_time_ms,
    )


def neutral_respondent(item: Item) -> SubmittedResponse:
    """Answers every item at the scale midpoint."""
    return _with_raw(item, 50.0, None)


def random_respondent(rng: random.Random) -> Respondent:
    """
    Respondent with a latent level per item group (trait, instrument or
    category) drawn once, answering around it with noise.
    """
    levels: Dict[str, float] = {}

    def answer(item: Item) -> SubmittedResponse:
        key = item.trait or item.instrument or item.category
        if key not in levels:
            levels[key] = rng.gauss(50, 18)
        score = max(0.0, min(100.0, round(levels[key] + rng.gauss(0, 10))))
        return _with_raw(item, score, rng.uniform(2500, 9000))

    return answer


# ----------------------------------------------------------------------
# Runs
# ----------------------------------------------------------------------


@dataclass
class SessionRun:
    """Outcome of one simulated session."""

    session_id: str
    items_administered: int
    final_stage: int
    completed: bool
    big_five_confidence: int
    duplicate_ids: int
    stages_visited: List[int] = field(default_factory=list)


@dataclass
class SimulationSummary:
    runs: List[SessionRun]
    mean_items: float
    min_items: int
    max_items: int
    mean_final_stage: float
    completion_rate: float
    mean_big_five_confidence: float
    duplicate_sessions: int


def simulate_session(
    service: AdaptiveAssessmentService,
    store: InMemorySessionStore,
    respondent: Respondent,
    session_id: Optional[str] = None,
) -> SessionRun:
    step = service.start_session(session_id)
    stages = [step.result.stage]
    round_trips = 0
    while not step.is_complete:
        round_trips += 1
        if round_trips > MAX_ROUND_TRIPS:
            raise RuntimeError(
                f"Session {step.session_id} did not complete within {MAX_ROUND_TRIPS} batches"
            )
        answers = [respondent(item) for item in step.result.questions]
        step = service.submit_responses(step.session_id, answers)
        stages.append(step.result.stage)

    state = store.load(step.session_id)
    tracker = ConfidenceTracker.from_snapshot(state.confidence_state)
    presented = state.presented_question_ids
    return SessionRun(
        session_id=state.session_id,
        items_administered=state.answered_count,
        final_stage=state.current_stage,
        completed=state.is_completed,
        big_five_confidence=average_big_five_confidence(tracker.get_summary()),
        duplicate_ids=len(presented) - len(set(presented)),
        stages_visited=stages,
    )


def run_simulation(
    items: List[Item],
    n_respondents: int = 100,
    profile: str = "random",
    seed: int = 42,
    config: Optional[AdaptiveEngineConfig] = None,
) -> SimulationSummary:
    """
    Run synthetic respondents end to end through the engine.

    Args:
        items: Item bank to serve from.
        n_respondents: Number of sessions to simulate.
        profile: "neutral" answers 50 everywhere, "random" draws per item.
        seed: Seed for respondent answers and engine randomness.
        config: Engine configuration; defaults to ``AdaptiveEngineConfig()``.

    Returns:
        Per-session runs with aggregate length, stage and confidence stats.

    Raises:
        ValueError: If ``profile`` is unknown or ``n_respondents`` is below 1.
    """
    if profile not in ("neutral", "random"):
        raise ValueError(f"Unknown respondent profile: {profile}")
    if n_respondents < 1:
        raise ValueError("n_respondents must be at least 1")

    repository = InMemoryQuestionRepository(items)
    store = InMemorySessionStore()
    runs = []
    for i in range(n_respondents):
        rng = random.Random(seed + i)
        service = AdaptiveAssessmentService(repository, store, config, rng=rng)
        respondent = neutral_respondent if profile == "neutral" else random_respondent(rng)
        runs.append(simulate_session(service, store, respondent, session_id=f"sim-{seed}-{i}"))

    items_administered = [r.items_administered for r in runs]
    summary = SimulationSummary(
        runs=runs,
        mean_items=float(np.mean(items_administered)),
        min_items=int(np.min(items_administered)),
        max_items=int(np.max(items_administered)),
        mean_final_stage=float(np.mean([r.final_stage for r in runs])),
        completion_rate=float(np.mean([r.completed for r in runs])),
        mean_big_five_confidence=float(np.mean([r.big_five_confidence for r in runs])),
        duplicate_sessions=sum(1 for r in runs if r.duplicate_ids),
    )
    logger.info(
        f"Simulation complete ({profile}, N={n_respondents}): "
        f"mean_items={summary.mean_items:.1f}, "
        f"completion_rate={summary.completion_rate:.1%}, "
        f"mean_big_five_confidence={summary.mean_big_five_confidence:.1f}, "
        f"duplicate_sessions={summary.duplicate_sessions}"
    )
    return summary
