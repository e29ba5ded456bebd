"""
MultiStageCoordinator: state machine over the four selection stages.

Stage flow (defaults):
    Stage 1 (12-15) -> Stage 2 (25-30) -> Stage 3 (15-20) -> Stage 4 (fill to 70)

A stage ``s`` is kept while fewer than ``min_questions`` items are answered;
after that the session advances when the Big Five average confidence reaches
``min_confidence`` OR the answered count reaches ``next_stage_at``. At most
one stage is advanced per call, except that a session whose answered count
already reached the target jumps straight to Stage 4.

The coordinator is stateless: each call rebuilds what it needs from the
``SessionState`` it is given and mutates only that state.
"""

import logging
import random
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from app.core.adaptive.confidence import ConfidenceTracker
from app.core.adaptive.config import AdaptiveEngineConfig
from app.core.adaptive.dimensions import BIG_FIVE_TRAITS
from app.core.adaptive.errors import InvalidStageError, QuestionPoolExhaustedError
from app.core.adaptive.repository import Item, QuestionRepository
from app.core.adaptive.selection import BatchBuilder, SelectionContext, StageSelector
from app.core.adaptive.session import SessionState, StageHistoryEntry
from app.core.adaptive.stage_broad_screening import BroadScreeningStage
from app.core.adaptive.stage_gap_filling import GapFillingStage
from app.core.adaptive.stage_precision_refinement import PrecisionRefinementStage
from app.core.adaptive.stage_targeted_building import TargetedBuildingStage
from app.core.datetime_utils import utc_now

logger = logging.getLogger(__name__)

FINAL_STAGE = 4


@dataclass(frozen=True)
class SkipNotification:
    dimension: str
    confidence: float
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": "skip",
            "dimension": self.dimension,
            "confidence": self.confidence,
            "message": self.message,
        }


@dataclass
class NextQuestionsResult:
    """What the engine hands back to the caller for one batch."""

    questions: List[Item]
    stage: int
    stage_changed: bool
    stage_message: str
    progress_message: str
    confidence_summary: Dict[str, Dict[str, int]]
    skip_notifications: List[SkipNotification] = field(default_factory=list)


class MultiStageCoordinator:
    """Decides the active stage and delegates batch selection to it."""

    STAGE_MESSAGES = {
        1: "Getting to know you - building initial profile",
        2: "Exploring key areas in depth",
        3: "Fine-tuning your unique patterns",
        4: "Completing comprehensive assessment",
    }

    # Lowest Big Five confidence and answered count for the "nearly complete" message
    NEARLY_COMPLETE_CONFIDENCE = 85
    NEARLY_COMPLETE_MIN_ANSWERED = 50

    def __init__(
        self,
        config: Optional[AdaptiveEngineConfig] = None,
        rng: Optional[random.Random] = None,
    ):
        self.config = config or AdaptiveEngineConfig()
        self.rng = rng or random.Random()
        self.stages: Dict[int, StageSelector] = {
            1: BroadScreeningStage(),
            2: TargetedBuildingStage(),
            3: PrecisionRefinementStage(),
            4: GapFillingStage(),
        }

    def get_next_questions(
        self,
        state: SessionState,
        repository: QuestionRepository,
        tracker: Optional[ConfidenceTracker] = None,
    ) -> NextQuestionsResult:
        """
        Advance the session's stage if due and select the next batch.

        Mutates ``state.current_stage`` and ``state.stage_history`` on a
        transition. The caller records the returned questions as presented.

        Args:
            state: Session being served.
            repository: Source of candidate items.
            tracker: Live tracker; rebuilt from ``state.confidence_state`` when
                omitted.

        Returns:
            The selected batch with stage, progress and skip messaging.

        Raises:
            InvalidStageError: If the session is in an unknown stage.
            QuestionPoolExhaustedError: If the final stage cannot supply a
                batch.
        """
        if tracker is None:
            tracker = ConfidenceTracker.from_snapshot(state.confidence_state)

        current_stage = state.current_stage
        if current_stage not in self.stages:
            raise InvalidStageError(current_stage)

        new_stage = self.should_advance_stage(current_stage, tracker, state.answered_count)
        stage_changed = new_stage != current_stage
        if stage_changed:
            # Reaching the target early skips stages; each one still gets a history entry
            for completed in range(current_stage, new_stage):
                self.record_stage_transition(state, completed, completed + 1, tracker)
            state.current_stage = new_stage

        context = SelectionContext(
            repository=repository,
            tracker=tracker,
            responses=list(state.responses),
            excluded_ids=state.excluded_ids(),
            config=self.config,
            rng=self.rng,
        )
        questions = self.select_questions_for_stage(new_stage, context)

        return NextQuestionsResult(
            questions=questions,
            stage=new_stage,
            stage_changed=stage_changed,
            stage_message=self.get_stage_message(new_stage),
            progress_message=self.get_progress_message(tracker, state.answered_count),
            confidence_summary=tracker.get_summary(),
            skip_notifications=self.get_skip_notifications(tracker),
        )

    def should_advance_stage(
        self, current_stage: int, tracker: ConfidenceTracker, answered: int
    ) -> int:
        """
        Stage the session should be in after ``answered`` responses.

        Returns:
            ``current_stage`` while its advancement thresholds are unmet, the
            final stage once the target total is reached, otherwise the next
            stage.
        """
        if current_stage >= FINAL_STAGE:
            return FINAL_STAGE
        if answered >= self.config.target_total:
            return FINAL_STAGE

        threshold = self.config.advancement_for(current_stage)
        if threshold is None:
            return current_stage
        if answered < threshold.min_questions:
            return current_stage

        avg_confidence = tracker.get_average_confidence()
        if avg_confidence >= threshold.min_confidence or answered >= threshold.next_stage_at:
            return current_stage + 1
        return current_stage

    def select_questions_for_stage(self, stage: int, context: SelectionContext) -> List[Item]:
        selector = self.stages.get(stage)
        if selector is None:
            raise InvalidStageError(stage)

        questions = selector.select_questions(context)
        if stage == FINAL_STAGE:
            return questions

        remaining = self.config.target_total - context.presented_count
        if remaining <= 0:
            return []
        questions = questions[:remaining]

        if not questions:
            limits = self.config.batch_limits_for(stage)
            logger.info(
                f"Stage {stage} selected nothing with {remaining} items remaining; "
                "backfilling from the global pool"
            )
            builder = BatchBuilder(context.repository, context.excluded_ids)
            questions = builder.backfill(min(limits.max_items, remaining))
            if not questions:
                logger.error(
                    f"Question pool exhausted in stage {stage}: "
                    f"{context.presented_count} presented, target {self.config.target_total}"
                )
                raise QuestionPoolExhaustedError(
                    answered=context.presented_count,
                    target_total=self.config.target_total,
                    available=0,
                )
        return questions

    def record_stage_transition(
        self,
        state: SessionState,
        old_stage: int,
        new_stage: int,
        tracker: ConfidenceTracker,
    ) -> None:
        state.stage_history.append(
            StageHistoryEntry(
                stage=old_stage,
                completed_at=utc_now(),
                questions_asked=state.answered_count,
                confidence_summary=tracker.get_summary(),
            )
        )
        logger.info(
            f"Stage {old_stage} -> {new_stage}",
            extra={
                "session_id": state.session_id,
                "stage": new_stage,
                "avg_confidence": round(tracker.get_average_confidence()),
                "question_count": state.answered_count,
            },
        )

    def get_stage_message(self, stage: int) -> str:
        return self.STAGE_MESSAGES.get(stage, "")

    def get_progress_message(self, tracker: ConfidenceTracker, answered: int) -> str:
        summary = tracker.get_summary()
        lowest_trait = None
        lowest_confidence = 100
        for trait in BIG_FIVE_TRAITS:
            entry = summary.get(trait)
            if entry is not None and entry["confidence"] < lowest_confidence:
                lowest_confidence = entry["confidence"]
                lowest_trait = trait

        remaining = max(0, self.config.target_total - answered)
        if (
            lowest_confidence >= self.NEARLY_COMPLETE_CONFIDENCE
            and answered >= self.NEARLY_COMPLETE_MIN_ANSWERED
        ):
            return f"Assessment nearly complete - {remaining} questions remaining"
        if lowest_trait is not None:
            return (
                f"Building your {lowest_trait.capitalize()} profile... "
                f"{lowest_confidence}% confident ({remaining} questions remaining)"
            )
        return f"Building your comprehensive personality profile ({remaining} questions remaining)"

    def get_skip_notifications(self, tracker: ConfidenceTracker) -> List[SkipNotification]:
        return [
            SkipNotification(
                dimension=entry["dimension"],
                confidence=entry["confidence"],
                message=(
                    f"Skipping additional {entry['dimension']} questions - pattern is clear "
                    f"({round(entry['confidence'])}% confident)"
                ),
            )
            for entry in tracker.get_skippable_dimensions(
                self.config.skip_confidence, self.config.skip_min_questions
            )
        ]

    def is_complete(self, state: SessionState) -> bool:
        return (
            state.answered_count >= self.config.target_total
            and state.current_stage == FINAL_STAGE
        )

    def get_progress(self, state: SessionState) -> Dict[str, Any]:
        current = state.answered_count
        total = self.config.target_total
        return {
            "current": current,
            "total": total,
            "percentage": round(current / total * 100),
            "remaining": max(0, total - current),
            "stage": state.current_stage,
            "complete": self.is_complete(state),
        }

    def get_stage_statistics(self, state: SessionState) -> Dict[str, Any]:
        return {
            "current_stage": state.current_stage,
            "stages_completed": len(state.stage_history),
            "stage_history": [
                {
                    "stage": entry.stage,
                    "questions_asked": entry.questions_asked,
                    "completed_at": entry.completed_at,
                    "avg_confidence": average_big_five_confidence(entry.confidence_summary),
                }
                for entry in state.stage_history
            ],
        }

    def get_stage_info(self, stage: int) -> Dict[str, Any]:
        selector = self.stages.get(stage)
        if selector is None:
            raise InvalidStageError(stage)
        return selector.get_stage_info(self.config)


def average_big_five_confidence(summary: Optional[Dict[str, Dict[str, Any]]]) -> int:
    """Rounded mean Big Five confidence from a summary snapshot (0 when none)."""
    if not summary:
        return 0
    values = [
        summary[trait]["confidence"]
        for trait in BIG_FIVE_TRAITS
        if trait in summary and summary[trait].get("confidence") is not None
    ]
    return round(sum(values) / len(values)) if values else 0
