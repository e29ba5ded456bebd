"""
Engine-facing configuration for the multi-stage adaptive selector.

``AdaptiveEngineConfig`` is a frozen snapshot of the adaptive settings. Every
engine component accepts one explicitly so behaviour never depends on
module-level state; ``from_settings`` builds it from the environment-backed
application settings.
"""

from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

from app.core.config import Settings


@dataclass(frozen=True)
class StageAdvancement:
    """Stage exit rule: stay below min_questions, then advance on confidence OR ceiling."""

    min_questions: int
    min_confidence: float
    next_stage_at: int


@dataclass(frozen=True)
class StageBatchLimits:
    """Batch size envelope for a stage selector."""

    min_items: int
    target_items: int
    max_items: int


DEFAULT_STAGE_ADVANCEMENT: Dict[int, StageAdvancement] = {
    1: StageAdvancement(min_questions=12, min_confidence=30.0, next_stage_at=15),
    2: StageAdvancement(min_questions=37, min_confidence=60.0, next_stage_at=42),
    3: StageAdvancement(min_questions=55, min_confidence=75.0, next_stage_at=60),
}

DEFAULT_STAGE_BATCH_LIMITS: Dict[int, StageBatchLimits] = {
    1: StageBatchLimits(min_items=12, target_items=13, max_items=15),
    2: StageBatchLimits(min_items=25, target_items=27, max_items=30),
    3: StageBatchLimits(min_items=15, target_items=17, max_items=20),
}


@dataclass(frozen=True)
class AdaptiveEngineConfig:
    """All tunable constants of the adaptive engine."""

    target_total: int = 70
    stage_advancement: Dict[int, StageAdvancement] = field(
        default_factory=lambda: dict(DEFAULT_STAGE_ADVANCEMENT)
    )
    stage_batch_limits: Dict[int, StageBatchLimits] = field(
        default_factory=lambda: dict(DEFAULT_STAGE_BATCH_LIMITS)
    )
    skip_confidence: float = 85.0
    skip_min_questions: int = 2
    clinical_screen_sum: float = 3.0
    clinical_screen_item: float = 2.0
    neurodiversity_flag_score: float = 60.0
    stage3_backfill_threshold: int = 60
    depression_screener_ids: Tuple[str, ...] = ("DEPRESSION_PHQ9_1", "DEPRESSION_PHQ9_2")
    anxiety_screener_ids: Tuple[str, ...] = ("ANXIETY_GAD7_1", "ANXIETY_GAD7_2")

    def __post_init__(self) -> None:
        if self.target_total < 1:
            raise ValueError(f"target_total must be positive, got {self.target_total}")
        for stage in (1, 2, 3):
            if stage not in self.stage_advancement:
                raise ValueError(f"Missing advancement thresholds for stage {stage}")
            if stage not in self.stage_batch_limits:
                raise ValueError(f"Missing batch limits for stage {stage}")
        for stage, threshold in self.stage_advancement.items():
            if threshold.min_questions > threshold.next_stage_at:
                raise ValueError(
                    f"Stage {stage}: min_questions must not exceed next_stage_at"
                )
            if threshold.next_stage_at >= self.target_total:
                raise ValueError(
                    f"Stage {stage}: next_stage_at ({threshold.next_stage_at}) must be "
                    f"below target_total ({self.target_total})"
                )
        for stage, limits in self.stage_batch_limits.items():
            if not limits.min_items <= limits.target_items <= limits.max_items:
                raise ValueError(
                    f"Stage {stage}: batch limits must satisfy min <= target <= max"
                )

    def advancement_for(self, stage: int) -> Optional[StageAdvancement]:
        return self.stage_advancement.get(stage)

    def batch_limits_for(self, stage: int) -> StageBatchLimits:
        return self.stage_batch_limits[stage]

    @classmethod
    def from_settings(cls, settings: Settings) -> "AdaptiveEngineConfig":
        """Build the engine config from application settings."""
        return cls(
            target_total=settings.ADAPTIVE_TARGET_TOTAL,
            stage_advancement={
                int(stage): StageAdvancement(
                    min_questions=t.min_questions,
                    min_confidence=t.min_confidence,
                    next_stage_at=t.next_stage_at,
                )
                for stage, t in settings.ADAPTIVE_STAGE_ADVANCEMENT.items()
            },
            stage_batch_limits={
                int(stage): StageBatchLimits(
                    min_items=b.min_items,
                    target_items=b.target_items,
                    max_items=b.max_items,
                )
                for stage, b in settings.ADAPTIVE_STAGE_BATCH_LIMITS.items()
            },
            skip_confidence=settings.ADAPTIVE_SKIP_CONFIDENCE,
            skip_min_questions=settings.ADAPTIVE_SKIP_MIN_QUESTIONS,
            clinical_screen_sum=settings.ADAPTIVE_CLINICAL_SCREEN_SUM,
            clinical_screen_item=settings.ADAPTIVE_CLINICAL_SCREEN_ITEM,
            neurodiversity_flag_score=settings.ADAPTIVE_NEURODIVERSITY_FLAG_SCORE,
            stage3_backfill_threshold=settings.ADAPTIVE_STAGE3_BACKFILL_THRESHOLD,
            depression_screener_ids=tuple(settings.ADAPTIVE_DEPRESSION_SCREENER_IDS),
            anxiety_screener_ids=tuple(settings.ADAPTIVE_ANXIETY_SCREENER_IDS),
        )
