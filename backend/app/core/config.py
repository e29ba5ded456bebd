"""
Application configuration settings.
"""

from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Dict, List, Literal, Self


class StageAdvancementSettings(BaseModel):
    """Thresholds that move a session out of one stage into the next."""

    min_questions: int = Field(ge=0)
    min_confidence: float = Field(ge=0.0, le=100.0)
    next_stage_at: int = Field(ge=0)


class StageBatchSettings(BaseModel):
    """Batch size envelope for a single stage selector."""

    min_items: int = Field(ge=0)
    target_items: int = Field(ge=0)
    max_items: int = Field(ge=0)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    APP_NAME: str = "Adaptive Psychometric Assessment API"
    APP_VERSION: str = "0.1.0"
    ENV: str = "development"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"

    # API
    API_V1_PREFIX: str = "/v1"

    # CORS
    CORS_ORIGINS: List[str] = [
        "http://localhost:3000",
        "http://localhost:8080",
    ]

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # Database
    DATABASE_URL: str = "sqlite:///./adaptive_assessment.db"
    DB_POOL_SIZE: int = 10
    DB_POOL_MAX_OVERFLOW: int = 20
    # Seconds to wait for a pooled connection before the repository is
    # reported as unavailable
    DB_POOL_TIMEOUT: int = 10
    DB_POOL_RECYCLE: int = 3600

    # Question pool cache
    QUESTION_POOL_CACHE_TTL_SECONDS: int = Field(
        default=300,
        ge=0,
        description="Seconds the active question pool is served from memory (0 disables caching)",
    )

    # Adaptive engine (multi-stage item selection)
    ADAPTIVE_TARGET_TOTAL: int = Field(
        default=70,
        ge=1,
        description="Exact number of items every completed session administers",
    )
    # Stage N -> N+1 advancement: stay while answered < min_questions, then
    # advance when Big Five avg confidence >= min_confidence OR answered >= next_stage_at
    ADAPTIVE_STAGE_ADVANCEMENT: Dict[int, StageAdvancementSettings] = {
        1: StageAdvancementSettings(min_questions=12, min_confidence=30, next_stage_at=15),
        2: StageAdvancementSettings(min_questions=37, min_confidence=60, next_stage_at=42),
        3: StageAdvancementSettings(min_questions=55, min_confidence=75, next_stage_at=60),
    }
    # Stage 4 has no fixed envelope; it fills to ADAPTIVE_TARGET_TOTAL
    ADAPTIVE_STAGE_BATCH_LIMITS: Dict[int, StageBatchSettings] = {
        1: StageBatchSettings(min_items=12, target_items=13, max_items=15),
        2: StageBatchSettings(min_items=25, target_items=27, max_items=30),
        3: StageBatchSettings(min_items=15, target_items=17, max_items=20),
    }
    ADAPTIVE_SKIP_CONFIDENCE: float = Field(default=85.0, ge=0.0, le=100.0)
    ADAPTIVE_SKIP_MIN_QUESTIONS: int = Field(default=2, ge=0)
    # PHQ-2 / GAD-2 positive screen: pair sum >= SUM and at least one item >= ITEM
    ADAPTIVE_CLINICAL_SCREEN_SUM: float = 3.0
    ADAPTIVE_CLINICAL_SCREEN_ITEM: float = 2.0
    ADAPTIVE_NEURODIVERSITY_FLAG_SCORE: float = Field(default=60.0, ge=0.0, le=100.0)
    ADAPTIVE_STAGE3_BACKFILL_THRESHOLD: int = Field(default=60, ge=0)
    ADAPTIVE_DEPRESSION_SCREENER_IDS: List[str] = [
        "DEPRESSION_PHQ9_1",
        "DEPRESSION_PHQ9_2",
    ]
    ADAPTIVE_ANXIETY_SCREENER_IDS: List[str] = [
        "ANXIETY_GAD7_1",
        "ANXIETY_GAD7_2",
    ]

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",  # Ignore extra fields from .env not defined in Settings
    )

    @model_validator(mode="after")
    def validate_stage_advancement(self) -> Self:
        """Stages 1-3 must each define thresholds that fit inside the target total."""
        missing = {1, 2, 3} - set(self.ADAPTIVE_STAGE_ADVANCEMENT.keys())
        if missing:
            raise ValueError(
                f"ADAPTIVE_STAGE_ADVANCEMENT is missing stages: {sorted(missing)}"
            )
        for stage, threshold in self.ADAPTIVE_STAGE_ADVANCEMENT.items():
            if threshold.min_questions > threshold.next_stage_at:
                raise ValueError(
                    f"Stage {stage}: min_questions ({threshold.min_questions}) "
                    f"must not exceed next_stage_at ({threshold.next_stage_at})"
                )
            if threshold.next_stage_at >= self.ADAPTIVE_TARGET_TOTAL:
                raise ValueError(
                    f"Stage {stage}: next_stage_at ({threshold.next_stage_at}) must be "
                    f"below ADAPTIVE_TARGET_TOTAL ({self.ADAPTIVE_TARGET_TOTAL})"
                )
        return self

    @model_validator(mode="after")
    def validate_batch_limits(self) -> Self:
        """Batch envelopes must be ordered min <= target <= max."""
        for stage, limits in self.ADAPTIVE_STAGE_BATCH_LIMITS.items():
            if not limits.min_items <= limits.target_items <= limits.max_items:
                raise ValueError(
                    f"Stage {stage} batch limits must satisfy min <= target <= max, "
                    f"got {limits.min_items}/{limits.target_items}/{limits.max_items}"
                )
        return self


settings = Settings()
