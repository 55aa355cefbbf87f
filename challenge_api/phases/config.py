"""Configuration for the phase timeline engine."""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings


class PhaseSettings(BaseSettings):
    """Phase engine settings."""

    # Pending-review guard
    review_check_enabled: bool = True
    # Unset: reviews are read through the challenge database session.
    review_database_url: str | None = None
    review_db_schema: str = "reviews"
    pending_review_statuses: list[str] = Field(
        default_factory=lambda: ["PENDING", "IN_PROGRESS", "DRAFT", "SUBMITTED"]
    )

    # Special-cased phases
    post_mortem_predecessor_name: str = "Registration"
    closeable_on_cancel: list[str] = Field(
        default_factory=lambda: ["Registration", "Submission", "Checkpoint Submission"]
    )

    class Config:
        env_file = ".env"
        env_prefix = "PHASE_"


@lru_cache
def get_phase_settings() -> PhaseSettings:
    """Get cached phase settings instance."""
    return PhaseSettings()
