"""Centralized settings for casemerge via Pydantic BaseSettings.

All configuration is read from environment variables with the CASEMERGE_
prefix, falling back to the defaults defined here. Set values in a .env file
or export them in the shell before running the CLI.

Library callers that need per-call overrides build a Thresholds or
ScoreWeights model (see casemerge.records.models) instead of mutating the
singleton.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Engine settings loaded from environment variables.

    Environment variable names are formed by uppercasing the field name and
    prepending the CASEMERGE_ prefix.  Example: CASEMERGE_REVIEW_THRESHOLD
    overrides review_threshold.
    """

    # Classification thresholds (composite similarity, 0-1)
    exact_threshold: float = 1.0
    auto_merge_threshold: float = 0.97
    review_threshold: float = 0.88

    # Scoring weights (must sum to 1.0)
    weight_title: float = 0.5
    weight_steps: float = 0.3
    weight_category: float = 0.1
    weight_tags: float = 0.1

    # Merge resolver
    step_merge_threshold: float = 0.9     # step similarity needed before the longer step list may win
    length_tolerance_ratio: float = 0.1   # scalar lengths this close (relative) are ambiguous
    length_tolerance_chars: int = 2       # ... or this close (absolute)

    # Pipeline
    default_mode: str = "smart"

    # Review display bands (presentation only, never used for classification)
    display_band_high: float = 0.95
    display_band_low: float = 0.75

    # MinHash LSH candidate search for pool reconciliation
    minhash_threshold: float = 0.5
    minhash_num_perm: int = 128
    reconcile_threshold: float = 0.97

    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_prefix="CASEMERGE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


# Module-level singleton: import this throughout the codebase
settings = Settings()
