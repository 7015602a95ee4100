"""Configuration management"""

import sys
from pathlib import Path
from typing import Optional

from loguru import logger
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Engine settings"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Version tags stamped into match metadata
    policy_version: str = "1.0.0"
    blend_model_version: str = "deterministic-blend-0.1.0 (non-learned)"

    # Matching defaults
    default_max_results: int = 10
    score_tie_epsilon: float = 0.001
    unresolved_distance_km: float = 40075.0  # Earth circumference, never within range

    # Optional JSON file seeding the policy store (built-in defaults otherwise)
    policies_file: Optional[Path] = None

    # Logging
    log_level: str = "INFO"


# Global settings instance
settings = Settings()


def configure_logging(level: Optional[str] = None):
    """Install a single stderr sink at the configured level"""
    logger.remove()
    logger.add(sys.stderr, level=(level or settings.log_level).upper())
