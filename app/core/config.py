"""Settings for Voice Req Engine, read from the environment and `.env`."""

from functools import lru_cache
from typing import Literal

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

try:
    load_dotenv()
except (PermissionError, OSError):
    # Unreadable .env (sandboxes, read-only mounts): rely on the real environment
    pass


class Settings(BaseSettings):
    """Every tunable of the pipeline, sessions and canvas layout."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="ignore")

    # Runtime
    REQ_ENGINE_ENV: str = Field(default="dev", description="Environment: dev, test, staging, prod")
    LOG_LEVEL: Literal["", "DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="", description="Overrides the per-environment log level when set"
    )

    # Oracle (classifier / extractor) configuration
    ORACLE_BACKEND: Literal["anthropic", "openai", "heuristic"] = Field(
        default="anthropic", description="Which oracle implementation analyzes transcripts"
    )
    ANTHROPIC_API_KEY: str = Field(default="", description="Anthropic API key")
    OPENAI_API_KEY: str = Field(default="", description="OpenAI API key")
    ORACLE_MODEL: str = Field(
        default="claude-haiku-4-5-20251001", description="Anthropic model for transcript analysis"
    )
    ORACLE_OPENAI_MODEL: str = Field(
        default="gpt-4o-mini", description="OpenAI model when ORACLE_BACKEND=openai"
    )
    ORACLE_MAX_RETRIES: int = Field(
        default=2, description="Retries on transient oracle API errors before falling back"
    )

    # Analysis thresholds
    NOISE_DISCARD_CONFIDENCE: float = Field(
        default=0.85, description="Noise is discarded only above this confidence"
    )
    LOW_CONFIDENCE_OVERRIDE: float = Field(
        default=0.6, description="Classifications below this confidence are treated as features"
    )
    FEATURE_MATCH_CONFIDENCE: float = Field(
        default=0.7, description="Minimum match confidence to merge into an existing feature"
    )

    # Trigger policy
    PAUSE_DEBOUNCE_SECONDS: float = Field(
        default=1.5, description="Silence after a final segment before the buffer is analyzed"
    )
    FALLBACK_INTERVAL_SECONDS: float = Field(
        default=10.0, description="Periodic flush interval when speech never pauses"
    )

    # Layout
    NODE_WIDTH: int = Field(default=288, description="Capability node width on the canvas")
    NODE_HEIGHT: int = Field(default=160, description="Capability node height on the canvas")
    LAYOUT_PADDING: int = Field(default=40, description="Minimum gap between capability nodes")
    LAYOUT_MAX_RINGS: int = Field(default=10, description="Rings searched before falling back")

    # Sessions
    MAX_RECENT_OUTCOMES: int = Field(default=50, description="Analysis outcomes kept per session")


@lru_cache
def get_settings() -> Settings:
    """Process-wide Settings, built on first use. Tests call `get_settings.cache_clear()`."""
    return Settings()
