"""
Centralized settings management using pydantic-settings.

All environment variables and configuration values are defined here.
Use get_settings() to access the singleton settings instance.
"""

from functools import lru_cache
from pathlib import Path
from typing import Dict, List

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from config.constants import SIGNAL_NAMES, WEIGHT_SUM_TOLERANCE

ENV_FILE = Path(__file__).parent.parent.parent / ".env"


DEFAULT_PULSE_WEIGHTS: Dict[str, float] = {
    "embedding": 0.35,
    "interaction": 0.25,
    "overlap": 0.15,
    "freshness": 0.10,
    "context": 0.05,
    "reciprocity": 0.10,
}

DEFAULT_ZONE_WEIGHTS: Dict[str, float] = {
    "embedding": 0.25,
    "interaction": 0.10,
    "overlap": 0.15,
    "freshness": 0.05,
    "context": 0.30,
    "reciprocity": 0.15,
}


def validate_weight_vector(weights: Dict[str, float]) -> Dict[str, float]:
    """
    Check that a weight vector covers exactly the six signals and sums to 1.

    Raises:
        ValueError: on unknown/missing signals, negative weights or a bad sum
    """
    keys = set(weights)
    expected = set(SIGNAL_NAMES)
    if keys != expected:
        raise ValueError(
            f"weight vector must cover {sorted(expected)}, got {sorted(keys)}"
        )
    if any(float(v) < 0 for v in weights.values()):
        raise ValueError("weights must be non-negative")
    total = sum(float(v) for v in weights.values())
    if abs(total - 1.0) > WEIGHT_SUM_TOLERANCE:
        raise ValueError(f"weights must sum to 1.0, got {total:.6f}")
    return {name: float(weights[name]) for name in SIGNAL_NAMES}


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Required environment variables:
        - SUPABASE_URL: Supabase project URL
        - SUPABASE_SERVICE_KEY: Supabase service role key

    Optional environment variables:
        - SUPABASE_JWT_SECRET: JWT secret for the HTTP surface
        - REDIS_URL / REDIS_ENABLED: interaction summary cache backend
        - PULSE_WEIGHTS / ZONE_WEIGHTS: JSON default weight vectors
        - ENVIRONMENT: Environment name (development, staging, production)
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ==========================================================================
    # Environment
    # ==========================================================================
    environment: str = Field(default="development", description="Environment name")
    debug: bool = Field(default=False, description="Debug mode")

    @property
    def is_development(self) -> bool:
        return self.environment.lower() in ("development", "dev", "local")

    @property
    def is_production(self) -> bool:
        return self.environment.lower() in ("production", "prod")

    # ==========================================================================
    # Server Configuration
    # ==========================================================================
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8080, description="Server port")
    workers: int = Field(default=4, description="Number of uvicorn workers")

    cors_origins: List[str] = Field(
        default=[
            "http://localhost:3000",
            "http://localhost:5173",
            "http://127.0.0.1:3000",
            "http://127.0.0.1:5173",
        ],
        description="Allowed CORS origins"
    )

    @field_validator("cors_origins", mode="before")
    @classmethod
    def parse_cors_origins(cls, v):
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",")]
        return v

    # ==========================================================================
    # Supabase Configuration
    # ==========================================================================
    supabase_url: str = Field(..., description="Supabase project URL")
    supabase_service_key: str = Field(..., description="Supabase service role key")
    supabase_jwt_secret: str = Field(
        default="",
        description="JWT secret for token verification (from Supabase dashboard)"
    )

    # ==========================================================================
    # Redis Configuration (interaction summary cache)
    # ==========================================================================
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis connection URL"
    )
    redis_enabled: bool = Field(
        default=False,
        description="Use Redis for the interaction summary cache"
    )
    interaction_cache_ttl_seconds: int = Field(
        default=86400,
        description="Max staleness of cached interaction aggregates (24 hours)"
    )

    # ==========================================================================
    # Signal Weights
    # ==========================================================================
    pulse_weights: Dict[str, float] = Field(
        default_factory=lambda: dict(DEFAULT_PULSE_WEIGHTS),
        description="Default six-signal weight vector for the pulse feed"
    )
    zone_weights: Dict[str, float] = Field(
        default_factory=lambda: dict(DEFAULT_ZONE_WEIGHTS),
        description="Default six-signal weight vector for the zone (event) feed"
    )

    @field_validator("pulse_weights", "zone_weights")
    @classmethod
    def check_weight_vector(cls, v):
        return validate_weight_vector(v)

    def default_weights(self, context: str) -> Dict[str, float]:
        """Return a copy of the built-in weight vector for a context."""
        if context == "zone":
            return dict(self.zone_weights)
        return dict(self.pulse_weights)

    experiment_version: str = Field(
        default="v1",
        description="Suffix of the per-context experiment name (pulse_weights_v1)"
    )

    def experiment_name(self, context: str) -> str:
        return f"{context}_weights_{self.experiment_version}"

    # ==========================================================================
    # Signal Windows
    # ==========================================================================
    interaction_lookback_days: int = Field(default=90, ge=1)
    skip_exclusion_hours: int = Field(default=24, ge=0)
    recent_view_days: int = Field(default=7, ge=0)
    recent_checkin_minutes: int = Field(default=60, ge=0)

    # ==========================================================================
    # Ranking Limits
    # ==========================================================================
    default_limit: int = Field(default=20, ge=0)
    max_limit: int = Field(default=50, ge=1, description="Requests above this are clamped")
    candidate_pool_limit: int = Field(default=500, ge=1)
    large_pool_threshold: int = Field(
        default=5000,
        ge=1,
        description="Pool size above which a bounded partial sort is used"
    )
    scorer_max_workers: int = Field(default=6, ge=1)
    slow_ranking_ms: int = Field(default=500, description="Warn when ranking takes longer")

    # ==========================================================================
    # Analytics
    # ==========================================================================
    analytics_enabled: bool = Field(default=True, description="Log match impressions")

    # ==========================================================================
    # Embeddings
    # ==========================================================================
    embedding_dimension: int = Field(default=1536, ge=1)
    embedding_max_age_days: int = Field(
        default=7,
        description="Embeddings older than this are scheduled for regeneration"
    )


@lru_cache
def get_settings() -> Settings:
    """
    Get the application settings singleton.

    Uses lru_cache to ensure only one instance is created.
    Settings are loaded from environment variables and .env file.

    Returns:
        Settings: The application settings instance

    Raises:
        ValidationError: If required environment variables are missing
    """
    if ENV_FILE.exists():
        # Real environment variables win over the file
        load_dotenv(ENV_FILE, override=False)

    return Settings(_env_file=None)


def get_settings_for_testing(**overrides) -> Settings:
    """
    Create a settings instance for testing with optional overrides.

    This bypasses the cache to allow different settings in tests.

    Args:
        **overrides: Setting values to override

    Returns:
        Settings: A new settings instance with overrides applied
    """
    test_defaults = {
        "supabase_url": "https://test.supabase.co",
        "supabase_service_key": "test-key",
        "environment": "testing",
        "debug": True,
        "analytics_enabled": False,
    }
    test_defaults.update(overrides)

    return Settings(_env_file=None, **test_defaults)
