"""Application configuration via Pydantic Settings."""

from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings

# Resolve .env from the repository root regardless of CWD
_ENV_FILE = Path(__file__).resolve().parents[3] / ".env"


class Settings(BaseSettings):
    """Central configuration loaded from environment variables / .env file."""

    # Database
    database_url: str = "sqlite+aiosqlite:///./swap_platform.db"

    # Auth / JWT
    jwt_secret_key: str = "change-me-in-production"
    jwt_algorithm: str = "HS256"
    jwt_expiration_minutes: int = 1440

    # Internal scheduler endpoint
    internal_token: str = "swap2026"

    # CORS / Frontend
    cors_origins: str = "http://localhost:3000"

    # Chain lifecycle
    chain_accept_ttl_hours: int = 24
    chain_expire_sweep_limit: int = 50

    # Interest lifecycle
    interest_request_ttl_hours: int = 48
    interest_expire_sweep_limit: int = 100

    # Listing lifecycle
    listing_active_ttl_hours: int = 336
    listing_expire_sweep_limit: int = 100

    # Sweeper
    sweep_interval_seconds: int = 60
    sweeper_enabled: bool = True

    # Matching
    recommendation_limit: int = 8
    max_cycle_length: int = 4
    rerun_max_listings: int = 200

    # Reliability down-rank hook (off unless a deployment opts in)
    reliability_rank_penalty_enabled: bool = False
    reliability_rank_penalty_weight: int = 25

    # General
    debug: bool = True

    model_config = {"env_file": str(_ENV_FILE), "env_file_encoding": "utf-8", "extra": "ignore"}

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse comma-separated CORS origins into a list.

        In debug mode, returns ["*"] to allow any origin (LAN IPs, etc.).
        """
        if self.debug:
            return ["*"]
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]


@lru_cache
def get_settings() -> Settings:
    """Return cached Settings instance."""
    return Settings()
