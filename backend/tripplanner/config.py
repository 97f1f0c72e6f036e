"""Runtime settings for the routing backend.

Values come from the environment (a local ``.env`` file is loaded first).
Clients are built once from these settings in the application lifespan
and handed to the services that need them.
"""

import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

load_dotenv()

DEFAULT_OPENROUTE_BASE_URL = "https://api.openrouteservice.org"
DEFAULT_CORS_ORIGINS = [
    "http://localhost:3000",
    "http://localhost:3001",
    "http://localhost:5173",
]


def _split_origins(raw: str | None) -> list[str]:
    if not raw:
        return list(DEFAULT_CORS_ORIGINS)
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


@dataclass(frozen=True)
class Settings:
    """Environment-driven configuration."""

    openroute_api_key: str | None = None
    openroute_base_url: str = DEFAULT_OPENROUTE_BASE_URL
    routing_timeout_seconds: float = 10.0
    routing_max_retries: int = 2
    routing_retry_delay_seconds: float = 1.0
    redis_url: str | None = None
    cors_origins: list[str] = field(default_factory=lambda: list(DEFAULT_CORS_ORIGINS))
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            openroute_api_key=os.getenv("OPENROUTE_API_KEY"),
            openroute_base_url=os.getenv("OPENROUTE_BASE_URL", DEFAULT_OPENROUTE_BASE_URL),
            routing_timeout_seconds=float(os.getenv("ROUTING_TIMEOUT_SECONDS", "10")),
            routing_max_retries=int(os.getenv("ROUTING_MAX_RETRIES", "2")),
            routing_retry_delay_seconds=float(os.getenv("ROUTING_RETRY_DELAY_SECONDS", "1.0")),
            redis_url=os.getenv("REDIS_URL") or None,
            cors_origins=_split_origins(os.getenv("CORS_ORIGINS")),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )
