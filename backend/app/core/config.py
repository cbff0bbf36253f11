import os
from pathlib import Path
from dataclasses import dataclass, field
from functools import lru_cache
from typing import List

from dotenv import load_dotenv

# Load environment variables from backend/.env if present, so running from the
# repo root still picks up settings.
# __file__ is backend/app/core/config.py -> parents[2] is backend/
BACKEND_ENV = Path(__file__).resolve().parents[2] / ".env"
load_dotenv(BACKEND_ENV)


def _env_bool(name: str, default: bool = False) -> bool:
    """Parse a boolean from the environment with sensible defaults."""
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.lower() in {"1", "true", "yes", "on"}


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_list(name: str, default: List[str] | None = None) -> List[str]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default or []
    return [item.strip() for item in raw.split(",") if item.strip()]


def _cors_origins() -> List[str]:
    """
    CORS_ORIGINS override plus the local dev hosts.
    Default is permissive (*): the admin UI is unauthenticated by design of the site.
    """
    base_local = ["http://localhost:5000", "http://127.0.0.1:5000", "http://localhost:8000"]
    env_origins = _env_list("CORS_ORIGINS", [])
    merged = (env_origins or ["*"]) + base_local

    seen = set()
    deduped = []
    for origin in merged:
        if origin in seen:
            continue
        seen.add(origin)
        deduped.append(origin)
    return deduped


@dataclass
class Settings:
    app_name: str = field(default_factory=lambda: os.getenv("APP_NAME", "CWL Manager API"))
    api_prefix: str = field(default_factory=lambda: os.getenv("API_PREFIX", "/api"))
    database_url: str = field(default_factory=lambda: os.getenv("DATABASE_URL", "sqlite:///cwl_manager.db"))
    debug: bool = field(default_factory=lambda: _env_bool("DEBUG", False))
    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO").upper())
    cors_origins: List[str] = field(default_factory=_cors_origins)
    clash_api_key: str = field(default_factory=lambda: os.getenv("CLASH_API_KEY") or os.getenv("COC_API_KEY") or "")
    clash_api_url: str = field(default_factory=lambda: os.getenv("CLASH_API_URL", "https://api.clashofclans.com/v1"))
    clash_api_timeout: float = field(default_factory=lambda: _env_float("CLASH_API_TIMEOUT", 10))
    # One assignment per player within a list scope; false allows multi-roster membership.
    exclusive_rosters: bool = field(default_factory=lambda: _env_bool("EXCLUSIVE_ROSTERS", True))


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Cached settings instance sourced from environment variables."""
    return Settings()
