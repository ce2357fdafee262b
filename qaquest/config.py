import logging
import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import List, Optional

_log = logging.getLogger(__name__)

_DEFAULT_ORIGINS = [
    "http://localhost:5173",
    "http://127.0.0.1:5173",
    "http://localhost:3000",
]


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        _log.warning("invalid_int_setting name=%s value=%r default=%s", name, raw, default)
        return default


def _env_str(name: str) -> Optional[str]:
    value = os.getenv(name, "").strip()
    return value or None


@dataclass(frozen=True)
class Settings:
    database_url: str = "sqlite:///./qaquest.db"
    frontend_origins: List[str] = field(default_factory=lambda: list(_DEFAULT_ORIGINS))
    ai_provider: str = "gemini"
    gemini_api_key: Optional[str] = None
    gemini_model: str = "gemini-1.5-flash"
    openrouter_api_key: Optional[str] = None
    openrouter_model: str = "anthropic/claude-3.5-sonnet"
    grading_timeout_s: int = 20
    feedback_timeout_s: int = 45
    generation_timeout_s: int = 90
    grading_workers: int = 4
    cache_ttl_s: int = 300
    cache_max_entries: int = 512
    jwt_secret: Optional[str] = None
    log_level: str = "INFO"


def get_settings() -> Settings:
    origins = [o.strip() for o in os.getenv("FRONTEND_ORIGIN", "").split(",") if o.strip()]
    return Settings(
        database_url=os.getenv("DATABASE_URL", "sqlite:///./qaquest.db"),
        frontend_origins=origins or list(_DEFAULT_ORIGINS),
        ai_provider=(os.getenv("AI_PROVIDER") or "gemini").strip().lower(),
        gemini_api_key=_env_str("GEMINI_API_KEY"),
        gemini_model=os.getenv("GEMINI_MODEL", "gemini-1.5-flash"),
        openrouter_api_key=_env_str("OPENROUTER_API_KEY"),
        openrouter_model=os.getenv("OPENROUTER_MODEL", "anthropic/claude-3.5-sonnet"),
        grading_timeout_s=_env_int("AI_GRADING_TIMEOUT_S", 20),
        feedback_timeout_s=_env_int("AI_FEEDBACK_TIMEOUT_S", 45),
        generation_timeout_s=_env_int("AI_GENERATION_TIMEOUT_S", 90),
        grading_workers=max(1, _env_int("GRADING_WORKERS", 4)),
        cache_ttl_s=_env_int("CACHE_TTL_S", 300),
        cache_max_entries=max(1, _env_int("CACHE_MAX_ENTRIES", 512)),
        jwt_secret=_env_str("JWT_SECRET"),
        log_level=(os.getenv("LOG_LEVEL") or "INFO").upper(),
    )


@lru_cache(maxsize=1)
def current_settings() -> Settings:
    """Process-wide settings, read once; FastAPI dependency."""
    return get_settings()
