import logging

from pydantic_settings import BaseSettings
from pydantic import ConfigDict
from typing import Optional


class Settings(BaseSettings):
    # Environment
    ENV: str = "development"
    CONFIG_STRICT: bool = False

    # Persistent local cache (dismissal records live here)
    CACHE_DATABASE_URL: Optional[str] = "sqlite:///./plan_engine_cache.db"

    # Plan quotas (-1 = unlimited; Pro is always unlimited)
    FREE_PLAN_MAX_PROJECTS: int = 1
    FREE_PLAN_MAX_ANALYSES_TOTAL: int = 1
    FREE_PLAN_MAX_OPINIONS_PER_PROJECT: int = 50
    TRIAL_PLAN_MAX_PROJECTS: int = 5
    TRIAL_PLAN_MAX_ANALYSES_TOTAL: int = 7
    TRIAL_PLAN_MAX_OPINIONS_PER_PROJECT: int = 150
    TRIAL_DURATION_DAYS: int = 14

    # Banner timing windows
    LIMIT_HIT_RELEVANCE_MINUTES: int = 5
    DISMISSAL_TTL_HOURS: int = 24
    TRIAL_ENDING_DAYS: int = 3
    TRIAL_PROGRESS_DAYS: int = 7
    WELCOME_PERIOD_DAYS: int = 2

    # Engagement heuristics for the value banner (product tunables)
    ENGAGED_MIN_PROJECTS: int = 2
    ENGAGED_MIN_ANALYSES: int = 3
    ENGAGED_MIN_COMPLETED_PROJECTS: int = 1
    VALUE_MIN_ANALYSES: int = 2
    VALUE_MIN_COMPLETED_PROJECTS: int = 1
    HOURS_PER_ANALYSIS: float = 4.5

    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


settings = Settings()


def validate_config(strict: Optional[bool] = None, settings_obj: Optional[Settings] = None, logger: Optional[logging.Logger] = None) -> bool:
    """Validate quota and window configuration.

    In strict mode raise RuntimeError; otherwise emit warnings only.
    """
    cfg = settings_obj or settings
    log = logger or logging.getLogger("plan_engine")
    strict_mode = strict if strict is not None else getattr(cfg, "CONFIG_STRICT", False)

    problems = []
    for key in (
        "FREE_PLAN_MAX_PROJECTS",
        "FREE_PLAN_MAX_ANALYSES_TOTAL",
        "FREE_PLAN_MAX_OPINIONS_PER_PROJECT",
        "TRIAL_PLAN_MAX_PROJECTS",
        "TRIAL_PLAN_MAX_ANALYSES_TOTAL",
        "TRIAL_PLAN_MAX_OPINIONS_PER_PROJECT",
    ):
        value = getattr(cfg, key)
        if value < -1:
            problems.append(key)

    for key in ("LIMIT_HIT_RELEVANCE_MINUTES", "DISMISSAL_TTL_HOURS", "TRIAL_DURATION_DAYS"):
        if getattr(cfg, key) <= 0:
            problems.append(key)

    if cfg.TRIAL_ENDING_DAYS >= cfg.TRIAL_PROGRESS_DAYS:
        problems.append("TRIAL_ENDING_DAYS")

    if not cfg.CACHE_DATABASE_URL:
        log.warning("CACHE_DATABASE_URL not set; dismissals will not survive restarts")

    if problems:
        message = f"Invalid plan configuration: {', '.join(problems)}"
        if strict_mode:
            raise RuntimeError(message)
        log.warning(message)
        return False

    return True
