"""Default English copy for upgrade banners.

Localized copy is resolved by the UI from the banner kind; these strings are
the fallback when no translator is wired in.
"""

from typing import Callable, Optional

from plan_engine.models.limit_hit import LimitHitKind

Translator = Callable[..., str]

LIMIT_REACHED_MESSAGES = {
    LimitHitKind.PROJECT_LIMIT: "Project creation limit reached",
    LimitHitKind.ANALYSIS_LIMIT: "AI analysis limit reached",
    LimitHitKind.OPINION_LIMIT: "Opinion collection limit reached",
}
LIMIT_REACHED_GENERAL = "Usage limit reached"

DEFAULT_COPY = {
    "limit_reached.cta": "Continue with Pro",
    "trial_ending.message": "Trial ends in {days} days",
    "trial_ending.cta": "Migrate to Pro plan",
    "value_demonstration.message": "{context} | Manual analysis 5 hours -> AI analysis 30 seconds",
    "value_demonstration.context": "Saved {hours} hours so far",
    "value_demonstration.cta": "More efficient",
    "project_limit_approaching.message": "Currently using {current}/{max} projects",
    "project_limit_approaching.cta": "Up to {trial_max} projects with Trial",
    "welcome_free.message": "Try Pro plan features",
    "welcome_free.cta": "Free Trial",
    "free_value_proposition.message_with_projects": "Achieve efficiency with more projects",
    "free_value_proposition.message": "Try Pro features for free",
    "free_value_proposition.cta": "Start Trial",
    "trial_progress.message": "Trial {days} days left | Experiencing efficiency",
    "trial_progress.cta": "Continue with Pro",
    "trial_value_demonstration.message": "{days} days left | Significantly reducing work time",
    "trial_value_demonstration.cta": "Continue with Pro plan",
    "trial_ending_critical.message": "Trial ends in {days} days",
    "trial_ending_critical.cta": "Migrate to Pro now",
}


def render(key: str, translate: Optional[Translator] = None, **params) -> str:
    """Render copy for `key`, preferring the translator when one is given."""
    if translate is not None:
        return translate(key, **params)
    return DEFAULT_COPY[key].format(**params)


def limit_reached_message(kind: Optional[LimitHitKind]) -> str:
    if kind is None:
        return LIMIT_REACHED_GENERAL
    return LIMIT_REACHED_MESSAGES.get(kind, LIMIT_REACHED_GENERAL)
