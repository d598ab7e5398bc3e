"""DELAY action: computes when a suspended run should wake up."""

from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from ..core.exceptions import SchedulingError
from ..models.core import ActionType, DelayUnit, utcnow
from .base import ActionHandler, ActionInvocation

_UNIT_SECONDS = {
    DelayUnit.SECONDS.value: 1,
    DelayUnit.MINUTES.value: 60,
    DelayUnit.HOURS.value: 3600,
    DelayUnit.DAYS.value: 86400,
}


def parse_duration(config: Dict[str, Any]) -> timedelta:
    """
    Turn ``{duration, unit}`` into a timedelta.

    Raises:
        SchedulingError: If the duration is missing, not a number, zero or
            negative, or the unit is unknown
    """
    raw = config.get("duration")
    unit = str(config.get("unit") or DelayUnit.MINUTES.value).strip().lower()

    if unit not in _UNIT_SECONDS:
        raise SchedulingError(f"Unknown delay unit '{unit}'")
    if raw is None or isinstance(raw, bool) or (isinstance(raw, str) and not raw.strip()):
        raise SchedulingError("Delay duration is missing")
    try:
        amount = float(raw)
    except (TypeError, ValueError):
        raise SchedulingError(f"Delay duration {raw!r} is not a number")
    if amount <= 0:
        raise SchedulingError(f"Delay duration must be positive, got {raw!r}")

    return timedelta(seconds=amount * _UNIT_SECONDS[unit])


def compute_resume_at(config: Dict[str, Any], now: Optional[datetime] = None) -> datetime:
    """Wake-up time for a delay starting at ``now``."""
    return (now or utcnow()) + parse_duration(config)


class DelayHandler(ActionHandler):
    """Suspension point. The run scheduler calls :meth:`schedule` instead of executing inline."""

    action_type = ActionType.DELAY.value
    label = "Delay"
    description = "Pause the workflow before continuing"
    required_config = ["duration"]
    optional_config = ["unit"]
    config_defaults = {"unit": DelayUnit.MINUTES.value}

    def schedule(self, config: Dict[str, Any], now: Optional[datetime] = None) -> Dict[str, Any]:
        config = self.with_defaults(config)
        resume_at = compute_resume_at(config, now)
        return {
            "resumeAt": resume_at.isoformat(),
            "duration": config.get("duration"),
            "unit": str(config.get("unit")).lower(),
        }

    def execute(self, config: Dict[str, Any], invocation: Optional[ActionInvocation] = None) -> Dict[str, Any]:
        return self.schedule(config)
