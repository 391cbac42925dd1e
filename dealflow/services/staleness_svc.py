"""Deal rot detection, evaluated on read."""

from __future__ import annotations

from datetime import datetime

from ..config import settings
from ..models.deal import Deal
from ..models.pipeline import Pipeline
from .clock import days_between, utcnow


def days_in_stage(deal: Deal, now: datetime | None = None) -> int | None:
    """Days since the deal's last stage change, or None without history."""
    last = deal.last_history_entry
    if last is None:
        return None
    return days_between(last.date, now or utcnow())


def is_stale(deal: Deal, threshold_days: int = 14, now: datetime | None = None) -> bool:
    """True once a deal has sat in its stage for more than ``threshold_days``."""
    days = days_in_stage(deal, now)
    if days is None:
        return False
    return days > threshold_days


def stale_deals(
    pipeline: Pipeline,
    threshold_days: int | None = None,
    now: datetime | None = None,
) -> list[Deal]:
    if threshold_days is None:
        threshold_days = settings.stale_threshold_days
    now = now or utcnow()
    return [deal for deal in pipeline.iter_deals() if is_stale(deal, threshold_days, now)]
