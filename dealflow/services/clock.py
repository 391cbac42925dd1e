"""Timestamp helpers shared by the transition, metrics and staleness services."""

from __future__ import annotations

from datetime import datetime, timezone

from ..models.base import utcnow

__all__ = ["as_utc", "days_between", "utcnow"]


def as_utc(value: datetime) -> datetime:
    """Return an aware UTC datetime; naive values (SQLite) are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def days_between(start: datetime, end: datetime) -> int:
    """Whole calendar days between two instants, by their UTC dates."""
    return (as_utc(end).date() - as_utc(start).date()).days
