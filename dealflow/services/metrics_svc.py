"""Pipeline metrics - values, conversion rates and stage velocity."""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal

from ..config import settings
from ..models.deal import Deal
from ..models.pipeline import Pipeline, PipelineStage
from .clock import days_between, utcnow
from .staleness_svc import stale_deals


def _round(value: float | Decimal) -> int:
    # Half-up, not Python's banker's rounding
    return int(Decimal(str(value)).quantize(Decimal(1), rounding=ROUND_HALF_UP))


def _reached_by(pipeline: Pipeline) -> dict[uuid.UUID, set[uuid.UUID]]:
    """Map stage id -> ids of deals that are in, or have ever been in, that stage."""
    reached: dict[uuid.UUID, set[uuid.UUID]] = {stage.id: set() for stage in pipeline.stages}
    for deal in pipeline.iter_deals():
        reached.setdefault(deal.stage_id, set()).add(deal.id)
        for entry in deal.history:
            reached.setdefault(entry.stage_id, set()).add(deal.id)
    return reached


def deal_weighted_value(deal: Deal, stage: PipelineStage | None) -> Decimal:
    if stage is None:
        return Decimal(0)
    return Decimal(deal.value or 0) * stage.probability / 100


def stage_values(pipeline: Pipeline) -> dict[str, Decimal]:
    return {stage.name: stage.total_value() for stage in pipeline.stages}


def conversion_rates(pipeline: Pipeline) -> list[int]:
    """Percentage of deals reaching each stage that went on to reach the next."""
    reached = _reached_by(pipeline)
    rates: list[int] = []
    for current, following in zip(pipeline.stages, pipeline.stages[1:]):
        entered = len(reached[current.id])
        advanced = len(reached[following.id])
        rates.append(_round(advanced / entered * 100) if entered else 0)
    return rates


def _days_in(deal: Deal, stage_id: uuid.UUID, now: datetime) -> int:
    history = deal.history
    total = 0
    for entry, following in zip(history, history[1:]):
        if entry.stage_id == stage_id:
            total += days_between(entry.date, following.date)
    if deal.stage_id == stage_id and history:
        total += days_between(history[-1].date, now)
    return total


def stage_velocity(pipeline: Pipeline, now: datetime | None = None) -> list[int]:
    """Average days spent in each stage by the deals that reached it.

    A deal that left a stage and came back has every visit counted.
    """
    now = now or utcnow()
    reached = _reached_by(pipeline)
    deals = list(pipeline.iter_deals())
    velocity: list[int] = []
    for stage in pipeline.stages:
        visitors = [deal for deal in deals if deal.id in reached[stage.id]]
        if not visitors:
            velocity.append(0)
            continue
        total = sum(_days_in(deal, stage.id, now) for deal in visitors)
        velocity.append(_round(total / len(visitors)))
    return velocity


def pipeline_summary(
    pipeline: Pipeline,
    now: datetime | None = None,
    threshold_days: int | None = None,
) -> dict:
    """Compute all pipeline metrics for display."""
    now = now or utcnow()
    if threshold_days is None:
        threshold_days = settings.stale_threshold_days

    velocity = stage_velocity(pipeline, now)
    rates = conversion_rates(pipeline)

    stages = [
        {
            "id": stage.id,
            "name": stage.name,
            "position": stage.position,
            "probability": stage.probability,
            "deal_count": stage.deal_count,
            "value": stage.total_value(),
            "weighted_value": stage.weighted_value(),
            "avg_days": velocity[index],
        }
        for index, stage in enumerate(pipeline.stages)
    ]
    labelled_rates = {
        f"{current.name} -> {following.name}": rate
        for current, following, rate in zip(pipeline.stages, pipeline.stages[1:], rates)
    }

    return {
        "pipeline_id": pipeline.id,
        "name": pipeline.name,
        "deal_count": sum(stage.deal_count for stage in pipeline.stages),
        "total_value": pipeline.total_value(),
        "weighted_value": pipeline.weighted_value(),
        "stages": stages,
        "conversion_rates": labelled_rates,
        "stale_deal_ids": [deal.id for deal in stale_deals(pipeline, threshold_days, now)],
    }
