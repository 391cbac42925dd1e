"""Stage-transition engine - places, moves and detaches deals.

Every function here works on loaded ``Pipeline`` aggregates and checks all of
its preconditions before touching them, so a raised error leaves the aggregate
exactly as it was.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any

from ..config import settings
from ..errors import InvariantViolation, NotFoundError
from ..models.deal import Deal, DealHistoryEntry
from ..models.pipeline import Pipeline, PipelineStage
from ..schemas.pipeline import Actor
from .clock import as_utc, utcnow

logger = logging.getLogger(__name__)


def _history_entry(
    deal: Deal, stage: PipelineStage, actor: Actor, at: datetime
) -> DealHistoryEntry:
    return DealHistoryEntry(
        id=uuid.uuid4(),
        deal_id=deal.id,
        stage_id=stage.id,
        stage_name=stage.name,
        date=at,
        user_id=actor.id,
        user_name=actor.name,
        sequence=len(deal.history),
    )


def place_new_deal(
    pipeline: Pipeline,
    stage_id: uuid.UUID,
    actor: Actor,
    *,
    title: str,
    owner_id: str,
    value: Decimal | int | str = 0,
    currency: str | None = None,
    now: datetime | None = None,
    **fields: Any,
) -> Deal:
    """Create a deal inside ``stage_id`` with its initial history entry."""
    stage = pipeline.find_stage(stage_id)
    if stage is None:
        raise NotFoundError("stage", stage_id)

    now = now or utcnow()
    deal = Deal(
        id=uuid.uuid4(),
        title=title,
        owner_id=owner_id,
        value=Decimal(value),
        currency=currency or settings.default_currency,
        pipeline_id=pipeline.id,
        stage_id=stage.id,
        contact_ids=list(fields.pop("contact_ids", None) or []),
        tags=list(fields.pop("tags", None) or []),
        custom_fields=dict(fields.pop("custom_fields", None) or {}),
        created_at=now,
        updated_at=now,
        **fields,
    )
    deal.history.append(_history_entry(deal, stage, actor, now))
    stage.deals.append(deal)
    return deal


def move_deal(
    pipeline: Pipeline,
    deal_id: uuid.UUID,
    from_stage_id: uuid.UUID,
    to_stage_id: uuid.UUID,
    actor: Actor,
    *,
    to_pipeline: Pipeline | None = None,
    now: datetime | None = None,
) -> Deal:
    """Move a deal between stages, possibly into another pipeline.

    Dropping a deal on the stage it is already in changes nothing. Otherwise
    the deal is appended to the destination stage and gains one history entry
    stamped with ``now`` and the acting user.
    """
    source = pipeline.find_stage(from_stage_id)
    if source is None:
        raise NotFoundError("stage", from_stage_id)
    deal = next((d for d in source.deals if d.id == deal_id), None)
    if deal is None:
        raise NotFoundError("deal", deal_id)

    target_pipeline = to_pipeline if to_pipeline is not None else pipeline
    destination = target_pipeline.find_stage(to_stage_id)
    if destination is None:
        raise NotFoundError("stage", to_stage_id)

    if destination is source:
        logger.debug("Deal %s dropped on its own stage %s", deal.id, source.id)
        return deal

    now = now or utcnow()
    last = deal.last_history_entry
    if last is not None and as_utc(now) < as_utc(last.date):
        raise InvariantViolation(
            f"Move of deal {deal.id} at {now.isoformat()} predates its last stage change"
        )

    source.deals.remove(deal)
    deal.stage_id = destination.id
    deal.pipeline_id = target_pipeline.id
    deal.updated_at = now
    deal.history.append(_history_entry(deal, destination, actor, now))
    destination.deals.append(deal)

    logger.info(
        "Moved deal %s from %r to %r by %s", deal.id, source.name, destination.name, actor.id
    )
    return deal


def detach_deal(pipeline: Pipeline, deal_id: uuid.UUID) -> Deal:
    """Remove a deal from whichever stage of the pipeline holds it."""
    for stage in pipeline.stages:
        for deal in stage.deals:
            if deal.id == deal_id:
                stage.deals.remove(deal)
                return deal
    raise NotFoundError("deal", deal_id)
