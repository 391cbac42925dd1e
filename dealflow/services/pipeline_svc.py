"""Pipeline, stage and deal persistence service.

Mutations load the whole pipeline aggregate, hand it to the synchronous stage
editor or transition engine, and commit the result as one unit of work. If the
core raises, nothing has been touched and nothing is written.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections import defaultdict
from collections.abc import AsyncIterator, Callable
from contextlib import AsyncExitStack, asynccontextmanager
from datetime import datetime
from typing import TypeVar

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ..errors import InvariantViolation, NotFoundError, PipelineError
from ..models.deal import Deal
from ..models.pipeline import Pipeline, PipelineStage
from ..schemas.pipeline import Actor, DealCreate, DealUpdate, StageCreate, StageUpdate
from . import metrics_svc, stage_svc, transition_svc
from .clock import utcnow

logger = logging.getLogger(__name__)

T = TypeVar("T")

_pipeline_locks: defaultdict[uuid.UUID, asyncio.Lock] = defaultdict(asyncio.Lock)


@asynccontextmanager
async def _locked(*pipeline_ids: uuid.UUID) -> AsyncIterator[None]:
    """Serialise writers per pipeline; multiple locks are taken in id order."""
    async with AsyncExitStack() as stack:
        for pipeline_id in sorted(set(pipeline_ids)):
            await stack.enter_async_context(_pipeline_locks[pipeline_id])
        yield


async def _commit_or_rollback(db: AsyncSession, mutate: Callable[[], T]) -> T:
    try:
        result = mutate()
        await db.commit()
    except PipelineError:
        # Core operations check before mutating; the session is still clean
        raise
    except Exception:
        await db.rollback()
        raise
    return result


def _aggregate_options():
    return (
        selectinload(Pipeline.stages)
        .selectinload(PipelineStage.deals)
        .selectinload(Deal.history),
    )


async def _require_pipeline(db: AsyncSession, pipeline_id: uuid.UUID) -> Pipeline:
    pipeline = await get_pipeline(db, pipeline_id)
    if pipeline is None:
        raise NotFoundError("pipeline", pipeline_id)
    return pipeline


async def _mutate_pipeline(
    db: AsyncSession, pipeline_id: uuid.UUID, mutate: Callable[[Pipeline], T]
) -> T:
    async with _locked(pipeline_id):
        pipeline = await _require_pipeline(db, pipeline_id)

        def apply() -> T:
            result = mutate(pipeline)
            pipeline.updated_at = utcnow()
            return result

        return await _commit_or_rollback(db, apply)


# ── Pipeline CRUD ──────────────────────────────────────────────────────────

async def list_pipelines(db: AsyncSession) -> list[Pipeline]:
    stmt = select(Pipeline).options(*_aggregate_options()).order_by(Pipeline.name)
    result = await db.execute(stmt)
    return list(result.scalars().unique().all())


async def get_pipeline(db: AsyncSession, pipeline_id: uuid.UUID) -> Pipeline | None:
    stmt = (
        select(Pipeline)
        .where(Pipeline.id == pipeline_id)
        .options(*_aggregate_options())
        .execution_options(populate_existing=True)
    )
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def create_pipeline(
    db: AsyncSession, name: str, stages: list[StageCreate] | None = None
) -> Pipeline:
    """Create a pipeline with the given stages, or the default template."""
    pipeline_id = uuid.uuid4()
    specs = None if stages is None else [(s.name, s.probability) for s in stages]
    now = utcnow()
    pipeline = Pipeline(
        id=pipeline_id,
        name=name,
        stages=stage_svc.build_stages(specs, pipeline_id),
        created_at=now,
        updated_at=now,
    )
    db.add(pipeline)
    await db.commit()
    logger.info("Created pipeline %r with %d stages", name, len(pipeline.stages))
    return await _require_pipeline(db, pipeline_id)


async def update_pipeline(
    db: AsyncSession, pipeline_id: uuid.UUID, name: str | None = None
) -> Pipeline | None:
    pipeline = await get_pipeline(db, pipeline_id)
    if not pipeline:
        return None
    if name is not None:
        pipeline.name = name
    pipeline.updated_at = utcnow()
    await db.commit()
    return pipeline


async def delete_pipeline(db: AsyncSession, pipeline_id: uuid.UUID) -> bool:
    """Delete a pipeline with all of its stages and deals."""
    async with _locked(pipeline_id):
        pipeline = await get_pipeline(db, pipeline_id)
        if not pipeline:
            return False
        deal_count = sum(stage.deal_count for stage in pipeline.stages)
        await db.delete(pipeline)
        await db.commit()
    _pipeline_locks.pop(pipeline_id, None)
    logger.info("Deleted pipeline %s and %d deals", pipeline_id, deal_count)
    return True


# ── Stage editing ──────────────────────────────────────────────────────────

async def add_stage(
    db: AsyncSession, pipeline_id: uuid.UUID, data: StageCreate
) -> PipelineStage:
    return await _mutate_pipeline(
        db, pipeline_id, lambda p: stage_svc.add_stage(p, data.name, data.probability)
    )


async def update_stage(
    db: AsyncSession, pipeline_id: uuid.UUID, stage_id: uuid.UUID, patch: StageUpdate
) -> PipelineStage:
    fields = patch.model_dump(exclude_unset=True)
    return await _mutate_pipeline(
        db, pipeline_id, lambda p: stage_svc.update_stage(p, stage_id, **fields)
    )


async def delete_stage(
    db: AsyncSession, pipeline_id: uuid.UUID, stage_id: uuid.UUID
) -> PipelineStage:
    stage = await _mutate_pipeline(
        db, pipeline_id, lambda p: stage_svc.delete_stage(p, stage_id)
    )
    logger.info("Deleted stage %r and %d deals", stage.name, stage.deal_count)
    return stage


# ── Deal CRUD ──────────────────────────────────────────────────────────────

async def list_deals(
    db: AsyncSession,
    pipeline_id: uuid.UUID | None = None,
    stage_id: uuid.UUID | None = None,
) -> list[Deal]:
    stmt = select(Deal).options(selectinload(Deal.history))
    if pipeline_id:
        stmt = stmt.where(Deal.pipeline_id == pipeline_id)
    if stage_id:
        stmt = stmt.where(Deal.stage_id == stage_id)
    stmt = stmt.order_by(Deal.created_at)
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def get_deal(db: AsyncSession, deal_id: uuid.UUID) -> Deal | None:
    stmt = select(Deal).where(Deal.id == deal_id).options(selectinload(Deal.history))
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def create_deal(db: AsyncSession, data: DealCreate, actor: Actor) -> Deal:
    fields = data.model_dump(exclude={"pipeline_id", "stage_id"})
    deal = await _mutate_pipeline(
        db,
        data.pipeline_id,
        lambda p: transition_svc.place_new_deal(p, data.stage_id, actor, **fields),
    )
    logger.info("Created deal %s %r", deal.id, deal.title)
    return deal


async def move_deal(
    db: AsyncSession,
    deal_id: uuid.UUID,
    from_stage_id: uuid.UUID,
    to_stage_id: uuid.UUID,
    actor: Actor,
    to_pipeline_id: uuid.UUID | None = None,
    now: datetime | None = None,
) -> Deal:
    """Move a deal from one stage to another and persist the new history."""
    source_pipeline_id = await db.scalar(
        select(PipelineStage.pipeline_id).where(PipelineStage.id == from_stage_id)
    )
    if source_pipeline_id is None:
        raise NotFoundError("stage", from_stage_id)
    target_pipeline_id = to_pipeline_id or source_pipeline_id

    async with _locked(source_pipeline_id, target_pipeline_id):
        pipeline = await _require_pipeline(db, source_pipeline_id)
        to_pipeline = pipeline
        if target_pipeline_id != source_pipeline_id:
            to_pipeline = await _require_pipeline(db, target_pipeline_id)

        def apply() -> Deal:
            deal = transition_svc.move_deal(
                pipeline, deal_id, from_stage_id, to_stage_id, actor,
                to_pipeline=to_pipeline, now=now,
            )
            if from_stage_id != to_stage_id:
                pipeline.updated_at = deal.updated_at
                to_pipeline.updated_at = deal.updated_at
            return deal

        return await _commit_or_rollback(db, apply)


async def update_deal(
    db: AsyncSession, deal_id: uuid.UUID, patch: DealUpdate, actor: Actor
) -> Deal | None:
    """Merge a patch into a deal; a stage or pipeline change becomes a move.

    The move and the field changes are written in a single transaction.
    """
    deal = await get_deal(db, deal_id)
    if not deal:
        return None

    fields = patch.model_dump(exclude_unset=True)
    to_stage_id = fields.pop("stage_id", None)
    to_pipeline_id = fields.pop("pipeline_id", None)
    source_pipeline_id = deal.pipeline_id
    if to_pipeline_id == source_pipeline_id:
        to_pipeline_id = None
    if to_pipeline_id is not None and to_stage_id is None:
        raise InvariantViolation("Moving a deal to another pipeline needs a destination stage")
    target_pipeline_id = to_pipeline_id or source_pipeline_id

    async with _locked(source_pipeline_id, target_pipeline_id):
        pipeline = await _require_pipeline(db, source_pipeline_id)
        to_pipeline = pipeline
        if target_pipeline_id != source_pipeline_id:
            to_pipeline = await _require_pipeline(db, target_pipeline_id)

        def apply() -> Deal:
            current = pipeline.find_deal(deal_id)
            if current is None:
                raise NotFoundError("deal", deal_id)
            now = utcnow()
            if to_stage_id is not None:
                from_stage_id = current.stage_id
                current = transition_svc.move_deal(
                    pipeline, deal_id, from_stage_id, to_stage_id, actor,
                    to_pipeline=to_pipeline, now=now,
                )
                if from_stage_id != to_stage_id:
                    pipeline.updated_at = now
                    to_pipeline.updated_at = now
            if fields:
                for key, value in fields.items():
                    setattr(current, key, value)
                current.updated_at = now
            return current

        return await _commit_or_rollback(db, apply)


async def delete_deal(db: AsyncSession, deal_id: uuid.UUID) -> bool:
    pipeline_id = await db.scalar(select(Deal.pipeline_id).where(Deal.id == deal_id))
    if pipeline_id is None:
        return False
    await _mutate_pipeline(db, pipeline_id, lambda p: transition_svc.detach_deal(p, deal_id))
    logger.info("Deleted deal %s", deal_id)
    return True


# ── Read-side metrics ──────────────────────────────────────────────────────

async def pipeline_stats(
    db: AsyncSession, pipeline_id: uuid.UUID
) -> dict[str, int]:
    """Get deal counts per stage for a pipeline."""
    stmt = (
        select(PipelineStage.name, func.count(Deal.id))
        .outerjoin(Deal, Deal.stage_id == PipelineStage.id)
        .where(PipelineStage.pipeline_id == pipeline_id)
        .group_by(PipelineStage.id, PipelineStage.name)
        .order_by(PipelineStage.position)
    )
    result = await db.execute(stmt)
    return {row[0]: row[1] for row in result.all()}


async def pipeline_metrics(
    db: AsyncSession, pipeline_id: uuid.UUID, now: datetime | None = None
) -> dict:
    pipeline = await _require_pipeline(db, pipeline_id)
    return metrics_svc.pipeline_summary(pipeline, now=now)
