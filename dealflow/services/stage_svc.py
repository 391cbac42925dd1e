"""Stage editor - adds, edits and deletes stages of a loaded pipeline.

All functions operate in memory on a ``Pipeline`` aggregate and validate before
mutating; persisting the result is the caller's job (see ``pipeline_svc``).
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable

from ..config import DEFAULT_STAGES
from ..errors import InvariantViolation, NotFoundError
from ..models.pipeline import Pipeline, PipelineStage


def _check_probability(probability: int) -> None:
    if not 0 <= probability <= 100:
        raise InvariantViolation(f"Stage probability must be 0-100, got {probability}")


def _reindex(pipeline: Pipeline) -> None:
    for index, stage in enumerate(pipeline.stages):
        stage.position = index


def build_stages(
    specs: Iterable[tuple[str, int]] | None = None,
    pipeline_id: uuid.UUID | None = None,
) -> list[PipelineStage]:
    """Build an initial stage list from (name, probability) pairs.

    ``None`` selects the default template; an explicit empty list is rejected
    because a pipeline always needs at least one stage.
    """
    specs = list(DEFAULT_STAGES if specs is None else specs)
    if not specs:
        raise InvariantViolation("A pipeline needs at least one stage")
    for _, probability in specs:
        _check_probability(probability)
    return [
        PipelineStage(
            id=uuid.uuid4(),
            pipeline_id=pipeline_id,
            name=name,
            probability=probability,
            position=index,
        )
        for index, (name, probability) in enumerate(specs)
    ]


def add_stage(pipeline: Pipeline, name: str, probability: int) -> PipelineStage:
    """Append a new, empty stage at the end of the pipeline."""
    _check_probability(probability)
    stage = PipelineStage(
        id=uuid.uuid4(),
        pipeline_id=pipeline.id,
        name=name,
        probability=probability,
        position=len(pipeline.stages),
    )
    pipeline.stages.append(stage)
    return stage


def update_stage(
    pipeline: Pipeline,
    stage_id: uuid.UUID,
    *,
    name: str | None = None,
    probability: int | None = None,
) -> PipelineStage:
    """Rename and/or reprice a stage in place.

    Deals and their history are left alone: history entries keep the stage
    name they were written with.
    """
    stage = pipeline.find_stage(stage_id)
    if stage is None:
        raise NotFoundError("stage", stage_id)
    if probability is not None:
        _check_probability(probability)
    if name is not None:
        stage.name = name
    if probability is not None:
        stage.probability = probability
    return stage


def delete_stage(pipeline: Pipeline, stage_id: uuid.UUID) -> PipelineStage:
    """Remove a stage together with every deal in it, then reindex positions."""
    stage = pipeline.find_stage(stage_id)
    if stage is None:
        raise NotFoundError("stage", stage_id)
    if len(pipeline.stages) <= 1:
        raise InvariantViolation("Cannot delete the last stage of a pipeline")

    pipeline.stages.remove(stage)
    _reindex(pipeline)
    return stage
