"""Test the stage editor."""

from __future__ import annotations

import uuid

import pytest

from dealflow.config import DEFAULT_STAGES
from dealflow.errors import InvariantViolation, NotFoundError
from dealflow.services import stage_svc, transition_svc


def _positions(pipeline):
    return [stage.position for stage in pipeline.stages]


def test_build_stages_uses_default_template():
    stages = stage_svc.build_stages()
    assert [(s.name, s.probability) for s in stages] == DEFAULT_STAGES
    assert [s.position for s in stages] == [0, 1, 2, 3, 4, 5]


def test_build_stages_rejects_empty_list():
    with pytest.raises(InvariantViolation):
        stage_svc.build_stages([])


def test_add_stage_appends_at_end(make_pipeline):
    pipeline = make_pipeline()
    stage = stage_svc.add_stage(pipeline, "Negotiation", 80)

    assert pipeline.stages[-1] is stage
    assert stage.position == 3
    assert stage.deals == []
    assert stage.pipeline_id == pipeline.id


def test_add_stage_rejects_bad_probability(make_pipeline):
    pipeline = make_pipeline()
    with pytest.raises(InvariantViolation):
        stage_svc.add_stage(pipeline, "Impossible", 120)
    assert len(pipeline.stages) == 3


def test_positions_stay_dense_after_edits(make_pipeline):
    pipeline = make_pipeline()
    extra = stage_svc.add_stage(pipeline, "Negotiation", 80)
    stage_svc.delete_stage(pipeline, pipeline.stages[1].id)
    stage_svc.add_stage(pipeline, "Closed Lost", 0)
    stage_svc.delete_stage(pipeline, pipeline.stages[0].id)

    assert _positions(pipeline) == list(range(len(pipeline.stages)))
    assert [s.name for s in pipeline.stages] == [
        "Closed Won", extra.name, "Closed Lost",
    ]


def test_update_stage_keeps_history_names(make_pipeline, actor, t0):
    pipeline = make_pipeline()
    first = pipeline.stages[0]
    deal = transition_svc.place_new_deal(
        pipeline, first.id, actor, title="Acme renewal", owner_id="user-1", value=1000, now=t0
    )

    stage_svc.update_stage(pipeline, first.id, name="Discovery", probability=15)

    assert first.name == "Discovery"
    assert first.probability == 15
    assert deal.history[0].stage_name == "Qualification"
    assert first.deals == [deal]


def test_update_stage_partial_patch(make_pipeline):
    pipeline = make_pipeline()
    stage = pipeline.stages[1]
    stage_svc.update_stage(pipeline, stage.id, probability=60)
    assert stage.name == "Proposal"
    assert stage.probability == 60


def test_update_unknown_stage(make_pipeline):
    with pytest.raises(NotFoundError):
        stage_svc.update_stage(make_pipeline(), uuid.uuid4(), name="Ghost")


def test_delete_stage_cascades_deals(make_pipeline, actor, t0):
    pipeline = make_pipeline()
    doomed, kept = pipeline.stages[0], pipeline.stages[1]
    lost = [
        transition_svc.place_new_deal(pipeline, doomed.id, actor, title=f"D{i}", owner_id="u", now=t0)
        for i in range(2)
    ]
    survivor = transition_svc.place_new_deal(pipeline, kept.id, actor, title="S", owner_id="u", now=t0)

    stage_svc.delete_stage(pipeline, doomed.id)

    for deal in lost:
        assert pipeline.find_deal(deal.id) is None
    assert pipeline.find_deal(survivor.id) is survivor
    assert [s.name for s in pipeline.stages] == ["Proposal", "Closed Won"]
    assert _positions(pipeline) == [0, 1]


def test_cannot_delete_last_stage(make_pipeline):
    pipeline = make_pipeline(specs=[("Only", 50)])
    only = pipeline.stages[0]

    with pytest.raises(InvariantViolation):
        stage_svc.delete_stage(pipeline, only.id)

    assert pipeline.stages == [only]
    assert only.position == 0
