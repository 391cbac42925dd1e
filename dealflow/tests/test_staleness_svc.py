"""Test deal rot detection and calendar-day arithmetic."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from dealflow.models.deal import Deal
from dealflow.services import staleness_svc, transition_svc
from dealflow.services.clock import days_between


def test_days_between_counts_calendar_days():
    late_evening = datetime(2024, 3, 1, 23, 50, tzinfo=timezone.utc)
    next_morning = datetime(2024, 3, 2, 0, 10, tzinfo=timezone.utc)
    assert days_between(late_evening, next_morning) == 1
    assert days_between(next_morning, next_morning + timedelta(hours=23)) == 0


def test_days_between_reads_naive_as_utc():
    aware = datetime(2024, 3, 10, 12, 0, tzinfo=timezone.utc)
    naive = datetime(2024, 3, 1, 12, 0)
    assert days_between(naive, aware) == 9


def test_deal_without_history_is_never_stale(t0):
    deal = Deal(title="Draft", owner_id="u")
    assert staleness_svc.is_stale(deal, now=t0 + timedelta(days=365)) is False
    assert staleness_svc.days_in_stage(deal, now=t0) is None


def test_staleness_boundary(make_pipeline, actor, t0):
    pipeline = make_pipeline()
    deal = transition_svc.place_new_deal(
        pipeline, pipeline.stages[0].id, actor, title="Initech", owner_id="u", now=t0
    )

    assert staleness_svc.is_stale(deal, threshold_days=14, now=t0 + timedelta(days=14)) is False
    assert staleness_svc.is_stale(deal, threshold_days=14, now=t0 + timedelta(days=15)) is True
    assert staleness_svc.days_in_stage(deal, now=t0 + timedelta(days=15)) == 15


def test_move_resets_staleness(make_pipeline, actor, t0):
    pipeline = make_pipeline()
    first, second = pipeline.stages[0], pipeline.stages[1]
    deal = transition_svc.place_new_deal(pipeline, first.id, actor, title="Umbrella", owner_id="u", now=t0)
    transition_svc.move_deal(pipeline, deal.id, first.id, second.id, actor, now=t0 + timedelta(days=20))

    assert staleness_svc.is_stale(deal, now=t0 + timedelta(days=21)) is False


def test_stale_deals_uses_configured_threshold(make_pipeline, actor, t0, monkeypatch):
    from dealflow.config import settings

    monkeypatch.setattr(settings, "stale_threshold_days", 3)
    pipeline = make_pipeline()
    old = transition_svc.place_new_deal(
        pipeline, pipeline.stages[0].id, actor, title="Old", owner_id="u", now=t0
    )
    transition_svc.place_new_deal(
        pipeline, pipeline.stages[1].id, actor, title="New", owner_id="u", now=t0 + timedelta(days=4)
    )

    assert staleness_svc.stale_deals(pipeline, now=t0 + timedelta(days=5)) == [old]
