"""Smoke tests for table creation and configuration."""

from __future__ import annotations

import pytest
from sqlalchemy import inspect
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine

from dealflow.config import DealflowSettings
from dealflow.database import create_tables, get_db


@pytest.mark.asyncio
async def test_create_tables():
    eng = create_async_engine("sqlite+aiosqlite:///:memory:")
    try:
        await create_tables(eng)
        async with eng.connect() as conn:
            tables = await conn.run_sync(lambda sync_conn: set(inspect(sync_conn).get_table_names()))
    finally:
        await eng.dispose()

    assert {"pipeline", "pipeline_stage", "deal", "deal_history"} <= tables


def test_settings_from_environment(monkeypatch):
    monkeypatch.setenv("DEALFLOW_STALE_THRESHOLD_DAYS", "30")
    monkeypatch.setenv("DEALFLOW_ENVIRONMENT", "production")
    configured = DealflowSettings()
    assert configured.stale_threshold_days == 30
    assert configured.default_currency == "USD"
    assert configured.is_production


@pytest.mark.asyncio
async def test_get_db_yields_session():
    async for session in get_db():
        assert isinstance(session, AsyncSession)
