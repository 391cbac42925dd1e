"""Test fixtures: in-memory SQLite for the store, transient models for the core."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from dealflow.models.base import Base
from dealflow.models.pipeline import Pipeline
from dealflow.schemas.pipeline import Actor
from dealflow.services import stage_svc

T0 = datetime(2024, 3, 1, 9, 30, tzinfo=timezone.utc)


@pytest.fixture
def t0() -> datetime:
    return T0


@pytest_asyncio.fixture
async def engine():
    eng = create_async_engine("sqlite+aiosqlite:///:memory:", echo=False)
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest_asyncio.fixture
async def db(engine):
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session


@pytest.fixture
def actor() -> Actor:
    return Actor(id="user-1", name="Dana Reyes")


@pytest.fixture
def make_pipeline():
    """Build an unsaved pipeline from (name, probability) pairs."""

    def _make(specs=(("Qualification", 10), ("Proposal", 50), ("Closed Won", 100)), name="Sales"):
        pipeline_id = uuid.uuid4()
        return Pipeline(
            id=pipeline_id,
            name=name,
            stages=stage_svc.build_stages(specs, pipeline_id),
            created_at=T0,
            updated_at=T0,
        )

    return _make
