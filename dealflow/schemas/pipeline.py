"""Pipeline, stage and deal schemas."""

from __future__ import annotations

import uuid
from datetime import date
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, Field, field_validator


class Actor(BaseModel):
    """The user performing a mutation."""

    id: str
    name: str

    model_config = {"frozen": True}


class StageCreate(BaseModel):
    name: str = Field(min_length=1)
    probability: int = Field(default=0, ge=0, le=100)


class StageUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1)
    probability: int | None = Field(default=None, ge=0, le=100)


class DealCreate(BaseModel):
    title: str = Field(min_length=1)
    pipeline_id: uuid.UUID
    stage_id: uuid.UUID
    owner_id: str
    value: Decimal = Decimal(0)
    currency: str | None = None
    contact_ids: list[str] = Field(default_factory=list)
    organization_id: str | None = None
    expected_close_date: date | None = None
    tags: list[str] = Field(default_factory=list)
    custom_fields: dict[str, Any] = Field(default_factory=dict)


class DealUpdate(BaseModel):
    title: str | None = Field(default=None, min_length=1)
    value: Decimal | None = None
    currency: str | None = None
    stage_id: uuid.UUID | None = None
    pipeline_id: uuid.UUID | None = None
    contact_ids: list[str] | None = None
    organization_id: str | None = None
    owner_id: str | None = None
    expected_close_date: date | None = None
    tags: list[str] | None = None
    custom_fields: dict[str, Any] | None = None

    @field_validator(
        "title", "value", "currency", "owner_id", "contact_ids", "tags", "custom_fields"
    )
    @classmethod
    def _not_null(cls, value):
        # Omit a field to leave it unchanged; these columns cannot be cleared
        if value is None:
            raise ValueError("may not be null")
        return value
