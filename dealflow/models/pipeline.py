"""Pipeline and PipelineStage models."""

from __future__ import annotations

import uuid
from collections.abc import Iterator
from decimal import Decimal

from sqlalchemy import ForeignKey, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, UUIDMixin, TimestampMixin


class Pipeline(UUIDMixin, TimestampMixin, Base):
    __tablename__ = "pipeline"

    name: Mapped[str] = mapped_column(String(200))

    # Relationships
    stages: Mapped[list["PipelineStage"]] = relationship(
        back_populates="pipeline", cascade="all, delete-orphan",
        order_by="PipelineStage.position"
    )

    def find_stage(self, stage_id: uuid.UUID) -> PipelineStage | None:
        for stage in self.stages:
            if stage.id == stage_id:
                return stage
        return None

    def find_deal(self, deal_id: uuid.UUID) -> "Deal | None":  # noqa: F821
        for stage in self.stages:
            for deal in stage.deals:
                if deal.id == deal_id:
                    return deal
        return None

    def iter_deals(self) -> Iterator["Deal"]:  # noqa: F821
        for stage in self.stages:
            yield from stage.deals

    def total_value(self) -> Decimal:
        return sum((stage.total_value() for stage in self.stages), Decimal(0))

    def weighted_value(self) -> Decimal:
        """Stage values discounted by each stage's win probability."""
        return sum((stage.weighted_value() for stage in self.stages), Decimal(0))

    def __repr__(self) -> str:
        return f"<Pipeline {self.name!r}>"


class PipelineStage(UUIDMixin, Base):
    __tablename__ = "pipeline_stage"

    pipeline_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("pipeline.id", ondelete="CASCADE"), index=True
    )
    name: Mapped[str] = mapped_column(String(200))
    position: Mapped[int] = mapped_column(Integer, default=0)
    probability: Mapped[int] = mapped_column(Integer, default=0)  # 0-100

    # Relationships
    pipeline: Mapped["Pipeline"] = relationship(back_populates="stages")
    deals: Mapped[list["Deal"]] = relationship(  # noqa: F821
        back_populates="stage", cascade="all, delete-orphan",
        order_by="Deal.created_at"
    )

    @property
    def deal_count(self) -> int:
        return len(self.deals)

    def total_value(self) -> Decimal:
        return sum((Decimal(deal.value or 0) for deal in self.deals), Decimal(0))

    def weighted_value(self) -> Decimal:
        return self.total_value() * self.probability / 100

    def __repr__(self) -> str:
        return f"<PipelineStage {self.name!r}>"
