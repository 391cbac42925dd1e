"""Deal model - deals in pipeline stages - and its stage history."""

from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import JSON, Date, DateTime, ForeignKey, Integer, Numeric, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, UUIDMixin, TimestampMixin


class Deal(UUIDMixin, TimestampMixin, Base):
    __tablename__ = "deal"

    title: Mapped[str] = mapped_column(String(300))
    value: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal(0))
    currency: Mapped[str] = mapped_column(String(3), default="USD")
    pipeline_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("pipeline.id", ondelete="CASCADE"), index=True
    )
    stage_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("pipeline_stage.id", ondelete="CASCADE"), index=True
    )
    # Contacts, organizations and users live outside the pipeline store
    contact_ids: Mapped[list] = mapped_column(JSON, default=list)
    organization_id: Mapped[str | None] = mapped_column(String(100), default=None)
    owner_id: Mapped[str] = mapped_column(String(100))
    expected_close_date: Mapped[date | None] = mapped_column(Date, default=None)
    tags: Mapped[list] = mapped_column(JSON, default=list)
    custom_fields: Mapped[dict] = mapped_column(JSON, default=dict)

    # Relationships
    stage: Mapped["PipelineStage"] = relationship(back_populates="deals")  # noqa: F821
    history: Mapped[list["DealHistoryEntry"]] = relationship(
        back_populates="deal", cascade="all, delete-orphan",
        order_by="DealHistoryEntry.sequence"
    )

    @property
    def last_history_entry(self) -> DealHistoryEntry | None:
        return self.history[-1] if self.history else None

    def __repr__(self) -> str:
        return f"<Deal {self.title!r}>"


class DealHistoryEntry(UUIDMixin, Base):
    """Point-in-time record of a deal entering a stage.

    ``stage_name`` is a snapshot taken when the entry is written, so later stage
    renames do not rewrite history.
    """

    __tablename__ = "deal_history"

    deal_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("deal.id", ondelete="CASCADE"), index=True
    )
    stage_id: Mapped[uuid.UUID] = mapped_column(Uuid, index=True)
    stage_name: Mapped[str] = mapped_column(String(200))
    date: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    user_id: Mapped[str] = mapped_column(String(100))
    user_name: Mapped[str] = mapped_column(String(200))
    sequence: Mapped[int] = mapped_column(Integer, default=0)

    deal: Mapped["Deal"] = relationship(back_populates="history")

    def __repr__(self) -> str:
        return f"<DealHistoryEntry {self.stage_name!r} {self.date:%Y-%m-%d}>"
