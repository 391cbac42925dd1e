"""Pipeline models - re-exports all models and Base.metadata."""

from .base import Base, UUIDMixin, TimestampMixin
from .pipeline import Pipeline, PipelineStage
from .deal import Deal, DealHistoryEntry

__all__ = [
    "Base",
    "UUIDMixin",
    "TimestampMixin",
    "Pipeline",
    "PipelineStage",
    "Deal",
    "DealHistoryEntry",
]
