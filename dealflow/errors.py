"""Errors raised by pipeline operations."""

from __future__ import annotations


class PipelineError(Exception):
    """Base class for pipeline errors."""


class NotFoundError(PipelineError):
    """A referenced pipeline, stage or deal does not exist."""

    def __init__(self, kind: str, entity_id: object):
        self.kind = kind
        self.entity_id = entity_id
        super().__init__(f"{kind} {entity_id} not found")


class InvariantViolation(PipelineError):
    """The operation would break a pipeline invariant."""
