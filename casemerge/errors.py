"""Error taxonomy for the reconciliation engine.

Every error here is a per-item error: the pipeline and the review workflow
catch them at the record/conflict boundary, log them, and report them in
BatchResult.errors. Nothing in the engine is fatal to a whole batch.
"""

from __future__ import annotations

from pydantic import BaseModel


class CaseMergeError(Exception):
    """Base class for all engine errors."""


class InvalidRecord(CaseMergeError):
    """A record (raw or normalized) is missing its id or title."""


class IrreconcilableMerge(CaseMergeError):
    """A Merge resolution was submitted but fields still cannot be merged."""

    def __init__(self, message: str, fields: list[str] | None = None) -> None:
        super().__init__(message)
        self.fields = list(fields or [])


class UnknownConflictReference(CaseMergeError):
    """A resolution names a conflict that is not currently pending."""


class MissingExistingRecord(CaseMergeError):
    """The existing side of a pending conflict is no longer in the pool."""


class ItemError(BaseModel):
    """A collected per-item failure, returned alongside successes."""

    ref: str      # record id or conflict id the error belongs to
    error: str    # exception class name, e.g. "IrreconcilableMerge"
    message: str

    @classmethod
    def from_exception(cls, ref: str, exc: CaseMergeError) -> "ItemError":
        return cls(ref=ref, error=type(exc).__name__, message=str(exc))
