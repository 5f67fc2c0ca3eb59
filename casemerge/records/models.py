"""Pydantic models shared by every stage of the reconciliation engine.

The engine is a pure function of (batch, pool, mode) and of
(conflicts, resolutions); all interactive state lives with the caller.
Every model here therefore round-trips through model_dump_json /
model_validate_json so the calling layer can park a BatchResult between
review sessions.

Immutable values (Record, Step, SimilarityScore, FieldConflict,
MergeConflict, Resolution) are frozen. BatchResult is not frozen, but the
engine never edits one in place: resolve() returns a new copy.
"""

from __future__ import annotations

import datetime
import enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from casemerge.config import settings
from casemerge.errors import ItemError


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class Priority(str, enum.Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class DedupMode(str, enum.Enum):
    """Operating mode of the deduplication pipeline."""

    OFF = "off"          # save everything, no scoring
    STRICT = "strict"    # drop exact duplicates only
    SMART = "smart"      # exact-skip, auto-merge, review, save


class ResolutionAction(str, enum.Enum):
    MERGE = "merge"
    KEEP_BOTH = "keep_both"
    SKIP = "skip"


class ConflictState(str, enum.Enum):
    PENDING = "pending"
    MERGED = "merged"
    KEPT_BOTH = "kept_both"
    SKIPPED = "skipped"


class OutcomeAction(str, enum.Enum):
    """What the pipeline did with one incoming record."""

    SAVED = "saved"
    EXACT_DUPLICATE = "exact_duplicate"
    AUTO_MERGED = "auto_merged"
    REVIEW_REQUIRED = "review_required"
    REJECTED = "rejected"


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


def canonical_tags(tags) -> tuple[str, ...]:
    """Return the canonical tag set: trimmed, case-folded, unique, sorted."""
    return tuple(sorted({t.strip().casefold() for t in tags if t and t.strip()}))


def as_utc(value: Optional[datetime.datetime]) -> Optional[datetime.datetime]:
    """Return *value* as an aware datetime; naive values are taken as UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=datetime.timezone.utc)
    return value


def unique_in_order(values) -> tuple[str, ...]:
    """De-duplicate *values* keeping first occurrence order, dropping blanks."""
    seen: dict[str, None] = {}
    for value in values:
        if value and value not in seen:
            seen[value] = None
    return tuple(seen)


class Step(BaseModel):
    """One execution step of a test case."""

    model_config = ConfigDict(frozen=True)

    description: str = ""
    test_data: str = ""
    expected_result: str = ""

    @property
    def is_empty(self) -> bool:
        return not (self.description or self.test_data or self.expected_result)


class Record(BaseModel):
    """The canonical comparison unit (one test case).

    Text fields hold the stored form: trimmed, internal whitespace collapsed,
    original casing preserved. Case-folded forms are derived on demand
    (comparison_key) and never stored. Timestamps are always UTC-aware.
    """

    model_config = ConfigDict(frozen=True)

    id: str = ""
    title: str = ""
    category: str = ""
    priority: Optional[Priority] = None
    steps: tuple[Step, ...] = ()
    remarks: str = ""
    owner: str = ""
    tags: tuple[str, ...] = ()
    references: tuple[str, ...] = ()
    version: int = Field(default=1, ge=1)
    created_at: Optional[datetime.datetime] = None
    updated_at: Optional[datetime.datetime] = None
    provenance: tuple[str, ...] = ()

    @field_validator("tags", mode="after")
    @classmethod
    def _canonical_tags(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        return canonical_tags(value)

    @field_validator("references", "provenance", mode="after")
    @classmethod
    def _unique(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        return unique_in_order(value)

    @field_validator("created_at", "updated_at", mode="after")
    @classmethod
    def _aware(cls, value: Optional[datetime.datetime]) -> Optional[datetime.datetime]:
        return as_utc(value)

    @property
    def comparison_key(self) -> str:
        """Case-folded title used for similarity, never for storage."""
        return self.title.casefold()

    @property
    def step_text(self) -> str:
        """All step descriptions joined with a space, in step order."""
        return " ".join(s.description for s in self.steps if s.description)


# ---------------------------------------------------------------------------
# Scoring
# ---------------------------------------------------------------------------


class ScoreBreakdown(BaseModel):
    """Per-dimension sub-scores, each in [0, 1] and unweighted."""

    model_config = ConfigDict(frozen=True)

    title: float = 0.0
    steps: float = 0.0
    category: float = 0.0
    tags: float = 0.0


class SimilarityScore(BaseModel):
    """Composite similarity between two records plus its explanation."""

    model_config = ConfigDict(frozen=True)

    value: float = Field(ge=0.0, le=1.0)
    breakdown: ScoreBreakdown = ScoreBreakdown()
    exact: bool = False   # content fingerprints are identical


class Thresholds(BaseModel):
    """Classification boundaries for the pipeline (overridable per call)."""

    model_config = ConfigDict(frozen=True)

    exact: float = Field(default=1.0, ge=0.0, le=1.0)
    auto_merge: float = Field(default=0.97, ge=0.0, le=1.0)
    review: float = Field(default=0.88, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def _ordered(self) -> "Thresholds":
        if not self.review <= self.auto_merge <= self.exact:
            raise ValueError(
                f"thresholds must satisfy review <= auto_merge <= exact "
                f"(got {self.review}, {self.auto_merge}, {self.exact})"
            )
        return self

    @classmethod
    def from_settings(cls) -> "Thresholds":
        return cls(
            exact=settings.exact_threshold,
            auto_merge=settings.auto_merge_threshold,
            review=settings.review_threshold,
        )


class ScoreWeights(BaseModel):
    """Weights of the four scored dimensions; they must sum to 1.0."""

    model_config = ConfigDict(frozen=True)

    title: float = Field(default=0.5, ge=0.0)
    steps: float = Field(default=0.3, ge=0.0)
    category: float = Field(default=0.1, ge=0.0)
    tags: float = Field(default=0.1, ge=0.0)

    @model_validator(mode="after")
    def _sums_to_one(self) -> "ScoreWeights":
        total = self.title + self.steps + self.category + self.tags
        if abs(total - 1.0) > 1e-6:
            raise ValueError(f"score weights must sum to 1.0 (got {total:.6f})")
        return self

    @classmethod
    def from_settings(cls) -> "ScoreWeights":
        return cls(
            title=settings.weight_title,
            steps=settings.weight_steps,
            category=settings.weight_category,
            tags=settings.weight_tags,
        )


# ---------------------------------------------------------------------------
# Conflicts and resolutions
# ---------------------------------------------------------------------------


class FieldConflict(BaseModel):
    model_config = ConfigDict(frozen=True)

    field: str
    existing_value: Any = None
    incoming_value: Any = None


class MergeConflict(BaseModel):
    """An incoming/existing pair awaiting a human decision.

    Created only by the pipeline. `proposed` is the merge the resolver
    produced at classification time, reused when a reviewer picks Merge.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    incoming: Record
    existing: Record
    score: SimilarityScore
    field_conflicts: tuple[FieldConflict, ...] = ()
    proposed: Optional[Record] = None


class Resolution(BaseModel):
    """A reviewer's decision for one pending conflict."""

    model_config = ConfigDict(frozen=True)

    conflict_id: str
    action: ResolutionAction
    resulting_record: Optional[Record] = None

    @model_validator(mode="after")
    def _record_only_for_merge(self) -> "Resolution":
        if self.resulting_record is not None and self.action != ResolutionAction.MERGE:
            raise ValueError("resulting_record may only be supplied with action=merge")
        return self


# ---------------------------------------------------------------------------
# Batch result
# ---------------------------------------------------------------------------


class RecordOutcome(BaseModel):
    record_id: str
    action: OutcomeAction
    target_id: Optional[str] = None   # pool record matched/merged into, or the saved id
    score: Optional[float] = None


class ConflictOutcome(BaseModel):
    conflict_id: str
    state: ConflictState
    record_id: Optional[str] = None   # merged pool record or the kept-both copy


class BatchResult(BaseModel):
    """Aggregated outcome of one pipeline run, folded forward by resolve()."""

    mode: DedupMode = DedupMode.SMART
    saved_count: int = 0
    exact_duplicate_count: int = 0
    auto_merged_count: int = 0
    review_required_count: int = 0
    pending_conflicts: list[MergeConflict] = Field(default_factory=list)
    pool: list[Record] = Field(default_factory=list)
    outcomes: list[RecordOutcome] = Field(default_factory=list)
    resolved: list[ConflictOutcome] = Field(default_factory=list)
    errors: list[ItemError] = Field(default_factory=list)

    @property
    def pending_count(self) -> int:
        return len(self.pending_conflicts)
