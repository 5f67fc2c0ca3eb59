"""Field-level merge of two similar test-case records.

merge(existing, incoming) returns the merged record and the list of fields
it could not decide. It is a pure function: neither argument is modified,
nothing is read from the clock, and merging the same incoming record into
the result again changes nothing but the version counter.

Field policy:
  id, created_at      — existing wins (identity is never overwritten)
  version             — existing.version + 1
  empty vs populated  — the populated side wins
  equal (case-folded) — existing wins
  tags, references    — union
  title, category,
  priority, remarks   — the longer value wins; lengths within tolerance are
                        ambiguous → field is unresolved, existing kept
  steps               — order matters, so no union: if step similarity is
                        below the step-merge threshold the field is
                        unresolved, otherwise the more complete list wins
  owner               — existing wins when both are set
  provenance          — union plus a "merged:<incoming id>" note
"""

from __future__ import annotations

import enum
import logging
from typing import Any, Optional

from casemerge.dedup.scorer import step_similarity
from casemerge.records.models import FieldConflict, Record, Step, as_utc, canonical_tags, unique_in_order
from casemerge.records.normalizer import comparison_text, ensure_valid

logger = logging.getLogger(__name__)

# Scalar content fields decided by the "more detailed value" rule, in report order
SCALAR_FIELDS = ("title", "category", "priority", "remarks")


def _text(value: Any) -> str:
    if isinstance(value, enum.Enum):
        value = value.value
    return comparison_text(value)


def _within_tolerance(len_a: int, len_b: int, ratio: float, chars: int) -> bool:
    return abs(len_a - len_b) <= max(chars, ratio * max(len_a, len_b))


def _resolve_scalar(existing: Any, incoming: Any, ratio: float, chars: int) -> tuple[Any, bool]:
    """Return (winning value, ambiguous)."""
    e_text, i_text = _text(existing), _text(incoming)
    if not i_text:
        return existing, False
    if not e_text:
        return incoming, False
    if e_text == i_text:
        return existing, False
    if _within_tolerance(len(e_text), len(i_text), ratio, chars):
        return existing, True
    return (existing if len(e_text) > len(i_text) else incoming), False


def _step_key(steps: tuple[Step, ...]) -> tuple:
    return tuple(
        (_text(s.description), _text(s.test_data), _text(s.expected_result)) for s in steps
    )


def _completeness(steps: tuple[Step, ...]) -> tuple[int, int]:
    """Sort key for "more complete": step count first, then total text length."""
    text_length = sum(len(s.description) + len(s.test_data) + len(s.expected_result) for s in steps)
    return len(steps), text_length


def _resolve_steps(existing: Record, incoming: Record, threshold: float) -> tuple[tuple[Step, ...], bool]:
    if not incoming.steps:
        return existing.steps, False
    if not existing.steps:
        return incoming.steps, False
    if _step_key(existing.steps) == _step_key(incoming.steps):
        return existing.steps, False
    if step_similarity(existing, incoming) < threshold:
        return existing.steps, True
    if _completeness(incoming.steps) > _completeness(existing.steps):
        return incoming.steps, False
    return existing.steps, False


def merge(
    existing: Record,
    incoming: Record,
    *,
    step_threshold: Optional[float] = None,
    tolerance_ratio: Optional[float] = None,
    tolerance_chars: Optional[int] = None,
) -> tuple[Record, list[str]]:
    """Merge *incoming* into *existing*.

    Args:
        existing:        The pool record that survives the merge.
        incoming:        The candidate record being folded in.
        step_threshold:  Step similarity required before the longer step list
                         may replace the existing one. Defaults to
                         Settings.step_merge_threshold.
        tolerance_ratio: Relative length difference under which two differing
                         scalar values are ambiguous. Defaults to
                         Settings.length_tolerance_ratio.
        tolerance_chars: Absolute length difference with the same meaning.
                         Defaults to Settings.length_tolerance_chars.

    Returns:
        (merged record, unresolved field names). Unresolved fields keep the
        existing value as a placeholder; callers must not accept the merge
        while the list is non-empty.

    Raises:
        InvalidRecord: If either record has a blank id or title.
    """
    from casemerge.config import settings  # lazy import: read current settings

    ensure_valid(existing)
    ensure_valid(incoming)
    if step_threshold is None:
        step_threshold = settings.step_merge_threshold
    if tolerance_ratio is None:
        tolerance_ratio = settings.length_tolerance_ratio
    if tolerance_chars is None:
        tolerance_chars = settings.length_tolerance_chars

    unresolved: list[str] = []
    values: dict[str, Any] = {}

    for field in SCALAR_FIELDS:
        value, ambiguous = _resolve_scalar(
            getattr(existing, field), getattr(incoming, field), tolerance_ratio, tolerance_chars
        )
        values[field] = value
        if ambiguous:
            unresolved.append(field)

    steps, steps_ambiguous = _resolve_steps(existing, incoming, step_threshold)
    if steps_ambiguous:
        unresolved.append("steps")

    # Records built with model_copy() skip validation and may still carry naive values
    timestamps = [as_utc(t) for t in (existing.updated_at, incoming.updated_at) if t is not None]

    merged = Record(
        id=existing.id,
        title=values["title"],
        category=values["category"],
        priority=values["priority"],
        steps=steps,
        remarks=values["remarks"],
        owner=existing.owner or incoming.owner,
        tags=canonical_tags(existing.tags + incoming.tags),
        references=unique_in_order(existing.references + incoming.references),
        version=existing.version + 1,
        created_at=existing.created_at or incoming.created_at,
        updated_at=max(timestamps) if timestamps else None,
        provenance=existing.provenance + incoming.provenance + (f"merged:{incoming.id}",),
    )

    if unresolved:
        logger.debug(
            "Merge %s <- %s left %d unresolved field(s): %s",
            existing.id,
            incoming.id,
            len(unresolved),
            ", ".join(unresolved),
        )
    return merged, unresolved


def _display_value(record: Record, field: str) -> Any:
    value = getattr(record, field)
    if field == "steps":
        return [s.model_dump() for s in value]
    if isinstance(value, enum.Enum):
        return value.value
    return value


def field_conflicts(existing: Record, incoming: Record, fields: list[str]) -> tuple[FieldConflict, ...]:
    """Describe each unresolved field as an existing/incoming value pair."""
    return tuple(
        FieldConflict(
            field=field,
            existing_value=_display_value(existing, field),
            incoming_value=_display_value(incoming, field),
        )
        for field in fields
    )
