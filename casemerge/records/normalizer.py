"""Normalizer: map any external test-case shape onto the canonical Record.

Upstream collaborators (importers, AI generators) hand over loosely-typed
dicts with many alias keys ("title" vs "testCase", "category" vs "module",
steps under "testSteps" or "steps", ...). This module is the only place those
aliases are known; the scorer and the merge resolver only ever see Record.

normalize() never fails: missing optional fields become empty strings or
empty tuples. Rejecting input without identity or title is the caller's job,
via validate_raw(), before normalization.
"""

from __future__ import annotations

import datetime
import logging
import re
from collections.abc import Mapping
from typing import Any, Optional

from casemerge.errors import InvalidRecord
from casemerge.records.models import Priority, Record, Step, as_utc, canonical_tags, unique_in_order

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s+")

# Alias keys per canonical field, checked in order (top level first, then `data`)
_TITLE_KEYS = ("title", "testCase", "test_case", "Test Case")
_CATEGORY_KEYS = ("category", "module", "Module", "section")
_PRIORITY_KEYS = ("priority", "Priority")
_STEPS_KEYS = ("steps", "testSteps", "test_steps")
_REMARKS_KEYS = ("remarks", "notes", "Remarks")
_OWNER_KEYS = ("owner", "qa", "qaOwner")
_TAGS_KEYS = ("tags", "labels")
_REFERENCE_KEYS = ("references", "tickets", "enhancementId", "ticketId")

_STEP_DESCRIPTION_KEYS = ("description", "action", "step")
_STEP_DATA_KEYS = ("test_data", "testData", "data")
_STEP_EXPECTED_KEYS = ("expected_result", "expectedResult", "expected")

# Priority labels seen in imports, mapped onto the four canonical levels
_PRIORITY_ALIASES = {
    "critical": Priority.CRITICAL,
    "p0": Priority.CRITICAL,
    "high": Priority.HIGH,
    "p1": Priority.HIGH,
    "medium": Priority.MEDIUM,
    "p2": Priority.MEDIUM,
    "low": Priority.LOW,
    "p3": Priority.LOW,
}


def clean_text(value: Any) -> str:
    """Trim and collapse internal whitespace; casing is preserved."""
    if value is None:
        return ""
    return _WHITESPACE.sub(" ", str(value)).strip()


def comparison_text(value: Any) -> str:
    """clean_text() plus case-folding, for comparisons only."""
    return clean_text(value).casefold()


def _lookup(raw: Mapping, keys: tuple[str, ...]) -> Any:
    """Return the first non-empty value under any alias key.

    Looks at the top level first, then inside a nested `data` mapping, which
    is where older imports kept most of their columns.
    """
    nested = raw.get("data")
    scopes = [raw, nested] if isinstance(nested, Mapping) else [raw]
    for scope in scopes:
        for key in keys:
            value = scope.get(key)
            if value not in (None, "", [], ()):
                return value
    return None


def _normalize_priority(value: Any) -> Optional[Priority]:
    if value is None:
        return None
    if isinstance(value, Priority):
        return value
    label = comparison_text(value)
    if not label:
        return None
    priority = _PRIORITY_ALIASES.get(label)
    if priority is None:
        logger.debug("Normalizer: unknown priority label %r dropped", value)
    return priority


def _normalize_step(raw_step: Any) -> Step:
    if isinstance(raw_step, Step):
        return Step(
            description=clean_text(raw_step.description),
            test_data=clean_text(raw_step.test_data),
            expected_result=clean_text(raw_step.expected_result),
        )
    if isinstance(raw_step, Mapping):
        return Step(
            description=clean_text(_lookup(raw_step, _STEP_DESCRIPTION_KEYS)),
            test_data=clean_text(_lookup(raw_step, _STEP_DATA_KEYS)),
            expected_result=clean_text(_lookup(raw_step, _STEP_EXPECTED_KEYS)),
        )
    # A bare string is a step with only a description
    return Step(description=clean_text(raw_step))


def _normalize_steps(raw: Mapping) -> tuple[Step, ...]:
    raw_steps = _lookup(raw, _STEPS_KEYS)
    if isinstance(raw_steps, (list, tuple)):
        steps = (_normalize_step(s) for s in raw_steps)
        return tuple(s for s in steps if not s.is_empty)

    # No step list: synthesize one step from flat description/expected columns
    single = Step(
        description=clean_text(_lookup(raw, ("description", "Test Step Description"))),
        test_data=clean_text(_lookup(raw, ("testData", "test_data", "Test Data"))),
        expected_result=clean_text(_lookup(raw, ("expectedResult", "expected_result", "Expected Result"))),
    )
    return () if single.is_empty else (single,)


def _as_list(value: Any) -> list[str]:
    """Accept a list, a tuple, a set or a comma-separated string."""
    if value is None:
        return []
    if isinstance(value, str):
        return [clean_text(part) for part in value.split(",")]
    if isinstance(value, (list, tuple, set, frozenset)):
        return [clean_text(v) for v in value]
    return [clean_text(value)]


def _parse_timestamp(value: Any) -> Optional[datetime.datetime]:
    """Parse an ISO-8601 timestamp; values without an offset are taken as UTC."""
    if value is None or isinstance(value, datetime.datetime):
        return as_utc(value)
    try:
        return as_utc(datetime.datetime.fromisoformat(str(value).replace("Z", "+00:00")))
    except ValueError:
        logger.debug("Normalizer: unparseable timestamp %r dropped", value)
        return None


def _parse_version(value: Any) -> int:
    try:
        version = int(value)
    except (TypeError, ValueError):
        return 1
    return max(version, 1)


def validate_raw(raw: Mapping) -> None:
    """Reject raw input that lacks identity or title.

    Raises:
        InvalidRecord: If the id or every title alias is missing or blank.
    """
    if not clean_text(raw.get("id")):
        raise InvalidRecord("record has no id")
    if not clean_text(_lookup(raw, _TITLE_KEYS)):
        raise InvalidRecord(f"record {clean_text(raw.get('id'))} has no title")


def ensure_valid(record: Record) -> Record:
    """Refuse to score or merge a record without id or title.

    Raises:
        InvalidRecord: If record.id or record.title is blank.
    """
    if not record.id.strip():
        raise InvalidRecord("record has no id")
    if not record.title.strip():
        raise InvalidRecord(f"record {record.id} has no title")
    return record


def normalize(raw: Mapping | Record) -> Record:
    """Canonicalize a raw candidate into a Record.

    Args:
        raw: A mapping in any supported external shape, or a Record (which is
             re-normalized so hand-built records obey the same canonical form).

    Returns:
        A new Record. Never raises for missing or malformed optional fields.
    """
    if isinstance(raw, Record):
        raw = raw.model_dump()

    return Record(
        id=clean_text(raw.get("id")),
        title=clean_text(_lookup(raw, _TITLE_KEYS)),
        category=clean_text(_lookup(raw, _CATEGORY_KEYS)),
        priority=_normalize_priority(_lookup(raw, _PRIORITY_KEYS)),
        steps=_normalize_steps(raw),
        remarks=clean_text(_lookup(raw, _REMARKS_KEYS)),
        owner=clean_text(_lookup(raw, _OWNER_KEYS)),
        tags=canonical_tags(_as_list(_lookup(raw, _TAGS_KEYS))),
        references=unique_in_order(_as_list(_lookup(raw, _REFERENCE_KEYS))),
        version=_parse_version(raw.get("version")),
        created_at=_parse_timestamp(_lookup(raw, ("created_at", "createdAt"))),
        updated_at=_parse_timestamp(_lookup(raw, ("updated_at", "updatedAt"))),
        provenance=unique_in_order(_as_list(raw.get("provenance"))),
    )
