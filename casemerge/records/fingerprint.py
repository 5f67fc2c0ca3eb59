"""
Content fingerprint for test-case records.

A fingerprint is the SHA-256 hex digest of the canonical JSON of the fields
the similarity scorer compares: title, category, steps and tags, in their
stored form (whitespace collapsed, casing preserved). Equal fingerprints
imply a score of 1.0, so Strict mode uses them as a fast path before
scoring. Records that differ only by letter case score 1.0 but do NOT share
a fingerprint; Smart mode relies on that to auto-merge them instead of
dropping them.

Design decisions:
- Only stdlib hashlib/json.
- fingerprint() is deterministic and side-effect free; identity fields (id,
  version, timestamps) and non-compared content (priority, remarks, owner)
  are deliberately outside the digest.

Exports: fingerprint
"""

from __future__ import annotations

import hashlib
import json

from casemerge.records.models import Record


def fingerprint(record: Record) -> str:
    """Return the SHA-256 hex digest of *record*'s compared content.

    Args:
        record: A normalized Record.

    Returns:
        64-character lowercase hex string.

    Example:
        >>> from casemerge.records.models import Record
        >>> len(fingerprint(Record(id="tc-1", title="Login")))
        64
    """
    core = {
        "title": record.title,
        "category": record.category,
        "steps": [
            [step.description, step.test_data, step.expected_result]
            for step in record.steps
        ],
        "tags": list(record.tags),
    }
    canonical = json.dumps(core, sort_keys=True, ensure_ascii=False, separators=(",", ":"))
    return hashlib.sha256(canonical.encode()).hexdigest()
