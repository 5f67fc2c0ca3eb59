"""Duplicate reconciliation inside an existing pool.

Finds groups of near-duplicate records that already sit in the store (for
example cases generated from overlapping document chunks) and keeps one
record per group.

Two stages, per category bucket:
  Stage 1 (MinHash): datasketch MinHashLSH over title + step tokens proposes
                     candidate pairs cheaply.
  Stage 2 (Score):   each candidate pair is confirmed with the full composite
                     score(); pairs at or above reconcile_threshold are
                     duplicates. Confirmed pairs are grouped transitively.

Keeper per group: most steps, then earliest created_at, then earliest pool
position. Like the pipeline, nothing here mutates the caller's pool.
"""

from __future__ import annotations

import datetime
import logging
from collections.abc import Iterable, Mapping
from typing import Optional, Union

from datasketch import MinHash, MinHashLSH
from pydantic import BaseModel, Field

from casemerge.dedup.scorer import score, tokenize
from casemerge.errors import InvalidRecord
from casemerge.records.models import Record, ScoreWeights, as_utc
from casemerge.records.normalizer import comparison_text, ensure_valid, normalize

logger = logging.getLogger(__name__)

_NO_TIMESTAMP = datetime.datetime.max.replace(tzinfo=datetime.timezone.utc)


class DuplicateGroup(BaseModel):
    keep_id: str
    keep_title: str
    remove_ids: list[str]
    remove_titles: list[str]
    score: float   # lowest confirmed pair score inside the group


class ReconcileResult(BaseModel):
    total: int
    groups: list[DuplicateGroup] = Field(default_factory=list)
    removed_ids: list[str] = Field(default_factory=list)
    pool: list[Record] = Field(default_factory=list)
    preview: bool = False


def minhash_for_record(record: Record, num_perm: int = 128) -> MinHash:
    """Compute a MinHash signature over the record's title and step tokens."""
    mh = MinHash(num_perm=num_perm)
    for token in tokenize(record.title) + tokenize(record.step_text):
        mh.update(token.encode("utf-8"))
    return mh


def _candidate_pairs(records: list[tuple[int, Record]], threshold: float, num_perm: int) -> set[tuple[int, int]]:
    """Query an LSH index built over one bucket for candidate index pairs."""
    lsh = MinHashLSH(threshold=threshold, num_perm=num_perm)
    signatures: dict[int, MinHash] = {}
    for idx, record in records:
        signatures[idx] = minhash_for_record(record, num_perm)
        lsh.insert(str(idx), signatures[idx])

    pairs: set[tuple[int, int]] = set()
    for idx, signature in signatures.items():
        for key in lsh.query(signature):
            other = int(key)
            if other != idx:
                pairs.add((min(idx, other), max(idx, other)))
    return pairs


def _created_key(record: Record) -> datetime.datetime:
    created = as_utc(record.created_at)
    return _NO_TIMESTAMP if created is None else created


def _find(parent: dict[int, int], idx: int) -> int:
    while parent[idx] != idx:
        parent[idx] = parent[parent[idx]]
        idx = parent[idx]
    return idx


def _group_positions(
    records: list[Record],
    threshold: float,
    weights: ScoreWeights,
) -> list[tuple[int, list[int], float]]:
    """Return (keeper position, removed positions, lowest pair score) per group."""
    from casemerge.config import settings  # lazy import: read current settings

    # Bucket by category to bound comparisons; invalid records are left alone
    buckets: dict[str, list[tuple[int, Record]]] = {}
    for idx, record in enumerate(records):
        try:
            ensure_valid(record)
        except InvalidRecord as exc:
            logger.warning("Reconcile: pool record %d skipped: %s", idx, exc)
            continue
        buckets.setdefault(comparison_text(record.category), []).append((idx, record))

    parent = {idx: idx for bucket in buckets.values() for idx, _ in bucket}
    pair_scores: dict[tuple[int, int], float] = {}

    for key, bucket in buckets.items():
        if len(bucket) < 2:
            continue
        candidates = _candidate_pairs(bucket, settings.minhash_threshold, settings.minhash_num_perm)
        logger.debug("Reconcile: bucket %r: %d records, %d candidate pairs", key, len(bucket), len(candidates))
        for a, b in sorted(candidates):
            similarity = score(records[a], records[b], weights)
            if similarity.value >= threshold:
                pair_scores[(a, b)] = similarity.value
                parent[_find(parent, b)] = _find(parent, a)

    members: dict[int, list[int]] = {}
    for idx in sorted(parent):
        members.setdefault(_find(parent, idx), []).append(idx)

    groups: list[tuple[int, list[int], float]] = []
    for group in sorted((m for m in members.values() if len(m) > 1), key=lambda m: m[0]):
        keep = min(group, key=lambda i: (-len(records[i].steps), _created_key(records[i]), i))
        scores = [s for (a, b), s in pair_scores.items() if a in group and b in group]
        groups.append((keep, [i for i in group if i != keep], min(scores)))

    logger.info("Reconcile: %d record(s), %d duplicate group(s)", len(records), len(groups))
    return groups


def _to_model(records: list[Record], keep: int, removed: list[int], lowest: float) -> DuplicateGroup:
    return DuplicateGroup(
        keep_id=records[keep].id,
        keep_title=records[keep].title,
        remove_ids=[records[i].id for i in removed],
        remove_titles=[records[i].title for i in removed],
        score=lowest,
    )


def _defaults(threshold: Optional[float], weights: Optional[ScoreWeights]) -> tuple[float, ScoreWeights]:
    from casemerge.config import settings  # lazy import: read current settings

    if threshold is None:
        threshold = settings.reconcile_threshold
    if weights is None:
        weights = ScoreWeights.from_settings()
    return threshold, weights


def find_duplicate_groups(
    pool: Iterable[Union[Record, Mapping]],
    *,
    threshold: Optional[float] = None,
    weights: Optional[ScoreWeights] = None,
) -> list[DuplicateGroup]:
    """Group near-duplicate records of *pool*.

    Args:
        pool:      Records (or raw mappings) to inspect.
        threshold: Composite score needed to confirm a pair. Defaults to
                   Settings.reconcile_threshold.
        weights:   Scoring weights. Defaults to Settings.

    Returns:
        One DuplicateGroup per set of two or more confirmed duplicates, in
        pool order of their first member.
    """
    threshold, weights = _defaults(threshold, weights)
    records = [normalize(r) for r in pool]
    return [_to_model(records, *group) for group in _group_positions(records, threshold, weights)]


def reconcile_pool(
    pool: Iterable[Union[Record, Mapping]],
    *,
    preview: bool = False,
    threshold: Optional[float] = None,
    weights: Optional[ScoreWeights] = None,
) -> ReconcileResult:
    """Drop duplicate records from a pool snapshot.

    Args:
        pool:      Records (or raw mappings).
        preview:   When True the returned pool is the input, unchanged; the
                   groups and removed_ids still describe what would go.
        threshold: See find_duplicate_groups().
        weights:   See find_duplicate_groups().

    Returns:
        ReconcileResult with the groups, the removed ids and the resulting
        pool snapshot.
    """
    threshold, weights = _defaults(threshold, weights)
    records = [normalize(r) for r in pool]
    positions = _group_positions(records, threshold, weights)
    groups = [_to_model(records, *group) for group in positions]
    removed_ids = [rid for group in groups for rid in group.remove_ids]

    if preview:
        kept = records
    else:
        # By position, so a record sharing its keeper's id is still told apart
        drop = {i for _, removed, _ in positions for i in removed}
        kept = [r for i, r in enumerate(records) if i not in drop]
        logger.info("Reconcile: removed %d duplicate record(s)", len(drop))

    return ReconcileResult(
        total=len(records),
        groups=groups,
        removed_ids=removed_ids,
        pool=kept,
        preview=preview,
    )
