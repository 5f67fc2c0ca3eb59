"""Batch deduplication pipeline with three operating modes.

Classifies every incoming record against a working copy of the existing pool:

  OFF    — no scoring; every record is saved as new.
  STRICT — only exact duplicates (best score >= exact, so every compared
           field is identical after normalization) are dropped;
           everything else is saved as new. Nothing is ever merged.
           Equal content fingerprints short-cut the scoring.
  SMART  — each record is scored against every unconsumed pool record and
           routed by its best match:
             exact duplicate            → dropped
             score >= auto_merge        → merged, unless the merge resolver
                                          leaves fields unresolved, in which
                                          case it is demoted to a conflict
             review <= score < auto     → MergeConflict, left for a human
             score < review             → saved as new

Saved and merged records go into the working pool before the next record is
processed, so near-identical records inside one batch reconcile with each
other. A pool record that became the existing side of a conflict is consumed
for the rest of the run.

The caller's pool is never touched: the result carries an updated snapshot
and the whole run can be discarded before commit. Per-record failures
(InvalidRecord) are collected in BatchResult.errors; they never abort the
batch.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable, Mapping
from typing import Optional, Union

from casemerge.conflict.merge import field_conflicts, merge
from casemerge.dedup.scorer import score
from casemerge.errors import InvalidRecord, ItemError
from casemerge.records.fingerprint import fingerprint
from casemerge.records.models import (
    BatchResult,
    DedupMode,
    MergeConflict,
    OutcomeAction,
    Record,
    RecordOutcome,
    ScoreWeights,
    SimilarityScore,
    Thresholds,
)
from casemerge.records.normalizer import ensure_valid, normalize

logger = logging.getLogger(__name__)

RawRecord = Union[Record, Mapping]


def new_record_id() -> str:
    return uuid.uuid4().hex


def _coerce_mode(mode: Union[DedupMode, str]) -> DedupMode:
    """Accept a DedupMode or its name in any letter case ("Smart", "STRICT")."""
    if isinstance(mode, DedupMode):
        return mode
    return DedupMode(str(mode).strip().casefold())


class WorkingPool:
    """Mutable copy of the pool used for the duration of one run."""

    def __init__(self, records: Iterable[Record]) -> None:
        self.records: list[Record] = list(records)
        self.ids: set[str] = {r.id for r in self.records}
        self.consumed: set[int] = set()
        self.unmatchable: set[int] = set()
        self._fingerprints: Optional[dict[str, int]] = None

    def candidates(self) -> Iterable[tuple[int, Record]]:
        for idx, record in enumerate(self.records):
            if idx not in self.consumed and idx not in self.unmatchable:
                yield idx, record

    def find_exact(self, record: Record) -> Optional[int]:
        """Index of an unconsumed pool record with the same fingerprint."""
        if self._fingerprints is None:
            self._fingerprints = {}
            for idx, candidate in self.candidates():
                self._fingerprints.setdefault(fingerprint(candidate), idx)
        idx = self._fingerprints.get(fingerprint(record))
        if idx is None or idx in self.consumed:
            return None
        return idx

    def add(self, record: Record) -> Record:
        """Append a new record, re-keying it if its id is already taken."""
        if record.id in self.ids:
            original_id = record.id
            record = record.model_copy(
                update={
                    "id": new_record_id(),
                    "provenance": record.provenance + (f"copy-of:{original_id}",),
                }
            )
            logger.debug("Pool id %s already taken, saved as %s", original_id, record.id)
        self.records.append(record)
        self.ids.add(record.id)
        if self._fingerprints is not None:
            self._fingerprints.setdefault(fingerprint(record), len(self.records) - 1)
        return record

    def replace(self, idx: int, record: Record) -> None:
        self.records[idx] = record
        if self._fingerprints is not None:
            self._fingerprints.setdefault(fingerprint(record), idx)

    def best_match(self, record: Record, weights: ScoreWeights) -> tuple[Optional[int], Optional[SimilarityScore]]:
        """Argmax of score(record, candidate) over unconsumed pool records.

        Ties on value prefer an exact (fingerprint) match, then pool order.
        """
        best_idx: Optional[int] = None
        best: Optional[SimilarityScore] = None
        for idx, candidate in self.candidates():
            current = score(record, candidate, weights)
            if best is None or (current.value, current.exact) > (best.value, best.exact):
                best_idx, best = idx, current
        return best_idx, best


def _prepare_pool(pool: Iterable[RawRecord], errors: list[ItemError]) -> WorkingPool:
    working = WorkingPool(normalize(r) for r in pool)
    for idx, record in enumerate(working.records):
        try:
            ensure_valid(record)
        except InvalidRecord as exc:
            # Kept in the snapshot (the caller owns it) but never matched
            working.unmatchable.add(idx)
            errors.append(ItemError.from_exception(record.id or f"pool[{idx}]", exc))
            logger.warning("Pool record %d is invalid and will not be matched: %s", idx, exc)
    return working


def run(
    batch: Iterable[RawRecord],
    pool: Iterable[RawRecord],
    mode: Union[DedupMode, str, None] = None,
    *,
    thresholds: Optional[Thresholds] = None,
    weights: Optional[ScoreWeights] = None,
) -> BatchResult:
    """Reconcile an incoming batch against an existing pool.

    Args:
        batch:      Incoming records (Record or raw mappings; normalized here).
        pool:       Snapshot of the currently stored records. Not modified.
        mode:       DedupMode or its name in any letter case. Defaults to
                    Settings.default_mode ("smart").
        thresholds: Classification boundaries. Defaults to Settings.
        weights:    Scoring weights. Defaults to Settings.

    Returns:
        BatchResult with the four counters, the pending conflicts (SMART
        only), one outcome per batch item, collected errors, and the updated
        pool snapshot.
    """
    from casemerge.config import settings  # lazy import: read current settings

    mode = _coerce_mode(mode or settings.default_mode)
    if thresholds is None:
        thresholds = Thresholds.from_settings()
    if weights is None:
        weights = ScoreWeights.from_settings()

    result = BatchResult(mode=mode)
    working = _prepare_pool(pool, result.errors)

    for position, raw in enumerate(batch):
        record = normalize(raw)
        try:
            ensure_valid(record)
        except InvalidRecord as exc:
            ref = record.id or f"batch[{position}]"
            result.errors.append(ItemError.from_exception(ref, exc))
            result.outcomes.append(RecordOutcome(record_id=ref, action=OutcomeAction.REJECTED))
            logger.warning("Batch record %s rejected: %s", ref, exc)
            continue

        if mode == DedupMode.OFF:
            _save(result, working, record)
        elif mode == DedupMode.STRICT:
            _classify_strict(result, working, record, thresholds, weights)
        else:
            _classify_smart(result, working, record, thresholds, weights)

    result.pool = working.records
    logger.info(
        "Dedup pipeline (%s): saved=%d exact=%d merged=%d review=%d errors=%d",
        mode.value,
        result.saved_count,
        result.exact_duplicate_count,
        result.auto_merged_count,
        result.review_required_count,
        len(result.errors),
    )
    return result


# ---------------------------------------------------------------------------
# Per-record routing
# ---------------------------------------------------------------------------


def _save(result: BatchResult, working: WorkingPool, record: Record, best: Optional[SimilarityScore] = None) -> None:
    saved = working.add(record)
    result.saved_count += 1
    result.outcomes.append(
        RecordOutcome(
            record_id=record.id,
            action=OutcomeAction.SAVED,
            target_id=saved.id,
            score=best.value if best is not None else None,
        )
    )


def _drop_exact(result: BatchResult, record: Record, target: Record) -> None:
    result.exact_duplicate_count += 1
    result.outcomes.append(
        RecordOutcome(
            record_id=record.id,
            action=OutcomeAction.EXACT_DUPLICATE,
            target_id=target.id,
            score=1.0,
        )
    )
    logger.debug("Record %s is an exact duplicate of %s, dropped", record.id, target.id)


def _classify_strict(
    result: BatchResult,
    working: WorkingPool,
    record: Record,
    thresholds: Thresholds,
    weights: ScoreWeights,
) -> None:
    idx = working.find_exact(record)
    if idx is None:
        # No identical fingerprint: case or whitespace may still be the only difference
        idx, best = working.best_match(record, weights)
        if best is None or best.value < thresholds.exact:
            _save(result, working, record, best)
            return
    _drop_exact(result, record, working.records[idx])


def _classify_smart(
    result: BatchResult,
    working: WorkingPool,
    record: Record,
    thresholds: Thresholds,
    weights: ScoreWeights,
) -> None:
    idx, best = working.best_match(record, weights)

    if idx is None or best is None or best.value < thresholds.review:
        _save(result, working, record, best)
        return

    existing = working.records[idx]

    if best.exact and best.value >= thresholds.exact:
        _drop_exact(result, record, existing)
        return

    merged, unresolved = merge(existing, record)

    if best.value >= thresholds.auto_merge and not unresolved:
        working.replace(idx, merged)
        result.auto_merged_count += 1
        result.outcomes.append(
            RecordOutcome(
                record_id=record.id,
                action=OutcomeAction.AUTO_MERGED,
                target_id=existing.id,
                score=best.value,
            )
        )
        logger.debug("Record %s auto-merged into %s (score=%.4f)", record.id, existing.id, best.value)
        return

    # Review band, or a high score with an irreconcilable field
    conflict = MergeConflict(
        id=new_record_id(),
        incoming=record,
        existing=existing,
        score=best,
        field_conflicts=field_conflicts(existing, record, unresolved),
        proposed=merged,
    )
    working.consumed.add(idx)
    result.pending_conflicts.append(conflict)
    result.review_required_count += 1
    result.outcomes.append(
        RecordOutcome(
            record_id=record.id,
            action=OutcomeAction.REVIEW_REQUIRED,
            target_id=existing.id,
            score=best.value,
        )
    )
    logger.debug(
        "Record %s needs review against %s (score=%.4f, unresolved=%s)",
        record.id,
        existing.id,
        best.value,
        unresolved or "none",
    )
