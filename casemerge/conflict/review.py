"""Human-in-the-loop resolution of pending merge conflicts.

Every MergeConflict emitted by the pipeline starts PENDING. A reviewer
answers with Resolutions; resolve() applies them to a BatchResult and
returns the next BatchResult:

  MERGE      — the merge resolver's output (precomputed, or recomputed when
               the existing record changed since) replaces the existing pool
               record. If fields are still unresolved and the reviewer did
               not supply a hand-merged record, the resolution is rejected
               with IrreconcilableMerge and the conflict stays PENDING.
               auto_merged_count += 1, review_required_count -= 1.
  KEEP_BOTH  — existing untouched; the incoming record is saved under a new
               id with provenance pointing at the conflict. saved_count += 1,
               review_required_count -= 1.
  SKIP       — incoming discarded, existing untouched, no counter changes
               (the conflict stays counted in review_required_count).

All three outcomes are terminal. Resolutions are applied independently:
a failing one (IrreconcilableMerge, UnknownConflictReference,
MissingExistingRecord) is collected in BatchResult.errors and does not stop
the others. Conflicts without a resolution stay pending and are returned
again; the engine never decides a pending conflict on its own.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from casemerge.conflict.merge import merge
from casemerge.dedup.pipeline import new_record_id
from casemerge.errors import (
    CaseMergeError,
    IrreconcilableMerge,
    ItemError,
    MissingExistingRecord,
    UnknownConflictReference,
)
from casemerge.records.models import (
    BatchResult,
    ConflictOutcome,
    ConflictState,
    MergeConflict,
    Record,
    Resolution,
    ResolutionAction,
)
from casemerge.records.normalizer import ensure_valid, normalize

logger = logging.getLogger(__name__)


class _Ledger:
    """Working state of one resolve() call."""

    def __init__(self, result: BatchResult) -> None:
        self.pool: list[Record] = list(result.pool)
        self.saved_count = result.saved_count
        self.auto_merged_count = result.auto_merged_count
        self.review_required_count = result.review_required_count
        self.resolved: list[ConflictOutcome] = list(result.resolved)
        self.errors: list[ItemError] = list(result.errors)

    def index_of(self, existing: Record) -> int:
        """Position of the conflict's existing record in the working pool.

        The unchanged record is preferred, so a pool with repeated ids still
        resolves to the right entry; otherwise the first record with that id
        (it was merged into since the conflict was emitted).
        """
        for idx, record in enumerate(self.pool):
            if record == existing:
                return idx
        for idx, record in enumerate(self.pool):
            if record.id == existing.id:
                return idx
        raise MissingExistingRecord(f"existing record {existing.id} is no longer in the pool")

    def leave_review(self) -> None:
        self.review_required_count = max(0, self.review_required_count - 1)


def _merged_record(ledger: _Ledger, conflict: MergeConflict, resolution: Resolution) -> tuple[int, Record]:
    idx = ledger.index_of(conflict.existing)
    current = ledger.pool[idx]

    if resolution.resulting_record is not None:
        # Reviewer-edited merge: applied as-is, identity and version pinned
        edited = normalize(resolution.resulting_record)
        merged = edited.model_copy(update={"id": current.id, "version": current.version + 1})
        ensure_valid(merged)
        return idx, merged

    if conflict.proposed is not None and current == conflict.existing:
        merged = conflict.proposed
        unresolved = [fc.field for fc in conflict.field_conflicts]
    else:
        merged, unresolved = merge(current, conflict.incoming)

    if unresolved:
        raise IrreconcilableMerge(
            f"conflict {conflict.id} still has unresolved field(s): {', '.join(unresolved)}",
            fields=unresolved,
        )
    return idx, merged


def _apply(ledger: _Ledger, conflict: MergeConflict, resolution: Resolution) -> ConflictOutcome:
    if resolution.action == ResolutionAction.MERGE:
        idx, merged = _merged_record(ledger, conflict, resolution)
        ledger.pool[idx] = merged
        ledger.auto_merged_count += 1
        ledger.leave_review()
        logger.info("Conflict %s: MERGE applied into %s (v%d)", conflict.id, merged.id, merged.version)
        return ConflictOutcome(conflict_id=conflict.id, state=ConflictState.MERGED, record_id=merged.id)

    if resolution.action == ResolutionAction.KEEP_BOTH:
        incoming = conflict.incoming
        kept = incoming.model_copy(
            update={
                "id": new_record_id(),
                "provenance": incoming.provenance
                + (f"kept-both:{conflict.id}", f"copy-of:{incoming.id}"),
            }
        )
        ledger.pool.append(kept)
        ledger.saved_count += 1
        ledger.leave_review()
        logger.info("Conflict %s: KEEP_BOTH, incoming %s saved as %s", conflict.id, incoming.id, kept.id)
        return ConflictOutcome(conflict_id=conflict.id, state=ConflictState.KEPT_BOTH, record_id=kept.id)

    # SKIP: abandon the incoming record, touch nothing
    logger.info("Conflict %s: SKIP, incoming %s discarded", conflict.id, conflict.incoming.id)
    return ConflictOutcome(conflict_id=conflict.id, state=ConflictState.SKIPPED)


def resolve(result: BatchResult, resolutions: Iterable[Resolution]) -> BatchResult:
    """Apply reviewer decisions to the pending conflicts of *result*.

    Args:
        result:      The BatchResult from run() or from an earlier resolve().
                     Its pending_conflicts are the conflicts being resolved.
        resolutions: Any subset of decisions; at most one per conflict
                     takes effect (a second one for the same conflict is
                     reported as UnknownConflictReference).

    Returns:
        A new BatchResult: counters and pool folded forward, resolved
        conflicts moved from pending_conflicts to resolved, per-resolution
        failures appended to errors. *result* itself is left unchanged.
    """
    ledger = _Ledger(result)
    pending: dict[str, MergeConflict] = {c.id: c for c in result.pending_conflicts}

    for resolution in resolutions:
        conflict = pending.get(resolution.conflict_id)
        try:
            if conflict is None:
                raise UnknownConflictReference(
                    f"conflict {resolution.conflict_id} is not pending"
                )
            outcome = _apply(ledger, conflict, resolution)
        except CaseMergeError as exc:
            ledger.errors.append(ItemError.from_exception(resolution.conflict_id, exc))
            logger.warning("Resolution for conflict %s rejected: %s", resolution.conflict_id, exc)
            continue

        del pending[conflict.id]
        ledger.resolved.append(outcome)

    return result.model_copy(
        update={
            "saved_count": ledger.saved_count,
            "auto_merged_count": ledger.auto_merged_count,
            "review_required_count": ledger.review_required_count,
            "pending_conflicts": [c for c in result.pending_conflicts if c.id in pending],
            "pool": ledger.pool,
            "resolved": ledger.resolved,
            "errors": ledger.errors,
        }
    )


def conflict_state(result: BatchResult, conflict_id: str) -> ConflictState:
    """Return the current state of a conflict known to *result*.

    Raises:
        UnknownConflictReference: If the conflict was never part of *result*.
    """
    if any(c.id == conflict_id for c in result.pending_conflicts):
        return ConflictState.PENDING
    for outcome in result.resolved:
        if outcome.conflict_id == conflict_id:
            return outcome.state
    raise UnknownConflictReference(f"conflict {conflict_id} is unknown")
