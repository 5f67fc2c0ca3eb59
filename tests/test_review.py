"""Tests for casemerge.conflict.review: resolving pending conflicts."""

import pytest

from conftest import make_record, make_unrelated

from casemerge.conflict.review import conflict_state, resolve
from casemerge.dedup.pipeline import run
from casemerge.errors import UnknownConflictReference
from casemerge.records.models import ConflictState, Resolution, ResolutionAction


@pytest.fixture
def pending(login):
    """A smart run that left one conflict: same test case, different category."""
    result = run([make_record(id="tc-new", category="Auth")], [login])
    assert result.pending_count == 1
    return result


@pytest.fixture
def stuck():
    """A conflict whose remarks cannot be merged automatically."""
    existing = make_record(title="Login works", remarks="Run on staging")
    incoming = make_record(id="tc-new", title="login works", remarks="Run on preprod")
    result = run([incoming], [existing])
    assert result.pending_count == 1
    return result


def _resolution(result, action, **kwargs):
    return Resolution(conflict_id=result.pending_conflicts[0].id, action=action, **kwargs)


# ===========================================================================
# Terminal actions
# ===========================================================================

class TestActions:
    def test_merge_replaces_existing(self, pending, login):
        after = resolve(pending, [_resolution(pending, ResolutionAction.MERGE)])
        assert after.pending_conflicts == []
        assert after.auto_merged_count == 1
        assert after.review_required_count == 0
        (merged,) = after.pool
        assert merged.id == login.id
        assert merged.version == login.version + 1
        assert merged.category == "Authentication"
        assert "merged:tc-new" in merged.provenance

    def test_keep_both_saves_incoming_under_new_id(self, pending, login):
        conflict = pending.pending_conflicts[0]
        after = resolve(pending, [_resolution(pending, ResolutionAction.KEEP_BOTH)])
        assert after.saved_count == 1
        assert after.review_required_count == 0
        assert after.pool[0] == login
        kept = after.pool[1]
        assert kept.id not in (login.id, "tc-new")
        assert kept.category == "Auth"
        assert f"kept-both:{conflict.id}" in kept.provenance
        assert after.resolved[0].record_id == kept.id

    def test_skip_changes_nothing_but_state(self, pending):
        conflict_id = pending.pending_conflicts[0].id
        after = resolve(pending, [_resolution(pending, ResolutionAction.SKIP)])
        assert after.pool == pending.pool
        assert after.saved_count == pending.saved_count
        assert after.auto_merged_count == pending.auto_merged_count
        assert after.review_required_count == pending.review_required_count
        assert conflict_state(after, conflict_id) == ConflictState.SKIPPED

    @pytest.mark.parametrize("action,state", [
        (ResolutionAction.MERGE, ConflictState.MERGED),
        (ResolutionAction.KEEP_BOTH, ConflictState.KEPT_BOTH),
        (ResolutionAction.SKIP, ConflictState.SKIPPED),
    ])
    def test_conflict_state_follows_action(self, pending, action, state):
        conflict_id = pending.pending_conflicts[0].id
        assert conflict_state(pending, conflict_id) == ConflictState.PENDING
        after = resolve(pending, [_resolution(pending, action)])
        assert conflict_state(after, conflict_id) == state

    @pytest.mark.parametrize("action", [ResolutionAction.MERGE, ResolutionAction.KEEP_BOTH, ResolutionAction.SKIP])
    def test_counters_account_for_every_incoming_record(self, login, action):
        batch = [make_record(id="tc-copy"), make_record(id="tc-new", category="Auth")]
        result = run(batch, [login])
        after = resolve(result, [_resolution(result, action)])
        handled = (
            after.saved_count
            + after.exact_duplicate_count
            + after.auto_merged_count
            + after.review_required_count
        )
        assert handled == len(batch)

    def test_input_result_is_not_modified(self, pending):
        snapshot = pending.model_dump()
        resolve(pending, [_resolution(pending, ResolutionAction.KEEP_BOTH)])
        assert pending.model_dump() == snapshot


# ===========================================================================
# Irreconcilable merges
# ===========================================================================

class TestIrreconcilableMerge:
    def test_merge_is_refused_and_conflict_stays_pending(self, stuck):
        after = resolve(stuck, [_resolution(stuck, ResolutionAction.MERGE)])
        assert after.pending_count == 1
        assert after.auto_merged_count == 0
        assert after.pool == stuck.pool
        assert after.errors[-1].error == "IrreconcilableMerge"
        assert "remarks" in after.errors[-1].message

    def test_reviewer_edited_record_is_applied(self, stuck):
        existing = stuck.pending_conflicts[0].existing
        edited = existing.model_copy(update={"id": "", "remarks": "Run on staging and preprod"})
        after = resolve(stuck, [_resolution(stuck, ResolutionAction.MERGE, resulting_record=edited)])
        assert after.pending_count == 0
        (merged,) = after.pool
        assert merged.id == existing.id
        assert merged.version == existing.version + 1
        assert merged.remarks == "Run on staging and preprod"

    def test_keep_both_still_available(self, stuck):
        after = resolve(stuck, [_resolution(stuck, ResolutionAction.MERGE)])
        after = resolve(after, [_resolution(after, ResolutionAction.KEEP_BOTH)])
        assert after.pending_count == 0
        assert len(after.pool) == 2

    def test_resulting_record_requires_merge_action(self, stuck):
        with pytest.raises(ValueError):
            _resolution(stuck, ResolutionAction.SKIP, resulting_record=stuck.pending_conflicts[0].existing)


# ===========================================================================
# Bookkeeping
# ===========================================================================

class TestBookkeeping:
    def test_unresolved_conflicts_stay_pending(self, pending):
        after = resolve(pending, [])
        assert after.pending_conflicts == pending.pending_conflicts
        assert after.errors == pending.errors

    def test_unknown_conflict_is_reported(self, pending):
        after = resolve(pending, [Resolution(conflict_id="nope", action=ResolutionAction.SKIP)])
        assert after.pending_count == 1
        assert after.errors[-1].error == "UnknownConflictReference"
        assert after.errors[-1].ref == "nope"

    def test_second_decision_for_same_conflict_is_rejected(self, pending):
        first = _resolution(pending, ResolutionAction.SKIP)
        second = _resolution(pending, ResolutionAction.KEEP_BOTH)
        after = resolve(pending, [first, second])
        assert after.saved_count == 0
        assert [e.error for e in after.errors] == ["UnknownConflictReference"]

    def test_resolving_across_sessions(self, login, reset):
        batch = [
            make_record(id="tc-a", category="Auth"),
            reset.model_copy(update={"id": "tc-b", "category": "Account management"}),
        ]
        result = run(batch, [login, reset])
        assert result.pending_count == 2
        first, second = result.pending_conflicts

        after = resolve(result, [Resolution(conflict_id=first.id, action=ResolutionAction.SKIP)])
        assert [c.id for c in after.pending_conflicts] == [second.id]

        final = resolve(after, [Resolution(conflict_id=second.id, action=ResolutionAction.MERGE)])
        assert final.pending_count == 0
        assert final.auto_merged_count == 1
        assert [o.state for o in final.resolved] == [ConflictState.SKIPPED, ConflictState.MERGED]

    def test_conflict_state_of_unknown_id(self, pending):
        with pytest.raises(UnknownConflictReference):
            conflict_state(pending, "nope")

    def test_result_survives_json_between_sessions(self, pending):
        parked = type(pending).model_validate_json(pending.model_dump_json())
        after = resolve(parked, [_resolution(parked, ResolutionAction.MERGE)])
        assert after.auto_merged_count == 1


# ===========================================================================
# Locating the existing record
# ===========================================================================

class TestExistingRecord:
    def test_repeated_ids_merge_into_the_matched_record(self, login):
        namesake = make_unrelated(login.id, "Monthly revenue")
        result = run([make_record(id="tc-new", category="Auth")], [namesake, login])
        after = resolve(result, [_resolution(result, ResolutionAction.MERGE)])
        assert after.errors == []
        assert after.pool[0] == namesake
        assert after.pool[1].title == login.title
        assert after.pool[1].version == login.version + 1

    def test_merge_into_a_changed_record_recomputes(self, pending, login):
        changed = login.model_copy(update={"version": 3, "remarks": "Needs VPN"})
        moved = pending.model_copy(update={"pool": [changed]})
        after = resolve(moved, [_resolution(moved, ResolutionAction.MERGE)])
        (merged,) = after.pool
        assert merged.version == 4
        assert merged.remarks == "Needs VPN"

    def test_missing_existing_record_is_reported(self, pending):
        emptied = pending.model_copy(update={"pool": []})
        after = resolve(emptied, [_resolution(emptied, ResolutionAction.MERGE)])
        assert after.pending_count == 1
        assert after.errors[-1].error == "MissingExistingRecord"
        assert after.review_required_count == 1
