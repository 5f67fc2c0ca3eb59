"""Tests for casemerge.dedup.pipeline: batch classification."""

import datetime

import pytest

from conftest import LOGIN_STEPS, make_record, make_reset, make_unrelated

from casemerge.dedup.pipeline import run
from casemerge.records.models import DedupMode, OutcomeAction, Record, Thresholds


def _batch():
    return [
        make_record(),
        make_reset(),
        make_unrelated("tc-rev", "Monthly revenue"),
    ]


# ===========================================================================
# OFF mode
# ===========================================================================

class TestOffMode:
    def test_everything_is_saved(self, login):
        result = run([login, login], [login], DedupMode.OFF)
        assert result.saved_count == 2
        assert result.exact_duplicate_count == 0
        assert len(result.pool) == 3

    def test_repeated_imports_accumulate(self):
        pool: list[Record] = []
        for _ in range(3):
            result = run(_batch(), pool, "off")
            assert result.saved_count == 3
            pool = result.pool
        assert len(pool) == 9
        assert len({r.id for r in pool}) == 9

    def test_colliding_id_is_rekeyed_with_provenance(self, login):
        result = run([login], [login], DedupMode.OFF)
        saved = result.pool[-1]
        assert saved.id != login.id
        assert f"copy-of:{login.id}" in saved.provenance
        assert result.outcomes[0].target_id == saved.id


# ===========================================================================
# STRICT mode
# ===========================================================================

class TestStrictMode:
    def test_reimporting_identical_batch(self):
        first = run(_batch(), [], DedupMode.STRICT)
        assert first.saved_count == 3
        second = run(_batch(), first.pool, DedupMode.STRICT)
        assert second.saved_count == 0
        assert second.exact_duplicate_count == 3
        assert second.pool == first.pool

    def test_case_and_whitespace_only_difference_is_exact(self, login):
        incoming = make_record(id="tc-new", title="  login WITH valid credentials ")
        result = run([incoming], [login], DedupMode.STRICT)
        assert result.saved_count == 0
        assert result.exact_duplicate_count == 1
        assert result.pool == [login]
        assert result.outcomes[0].target_id == login.id

    def test_near_duplicates_are_saved_not_merged(self, login):
        incoming = make_record(id="tc-new", category="Auth")
        result = run([incoming], [login], DedupMode.STRICT)
        assert result.saved_count == 1
        assert result.auto_merged_count == 0
        assert result.pending_conflicts == []

    def test_configured_exact_threshold_is_honoured(self, login):
        incoming = make_record(id="tc-new", category="Auth")
        thresholds = Thresholds(exact=0.9, auto_merge=0.9, review=0.88)
        result = run([incoming], [login], DedupMode.STRICT, thresholds=thresholds)
        assert result.exact_duplicate_count == 1
        assert result.saved_count == 0

    def test_duplicates_within_batch(self, login):
        result = run([login, make_record(id="tc-copy")], [], DedupMode.STRICT)
        assert result.saved_count == 1
        assert result.exact_duplicate_count == 1


# ===========================================================================
# SMART mode
# ===========================================================================

class TestSmartMode:
    def test_default_mode_is_smart(self, login):
        assert run([], [login]).mode == DedupMode.SMART

    @pytest.mark.parametrize("label,mode", [
        ("Smart", DedupMode.SMART),
        ("STRICT", DedupMode.STRICT),
        (" Off ", DedupMode.OFF),
    ])
    def test_mode_names_ignore_case(self, login, label, mode):
        assert run([], [login], label).mode == mode

    def test_unknown_mode_is_refused(self, login):
        with pytest.raises(ValueError):
            run([], [login], "fuzzy")

    def test_exact_duplicate_is_dropped(self, login):
        result = run([make_record(id="tc-copy")], [login])
        assert result.exact_duplicate_count == 1
        assert result.pool == [login]
        assert result.outcomes[0].action == OutcomeAction.EXACT_DUPLICATE

    def test_case_and_whitespace_difference_auto_merges(self, login):
        incoming = make_record(id="tc-new", title="login with valid credentials ")
        result = run([incoming], [login])
        assert result.auto_merged_count == 1
        assert result.exact_duplicate_count == 0
        merged = result.pool[0]
        assert merged.id == login.id
        assert merged.version == login.version + 1
        assert merged.title == "Login with valid credentials"
        assert merged.steps == login.steps

    def test_auto_merge_takes_more_complete_steps(self, login):
        steps = LOGIN_STEPS[:2] + [{"description": "Wait"}] + LOGIN_STEPS[2:]
        incoming = make_record(id="tc-new", steps=steps)
        result = run([incoming], [login])
        assert result.auto_merged_count == 1
        assert len(result.pool[0].steps) == 4

    def test_category_difference_needs_review(self, login):
        incoming = make_record(id="tc-new", category="Auth")
        result = run([incoming], [login])
        assert result.review_required_count == 1
        assert result.saved_count == 0
        (conflict,) = result.pending_conflicts
        assert conflict.incoming == incoming
        assert conflict.existing == login
        assert 0.88 <= conflict.score.value < 0.97
        assert conflict.proposed is not None
        # record is left untouched: neither saved nor merged
        assert result.pool == [login]

    def test_high_score_with_unresolved_field_is_demoted(self):
        existing = make_record(remarks="Run on staging")
        incoming = make_record(id="tc-new", title="login with valid credentials", remarks="Run on preprod")
        result = run([incoming], [existing])
        assert result.auto_merged_count == 0
        assert result.review_required_count == 1
        (conflict,) = result.pending_conflicts
        assert conflict.score.value >= 0.97
        assert [fc.field for fc in conflict.field_conflicts] == ["remarks"]

    def test_unrelated_record_is_saved(self, login):
        result = run([make_unrelated("tc-rev", "Monthly revenue")], [login])
        assert result.saved_count == 1
        assert len(result.pool) == 2

    def test_near_duplicates_within_batch_reconcile(self):
        batch = [make_record(), make_record(id="tc-2", title="LOGIN with valid credentials")]
        result = run(batch, [])
        assert result.saved_count == 1
        assert result.auto_merged_count == 1
        assert len(result.pool) == 1
        assert result.pool[0].version == 2

    def test_conflicted_pool_record_is_consumed(self, login):
        batch = [make_record(id="tc-a", category="Auth"), make_record(id="tc-b", category="Auth")]
        result = run(batch, [login])
        assert result.review_required_count == 1
        # tc-b cannot match the consumed pool record, nor tc-a (not saved)
        assert result.saved_count == 1
        assert [o.action for o in result.outcomes] == [OutcomeAction.REVIEW_REQUIRED, OutcomeAction.SAVED]

    def test_mixed_naive_and_aware_timestamps_merge(self):
        existing = make_record(updatedAt="2024-01-01T00:00:00")
        incoming = make_record(id="tc-new", title="login with valid credentials", updatedAt="2024-01-02T00:00:00Z")
        result = run([incoming], [existing])
        assert result.errors == []
        assert result.auto_merged_count == 1
        assert result.pool[0].updated_at == datetime.datetime(2024, 1, 2, tzinfo=datetime.timezone.utc)

    def test_best_match_wins(self, login, reset):
        incoming = make_record(id="tc-new", title="login with valid credentials")
        result = run([incoming], [reset, login])
        assert result.outcomes[0].target_id == login.id

    def test_custom_thresholds(self, login):
        incoming = make_record(id="tc-new", category="Auth")
        result = run([incoming], [login], thresholds=Thresholds(auto_merge=0.9, review=0.8))
        assert result.auto_merged_count == 1
        assert result.pool[0].category == "Authentication"


# ===========================================================================
# Purity and errors
# ===========================================================================

class TestPurityAndErrors:
    def test_callers_pool_is_not_mutated(self, login):
        pool = [login]
        run([make_record(id="tc-new", title="login with valid credentials")], pool)
        run([make_unrelated("tc-rev", "Monthly revenue")], pool)
        assert pool == [login]

    def test_invalid_batch_record_does_not_abort(self, login):
        batch = [{"id": "tc-bad"}, make_unrelated("tc-rev", "Monthly revenue")]
        result = run(batch, [login])
        assert result.saved_count == 1
        assert [e.error for e in result.errors] == ["InvalidRecord"]
        assert result.errors[0].ref == "tc-bad"
        assert result.outcomes[0].action == OutcomeAction.REJECTED

    def test_invalid_pool_record_is_kept_but_not_matched(self, login):
        broken = Record(id="tc-broken", title="")
        result = run([login], [broken])
        assert result.saved_count == 1
        assert result.pool[0] == broken
        assert result.errors[0].ref == "tc-broken"

    def test_raw_mappings_are_normalized(self, login):
        raw = {"id": "tc-raw", "testCase": "Login with valid credentials", "module": "Authentication",
               "priority": "High", "testSteps": LOGIN_STEPS}
        result = run([raw], [login])
        assert result.exact_duplicate_count == 1

    def test_invalid_thresholds_raise(self):
        with pytest.raises(ValueError):
            Thresholds(auto_merge=0.8, review=0.9)

    def test_result_round_trips_as_json(self, login):
        result = run([make_record(id="tc-new", category="Auth")], [login])
        restored = type(result).model_validate_json(result.model_dump_json())
        assert restored == result
