"""Tests for casemerge.dedup.reconcile: duplicate groups inside a pool."""

from conftest import LOGIN_STEPS, make_record, make_reset, make_unrelated

from casemerge.dedup.reconcile import find_duplicate_groups, minhash_for_record, reconcile_pool
from casemerge.records.models import Record

LONGER_STEPS = LOGIN_STEPS[:2] + [{"description": "Wait"}] + LOGIN_STEPS[2:]


def _pool():
    return [
        make_record(createdAt="2024-01-01T00:00:00Z"),
        make_reset(),
        make_record(id="tc-login-2", title="login with valid credentials", steps=LONGER_STEPS,
                    createdAt="2024-06-01T00:00:00Z"),
        make_unrelated("tc-rev", "Monthly revenue"),
    ]


class TestMinHash:
    def test_identical_records_share_signature(self, login):
        assert minhash_for_record(login).jaccard(minhash_for_record(make_record(id="x"))) == 1.0

    def test_unrelated_records_diverge(self, login):
        other = make_unrelated("tc-rev", "Monthly revenue")
        assert minhash_for_record(login).jaccard(minhash_for_record(other)) < 0.5


class TestFindDuplicateGroups:
    def test_near_duplicates_are_grouped(self):
        (group,) = find_duplicate_groups(_pool())
        # more complete record is kept even though it is newer
        assert group.keep_id == "tc-login-2"
        assert group.remove_ids == ["tc-login"]
        assert group.score >= 0.97

    def test_earliest_created_wins_a_tie(self):
        pool = [
            make_record(id="tc-late", createdAt="2025-01-01T00:00:00Z"),
            make_record(id="tc-early", createdAt="2023-01-01T00:00:00Z"),
            make_record(id="tc-undated"),
        ]
        (group,) = find_duplicate_groups(pool)
        assert group.keep_id == "tc-early"
        assert group.remove_ids == ["tc-late", "tc-undated"]

    def test_other_category_is_never_grouped(self, login):
        assert find_duplicate_groups([login, make_record(id="tc-2", category="Billing")]) == []

    def test_threshold_is_configurable(self, login):
        pool = [login, make_record(id="tc-2", title="Login with valid credential")]
        assert find_duplicate_groups(pool, threshold=1.0) == []
        assert len(find_duplicate_groups(pool, threshold=0.9)) == 1

    def test_invalid_records_are_skipped(self, login):
        pool = [login, Record(id="tc-broken", title=""), make_record(id="tc-2")]
        (group,) = find_duplicate_groups(pool)
        assert group.remove_ids == ["tc-2"]

    def test_clean_pool_has_no_groups(self, login, reset):
        assert find_duplicate_groups([login, reset]) == []


class TestReconcilePool:
    def test_preview_leaves_pool_alone(self):
        pool = _pool()
        result = reconcile_pool(pool, preview=True)
        assert result.preview is True
        assert result.pool == pool
        assert result.removed_ids == ["tc-login"]
        assert result.total == 4

    def test_apply_drops_duplicates(self):
        result = reconcile_pool(_pool())
        assert [r.id for r in result.pool] == ["tc-reset", "tc-login-2", "tc-rev"]

    def test_shared_id_removes_only_the_duplicate(self, login):
        pool = [login, make_record(steps=LONGER_STEPS)]
        result = reconcile_pool(pool)
        assert len(result.pool) == 1
        assert len(result.pool[0].steps) == 4
