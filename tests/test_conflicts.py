"""Tests for scopegate.locks.conflicts (conflict detection, parallel dispatch)."""

import pytest

from scopegate.lib.config import load_project_config
from scopegate.lib.errors import ConflictDetected, StaleRecord
from scopegate.locks.conflicts import (
    ScopeClaim,
    detect_conflicts,
    dispatch_parallel,
    format_conflicts,
)
from scopegate.locks.reservations import LockManager, LockResult


@pytest.fixture
def locks(tmp_path):
    return LockManager(load_project_config(tmp_path))


class TestDetectConflicts:
    def test_nested_scopes_conflict(self):
        conflicts = detect_conflicts([
            ScopeClaim("CHAIN-001-api", ["app/api/**"]),
            ScopeClaim("CHAIN-002-profile", ["app/api/profile/*"]),
        ])
        assert len(conflicts) == 1
        c = conflicts[0]
        assert (c.group_a, c.group_b) == ("CHAIN-001-api", "CHAIN-002-profile")
        assert c.patterns == [("app/api/**", "app/api/profile/*")]

    def test_disjoint_scopes(self):
        assert detect_conflicts([
            ScopeClaim("CHAIN-001-auth", ["lib/auth/**"]),
            ScopeClaim("CHAIN-002-billing", ["lib/billing/**"]),
        ]) == []

    def test_every_pair_checked(self):
        conflicts = detect_conflicts([
            ScopeClaim("A", ["shared/**"]),
            ScopeClaim("B", ["shared/config.py"]),
            ScopeClaim("C", ["shared/*.py"]),
            ScopeClaim("D", ["other/**"]),
        ])
        assert [(c.group_a, c.group_b) for c in conflicts] == [("A", "B"), ("A", "C"), ("B", "C")]

    def test_empty_scope_conflicts_with_nothing(self):
        assert detect_conflicts([ScopeClaim("A", []), ScopeClaim("B", ["**"])]) == []

    def test_format(self):
        assert format_conflicts([]) == "No scope conflicts"
        text = format_conflicts(detect_conflicts([ScopeClaim("A", ["x/**"]), ScopeClaim("B", ["x/y"])]))
        assert "A <-> B: x/** ~ x/y" in text


class TestDispatchParallel:
    def test_refuses_conflicting_request_and_reserves_nothing(self, locks):
        result = dispatch_parallel([
            ScopeClaim("CHAIN-001-api", ["app/api/**"]),
            ScopeClaim("CHAIN-002-profile", ["app/api/profile/*"]),
            ScopeClaim("CHAIN-003-docs", ["docs/**"]),
        ], locks, "dispatcher")

        assert not result.success
        assert isinstance(result.error, ConflictDetected)
        assert len(result.conflicts) == 1
        assert locks.all() == []

    def test_refuses_overlap_with_existing_reservation(self, locks):
        locks.acquire("CHAIN-009-other", ["lib/**"], "someone-else")
        result = dispatch_parallel([
            ScopeClaim("CHAIN-001-auth", ["lib/auth/**"]),
            ScopeClaim("CHAIN-002-docs", ["docs/**"]),
        ], locks, "dispatcher")

        assert not result.success
        assert [(c.group_a, c.group_b) for c in result.conflicts] == [("CHAIN-001-auth", "CHAIN-009-other")]
        assert [r.group_id for r in locks.all()] == ["CHAIN-009-other"]

    def test_reserves_all_when_clear(self, locks):
        result = dispatch_parallel([
            ScopeClaim("CHAIN-001-auth", ["lib/auth/**"]),
            ScopeClaim("CHAIN-002-billing", ["lib/billing/**"]),
        ], locks, "dispatcher")

        assert result.success
        assert [r.group_id for r in result.reserved] == ["CHAIN-001-auth", "CHAIN-002-billing"]
        assert {r.owner_id for r in locks.all()} == {"dispatcher"}

    def test_own_existing_reservation_is_not_a_conflict(self, locks):
        locks.acquire("CHAIN-001-auth", ["lib/auth/**"], "dispatcher")
        result = dispatch_parallel([ScopeClaim("CHAIN-001-auth", ["lib/auth/**"])], locks, "dispatcher")
        assert result.success

    def test_claims_without_scope_are_skipped(self, locks):
        result = dispatch_parallel([
            ScopeClaim("CHAIN-001-auth", ["lib/auth/**"]),
            ScopeClaim("CHAIN-002-research", []),
        ], locks, "dispatcher")
        assert result.success
        assert [r.group_id for r in result.reserved] == ["CHAIN-001-auth"]


class FailingLockManager(LockManager):
    """Lets the first `succeed` acquires through, then fails the next one."""

    def __init__(self, config, succeed=1, error=None):
        super().__init__(config)
        self.succeed = succeed
        self.error = error
        self.calls = 0

    def acquire(self, group_id, patterns, owner_id):
        self.calls += 1
        if self.calls > self.succeed:
            if self.error is not None:
                raise self.error
            return LockResult(success=False, error=ConflictDetected(f"{group_id} lost a race"))
        return super().acquire(group_id, patterns, owner_id)


class TestDispatchRollback:
    CLAIMS = [
        ScopeClaim("CHAIN-001-auth", ["lib/auth/**"]),
        ScopeClaim("CHAIN-002-billing", ["lib/billing/**"]),
    ]

    def test_failed_acquire_releases_new_reservations(self, tmp_path):
        locks = FailingLockManager(load_project_config(tmp_path))
        result = dispatch_parallel(self.CLAIMS, locks, "dispatcher")

        assert not result.success
        assert "lost a race" in result.error.message
        assert locks.all() == []

    def test_raising_acquire_rolls_back(self, tmp_path):
        locks = FailingLockManager(
            load_project_config(tmp_path), error=StaleRecord("locks.json", 1, 2)
        )
        result = dispatch_parallel(self.CLAIMS, locks, "dispatcher")

        assert not result.success
        assert isinstance(result.error, StaleRecord)
        assert locks.all() == []

    def test_prior_reservation_is_restored(self, tmp_path):
        locks = FailingLockManager(load_project_config(tmp_path), succeed=2)
        locks.acquire("CHAIN-001-auth", ["lib/auth/tokens/*"], "worker-a")

        result = dispatch_parallel(self.CLAIMS, locks, "dispatcher")

        assert not result.success
        kept = locks.get("CHAIN-001-auth")
        assert kept.patterns == ["lib/auth/tokens/*"]
        assert kept.owner_id == "worker-a"
        assert [r.group_id for r in locks.all()] == ["CHAIN-001-auth"]
