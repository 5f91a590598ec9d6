"""Tests for scopegate.locks.reservations (advisory scope reservations)."""

import json
from datetime import datetime, timedelta

import pytest

from scopegate.lib.config import load_project_config
from scopegate.lib.errors import ConflictDetected, NotFound
from scopegate.lib.events import MemoryEventSink
from scopegate.locks.reservations import LockManager


class FakeClock:
    def __init__(self):
        self.now = datetime(2026, 3, 1, 9, 0, 0)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def locks(tmp_path, clock):
    return LockManager(load_project_config(tmp_path), MemoryEventSink(), clock=clock)


class TestAcquire:
    def test_acquire_and_get(self, locks):
        result = locks.acquire("CHAIN-001-auth", ["lib/auth/**"], "worker-a")
        assert result.success
        held = locks.get("CHAIN-001-auth")
        assert held.patterns == ["lib/auth/**"]
        assert held.owner_id == "worker-a"
        assert held.acquired_at == "2026-03-01T09:00:00"
        assert held.expires_at == "2026-03-01T11:00:00"  # default 120 minutes

    def test_persisted_shape(self, locks):
        locks.acquire("CHAIN-001-auth", ["lib/auth/**"], "worker-a")
        data = json.loads(locks.path.read_text())
        assert data["version"] == 1
        assert data["chains"]["CHAIN-001-auth"]["group_id"] == "CHAIN-001-auth"

    def test_conflict_names_holder_and_patterns(self, locks):
        locks.acquire("CHAIN-001-api", ["app/api/**"], "worker-a")
        result = locks.acquire("CHAIN-002-profile", ["app/api/profile/*", "docs/**"], "worker-b")

        assert not result.success
        assert isinstance(result.error, ConflictDetected)
        assert result.conflicting_group == "CHAIN-001-api"
        assert result.conflicting_patterns == [("app/api/profile/*", "app/api/**")]
        assert "worker-a" in str(result.error)
        assert locks.get("CHAIN-002-profile") is None

    def test_disjoint_scopes_coexist(self, locks):
        assert locks.acquire("CHAIN-001-auth", ["lib/auth/**"], "a").success
        assert locks.acquire("CHAIN-002-billing", ["lib/billing/**"], "b").success
        assert [r.group_id for r in locks.all()] == ["CHAIN-001-auth", "CHAIN-002-billing"]

    def test_reacquire_replaces_patterns(self, locks):
        locks.acquire("CHAIN-001-auth", ["lib/auth/**"], "a")
        assert locks.acquire("CHAIN-001-auth", ["lib/auth/*.py", "tests/auth/**"], "a").success
        assert locks.get("CHAIN-001-auth").patterns == ["lib/auth/*.py", "tests/auth/**"]

    def test_patterns_normalized(self, locks):
        locks.acquire("CHAIN-001-auth", ["./lib/auth/"], "a")
        assert locks.get("CHAIN-001-auth").patterns == ["lib/auth/**"]

    def test_invalid_pattern_is_a_failure(self, locks):
        result = locks.acquire("CHAIN-001-auth", ["../etc/**"], "a")
        assert not result.success
        assert "'..'" in str(result.error)

    def test_no_patterns(self, locks):
        assert not locks.acquire("CHAIN-001-auth", [], "a").success

    def test_events(self, locks):
        locks.acquire("CHAIN-001-auth", ["lib/auth/**"], "a")
        locks.release("CHAIN-001-auth")
        types = [e["eventType"] for e in locks.event_sink.events]
        assert types == ["lock:acquired", "lock:released"]


class TestReleaseAndExpiry:
    def test_release(self, locks):
        locks.acquire("CHAIN-001-auth", ["lib/auth/**"], "a")
        assert locks.release("CHAIN-001-auth")
        assert locks.get("CHAIN-001-auth") is None
        assert not locks.release("CHAIN-001-auth")

    def test_expired_reservation_no_longer_blocks(self, locks, clock):
        locks.acquire("CHAIN-001-api", ["app/**"], "a")
        clock.advance(minutes=121)
        assert locks.get("CHAIN-001-api") is None
        assert locks.acquire("CHAIN-002-web", ["app/web/**"], "b").success

    def test_extend(self, locks, clock):
        locks.acquire("CHAIN-001-api", ["app/**"], "a")
        clock.advance(minutes=100)
        result = locks.extend("CHAIN-001-api", minutes=60)
        assert result.success
        clock.advance(minutes=50)
        assert locks.get("CHAIN-001-api") is not None

    def test_extend_missing(self, locks):
        result = locks.extend("CHAIN-009-none")
        assert not result.success
        assert isinstance(result.error, NotFound)

    def test_cleanup_expired(self, locks, clock):
        locks.acquire("CHAIN-001-api", ["app/**"], "a")
        clock.advance(hours=3)
        locks.acquire("CHAIN-002-lib", ["lib/**"], "b")
        clock.advance(minutes=1)
        assert locks.cleanup_expired() == []  # acquire already dropped the stale one
        data = json.loads(locks.path.read_text())
        assert list(data["chains"]) == ["CHAIN-002-lib"]


class TestQueries:
    def test_is_path_locked(self, locks):
        locks.acquire("CHAIN-001-auth", ["lib/auth/**"], "a")
        assert locks.is_path_locked("lib/auth/token.py").group_id == "CHAIN-001-auth"
        assert locks.is_path_locked("lib/billing/x.py") is None
        assert locks.is_path_locked("lib/auth/token.py", exclude_group="CHAIN-001-auth") is None

    def test_format_status(self, locks):
        assert locks.format_status() == "No active scope reservations"
        locks.acquire("CHAIN-001-auth", ["lib/auth/**"], "worker-a")
        text = locks.format_status()
        assert "Active scope reservations (1):" in text
        assert "CHAIN-001-auth (owner worker-a" in text
        assert "    lib/auth/**" in text
