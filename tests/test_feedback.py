"""Tests for scopegate.feedback."""

import pytest

from scopegate.lib.errors import InvalidTransition, NotFound


@pytest.fixture
def store(project):
    return project.feedback


class TestFeedbackStore:
    def test_create_and_get(self, store):
        item = store.create("question", "  Which endpoint?  ", "impl", task_id="001-a", chain_id="CHAIN-001-auth")

        assert item.id == "FB-0001"
        assert item.content == "Which endpoint?"
        assert item.status == "pending"
        assert store.get("FB-0001").chain_id == "CHAIN-001-auth"
        assert store.create("idea", "cache it", "control").id == "FB-0002"

    def test_invalid(self, store):
        with pytest.raises(ValueError):
            store.create("rant", "hmm", "impl")
        with pytest.raises(ValueError):
            store.create("idea", " ", "impl")

    def test_missing(self, store):
        with pytest.raises(NotFound):
            store.get("FB-0042")

    def test_filters(self, store):
        store.create("question", "q1", "impl", task_id="001-a")
        store.create("blocker", "b1", "impl", chain_id="CHAIN-001-auth")
        store.create("idea", "i1", "control", workflow_id="WF-20260301-001")

        assert [i.content for i in store.list_feedback(task_id="001-a")] == ["q1"]
        assert [i.content for i in store.list_feedback(chain_id="CHAIN-001-auth")] == ["b1"]
        assert [i.content for i in store.list_feedback(workflow_id="WF-20260301-001")] == ["i1"]
        assert len(store.list_feedback(status="pending")) == 3


class TestBlocking:
    @pytest.mark.parametrize("type,blocking", [
        ("clarification", True),
        ("blocker", True),
        ("question", False),
        ("idea", False),
        ("review", False),
    ])
    def test_blocking_types(self, store, type, blocking):
        item = store.create(type, "text", "impl")
        assert item.is_blocking is blocking

    def test_acknowledged_still_blocks(self, store):
        store.create("blocker", "db down", "impl", chain_id="CHAIN-001-auth")
        store.acknowledge("FB-0001")
        assert [i.id for i in store.unresolved_blocking(chain_id="CHAIN-001-auth")] == ["FB-0001"]

    @pytest.mark.parametrize("close", ["resolve", "dismiss"])
    def test_closed_does_not_block(self, store, close):
        store.create("clarification", "which API?", "impl", chain_id="CHAIN-001-auth")
        getattr(store, close)("FB-0001", "answered")
        assert store.unresolved_blocking(chain_id="CHAIN-001-auth") == []

    def test_resolution_recorded(self, store):
        store.create("blocker", "db down", "impl")
        item = store.resolve("FB-0001", "restarted")
        assert item.status == "resolved"
        assert item.resolution == "restarted"

    def test_closed_item_cannot_close_again(self, store):
        store.create("blocker", "db down", "impl")
        store.dismiss("FB-0001")
        with pytest.raises(InvalidTransition):
            store.resolve("FB-0001", "late")

    def test_acknowledge_only_pending(self, store):
        store.create("blocker", "db down", "impl")
        store.acknowledge("FB-0001")
        with pytest.raises(InvalidTransition):
            store.acknowledge("FB-0001")
