"""Tests for task, chain and request managers."""

import json
from datetime import date

import pytest

from conftest import drive
from scopegate.lib.errors import InvalidTransition, NotFound, PreconditionFailed, StaleRecord


class TestCreateTask:
    def test_sequential_ids(self, project, chain_id):
        first = project.tasks.create_task(chain_id, "setup", "Set up")
        second = project.tasks.create_task(chain_id, "login-form", "Login form", type="control")

        assert first.id == "001-setup"
        assert second.id == "002-login-form"
        assert second.type == "control"
        assert first.status == "backlog"
        assert first.version == 1
        assert project.tasks.task_path(chain_id, "001-setup").exists()

    def test_unknown_chain(self, project):
        with pytest.raises(NotFound):
            project.tasks.create_task("CHAIN-404-none", "setup", "Set up")

    @pytest.mark.parametrize("kwargs", [
        {"slug": "Bad Slug"},
        {"slug": "ok", "type": "review"},
        {"slug": "ok", "status": "done"},
        {"slug": "ok", "file_scope": ["/abs/**"]},
    ])
    def test_invalid_input(self, project, chain_id, kwargs):
        slug = kwargs.pop("slug")
        with pytest.raises(ValueError):
            project.tasks.create_task(chain_id, slug, "Title", **kwargs)

    def test_scope_normalized(self, project, chain_id):
        task = project.tasks.create_task(chain_id, "setup", "Set up", file_scope=["./lib/auth/"])
        assert task.file_scope == ["lib/auth/**"]


class TestQueries:
    def test_get_missing(self, project, chain_id):
        with pytest.raises(NotFound, match="001-nope"):
            project.tasks.get_task(chain_id, "001-nope")

    def test_list_and_filter(self, project, chain_id, make_task):
        make_task(chain_id, "a")
        make_task(chain_id, "b", status="todo")
        make_task(chain_id, "c", status="todo")

        assert [t.id for t in project.tasks.list_tasks(chain_id)] == ["001-a", "002-b", "003-c"]
        assert [t.id for t in project.tasks.list_tasks(chain_id, status="todo")] == ["002-b", "003-c"]

    def test_next_task_prefers_in_progress(self, project, chain_id, make_task):
        make_task(chain_id, "a", status="todo")
        make_task(chain_id, "b", status="in-progress")
        assert project.tasks.next_task(chain_id).id == "002-b"

    def test_next_task_none(self, project, chain_id, make_task):
        make_task(chain_id, "a", status="done")
        assert project.tasks.next_task(chain_id) is None


class TestUpdateTask:
    def test_content_fields(self, project, chain_id, make_task):
        make_task(chain_id, "a")
        task = project.tasks.update_task(chain_id, "001-a", title="Renamed", notes="see PR")
        assert task.title == "Renamed"
        assert task.notes == "see PR"
        assert task.version == 2

    def test_status_not_editable(self, project, chain_id, make_task):
        make_task(chain_id, "a")
        with pytest.raises(ValueError, match="status"):
            project.tasks.update_task(chain_id, "001-a", status="done")


class TestTransitions:
    """Lifecycle through the manager (persisted)."""

    def test_happy_path(self, project, chain_id, make_task, sink):
        make_task(chain_id, "a")
        for target in ("todo", "in-progress", "in-review"):
            result = project.tasks.transition_task(chain_id, "001-a", target)
            assert result.success, result.error

        task = project.tasks.get_task(chain_id, "001-a")
        assert task.status == "in-review"
        assert len(task.history) == 3
        assert [e["eventType"] for e in sink.events if e["entityType"] == "task"] == [
            "task:scheduled", "task:started", "task:submitted",
        ]

    def test_todo_to_done_is_invalid(self, project, chain_id, make_task):
        make_task(chain_id, "a", status="todo")
        result = project.tasks.transition_task(chain_id, "001-a", "done")

        assert not result.success
        assert isinstance(result.error, InvalidTransition)
        assert result.error.current == "todo"
        assert result.error.required == ["in-review"]
        assert project.tasks.get_task(chain_id, "001-a").status == "todo"

    def test_review_outcomes_need_review_operations(self, project, chain_id, make_task):
        make_task(chain_id, "a", status="in-review")
        for target in ("done", "in-progress"):
            result = project.tasks.transition_task(chain_id, "001-a", target)
            assert not result.success
            assert isinstance(result.error, PreconditionFailed)
        assert project.tasks.get_task(chain_id, "001-a").status == "in-review"

    def test_unknown_target(self, project, chain_id, make_task):
        make_task(chain_id, "a")
        result = project.tasks.transition_task(chain_id, "001-a", "archived")
        assert isinstance(result.error, PreconditionFailed)

    def test_missing_task(self, project, chain_id):
        result = project.tasks.start(chain_id, "001-nope")
        assert isinstance(result.error, NotFound)

    def test_block_unblock_shelve(self, project, chain_id, make_task):
        make_task(chain_id, "a", status="in-progress")
        assert project.tasks.block(chain_id, "001-a", reason="waiting on API").success
        assert project.tasks.unblock(chain_id, "001-a").to_status == "todo"
        assert project.tasks.block(chain_id, "001-a").success
        assert project.tasks.shelve(chain_id, "001-a").to_status == "backlog"

    def test_return_to_todo(self, project, chain_id, make_task):
        make_task(chain_id, "a", status="in-progress")
        result = project.tasks.return_to_todo(chain_id, "001-a", reason="wrong approach")
        assert result.from_status == "in-progress"
        assert result.to_status == "todo"

    def test_done_cannot_be_blocked(self, project, chain_id, make_task):
        make_task(chain_id, "a", status="done")
        result = project.tasks.block(chain_id, "001-a")
        assert isinstance(result.error, InvalidTransition)

    def test_stale_write_detected(self, project, chain_id, make_task):
        make_task(chain_id, "a")
        stale = project.tasks.get_task(chain_id, "001-a")
        project.tasks.update_task(chain_id, "001-a", notes="someone else")

        stale.notes = "me"
        with pytest.raises(StaleRecord):
            project.tasks.save(stale)
        assert project.tasks.get_task(chain_id, "001-a").notes == "someone else"

    def test_stale_write_during_transition_is_a_failed_result(self, project, chain_id, make_task, monkeypatch):
        make_task(chain_id, "a")
        path = project.tasks.task_path(chain_id, "001-a")
        real_get = project.tasks.get_task

        def get_then_bump(c, t):
            task = real_get(c, t)
            data = json.loads(path.read_text())
            data["version"] += 1
            path.write_text(json.dumps(data))
            return task

        monkeypatch.setattr(project.tasks, "get_task", get_then_bump)
        result = project.tasks.schedule(chain_id, "001-a")

        assert not result.success
        assert isinstance(result.error, StaleRecord)
        assert json.loads(path.read_text())["status"] == "backlog"


class TestChains:
    def test_design_chain(self, project, request_id, sink):
        chain = project.chains.create_chain(request_id, "auth", "Auth design", type="design")
        assert chain.id == "CHAIN-001-auth"
        assert sink.events[-1]["eventType"] == "chain:created"
        assert sink.events[-1]["metadata"]["request_id"] == request_id

    def test_implementation_requires_design(self, project, request_id):
        with pytest.raises(PreconditionFailed, match="depends_on"):
            project.chains.create_chain(request_id, "impl", "Impl")

    def test_implementation_on_design_chain(self, project, request_id, chain_id):
        chain = project.chains.create_chain(request_id, "impl", "Impl", depends_on=chain_id)
        assert chain.id == "CHAIN-002-impl"
        assert chain.depends_on == chain_id

    def test_implementation_on_implementation_chain(self, project, request_id):
        first = project.chains.create_chain(
            request_id, "quick", "Quick fix", skip_design_justification="one-line typo fix"
        )
        with pytest.raises(PreconditionFailed, match="design chain"):
            project.chains.create_chain(request_id, "more", "More", depends_on=first.id)

    def test_blank_justification_is_not_enough(self, project, request_id):
        with pytest.raises(PreconditionFailed):
            project.chains.create_chain(request_id, "impl", "Impl", skip_design_justification="   ")

    def test_missing_dependency(self, project, request_id):
        with pytest.raises(NotFound):
            project.chains.create_chain(request_id, "impl", "Impl", depends_on="CHAIN-099-ghost")

    def test_missing_request(self, project):
        with pytest.raises(NotFound):
            project.chains.create_chain("CR-20260101-001", "auth", "Auth", type="design")

    def test_list_by_request(self, project, request_id, chain_id):
        other = project.requests.create_request("FR", "Fix crash").id
        project.chains.create_chain(other, "crash", "Crash", type="design")
        assert [c.id for c in project.chains.list_chains(request_id)] == [chain_id]
        assert len(project.chains.list_chains()) == 2

    @pytest.mark.parametrize("statuses,expected", [
        ([], "backlog"),
        (["done", "done"], "done"),
        (["done", "todo"], "todo"),
        (["done", "backlog"], "backlog"),
        (["done", "in-review"], "in-review"),
        (["in-review", "in-progress"], "in-progress"),
        (["in-progress", "blocked", "done"], "blocked"),
    ])
    def test_derived_status(self, project, chain_id, make_task, statuses, expected):
        for i, status in enumerate(statuses):
            if status == "blocked":
                make_task(chain_id, f"t{i}")
                project.tasks.block(chain_id, f"{i + 1:03d}-t{i}")
            else:
                make_task(chain_id, f"t{i}", status=status)
        assert project.chains.chain_status(chain_id) == expected

    def test_summary(self, project, chain_id, make_task):
        make_task(chain_id, "a", status="done")
        make_task(chain_id, "b", status="todo")
        summary = project.chains.summary(chain_id)
        assert summary.total == 2
        assert summary.done == 1
        assert summary.progress == 0.5
        assert summary.task_counts["todo"] == 1

    def test_effective_scope(self, project, request_id):
        chain = project.chains.create_chain(
            request_id, "auth", "Auth", type="design", file_scope=["lib/auth/**"]
        )
        project.tasks.create_task(chain.id, "a", "A", file_scope=["lib/auth/**", "tests/auth/*"])
        project.tasks.create_task(chain.id, "b", "B", file_scope=["docs/auth.md"])
        assert project.chains.effective_scope(chain.id) == ["lib/auth/**", "tests/auth/*", "docs/auth.md"]
        assert project.chains.scope_claim(chain.id).group_id == chain.id


class TestRequests:
    def test_ids_per_kind_and_day(self, project):
        day = date(2026, 3, 1)
        assert project.requests.create_request("CR", "One", day=day).id == "CR-20260301-001"
        assert project.requests.create_request("CR", "Two", day=day).id == "CR-20260301-002"
        assert project.requests.create_request("FR", "Fix", day=day).id == "FR-20260301-001"
        assert project.requests.create_request("CR", "Next day", day=date(2026, 3, 2)).id == "CR-20260302-001"

    def test_invalid(self, project):
        with pytest.raises(ValueError):
            project.requests.create_request("XR", "Nope")
        with pytest.raises(ValueError):
            project.requests.create_request("CR", "  ")

    def test_forward_transitions(self, project, request_id):
        assert project.requests.transition_request(request_id, "todo").success
        assert project.requests.transition_request(request_id, "doing").success
        assert project.requests.get_request(request_id).status == "doing"

    def test_skipping_a_step(self, project, request_id):
        result = project.requests.transition_request(request_id, "doing")
        assert isinstance(result.error, InvalidTransition)
        assert result.error.required == ["todo"]

    def test_done_only_by_approval(self, project, request_id):
        project.requests.transition_request(request_id, "todo")
        project.requests.transition_request(request_id, "doing")
        result = project.requests.transition_request(request_id, "done")
        assert isinstance(result.error, PreconditionFailed)
        assert "approve_request" in str(result.error)

    def test_list(self, project, request_id):
        project.requests.create_request("FR", "Fix")
        assert len(project.requests.list_requests()) == 2
        assert [r.kind for r in project.requests.list_requests(kind="FR")] == ["FR"]
        assert project.requests.list_requests(status="done") == []


def test_drive_helper_reaches_done(project, chain_id):
    task = project.tasks.create_task(chain_id, "x", "X")
    assert drive(project, chain_id, task.id, "done").status == "done"
