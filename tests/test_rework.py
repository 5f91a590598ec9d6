"""Tests for scopegate.tasks.rework."""

import pytest

from scopegate.lib.errors import InvalidTransition, PreconditionFailed


class TestCreateRework:
    def test_rework_of_done_task(self, project, chain_id, make_task, sink):
        make_task(chain_id, "login", status="done", file_scope=["lib/auth/**"], acceptance=["tests pass"])

        result = project.rework(chain_id, "001-login", "session not cleared on logout")
        assert result.success, result.error

        rework = result.rework
        assert rework.id == "001-login-rework-1"
        assert rework.status == "todo"
        assert rework.title == "Login (Rework 1)"
        assert rework.rework_of == "001-login"
        assert rework.rework_reason == "session not cleared on logout"
        assert rework.file_scope == ["lib/auth/**"]
        assert rework.acceptance == ["tests pass"]

        original = project.tasks.get_task(chain_id, "001-login")
        assert original.status == "done"
        assert original.rework_count == 1
        assert len(original.history) == 4

        assert sink.events[-1]["eventType"] == "task:rework"
        assert sink.events[-1]["metadata"]["rework_of"] == "001-login"

    def test_numbering(self, project, chain_id, make_task):
        make_task(chain_id, "login", status="in-review")
        project.rework(chain_id, "001-login", "first")
        second = project.rework(chain_id, "001-login", "second")

        assert second.rework.id == "001-login-rework-2"
        assert project.tasks.get_task(chain_id, "001-login").rework_count == 2

    def test_rework_tasks_sort_next_to_original(self, project, chain_id, make_task):
        make_task(chain_id, "login", status="done")
        make_task(chain_id, "logout")
        project.rework(chain_id, "001-login", "fix")

        ids = [t.id for t in project.tasks.list_tasks(chain_id)]
        assert ids == ["001-login", "001-login-rework-1", "002-logout"]

    def test_rework_reopens_chain(self, project, chain_id, make_task):
        make_task(chain_id, "login", status="done")
        assert project.chains.chain_status(chain_id) == "done"
        project.rework(chain_id, "001-login", "fix")
        assert project.chains.chain_status(chain_id) == "todo"

    @pytest.mark.parametrize("status", ["backlog", "todo", "in-progress"])
    def test_unfinished_task_refused(self, project, chain_id, make_task, status):
        make_task(chain_id, "login", status=status)
        result = project.rework(chain_id, "001-login", "fix")

        assert isinstance(result.error, InvalidTransition)
        assert result.error.required == ["done", "in-review"]
        assert [t.id for t in project.tasks.list_tasks(chain_id)] == ["001-login"]

    def test_reason_required(self, project, chain_id, make_task):
        make_task(chain_id, "login", status="done")
        result = project.rework(chain_id, "001-login", "  ")
        assert isinstance(result.error, PreconditionFailed)

    def test_missing_task(self, project, chain_id):
        result = project.rework(chain_id, "001-ghost", "fix")
        assert result.error.kind == "not_found"
