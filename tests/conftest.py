"""Shared fixtures: a throwaway project with an in-memory event sink."""

import pytest

from scopegate.lib.events import MemoryEventSink
from scopegate.project import open_project


@pytest.fixture
def sink():
    return MemoryEventSink()


@pytest.fixture
def project(tmp_path, sink):
    return open_project(tmp_path, event_sink=sink)


@pytest.fixture
def request_id(project):
    return project.requests.create_request("CR", "Add login").id


@pytest.fixture
def chain_id(project, request_id):
    """A design chain (no dependency needed)."""
    return project.chains.create_chain(request_id, "auth", "Auth design", type="design").id


STEPS = {
    "todo": ["schedule"],
    "in-progress": ["schedule", "start"],
    "in-review": ["schedule", "start", "submit"],
    "done": ["schedule", "start", "submit", "approve"],
}


def drive(project, chain_id, task_id, status):
    """Walk a backlog task forward to `status` through the normal triggers."""
    for trigger in STEPS.get(status, []):
        result = project.tasks.apply_trigger(chain_id, task_id, trigger)
        assert result.success, result.error
    return project.tasks.get_task(chain_id, task_id)


@pytest.fixture
def make_task(project):
    def _make(chain_id, slug, status="backlog", **kwargs):
        task = project.tasks.create_task(chain_id, slug, slug.replace("-", " ").title(), **kwargs)
        return drive(project, chain_id, task.id, status)
    return _make
