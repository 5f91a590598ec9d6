"""
Project wiring.

    project = open_project(Path("."))
    project.tasks.start("CHAIN-001-auth", "001-login-form")

Everything shares one ProjectConfig and one event sink (events.jsonl
unless the caller passes another).
"""

from dataclasses import dataclass
from pathlib import Path

from scopegate.feedback import FeedbackStore
from scopegate.governance.rules import Ruleset, load_ruleset
from scopegate.handoff.validation import HandoffValidator
from scopegate.lib.config import ProjectConfig, load_project_config
from scopegate.lib.events import EventSink, JsonlEventSink
from scopegate.locks.reservations import LockManager
from scopegate.tasks.chain_manager import ChainManager
from scopegate.tasks.requests import RequestManager
from scopegate.tasks.review import ReviewService
from scopegate.tasks.rework import ReworkResult, create_rework
from scopegate.tasks.task_manager import TaskManager
from scopegate.workflow.manager import WorkflowManager


@dataclass
class Project:
    config: ProjectConfig
    events: EventSink
    tasks: TaskManager
    chains: ChainManager
    requests: RequestManager
    reviews: ReviewService
    locks: LockManager
    feedback: FeedbackStore
    workflows: WorkflowManager
    handoff: HandoffValidator

    def governance(self) -> Ruleset:
        """Load the ruleset fresh (the file may change between calls)."""
        return load_ruleset(self.config.governance_file)

    def rework(self, chain_id: str, task_id: str, reason: str) -> ReworkResult:
        return create_rework(self.tasks, chain_id, task_id, reason, event_sink=self.events)


def open_project(root: Path, event_sink: EventSink | None = None) -> Project:
    """Load scopegate.env from `root` and build every manager on top of it."""
    config = load_project_config(root)
    events = event_sink if event_sink is not None else JsonlEventSink(config.events_file)

    tasks = TaskManager(config, events)
    requests = RequestManager(config, events)
    chains = ChainManager(config, tasks, requests, events)
    locks = LockManager(config, events)
    feedback = FeedbackStore(config)

    return Project(
        config=config,
        events=events,
        tasks=tasks,
        chains=chains,
        requests=requests,
        reviews=ReviewService(tasks, chains, requests, lock_manager=locks, event_sink=events),
        locks=locks,
        feedback=feedback,
        workflows=WorkflowManager(config, chains=chains, feedback=feedback, event_sink=events),
        handoff=HandoffValidator(config, tasks, feedback),
    )
