"""
Task CRUD and lifecycle transitions.

Tasks are stored one JSON file each in:
  <STATE_DIR>/tasks/<chain_id>/<task_id>.json

Every read-modify-write happens under record_lock() for the task file and
is written with the version it was read at, so a concurrent change from
another process surfaces as StaleRecord instead of being overwritten.
"""

import logging
from dataclasses import dataclass
from pathlib import Path

from scopegate.lib import events as ev
from scopegate.lib.config import ProjectConfig
from scopegate.lib.constants import SLUG_PATTERN
from scopegate.lib.errors import InvalidTransition, NotFound, PreconditionFailed, ScopegateError
from scopegate.lib.locking import record_lock
from scopegate.lib.patterns import validate_pattern
from scopegate.lib.store import iter_records, read_record, write_record
from scopegate.tasks.fsm import (
    EVENT_NAMES,
    REVIEW_TRIGGERS,
    TRIGGER_FOR,
    TaskFSM,
    sources_for_dest,
)
from scopegate.tasks.models import TASK_STATUSES, TASK_TYPES, Task, now_iso

logger = logging.getLogger(__name__)

SCHEMA = "task"

# Fields update_task() may change; status and rework linkage have their own operations
EDITABLE_FIELDS = frozenset({"title", "description", "file_scope", "acceptance", "notes", "type"})


@dataclass
class TransitionResult:
    """Result of a task status change."""
    success: bool
    task: Task | None = None
    from_status: str | None = None
    to_status: str | None = None
    trigger: str | None = None
    event: dict | None = None
    error: ScopegateError | None = None


class TaskManager:
    def __init__(self, config: ProjectConfig, event_sink: ev.EventSink | None = None):
        self.config = config
        self.event_sink = event_sink

    # --- paths / persistence ---------------------------------------------

    def chain_tasks_dir(self, chain_id: str) -> Path:
        return self.config.tasks_dir / chain_id

    def task_path(self, chain_id: str, task_id: str) -> Path:
        return self.chain_tasks_dir(chain_id) / f"{task_id}.json"

    def lock_key(self, chain_id: str, task_id: str) -> str:
        return str(self.task_path(chain_id, task_id))

    def save(self, task: Task) -> Task:
        """Write `task` if it is still at the version it was read at.

        Caller holds record_lock for the task. Raises StaleRecord.
        """
        data = task.to_dict()
        written = write_record(self.task_path(task.chain_id, task.id), data, SCHEMA, task.version)
        return Task.from_dict(written)

    # --- queries ---------------------------------------------------------

    def get_task(self, chain_id: str, task_id: str) -> Task:
        """Load a task. Raises NotFound."""
        data = read_record(self.task_path(chain_id, task_id), SCHEMA)
        if data is None:
            raise NotFound("task", f"{chain_id}/{task_id}")
        return Task.from_dict(data)

    def find_task(self, chain_id: str, task_id: str) -> Task | None:
        try:
            return self.get_task(chain_id, task_id)
        except NotFound:
            return None

    def list_tasks(self, chain_id: str, status: str | None = None) -> list[Task]:
        """Tasks of a chain ordered by sequence, optionally filtered by status."""
        tasks = [Task.from_dict(d) for d in iter_records(self.chain_tasks_dir(chain_id), SCHEMA)]
        if status is not None:
            tasks = [t for t in tasks if t.status == status]
        return sorted(tasks, key=lambda t: (t.sequence, t.id))

    def next_task(self, chain_id: str) -> Task | None:
        """The task to work on next: first in-progress, else first todo."""
        tasks = self.list_tasks(chain_id)
        for status in ("in-progress", "todo"):
            for task in tasks:
                if task.status == status:
                    return task
        return None

    def next_sequence(self, chain_id: str) -> int:
        tasks = self.list_tasks(chain_id)
        return max((t.sequence for t in tasks), default=0) + 1

    # --- creation / edits ------------------------------------------------

    def create_task(
        self,
        chain_id: str,
        slug: str,
        title: str,
        type: str = "impl",
        description: str = "",
        file_scope: list[str] | None = None,
        acceptance: list[str] | None = None,
        status: str = "backlog",
    ) -> Task:
        """
        Create a task in an existing chain.

        Raises:
            NotFound: chain doesn't exist
            ValueError: bad slug, type, status or scope pattern
        """
        if not (self.config.chains_dir / f"{chain_id}.json").exists():
            raise NotFound("chain", chain_id)
        if not SLUG_PATTERN.match(slug):
            raise ValueError(f"Invalid slug '{slug}': use lowercase letters, digits and hyphens")
        if type not in TASK_TYPES:
            raise ValueError(f"Invalid task type '{type}'; expected one of {TASK_TYPES}")
        if status not in ("backlog", "todo"):
            raise ValueError(f"New tasks start in backlog or todo, not '{status}'")
        scope = [validate_pattern(p) for p in (file_scope or [])]

        with record_lock(str(self.chain_tasks_dir(chain_id)), self.config.record_lock_timeout):
            sequence = self.next_sequence(chain_id)
            task = Task(
                id=f"{sequence:03d}-{slug}",
                chain_id=chain_id,
                sequence=sequence,
                slug=slug,
                title=title,
                status=status,
                type=type,
                description=description,
                file_scope=scope,
                acceptance=list(acceptance or []),
            )
            task = self.save(task)

        logger.info(f"[TASK] Created {task.ref} ({task.status})")
        return task

    def update_task(self, chain_id: str, task_id: str, **changes) -> Task:
        """
        Change content fields of a task.

        Raises:
            NotFound: task doesn't exist
            ValueError: field isn't editable here (status has its own operations)
        """
        bad = sorted(set(changes) - EDITABLE_FIELDS)
        if bad:
            raise ValueError(f"Cannot update {bad} with update_task; editable: {sorted(EDITABLE_FIELDS)}")
        if "type" in changes and changes["type"] not in TASK_TYPES:
            raise ValueError(f"Invalid task type '{changes['type']}'; expected one of {TASK_TYPES}")
        if "file_scope" in changes:
            changes["file_scope"] = [validate_pattern(p) for p in changes["file_scope"]]

        with record_lock(self.lock_key(chain_id, task_id), self.config.record_lock_timeout):
            task = self.get_task(chain_id, task_id)
            for name, value in changes.items():
                setattr(task, name, value)
            task.updated_at = now_iso()
            return self.save(task)

    # --- transitions -----------------------------------------------------

    def apply_trigger(
        self,
        chain_id: str,
        task_id: str,
        trigger: str,
        reason: str | None = None,
        **event_metadata,
    ) -> TransitionResult:
        """Fire `trigger` on a task, persist, emit task:<event>.

        Review triggers are accepted here; scopegate.tasks.review is the
        only caller that passes them.
        """
        try:
            with record_lock(self.lock_key(chain_id, task_id), self.config.record_lock_timeout):
                task = self.get_task(chain_id, task_id)
                from_status = task.status
                TaskFSM(task).fire(trigger, reason=reason)
                task = self.save(task)
        except ScopegateError as e:
            logger.info(f"[TASK] {chain_id}/{task_id}: {trigger} refused: {e}")
            return TransitionResult(success=False, trigger=trigger, error=e)

        event = ev.emit(
            self.event_sink,
            f"task:{EVENT_NAMES[trigger]}",
            "task",
            task.id,
            chain_id=chain_id,
            from_status=from_status,
            to_status=task.status,
            reason=reason,
            **event_metadata,
        )
        return TransitionResult(
            success=True,
            task=task,
            from_status=from_status,
            to_status=task.status,
            trigger=trigger,
            event=event,
        )

    def transition_task(self, chain_id: str, task_id: str, target: str, reason: str | None = None) -> TransitionResult:
        """
        Move a task to `target` status via whichever trigger connects them.

        in-review -> done and in-review -> in-progress are reviews and must go
        through approve_task / request_task_changes.
        """
        if target not in TASK_STATUSES:
            return TransitionResult(
                success=False,
                error=PreconditionFailed(
                    f"Unknown task status '{target}'",
                    expected=" | ".join(TASK_STATUSES),
                    found=target,
                ),
            )

        try:
            task = self.get_task(chain_id, task_id)
        except NotFound as e:
            return TransitionResult(success=False, error=e)

        trigger = TRIGGER_FOR.get((task.status, target))
        if trigger is None:
            return TransitionResult(
                success=False,
                from_status=task.status,
                error=InvalidTransition(task.ref, task.status, target, sources_for_dest(target)),
            )
        if trigger in REVIEW_TRIGGERS:
            op = "approve_task" if trigger == "approve" else "request_task_changes"
            return TransitionResult(
                success=False,
                from_status=task.status,
                trigger=trigger,
                error=PreconditionFailed(
                    f"{task.ref}: {task.status} -> {target} is a review decision; use {op}",
                    expected=op,
                    found="transition_task",
                ),
            )
        return self.apply_trigger(chain_id, task_id, trigger, reason=reason)

    def schedule(self, chain_id: str, task_id: str) -> TransitionResult:
        return self.apply_trigger(chain_id, task_id, "schedule")

    def start(self, chain_id: str, task_id: str) -> TransitionResult:
        return self.apply_trigger(chain_id, task_id, "start")

    def submit(self, chain_id: str, task_id: str) -> TransitionResult:
        return self.apply_trigger(chain_id, task_id, "submit")

    def return_to_todo(self, chain_id: str, task_id: str, reason: str | None = None) -> TransitionResult:
        return self.apply_trigger(chain_id, task_id, "return_to_todo", reason=reason)

    def block(self, chain_id: str, task_id: str, reason: str | None = None) -> TransitionResult:
        return self.apply_trigger(chain_id, task_id, "block", reason=reason)

    def unblock(self, chain_id: str, task_id: str) -> TransitionResult:
        return self.apply_trigger(chain_id, task_id, "unblock")

    def shelve(self, chain_id: str, task_id: str) -> TransitionResult:
        return self.apply_trigger(chain_id, task_id, "shelve")
