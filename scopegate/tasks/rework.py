"""
Rework: a new task that fixes a finished (or in-review) one.

The original is never rewritten: it keeps its status and history and only
has its rework_count bumped. The new task, <original>-rework-<n>, starts in
todo and points back via rework_of.
"""

import logging
from dataclasses import dataclass

from scopegate.lib import events as ev
from scopegate.lib.errors import InvalidTransition, PreconditionFailed, ScopegateError
from scopegate.lib.locking import record_lock
from scopegate.tasks.models import Task, now_iso
from scopegate.tasks.task_manager import TaskManager

logger = logging.getLogger(__name__)

REWORKABLE_STATUSES = ("done", "in-review")


@dataclass
class ReworkResult:
    success: bool
    original: Task | None = None
    rework: Task | None = None
    event: dict | None = None
    error: ScopegateError | None = None


def rework_task_id(original_id: str, n: int) -> str:
    return f"{original_id}-rework-{n}"


def create_rework(
    tasks: TaskManager,
    chain_id: str,
    task_id: str,
    reason: str,
    event_sink: ev.EventSink | None = None,
) -> ReworkResult:
    """
    Create a rework task for `task_id`.

    Returns:
        ReworkResult with the updated original and the new rework task
    """
    try:
        if not reason or not reason.strip():
            raise PreconditionFailed(
                f"Rework of {chain_id}/{task_id} needs a reason",
                expected="non-empty reason",
                found="empty",
            )
        reason = reason.strip()

        with record_lock(tasks.lock_key(chain_id, task_id), tasks.config.record_lock_timeout):
            original = tasks.get_task(chain_id, task_id)
            if original.status not in REWORKABLE_STATUSES:
                raise InvalidTransition(original.ref, original.status, "rework", list(REWORKABLE_STATUSES))

            n = original.rework_count + 1
            rework = Task(
                id=rework_task_id(original.id, n),
                chain_id=chain_id,
                sequence=original.sequence,
                slug=f"{original.slug}-rework-{n}",
                title=f"{original.title} (Rework {n})",
                status="todo",
                type=original.type,
                description=original.description,
                file_scope=list(original.file_scope),
                acceptance=list(original.acceptance),
                rework_of=original.id,
                rework_reason=reason,
            )
            rework = tasks.save(rework)

            original.rework_count = n
            original.updated_at = now_iso()
            try:
                original = tasks.save(original)
            except ScopegateError:
                tasks.task_path(chain_id, rework.id).unlink(missing_ok=True)
                raise
    except ScopegateError as e:
        logger.info(f"[TASK] {chain_id}/{task_id}: rework refused: {e}")
        return ReworkResult(success=False, error=e)

    logger.info(f"[TASK] {original.ref}: rework {rework.id} created")
    event = ev.emit(
        event_sink,
        "task:rework",
        "task",
        rework.id,
        chain_id=chain_id,
        rework_of=original.id,
        reason=reason,
        rework_count=original.rework_count,
    )
    return ReworkResult(success=True, original=original, rework=rework, event=event)
