"""
Review decisions for tasks, chains and requests.

Each level can only be reviewed once everything below it is finished:

    task     in-review                     -> approve / request changes
    chain    every task done               -> approve / request changes
    request  every chain approved          -> approve / request changes

Requesting changes always needs a non-empty reason. A review that fails
its precondition changes nothing and says what is still outstanding.
"""

import logging
from dataclasses import dataclass, field

from scopegate.lib import events as ev
from scopegate.lib.errors import PreconditionFailed, ScopegateError
from scopegate.lib.locking import record_lock
from scopegate.locks.reservations import LockManager
from scopegate.tasks.chain_manager import ChainManager
from scopegate.tasks.models import REVIEW_APPROVED, REVIEW_CHANGES_REQUESTED, now_iso
from scopegate.tasks.requests import RequestManager
from scopegate.tasks.task_manager import TaskManager, TransitionResult

logger = logging.getLogger(__name__)


@dataclass
class ReviewResult:
    """Result of a chain or request review."""
    success: bool
    entity_id: str
    review_status: str | None = None
    event: dict | None = None
    pending: list[str] = field(default_factory=list)
    error: ScopegateError | None = None


def _require_reason(entity_id: str, reason: str | None) -> str:
    if not reason or not reason.strip():
        raise PreconditionFailed(
            f"Requesting changes on {entity_id} needs a reason",
            expected="non-empty reason",
            found="empty",
        )
    return reason.strip()


class ReviewService:
    def __init__(
        self,
        tasks: TaskManager,
        chains: ChainManager,
        requests: RequestManager,
        lock_manager: LockManager | None = None,
        event_sink: ev.EventSink | None = None,
    ):
        self.tasks = tasks
        self.chains = chains
        self.requests = requests
        self.lock_manager = lock_manager
        self.event_sink = event_sink

    # --- tasks -----------------------------------------------------------

    def approve_task(self, chain_id: str, task_id: str, reviewer: str | None = None) -> TransitionResult:
        """in-review -> done."""
        return self.tasks.apply_trigger(chain_id, task_id, "approve", reviewer=reviewer)

    def request_task_changes(
        self, chain_id: str, task_id: str, reason: str, reviewer: str | None = None
    ) -> TransitionResult:
        """in-review -> in-progress, with the reason recorded in the task history."""
        try:
            reason = _require_reason(f"{chain_id}/{task_id}", reason)
        except PreconditionFailed as e:
            return TransitionResult(success=False, trigger="request_changes", error=e)
        return self.tasks.apply_trigger(chain_id, task_id, "request_changes", reason=reason, reviewer=reviewer)

    # --- chains ----------------------------------------------------------

    def _check_chain_complete(self, chain_id: str) -> list[str]:
        """Raise PreconditionFailed unless the chain has tasks and all are done."""
        tasks = self.tasks.list_tasks(chain_id)
        if not tasks:
            raise PreconditionFailed(
                f"Chain {chain_id} has no tasks to review",
                expected="at least one task",
                found="0 tasks",
            )
        pending = [t.id for t in tasks if t.status != "done"]
        if pending:
            details = ", ".join(f"{t.id} [{t.status}]" for t in tasks if t.status != "done")
            raise PreconditionFailed(
                f"All tasks in {chain_id} must be done before review. Pending: {details}",
                expected="all tasks done",
                found=f"{len(pending)} not done",
                items=pending,
            )
        return [t.id for t in tasks]

    def _review_chain(self, chain_id: str, status: str, reason: str | None, reviewer: str | None) -> ReviewResult:
        try:
            with record_lock(self.chains.lock_key(chain_id), self.chains.config.record_lock_timeout):
                chain = self.chains.get_chain(chain_id)
                if status == REVIEW_CHANGES_REQUESTED:
                    reason = _require_reason(chain_id, reason)
                self._check_chain_complete(chain_id)
                chain.review_status = status
                chain.review_reason = reason
                chain.updated_at = now_iso()
                chain = self.chains.save(chain)
        except PreconditionFailed as e:
            return ReviewResult(success=False, entity_id=chain_id, pending=e.items, error=e)
        except ScopegateError as e:
            return ReviewResult(success=False, entity_id=chain_id, error=e)

        logger.info(f"[CHAIN] {chain_id}: review -> {status}")

        if status == REVIEW_APPROVED and self.lock_manager is not None:
            self.lock_manager.release(chain_id)

        event = ev.emit(
            self.event_sink,
            f"chain:{status}",
            "chain",
            chain_id,
            chain_id=chain_id,
            request_id=chain.request_id,
            reason=reason,
            reviewer=reviewer,
        )
        return ReviewResult(success=True, entity_id=chain_id, review_status=status, event=event)

    def approve_chain(self, chain_id: str, reviewer: str | None = None) -> ReviewResult:
        """Approve a chain whose tasks are all done; releases its scope reservation."""
        return self._review_chain(chain_id, REVIEW_APPROVED, None, reviewer)

    def request_chain_changes(self, chain_id: str, reason: str, reviewer: str | None = None) -> ReviewResult:
        return self._review_chain(chain_id, REVIEW_CHANGES_REQUESTED, reason, reviewer)

    # --- requests --------------------------------------------------------

    def _check_chains_approved(self, request_id: str) -> None:
        chains = self.chains.list_chains(request_id)
        if not chains:
            raise PreconditionFailed(
                f"No chains found for request {request_id}",
                expected="at least one chain",
                found="0 chains",
            )
        pending = [c for c in chains if c.review_status != REVIEW_APPROVED]
        if pending:
            details = ", ".join(f"{c.id} [{c.review_status or 'unreviewed'}]" for c in pending)
            raise PreconditionFailed(
                f"All chains must be approved before request review. Pending: {details}",
                expected="all chains approved",
                found=f"{len(pending)} not approved",
                items=[c.id for c in pending],
            )

    def _review_request(self, request_id: str, status: str, reason: str | None, reviewer: str | None) -> ReviewResult:
        try:
            with record_lock(str(self.requests.request_path(request_id)), self.requests.config.record_lock_timeout):
                request = self.requests.get_request(request_id)
                if status == REVIEW_CHANGES_REQUESTED:
                    reason = _require_reason(request_id, reason)
                self._check_chains_approved(request_id)
                request.review_status = status
                request.review_reason = reason
                if status == REVIEW_APPROVED:
                    request.status = "done"
                request.updated_at = now_iso()
                self.requests.save(request)
        except PreconditionFailed as e:
            return ReviewResult(success=False, entity_id=request_id, pending=e.items, error=e)
        except ScopegateError as e:
            return ReviewResult(success=False, entity_id=request_id, error=e)

        logger.info(f"[REQUEST] {request_id}: review -> {status}")
        event = ev.emit(
            self.event_sink,
            f"request:{status}",
            "request",
            request_id,
            request_id=request_id,
            reason=reason,
            reviewer=reviewer,
        )
        return ReviewResult(success=True, entity_id=request_id, review_status=status, event=event)

    def approve_request(self, request_id: str, reviewer: str | None = None) -> ReviewResult:
        """Approve a request whose chains are all approved; closes it (status done)."""
        return self._review_request(request_id, REVIEW_APPROVED, None, reviewer)

    def request_request_changes(self, request_id: str, reason: str, reviewer: str | None = None) -> ReviewResult:
        return self._review_request(request_id, REVIEW_CHANGES_REQUESTED, reason, reviewer)
