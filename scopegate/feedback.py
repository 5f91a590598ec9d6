"""
Feedback items.

Questions, ideas and blockers raised against a task, chain or workflow.
Clarifications and blockers stop work: while one is pending or
acknowledged, handoff fails its blocking_feedback check and the workflow
won't advance.

Stored as <STATE_DIR>/feedback/FB-NNNN.json.
"""

import logging
from dataclasses import asdict, dataclass, fields

from scopegate.lib.config import ProjectConfig
from scopegate.lib.errors import InvalidTransition, NotFound
from scopegate.lib.locking import record_lock
from scopegate.lib.store import iter_records, read_record, write_record
from scopegate.tasks.models import now_iso

logger = logging.getLogger(__name__)

SCHEMA = "feedback"

FEEDBACK_TYPES = ["clarification", "question", "idea", "blocker", "review"]
BLOCKING_TYPES = frozenset({"clarification", "blocker"})
OPEN_STATUSES = frozenset({"pending", "acknowledged"})


@dataclass
class FeedbackItem:
    """A piece of feedback raised during work."""
    id: str
    type: str  # clarification, question, idea, blocker, review
    content: str
    created_by: str  # role or person
    status: str = "pending"  # pending, acknowledged, resolved, dismissed
    task_id: str | None = None
    chain_id: str | None = None
    workflow_id: str | None = None
    resolution: str | None = None
    created_at: str = ""
    updated_at: str = ""
    version: int = 0

    @property
    def is_blocking(self) -> bool:
        return self.type in BLOCKING_TYPES and self.status in OPEN_STATUSES

    @classmethod
    def from_dict(cls, data: dict) -> "FeedbackItem":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


class FeedbackStore:
    def __init__(self, config: ProjectConfig):
        self.config = config
        self.dir = config.feedback_dir

    def _path(self, feedback_id: str):
        return self.dir / f"{feedback_id}.json"

    def _save(self, item: FeedbackItem) -> FeedbackItem:
        return FeedbackItem.from_dict(write_record(self._path(item.id), asdict(item), SCHEMA, item.version))

    def generate_id(self) -> str:
        nums = []
        if self.dir.exists():
            for path in self.dir.glob("FB-*.json"):
                try:
                    nums.append(int(path.stem.split("-")[1]))
                except (ValueError, IndexError):
                    logger.warning(f"Malformed feedback ID ignored: {path.stem}")
        return f"FB-{max(nums, default=0) + 1:04d}"

    def create(
        self,
        type: str,
        content: str,
        created_by: str,
        task_id: str | None = None,
        chain_id: str | None = None,
        workflow_id: str | None = None,
    ) -> FeedbackItem:
        if type not in FEEDBACK_TYPES:
            raise ValueError(f"Invalid feedback type '{type}'; expected one of {FEEDBACK_TYPES}")
        if not content.strip():
            raise ValueError("Feedback content must not be empty")

        with record_lock(str(self.dir), self.config.record_lock_timeout):
            stamp = now_iso()
            item = FeedbackItem(
                id=self.generate_id(),
                type=type,
                content=content.strip(),
                created_by=created_by,
                task_id=task_id,
                chain_id=chain_id,
                workflow_id=workflow_id,
                created_at=stamp,
                updated_at=stamp,
            )
            item = self._save(item)

        logger.info(f"[FEEDBACK] {item.id}: {type} from {created_by}")
        return item

    def get(self, feedback_id: str) -> FeedbackItem:
        data = read_record(self._path(feedback_id), SCHEMA)
        if data is None:
            raise NotFound("feedback", feedback_id)
        return FeedbackItem.from_dict(data)

    def list_feedback(
        self,
        task_id: str | None = None,
        chain_id: str | None = None,
        workflow_id: str | None = None,
        status: str | None = None,
    ) -> list[FeedbackItem]:
        items = [FeedbackItem.from_dict(d) for d in iter_records(self.dir, SCHEMA, "FB-*.json")]
        if task_id is not None:
            items = [i for i in items if i.task_id == task_id]
        if chain_id is not None:
            items = [i for i in items if i.chain_id == chain_id]
        if workflow_id is not None:
            items = [i for i in items if i.workflow_id == workflow_id]
        if status is not None:
            items = [i for i in items if i.status == status]
        return items

    def unresolved_blocking(
        self,
        task_id: str | None = None,
        chain_id: str | None = None,
        workflow_id: str | None = None,
    ) -> list[FeedbackItem]:
        return [i for i in self.list_feedback(task_id, chain_id, workflow_id) if i.is_blocking]

    def _close(self, feedback_id: str, status: str, resolution: str | None) -> FeedbackItem:
        with record_lock(str(self._path(feedback_id)), self.config.record_lock_timeout):
            item = self.get(feedback_id)
            if item.status not in OPEN_STATUSES:
                raise InvalidTransition(feedback_id, item.status, status, sorted(OPEN_STATUSES))
            item.status = status
            item.resolution = resolution
            item.updated_at = now_iso()
            item = self._save(item)
        logger.info(f"[FEEDBACK] {feedback_id}: -> {status}")
        return item

    def acknowledge(self, feedback_id: str) -> FeedbackItem:
        with record_lock(str(self._path(feedback_id)), self.config.record_lock_timeout):
            item = self.get(feedback_id)
            if item.status != "pending":
                raise InvalidTransition(feedback_id, item.status, "acknowledged", ["pending"])
            item.status = "acknowledged"
            item.updated_at = now_iso()
            return self._save(item)

    def resolve(self, feedback_id: str, resolution: str) -> FeedbackItem:
        return self._close(feedback_id, "resolved", resolution)

    def dismiss(self, feedback_id: str, reason: str | None = None) -> FeedbackItem:
        return self._close(feedback_id, "dismissed", reason)
