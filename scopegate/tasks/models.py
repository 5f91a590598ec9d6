"""Record types for tasks, chains and requests."""

from dataclasses import asdict, dataclass, field, fields
from datetime import datetime

TASK_STATUSES = ["backlog", "todo", "in-progress", "in-review", "done", "blocked"]
TASK_TYPES = ["impl", "control"]
CHAIN_TYPES = ["design", "implementation"]
REQUEST_KINDS = ["CR", "FR"]
REQUEST_STATUSES = ["backlog", "todo", "doing", "done"]

REVIEW_APPROVED = "approved"
REVIEW_CHANGES_REQUESTED = "changes_requested"


def now_iso() -> str:
    return datetime.now().isoformat()


class _Record:
    """to_dict/from_dict for the dataclasses below (unknown keys ignored)."""

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict):
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


@dataclass
class Task(_Record):
    """Smallest unit of trackable work."""
    id: str  # NNN-slug, or <original>-rework-<n>
    chain_id: str
    sequence: int
    slug: str
    title: str
    status: str = "backlog"
    type: str = "impl"
    description: str = ""
    file_scope: list[str] = field(default_factory=list)
    acceptance: list[str] = field(default_factory=list)
    notes: str = ""
    rework_of: str | None = None
    rework_reason: str | None = None
    rework_count: int = 0
    history: list[dict] = field(default_factory=list)  # append-only transition log
    created_at: str = field(default_factory=now_iso)
    updated_at: str = field(default_factory=now_iso)
    version: int = 0

    @property
    def ref(self) -> str:
        return f"{self.chain_id}/{self.id}"


@dataclass
class Chain(_Record):
    """Ordered group of tasks implementing (part of) one request."""
    id: str  # CHAIN-NNN-slug
    sequence: int
    slug: str
    request_id: str
    title: str
    type: str = "implementation"
    description: str = ""
    depends_on: str | None = None
    skip_design_justification: str | None = None
    file_scope: list[str] = field(default_factory=list)
    review_status: str | None = None
    review_reason: str | None = None
    created_at: str = field(default_factory=now_iso)
    updated_at: str = field(default_factory=now_iso)
    version: int = 0


@dataclass
class Request(_Record):
    """Change request (CR) or fix request (FR)."""
    id: str  # CR-YYYYMMDD-NNN / FR-YYYYMMDD-NNN
    kind: str
    title: str
    status: str = "backlog"
    review_status: str | None = None
    review_reason: str | None = None
    created_at: str = field(default_factory=now_iso)
    updated_at: str = field(default_factory=now_iso)
    version: int = 0
