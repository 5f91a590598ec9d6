"""Workflow record types."""

import uuid
from dataclasses import asdict, dataclass, field

from scopegate.tasks.models import now_iso

STAGE_STATUSES = ["pending", "active", "awaiting_gate", "completed", "skipped"]
WORKFLOW_STATUSES = ["active", "paused", "completed", "failed", "cancelled", "discarded"]
TERMINAL_STATUSES = frozenset({"completed", "discarded"})
MESSAGE_ROLES = ["human", "control", "impl", "system"]


@dataclass
class Gate:
    type: str  # auto, human_approval, chain_complete, verification_pass
    satisfied: bool = False
    satisfied_at: str | None = None
    satisfied_by: str | None = None
    prompt: str | None = None  # human_approval
    chain_id: str | None = None  # chain_complete
    commands: list[str] = field(default_factory=list)  # verification_pass

    def mark_satisfied(self, by: str) -> None:
        self.satisfied = True
        self.satisfied_by = by
        self.satisfied_at = now_iso()


@dataclass
class Stage:
    name: str
    type: str
    gate: Gate
    status: str = "pending"
    chain_id: str | None = None
    started_at: str | None = None
    completed_at: str | None = None

    @property
    def linked_chain(self) -> str | None:
        return self.gate.chain_id or self.chain_id

    @classmethod
    def from_dict(cls, data: dict) -> "Stage":
        data = dict(data)
        data["gate"] = Gate(**data["gate"])
        return cls(**data)


@dataclass
class WorkflowMessage:
    role: str  # human, control, impl, system
    content: str
    stage_index: int
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    timestamp: str = field(default_factory=now_iso)
    metadata: dict = field(default_factory=dict)


@dataclass
class Workflow:
    id: str  # WF-YYYYMMDD-NNN
    request_id: str
    template: str
    stages: list[Stage]
    current_stage: int = 0
    status: str = "active"
    messages: list[WorkflowMessage] = field(default_factory=list)
    created_at: str = field(default_factory=now_iso)
    updated_at: str = field(default_factory=now_iso)
    version: int = 0

    @property
    def stage(self) -> Stage:
        return self.stages[self.current_stage]

    @property
    def is_last_stage(self) -> bool:
        return self.current_stage == len(self.stages) - 1

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "Workflow":
        data = dict(data)
        data["stages"] = [Stage.from_dict(s) for s in data["stages"]]
        data["messages"] = [WorkflowMessage(**m) for m in data.get("messages", [])]
        return cls(**data)
