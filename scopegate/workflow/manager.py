"""
Stage-gate workflow engine.

A workflow walks a list of stages. Exactly one stage is current; stages
before it are completed, stages after it are pending. advance() passes the
current stage's gate and enters the next stage; entering an auto stage
passes straight through it, so consecutive auto stages resolve in one call
(and an auto final stage completes the workflow).

Persistence:
  <STATE_DIR>/workflows/<WF-id>.json
  <STATE_DIR>/workflows/index.json   id allocation + summary listing
"""

import logging
from dataclasses import dataclass, field
from datetime import date

from scopegate.feedback import FeedbackStore
from scopegate.lib import events as ev
from scopegate.lib.config import ProjectConfig
from scopegate.lib.errors import GateUnsatisfied, NotFound, PreconditionFailed, ScopegateError
from scopegate.lib.locking import record_lock
from scopegate.lib.store import read_record, write_record
from scopegate.tasks.chain_manager import ChainManager
from scopegate.tasks.models import now_iso
from scopegate.workflow.gates import (
    SYSTEM_EVALUATED,
    GateCheck,
    GateContext,
    GateType,
    evaluate_gate,
    new_gate,
)
from scopegate.workflow.models import (
    MESSAGE_ROLES,
    TERMINAL_STATUSES,
    WORKFLOW_STATUSES,
    Stage,
    Workflow,
    WorkflowMessage,
)
from scopegate.workflow.templates import load_template

logger = logging.getLogger(__name__)

SCHEMA = "workflow"
INDEX_SCHEMA = "workflow_index"
SYSTEM = "system"


@dataclass
class WorkflowResult:
    success: bool
    workflow: Workflow | None = None
    events: list[dict] = field(default_factory=list)
    error: ScopegateError | None = None


class WorkflowManager:
    def __init__(
        self,
        config: ProjectConfig,
        chains: ChainManager | None = None,
        feedback: FeedbackStore | None = None,
        event_sink: ev.EventSink | None = None,
        gate_context: GateContext | None = None,
    ):
        self.config = config
        self.dir = config.workflows_dir
        self.index_path = self.dir / "index.json"
        self.feedback = feedback
        self.event_sink = event_sink
        self.gate_context = gate_context or GateContext(
            root=config.root,
            chains=chains,
            verify_timeout=config.verify_timeout,
        )

    # --- persistence -----------------------------------------------------

    def _path(self, workflow_id: str):
        return self.dir / f"{workflow_id}.json"

    def _load_index(self) -> dict:
        return read_record(self.index_path, INDEX_SCHEMA) or {
            "last_date": "",
            "last_sequence": 0,
            "workflows": {},
            "version": 0,
        }

    def _save_index(self, index: dict) -> None:
        write_record(self.index_path, index, INDEX_SCHEMA, index["version"])

    def _index_entry(self, workflow: Workflow) -> dict:
        return {
            "id": workflow.id,
            "request_id": workflow.request_id,
            "status": workflow.status,
            "template": workflow.template,
            "current_stage": workflow.current_stage,
            "updated_at": workflow.updated_at,
        }

    def _persist(self, workflow: Workflow) -> Workflow:
        """Write the workflow then refresh its index entry. Caller holds the lock."""
        workflow.updated_at = now_iso()
        written = write_record(self._path(workflow.id), workflow.to_dict(), SCHEMA, workflow.version)
        with record_lock(str(self.index_path), self.config.record_lock_timeout):
            index = self._load_index()
            index["workflows"][workflow.id] = self._index_entry(workflow)
            self._save_index(index)
        return Workflow.from_dict(written)

    def _allocate_id(self, today: date) -> str:
        with record_lock(str(self.index_path), self.config.record_lock_timeout):
            index = self._load_index()
            stamp = today.strftime("%Y%m%d")
            sequence = index["last_sequence"] + 1 if index["last_date"] == stamp else 1
            index["last_date"] = stamp
            index["last_sequence"] = sequence
            self._save_index(index)
        return f"WF-{stamp}-{sequence:03d}"

    # --- queries ---------------------------------------------------------

    def get(self, workflow_id: str) -> Workflow:
        data = read_record(self._path(workflow_id), SCHEMA)
        if data is None:
            raise NotFound("workflow", workflow_id)
        return Workflow.from_dict(data)

    def list_workflows(
        self,
        status: str | None = None,
        request_id: str | None = None,
        template: str | None = None,
    ) -> list[Workflow]:
        workflows = []
        for entry in self._load_index()["workflows"].values():
            if status and entry["status"] != status:
                continue
            if request_id and entry["request_id"] != request_id:
                continue
            if template and entry["template"] != template:
                continue
            try:
                workflows.append(self.get(entry["id"]))
            except NotFound:
                logger.warning(f"[WORKFLOW] Index lists {entry['id']} but its file is missing")
        return sorted(workflows, key=lambda w: w.id)

    # --- stage entry -----------------------------------------------------

    def _enter_stage(self, workflow: Workflow, index: int) -> None:
        stage = workflow.stages[index]
        workflow.current_stage = index
        stage.status = "active"
        stage.started_at = now_iso()

        gate_type = GateType(stage.gate.type)
        if gate_type == GateType.AUTO:
            stage.gate.mark_satisfied(SYSTEM)
        elif gate_type == GateType.HUMAN_APPROVAL:
            stage.status = "awaiting_gate"
            workflow.messages.append(WorkflowMessage(
                role=SYSTEM,
                content=stage.gate.prompt or f"Stage '{stage.name}' needs approval to continue",
                stage_index=index,
                metadata={"type": "gate_prompt", "gate": stage.gate.type},
            ))

    def _complete_stage(self, stage: Stage) -> None:
        stage.status = "completed"
        stage.completed_at = now_iso()

    def _record_check(self, workflow: Workflow, check: GateCheck) -> None:
        """Append verification command outcomes as system messages."""
        for result in check.results:
            workflow.messages.append(WorkflowMessage(
                role=SYSTEM,
                content=f"'{result.command}' passed" if result.success else result.describe_failure(),
                stage_index=workflow.current_stage,
                metadata={
                    "type": "verification_result",
                    "command": result.command,
                    "returncode": result.returncode,
                    "timed_out": result.timed_out,
                },
            ))

    def _require_active(self, workflow: Workflow) -> None:
        if workflow.status != "active":
            raise PreconditionFailed(
                f"Workflow {workflow.id} is {workflow.status}",
                expected="active",
                found=workflow.status,
            )

    def _require_no_blockers(self, workflow: Workflow) -> None:
        if self.feedback is None:
            return
        blockers = self.feedback.unresolved_blocking(workflow_id=workflow.id)
        if blockers:
            listing = ", ".join(f"{b.id} ({b.type})" for b in blockers)
            raise PreconditionFailed(
                f"Workflow {workflow.id} has unresolved blockers: {listing}",
                expected="no unresolved blocking feedback",
                found=f"{len(blockers)} blocking",
                items=[b.id for b in blockers],
            )

    def _pass_gate(self, workflow: Workflow) -> None:
        """Make sure the current gate holds, evaluating system gates if needed."""
        stage = workflow.stage
        if stage.gate.satisfied:
            return

        gate_type = GateType(stage.gate.type)
        if gate_type in SYSTEM_EVALUATED:
            check = evaluate_gate(stage, self.gate_context)
            self._record_check(workflow, check)
            if check.satisfied:
                stage.gate.mark_satisfied(SYSTEM)
                return
            raise GateUnsatisfied(workflow.id, workflow.current_stage, stage.gate.type, check.detail)

        raise GateUnsatisfied(
            workflow.id, workflow.current_stage, stage.gate.type,
            stage.gate.prompt or "waiting for human approval",
        )

    # --- operations ------------------------------------------------------

    def create(
        self,
        request_id: str,
        template: str = "standard",
        chain_ids: dict[str, str] | None = None,
        today: date | None = None,
    ) -> WorkflowResult:
        """
        Start a workflow from a template. Stage 0 is entered immediately.

        Args:
            request_id: Request the workflow drives
            template: Template name (project templates override built-ins)
            chain_ids: stage name -> chain id, for chain_complete gates
        """
        try:
            tpl = load_template(template, self.config.templates_dir)
        except ValueError as e:
            return WorkflowResult(success=False, error=PreconditionFailed(str(e), expected="known template"))

        chain_ids = chain_ids or {}
        stages = [
            Stage(
                name=raw["name"],
                type=raw["type"],
                gate=new_gate(raw["gate"]),
                chain_id=chain_ids.get(raw["name"], raw.get("chain_id")),
            )
            for raw in tpl["stages"]
        ]

        workflow = Workflow(
            id=self._allocate_id(today or date.today()),
            request_id=request_id,
            template=tpl["name"],
            stages=stages,
        )
        self._enter_stage(workflow, 0)

        with record_lock(str(self._path(workflow.id)), self.config.record_lock_timeout):
            workflow = self._persist(workflow)

        logger.info(f"[WORKFLOW] Created {workflow.id} ({workflow.template}) for {request_id}")
        event = ev.emit(self.event_sink, "workflow:created", "workflow", workflow.id,
                        request_id=request_id, template=workflow.template)
        return WorkflowResult(success=True, workflow=workflow, events=[event])

    def advance(self, workflow_id: str) -> WorkflowResult:
        """
        Pass the current gate and move to the next stage.

        Fails with GateUnsatisfied while the gate doesn't hold, and with
        PreconditionFailed while blocking feedback is unresolved. Nothing is
        persisted on failure; a failing verification names its command in
        the error.
        """
        passed = []
        try:
            with record_lock(str(self._path(workflow_id)), self.config.record_lock_timeout):
                workflow = self.get(workflow_id)
                self._require_active(workflow)

                while True:
                    self._require_no_blockers(workflow)
                    self._pass_gate(workflow)
                    self._complete_stage(workflow.stage)
                    passed.append(workflow.current_stage)

                    if workflow.is_last_stage:
                        workflow.status = "completed"
                        break
                    self._enter_stage(workflow, workflow.current_stage + 1)
                    if workflow.stage.gate.type != GateType.AUTO.value:
                        break

                workflow = self._persist(workflow)
        except ScopegateError as e:
            logger.info(f"[WORKFLOW] {workflow_id}: advance refused: {e}")
            return WorkflowResult(success=False, error=e)

        for index in passed:
            logger.info(f"[WORKFLOW] {workflow_id}: passed stage {index} ({workflow.stages[index].name})")

        events = [ev.emit(
            self.event_sink, "workflow:advanced", "workflow", workflow_id,
            passed_stages=passed, current_stage=workflow.current_stage,
        )]
        if workflow.status == "completed":
            logger.info(f"[WORKFLOW] {workflow_id}: completed")
            events.append(ev.emit(self.event_sink, "workflow:completed", "workflow", workflow_id,
                                  request_id=workflow.request_id))
        return WorkflowResult(success=True, workflow=workflow, events=events)

    def satisfy_gate(self, workflow_id: str, stage_index: int, satisfied_by: str) -> WorkflowResult:
        """
        Satisfy the gate of the current stage.

        human_approval gates are satisfied by the call itself. chain_complete
        and verification_pass gates are evaluated and only satisfied if
        their condition holds.
        """
        try:
            with record_lock(str(self._path(workflow_id)), self.config.record_lock_timeout):
                workflow = self.get(workflow_id)
                self._require_active(workflow)
                if stage_index != workflow.current_stage:
                    raise PreconditionFailed(
                        f"Gate satisfaction is only allowed for current stage {workflow.current_stage}",
                        expected=str(workflow.current_stage),
                        found=str(stage_index),
                    )

                stage = workflow.stage
                if not stage.gate.satisfied:
                    gate_type = GateType(stage.gate.type)
                    if gate_type in (GateType.CHAIN_COMPLETE, GateType.VERIFICATION_PASS):
                        check = evaluate_gate(stage, self.gate_context)
                        self._record_check(workflow, check)
                        if not check.satisfied:
                            raise GateUnsatisfied(workflow_id, stage_index, stage.gate.type, check.detail)
                    stage.gate.mark_satisfied(satisfied_by)

                workflow = self._persist(workflow)
        except ScopegateError as e:
            logger.info(f"[WORKFLOW] {workflow_id}: satisfy_gate refused: {e}")
            return WorkflowResult(success=False, error=e)

        logger.info(f"[WORKFLOW] {workflow_id}: stage {stage_index} gate satisfied by {satisfied_by}")
        event = ev.emit(self.event_sink, "workflow:gate_satisfied", "workflow", workflow_id,
                        stage_index=stage_index, satisfied_by=satisfied_by)
        return WorkflowResult(success=True, workflow=workflow, events=[event])

    def add_message(
        self,
        workflow_id: str,
        role: str,
        content: str,
        stage_index: int | None = None,
        metadata: dict | None = None,
    ) -> WorkflowResult:
        """Append a message to the workflow history (defaults to the current stage)."""
        try:
            if role not in MESSAGE_ROLES:
                raise PreconditionFailed(f"Unknown message role '{role}'",
                                         expected=" | ".join(MESSAGE_ROLES), found=role)
            with record_lock(str(self._path(workflow_id)), self.config.record_lock_timeout):
                workflow = self.get(workflow_id)
                index = workflow.current_stage if stage_index is None else stage_index
                if not 0 <= index < len(workflow.stages):
                    raise PreconditionFailed(
                        f"Stage {index} does not exist on workflow {workflow_id}",
                        expected=f"0..{len(workflow.stages) - 1}",
                        found=str(index),
                    )
                workflow.messages.append(WorkflowMessage(
                    role=role, content=content, stage_index=index, metadata=dict(metadata or {}),
                ))
                workflow = self._persist(workflow)
        except ScopegateError as e:
            return WorkflowResult(success=False, error=e)
        return WorkflowResult(success=True, workflow=workflow)

    def update_status(self, workflow_id: str, status: str) -> WorkflowResult:
        """Pause, resume, fail or cancel a workflow. Completion and discard have their own paths."""
        try:
            if status not in WORKFLOW_STATUSES or status in TERMINAL_STATUSES:
                allowed = [s for s in WORKFLOW_STATUSES if s not in TERMINAL_STATUSES]
                raise PreconditionFailed(
                    f"Cannot set workflow status to '{status}' directly",
                    expected=" | ".join(allowed),
                    found=status,
                )
            with record_lock(str(self._path(workflow_id)), self.config.record_lock_timeout):
                workflow = self.get(workflow_id)
                if workflow.status in TERMINAL_STATUSES:
                    raise PreconditionFailed(
                        f"Workflow {workflow_id} is {workflow.status} and can no longer change",
                        found=workflow.status,
                    )
                previous = workflow.status
                workflow.status = status
                workflow = self._persist(workflow)
        except ScopegateError as e:
            return WorkflowResult(success=False, error=e)

        logger.info(f"[WORKFLOW] {workflow_id}: {previous} -> {status}")
        return WorkflowResult(success=True, workflow=workflow)

    def discard(self, workflow_id: str, reason: str) -> WorkflowResult:
        """Abandon a workflow, recording why. Stages not yet started become skipped."""
        try:
            reason = (reason or "").strip()
            if not reason:
                raise PreconditionFailed("Discard reason is required", expected="non-empty reason", found="empty")
            with record_lock(str(self._path(workflow_id)), self.config.record_lock_timeout):
                workflow = self.get(workflow_id)
                if workflow.status in TERMINAL_STATUSES:
                    raise PreconditionFailed(
                        f"Workflow {workflow_id} is already {workflow.status}",
                        found=workflow.status,
                    )
                for stage in workflow.stages:
                    if stage.status == "pending":
                        stage.status = "skipped"
                workflow.messages.append(WorkflowMessage(
                    role=SYSTEM,
                    content=reason,
                    stage_index=workflow.current_stage,
                    metadata={"type": "discard_reason"},
                ))
                workflow.status = "discarded"
                workflow = self._persist(workflow)
        except ScopegateError as e:
            return WorkflowResult(success=False, error=e)

        logger.info(f"[WORKFLOW] {workflow_id}: discarded ({reason})")
        event = ev.emit(self.event_sink, "workflow:discarded", "workflow", workflow_id, reason=reason)
        return WorkflowResult(success=True, workflow=workflow, events=[event])
