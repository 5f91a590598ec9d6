"""
Handoff validation.

Before a task changes hands, run a checklist:

    task_format        task record is readable and schema-valid
    uncommitted_work   no unsaved changes inside the task's scope
    handoff_notes      "what was done" and "what needs to happen" are filled in
    role_match         the receiving role fits the task
    blocking_feedback  no open clarification/blocker on the task

Which checks run and which are required comes from scopegate.handoff.yaml.
A failing required check fails the handoff; a failing optional one is a
warning. Every failure comes with a suggestion for fixing it.
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from scopegate.feedback import FeedbackStore
from scopegate.handoff.context import HANDOFF_ROLES, HandoffContext, render_notes
from scopegate.lib.config import ProjectConfig
from scopegate.lib.gitstatus import changed_files as git_changed_files, is_work_tree
from scopegate.lib.patterns import match_any
from scopegate.lib.validate import ValidationError, iter_errors, validate
from scopegate.tasks.models import Task
from scopegate.tasks.task_manager import TaskManager

logger = logging.getLogger(__name__)

HANDOFF_CHECKS = (
    "task_format",
    "uncommitted_work",
    "handoff_notes",
    "role_match",
    "blocking_feedback",
)


class HandoffConfigError(ValueError):
    pass


@dataclass
class HandoffConfig:
    """Handoff checks configuration from scopegate.handoff.yaml"""
    default_checks: list[str] = field(default_factory=lambda: list(HANDOFF_CHECKS))
    required_checks: list[str] = field(default_factory=lambda: list(HANDOFF_CHECKS))
    task_type_overrides: dict[str, list[str]] = field(default_factory=dict)
    task_scope_globs: list[str] = field(default_factory=list)  # used when the task declares no scope

    def checks_for(self, task_type: str | None) -> list[str]:
        if task_type and task_type in self.task_type_overrides:
            return list(self.task_type_overrides[task_type])
        return list(self.default_checks)


def load_handoff_config(path: Path) -> HandoffConfig:
    """Load handoff YAML. Missing file means every check, all required.

    Raises:
        HandoffConfigError: invalid YAML or unknown check names
    """
    if not path.exists():
        return HandoffConfig()

    try:
        data = yaml.safe_load(path.read_text()) or {}
        validate(data, "handoff")
    except yaml.YAMLError as e:
        raise HandoffConfigError(f"Invalid YAML in {path}: {e}") from None
    except ValidationError as e:
        raise HandoffConfigError(f"{path}: {e}") from None

    config = HandoffConfig()
    if "default_checks" in data:
        config.default_checks = list(data["default_checks"])
    if "required_checks" in data:
        config.required_checks = list(data["required_checks"])
    config.task_type_overrides = {k: list(v) for k, v in (data.get("task_type_overrides") or {}).items()}
    config.task_scope_globs = list(data.get("task_scope_globs") or [])
    return config


@dataclass
class CheckResult:
    check: str
    success: bool
    required: bool = True
    feedback: list[str] = field(default_factory=list)


@dataclass
class Suggestion:
    type: str  # invalid_task, uncommitted_files, missing_notes, role_mismatch, blocking_items
    message: str
    template: str | None = None


@dataclass
class HandoffReport:
    passed: bool
    checks: list[CheckResult] = field(default_factory=list)
    failed_checks: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    suggestions: list[Suggestion] = field(default_factory=list)
    context: HandoffContext | None = None


class HandoffValidator:
    def __init__(
        self,
        config: ProjectConfig,
        tasks: TaskManager,
        feedback: FeedbackStore | None = None,
    ):
        self.config = config
        self.tasks = tasks
        self.feedback = feedback

    # --- individual checks ----------------------------------------------
    # Each returns (CheckResult, Suggestion | None); `required` is filled in by the caller.

    def _task_format(self, ctx: HandoffContext, task: Task | None, **_) -> tuple[CheckResult, Suggestion | None]:
        path = self.tasks.task_path(ctx.chain_id, ctx.task_id)
        if not path.exists():
            problems = [f"Task file not found: {path}"]
        else:
            try:
                problems = iter_errors(json.loads(path.read_text()), "task")
            except json.JSONDecodeError as e:
                problems = [f"Invalid JSON in {path}: {e}"]

        if not problems:
            return CheckResult("task_format", True), None
        return (
            CheckResult("task_format", False, feedback=problems),
            Suggestion("invalid_task", f"Fix the task record {path}: " + "; ".join(problems)),
        )

    def _uncommitted_work(
        self,
        ctx: HandoffContext,
        task: Task | None,
        handoff_config: HandoffConfig,
        changed_files: list[str] | None,
    ) -> tuple[CheckResult, Suggestion | None]:
        scope = (task.file_scope if task else []) or handoff_config.task_scope_globs
        if not scope:
            return CheckResult("uncommitted_work", True, feedback=["Task declares no scope"]), None

        if changed_files is None:
            if not is_work_tree(self.config.root):
                return CheckResult("uncommitted_work", True, feedback=["Not a git work tree"]), None
            changed_files = git_changed_files(self.config.root)

        in_scope = [f for f in changed_files if match_any(scope, f)]
        if not in_scope:
            return CheckResult("uncommitted_work", True), None

        listing = ", ".join(in_scope)
        return (
            CheckResult("uncommitted_work", False, feedback=[f"Uncommitted changes in task scope: {listing}"]),
            Suggestion(
                "uncommitted_files",
                f"Commit or stash changes before handing off: {listing}",
                template="git add " + " ".join(in_scope) + " && git commit",
            ),
        )

    def _handoff_notes(self, ctx: HandoffContext, task: Task | None, **_) -> tuple[CheckResult, Suggestion | None]:
        missing = []
        if not any(i.strip() for i in ctx.what_done):
            missing.append("what was done")
        if not any(i.strip() for i in ctx.what_next):
            missing.append("what needs to happen")
        if not missing:
            return CheckResult("handoff_notes", True), None

        return (
            CheckResult("handoff_notes", False, feedback=[f"Handoff notes missing: {', '.join(missing)}"]),
            Suggestion(
                "missing_notes",
                f"Fill in the handoff notes ({', '.join(missing)})",
                template=render_notes(ctx),
            ),
        )

    def _role_match(self, ctx: HandoffContext, task: Task | None, **_) -> tuple[CheckResult, Suggestion | None]:
        problems = []
        if ctx.to_role not in HANDOFF_ROLES:
            problems.append(f"Unknown receiving role '{ctx.to_role}'; expected one of {list(HANDOFF_ROLES)}")
        elif task is not None:
            if task.type == "control" and ctx.to_role == "impl":
                problems.append(f"control task {task.id} handed to impl; expected control or review")
            elif task.type == "impl" and ctx.to_role == "control" and task.status not in ("in-review", "done"):
                problems.append(
                    f"impl task {task.id} handed to control while {task.status}; "
                    f"expected done or in-review"
                )

        if not problems:
            return CheckResult("role_match", True), None
        return (
            CheckResult("role_match", False, feedback=problems),
            Suggestion("role_mismatch", problems[0]),
        )

    def _blocking_feedback(self, ctx: HandoffContext, task: Task | None, **_) -> tuple[CheckResult, Suggestion | None]:
        if self.feedback is None:
            return CheckResult("blocking_feedback", True), None

        blockers = [
            b for b in self.feedback.unresolved_blocking(task_id=ctx.task_id)
            if b.chain_id in (None, ctx.chain_id)
        ]
        if not blockers:
            return CheckResult("blocking_feedback", True), None

        lines = [f"{b.id} ({b.type}): {b.content}" for b in blockers]
        return (
            CheckResult("blocking_feedback", False, feedback=lines),
            Suggestion(
                "blocking_items",
                "Resolve or dismiss blocking feedback first: " + ", ".join(b.id for b in blockers),
            ),
        )

    # --- entry point -----------------------------------------------------

    def _load_task(self, ctx: HandoffContext) -> Task | None:
        """The task, or None if it is missing or unreadable (task_format reports why)."""
        try:
            return self.tasks.find_task(ctx.chain_id, ctx.task_id)
        except (ValidationError, ValueError) as e:
            logger.warning(f"[HANDOFF] Cannot load {ctx.chain_id}/{ctx.task_id}: {e}")
            return None

    def run_handoff_checks(
        self,
        ctx: HandoffContext,
        handoff_config: HandoffConfig | None = None,
        changed_files: list[str] | None = None,
    ) -> HandoffReport:
        """
        Run the configured checks for a handoff.

        Args:
            ctx: Who hands what to whom, plus the notes
            handoff_config: Defaults to the project's scopegate.handoff.yaml
            changed_files: Modified files; when None, asks git

        Returns:
            HandoffReport; passed is False if any required check failed
        """
        if handoff_config is None:
            handoff_config = load_handoff_config(self.config.handoff_file)

        task = self._load_task(ctx)

        runners = {
            "task_format": self._task_format,
            "uncommitted_work": self._uncommitted_work,
            "handoff_notes": self._handoff_notes,
            "role_match": self._role_match,
            "blocking_feedback": self._blocking_feedback,
        }

        report = HandoffReport(passed=True, context=ctx)
        for name in handoff_config.checks_for(task.type if task else None):
            try:
                result, suggestion = runners[name](
                    ctx, task, handoff_config=handoff_config, changed_files=changed_files
                )
            except Exception as e:
                logger.error(f"[HANDOFF] Check {name} crashed for {ctx.chain_id}/{ctx.task_id}: {e}")
                result = CheckResult(name, False, feedback=[f"Validation check {name} failed: {e}"])
                suggestion = None
            result.required = name in handoff_config.required_checks
            report.checks.append(result)

            if result.success:
                continue
            if suggestion is not None:
                report.suggestions.append(suggestion)
            if result.required:
                report.passed = False
                report.failed_checks.append(name)
            else:
                report.warnings.extend(f"{name}: {msg}" for msg in result.feedback)

        outcome = "passed" if report.passed else f"failed ({', '.join(report.failed_checks)})"
        logger.info(f"[HANDOFF] {ctx.chain_id}/{ctx.task_id} {ctx.from_role} -> {ctx.to_role}: {outcome}")
        return report
