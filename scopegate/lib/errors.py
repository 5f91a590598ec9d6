"""
Error taxonomy for scopegate.

Helpers raise these; public operations catch them at their boundary and
return them inside a result object with success=False. Every error carries
an actionable message: what was expected and what was found.
"""


class ScopegateError(Exception):
    """Base class for coordination errors."""

    kind = "error"

    def __init__(self, message: str, expected: str | None = None, found: str | None = None):
        self.message = message
        self.expected = expected
        self.found = found
        super().__init__(message)

    def to_dict(self) -> dict:
        data = {"kind": self.kind, "message": self.message}
        if self.expected is not None:
            data["expected"] = self.expected
        if self.found is not None:
            data["found"] = self.found
        return data


class NotFound(ScopegateError):
    """Referenced task, chain, request or workflow does not exist."""

    kind = "not_found"

    def __init__(self, entity: str, entity_id: str, hint: str = ""):
        self.entity = entity
        self.entity_id = entity_id
        message = f"{entity.capitalize()} not found: {entity_id}"
        if hint:
            message += f"\n{hint}"
        super().__init__(message, expected=f"existing {entity}", found=entity_id)


class InvalidTransition(ScopegateError):
    """State machine rejected the requested move."""

    kind = "invalid_transition"

    def __init__(self, entity_id: str, current: str, target: str, required: list[str] | None = None):
        self.entity_id = entity_id
        self.current = current
        self.target = target
        self.required = list(required or [])
        message = f"Cannot move {entity_id} from {current} to {target}"
        if self.required:
            message += f"; {target} requires current state {' or '.join(self.required)}"
        super().__init__(message, expected=" | ".join(self.required) or None, found=current)


class PolicyDenied(ScopegateError):
    """Governance evaluator returned deny (or approve without sign-off)."""

    kind = "policy_denied"

    def __init__(self, path: str, action: str, reason: str = "", decision: str = "deny"):
        self.path = path
        self.action = action
        self.reason = reason
        self.decision = decision
        message = f"{action} {path}: {decision}"
        if reason:
            message += f" ({reason})"
        super().__init__(message, expected="allow", found=decision)


class PreconditionFailed(ScopegateError):
    """Operation precondition not met (e.g. tasks not done, reason missing)."""

    kind = "precondition_failed"

    def __init__(self, message: str, expected: str | None = None, found: str | None = None,
                 items: list[str] | None = None):
        self.items = list(items or [])
        super().__init__(message, expected=expected, found=found)


class ConflictDetected(ScopegateError):
    """Overlapping scope reservations."""

    kind = "conflict_detected"

    def __init__(self, message: str, conflicts: list | None = None):
        self.conflicts = list(conflicts or [])
        super().__init__(message, expected="no overlapping scopes")


class StaleRecord(ConflictDetected):
    """Record changed on disk since it was read."""

    kind = "stale_record"

    def __init__(self, record_path: str, expected_version: int, found_version: int | str):
        self.record_path = record_path
        super().__init__(
            f"{record_path} was modified concurrently "
            f"(read version {expected_version}, now {found_version}); reload and retry"
        )
        self.expected = str(expected_version)
        self.found = str(found_version)


class GateUnsatisfied(ScopegateError):
    """Workflow advance attempted before the current gate holds."""

    kind = "gate_unsatisfied"

    def __init__(self, workflow_id: str, stage_index: int, gate_type: str, detail: str = ""):
        self.workflow_id = workflow_id
        self.stage_index = stage_index
        self.gate_type = gate_type
        self.detail = detail
        message = f"Workflow {workflow_id} stage {stage_index}: {gate_type} gate not satisfied"
        if detail:
            message += f" - {detail}"
        super().__init__(message, expected=f"{gate_type} gate satisfied", found="unsatisfied")


class LockTimeout(ScopegateError):
    """Another caller held a record mutex for longer than the timeout."""

    kind = "lock_timeout"

    def __init__(self, key: str, timeout: float):
        self.key = key
        self.timeout = timeout
        super().__init__(
            f"Could not acquire lock for {key} within {timeout}s; another operation is still running, retry later",
            expected=f"lock free within {timeout}s",
            found="held",
        )
