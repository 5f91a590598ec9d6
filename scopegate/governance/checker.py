"""
Governance evaluator.

Pure function over (ruleset, path, action, role). Lookup order is fixed,
first hit wins:

    role deny -> global deny -> role approve -> global approve
        -> role allow -> global allow -> deny (nothing matched)

so a matching deny beats any approve/allow no matter where it was declared.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable

from scopegate.governance.rules import BUCKETS, Rule, Ruleset
from scopegate.lib.constants import MUTATION_ACTIONS
from scopegate.lib.errors import PolicyDenied
from scopegate.lib.patterns import matches

DEFAULT_DENY_REASON = "No governance rule matches this path (default deny)"


class Decision(str, Enum):
    ALLOW = "allow"
    APPROVE = "approve"
    DENY = "deny"


# bucket name -> decision it produces
_BUCKET_DECISION = {
    "deny": Decision.DENY,
    "approve": Decision.APPROVE,
    "allow": Decision.ALLOW,
}


@dataclass
class MutationCheckResult:
    """Outcome of checking one (path, action)."""
    path: str
    action: str
    decision: Decision
    reason: str = ""
    matched_rule: Rule | None = None
    role: str | None = None

    @property
    def allowed(self) -> bool:
        return self.decision == Decision.ALLOW

    @property
    def needs_approval(self) -> bool:
        return self.decision == Decision.APPROVE

    @property
    def denied(self) -> bool:
        return self.decision == Decision.DENY


@dataclass
class GovernanceSummary:
    allowed: list[MutationCheckResult] = field(default_factory=list)
    needs_approval: list[MutationCheckResult] = field(default_factory=list)
    denied: list[MutationCheckResult] = field(default_factory=list)

    @property
    def all_allowed(self) -> bool:
        return not self.needs_approval and not self.denied


def _pipeline(ruleset: Ruleset, role: str | None):
    """Yield (bucket name, rules) in evaluation order."""
    role_rules = ruleset.for_role(role)
    for name in BUCKETS:
        if role_rules:
            yield name, role_rules.bucket(name)
        yield name, ruleset.global_rules.bucket(name)


def check(ruleset: Ruleset, path: str, action: str, role: str | None = None) -> MutationCheckResult:
    """
    Decide whether `action` on `path` is allowed.

    Args:
        ruleset: Loaded rules
        path: Project-relative file path
        action: create | modify | move | delete
        role: impl | control, or None for global rules only

    Returns:
        MutationCheckResult with decision allow / approve / deny

    Raises:
        ValueError: unknown action
    """
    if action not in MUTATION_ACTIONS:
        raise ValueError(f"Unknown action '{action}'; expected one of {list(MUTATION_ACTIONS)}")

    for bucket, rules in _pipeline(ruleset, role):
        for rule in rules:
            if rule.applies_to(path, action):
                return MutationCheckResult(
                    path=path,
                    action=action,
                    decision=_BUCKET_DECISION[bucket],
                    reason=rule.reason,
                    matched_rule=rule,
                    role=role,
                )

    return MutationCheckResult(
        path=path,
        action=action,
        decision=Decision.DENY,
        reason=DEFAULT_DENY_REASON,
        role=role,
    )


def check_all(
    ruleset: Ruleset,
    mutations: Iterable[tuple[str, str]],
    role: str | None = None,
) -> GovernanceSummary:
    """Check many (path, action) pairs and bucket the results."""
    summary = GovernanceSummary()
    for path, action in mutations:
        result = check(ruleset, path, action, role)
        if result.allowed:
            summary.allowed.append(result)
        elif result.needs_approval:
            summary.needs_approval.append(result)
        else:
            summary.denied.append(result)
    return summary


def matching_rules(ruleset: Ruleset, path: str, role: str | None = None) -> list[tuple[str, Rule]]:
    """Every rule whose pattern matches `path`, in evaluation order, any action."""
    return [
        (bucket, rule)
        for bucket, rules in _pipeline(ruleset, role)
        for rule in rules
        if matches(rule.pattern, path)
    ]


def require_allowed(ruleset: Ruleset, path: str, action: str, role: str | None = None) -> MutationCheckResult:
    """Like check(), but raise PolicyDenied unless the decision is allow."""
    result = check(ruleset, path, action, role)
    if not result.allowed:
        raise PolicyDenied(path, action, result.reason, decision=result.decision.value)
    return result


def format_summary(summary: GovernanceSummary) -> str:
    """Human-readable report of a check_all() run."""
    if summary.all_allowed:
        return f"All {len(summary.allowed)} mutation(s) allowed"

    lines = []
    if summary.denied:
        lines.append(f"Denied ({len(summary.denied)}):")
        for r in summary.denied:
            lines.append(f"  {r.action} {r.path}" + (f" - {r.reason}" if r.reason else ""))
    if summary.needs_approval:
        lines.append(f"Needs approval ({len(summary.needs_approval)}):")
        for r in summary.needs_approval:
            lines.append(f"  {r.action} {r.path}" + (f" - {r.reason}" if r.reason else ""))
    if summary.allowed:
        lines.append(f"Allowed: {len(summary.allowed)}")
    return "\n".join(lines)
