"""Mutation governance: which roles may create/modify/move/delete which paths."""

from scopegate.governance.rules import (
    BucketSet,
    GovernanceError,
    Rule,
    Ruleset,
    load_ruleset,
    parse_ruleset,
)
from scopegate.governance.checker import (
    Decision,
    GovernanceSummary,
    MutationCheckResult,
    check,
    check_all,
    format_summary,
    matching_rules,
    require_allowed,
)

__all__ = [
    "BucketSet",
    "Decision",
    "GovernanceError",
    "GovernanceSummary",
    "MutationCheckResult",
    "Rule",
    "Ruleset",
    "check",
    "check_all",
    "format_summary",
    "load_ruleset",
    "matching_rules",
    "parse_ruleset",
    "require_allowed",
]
