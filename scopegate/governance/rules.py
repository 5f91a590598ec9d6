"""
Governance ruleset loading.

A ruleset file looks like:

    mutations:
      deny:
        - pattern: "*.key"
          actions: [modify, delete]
          reason: Secrets are never edited by workers
      approve:
        - pattern: "migrations/**"
      allow:
        - pattern: "src/**"
    roles:
      impl:
        deny:
          - pattern: "docs/adr/**"
      control:
        allow:
          - pattern: "docs/**"

`mutations` is the global bucket set and always applies. `roles.<role>`
adds role-scoped buckets on top. Omitted `actions` means all four.
Everything is checked on load: a bad pattern or unknown action fails here,
never during a check.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from scopegate.lib.constants import MUTATION_ACTIONS, ROLES
from scopegate.lib.patterns import PatternError, matches, validate_pattern
from scopegate.lib.validate import ValidationError, validate

logger = logging.getLogger(__name__)

BUCKETS = ("deny", "approve", "allow")


class GovernanceError(ValueError):
    """Ruleset could not be loaded."""
    pass


@dataclass(frozen=True)
class Rule:
    """One governance rule."""
    pattern: str
    actions: frozenset = frozenset(MUTATION_ACTIONS)
    reason: str = ""

    def applies_to(self, path: str, action: str) -> bool:
        return action in self.actions and matches(self.pattern, path)

    def to_dict(self) -> dict:
        data = {"pattern": self.pattern, "actions": sorted(self.actions)}
        if self.reason:
            data["reason"] = self.reason
        return data


@dataclass
class BucketSet:
    """The deny / approve / allow rule lists of one scope (global or a role)."""
    deny: list[Rule] = field(default_factory=list)
    approve: list[Rule] = field(default_factory=list)
    allow: list[Rule] = field(default_factory=list)

    def bucket(self, name: str) -> list[Rule]:
        return getattr(self, name)

    def is_empty(self) -> bool:
        return not (self.deny or self.approve or self.allow)


@dataclass
class Ruleset:
    """Global rules plus optional per-role rules."""
    global_rules: BucketSet = field(default_factory=BucketSet)
    per_role: dict[str, BucketSet] = field(default_factory=dict)
    source: Path | None = None

    def for_role(self, role: str | None) -> BucketSet | None:
        if role is None:
            return None
        return self.per_role.get(role)

    def rule_count(self) -> int:
        sets = [self.global_rules, *self.per_role.values()]
        return sum(len(s.bucket(b)) for s in sets for b in BUCKETS)


def _parse_rule(raw: dict, where: str) -> Rule:
    try:
        pattern = validate_pattern(raw["pattern"])
    except PatternError as e:
        raise GovernanceError(f"{where}: {e}") from None

    actions = raw.get("actions") or list(MUTATION_ACTIONS)
    unknown = sorted(set(actions) - set(MUTATION_ACTIONS))
    if unknown:
        raise GovernanceError(
            f"{where}: unknown action(s) {unknown}; expected one of {list(MUTATION_ACTIONS)}"
        )

    return Rule(pattern=pattern, actions=frozenset(actions), reason=raw.get("reason") or "")


def _parse_buckets(raw: dict | None, where: str) -> BucketSet:
    buckets = BucketSet()
    for name in BUCKETS:
        for i, raw_rule in enumerate((raw or {}).get(name) or []):
            buckets.bucket(name).append(_parse_rule(raw_rule, f"{where}.{name}[{i}]"))
    return buckets


def parse_ruleset(data: dict | None, source: Path | None = None) -> Ruleset:
    """
    Build a Ruleset from already-parsed YAML/JSON data.

    Raises:
        GovernanceError: shape, pattern or action problems
    """
    data = data or {}
    try:
        validate(data, "governance")
    except ValidationError as e:
        raise GovernanceError(str(e)) from None

    per_role = {}
    for role, raw in (data.get("roles") or {}).items():
        if role not in ROLES:
            raise GovernanceError(f"roles.{role}: unknown role; expected one of {list(ROLES)}")
        per_role[role] = _parse_buckets(raw, f"roles.{role}")

    return Ruleset(
        global_rules=_parse_buckets(data.get("mutations"), "mutations"),
        per_role=per_role,
        source=source,
    )


def load_ruleset(path: Path) -> Ruleset:
    """Load a governance YAML file.

    A missing file yields an empty ruleset, which denies everything.

    Raises:
        GovernanceError: unreadable YAML or invalid rules
    """
    path = Path(path)
    if not path.exists():
        logger.warning(f"[GOV] No ruleset at {path}; every mutation will be denied")
        return Ruleset(source=path)

    try:
        data = yaml.safe_load(path.read_text())
    except yaml.YAMLError as e:
        raise GovernanceError(f"Invalid YAML in {path}: {e}") from None

    if data is not None and not isinstance(data, dict):
        raise GovernanceError(f"{path}: top level must be a mapping")

    try:
        ruleset = parse_ruleset(data, source=path)
    except GovernanceError as e:
        raise GovernanceError(f"{path}: {e}") from None

    logger.debug(f"[GOV] Loaded {ruleset.rule_count()} rules from {path}")
    return ruleset
