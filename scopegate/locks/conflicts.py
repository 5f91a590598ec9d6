"""
Scope conflict detection.

Given groups that want to run at the same time, report every pair whose
declared scopes could touch a common file. The check is advisory: nothing
stops a worker who ignores it, but dispatch_parallel() refuses to reserve
anything while a conflict is reported.
"""

import logging
from dataclasses import dataclass, field
from itertools import combinations
from typing import Iterable

from scopegate.lib.errors import ConflictDetected, ScopegateError
from scopegate.lib.patterns import overlapping_patterns
from scopegate.locks.reservations import LockManager, Reservation

logger = logging.getLogger(__name__)


@dataclass
class ScopeClaim:
    """A group and the patterns it wants to modify."""
    group_id: str
    patterns: list[str]


@dataclass
class Conflict:
    group_a: str
    group_b: str
    patterns: list[tuple[str, str]]

    def describe(self) -> str:
        pairs = ", ".join(f"{a} ~ {b}" for a, b in self.patterns)
        return f"{self.group_a} <-> {self.group_b}: {pairs}"


@dataclass
class DispatchResult:
    success: bool
    conflicts: list[Conflict] = field(default_factory=list)
    reserved: list[Reservation] = field(default_factory=list)
    error: ScopegateError | None = None


def detect_conflicts(claims: Iterable[ScopeClaim]) -> list[Conflict]:
    """Every unordered pair of claims whose scopes overlap, in input order."""
    conflicts = []
    for a, b in combinations(list(claims), 2):
        pairs = overlapping_patterns(a.patterns, b.patterns)
        if pairs:
            conflicts.append(Conflict(group_a=a.group_id, group_b=b.group_id, patterns=pairs))
    return conflicts


def format_conflicts(conflicts: list[Conflict]) -> str:
    if not conflicts:
        return "No scope conflicts"
    return "\n".join([f"Scope conflicts ({len(conflicts)}):"] + [f"  {c.describe()}" for c in conflicts])


def dispatch_parallel(claims: list[ScopeClaim], lock_manager: LockManager, owner_id: str) -> DispatchResult:
    """
    Pre-flight and reserve scopes for groups about to run in parallel.

    Refuses (reserving nothing) if any two requested groups overlap, or if
    any requested group overlaps a live reservation held by a group outside
    the request.
    """
    conflicts = detect_conflicts(claims)

    requested = {c.group_id for c in claims}
    for claim in claims:
        for held, pairs in lock_manager.find_conflicts(claim.group_id, claim.patterns):
            if held.group_id not in requested:
                conflicts.append(Conflict(group_a=claim.group_id, group_b=held.group_id, patterns=pairs))

    if conflicts:
        logger.info(f"[LOCK] Parallel dispatch refused: {len(conflicts)} conflict(s)")
        return DispatchResult(
            success=False,
            conflicts=conflicts,
            error=ConflictDetected(format_conflicts(conflicts), conflicts=conflicts),
        )

    previous = {c.group_id: lock_manager.get(c.group_id) for c in claims if c.patterns}
    reserved = []
    for claim in claims:
        if not claim.patterns:
            continue
        try:
            result = lock_manager.acquire(claim.group_id, claim.patterns, owner_id)
            error = result.error
        except ScopegateError as e:
            result, error = None, e
        if result is None or not result.success:
            _rollback(lock_manager, reserved, previous)
            return DispatchResult(success=False, error=error)
        reserved.append(result.reservation)

    logger.info(f"[LOCK] Dispatched {len(reserved)} group(s) in parallel for {owner_id}")
    return DispatchResult(success=True, reserved=reserved)


def _rollback(lock_manager: LockManager, reserved: list[Reservation], previous: dict[str, Reservation | None]) -> None:
    """Put every group touched by a failed dispatch back as it was before."""
    for r in reversed(reserved):
        logger.info(f"[LOCK] Rolling back dispatch reservation for {r.group_id}")
        lock_manager.restore(r.group_id, previous.get(r.group_id))
