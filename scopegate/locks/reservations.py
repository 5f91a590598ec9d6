"""
Advisory scope reservations.

A reservation says "group X intends to modify files matching these
patterns". It is a cooperative convention stored in locks.json, not an
OS lock: nothing stops a worker that never asks. Reservations expire
(LOCK_EXPIRATION_MINUTES) so a crashed worker can't hold a scope forever.

locks.json:
    {
      "version": 3,
      "chains": {
        "CHAIN-001-auth": {
          "group_id": "CHAIN-001-auth",
          "patterns": ["lib/auth/**"],
          "acquired_at": "...",
          "owner_id": "worker-a",
          "expires_at": "..."
        }
      }
    }
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Iterable

from scopegate.lib import events as ev
from scopegate.lib.config import ProjectConfig
from scopegate.lib.errors import ConflictDetected, NotFound, ScopegateError
from scopegate.lib.locking import record_lock
from scopegate.lib.patterns import PatternError, match_any, overlapping_patterns, validate_pattern
from scopegate.lib.store import read_record, write_record

logger = logging.getLogger(__name__)

SCHEMA = "locks"


@dataclass
class Reservation:
    group_id: str
    patterns: list[str]
    acquired_at: str
    owner_id: str
    expires_at: str | None = None

    def is_expired(self, now: datetime) -> bool:
        if not self.expires_at:
            return False
        return datetime.fromisoformat(self.expires_at) <= now

    def to_dict(self) -> dict:
        return {
            "group_id": self.group_id,
            "patterns": list(self.patterns),
            "acquired_at": self.acquired_at,
            "owner_id": self.owner_id,
            "expires_at": self.expires_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Reservation":
        return cls(
            group_id=data["group_id"],
            patterns=list(data["patterns"]),
            acquired_at=data["acquired_at"],
            owner_id=data["owner_id"],
            expires_at=data.get("expires_at"),
        )


@dataclass
class LockResult:
    """Result of acquire/extend."""
    success: bool
    reservation: Reservation | None = None
    error: ScopegateError | None = None
    conflicting_group: str | None = None
    conflicting_patterns: list[tuple[str, str]] = field(default_factory=list)


class LockManager:
    """Reads and writes locks.json under the in-process record mutex."""

    def __init__(
        self,
        config: ProjectConfig,
        event_sink: ev.EventSink | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.config = config
        self.path = config.locks_file
        self.event_sink = event_sink
        self.clock = clock

    # --- storage ---------------------------------------------------------

    def _load(self) -> tuple[dict[str, Reservation], int]:
        data = read_record(self.path, SCHEMA)
        if data is None:
            return {}, 0
        held = {gid: Reservation.from_dict(raw) for gid, raw in data["chains"].items()}
        return held, data["version"]

    def _save(self, held: dict[str, Reservation], version: int) -> None:
        data = {"chains": {gid: r.to_dict() for gid, r in sorted(held.items())}}
        write_record(self.path, data, SCHEMA, version)

    def _drop_expired(self, held: dict[str, Reservation]) -> list[str]:
        now = self.clock()
        expired = [gid for gid, r in held.items() if r.is_expired(now)]
        for gid in expired:
            logger.warning(f"[LOCK] Reservation for {gid} expired at {held[gid].expires_at}, dropping")
            del held[gid]
        return expired

    def _live(self) -> dict[str, Reservation]:
        held, _ = self._load()
        self._drop_expired(held)
        return held

    # --- queries ---------------------------------------------------------

    def get(self, group_id: str) -> Reservation | None:
        return self._live().get(group_id)

    def all(self) -> list[Reservation]:
        return sorted(self._live().values(), key=lambda r: r.group_id)

    def is_path_locked(self, path: str, exclude_group: str | None = None) -> Reservation | None:
        """Reservation covering `path`, if any (optionally ignoring one group)."""
        for reservation in self.all():
            if reservation.group_id == exclude_group:
                continue
            if match_any(reservation.patterns, path):
                return reservation
        return None

    def find_conflicts(
        self,
        group_id: str,
        patterns: Iterable[str],
    ) -> list[tuple[Reservation, list[tuple[str, str]]]]:
        """Live reservations of other groups that overlap `patterns`."""
        patterns = list(patterns)
        found = []
        for reservation in self.all():
            if reservation.group_id == group_id:
                continue
            pairs = overlapping_patterns(patterns, reservation.patterns)
            if pairs:
                found.append((reservation, pairs))
        return found

    # --- mutations -------------------------------------------------------

    def acquire(self, group_id: str, patterns: list[str], owner_id: str) -> LockResult:
        """
        Reserve `patterns` for `group_id`.

        Re-acquiring for a group that already holds a reservation replaces
        its patterns and restarts the expiry clock.

        Returns:
            LockResult; on conflict, success=False with the holder and the
            overlapping (requested, held) pattern pairs
        """
        try:
            normalized = [validate_pattern(p) for p in patterns]
        except PatternError as e:
            return LockResult(success=False, error=ScopegateError(str(e), expected="valid scope pattern"))
        if not normalized:
            return LockResult(
                success=False,
                error=ScopegateError(f"No patterns given for {group_id}", expected="at least one pattern"),
            )

        try:
            with record_lock(str(self.path), self.config.record_lock_timeout):
                held, version = self._load()
                self._drop_expired(held)

                for other_id, other in sorted(held.items()):
                    if other_id == group_id:
                        continue
                    pairs = overlapping_patterns(normalized, other.patterns)
                    if pairs:
                        described = ", ".join(f"{a} ~ {b}" for a, b in pairs)
                        error = ConflictDetected(
                            f"Scope of {group_id} overlaps reservation held by {other_id} "
                            f"(owner {other.owner_id}): {described}",
                            conflicts=pairs,
                        )
                        logger.info(f"[LOCK] {group_id}: blocked by {other_id}")
                        return LockResult(
                            success=False,
                            error=error,
                            conflicting_group=other_id,
                            conflicting_patterns=pairs,
                        )

                now = self.clock()
                reservation = Reservation(
                    group_id=group_id,
                    patterns=normalized,
                    acquired_at=now.isoformat(),
                    owner_id=owner_id,
                    expires_at=(now + timedelta(minutes=self.config.lock_expiration_minutes)).isoformat(),
                )
                held[group_id] = reservation
                self._save(held, version)
        except ScopegateError as e:
            logger.warning(f"[LOCK] {group_id}: acquire failed: {e}")
            return LockResult(success=False, error=e)

        logger.info(f"[LOCK] {group_id}: acquired {len(normalized)} pattern(s) for {owner_id}")
        ev.emit(self.event_sink, "lock:acquired", "chain", group_id,
                owner_id=owner_id, patterns=normalized)
        return LockResult(success=True, reservation=reservation)

    def release(self, group_id: str) -> bool:
        """Drop a group's reservation. Returns False if it held none."""
        with record_lock(str(self.path), self.config.record_lock_timeout):
            held, version = self._load()
            if group_id not in held:
                return False
            del held[group_id]
            self._save(held, version)

        logger.info(f"[LOCK] {group_id}: released")
        ev.emit(self.event_sink, "lock:released", "chain", group_id)
        return True

    def extend(self, group_id: str, minutes: int | None = None) -> LockResult:
        """Push a live reservation's expiry out by `minutes` from now."""
        minutes = minutes or self.config.lock_expiration_minutes
        try:
            with record_lock(str(self.path), self.config.record_lock_timeout):
                held, version = self._load()
                self._drop_expired(held)
                reservation = held.get(group_id)
                if reservation is None:
                    raise NotFound("reservation", group_id, "It may have expired; acquire it again.")
                reservation.expires_at = (self.clock() + timedelta(minutes=minutes)).isoformat()
                self._save(held, version)
        except ScopegateError as e:
            return LockResult(success=False, error=e)

        logger.info(f"[LOCK] {group_id}: extended to {reservation.expires_at}")
        return LockResult(success=True, reservation=reservation)

    def restore(self, group_id: str, previous: Reservation | None) -> None:
        """Put a group's reservation back to `previous` (None drops it)."""
        with record_lock(str(self.path), self.config.record_lock_timeout):
            held, version = self._load()
            if previous is None:
                if held.pop(group_id, None) is None:
                    return
            else:
                held[group_id] = previous
            self._save(held, version)
        logger.info(f"[LOCK] {group_id}: restored to {'nothing' if previous is None else previous.patterns}")

    def cleanup_expired(self) -> list[str]:
        """Remove expired reservations from disk. Returns the dropped group ids."""
        with record_lock(str(self.path), self.config.record_lock_timeout):
            held, version = self._load()
            expired = self._drop_expired(held)
            if expired:
                self._save(held, version)
        return expired

    def format_status(self) -> str:
        reservations = self.all()
        if not reservations:
            return "No active scope reservations"
        lines = [f"Active scope reservations ({len(reservations)}):"]
        for r in reservations:
            lines.append(f"  {r.group_id} (owner {r.owner_id}, expires {r.expires_at or 'never'})")
            for pattern in r.patterns:
                lines.append(f"    {pattern}")
        return "\n".join(lines)
