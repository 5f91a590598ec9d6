"""
Chain CRUD and derived chain status.

Chains are stored in <STATE_DIR>/chains/<chain_id>.json; their tasks live
under tasks/<chain_id>/ and are owned by TaskManager. A chain has no
status field of its own: status is derived from its tasks.
"""

import logging
from dataclasses import dataclass, field

from scopegate.lib import events as ev
from scopegate.lib.config import ProjectConfig
from scopegate.lib.constants import CHAIN_ID_PATTERN, SLUG_PATTERN
from scopegate.lib.errors import NotFound, PreconditionFailed
from scopegate.lib.locking import record_lock
from scopegate.lib.patterns import validate_pattern
from scopegate.lib.store import iter_records, read_record, write_record
from scopegate.locks.conflicts import ScopeClaim
from scopegate.tasks.models import CHAIN_TYPES, TASK_STATUSES, Chain, Task
from scopegate.tasks.requests import RequestManager
from scopegate.tasks.task_manager import TaskManager

logger = logging.getLogger(__name__)

SCHEMA = "chain"


@dataclass
class ChainSummary:
    chain_id: str
    status: str
    task_counts: dict[str, int] = field(default_factory=dict)
    total: int = 0
    done: int = 0
    review_status: str | None = None

    @property
    def progress(self) -> float:
        """Fraction of tasks done (0.0 for an empty chain)."""
        return self.done / self.total if self.total else 0.0


def derive_chain_status(tasks: list[Task]) -> str:
    """blocked > in-progress > in-review > done (all) > todo > backlog."""
    statuses = {t.status for t in tasks}
    if not statuses:
        return "backlog"
    for status in ("blocked", "in-progress", "in-review"):
        if status in statuses:
            return status
    if statuses == {"done"}:
        return "done"
    if "todo" in statuses:
        return "todo"
    return "backlog"


class ChainManager:
    def __init__(
        self,
        config: ProjectConfig,
        tasks: TaskManager,
        requests: RequestManager,
        event_sink: ev.EventSink | None = None,
    ):
        self.config = config
        self.tasks = tasks
        self.requests = requests
        self.event_sink = event_sink

    def chain_path(self, chain_id: str):
        return self.config.chains_dir / f"{chain_id}.json"

    def lock_key(self, chain_id: str) -> str:
        return str(self.chain_path(chain_id))

    def save(self, chain: Chain) -> Chain:
        """Versioned write; caller holds the record lock."""
        written = write_record(self.chain_path(chain.id), chain.to_dict(), SCHEMA, chain.version)
        return Chain.from_dict(written)

    def next_sequence(self) -> int:
        nums = []
        if self.config.chains_dir.exists():
            for path in self.config.chains_dir.glob("CHAIN-*.json"):
                m = CHAIN_ID_PATTERN.match(path.stem)
                if m:
                    nums.append(int(m.group(1)))
        return max(nums, default=0) + 1

    def create_chain(
        self,
        request_id: str,
        slug: str,
        title: str,
        type: str = "implementation",
        depends_on: str | None = None,
        skip_design_justification: str | None = None,
        file_scope: list[str] | None = None,
        description: str = "",
    ) -> Chain:
        """
        Create a chain for an existing request.

        An implementation chain must either depend on a design chain or
        say why it skips design.

        Raises:
            NotFound: request or depends_on chain doesn't exist
            PreconditionFailed: implementation chain without design
            ValueError: bad slug, type or scope pattern
        """
        if type not in CHAIN_TYPES:
            raise ValueError(f"Invalid chain type '{type}'; expected one of {CHAIN_TYPES}")
        if not SLUG_PATTERN.match(slug):
            raise ValueError(f"Invalid slug '{slug}': use lowercase letters, digits and hyphens")
        scope = [validate_pattern(p) for p in (file_scope or [])]

        self.requests.get_request(request_id)

        justification = (skip_design_justification or "").strip() or None
        if depends_on:
            dependency = self.get_chain(depends_on)
            if type == "implementation" and dependency.type != "design" and not justification:
                raise PreconditionFailed(
                    f"Implementation chain must depend on a design chain; {depends_on} is {dependency.type}",
                    expected="design chain",
                    found=dependency.type,
                )
        elif type == "implementation" and not justification:
            raise PreconditionFailed(
                "Implementation chain needs depends_on=<design chain> or a skip_design_justification",
                expected="depends_on or skip_design_justification",
                found="neither",
            )

        with record_lock(str(self.config.chains_dir), self.config.record_lock_timeout):
            sequence = self.next_sequence()
            chain = Chain(
                id=f"CHAIN-{sequence:03d}-{slug}",
                sequence=sequence,
                slug=slug,
                request_id=request_id,
                title=title,
                type=type,
                description=description,
                depends_on=depends_on,
                skip_design_justification=justification,
                file_scope=scope,
            )
            chain = self.save(chain)

        logger.info(f"[CHAIN] Created {chain.id} ({chain.type}) for {request_id}")
        ev.emit(self.event_sink, "chain:created", "chain", chain.id,
                request_id=request_id, type=chain.type)
        return chain

    def get_chain(self, chain_id: str) -> Chain:
        data = read_record(self.chain_path(chain_id), SCHEMA)
        if data is None:
            raise NotFound("chain", chain_id)
        return Chain.from_dict(data)

    def list_chains(self, request_id: str | None = None) -> list[Chain]:
        chains = [Chain.from_dict(d) for d in iter_records(self.config.chains_dir, SCHEMA)]
        if request_id is not None:
            chains = [c for c in chains if c.request_id == request_id]
        return sorted(chains, key=lambda c: c.sequence)

    def chain_status(self, chain_id: str) -> str:
        self.get_chain(chain_id)
        return derive_chain_status(self.tasks.list_tasks(chain_id))

    def summary(self, chain_id: str) -> ChainSummary:
        chain = self.get_chain(chain_id)
        tasks = self.tasks.list_tasks(chain_id)
        counts = {status: 0 for status in TASK_STATUSES}
        for task in tasks:
            counts[task.status] += 1
        return ChainSummary(
            chain_id=chain_id,
            status=derive_chain_status(tasks),
            task_counts=counts,
            total=len(tasks),
            done=counts["done"],
            review_status=chain.review_status,
        )

    def effective_scope(self, chain_id: str) -> list[str]:
        """Chain scope plus every task scope, deduplicated, declaration order."""
        chain = self.get_chain(chain_id)
        scope = list(chain.file_scope)
        for task in self.tasks.list_tasks(chain_id):
            scope.extend(task.file_scope)
        return list(dict.fromkeys(scope))

    def scope_claim(self, chain_id: str) -> ScopeClaim:
        return ScopeClaim(group_id=chain_id, patterns=self.effective_scope(chain_id))
