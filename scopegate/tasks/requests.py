"""
Change/fix requests.

Stored in <STATE_DIR>/requests/<request_id>.json. IDs are
<kind>-<YYYYMMDD>-<NNN>, numbered per kind and day.
"""

import logging
from dataclasses import dataclass
from datetime import date

from scopegate.lib import events as ev
from scopegate.lib.config import ProjectConfig
from scopegate.lib.constants import REQUEST_ID_PATTERN
from scopegate.lib.errors import InvalidTransition, NotFound, PreconditionFailed, ScopegateError
from scopegate.lib.locking import record_lock
from scopegate.lib.store import iter_records, read_record, write_record
from scopegate.tasks.models import REQUEST_KINDS, REQUEST_STATUSES, Request, now_iso

logger = logging.getLogger(__name__)

SCHEMA = "request"

# Work moves forward one step at a time; doing -> done is the approval's job
NEXT_STATUS = {
    "backlog": "todo",
    "todo": "doing",
}


@dataclass
class RequestResult:
    success: bool
    request: Request | None = None
    from_status: str | None = None
    error: ScopegateError | None = None


class RequestManager:
    def __init__(self, config: ProjectConfig, event_sink: ev.EventSink | None = None):
        self.config = config
        self.event_sink = event_sink

    def request_path(self, request_id: str):
        return self.config.requests_dir / f"{request_id}.json"

    def save(self, request: Request) -> Request:
        """Versioned write; caller holds the record lock."""
        written = write_record(self.request_path(request.id), request.to_dict(), SCHEMA, request.version)
        return Request.from_dict(written)

    def generate_request_id(self, kind: str, day: date | None = None) -> str:
        stamp = (day or date.today()).strftime("%Y%m%d")
        nums = []
        if self.config.requests_dir.exists():
            for path in self.config.requests_dir.glob(f"{kind}-{stamp}-*.json"):
                m = REQUEST_ID_PATTERN.match(path.stem)
                if m:
                    nums.append(int(m.group(3)))
                else:
                    logger.warning(f"Malformed request ID ignored: {path.stem}")
        return f"{kind}-{stamp}-{max(nums, default=0) + 1:03d}"

    def create_request(self, kind: str, title: str, day: date | None = None) -> Request:
        """
        Create a request in backlog.

        Raises:
            ValueError: unknown kind or empty title
        """
        if kind not in REQUEST_KINDS:
            raise ValueError(f"Invalid request kind '{kind}'; expected one of {REQUEST_KINDS}")
        if not title.strip():
            raise ValueError("Request title must not be empty")

        with record_lock(str(self.config.requests_dir), self.config.record_lock_timeout):
            request = Request(id=self.generate_request_id(kind, day), kind=kind, title=title.strip())
            request = self.save(request)

        logger.info(f"[REQUEST] Created {request.id}")
        ev.emit(self.event_sink, "request:created", "request", request.id, kind=kind)
        return request

    def get_request(self, request_id: str) -> Request:
        data = read_record(self.request_path(request_id), SCHEMA)
        if data is None:
            raise NotFound("request", request_id)
        return Request.from_dict(data)

    def list_requests(self, status: str | None = None, kind: str | None = None) -> list[Request]:
        requests = [Request.from_dict(d) for d in iter_records(self.config.requests_dir, SCHEMA)]
        if status:
            requests = [r for r in requests if r.status == status]
        if kind:
            requests = [r for r in requests if r.kind == kind]
        return sorted(requests, key=lambda r: r.id)

    def transition_request(self, request_id: str, target: str) -> RequestResult:
        """Move a request one step forward (backlog -> todo -> doing)."""
        if target not in REQUEST_STATUSES:
            return RequestResult(
                success=False,
                error=PreconditionFailed(
                    f"Unknown request status '{target}'", expected=" | ".join(REQUEST_STATUSES), found=target
                ),
            )
        try:
            with record_lock(str(self.request_path(request_id)), self.config.record_lock_timeout):
                request = self.get_request(request_id)
                from_status = request.status
                if NEXT_STATUS.get(from_status) != target:
                    required = [s for s, nxt in NEXT_STATUS.items() if nxt == target]
                    if target == "done":
                        raise PreconditionFailed(
                            f"{request_id} is closed by approve_request once every chain is approved",
                            expected="approve_request",
                            found="transition_request",
                        )
                    raise InvalidTransition(request_id, from_status, target, required)
                request.status = target
                request.updated_at = now_iso()
                request = self.save(request)
        except ScopegateError as e:
            return RequestResult(success=False, error=e)

        logger.info(f"[REQUEST] {request_id}: {from_status} -> {target}")
        return RequestResult(success=True, request=request, from_status=from_status)
