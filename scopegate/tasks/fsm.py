"""Task state machine using the transitions library.

    backlog -> todo -> in-progress -> in-review -> done
                          ^               |
                          +---------------+  request_changes (reason)

plus blocking from any open state, and a way back out of blocked.
approve / request_changes are review triggers: they are only fired from
scopegate.tasks.review, never through the generic transition_task().

Usage:
    fsm = TaskFSM(task)
    fsm.fire("start")          # task.status == "in-progress", history appended
"""

import logging
from typing import Callable

from transitions import Machine

from scopegate.lib.errors import InvalidTransition
from scopegate.tasks.models import TASK_STATUSES, Task, now_iso

logger = logging.getLogger(__name__)

STATES = list(TASK_STATUSES)

TRANSITIONS = [
    {"trigger": "schedule", "source": "backlog", "dest": "todo"},
    {"trigger": "start", "source": "todo", "dest": "in-progress"},
    {"trigger": "submit", "source": "in-progress", "dest": "in-review"},

    # Review outcomes
    {"trigger": "approve", "source": "in-review", "dest": "done"},
    {"trigger": "request_changes", "source": "in-review", "dest": "in-progress"},

    # Put work back without finishing it
    {"trigger": "return_to_todo", "source": "in-progress", "dest": "todo"},

    # Blocking
    {"trigger": "block", "source": ["backlog", "todo", "in-progress", "in-review"], "dest": "blocked"},
    {"trigger": "unblock", "source": "blocked", "dest": "todo"},
    {"trigger": "shelve", "source": "blocked", "dest": "backlog"},
]

REVIEW_TRIGGERS = frozenset({"approve", "request_changes"})

# trigger -> past-tense event suffix (task:<suffix>)
EVENT_NAMES = {
    "schedule": "scheduled",
    "start": "started",
    "submit": "submitted",
    "approve": "approved",
    "request_changes": "changes_requested",
    "return_to_todo": "returned",
    "block": "blocked",
    "unblock": "unblocked",
    "shelve": "shelved",
}


def _sources(t: dict) -> list[str]:
    return t["source"] if isinstance(t["source"], list) else [t["source"]]


def _build_trigger_lookup() -> dict[tuple[str, str], str]:
    """Build lookup from (source, dest) -> trigger name."""
    lookup: dict[tuple[str, str], str] = {}
    for t in TRANSITIONS:
        for source in _sources(t):
            lookup.setdefault((source, t["dest"]), t["trigger"])
    return lookup


TRIGGER_FOR = _build_trigger_lookup()
DEST_OF = {t["trigger"]: t["dest"] for t in TRANSITIONS}


def sources_for_trigger(trigger: str) -> list[str]:
    """States a trigger may fire from, in STATES order."""
    found = {s for t in TRANSITIONS if t["trigger"] == trigger for s in _sources(t)}
    return [s for s in STATES if s in found]


def sources_for_dest(dest: str) -> list[str]:
    """States from which `dest` is reachable in one step."""
    found = {source for (source, d) in TRIGGER_FOR if d == dest}
    return [s for s in STATES if s in found]


class TaskFSM:
    """State machine bound to one Task.

    Firing a trigger updates task.status and appends to task.history.
    Persisting the task is the caller's job.
    """

    def __init__(self, task: Task, on_transition: Callable[[str, str, str], None] | None = None):
        if task.status not in STATES:
            raise ValueError(f"Task {task.ref} has unknown status '{task.status}'")

        self.task = task
        self.on_transition = on_transition

        self.machine = Machine(
            model=self,
            states=STATES,
            transitions=TRANSITIONS,
            initial=task.status,
            auto_transitions=False,  # Only explicit transitions
            send_event=True,  # Pass EventData to callbacks
            after_state_change="on_state_change",
        )

    def on_state_change(self, event) -> None:
        """Callback after any state transition: sync the task and log."""
        from_state = event.transition.source
        to_state = event.transition.dest
        trigger = event.event.name
        reason = event.kwargs.get("reason")

        self.task.status = to_state
        self.task.updated_at = now_iso()
        self.task.history.append({
            "from": from_state,
            "to": to_state,
            "trigger": trigger,
            "at": self.task.updated_at,
            "reason": reason,
        })

        logger.info(f"[TASK] {self.task.ref}: {from_state} -> {to_state} ({trigger})")

        if self.on_transition:
            self.on_transition(from_state, to_state, trigger)

    def can(self, trigger: str) -> bool:
        """Check if a trigger can be executed in current state."""
        return trigger in self.machine.get_triggers(self.state)

    def get_available_triggers(self) -> list[str]:
        return self.machine.get_triggers(self.state)

    def fire(self, trigger: str, reason: str | None = None) -> None:
        """Fire a trigger or raise InvalidTransition naming the required states."""
        if trigger not in DEST_OF:
            raise ValueError(f"Unknown task trigger '{trigger}'")
        if not self.can(trigger):
            raise InvalidTransition(
                self.task.ref, self.state, DEST_OF[trigger], sources_for_trigger(trigger)
            )
        self.trigger(trigger, reason=reason)
