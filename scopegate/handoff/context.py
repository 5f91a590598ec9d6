"""
Handoff context and the notes block that carries it.

The notes are markdown so a worker can paste them into a session:

    ## Handoff Context

    **Session**: s-42
    **From**: impl
    **To**: review
    **State**: tests green, docs pending

    ### What was done
    - Added token refresh

    ### What needs to happen
    - Review the retry logic

    ### Open questions
    - Should refresh be silent?
"""

import re
from dataclasses import dataclass, field

HANDOFF_ROLES = ("impl", "control", "review")

PLACEHOLDER = "_(fill in)_"

NOTES_TEMPLATE = """## Handoff Context

**Session**: {session}
**From**: {from_role}
**To**: {to_role}
**State**: {state}

### What was done
{what_done}

### What needs to happen
{what_next}

### Open questions
{open_questions}
"""

_SECTIONS = {
    "what was done": "what_done",
    "what needs to happen": "what_next",
    "open questions": "open_questions",
}
_FIELD_RE = re.compile(r"^\*\*(Session|From|To|State)\*\*:\s*(.*)$")


@dataclass
class HandoffContext:
    """Transient description of a handoff; never persisted on its own."""
    chain_id: str
    task_id: str
    from_role: str
    to_role: str
    session: str = ""
    state: str = ""
    what_done: list[str] = field(default_factory=list)
    what_next: list[str] = field(default_factory=list)
    open_questions: list[str] = field(default_factory=list)


def _bullets(items: list[str]) -> str:
    items = [i.strip() for i in items if i and i.strip()]
    return "\n".join(f"- {i}" for i in items) if items else f"- {PLACEHOLDER}"


def render_notes(ctx: HandoffContext) -> str:
    """Notes block for a context; empty sections get a fill-in placeholder."""
    return NOTES_TEMPLATE.format(
        session=ctx.session or PLACEHOLDER,
        from_role=ctx.from_role,
        to_role=ctx.to_role,
        state=ctx.state or PLACEHOLDER,
        what_done=_bullets(ctx.what_done),
        what_next=_bullets(ctx.what_next),
        open_questions=_bullets(ctx.open_questions),
    )


def parse_notes(text: str, chain_id: str, task_id: str) -> HandoffContext:
    """Read a notes block back into a HandoffContext. Placeholders count as empty."""
    values = {"Session": "", "From": "", "To": "", "State": ""}
    lists: dict[str, list[str]] = {name: [] for name in _SECTIONS.values()}
    section = None

    for line in text.splitlines():
        stripped = line.strip()
        m = _FIELD_RE.match(stripped)
        if m:
            value = m.group(2).strip()
            values[m.group(1)] = "" if value == PLACEHOLDER else value
            continue
        if stripped.startswith("### "):
            section = _SECTIONS.get(stripped[4:].strip().lower())
            continue
        if section and stripped.startswith("- "):
            item = stripped[2:].strip()
            if item and item != PLACEHOLDER:
                lists[section].append(item)

    return HandoffContext(
        chain_id=chain_id,
        task_id=task_id,
        from_role=values["From"],
        to_role=values["To"],
        session=values["Session"],
        state=values["State"],
        **lists,
    )
