"""
Gate evaluation.

One evaluator per gate type, picked from GATE_EVALUATORS by the gate's
type. An evaluator answers "does this gate's condition hold right now?"
and says why not when it doesn't:

    auto               always holds
    human_approval     only an explicit satisfy_gate() call satisfies it
    chain_complete     linked chain has tasks and every one is done
    verification_pass  every configured command exits 0 within the timeout
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable

from scopegate.lib.errors import NotFound
from scopegate.lib.proc import CommandResult, run_command
from scopegate.tasks.chain_manager import ChainManager
from scopegate.workflow.models import Gate, Stage

logger = logging.getLogger(__name__)


class GateType(str, Enum):
    AUTO = "auto"
    HUMAN_APPROVAL = "human_approval"
    CHAIN_COMPLETE = "chain_complete"
    VERIFICATION_PASS = "verification_pass"


@dataclass
class GateContext:
    """What evaluators may consult."""
    root: Path
    chains: ChainManager | None = None
    verify_timeout: float = 300
    command_runner: Callable[[str, Path, float], CommandResult] = run_command


@dataclass
class GateCheck:
    satisfied: bool
    detail: str = ""
    results: list[CommandResult] = field(default_factory=list)


def _auto(stage: Stage, ctx: GateContext) -> GateCheck:
    return GateCheck(satisfied=True)


def _human_approval(stage: Stage, ctx: GateContext) -> GateCheck:
    if stage.gate.satisfied:
        return GateCheck(satisfied=True)
    return GateCheck(satisfied=False, detail=stage.gate.prompt or "Waiting for human approval")


def _chain_complete(stage: Stage, ctx: GateContext) -> GateCheck:
    chain_id = stage.linked_chain
    if not chain_id:
        return GateCheck(satisfied=False, detail=f"Stage '{stage.name}' has no linked chain")
    if ctx.chains is None:
        return GateCheck(satisfied=False, detail="No chain manager available to check chain status")

    try:
        summary = ctx.chains.summary(chain_id)
    except NotFound:
        return GateCheck(satisfied=False, detail=f"Chain not found: {chain_id}")

    if summary.total and summary.status == "done":
        return GateCheck(satisfied=True)
    return GateCheck(
        satisfied=False,
        detail=f"Chain {chain_id} not complete ({summary.done}/{summary.total} tasks done)",
    )


def _verification_pass(stage: Stage, ctx: GateContext) -> GateCheck:
    commands = stage.gate.commands
    if not commands:
        return GateCheck(satisfied=False, detail="verification_pass gate has no commands")

    results = []
    for command in commands:
        logger.info(f"[GATE] Running verification: {command}")
        result = ctx.command_runner(command, ctx.root, ctx.verify_timeout)
        results.append(result)
        if not result.success:
            return GateCheck(
                satisfied=False,
                detail=f"Verification command failed: {result.describe_failure()}",
                results=results,
            )
    return GateCheck(satisfied=True, results=results)


GATE_EVALUATORS: dict[GateType, Callable[[Stage, GateContext], GateCheck]] = {
    GateType.AUTO: _auto,
    GateType.HUMAN_APPROVAL: _human_approval,
    GateType.CHAIN_COMPLETE: _chain_complete,
    GateType.VERIFICATION_PASS: _verification_pass,
}

# Gates the system may satisfy on its own when asked to advance
SYSTEM_EVALUATED = frozenset({GateType.AUTO, GateType.CHAIN_COMPLETE, GateType.VERIFICATION_PASS})


def evaluate_gate(stage: Stage, ctx: GateContext) -> GateCheck:
    return GATE_EVALUATORS[GateType(stage.gate.type)](stage, ctx)


def new_gate(raw: dict) -> Gate:
    """Gate from a template stage definition. Auto gates start satisfied on entry, not here."""
    return Gate(
        type=GateType(raw["type"]).value,
        prompt=raw.get("prompt"),
        chain_id=raw.get("chain_id"),
        commands=list(raw.get("commands") or []),
    )
