"""
Uncommitted work in a git checkout, as seen by the handoff checks.

Only two questions are asked of git: is this directory a work tree, and
which paths differ from HEAD (staged, unstaged or untracked).
"""

from pathlib import Path

from .errors import ScopegateError
from .proc import CommandResult, run_argv

GIT_TIMEOUT = 30


def git(args: list[str], root: Path, timeout: float = GIT_TIMEOUT) -> CommandResult:
    return run_argv(["git", "-C", str(root)] + args, root, timeout)


def is_work_tree(root: Path) -> bool:
    result = git(["rev-parse", "--is-inside-work-tree"], root)
    return result.success and result.stdout.strip() == "true"


def parse_porcelain_z(output: str) -> list[str]:
    """Paths from `git status --porcelain -z`; a rename lists only its new path."""
    paths = []
    entries = iter(output.split("\0"))
    for entry in entries:
        if len(entry) < 4:
            continue
        paths.append(entry[3:])
        if entry[0] in "RC":
            next(entries, None)  # original path of the rename/copy
    return paths


def changed_files(root: Path) -> list[str]:
    """
    Modified, staged and untracked paths relative to `root`.

    Raises:
        ScopegateError: git status failed or timed out
    """
    result = git(["status", "--porcelain", "-z", "--untracked-files=all"], root)
    if not result.success:
        raise ScopegateError(
            f"Cannot list changed files in {root}: {result.describe_failure()}",
            expected="git status exit 0",
            found=str(result.returncode),
        )
    return parse_porcelain_z(result.stdout)
