"""Shell command runner with timeout handling.

Used by verification gates. A command that overruns its timeout is killed
together with everything it spawned (it runs in its own process group),
and reported as a failure rather than left hanging.
"""

import logging
import os
import signal
import subprocess
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

OUTPUT_TAIL = 2000


@dataclass
class CommandResult:
    """Result of a shell command."""
    command: str
    returncode: int
    stdout: str
    stderr: str
    timed_out: bool = False

    @property
    def success(self) -> bool:
        return self.returncode == 0 and not self.timed_out

    def describe_failure(self) -> str:
        if self.timed_out:
            return f"'{self.command}' timed out"
        output = (self.stderr or self.stdout).strip()
        message = f"'{self.command}' exited with {self.returncode}"
        if output:
            message += f": {output[-OUTPUT_TAIL:]}"
        return message


def _kill_group(proc: subprocess.Popen) -> None:
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except (ProcessLookupError, PermissionError):
        proc.kill()


def run_command(command: str, cwd: Path, timeout: float) -> CommandResult:
    """
    Run a shell command, killing its whole process group on timeout.

    Args:
        command: Shell command line (e.g. "make test")
        cwd: Working directory
        timeout: Seconds before the command is killed

    Returns:
        CommandResult; timed_out is set when the deadline passed
    """
    proc = subprocess.Popen(
        command,
        shell=True,
        cwd=str(cwd),
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
        start_new_session=True,
    )
    try:
        stdout, stderr = proc.communicate(timeout=timeout)
    except subprocess.TimeoutExpired:
        logger.warning(f"[PROC] '{command}' exceeded {timeout}s, killing")
        _kill_group(proc)
        stdout, stderr = proc.communicate()
        return CommandResult(
            command=command,
            returncode=-1,
            stdout=stdout or "",
            stderr=(stderr or "") + f"\nCommand timed out after {timeout}s",
            timed_out=True,
        )
    except BaseException:
        # Interrupted while waiting: never leave the child running
        _kill_group(proc)
        proc.wait()
        raise

    return CommandResult(
        command=command,
        returncode=proc.returncode,
        stdout=stdout,
        stderr=stderr,
    )


def run_argv(argv: list[str], cwd: Path, timeout: float) -> CommandResult:
    """Run a program without a shell. A missing executable is exit code 127."""
    command = " ".join(argv)
    try:
        proc = subprocess.run(argv, cwd=str(cwd), capture_output=True, text=True, timeout=timeout)
    except subprocess.TimeoutExpired:
        logger.warning(f"[PROC] '{command}' exceeded {timeout}s")
        return CommandResult(command, -1, "", f"Command timed out after {timeout}s", timed_out=True)
    except FileNotFoundError:
        return CommandResult(command, 127, "", f"{argv[0]}: executable not found")
    return CommandResult(command, proc.returncode, proc.stdout, proc.stderr)
