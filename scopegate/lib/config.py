"""
Configuration loader for scopegate.

Project settings come from scopegate.env at the project root. Every key is
optional; a project without the file runs on defaults.
"""

from dataclasses import dataclass
from pathlib import Path

from . import envparse
from .constants import (
    CONFIG_FILE,
    DEFAULT_STATE_DIR,
    DEFAULT_GOVERNANCE_FILE,
    DEFAULT_HANDOFF_FILE,
    DEFAULT_LOCK_EXPIRATION_MINUTES,
    DEFAULT_VERIFY_TIMEOUT,
    DEFAULT_RECORD_LOCK_TIMEOUT,
)


@dataclass
class ProjectConfig:
    """Project-level configuration from scopegate.env"""
    root: Path
    state_dir: Path
    governance_file: Path
    handoff_file: Path
    templates_dir: Path
    lock_expiration_minutes: int
    verify_timeout: int  # Seconds per verification command
    record_lock_timeout: int  # Seconds to wait for the in-process record mutex

    @property
    def tasks_dir(self) -> Path:
        return self.state_dir / "tasks"

    @property
    def chains_dir(self) -> Path:
        return self.state_dir / "chains"

    @property
    def requests_dir(self) -> Path:
        return self.state_dir / "requests"

    @property
    def workflows_dir(self) -> Path:
        return self.state_dir / "workflows"

    @property
    def feedback_dir(self) -> Path:
        return self.state_dir / "feedback"

    @property
    def locks_file(self) -> Path:
        return self.state_dir / "locks.json"

    @property
    def events_file(self) -> Path:
        return self.state_dir / "events.jsonl"


def _resolve(root: Path, value: str) -> Path:
    path = Path(value)
    return path if path.is_absolute() else root / path


def load_project_config(root: Path) -> ProjectConfig:
    """Load scopegate.env from root and return ProjectConfig.

    Raises:
        ValueError: if the env file has invalid syntax or non-integer numbers
    """
    root = Path(root)
    env = envparse.load_env(root / CONFIG_FILE, missing_ok=True)

    state_dir = _resolve(root, env.get("STATE_DIR", DEFAULT_STATE_DIR))
    templates = env.get("TEMPLATES_DIR")

    return ProjectConfig(
        root=root,
        state_dir=state_dir,
        governance_file=_resolve(root, env.get("GOVERNANCE_FILE", DEFAULT_GOVERNANCE_FILE)),
        handoff_file=_resolve(root, env.get("HANDOFF_FILE", DEFAULT_HANDOFF_FILE)),
        templates_dir=_resolve(root, templates) if templates else state_dir / "workflow-templates",
        lock_expiration_minutes=envparse.get_int(
            env, "LOCK_EXPIRATION_MINUTES", DEFAULT_LOCK_EXPIRATION_MINUTES
        ),
        verify_timeout=envparse.get_int(env, "VERIFY_TIMEOUT", DEFAULT_VERIFY_TIMEOUT),
        record_lock_timeout=envparse.get_int(env, "RECORD_LOCK_TIMEOUT", DEFAULT_RECORD_LOCK_TIMEOUT),
    )
