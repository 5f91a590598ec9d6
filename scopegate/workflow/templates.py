"""
Workflow templates.

Built-in templates cover the usual shapes of work. A project can add or
override templates with <TEMPLATES_DIR>/<name>.yaml:

    name: release
    stages:
      - name: implementation
        type: implementation
        gate: {type: chain_complete}
      - name: verification
        type: verification
        gate:
          type: verification_pass
          commands: ["make test"]
"""

import copy
import logging
from pathlib import Path

import yaml

from scopegate.lib.validate import ValidationError, validate

logger = logging.getLogger(__name__)

BUILTIN_TEMPLATES = {
    "standard": {
        "name": "standard",
        "stages": [
            {"name": "request", "type": "request",
             "gate": {"type": "human_approval", "prompt": "CR created. Proceed to design?"}},
            {"name": "design", "type": "design",
             "gate": {"type": "human_approval", "prompt": "Design complete. Proceed to implementation?"}},
            {"name": "implementation", "type": "implementation",
             "gate": {"type": "chain_complete"}},
            {"name": "verification", "type": "verification",
             "gate": {"type": "verification_pass", "commands": ["make test", "make lint"]}},
            {"name": "completion", "type": "review",
             "gate": {"type": "human_approval", "prompt": "All checks pass. Approve and merge?"}},
        ],
    },
    "hotfix": {
        "name": "hotfix",
        "stages": [
            {"name": "request", "type": "request",
             "gate": {"type": "human_approval", "prompt": "FR created. Proceed directly to implementation?"}},
            {"name": "implementation", "type": "implementation",
             "gate": {"type": "chain_complete"}},
            {"name": "verification", "type": "verification",
             "gate": {"type": "verification_pass", "commands": ["make test"]}},
            {"name": "completion", "type": "review",
             "gate": {"type": "human_approval", "prompt": "Hotfix ready. Approve and merge?"}},
        ],
    },
    "documentation": {
        "name": "documentation",
        "stages": [
            {"name": "request", "type": "request", "gate": {"type": "auto"}},
            {"name": "implementation", "type": "implementation",
             "gate": {"type": "chain_complete"}},
            {"name": "completion", "type": "review",
             "gate": {"type": "human_approval", "prompt": "Documentation updated. Approve?"}},
        ],
    },
}


class TemplateError(ValueError):
    """Workflow template is missing or malformed."""
    pass


def check_template(template: dict, source: str = "template") -> dict:
    """Validate a template dict.

    Raises:
        TemplateError: schema violation, or a verification gate without commands
    """
    try:
        validate(template, "workflow_template")
    except ValidationError as e:
        raise TemplateError(f"{source}: {e}") from None

    for stage in template["stages"]:
        gate = stage["gate"]
        if gate["type"] == "verification_pass" and not gate.get("commands"):
            raise TemplateError(
                f"{source}: stage '{stage['name']}' verification_pass gate requires commands"
            )
    return template


def _local_template_path(templates_dir: Path | None, name: str) -> Path | None:
    if templates_dir is None:
        return None
    for suffix in (".yaml", ".yml"):
        path = templates_dir / f"{name}{suffix}"
        if path.exists():
            return path
    return None


def load_template(name: str, templates_dir: Path | None = None) -> dict:
    """
    Load a template by name, project templates first.

    Returns:
        A fresh copy of the template dict (safe to mutate)

    Raises:
        TemplateError: unknown name or invalid template
    """
    path = _local_template_path(templates_dir, name)
    if path is not None:
        try:
            data = yaml.safe_load(path.read_text())
        except yaml.YAMLError as e:
            raise TemplateError(f"Invalid YAML in {path}: {e}") from None
        if not isinstance(data, dict):
            raise TemplateError(f"{path}: top level must be a mapping")
        data.setdefault("name", name)
        logger.debug(f"[WORKFLOW] Using project template {path}")
        return check_template(data, str(path))

    if name in BUILTIN_TEMPLATES:
        return copy.deepcopy(BUILTIN_TEMPLATES[name])

    raise TemplateError(f"Unknown workflow template '{name}'. Available: {', '.join(list_templates(templates_dir))}")


def list_templates(templates_dir: Path | None = None) -> list[str]:
    names = set(BUILTIN_TEMPLATES)
    if templates_dir is not None and templates_dir.exists():
        names.update(p.stem for p in templates_dir.glob("*.yaml"))
        names.update(p.stem for p in templates_dir.glob("*.yml"))
    return sorted(names)
