"""
Safe KEY=value parser for scopegate.env.

Nothing is ever handed to a shell. Values that look like shell
substitution or command chaining are rejected outright.
"""

import re
from pathlib import Path

FORBIDDEN_PATTERNS = [
    r'`',           # backticks
    r'\$\(',        # command substitution
    r'\$\{',        # variable expansion
    r';',           # command chaining
    r'&&',          # AND chaining
    r'\|\|',        # OR chaining
    r'\|',          # pipe
]

KEY_PATTERN = re.compile(r'^[A-Z][A-Z0-9_]*$')


def _unquote(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ('"', "'"):
        return value[1:-1]
    return value


def parse_env_text(text: str, source: str = "<string>") -> dict[str, str]:
    """
    Parse env-file content into a dict.

    Raises:
        ValueError: if a line has no '=', an invalid key, or a forbidden pattern
    """
    result = {}

    for lineno, raw in enumerate(text.splitlines(), 1):
        line = raw.strip()
        if not line or line.startswith('#'):
            continue

        if line.startswith('export '):
            line = line[len('export '):].lstrip()

        if '=' not in line:
            raise ValueError(f"{source}:{lineno}: Invalid syntax (no '=')")

        key, _, value = line.partition('=')
        key = key.strip()
        value = _unquote(value.strip())

        if not KEY_PATTERN.match(key):
            raise ValueError(f"{source}:{lineno}: Invalid key '{key}'")

        for pattern in FORBIDDEN_PATTERNS:
            if re.search(pattern, value):
                raise ValueError(f"{source}:{lineno}: Forbidden pattern in value of {key}")

        result[key] = value

    return result


def load_env(filepath: Path, missing_ok: bool = False) -> dict[str, str]:
    """
    Load an env file.

    Args:
        filepath: File to read
        missing_ok: Return {} instead of raising when the file is absent

    Raises:
        FileNotFoundError: file missing and missing_ok is False
        ValueError: syntax errors (see parse_env_text)
    """
    path = Path(filepath)
    if not path.exists():
        if missing_ok:
            return {}
        raise FileNotFoundError(f"Env file not found: {path}")
    return parse_env_text(path.read_text(), str(path))


def get_int(env: dict[str, str], key: str, default: int) -> int:
    """Read a positive integer setting, raising ValueError on junk."""
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{key} must be an integer, got '{raw}'") from None
    if value <= 0:
        raise ValueError(f"{key} must be positive, got {value}")
    return value
