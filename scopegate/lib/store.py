"""
JSON record persistence.

Records are plain JSON files with an integer "version" field. A write
names the version it was derived from; if the file on disk has moved on,
the write fails with StaleRecord instead of silently overwriting someone
else's change. Files are replaced atomically (write temp, rename).
"""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Iterator

from .errors import StaleRecord
from .validate import validate, validate_before_write

logger = logging.getLogger(__name__)


def read_record(path: Path, schema_name: str) -> dict | None:
    """Load and validate a record. Returns None when the file doesn't exist."""
    if not path.exists():
        return None
    data = json.loads(path.read_text())
    validate(data, schema_name)
    return data


def current_version(path: Path) -> int:
    """On-disk version of a record, 0 if it doesn't exist yet.

    Raises:
        ValueError: the file exists but holds no readable version
    """
    if not path.exists():
        return 0
    data = json.loads(path.read_text())
    if not isinstance(data, dict):
        raise ValueError(f"{path} does not hold a JSON object")
    return int(data.get("version", 0))


def write_record(path: Path, data: dict, schema_name: str, expected_version: int) -> dict:
    """
    Write a record if nobody else changed it since `expected_version`.

    Args:
        path: Record file
        data: Record contents (its "version" key is overwritten)
        schema_name: Schema the record must satisfy
        expected_version: Version the caller read (0 for a new record)

    Returns:
        The record as written, with the bumped version

    Raises:
        StaleRecord: on-disk version differs from expected_version, or the
            existing file is unreadable
        ValidationError: data doesn't match schema
    """
    try:
        found = current_version(path)
    except (ValueError, TypeError) as e:
        logger.warning(f"[STORE] Refusing to overwrite unreadable record {path}: {e}")
        raise StaleRecord(str(path), expected_version, "unreadable") from e
    if found != expected_version:
        raise StaleRecord(str(path), expected_version, found)

    record = dict(data)
    record["version"] = expected_version + 1
    validate_before_write(record, schema_name, path)

    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w") as f:
            json.dump(record, f, indent=2)
            f.write("\n")
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise

    return record


def iter_records(directory: Path, schema_name: str, pattern: str = "*.json") -> Iterator[dict]:
    """Yield every valid record in a directory, skipping (and logging) bad files."""
    if not directory.exists():
        return
    for path in sorted(directory.glob(pattern)):
        if path.name.startswith(".") or path.name == "index.json":
            continue
        try:
            record = read_record(path, schema_name)
        except Exception as e:
            logger.warning(f"[STORE] Skipping invalid record {path}: {e}")
            continue
        if record is not None:
            yield record
