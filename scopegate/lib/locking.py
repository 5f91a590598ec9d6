"""
In-process record locks.

Read-modify-write of a single record happens under a mutex keyed by the
record's path, so concurrent calls inside one worker can't clobber each
other. Separate worker processes are NOT serialised here: cross-process
safety is limited to the version check in store.py.
"""

import threading
import time
from contextlib import contextmanager

from .errors import LockTimeout


_registry_guard = threading.Lock()
_locks: dict[str, threading.RLock] = {}

POLL_INTERVAL = 0.05


def _lock_for(key: str) -> threading.RLock:
    with _registry_guard:
        lock = _locks.get(key)
        if lock is None:
            lock = threading.RLock()
            _locks[key] = lock
        return lock


@contextmanager
def record_lock(key: str, timeout: float = 10):
    """
    Hold the mutex for `key`, yield, release on exit.

    Re-entrant for the owning thread, so an operation may lock a chain and
    then a task inside it without deadlocking on itself.

    Raises:
        LockTimeout: if another thread holds the key for longer than timeout
    """
    lock = _lock_for(key)
    start = time.monotonic()

    while not lock.acquire(blocking=False):
        if time.monotonic() - start > timeout:
            raise LockTimeout(key, timeout)
        time.sleep(POLL_INTERVAL)

    try:
        yield
    finally:
        lock.release()
