"""Per-project mutual exclusion.

Invest and Payback for the same project must be serialized: concurrent
investors would otherwise both pass the over-subscription check and race
on money_raised. Calls for different projects run in parallel.

Investor and recipient records are shared across projects and get their
own ("investor", index) and ("recipient", index) keys. Those are only
ever taken while a project or bond lock is already held, never the other
way round.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Hashable, Iterator


class ProjectLocks:
    """A lazily created lock per key.

    Usage:
        locks = ProjectLocks()
        with locks.hold(("project", 7)):
            ...  # read-modify-write project 7
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[Hashable, threading.Lock] = {}

    def lock_for(self, key: Hashable) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        lock = self.lock_for(key)
        with lock:
            yield

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)
