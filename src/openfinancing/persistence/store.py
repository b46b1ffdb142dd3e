"""Entity store — bucketed key-value records with per-record atomic writes.

The store holds JSON-serializable dicts in named buckets (projects,
investors, recipients, ...). It offers atomic get/put of a single record
and an index allocator, but no multi-record transactions: callers must
treat "ledger done, record not yet written" as a recoverable state.

Two backends:
- MemoryEntityStore: process-local, for tests and ephemeral runs.
- JsonFileEntityStore: one JSON document per bucket under a directory,
  rewritten atomically (temp file + os.replace) on every put.
"""

from __future__ import annotations

import abc
import copy
import json
import os
import tempfile
import threading
from pathlib import Path
from typing import Any, Optional, Union

Key = Union[int, str]
Record = dict[str, Any]


def _sort_key(key: str) -> tuple[int, Any]:
    return (0, int(key)) if key.isdigit() else (1, key)


class EntityStore(abc.ABC):
    """Abstract bucketed record store."""

    def __init__(self) -> None:
        self._alloc_lock = threading.Lock()
        self._counters: dict[str, int] = {}

    @abc.abstractmethod
    def get(self, bucket: str, key: Key) -> Optional[Record]:
        """Return a copy of the record, or None if absent."""

    @abc.abstractmethod
    def put(self, bucket: str, key: Key, record: Record) -> None:
        """Atomically write one record."""

    @abc.abstractmethod
    def _items(self, bucket: str) -> dict[str, Record]:
        """All records in a bucket keyed by their string key."""

    def list_all(self, bucket: str) -> list[Record]:
        """All records in a bucket, ordered by key (integer keys numerically)."""
        items = self._items(bucket)
        return [copy.deepcopy(items[k]) for k in sorted(items, key=_sort_key)]

    def allocate_index(self, bucket: str) -> int:
        """Reserve the next integer index for a bucket (monotonically increasing)."""
        with self._alloc_lock:
            if bucket not in self._counters:
                numeric = [int(k) for k in self._items(bucket) if k.isdigit()]
                self._counters[bucket] = max(numeric, default=0)
            self._counters[bucket] += 1
            return self._counters[bucket]


class MemoryEntityStore(EntityStore):
    """Process-local store. Records are deep-copied in and out."""

    def __init__(self) -> None:
        super().__init__()
        self._lock = threading.Lock()
        self._buckets: dict[str, dict[str, Record]] = {}

    def get(self, bucket: str, key: Key) -> Optional[Record]:
        with self._lock:
            record = self._buckets.get(bucket, {}).get(str(key))
            return copy.deepcopy(record) if record is not None else None

    def put(self, bucket: str, key: Key, record: Record) -> None:
        # Round-trip through JSON so anything non-serializable fails here,
        # the same way it would in the file-backed store.
        encoded = json.loads(json.dumps(record))
        with self._lock:
            self._buckets.setdefault(bucket, {})[str(key)] = encoded

    def _items(self, bucket: str) -> dict[str, Record]:
        with self._lock:
            return dict(self._buckets.get(bucket, {}))


class JsonFileEntityStore(EntityStore):
    """File-backed store: ``<data_dir>/<bucket>.json`` per bucket."""

    def __init__(self, data_dir: Path) -> None:
        super().__init__()
        self._data_dir = data_dir
        self._lock = threading.Lock()
        data_dir.mkdir(parents=True, exist_ok=True)

    def get(self, bucket: str, key: Key) -> Optional[Record]:
        with self._lock:
            return self._load(bucket).get(str(key))

    def put(self, bucket: str, key: Key, record: Record) -> None:
        with self._lock:
            data = self._load(bucket)
            data[str(key)] = json.loads(json.dumps(record))
            self._write(bucket, data)

    def _items(self, bucket: str) -> dict[str, Record]:
        with self._lock:
            return self._load(bucket)

    def _path(self, bucket: str) -> Path:
        return self._data_dir / f"{bucket}.json"

    def _load(self, bucket: str) -> dict[str, Record]:
        path = self._path(bucket)
        if not path.exists():
            return {}
        return json.loads(path.read_text(encoding="utf-8"))

    def _write(self, bucket: str, data: dict[str, Record]) -> None:
        path = self._path(bucket)
        fd, tmp = tempfile.mkstemp(dir=self._data_dir, prefix=f".{bucket}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, sort_keys=True, ensure_ascii=False, indent=2)
            os.replace(tmp, path)
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise
