"""Key/record stores backing the task queue collections."""

from __future__ import annotations

import json
import os
import tempfile
import threading
from collections.abc import Iterator
from copy import deepcopy
from pathlib import Path
from typing import Any, Protocol

RECORD_SUFFIX = ".json"


class RecordStore(Protocol):
    """Presence-queryable collection of JSON records keyed by task id."""

    def exists(self, key: str) -> bool: ...

    def keys(self) -> Iterator[str]: ...

    def get(self, key: str) -> dict[str, Any] | None: ...

    def put(self, key: str, payload: dict[str, Any]) -> None: ...

    def delete(self, key: str) -> bool: ...

    def count(self) -> int: ...


def validate_key(key: str) -> str:
    """Reject keys that cannot be used as a single file name."""

    if not isinstance(key, str) or not key.strip():
        raise ValueError("Record key must be a non-empty string.")
    if key != key.strip():
        raise ValueError(f"Record key must not have surrounding whitespace: {key!r}")
    if key.startswith("."):
        raise ValueError(f"Record key must not start with a dot: {key!r}")
    if "/" in key or "\\" in key or "\x00" in key:
        raise ValueError(f"Record key must not contain path separators: {key!r}")
    return key


class FileRecordStore:
    """One `<key>.json` file per record; writes are atomic via rename."""

    def __init__(self, directory: Path) -> None:
        self.directory = directory
        self.directory.mkdir(parents=True, exist_ok=True)

    def path_for(self, key: str) -> Path:
        return self.directory / f"{validate_key(key)}{RECORD_SUFFIX}"

    def exists(self, key: str) -> bool:
        return self.path_for(key).is_file()

    def keys(self) -> Iterator[str]:
        with os.scandir(self.directory) as entries:
            for entry in entries:
                name = entry.name
                if name.startswith(".") or not name.endswith(RECORD_SUFFIX):
                    continue
                if not entry.is_file():
                    continue
                yield name[: -len(RECORD_SUFFIX)]

    def get(self, key: str) -> dict[str, Any] | None:
        path = self.path_for(key)
        try:
            text = path.read_text("utf-8")
        except FileNotFoundError:
            return None
        payload = json.loads(text)
        if not isinstance(payload, dict):
            raise TypeError(f"Expected JSON object in {path}")
        return payload

    def put(self, key: str, payload: dict[str, Any]) -> None:
        path = self.path_for(key)
        text = json.dumps(payload, ensure_ascii=False, indent=2, sort_keys=True)
        handle, tmp_name = tempfile.mkstemp(
            dir=self.directory,
            prefix=f".{path.stem}.",
            suffix=".tmp",
        )
        try:
            with os.fdopen(handle, "w", encoding="utf-8") as stream:
                stream.write(text)
                stream.flush()
                os.fsync(stream.fileno())
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def delete(self, key: str) -> bool:
        try:
            self.path_for(key).unlink()
        except FileNotFoundError:
            return False
        return True

    def count(self) -> int:
        return sum(1 for _ in self.keys())


class MemoryRecordStore:
    """Dict-backed record store for tests and dry runs."""

    def __init__(self) -> None:
        self._records: dict[str, dict[str, Any]] = {}
        self._lock = threading.Lock()

    def exists(self, key: str) -> bool:
        with self._lock:
            return validate_key(key) in self._records

    def keys(self) -> Iterator[str]:
        with self._lock:
            snapshot = list(self._records)
        yield from snapshot

    def get(self, key: str) -> dict[str, Any] | None:
        with self._lock:
            record = self._records.get(validate_key(key))
            return deepcopy(record) if record is not None else None

    def put(self, key: str, payload: dict[str, Any]) -> None:
        # Round-trip through JSON so both stores accept the same payloads.
        copied = json.loads(json.dumps(payload))
        with self._lock:
            self._records[validate_key(key)] = copied

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._records.pop(validate_key(key), None) is not None

    def count(self) -> int:
        with self._lock:
            return len(self._records)
