"""Key/value backends for persisting the client session."""
import json
import logging
import os
import tempfile
from collections.abc import Mapping
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Raised when the backing store cannot be read or written."""


class SessionStorage(Protocol):
    """Minimal string key/value store (the local-storage analogue)."""

    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def remove(self, key: str) -> None: ...

    def update(self, changes: Mapping[str, str | None]) -> None:
        """Apply several sets (value) and removals (None) as one write."""
        ...


class MemoryStorage:
    """Dict-backed storage. Nothing survives the process."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def update(self, changes: Mapping[str, str | None]) -> None:
        for key, value in changes.items():
            if value is None:
                self._data.pop(key, None)
            else:
                self._data[key] = value

    def snapshot(self) -> dict[str, str]:
        """Copy of the stored values (for inspection in tests)."""
        return dict(self._data)


class FileStorage:
    """
    Storage persisted as a single JSON object on disk.

    Writes go to a temporary file in the same directory and are moved into
    place with os.replace, so a crash never leaves a half-written file.
    A missing file is an empty store. A file that is not a JSON object is
    treated as empty (and logged) rather than failing every read.
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> dict[str, str]:
        try:
            raw = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        except OSError as e:
            raise StorageError(f"Cannot read {self._path}: {e}") from e
        except UnicodeDecodeError:
            logger.warning("session_file_corrupted path=%s reason=encoding", self._path)
            return {}
        try:
            data = json.loads(raw)
        except ValueError:
            logger.warning("session_file_corrupted path=%s", self._path)
            return {}
        if not isinstance(data, dict):
            logger.warning("session_file_corrupted path=%s", self._path)
            return {}
        return {k: v for k, v in data.items() if isinstance(v, str)}

    def _dump(self, data: dict[str, str]) -> None:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=self._path.parent, prefix=f".{self._path.name}.", suffix=".tmp",
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(data, f)
                os.replace(tmp_name, self._path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise StorageError(f"Cannot write {self._path}: {e}") from e

    def get(self, key: str) -> str | None:
        return self._load().get(key)

    def set(self, key: str, value: str) -> None:
        data = self._load()
        data[key] = value
        self._dump(data)

    def remove(self, key: str) -> None:
        data = self._load()
        if key in data:
            del data[key]
            self._dump(data)

    def update(self, changes: Mapping[str, str | None]) -> None:
        data = self._load()
        for key, value in changes.items():
            if value is None:
                data.pop(key, None)
            else:
                data[key] = value
        self._dump(data)
