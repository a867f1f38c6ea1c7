"""Durable single-key storage for the current state name."""

from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Protocol

_logger = logging.getLogger(__name__)

#: Key under which the active state name is persisted.
STATE_KEY = "combinedState"


class PersistentStore(Protocol):
    """Async get/set of named string values.  Last write wins."""

    async def read(self, key: str) -> str | None:
        ...

    async def write(self, key: str, value: str) -> None:
        ...


class MemoryStore:
    """In-process store; survives a simulated restart when the instance is reused."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._values: dict[str, str] = dict(initial or {})
        self.writes = 0

    async def read(self, key: str) -> str | None:
        return self._values.get(key)

    async def write(self, key: str, value: str) -> None:
        self._values[key] = value
        self.writes += 1


def _atomic_write_text(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(prefix=path.name + ".", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
        os.replace(tmp, path)
    finally:
        if os.path.exists(tmp):
            os.unlink(tmp)


class JsonFileStore:
    """Store backed by one JSON document on disk.

    Missing or corrupt files read as empty.  Writes replace the file
    atomically and run in the default executor so the event loop never
    blocks on disk I/O.
    """

    def __init__(self, path: str | os.PathLike[str]) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> dict[str, str]:
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except (OSError, json.JSONDecodeError):
            _logger.warning("State file %s is unreadable; treating as empty", self._path, exc_info=True)
            return {}
        if not isinstance(data, dict):
            _logger.warning("State file %s does not hold an object; treating as empty", self._path)
            return {}
        return {str(k): v for k, v in data.items() if isinstance(v, str)}

    def _store(self, key: str, value: str) -> None:
        data = self._load()
        data[key] = value
        _atomic_write_text(self._path, json.dumps(data, ensure_ascii=False, indent=2) + "\n")

    async def read(self, key: str) -> str | None:
        loop = asyncio.get_running_loop()
        data = await loop.run_in_executor(None, self._load)
        return data.get(key)

    async def write(self, key: str, value: str) -> None:
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._store, key, value)
        _logger.debug("Persisted %s=%s to %s", key, value, self._path)
