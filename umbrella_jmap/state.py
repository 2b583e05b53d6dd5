"""Key-value stores for state carried between poll cycles."""

from __future__ import annotations

import asyncio
import json
import os
import tempfile
from pathlib import Path
from typing import Any, Protocol

import structlog

logger = structlog.get_logger()


class StateStore(Protocol):
    """Persisted poll state, injected into the poller by the host."""

    async def get(self, key: str) -> Any: ...

    async def set(self, key: str, value: Any) -> None: ...


class MemoryStateStore:
    """In-process store; state is lost on restart."""

    def __init__(self, initial: dict[str, Any] | None = None) -> None:
        self._data: dict[str, Any] = dict(initial or {})

    async def get(self, key: str) -> Any:
        return self._data.get(key)

    async def set(self, key: str, value: Any) -> None:
        self._data[key] = value


class JsonFileStateStore:
    """State in a JSON object file, rewritten atomically on every ``set``."""

    def __init__(self, path: str | os.PathLike[str]) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    async def get(self, key: str) -> Any:
        data = await asyncio.to_thread(self._read)
        return data.get(key)

    async def set(self, key: str, value: Any) -> None:
        await asyncio.to_thread(self._update, key, value)
        logger.debug("state_saved", path=str(self._path), key=key)

    def _read(self) -> dict[str, Any]:
        try:
            text = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        data = json.loads(text) if text.strip() else {}
        if not isinstance(data, dict):
            raise ValueError(f"State file {self._path} does not hold a JSON object")
        return data

    def _update(self, key: str, value: Any) -> None:
        data = self._read()
        data[key] = value
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self._path.parent, prefix=f".{self._path.name}.")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(data, fh, indent=2, sort_keys=True)
            os.replace(tmp_name, self._path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
