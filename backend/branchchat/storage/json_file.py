from __future__ import annotations

import asyncio
import json
import os
from pathlib import Path
from typing import Callable, Generic, TypeVar

from pydantic import BaseModel, ValidationError

T = TypeVar("T", bound=BaseModel)


class SnapshotReadError(RuntimeError):
    """Raised when a snapshot file exists but cannot be parsed or validated."""

    def __init__(self, path: Path, detail: str) -> None:
        super().__init__(f"Invalid snapshot in {path}: {detail}")
        self.path = path
        self.detail = detail


class JsonFile(Generic[T]):
    """Whole-file JSON snapshot replaced atomically on every write."""

    def __init__(self, path: Path, model: type[T], default_factory: Callable[[], T]) -> None:
        self._path = path
        self._model = model
        self._default_factory = default_factory

    @property
    def path(self) -> Path:
        return self._path

    async def read(self) -> T:
        """Return the stored snapshot, or the default when the file is missing."""

        return await asyncio.to_thread(self._read)

    async def write(self, data: T) -> None:
        """Write the snapshot to a temp file and rename it over the original."""

        content = json.dumps(
            data.model_dump(mode="json", by_alias=True, exclude_none=True),
            ensure_ascii=False,
            indent=2,
        )
        await asyncio.to_thread(self._write, content)

    async def update(self, updater: Callable[[T], T]) -> T:
        """Read, transform and write back the snapshot; return the new value."""

        current = await self.read()
        updated = updater(current)
        await self.write(updated)
        return updated

    def _read(self) -> T:
        try:
            text = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return self._default_factory()
        try:
            return self._model.model_validate(json.loads(text))
        except json.JSONDecodeError as exc:
            raise SnapshotReadError(self._path, f"invalid JSON ({exc.msg})") from exc
        except ValidationError as exc:
            raise SnapshotReadError(self._path, str(exc.errors()[0].get("msg"))) from exc

    def _write(self, content: str) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        with tmp.open("w", encoding="utf-8") as handle:
            handle.write(content)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp, self._path)
