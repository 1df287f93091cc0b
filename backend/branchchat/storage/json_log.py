"""Append-only JSON Lines log.

One record per line, written at the end of the file and never rewritten. A
crash during ``append`` can at most leave the final line truncated; every
earlier line stays intact. Reads validate each line against a pydantic model
and refuse to guess: a bad line is reported with its file and line number.

The log assumes a single writer. Callers serialise ``append`` calls.
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Generic, Optional, TypeVar

from pydantic import BaseModel, ValidationError

from branchchat.storage.models import StoredModel

T = TypeVar("T", bound=BaseModel)


class LogReadError(RuntimeError):
    """Raised when a log line fails to parse or validate, or the log fails to replay.

    ``line_number`` is None when every line is valid on its own but the records
    do not form a consistent tree.
    """

    def __init__(self, path: Path, line_number: Optional[int], detail: str) -> None:
        where = f"line {line_number} in {path}" if line_number is not None else str(path)
        super().__init__(f"Invalid data at {where}: {detail}")
        self.path = path
        self.line_number = line_number
        self.detail = detail


class JsonLog(Generic[T]):
    """Line-oriented persistence for one stream of records."""

    def __init__(self, path: Path, model: type[T]) -> None:
        self._path = path
        self._model = model

    @property
    def path(self) -> Path:
        return self._path

    async def append(self, record: T) -> None:
        """Serialise one record and write it at the end of the file."""

        line = json.dumps(_to_json(record), ensure_ascii=False, separators=(",", ":"))
        await asyncio.to_thread(self._append_line, line + "\n")

    async def read_all(self) -> list[T]:
        """Return every record in append order; a missing file is empty."""

        return await asyncio.to_thread(self._read_all)

    async def delete(self) -> None:
        """Remove the log file. A file that is already gone counts as success."""

        await asyncio.to_thread(self._delete)

    def _append_line(self, line: str) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with self._path.open("a", encoding="utf-8", newline="\n") as handle:
            handle.write(line)
            handle.flush()

    def _read_all(self) -> list[T]:
        try:
            text = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return []

        records: list[T] = []
        for index, raw in enumerate(text.split("\n"), start=1):
            if not raw.strip():
                continue
            try:
                payload = json.loads(raw)
            except json.JSONDecodeError as exc:
                raise LogReadError(self._path, index, f"invalid JSON ({exc.msg})") from exc
            try:
                records.append(self._model.model_validate(payload))
            except ValidationError as exc:
                raise LogReadError(self._path, index, _first_issue(exc)) from exc
        return records

    def _delete(self) -> None:
        try:
            self._path.unlink()
        except FileNotFoundError:
            return


def _to_json(record: BaseModel) -> dict:
    if isinstance(record, StoredModel):
        return record.to_json_dict()
    return record.model_dump(mode="json", by_alias=True)


def _first_issue(exc: ValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "validation failed"
    first = errors[0]
    location = ".".join(str(part) for part in first.get("loc", ()))
    message = first.get("msg", "validation failed")
    return f"{location}: {message}" if location else message
