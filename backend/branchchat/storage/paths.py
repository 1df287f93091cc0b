from __future__ import annotations

from pathlib import Path

CONVERSATIONS_DIR = "conversations"
INDEX_FILE_NAME = "index.json"
MESSAGE_LOG_FILE_NAME = "messages.jsonl"


class PathAccessError(ValueError):
    """Raised when a conversation id would resolve outside the data directory."""


class DataPaths:
    """Resolve on-disk locations under one data directory."""

    def __init__(self, data_dir: Path) -> None:
        self._root = Path(data_dir).resolve()

    @property
    def root(self) -> Path:
        return self._root

    def conversation_index(self) -> Path:
        return self._root / CONVERSATIONS_DIR / INDEX_FILE_NAME

    def conversation_dir(self, conversation_id: str) -> Path:
        base = (self._root / CONVERSATIONS_DIR).resolve()
        if not conversation_id or conversation_id in {".", "..", INDEX_FILE_NAME}:
            raise PathAccessError(f"Path access denied: {conversation_id!r}")
        candidate = (base / conversation_id).resolve()
        if candidate.parent != base:
            raise PathAccessError(f"Path access denied: {conversation_id!r}")
        return candidate

    def message_log(self, conversation_id: str) -> Path:
        return self.conversation_dir(conversation_id) / MESSAGE_LOG_FILE_NAME
