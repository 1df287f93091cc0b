"""In-memory conversation tree.

Messages live in an id-keyed mapping; a derived index maps each parent id
(or the ``root`` sentinel) to its children in creation order. The tree is
rebuilt from the message log when a conversation is opened and is the only
read source afterwards.
"""

from __future__ import annotations

from typing import Iterable, Iterator, Optional

from branchchat.storage.models import (
    ROOT_ID,
    TERMINAL_STATUSES,
    MessageError,
    MessageRecord,
    MessageStatus,
)
from branchchat.utils.time_utils import not_before


class TreeIntegrityError(RuntimeError):
    """Illegal tree operation. Signals a logic bug upstream, never retried."""


class MessageNotFoundError(LookupError):
    """Raised when a message id is not part of the tree."""

    def __init__(self, message_id: str) -> None:
        super().__init__(f"Message not found: {message_id!r}")
        self.message_id = message_id


class MessageTree:
    """Arena of messages plus a parent -> children index."""

    def __init__(self) -> None:
        self._nodes: dict[str, MessageRecord] = {}
        self._children: dict[str, list[str]] = {ROOT_ID: []}

    @classmethod
    def from_records(cls, records: Iterable[MessageRecord]) -> "MessageTree":
        """Replay log records in order.

        A repeated id replaces the earlier record. A ``deleted`` record removes
        that message and everything under it; a tombstone for a message that
        is already gone is ignored.
        """

        tree = cls()
        for record in records:
            if record.deleted:
                if record.id in tree._nodes:
                    tree.prune(record.id)
            elif record.id in tree._nodes:
                tree._replace(record)
            else:
                tree.insert(record)
        return tree

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, message_id: object) -> bool:
        return message_id in self._nodes

    def __iter__(self) -> Iterator[MessageRecord]:
        return iter(self._nodes.values())

    def messages(self) -> list[MessageRecord]:
        """Return every message in creation order."""

        return list(self._nodes.values())

    def get(self, message_id: str) -> MessageRecord:
        try:
            return self._nodes[message_id]
        except KeyError:
            raise MessageNotFoundError(message_id) from None

    def find(self, message_id: str) -> Optional[MessageRecord]:
        return self._nodes.get(message_id)

    def children_of(self, parent_id: str = ROOT_ID) -> list[MessageRecord]:
        """Return the children of a message (or of the root) in creation order."""

        return [self._nodes[child_id] for child_id in self._children.get(parent_id, ())]

    def index_in_parent(self, message_id: str) -> int:
        message = self.get(message_id)
        return self._children[message.parent_id].index(message_id)

    def path_to(self, message_id: str) -> list[MessageRecord]:
        """Return the ancestors of a message followed by the message itself."""

        path: list[MessageRecord] = []
        current: Optional[str] = message_id
        while current is not None and current != ROOT_ID:
            message = self.get(current)
            path.append(message)
            current = message.parent_id
        path.reverse()
        return path

    def insert(self, message: MessageRecord) -> MessageRecord:
        """Add a message under an existing parent."""

        if message.id == ROOT_ID:
            raise TreeIntegrityError(f"Message id {ROOT_ID!r} is reserved")
        if message.id in self._nodes:
            raise TreeIntegrityError(f"Message {message.id!r} already exists")
        if message.parent_id != ROOT_ID and message.parent_id not in self._nodes:
            raise TreeIntegrityError(
                f"Parent {message.parent_id!r} of message {message.id!r} does not exist"
            )
        self._nodes[message.id] = message
        self._children.setdefault(message.parent_id, []).append(message.id)
        self._children.setdefault(message.id, [])
        return message

    def discard(self, message_id: str) -> None:
        """Remove a leaf that never made it to the log."""

        message = self.get(message_id)
        if self._children.get(message_id):
            raise TreeIntegrityError(f"Cannot discard {message_id!r}: it has children")
        self._children[message.parent_id].remove(message_id)
        self._children.pop(message_id, None)
        del self._nodes[message_id]

    def prune(self, message_id: str) -> list[MessageRecord]:
        """Remove a message and all of its descendants; return them parent first."""

        message = self.get(message_id)
        removed: list[MessageRecord] = []
        pending = [message_id]
        while pending:
            current = pending.pop()
            removed.append(self._nodes.pop(current))
            pending.extend(reversed(self._children.pop(current, [])))
        self._children[message.parent_id].remove(message_id)
        return removed

    def mark_streaming(self, message_id: str) -> MessageRecord:
        message = self.get(message_id)
        if message.status != "pending":
            raise TreeIntegrityError(
                f"Cannot start streaming {message_id!r} in status {message.status!r}"
            )
        message.status = "streaming"
        message.updated_at = not_before(message.updated_at or message.created_at)
        return message

    def apply_delta(self, message_id: str, chunk: str) -> MessageRecord:
        """Append a chunk to a streaming message."""

        message = self.get(message_id)
        if message.status != "streaming":
            raise TreeIntegrityError(
                f"Cannot apply delta to {message_id!r} in status {message.status!r}"
            )
        message.content += chunk
        message.updated_at = not_before(message.updated_at or message.created_at)
        return message

    def finalize(
        self,
        message_id: str,
        status: MessageStatus,
        content: Optional[str] = None,
        error: Optional[MessageError] = None,
    ) -> MessageRecord:
        """Move a pending/streaming message to a terminal status and freeze it."""

        message = self.get(message_id)
        if status not in TERMINAL_STATUSES:
            raise TreeIntegrityError(f"{status!r} is not a terminal status")
        if message.is_terminal:
            raise TreeIntegrityError(
                f"Message {message_id!r} is already {message.status!r}"
            )
        if status == "failed" and error is None:
            raise TreeIntegrityError("A failed message requires an error")
        if status == "complete" and error is not None:
            raise TreeIntegrityError("A complete message cannot carry an error")
        if content is not None:
            message.content = content
        message.status = status
        message.error = error
        message.updated_at = not_before(message.updated_at or message.created_at)
        return message

    def _replace(self, record: MessageRecord) -> None:
        existing = self._nodes[record.id]
        if existing.parent_id != record.parent_id:
            raise TreeIntegrityError(
                f"Message {record.id!r} changed parent from "
                f"{existing.parent_id!r} to {record.parent_id!r}"
            )
        self._nodes[record.id] = record
