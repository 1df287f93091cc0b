from __future__ import annotations

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from branchchat.utils.time_utils import utc_now

ROOT_ID = "root"

MessageRole = Literal["user", "assistant", "system"]
MessageStatus = Literal["pending", "streaming", "complete", "failed"]
TERMINAL_STATUSES = frozenset({"complete", "failed"})


class StoredModel(BaseModel):
    """Base for persisted records: camelCase on disk, unknown keys preserved."""

    model_config = ConfigDict(
        populate_by_name=True,
        extra="allow",
        protected_namespaces=(),
    )

    def to_json_dict(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class MessageError(StoredModel):
    """Structured failure attached to a failed message."""

    code: str
    message: str
    retryable: bool = False
    cancelled: bool = False


class MessageRecord(StoredModel):
    """One node of a conversation tree, as written to the message log."""

    id: str
    parent_id: str = Field(default=ROOT_ID, alias="parentId")
    role: MessageRole
    content: str = ""
    status: MessageStatus = "complete"
    created_at: datetime = Field(default_factory=utc_now, alias="createdAt")
    updated_at: Optional[datetime] = Field(default=None, alias="updatedAt")
    error: Optional[MessageError] = None
    provider: Optional[str] = Field(default=None, alias="providerId")
    model_name: Optional[str] = Field(default=None, alias="modelId")
    deleted: bool = False

    @field_validator("id")
    @classmethod
    def _require_id(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("id must not be empty")
        return value

    @field_validator("parent_id", mode="before")
    @classmethod
    def _normalize_parent(cls, value: object) -> object:
        if value is None or value == "":
            return ROOT_ID
        return value

    @property
    def is_root(self) -> bool:
        return self.parent_id == ROOT_ID

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_json_dict(self) -> dict:
        payload = super().to_json_dict()
        if not self.deleted:
            payload.pop("deleted", None)
        return payload


class ConversationEntry(StoredModel):
    """Metadata for one conversation in the conversation index.

    An entry with ``children`` is a folder; the list holds the ids of the
    conversations filed under it, in display order.
    """

    id: str
    title: Optional[str] = None
    pinned: bool = False
    renamed: bool = False
    system_prompt: Optional[str] = Field(default=None, alias="systemPrompt")
    created_at: datetime = Field(default_factory=utc_now, alias="createdAt")
    updated_at: datetime = Field(default_factory=utc_now, alias="updatedAt")
    selections: dict[str, int] = Field(default_factory=dict)
    children: list[str] = Field(default_factory=list)

    @property
    def is_folder(self) -> bool:
        return bool(self.children)


class ConversationIndex(StoredModel):
    """All conversations known to this data directory."""

    conversations: list[ConversationEntry] = Field(default_factory=list)

    def find(self, conversation_id: str) -> Optional[ConversationEntry]:
        for entry in self.conversations:
            if entry.id == conversation_id:
                return entry
        return None

    def folder_of(self, conversation_id: str) -> Optional[ConversationEntry]:
        for entry in self.conversations:
            if conversation_id in entry.children:
                return entry
        return None
