from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import Field

from branchchat.schemas.common import APIModel
from branchchat.schemas.message import MessageOut


class ConversationOut(APIModel):
    """Serialized conversation metadata."""

    id: str
    title: Optional[str]
    pinned: bool
    renamed: bool
    system_prompt: Optional[str]
    created_at: datetime
    updated_at: datetime
    selections: dict[str, int]
    children: List[str] = Field(default_factory=list)


class ConversationListResponse(APIModel):
    """All conversations, most recently updated first."""

    conversations: List[ConversationOut]


class ConversationCreateRequest(APIModel):
    """Payload for creating an empty conversation."""

    title: Optional[str] = Field(default=None)
    system_prompt: Optional[str] = Field(default=None)


class ConversationUpdateRequest(APIModel):
    """Partial update of conversation metadata."""

    title: Optional[str] = Field(default=None)
    pinned: Optional[bool] = Field(default=None)
    system_prompt: Optional[str] = Field(default=None)


class ConversationForkRequest(APIModel):
    """Payload for copying a conversation path into a new conversation."""

    up_to_message_id: Optional[str] = Field(default=None)
    title: Optional[str] = Field(default=None)


class ConversationForkResponse(APIModel):
    """The new conversation and the messages copied into it."""

    conversation: ConversationOut
    messages: List[MessageOut]


class BranchPointOut(APIModel):
    """A parent on the displayed path that has several children."""

    parent_id: str
    branches: List[str]
    child_count: int
    selected_index: int


class PathRequest(APIModel):
    """Explicit branch selections to resolve against."""

    selections: dict[str, int] = Field(default_factory=dict)


class PathResponse(APIModel):
    """The displayed path and its branch points."""

    conversation_id: str
    messages: List[MessageOut]
    branch_points: List[BranchPointOut]
    selections: dict[str, int]


class BranchSwitchRequest(APIModel):
    """Payload for selecting a child of a branch point."""

    parent_id: str
    index: int = Field(ge=0)


class FolderCreateRequest(APIModel):
    """Payload for filing conversations into a new folder."""

    conversation_ids: List[str] = Field(min_length=1)
    title: Optional[str] = Field(default=None)


class ConversationMoveRequest(APIModel):
    """Target folder for a conversation; null moves it back to the top level."""

    folder_id: Optional[str] = Field(default=None)


class FolderReorderRequest(APIModel):
    """New display order of a folder's conversations."""

    conversation_ids: List[str]
