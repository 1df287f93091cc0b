from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import Field

from branchchat.schemas.common import APIModel
from branchchat.services.streaming import StreamEvent


class MessageErrorOut(APIModel):
    """Structured failure attached to a failed message."""

    code: str
    message: str
    retryable: bool
    cancelled: bool


class MessageOut(APIModel):
    """Serialized message node."""

    id: str
    parent_id: str
    role: str
    content: str
    status: str
    created_at: datetime
    updated_at: Optional[datetime] = None
    error: Optional[MessageErrorOut] = None
    provider: Optional[str] = None
    model_name: Optional[str] = None


class MessageListResponse(APIModel):
    """Every message of a conversation in creation order."""

    conversation_id: str
    messages: List[MessageOut]


class SendMessageRequest(APIModel):
    """Payload for sending a user message."""

    content: str
    provider: Optional[str] = Field(default=None)
    model_name: Optional[str] = Field(default=None)
    selections: Optional[dict[str, int]] = Field(default=None)


class EditMessageRequest(APIModel):
    """Payload for editing a message into a new sibling."""

    content: str
    provider: Optional[str] = Field(default=None)
    model_name: Optional[str] = Field(default=None)


class RegenerateRequest(APIModel):
    """Payload for regenerating an assistant message."""

    provider: Optional[str] = Field(default=None)
    model_name: Optional[str] = Field(default=None)


class MutationResponse(APIModel):
    """Messages created by a mutation, plus the message being streamed, if any."""

    conversation_id: str
    messages: List[MessageOut]
    stream_message_id: Optional[str] = None


class StreamCancelResponse(APIModel):
    """Result of a cancel request."""

    message_id: str
    cancelled: bool


class StreamEventOut(APIModel):
    """Wire form of one streaming session event."""

    event: str
    conversation_id: str
    message_id: str
    chunk: Optional[str] = None
    message: Optional[MessageOut] = None
    error: Optional[MessageErrorOut] = None

    @classmethod
    def from_event(cls, event: StreamEvent) -> "StreamEventOut":
        return cls(
            event=event.type,
            conversation_id=event.conversation_id,
            message_id=event.message_id,
            chunk=event.chunk,
            message=MessageOut.model_validate(event.message) if event.message else None,
            error=MessageErrorOut.model_validate(event.error) if event.error else None,
        )
