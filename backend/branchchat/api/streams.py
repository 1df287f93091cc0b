from __future__ import annotations

from fastapi import APIRouter, Depends

from branchchat.schemas.message import StreamCancelResponse
from branchchat.services.conversation_service import (
    ConversationService,
    get_conversation_service,
)

router = APIRouter(prefix="/api/streams", tags=["streams"])


@router.post("/{message_id}/cancel", response_model=StreamCancelResponse)
async def cancel_stream(
    message_id: str,
    conversation_service: ConversationService = Depends(get_conversation_service),
) -> StreamCancelResponse:
    """Cancel a streaming response. Cancelling a finished stream is a no-op."""

    cancelled = await conversation_service.cancel_stream(message_id)
    return StreamCancelResponse(message_id=message_id, cancelled=cancelled)
