from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Response, status

from branchchat.api.provider import provider_status
from branchchat.domain.resolver import TreeResolution
from branchchat.providers.base import ProviderError
from branchchat.schemas.conversation import (
    BranchPointOut,
    BranchSwitchRequest,
    ConversationCreateRequest,
    ConversationForkRequest,
    ConversationForkResponse,
    ConversationListResponse,
    ConversationOut,
    ConversationMoveRequest,
    ConversationUpdateRequest,
    FolderCreateRequest,
    FolderReorderRequest,
    PathRequest,
    PathResponse,
)
from branchchat.schemas.message import (
    EditMessageRequest,
    MessageListResponse,
    MessageOut,
    MutationResponse,
    RegenerateRequest,
    SendMessageRequest,
)
from branchchat.services.conversation_service import (
    ConversationOperationError,
    ConversationService,
    MutationResult,
    get_conversation_service,
)
from branchchat.services.streaming import StreamConflictError

router = APIRouter(prefix="/api/conversations", tags=["conversations"])


@router.get("", response_model=ConversationListResponse)
async def list_conversations(
    conversation_service: ConversationService = Depends(get_conversation_service),
) -> ConversationListResponse:
    """Return all conversations."""

    entries = await conversation_service.list_conversations()
    return ConversationListResponse(
        conversations=[ConversationOut.model_validate(entry) for entry in entries]
    )


@router.post("", response_model=ConversationOut, status_code=status.HTTP_201_CREATED)
async def create_conversation(
    payload: ConversationCreateRequest,
    conversation_service: ConversationService = Depends(get_conversation_service),
) -> ConversationOut:
    """Create an empty conversation."""

    entry = await conversation_service.create_conversation(
        title=payload.title, system_prompt=payload.system_prompt
    )
    return ConversationOut.model_validate(entry)


@router.patch("/{conversation_id}", response_model=ConversationOut)
async def update_conversation(
    conversation_id: str,
    payload: ConversationUpdateRequest,
    conversation_service: ConversationService = Depends(get_conversation_service),
) -> ConversationOut:
    """Rename, pin or change the system prompt of a conversation."""

    try:
        entry = await conversation_service.update_conversation(
            conversation_id,
            title=payload.title,
            pinned=payload.pinned,
            system_prompt=payload.system_prompt,
        )
    except ConversationOperationError as exc:
        raise HTTPException(status_code=_conversation_status(exc.code), detail=exc.message) from exc
    return ConversationOut.model_validate(entry)


@router.delete("/{conversation_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_conversation(
    conversation_id: str,
    conversation_service: ConversationService = Depends(get_conversation_service),
) -> Response:
    """Delete a conversation and its message log."""

    try:
        await conversation_service.delete_conversation(conversation_id)
    except ConversationOperationError as exc:
        raise HTTPException(status_code=_conversation_status(exc.code), detail=exc.message) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/{conversation_id}/fork",
    response_model=ConversationForkResponse,
    status_code=status.HTTP_201_CREATED,
)
async def fork_conversation(
    conversation_id: str,
    payload: ConversationForkRequest,
    conversation_service: ConversationService = Depends(get_conversation_service),
) -> ConversationForkResponse:
    """Copy the displayed path into a new conversation."""

    try:
        entry, messages = await conversation_service.fork_conversation(
            conversation_id,
            up_to_message_id=payload.up_to_message_id,
            title=payload.title,
        )
    except ConversationOperationError as exc:
        raise HTTPException(status_code=_conversation_status(exc.code), detail=exc.message) from exc
    return ConversationForkResponse(
        conversation=ConversationOut.model_validate(entry),
        messages=[MessageOut.model_validate(message) for message in messages],
    )


@router.post("/folders", response_model=ConversationOut, status_code=status.HTTP_201_CREATED)
async def create_folder(
    payload: FolderCreateRequest,
    conversation_service: ConversationService = Depends(get_conversation_service),
) -> ConversationOut:
    """File conversations into a new folder."""

    try:
        folder = await conversation_service.create_folder(
            payload.conversation_ids, title=payload.title
        )
    except ConversationOperationError as exc:
        raise HTTPException(status_code=_conversation_status(exc.code), detail=exc.message) from exc
    return ConversationOut.model_validate(folder)


@router.post("/{conversation_id}/move", response_model=ConversationOut)
async def move_conversation(
    conversation_id: str,
    payload: ConversationMoveRequest,
    conversation_service: ConversationService = Depends(get_conversation_service),
) -> ConversationOut:
    """Move a conversation into a folder or back to the top level."""

    try:
        entry = await conversation_service.move_conversation(
            conversation_id, folder_id=payload.folder_id
        )
    except ConversationOperationError as exc:
        raise HTTPException(status_code=_conversation_status(exc.code), detail=exc.message) from exc
    return ConversationOut.model_validate(entry)


@router.put("/{folder_id}/children", response_model=ConversationOut)
async def reorder_folder(
    folder_id: str,
    payload: FolderReorderRequest,
    conversation_service: ConversationService = Depends(get_conversation_service),
) -> ConversationOut:
    """Reorder the conversations of a folder."""

    try:
        folder = await conversation_service.reorder_folder(folder_id, payload.conversation_ids)
    except ConversationOperationError as exc:
        raise HTTPException(status_code=_conversation_status(exc.code), detail=exc.message) from exc
    return ConversationOut.model_validate(folder)


@router.get("/{conversation_id}/messages", response_model=MessageListResponse)
async def list_messages(
    conversation_id: str,
    conversation_service: ConversationService = Depends(get_conversation_service),
) -> MessageListResponse:
    """Return every message of the conversation tree."""

    try:
        messages = await conversation_service.list_messages(conversation_id)
    except ConversationOperationError as exc:
        raise HTTPException(status_code=_conversation_status(exc.code), detail=exc.message) from exc
    return MessageListResponse(
        conversation_id=conversation_id,
        messages=[MessageOut.model_validate(message) for message in messages],
    )


@router.get("/{conversation_id}/path", response_model=PathResponse)
async def get_path(
    conversation_id: str,
    conversation_service: ConversationService = Depends(get_conversation_service),
) -> PathResponse:
    """Resolve the displayed path using the stored branch selections."""

    try:
        resolution, selections = await conversation_service.resolve_path(conversation_id)
    except ConversationOperationError as exc:
        raise HTTPException(status_code=_conversation_status(exc.code), detail=exc.message) from exc
    return _path_response(conversation_id, resolution, selections)


@router.post("/{conversation_id}/path", response_model=PathResponse)
async def preview_path(
    conversation_id: str,
    payload: PathRequest,
    conversation_service: ConversationService = Depends(get_conversation_service),
) -> PathResponse:
    """Resolve the path for explicit selections without storing them."""

    try:
        resolution, selections = await conversation_service.resolve_path(
            conversation_id, payload.selections
        )
    except ConversationOperationError as exc:
        raise HTTPException(status_code=_conversation_status(exc.code), detail=exc.message) from exc
    return _path_response(conversation_id, resolution, selections)


@router.post(
    "/{conversation_id}/messages",
    response_model=MutationResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def send_message(
    conversation_id: str,
    payload: SendMessageRequest,
    conversation_service: ConversationService = Depends(get_conversation_service),
) -> MutationResponse:
    """Send a user message and start streaming the reply."""

    try:
        result = await conversation_service.send_message(
            conversation_id,
            payload.content,
            provider=payload.provider,
            model_name=payload.model_name,
            selections=payload.selections,
        )
    except ConversationOperationError as exc:
        raise HTTPException(status_code=_conversation_status(exc.code), detail=exc.message) from exc
    except ProviderError as exc:
        raise HTTPException(status_code=provider_status(exc.code), detail=exc.message) from exc
    except StreamConflictError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return _mutation_response(result)


@router.post(
    "/{conversation_id}/messages/{message_id}/edit",
    response_model=MutationResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def edit_message(
    conversation_id: str,
    message_id: str,
    payload: EditMessageRequest,
    conversation_service: ConversationService = Depends(get_conversation_service),
) -> MutationResponse:
    """Edit a message into a new selected sibling."""

    try:
        result = await conversation_service.edit_message(
            conversation_id,
            message_id,
            payload.content,
            provider=payload.provider,
            model_name=payload.model_name,
        )
    except ConversationOperationError as exc:
        raise HTTPException(status_code=_conversation_status(exc.code), detail=exc.message) from exc
    except ProviderError as exc:
        raise HTTPException(status_code=provider_status(exc.code), detail=exc.message) from exc
    except StreamConflictError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return _mutation_response(result)


@router.post(
    "/{conversation_id}/messages/{message_id}/regenerate",
    response_model=MutationResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def regenerate_message(
    conversation_id: str,
    message_id: str,
    payload: RegenerateRequest,
    conversation_service: ConversationService = Depends(get_conversation_service),
) -> MutationResponse:
    """Stream a new answer next to an existing assistant message."""

    try:
        result = await conversation_service.regenerate_message(
            conversation_id,
            message_id,
            provider=payload.provider,
            model_name=payload.model_name,
        )
    except ConversationOperationError as exc:
        raise HTTPException(status_code=_conversation_status(exc.code), detail=exc.message) from exc
    except ProviderError as exc:
        raise HTTPException(status_code=provider_status(exc.code), detail=exc.message) from exc
    except StreamConflictError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return _mutation_response(result)


@router.post("/{conversation_id}/branches/switch", response_model=PathResponse)
async def switch_branch(
    conversation_id: str,
    payload: BranchSwitchRequest,
    conversation_service: ConversationService = Depends(get_conversation_service),
) -> PathResponse:
    """Select a child of a branch point and return the new path."""

    try:
        resolution, selections = await conversation_service.switch_branch(
            conversation_id, payload.parent_id, payload.index
        )
    except ConversationOperationError as exc:
        raise HTTPException(status_code=_conversation_status(exc.code), detail=exc.message) from exc
    return _path_response(conversation_id, resolution, selections)


@router.delete("/{conversation_id}/messages/{message_id}", response_model=PathResponse)
async def delete_message(
    conversation_id: str,
    message_id: str,
    conversation_service: ConversationService = Depends(get_conversation_service),
) -> PathResponse:
    """Delete a message with its replies and return the new path."""

    try:
        resolution, selections = await conversation_service.delete_message(
            conversation_id, message_id
        )
    except ConversationOperationError as exc:
        raise HTTPException(status_code=_conversation_status(exc.code), detail=exc.message) from exc
    return _path_response(conversation_id, resolution, selections)


def _path_response(
    conversation_id: str, resolution: TreeResolution, selections: dict[str, int]
) -> PathResponse:
    return PathResponse(
        conversation_id=conversation_id,
        messages=[MessageOut.model_validate(message) for message in resolution.path],
        branch_points=[
            BranchPointOut(
                parent_id=point.parent_id,
                branches=list(point.branches),
                child_count=point.child_count,
                selected_index=point.selected_index,
            )
            for point in resolution.branch_points
        ],
        selections=selections,
    )


def _mutation_response(result: MutationResult) -> MutationResponse:
    return MutationResponse(
        conversation_id=result.conversation_id,
        messages=[MessageOut.model_validate(message) for message in result.created],
        stream_message_id=result.stream_message_id,
    )


def _conversation_status(code: str) -> int:
    if code in {"CONVERSATION_NOT_FOUND", "MESSAGE_NOT_FOUND"}:
        return status.HTTP_404_NOT_FOUND
    if code == "STREAM_ACTIVE":
        return status.HTTP_409_CONFLICT
    return status.HTTP_400_BAD_REQUEST
