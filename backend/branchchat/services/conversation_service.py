from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from typing import Callable, Optional, TypeVar

from fastapi import Request

from branchchat.api.websocket import WebSocketManager
from branchchat.core.config import Settings, get_settings
from branchchat.core.security import first_line_title, sanitize_text
from branchchat.domain.resolver import BranchSelections, TreeResolution, resolve_path
from branchchat.domain.tree import MessageTree, TreeIntegrityError
from branchchat.providers.base import ProviderRuntimeConfig
from branchchat.schemas.conversation import ConversationOut
from branchchat.schemas.message import MessageOut
from branchchat.services.provider_service import ProviderService
from branchchat.services.streaming import StreamListener, StreamManager, StreamSession
from branchchat.storage.json_file import JsonFile
from branchchat.storage.json_log import JsonLog, LogReadError
from branchchat.storage.models import (
    ROOT_ID,
    ConversationEntry,
    ConversationIndex,
    MessageRecord,
)
from branchchat.storage.paths import DataPaths
from branchchat.utils.time_utils import not_before, utc_now

logger = logging.getLogger(__name__)

MAX_TITLE_LEN = 200
MAX_SYSTEM_PROMPT_LEN = 8000

T = TypeVar("T")


@dataclass
class ConversationOperationError(RuntimeError):
    """Domain error for conversation and branch operations."""

    code: str
    message: str


@dataclass
class MutationResult:
    """Messages created by one mutation and the session streaming into them."""

    conversation_id: str
    created: list[MessageRecord]
    stream: Optional[StreamSession] = None

    @property
    def stream_message_id(self) -> Optional[str]:
        return self.stream.message_id if self.stream else None


@dataclass
class _ConversationState:
    tree: MessageTree
    log: JsonLog[MessageRecord]
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)


class ConversationService:
    """Create branches from sends, edits and regenerations; never rewrite history."""

    def __init__(
        self,
        paths: DataPaths,
        provider_service: ProviderService,
        stream_manager: StreamManager,
        ws_manager: WebSocketManager,
        settings: Optional[Settings] = None,
    ) -> None:
        self._paths = paths
        self._provider_service = provider_service
        self._streams = stream_manager
        self._ws_manager = ws_manager
        self._settings = settings or get_settings()
        self._index = JsonFile(paths.conversation_index(), ConversationIndex, ConversationIndex)
        self._index_lock = asyncio.Lock()
        self._load_lock = asyncio.Lock()
        self._states: dict[str, _ConversationState] = {}

    # Conversations

    async def list_conversations(self) -> list[ConversationEntry]:
        """Return conversations, pinned first, then most recently updated."""

        index = await self._index.read()
        return sorted(
            index.conversations,
            key=lambda entry: (not entry.pinned, -entry.updated_at.timestamp()),
        )

    async def get_conversation(self, conversation_id: str) -> ConversationEntry:
        index = await self._index.read()
        entry = index.find(conversation_id)
        if entry is None:
            raise ConversationOperationError("CONVERSATION_NOT_FOUND", "Conversation not found")
        return entry

    async def create_conversation(
        self, title: Optional[str] = None, system_prompt: Optional[str] = None
    ) -> ConversationEntry:
        """Register a new, empty conversation."""

        cleaned_title = sanitize_text(title or "", MAX_TITLE_LEN) or None
        entry = ConversationEntry(
            id=uuid.uuid4().hex,
            title=cleaned_title,
            renamed=cleaned_title is not None,
            system_prompt=sanitize_text(system_prompt or "", MAX_SYSTEM_PROMPT_LEN) or None,
        )
        async with self._index_lock:
            index = await self._index.read()
            index.conversations.append(entry)
            await self._index.write(index)
        logger.info("Created conversation %s", entry.id)
        return entry

    async def update_conversation(
        self,
        conversation_id: str,
        title: Optional[str] = None,
        pinned: Optional[bool] = None,
        system_prompt: Optional[str] = None,
    ) -> ConversationEntry:
        """Rename, pin or change the system prompt of a conversation.

        Conversations filed in a folder cannot be pinned.
        """

        def change(index: ConversationIndex) -> ConversationEntry:
            entry = _require_entry(index, conversation_id)
            if title is not None:
                entry.title = sanitize_text(title, MAX_TITLE_LEN) or None
                entry.renamed = entry.title is not None
            if pinned is not None:
                if pinned and index.folder_of(conversation_id) is not None:
                    raise ConversationOperationError(
                        "INVALID_FOLDER", "Conversations inside a folder cannot be pinned"
                    )
                entry.pinned = pinned
            if system_prompt is not None:
                entry.system_prompt = sanitize_text(system_prompt, MAX_SYSTEM_PROMPT_LEN) or None
            entry.updated_at = utc_now()
            return entry

        entry = await self._change_index(change)
        await self._broadcast_entry(entry)
        return entry

    async def delete_conversation(self, conversation_id: str) -> None:
        """Cancel live streams, drop the index entry and delete the message log.

        The conversation leaves its folder. Deleting a folder returns its
        conversations to the top level.
        """

        await self.get_conversation(conversation_id)
        await self._streams.cancel_conversation(conversation_id)

        state = self._states.get(conversation_id)
        if state is None:
            state = _ConversationState(
                tree=MessageTree(),
                log=JsonLog(self._paths.message_log(conversation_id), MessageRecord),
            )

        def change(index: ConversationIndex) -> Optional[ConversationEntry]:
            index.conversations = [
                entry for entry in index.conversations if entry.id != conversation_id
            ]
            return _unfile(index, conversation_id)

        async with state.lock:
            folder = await self._change_index(change)
            self._states.pop(conversation_id, None)
            await state.log.delete()
            await asyncio.to_thread(_remove_empty_dir, self._paths, conversation_id)

        logger.info("Deleted conversation %s", conversation_id)
        await self._ws_manager.broadcast(
            conversation_id,
            {"event": "conversation_deleted", "conversation_id": conversation_id},
        )
        if folder is not None:
            await self._broadcast_entry(folder)

    async def fork_conversation(
        self,
        source_id: str,
        up_to_message_id: Optional[str] = None,
        title: Optional[str] = None,
    ) -> tuple[ConversationEntry, list[MessageRecord]]:
        """Copy the displayed path (or the path to one message) into a new conversation.

        A copy of a conversation filed in a folder goes into the same folder.
        """

        source_entry = await self.get_conversation(source_id)
        if source_entry.is_folder:
            raise ConversationOperationError("INVALID_FOLDER", "Folders cannot be forked")
        state = await self._open(source_id)
        async with state.lock:
            if up_to_message_id:
                if up_to_message_id not in state.tree:
                    raise ConversationOperationError(
                        "MESSAGE_NOT_FOUND",
                        "Fork point message does not exist in conversation",
                    )
                source_path = state.tree.path_to(up_to_message_id)
            else:
                source_path = resolve_path(state.tree, source_entry.selections).path
            copied = _clone_path(source_path)

        entry = await self.create_conversation(
            title=title or source_entry.title,
            system_prompt=source_entry.system_prompt,
        )
        target = await self._open(entry.id)
        async with target.lock:
            for record in copied:
                target.tree.insert(record)
                await target.log.append(record)

        def file_copy(index: ConversationIndex) -> Optional[ConversationEntry]:
            folder = index.folder_of(source_id)
            if folder is not None:
                folder.children.append(entry.id)
                folder.updated_at = utc_now()
            return folder

        folder = await self._change_index(file_copy)
        if folder is not None:
            await self._broadcast_entry(folder)
        logger.info(
            "Forked conversation %s into %s with %d messages", source_id, entry.id, len(copied)
        )
        return entry, copied

    # Folders

    async def create_folder(
        self, conversation_ids: list[str], title: Optional[str] = None
    ) -> ConversationEntry:
        """File conversations into a new folder, unpinning them.

        Conversations already in another folder move out of it; a folder left
        empty by that is deleted.
        """

        if not conversation_ids or len(set(conversation_ids)) != len(conversation_ids):
            raise ConversationOperationError(
                "INVALID_FOLDER", "A folder needs one or more distinct conversations"
            )
        cleaned_title = sanitize_text(title or "", MAX_TITLE_LEN) or None

        def change(index: ConversationIndex) -> tuple[ConversationEntry, list[ConversationEntry]]:
            members = [_require_entry(index, cid) for cid in conversation_ids]
            if any(member.is_folder for member in members):
                raise ConversationOperationError("INVALID_FOLDER", "Folders cannot be nested")
            sources = [_unfile(index, member.id) for member in members]
            for member in members:
                member.pinned = False
            folder_count = sum(1 for entry in index.conversations if entry.is_folder)
            folder = ConversationEntry(
                id=uuid.uuid4().hex,
                title=cleaned_title or f"Folder {folder_count + 1}",
                renamed=cleaned_title is not None,
                children=list(conversation_ids),
            )
            index.conversations.insert(0, folder)
            return folder, _emptied(sources)

        folder, emptied = await self._change_index(change)
        logger.info("Filed %d conversations into folder %s", len(conversation_ids), folder.id)
        await self._drop_folders(emptied)
        return folder

    async def move_conversation(
        self, conversation_id: str, folder_id: Optional[str] = None
    ) -> ConversationEntry:
        """Move a conversation into a folder, or back to the top level when ``folder_id`` is None.

        The conversation is appended to the target folder and unpinned. Its
        previous folder is deleted when the move leaves it empty.
        """

        def change(index: ConversationIndex) -> tuple[ConversationEntry, list[ConversationEntry]]:
            entry = _require_entry(index, conversation_id)
            if folder_id is None:
                return entry, _emptied([_unfile(index, conversation_id)])
            folder = _require_entry(index, folder_id)
            if entry.is_folder or not folder.is_folder or folder.id == entry.id:
                raise ConversationOperationError(
                    "INVALID_FOLDER", "Only conversations can be moved into a folder"
                )
            source = _unfile(index, conversation_id)
            folder.children.append(conversation_id)
            folder.updated_at = utc_now()
            entry.pinned = False
            return entry, _emptied([source])

        entry, emptied = await self._change_index(change)
        logger.info("Moved conversation %s to %s", conversation_id, folder_id or "top level")
        await self._drop_folders(emptied)
        await self._broadcast_entry(entry)
        return entry

    async def reorder_folder(self, folder_id: str, conversation_ids: list[str]) -> ConversationEntry:
        """Replace the display order of a folder's conversations."""

        def change(index: ConversationIndex) -> ConversationEntry:
            folder = _require_entry(index, folder_id)
            if not folder.is_folder:
                raise ConversationOperationError("INVALID_FOLDER", "Conversation is not a folder")
            if len(set(conversation_ids)) != len(conversation_ids) or sorted(
                conversation_ids
            ) != sorted(folder.children):
                raise ConversationOperationError(
                    "INVALID_FOLDER", "New order must list exactly the folder's conversations"
                )
            folder.children = list(conversation_ids)
            folder.updated_at = utc_now()
            return folder

        folder = await self._change_index(change)
        await self._broadcast_entry(folder)
        return folder

    # Reads

    async def list_messages(self, conversation_id: str) -> list[MessageRecord]:
        """Return every message of a conversation in creation order."""

        await self.get_conversation(conversation_id)
        state = await self._open(conversation_id)
        return state.tree.messages()

    async def resolve_path(
        self,
        conversation_id: str,
        selections: Optional[BranchSelections] = None,
    ) -> tuple[TreeResolution, dict[str, int]]:
        """Resolve the displayed path with explicit or stored selections."""

        entry = await self.get_conversation(conversation_id)
        state = await self._open(conversation_id)
        effective = dict(entry.selections if selections is None else selections)
        return resolve_path(state.tree, effective), effective

    def active_streams(self, conversation_id: str) -> list[str]:
        return [session.message_id for session in self._streams.active_for(conversation_id)]

    # Mutations

    async def send_message(
        self,
        conversation_id: str,
        content: str,
        provider: Optional[str] = None,
        model_name: Optional[str] = None,
        selections: Optional[BranchSelections] = None,
    ) -> MutationResult:
        """Append a user message at the end of the displayed path and stream a reply."""

        text = self._clean_content(content)
        adapter, runtime_cfg = self._provider_service.resolve(provider, model_name)
        entry = await self.get_conversation(conversation_id)
        if entry.is_folder:
            raise ConversationOperationError("INVALID_FOLDER", "Folders do not hold messages")
        state = await self._open(conversation_id)
        effective = dict(entry.selections)
        if selections:
            effective.update(selections)

        async with state.lock:
            self._ensure_idle(conversation_id)
            leaf = resolve_path(state.tree, effective).leaf
            user_message = MessageRecord(
                id=uuid.uuid4().hex,
                parent_id=leaf.id if leaf else ROOT_ID,
                role="user",
                content=text,
                status="complete",
            )
            await self._persist(state, user_message)
            assistant = self._pending_assistant(user_message.id, runtime_cfg)
            state.tree.insert(assistant)
            session = self._streams.start(
                conversation_id,
                assistant.id,
                state.tree,
                state.log,
                state.lock,
                self._provider_service.stream_factory(
                    adapter, runtime_cfg, self._prompt(state.tree, entry, user_message.id)
                ),
            )

        def mutate(item: ConversationEntry) -> None:
            item.selections.update(effective)
            if item.title is None and not item.renamed:
                item.title = first_line_title(text)

        updated = await self._update_entry(conversation_id, mutate)
        await self._broadcast_created(conversation_id, [user_message, assistant])
        await self._broadcast_entry(updated)
        return MutationResult(conversation_id, [user_message, assistant], session)

    async def edit_message(
        self,
        conversation_id: str,
        message_id: str,
        content: str,
        provider: Optional[str] = None,
        model_name: Optional[str] = None,
    ) -> MutationResult:
        """Create an edited sibling of a message and select it.

        A user edit streams a fresh assistant reply under the new sibling. An
        assistant or system edit is stored as complete text without a stream.
        """

        text = self._clean_content(content)
        entry = await self.get_conversation(conversation_id)
        state = await self._open(conversation_id)
        original = self._require_message(state, message_id)
        streams_reply = original.role == "user"
        if streams_reply:
            adapter, runtime_cfg = self._provider_service.resolve(provider, model_name)

        async with state.lock:
            if not original.is_terminal:
                raise ConversationOperationError(
                    "STREAM_ACTIVE", "Message is still streaming and cannot be edited"
                )
            if streams_reply:
                self._ensure_idle(conversation_id)
            sibling = MessageRecord(
                id=uuid.uuid4().hex,
                parent_id=original.parent_id,
                role=original.role,
                content=text,
                status="complete",
                provider=None if streams_reply else original.provider,
                model_name=None if streams_reply else original.model_name,
            )
            await self._persist(state, sibling)
            created = [sibling]
            session = None
            if streams_reply:
                assistant = self._pending_assistant(sibling.id, runtime_cfg)
                state.tree.insert(assistant)
                created.append(assistant)
                session = self._streams.start(
                    conversation_id,
                    assistant.id,
                    state.tree,
                    state.log,
                    state.lock,
                    self._provider_service.stream_factory(
                        adapter, runtime_cfg, self._prompt(state.tree, entry, sibling.id)
                    ),
                )
            selected_index = state.tree.index_in_parent(sibling.id)

        updated = await self._update_entry(
            conversation_id,
            _select(sibling.parent_id, selected_index),
        )
        logger.info("Edited message %s into %s", message_id, sibling.id)
        await self._broadcast_created(conversation_id, created)
        await self._broadcast_entry(updated)
        return MutationResult(conversation_id, created, session)

    async def regenerate_message(
        self,
        conversation_id: str,
        message_id: str,
        provider: Optional[str] = None,
        model_name: Optional[str] = None,
    ) -> MutationResult:
        """Stream a new assistant sibling for an assistant message and select it."""

        entry = await self.get_conversation(conversation_id)
        state = await self._open(conversation_id)
        original = self._require_message(state, message_id)
        if original.role != "assistant":
            raise ConversationOperationError(
                "INVALID_BRANCH", "Only assistant messages can be regenerated"
            )
        adapter, runtime_cfg = self._provider_service.resolve(
            provider or original.provider, model_name or original.model_name
        )

        async with state.lock:
            self._ensure_idle(conversation_id)
            assistant = self._pending_assistant(original.parent_id, runtime_cfg)
            state.tree.insert(assistant)
            session = self._streams.start(
                conversation_id,
                assistant.id,
                state.tree,
                state.log,
                state.lock,
                self._provider_service.stream_factory(
                    adapter, runtime_cfg, self._prompt(state.tree, entry, original.parent_id)
                ),
            )
            selected_index = state.tree.index_in_parent(assistant.id)

        updated = await self._update_entry(
            conversation_id,
            _select(original.parent_id, selected_index),
        )
        await self._broadcast_created(conversation_id, [assistant])
        await self._broadcast_entry(updated)
        return MutationResult(conversation_id, [assistant], session)

    async def switch_branch(
        self, conversation_id: str, parent_id: str, index: int
    ) -> tuple[TreeResolution, dict[str, int]]:
        """Select child ``index`` of ``parent_id`` and return the new path."""

        await self.get_conversation(conversation_id)
        state = await self._open(conversation_id)
        if parent_id != ROOT_ID:
            self._require_message(state, parent_id)
        child_count = len(state.tree.children_of(parent_id))
        if not 0 <= index < child_count:
            raise ConversationOperationError(
                "INVALID_BRANCH",
                f"Branch index {index} is out of range for {child_count} children",
            )

        updated = await self._update_entry(conversation_id, _select(parent_id, index))
        await self._ws_manager.broadcast(
            conversation_id,
            {"event": "branch_switched", "parent_id": parent_id, "index": index},
        )
        return resolve_path(state.tree, updated.selections), dict(updated.selections)

    async def delete_message(
        self, conversation_id: str, message_id: str
    ) -> tuple[TreeResolution, dict[str, int]]:
        """Delete a message and everything under it, then return the new path.

        A tombstone is appended to the log; nothing already logged is rewritten.
        Stored selections are shifted so the remaining siblings keep theirs.
        """

        await self.get_conversation(conversation_id)
        state = await self._open(conversation_id)
        async with state.lock:
            self._ensure_idle(conversation_id)
            message = self._require_message(state, message_id)
            position = state.tree.index_in_parent(message_id)
            tombstone = message.model_copy(
                update={"deleted": True, "updated_at": not_before(message.updated_at)},
                deep=True,
            )
            await state.log.append(tombstone)
            removed = state.tree.prune(message_id)

        removed_ids = [item.id for item in removed]

        def mutate(entry: ConversationEntry) -> None:
            for item_id in removed_ids:
                entry.selections.pop(item_id, None)
            selected = entry.selections.get(message.parent_id)
            if selected == position:
                del entry.selections[message.parent_id]
            elif isinstance(selected, int) and selected > position:
                entry.selections[message.parent_id] = selected - 1

        updated = await self._update_entry(conversation_id, mutate)
        logger.info("Deleted %d messages from conversation %s", len(removed_ids), conversation_id)
        await self._ws_manager.broadcast(
            conversation_id, {"event": "message_deleted", "message_ids": removed_ids}
        )
        await self._broadcast_entry(updated)
        return resolve_path(state.tree, updated.selections), dict(updated.selections)

    # Streams

    def subscribe_to_stream(
        self, message_id: str, listener: StreamListener
    ) -> Optional[Callable[[], None]]:
        """Subscribe to a live stream; None when the message is not streaming."""

        return self._streams.subscribe(message_id, listener)

    async def cancel_stream(self, message_id: str) -> bool:
        """Cancel a live stream. Unknown or finished messages are a no-op."""

        return await self._streams.cancel(message_id)

    # Internals

    async def _open(self, conversation_id: str) -> _ConversationState:
        state = self._states.get(conversation_id)
        if state is not None:
            return state
        async with self._load_lock:
            state = self._states.get(conversation_id)
            if state is not None:
                return state
            log = JsonLog(self._paths.message_log(conversation_id), MessageRecord)
            records = await log.read_all()
            try:
                tree = MessageTree.from_records(records)
            except TreeIntegrityError as exc:
                raise LogReadError(log.path, None, str(exc)) from exc
            state = _ConversationState(tree=tree, log=log)
            self._states[conversation_id] = state
            logger.debug("Loaded %d records for conversation %s", len(records), conversation_id)
            return state

    async def _persist(self, state: _ConversationState, message: MessageRecord) -> None:
        state.tree.insert(message)
        try:
            await state.log.append(message)
        except OSError:
            state.tree.discard(message.id)
            raise

    async def _change_index(self, change: Callable[[ConversationIndex], T]) -> T:
        """Apply ``change`` to the index and write it back; nothing is written if it raises."""

        async with self._index_lock:
            index = await self._index.read()
            result = change(index)
            await self._index.write(index)
            return result

    async def _update_entry(
        self, conversation_id: str, mutate: Callable[[ConversationEntry], object]
    ) -> ConversationEntry:
        def change(index: ConversationIndex) -> ConversationEntry:
            entry = _require_entry(index, conversation_id)
            mutate(entry)
            entry.updated_at = utc_now()
            return entry

        return await self._change_index(change)

    async def _drop_folders(self, folders: list[ConversationEntry]) -> None:
        for folder in folders:
            logger.info("Removing empty folder %s", folder.id)
            await self.delete_conversation(folder.id)

    def _ensure_idle(self, conversation_id: str) -> None:
        if self._streams.active_for(conversation_id):
            raise ConversationOperationError(
                "STREAM_ACTIVE", "A response is already streaming in this conversation"
            )

    def _clean_content(self, content: str) -> str:
        text = sanitize_text(content, self._settings.max_message_len)
        if not text:
            raise ConversationOperationError("EMPTY_CONTENT", "Message content is empty")
        return text

    @staticmethod
    def _require_message(state: _ConversationState, message_id: str) -> MessageRecord:
        message = state.tree.find(message_id)
        if message is None:
            raise ConversationOperationError("MESSAGE_NOT_FOUND", "Message not found")
        return message

    @staticmethod
    def _pending_assistant(parent_id: str, runtime_cfg: ProviderRuntimeConfig) -> MessageRecord:
        return MessageRecord(
            id=uuid.uuid4().hex,
            parent_id=parent_id,
            role="assistant",
            status="pending",
            provider=runtime_cfg.provider,
            model_name=runtime_cfg.model_name,
        )

    @staticmethod
    def _prompt(tree: MessageTree, entry: ConversationEntry, last_id: str) -> list[dict]:
        messages: list[dict] = []
        if entry.system_prompt:
            messages.append({"role": "system", "content": entry.system_prompt})
        if last_id == ROOT_ID:
            return messages
        for message in tree.path_to(last_id):
            if message.status == "failed" or not message.content:
                continue
            messages.append({"role": message.role, "content": message.content})
        return messages

    async def _broadcast_created(
        self, conversation_id: str, messages: list[MessageRecord]
    ) -> None:
        for message in messages:
            await self._ws_manager.broadcast(
                conversation_id,
                {
                    "event": "message_created",
                    "message": MessageOut.model_validate(message).model_dump(mode="json"),
                },
            )

    async def _broadcast_entry(self, entry: ConversationEntry) -> None:
        await self._ws_manager.broadcast(
            entry.id,
            {
                "event": "conversation_updated",
                "conversation": ConversationOut.model_validate(entry).model_dump(mode="json"),
            },
        )


def _require_entry(index: ConversationIndex, conversation_id: str) -> ConversationEntry:
    entry = index.find(conversation_id)
    if entry is None:
        raise ConversationOperationError("CONVERSATION_NOT_FOUND", "Conversation not found")
    return entry


def _unfile(index: ConversationIndex, conversation_id: str) -> Optional[ConversationEntry]:
    """Take a conversation out of its folder; return that folder, if any."""

    folder = index.folder_of(conversation_id)
    if folder is not None:
        folder.children.remove(conversation_id)
        folder.updated_at = utc_now()
    return folder


def _emptied(folders: list[Optional[ConversationEntry]]) -> list[ConversationEntry]:
    emptied: list[ConversationEntry] = []
    for folder in folders:
        if folder is not None and not folder.children and folder not in emptied:
            emptied.append(folder)
    return emptied


def _select(parent_id: str, index: int) -> Callable[[ConversationEntry], None]:
    def mutate(entry: ConversationEntry) -> None:
        entry.selections[parent_id] = index

    return mutate


def _clone_path(path: list[MessageRecord]) -> list[MessageRecord]:
    """Copy finished messages of a path with fresh ids, relinked parent to child."""

    copied: list[MessageRecord] = []
    parent_id = ROOT_ID
    for message in path:
        if not message.is_terminal:
            break
        clone = message.model_copy(
            update={"id": uuid.uuid4().hex, "parent_id": parent_id}, deep=True
        )
        copied.append(clone)
        parent_id = clone.id
    return copied


def _remove_empty_dir(paths: DataPaths, conversation_id: str) -> None:
    directory = paths.conversation_dir(conversation_id)
    try:
        if any(directory.iterdir()):
            return
        directory.rmdir()
    except FileNotFoundError:
        return


def get_conversation_service(request: Request) -> ConversationService:
    """Dependency to access the conversation service from app state."""

    return request.app.state.conversation_service
