"""Streaming session controller.

A ``StreamSession`` owns the ``content``/``status`` transitions of exactly one
assistant message while a provider streams it. Deltas go into the tree and
out to subscribers in arrival order. The session ends exactly once: completed,
failed by the transport, or cancelled (a failure with a cancellation reason).
The final record is appended to the message log before the terminal event is
delivered. When that append fails the message is dropped from the tree, so the
in-memory tree never holds a finished message the log does not.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from contextlib import aclosing
from dataclasses import dataclass
from typing import AsyncIterator, Callable, Literal, Optional

from branchchat.domain.tree import MessageTree
from branchchat.providers.base import ProviderError
from branchchat.storage.json_log import JsonLog
from branchchat.storage.models import MessageError, MessageRecord, MessageStatus

logger = logging.getLogger(__name__)

SessionState = Literal["idle", "streaming", "complete", "failed"]
StreamEventType = Literal["delta", "complete", "error"]
TextStreamFactory = Callable[[asyncio.Event], AsyncIterator[str]]


def cancelled_error() -> MessageError:
    return MessageError(
        code="CANCELLED",
        message="Stream cancelled by user.",
        retryable=True,
        cancelled=True,
    )


@dataclass(frozen=True)
class StreamEvent:
    """One notification delivered to stream subscribers."""

    type: StreamEventType
    conversation_id: str
    message_id: str
    chunk: Optional[str] = None
    message: Optional[MessageRecord] = None
    error: Optional[MessageError] = None

    @property
    def is_terminal(self) -> bool:
        return self.type != "delta"


StreamListener = Callable[[StreamEvent], None]


class StreamConflictError(RuntimeError):
    """Raised when a message already has a live streaming session."""

    def __init__(self, message_id: str) -> None:
        super().__init__(f"Message {message_id!r} is already streaming")
        self.message_id = message_id


class StreamSession:
    """State machine for one in-flight assistant response."""

    def __init__(
        self,
        conversation_id: str,
        message_id: str,
        tree: MessageTree,
        log: JsonLog[MessageRecord],
        write_lock: asyncio.Lock,
        stream_factory: TextStreamFactory,
        on_close: Optional[Callable[["StreamSession"], None]] = None,
    ) -> None:
        self.conversation_id = conversation_id
        self.message_id = message_id
        self._tree = tree
        self._log = log
        self._write_lock = write_lock
        self._stream_factory = stream_factory
        self._on_close = on_close
        self._state: SessionState = "idle"
        self._cancelled = False
        self._closing = False
        self._abort = asyncio.Event()
        self._listeners: dict[int, StreamListener] = {}
        self._tokens = itertools.count()
        self._task: Optional[asyncio.Task] = None
        self._done = asyncio.Event()
        self._result: Optional[MessageRecord] = None

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_terminal(self) -> bool:
        return self._state in ("complete", "failed")

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def content(self) -> str:
        if self._result is not None:
            return self._result.content
        return self._tree.get(self.message_id).content

    def start(self) -> None:
        """Move the message to ``streaming`` and begin reading the transport."""

        if self._state != "idle":
            raise RuntimeError(f"Stream session for {self.message_id!r} already started")
        self._tree.mark_streaming(self.message_id)
        self._state = "streaming"
        self._task = asyncio.create_task(self._run(), name=f"stream-{self.message_id}")

    def subscribe(self, listener: StreamListener) -> Callable[[], None]:
        """Register a listener; the returned callable removes it.

        Subscribing after the session ended is allowed but delivers nothing.
        """

        if self.is_terminal:
            return _noop
        token = next(self._tokens)
        self._listeners[token] = listener

        def unsubscribe() -> None:
            self._listeners.pop(token, None)

        return unsubscribe

    async def cancel(self) -> bool:
        """Stop the stream. Returns False when the session had already ended."""

        if self._closing or self.is_terminal:
            return False
        self._cancelled = True
        self._closing = True
        self._abort.set()
        if self._task is not None and self._task is not asyncio.current_task():
            self._task.cancel()
        logger.info("Stream %s cancelled", self.message_id)
        await self._finish("failed", cancelled_error())
        return True

    async def wait(self) -> MessageRecord:
        """Wait for the session to end and return the finalized message."""

        await self._done.wait()
        assert self._result is not None
        return self._result

    async def _run(self) -> None:
        try:
            async with aclosing(self._stream_factory(self._abort)) as stream:
                async for chunk in stream:
                    if self._cancelled:
                        break
                    if not chunk:
                        continue
                    self._tree.apply_delta(self.message_id, chunk)
                    self._emit(
                        StreamEvent(
                            type="delta",
                            conversation_id=self.conversation_id,
                            message_id=self.message_id,
                            chunk=chunk,
                        )
                    )
        except asyncio.CancelledError:
            if self._closing:
                return
            self._cancelled = True
            self._closing = True
            await self._finish("failed", cancelled_error())
            raise
        except ProviderError as exc:
            if self._closing:
                return
            self._closing = True
            logger.warning("Stream %s failed: %s (%s)", self.message_id, exc.message, exc.code)
            await self._finish(
                "failed",
                MessageError(code=exc.code, message=exc.message, retryable=exc.retryable),
            )
            return
        except Exception as exc:  # noqa: BLE001
            if self._closing:
                return
            self._closing = True
            logger.exception("Stream %s failed unexpectedly", self.message_id)
            await self._finish(
                "failed",
                MessageError(
                    code="STREAM_FAILED",
                    message=str(exc) or exc.__class__.__name__,
                ),
            )
            return

        if self._closing:
            return
        self._closing = True
        await self._finish("complete", None)

    async def _finish(self, status: MessageStatus, error: Optional[MessageError]) -> None:
        async with self._write_lock:
            message = self._tree.finalize(self.message_id, status, error=error)
            snapshot = message.model_copy(deep=True)
            try:
                await self._log.append(snapshot)
            except OSError as exc:
                logger.exception("Failed to persist message %s", self.message_id)
                # An unlogged node must not become a parent of logged ones.
                self._tree.discard(self.message_id)
                error = MessageError(
                    code="PERSIST_FAILED",
                    message=f"Message could not be saved: {exc}",
                    retryable=True,
                )
                status = "failed"
                snapshot = snapshot.model_copy(update={"status": status, "error": error})

        self._state = status
        if status == "complete":
            event = StreamEvent(
                type="complete",
                conversation_id=self.conversation_id,
                message_id=self.message_id,
                message=snapshot,
            )
        else:
            event = StreamEvent(
                type="error",
                conversation_id=self.conversation_id,
                message_id=self.message_id,
                message=snapshot,
                error=error,
            )
        self._emit(event)
        self._listeners.clear()
        self._result = snapshot
        self._done.set()
        if self._on_close is not None:
            self._on_close(self)

    def _emit(self, event: StreamEvent) -> None:
        for token, listener in list(self._listeners.items()):
            try:
                listener(event)
            except Exception:  # noqa: BLE001
                logger.exception("Dropping listener for stream %s after it raised", self.message_id)
                self._listeners.pop(token, None)


class StreamManager:
    """Registry of live sessions, at most one per message id."""

    def __init__(self) -> None:
        self._sessions: dict[str, StreamSession] = {}

    def start(
        self,
        conversation_id: str,
        message_id: str,
        tree: MessageTree,
        log: JsonLog[MessageRecord],
        write_lock: asyncio.Lock,
        stream_factory: TextStreamFactory,
    ) -> StreamSession:
        """Create and start a session; reject a second one for the same message."""

        existing = self._sessions.get(message_id)
        if existing is not None and not existing.is_terminal:
            raise StreamConflictError(message_id)
        session = StreamSession(
            conversation_id=conversation_id,
            message_id=message_id,
            tree=tree,
            log=log,
            write_lock=write_lock,
            stream_factory=stream_factory,
            on_close=self._release,
        )
        self._sessions[message_id] = session
        try:
            session.start()
        except Exception:
            self._sessions.pop(message_id, None)
            raise
        logger.info("Stream %s started in conversation %s", message_id, conversation_id)
        return session

    def get(self, message_id: str) -> Optional[StreamSession]:
        return self._sessions.get(message_id)

    def is_streaming(self, message_id: str) -> bool:
        return message_id in self._sessions

    def active_for(self, conversation_id: str) -> list[StreamSession]:
        return [
            session
            for session in self._sessions.values()
            if session.conversation_id == conversation_id
        ]

    def subscribe(
        self, message_id: str, listener: StreamListener
    ) -> Optional[Callable[[], None]]:
        """Subscribe to a live session; None when no session is live for the id."""

        session = self._sessions.get(message_id)
        if session is None:
            return None
        return session.subscribe(listener)

    async def cancel(self, message_id: str) -> bool:
        """Cancel a live session. Unknown or finished ids are a no-op."""

        session = self._sessions.get(message_id)
        if session is None:
            return False
        return await session.cancel()

    async def cancel_conversation(self, conversation_id: str) -> None:
        for session in self.active_for(conversation_id):
            await session.cancel()

    async def shutdown(self) -> None:
        """Cancel every live session."""

        for session in list(self._sessions.values()):
            await session.cancel()

    def _release(self, session: StreamSession) -> None:
        if self._sessions.get(session.message_id) is session:
            del self._sessions[session.message_id]


def _noop() -> None:
    return None
