from __future__ import annotations

import asyncio

import pytest

from branchchat.domain.tree import MessageTree
from branchchat.providers.base import ProviderError
from branchchat.services.streaming import StreamConflictError, StreamManager
from branchchat.storage.json_log import JsonLog
from branchchat.storage.models import MessageRecord


class ScriptedStream:
    """Transport stand-in: yields chunks, optionally waits on a gate, then fails."""

    def __init__(self, chunks=("Hello", ", ", "world"), error=None, gate=None) -> None:
        self.chunks = chunks
        self.error = error
        self.gate = gate
        self.aborted = False

    async def __call__(self, abort: asyncio.Event):
        for chunk in self.chunks:
            if abort.is_set():
                self.aborted = True
                return
            await asyncio.sleep(0)
            yield chunk
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error


class BrokenLog(JsonLog[MessageRecord]):
    async def append(self, record: MessageRecord) -> None:
        raise OSError("disk full")


def setup_tree(tmp_path, log_cls=JsonLog):
    tree = MessageTree()
    tree.insert(MessageRecord(id="u1", role="user", content="hi"))
    tree.insert(MessageRecord(id="a1", parent_id="u1", role="assistant", status="pending"))
    log = log_cls(tmp_path / "messages.jsonl", MessageRecord)
    return tree, log


async def wait_until(predicate, attempts: int = 200) -> None:
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition not reached")


@pytest.mark.anyio
async def test_deltas_concatenate_to_persisted_content(tmp_path):
    tree, log = setup_tree(tmp_path)
    manager = StreamManager()
    events = []

    session = manager.start("c1", "a1", tree, log, asyncio.Lock(), ScriptedStream())
    session.subscribe(events.append)
    final = await session.wait()

    deltas = [event.chunk for event in events if event.type == "delta"]
    assert "".join(deltas) == final.content == "Hello, world"
    assert [event.type for event in events][-1] == "complete"
    assert events[-1].message.status == "complete"
    [persisted] = await log.read_all()
    assert persisted.status == "complete"
    assert persisted.content == "Hello, world"
    assert manager.get("a1") is None


@pytest.mark.anyio
async def test_log_append_precedes_complete_event(tmp_path):
    tree, log = setup_tree(tmp_path)
    seen_on_disk = []

    def listener(event):
        if event.type == "complete":
            seen_on_disk.append(log.path.read_text(encoding="utf-8"))

    session = StreamManager().start("c1", "a1", tree, log, asyncio.Lock(), ScriptedStream())
    session.subscribe(listener)
    await session.wait()

    assert len(seen_on_disk) == 1
    assert '"status":"complete"' in seen_on_disk[0]


@pytest.mark.anyio
async def test_double_cancel_emits_one_terminal_event(tmp_path):
    tree, log = setup_tree(tmp_path)
    manager = StreamManager()
    events = []
    gate = asyncio.Event()

    session = manager.start(
        "c1", "a1", tree, log, asyncio.Lock(), ScriptedStream(chunks=("par", "tial"), gate=gate)
    )
    session.subscribe(events.append)
    await wait_until(lambda: len(events) == 2)

    assert await session.cancel() is True
    assert await session.cancel() is False
    assert await manager.cancel("a1") is False

    terminal = [event for event in events if event.is_terminal]
    assert len(terminal) == 1
    assert terminal[0].type == "error"
    assert terminal[0].error.code == "CANCELLED"
    assert terminal[0].error.cancelled is True

    final = await session.wait()
    deltas = "".join(event.chunk for event in events if event.type == "delta")
    assert final.status == "failed"
    assert final.content == deltas == "partial"
    [persisted] = await log.read_all()
    assert persisted.error.cancelled is True
    assert persisted.content == "partial"


@pytest.mark.anyio
async def test_cancel_before_first_delta_leaves_empty_failed_message(tmp_path):
    tree, log = setup_tree(tmp_path)
    events = []

    session = StreamManager().start("c1", "a1", tree, log, asyncio.Lock(), ScriptedStream())
    session.subscribe(events.append)
    await session.cancel()

    assert [event.type for event in events] == ["error"]
    final = await session.wait()
    assert final.content == ""
    assert final.error.code == "CANCELLED"
    assert tree.get("a1").status == "failed"


@pytest.mark.anyio
async def test_second_start_for_same_message_is_rejected(tmp_path):
    tree, log = setup_tree(tmp_path)
    manager = StreamManager()
    gate = asyncio.Event()
    events = []

    session = manager.start("c1", "a1", tree, log, asyncio.Lock(), ScriptedStream(gate=gate))
    session.subscribe(events.append)
    with pytest.raises(StreamConflictError):
        manager.start("c1", "a1", tree, log, asyncio.Lock(), ScriptedStream(chunks=("x",)))

    gate.set()
    final = await session.wait()
    assert final.status == "complete"
    assert final.content == "Hello, world"
    assert "".join(event.chunk for event in events if event.type == "delta") == "Hello, world"


@pytest.mark.anyio
async def test_provider_failure_keeps_partial_content(tmp_path):
    tree, log = setup_tree(tmp_path)
    events = []
    stream = ScriptedStream(
        chunks=("abc",),
        error=ProviderError("PROVIDER_UPSTREAM", "upstream broke", retryable=True),
    )

    session = StreamManager().start("c1", "a1", tree, log, asyncio.Lock(), stream)
    session.subscribe(events.append)
    final = await session.wait()

    assert final.status == "failed"
    assert final.content == "abc"
    assert final.error.code == "PROVIDER_UPSTREAM"
    assert final.error.retryable is True
    assert final.error.cancelled is False
    assert events[-1].type == "error"
    [persisted] = await log.read_all()
    assert persisted.content == "abc"


@pytest.mark.anyio
async def test_unexpected_transport_error_fails_the_message(tmp_path):
    tree, log = setup_tree(tmp_path)
    stream = ScriptedStream(chunks=("a",), error=ValueError("bad frame"))

    session = StreamManager().start("c1", "a1", tree, log, asyncio.Lock(), stream)
    final = await session.wait()

    assert final.error.code == "STREAM_FAILED"
    assert final.error.message == "bad frame"


@pytest.mark.anyio
async def test_persist_failure_still_emits_terminal_event(tmp_path):
    tree, log = setup_tree(tmp_path, log_cls=BrokenLog)
    events = []

    session = StreamManager().start("c1", "a1", tree, log, asyncio.Lock(), ScriptedStream())
    session.subscribe(events.append)
    final = await session.wait()

    assert events[-1].type == "error"
    assert events[-1].error.code == "PERSIST_FAILED"
    assert session.state == "failed"
    assert final.status == "failed"
    assert final.content == session.content == "Hello, world"
    assert "a1" not in tree
    assert tree.children_of("u1") == []


@pytest.mark.anyio
async def test_unsubscribe_and_raising_listener_do_not_affect_others(tmp_path):
    tree, log = setup_tree(tmp_path)
    first, second = [], []

    def explode(event):
        raise RuntimeError("listener bug")

    session = StreamManager().start("c1", "a1", tree, log, asyncio.Lock(), ScriptedStream())
    unsubscribe_first = session.subscribe(first.append)
    session.subscribe(explode)
    session.subscribe(second.append)
    unsubscribe_first()
    await session.wait()

    assert first == []
    assert [event.type for event in second] == ["delta", "delta", "delta", "complete"]


@pytest.mark.anyio
async def test_late_subscriber_receives_nothing(tmp_path):
    tree, log = setup_tree(tmp_path)
    manager = StreamManager()

    session = manager.start("c1", "a1", tree, log, asyncio.Lock(), ScriptedStream())
    await session.wait()
    late = []
    unsubscribe = session.subscribe(late.append)
    unsubscribe()

    assert late == []
    assert manager.subscribe("a1", late.append) is None


@pytest.mark.anyio
async def test_shutdown_cancels_live_sessions(tmp_path):
    tree, log = setup_tree(tmp_path)
    manager = StreamManager()
    stream = ScriptedStream(chunks=(), gate=asyncio.Event())

    session = manager.start("c1", "a1", tree, log, asyncio.Lock(), stream)
    assert [item.message_id for item in manager.active_for("c1")] == ["a1"]
    await manager.shutdown()

    final = await session.wait()
    assert final.error.cancelled is True
    assert manager.active_for("c1") == []
