from __future__ import annotations

import asyncio

import pytest
from fastapi.testclient import TestClient


class GatedAdapter:
    """Adapter stub that streams one chunk and then stays open."""

    def __init__(self) -> None:
        self.gate = asyncio.Event()

    async def list_models(self, cfg) -> list[str]:
        return [cfg.model_name]

    async def stream_chat(self, cfg, messages, abort):
        yield "thinking"
        await self.gate.wait()


async def create_conversation(client, **payload) -> str:
    response = await client.post("/api/conversations", json=payload)
    assert response.status_code == 201
    return response.json()["id"]


async def wait_for_status(client, conversation_id, message_id, expected, timeout=5):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while loop.time() < deadline:
        response = await client.get(f"/api/conversations/{conversation_id}/messages")
        assert response.status_code == 200
        for message in response.json()["messages"]:
            if message["id"] == message_id and message["status"] == expected:
                return message
        await asyncio.sleep(0.01)
    raise AssertionError(f"Timed out waiting for {message_id} to become {expected}")


@pytest.mark.anyio
async def test_conversation_lifecycle(client):
    conversation_id = await create_conversation(client, title="Trip plans")

    response = await client.get("/api/conversations")
    assert response.status_code == 200
    assert [item["id"] for item in response.json()["conversations"]] == [conversation_id]

    response = await client.patch(
        f"/api/conversations/{conversation_id}", json={"pinned": True, "title": "Holiday"}
    )
    assert response.status_code == 200
    assert response.json()["pinned"] is True
    assert response.json()["title"] == "Holiday"

    response = await client.delete(f"/api/conversations/{conversation_id}")
    assert response.status_code == 204

    response = await client.get(f"/api/conversations/{conversation_id}/messages")
    assert response.status_code == 404


@pytest.mark.anyio
async def test_send_edit_and_switch_branches(client):
    conversation_id = await create_conversation(client)

    response = await client.post(
        f"/api/conversations/{conversation_id}/messages", json={"content": "hi"}
    )
    assert response.status_code == 202
    data = response.json()
    user_id = data["messages"][0]["id"]
    reply_id = data["stream_message_id"]
    reply = await wait_for_status(client, conversation_id, reply_id, "complete")
    assert reply["content"] == "Hello, world"

    response = await client.post(
        f"/api/conversations/{conversation_id}/messages/{user_id}/edit",
        json={"content": "hello"},
    )
    assert response.status_code == 202
    edited_user_id = response.json()["messages"][0]["id"]
    await wait_for_status(client, conversation_id, response.json()["stream_message_id"], "complete")

    response = await client.get(f"/api/conversations/{conversation_id}/path")
    assert response.status_code == 200
    path = response.json()
    assert path["messages"][0]["id"] == edited_user_id
    assert path["branch_points"] == [
        {
            "parent_id": "root",
            "branches": [user_id, edited_user_id],
            "child_count": 2,
            "selected_index": 1,
        }
    ]

    response = await client.post(
        f"/api/conversations/{conversation_id}/branches/switch",
        json={"parent_id": "root", "index": 0},
    )
    assert response.status_code == 200
    assert [item["id"] for item in response.json()["messages"]] == [user_id, reply_id]
    assert response.json()["selections"] == {"root": 0}

    response = await client.post(
        f"/api/conversations/{conversation_id}/path", json={"selections": {"root": 9}}
    )
    assert response.status_code == 200
    assert response.json()["messages"][0]["id"] == edited_user_id


@pytest.mark.anyio
async def test_regenerate_and_fork(client):
    conversation_id = await create_conversation(client, title="Source")
    response = await client.post(
        f"/api/conversations/{conversation_id}/messages", json={"content": "hi"}
    )
    reply_id = response.json()["stream_message_id"]
    await wait_for_status(client, conversation_id, reply_id, "complete")

    response = await client.post(
        f"/api/conversations/{conversation_id}/messages/{reply_id}/regenerate", json={}
    )
    assert response.status_code == 202
    regenerated_id = response.json()["stream_message_id"]
    assert regenerated_id != reply_id
    await wait_for_status(client, conversation_id, regenerated_id, "complete")

    response = await client.post(f"/api/conversations/{conversation_id}/fork", json={})
    assert response.status_code == 201
    forked = response.json()
    assert forked["conversation"]["title"] == "Source"
    assert [item["content"] for item in forked["messages"]] == ["hi", "Hello, world"]


@pytest.mark.anyio
async def test_second_send_while_streaming_returns_409(app, client):
    adapter = GatedAdapter()
    app.state.provider_service.set_adapters({"stub": adapter})
    conversation_id = await create_conversation(client)

    response = await client.post(
        f"/api/conversations/{conversation_id}/messages", json={"content": "hi"}
    )
    stream_id = response.json()["stream_message_id"]

    response = await client.post(
        f"/api/conversations/{conversation_id}/messages", json={"content": "again"}
    )
    assert response.status_code == 409

    response = await client.post(f"/api/streams/{stream_id}/cancel")
    assert response.status_code == 200
    assert response.json() == {"message_id": stream_id, "cancelled": True}

    message = await wait_for_status(client, conversation_id, stream_id, "failed")
    assert message["error"]["code"] == "CANCELLED"
    assert message["error"]["cancelled"] is True

    response = await client.post(f"/api/streams/{stream_id}/cancel")
    assert response.json()["cancelled"] is False


@pytest.mark.anyio
async def test_error_mapping(client):
    conversation_id = await create_conversation(client)

    response = await client.post(
        f"/api/conversations/{conversation_id}/messages", json={"content": "   "}
    )
    assert response.status_code == 400

    response = await client.post(
        f"/api/conversations/{conversation_id}/messages",
        json={"content": "hi", "provider": "gemini"},
    )
    assert response.status_code == 400

    response = await client.post(
        f"/api/conversations/{conversation_id}/messages/missing/edit", json={"content": "x"}
    )
    assert response.status_code == 404

    response = await client.post(
        f"/api/conversations/{conversation_id}/branches/switch",
        json={"parent_id": "root", "index": 0},
    )
    assert response.status_code == 400

    response = await client.post(
        "/api/conversations/unknown/messages", json={"content": "hi"}
    )
    assert response.status_code == 404

    response = await client.post("/api/streams/unknown/cancel")
    assert response.status_code == 200
    assert response.json()["cancelled"] is False


@pytest.mark.anyio
async def test_corrupt_log_returns_store_corrupt(app, client):
    conversation_id = await create_conversation(client)
    log_path = app.state.data_paths.message_log(conversation_id)
    log_path.parent.mkdir(parents=True, exist_ok=True)
    log_path.write_text('{"id": "m1", "role": "user"}\nnot json\n', encoding="utf-8")

    response = await client.get(f"/api/conversations/{conversation_id}/messages")
    assert response.status_code == 500
    assert response.json()["detail"]["code"] == "STORE_CORRUPT"
    assert "line 2" in response.json()["detail"]["message"]


@pytest.mark.anyio
async def test_orphaned_log_record_returns_store_corrupt(app, client):
    conversation_id = await create_conversation(client)
    log_path = app.state.data_paths.message_log(conversation_id)
    log_path.parent.mkdir(parents=True, exist_ok=True)
    log_path.write_text(
        '{"id": "u1", "role": "user", "content": "hi"}\n'
        '{"id": "u2", "parentId": "a1", "role": "user", "content": "again"}\n',
        encoding="utf-8",
    )

    response = await client.get(f"/api/conversations/{conversation_id}/path")
    assert response.status_code == 500
    assert response.json()["detail"]["code"] == "STORE_CORRUPT"
    assert "a1" in response.json()["detail"]["message"]


@pytest.mark.anyio
async def test_delete_message_route(client):
    conversation_id = await create_conversation(client)
    response = await client.post(
        f"/api/conversations/{conversation_id}/messages", json={"content": "hi"}
    )
    user_id = response.json()["messages"][0]["id"]
    await wait_for_status(client, conversation_id, response.json()["stream_message_id"], "complete")

    response = await client.delete(f"/api/conversations/{conversation_id}/messages/{user_id}")
    assert response.status_code == 200
    assert response.json()["messages"] == []

    response = await client.get(f"/api/conversations/{conversation_id}/messages")
    assert response.json()["messages"] == []

    response = await client.delete(f"/api/conversations/{conversation_id}/messages/{user_id}")
    assert response.status_code == 404


@pytest.mark.anyio
async def test_folder_routes(client):
    first = await create_conversation(client, title="first")
    second = await create_conversation(client, title="second")

    response = await client.post(
        "/api/conversations/folders", json={"conversation_ids": [first], "title": "Work"}
    )
    assert response.status_code == 201
    folder = response.json()
    assert folder["title"] == "Work"
    assert folder["children"] == [first]

    response = await client.post(
        f"/api/conversations/{second}/move", json={"folder_id": folder["id"]}
    )
    assert response.status_code == 200

    response = await client.put(
        f"/api/conversations/{folder['id']}/children", json={"conversation_ids": [second, first]}
    )
    assert response.status_code == 200
    assert response.json()["children"] == [second, first]

    response = await client.post(f"/api/conversations/{first}/move", json={"folder_id": second})
    assert response.status_code == 400

    response = await client.post("/api/conversations/folders", json={"conversation_ids": []})
    assert response.status_code == 422


@pytest.mark.anyio
async def test_provider_routes(client):
    response = await client.get("/api/providers")
    assert response.status_code == 200
    data = response.json()
    assert {item["provider"] for item in data["providers"]} == {"stub", "mock"}
    assert data["default_model"] == "stub-model"

    response = await client.get("/api/providers/stub/models")
    assert response.status_code == 200
    assert response.json() == {"provider": "stub", "models": ["stub-model"]}

    response = await client.get("/api/providers/nope/models")
    assert response.status_code == 400


def test_stream_socket_for_unknown_message(app):
    with TestClient(app) as client:
        with client.websocket_connect("/ws/streams/unknown") as websocket:
            assert websocket.receive_json() == {
                "event": "stream_inactive",
                "message_id": "unknown",
            }


def test_conversation_socket_reports_state(app):
    with TestClient(app) as client:
        conversation_id = client.post("/api/conversations", json={}).json()["id"]
        with client.websocket_connect(f"/ws/conversations/{conversation_id}") as websocket:
            assert websocket.receive_json() == {
                "event": "conversation_state",
                "active_streams": [],
            }
            assert app.state.ws_manager.watcher_count(conversation_id) == 1
