"""Tests for the HTTP and websocket surface."""

from __future__ import annotations

import time

from fastapi.testclient import TestClient

from agent_runtime.main import create_app
from agent_runtime.sessions import SessionManager
from agent_runtime.threads.manager import ThreadManager
from agent_runtime.threads.store import InMemoryThreadStore
from agent_runtime.tools.executor import ToolExecutor

from helpers import RecordingTools, ScriptedProvider, call, reply


def _client(script=None, *, provider=True, tools=None) -> TestClient:
    tools = tools or RecordingTools()
    sessions = SessionManager(
        ThreadManager(InMemoryThreadStore()),
        ToolExecutor(tools.registry()),
        ScriptedProvider(script or []) if provider else None,
    )
    return TestClient(create_app(sessions))


def _poll(fetch, predicate, attempts: int = 200):
    for _ in range(attempts):
        value = fetch()
        if predicate(value):
            return value
        time.sleep(0.01)
    raise AssertionError("condition never became true")


def test_health():
    with _client() as client:
        assert client.get("/health").json()["status"] == "ok"


def test_create_and_list_threads():
    with _client() as client:
        created = client.post("/threads", json={"id": "t1"})
        assert created.status_code == 200
        assert created.json()["id"] == "t1"

        assert client.post("/threads", json={"id": "t1"}).status_code == 409

        generated = client.post("/threads").json()["id"]
        assert generated.startswith("thread_")
        assert client.get("/threads").json() == ["t1", generated]

        detail = client.get("/threads/t1").json()
        assert detail["agent"] is None


def test_unknown_thread_is_404():
    with _client() as client:
        assert client.get("/threads/nope/events").status_code == 404
        assert client.post("/threads/nope/messages", json={"content": "hi"}).status_code == 404
        assert client.post("/threads/nope/compact").status_code == 404
        assert client.get("/threads/nope/queue").status_code == 404


def test_send_message_and_read_events():
    with _client([reply("hello there")]) as client:
        client.post("/threads", json={"id": "t1"})

        result = client.post("/threads/t1/messages", json={"content": "hi", "wait": True}).json()
        assert result["status"] == "completed"
        assert result["metrics"]["provider_calls"] == 1

        events = client.get("/threads/t1/events").json()
        assert [e["type"] for e in events] == ["USER_MESSAGE", "AGENT_MESSAGE"]
        assert events[1]["data"]["text"] == "hello there"
        assert [e["sequence"] for e in events] == [1, 2]

        detail = client.get("/threads/t1").json()
        assert detail["agent"]["state"] == "idle"


def test_empty_message_is_rejected():
    with _client() as client:
        client.post("/threads", json={"id": "t1"})
        assert client.post("/threads/t1/messages", json={"content": ""}).status_code == 422


def test_no_provider_is_503():
    with _client(provider=False) as client:
        client.post("/threads", json={"id": "t1"})
        response = client.post("/threads/t1/messages", json={"content": "hi"})
        assert response.status_code == 503


def test_compact_endpoint():
    script = [reply("", call("c1", "echo", text="x" * 500)), reply("done")]
    with _client(script) as client:
        client.post("/threads", json={"id": "t1"})
        client.post("/threads/t1/messages", json={"content": "go", "wait": True})

        first = client.post("/threads/t1/compact", json={"retain": 0}).json()
        second = client.post("/threads/t1/compact").json()

        assert first["compacted_count"] == 1
        assert first["event"]["data"]["local"] is True
        assert second["compacted_count"] == 0
        assert second["event"] is None
        assert client.post("/threads/t1/compact", json={"retain": -1}).status_code == 422


def test_queue_and_abort_without_a_session():
    with _client() as client:
        client.post("/threads", json={"id": "t1"})
        queue = client.get("/threads/t1/queue").json()
        assert queue["queue_length"] == 0
        assert queue["messages"] == []
        assert client.delete("/threads/t1/queue").json() == {"removed": 0}
        assert client.post("/threads/t1/abort").json() == {"aborted": False}
        assert client.get("/threads/t1/approvals").json() == []


def test_approval_round_trip_over_http():
    tools = RecordingTools()
    script = [reply("", call("c1", "bash", command="make deploy")), reply("deployed")]
    with _client(script, tools=tools) as client:
        client.post("/threads", json={"id": "t1"})
        started = client.post("/threads/t1/messages", json={"content": "deploy"}).json()
        assert started["status"] == "started"

        pending = _poll(lambda: client.get("/threads/t1/approvals").json(), bool)
        assert pending[0]["tool_name"] == "bash"
        assert pending[0]["input"] == {"command": "make deploy"}

        queued = client.post("/threads/t1/messages", json={"content": "and then?"}).json()
        assert queued["status"] == "queued"
        assert client.get("/threads/t1/queue").json()["queue_length"] == 1
        assert client.delete("/threads/t1/queue").json() == {"removed": 1}

        resolved = client.post(
            f"/threads/t1/approvals/{pending[0]['id']}", json={"decision": "allow_session"}
        )
        assert resolved.status_code == 200

        events = _poll(
            lambda: client.get("/threads/t1/events").json(),
            lambda evs: evs and evs[-1]["type"] == "AGENT_MESSAGE",
        )
        assert [e["type"] for e in events] == [
            "USER_MESSAGE",
            "TOOL_CALL",
            "APPROVAL_REQUEST",
            "APPROVAL_DECISION",
            "TOOL_RESULT",
            "AGENT_MESSAGE",
        ]
        assert tools.ran("bash") == 1
        assert client.get("/threads/t1").json()["agent"]["allowed_tools"] == ["bash"]

        missing = client.post("/threads/t1/approvals/apr_missing", json={"decision": "deny"})
        assert missing.status_code == 404


def test_reset_endpoint_clears_events():
    with _client([reply("hi")]) as client:
        client.post("/threads", json={"id": "t1"})
        client.post("/threads/t1/messages", json={"content": "hello", "wait": True})
        assert client.post("/threads/t1/reset").json() == {"ok": True}
        assert client.get("/threads/t1/events").json() == []


def test_websocket_streams_notifications():
    with _client([reply("streamed reply")]) as client:
        client.post("/threads", json={"id": "t1"})
        with client.websocket_connect("/ws/threads/t1") as ws:
            ws.send_json({"type": "message", "message": "hi"})
            received = []
            while True:
                message = ws.receive_json()
                received.append(message)
                if message["type"] == "turn_complete":
                    break

        types = [m["type"] for m in received]
        assert "agent_token" in types
        assert "agent_message" in types
        assert all(m["thread_id"] == "t1" for m in received)
        tokens = "".join(m["token"] for m in received if m["type"] == "agent_token")
        assert tokens.strip() == "streamed reply"


def test_websocket_unknown_thread():
    with _client() as client:
        with client.websocket_connect("/ws/threads/nope") as ws:
            message = ws.receive_json()
        assert message["type"] == "error"
        assert "not found" in message["message"]
