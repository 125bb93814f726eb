"""Tests for the polling chat client.

Uses httpx.MockTransport so no server is needed.
"""

import json
import uuid

import httpx
import pytest

from app.client import ChatClient

PATIENT_ID = uuid.uuid4()
SESSION_ID = "session_poll"


def _message(role: str, text: str) -> dict:
    return {
        "id": str(uuid.uuid4()),
        "patient_id": str(PATIENT_ID),
        "session_id": SESSION_ID,
        "role": role,
        "message": text,
        "timestamp": "2026-10-19T09:00:00Z",
        "has_diagnosis": None,
        "linked_visit_ids": [],
    }


class FakeChatServer:
    """Serves history snapshots in order; the last one repeats."""

    def __init__(self, history_snapshots: list[list[dict]]):
        self.history_snapshots = history_snapshots
        self.history_calls = 0
        self.requests: list[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path == "/api/chat/history":
            index = min(self.history_calls, len(self.history_snapshots) - 1)
            self.history_calls += 1
            messages = self.history_snapshots[index]
            return httpx.Response(200, json={"messages": messages, "total": len(messages)})
        if request.url.path == "/api/chat/turns/async":
            body = json.loads(request.content)
            return httpx.Response(
                202,
                json={"status": "accepted", "patient_id": body["patient_id"], "session_id": body["session_id"]},
            )
        if request.url.path == "/api/chat/turns":
            return httpx.Response(200, json={"success": True, "response": "Hello"})
        return httpx.Response(404, json={"detail": "Not Found"})

    def client(self, api_key: str = "key") -> ChatClient:
        http_client = httpx.AsyncClient(
            transport=httpx.MockTransport(self.handler), base_url="http://test"
        )
        return ChatClient("http://test", api_key=api_key, http_client=http_client)


class TestChatClient:
    """Tests for ChatClient requests."""

    @pytest.mark.asyncio
    async def test_sends_api_key(self):
        server = FakeChatServer([[]])

        async with server.client(api_key="secret") as client:
            await client.submit_turn({"patient_id": str(PATIENT_ID)})

        assert server.requests[0].headers["X-API-Key"] == "secret"

    @pytest.mark.asyncio
    async def test_fetch_history_params(self):
        server = FakeChatServer([[_message("user", "Hi")]])

        async with server.client() as client:
            messages = await client.fetch_history(PATIENT_ID, SESSION_ID, limit=10)

        assert [m["message"] for m in messages] == ["Hi"]
        params = server.requests[0].url.params
        assert params["patient_id"] == str(PATIENT_ID)
        assert params["session_id"] == SESSION_ID
        assert params["limit"] == "10"

    @pytest.mark.asyncio
    async def test_http_errors_raise(self):
        def handler(request):
            return httpx.Response(503, json={"detail": "unavailable"})

        http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://test")
        async with ChatClient("http://test", api_key="k", http_client=http_client) as client:
            with pytest.raises(httpx.HTTPStatusError):
                await client.submit_turn({})


class TestWaitForReply:
    """Tests for bounded polling."""

    @pytest.mark.asyncio
    async def test_reply_on_third_poll(self):
        user = _message("user", "I feel dizzy")
        reply = _message("ai", "How long has this lasted?")
        server = FakeChatServer([[user], [user], [user, reply]])

        async with server.client() as client:
            result = await client.wait_for_reply(
                PATIENT_ID, SESSION_ID, known_message_ids=set(), max_attempts=5, interval=0
            )

        assert result == reply
        assert server.history_calls == 3

    @pytest.mark.asyncio
    async def test_gives_up(self):
        old_reply = _message("ai", "Earlier answer")
        server = FakeChatServer([[old_reply]])

        async with server.client() as client:
            result = await client.wait_for_reply(
                PATIENT_ID,
                SESSION_ID,
                known_message_ids={old_reply["id"]},
                max_attempts=3,
                interval=0,
            )

        assert result is None
        assert server.history_calls == 3

    @pytest.mark.asyncio
    async def test_send_and_wait(self):
        earlier = _message("ai", "Earlier answer")
        user = _message("user", "Still dizzy")
        reply = _message("ai", "Please sit down and drink water.")
        server = FakeChatServer([[earlier], [earlier, user], [earlier, user, reply]])

        async with server.client() as client:
            result = await client.send_and_wait(
                PATIENT_ID, SESSION_ID, "Still dizzy", max_attempts=4, interval=0
            )

        assert result == reply
        submitted = [r for r in server.requests if r.url.path == "/api/chat/turns/async"]
        assert len(submitted) == 1
        body = json.loads(submitted[0].content)
        assert body["message"] == "Still dizzy"
        assert body["conversation_history"] == []
