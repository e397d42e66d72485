"""
Tests for quill/server.py — routes, auth, error mapping and rate-limit headers.

Uses aiohttp's TestClient so no real TCP socket is needed.
"""

import json

import pytest
from aiohttp.test_utils import TestClient, TestServer

import quill.health as health_module
from quill.memory.conversations import ConversationStore
from quill.memory.sessions import SessionResolver
from quill.server import create_app
from quill.utils.rate_limit import RateLimiter

from conftest import OTHER_USER_ID, USER_EMAIL, USER_ID, text_turn, tool_turn


@pytest.fixture(autouse=True)
def reset_ready_flag():
    health_module._READY = False
    yield
    health_module._READY = False


def make_app(db, model, **kwargs):
    kwargs.setdefault("webhook_secret", "")
    kwargs.setdefault("allowed_senders", [USER_EMAIL])
    kwargs.setdefault("limiter", RateLimiter())
    return create_app(db, model, **kwargs)


async def auth_headers(db, user_id=USER_ID) -> dict[str, str]:
    token = await SessionResolver(db).create(user_id)
    return {"Authorization": f"Bearer {token}"}


def email_event(subject="Groceries") -> bytes:
    return json.dumps({
        "type": "email.received",
        "data": {
            "from": USER_EMAIL,
            "to": [f"{USER_ID}@in.quill.test"],
            "subject": subject,
            "email_id": "",
        },
    }).encode()


# --------------------------------------------------------------------------- #
# Health and auth                                                              #
# --------------------------------------------------------------------------- #

@pytest.mark.asyncio
async def test_health_and_ready_need_no_auth(db, scripted_model):
    async with TestClient(TestServer(make_app(db, scripted_model([])))) as client:
        resp = await client.get("/health")
        assert resp.status == 200
        assert (await resp.json())["status"] == "ok"

        resp = await client.get("/ready")
        assert resp.status == 503

        health_module.set_ready()
        resp = await client.get("/ready")
        assert resp.status == 200


@pytest.mark.asyncio
async def test_missing_or_bad_token_is_401(db, scripted_model):
    async with TestClient(TestServer(make_app(db, scripted_model([])))) as client:
        resp = await client.post("/process", json={"input": "hi"})
        assert resp.status == 401
        assert await resp.json() == {"error": "Unauthorized"}

        resp = await client.get("/conversations", headers={"Authorization": "Bearer nope"})
        assert resp.status == 401

        resp = await client.get("/conversations", headers={"Authorization": "Basic abc"})
        assert resp.status == 401


# --------------------------------------------------------------------------- #
# /process                                                                     #
# --------------------------------------------------------------------------- #

@pytest.mark.asyncio
async def test_process_success_with_rate_headers(db, scripted_model):
    model = scripted_model([
        tool_turn(("create_reminder", {"message": "Call mom"})),
        text_turn("Reminder set."),
    ])
    headers = await auth_headers(db)
    async with TestClient(TestServer(make_app(db, model))) as client:
        resp = await client.post("/process", json={"input": "remind me to call mom"}, headers=headers)

        assert resp.status == 200
        body = await resp.json()
        assert body["message"] == "Reminder set."
        assert body["toolResults"][0]["action"] == "create_reminder"
        assert body["toolResults"][0]["success"] is True
        assert resp.headers["X-RateLimit-Limit"] == "10"
        assert resp.headers["X-RateLimit-Remaining"] == "9"
        assert "X-RateLimit-Reset" in resp.headers


@pytest.mark.asyncio
async def test_process_validation_errors_are_400(db, scripted_model):
    headers = await auth_headers(db)
    async with TestClient(TestServer(make_app(db, scripted_model([])))) as client:
        resp = await client.post("/process", data="{not json", headers=headers)
        assert resp.status == 400

        resp = await client.post("/process", json={"input": "   "}, headers=headers)
        assert resp.status == 400
        assert await resp.json() == {"error": "Input is required"}

        resp = await client.post("/process", json=["input"], headers=headers)
        assert resp.status == 400


@pytest.mark.asyncio
async def test_process_rate_limited_with_retry_after(db, scripted_model):
    model = scripted_model([], default=text_turn("ok"))
    headers = await auth_headers(db)
    async with TestClient(TestServer(make_app(db, model))) as client:
        for _ in range(10):
            resp = await client.post("/process", json={"input": "hi"}, headers=headers)
            assert resp.status == 200

        resp = await client.post("/process", json={"input": "hi"}, headers=headers)

        assert resp.status == 429
        assert await resp.json() == {"error": "Too many requests. Please wait a moment."}
        assert resp.headers["X-RateLimit-Remaining"] == "0"
        assert resp.headers["X-RateLimit-Limit"] == "10"
        assert 0 < int(resp.headers["Retry-After"]) <= 60
        assert len(model.calls) == 10

        other = await auth_headers(db, OTHER_USER_ID)
        resp = await client.post("/process", json={"input": "hi"}, headers=other)
        assert resp.status == 200


@pytest.mark.asyncio
async def test_process_model_failure_is_generic_500(db, scripted_model):
    headers = await auth_headers(db)
    model = scripted_model([], error=RuntimeError("secret stack detail"))
    async with TestClient(TestServer(make_app(db, model))) as client:
        resp = await client.post("/process", json={"input": "hi"}, headers=headers)
        assert resp.status == 500
        assert await resp.json() == {"error": "Failed to process input"}


# --------------------------------------------------------------------------- #
# /chat and conversations                                                      #
# --------------------------------------------------------------------------- #

@pytest.mark.asyncio
async def test_chat_streams_plain_text_and_persists(db, scripted_model):
    model = scripted_model([text_turn("Hi Ada!")])
    headers = await auth_headers(db)
    async with TestClient(TestServer(make_app(db, model))) as client:
        resp = await client.post("/chat", json={"message": "Hello"}, headers=headers)

        assert resp.status == 200
        assert resp.headers["Content-Type"].startswith("text/plain")
        assert resp.headers["Access-Control-Expose-Headers"] == "X-Conversation-Id"
        assert resp.headers["X-RateLimit-Limit"] == "30"
        conversation_id = resp.headers["X-Conversation-Id"]
        assert await resp.text() == "Hi Ada!"

        resp = await client.get("/conversations", headers=headers)
        listed = (await resp.json())["conversations"]
        assert [c["id"] for c in listed] == [conversation_id]
        assert listed[0]["title"] == "Hello"

        resp = await client.get(f"/conversations/{conversation_id}", headers=headers)
        body = await resp.json()
        assert [m["role"] for m in body["messages"]] == ["user", "assistant"]
        assert body["messages"][1]["content"] == "Hi Ada!"
        assert body["messages"][1]["toolResults"] is None


@pytest.mark.asyncio
async def test_chat_continues_existing_conversation(db, scripted_model):
    model = scripted_model([text_turn("one"), text_turn("two")])
    headers = await auth_headers(db)
    async with TestClient(TestServer(make_app(db, model))) as client:
        resp = await client.post("/chat", json={"message": "first"}, headers=headers)
        conversation_id = resp.headers["X-Conversation-Id"]
        await resp.text()

        resp = await client.post(
            "/chat", json={"message": "second", "conversationId": conversation_id}, headers=headers,
        )
        assert resp.headers["X-Conversation-Id"] == conversation_id
        assert await resp.text() == "two"

    assert len(await ConversationStore(db).get_messages(conversation_id)) == 4


@pytest.mark.asyncio
async def test_chat_rejects_bad_input_and_foreign_conversation(db, scripted_model):
    headers = await auth_headers(db)
    theirs = await ConversationStore(db).create(OTHER_USER_ID, "Theirs")
    async with TestClient(TestServer(make_app(db, scripted_model([])))) as client:
        resp = await client.post("/chat", json={"message": ""}, headers=headers)
        assert resp.status == 400
        assert await resp.json() == {"error": "Message is required"}

        resp = await client.post(
            "/chat", json={"message": "hi", "conversationId": theirs.id}, headers=headers,
        )
        assert resp.status == 404
        assert await resp.json() == {"error": "Conversation not found"}


@pytest.mark.asyncio
async def test_chat_rejected_requests_keep_quota(db, scripted_model):
    headers = await auth_headers(db)
    theirs = await ConversationStore(db).create(OTHER_USER_ID, "Theirs")
    model = scripted_model([], default=text_turn("hi there"))
    async with TestClient(TestServer(make_app(db, model))) as client:
        for _ in range(3):
            resp = await client.post(
                "/chat", json={"message": "hi", "conversationId": theirs.id}, headers=headers,
            )
            assert resp.status == 404

        resp = await client.post("/chat", json={"message": "hi"}, headers=headers)

        assert resp.status == 200
        assert resp.headers["X-RateLimit-Limit"] == "30"
        assert resp.headers["X-RateLimit-Remaining"] == "29"
        await resp.text()


@pytest.mark.asyncio
async def test_chat_failure_mid_stream_writes_error_text(db, scripted_model):
    headers = await auth_headers(db)
    model = scripted_model([], error=RuntimeError("model down"))
    async with TestClient(TestServer(make_app(db, model))) as client:
        resp = await client.post("/chat", json={"message": "hello"}, headers=headers)
        assert resp.status == 200
        conversation_id = resp.headers["X-Conversation-Id"]
        assert (await resp.text()).endswith("Failed to process input")

    messages = await ConversationStore(db).get_messages(conversation_id)
    assert [m.role for m in messages] == ["user"]


@pytest.mark.asyncio
async def test_delete_conversation(db, scripted_model):
    headers = await auth_headers(db)
    conversation = await ConversationStore(db).create(USER_ID, "Mine")
    async with TestClient(TestServer(make_app(db, scripted_model([])))) as client:
        other = await auth_headers(db, OTHER_USER_ID)
        resp = await client.delete(f"/conversations/{conversation.id}", headers=other)
        assert resp.status == 404

        resp = await client.delete(f"/conversations/{conversation.id}", headers=headers)
        assert resp.status == 200
        assert await resp.json() == {"success": True}

        resp = await client.get(f"/conversations/{conversation.id}", headers=headers)
        assert resp.status == 404


# --------------------------------------------------------------------------- #
# Email webhook and ingestion log                                              #
# --------------------------------------------------------------------------- #

@pytest.mark.asyncio
async def test_webhook_needs_no_session_and_checks_sender(db, scripted_model):
    model = scripted_model([text_turn("noted")])
    async with TestClient(TestServer(make_app(db, model, allowed_senders=["someone@else.test"]))) as client:
        resp = await client.post("/webhook/email", data=email_event())
        assert resp.status == 403
        assert await resp.json() == {"error": "Sender not authorized"}


@pytest.mark.asyncio
async def test_webhook_signature_required_when_secret_set(db, scripted_model):
    async with TestClient(TestServer(make_app(db, scripted_model([]), webhook_secret="s3cret"))) as client:
        resp = await client.post("/webhook/email", data=email_event(), headers={"svix-signature": "bad"})
        assert resp.status == 401


@pytest.mark.asyncio
async def test_ingestion_log_routes(db, scripted_model):
    model = scripted_model([
        text_turn("Not sure."),
        tool_turn(("create_note", {"title": "Groceries", "content": "eggs"})),
        text_turn("Saved."),
    ])
    headers = await auth_headers(db)
    async with TestClient(TestServer(make_app(db, model))) as client:
        resp = await client.post("/webhook/email", data=email_event())
        assert resp.status == 200
        assert (await resp.json())["success"] is True

        resp = await client.get("/ingestion-log", headers=headers)
        page = await resp.json()
        assert page["total"] == 1
        log_id = page["items"][0]["id"]
        assert page["items"][0]["status"] == "failed"

        other = await auth_headers(db, OTHER_USER_ID)
        resp = await client.get(f"/ingestion-log/{log_id}", headers=other)
        assert resp.status == 404

        resp = await client.post(f"/ingestion-log/{log_id}/reprocess", headers=headers)
        assert resp.status == 200
        body = await resp.json()
        assert body["success"] is True
        assert body["toolResults"][0]["action"] == "create_note"

        resp = await client.get(f"/ingestion-log/{log_id}", headers=headers)
        log = await resp.json()
        assert log["status"] == "processed"
        assert log["relatedNoteId"] == body["toolResults"][0]["data"]["noteId"]

        resp = await client.get("/ingestion-log?page=abc", headers=headers)
        assert resp.status == 400

        resp = await client.delete(f"/ingestion-log/{log_id}", headers=headers)
        assert resp.status == 200
        resp = await client.get(f"/ingestion-log/{log_id}", headers=headers)
        assert resp.status == 404
