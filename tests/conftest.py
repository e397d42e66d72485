"""Shared fixtures for quill tests."""

import copy

import pytest
import pytest_asyncio

import quill.config as config_module
from quill.ai.claude_client import ModelTurn, TextChunk
from quill.ai.tools.base import ToolCall
from quill.memory.database import DatabaseManager

USER_ID = "user-1"
USER_EMAIL = "ada@example.com"
OTHER_USER_ID = "user-2"
OTHER_EMAIL = "grace@example.com"


@pytest.fixture(autouse=True)
def isolate_env(monkeypatch, tmp_path):
    """Prevent tests from reading real .env or touching real data."""
    monkeypatch.setenv("ANTHROPIC_API_KEY", "test_key")
    monkeypatch.setenv("DATA_DIR", str(tmp_path))
    monkeypatch.delenv("EMAIL_WEBHOOK_SECRET", raising=False)
    monkeypatch.delenv("EMAIL_ALLOWED_SENDERS_RAW", raising=False)
    monkeypatch.delenv("COMPOSIO_API_KEY", raising=False)
    monkeypatch.delenv("RESEND_API_KEY", raising=False)
    config_module._settings = None
    yield
    config_module._settings = None


@pytest_asyncio.fixture
async def db(tmp_path):
    """Fresh database per test (temp file) with two users."""
    manager = DatabaseManager(db_path=str(tmp_path / "test.db"))
    await manager.init()
    await manager.upsert_user(USER_ID, USER_EMAIL, "Ada")
    await manager.upsert_user(OTHER_USER_ID, OTHER_EMAIL, "Grace")
    yield manager
    await manager.close()


# --------------------------------------------------------------------------- #
# Scripted model                                                               #
# --------------------------------------------------------------------------- #

def text_turn(text: str) -> ModelTurn:
    return ModelTurn(text=text, stop_reason="end_turn")


def tool_turn(*calls: tuple[str, dict], text: str = "") -> ModelTurn:
    """A turn requesting each (name, input) pair, with ids toolu_0, toolu_1, ..."""
    return ModelTurn(
        text=text,
        tool_calls=[ToolCall(id=f"toolu_{i}", name=name, input=inp) for i, (name, inp) in enumerate(calls)],
        stop_reason="tool_use",
    )


class ScriptedModel:
    """
    Stands in for ClaudeClient. Each stream_turn() call consumes the next
    scripted ModelTurn, streaming its text first. When the script runs out
    `default` is replayed, or the test fails if there is none.
    """

    def __init__(self, turns, default: ModelTurn | None = None, error: Exception | None = None):
        self._turns = list(turns)
        self._default = default
        self._error = error
        self.calls: list[dict] = []

    async def stream_turn(self, messages, system, tools):
        self.calls.append({
            "messages": copy.deepcopy(messages),
            "system": system,
            "tools": [t["name"] for t in tools],
        })
        if self._error is not None:
            raise self._error
        if self._turns:
            turn = self._turns.pop(0)
        elif self._default is not None:
            turn = self._default
        else:
            raise AssertionError("model called more times than scripted")
        if turn.text:
            yield TextChunk(text=turn.text)
        yield turn


@pytest.fixture
def scripted_model():
    """Factory: scripted_model([turn, ...], default=None, error=None)."""
    return ScriptedModel
