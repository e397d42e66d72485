"""
Tests for quill/ai/orchestrator.py — the bounded agent loop.

The model is scripted (see conftest.ScriptedModel); tools and storage are real.
"""

import json
import zoneinfo

import pytest

from quill.ai.claude_client import TextChunk
from quill.ai.context import ContextBuilder
from quill.ai.orchestrator import (
    AgentComplete,
    AgentOrchestrator,
    ToolCallChunk,
    ToolResultChunk,
    summarize_results,
)
from quill.ai.tools.registry import build_tool_registry
from quill.memory.notes import NoteStore
from quill.memory.reminders import ReminderStore
from quill.models import ToolFailure, ToolSuccess

from conftest import USER_ID, text_turn, tool_turn

UTC = zoneinfo.ZoneInfo("UTC")


async def run_events(db, model, text, max_steps=5, history=(), tz=UTC):
    orchestrator = AgentOrchestrator(model, max_steps=max_steps)
    context = await ContextBuilder(db).build(USER_ID)
    registry = build_tool_registry(db, tz)
    return [
        event async for event in orchestrator.stream(
            USER_ID, text, context, registry, tz, history=history,
        )
    ]


# --------------------------------------------------------------------------- #
# Loop shape                                                                   #
# --------------------------------------------------------------------------- #

@pytest.mark.asyncio
async def test_plain_answer_takes_one_step(db, scripted_model):
    model = scripted_model([text_turn("Hello there")])

    events = await run_events(db, model, "hi")

    assert events[0] == TextChunk(text="Hello there")
    complete = events[-1]
    assert isinstance(complete, AgentComplete)
    assert complete.response.message == "Hello there"
    assert complete.response.tool_results == []
    assert complete.steps == 1
    assert not complete.hit_step_limit
    assert not complete.synthesized
    assert len(model.calls) == 1
    assert model.calls[0]["messages"] == [{"role": "user", "content": "hi"}]


@pytest.mark.asyncio
async def test_step_limit_stops_without_sixth_call(db, scripted_model):
    model = scripted_model(
        [], default=tool_turn(("create_note", {"title": "Loop", "content": "again"})),
    )

    events = await run_events(db, model, "keep going")

    complete = events[-1]
    assert len(model.calls) == 5
    assert complete.hit_step_limit
    assert complete.synthesized
    assert complete.steps == 5
    assert len(complete.response.tool_results) == 5
    assert complete.response.message.startswith("Here's what I did:")
    assert len(await NoteStore(db).list_active(USER_ID)) == 5


@pytest.mark.asyncio
async def test_custom_step_limit(db, scripted_model):
    model = scripted_model([], default=tool_turn(("create_note", {"title": "x", "content": "y"})))
    events = await run_events(db, model, "go", max_steps=2)
    assert len(model.calls) == 2
    assert events[-1].hit_step_limit


@pytest.mark.asyncio
async def test_event_order_within_a_step(db, scripted_model):
    model = scripted_model([
        tool_turn(
            ("create_note", {"title": "A", "content": "a"}),
            ("create_reminder", {"message": "B"}),
            text="On it. ",
        ),
        text_turn("Done."),
    ])

    events = await run_events(db, model, "do two things")

    kinds = [type(e).__name__ for e in events]
    assert kinds == [
        "TextChunk", "ToolCallChunk", "ToolCallChunk",
        "ToolResultChunk", "ToolResultChunk", "TextChunk", "AgentComplete",
    ]
    results = [e for e in events if isinstance(e, ToolResultChunk)]
    assert [r.call.name for r in results] == ["create_note", "create_reminder"]
    assert all(r.step == 1 for r in results)
    assert events[-1].response.message == "Done."


@pytest.mark.asyncio
async def test_tool_results_fed_back_in_request_order(db, scripted_model):
    model = scripted_model([
        tool_turn(("create_note", {"title": "A", "content": "a"}), ("nope", {})),
        text_turn("ok"),
    ])

    await run_events(db, model, "go")

    second = model.calls[1]["messages"]
    assert [m["role"] for m in second] == ["user", "assistant", "user"]
    assistant_blocks = second[1]["content"]
    assert [b["type"] for b in assistant_blocks] == ["tool_use", "tool_use"]
    tool_results = second[2]["content"]
    assert [b["tool_use_id"] for b in tool_results] == ["toolu_0", "toolu_1"]
    assert [b["is_error"] for b in tool_results] == [False, True]
    assert json.loads(tool_results[1]["content"])["error"] == "unknown tool: nope"


@pytest.mark.asyncio
async def test_validation_failure_does_not_abort_loop(db, scripted_model):
    model = scripted_model([
        tool_turn(("create_note", {"content": "missing title"})),
        tool_turn(("create_note", {"title": "Fixed", "content": "now with title"})),
        text_turn("Saved your note."),
    ])

    events = await run_events(db, model, "save this")

    response = events[-1].response
    assert [r.success for r in response.tool_results] == [False, True]
    assert response.tool_results[0].error.startswith("validation: ")
    assert response.message == "Saved your note."
    assert [n["title"] for n in await NoteStore(db).list_active(USER_ID)] == ["Fixed"]


@pytest.mark.asyncio
async def test_empty_final_text_is_synthesized(db, scripted_model):
    model = scripted_model([
        tool_turn(("create_reminder", {"message": "Water plants"})),
        text_turn(""),
    ])

    events = await run_events(db, model, "remind me to water plants")

    complete = events[-1]
    assert complete.synthesized
    assert not complete.hit_step_limit
    assert complete.response.message == 'Here\'s what I did:\n- Created reminder: "Water plants"'


@pytest.mark.asyncio
async def test_model_error_propagates(db, scripted_model):
    model = scripted_model([], error=RuntimeError("model down"))
    with pytest.raises(RuntimeError, match="model down"):
        await run_events(db, model, "hi")


@pytest.mark.asyncio
async def test_trailing_user_history_is_merged(db, scripted_model):
    model = scripted_model([text_turn("ok")])
    history = [
        {"role": "user", "content": "first"},
        {"role": "assistant", "content": "reply"},
        {"role": "user", "content": "unanswered"},
    ]

    await run_events(db, model, "second", history=history)

    messages = model.calls[0]["messages"]
    assert [m["role"] for m in messages] == ["user", "assistant", "user"]
    assert messages[-1]["content"] == "unanswered\n\nsecond"
    assert history[-1]["content"] == "unanswered"


@pytest.mark.asyncio
async def test_run_returns_final_response(db, scripted_model):
    orchestrator = AgentOrchestrator(scripted_model([text_turn("fine")]))
    context = await ContextBuilder(db).build(USER_ID)
    response = await orchestrator.run(USER_ID, "hi", context, build_tool_registry(db, UTC), UTC)
    assert response.message == "fine"


def test_summarize_results():
    assert summarize_results([]) == "I wasn't able to complete that request."
    summary = summarize_results([
        ToolSuccess(action="create_note", message='Created note: "A"'),
        ToolFailure(action="delete_note", error="not_found: no note with id x"),
    ])
    assert summary == (
        "Here's what I did:\n"
        '- Created note: "A"\n'
        "- delete_note failed: not_found: no note with id x"
    )


# --------------------------------------------------------------------------- #
# End-to-end scenarios                                                         #
# --------------------------------------------------------------------------- #

@pytest.mark.asyncio
async def test_remind_me_scenario(db, scripted_model):
    tz = zoneinfo.ZoneInfo("America/Los_Angeles")
    model = scripted_model([
        tool_turn(("create_reminder", {
            "message": "Call mom",
            "remind_at": "2026-07-04T18:00:00",
        })),
        text_turn("I'll remind you to call mom on July 4 at 6pm."),
    ])

    events = await run_events(db, model, "Remind me to call mom on July 4th at 6pm", tz=tz)

    response = events[-1].response
    assert response.tool_results[0].action == "create_reminder"
    assert "America/Los_Angeles" in model.calls[0]["system"]
    [reminder] = await ReminderStore(db).list_pending(USER_ID)
    assert reminder["message"] == "Call mom"
    assert reminder["remind_at"] == "2026-07-05T01:00:00+00:00"
    assert reminder["notify_via"] == "both"


@pytest.mark.asyncio
async def test_add_to_existing_note_scenario(db, scripted_model):
    notes = NoteStore(db)
    groceries = await notes.create(USER_ID, "Groceries", "eggs\nbread")
    model = scripted_model([
        tool_turn(("update_note", {"note_id": groceries["id"], "append_content": "milk"})),
        text_turn("Added milk to your Groceries note."),
    ])

    events = await run_events(db, model, "Add milk to my groceries note")

    assert groceries["id"] in model.calls[0]["system"]
    assert events[-1].response.tool_results[0].action == "update_note"
    [note] = await notes.list_active(USER_ID)
    assert note["id"] == groceries["id"]
    assert note["content"] == "eggs\nbread\n\nmilk"


@pytest.mark.asyncio
async def test_same_script_gives_same_outcome(db, scripted_model):
    def script():
        return [
            tool_turn(("create_note", {"title": "Idea", "content": "x"})),
            text_turn("Saved."),
        ]

    first = (await run_events(db, scripted_model(script()), "note this"))[-1].response
    second = (await run_events(db, scripted_model(script()), "note this"))[-1].response

    assert first.message == second.message
    assert [(r.action, r.success, r.message) for r in first.tool_results] == [
        (r.action, r.success, r.message) for r in second.tool_results
    ]
