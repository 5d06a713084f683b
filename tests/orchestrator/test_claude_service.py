"""Unit tests for the Claude Agent SDK adapter (no network)."""

from __future__ import annotations

import asyncio
from typing import Any
from unittest.mock import AsyncMock

from claude_agent_sdk import (
    AssistantMessage,
    ResultMessage,
    SystemMessage,
    TextBlock,
    ThinkingBlock,
    ToolResultBlock,
    ToolUseBlock,
    UserMessage,
)
from claude_agent_sdk.types import StreamEvent

from agentdesk.orchestrator.context import QueuedMessage
from agentdesk.orchestrator.execution.input import TurnProducer
from agentdesk.orchestrator.models.approvals import HookDecision, ToolUseRequest
from agentdesk.orchestrator.models.config import SessionConfig
from agentdesk.orchestrator.models.enums import PermissionMode, SystemPromptMode, ToolStatus
from agentdesk.orchestrator.models.events import (
    AssistantEvent,
    ResultEvent,
    StreamDeltaEvent,
    SystemEvent,
    ToolProgressEvent,
)
from agentdesk.orchestrator.service.base import ExchangeRequest
from agentdesk.orchestrator.service.claude import (
    ClaudeExchange,
    build_options,
    decision_to_hook_output,
    translate_message,
)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _result(session_id: str = "sess-1", *, is_error: bool = False) -> ResultMessage:
    return ResultMessage(
        subtype="success",
        duration_ms=10,
        duration_api_ms=8,
        is_error=is_error,
        num_turns=1,
        session_id=session_id,
        result="done",
    )


def _delta(text: str, *, kind: str = "text_delta", index: int = 0) -> StreamEvent:
    return StreamEvent(
        uuid="u-1",
        session_id="sess-1",
        event={"type": "content_block_delta", "index": index, "delta": {"type": kind, "text": text}},
    )


def _request(**overrides: Any) -> ExchangeRequest:
    values: dict[str, Any] = {
        "conversation_id": "conv-1",
        "working_directory": "/srv/app",
        "permission_mode": PermissionMode.ACCEPT_EDITS,
        "config": SessionConfig(),
        "pre_tool_use": AsyncMock(return_value=HookDecision.allowed()),
    }
    values.update(overrides)
    return ExchangeRequest(**values)


# ---------------------------------------------------------------------------
# Message translation
# ---------------------------------------------------------------------------


def test_translate_text_delta() -> None:
    (event,) = translate_message(_delta("Hel", index=2), {})
    assert isinstance(event, StreamDeltaEvent)
    assert event.text == "Hel"
    assert event.content_index == 0
    assert event.session_id == "sess-1"


def test_non_text_stream_events_are_dropped() -> None:
    assert translate_message(_delta("{}", kind="input_json_delta"), {}) == []
    start = StreamEvent(uuid="u-2", session_id="sess-1", event={"type": "message_start"})
    assert translate_message(start, {}) == []


def test_translate_assistant_blocks_and_tool_results() -> None:
    tool_names: dict[str, str] = {}
    message = AssistantMessage(
        content=[
            ThinkingBlock(thinking="consider", signature="sig"),
            TextBlock(text="Reading"),
            ToolUseBlock(id="toolu_1", name="Read", input={"file_path": "a.py"}),
        ],
        model="claude-sonnet-4-5-20250929",
    )
    (event,) = translate_message(message, tool_names)
    assert isinstance(event, AssistantEvent)
    assert [b.type for b in event.blocks] == ["thinking", "text", "tool_use"]
    assert tool_names == {"toolu_1": "Read"}

    result = UserMessage(content=[ToolResultBlock(tool_use_id="toolu_1", content="print(1)", is_error=False)])
    (progress,) = translate_message(result, tool_names)
    assert isinstance(progress, ToolProgressEvent)
    assert progress.tool == "Read"
    assert progress.status == ToolStatus.COMPLETED
    assert progress.result == "print(1)"
    assert tool_names == {}


def test_plain_user_message_is_dropped() -> None:
    assert translate_message(UserMessage(content="echo"), {}) == []


def test_translate_system_and_result() -> None:
    (system,) = translate_message(SystemMessage(subtype="init", data={"session_id": "sess-2"}), {})
    assert isinstance(system, SystemEvent)
    assert system.session_id == "sess-2"
    assert system.subtype == "init"

    (result,) = translate_message(_result("sess-3", is_error=True), {})
    assert isinstance(result, ResultEvent)
    assert result.session_id == "sess-3"
    assert result.is_error is True
    assert result.result == "done"


def test_unknown_message_kind() -> None:
    (event,) = translate_message(object(), {})
    assert event.type == "unrecognized"
    assert event.kind == "object"


# ---------------------------------------------------------------------------
# Options / hooks
# ---------------------------------------------------------------------------


def test_build_options_basic() -> None:
    options = build_options(_request())
    assert options.model == "claude-sonnet-4-5-20250929"
    assert options.cwd == "/srv/app"
    assert options.permission_mode == "acceptEdits"
    assert options.include_partial_messages is True
    assert options.max_thinking_tokens == 10000
    assert options.setting_sources == []
    assert options.resume is None
    assert "PreToolUse" in options.hooks


def test_build_options_fork_plugins_and_prompt() -> None:
    config = SessionConfig(
        plugins_path="/opt/plugins",
        additional_directories=["/data"],
        system_prompt="Be terse.",
    )
    options = build_options(_request(config=config, resume="parent-1", fork_session=True))
    assert options.resume == "parent-1"
    assert options.fork_session is True
    assert options.plugins == [{"type": "local", "path": "/opt/plugins"}]
    assert options.add_dirs == ["/data"]
    assert options.system_prompt == {"type": "preset", "preset": "claude_code", "append": "Be terse."}

    custom = SessionConfig(system_prompt="You are a reviewer.", system_prompt_mode=SystemPromptMode.CUSTOM)
    assert build_options(_request(config=custom)).system_prompt == "You are a reviewer."


def test_decision_to_hook_output() -> None:
    allow = decision_to_hook_output(HookDecision.allowed(updated_input={"command": "ls"}))
    assert allow == {
        "continue_": True,
        "hookSpecificOutput": {
            "hookEventName": "PreToolUse",
            "permissionDecision": "allow",
            "updatedInput": {"command": "ls"},
        },
    }

    deny = decision_to_hook_output(HookDecision.denied("User denied permission"))
    assert deny["continue_"] is True
    assert deny["hookSpecificOutput"]["permissionDecision"] == "deny"
    assert deny["hookSpecificOutput"]["permissionDecisionReason"] == "User denied permission"


async def test_hook_wrapper_calls_pre_tool_use() -> None:
    hook = AsyncMock(return_value=HookDecision.denied("no"))
    options = build_options(_request(pre_tool_use=hook))
    (matcher,) = options.hooks["PreToolUse"]
    (callback,) = matcher.hooks

    output = await callback({"tool_name": "Bash", "tool_input": {"command": "ls"}}, "toolu_9", {"signal": None})

    hook.assert_awaited_once_with(ToolUseRequest(tool_name="Bash", tool_input={"command": "ls"}, tool_use_id="toolu_9"))
    assert output["hookSpecificOutput"]["permissionDecision"] == "deny"


# ---------------------------------------------------------------------------
# Exchange
# ---------------------------------------------------------------------------


class _FakeClient:
    """Stands in for ``ClaudeSDKClient`` in streaming-input mode."""

    def __init__(self, messages: list[Any]) -> None:
        self._messages = messages
        self.sent: list[dict[str, Any]] = []
        self.disconnected = False
        self.interrupt = AsyncMock()
        self.set_permission_mode = AsyncMock()

    async def query(self, prompt) -> None:
        async for message in prompt:
            self.sent.append(message)

    async def receive_messages(self):
        for message in self._messages:
            await asyncio.sleep(0)
            yield message
        # The real stream stays open across turns.
        await asyncio.Event().wait()

    async def disconnect(self) -> None:
        self.disconnected = True


async def test_exchange_ends_after_one_result_per_turn() -> None:
    client = _FakeClient([_delta("a"), _result(), _delta("b"), _result(), _delta("never")])
    batch = [QueuedMessage(text="one"), QueuedMessage(text="two")]
    exchange = ClaudeExchange(client, TurnProducer(batch, lambda: "sess-1"), conversation_id="conv-1")
    exchange.start()

    events = [event async for event in exchange.events()]

    assert [e.type for e in events] == ["stream_delta", "result", "stream_delta", "result"]
    assert [m["message"]["content"] for m in client.sent] == ["one", "two"]
    assert client.sent[0]["session_id"] == "sess-1"

    await exchange.set_permission_mode(PermissionMode.PLAN)
    client.set_permission_mode.assert_awaited_once_with("plan")
    await exchange.interrupt()
    client.interrupt.assert_awaited_once()

    await exchange.aclose()
    await exchange.aclose()
    assert client.disconnected is True
