"""Claude Agent SDK adapter.

One ``ClaudeExchange`` wraps one connected ``ClaudeSDKClient`` in streaming
input mode: the batch's turns are written by a background ``query`` task
while ``events()`` reads ``receive_messages()`` concurrently and translates
SDK messages into ``AgentEvent`` models.  The exchange ends once every
produced turn has received its ``ResultMessage``.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterable, AsyncIterator, Mapping
from typing import Any

from claude_agent_sdk import (
    AssistantMessage,
    ClaudeAgentOptions,
    ClaudeSDKClient,
    ResultMessage,
    SystemMessage,
    UserMessage,
)
from claude_agent_sdk import TextBlock as SDKTextBlock
from claude_agent_sdk import ThinkingBlock as SDKThinkingBlock
from claude_agent_sdk import ToolResultBlock as SDKToolResultBlock
from claude_agent_sdk import ToolUseBlock as SDKToolUseBlock
from claude_agent_sdk.types import HookContext, HookMatcher, StreamEvent
from loguru import logger

from agentdesk.orchestrator.models.approvals import HookDecision, ToolUseRequest
from agentdesk.orchestrator.models.enums import PermissionMode, SystemPromptMode, ToolStatus
from agentdesk.orchestrator.models.events import (
    AgentEvent,
    AssistantBlock,
    AssistantEvent,
    ResultEvent,
    StreamDeltaEvent,
    SystemEvent,
    TextBlock,
    ThinkingBlock,
    ToolProgressEvent,
    ToolUseBlock,
    UnrecognizedEvent,
)
from agentdesk.orchestrator.models.turns import OutboundTurn
from agentdesk.orchestrator.service.base import ExchangeRequest, PreToolUseHook

# ---------------------------------------------------------------------------
# Options
# ---------------------------------------------------------------------------


def _system_prompt(request: ExchangeRequest) -> str | dict[str, Any] | None:
    config = request.config
    if not config.system_prompt:
        return None
    if config.system_prompt_mode == SystemPromptMode.CUSTOM:
        return config.system_prompt
    return {"type": "preset", "preset": "claude_code", "append": config.system_prompt}


def decision_to_hook_output(decision: HookDecision) -> dict[str, Any]:
    """Render a ``HookDecision`` as the SDK's PreToolUse hook output."""
    specific: dict[str, Any] = {
        "hookEventName": "PreToolUse",
        "permissionDecision": "allow" if decision.allow else "deny",
    }
    if decision.reason:
        specific["permissionDecisionReason"] = decision.reason
    if decision.updated_input is not None:
        specific["updatedInput"] = decision.updated_input
    return {"continue_": decision.continue_processing, "hookSpecificOutput": specific}


def _make_pre_tool_use_hook(hook: PreToolUseHook):
    async def _pre_tool_use(
        input_data: Mapping[str, Any],
        tool_use_id: str | None,
        context: HookContext,
    ) -> dict[str, Any]:
        request = ToolUseRequest(
            tool_name=str(input_data.get("tool_name", "")),
            tool_input=dict(input_data.get("tool_input") or {}),
            tool_use_id=tool_use_id,
        )
        return decision_to_hook_output(await hook(request))

    return _pre_tool_use


def build_options(request: ExchangeRequest) -> ClaudeAgentOptions:
    config = request.config
    kwargs: dict[str, Any] = {
        "model": config.model_id,
        "cwd": request.working_directory,
        "permission_mode": request.permission_mode.value,
        "include_partial_messages": config.include_partial_messages,
        "max_thinking_tokens": config.max_thinking_tokens,
        "add_dirs": list(config.additional_directories),
        "mcp_servers": dict(config.mcp_servers),
        # Keep sessions hermetic: no user/project settings files.
        "setting_sources": [],
        "hooks": {"PreToolUse": [HookMatcher(matcher=None, hooks=[_make_pre_tool_use_hook(request.pre_tool_use)])]},
    }
    if request.resume:
        kwargs["resume"] = request.resume
        kwargs["fork_session"] = request.fork_session
    if config.plugins_path:
        kwargs["plugins"] = [{"type": "local", "path": config.plugins_path}]
    if (prompt := _system_prompt(request)) is not None:
        kwargs["system_prompt"] = prompt
    if request.env:
        kwargs["env"] = dict(request.env)
    return ClaudeAgentOptions(**kwargs)


# ---------------------------------------------------------------------------
# Translation
# ---------------------------------------------------------------------------


def _turn_to_wire(turn: OutboundTurn) -> dict[str, Any]:
    content: str | list[dict[str, Any]]
    if isinstance(turn.content, str):
        content = turn.content
    else:
        content = [part.model_dump() for part in turn.content]
    return {
        "type": "user",
        "message": {"role": "user", "content": content},
        "parent_tool_use_id": None,
        "session_id": turn.session_id or "default",
    }


def _translate_stream_event(message: StreamEvent) -> list[AgentEvent]:
    event = message.event or {}
    if event.get("type") != "content_block_delta":
        return []
    delta = event.get("delta") or {}
    if delta.get("type") != "text_delta" or not delta.get("text"):
        return []
    # Text deltas of one turn form a single stream, reconciled against the
    # first text block of the completed reply.
    return [StreamDeltaEvent(session_id=message.session_id, text=delta["text"], content_index=0)]


def translate_message(message: Any, tool_names: dict[str, str]) -> list[AgentEvent]:
    """Translate one SDK message into zero or more agent events.

    ``tool_names`` maps tool-use ids to tool names so tool results can be
    reported by name; it is updated in place.
    """
    match message:
        case StreamEvent():
            return _translate_stream_event(message)

        case AssistantMessage():
            blocks: list[AssistantBlock] = []
            for block in message.content:
                if isinstance(block, SDKTextBlock):
                    blocks.append(TextBlock(text=block.text))
                elif isinstance(block, SDKThinkingBlock):
                    blocks.append(ThinkingBlock(thinking=block.thinking))
                elif isinstance(block, SDKToolUseBlock):
                    tool_names[block.id] = block.name
                    blocks.append(ToolUseBlock(id=block.id, name=block.name, input=dict(block.input)))
            return [AssistantEvent(blocks=blocks)] if blocks else []

        case UserMessage():
            if isinstance(message.content, str):
                return []
            return [
                ToolProgressEvent(
                    tool=tool_names.pop(block.tool_use_id, block.tool_use_id),
                    status=ToolStatus.COMPLETED,
                    result=block.content,
                )
                for block in message.content
                if isinstance(block, SDKToolResultBlock)
            ]

        case SystemMessage():
            data = dict(message.data or {})
            return [SystemEvent(session_id=data.get("session_id"), subtype=message.subtype, data=data)]

        case ResultMessage():
            return [
                ResultEvent(
                    session_id=message.session_id,
                    subtype=message.subtype,
                    is_error=message.is_error,
                    result=message.result,
                )
            ]

        case _:
            logger.debug("Unhandled SDK message type: {}", type(message).__name__)
            return [UnrecognizedEvent(kind=type(message).__name__)]


# ---------------------------------------------------------------------------
# Exchange / service
# ---------------------------------------------------------------------------


class ClaudeExchange:
    def __init__(
        self,
        client: ClaudeSDKClient,
        turns: AsyncIterable[OutboundTurn],
        *,
        conversation_id: str,
    ) -> None:
        self._client = client
        self._turns = turns
        self._conversation_id = conversation_id
        self._expected: int | None = len(turns) if hasattr(turns, "__len__") else None
        self._produced = 0
        self._query_task: asyncio.Task[None] | None = None
        self._closed = False

    def start(self) -> None:
        self._query_task = asyncio.create_task(
            self._client.query(self._wire_turns()),
            name=f"agentdesk-query-{self._conversation_id}",
        )

    async def _wire_turns(self) -> AsyncIterator[dict[str, Any]]:
        async for turn in self._turns:
            self._produced += 1
            yield _turn_to_wire(turn)

    def _input_finished(self) -> bool:
        task = self._query_task
        return task is not None and task.done()

    def _raise_query_failure(self) -> None:
        task = self._query_task
        if task is not None and task.done() and not task.cancelled() and (exc := task.exception()) is not None:
            raise exc

    async def events(self) -> AsyncIterator[AgentEvent]:
        tool_names: dict[str, str] = {}
        results = 0
        async for message in self._client.receive_messages():
            self._raise_query_failure()
            for event in translate_message(message, tool_names):
                yield event
            if isinstance(message, ResultMessage):
                results += 1
                expected = self._expected if self._expected is not None else self._produced
                if results >= expected and (self._expected is not None or self._input_finished()):
                    logger.debug("All {} result(s) received [{}]", results, self._conversation_id)
                    return
        self._raise_query_failure()

    async def interrupt(self) -> None:
        await self._client.interrupt()

    async def set_permission_mode(self, mode: PermissionMode) -> None:
        await self._client.set_permission_mode(mode.value)

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._query_task is not None and not self._query_task.done():
            self._query_task.cancel()
            try:
                await self._query_task
            except asyncio.CancelledError:
                pass
            except Exception as exc:
                logger.debug("Query task ended with {!r} [{}]", exc, self._conversation_id)
        await self._client.disconnect()


class ClaudeAgentService:
    """``AgentService`` backed by the Claude Agent SDK."""

    def __init__(self, env: Mapping[str, str] | None = None) -> None:
        self._env = dict(env or {})

    async def open_exchange(self, request: ExchangeRequest, turns: AsyncIterable[OutboundTurn]) -> ClaudeExchange:
        if self._env:
            request.env = {**self._env, **request.env}
        client = ClaudeSDKClient(options=build_options(request))
        await client.connect()
        exchange = ClaudeExchange(client, turns, conversation_id=request.conversation_id)
        exchange.start()
        return exchange
