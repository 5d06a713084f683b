"""Per-exchange service configuration.

A ``SessionConfig`` describes everything about an exchange that is not
conversation state: which model, which plugins and MCP servers, which system
prompt.  The session pool holds the current value and hands it to sessions
lazily (see ``SessionPool.broadcast_config_reload``).
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from agentdesk.orchestrator.models.enums import SystemPromptMode

DEFAULT_MODEL_ID = "claude-sonnet-4-5-20250929"


class SessionConfig(BaseModel):
    model_id: str = DEFAULT_MODEL_ID
    max_thinking_tokens: int | None = 10000
    additional_directories: list[str] = Field(default_factory=list)
    plugins_path: str | None = None
    mcp_servers: dict[str, dict[str, Any]] = Field(
        default_factory=dict, description="MCP server name -> service-specific server config"
    )
    system_prompt: str | None = None
    system_prompt_mode: SystemPromptMode = SystemPromptMode.APPEND
    include_partial_messages: bool = True
