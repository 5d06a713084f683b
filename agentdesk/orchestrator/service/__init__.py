"""Remote agent service interface and adapters."""

from agentdesk.orchestrator.service.base import AgentService, Exchange, ExchangeRequest, PreToolUseHook

__all__ = ["AgentService", "Exchange", "ExchangeRequest", "PreToolUseHook"]
