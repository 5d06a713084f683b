"""Unit tests for AgentDeskSettings."""

from __future__ import annotations

import pytest

from agentdesk.orchestrator.models.config import DEFAULT_MODEL_ID
from agentdesk.orchestrator.models.enums import SystemPromptMode
from agentdesk.orchestrator.settings import AgentDeskSettings, get_settings


def test_defaults() -> None:
    settings = AgentDeskSettings()
    assert settings.max_processing_attempts == 100
    assert settings.interrupt_timeout == 1.0
    assert settings.max_thinking_tokens == 10000
    assert settings.resolve_model_id() == "claude-sonnet-4-5-20250929"


@pytest.mark.parametrize(
    ("model", "expected"),
    [
        ("sonnet", "claude-sonnet-4-5-20250929"),
        ("opus", "claude-opus-4-20250514"),
        ("haiku", "claude-3-5-haiku-20241022"),
        ("claude-custom-1", "claude-custom-1"),
        ("gpt-x", DEFAULT_MODEL_ID),
    ],
)
def test_resolve_model_id(model: str, expected: str) -> None:
    assert AgentDeskSettings().resolve_model_id(model) == expected


def test_env_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("AGENTDESK_MODEL", "opus")
    monkeypatch.setenv("AGENTDESK_MAX_PROCESSING_ATTEMPTS", "7")
    monkeypatch.setenv("AGENTDESK_ADDITIONAL_DIRECTORIES", '["/a", "/b"]')
    monkeypatch.setenv("AGENTDESK_SYSTEM_PROMPT_MODE", "custom")

    settings = get_settings()
    assert settings is get_settings()
    config = settings.session_config()
    assert config.model_id == "claude-opus-4-20250514"
    assert config.additional_directories == ["/a", "/b"]
    assert config.system_prompt_mode == SystemPromptMode.CUSTOM
    assert settings.max_processing_attempts == 7


def test_invalid_attempt_limit(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("AGENTDESK_MAX_PROCESSING_ATTEMPTS", "0")
    with pytest.raises(ValueError):
        AgentDeskSettings()


def test_session_config_model_override() -> None:
    assert AgentDeskSettings().session_config(model="haiku").model_id == "claude-3-5-haiku-20241022"
