"""Client configuration loaded from AGENTDESK_* environment variables."""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from agentdesk.orchestrator.models.config import DEFAULT_MODEL_ID, SessionConfig
from agentdesk.orchestrator.models.enums import SystemPromptMode

DEFAULT_MODEL_ALIASES: dict[str, str] = {
    "sonnet": "claude-sonnet-4-5-20250929",
    "opus": "claude-opus-4-20250514",
    "haiku": "claude-3-5-haiku-20241022",
}


class AgentDeskSettings(BaseSettings):
    """agentdesk settings.

    All fields are read from environment variables with the ``AGENTDESK_``
    prefix.  For example, ``AGENTDESK_LOG_LEVEL=DEBUG`` maps to ``log_level``.

    The service API key (``ANTHROPIC_API_KEY``) is **not** managed here -- the
    agent SDK reads it from the environment directly.
    """

    model_config = SettingsConfigDict(
        env_prefix="AGENTDESK_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # -- Logging ---------------------------------------------------------------
    log_level: str = "INFO"
    log_file: str | None = None
    """Write logs here instead of stderr (useful for the interactive chat)."""

    # -- Data storage ----------------------------------------------------------
    data_root: str = "./data"
    """Root directory for the local conversation store."""

    # -- Model -----------------------------------------------------------------
    model: str = "sonnet"
    """Model alias (see ``model_aliases``) or a full model id."""

    model_aliases: dict[str, str] = Field(default_factory=lambda: dict(DEFAULT_MODEL_ALIASES))
    max_thinking_tokens: int | None = 10000
    include_partial_messages: bool = True

    # -- Tooling ---------------------------------------------------------------
    plugins_path: str | None = None
    additional_directories: list[str] = Field(default_factory=list)
    system_prompt: str | None = None
    system_prompt_mode: SystemPromptMode = SystemPromptMode.APPEND

    # -- Processing ------------------------------------------------------------
    max_processing_attempts: int = Field(default=100, ge=1)
    """Iteration-safety counter: consecutive exchanges without full delivery."""

    interrupt_timeout: float = Field(default=1.0, gt=0)
    """Seconds to wait for the service's own stop request during interrupt."""

    # -- Helpers ---------------------------------------------------------------

    def resolve_model_id(self, model: str | None = None) -> str:
        """Map an alias to a full model id.

        Strings that already look like model ids pass through; unknown aliases
        fall back to the default model.
        """
        name = model or self.model
        if name in self.model_aliases:
            return self.model_aliases[name]
        if name.startswith("claude-"):
            return name
        return DEFAULT_MODEL_ID

    def session_config(self, *, model: str | None = None) -> SessionConfig:
        """Build the initial per-exchange configuration."""
        return SessionConfig(
            model_id=self.resolve_model_id(model),
            max_thinking_tokens=self.max_thinking_tokens,
            additional_directories=list(self.additional_directories),
            plugins_path=self.plugins_path,
            system_prompt=self.system_prompt,
            system_prompt_mode=self.system_prompt_mode,
            include_partial_messages=self.include_partial_messages,
        )


def get_settings() -> AgentDeskSettings:
    """Return a cached settings instance.

    Reads from environment variables and ``.env`` on first call, then returns
    the same object.  Call ``_get_settings_cached.cache_clear()`` in tests to
    force a re-read after overriding env vars.
    """
    return _get_settings_cached()


@lru_cache(maxsize=1)
def _get_settings_cached() -> AgentDeskSettings:
    return AgentDeskSettings()
