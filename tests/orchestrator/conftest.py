"""Shared fixtures for orchestrator tests."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pytest

from agentdesk.orchestrator.context import SessionContext
from agentdesk.orchestrator.models.config import SessionConfig
from agentdesk.orchestrator.models.enums import PermissionMode, SessionEventType
from agentdesk.orchestrator.session import AgentSession
from tests.orchestrator.fakes import FakeAgentService


@pytest.fixture
def service() -> FakeAgentService:
    return FakeAgentService()


@pytest.fixture
def session_events() -> list[tuple[SessionEventType, dict[str, Any]]]:
    return []


@pytest.fixture
def make_session(service: FakeAgentService, session_events: list) -> Callable[..., AgentSession]:
    def _make(
        *,
        external_session_id: str | None = None,
        parent_session_id: str | None = None,
        mode: PermissionMode = PermissionMode.ASK,
        max_processing_attempts: int = 100,
        interrupt_timeout: float = 1.0,
    ) -> AgentSession:
        ctx = SessionContext(
            conversation_id="conv-1",
            working_directory="/tmp/project",
            config=SessionConfig(),
            external_session_id=external_session_id,
            parent_session_id=parent_session_id,
            permission_mode=mode,
        )
        return AgentSession(
            ctx,
            service=service,
            emit=lambda event_type, payload: session_events.append((event_type, payload)),
            max_processing_attempts=max_processing_attempts,
            interrupt_timeout=interrupt_timeout,
        )

    return _make
