"""Human-in-the-loop approval models.

A tool call intercepted by the pre-execution hook becomes either a
``PermissionRequest`` (generic tool) or a ``PlanApprovalRequest`` (the
plan-exit tool).  The human's answer travels back as a ``HookDecision``.
"""

from __future__ import annotations

import json
import time
from typing import Any

from pydantic import BaseModel, Field


def _now_ms() -> int:
    return int(time.time() * 1000)


class ToolUseRequest(BaseModel):
    """What the remote service is about to execute."""

    tool_name: str
    tool_input: dict[str, Any] = Field(default_factory=dict)
    tool_use_id: str | None = None


class PermissionRequest(BaseModel):
    """Payload handed to ``on_permission_request``."""

    id: str
    tool: str
    action: str
    details: str
    timestamp: int = Field(default_factory=_now_ms)

    @classmethod
    def for_tool(cls, request_id: str, request: ToolUseRequest) -> PermissionRequest:
        return cls(
            id=request_id,
            tool=request.tool_name,
            action=request.tool_name,
            details=json.dumps(request.tool_input, indent=2, default=str),
        )


class PlanApprovalRequest(BaseModel):
    """Payload handed to ``on_plan_approval_request``."""

    id: str
    plan: str
    timestamp: int = Field(default_factory=_now_ms)


class HookDecision(BaseModel):
    """Answer returned to the remote service's pre-tool-execution hook.

    ``continue_processing`` is always true: a denial only blocks the single
    tool call, the exchange carries on.
    """

    continue_processing: bool = True
    allow: bool
    reason: str | None = None
    updated_input: dict[str, Any] | None = None

    @classmethod
    def allowed(cls, *, reason: str | None = None, updated_input: dict[str, Any] | None = None) -> HookDecision:
        return cls(allow=True, reason=reason, updated_input=updated_input)

    @classmethod
    def denied(cls, reason: str) -> HookDecision:
        return cls(allow=False, reason=reason)
