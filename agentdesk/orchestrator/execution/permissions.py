"""Permission gate -- bridges the service's pre-tool-execution hook to a
human decision.

The remote service calls the hook right before it runs a tool and suspends
that tool call (not the processing loop) until the hook returns.  The gate:

1. Special-cases the plan-exit tool as a plan approval.  Approval switches
   the session to ``AcceptEdits``; denial blocks only that tool call.
2. Auto-allows everything in ``BypassAll`` mode.
3. Auto-allows when the active message registered no sink for the request
   (fail open, logged).  This is a usability default, not a security control.
4. Otherwise registers a ``PendingApproval`` and waits for
   ``respond_to_permission`` / ``respond_to_plan_approval``.

Every pending approval settles exactly once: either through an explicit
response or through cancellation (``reject_all`` / the exchange token).  The
pending map is guarded by a lock because responses may arrive from a thread
other than the event loop's.
"""

from __future__ import annotations

import asyncio
import threading
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, NamedTuple

from loguru import logger

from agentdesk.orchestrator.context import CancelToken, MessageCallbacks, invoke_sink
from agentdesk.orchestrator.errors import ExchangeCancelled
from agentdesk.orchestrator.models.approvals import (
    HookDecision,
    PermissionRequest,
    PlanApprovalRequest,
    ToolUseRequest,
)
from agentdesk.orchestrator.models.enums import ApprovalKind, PermissionMode

PLAN_EXIT_TOOL = "ExitPlanMode"

DENIED_BY_USER = "User denied permission"
PLAN_REJECTED = "User rejected the plan"


class _Answer(NamedTuple):
    approved: bool
    updated_input: dict[str, Any] | None = None


@dataclass(eq=False)
class PendingApproval:
    """An outstanding request awaiting a human decision."""

    id: str
    kind: ApprovalKind
    future: asyncio.Future[_Answer]
    metadata: dict[str, Any] = field(default_factory=dict)


def _generate_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


class PermissionGate:
    """Per-session registry of pending approvals plus the hook logic."""

    def __init__(
        self,
        conversation_id: str,
        *,
        get_mode: Callable[[], PermissionMode],
        on_plan_approved: Callable[[], Awaitable[None]],
    ) -> None:
        self._conversation_id = conversation_id
        self._get_mode = get_mode
        self._on_plan_approved = on_plan_approved
        self._pending: dict[str, PendingApproval] = {}
        self._lock = threading.Lock()

    # -- Query -----------------------------------------------------------------

    def __len__(self) -> int:
        with self._lock:
            return len(self._pending)

    def __contains__(self, request_id: object) -> bool:
        with self._lock:
            return request_id in self._pending

    def pending_ids(self) -> list[str]:
        with self._lock:
            return list(self._pending)

    # -- Hook ------------------------------------------------------------------

    async def evaluate(
        self,
        request: ToolUseRequest,
        callbacks: MessageCallbacks,
        token: CancelToken,
    ) -> HookDecision:
        """Decide whether the tool call may run.

        Raises ``ExchangeCancelled`` if ``token`` fires while waiting.
        """
        token.raise_if_cancelled()
        logger.debug(
            "PreToolUse [{}]: tool={} id={} mode={}",
            self._conversation_id,
            request.tool_name,
            request.tool_use_id,
            self._get_mode(),
        )

        if request.tool_name == PLAN_EXIT_TOOL:
            return await self._evaluate_plan(request, callbacks, token)

        if self._get_mode() == PermissionMode.BYPASS_ALL:
            return HookDecision.allowed()

        if callbacks.on_permission_request is None:
            logger.warning(
                "No permission sink registered [{}]; auto-allowing {}",
                self._conversation_id,
                request.tool_name,
            )
            return HookDecision.allowed()

        request_id = request.tool_use_id or _generate_id("hook")
        pending = self._register(request_id, ApprovalKind.PERMISSION, {"tool": request.tool_name})
        payload = PermissionRequest.for_tool(request_id, request)
        answer = await self._wait_for_answer(pending, token, callbacks.on_permission_request, payload)

        if answer.approved:
            return HookDecision.allowed(updated_input=answer.updated_input)
        return HookDecision.denied(DENIED_BY_USER)

    async def _evaluate_plan(
        self,
        request: ToolUseRequest,
        callbacks: MessageCallbacks,
        token: CancelToken,
    ) -> HookDecision:
        if callbacks.on_plan_approval_request is None:
            logger.info("No plan approval sink registered [{}]; auto-approving plan", self._conversation_id)
            await self._on_plan_approved()
            return HookDecision.allowed()

        plan = str(request.tool_input.get("plan") or "No plan provided")
        request_id = request.tool_use_id or _generate_id("plan")
        pending = self._register(request_id, ApprovalKind.PLAN, {"plan": plan})
        payload = PlanApprovalRequest(id=request_id, plan=plan)
        answer = await self._wait_for_answer(pending, token, callbacks.on_plan_approval_request, payload)

        if answer.approved:
            await self._on_plan_approved()
            return HookDecision.allowed()
        return HookDecision.denied(PLAN_REJECTED)

    async def _wait_for_answer(
        self,
        pending: PendingApproval,
        token: CancelToken,
        sink: Callable[[Any], Any],
        payload: PermissionRequest | PlanApprovalRequest,
    ) -> _Answer:
        remove_callback = token.add_callback(lambda: self._cancel(pending.id))
        try:
            if not pending.future.done():
                await invoke_sink(sink, payload, name=f"on_{pending.kind}_request")
            return await pending.future
        finally:
            remove_callback()
            with self._lock:
                if self._pending.get(pending.id) is pending:
                    del self._pending[pending.id]

    # -- Responses -------------------------------------------------------------

    def respond_to_permission(
        self,
        request_id: str,
        approved: bool,
        updated_input: dict[str, Any] | None = None,
    ) -> bool:
        """Settle a pending permission request.  Unknown ids are ignored."""
        pending = self._take(request_id, ApprovalKind.PERMISSION)
        if pending is None:
            return False
        logger.info("Permission {} [{}]: {}", "granted" if approved else "denied", self._conversation_id, request_id)
        self._settle(pending, _Answer(approved, updated_input if approved else None))
        return True

    def respond_to_plan_approval(self, request_id: str, approved: bool) -> bool:
        """Settle a pending plan approval.  Unknown ids are ignored."""
        pending = self._take(request_id, ApprovalKind.PLAN)
        if pending is None:
            return False
        logger.info("Plan {} [{}]: {}", "approved" if approved else "rejected", self._conversation_id, request_id)
        self._settle(pending, _Answer(approved))
        return True

    def reject_all(self, reason: str = "interrupted") -> int:
        """Reject every pending approval.  Returns how many were rejected."""
        with self._lock:
            pending, self._pending = list(self._pending.values()), {}
        for entry in pending:
            self._settle(entry, ExchangeCancelled(f"{entry.kind} request {entry.id} {reason}"))
        if pending:
            logger.info("Rejected {} pending approval(s) [{}]: {}", len(pending), self._conversation_id, reason)
        return len(pending)

    # -- Internals -------------------------------------------------------------

    def _register(self, request_id: str, kind: ApprovalKind, metadata: dict[str, Any]) -> PendingApproval:
        future: asyncio.Future[_Answer] = asyncio.get_running_loop().create_future()
        pending = PendingApproval(id=request_id, kind=kind, future=future, metadata=metadata)
        with self._lock:
            if request_id in self._pending:
                logger.warning("Duplicate approval id {} [{}]; replacing", request_id, self._conversation_id)
                self._settle(self._pending[request_id], ExchangeCancelled(f"superseded: {request_id}"))
            self._pending[request_id] = pending
        return pending

    def _take(self, request_id: str, kind: ApprovalKind) -> PendingApproval | None:
        with self._lock:
            pending = self._pending.get(request_id)
            if pending is None or pending.kind != kind:
                logger.warning("No pending {} request for id {} [{}]", kind, request_id, self._conversation_id)
                return None
            del self._pending[request_id]
            return pending

    def _cancel(self, request_id: str) -> None:
        with self._lock:
            pending = self._pending.pop(request_id, None)
        if pending is not None:
            self._settle(pending, ExchangeCancelled(f"{pending.kind} request {request_id} aborted"))

    @staticmethod
    def _settle(pending: PendingApproval, outcome: _Answer | BaseException) -> None:
        """Resolve or reject the future on its own loop."""
        future = pending.future

        def _apply() -> None:
            if future.done():
                return
            if isinstance(outcome, BaseException):
                future.set_exception(outcome)
            else:
                future.set_result(outcome)

        loop = future.get_loop()
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            _apply()
        else:
            loop.call_soon_threadsafe(_apply)
