"""Interactive terminal chat on top of ``SessionPool``.

Streamed text is printed as it arrives; permission and plan approvals are
asked as y/n questions.  SIGINT interrupts the running turn instead of
killing the process.
"""

from __future__ import annotations

import asyncio
import os
import signal
from functools import partial
from typing import Any

import click
from anyio import to_thread
from loguru import logger

from agentdesk.orchestrator.context import MessageCallbacks
from agentdesk.orchestrator.errors import ExternalServiceError
from agentdesk.orchestrator.models.approvals import PermissionRequest, PlanApprovalRequest
from agentdesk.orchestrator.models.enums import DeliveryStatus, PermissionMode, SessionEventType
from agentdesk.orchestrator.models.events import SessionEvent
from agentdesk.orchestrator.pool import SessionPool
from agentdesk.orchestrator.service.claude import ClaudeAgentService
from agentdesk.orchestrator.settings import AgentDeskSettings
from agentdesk.orchestrator.store.local import LocalConversationStore

_HELP = """\
Commands:
  /mode <default|acceptEdits|bypassPermissions|plan>   change permission mode
  /attach <path>    attach a file to the next message
  /resume           send messages kept by an interrupt
  /clear            drop messages kept by an interrupt
  /quit             leave (Ctrl-D works too)
"""


class _TurnPrinter:
    """Prints one turn's output.

    Streaming tokens carry the full text so far, so only the unseen tail is
    written.  Reconciliation tokens that do not extend what was shown are
    written as-is.
    """

    def __init__(self) -> None:
        self._shown = ""

    def on_token(self, text: str) -> None:
        if text.startswith(self._shown):
            click.echo(text[len(self._shown) :], nl=False)
            self._shown = text
        else:
            click.echo(text, nl=False)
            self._shown += text

    def on_thinking(self, text: str) -> None:
        click.secho(f"\n[thinking] {text}\n", dim=True)

    def on_tool_use(self, name: str, tool_input: dict[str, Any]) -> None:
        click.secho(f"\n[tool] {name}", fg="cyan")

    def on_tool_result(self, name: str, result: Any) -> None:
        click.secho(f"[tool done] {name}", fg="cyan", dim=True)

    def on_interrupted(self) -> None:
        click.secho("\n[interrupted]", fg="yellow")

    def on_result(self) -> None:
        click.echo()
        self._shown = ""


class ChatRepl:
    def __init__(self, settings: AgentDeskSettings, *, model: str | None = None) -> None:
        self._settings = settings
        self._store = LocalConversationStore(settings.data_root)
        self._pool = SessionPool(
            ClaudeAgentService(),
            self._store,
            settings=settings,
            config=settings.session_config(model=model),
        )
        self._conversation_id = ""
        self._attachments: list[str] = []
        self._prompts: set[asyncio.Task[None]] = set()

    # -- Approvals -------------------------------------------------------------

    def _spawn(self, coro: Any) -> None:
        # Approval sinks return immediately so an interrupt is never blocked
        # on a pending terminal question.
        task = asyncio.create_task(coro)
        self._prompts.add(task)
        task.add_done_callback(self._prompts.discard)

    async def _ask_permission(self, request: PermissionRequest) -> None:
        question = f"\nAllow {request.tool}?\n{request.details}\n"
        approved = await to_thread.run_sync(partial(click.confirm, question, default=False))
        if not self._pool.respond_to_permission(self._conversation_id, request.id, approved):
            click.secho("(request no longer pending)", dim=True)

    async def _ask_plan(self, request: PlanApprovalRequest) -> None:
        question = f"\nProposed plan:\n{request.plan}\n\nApprove and start editing?"
        approved = await to_thread.run_sync(partial(click.confirm, question, default=False))
        if not self._pool.respond_to_plan_approval(self._conversation_id, request.id, approved):
            click.secho("(request no longer pending)", dim=True)

    def _callbacks(self) -> MessageCallbacks:
        printer = _TurnPrinter()
        return MessageCallbacks(
            on_token=printer.on_token,
            on_thinking=printer.on_thinking,
            on_tool_use=printer.on_tool_use,
            on_tool_result=printer.on_tool_result,
            on_permission_request=lambda req: self._spawn(self._ask_permission(req)),
            on_plan_approval_request=lambda req: self._spawn(self._ask_plan(req)),
            on_interrupted=printer.on_interrupted,
            on_result=printer.on_result,
        )

    def _on_session_event(self, event: SessionEvent) -> None:
        if event.event_type == SessionEventType.MODE_CHANGED:
            click.secho(f"\n[mode] {event.payload.get('mode')}", fg="magenta")
        elif event.event_type == SessionEventType.PROCESSING_COMPLETE and event.payload.get("remaining_messages"):
            click.secho(f"[{event.payload['remaining_messages']} message(s) kept; /resume to send]", fg="yellow")

    # -- Main loop -------------------------------------------------------------

    async def run(
        self,
        conversation_id: str | None,
        *,
        cwd: str | None = None,
        mode: PermissionMode | None = None,
    ) -> None:
        if conversation_id is None:
            record = await self._store.create(working_directory=cwd or os.getcwd())
            click.echo(f"New conversation {record.conversation_id}")
            conversation_id = record.conversation_id
        self._conversation_id = conversation_id

        session = await self._pool.get_or_create(conversation_id)
        if mode is not None:
            await self._pool.set_permission_mode(conversation_id, mode)
        click.echo(f"Mode: {session.permission_mode}.  /help for commands, Ctrl-C interrupts.")

        unsubscribe = self._pool.subscribe(self._on_session_event)
        loop = asyncio.get_running_loop()
        try:
            loop.add_signal_handler(signal.SIGINT, self._on_sigint)
        except NotImplementedError:
            logger.debug("Signal handlers unsupported; Ctrl-C will terminate")
        try:
            await self._read_eval_loop()
        finally:
            try:
                loop.remove_signal_handler(signal.SIGINT)
            except NotImplementedError:
                pass
            unsubscribe()
            await self._pool.shutdown()

    def _on_sigint(self) -> None:
        asyncio.ensure_future(self._pool.interrupt(self._conversation_id))

    async def _read_eval_loop(self) -> None:
        while True:
            try:
                line = await to_thread.run_sync(partial(click.prompt, "you", default="", show_default=False))
            except click.Abort:
                click.echo()
                return
            line = line.strip()
            if not line:
                continue
            if line.startswith("/"):
                if not await self._command(line):
                    return
                continue
            await self._send(line)

    async def _send(self, text: str) -> None:
        attachments, self._attachments = self._attachments, []
        try:
            status = await self._pool.send(self._conversation_id, text, attachments, self._callbacks())
        except ExternalServiceError as exc:
            click.secho(f"\nError: {exc}", fg="red", err=True)
            return
        if status == DeliveryStatus.HALTED:
            click.secho("\nProcessing halted by the safety limit; /resume to retry.", fg="red")

    async def _command(self, line: str) -> bool:
        name, _, arg = line.partition(" ")
        arg = arg.strip()
        session = await self._pool.get_or_create(self._conversation_id)
        match name:
            case "/quit" | "/exit":
                return False
            case "/help":
                click.echo(_HELP)
            case "/mode":
                try:
                    await self._pool.set_permission_mode(self._conversation_id, PermissionMode(arg))
                except ValueError:
                    click.echo(f"Unknown mode {arg!r}")
            case "/attach":
                if not os.path.exists(arg):
                    click.echo(f"No such file: {arg}")
                else:
                    self._attachments.append(os.path.abspath(arg))
                    click.echo(f"Attached {arg} ({len(self._attachments)} pending)")
            case "/resume":
                if not await session.resume_processing():
                    click.echo("Nothing to resume.")
            case "/clear":
                click.echo(f"Dropped {session.clear_queue()} message(s).")
            case _:
                click.echo(f"Unknown command {name}; /help lists commands.")
        return True
