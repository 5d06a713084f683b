import click

from agentdesk.orchestrator.models.enums import PermissionMode

_MODES = [m.value for m in PermissionMode]


@click.group()
def main() -> None:
    """agentdesk - multi-conversation client for a streaming coding agent."""


@main.command()
@click.argument("conversation_id", required=False)
@click.option("--cwd", default=None, help="Working directory for a new conversation (default: current directory).")
@click.option("--model", default=None, help="Model alias or full id (default: from AGENTDESK_MODEL).")
@click.option("--mode", type=click.Choice(_MODES), default=None, help="Permission mode to switch to before chatting.")
def chat(conversation_id: str | None, cwd: str | None, model: str | None, mode: str | None) -> None:
    """Chat with the agent.  Starts a new conversation when no id is given.

    Ctrl-C interrupts the running turn; queued input is kept and can be
    resumed with ``/resume``.  Type ``/help`` for commands.
    """
    import asyncio

    from agentdesk.orchestrator.log import setup_logging
    from agentdesk.orchestrator.settings import get_settings

    settings = get_settings()
    setup_logging(settings.log_level, log_file=settings.log_file)

    from agentdesk.repl import ChatRepl

    repl = ChatRepl(settings, model=model)
    asyncio.run(repl.run(conversation_id, cwd=cwd, mode=PermissionMode(mode) if mode else None))


# ---------------------------------------------------------------------------
# Conversation management
# ---------------------------------------------------------------------------


def _store():
    from agentdesk.orchestrator.settings import get_settings
    from agentdesk.orchestrator.store.local import LocalConversationStore

    return LocalConversationStore(get_settings().data_root)


@main.group()
def conversations() -> None:
    """Manage stored conversations."""


@conversations.command("list")
def list_conversations() -> None:
    """List conversations, most recently updated first."""
    import asyncio

    records = asyncio.run(_store().list())
    if not records:
        click.echo("No conversations.")
        return
    for record in records:
        session = record.session_id or "-"
        click.echo(
            f"{record.conversation_id}  {record.updated_at:%Y-%m-%d %H:%M}  {record.mode:<17}  {session:<36}  {record.title}"
        )


@conversations.command("new")
@click.option("--title", default="New Conversation", help="Conversation title.")
@click.option("--cwd", default=None, help="Working directory (default: current directory).")
@click.option("--mode", type=click.Choice(_MODES), default=PermissionMode.ASK.value, help="Initial permission mode.")
def new_conversation(title: str, cwd: str | None, mode: str) -> None:
    """Create a conversation and print its id."""
    import asyncio
    import os

    record = asyncio.run(
        _store().create(title=title, working_directory=cwd or os.getcwd(), mode=PermissionMode(mode)),
    )
    click.echo(record.conversation_id)


@conversations.command("fork")
@click.argument("conversation_id")
def fork_conversation(conversation_id: str) -> None:
    """Branch a conversation from its current agent session."""
    import asyncio

    from agentdesk.orchestrator.errors import ConversationNotFoundError

    try:
        record = asyncio.run(_store().fork(conversation_id))
    except ConversationNotFoundError:
        raise click.ClickException(f"No conversation {conversation_id}") from None
    if record.parent_session_id is None:
        click.echo("Note: parent has no agent session yet; the fork starts fresh.", err=True)
    click.echo(record.conversation_id)


@conversations.command("delete")
@click.argument("conversation_id")
@click.confirmation_option(prompt="Delete this conversation?")
def delete_conversation(conversation_id: str) -> None:
    """Delete a stored conversation."""
    import asyncio

    asyncio.run(_store().delete(conversation_id))
    click.echo(f"Deleted {conversation_id}.")
