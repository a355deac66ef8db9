"""DreamQuill command-line client.

Talks to the networked backend by default, or to the desktop backend over
IPC when ``--mode ipc`` is given (or the environment advertises it).

Usage:
    dreamquill chat "Hello"                   # Stream a reply into a new chat
    dreamquill chat "More" --chat-id 3        # Continue chat 3
    dreamquill --mode ipc chat "Hello"        # Use the desktop backend

    dreamquill chats list                     # List chats
    dreamquill chats show <id>                # Show chat messages
    dreamquill chats rename <id> <title>      # Rename a chat
    dreamquill chats branch <id> --until 12   # Branch a chat
    dreamquill chats delete <id>              # Delete a chat

    dreamquill providers list                 # List providers
    dreamquill providers add --name ...       # Add a provider
    dreamquill providers select <id>          # Set the default provider
    dreamquill providers delete <id>          # Delete a provider

    dreamquill models                         # List models of the default provider
    dreamquill health --provider-id 2         # Probe a provider
"""

from __future__ import annotations

import asyncio
import json
import logging
import shlex
import sys
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

import click
from pydantic import BaseModel

from .client import DreamQuillClient, create_client
from .config import ClientConfig, RuntimeMode
from .errors import DreamQuillError
from .events import ChunkEvent, ErrorEvent, LogEvent, MetaEvent
from .types import ProviderConfig, ProviderState

# Output format options
FORMAT_TABLE = "table"
FORMAT_JSON = "json"


@dataclass
class CLIState:
    """Options shared by every command."""

    config: ClientConfig
    output_format: str = FORMAT_TABLE

    @property
    def json_output(self) -> bool:
        return self.output_format == FORMAT_JSON


def truncate(text: str | None, max_len: int = 50) -> str:
    """Truncate text for display."""
    if not text:
        return ""
    if len(text) <= max_len:
        return text
    return text[: max_len - 3] + "..."


def _to_jsonable(data: Any) -> Any:
    if isinstance(data, BaseModel):
        return data.model_dump(mode="json")
    if isinstance(data, list):
        return [_to_jsonable(item) for item in data]
    return data


def _echo_json(data: Any) -> None:
    click.echo(json.dumps(_to_jsonable(data), indent=2, ensure_ascii=False, default=str))


def _configure_logging(verbose: bool) -> None:
    # Logs go to stderr so stdout only carries command output
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s: %(name)s: %(message)s",
        stream=sys.stderr,
    )


def _run(state: CLIState, action: Callable[[DreamQuillClient], Awaitable[int | None]]) -> None:
    """Run ``action`` with a client and exit with its status code."""

    async def runner() -> int | None:
        async with create_client(state.config) as client:
            return await action(client)

    try:
        code = asyncio.run(runner())
    except DreamQuillError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    except KeyboardInterrupt:
        click.echo("\nInterrupted", err=True)
        sys.exit(130)

    if code:
        sys.exit(code)


@click.group()
@click.option(
    "--mode",
    type=click.Choice([m.value for m in RuntimeMode]),
    default=None,
    help="Backend to use (default: DREAMQUILL_MODE or auto)",
)
@click.option("--base-url", default=None, help="Server URL of the networked backend")
@click.option("--ipc-command", default=None, help="Command line of the desktop backend")
@click.option("--timeout", type=float, default=None, help="Request timeout in seconds")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.option(
    "--format",
    "-f",
    "output_format",
    type=click.Choice([FORMAT_TABLE, FORMAT_JSON]),
    default=FORMAT_TABLE,
    help="Output format",
)
@click.pass_context
def main(
    ctx: click.Context,
    mode: str | None,
    base_url: str | None,
    ipc_command: str | None,
    timeout: float | None,
    verbose: bool,
    output_format: str,
) -> None:
    """DreamQuill - chat with your configured model providers."""
    _configure_logging(verbose)

    try:
        config = ClientConfig.from_env()
        if mode:
            config.mode = RuntimeMode(mode)
        if base_url:
            config.base_url = base_url
        if ipc_command:
            config.ipc_command = shlex.split(ipc_command)
        if timeout is not None:
            if timeout <= 0:
                raise ValueError(f"timeout must be positive, got {timeout}")
            config.timeout = timeout
    except ValueError as e:
        raise click.UsageError(str(e)) from e

    ctx.obj = CLIState(config=config, output_format=output_format)


# =============================================================================
# Chat
# =============================================================================


@main.command()
@click.argument("prompt")
@click.option("--chat-id", type=int, default=None, help="Continue an existing chat")
@click.option("--provider-id", type=int, default=None, help="Provider to answer with")
@click.option("--regen-message-id", type=int, default=None, help="Regenerate an assistant message")
@click.option("--no-stream", is_flag=True, help="Ask for the whole reply at once")
@click.option("--debug", is_flag=True, help="Ask the backend for verbose logs")
@click.pass_obj
def chat(
    state: CLIState,
    prompt: str,
    chat_id: int | None,
    provider_id: int | None,
    regen_message_id: int | None,
    no_stream: bool,
    debug: bool,
) -> None:
    """Send PROMPT and print the reply as it streams.

    Examples:

        dreamquill chat "Summarise this thread" --chat-id 3

        dreamquill --format json chat "Hello"
    """

    async def action(client: DreamQuillClient) -> int:
        handle = client.chat.send(
            prompt,
            chat_id=chat_id,
            provider_id=provider_id,
            regen_message_id=regen_message_id,
            stream=not no_stream,
            debug=debug,
        )

        if state.json_output:
            reply = await client.chat.collect(handle)
            _echo_json(reply)
            return 0

        code = 0
        async for event in handle:
            if isinstance(event, ChunkEvent):
                click.echo(event.text, nl=False)
            elif isinstance(event, MetaEvent):
                click.echo(f"[chat {event.chat_id}]", err=True)
            elif isinstance(event, LogEvent):
                click.echo(f"[{event.level}] {event.message}", err=True)
            elif isinstance(event, ErrorEvent):
                click.echo(f"\nError: {event.message}", err=True)
                handle.cancel()
                code = 1
        click.echo()
        return code

    _run(state, action)


# =============================================================================
# Chats
# =============================================================================


@main.group()
def chats() -> None:
    """Manage stored chats."""


def _print_chats(state: CLIState, items: list[Any]) -> None:
    if state.json_output:
        _echo_json(items)
        return
    if not items:
        click.echo("No chats found.")
        return

    click.echo(f"{'ID':>6}  {'Title':<50} {'Provider':>8}")
    click.echo("-" * 66)
    for item in items:
        provider = str(item.provider_id) if item.provider_id is not None else "-"
        click.echo(f"{item.id:>6}  {truncate(item.title):<50} {provider:>8}")
    click.echo(f"\nTotal: {len(items)} chat(s)")


@chats.command("list")
@click.pass_obj
def chats_list(state: CLIState) -> None:
    """List chats."""

    async def action(client: DreamQuillClient) -> None:
        _print_chats(state, await client.chat.list_chats())

    _run(state, action)


@chats.command("show")
@click.argument("chat_id", type=int)
@click.pass_obj
def chats_show(state: CLIState, chat_id: int) -> None:
    """Show the messages of a chat."""

    async def action(client: DreamQuillClient) -> None:
        payload = await client.chat.get_messages(chat_id)
        if state.json_output:
            _echo_json(payload)
            return

        provider = payload.provider_id if payload.provider_id is not None else "default"
        click.echo(f"Chat {payload.chat_id} (provider: {provider})")
        for message in payload.messages:
            click.echo(f"\n[{message.id}] {message.role}:")
            click.echo(message.content)

    _run(state, action)


@chats.command("delete")
@click.argument("chat_id", type=int)
@click.pass_obj
def chats_delete(state: CLIState, chat_id: int) -> None:
    """Delete a chat."""

    async def action(client: DreamQuillClient) -> None:
        remaining = await client.chat.delete_chat(chat_id)
        if state.json_output:
            _echo_json(remaining)
            return
        click.echo(f"Deleted chat {chat_id} ({len(remaining)} remaining)")

    _run(state, action)


@chats.command("rename")
@click.argument("chat_id", type=int)
@click.argument("title")
@click.pass_obj
def chats_rename(state: CLIState, chat_id: int, title: str) -> None:
    """Rename a chat."""

    async def action(client: DreamQuillClient) -> None:
        summary = await client.chat.rename_chat(chat_id, title)
        if state.json_output:
            _echo_json(summary)
            return
        click.echo(f"Renamed chat {summary.id}: {summary.title}")

    _run(state, action)


@chats.command("branch")
@click.argument("chat_id", type=int)
@click.option("--until", "until_message_id", type=int, default=None, help="Last message to copy")
@click.option("--title", default=None, help="Title of the new chat")
@click.pass_obj
def chats_branch(
    state: CLIState, chat_id: int, until_message_id: int | None, title: str | None
) -> None:
    """Copy a chat into a new one."""

    async def action(client: DreamQuillClient) -> None:
        result = await client.chat.branch_chat(
            chat_id, until_message_id=until_message_id, title=title
        )
        if state.json_output:
            _echo_json(result)
            return
        click.echo(f"Created chat {result.chat_id}: {result.title}")

    _run(state, action)


# =============================================================================
# Providers
# =============================================================================


@main.group()
def providers() -> None:
    """Manage model providers."""


def _print_providers(state: CLIState, provider_state: ProviderState) -> None:
    if state.json_output:
        _echo_json(provider_state)
        return
    if not provider_state.providers:
        click.echo("No providers configured.")
        return

    click.echo(f"  {'ID':>4}  {'Name':<20} {'Provider':<12} {'Model':<30}")
    click.echo("-" * 72)
    for record in provider_state.providers:
        marker = "*" if record.id == provider_state.default_provider_id else " "
        click.echo(
            f"{marker} {record.id:>4}  {truncate(record.name, 20):<20} "
            f"{truncate(record.provider, 12):<12} {truncate(record.model, 30):<30}"
        )
    telemetry = "on" if provider_state.telemetry_enabled else "off"
    click.echo(f"\nTotal: {len(provider_state.providers)} provider(s), telemetry {telemetry}")


@providers.command("list")
@click.pass_obj
def providers_list(state: CLIState) -> None:
    """List providers (* marks the default)."""

    async def action(client: DreamQuillClient) -> None:
        _print_providers(state, await client.providers.fetch_state())

    _run(state, action)


@providers.command("select")
@click.argument("provider_id", type=int)
@click.pass_obj
def providers_select(state: CLIState, provider_id: int) -> None:
    """Make a provider the default."""

    async def action(client: DreamQuillClient) -> None:
        _print_providers(state, await client.providers.select_default(provider_id))

    _run(state, action)


@providers.command("delete")
@click.argument("provider_id", type=int)
@click.pass_obj
def providers_delete(state: CLIState, provider_id: int) -> None:
    """Delete a provider."""

    async def action(client: DreamQuillClient) -> None:
        _print_providers(state, await client.providers.remove(provider_id))

    _run(state, action)


@providers.command("add")
@click.option("--name", required=True, help="Display name")
@click.option("--provider", "provider_kind", default="openai", help="Provider type")
@click.option("--api-base", default="", help="API base URL")
@click.option("--api-key", default="", help="API key")
@click.option("--model", default="", help="Default model")
@click.option("--default", "set_default", is_flag=True, help="Make it the default provider")
@click.pass_obj
def providers_add(
    state: CLIState,
    name: str,
    provider_kind: str,
    api_base: str,
    api_key: str,
    model: str,
    set_default: bool,
) -> None:
    """Add a provider."""
    config = ProviderConfig(
        name=name, provider=provider_kind, api_base=api_base, api_key=api_key, model=model
    )

    async def action(client: DreamQuillClient) -> None:
        _print_providers(state, await client.providers.create(config, set_default=set_default))

    _run(state, action)


# =============================================================================
# Models and health
# =============================================================================


@main.command()
@click.option("--provider-id", type=int, default=None, help="Provider (default if omitted)")
@click.pass_obj
def models(state: CLIState, provider_id: int | None) -> None:
    """List the models a provider offers."""

    async def action(client: DreamQuillClient) -> None:
        names = await client.providers.list_models(provider_id)
        if state.json_output:
            _echo_json(names)
            return
        if not names:
            click.echo("No models found.")
            return
        for name in names:
            click.echo(name)

    _run(state, action)


@main.command()
@click.option("--provider-id", type=int, default=None, help="Provider (default if omitted)")
@click.pass_obj
def health(state: CLIState, provider_id: int | None) -> None:
    """Check that a provider answers."""

    async def action(client: DreamQuillClient) -> int:
        status = await client.providers.health_check(provider_id)
        if state.json_output:
            _echo_json(status)
        elif status.ok:
            details = ", ".join(
                f"{label}: {value}"
                for label, value in (
                    ("provider", status.provider),
                    ("base", status.base),
                    ("model", status.model),
                    ("models", status.models),
                )
                if value is not None
            )
            click.echo(f"Provider {status.provider_id} is healthy ({details})")
        else:
            click.echo(f"Provider {status.provider_id} failed: {status.error or 'unknown error'}")
        return 0 if status.ok else 1

    _run(state, action)


if __name__ == "__main__":
    main()
