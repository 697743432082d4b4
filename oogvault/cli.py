"""
CLI interface for the conversation vault.

Usage:
    oogvault save conversation.json
    oogvault search "race condition scheduler"
    oogvault similar "how do I fix a flaky test"
"""

import asyncio
import json
import os
import shutil
import sys
from dataclasses import asdict
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional, TypeVar

import typer
from typing_extensions import Annotated

from .api import Vault
from .config import STORE_PATH_ENV, load_or_create_config, save_config
from .logging_config import configure_quiet_mode, enable_debug_mode
from .store import StoreError
from .types import Conversation, local_date

T = TypeVar("T")

# Configure quiet mode by default (suppress verbose library output)
# Set OOGVAULT_VERBOSE=1 to enable debug mode via environment
if os.environ.get("OOGVAULT_VERBOSE") == "1":
    enable_debug_mode()
else:
    configure_quiet_mode(quiet=True)


def _output_width() -> int:
    """Terminal width for summary truncation. Use generous default when not a TTY."""
    if not sys.stdout.isatty():
        return 200
    return shutil.get_terminal_size((120, 24)).columns


def _version_callback(value: bool):
    if value:
        from importlib.metadata import version
        print(f"oogvault {version('oogvault')}")
        raise typer.Exit()


def _verbose_callback(value: bool):
    if value:
        enable_debug_mode()


# Global state for CLI options
_json_output = False
_store_override: Optional[Path] = None


def _json_callback(value: bool):
    global _json_output
    _json_output = value


def _get_json_output() -> bool:
    return _json_output


def _store_callback(value: Optional[Path]):
    global _store_override
    _store_override = value


def _get_store_override() -> Optional[Path]:
    return _store_override


app = typer.Typer(
    name="oogvault",
    help="Local vault of chat conversations with fuzzy recall.",
    no_args_is_help=True,
    rich_markup_mode=None,
)


@app.callback()
def main_callback(
    verbose: Annotated[bool, typer.Option(
        "--verbose", "-v",
        help="Enable debug-level logging to stderr",
        callback=_verbose_callback,
        is_eager=True,
    )] = False,
    output_json: Annotated[bool, typer.Option(
        "--json", "-j",
        help="Output as JSON",
        callback=_json_callback,
        is_eager=True,
    )] = False,
    version: Annotated[Optional[bool], typer.Option(
        "--version",
        help="Show version and exit",
        callback=_version_callback,
        is_eager=True,
    )] = None,
    store: Annotated[Optional[Path], typer.Option(
        "--store", "-s",
        envvar=STORE_PATH_ENV,
        help="Path to the store directory",
        callback=_store_callback,
        is_eager=True,
    )] = None,
):
    """Local vault of chat conversations with fuzzy recall."""


LimitOption = Annotated[int, typer.Option("--limit", "-n", help="Maximum results", min=1)]
OutputOption = Annotated[Optional[Path], typer.Option(
    "--output", "-o", help="Write to this file instead of stdout",
)]


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------

def _get_vault() -> Vault:
    """Open the vault, handling config errors gracefully."""
    try:
        return Vault(_get_store_override())
    except (OSError, ValueError) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)


def _run(operation: Callable[[Vault], Awaitable[T]], vault: Optional[Vault] = None) -> T:
    """Run one async operation against an opened vault, then close it."""
    if vault is None:
        vault = _get_vault()

    async def runner() -> T:
        try:
            async with vault:
                return await operation(vault)
        except StoreError as e:
            typer.echo(f"Error: {e}", err=True)
            raise typer.Exit(1)

    return asyncio.run(runner())


def _echo_json(data: Any) -> None:
    typer.echo(json.dumps(data, indent=2, ensure_ascii=False))


def _one_line(text: str, width: int) -> str:
    text = " ".join(text.split())
    if len(text) > width:
        return text[:max(0, width - 3)] + "..."
    return text


def _format_conversation_line(conv: Conversation, id_width: int = 0) -> str:
    date = local_date(conv.updated_at)
    prefix = f"{conv.id.ljust(id_width)}  {date}  {conv.platform or '-'}  "
    return prefix + _one_line(conv.title, _output_width() - len(prefix))


def _write_output(text: str, output: Optional[Path]) -> None:
    if output is None:
        typer.echo(text)
    else:
        output.write_text(text, encoding="utf-8")
        typer.echo(f"Wrote {output}", err=True)


def _read_payloads(source: str) -> list[dict]:
    """Read one payload object or a list of them from a file or stdin ('-')."""
    try:
        if source == "-":
            raw = sys.stdin.read()
        else:
            raw = Path(source).expanduser().read_text(encoding="utf-8")
    except OSError as e:
        typer.echo(f"Error: cannot read {source}: {e}", err=True)
        raise typer.Exit(1)

    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        typer.echo(f"Error: {source} is not valid JSON: {e}", err=True)
        raise typer.Exit(1)

    if isinstance(data, dict):
        return [data]
    if isinstance(data, list) and all(isinstance(d, dict) for d in data):
        return data
    typer.echo("Error: expected a conversation object or a list of them", err=True)
    raise typer.Exit(1)


# -----------------------------------------------------------------------------
# Conversations
# -----------------------------------------------------------------------------

@app.command()
def save(
    source: Annotated[str, typer.Argument(
        help="JSON file with a conversation (or list of conversations), '-' for stdin",
    )],
):
    """
    Save conversations from a JSON payload.

    \b
    Payload: {"id", "platform", "title", "url",
              "messages": [{"role": "user"|"assistant", "content", "timestamp"}]}
    """
    payloads = _read_payloads(source)

    async def operation(vault: Vault) -> list[Conversation]:
        saved = []
        for payload in payloads:
            try:
                saved.append(await vault.ingest(payload))
            except ValueError as e:
                typer.echo(f"Error: {e}", err=True)
                raise typer.Exit(1)
        return saved

    saved = _run(operation)
    if _get_json_output():
        _echo_json([c.to_dict() for c in saved])
    else:
        for conv in saved:
            typer.echo(f"Saved: {conv.id} ({len(conv.messages)} messages)")


@app.command()
def get(
    id: Annotated[str, typer.Argument(help="Conversation ID")],
):
    """Show a conversation with its messages and tags."""
    async def operation(vault: Vault):
        conv = await vault.get_conversation(id)
        tags = await vault.get_tags(id) if conv is not None else []
        return conv, tags

    conv, tags = _run(operation)
    if conv is None:
        typer.echo(f"Not found: {id}", err=True)
        raise typer.Exit(1)

    if _get_json_output():
        _echo_json({**conv.to_dict(), "tags": tags})
        return

    typer.echo(f"{conv.title}")
    typer.echo(f"id: {conv.id}")
    typer.echo(f"platform: {conv.platform}")
    if conv.url:
        typer.echo(f"url: {conv.url}")
    typer.echo(f"updated: {conv.updated_at}")
    if tags:
        typer.echo(f"tags: {', '.join(tags)}")
    for msg in conv.messages:
        typer.echo("")
        typer.echo(f"[{msg.role}] {msg.content}")


@app.command("list")
def list_conversations(
    limit: LimitOption = 50,
):
    """List conversations, most recently updated first."""
    conversations = _run(lambda vault: vault.list_conversations())[:limit]

    if _get_json_output():
        _echo_json([c.to_dict() for c in conversations])
        return
    if not conversations:
        typer.echo("No conversations.")
        return
    id_width = min(40, max(len(c.id) for c in conversations))
    for conv in conversations:
        typer.echo(_format_conversation_line(conv, id_width))


@app.command()
def delete(
    id: Annotated[list[str], typer.Argument(help="Conversation ID(s) to delete")],
):
    """Delete conversations with their messages, tags and nuggets."""
    async def operation(vault: Vault) -> dict[str, bool]:
        return {one_id: await vault.delete_conversation(one_id) for one_id in id}

    results = _run(operation)
    had_errors = False
    for one_id, deleted in results.items():
        if deleted:
            typer.echo(f"Deleted: {one_id}")
        else:
            typer.echo(f"Not found: {one_id}", err=True)
            had_errors = True
    if had_errors:
        raise typer.Exit(1)


@app.command()
def clear(
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Do not ask for confirmation")] = False,
):
    """Delete ALL saved conversations. This cannot be undone."""
    if not yes:
        typer.confirm("Delete all saved conversations?", abort=True)
    count = _run(lambda vault: vault.clear())
    typer.echo(f"Deleted {count} conversations")


# -----------------------------------------------------------------------------
# Search
# -----------------------------------------------------------------------------

@app.command()
def search(
    query: Annotated[str, typer.Argument(help="Search query text")],
    limit: LimitOption = 20,
):
    """Search conversation titles and messages."""
    results = _run(lambda vault: vault.search(query, limit))

    if _get_json_output():
        _echo_json([r.to_dict() for r in results])
        return
    if not results:
        typer.echo("No results.")
        return
    width = _output_width()
    for r in results:
        typer.echo(f"[{r.score:.2f}] {_format_conversation_line(r.conversation)}")
        typer.echo(f"       {_one_line(r.matched_content, width - 7)}")


@app.command()
def similar(
    query: Annotated[str, typer.Argument(help="Question being typed")],
    limit: LimitOption = 5,
):
    """Find previously asked questions similar to this one."""
    vault = _get_vault()
    if not vault.config.settings.autocomplete_enabled:
        typer.echo("Autocomplete is disabled (settings.autocomplete_enabled = false)", err=True)
        asyncio.run(vault.close())
        return

    results = _run(lambda v: v.search_similar(query, limit), vault)

    if _get_json_output():
        _echo_json([r.to_dict() for r in results])
        return
    if not results:
        typer.echo("No similar questions.")
        return
    width = _output_width()
    for r in results:
        typer.echo(f"[{r.score:.2f}] {_one_line(r.question, width - 7)}")
        if r.answer:
            typer.echo(f"       -> {_one_line(r.answer, width - 10)}")
        typer.echo(f"       ({r.source}: {r.conversation_title or r.conversation_id})")


# -----------------------------------------------------------------------------
# Tags
# -----------------------------------------------------------------------------

@app.command()
def tag(
    id: Annotated[str, typer.Argument(help="Conversation ID")],
    add: Annotated[Optional[list[str]], typer.Option(
        "--add", "-a", help="Tag to add (repeatable)",
    )] = None,
    remove: Annotated[Optional[list[str]], typer.Option(
        "--remove", "-r", help="Tag to remove (repeatable)",
    )] = None,
):
    """Show, add or remove tags on a conversation."""
    async def operation(vault: Vault):
        if await vault.get_conversation(id) is None:
            return None
        for t in add or []:
            await vault.add_tag(id, t)
        for t in remove or []:
            await vault.remove_tag(id, t)
        return await vault.get_tags(id)

    try:
        tags = _run(operation)
    except ValueError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)

    if tags is None:
        typer.echo(f"Not found: {id}", err=True)
        raise typer.Exit(1)
    if _get_json_output():
        _echo_json(tags)
    elif tags:
        typer.echo("\n".join(tags))
    else:
        typer.echo("No tags.")


# -----------------------------------------------------------------------------
# Nuggets
# -----------------------------------------------------------------------------

@app.command()
def nuggets(
    query: Annotated[Optional[str], typer.Argument(help="Filter nuggets by query")] = None,
    limit: LimitOption = 10,
):
    """List knowledge nuggets, or search them."""
    if query:
        items = _run(lambda vault: vault.search_nuggets(query, limit))
    else:
        items = _run(lambda vault: vault.list_nuggets())[:limit]

    if _get_json_output():
        _echo_json([n.to_dict() for n in items])
        return
    if not items:
        typer.echo("No nuggets.")
        return
    width = _output_width()
    for n in items:
        score = f"[{n.score:.2f}] " if n.score is not None else ""
        typer.echo(f"{score}Q: {_one_line(n.question, width - 3 - len(score))}")
        typer.echo(f"{' ' * len(score)}A: {_one_line(n.answer, width - 3 - len(score))}")


# -----------------------------------------------------------------------------
# Export
# -----------------------------------------------------------------------------

@app.command()
def export(
    id: Annotated[str, typer.Argument(help="Conversation ID")],
    output: OutputOption = None,
):
    """Export a conversation as Markdown."""
    markdown = _run(lambda vault: vault.export_markdown(id))
    if markdown is None:
        typer.echo(f"Not found: {id}", err=True)
        raise typer.Exit(1)
    _write_output(markdown, output)


@app.command("export-knowledge")
def export_knowledge(
    output: OutputOption = None,
):
    """Export all knowledge nuggets as a Markdown knowledge base."""
    markdown = _run(lambda vault: vault.export_knowledge())
    if markdown is None:
        typer.echo("No nuggets to export.", err=True)
        raise typer.Exit(1)
    _write_output(markdown, output)


@app.command("export-all")
def export_all(
    output: OutputOption = None,
):
    """Export every conversation with messages and tags as JSON."""
    _write_output(_run(lambda vault: vault.export_json()), output)


@app.command()
def summary(
    id: Annotated[str, typer.Argument(help="Conversation ID")],
):
    """Print a prompt for continuing a conversation elsewhere."""
    prompt = _run(lambda vault: vault.continuation_prompt(id))
    if prompt is None:
        typer.echo(f"Not found: {id}", err=True)
        raise typer.Exit(1)
    typer.echo(prompt)


# -----------------------------------------------------------------------------
# Store
# -----------------------------------------------------------------------------

@app.command()
def stats():
    """Count conversations, messages and nuggets."""
    s = _run(lambda vault: vault.stats())
    if _get_json_output():
        _echo_json({"conversations": s.conversations, "messages": s.messages, "nuggets": s.nuggets})
    else:
        typer.echo(f"{s.conversations} conversations · {s.messages} messages · {s.nuggets} nuggets")


def _parse_setting(raw: str, current: Any) -> Any:
    if isinstance(current, bool):
        if raw.lower() in ("true", "1", "yes", "on"):
            return True
        if raw.lower() in ("false", "0", "no", "off"):
            return False
        raise typer.BadParameter(f"expected true or false, got {raw!r}")
    if isinstance(current, int):
        try:
            return int(raw)
        except ValueError:
            raise typer.BadParameter(f"expected an integer, got {raw!r}")
    return raw


@app.command()
def config(
    set_values: Annotated[Optional[list[str]], typer.Option(
        "--set", help="Change a setting, e.g. --set autocomplete_enabled=false (repeatable)",
    )] = None,
):
    """
    Show configuration, or change settings.

    \b
    Examples:
        oogvault config
        oogvault config --set autocomplete_enabled=false
    """
    try:
        cfg = load_or_create_config(_get_store_override())
    except (OSError, ValueError) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)

    for item in set_values or []:
        key, sep, raw = item.partition("=")
        key = key.strip()
        if not sep or not hasattr(cfg.settings, key):
            typer.echo(f"Error: unknown setting {key!r}", err=True)
            raise typer.Exit(1)
        try:
            setattr(cfg.settings, key, _parse_setting(raw.strip(), getattr(cfg.settings, key)))
        except typer.BadParameter as e:
            typer.echo(f"Error: {key}: {e}", err=True)
            raise typer.Exit(1)
    if set_values:
        save_config(cfg)

    if _get_json_output():
        _echo_json({
            "file": str(cfg.config_path),
            "store": str(cfg.path),
            "settings": asdict(cfg.settings),
            "search": asdict(cfg.search),
        })
        return
    typer.echo(f"file: {cfg.config_path}")
    typer.echo(f"store: {cfg.path}")
    for section, values in (("settings", asdict(cfg.settings)), ("search", asdict(cfg.search))):
        typer.echo(f"{section}:")
        for key, value in values.items():
            typer.echo(f"  {key}: {json.dumps(value)}")


@app.command()
def mcp():
    """Start MCP stdio server for AI agent integration."""
    if _get_store_override() is not None:
        os.environ[STORE_PATH_ENV] = str(_get_store_override())
    from .mcp import main as mcp_main
    mcp_main()


# -----------------------------------------------------------------------------

def main():
    try:
        app()
    except SystemExit:
        raise  # Let typer handle exit codes
    except KeyboardInterrupt:
        raise SystemExit(130)  # Standard exit code for Ctrl+C
    except Exception as e:
        # Log full traceback to file, show clean message to user
        from .errors import log_exception
        log_path = log_exception(e, context="oogvault CLI")
        typer.echo(f"Error: {e}", err=True)
        typer.echo(f"Details logged to {log_path}", err=True)
        raise SystemExit(1)


if __name__ == "__main__":
    main()
