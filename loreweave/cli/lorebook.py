"""CLI commands for lorebook management and scanning."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

app = typer.Typer(help="Import lorebooks, attach them to chats and scan context for world info")
console = Console()


@app.callback()
def main():
    """Configure logging from the environment."""
    from loreweave.config import Settings
    from loreweave.logging_setup import setup_logging

    settings = Settings.from_env()
    setup_logging(settings.log_level, settings.log_file)


def _store():
    from loreweave.config import Settings
    from loreweave.lorebook.storage import LorebookStore

    return LorebookStore(Settings.from_env().home)


def _find_book(store, name: str):
    book = store.get_lorebook_by_name(name)
    if not book:
        console.print(f"[red]Lorebook not found: {name}[/red]")
        raise typer.Exit(1)
    return book


# ============================================================================
# Lorebook Commands
# ============================================================================

book_app = typer.Typer(help="Manage lorebooks")
app.add_typer(book_app, name="book")


@book_app.command("import")
def book_import(
    file: str = typer.Argument(..., help="Path to lorebook JSON file"),
    name: str = typer.Option(None, "--name", "-n", help="Lorebook name (default: filename)"),
):
    """Import a SillyTavern, NovelAI, Agnai or Risu lorebook."""
    from loreweave.lorebook.errors import NameConflictError
    from loreweave.lorebook.importer import import_lorebook

    path = Path(file)
    if not path.exists():
        console.print(f"[red]File not found: {file}[/red]")
        raise typer.Exit(1)

    try:
        result = import_lorebook(
            _store(), path.read_bytes(), path.name,
            custom_name=name, source_path=str(path.resolve()),
        )
    except NameConflictError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    if not result.ok:
        console.print(f"[red]Import failed: {result.error}[/red]")
        raise typer.Exit(1)

    console.print(
        f"[green]✓[/green] Imported lorebook: {result.name} "
        f"({result.format.value}, {result.entry_count} entries)"
    )
    if result.validation:
        for warning in result.validation.warnings:
            console.print(f"  [yellow]warning:[/yellow] {warning}")


@book_app.command("list")
def book_list(
    show_all: bool = typer.Option(False, "--all", "-a", help="Include deactivated lorebooks"),
):
    """List imported lorebooks."""
    books = _store().list_lorebooks(include_inactive=show_all)
    if not books:
        console.print("[dim]No lorebooks imported.[/dim]")
        return

    table = Table(title="Lorebooks")
    table.add_column("Name", style="cyan")
    table.add_column("ID", style="dim")
    table.add_column("Format")
    table.add_column("Entries")
    table.add_column("Status", style="green")

    for b in books:
        status = "active" if b.get("is_active", True) else "[dim]inactive[/dim]"
        table.add_row(
            b.get("name", ""),
            b.get("id", ""),
            b.get("format", ""),
            str(b.get("entry_count", "?")),
            status,
        )

    console.print(table)


@book_app.command("show")
def book_show(name: str = typer.Argument(..., help="Lorebook name or ID")):
    """Show a lorebook and its entries."""
    book = _find_book(_store(), name)

    console.print(f"[bold cyan]{book.name}[/bold cyan] ({book.format.value})")
    console.print(f"ID: {book.id}")
    console.print(f"Description: {book.description}")
    console.print(f"Token budget: {book.settings.token_budget}")
    console.print()

    table = Table(title="Entries")
    table.add_column("UID", justify="right")
    table.add_column("Comment", style="cyan")
    table.add_column("Keys")
    table.add_column("Order", justify="right")
    table.add_column("Flags", style="dim")

    for e in book.entries:
        flags = []
        if e.constant:
            flags.append("constant")
        if e.selective and e.keysecondary:
            flags.append("selective")
        if e.disable:
            flags.append("disabled")
        if e.use_probability and e.probability < 100:
            flags.append(f"{e.probability}%")
        table.add_row(str(e.uid), e.comment, ", ".join(e.key), str(e.order), " ".join(flags))

    console.print(table)


@book_app.command("stats")
def book_stats(name: str = typer.Argument(..., help="Lorebook name or ID")):
    """Show usage statistics for a lorebook."""
    store = _store()
    book = _find_book(store, name)
    stats = store.lorebook_stats(book.id)

    console.print(f"[bold cyan]{stats['name']}[/bold cyan] ({stats['format']})")
    console.print(f"Entries: {stats['entry_count']} ({stats['active_entries']} enabled, {stats['constant_entries']} always-on)")
    console.print(f"Keys: {stats['total_keys']}")
    console.print(f"Chats: {stats['active_chats']} active / {stats['total_chats']} total")
    console.print(f"Imported: {stats['imported_at']}")
    if stats["last_used"]:
        console.print(f"Last used: {stats['last_used']}")


@book_app.command("delete")
def book_delete(
    name: str = typer.Argument(..., help="Lorebook name or ID"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
):
    """Delete a lorebook (deactivated instead while chats still use it)."""
    store = _store()
    book = _find_book(store, name)

    if yes or typer.confirm(f"Delete '{book.name}'?"):
        result = store.delete_lorebook(book.id)
        console.print(f"[green]✓[/green] {result.message}")


@book_app.command("export")
def book_export(
    name: str = typer.Argument(..., help="Lorebook name or ID"),
    output: str = typer.Option(None, "--output", "-o", help="Write to file instead of stdout"),
):
    """Export a lorebook as SillyTavern world info JSON."""
    from loreweave.lorebook.formats import export_sillytavern

    book = _find_book(_store(), name)
    text = json.dumps(export_sillytavern(book), indent=2, ensure_ascii=False)
    if output:
        Path(output).write_text(text, "utf-8")
        console.print(f"[green]✓[/green] Exported {book.name} to {output}")
    else:
        typer.echo(text)


# ============================================================================
# Validation
# ============================================================================

@app.command("validate")
def validate(file: str = typer.Argument(..., help="Path to lorebook JSON file")):
    """Check a lorebook file without importing it."""
    from loreweave.lorebook.errors import FormatError
    from loreweave.lorebook.importer import decode_lorebook
    from loreweave.lorebook.validators import validate_lorebook

    path = Path(file)
    if not path.exists():
        console.print(f"[red]File not found: {file}[/red]")
        raise typer.Exit(1)

    try:
        data = decode_lorebook(path.read_bytes())
    except FormatError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    result = validate_lorebook(data)
    for error in result.errors:
        console.print(f"  [red]error:[/red] {error}")
    for warning in result.warnings:
        console.print(f"  [yellow]warning:[/yellow] {warning}")

    if not result.is_valid:
        console.print(f"[red]{result.summary()}[/red]")
        raise typer.Exit(1)
    console.print(f"[green]✓[/green] {result.summary()}")


# ============================================================================
# Chat Commands
# ============================================================================

chat_app = typer.Typer(help="Attach lorebooks to chats")
app.add_typer(chat_app, name="chat")


@chat_app.command("bind")
def chat_bind(
    chat_id: str = typer.Argument(..., help="Chat ID"),
    name: str = typer.Argument(..., help="Lorebook name or ID"),
    token_budget: Optional[int] = typer.Option(None, "--token-budget", help="Override token budget"),
    scan_depth: Optional[int] = typer.Option(None, "--scan-depth", help="Override scan depth"),
    case_sensitive: Optional[bool] = typer.Option(
        None, "--case-sensitive/--no-case-sensitive", help="Override case sensitivity",
    ),
    whole_words: Optional[bool] = typer.Option(
        None, "--whole-words/--no-whole-words", help="Override whole-word matching",
    ),
):
    """Attach a lorebook to a chat (re-binding updates the overrides)."""
    from loreweave.lorebook.binding import bind_lorebook_to_chat
    from loreweave.lorebook.types import SettingsOverrides

    store = _store()
    book = _find_book(store, name)
    overrides = SettingsOverrides(
        scan_depth=scan_depth,
        token_budget=token_budget,
        case_sensitive=case_sensitive,
        match_whole_words=whole_words,
    )
    binding = bind_lorebook_to_chat(store, chat_id, book.id, overrides)
    console.print(f"[green]✓[/green] Bound {book.name} to chat {chat_id} ({binding.id})")


@chat_app.command("unbind")
def chat_unbind(
    chat_id: str = typer.Argument(..., help="Chat ID"),
    name: str = typer.Argument(..., help="Lorebook name or ID"),
):
    """Detach a lorebook from a chat."""
    from loreweave.lorebook.binding import unbind_lorebook_from_chat
    from loreweave.lorebook.errors import NotFoundError

    store = _store()
    book = _find_book(store, name)
    try:
        unbind_lorebook_from_chat(store, chat_id, book.id)
    except NotFoundError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)
    console.print(f"[green]✓[/green] Unbound {book.name} from chat {chat_id}")


@chat_app.command("list")
def chat_list(chat_id: str = typer.Argument(..., help="Chat ID")):
    """List lorebooks bound to a chat."""
    from loreweave.lorebook.binding import get_active_lorebooks

    books = get_active_lorebooks(_store(), chat_id)
    if not books:
        console.print(f"[dim]No lorebooks bound to {chat_id}.[/dim]")
        return

    table = Table(title=f"Lorebooks in {chat_id}")
    table.add_column("Name", style="cyan")
    table.add_column("Entries")
    table.add_column("Overrides", style="dim")
    table.add_column("Last activated")

    for b in books:
        overrides = ", ".join(f"{k}={v}" for k, v in b["overrides"].items() if v is not None)
        table.add_row(b["name"], str(b["entry_count"]), overrides, str(b["activated_entries"]))

    console.print(table)


# ============================================================================
# Scan
# ============================================================================

@app.command("scan")
def scan_command(
    chat_id: str = typer.Argument(..., help="Chat ID"),
    text: str = typer.Argument(..., help="Context text to scan"),
    seed: Optional[int] = typer.Option(None, "--seed", help="Seed for probability rolls"),
    record: bool = typer.Option(False, "--record", help="Save activations to the chat's history"),
    prompt: bool = typer.Option(False, "--prompt", help="Print the rendered world info block"),
):
    """Scan text against the lorebooks bound to a chat."""
    import random

    from loreweave.config import Settings
    from loreweave.lorebook.activation import build_world_info_prompt, scan
    from loreweave.lorebook.binding import history_from_scan, record_activation_history

    store = _store()
    rng = random.Random(seed) if seed is not None else None
    result = scan(store, chat_id, text, Settings.from_env().scan_max_depth, rng=rng)

    if not result.activated_entries:
        console.print("[dim]No entries activated.[/dim]")
        return

    if prompt:
        typer.echo(build_world_info_prompt(result.activated_entries))
    else:
        table = Table(title=f"Activated entries ({result.total_tokens} tokens)")
        table.add_column("Lorebook", style="cyan")
        table.add_column("UID", justify="right")
        table.add_column("Comment")
        table.add_column("Matched", style="green")
        table.add_column("Order", justify="right")
        table.add_column("Tokens", justify="right")
        for a in result.activated_entries:
            table.add_row(
                a.lorebook_name, str(a.uid), a.comment,
                ", ".join(a.matched_keys) or "(constant)", str(a.order), str(a.estimated_tokens),
            )
        console.print(table)

    if record:
        for lorebook_id, records in history_from_scan(result).items():
            record_activation_history(store, chat_id, lorebook_id, records)
        console.print("[green]✓[/green] Activation history recorded")


# ============================================================================
# Status
# ============================================================================

@app.command("status")
def status():
    """Show storage status."""
    from loreweave.config import Settings

    store = _store()
    s = store.status()

    console.print("[bold]Lorebook Status[/bold]\n")
    console.print(f"Home: {Settings.from_env().home}")
    console.print(f"Lorebooks: {s['lorebooks']} ({s['active_lorebooks']} active, {s['inactive_lorebooks']} inactive)")
    console.print(f"Chat bindings: {s['active_bindings']} active")
