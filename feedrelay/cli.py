"""Feedrelay CLI — command line interface."""

import asyncio

import click
from rich.console import Console
from rich.table import Table

from . import __version__

console = Console()


@click.group()
@click.version_option(version=__version__, prog_name="feedrelay")
def cli():
    """Feedrelay — Twitter home timelines relayed to Telegram chats 🐦"""
    pass


# ── Run ──────────────────────────────────────────────────────

@cli.command()
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.option("--no-console", is_flag=True, help="Do not read broadcast lines from stdin")
def run(debug, no_console):
    """Start the relay."""
    from .config import load_settings
    from .main import run as run_relay, setup_logging

    settings = load_settings()
    if debug:
        settings.debug = True
    if no_console:
        settings.console = False
    setup_logging(settings.debug)

    console.print("[bold blue]Starting feedrelay...[/bold blue]")
    asyncio.run(run_relay(settings))


# ── Sessions ─────────────────────────────────────────────────

@cli.command()
def sessions():
    """List stored subscriptions."""
    async def _sessions():
        from .config import load_settings
        from .db import SessionStore, close_db, init_db

        settings = load_settings()
        await init_db(settings.database_url)
        try:
            records = await SessionStore().load_all()
        finally:
            await close_db()

        if not records:
            console.print("[dim]No subscriptions stored.[/dim]")
            return

        table = Table(title=f"🐦 Subscriptions ({len(records)})", show_header=True)
        table.add_column("Chat", style="bold")
        table.add_column("Twitter")
        table.add_column("Subscriber")
        table.add_column("Cursor")
        table.add_column("Cached", justify="right")
        table.add_column("Updated", style="dim")

        for r in records:
            updated = r.get("updated_at")
            table.add_row(
                str(r["chat_id"]),
                f"@{r.get('screen_name') or '?'}",
                r.get("display_name") or "",
                str(r["cursor_id"]) if r.get("cursor_id") is not None else "—",
                str(len(r.get("recent_map") or {})),
                updated.strftime("%Y-%m-%d %H:%M") if updated else "",
            )
        console.print(table)

    asyncio.run(_sessions())


# ── Database ─────────────────────────────────────────────────

@cli.group()
def db():
    """Database management commands."""
    pass


@db.command("init")
def db_init():
    """Initialize database schema."""
    async def _init():
        from .config import load_settings
        from .db import close_db, ensure_schema, init_db

        settings = load_settings()
        await init_db(settings.database_url)
        try:
            await ensure_schema()
        finally:
            await close_db()
        console.print("[green]✓ Database schema initialized[/green]")

    asyncio.run(_init())


def main():
    cli()


if __name__ == "__main__":
    main()
