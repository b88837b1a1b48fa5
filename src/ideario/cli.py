"""CLI: init, serve, status, user, ideas, reconcile."""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from ideario.config import Config
from ideario.core.context import AppContext
from ideario.errors import IdearioError
from ideario.storage.sqlite_store import SQLiteGateway


def _load_config(path: str | None) -> Config:
    return Config.load(Path(path).expanduser().resolve() if path else None)


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True)],
    )


def _require_db(config: Config) -> None:
    if not config.db_path.exists():
        click.echo(
            f"Error: No database at {config.db_path}. Run 'ideario init' first.", err=True
        )
        sys.exit(1)


@click.group()
@click.version_option(package_name="ideario")
def main() -> None:
    """Ideario: idea intake, evaluation and definition tracking."""


@main.command()
@click.argument("path", type=click.Path(), default="~/.ideario")
def init(path: str) -> None:
    """Initialize a new ideario workspace."""
    config = _load_config(path)

    async def _init() -> None:
        gateway = SQLiteGateway(config.db_path, wal_mode=config.wal_mode)
        await gateway.initialize()
        await gateway.close()
        config.storage_path.mkdir(parents=True, exist_ok=True)
        config.save()

    asyncio.run(_init())
    click.echo(f"Initialized workspace at {config.data_path}")
    click.echo(f"Database: {config.db_path}")
    click.echo("Add to Claude Desktop config:")
    click.echo(f'  "ideario": {{"command": "ideario", "args": ["serve", "{config.data_path}"]}}')


@main.command()
@click.argument("path", type=click.Path(exists=True))
@click.option("--transport", type=click.Choice(["stdio"]), default="stdio")
def serve(path: str, transport: str) -> None:
    """Start the MCP server."""
    config = _load_config(path)
    _require_db(config)
    _setup_logging(config.log_level)

    from ideario.server import create_server

    server = create_server(config)
    server.run(transport=transport)  # type: ignore[arg-type]


@main.command()
@click.argument("path", type=click.Path(exists=True))
def status(path: str) -> None:
    """Show workspace status."""
    config = _load_config(path)
    _require_db(config)

    async def _status() -> dict:
        gateway = SQLiteGateway(config.db_path, wal_mode=config.wal_mode)
        try:
            await gateway.initialize()
            return await gateway.get_stats()
        finally:
            await gateway.close()

    stats = asyncio.run(_status())
    click.echo(json.dumps(stats, indent=2, ensure_ascii=False))


@main.group()
def user() -> None:
    """Manage user accounts."""


@user.command("create")
@click.argument("email")
@click.option("--nome", required=True, help="Display name")
@click.password_option("--senha", help="Password (prompted when omitted)")
@click.option("--path", type=click.Path(exists=True), default=None, help="Workspace path")
def user_create(email: str, nome: str, senha: str, path: str | None) -> None:
    """Register a user account."""
    config = _load_config(path)
    _require_db(config)

    async def _create() -> None:
        ctx = await AppContext.open(config)
        try:
            session = await ctx.auth.sign_up(email, senha, nome)
        finally:
            await ctx.close()

        Console().print(
            Panel(
                f"[green]✓[/green] User created: {session.user.nome}\n"
                f"ID: {session.user.id}\n"
                f"Email: {session.user.email}",
                title="User Created",
            )
        )

    try:
        asyncio.run(_create())
    except IdearioError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


@main.group()
def ideas() -> None:
    """Browse ideas."""


@ideas.command("list")
@click.option("--path", type=click.Path(exists=True), default=None, help="Workspace path")
@click.option("--search", default=None, help="Text search")
@click.option("--status", "status_filter", default=None, help="Status filter")
@click.option("--tag", default=None, help="Tag filter")
@click.option(
    "--order",
    type=click.Choice(["recentes", "antigas", "votos", "comentarios"]),
    default="recentes",
)
def ideas_list(
    path: str | None, search: str | None, status_filter: str | None, tag: str | None, order: str
) -> None:
    """List ideas with their vote and comment counts."""
    config = _load_config(path)
    _require_db(config)

    async def _list() -> list:
        ctx = await AppContext.open(config)
        try:
            return await ctx.lifecycle.list_ideas(
                search=search, status=status_filter, tag=tag, order=order
            )
        finally:
            await ctx.close()

    try:
        found = asyncio.run(_list())
    except IdearioError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    table = Table(title=f"Ideas ({len(found)})")
    table.add_column("ID", style="cyan")
    table.add_column("Título")
    table.add_column("Status", style="magenta")
    table.add_column("Votos", justify="right")
    table.add_column("Comentários", justify="right")
    table.add_column("Tags", style="dim")
    for idea in found:
        table.add_row(
            idea.id,
            idea.titulo,
            idea.status.value,
            str(idea.votos),
            str(idea.comentarios),
            ", ".join(idea.tags),
        )
    Console().print(table)


@main.command()
@click.argument("path", type=click.Path(exists=True))
@click.option("--idea", "idea_id", default=None, help="Only this idea's attachments")
@click.option("--grace", default=300, show_default=True, help="Skip blobs younger than N seconds")
def reconcile(path: str, idea_id: str | None, grace: int) -> None:
    """Remove orphan attachment blobs and dangling attachment rows."""
    config = _load_config(path)
    _require_db(config)
    _setup_logging(config.log_level)

    async def _reconcile() -> dict:
        ctx = await AppContext.open(config)
        try:
            report = await ctx.attachments.reconcile(idea_id, grace_seconds=grace)
            return report.to_response()
        finally:
            await ctx.close()

    click.echo(json.dumps(asyncio.run(_reconcile()), indent=2))
