"""
Database connection and management utilities.

Usage:
    retention-db init    # Create tables
    retention-db reset   # Drop and recreate tables
    retention-db check   # Verify connection and counts
"""

import sys
from contextlib import contextmanager
from typing import Generator

import click
from rich.console import Console
from rich.table import Table
from sqlalchemy import create_engine, func, select, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from ..config import get_database_url
from .schema import CONSUMED_TABLES, PRODUCED_TABLES, metadata

console = Console()


def get_engine(database_url: str | None = None) -> Engine:
    """Create and return a SQLAlchemy engine.

    Args:
        database_url: Explicit URL. Defaults to the environment settings.

    Returns:
        SQLAlchemy Engine instance.
    """
    url = database_url or get_database_url()
    if url.startswith("sqlite"):
        # Sweeps use worker threads
        return create_engine(
            url,
            echo=False,
            connect_args={"check_same_thread": False, "timeout": 30},
        )
    return create_engine(url, echo=False, pool_pre_ping=True)


@contextmanager
def get_connection(engine: Engine | None = None) -> Generator[Connection, None, None]:
    """Context manager for a transactional connection.

    Commits on success and rolls back on error.
    """
    engine = engine or get_engine()
    with engine.begin() as connection:
        yield connection


def init_database(engine: Engine | None = None) -> None:
    """Initialize database by creating all tables."""
    console.print("[bold blue]Initializing database...[/bold blue]")

    engine = engine or get_engine()
    try:
        metadata.create_all(engine)
    except SQLAlchemyError as e:
        console.print(f"[bold red]Error initializing database: {e}[/bold red]")
        sys.exit(1)

    console.print("[bold green]✓ Database initialized successfully![/bold green]")


def reset_database(engine: Engine | None = None) -> None:
    """Drop all tables and recreate them."""
    console.print("[bold yellow]Resetting database...[/bold yellow]")

    engine = engine or get_engine()
    try:
        metadata.drop_all(engine)
    except SQLAlchemyError as e:
        console.print(f"[bold red]Error resetting database: {e}[/bold red]")
        sys.exit(1)

    console.print("[yellow]Tables dropped.[/yellow]")
    init_database(engine)


def count_rows(engine: Engine) -> dict[str, int | None]:
    """Row count per known table; None for tables that do not exist."""
    counts: dict[str, int | None] = {}
    with engine.connect() as conn:
        for table in (*CONSUMED_TABLES, *PRODUCED_TABLES):
            try:
                counts[table.name] = conn.execute(
                    select(func.count()).select_from(table)
                ).scalar_one()
            except SQLAlchemyError:
                conn.rollback()
                counts[table.name] = None
    return counts


def check_database(engine: Engine | None = None) -> None:
    """Check database connection and show table counts."""
    console.print("[bold blue]Checking database connection...[/bold blue]")

    engine = engine or get_engine()
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1")).fetchone()
        console.print("[green]✓ Connection successful![/green]")
        counts = count_rows(engine)
    except SQLAlchemyError as e:
        console.print(f"[bold red]Error connecting to database: {e}[/bold red]")
        console.print("\n[yellow]Troubleshooting tips:[/yellow]")
        console.print("  1. Ensure PostgreSQL is running")
        console.print("  2. Check your .env file has correct credentials")
        console.print("  3. Ensure the database exists: createdb retention_dev")
        sys.exit(1)

    table = Table(title="Table Row Counts")
    table.add_column("Table", style="cyan")
    table.add_column("Rows", justify="right", style="green")

    total_rows = 0
    for table_name, count in counts.items():
        if count is None:
            table.add_row(table_name, "[red]Table not found[/red]")
            continue
        table.add_row(table_name, f"{count:,}")
        total_rows += count

    table.add_row("─" * 20, "─" * 10)
    table.add_row("[bold]Total[/bold]", f"[bold]{total_rows:,}[/bold]")

    console.print(table)


# =============================================================================
# CLI
# =============================================================================

@click.group()
@click.option("--database-url", envvar="DATABASE_URL", default=None, help="Override DATABASE_URL.")
@click.pass_context
def cli(ctx: click.Context, database_url: str | None):
    """Database management commands."""
    ctx.obj = get_engine(database_url)


@cli.command()
@click.pass_obj
def init(engine: Engine):
    """Create database tables."""
    init_database(engine)


@cli.command()
@click.pass_obj
def reset(engine: Engine):
    """Drop and recreate all tables."""
    reset_database(engine)


@cli.command()
@click.pass_obj
def check(engine: Engine):
    """Check database connection and show table counts."""
    check_database(engine)


if __name__ == "__main__":
    cli()
