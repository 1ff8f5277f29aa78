#!/usr/bin/env python3
"""
Command-line interface for Audit Toolkit.

Inspects configuration, checks database connectivity and previews the
client messages produced by the exception catalogs.
"""

import asyncio
import logging
import sys
from typing import Optional

import click
import yaml
from rich.console import Console
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from . import __version__
from .config import get_config
from .connections import connect_database
from .exceptions import ServerException
from .translation import get_translator

console = Console()


@click.group(invoke_without_command=True)
@click.version_option(version=__version__)
@click.pass_context
def cli(ctx: click.Context) -> None:
    """Audit Toolkit - audit fields and soft delete for SQLAlchemy models."""
    logging.basicConfig(
        level=get_config().log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if ctx.invoked_subcommand is None:
        console.print(
            Panel.fit(
                f"[bold blue]Audit Toolkit[/bold blue] v{__version__}\n"
                "[dim]Audit fields and soft delete for SQLAlchemy models[/dim]\n\n"
                "Use [bold]audit-toolkit --help[/bold] to see available commands.",
                border_style="blue",
            )
        )


@cli.group()
def config() -> None:
    """Inspect toolkit configuration."""
    pass


@config.command("show")
@click.option("--format", type=click.Choice(["table", "json", "yaml"]), default="table")
def config_show(format: str) -> None:
    """Display current configuration."""
    try:
        config_dict = get_config().to_dict()
    except Exception as e:
        console.print(f"[red]Error loading configuration: {e}[/red]")
        sys.exit(1)

    if format == "json":
        console.print_json(data=config_dict)
    elif format == "yaml":
        console.print(yaml.dump(config_dict, default_flow_style=False))
    else:
        table = Table(title="Audit Toolkit Configuration", show_header=True)
        table.add_column("Setting", style="cyan")
        table.add_column("Value", style="green")

        categories = {
            "General": ["application_name", "environment", "log_level"],
            "Database": [
                "database_url",
                "database_retry_cap",
                "database_retry_delay_seconds",
                "database_pool_size",
                "database_max_overflow",
            ],
            "Cache": [
                "cache_url",
                "cache_retry_cap",
                "cache_retry_delay_seconds",
                "cache_connect_timeout_seconds",
            ],
            "Broker": [
                "broker_bootstrap_servers",
                "broker_client_id",
                "broker_group_id",
                "broker_retry_cap",
                "broker_retry_delay_seconds",
            ],
            "Translation": ["default_language", "supported_languages"],
            "Soft Delete": ["allow_hard_delete"],
        }

        for category, settings in categories.items():
            table.add_row(f"[bold]{category}[/bold]", "")
            for setting in settings:
                value = config_dict[setting]
                if isinstance(value, bool):
                    value = "✓" if value else "✗"
                elif isinstance(value, list):
                    value = ", ".join(value)
                table.add_row(f"  {setting}", str(value))

        console.print(table)


@config.command("validate")
def config_validate() -> None:
    """Validate current configuration."""
    try:
        config = get_config()
    except Exception as e:
        console.print(f"[red]✗ Configuration validation failed:[/red] {e}")
        sys.exit(1)

    issues = []
    warnings = []

    available = get_translator().available_languages()
    for language in config.supported_languages:
        if language not in available:
            issues.append(f"No message catalog for supported language '{language}'")

    if config.environment == "production":
        if config.database_url.startswith("sqlite"):
            warnings.append("SQLite database not recommended for production")
        if config.allow_hard_delete:
            warnings.append("Hard deletes are enabled in production")

    if issues:
        console.print("[red]✗ Configuration validation failed:[/red]")
        for issue in issues:
            console.print(f"  [red]• {issue}[/red]")
        sys.exit(1)

    console.print("[green]✓ Configuration is valid[/green]")
    if warnings:
        console.print("\n[yellow]⚠ Warnings:[/yellow]")
        for warning in warnings:
            console.print(f"  [yellow]• {warning}[/yellow]")


@cli.group()
def db() -> None:
    """Database connectivity."""
    pass


@db.command("ping")
@click.option("--url", help="Database URL (defaults to the configured one)")
def db_ping(url: Optional[str]) -> None:
    """Connect to the database, retrying up to the configured cap."""
    config = get_config()
    if url:
        config = config.model_copy(update={"database_url": url})

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
    ) as progress:
        progress.add_task("Connecting to database...", total=None)
        try:
            engine = asyncio.run(connect_database(config))
        except ServerException as e:
            progress.stop()
            console.print(f"[red]✗ {e}[/red]")
            sys.exit(1)

    engine.dispose()
    console.print(f"[green]✓[/green] Connected to {engine.url.render_as_string()}")


@cli.group()
def errors() -> None:
    """Preview translated error messages."""
    pass


@errors.command("translate")
@click.argument("code")
@click.option("--extra", "extra_code", help="Extra message code")
@click.option("--language", help="Language code (defaults to the configured one)")
def errors_translate(code: str, extra_code: Optional[str], language: Optional[str]) -> None:
    """Show the client payload for an error code."""
    payload = get_translator().translate(
        ServerException(code, extra_message_code=extra_code), language
    )
    console.print_json(data=payload.model_dump(exclude_none=True))


@errors.command("catalog")
@click.option("--language", help="Language code (defaults to the configured one)")
def errors_catalog(language: Optional[str]) -> None:
    """List the server error codes of a catalog."""
    catalog = get_translator().catalog(language)

    table = Table(title="Server Exceptions", show_header=True)
    table.add_column("Code", style="cyan")
    table.add_column("Extra", style="magenta")
    table.add_column("Message", style="green")

    for code, template in catalog.get("server_exceptions", {}).items():
        table.add_row(code, "", template["message"])
        for extra, message in (template.get("extra_messages") or {}).items():
            table.add_row("", extra, message)

    console.print(table)


if __name__ == "__main__":
    cli()
