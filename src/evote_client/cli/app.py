"""Typer CLI root application."""

import typer

from evote_client.core.config import get_settings
from evote_client.core.logging import setup_logging

app = typer.Typer(name="evote", help="School election client")


@app.callback()
def _main_callback() -> None:
    """Initialize logging for all CLI commands."""
    settings = get_settings()
    setup_logging(settings.log_level, log_dir=settings.log_dir, json_output=settings.log_json)


def _register_subcommands() -> None:
    """Register all CLI commands."""
    from evote_client.cli.election_cmd import results, status, watch
    from evote_client.cli.voter_cmd import validate

    app.command("status")(status)
    app.command("watch")(watch)
    app.command("results")(results)
    app.command("validate")(validate)


_register_subcommands()
