"""CLI commands for election status and results."""

import asyncio
from typing import Annotated

import typer
from loguru import logger

from evote_client.lib.time_window import Phase


def status() -> None:
    """Show the current election status and phase."""
    asyncio.run(_status_impl())


async def _status_impl() -> None:
    """Async implementation of the status command."""
    from evote_client.core.config import get_settings
    from evote_client.lib.time_window import format_date_for_display, format_time_for_display, reference_timezone
    from evote_client.services.election_client import ElectionClient

    settings = get_settings()
    tz = reference_timezone(settings.election_utc_offset_minutes)

    async with ElectionClient(settings) as client:
        current = await client.status.refresh_status()
        boundary = current.boundary
        if current.is_fallback:
            typer.echo("Election status unavailable; showing the default window.", err=True)
        typer.echo(f"Election: {current.title or 'Election'}")
        typer.echo(
            f"Window: {format_date_for_display(boundary.start, tz)} {format_time_for_display(boundary.start, tz)}"
            f" - {format_date_for_display(boundary.end, tz)} {format_time_for_display(boundary.end, tz)}"
        )
        typer.echo(f"Phase: {client.status.phase}")
        typer.echo(f"Backend active flag: {'yes' if current.is_active else 'no'}")
        typer.echo(f"Time remaining: {client.status.time_remaining}")
        typer.echo(f"Accepting votes: {'yes' if client.status.accepts_votes else 'no'}")


def watch(
    seconds: Annotated[
        float | None,
        typer.Option("--seconds", help="Stop after this many seconds (default: run until interrupted)"),
    ] = None,
) -> None:
    """Follow the election status and print every phase change."""
    try:
        asyncio.run(_watch_impl(seconds))
    except KeyboardInterrupt:
        typer.echo("Stopped.")


async def _watch_impl(seconds: float | None) -> None:
    """Async implementation of the watch command."""
    from evote_client.core.config import get_settings
    from evote_client.services.election_client import ElectionClient

    settings = get_settings()

    def on_change(previous: Phase | None, current: Phase) -> None:
        typer.echo(f"Phase: {previous or 'unknown'} -> {current}")

    async with ElectionClient(settings) as client:
        client.status.add_listener(on_change)
        client.status.start()
        logger.info("Watching election status")
        stop = asyncio.Event()
        try:
            await asyncio.wait_for(stop.wait(), timeout=seconds)
        except TimeoutError:
            typer.echo(f"Time remaining: {client.status.time_remaining}")


def results(
    position: Annotated[str | None, typer.Option("--position", help="Only show this position id")] = None,
    search: Annotated[
        str | None,
        typer.Option("--search", help="Filter by position title or candidate name"),
    ] = None,
) -> None:
    """Show aggregated election results once the election has ended."""
    asyncio.run(_results_impl(position, search))


async def _results_impl(position_id: str | None, search: str | None) -> None:
    """Async implementation of the results command."""
    from evote_client.core.config import get_settings
    from evote_client.lib.backend import FetchError
    from evote_client.lib.results import filter_results
    from evote_client.services.election_client import ElectionClient
    from evote_client.services.results_service import ResultsUnavailableError

    settings = get_settings()

    async with ElectionClient(settings) as client:
        try:
            snapshot = await client.results.fetch_results()
        except (ResultsUnavailableError, FetchError) as exc:
            typer.echo(f"Error: {exc}", err=True)
            raise typer.Exit(code=1) from exc

        stats = snapshot.stats
        typer.echo(f"Turnout: {stats.voted}/{stats.total} voted ({stats.percentage:.1f}%)")
        for item in filter_results(snapshot.results, position_id=position_id, search=search):
            typer.echo(f"\n{item.position.title} (total votes: {item.total_votes})")
            for rank, candidate in enumerate(item.candidates, start=1):
                typer.echo(f"  {rank}. {candidate.name}: {candidate.vote_count} ({candidate.percentage or 0:.1f}%)")
            if item.abstention is not None and not item.abstention.explicit:
                typer.echo(f"  Abstentions: {item.abstention.vote_count} ({item.abstention.percentage:.1f}%)")
