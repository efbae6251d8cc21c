"""CLI command for voter validation."""

import asyncio
from typing import Annotated

import typer


def validate(voter_id: Annotated[str, typer.Argument(help="Voter ID printed on the voter slip")]) -> None:
    """Validate a voter ID and report remaining votes."""
    asyncio.run(_validate_impl(voter_id))


async def _validate_impl(voter_id: str) -> None:
    """Async implementation of the validate command."""
    from evote_client.core.config import get_settings
    from evote_client.lib.backend import FetchError, FetchTimeoutError
    from evote_client.services.election_client import ElectionClient
    from evote_client.services.vote_protocol import VoteLimitReachedError, VoteProtocolError

    settings = get_settings()

    async with ElectionClient(settings) as client:
        await client.status.refresh_status()
        await client.load_vote_limit()
        try:
            voter = await client.votes.validate(voter_id)
            client.votes.ensure_can_submit(voter)
        except VoteLimitReachedError as exc:
            typer.echo(f"Error: {exc}", err=True)
            for token in voter.vote_tokens:
                stamp = token.timestamp.isoformat() if token.timestamp else "unknown time"
                typer.echo(f"  token {token.token} ({stamp})")
            raise typer.Exit(code=1) from exc
        except FetchTimeoutError as exc:
            typer.echo(f"Error: validation of {voter_id} timed out, please try again", err=True)
            raise typer.Exit(code=1) from exc
        except (VoteProtocolError, FetchError) as exc:
            typer.echo(f"Error: {exc}", err=True)
            raise typer.Exit(code=1) from exc

        await client.votes.wait_for_prefetch()
        max_votes = client.votes.max_votes_for(voter)
        typer.echo(f"Voter {voter.id} ({voter.name}) may vote: {voter.vote_count} of {max_votes} vote(s) used")
