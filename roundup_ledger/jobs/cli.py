"""Operational commands: API server, month-end sweep, settlement recovery and manual connection sync"""

import asyncio
import json

import typer
import uvicorn

from roundup_ledger.config import settings
from roundup_ledger.domain.exceptions import DomainException
from roundup_ledger.infrastructure.observability.logging import setup_logging
from roundup_ledger.jobs.runner import month_end_sweep, recover_settlements, sync_one

app = typer.Typer(help="Round-up ledger service and jobs", no_args_is_help=True)


@app.callback()
def main(log_level: str = typer.Option(settings.log_level, help="Root log level")) -> None:
    setup_logging(log_level)


@app.command()
def serve(
    host: str = typer.Option(settings.api_host, help="Bind address"),
    port: int = typer.Option(settings.api_port, help="Bind port"),
) -> None:
    """Run the HTTP API."""
    # log_config=None leaves the JSON handlers from setup_logging in place
    uvicorn.run("roundup_ledger.api.main:app", host=host, port=port, log_config=None)


@app.command()
def sweep() -> None:
    """Settle last month for every active round-up with unsettled transactions."""
    outcomes = asyncio.run(month_end_sweep())
    typer.echo(json.dumps(outcomes, sort_keys=True))


@app.command()
def recover() -> None:
    """Resolve settlements left pending past the timeout."""
    outcomes = asyncio.run(recover_settlements())
    typer.echo(json.dumps(outcomes, sort_keys=True))


@app.command()
def sync(connection_id: str = typer.Argument(..., help="Bank connection id")) -> None:
    """Pull and ingest new transactions for one bank connection."""
    try:
        result = asyncio.run(sync_one(connection_id))
    except DomainException as e:
        typer.echo(f"Sync failed: {e}", err=True)
        raise typer.Exit(code=1)
    typer.echo(
        json.dumps(
            {
                "processed": result.processed,
                "duplicates": result.duplicates,
                "rejected": result.rejected,
                "round_up_cents": result.round_up_cents,
                "settlement": result.settlement.outcome if result.settlement else None,
            },
            sort_keys=True,
        )
    )


if __name__ == "__main__":
    app()
