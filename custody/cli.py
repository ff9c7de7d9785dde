"""CLI for the Filing Custody Service."""
import asyncio
import json
import secrets
from datetime import datetime, timezone
from typing import Optional

import click

from custody.domain.sharing.codes import compose_code, derive_prefix, validate_raw_code


@click.group()
def cli():
    """Filing Custody Service CLI."""
    pass


@cli.command("keygen")
def keygen():
    """Print a fresh 256-bit master key as 64 hex characters."""
    click.echo(secrets.token_hex(32))


@cli.command("derive-prefix")
@click.argument("owner_user_id")
@click.option("--code", "raw_code", default=None, help="Raw code to compose into a full share code")
def derive_prefix_cmd(owner_user_id: str, raw_code: Optional[str]):
    """Show the share-code prefix for an owner."""
    if raw_code is None:
        click.echo(derive_prefix(owner_user_id))
        return

    problem = validate_raw_code(raw_code)
    if problem:
        click.echo(f"Error: {problem}", err=True)
        raise SystemExit(1)
    click.echo(compose_code(raw_code, owner_user_id))


@cli.command("sweep")
@click.option("--format", "fmt", type=click.Choice(["text", "json"]), default="text")
def sweep(fmt: str):
    """Run share-code expiry, expiry warnings and credential retention once."""
    from custody.jobs.sweeper import run_sweeps

    summary = asyncio.run(run_sweeps(datetime.now(timezone.utc)))
    if fmt == "json":
        click.echo(json.dumps(summary, indent=2))
    else:
        for key, value in summary.items():
            click.echo(f"{key:<24} {value}")


if __name__ == "__main__":
    cli()
