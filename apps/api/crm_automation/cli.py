"""CLI tools for automation operations."""

import json

import click

from crm_automation.core.async_utils import run_async
from crm_automation.db.base import Base
from crm_automation.db.session import SessionLocal, engine
from crm_automation.services import automation_service, watch_service
from crm_automation.services.provider_clients import provider_clients


@click.group()
def cli():
    """CRM automation CLI tools."""
    pass


@cli.command()
def create_tables():
    """
    Create all tables directly from the models.

    For local development and tests; production schemas go through Alembic.
    """
    import crm_automation.db.models  # noqa: F401

    Base.metadata.create_all(bind=engine)
    click.echo("✓ Tables created")


@cli.command()
def renew_gmail_watches():
    """
    Renew Gmail watches expiring within the lookahead window.

    Example:
        crm-automation renew-gmail-watches
    """

    async def _renew():
        db = SessionLocal()
        try:
            async with provider_clients() as clients:
                return await watch_service.renew_gmail_watches(db, clients)
        finally:
            db.close()

    response = run_async(_renew())
    click.echo(f"✓ {response.message}: renewed={response.renewed} failed={response.failed}")
    for result in response.results:
        if result.error:
            click.echo(f"  ❌ {result.automation_id}: {result.error}")
    if response.failed:
        raise SystemExit(1)


@cli.command()
@click.option("--json-output", is_flag=True, help="Print the result as JSON")
def prune_deliveries(json_output: bool):
    """Delete webhook delivery dedupe rows past WEBHOOK_DEDUPE_TTL_HOURS."""
    db = SessionLocal()
    try:
        deleted = automation_service.prune_deliveries(db)
    finally:
        db.close()

    if json_output:
        click.echo(json.dumps({"deleted": deleted}))
    else:
        click.echo(f"✓ Pruned {deleted} delivery records")


if __name__ == "__main__":
    cli()
