"""CLI tools for campaign operations."""

import asyncio
import json
from uuid import UUID

import click
from pydantic import ValidationError

from clinic_campaigns.db.session import SessionLocal
from clinic_campaigns.schemas.events import CampaignEvent
from clinic_campaigns.services.campaign_engine import build_campaign_engine


@click.group()
def cli():
    """Clinic campaign engine CLI tools."""
    pass


def _echo_runs(label: str, results) -> None:
    click.echo(f"✓ {label}: {len(results)} campaign(s) fired")
    for result in results:
        line = f"  {result.campaign_id}: {result.started} started, {result.in_flight} already in flight"
        if result.reason:
            line += f" ({result.reason})"
        click.echo(line)


@cli.command("run-scheduled")
def run_scheduled():
    """Fire SCHEDULED campaigns whose fire-at has passed."""
    engine = build_campaign_engine()
    with SessionLocal() as db:
        _echo_runs("Scheduled", engine.run_scheduled(db))


@cli.command("run-recurring")
def run_recurring():
    """Fire RECURRING campaigns that are due now."""
    engine = build_campaign_engine()
    with SessionLocal() as db:
        _echo_runs("Recurring", engine.run_recurring(db))


@cli.command("drain")
@click.option("--limit", type=int, default=None, help="Max pending actions to process")
def drain(limit: int | None):
    """
    Execute due pending actions once.

    Example:
        python -m clinic_campaigns.cli drain --limit 50
    """
    engine = build_campaign_engine()
    with SessionLocal() as db:
        result = asyncio.run(engine.drain(db, limit=limit))
    click.echo(
        f"✓ Processed {result.processed}: {result.sent} sent, {result.failed} failed, "
        f"{result.skipped} skipped, {result.cancelled} cancelled"
    )
    if result.errors:
        click.echo(f"❌ {result.errors} action(s) raised errors (see logs)")


@cli.command("emit-event")
@click.option("--event", "event_name", required=True, help="Event name, e.g. appointment.booked")
@click.option("--tenant-id", required=True, type=click.UUID, help="Clinic ID")
@click.option("--recipient-id", required=True, type=click.UUID, help="Patient ID")
@click.option("--data", default="{}", help="Event payload as JSON")
@click.option("--event-id", default=None, help="Idempotency id for queued events")
@click.option("--queue", is_flag=True, help="Queue for the worker instead of routing now")
def emit_event(
    event_name: str,
    tenant_id: UUID,
    recipient_id: UUID,
    data: str,
    event_id: str | None,
    queue: bool,
):
    """
    Emit a business event to event-triggered campaigns.

    Example:
        python -m clinic_campaigns.cli emit-event --event patient.birthday \\
            --tenant-id <clinic> --recipient-id <patient> --data '{"age": 40}'
    """
    try:
        payload = json.loads(data)
        event = CampaignEvent(
            event_name=event_name,
            tenant_id=tenant_id,
            recipient_id=recipient_id,
            payload=payload,
            event_id=event_id,
        )
    except (json.JSONDecodeError, ValidationError) as e:
        raise click.BadParameter(str(e), param_hint="--data") from e

    engine = build_campaign_engine()
    with SessionLocal() as db:
        if queue:
            job = engine.events.enqueue(db, event)
            if job is None:
                click.echo(f"❌ Event {event_id} already queued")
            else:
                click.echo(f"✓ Queued event as job {job.id}")
            return

        starts = engine.events.dispatch(db, event)
    click.echo(f"✓ Started {len(starts)} campaign run(s)")
    for start in starts:
        click.echo(f"  campaign {start.campaign_id}: step {start.step_id} due {start.due_at.isoformat()}")


if __name__ == "__main__":
    cli()
