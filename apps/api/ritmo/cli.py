"""CLI tools for cadence administration."""

from datetime import datetime, timezone
from uuid import UUID

import click

from ritmo.core.cadence_config import CadenceConfig
from ritmo.db.enums import CancelReason
from ritmo.db.models import Quote
from ritmo.db.session import SessionLocal
from ritmo.services import cadence_service, claim_service, stage_service


def _parse_when(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@click.group()
def cli():
    """Ritmo cadence CLI tools."""
    pass


@cli.command()
@click.option("--batch-size", type=int, default=None, help="Max events to claim")
@click.option("--now", "now_str", default=None, help="Pin the clock (ISO 8601, UTC if naive)")
def run_cadence_pass(batch_size: int | None, now_str: str | None):
    """
    Run one claim pass (reclaim orphans, claim due events, execute).

    Example:
        python -m ritmo.cli run-cadence-pass --batch-size 20
    """
    with SessionLocal() as db:
        summary = claim_service.run_claim_pass(
            db,
            batch_size=batch_size,
            now=_parse_when(now_str),
            config=CadenceConfig.from_settings(),
        )
    for key, value in summary.as_dict().items():
        click.echo(f"{key}: {value}")


@cli.command()
@click.option("--timeout-minutes", type=int, default=None, help="Lease age considered orphaned")
def reclaim_orphans(timeout_minutes: int | None):
    """Return stale claims to scheduled without running a pass."""
    config = CadenceConfig.from_settings()
    with SessionLocal() as db:
        count = claim_service.reclaim_orphaned_claims(
            db, claim_timeout_minutes=timeout_minutes or config.claim_timeout_minutes
        )
    click.echo(f"Reclaimed {count} orphaned claims")


@cli.command()
@click.option("--quote-id", required=True, type=click.UUID, help="Quote to mark as sent")
@click.option("--sent-at", default=None, help="Send time (ISO 8601, default now)")
def mark_sent(quote_id: UUID, sent_at: str | None):
    """
    Mark a quote as sent and generate its cadence.

    Example:
        python -m ritmo.cli mark-sent --quote-id 6f1c... --sent-at 2024-01-02T10:00:00
    """
    with SessionLocal() as db:
        quote = db.query(Quote).filter(Quote.id == quote_id).first()
        if not quote:
            raise click.ClickException(f"Quote {quote_id} not found")
        result = cadence_service.mark_quote_sent(
            db, quote.id, quote.organization_id, sent_at=_parse_when(sent_at)
        )
        click.echo(f"Cadence run {result.run_id}: {result.events_created} events")
        for event in result.events:
            line = f"  {event.event_type:<10} {event.scheduled_for.isoformat()}"
            if event.priority:
                line += f" [{event.priority}]"
            click.echo(line)


@cli.command()
@click.option("--quote-id", required=True, type=click.UUID)
@click.option(
    "--reason",
    type=click.Choice([r.value for r in CancelReason]),
    default=CancelReason.MANUAL.value,
    show_default=True,
)
def cancel_cadence(quote_id: UUID, reason: str):
    """Cancel every scheduled event of a quote and stop its cadence."""
    with SessionLocal() as db:
        try:
            result = cadence_service.cancel_pending_cadence(db, quote_id, reason=reason)
        except cadence_service.QuoteNotFoundError as e:
            raise click.ClickException(str(e)) from e
    click.echo(f"Cancelled {result.cancelled_count} events")


@cli.command()
@click.option("--event-id", required=True, type=click.UUID)
def complete_event(event_id: UUID):
    """Manually complete a scheduled cadence event."""
    with SessionLocal() as db:
        try:
            result = stage_service.complete_event(db, event_id)
        except stage_service.StageServiceError as e:
            raise click.ClickException(str(e)) from e
    stage = result.next_stage.value if result.next_stage else "unchanged"
    click.echo(f"Event {result.event_id} completed (stage: {stage})")


if __name__ == "__main__":
    cli()
