"""
Background worker for the follow-up cadence.

Usage:
    python -m ritmo.worker

Runs a claim pass every WORKER_POLL_INTERVAL seconds. Any number of workers
may run at once; the atomic claim keeps each event on a single worker.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from ritmo.core.cadence_config import CadenceConfig
from ritmo.core.config import settings
from ritmo.core.error_tracking import init_sentry
from ritmo.core.structured_logging import build_log_context
from ritmo.db.session import SessionLocal
from ritmo.services import claim_service
from ritmo.services.claim_service import ClaimPassSummary
from ritmo.utils.business_days import validate_calendar_settings

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)


@dataclass
class WorkerStatus:
    """Outcome of the most recent pass, reported by the worker service health check."""

    last_pass_at: datetime | None = None
    last_summary: dict[str, int] | None = None
    last_error_at: datetime | None = None
    consecutive_errors: int = 0

    def record_pass(self, summary: ClaimPassSummary) -> None:
        self.last_pass_at = datetime.now(timezone.utc)
        self.last_summary = summary.as_dict()
        self.consecutive_errors = 0

    def record_error(self) -> None:
        self.last_error_at = datetime.now(timezone.utc)
        self.consecutive_errors += 1


status = WorkerStatus()


def run_once(config: CadenceConfig | None = None) -> ClaimPassSummary:
    """Run a single claim pass in a fresh session."""
    with SessionLocal() as db:
        return claim_service.run_claim_pass(db, config=config)


async def worker_loop() -> None:
    """Main worker loop - runs a claim pass, then sleeps."""
    # Misconfigured calendars are fatal at startup
    validate_calendar_settings()
    config = CadenceConfig.from_settings()

    logger.info(
        "Cadence worker starting (poll interval: %ss, batch size: %s, claim timeout: %sm)",
        settings.WORKER_POLL_INTERVAL,
        config.batch_size,
        config.claim_timeout_minutes,
    )
    if config.auto_email and not settings.email_configured:
        logger.warning("RESEND_API_KEY not set - email steps will become follow_up tasks")

    while True:
        try:
            summary = run_once(config)
            status.record_pass(summary)
            if summary.claimed or summary.reclaimed:
                logger.info("Cadence pass: %s", summary.as_dict())
        except Exception:
            status.record_error()
            logger.exception("Error in cadence worker loop", extra=build_log_context(route="worker"))

        await asyncio.sleep(settings.WORKER_POLL_INTERVAL)


def main() -> None:
    """Entry point for the worker."""
    init_sentry()
    try:
        asyncio.run(worker_loop())
    except KeyboardInterrupt:
        logger.info("Worker shutting down")
    except Exception:
        logger.exception("Worker crashed", extra=build_log_context(route="worker"))
        raise


if __name__ == "__main__":
    main()
