"""
Internal endpoints for scheduled/cron operations.

Protected by X-Internal-Secret header.
Call from an external cron when no long-running worker is deployed.
"""

from fastapi import APIRouter, Header, HTTPException, Query
from pydantic import BaseModel

from ritmo.core.cadence_config import CadenceConfig
from ritmo.core.config import settings
from ritmo.db.session import SessionLocal
from ritmo.services import claim_service

router = APIRouter(prefix="/internal/scheduled", tags=["internal"])


def verify_internal_secret(x_internal_secret: str = Header(...)):
    """Verify the internal secret header."""
    expected = settings.INTERNAL_SECRET
    if not expected:
        raise HTTPException(status_code=501, detail="INTERNAL_SECRET not configured")
    if x_internal_secret != expected:
        raise HTTPException(status_code=403, detail="Invalid internal secret")


class CadencePassResponse(BaseModel):
    claimed: int
    sent: int
    completed: int
    cancelled: int
    failed: int
    skipped: int
    deferred: int
    retried: int
    reclaimed: int
    tasks_created: int
    lease_lost: int


@router.post("/cadence-pass", response_model=CadencePassResponse)
def run_cadence_pass(
    x_internal_secret: str = Header(...),
    batch_size: int | None = Query(None, ge=1, le=1000, description="Max events to claim"),
    claim_timeout_minutes: int | None = Query(
        None, ge=1, description="Lease age after which a claim is reclaimed"
    ),
):
    """
    Run one cadence claim pass.

    Safe to call concurrently and at any frequency; due events are claimed
    atomically and orphaned claims are reclaimed first. Omitted parameters
    fall back to the configured defaults.
    """
    verify_internal_secret(x_internal_secret)

    with SessionLocal() as db:
        summary = claim_service.run_claim_pass(
            db,
            batch_size=batch_size,
            claim_timeout_minutes=claim_timeout_minutes,
            config=CadenceConfig.from_settings(),
        )

    return CadencePassResponse(**summary.as_dict())
