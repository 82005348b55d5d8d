"""HTTP service entrypoint for the cadence worker (health endpoint + loop)."""

from __future__ import annotations

import asyncio
import contextlib
import os
from datetime import datetime, timedelta, timezone

from fastapi import FastAPI

from ritmo.core.config import settings
from ritmo.worker import status as worker_status
from ritmo.worker import worker_loop

# Passes missed before the worker reports itself degraded
STALE_AFTER_INTERVALS = 3

app = FastAPI(title="Ritmo Cadence Worker", version=settings.VERSION)
_worker_task: asyncio.Task | None = None


@app.get("/health")
def health() -> dict:
    """Liveness plus the outcome of the latest claim pass."""
    now = datetime.now(timezone.utc)
    stale_after = timedelta(seconds=settings.WORKER_POLL_INTERVAL * STALE_AFTER_INTERVALS)
    last_pass_at = worker_status.last_pass_at
    degraded = worker_status.consecutive_errors >= STALE_AFTER_INTERVALS or (
        last_pass_at is not None and now - last_pass_at > stale_after
    )
    return {
        "status": "degraded" if degraded else "ok",
        "last_pass_at": last_pass_at.isoformat() if last_pass_at else None,
        "last_pass": worker_status.last_summary,
        "consecutive_errors": worker_status.consecutive_errors,
    }


@app.on_event("startup")
async def _startup() -> None:
    global _worker_task
    _worker_task = asyncio.create_task(worker_loop())


@app.on_event("shutdown")
async def _shutdown() -> None:
    if _worker_task:
        _worker_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await _worker_task


def main() -> None:
    import uvicorn

    port = int(os.getenv("PORT", "8080"))
    host = os.getenv("HOST", "0.0.0.0")
    uvicorn.run("ritmo.worker_service:app", host=host, port=port)


if __name__ == "__main__":
    main()
