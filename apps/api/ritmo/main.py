"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from sqlalchemy import text

from ritmo.core.config import settings
from ritmo.core.error_tracking import init_sentry
from ritmo.db.session import engine
from ritmo.routers import internal
from ritmo.utils.business_days import validate_calendar_settings

init_sentry(with_fastapi=True)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Misconfigured calendars are fatal at startup
    validate_calendar_settings()
    logging.getLogger(__name__).info("Ritmo API started (env=%s)", settings.ENV)
    yield


app = FastAPI(
    title="Ritmo Cadence API",
    version=settings.VERSION,
    lifespan=lifespan,
)

app.include_router(internal.router)


@app.get("/health")
def health():
    """
    Health check endpoint.

    Verifies database connectivity and returns environment info.
    """
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))
    return {"status": "ok", "env": settings.ENV, "version": settings.VERSION}
