"""Sentry setup shared by the API and the worker."""

import logging

import sentry_sdk

from ritmo.core.config import settings

logger = logging.getLogger(__name__)


def init_sentry(*, with_fastapi: bool = False) -> bool:
    """Initialize Sentry when a DSN is configured outside dev. Returns True if enabled."""
    if not settings.SENTRY_DSN or settings.ENV == "dev":
        return False

    from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

    integrations = [SqlalchemyIntegration()]
    if with_fastapi:
        from sentry_sdk.integrations.fastapi import FastApiIntegration

        integrations.append(FastApiIntegration(transaction_style="endpoint"))

    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        environment=settings.ENV,
        release=settings.VERSION,
        integrations=integrations,
        traces_sample_rate=0.1,
        send_default_pii=False,  # Don't send PII to Sentry
    )
    logger.info("Sentry initialized for error tracking")
    return True
