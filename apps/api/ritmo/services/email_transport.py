"""Resend email transport for cadence emails.

Renders the org's template for a cadence step and sends it via the Resend API.
Each cadence event maps to one idempotency key, so a replayed event never
delivers twice; outcomes are recorded in EmailLog (added to the caller's
session, committed together with the event resolution).
"""

from __future__ import annotations

import html as html_module
import logging
import re
from datetime import datetime, timezone
from uuid import UUID

import httpx
from sqlalchemy.orm import Session

from ritmo.core.config import settings
from ritmo.core.structured_logging import build_log_context, mask_email
from ritmo.db.enums import EmailStatus
from ritmo.db.models import EmailLog, EmailTemplate
from ritmo.services.collaborators import SendResult

logger = logging.getLogger(__name__)

RESEND_SEND_URL = "https://api.resend.com/emails"
RESEND_TIMEOUT_SECONDS = 20.0
RETRYABLE_STATUSES = {408, 429, 500, 502, 503, 504}

VARIABLE_PATTERN = re.compile(r"\{\{(\w+)\}\}")

ERROR_TEMPLATE_NOT_FOUND = "template_not_found"
ERROR_EMAIL_NOT_CONFIGURED = "email_not_configured"


def render_template(subject: str, body: str, variables: dict[str, str]) -> tuple[str, str]:
    """
    Render a template with variable substitution.

    Variables in format {{variable_name}} are replaced with values.
    Missing variables are replaced with empty string.

    Returns (rendered_subject, rendered_body).
    """

    def replace_var(match: re.Match) -> str:
        return variables.get(match.group(1), "")

    return VARIABLE_PATTERN.sub(replace_var, subject), VARIABLE_PATTERN.sub(replace_var, body)


def _html_to_text(content: str) -> str:
    text = re.sub(r"<(script|style)[^>]*>.*?</\1>", "", content, flags=re.DOTALL | re.I)
    text = re.sub(r"<[^>]+>", " ", text)
    text = re.sub(r"\s+", " ", text).strip()
    return html_module.unescape(text)


def get_active_template(db: Session, org_id: UUID, code: str) -> EmailTemplate | None:
    return (
        db.query(EmailTemplate)
        .filter(
            EmailTemplate.organization_id == org_id,
            EmailTemplate.code == code,
            EmailTemplate.is_active.is_(True),
        )
        .first()
    )


def idempotency_key_for_event(cadence_event_id: UUID) -> str:
    return f"cadence-event/{cadence_event_id}"


class ResendEmailTransport:
    """EmailTransport backed by the Resend HTTP API."""

    key = "resend"

    def __init__(
        self,
        db: Session,
        *,
        api_key: str | None = None,
        from_email: str | None = None,
        client: httpx.Client | None = None,
    ):
        self.db = db
        self.api_key = settings.RESEND_API_KEY if api_key is None else api_key
        self.from_email = from_email or settings.EMAIL_FROM
        self._client = client

    def is_configured(self) -> bool:
        return bool(self.api_key)

    def send_templated_email(
        self,
        *,
        organization_id: UUID,
        cadence_event_id: UUID,
        template_code: str,
        recipient: str,
        variables: dict[str, str],
    ) -> SendResult:
        log_context = build_log_context(org_id=organization_id, event_id=cadence_event_id)

        # Replay after a crash between send and commit of a previous attempt
        already_sent = (
            self.db.query(EmailLog)
            .filter(
                EmailLog.cadence_event_id == cadence_event_id,
                EmailLog.status == EmailStatus.SENT.value,
            )
            .first()
        )
        if already_sent:
            logger.info("Cadence email already sent, skipping delivery", extra=log_context)
            return SendResult(success=True, message_id=already_sent.provider_message_id)

        template = get_active_template(self.db, organization_id, template_code)
        if not template:
            return SendResult(success=False, error=ERROR_TEMPLATE_NOT_FOUND, permanent=True)
        if not self.is_configured():
            logger.warning("RESEND_API_KEY not set - cadence email not sent", extra=log_context)
            return SendResult(success=False, error=ERROR_EMAIL_NOT_CONFIGURED, permanent=True)

        subject, body = render_template(template.subject or "", template.body, variables)
        payload: dict[str, object] = {
            "from": self.from_email,
            "to": [recipient],
            "subject": subject,
            "html": body,
        }
        text = _html_to_text(body)
        if text:
            payload["text"] = text
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "Idempotency-Key": idempotency_key_for_event(cadence_event_id),
        }

        try:
            response = self._post(headers, payload)
        except httpx.TimeoutException:
            return self._record_failure(
                organization_id, cadence_event_id, template_code, recipient, subject, body,
                "Connection timeout", permanent=False,
            )
        except httpx.RequestError as exc:
            return self._record_failure(
                organization_id, cadence_event_id, template_code, recipient, subject, body,
                f"Connection error: {exc.__class__.__name__}", permanent=False,
            )

        # 409 = idempotency conflict, the message already went out
        if 200 <= response.status_code < 300 or response.status_code == 409:
            message_id = _extract(response, "id")
            self.db.add(
                EmailLog(
                    organization_id=organization_id,
                    cadence_event_id=cadence_event_id,
                    template_code=template_code,
                    recipient_email=recipient,
                    subject=subject,
                    body=body,
                    status=EmailStatus.SENT.value,
                    provider_message_id=message_id,
                    sent_at=datetime.now(timezone.utc),
                )
            )
            logger.info(
                "Cadence email sent to %s, message_id=%s",
                mask_email(recipient),
                message_id,
                extra=log_context,
            )
            return SendResult(success=True, message_id=message_id)

        error_msg = f"Resend API error: {response.status_code}"
        detail = _extract(response, "message") or _extract(response, "error")
        if detail:
            error_msg = f"{error_msg} ({detail})"
        return self._record_failure(
            organization_id, cadence_event_id, template_code, recipient, subject, body,
            error_msg, permanent=response.status_code not in RETRYABLE_STATUSES,
        )

    def _post(self, headers: dict[str, str], payload: dict[str, object]) -> httpx.Response:
        if self._client is not None:
            return self._client.post(RESEND_SEND_URL, headers=headers, json=payload)
        with httpx.Client(timeout=RESEND_TIMEOUT_SECONDS) as client:
            return client.post(RESEND_SEND_URL, headers=headers, json=payload)

    def _record_failure(
        self,
        organization_id: UUID,
        cadence_event_id: UUID,
        template_code: str,
        recipient: str,
        subject: str,
        body: str,
        error: str,
        *,
        permanent: bool,
    ) -> SendResult:
        self.db.add(
            EmailLog(
                organization_id=organization_id,
                cadence_event_id=cadence_event_id,
                template_code=template_code,
                recipient_email=recipient,
                subject=subject,
                body=body,
                status=EmailStatus.FAILED.value,
                error=error,
            )
        )
        logger.warning(
            "Resend error for %s: %s",
            mask_email(recipient),
            error,
            extra=build_log_context(org_id=organization_id, event_id=cadence_event_id),
        )
        return SendResult(success=False, error=error, permanent=permanent)


def _extract(response: httpx.Response, key: str) -> str | None:
    try:
        data = response.json()
    except ValueError:
        return None
    if isinstance(data, dict):
        value = data.get(key)
        if isinstance(value, str) and value:
            return value
    return None
