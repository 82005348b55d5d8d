"""
Test configuration and fixtures.

Provides:
- A fresh schema per test (SQLite in-memory by default; set DATABASE_URL
  to a Postgres URL to run the suite, including SKIP LOCKED tests, there)
- Organization / contact / quote factories
- A recording email transport
- HTTPX AsyncClient for the internal endpoints
"""
import os
import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import AsyncGenerator, Generator

# Must be set before ritmo.core.config is imported
os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from ritmo.core.cadence_config import CadenceConfig
from ritmo.db.base import Base
from ritmo.db.enums import BusinessStatus
from ritmo.db.models import Contact, EmailTemplate, Organization, Quote
from ritmo.services.collaborators import SendResult


# =============================================================================
# Database Fixtures
# =============================================================================


@pytest.fixture(scope="function")
def db_engine() -> Generator[Engine, None, None]:
    """Engine with a freshly created schema, dropped after the test."""
    url = os.environ["DATABASE_URL"]
    if url.startswith("sqlite"):
        engine = create_engine(
            "sqlite+pysqlite:///:memory:",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    else:
        engine = create_engine(url, connect_args={"options": "-c timezone=utc"})
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture(scope="function")
def session_factory(db_engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture(scope="function")
def db(session_factory: sessionmaker) -> Generator[Session, None, None]:
    """Session on the per-test schema. App code commits freely."""
    session = session_factory()
    yield session
    session.rollback()
    session.close()


@pytest.fixture(scope="function")
def cadence_config() -> CadenceConfig:
    """Default cadence settings, independent of the environment."""
    return CadenceConfig()


# =============================================================================
# Domain Fixtures
# =============================================================================


@pytest.fixture(scope="function")
def test_org(db: Session) -> Organization:
    """Create a test organization (Lisbon, 09:00-18:00 window)."""
    org = Organization(
        id=uuid.uuid4(),
        name="Test Organization",
        timezone="Europe/Lisbon",
        send_window_start="09:00",
        send_window_end="18:00",
        auto_email_enabled=True,
    )
    db.add(org)
    db.commit()
    return org


@pytest.fixture(scope="function")
def test_contact(db: Session, test_org: Organization) -> Contact:
    contact = Contact(
        organization_id=test_org.id,
        name="Ana Silva",
        company="Silva & Filhos",
        email="ana@silva.example",
        phone="+351 900 000 000",
    )
    db.add(contact)
    db.commit()
    return contact


@pytest.fixture(scope="function")
def quote_factory(db: Session):
    """Create quotes with sensible defaults."""

    def _make(
        org: Organization,
        contact: Contact | None = None,
        value: Decimal | None = Decimal("1500.00"),
        business_status: str = BusinessStatus.SENT.value,
        title: str = "Office fit-out",
    ) -> Quote:
        quote = Quote(
            organization_id=org.id,
            contact_id=contact.id if contact else None,
            title=title,
            reference=f"Q-{uuid.uuid4().hex[:6].upper()}",
            value=value,
            business_status=business_status,
        )
        db.add(quote)
        db.commit()
        return quote

    return _make


@pytest.fixture(scope="function")
def test_quote(quote_factory, test_org: Organization, test_contact: Contact) -> Quote:
    """A sent quote worth 1500 (HIGH priority call)."""
    return quote_factory(test_org, test_contact)


@pytest.fixture(scope="function")
def email_templates(db: Session, test_org: Organization) -> list[EmailTemplate]:
    templates = [
        EmailTemplate(
            organization_id=test_org.id,
            code=code,
            subject=f"{code}: {{{{quote_title}}}}",
            body="<p>Hello {{contact_name}}, about {{quote_reference}} ({{quote_value}} EUR)</p>",
        )
        for code in ("T2", "T3", "T5")
    ]
    db.add_all(templates)
    db.commit()
    return templates


# =============================================================================
# Collaborator doubles
# =============================================================================


@dataclass
class RecordingTransport:
    """EmailTransport that records calls and returns queued results."""

    results: list[SendResult] = field(default_factory=list)
    calls: list[dict] = field(default_factory=list)

    def send_templated_email(self, **kwargs) -> SendResult:
        self.calls.append(kwargs)
        if self.results:
            return self.results.pop(0)
        return SendResult(success=True, message_id=f"msg-{len(self.calls)}")


@pytest.fixture(scope="function")
def transport() -> RecordingTransport:
    return RecordingTransport()


# =============================================================================
# HTTP client
# =============================================================================


@pytest.fixture(scope="function")
async def client() -> AsyncGenerator[AsyncClient, None]:
    """Unauthenticated AsyncClient for the API app."""
    from ritmo.main import app

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c
