"""Baseline migration - cadence engine tables

Revision ID: 0001_cadence_baseline
Revises:
Create Date: 2024-01-01

Creates organizations/contacts/quotes (the columns the cadence engine reads),
cadence events, tasks, and the email template/log/suppression tables.
"""
from typing import Sequence, Union

from alembic import op


# revision identifiers, used by Alembic.
revision: str = '0001_cadence_baseline'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create cadence tables."""

    op.execute('CREATE EXTENSION IF NOT EXISTS pgcrypto')  # For gen_random_uuid()

    # ==========================================================================
    # Organizations
    # ==========================================================================
    op.execute('''
        CREATE TABLE organizations (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            name VARCHAR(255) NOT NULL,
            timezone VARCHAR(50) NOT NULL DEFAULT 'Europe/Lisbon',
            send_window_start VARCHAR(5) NOT NULL DEFAULT '09:00',
            send_window_end VARCHAR(5) NOT NULL DEFAULT '18:00',
            priority_threshold NUMERIC(12, 2),
            auto_email_enabled BOOLEAN NOT NULL DEFAULT TRUE,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')

    # ==========================================================================
    # Contacts + Quotes
    # ==========================================================================
    op.execute('''
        CREATE TABLE contacts (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            organization_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
            name VARCHAR(255),
            company VARCHAR(255),
            email VARCHAR(320),
            phone VARCHAR(50),
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')
    op.execute('CREATE INDEX idx_contacts_org ON contacts(organization_id)')

    op.execute('''
        CREATE TABLE quotes (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            organization_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
            contact_id UUID REFERENCES contacts(id) ON DELETE SET NULL,
            title VARCHAR(255) NOT NULL,
            reference VARCHAR(100),
            value NUMERIC(12, 2),
            notes TEXT,
            business_status VARCHAR(20) NOT NULL DEFAULT 'draft',
            ritmo_stage VARCHAR(20) NOT NULL DEFAULT 'none',
            cadence_run_id INTEGER NOT NULL DEFAULT 0,
            first_sent_at TIMESTAMPTZ,
            sent_at TIMESTAMPTZ,
            last_activity_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')
    op.execute('CREATE INDEX idx_quotes_org_status ON quotes(organization_id, business_status)')
    op.execute('CREATE INDEX idx_quotes_org_stage ON quotes(organization_id, ritmo_stage)')

    # ==========================================================================
    # Cadence Events
    # ==========================================================================
    op.execute('''
        CREATE TABLE cadence_events (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            quote_id UUID NOT NULL REFERENCES quotes(id) ON DELETE CASCADE,
            organization_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
            cadence_run_id INTEGER NOT NULL,
            event_type VARCHAR(20) NOT NULL,
            scheduled_for TIMESTAMPTZ NOT NULL,
            status VARCHAR(20) NOT NULL DEFAULT 'scheduled',
            priority VARCHAR(10),
            claimed_at TIMESTAMPTZ,
            claimed_by VARCHAR(255),
            attempts INTEGER NOT NULL DEFAULT 0,
            processed_at TIMESTAMPTZ,
            cancel_reason VARCHAR(30),
            skip_reason VARCHAR(30),
            last_error TEXT,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')
    # Claim query: due scheduled events
    op.execute('''
        CREATE INDEX idx_cadence_events_due
        ON cadence_events (status, scheduled_for)
        WHERE status = 'scheduled'
    ''')
    # Orphan reclaim: stale leases
    op.execute('''
        CREATE INDEX idx_cadence_events_claimed
        ON cadence_events (claimed_at)
        WHERE status = 'claimed'
    ''')
    op.execute('''
        CREATE INDEX idx_cadence_events_quote_run
        ON cadence_events (quote_id, cadence_run_id, status)
    ''')
    op.execute('CREATE INDEX idx_cadence_events_org ON cadence_events(organization_id, scheduled_for)')

    # ==========================================================================
    # Tasks
    # ==========================================================================
    op.execute('''
        CREATE TABLE tasks (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            organization_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
            quote_id UUID NOT NULL REFERENCES quotes(id) ON DELETE CASCADE,
            cadence_event_id UUID REFERENCES cadence_events(id) ON DELETE SET NULL,
            task_type VARCHAR(20) NOT NULL,
            title VARCHAR(255) NOT NULL,
            description TEXT,
            priority VARCHAR(10) NOT NULL DEFAULT 'LOW',
            due_at TIMESTAMPTZ,
            status VARCHAR(20) NOT NULL DEFAULT 'pending',
            completed_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')
    op.execute('CREATE INDEX idx_tasks_org_status ON tasks(organization_id, status)')
    op.execute('CREATE INDEX idx_tasks_quote ON tasks(quote_id)')
    # At most one task per cadence event
    op.execute('''
        CREATE UNIQUE INDEX uq_tasks_cadence_event
        ON tasks (cadence_event_id)
        WHERE cadence_event_id IS NOT NULL
    ''')

    # ==========================================================================
    # Email templates, logs, suppressions
    # ==========================================================================
    op.execute('''
        CREATE TABLE email_templates (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            organization_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
            code VARCHAR(20) NOT NULL,
            subject VARCHAR(255),
            body TEXT NOT NULL,
            is_active BOOLEAN NOT NULL DEFAULT TRUE,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT uq_email_template_code UNIQUE (organization_id, code)
        )
    ''')

    op.execute('''
        CREATE TABLE email_logs (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            organization_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
            cadence_event_id UUID REFERENCES cadence_events(id) ON DELETE SET NULL,
            template_code VARCHAR(20),
            recipient_email VARCHAR(320) NOT NULL,
            subject VARCHAR(255) NOT NULL,
            body TEXT NOT NULL,
            status VARCHAR(20) NOT NULL,
            provider_message_id VARCHAR(255),
            error TEXT,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            sent_at TIMESTAMPTZ
        )
    ''')
    op.execute('CREATE INDEX idx_email_logs_org_created ON email_logs(organization_id, created_at)')
    # One delivered email per cadence event
    op.execute('''
        CREATE UNIQUE INDEX uq_email_logs_event_sent
        ON email_logs (cadence_event_id)
        WHERE status = 'sent'
    ''')

    op.execute('''
        CREATE TABLE email_suppressions (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            organization_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
            email VARCHAR(320) NOT NULL,
            reason VARCHAR(30) NOT NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT uq_email_suppression UNIQUE (organization_id, email)
        )
    ''')
    op.execute('CREATE INDEX idx_email_suppressions_org ON email_suppressions(organization_id)')


def downgrade() -> None:
    """Drop cadence tables."""
    op.execute('DROP TABLE IF EXISTS email_suppressions CASCADE')
    op.execute('DROP TABLE IF EXISTS email_logs CASCADE')
    op.execute('DROP TABLE IF EXISTS email_templates CASCADE')
    op.execute('DROP TABLE IF EXISTS tasks CASCADE')
    op.execute('DROP TABLE IF EXISTS cadence_events CASCADE')
    op.execute('DROP TABLE IF EXISTS quotes CASCADE')
    op.execute('DROP TABLE IF EXISTS contacts CASCADE')
    op.execute('DROP TABLE IF EXISTS organizations CASCADE')
