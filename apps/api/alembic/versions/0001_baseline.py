"""Baseline migration - users, transcripts, integrations, Zapier, GDPR and jobs

Revision ID: 0001_baseline
Revises: 
Create Date: 2026-10-19

Creates every table used by the API and worker.
"""
from typing import Sequence, Union

from alembic import op


# revision identifiers, used by Alembic.
revision: str = '0001_baseline'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create all tables."""

    op.execute('CREATE EXTENSION IF NOT EXISTS pgcrypto')  # For gen_random_uuid()

    # ==========================================================================
    # Users, invites, registration failures
    # ==========================================================================
    op.execute('''
        CREATE TABLE users (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            email VARCHAR(255) UNIQUE NOT NULL,
            display_name VARCHAR(255) NOT NULL,
            role VARCHAR(20) NOT NULL DEFAULT 'sales_user',
            google_subject VARCHAR(255) UNIQUE,
            avatar_url VARCHAR(500),
            token_version INTEGER NOT NULL DEFAULT 1,
            is_active BOOLEAN NOT NULL DEFAULT true,
            last_login_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')

    op.execute('''
        CREATE TABLE user_invites (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            email VARCHAR(255) NOT NULL,
            role VARCHAR(20) NOT NULL,
            invited_by_user_id UUID REFERENCES users(id) ON DELETE SET NULL,
            expires_at TIMESTAMPTZ,
            accepted_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')
    op.execute('CREATE INDEX ix_user_invites_email ON user_invites(email)')

    op.execute('''
        CREATE TABLE registration_failures (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id UUID REFERENCES users(id) ON DELETE SET NULL,
            user_email VARCHAR(255) NOT NULL,
            error_code VARCHAR(50),
            error_message TEXT NOT NULL,
            attempted_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            alert_sent BOOLEAN NOT NULL DEFAULT false,
            alert_sent_at TIMESTAMPTZ,
            resolved BOOLEAN NOT NULL DEFAULT false,
            resolved_at TIMESTAMPTZ,
            resolution_method VARCHAR(100)
        )
    ''')
    op.execute(
        'CREATE INDEX ix_registration_failures_alert '
        'ON registration_failures(alert_sent, attempted_at)'
    )

    # ==========================================================================
    # Accounts, transcripts, analyses
    # ==========================================================================
    op.execute('''
        CREATE TABLE accounts (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            name VARCHAR(100) NOT NULL,
            deal_stage VARCHAR(50),
            notes TEXT,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT ck_accounts_name_length CHECK (length(name) BETWEEN 1 AND 100)
        )
    ''')
    op.execute('CREATE INDEX ix_accounts_user ON accounts(user_id, created_at)')

    op.execute('''
        CREATE TABLE transcripts (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            account_id UUID REFERENCES accounts(id) ON DELETE SET NULL,
            title VARCHAR(200) NOT NULL,
            participants JSONB NOT NULL DEFAULT '[]'::jsonb,
            meeting_date TIMESTAMPTZ NOT NULL DEFAULT now(),
            duration_minutes INTEGER NOT NULL,
            raw_text TEXT NOT NULL,
            source VARCHAR(20) NOT NULL DEFAULT 'upload',
            external_id VARCHAR(255),
            status VARCHAR(20) NOT NULL DEFAULT 'uploaded',
            error_message TEXT,
            processed_at TIMESTAMPTZ,
            is_archived BOOLEAN NOT NULL DEFAULT false,
            archived_at TIMESTAMPTZ,
            archived_by UUID REFERENCES users(id) ON DELETE SET NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT ck_transcripts_title_length CHECK (length(title) BETWEEN 1 AND 200),
            CONSTRAINT ck_transcripts_duration_positive CHECK (duration_minutes > 0),
            CONSTRAINT ck_transcripts_raw_text_length CHECK (length(raw_text) <= 1000000)
        )
    ''')
    op.execute('CREATE INDEX ix_transcripts_user ON transcripts(user_id, created_at)')
    op.execute('CREATE INDEX ix_transcripts_status ON transcripts(status)')
    op.execute('CREATE INDEX ix_transcripts_archived ON transcripts(user_id, is_archived)')

    op.execute('''
        CREATE TABLE prompts (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            name VARCHAR(200) NOT NULL,
            prompt_text TEXT NOT NULL,
            ai_provider VARCHAR(20) NOT NULL DEFAULT 'openai',
            is_active BOOLEAN NOT NULL DEFAULT false,
            is_default BOOLEAN NOT NULL DEFAULT false,
            version_number INTEGER NOT NULL DEFAULT 1,
            created_by_user_id UUID REFERENCES users(id) ON DELETE SET NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')

    op.execute('''
        CREATE TABLE conversation_analysis (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            transcript_id UUID NOT NULL REFERENCES transcripts(id) ON DELETE CASCADE,
            user_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            challenger_scores JSONB,
            guidance JSONB,
            email_followup JSONB,
            participants JSONB,
            call_summary JSONB,
            key_takeaways JSONB,
            recommendations JSONB,
            reasoning JSONB,
            action_plan JSONB,
            heat_level VARCHAR(10),
            analysis_strategy VARCHAR(30),
            ai_provider VARCHAR(20),
            ai_model VARCHAR(100),
            prompt_id UUID REFERENCES prompts(id) ON DELETE SET NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')
    op.execute(
        'CREATE INDEX ix_conversation_analysis_transcript '
        'ON conversation_analysis(transcript_id, created_at)'
    )
    op.execute(
        'CREATE INDEX ix_conversation_analysis_user '
        'ON conversation_analysis(user_id, created_at)'
    )

    op.execute('''
        CREATE TABLE analysis_quality_flags (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            analysis_id UUID NOT NULL REFERENCES conversation_analysis(id) ON DELETE CASCADE,
            flag_type VARCHAR(30) NOT NULL,
            details JSONB NOT NULL DEFAULT '{}'::jsonb,
            flagged_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            resolved_at TIMESTAMPTZ,
            resolved_by UUID REFERENCES users(id) ON DELETE SET NULL
        )
    ''')
    op.execute('CREATE INDEX ix_quality_flags_flagged_at ON analysis_quality_flags(flagged_at)')

    # ==========================================================================
    # GDPR
    # ==========================================================================
    op.execute('''
        CREATE TABLE user_consent (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id UUID UNIQUE NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            granular_consents JSONB NOT NULL DEFAULT '{}'::jsonb,
            consent_version VARCHAR(20) NOT NULL DEFAULT '1.0',
            legal_basis VARCHAR(255) NOT NULL,
            consent_date TIMESTAMPTZ NOT NULL DEFAULT now(),
            withdrawal_date TIMESTAMPTZ,
            renewal_required BOOLEAN NOT NULL DEFAULT false,
            ip_address VARCHAR(64),
            user_agent VARCHAR(500),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')

    # Append-only; no FK so entries outlive the user they describe
    op.execute('''
        CREATE TABLE gdpr_audit_log (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            event_type VARCHAR(30) NOT NULL,
            user_id UUID,
            admin_id UUID,
            details JSONB NOT NULL DEFAULT '{}'::jsonb,
            legal_basis VARCHAR(255),
            status VARCHAR(20) NOT NULL DEFAULT 'completed',
            ip_address VARCHAR(64),
            user_agent VARCHAR(500),
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')
    op.execute('CREATE INDEX ix_gdpr_audit_log_user ON gdpr_audit_log(user_id, created_at)')
    op.execute('CREATE INDEX ix_gdpr_audit_log_event ON gdpr_audit_log(event_type, created_at)')

    op.execute('''
        CREATE TABLE data_export_requests (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            format VARCHAR(10) NOT NULL,
            status VARCHAR(20) NOT NULL DEFAULT 'pending',
            options JSONB NOT NULL DEFAULT '{}'::jsonb,
            export_content TEXT,
            download_token VARCHAR(64) UNIQUE,
            error_message TEXT,
            expires_at TIMESTAMPTZ,
            completed_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')
    op.execute(
        'CREATE INDEX ix_data_export_requests_user '
        'ON data_export_requests(user_id, created_at)'
    )

    op.execute('''
        CREATE TABLE deletion_requests (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id UUID REFERENCES users(id) ON DELETE SET NULL,
            user_email VARCHAR(255) NOT NULL,
            reason TEXT,
            status VARCHAR(20) NOT NULL DEFAULT 'pending',
            immediate_delete BOOLEAN NOT NULL DEFAULT false,
            scheduled_for TIMESTAMPTZ NOT NULL,
            grace_period_end TIMESTAMPTZ NOT NULL,
            recovery_token VARCHAR(64) UNIQUE,
            error_message TEXT,
            completed_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')
    op.execute(
        'CREATE INDEX ix_deletion_requests_status '
        'ON deletion_requests(status, grace_period_end)'
    )

    # ==========================================================================
    # Integrations
    # ==========================================================================
    op.execute('''
        CREATE TABLE integration_connections (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            connection_name VARCHAR(30) NOT NULL,
            status VARCHAR(20) NOT NULL DEFAULT 'active',
            credentials JSONB NOT NULL DEFAULT '{}'::jsonb,
            configuration JSONB NOT NULL DEFAULT '{}'::jsonb,
            external_account_id VARCHAR(255),
            last_sync_at TIMESTAMPTZ,
            sync_frequency_minutes INTEGER NOT NULL DEFAULT 60,
            last_error VARCHAR(500),
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT uq_integration_connection_user_provider UNIQUE (user_id, connection_name)
        )
    ''')

    op.execute('''
        CREATE TABLE oauth_states (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            state VARCHAR(255) UNIQUE NOT NULL,
            user_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            provider VARCHAR(30) NOT NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')

    op.execute('''
        CREATE TABLE processed_webhook_events (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            provider VARCHAR(30) NOT NULL,
            event_id VARCHAR(255) NOT NULL,
            event_type VARCHAR(100) NOT NULL,
            payload JSONB NOT NULL DEFAULT '{}'::jsonb,
            received_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT uq_processed_webhook_event UNIQUE (provider, event_id)
        )
    ''')
    op.execute(
        'CREATE INDEX ix_processed_webhook_events_received_at '
        'ON processed_webhook_events(received_at)'
    )

    # ==========================================================================
    # Zapier
    # ==========================================================================
    op.execute('''
        CREATE TABLE zapier_api_keys (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            key_name VARCHAR(100) NOT NULL,
            api_key_hash VARCHAR(64) UNIQUE NOT NULL,
            key_prefix VARCHAR(16) NOT NULL,
            scopes JSONB NOT NULL DEFAULT '[]'::jsonb,
            is_active BOOLEAN NOT NULL DEFAULT true,
            expires_at TIMESTAMPTZ,
            rate_limit_per_hour INTEGER NOT NULL DEFAULT 1000,
            usage_count INTEGER NOT NULL DEFAULT 0,
            last_used TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')
    op.execute('CREATE INDEX ix_zapier_api_keys_user ON zapier_api_keys(user_id)')

    op.execute('''
        CREATE TABLE zapier_webhooks (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            api_key_id UUID NOT NULL REFERENCES zapier_api_keys(id) ON DELETE CASCADE,
            webhook_url VARCHAR(2048) NOT NULL,
            trigger_type VARCHAR(50) NOT NULL,
            secret_token VARCHAR(255) NOT NULL,
            filters JSONB NOT NULL DEFAULT '{}'::jsonb,
            is_active BOOLEAN NOT NULL DEFAULT true,
            success_count INTEGER NOT NULL DEFAULT 0,
            failure_count INTEGER NOT NULL DEFAULT 0,
            last_triggered TIMESTAMPTZ,
            last_error TEXT,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')
    op.execute(
        'CREATE INDEX ix_zapier_webhooks_user_trigger '
        'ON zapier_webhooks(user_id, trigger_type, is_active)'
    )

    op.execute('''
        CREATE TABLE zapier_webhook_logs (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            webhook_id UUID NOT NULL REFERENCES zapier_webhooks(id) ON DELETE CASCADE,
            delivery_id VARCHAR(64) NOT NULL,
            trigger_type VARCHAR(50) NOT NULL,
            payload JSONB NOT NULL DEFAULT '{}'::jsonb,
            delivery_status VARCHAR(20) NOT NULL DEFAULT 'pending',
            attempt INTEGER NOT NULL DEFAULT 1,
            http_status_code INTEGER,
            response_body TEXT,
            error_message TEXT,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            delivered_at TIMESTAMPTZ
        )
    ''')
    op.execute(
        'CREATE INDEX ix_zapier_webhook_logs_webhook '
        'ON zapier_webhook_logs(webhook_id, created_at)'
    )

    op.execute('''
        CREATE TABLE zapier_connection_verifications (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            success BOOLEAN NOT NULL,
            test_results JSONB NOT NULL DEFAULT '{}'::jsonb,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')

    # ==========================================================================
    # Job queue
    # ==========================================================================
    op.execute('''
        CREATE TABLE jobs (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id UUID REFERENCES users(id) ON DELETE SET NULL,
            job_type VARCHAR(50) NOT NULL,
            payload JSONB NOT NULL DEFAULT '{}'::jsonb,
            run_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            status VARCHAR(20) NOT NULL DEFAULT 'pending',
            attempts INTEGER NOT NULL DEFAULT 0,
            max_attempts INTEGER NOT NULL DEFAULT 3,
            last_error TEXT,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            completed_at TIMESTAMPTZ,
            idempotency_key VARCHAR(255)
        )
    ''')
    op.execute("CREATE INDEX idx_jobs_pending ON jobs(status, run_at) WHERE status = 'pending'")
    op.execute('CREATE INDEX idx_jobs_user ON jobs(user_id, created_at)')
    op.execute(
        'CREATE UNIQUE INDEX uq_job_idempotency ON jobs(idempotency_key) '
        'WHERE idempotency_key IS NOT NULL'
    )


def downgrade() -> None:
    """Drop all tables (reverse dependency order)."""
    for table in (
        'jobs',
        'zapier_connection_verifications',
        'zapier_webhook_logs',
        'zapier_webhooks',
        'zapier_api_keys',
        'processed_webhook_events',
        'oauth_states',
        'integration_connections',
        'deletion_requests',
        'data_export_requests',
        'gdpr_audit_log',
        'user_consent',
        'analysis_quality_flags',
        'conversation_analysis',
        'prompts',
        'transcripts',
        'accounts',
        'registration_failures',
        'user_invites',
        'users',
    ):
        op.execute(f'DROP TABLE IF EXISTS {table} CASCADE')
