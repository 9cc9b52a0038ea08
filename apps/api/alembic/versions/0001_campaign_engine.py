"""Campaign engine baseline - tenants, patients, templates, campaigns, sends, jobs.

Revision ID: 0001_campaign_engine
Revises:
Create Date: 2026-10-18

Creates:
- clinics, patients (read-only to the engine)
- message_templates
- campaigns, campaign_steps
- campaign_sends (one pending row per campaign/patient)
- jobs
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '0001_campaign_engine'
down_revision = None
branch_labels = None
depends_on = None

JSON_TYPE = sa.JSON().with_variant(postgresql.JSONB(astext_type=sa.Text()), 'postgresql')


def upgrade() -> None:
    # ==========================================================================
    # Tenants and recipients
    # ==========================================================================
    op.create_table(
        'clinics',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('phone', sa.String(50), nullable=True),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('timezone', sa.String(64), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )

    op.create_table(
        'patients',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('clinic_id', sa.Uuid(), nullable=False),
        sa.Column('first_name', sa.String(100), nullable=False),
        sa.Column('last_name', sa.String(100), nullable=False),
        sa.Column('date_of_birth', sa.Date(), nullable=True),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('phone', sa.String(50), nullable=True),
        sa.Column('push_token', sa.String(512), nullable=True),
        sa.Column('has_portal_account', sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column('status', sa.String(20), server_default='active', nullable=False),
        sa.Column('marketing_opt_in', sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['clinic_id'], ['clinics.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_patients_clinic_status', 'patients', ['clinic_id', 'status'])

    # ==========================================================================
    # Templates and campaign definitions
    # ==========================================================================
    op.create_table(
        'message_templates',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('clinic_id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('sms_body', sa.Text(), nullable=True),
        sa.Column('email_subject', sa.String(500), nullable=True),
        sa.Column('email_body', sa.Text(), nullable=True),
        sa.Column('email_html_body', sa.Text(), nullable=True),
        sa.Column('push_title', sa.String(200), nullable=True),
        sa.Column('push_body', sa.Text(), nullable=True),
        sa.Column('in_app_title', sa.String(200), nullable=True),
        sa.Column('in_app_body', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['clinic_id'], ['clinics.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_message_templates_clinic', 'message_templates', ['clinic_id'])

    op.create_table(
        'campaigns',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('clinic_id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('status', sa.String(20), server_default='draft', nullable=False),
        sa.Column('trigger_type', sa.String(20), nullable=False),
        sa.Column('trigger_event', sa.String(100), nullable=True),
        sa.Column('trigger_schedule', sa.DateTime(timezone=True), nullable=True),
        sa.Column('trigger_recurrence', JSON_TYPE, nullable=True),
        sa.Column('audience', JSON_TYPE, nullable=True),
        sa.Column('exclude_criteria', JSON_TYPE, nullable=True),
        sa.Column('total_recipients', sa.Integer(), server_default='0', nullable=False),
        sa.Column('total_sent', sa.Integer(), server_default='0', nullable=False),
        sa.Column('total_delivered', sa.Integer(), server_default='0', nullable=False),
        sa.Column('total_failed', sa.Integer(), server_default='0', nullable=False),
        sa.Column('last_run_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['clinic_id'], ['clinics.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_campaigns_clinic_status', 'campaigns', ['clinic_id', 'status'])
    op.create_index('idx_campaigns_trigger', 'campaigns', ['status', 'trigger_type', 'trigger_event'])

    op.create_table(
        'campaign_steps',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('campaign_id', sa.Uuid(), nullable=False),
        sa.Column('step_order', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(200), server_default='', nullable=False),
        sa.Column('step_type', sa.String(20), nullable=False),
        sa.Column('channel', sa.String(20), nullable=True),
        sa.Column('template_id', sa.Uuid(), nullable=True),
        sa.Column('wait_duration', sa.Integer(), nullable=True),
        sa.Column('wait_until', sa.String(200), nullable=True),
        sa.Column('condition', JSON_TYPE, nullable=True),
        sa.Column('branches', JSON_TYPE, nullable=True),
        sa.Column('next_step_id', sa.Uuid(), nullable=True),
        sa.ForeignKeyConstraint(['campaign_id'], ['campaigns.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['template_id'], ['message_templates.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('campaign_id', 'step_order', name='uq_campaign_step_order'),
    )

    # ==========================================================================
    # Pending actions
    # ==========================================================================
    op.create_table(
        'campaign_sends',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('clinic_id', sa.Uuid(), nullable=False),
        sa.Column('campaign_id', sa.Uuid(), nullable=False),
        sa.Column('step_id', sa.Uuid(), nullable=False),
        sa.Column('patient_id', sa.Uuid(), nullable=False),
        sa.Column('status', sa.String(20), server_default='pending', nullable=False),
        sa.Column('origin', sa.String(20), server_default='workflow', nullable=False),
        sa.Column('scheduled_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('trigger_data', JSON_TYPE, nullable=False),
        sa.Column('sent_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('failed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('delivered_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('message_id', sa.String(255), nullable=True),
        sa.Column('error_code', sa.String(100), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('skip_reason', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['clinic_id'], ['clinics.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['campaign_id'], ['campaigns.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['step_id'], ['campaign_steps.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['patient_id'], ['patients.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    # At most one in-flight action per (campaign, patient)
    op.create_index(
        'uq_campaign_sends_one_pending',
        'campaign_sends',
        ['campaign_id', 'patient_id'],
        unique=True,
        postgresql_where=sa.text("status = 'pending'"),
        sqlite_where=sa.text("status = 'pending'"),
    )
    op.create_index('idx_campaign_sends_due', 'campaign_sends', ['status', 'scheduled_at'])
    op.create_index(
        'idx_campaign_sends_campaign_created', 'campaign_sends', ['campaign_id', 'created_at']
    )
    op.create_index('idx_campaign_sends_message', 'campaign_sends', ['message_id'])

    # ==========================================================================
    # Work queue
    # ==========================================================================
    op.create_table(
        'jobs',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('clinic_id', sa.Uuid(), nullable=False),
        sa.Column('job_type', sa.String(50), nullable=False),
        sa.Column('payload', JSON_TYPE, nullable=False),
        sa.Column('run_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('status', sa.String(20), server_default='pending', nullable=False),
        sa.Column('attempts', sa.Integer(), server_default='0', nullable=False),
        sa.Column('max_attempts', sa.Integer(), server_default='3', nullable=False),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('idempotency_key', sa.String(255), nullable=True),
        sa.ForeignKeyConstraint(['clinic_id'], ['clinics.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_jobs_pending', 'jobs', ['status', 'run_at'])
    op.create_index('idx_jobs_clinic', 'jobs', ['clinic_id', 'created_at'])
    op.create_index(
        'uq_job_idempotency',
        'jobs',
        ['idempotency_key'],
        unique=True,
        postgresql_where=sa.text('idempotency_key IS NOT NULL'),
        sqlite_where=sa.text('idempotency_key IS NOT NULL'),
    )


def downgrade() -> None:
    op.drop_table('jobs')
    op.drop_table('campaign_sends')
    op.drop_table('campaign_steps')
    op.drop_table('campaigns')
    op.drop_table('message_templates')
    op.drop_table('patients')
    op.drop_table('clinics')
