"""Initial CRM tables

Revision ID: 4c2e9a7b1f03
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '4c2e9a7b1f03'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table('leads',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('company', sa.String(length=255), nullable=False, server_default=''),
        sa.Column('phone', sa.String(length=50), nullable=True),
        sa.Column('stage', sa.String(length=50), nullable=False, server_default='contacted_1'),
        sa.Column('source', sa.String(length=50), nullable=False, server_default='website'),
        sa.Column('owner', sa.String(length=255), nullable=True),
        sa.Column('conversion_probability', sa.Integer(), nullable=False, server_default='20'),
        sa.Column('revenue', sa.Numeric(precision=12, scale=2), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('next_action', sa.Text(), nullable=True),
        sa.Column('archived', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('last_contacted', sa.DateTime(timezone=True), nullable=True),
        sa.Column('converted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('meta_lead_id', sa.String(length=64), nullable=True),
        sa.Column('instagram_id', sa.String(length=64), nullable=True),
        sa.Column('facebook_id', sa.String(length=64), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('meta_lead_id', name='uq_leads_meta_lead_id'),
        sa.UniqueConstraint('instagram_id', name='uq_leads_instagram_id'),
        sa.UniqueConstraint('facebook_id', name='uq_leads_facebook_id'),
    )
    op.create_index('ix_leads_email', 'leads', ['email'], unique=False)
    op.create_index('ix_leads_stage', 'leads', ['stage'], unique=False)
    op.create_index('ix_leads_archived', 'leads', ['archived'], unique=False)

    op.create_table('lead_activities',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('lead_id', sa.String(length=36), nullable=False),
        sa.Column('activity_type', sa.String(length=50), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.ForeignKeyConstraint(['lead_id'], ['leads.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_lead_activities_lead_id', 'lead_activities', ['lead_id'], unique=False)

    op.create_table('settings',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('key', sa.String(length=100), nullable=False),
        sa.Column('value', sa.JSON(), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('key')
    )

    op.create_table('email_logs',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('lead_id', sa.String(length=36), nullable=True),
        sa.Column('subject', sa.String(length=998), nullable=True),
        sa.Column('body', sa.Text(), nullable=True),
        sa.Column('gmail_message_id', sa.String(length=255), nullable=True),
        sa.Column('thread_id', sa.String(length=255), nullable=True),
        sa.Column('is_sent', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('sent_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.ForeignKeyConstraint(['lead_id'], ['leads.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_email_logs_lead_id', 'email_logs', ['lead_id'], unique=False)
    op.create_index('ix_email_logs_sent_at', 'email_logs', ['sent_at'], unique=False)

    op.create_table('business_context',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('user_id', sa.String(length=100), nullable=False),
        sa.Column('notes', sa.Text(), nullable=False, server_default=''),
        sa.Column('attachments', sa.JSON(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id')
    )

    op.create_table('meta_connections',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('page_id', sa.String(length=64), nullable=False),
        sa.Column('page_name', sa.String(length=255), nullable=True),
        sa.Column('page_access_token', sa.Text(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('page_id')
    )


def downgrade():
    op.drop_table('meta_connections')
    op.drop_table('business_context')
    op.drop_index('ix_email_logs_sent_at', table_name='email_logs')
    op.drop_index('ix_email_logs_lead_id', table_name='email_logs')
    op.drop_table('email_logs')
    op.drop_table('settings')
    op.drop_index('ix_lead_activities_lead_id', table_name='lead_activities')
    op.drop_table('lead_activities')
    op.drop_index('ix_leads_archived', table_name='leads')
    op.drop_index('ix_leads_stage', table_name='leads')
    op.drop_index('ix_leads_email', table_name='leads')
    op.drop_table('leads')
