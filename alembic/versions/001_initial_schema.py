"""initial schema: funnels, funnel steps, tracking events, cookie consent

Revision ID: 001
Revises:
Create Date: 2026-10-18 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Create funnels table
    op.create_table(
        'funnels',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='active'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_funnels_name', 'funnels', ['name'], unique=True)
    op.create_index('ix_funnels_status', 'funnels', ['status'])

    # Create funnel_steps table
    op.create_table(
        'funnel_steps',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('funnel_id', sa.Integer(), nullable=False),
        sa.Column('step_order', sa.Integer(), nullable=False),
        sa.Column('step_type', sa.String(20), nullable=False),
        sa.Column('step_name', sa.String(255), nullable=False, server_default=''),
        sa.Column('page_id', sa.Integer(), nullable=True),
        sa.Column('form_id', sa.Integer(), nullable=True),
    )
    op.create_foreign_key(
        'fk_funnel_steps_funnel_id', 'funnel_steps', 'funnels', ['funnel_id'], ['id'], ondelete='CASCADE'
    )
    op.create_unique_constraint('uq_funnel_steps_funnel_order', 'funnel_steps', ['funnel_id', 'step_order'])
    op.create_index('ix_funnel_steps_funnel_id', 'funnel_steps', ['funnel_id'])
    op.create_index('ix_funnel_steps_page_id', 'funnel_steps', ['page_id'])
    op.create_index('ix_funnel_steps_form_id', 'funnel_steps', ['form_id'])

    # Create tracking_events table
    op.create_table(
        'tracking_events',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('funnel_id', sa.Integer(), nullable=False),
        sa.Column('step_id', sa.Integer(), nullable=True),  # No FK: steps are replaced, events are kept
        sa.Column('session_id', sa.String(255), nullable=False),
        sa.Column('event_type', sa.String(50), nullable=False),
        sa.Column('page_id', sa.Integer(), nullable=True),
        sa.Column('form_id', sa.Integer(), nullable=True),
        sa.Column('form_step_index', sa.Integer(), nullable=True),
        sa.Column('utm_source', sa.String(255), nullable=False, server_default=''),
        sa.Column('utm_medium', sa.String(255), nullable=False, server_default=''),
        sa.Column('utm_campaign', sa.String(255), nullable=False, server_default=''),
        sa.Column('utm_content', sa.String(255), nullable=False, server_default=''),
        sa.Column('utm_term', sa.String(255), nullable=False, server_default=''),
        sa.Column('user_agent', sa.Text(), nullable=True),
        sa.Column('ip_address', sa.String(45), nullable=False, server_default=''),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_foreign_key(
        'fk_tracking_events_funnel_id', 'tracking_events', 'funnels', ['funnel_id'], ['id'], ondelete='CASCADE'
    )
    op.create_index('ix_tracking_events_funnel_id', 'tracking_events', ['funnel_id'])
    op.create_index('ix_tracking_events_step_id', 'tracking_events', ['step_id'])
    op.create_index('ix_tracking_events_session_id', 'tracking_events', ['session_id'])
    op.create_index('ix_tracking_events_event_type', 'tracking_events', ['event_type'])
    op.create_index('ix_tracking_events_page_id', 'tracking_events', ['page_id'])
    op.create_index('ix_tracking_events_form_id', 'tracking_events', ['form_id'])
    op.create_index('ix_tracking_events_created_at', 'tracking_events', ['created_at'])

    # Create cookie_consent table
    op.create_table(
        'cookie_consent',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('session_id', sa.String(255), nullable=False),
        sa.Column('consent_status', sa.String(20), nullable=False),
        sa.Column('consent_categories', sa.JSON(), nullable=True),
        sa.Column('ip_address', sa.String(45), nullable=False, server_default=''),
        sa.Column('user_agent', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_cookie_consent_session_id', 'cookie_consent', ['session_id'])
    op.create_index('ix_cookie_consent_consent_status', 'cookie_consent', ['consent_status'])
    op.create_index('ix_cookie_consent_expires_at', 'cookie_consent', ['expires_at'])


def downgrade() -> None:
    op.drop_table('cookie_consent')
    op.drop_table('tracking_events')
    op.drop_table('funnel_steps')
    op.drop_table('funnels')
