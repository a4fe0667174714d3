"""create shops, disputes, dispute_responses and sessions

Revision ID: dispute_tables_001
Revises:
Create Date: 2026-10-16

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB

revision = 'dispute_tables_001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'shops',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('shop_domain', sa.String(255), nullable=False),
        sa.Column('access_token', sa.Text(), nullable=True),
        sa.Column('active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('trial_start_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('trial_end_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('subscription_start_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('subscription_end_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('billing_active', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('billing_plan', sa.String(50), nullable=True),
        sa.Column('billing_subscription_id', sa.Text(), nullable=True),
        sa.Column('billing_last_checked_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_shops_shop_domain', 'shops', ['shop_domain'], unique=True)

    op.create_table(
        'disputes',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('shop_id', sa.String(36), sa.ForeignKey('shops.id', ondelete='CASCADE'), nullable=False),
        sa.Column('shopify_dispute_id', sa.String(255), nullable=False),
        sa.Column('order_id', sa.String(100), nullable=True),
        sa.Column('order_name', sa.String(100), nullable=True),
        sa.Column('customer_email', sa.String(255), nullable=True),
        sa.Column('status', sa.String(50), nullable=True),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('chargeback_reason', sa.Text(), nullable=True),
        sa.Column('amount', sa.Numeric(12, 2), nullable=True),
        sa.Column('currency', sa.String(10), nullable=True),
        sa.Column('evidence_due_by', sa.DateTime(timezone=True), nullable=True),
        sa.Column('evidence_submitted', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('raw_payload', sa.JSON().with_variant(JSONB(), 'postgresql'), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint('shop_id', 'shopify_dispute_id', name='uq_disputes_shop_dispute'),
    )
    op.create_index('idx_disputes_shop_created', 'disputes', ['shop_id', 'created_at'])
    op.create_index('idx_disputes_shop_order', 'disputes', ['shop_id', 'order_id'])
    op.create_index('idx_disputes_shop_email', 'disputes', ['shop_id', 'customer_email'])

    op.create_table(
        'dispute_responses',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('dispute_id', sa.String(36), sa.ForeignKey('disputes.id', ondelete='CASCADE'), nullable=False),
        sa.Column('shop_id', sa.String(36), sa.ForeignKey('shops.id', ondelete='CASCADE'), nullable=False),
        sa.Column('draft_text', sa.Text(), nullable=False),
        sa.Column('model_used', sa.String(100), nullable=True),
        sa.Column('is_final', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('idx_dispute_responses_dispute_created', 'dispute_responses', ['dispute_id', 'created_at'])
    op.create_index('idx_dispute_responses_shop', 'dispute_responses', ['shop_id'])

    op.create_table(
        'sessions',
        sa.Column('id', sa.String(255), primary_key=True),
        sa.Column('shop', sa.String(255), nullable=False),
        sa.Column('state', sa.String(255), nullable=True),
        sa.Column('is_online', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('scope', sa.Text(), nullable=True),
        sa.Column('expires', sa.DateTime(timezone=True), nullable=True),
        sa.Column('access_token', sa.Text(), nullable=False),
        sa.Column('user_id', sa.BigInteger(), nullable=True),
        sa.Column('first_name', sa.String(255), nullable=True),
        sa.Column('last_name', sa.String(255), nullable=True),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('account_owner', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('locale', sa.String(20), nullable=True),
        sa.Column('collaborator', sa.Boolean(), nullable=True, server_default=sa.false()),
        sa.Column('email_verified', sa.Boolean(), nullable=True, server_default=sa.false()),
    )
    op.create_index('ix_sessions_shop', 'sessions', ['shop'])
    op.create_index('ix_sessions_email', 'sessions', ['email'])


def downgrade():
    op.drop_index('ix_sessions_email', table_name='sessions')
    op.drop_index('ix_sessions_shop', table_name='sessions')
    op.drop_table('sessions')
    op.drop_index('idx_dispute_responses_shop', table_name='dispute_responses')
    op.drop_index('idx_dispute_responses_dispute_created', table_name='dispute_responses')
    op.drop_table('dispute_responses')
    op.drop_index('idx_disputes_shop_email', table_name='disputes')
    op.drop_index('idx_disputes_shop_order', table_name='disputes')
    op.drop_index('idx_disputes_shop_created', table_name='disputes')
    op.drop_table('disputes')
    op.drop_index('ix_shops_shop_domain', table_name='shops')
    op.drop_table('shops')
