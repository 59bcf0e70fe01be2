"""Initial schema: orders, rider settlements, payment ledger, progress, offline queue.

Revision ID: initial_codrider_schema
Revises:
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = 'initial_codrider_schema'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'orders',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('order_number', sa.String(50), nullable=False, unique=True),
        sa.Column('package_description', sa.String(500), nullable=False, server_default=''),
        sa.Column('cod_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('barcode', sa.String(100), nullable=False),
        sa.Column('pickup_address', sa.String(500), nullable=False, server_default=''),
        sa.Column('pickup_latitude', sa.Float(), nullable=True),
        sa.Column('pickup_longitude', sa.Float(), nullable=True),
        sa.Column('pickup_contact_name', sa.String(255), nullable=False, server_default=''),
        sa.Column('pickup_contact_phone', sa.String(30), nullable=False, server_default=''),
        sa.Column('delivery_address', sa.String(500), nullable=False, server_default=''),
        sa.Column('delivery_latitude', sa.Float(), nullable=True),
        sa.Column('delivery_longitude', sa.Float(), nullable=True),
        sa.Column('delivery_contact_name', sa.String(255), nullable=False, server_default=''),
        sa.Column('delivery_contact_phone', sa.String(30), nullable=False, server_default=''),
        sa.Column('status', sa.String(30), nullable=False, server_default='pending', index=True),
        sa.Column('payment_method', sa.String(10), nullable=True),
        sa.Column('rider_id', sa.Uuid(), nullable=True, index=True),
        sa.Column('accepted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('picked_up_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('delivering_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('payment_initiated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('payment_confirmed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True, index=True),
        sa.Column('failed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('failure_reason', sa.Text(), nullable=True),
        sa.Column('pod_photo_url', sa.Text(), nullable=True),
        sa.Column('pod_latitude', sa.Float(), nullable=True),
        sa.Column('pod_longitude', sa.Float(), nullable=True),
        sa.Column('cash_audit_note', sa.Text(), nullable=True),
        sa.Column('amount_paid', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('payment_error', sa.String(255), nullable=True),
        sa.Column('payment_reference', sa.String(64), nullable=True),
        sa.Column('last_webhook_event_id', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True),
                  server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True),
                  server_default=sa.func.now(), nullable=False, index=True),
        sa.CheckConstraint('cod_amount > 0', name='ck_orders_cod_amount_positive'),
        sa.CheckConstraint('amount_paid >= 0', name='ck_orders_amount_paid_non_negative'),
    )

    op.create_table(
        'rider_settlements',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('rider_id', sa.Uuid(), nullable=False, index=True),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('amount_paid', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending', index=True),
        sa.Column('settlement_reference', sa.String(64), nullable=True),
        sa.Column('last_webhook_event_id', sa.String(255), nullable=True),
        sa.Column('initiated_at', sa.DateTime(timezone=True),
                  server_default=sa.func.now(), nullable=False),
        sa.Column('settled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True),
                  server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True),
                  server_default=sa.func.now(), nullable=False, index=True),
        sa.UniqueConstraint('rider_id', 'date', name='uq_rider_settlements_rider_date'),
    )

    op.create_table(
        'payment_transactions',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('order_id', sa.Uuid(),
                  sa.ForeignKey('orders.id', ondelete='CASCADE'),
                  nullable=True, index=True),
        sa.Column('settlement_id', sa.Uuid(),
                  sa.ForeignKey('rider_settlements.id', ondelete='CASCADE'),
                  nullable=True, index=True),
        sa.Column('payment_method', sa.String(10), nullable=False),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='confirmed'),
        sa.Column('source', sa.String(20), nullable=False),
        # Idempotency backstop for webhook deliveries
        sa.Column('event_id', sa.String(255), nullable=True, unique=True),
        sa.Column('reference', sa.String(64), nullable=True),
        sa.Column('confirmed_at', sa.DateTime(timezone=True),
                  server_default=sa.func.now(), nullable=False),
    )

    op.create_table(
        'delivery_progress',
        sa.Column('order_id', sa.Uuid(),
                  sa.ForeignKey('orders.id', ondelete='CASCADE'),
                  primary_key=True),
        sa.Column('rider_id', sa.Uuid(), nullable=False, index=True),
        sa.Column('step', sa.String(30), nullable=False, server_default='en_route_pickup'),
        sa.Column('updated_at', sa.DateTime(timezone=True),
                  server_default=sa.func.now(), nullable=False),
    )

    op.create_table(
        'queued_actions',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('client_action_id', sa.String(100), nullable=False, unique=True),
        sa.Column('rider_id', sa.Uuid(), nullable=False, index=True),
        sa.Column('order_id', sa.Uuid(), nullable=False, index=True),
        sa.Column('action', sa.String(30), nullable=False),
        sa.Column('payload', sa.JSON(), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='queued', index=True),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True),
                  server_default=sa.func.now(), nullable=False),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
    )

    # Matcher: latest pending obligation of each kind
    op.create_index(
        'ix_orders_payment_pending_updated_at',
        'orders',
        ['updated_at'],
        postgresql_where=sa.text("status = 'payment_pending'")
    )


def downgrade() -> None:
    op.drop_index('ix_orders_payment_pending_updated_at', table_name='orders')
    op.drop_table('queued_actions')
    op.drop_table('delivery_progress')
    op.drop_table('payment_transactions')
    op.drop_table('rider_settlements')
    op.drop_table('orders')
