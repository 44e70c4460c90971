"""Unique webhook idempotency keys, order lookup column, provider state v1.

- payment_logs: (provider, idempotency_key) becomes unique. Older duplicate
  rows keep their payload but lose the key.
- orders.razorpay_order_id: indexed copy of the gateway order id, backfilled
  from payment_provider_response.
- payment_provider_response: unversioned rows are normalised and stamped
  schema_version = 1 (same rules as PaymentProviderState.from_raw).

Revision ID: a1c3e5f70002
Revises: a1c3e5f70001
Create Date: 2026-09-16
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = 'a1c3e5f70002'
down_revision = 'a1c3e5f70001'
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute("""
        UPDATE payment_logs SET idempotency_key = NULL
        WHERE id IN (
            SELECT id FROM (
                SELECT id, row_number() OVER (
                    PARTITION BY provider, idempotency_key ORDER BY created_at
                ) AS rn
                FROM payment_logs
                WHERE idempotency_key IS NOT NULL
            ) ranked
            WHERE ranked.rn > 1
        )
    """)
    op.create_unique_constraint(
        'uq_payment_logs_provider_idempotency_key',
        'payment_logs',
        ['provider', 'idempotency_key'],
    )

    op.add_column('orders', sa.Column('razorpay_order_id', sa.String(64), nullable=True))
    op.create_index('ix_orders_razorpay_order_id', 'orders', ['razorpay_order_id'])
    op.execute("""
        UPDATE orders
        SET razorpay_order_id = payment_provider_response ->> 'razorpay_order_id'
        WHERE razorpay_order_id IS NULL
          AND payment_provider_response ? 'razorpay_order_id'
    """)

    op.execute("""
        UPDATE orders
        SET payment_provider_response = COALESCE(payment_provider_response, '{}'::jsonb)
            || jsonb_build_object(
                'schema_version', 1,
                'payment_attempts', CASE
                    WHEN payment_provider_response ->> 'payment_attempts' ~ '^[0-9]+$'
                    THEN (payment_provider_response ->> 'payment_attempts')::int
                    ELSE 0 END,
                'credits_applied', COALESCE(payment_provider_response -> 'credits_applied', '0'::jsonb),
                'credits_locked', COALESCE(payment_provider_response -> 'credits_locked', 'false'::jsonb)
            )
        WHERE payment_provider_response IS NULL
           OR NOT (payment_provider_response ? 'schema_version')
    """)


def downgrade() -> None:
    op.drop_index('ix_orders_razorpay_order_id', table_name='orders')
    op.drop_column('orders', 'razorpay_order_id')
    op.drop_constraint('uq_payment_logs_provider_idempotency_key', 'payment_logs', type_='unique')
