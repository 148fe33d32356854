"""initial_leasing_schema

Leases, payments (with transition audit), wallets, role promotion outbox.

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '0001_initial'
down_revision = None
branch_labels = None
depends_on = None

_TS = sa.TIMESTAMP(timezone=True)


def upgrade() -> None:
    op.create_table(
        'leases',
        sa.Column('lease_id', sa.TEXT(), nullable=False),
        sa.Column('tenant_id', sa.TEXT(), nullable=False),
        sa.Column('landlord_id', sa.TEXT(), nullable=False),
        sa.Column('property_id', sa.TEXT(), nullable=False),
        sa.Column('monthly_rent_usdc_micros', sa.BIGINT(), nullable=False),
        sa.Column('security_deposit_usdc_micros', sa.BIGINT(), nullable=False, server_default='0'),
        sa.Column('start_date', sa.DATE(), nullable=False),
        sa.Column('end_date', sa.DATE(), nullable=True),
        sa.Column('tenant_signed_at', _TS, nullable=True),
        sa.Column('landlord_signed_at', _TS, nullable=True),
        sa.Column('landlord_payout_address', sa.TEXT(), nullable=True),
        sa.Column('status', sa.TEXT(), nullable=False, server_default='awaiting_signatures'),
        sa.Column('version', sa.BIGINT(), nullable=False, server_default='0'),
        sa.Column('activated_at', _TS, nullable=True),
        sa.Column('terminated_at', _TS, nullable=True),
        sa.Column('created_at', _TS, nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', _TS, nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('lease_id'),
        sa.CheckConstraint(
            "status IN ('awaiting_signatures', 'awaiting_payment', 'active', 'terminated')",
            name='ck_leases_status',
        ),
        sa.CheckConstraint(
            'monthly_rent_usdc_micros >= 0 AND security_deposit_usdc_micros >= 0',
            name='ck_leases_amounts_non_negative',
        ),
    )
    op.create_index('idx_leases_tenant', 'leases', ['tenant_id'])
    op.create_index('idx_leases_landlord', 'leases', ['landlord_id'])
    op.create_index('idx_leases_status', 'leases', ['status'])

    op.create_table(
        'payments',
        sa.Column('payment_id', sa.TEXT(), nullable=False),
        sa.Column('lease_id', sa.TEXT(), nullable=False),
        sa.Column('tenant_id', sa.TEXT(), nullable=False),
        sa.Column('amount_usdc_micros', sa.BIGINT(), nullable=False),
        sa.Column('kind', sa.TEXT(), nullable=False),
        sa.Column('status', sa.TEXT(), nullable=False, server_default='pending'),
        sa.Column('required_for_activation', sa.BOOLEAN(), nullable=False, server_default=sa.false()),
        sa.Column('due_date', sa.DATE(), nullable=False),
        sa.Column('completed_at', _TS, nullable=True),
        sa.Column('transaction_ref', sa.TEXT(), nullable=True),
        sa.Column('failure_notes', sa.TEXT(), nullable=True),
        sa.Column('failure_code', sa.TEXT(), nullable=True),
        sa.Column('attempt_count', sa.INTEGER(), nullable=False, server_default='0'),
        sa.Column('processing_started_at', _TS, nullable=True),
        sa.Column('version', sa.BIGINT(), nullable=False, server_default='0'),
        sa.Column('created_at', _TS, nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', _TS, nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('payment_id'),
        sa.ForeignKeyConstraint(['lease_id'], ['leases.lease_id'], name='fk_payments_lease'),
        sa.CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'failed')", name='ck_payments_status'
        ),
        sa.CheckConstraint(
            "kind IN ('security_deposit', 'rent', 'late_fee', 'other')", name='ck_payments_kind'
        ),
        sa.CheckConstraint('amount_usdc_micros > 0', name='ck_payments_amount_positive'),
    )
    op.create_index('idx_payments_lease', 'payments', ['lease_id'])
    op.create_index('idx_payments_tenant_due', 'payments', ['tenant_id', 'due_date'])
    op.create_index('idx_payments_status_started', 'payments', ['status', 'processing_started_at'])
    # At most one in-flight payment per (lease, kind)
    op.create_index(
        'uq_payments_processing_per_kind',
        'payments',
        ['lease_id', 'kind'],
        unique=True,
        postgresql_where=sa.text("status = 'processing'"),
        sqlite_where=sa.text("status = 'processing'"),
    )

    op.create_table(
        'payment_transitions',
        sa.Column('id', sa.BIGINT().with_variant(sa.INTEGER(), 'sqlite'), autoincrement=True, nullable=False),
        sa.Column('payment_id', sa.TEXT(), nullable=False),
        sa.Column('from_status', sa.TEXT(), nullable=False),
        sa.Column('to_status', sa.TEXT(), nullable=False),
        sa.Column('version', sa.BIGINT(), nullable=False),
        sa.Column('detail', sa.TEXT(), nullable=True),
        sa.Column('created_at', _TS, nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_payment_transitions_payment', 'payment_transitions', ['payment_id', 'id'])

    op.create_table(
        'wallets',
        sa.Column('wallet_id', sa.TEXT(), nullable=False),
        sa.Column('owner_id', sa.TEXT(), nullable=False),
        sa.Column('address', sa.TEXT(), nullable=False),
        sa.Column('kind', sa.TEXT(), nullable=False),
        sa.Column('custodial_wallet_ref', sa.TEXT(), nullable=True),
        sa.Column('label', sa.TEXT(), nullable=True),
        sa.Column('is_primary', sa.BOOLEAN(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', _TS, nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', _TS, nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('wallet_id'),
        sa.CheckConstraint("kind IN ('custodial', 'external')", name='ck_wallets_kind'),
        sa.CheckConstraint(
            "(kind = 'custodial' AND custodial_wallet_ref IS NOT NULL) OR "
            "(kind = 'external' AND custodial_wallet_ref IS NULL)",
            name='ck_wallets_custodial_ref',
        ),
        sa.UniqueConstraint('owner_id', 'address', name='uq_wallets_owner_address'),
    )
    op.create_index(
        'uq_wallets_one_primary',
        'wallets',
        ['owner_id'],
        unique=True,
        postgresql_where=sa.text('is_primary'),
        sqlite_where=sa.text('is_primary = 1'),
    )

    op.create_table(
        'role_promotion_events',
        sa.Column('lease_id', sa.TEXT(), nullable=False),
        sa.Column('tenant_id', sa.TEXT(), nullable=False),
        sa.Column('status', sa.TEXT(), nullable=False, server_default='pending'),
        sa.Column('attempts', sa.INTEGER(), nullable=False, server_default='0'),
        sa.Column('last_error', sa.TEXT(), nullable=True),
        sa.Column('last_attempt_at', _TS, nullable=True),
        sa.Column('delivered_at', _TS, nullable=True),
        sa.Column('created_at', _TS, nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('lease_id'),
    )
    op.create_index(
        'idx_role_promotion_events_status', 'role_promotion_events', ['status', 'created_at']
    )


def downgrade() -> None:
    op.drop_index('idx_role_promotion_events_status', table_name='role_promotion_events')
    op.drop_table('role_promotion_events')
    op.drop_index('uq_wallets_one_primary', table_name='wallets')
    op.drop_table('wallets')
    op.drop_index('idx_payment_transitions_payment', table_name='payment_transitions')
    op.drop_table('payment_transitions')
    op.drop_index('uq_payments_processing_per_kind', table_name='payments')
    op.drop_index('idx_payments_status_started', table_name='payments')
    op.drop_index('idx_payments_tenant_due', table_name='payments')
    op.drop_index('idx_payments_lease', table_name='payments')
    op.drop_table('payments')
    op.drop_index('idx_leases_status', table_name='leases')
    op.drop_index('idx_leases_landlord', table_name='leases')
    op.drop_index('idx_leases_tenant', table_name='leases')
    op.drop_table('leases')
