"""create royalty ledger tables

Revision ID: 0f3a9c2d1b7e
Revises:
Create Date: 2026-10-19 12:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '0f3a9c2d1b7e'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

beneficiary_role = postgresql.ENUM('artist', 'collaborator', 'platform', name='beneficiaryrole', create_type=False)
plan_status = postgresql.ENUM('pending', 'partially_paid', 'paid', 'failed', name='planstatus', create_type=False)
payout_status = postgresql.ENUM('pending', 'succeeded', 'failed', name='payoutstatus', create_type=False)
attempt_outcome = postgresql.ENUM('succeeded', 'transient_error', 'permanent_error', name='attemptoutcome', create_type=False)


def upgrade() -> None:
    bind = op.get_bind()
    for enum_type in (beneficiary_role, plan_status, payout_status, attempt_outcome):
        enum_type.create(bind, checkfirst=True)

    op.create_table(
        'artwork_royalty_configs',
        sa.Column('artwork_id', sa.String(64), primary_key=True),
        sa.Column('artist_id', sa.String(64), nullable=False, index=True),
        sa.Column('artist_wallet', sa.String(128), nullable=False, server_default=''),
        sa.Column('royalty_percentage', sa.Numeric(6, 3), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True)),
    )
    op.create_table(
        'collaboration_shares',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('artwork_id', sa.String(64), nullable=False, index=True),
        sa.Column('beneficiary_id', sa.String(64), nullable=False),
        sa.Column('role', beneficiary_role, nullable=False),
        sa.Column('percentage', sa.Numeric(6, 3), nullable=False),
        sa.Column('wallet_address', sa.String(128), nullable=False, server_default=''),
        sa.UniqueConstraint('artwork_id', 'beneficiary_id'),
    )
    op.create_table(
        'distribution_plans',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('artwork_id', sa.String(64), nullable=False, index=True),
        sa.Column('sale_amount', sa.BigInteger(), nullable=False),
        sa.Column('retained_amount', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('currency', sa.String(3), nullable=False, server_default='USD'),
        sa.Column('status', plan_status, nullable=False, index=True),
        sa.Column('created_at', sa.DateTime(timezone=True)),
        sa.Column('updated_at', sa.DateTime(timezone=True)),
    )
    op.create_table(
        'plan_shares',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('plan_id', sa.Uuid(), sa.ForeignKey('distribution_plans.id'), nullable=False, index=True),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.Column('beneficiary_id', sa.String(64), nullable=False),
        sa.Column('role', beneficiary_role, nullable=False),
        sa.Column('percentage', sa.Numeric(6, 3), nullable=False),
        sa.Column('wallet_address', sa.String(128), nullable=False),
        sa.Column('amount', sa.BigInteger(), nullable=False),
        sa.UniqueConstraint('plan_id', 'beneficiary_id'),
    )
    op.create_table(
        'payout_records',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('plan_id', sa.Uuid(), sa.ForeignKey('distribution_plans.id'), nullable=False, index=True),
        sa.Column('beneficiary_id', sa.String(64), nullable=False, index=True),
        sa.Column('amount', sa.BigInteger(), nullable=False),
        sa.Column('destination_address', sa.String(128), nullable=False),
        sa.Column('idempotency_token', sa.String(64), nullable=False, unique=True),
        sa.Column('attempt_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('status', payout_status, nullable=False),
        sa.Column('external_transaction_ref', sa.String(128), nullable=True),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True)),
        sa.UniqueConstraint('plan_id', 'beneficiary_id'),
    )
    op.create_table(
        'payout_attempts',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('plan_id', sa.Uuid(), sa.ForeignKey('distribution_plans.id'), nullable=False, index=True),
        sa.Column('beneficiary_id', sa.String(64), nullable=False),
        sa.Column('attempt_number', sa.Integer(), nullable=False),
        sa.Column('outcome', attempt_outcome, nullable=False),
        sa.Column('transaction_ref', sa.String(128), nullable=True),
        sa.Column('error', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True)),
        sa.UniqueConstraint('plan_id', 'beneficiary_id', 'attempt_number'),
    )
    op.create_index(
        'uq_payout_attempts_one_success',
        'payout_attempts',
        ['plan_id', 'beneficiary_id'],
        unique=True,
        postgresql_where=sa.text("outcome = 'succeeded'"),
    )


def downgrade() -> None:
    op.drop_index('uq_payout_attempts_one_success', table_name='payout_attempts')
    op.drop_table('payout_attempts')
    op.drop_table('payout_records')
    op.drop_table('plan_shares')
    op.drop_table('distribution_plans')
    op.drop_table('collaboration_shares')
    op.drop_table('artwork_royalty_configs')
    attempt_outcome.drop(op.get_bind(), checkfirst=True)
    payout_status.drop(op.get_bind(), checkfirst=True)
    plan_status.drop(op.get_bind(), checkfirst=True)
    beneficiary_role.drop(op.get_bind(), checkfirst=True)
