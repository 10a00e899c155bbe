"""Create ledger tables: accounts, flows, transfers, audit_logs.

Revision ID: a1c4e7f20001
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'a1c4e7f20001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Create accounts table
    op.create_table(
        'accounts',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('user_id', sa.String(), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('account_type', sa.String(), nullable=False, server_default='cash'),
        sa.Column('currency', sa.String(), nullable=False, server_default='CNY'),
        sa.Column('balance', sa.Numeric(precision=15, scale=2), nullable=False, server_default='0'),
        sa.Column('include_in_net_worth', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('hidden', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_accounts_user_id', 'accounts', ['user_id'])

    # Create flows table
    op.create_table(
        'flows',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('user_id', sa.String(), nullable=False),
        sa.Column('book_id', sa.String(), nullable=False),
        sa.Column('day', sa.Date(), nullable=False),
        sa.Column('flow_type', sa.String(), nullable=False),
        sa.Column('category', sa.String(), nullable=False, server_default=''),
        sa.Column('pay_type', sa.String(), nullable=False, server_default=''),
        sa.Column('amount', sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column('name', sa.String(), nullable=False, server_default=''),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('account_id', sa.String(), nullable=True),
        # No FK: legacy rows may reference transfers that no longer exist
        sa.Column('transfer_id', sa.String(), nullable=True),
        sa.Column('eliminate', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('loan_type', sa.String(), nullable=True),
        sa.Column('counterparty', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint('amount >= 0', name='ck_flows_amount_non_negative'),
        sa.ForeignKeyConstraint(['account_id'], ['accounts.id'], ondelete='RESTRICT'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_flows_user_id', 'flows', ['user_id'])
    op.create_index('ix_flows_book_id', 'flows', ['book_id'])
    op.create_index('ix_flows_account_id', 'flows', ['account_id'])
    op.create_index('ix_flows_transfer_id', 'flows', ['transfer_id'])
    op.create_index('ix_flows_user_transfer', 'flows', ['user_id', 'transfer_id'])

    # Create transfers table
    op.create_table(
        'transfers',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('user_id', sa.String(), nullable=False),
        sa.Column('book_id', sa.String(), nullable=True),
        sa.Column('day', sa.Date(), nullable=False),
        sa.Column('from_account_id', sa.String(), nullable=False),
        sa.Column('to_account_id', sa.String(), nullable=False),
        sa.Column('amount', sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column('transfer_type', sa.String(), nullable=False, server_default='transfer'),
        sa.Column('loan_type', sa.String(), nullable=True),
        sa.Column('counterparty', sa.String(), nullable=True),
        sa.Column('name', sa.String(), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint('amount > 0', name='ck_transfers_amount_positive'),
        sa.CheckConstraint('from_account_id <> to_account_id', name='ck_transfers_distinct_accounts'),
        sa.ForeignKeyConstraint(['from_account_id'], ['accounts.id'], ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['to_account_id'], ['accounts.id'], ondelete='RESTRICT'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_transfers_user_id', 'transfers', ['user_id'])
    op.create_index('ix_transfers_from_account_id', 'transfers', ['from_account_id'])
    op.create_index('ix_transfers_to_account_id', 'transfers', ['to_account_id'])

    # Create audit_logs table
    op.create_table(
        'audit_logs',
        sa.Column('id', sa.String(), nullable=False),
        # What changed
        sa.Column('entity_type', sa.String(), nullable=False),
        sa.Column('entity_id', sa.String(), nullable=False),
        sa.Column('action', sa.String(), nullable=False),
        sa.Column('field_name', sa.String(), nullable=True),
        # Values
        sa.Column('old_value', sa.JSON(), nullable=True),
        sa.Column('new_value', sa.JSON(), nullable=True),
        # Who/what
        sa.Column('user_id', sa.String(), nullable=True),
        sa.Column('source', sa.String(), nullable=False, server_default='api'),
        # Context
        sa.Column('extra_data', sa.JSON(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        # When
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_audit_logs_entity_type', 'audit_logs', ['entity_type'])
    op.create_index('ix_audit_logs_entity_id', 'audit_logs', ['entity_id'])
    op.create_index('ix_audit_logs_action', 'audit_logs', ['action'])
    op.create_index('ix_audit_logs_user_id', 'audit_logs', ['user_id'])
    op.create_index('ix_audit_logs_created_at', 'audit_logs', ['created_at'])
    op.create_index('ix_audit_log_entity', 'audit_logs', ['entity_type', 'entity_id'])
    op.create_index('ix_audit_log_user_time', 'audit_logs', ['user_id', 'created_at'])


def downgrade() -> None:
    op.drop_index('ix_audit_log_user_time', table_name='audit_logs')
    op.drop_index('ix_audit_log_entity', table_name='audit_logs')
    op.drop_index('ix_audit_logs_created_at', table_name='audit_logs')
    op.drop_index('ix_audit_logs_user_id', table_name='audit_logs')
    op.drop_index('ix_audit_logs_action', table_name='audit_logs')
    op.drop_index('ix_audit_logs_entity_id', table_name='audit_logs')
    op.drop_index('ix_audit_logs_entity_type', table_name='audit_logs')
    op.drop_table('audit_logs')

    op.drop_index('ix_transfers_to_account_id', table_name='transfers')
    op.drop_index('ix_transfers_from_account_id', table_name='transfers')
    op.drop_index('ix_transfers_user_id', table_name='transfers')
    op.drop_table('transfers')

    op.drop_index('ix_flows_user_transfer', table_name='flows')
    op.drop_index('ix_flows_transfer_id', table_name='flows')
    op.drop_index('ix_flows_account_id', table_name='flows')
    op.drop_index('ix_flows_book_id', table_name='flows')
    op.drop_index('ix_flows_user_id', table_name='flows')
    op.drop_table('flows')

    op.drop_index('ix_accounts_user_id', table_name='accounts')
    op.drop_table('accounts')
