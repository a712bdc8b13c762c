"""Initial migration - create payment_intents, ledger_entries and transaction_history tables

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '001_initial'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'payment_intents',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('reference', sa.String(64), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='PENDING'),
        sa.Column('resolved_via', sa.String(20), nullable=False, server_default='UNRESOLVED'),
        sa.Column('amount', sa.Integer(), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False, server_default='KES'),
        sa.Column('phone_number', sa.String(20), nullable=False),
        sa.Column('purpose', sa.String(30), nullable=False, server_default='deposit'),
        sa.Column('account_id', sa.String(255), nullable=True),
        sa.Column('customer_name', sa.String(255), nullable=True),
        sa.Column('provider', sa.String(50), nullable=False, server_default='m-pesa'),
        sa.Column('provider_checkout_id', sa.String(255), nullable=False, server_default=''),
        sa.Column('provider_receipt_number', sa.String(64), nullable=True),
        sa.Column('result_code', sa.Integer(), nullable=True),
        sa.Column('result_description', sa.Text(), nullable=True),
        sa.Column('raw_callback_json', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.Column('resolved_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_payment_intents_reference', 'payment_intents', ['reference'], unique=True)
    op.create_index('ix_payment_intents_provider_checkout_id', 'payment_intents', ['provider_checkout_id'])
    op.create_index('ix_payment_intents_status_created_at', 'payment_intents', ['status', 'created_at'])
    op.create_index('ix_payment_intents_account_id', 'payment_intents', ['account_id'])

    # At most one ledger side effect per reference
    op.create_table(
        'ledger_entries',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('reference', sa.String(64), sa.ForeignKey('payment_intents.reference'), nullable=False, unique=True),
        sa.Column('account_id', sa.String(255), nullable=True),
        sa.Column('entry_type', sa.String(30), nullable=False),
        sa.Column('amount', sa.Integer(), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False, server_default='KES'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_ledger_entries_account_id', 'ledger_entries', ['account_id'])

    op.create_table(
        'transaction_history',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('intent_id', sa.String(36), sa.ForeignKey('payment_intents.id'), nullable=False),
        sa.Column('action', sa.String(50), nullable=False),
        sa.Column('previous_status', sa.String(20), nullable=True),
        sa.Column('new_status', sa.String(20), nullable=False),
        sa.Column('amount', sa.Integer(), nullable=True),
        sa.Column('provider_response_code', sa.String(50), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('action_metadata_json', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_transaction_history_intent_id', 'transaction_history', ['intent_id'])
    op.create_index('ix_transaction_history_action', 'transaction_history', ['action'])
    op.create_index('ix_transaction_history_created_at', 'transaction_history', ['created_at'])


def downgrade() -> None:
    op.drop_index('ix_transaction_history_created_at', table_name='transaction_history')
    op.drop_index('ix_transaction_history_action', table_name='transaction_history')
    op.drop_index('ix_transaction_history_intent_id', table_name='transaction_history')

    op.drop_index('ix_ledger_entries_account_id', table_name='ledger_entries')

    op.drop_index('ix_payment_intents_account_id', table_name='payment_intents')
    op.drop_index('ix_payment_intents_status_created_at', table_name='payment_intents')
    op.drop_index('ix_payment_intents_provider_checkout_id', table_name='payment_intents')
    op.drop_index('ix_payment_intents_reference', table_name='payment_intents')

    op.drop_table('transaction_history')
    op.drop_table('ledger_entries')
    op.drop_table('payment_intents')
