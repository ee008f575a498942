"""payment reconciliation schema

Revision ID: a1f3c9d2e4b7
Revises:
Create Date: 2025-03-02 10:00:00.000000

"""
import uuid
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'a1f3c9d2e4b7'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'customers',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('customer_name', sa.String(), nullable=False),
        sa.Column('phone_number', sa.String(), nullable=True),
        sa.Column('status', sa.String(), nullable=False, server_default='active'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_customers_phone_number', 'customers', ['phone_number'])

    op.create_table(
        'orders',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('order_number', sa.String(), nullable=False, unique=True),
        sa.Column('customer_id', sa.Uuid(), sa.ForeignKey('customers.id'), nullable=True),
        sa.Column('total_amount', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('paid_amount', sa.Numeric(precision=10, scale=2), nullable=False, server_default='0'),
        sa.Column('payment_status', sa.String(), nullable=False, server_default='unpaid'),
        sa.Column('due_date', sa.Date(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.Column('deleted_at', sa.DateTime(), nullable=True),
        sa.CheckConstraint('paid_amount >= 0 AND paid_amount <= total_amount', name='ck_orders_paid_amount_range'),
    )

    payment_methods = op.create_table(
        'payment_methods',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('method_code', sa.String(), nullable=False, unique=True),
        sa.Column('method_name', sa.String(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('requires_reference', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('sort_order', sa.Integer(), nullable=False, server_default='0'),
    )

    op.create_table(
        'payments',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('order_id', sa.Uuid(), sa.ForeignKey('orders.id'), nullable=False),
        sa.Column('amount', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('payment_method', sa.String(), nullable=False),
        sa.Column('reference_number', sa.String(), nullable=True),
        sa.Column('transaction_id', sa.String(), nullable=False, unique=True),
        sa.Column('receipt_number', sa.String(), nullable=False, unique=True),
        sa.Column('status', sa.String(), nullable=False, server_default='completed'),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('refund_amount', sa.Numeric(precision=10, scale=2), nullable=False, server_default='0'),
        sa.Column('processed_by', sa.String(), nullable=False),
        sa.Column('payment_date', sa.DateTime(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.Column('updated_by', sa.String(), nullable=True),
        sa.Column('deleted_at', sa.DateTime(), nullable=True),
        sa.Column('deleted_by', sa.String(), nullable=True),
        sa.CheckConstraint('amount > 0', name='ck_payments_amount_positive'),
        sa.CheckConstraint('refund_amount >= 0 AND refund_amount <= amount', name='ck_payments_refund_range'),
    )
    op.create_index('ix_payments_order_id', 'payments', ['order_id'])

    op.create_table(
        'payment_receipts',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('payment_id', sa.Uuid(), sa.ForeignKey('payments.id'), nullable=False, unique=True),
        sa.Column('receipt_number', sa.String(), nullable=False),
        sa.Column('receipt_data', sa.JSON(), nullable=False),
        sa.Column('generated_by', sa.String(), nullable=False),
        sa.Column('generated_at', sa.DateTime(), nullable=False),
    )

    op.create_table(
        'payment_refunds',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('payment_id', sa.Uuid(), sa.ForeignKey('payments.id'), nullable=False),
        sa.Column('refund_amount', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('refund_reason', sa.Text(), nullable=False),
        sa.Column('refund_method', sa.String(), nullable=False),
        sa.Column('refund_reference', sa.String(), nullable=True),
        sa.Column('status', sa.String(), nullable=False, server_default='completed'),
        sa.Column('processed_by', sa.String(), nullable=False),
        sa.Column('processed_at', sa.DateTime(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.CheckConstraint('refund_amount > 0', name='ck_payment_refunds_amount_positive'),
    )
    op.create_index('ix_payment_refunds_payment_id', 'payment_refunds', ['payment_id'])

    op.create_table(
        'audit_logs',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('actor', sa.String(), nullable=False),
        sa.Column('action_type', sa.String(), nullable=False),
        sa.Column('table_name', sa.String(), nullable=False),
        sa.Column('record_id', sa.String(), nullable=False),
        sa.Column('status', sa.String(), nullable=False, server_default='success'),
        sa.Column('old_values', sa.JSON(), nullable=True),
        sa.Column('new_values', sa.JSON(), nullable=True),
        sa.Column('ip_address', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_audit_logs_actor', 'audit_logs', ['actor'])
    op.create_index('ix_audit_logs_table_name', 'audit_logs', ['table_name'])
    op.create_index('ix_audit_logs_created_at', 'audit_logs', ['created_at'])

    op.create_table(
        'users',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('username', sa.String(), nullable=False, unique=True),
        sa.Column('password_hash', sa.String(), nullable=True),
        sa.Column('full_name', sa.String(), nullable=True),
        sa.Column('telegram_id', sa.BigInteger(), nullable=True, unique=True),
        sa.Column('role', sa.String(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('last_login', sa.DateTime(), nullable=True),
    )

    # Справочник способов оплаты
    op.bulk_insert(payment_methods, [
        {'id': uuid.uuid4(), 'method_code': 'cash', 'method_name': 'Cash', 'description': None,
         'is_active': True, 'requires_reference': False, 'sort_order': 1},
        {'id': uuid.uuid4(), 'method_code': 'ebirr', 'method_name': 'E-Birr', 'description': 'Мобильный кошелёк',
         'is_active': True, 'requires_reference': True, 'sort_order': 2},
        {'id': uuid.uuid4(), 'method_code': 'cbe', 'method_name': 'CBE', 'description': 'Commercial Bank of Ethiopia',
         'is_active': True, 'requires_reference': True, 'sort_order': 3},
        {'id': uuid.uuid4(), 'method_code': 'bank_transfer', 'method_name': 'Bank Transfer', 'description': None,
         'is_active': True, 'requires_reference': True, 'sort_order': 4},
    ])


def downgrade() -> None:
    op.drop_table('users')
    op.drop_index('ix_audit_logs_created_at', table_name='audit_logs')
    op.drop_index('ix_audit_logs_table_name', table_name='audit_logs')
    op.drop_index('ix_audit_logs_actor', table_name='audit_logs')
    op.drop_table('audit_logs')
    op.drop_index('ix_payment_refunds_payment_id', table_name='payment_refunds')
    op.drop_table('payment_refunds')
    op.drop_table('payment_receipts')
    op.drop_index('ix_payments_order_id', table_name='payments')
    op.drop_table('payments')
    op.drop_table('payment_methods')
    op.drop_table('orders')
    op.drop_index('ix_customers_phone_number', table_name='customers')
    op.drop_table('customers')
