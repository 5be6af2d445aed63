"""initial_schema

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-18 10:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '0001_initial_schema'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _money(name, nullable=False):
    return sa.Column(name, sa.DECIMAL(10, 2), nullable=nullable)


def upgrade() -> None:
    op.create_table(
        'events',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('date', sa.DateTime(), nullable=False),
        sa.Column('location', sa.String(255), nullable=False),
        sa.Column('city', sa.String(120), nullable=False),
        sa.Column('state', sa.String(2), nullable=False),
        sa.Column('pickup_zip_code', sa.String(8), nullable=False),
        sa.Column('pricing_type', sa.String(20), nullable=False),
        _money('fixed_price', nullable=True),
        _money('extra_kit_price'),
        sa.Column('donation_required', sa.Boolean(), nullable=False),
        _money('donation_amount', nullable=True),
        sa.Column('donation_description', sa.Text(), nullable=True),
        sa.Column('available', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id', name='pk_events'),
    )
    op.create_index('ix_events_available', 'events', ['available'])
    op.create_index('ix_events_date', 'events', ['date'])

    op.create_table(
        'customers',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('cpf', sa.String(11), nullable=False),
        sa.Column('birth_date', sa.Date(), nullable=False),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('phone', sa.String(20), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id', name='pk_customers'),
        sa.UniqueConstraint('cpf', name='uq_customers_cpf'),
    )
    op.create_index('ix_customers_email', 'customers', ['email'])

    op.create_table(
        'addresses',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('customer_id', sa.Integer(), nullable=False),
        sa.Column('label', sa.String(60), nullable=False),
        sa.Column('street', sa.String(255), nullable=False),
        sa.Column('number', sa.String(20), nullable=False),
        sa.Column('complement', sa.String(255), nullable=True),
        sa.Column('neighborhood', sa.String(120), nullable=False),
        sa.Column('city', sa.String(120), nullable=False),
        sa.Column('state', sa.String(2), nullable=False),
        sa.Column('zip_code', sa.String(8), nullable=False),
        sa.Column('is_default', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id'],
                                name='fk_addresses_customer_id_customers', ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id', name='pk_addresses'),
    )
    op.create_index('ix_addresses_customer_id', 'addresses', ['customer_id'])
    op.create_index('ix_addresses_customer_default', 'addresses', ['customer_id', 'is_default'])

    op.create_table(
        'cep_zones',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('cep_ranges', sa.JSON(), nullable=False),
        _money('price'),
        sa.Column('active', sa.Boolean(), nullable=False),
        sa.Column('priority', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id', name='pk_cep_zones'),
    )
    op.create_index('ix_cep_zones_active_priority', 'cep_zones', ['active', 'priority'])

    op.create_table(
        'event_cep_zone_prices',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('event_id', sa.Integer(), nullable=False),
        sa.Column('cep_zone_id', sa.Integer(), nullable=False),
        _money('price'),
        sa.ForeignKeyConstraint(['event_id'], ['events.id'],
                                name='fk_event_cep_zone_prices_event_id_events', ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['cep_zone_id'], ['cep_zones.id'],
                                name='fk_event_cep_zone_prices_cep_zone_id_cep_zones', ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id', name='pk_event_cep_zone_prices'),
        sa.UniqueConstraint('event_id', 'cep_zone_id', name='uq_event_cep_zone_prices_event_zone'),
    )
    op.create_index('ix_event_cep_zone_prices_event_id', 'event_cep_zone_prices', ['event_id'])

    op.create_table(
        'orders',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('order_number', sa.String(20), nullable=False),
        sa.Column('event_id', sa.Integer(), nullable=False),
        sa.Column('customer_id', sa.Integer(), nullable=False),
        sa.Column('address_id', sa.Integer(), nullable=False),
        sa.Column('kit_quantity', sa.Integer(), nullable=False),
        _money('base_cost'),
        _money('delivery_cost'),
        _money('extra_kits_cost'),
        _money('donation_cost'),
        _money('discount_amount'),
        sa.Column('coupon_code', sa.String(50), nullable=True),
        _money('total_cost'),
        sa.Column('payment_method', sa.String(10), nullable=False),
        sa.Column('status', sa.String(30), nullable=False),
        sa.Column('idempotency_key', sa.String(255), nullable=True),
        sa.Column('payment_id', sa.String(64), nullable=True),
        sa.Column('payment_status', sa.String(30), nullable=True),
        sa.Column('payment_created_at', sa.DateTime(), nullable=True),
        sa.Column('cep_zone_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['event_id'], ['events.id'], name='fk_orders_event_id_events'),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id'], name='fk_orders_customer_id_customers'),
        sa.ForeignKeyConstraint(['address_id'], ['addresses.id'], name='fk_orders_address_id_addresses'),
        sa.ForeignKeyConstraint(['cep_zone_id'], ['cep_zones.id'],
                                name='fk_orders_cep_zone_id_cep_zones', ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id', name='pk_orders'),
        sa.UniqueConstraint('order_number', name='uq_orders_order_number'),
        sa.UniqueConstraint('idempotency_key', name='uq_orders_idempotency_key'),
    )
    op.create_index('ix_orders_event_id', 'orders', ['event_id'])
    op.create_index('ix_orders_customer_id', 'orders', ['customer_id'])
    op.create_index('ix_orders_status', 'orders', ['status'])
    op.create_index('ix_orders_created_at', 'orders', ['created_at'])
    op.create_index('ix_orders_status_created', 'orders', ['status', 'created_at'])
    op.create_index('ix_orders_payment_id', 'orders', ['payment_id'])

    op.create_table(
        'kits',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('cpf', sa.String(11), nullable=False),
        sa.Column('shirt_size', sa.String(10), nullable=False),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], name='fk_kits_order_id_orders', ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id', name='pk_kits'),
    )
    op.create_index('ix_kits_order_id', 'kits', ['order_id'])

    op.create_table(
        'order_status_history',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('previous_status', sa.String(30), nullable=True),
        sa.Column('new_status', sa.String(30), nullable=False),
        sa.Column('changed_by', sa.String(20), nullable=False),
        sa.Column('changed_by_name', sa.String(255), nullable=True),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('bulk_operation_id', sa.String(64), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'],
                                name='fk_order_status_history_order_id_orders', ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id', name='pk_order_status_history'),
    )
    op.create_index('ix_order_status_history_order_id', 'order_status_history', ['order_id'])
    op.create_index('ix_order_status_history_bulk', 'order_status_history', ['bulk_operation_id'])

    op.create_table(
        'coupons',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('code', sa.String(50), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('discount_type', sa.String(20), nullable=False),
        _money('discount_value'),
        _money('max_discount', nullable=True),
        sa.Column('valid_from', sa.DateTime(), nullable=False),
        sa.Column('valid_until', sa.DateTime(), nullable=False),
        sa.Column('usage_limit', sa.Integer(), nullable=True),
        sa.Column('usage_count', sa.Integer(), nullable=False),
        sa.Column('per_customer_limit', sa.Integer(), nullable=True),
        sa.Column('event_ids', sa.JSON(), nullable=False),
        sa.Column('cep_zone_ids', sa.JSON(), nullable=False),
        sa.Column('active', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id', name='pk_coupons'),
        sa.UniqueConstraint('code', name='uq_coupons_code'),
    )
    op.create_index('ix_coupons_active', 'coupons', ['active'])

    op.create_table(
        'coupon_usages',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('coupon_id', sa.Integer(), nullable=False),
        sa.Column('customer_id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        _money('discount_amount'),
        sa.Column('used_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['coupon_id'], ['coupons.id'],
                                name='fk_coupon_usages_coupon_id_coupons', ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id'],
                                name='fk_coupon_usages_customer_id_customers', ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'],
                                name='fk_coupon_usages_order_id_orders', ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id', name='pk_coupon_usages'),
        sa.UniqueConstraint('coupon_id', 'order_id', name='uq_coupon_usages_coupon_order'),
    )
    op.create_index('ix_coupon_usages_coupon_customer', 'coupon_usages', ['coupon_id', 'customer_id'])

    op.create_table(
        'admin_users',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('username', sa.String(100), nullable=False),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('full_name', sa.String(255), nullable=True),
        sa.Column('password_hash', sa.String(255), nullable=False),
        sa.Column('role', sa.String(20), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('last_login_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id', name='pk_admin_users'),
        sa.UniqueConstraint('username', name='uq_admin_users_username'),
    )

    op.create_table(
        'admin_audit_logs',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('admin_user_id', sa.Integer(), nullable=True),
        sa.Column('action', sa.String(100), nullable=False),
        sa.Column('details', sa.Text(), nullable=True),
        sa.Column('ip_address', sa.String(64), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['admin_user_id'], ['admin_users.id'],
                                name='fk_admin_audit_logs_admin_user_id_admin_users', ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id', name='pk_admin_audit_logs'),
    )
    op.create_index('ix_admin_audit_logs_admin_user_id', 'admin_audit_logs', ['admin_user_id'])
    op.create_index('ix_admin_audit_logs_created_at', 'admin_audit_logs', ['created_at'])

    op.create_table(
        'policy_documents',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('type', sa.String(20), nullable=False),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('content', sa.Text(), nullable=False),
        sa.Column('active', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id', name='pk_policy_documents'),
    )
    op.create_index('ix_policy_documents_type_active', 'policy_documents', ['type', 'active'])

    op.create_table(
        'policy_acceptances',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('customer_id', sa.Integer(), nullable=False),
        sa.Column('policy_id', sa.Integer(), nullable=False),
        sa.Column('context', sa.String(20), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=True),
        sa.Column('accepted_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id'],
                                name='fk_policy_acceptances_customer_id_customers', ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['policy_id'], ['policy_documents.id'],
                                name='fk_policy_acceptances_policy_id_policy_documents', ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'],
                                name='fk_policy_acceptances_order_id_orders', ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id', name='pk_policy_acceptances'),
    )
    op.create_index('ix_policy_acceptances_customer_id', 'policy_acceptances', ['customer_id'])

    op.create_table(
        'email_logs',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('email_type', sa.String(50), nullable=False),
        sa.Column('recipient', sa.String(255), nullable=False),
        sa.Column('subject', sa.String(255), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('provider', sa.String(20), nullable=True),
        sa.Column('message_id', sa.String(255), nullable=True),
        sa.Column('error', sa.Text(), nullable=True),
        sa.Column('order_id', sa.Integer(), nullable=True),
        sa.Column('customer_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'],
                                name='fk_email_logs_order_id_orders', ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id'],
                                name='fk_email_logs_customer_id_customers', ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id', name='pk_email_logs'),
    )
    op.create_index('ix_email_logs_status', 'email_logs', ['status'])
    op.create_index('ix_email_logs_email_type', 'email_logs', ['email_type'])
    op.create_index('ix_email_logs_created_at', 'email_logs', ['created_at'])

    op.create_table(
        'whatsapp_templates',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('content', sa.Text(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id', name='pk_whatsapp_templates'),
    )

    op.create_table(
        'whatsapp_messages',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=True),
        sa.Column('phone', sa.String(20), nullable=False),
        sa.Column('content', sa.Text(), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('job_id', sa.String(255), nullable=True),
        sa.Column('error', sa.Text(), nullable=True),
        sa.Column('sent_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'],
                                name='fk_whatsapp_messages_order_id_orders', ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id', name='pk_whatsapp_messages'),
    )
    op.create_index('ix_whatsapp_messages_order_id', 'whatsapp_messages', ['order_id'])


def downgrade() -> None:
    for table in (
        'whatsapp_messages', 'whatsapp_templates', 'email_logs', 'policy_acceptances', 'policy_documents',
        'admin_audit_logs', 'admin_users', 'coupon_usages', 'coupons', 'order_status_history', 'kits',
        'orders', 'event_cep_zone_prices', 'cep_zones', 'addresses', 'customers', 'events',
    ):
        op.drop_table(table)
