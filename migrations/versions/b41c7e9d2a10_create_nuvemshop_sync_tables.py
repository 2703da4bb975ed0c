"""create_nuvemshop_sync_tables

Revision ID: b41c7e9d2a10
Revises:
Create Date: 2025-09-02 10:20:00.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = 'b41c7e9d2a10'
down_revision = None
branch_labels = None
depends_on = None


def _record_columns():
    return [
        sa.Column('sync_status', sa.String(length=16), nullable=False, server_default='synced'),
        sa.Column('last_synced_at', sa.DateTime(), nullable=False),
        sa.Column('api_updated_at', sa.DateTime(), nullable=True),
        sa.Column('raw', sa.JSON(), nullable=True),
    ]


def upgrade():
    op.create_table(
        'sync_locks',
        sa.Column('resource_key', sa.String(length=128), primary_key=True),
        sa.Column('owner_token', sa.String(length=64), nullable=False),
        sa.Column('acquired_at', sa.DateTime(), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_sync_locks_expires_at', 'sync_locks', ['expires_at'])

    op.create_table(
        'processed_events',
        sa.Column('event_id', sa.String(length=255), primary_key=True),
        sa.Column('event_type', sa.String(length=64), nullable=False),
        sa.Column('entity_collection', sa.String(length=32), nullable=True),
        sa.Column('entity_id', sa.String(length=64), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('delivery_count', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('last_error', sa.String(), nullable=True),
        sa.Column('received_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_processed_events_event_type', 'processed_events', ['event_type'])
    op.create_index('ix_processed_events_received_at', 'processed_events', ['received_at'])

    op.create_table(
        'webhook_deliveries',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('event_id', sa.String(length=255), nullable=True),
        sa.Column('event_type', sa.String(length=64), nullable=True),
        sa.Column('entity_collection', sa.String(length=32), nullable=False),
        sa.Column('entity_id', sa.String(length=64), nullable=True),
        sa.Column('store_id', sa.String(length=64), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('signature_verified', sa.Boolean(), nullable=False),
        sa.Column('client_ip', sa.String(length=64), nullable=True),
        sa.Column('sync_run_id', sa.Uuid(), nullable=True),
        sa.Column('retry_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('error_message', sa.String(), nullable=True),
        sa.Column('payload', sa.JSON(), nullable=True),
        sa.Column('received_at', sa.DateTime(), nullable=False),
    )
    for column in ('event_id', 'event_type', 'entity_collection', 'status', 'sync_run_id', 'received_at'):
        op.create_index(f'ix_webhook_deliveries_{column}', 'webhook_deliveries', [column])

    op.create_table(
        'sync_cursors',
        sa.Column('entity_collection', sa.String(length=32), primary_key=True),
        sa.Column('last_synced_at', sa.DateTime(), nullable=False),
        sa.Column('last_status', sa.String(length=16), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )

    op.create_table(
        'sync_runs',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('entity_collection', sa.String(length=32), nullable=False),
        sa.Column('triggered_by', sa.String(length=16), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('event_id', sa.String(length=255), nullable=True),
        sa.Column('event_type', sa.String(length=64), nullable=True),
        sa.Column('deleted_entity_id', sa.String(length=64), nullable=True),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('next_attempt_at', sa.DateTime(), nullable=True),
        sa.Column('owner_token', sa.String(length=64), nullable=True),
        sa.Column('cursor_from', sa.DateTime(), nullable=True),
        sa.Column('watermark', sa.DateTime(), nullable=True),
        sa.Column('pages_fetched', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('records_fetched', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('records_upserted', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('records_deleted', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('error_message', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('started_at', sa.DateTime(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )
    for column in ('entity_collection', 'status', 'event_id', 'created_at'):
        op.create_index(f'ix_sync_runs_{column}', 'sync_runs', [column])

    op.create_table(
        'nuvemshop_orders',
        sa.Column('order_id', sa.String(length=64), primary_key=True),
        *_record_columns(),
        sa.Column('order_number', sa.String(length=64), nullable=True),
        sa.Column('contact_name', sa.String(), nullable=True),
        sa.Column('status', sa.String(length=32), nullable=True),
        sa.Column('payment_status', sa.String(length=32), nullable=True),
        sa.Column('fulfillment_status', sa.String(length=32), nullable=True),
        sa.Column('payment_method', sa.String(), nullable=True),
        sa.Column('province', sa.String(), nullable=True),
        sa.Column('coupon', sa.String(length=128), nullable=True),
        sa.Column('subtotal', sa.Float(), nullable=True),
        sa.Column('shipping_cost_customer', sa.Float(), nullable=True),
        sa.Column('promotional_discount', sa.Float(), nullable=True),
        sa.Column('discount_coupon', sa.Float(), nullable=True),
        sa.Column('discount_gateway', sa.Float(), nullable=True),
        sa.Column('total_discount_amount', sa.Float(), nullable=True),
        sa.Column('total', sa.Float(), nullable=True),
        sa.Column('products', sa.JSON(), nullable=True),
        sa.Column('created_at_nuvemshop', sa.DateTime(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_nuvemshop_orders_payment_status', 'nuvemshop_orders', ['payment_status'])
    op.create_index('ix_nuvemshop_orders_created_at_nuvemshop', 'nuvemshop_orders', ['created_at_nuvemshop'])

    op.create_table(
        'nuvemshop_products',
        sa.Column('product_id', sa.String(length=64), primary_key=True),
        *_record_columns(),
        sa.Column('name_pt', sa.String(), nullable=True),
        sa.Column('brand', sa.String(), nullable=True),
        sa.Column('handle', sa.String(), nullable=True),
        sa.Column('published', sa.Boolean(), nullable=False),
        sa.Column('free_shipping', sa.Boolean(), nullable=False),
        sa.Column('featured_image_id', sa.String(length=64), nullable=True),
        sa.Column('featured_image_src', sa.String(), nullable=True),
        sa.Column('tags', sa.String(), nullable=True),
        sa.Column('variants', sa.JSON(), nullable=True),
    )
    op.create_index('ix_nuvemshop_products_brand', 'nuvemshop_products', ['brand'])

    op.create_table(
        'nuvemshop_coupons',
        sa.Column('coupon_id', sa.String(length=64), primary_key=True),
        *_record_columns(),
        sa.Column('code', sa.String(length=128), nullable=True),
        sa.Column('type', sa.String(length=16), nullable=True),
        sa.Column('value', sa.Float(), nullable=True),
        sa.Column('valid', sa.Boolean(), nullable=False),
        sa.Column('used', sa.Integer(), nullable=False),
        sa.Column('max_uses', sa.Integer(), nullable=True),
        sa.Column('start_date', sa.DateTime(), nullable=True),
        sa.Column('end_date', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_nuvemshop_coupons_code', 'nuvemshop_coupons', ['code'])

    op.create_table(
        'nuvemshop_customers',
        sa.Column('customer_id', sa.String(length=64), primary_key=True),
        *_record_columns(),
        sa.Column('name', sa.String(), nullable=True),
        sa.Column('total_spent', sa.Float(), nullable=True),
        sa.Column('last_order_id', sa.String(length=64), nullable=True),
        sa.Column('accepts_marketing', sa.Boolean(), nullable=False),
    )

    for table in ('nuvemshop_orders', 'nuvemshop_products', 'nuvemshop_coupons', 'nuvemshop_customers'):
        op.create_index(f'ix_{table}_sync_status', table, ['sync_status'])
        op.create_index(f'ix_{table}_last_synced_at', table, ['last_synced_at'])


def downgrade():
    for table in ('nuvemshop_customers', 'nuvemshop_coupons', 'nuvemshop_products', 'nuvemshop_orders',
                  'sync_runs', 'sync_cursors', 'webhook_deliveries', 'processed_events', 'sync_locks'):
        op.drop_table(table)
