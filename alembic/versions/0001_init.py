from alembic import op
import sqlalchemy as sa

revision = '0001_init'
down_revision = None
branch_labels = None
depends_on = None

def upgrade():
    op.create_table(
        'orders',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('order_number', sa.String(50), nullable=False),
        sa.Column('user_id', sa.String(100), nullable=True),
        sa.Column('status', sa.String(30), nullable=False, server_default='pending'),
        sa.Column('subtotal', sa.Numeric(10,2), nullable=False),
        sa.Column('shipping', sa.Numeric(10,2), nullable=False, server_default='0'),
        sa.Column('tax', sa.Numeric(10,2), nullable=False, server_default='0'),
        sa.Column('total', sa.Numeric(10,2), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False, server_default='cad'),
        sa.Column('stripe_session_id', sa.String(255), nullable=True),
        sa.Column('stripe_payment_intent_id', sa.String(255), nullable=True),
        sa.Column('shipping_address', sa.JSON, nullable=True),
        sa.Column('customer_email', sa.String(255), nullable=True),
        sa.Column('notes', sa.Text, nullable=True),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('shipped_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('delivered_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now())
    )
    op.create_index('ix_orders_order_number', 'orders', ['order_number'], unique=True)
    op.create_index('ix_orders_user_id', 'orders', ['user_id'])
    op.create_index('ix_orders_status', 'orders', ['status'])
    op.create_index('ix_orders_stripe_session_id', 'orders', ['stripe_session_id'])
    op.create_index('ix_orders_created_at', 'orders', ['created_at'])

    op.create_table(
        'order_items',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('order_id', sa.String(36), sa.ForeignKey('orders.id', ondelete='CASCADE'), nullable=False),
        sa.Column('line_number', sa.Integer, nullable=False),
        sa.Column('product_id', sa.String(100), nullable=True),
        sa.Column('variant_id', sa.String(200), nullable=True),
        sa.Column('product_name', sa.String(255), nullable=False),
        sa.Column('product_image', sa.Text, nullable=True),
        sa.Column('size', sa.String(50), nullable=True),
        sa.Column('color', sa.String(50), nullable=True),
        sa.Column('quantity', sa.Integer, nullable=False),
        sa.Column('unit_price', sa.Numeric(10,2), nullable=False),
        sa.Column('total_price', sa.Numeric(10,2), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint('order_id', 'line_number', name='uq_order_items_order_line')
    )
    op.create_index('ix_order_items_order_id', 'order_items', ['order_id'])

    op.create_table(
        'order_number_counters',
        sa.Column('year', sa.Integer, primary_key=True, autoincrement=False),
        sa.Column('last_value', sa.Integer, nullable=False, server_default='0')
    )

    op.create_table(
        'payment_events',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('event_id', sa.String(255), nullable=False, unique=True),
        sa.Column('event_type', sa.String(100), nullable=False),
        sa.Column('order_id', sa.String(36), nullable=True),
        sa.Column('order_number', sa.String(50), nullable=True),
        sa.Column('outcome', sa.String(20), nullable=False),
        sa.Column('reason', sa.String(255), nullable=True),
        sa.Column('amount', sa.Numeric(10,2), nullable=True),
        sa.Column('currency', sa.String(3), nullable=True),
        sa.Column('reference', sa.String(255), nullable=True),
        sa.Column('received_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now())
    )
    op.create_index('ix_payment_events_order_id', 'payment_events', ['order_id'])

    op.create_table(
        'products',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('slug', sa.String(255), nullable=False),
        sa.Column('description', sa.Text, nullable=True),
        sa.Column('base_price', sa.Numeric(10,2), nullable=False),
        sa.Column('images', sa.JSON, nullable=False),
        sa.Column('sizes', sa.JSON, nullable=False),
        sa.Column('colors', sa.JSON, nullable=False),
        sa.Column('is_active', sa.Boolean, nullable=False, server_default=sa.text('true')),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now())
    )
    op.create_index('ix_products_slug', 'products', ['slug'], unique=True)

    op.create_table(
        'product_variants',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('product_id', sa.String(36), sa.ForeignKey('products.id', ondelete='CASCADE'), nullable=False),
        sa.Column('sku', sa.String(100), nullable=True),
        sa.Column('size', sa.String(50), nullable=True),
        sa.Column('color', sa.String(50), nullable=True),
        sa.Column('price_override', sa.Numeric(10,2), nullable=True),
        sa.Column('is_active', sa.Boolean, nullable=False, server_default=sa.text('true'))
    )
    op.create_index('ix_product_variants_product_id', 'product_variants', ['product_id'])

def downgrade():
    op.drop_table('product_variants')
    op.drop_table('products')
    op.drop_table('payment_events')
    op.drop_table('order_number_counters')
    op.drop_table('order_items')
    op.drop_table('orders')
