"""seed catalog

Revision ID: 0002
Revises: 0001_init
Create Date: 2026-10-19 10:00:00

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '0002'
down_revision = '0001_init'
branch_labels = None
depends_on = None

PRODUCT_IDS = [
    '6f1c2d3e-0001-4a5b-9c8d-000000000001',
    '6f1c2d3e-0001-4a5b-9c8d-000000000002',
    '6f1c2d3e-0001-4a5b-9c8d-000000000003',
]

def upgrade():
    products = sa.table(
        'products',
        sa.column('id', sa.String),
        sa.column('name', sa.String),
        sa.column('slug', sa.String),
        sa.column('description', sa.Text),
        sa.column('base_price', sa.Numeric),
        sa.column('images', sa.JSON),
        sa.column('sizes', sa.JSON),
        sa.column('colors', sa.JSON),
        sa.column('is_active', sa.Boolean),
    )
    variants = sa.table(
        'product_variants',
        sa.column('id', sa.String),
        sa.column('product_id', sa.String),
        sa.column('sku', sa.String),
        sa.column('size', sa.String),
        sa.column('color', sa.String),
        sa.column('price_override', sa.Numeric),
        sa.column('is_active', sa.Boolean),
    )
    op.bulk_insert(products, [
        {
            'id': PRODUCT_IDS[0], 'name': 'Classic Tee', 'slug': 'classic-tee',
            'description': 'Heavyweight cotton t-shirt', 'base_price': 29.99,
            'images': ['https://cdn.example.com/products/classic-tee.jpg'],
            'sizes': ['S', 'M', 'L', 'XL'], 'colors': ['Black', 'White'], 'is_active': True,
        },
        {
            'id': PRODUCT_IDS[1], 'name': 'Logo Cap', 'slug': 'logo-cap',
            'description': 'Six-panel cap with embroidered logo', 'base_price': 24.99,
            'images': ['https://cdn.example.com/products/logo-cap.jpg'],
            'sizes': ['One Size'], 'colors': ['Navy', 'Black'], 'is_active': True,
        },
        {
            'id': PRODUCT_IDS[2], 'name': 'Zip Hoodie', 'slug': 'zip-hoodie',
            'description': 'Brushed fleece full-zip hoodie', 'base_price': 64.99,
            'images': ['https://cdn.example.com/products/zip-hoodie.jpg'],
            'sizes': ['S', 'M', 'L', 'XL'], 'colors': ['Grey'], 'is_active': True,
        },
    ])
    # XL hoodies cost more; other combinations use the base price
    op.bulk_insert(variants, [
        {
            'id': '6f1c2d3e-0002-4a5b-9c8d-000000000001', 'product_id': PRODUCT_IDS[2],
            'sku': 'HOOD-GRY-XL', 'size': 'XL', 'color': 'Grey', 'price_override': 69.99, 'is_active': True,
        },
    ])

def downgrade():
    op.execute(sa.text("DELETE FROM product_variants WHERE product_id IN :ids").bindparams(
        sa.bindparam('ids', expanding=True, value=PRODUCT_IDS)))
    op.execute(sa.text("DELETE FROM products WHERE id IN :ids").bindparams(
        sa.bindparam('ids', expanding=True, value=PRODUCT_IDS)))
