"""Loyalty gift catalog

Revision ID: 20261017_loyalty_gifts
Revises: 20261017_initial
Create Date: 2026-10-17

This migration adds:
1. loyalty_gifts (staff-managed rewards with points threshold and stock)
2. the two launch gifts, FREE_DELIVERY and TEA_CUPS_30
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261017_loyalty_gifts'
down_revision = '20261017_initial'
branch_labels = None
depends_on = None


def upgrade():
    gifts = op.create_table('loyalty_gifts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('code', sa.String(length=32), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('description', sa.String(length=255), nullable=True),
        sa.Column('points_required', sa.Integer(), nullable=False),
        sa.Column('stock_quantity', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('auto_update_stock', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_by_user_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.CheckConstraint('points_required > 0', name='ck_loyalty_gifts_points_positive'),
        sa.CheckConstraint('stock_quantity >= 0', name='ck_loyalty_gifts_stock_non_negative'),
        sa.ForeignKeyConstraint(['created_by_user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('code', name='uq_loyalty_gifts_code'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('loyalty_gifts', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_loyalty_gifts_is_active'), ['is_active'], unique=False)

    # Keep in step with loyalty_service.DEFAULT_GIFTS
    op.bulk_insert(gifts, [
        {
            'code': 'FREE_DELIVERY',
            'name': 'Free Delivery',
            'description': 'Delivery charges waived on this order',
            'points_required': 500,
            'stock_quantity': 0,
            'auto_update_stock': False,
            'is_active': True,
        },
        {
            'code': 'TEA_CUPS_30',
            'name': '30 Tea Cups',
            'description': '30 tea cups packed with this order',
            'points_required': 500,
            'stock_quantity': 100,
            'auto_update_stock': True,
            'is_active': True,
        },
    ])


def downgrade():
    with op.batch_alter_table('loyalty_gifts', schema=None) as batch_op:
        batch_op.drop_index(batch_op.f('ix_loyalty_gifts_is_active'))
    op.drop_table('loyalty_gifts')
