"""create_payment_tables

Revision ID: 3b1f5c2a9e41
Revises:
Create Date: 2025-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '3b1f5c2a9e41'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'users',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False, comment='邮箱'),
        sa.Column('stripe_account', sa.String(length=255), nullable=True, comment='网关子账户ID'),
        sa.Column('stripe_verified', sa.Boolean(), nullable=False, server_default=sa.false(), comment='是否已开通收款和提现'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False, comment='创建时间'),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False, comment='更新时间'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('stripe_account'),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    op.create_table(
        'products',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('seller_id', sa.String(length=36), nullable=False, comment='卖家ID'),
        sa.Column('title', sa.String(length=255), nullable=False, comment='标题'),
        sa.Column('price', sa.BigInteger(), nullable=False, comment='价格（最小货币单位）'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(['seller_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_products_seller_id', 'products', ['seller_id'], unique=False)

    op.create_table(
        'orders',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('buyer_id', sa.String(length=36), nullable=False, comment='买家ID'),
        sa.Column('seller_id', sa.String(length=36), nullable=False, comment='卖家ID'),
        sa.Column('product_id', sa.String(length=36), nullable=True, comment='商品ID'),
        sa.Column('amount', sa.BigInteger(), nullable=False, comment='金额（最小货币单位）'),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='PENDING', comment='订单状态: PENDING/COMPLETED/FAILED/REFUNDED'),
        sa.Column('checkout_session_id', sa.String(length=255), nullable=True, comment='网关结账会话ID'),
        sa.Column('payment_url', sa.String(length=2048), nullable=True, comment='支付跳转URL'),
        sa.Column('refund_id', sa.String(length=255), nullable=True, comment='网关退款ID'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False, comment='创建时间'),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False, comment='更新时间'),
        sa.ForeignKeyConstraint(['buyer_id'], ['users.id']),
        sa.ForeignKeyConstraint(['seller_id'], ['users.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('checkout_session_id'),
        sa.CheckConstraint('amount > 0', name='ck_orders_amount_positive'),
    )
    op.create_index('ix_orders_buyer_id', 'orders', ['buyer_id'], unique=False)
    op.create_index('ix_orders_seller_id', 'orders', ['seller_id'], unique=False)
    op.create_index('ix_orders_status', 'orders', ['status'], unique=False)
    op.create_index('ix_orders_buyer_created', 'orders', ['buyer_id', 'created_at'], unique=False)
    op.create_index('ix_orders_seller_created', 'orders', ['seller_id', 'created_at'], unique=False)

    op.create_table(
        'refunds',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('order_id', sa.String(length=36), nullable=False, comment='订单ID'),
        sa.Column('amount', sa.BigInteger(), nullable=False, comment='退款金额'),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='PENDING', comment='退款状态: PENDING/SUCCEEDED/FAILED'),
        sa.Column('gateway_refund_id', sa.String(length=255), nullable=True, comment='网关退款ID'),
        sa.Column('reason', sa.String(length=100), nullable=True, comment='退款原因'),
        sa.Column('failure_reason', sa.Text(), nullable=True, comment='失败原因'),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='1', comment='网关请求次数'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('metadata', sa.JSON(), nullable=True, comment='扩展元数据'),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('order_id'),
    )
    op.create_index('ix_refunds_status', 'refunds', ['status'], unique=False)
    op.create_index('ix_refunds_gateway_refund_id', 'refunds', ['gateway_refund_id'], unique=False)

    op.create_table(
        'payouts',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('user_id', sa.String(length=36), nullable=False, comment='用户ID'),
        sa.Column('amount', sa.BigInteger(), nullable=False, comment='提现金额'),
        sa.Column('stripe_payout_id', sa.String(length=255), nullable=False, comment='网关提现ID'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('stripe_payout_id'),
    )
    op.create_index('ix_payouts_user_created', 'payouts', ['user_id', 'created_at'], unique=False)

    op.create_table(
        'wallets',
        sa.Column('user_id', sa.String(length=36), nullable=False),
        sa.Column('balance', sa.BigInteger(), nullable=False, server_default='0', comment='余额（最小货币单位）'),
        sa.Column('last_payout', sa.DateTime(timezone=True), nullable=True, comment='最近一次提现时间'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('user_id'),
    )

    op.create_table(
        'webhook_events',
        sa.Column('id', sa.String(length=255), nullable=False, comment='网关事件ID'),
        sa.Column('event_type', sa.String(length=100), nullable=False, comment='事件类型'),
        sa.Column('payload', sa.JSON(), nullable=False, comment='原始事件'),
        sa.Column('processed', sa.Boolean(), nullable=False, server_default=sa.false(), comment='是否已处理'),
        sa.Column('error', sa.Text(), nullable=True, comment='处理错误'),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='1', comment='处理次数'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_webhook_events_event_type', 'webhook_events', ['event_type'], unique=False)
    op.create_index('ix_webhook_events_processed', 'webhook_events', ['processed', 'created_at'], unique=False)


def downgrade() -> None:
    op.drop_index('ix_webhook_events_processed', table_name='webhook_events')
    op.drop_index('ix_webhook_events_event_type', table_name='webhook_events')
    op.drop_table('webhook_events')
    op.drop_table('wallets')
    op.drop_index('ix_payouts_user_created', table_name='payouts')
    op.drop_table('payouts')
    op.drop_index('ix_refunds_gateway_refund_id', table_name='refunds')
    op.drop_index('ix_refunds_status', table_name='refunds')
    op.drop_table('refunds')
    op.drop_index('ix_orders_seller_created', table_name='orders')
    op.drop_index('ix_orders_buyer_created', table_name='orders')
    op.drop_index('ix_orders_status', table_name='orders')
    op.drop_index('ix_orders_seller_id', table_name='orders')
    op.drop_index('ix_orders_buyer_id', table_name='orders')
    op.drop_table('orders')
    op.drop_index('ix_products_seller_id', table_name='products')
    op.drop_table('products')
    op.drop_index('ix_users_email', table_name='users')
    op.drop_table('users')
