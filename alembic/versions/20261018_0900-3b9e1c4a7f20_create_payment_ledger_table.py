"""create_payment_ledger_table

Revision ID: 3b9e1c4a7f20
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '3b9e1c4a7f20'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'payment_ledger',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('ticket_id', sa.String(length=36), nullable=False, comment='内部票号 UUID'),
        sa.Column('gateway_payment_id', sa.String(length=64), nullable=True, comment='网关支付ID，绑定后不可修改'),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='pending',
                  comment='支付状态: pending/approved/rejected/in_process/refunded/cancelled'),
        sa.Column('status_detail', sa.String(length=255), nullable=True, comment='网关状态明细'),
        sa.Column('fulfilled', sa.Boolean(), nullable=False, server_default=sa.false(), comment='是否已履约（发票）'),
        sa.Column('payment_method', sa.String(length=20), nullable=True, comment='支付方式: credit_card/pix'),
        sa.Column('amount', sa.Numeric(precision=12, scale=2), nullable=True, comment='支付金额'),
        sa.Column('description', sa.String(length=255), nullable=True, comment='支付描述'),
        sa.Column('payer_email', sa.String(length=255), nullable=True, comment='付款人邮箱（履约用）'),
        sa.Column('reconciliation_failed', sa.Boolean(), nullable=False, server_default=sa.false(),
                  comment='对账失败，需要跟进'),
        sa.Column('reconciliation_error', sa.Text(), nullable=True, comment='最近一次对账失败原因'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False, comment='创建时间'),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False, comment='更新时间'),
        sa.PrimaryKeyConstraint('id', name='pk_payment_ledger'),
        sa.UniqueConstraint('ticket_id', name='uq_payment_ledger_ticket_id'),
        sa.UniqueConstraint('gateway_payment_id', name='uq_payment_ledger_gateway_payment_id'),
    )
    op.create_index('ix_payment_ledger_status', 'payment_ledger', ['status'], unique=False)
    op.create_index(
        'ix_payment_ledger_reconciliation_failed',
        'payment_ledger',
        ['reconciliation_failed', 'updated_at'],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index('ix_payment_ledger_reconciliation_failed', table_name='payment_ledger')
    op.drop_index('ix_payment_ledger_status', table_name='payment_ledger')
    op.drop_table('payment_ledger')
