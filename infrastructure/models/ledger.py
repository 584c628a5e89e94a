"""
支付台账数据库模型 - SQLAlchemy ORM模型
注意：这是基础设施层的实现细节，不是领域模型
"""
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Index, Integer, Numeric, String, Text

from .base import Base


class LedgerEntryModel(Base):
    """
    支付台账数据库模型

    这是数据库表的映射，不包含业务逻辑
    状态机等业务规则都在 domain.payment.entity.LedgerEntry 中
    """
    __tablename__ = "payment_ledger"

    # 主键
    id = Column(Integer, primary_key=True, autoincrement=True)

    # 票号 / 网关支付ID
    ticket_id = Column(String(36), unique=True, nullable=False, comment="内部票号 UUID")
    gateway_payment_id = Column(String(64), unique=True, nullable=True, comment="网关支付ID，绑定后不可修改")

    # 状态
    status = Column(
        String(20),
        nullable=False,
        default="pending",
        index=True,
        comment="支付状态: pending/approved/rejected/in_process/refunded/cancelled",
    )
    status_detail = Column(String(255), nullable=True, comment="网关状态明细")
    fulfilled = Column(Boolean, nullable=False, default=False, comment="是否已履约（发票）")

    # 购票信息
    payment_method = Column(String(20), nullable=True, comment="支付方式: credit_card/pix")
    amount = Column(Numeric(precision=12, scale=2), nullable=True, comment="支付金额")
    description = Column(String(255), nullable=True, comment="支付描述")
    payer_email = Column(String(255), nullable=True, comment="付款人邮箱（履约用）")

    # 对账失败标记
    reconciliation_failed = Column(Boolean, nullable=False, default=False, comment="对账失败，需要跟进")
    reconciliation_error = Column(Text, nullable=True, comment="最近一次对账失败原因")

    # 时间戳
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        comment="创建时间",
    )
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
        comment="更新时间",
    )

    __table_args__ = (
        Index("ix_payment_ledger_reconciliation_failed", "reconciliation_failed", "updated_at"),
    )

    def __repr__(self):
        return (
            f"<LedgerEntryModel(ticket_id='{self.ticket_id}', "
            f"gateway_payment_id='{self.gateway_payment_id}', status='{self.status}', "
            f"fulfilled={self.fulfilled})>"
        )
