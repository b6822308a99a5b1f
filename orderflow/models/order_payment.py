from sqlalchemy import Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from orderflow.core.clock import utcnow
from orderflow.core.database import Base


class OrderPayment(Base):
    __tablename__ = "order_payments"

    id = Column(Integer, primary_key=True)
    tenant_id = Column(Integer, index=True, nullable=False)
    order_id = Column(Integer, ForeignKey("orders.id"), index=True, nullable=False)
    conversation_id = Column(Integer, ForeignKey("conversations.id"), nullable=True)

    # CASH / CREDIT_CARD
    method = Column(String(20), nullable=False)
    # PENDING / SUCCESS / FAILED / EXPIRED
    status = Column(String(20), nullable=False, default="PENDING")
    amount_cents = Column(Integer, nullable=False)

    token = Column(String(64), unique=True, index=True, nullable=True)
    checkout_url = Column(String, nullable=True)
    expires_at = Column(DateTime, nullable=True)
    paid_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    order = relationship("Order", back_populates="payments")
