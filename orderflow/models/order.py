from sqlalchemy import Column, DateTime, Float, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import relationship

from orderflow.core.clock import utcnow
from orderflow.core.database import Base


class Order(Base):
    __tablename__ = "orders"
    __table_args__ = (
        Index("ix_orders_tenant_number", "tenant_id", "order_number", unique=True),
        Index("ix_orders_conversation_status", "conversation_id", "status"),
    )

    id = Column(Integer, primary_key=True)
    tenant_id = Column(Integer, index=True, nullable=False)
    conversation_id = Column(Integer, ForeignKey("conversations.id"), nullable=True)
    store_id = Column(Integer, ForeignKey("stores.id"), nullable=True)

    # alocado apenas em DRAFT -> PENDING_CONFIRMATION
    order_number = Column(Integer, nullable=True)

    # DRAFT / PENDING_CONFIRMATION / CONFIRMED / PREPARING / READY / DELIVERED / CANCELLED
    status = Column(String(30), nullable=False, default="DRAFT")

    customer_phone = Column(String(30), nullable=False)
    customer_name = Column(String(120), nullable=True)

    total_cents = Column(Integer, nullable=False, default=0)
    delivery_fee_cents = Column(Integer, nullable=False, default=0)
    notes = Column(Text, nullable=True)

    delivery_lat = Column(Float, nullable=True)
    delivery_lng = Column(Float, nullable=True)
    payment_method = Column(String(20), nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    items = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.id",
    )
    payments = relationship("OrderPayment", back_populates="order", cascade="all, delete-orphan")
