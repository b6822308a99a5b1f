from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, Text

from orderflow.core.clock import utcnow
from orderflow.core.database import Base


class Conversation(Base):
    __tablename__ = "conversations"
    __table_args__ = (
        Index("ix_conversations_tenant_phone", "tenant_id", "customer_phone", unique=True),
    )

    id = Column(Integer, primary_key=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id"), index=True, nullable=False)
    customer_phone = Column(String(30), nullable=False)
    customer_name = Column(String(120), nullable=True)

    phase = Column(String(40), nullable=False, default="IDLE")
    # open / pending_agent / closed
    status = Column(String(20), nullable=False, default="open")

    # no maximo um DRAFT referenciado por vez
    active_order_id = Column(Integer, nullable=True)

    # ultimo resultado do geo check (JSON serializado)
    geo_check_json = Column(Text, nullable=True)

    last_message_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
