from sqlalchemy import Column, DateTime, Float, Index, Integer, String

from orderflow.core.clock import utcnow
from orderflow.core.database import Base


class CustomerAddress(Base):
    __tablename__ = "customer_addresses"
    __table_args__ = (Index("ix_customer_addresses_tenant_phone", "tenant_id", "customer_phone"),)

    id = Column(Integer, primary_key=True)
    tenant_id = Column(Integer, nullable=False)
    customer_phone = Column(String(30), nullable=False)
    label = Column(String(60), nullable=False)
    address_text = Column(String(255), nullable=True)
    lat = Column(Float, nullable=False)
    lng = Column(Float, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
