from sqlalchemy import Column, DateTime, Index, Integer, String, Text

from orderflow.core.clock import utcnow
from orderflow.core.database import Base


class CustomerProfile(Base):
    __tablename__ = "customer_profiles"
    __table_args__ = (Index("ix_customer_profiles_tenant_phone", "tenant_id", "customer_phone", unique=True),)

    id = Column(Integer, primary_key=True)
    tenant_id = Column(Integer, nullable=False)
    customer_phone = Column(String(30), nullable=False)
    order_count = Column(Integer, nullable=False, default=0)
    # favoritos, opcoes preferidas e ultimas observacoes (JSON)
    preferences_json = Column(Text, nullable=False, default="{}")
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
