from sqlalchemy import Boolean, Column, Float, Integer, String
from sqlalchemy.orm import relationship

from orderflow.core.database import Base


class Store(Base):
    __tablename__ = "stores"

    id = Column(Integer, primary_key=True)
    tenant_id = Column(Integer, index=True, nullable=False)
    name = Column(String(120), nullable=False)
    address = Column(String(255), nullable=True)
    lat = Column(Float, nullable=False)
    lng = Column(Float, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)

    delivery_rules = relationship("DeliveryRule", back_populates="store", cascade="all, delete-orphan")
