from sqlalchemy import Column, Integer

from orderflow.core.database import Base


class OrderNumberSequence(Base):
    __tablename__ = "order_number_sequences"

    tenant_id = Column(Integer, primary_key=True, autoincrement=False)
    last_number = Column(Integer, nullable=False, default=0)
