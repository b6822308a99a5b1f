from sqlalchemy import Column, DateTime, Integer, String

from orderflow.core.clock import utcnow
from orderflow.core.database import Base


class ProcessedMessage(Base):
    __tablename__ = "processed_messages"

    message_id = Column(String, primary_key=True)
    tenant_id = Column(Integer, index=True, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
