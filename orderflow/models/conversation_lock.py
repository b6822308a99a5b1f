from sqlalchemy import Column, DateTime, ForeignKey, Integer, String

from orderflow.core.clock import utcnow
from orderflow.core.database import Base


class ConversationLock(Base):
    __tablename__ = "conversation_locks"

    id = Column(Integer, primary_key=True)
    tenant_id = Column(Integer, index=True, nullable=False)
    conversation_id = Column(Integer, ForeignKey("conversations.id"), unique=True, nullable=False)
    locked_by = Column(String(120), nullable=False)
    locked_at = Column(DateTime, default=utcnow, nullable=False)
    expires_at = Column(DateTime, index=True, nullable=False)
