from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, Text

from orderflow.core.clock import utcnow
from orderflow.core.database import Base


class MessageLog(Base):
    __tablename__ = "message_logs"

    id = Column(Integer, primary_key=True)
    tenant_id = Column(Integer, nullable=False, index=True)
    conversation_id = Column(Integer, ForeignKey("conversations.id"), nullable=True)
    direction = Column(String(3), nullable=False)  # in / out
    phone = Column(String(30), nullable=True)
    # text / buttons / list / location_request / location / image / voice / interactive
    message_type = Column(String(20), nullable=False)
    text = Column(Text, nullable=True)
    payload_json = Column(Text, nullable=True)
    status = Column(String(20), nullable=False)
    error = Column(Text, nullable=True)
    provider_message_id = Column(String, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)


Index("ix_message_logs_conversation_created", MessageLog.conversation_id, MessageLog.created_at)
