from sqlalchemy import Boolean, Column, DateTime, Float, ForeignKey, Integer, String, Text

from orderflow.core.clock import utcnow
from orderflow.core.database import Base


class OrderIntent(Base):
    __tablename__ = "order_intents"

    id = Column(Integer, primary_key=True)
    tenant_id = Column(Integer, index=True, nullable=False)
    conversation_id = Column(Integer, ForeignKey("conversations.id"), index=True, nullable=False)
    message_id = Column(String, nullable=True)

    user_text = Column(Text, nullable=False)
    extracted_json = Column(Text, nullable=False)
    candidate_ids_json = Column(Text, nullable=False, default="[]")
    confidence = Column(Float, nullable=False, default=0.0)
    needs_clarification = Column(Boolean, nullable=False, default=False)
    clarification_question = Column(Text, nullable=True)

    # correct / incorrect, preenchido depois pelo atendente
    agent_feedback = Column(String(20), nullable=True)
    feedback_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
