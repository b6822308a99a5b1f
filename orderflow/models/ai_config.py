from sqlalchemy import Boolean, Column, DateTime, Float, Integer, String, Text, func

from orderflow.core.database import Base


class AIConfig(Base):
    __tablename__ = "ai_configs"

    id = Column(Integer, primary_key=True)
    tenant_id = Column(Integer, index=True, nullable=False, unique=True)
    # openai / mock
    provider = Column(String, nullable=False, default="mock")
    enabled = Column(Boolean, nullable=False, default=True)
    model = Column(String, nullable=True)
    temperature = Column(Float, nullable=True)
    # instrucoes extras do restaurante, anexadas ao prompt
    system_prompt = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
