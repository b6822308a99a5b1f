from sqlalchemy import Boolean, Column, DateTime, Index, Integer, String

from orderflow.core.clock import utcnow
from orderflow.core.database import Base


class ModifierGroup(Base):
    __tablename__ = "modifier_groups"
    __table_args__ = (Index("ix_modifier_groups_tenant", "tenant_id"),)

    id = Column(Integer, primary_key=True)
    tenant_id = Column(Integer, nullable=False)
    name = Column(String, nullable=False)
    # SINGLE / MULTI
    selection_type = Column(String(10), default="SINGLE", nullable=False)
    required = Column(Boolean, default=False, nullable=False)
    min_selection = Column(Integer, default=0, nullable=False)
    max_selection = Column(Integer, default=1, nullable=False)
    order_index = Column(Integer, default=0, nullable=False)
    active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
