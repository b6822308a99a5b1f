from sqlalchemy import Column, Float, ForeignKey, Integer, String

from orderflow.core.database import Base


class MenuSynonym(Base):
    __tablename__ = "menu_synonyms"

    id = Column(Integer, primary_key=True)
    tenant_id = Column(Integer, index=True, nullable=False)
    menu_item_id = Column(Integer, ForeignKey("menu_items.id"), index=True, nullable=False)
    phrase = Column(String(120), nullable=False)
    weight = Column(Float, nullable=False, default=1.0)
