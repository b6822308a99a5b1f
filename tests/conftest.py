import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import orderflow.models  # noqa: F401  registra todas as tabelas no metadata
from orderflow.ai.service import extraction_breaker
from orderflow.core.database import Base
from orderflow.models.delivery_rule import DeliveryRule
from orderflow.models.menu_category import MenuCategory
from orderflow.models.menu_item import MenuItem
from orderflow.models.menu_item_modifier_group import MenuItemModifierGroup
from orderflow.models.menu_synonym import MenuSynonym
from orderflow.models.modifier_group import ModifierGroup
from orderflow.models.modifier_option import ModifierOption
from orderflow.models.store import Store
from orderflow.models.tenant import Tenant
from orderflow.services.catalog import invalidate_menu
from orderflow.services.inbox import get_or_create_conversation
from orderflow.whatsapp.cloud_provider import reset_cloud_breaker
from tests.fixtures_data import (
    CATEGORIES,
    CUSTOMER_PHONE,
    DELIVERY_RULES,
    ITEM_MODIFIER_LINKS,
    MENU_ITEMS,
    MODIFIER_GROUP,
    MODIFIER_OPTIONS,
    STORE,
    SYNONYMS,
    TENANT,
)


def seed_tenant(db) -> None:
    db.add(Tenant(**TENANT))
    for category in CATEGORIES:
        db.add(MenuCategory(**category))
    for item in MENU_ITEMS:
        db.add(MenuItem(**item))
    db.add(ModifierGroup(**MODIFIER_GROUP))
    for option in MODIFIER_OPTIONS:
        db.add(ModifierOption(**option))
    for link in ITEM_MODIFIER_LINKS:
        db.add(MenuItemModifierGroup(**link))
    for synonym in SYNONYMS:
        db.add(MenuSynonym(**synonym))
    db.add(Store(**STORE))
    for rule in DELIVERY_RULES:
        db.add(DeliveryRule(**rule))
    db.commit()


@pytest.fixture(autouse=True)
def _reset_process_state():
    invalidate_menu()
    extraction_breaker.reset()
    reset_cloud_breaker()
    yield
    invalidate_menu()
    extraction_breaker.reset()
    reset_cloud_breaker()


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield factory
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    seed_tenant(session)
    yield session
    session.close()


@pytest.fixture
def conversation(db):
    conversation = get_or_create_conversation(db, TENANT["id"], CUSTOMER_PHONE, "Ayse")
    db.commit()
    return conversation
