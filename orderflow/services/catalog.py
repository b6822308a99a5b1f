from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from threading import Lock

from sqlalchemy.orm import Session

from orderflow.core.config import MENU_CACHE_TTL_SECONDS
from orderflow.models.menu_category import MenuCategory
from orderflow.models.menu_item import MenuItem
from orderflow.models.menu_item_modifier_group import MenuItemModifierGroup
from orderflow.models.menu_synonym import MenuSynonym
from orderflow.models.modifier_group import ModifierGroup
from orderflow.models.modifier_option import ModifierOption

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CatalogOption:
    id: int
    name: str
    price_delta_cents: int = 0
    is_default: bool = False


@dataclass(frozen=True)
class CatalogOptionGroup:
    id: int
    name: str
    selection_type: str = "SINGLE"
    required: bool = False
    min_selection: int = 0
    max_selection: int = 1
    options: tuple[CatalogOption, ...] = ()


@dataclass(frozen=True)
class CatalogItem:
    id: int
    name: str
    base_price_cents: int
    category_id: int | None = None
    category_name: str | None = None
    description: str | None = None
    active: bool = True
    option_group_ids: tuple[int, ...] = ()


@dataclass(frozen=True)
class CatalogCategory:
    id: int
    name: str
    items: tuple[CatalogItem, ...] = ()


@dataclass(frozen=True)
class CatalogSynonym:
    phrase: str
    item_id: int
    weight: float = 1.0


@dataclass
class PublishedMenu:
    tenant_id: int
    categories: list[CatalogCategory] = field(default_factory=list)
    option_groups: dict[int, CatalogOptionGroup] = field(default_factory=dict)
    synonyms: list[CatalogSynonym] = field(default_factory=list)

    def __post_init__(self) -> None:
        self._items_by_id = {item.id: item for category in self.categories for item in category.items}

    def items(self) -> list[CatalogItem]:
        return [item for category in self.categories for item in category.items if item.active]

    def get_item(self, item_id: int | None) -> CatalogItem | None:
        if item_id is None:
            return None
        item = self._items_by_id.get(int(item_id))
        if item is None or not item.active:
            return None
        return item

    def option_groups_for(self, item_id: int) -> list[CatalogOptionGroup]:
        item = self.get_item(item_id)
        if not item:
            return []
        return [self.option_groups[group_id] for group_id in item.option_group_ids if group_id in self.option_groups]

    def synonyms_for(self, item_id: int) -> list[CatalogSynonym]:
        return [synonym for synonym in self.synonyms if synonym.item_id == item_id]

    @property
    def is_empty(self) -> bool:
        return not self.items()


class InMemoryMenuCache:
    def __init__(self, ttl_seconds: float = MENU_CACHE_TTL_SECONDS) -> None:
        self.ttl_seconds = ttl_seconds
        self._entries: dict[int, tuple[float, PublishedMenu]] = {}
        self._lock = Lock()

    def get(self, tenant_id: int) -> PublishedMenu | None:
        with self._lock:
            entry = self._entries.get(tenant_id)
            if not entry:
                return None
            stored_at, menu = entry
            if time.monotonic() - stored_at > self.ttl_seconds:
                self._entries.pop(tenant_id, None)
                return None
            return menu

    def set(self, tenant_id: int, menu: PublishedMenu) -> None:
        with self._lock:
            self._entries[tenant_id] = (time.monotonic(), menu)

    def invalidate(self, tenant_id: int | None = None) -> None:
        with self._lock:
            if tenant_id is None:
                self._entries.clear()
            else:
                self._entries.pop(tenant_id, None)


menu_cache = InMemoryMenuCache()


def load_published_menu(db: Session, tenant_id: int) -> PublishedMenu:
    categories = (
        db.query(MenuCategory)
        .filter(MenuCategory.tenant_id == tenant_id, MenuCategory.active.is_(True))
        .order_by(MenuCategory.sort_order.asc(), MenuCategory.id.asc())
        .all()
    )
    category_names = {category.id: category.name for category in categories}
    items = (
        db.query(MenuItem)
        .filter(MenuItem.tenant_id == tenant_id, MenuItem.active.is_(True))
        .order_by(MenuItem.sort_order.asc(), MenuItem.id.asc())
        .all()
    )
    links = (
        db.query(MenuItemModifierGroup)
        .filter(MenuItemModifierGroup.tenant_id == tenant_id)
        .order_by(MenuItemModifierGroup.sort_order.asc(), MenuItemModifierGroup.id.asc())
        .all()
    )
    groups = (
        db.query(ModifierGroup)
        .filter(ModifierGroup.tenant_id == tenant_id, ModifierGroup.active.is_(True))
        .order_by(ModifierGroup.order_index.asc(), ModifierGroup.id.asc())
        .all()
    )
    group_ids = [group.id for group in groups]
    options = []
    if group_ids:
        options = (
            db.query(ModifierOption)
            .filter(ModifierOption.group_id.in_(group_ids), ModifierOption.is_active.is_(True))
            .order_by(ModifierOption.order_index.asc(), ModifierOption.id.asc())
            .all()
        )
    synonyms = db.query(MenuSynonym).filter(MenuSynonym.tenant_id == tenant_id).all()

    options_by_group: dict[int, list[CatalogOption]] = {}
    for option in options:
        options_by_group.setdefault(option.group_id, []).append(
            CatalogOption(
                id=option.id,
                name=option.name,
                price_delta_cents=int(option.price_delta_cents or 0),
                is_default=bool(option.is_default),
            )
        )
    option_groups = {
        group.id: CatalogOptionGroup(
            id=group.id,
            name=group.name,
            selection_type=group.selection_type or "SINGLE",
            required=bool(group.required),
            min_selection=int(group.min_selection or 0),
            max_selection=int(group.max_selection or 1),
            options=tuple(options_by_group.get(group.id, [])),
        )
        for group in groups
    }

    groups_by_item: dict[int, list[int]] = {}
    for link in links:
        if link.modifier_group_id in option_groups:
            groups_by_item.setdefault(link.menu_item_id, []).append(link.modifier_group_id)

    items_by_category: dict[int | None, list[CatalogItem]] = {}
    for item in items:
        if item.category_id is not None and item.category_id not in category_names:
            # categoria inativa esconde os itens
            continue
        items_by_category.setdefault(item.category_id, []).append(
            CatalogItem(
                id=item.id,
                name=item.name,
                base_price_cents=int(item.price_cents or 0),
                category_id=item.category_id,
                category_name=category_names.get(item.category_id),
                description=item.description,
                active=True,
                option_group_ids=tuple(groups_by_item.get(item.id, [])),
            )
        )

    catalog_categories = [
        CatalogCategory(id=category.id, name=category.name, items=tuple(items_by_category.get(category.id, [])))
        for category in categories
    ]
    if items_by_category.get(None):
        catalog_categories.append(CatalogCategory(id=0, name="Diger", items=tuple(items_by_category[None])))

    published_ids = {item.id for category in catalog_categories for item in category.items}
    return PublishedMenu(
        tenant_id=tenant_id,
        categories=catalog_categories,
        option_groups=option_groups,
        synonyms=[
            CatalogSynonym(phrase=synonym.phrase, item_id=synonym.menu_item_id, weight=float(synonym.weight or 1.0))
            for synonym in synonyms
            if synonym.menu_item_id in published_ids
        ],
    )


def get_published_menu(db: Session, tenant_id: int, *, use_cache: bool = True) -> PublishedMenu:
    if use_cache:
        cached = menu_cache.get(tenant_id)
        if cached is not None:
            return cached
    menu = load_published_menu(db, tenant_id)
    logger.debug("Menu loaded: tenant=%s items=%s", tenant_id, len(menu.items()))
    if use_cache:
        menu_cache.set(tenant_id, menu)
    return menu


def invalidate_menu(tenant_id: int | None = None) -> None:
    menu_cache.invalidate(tenant_id)
