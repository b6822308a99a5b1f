"""Reconciles extracted items against the conversation's draft order.

Lines are identified by ``item_key``: the menu item id alone, or the id plus a
hash of its sorted ``group:option`` pairs. Items are applied in extraction
order; the draft is created lazily on the first insert and deleted when the
last line goes away.
"""

from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import dataclass, field
from typing import Iterable

from sqlalchemy.orm import Session

from orderflow.ai.schema import ExtractedItem, ExtraSelection, OptionSelection
from orderflow.models.conversation import Conversation
from orderflow.models.order import Order
from orderflow.models.order_item import OrderItem
from orderflow.services import orders as order_service
from orderflow.services.catalog import CatalogItem, PublishedMenu
from orderflow.services.text_normalizer import normalize

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolvedOption:
    group_name: str
    option_name: str
    price_delta_cents: int = 0

    @property
    def canonical(self) -> str:
        return f"{normalize(self.group_name)}:{normalize(self.option_name)}"

    def to_dict(self) -> dict:
        return {
            "group_name": self.group_name,
            "option_name": self.option_name,
            "price_delta_cents": self.price_delta_cents,
        }


@dataclass
class MergeResult:
    order: Order | None = None
    draft_deleted: bool = False
    added: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    updated: list[str] = field(default_factory=list)
    skipped: list[int] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.added or self.removed or self.updated or self.draft_deleted)


def item_key(menu_item_id: int, options: Iterable[ResolvedOption]) -> str:
    pairs = sorted({option.canonical for option in options})
    if not pairs:
        return str(menu_item_id)
    digest = hashlib.sha1("|".join(pairs).encode("utf-8")).hexdigest()[:12]
    return f"{menu_item_id}:{digest}"


def resolve_options(
    menu: PublishedMenu,
    item: CatalogItem,
    selections: Iterable[OptionSelection],
) -> list[ResolvedOption]:
    """Maps free-text selections onto the item's option groups; unknown ones are dropped."""
    groups = menu.option_groups_for(item.id)
    resolved: list[ResolvedOption] = []
    per_group: dict[int, int] = {}
    for selection in selections:
        wanted_group = normalize(selection.group_name)
        wanted_option = normalize(selection.option_name)
        match = None
        # grupo informado primeiro, depois qualquer grupo que tenha a opcao
        ordered = sorted(groups, key=lambda group: normalize(group.name) != wanted_group)
        for group in ordered:
            for option in group.options:
                if normalize(option.name) == wanted_option:
                    match = (group, option)
                    break
            if match:
                break
        if not match:
            logger.info("Option ignored: item=%s %s:%s", item.id, selection.group_name, selection.option_name)
            continue
        group, option = match
        if per_group.get(group.id, 0) >= max(group.max_selection, 1):
            logger.info("Option over group limit ignored: item=%s group=%s", item.id, group.name)
            continue
        candidate = ResolvedOption(group_name=group.name, option_name=option.name, price_delta_cents=option.price_delta_cents)
        if candidate in resolved:
            continue
        per_group[group.id] = per_group.get(group.id, 0) + 1
        resolved.append(candidate)
    return sorted(resolved, key=lambda option: option.canonical)


def unit_price(item: CatalogItem, options: Iterable[ResolvedOption]) -> int:
    return int(item.base_price_cents) + sum(int(option.price_delta_cents) for option in options)


def _merge_notes(current: str | None, new: str | None) -> str | None:
    new = (new or "").strip()
    if not new:
        return current
    if not current:
        return new
    existing = [part.strip() for part in current.split(",")]
    if new in existing:
        return current
    return f"{current}, {new}"


def _merge_extras(current_json: str | None, extras: Iterable[ExtraSelection]) -> str:
    try:
        current = json.loads(current_json or "[]")
    except (TypeError, ValueError):
        current = []
    by_name = {normalize(entry.get("name")): entry for entry in current if isinstance(entry, dict) and entry.get("name")}
    for extra in extras:
        key = normalize(extra.name)
        if key in by_name:
            by_name[key]["qty"] = extra.qty
        else:
            by_name[key] = {"name": extra.name, "qty": extra.qty}
    return json.dumps(list(by_name.values()), ensure_ascii=False)


def _find_line(lines: list[OrderItem], key: str, menu_item_id: int, *, fallback: bool) -> OrderItem | None:
    for line in lines:
        if line.item_key == key:
            return line
    if fallback:
        for line in lines:
            if line.menu_item_id == menu_item_id:
                return line
    return None


def merge_extraction(
    db: Session,
    conversation: Conversation,
    menu: PublishedMenu,
    items: list[ExtractedItem],
    *,
    order_notes: str | None = None,
) -> MergeResult:
    order = order_service.get_active_draft(db, conversation)
    lines: list[OrderItem] = list(order.items) if order else []
    result = MergeResult(order=order)

    for extracted in items:
        catalog_item = menu.get_item(extracted.menu_item_id)
        if catalog_item is None:
            logger.warning("Extracted item not in published menu: %s", extracted.menu_item_id)
            result.skipped.append(extracted.menu_item_id)
            continue

        options = resolve_options(menu, catalog_item, extracted.option_selections)
        key = item_key(catalog_item.id, options)

        if extracted.action == "add":
            line = _find_line(lines, key, catalog_item.id, fallback=False)
            if line is not None:
                line.quantity = int(line.quantity) + int(extracted.qty)
                line.unit_price_cents = unit_price(catalog_item, options)
                line.name = catalog_item.name
                line.notes = extracted.notes or line.notes
                if extracted.extras:
                    line.extras_json = _merge_extras(None, extracted.extras)
                result.updated.append(catalog_item.name)
                continue
            if order is None:
                order = order_service.create_draft(db, conversation)
                result.order = order
            line = OrderItem(
                tenant_id=conversation.tenant_id,
                menu_item_id=catalog_item.id,
                item_key=key,
                name=catalog_item.name,
                quantity=int(extracted.qty),
                unit_price_cents=unit_price(catalog_item, options),
                options_json=json.dumps([option.to_dict() for option in options], ensure_ascii=False),
                extras_json=_merge_extras(None, extracted.extras),
                notes=(extracted.notes or "").strip() or None,
            )
            order.items.append(line)
            lines.append(line)
            result.added.append(catalog_item.name)

        elif extracted.action == "remove":
            line = _find_line(lines, key, catalog_item.id, fallback=True)
            if line is None:
                logger.info("Remove ignored, line not in draft: item=%s", catalog_item.id)
                continue
            lines.remove(line)
            order.items.remove(line)
            result.removed.append(line.name)

        else:
            line = _find_line(lines, key, catalog_item.id, fallback=True)
            if line is None:
                logger.info("Keep ignored, line not in draft: item=%s", catalog_item.id)
                continue
            before = (line.notes, line.extras_json)
            line.notes = _merge_notes(line.notes, extracted.notes)
            if extracted.extras:
                line.extras_json = _merge_extras(line.extras_json, extracted.extras)
            if (line.notes, line.extras_json) != before:
                result.updated.append(line.name)

    if order is None:
        return result

    if not order.items:
        order_service.delete_draft(db, conversation, order)
        result.order = None
        result.draft_deleted = True
        logger.info("Draft emptied and deleted: conversation=%s", conversation.id)
        return result

    if order_notes:
        order.notes = _merge_notes(order.notes, order_notes)
    order_service.recompute_total(order)
    conversation.active_order_id = order.id
    db.flush()
    return result
