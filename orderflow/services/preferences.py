from __future__ import annotations

import json
import logging
from collections import Counter

from sqlalchemy.orm import Session

from orderflow.models.customer_profile import CustomerProfile
from orderflow.models.order import Order
from orderflow.services.orders import item_options

logger = logging.getLogger(__name__)

MAX_FAVORITES = 20
MAX_NOTES = 5


def _load(profile: CustomerProfile | None) -> dict:
    if not profile:
        return {}
    try:
        data = json.loads(profile.preferences_json or "{}")
    except (TypeError, ValueError):
        return {}
    return data if isinstance(data, dict) else {}


def get_profile(db: Session, tenant_id: int, customer_phone: str) -> CustomerProfile | None:
    return (
        db.query(CustomerProfile)
        .filter(CustomerProfile.tenant_id == tenant_id, CustomerProfile.customer_phone == customer_phone)
        .first()
    )


def get_preferences(db: Session, tenant_id: int, customer_phone: str) -> dict:
    """Hints handed to extraction: favourite item names, preferred options, recent notes."""
    profile = get_profile(db, tenant_id, customer_phone)
    data = _load(profile)
    if not data:
        return {}
    favorites = data.get("favorite_items") or {}
    ranked = sorted(favorites.items(), key=lambda entry: (-entry[1], entry[0]))
    return {
        "favorite_items": [name for name, _ in ranked[:5]],
        "preferred_options": data.get("preferred_options") or {},
        "last_notes": (data.get("last_notes") or [])[-3:],
        "order_count": profile.order_count if profile else 0,
    }


def learn_from_order(db: Session, order: Order) -> CustomerProfile:
    profile = get_profile(db, order.tenant_id, order.customer_phone)
    if profile is None:
        profile = CustomerProfile(tenant_id=order.tenant_id, customer_phone=order.customer_phone, order_count=0)
        db.add(profile)
    data = _load(profile)

    favorites = Counter(data.get("favorite_items") or {})
    preferred = dict(data.get("preferred_options") or {})
    notes = list(data.get("last_notes") or [])

    for line in order.items:
        favorites[line.name] += int(line.quantity)
        for option in item_options(line):
            group = option.get("group_name")
            if group:
                preferred[group] = option.get("option_name")
        if line.notes:
            notes.append(line.notes)
    if order.notes:
        notes.append(order.notes)

    data["favorite_items"] = dict(favorites.most_common(MAX_FAVORITES))
    data["preferred_options"] = preferred
    data["last_notes"] = notes[-MAX_NOTES:]
    profile.preferences_json = json.dumps(data, ensure_ascii=False)
    profile.order_count = int(profile.order_count or 0) + 1
    db.flush()
    logger.info("Customer preferences updated: tenant=%s orders=%s", order.tenant_id, profile.order_count)
    return profile
