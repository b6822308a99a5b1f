from __future__ import annotations

import json
import logging
import math
from dataclasses import asdict, dataclass, field

from sqlalchemy.orm import Session

from orderflow.models.delivery_rule import DeliveryRule
from orderflow.models.store import Store

logger = logging.getLogger(__name__)

EARTH_RADIUS_KM = 6371.0
ALTERNATIVE_RADIUS_FACTOR = 2
MAX_ALTERNATIVES = 3


@dataclass
class StoreInfo:
    id: int
    name: str
    lat: float
    lng: float


@dataclass
class DeliveryRuleInfo:
    id: int
    radius_km: float
    min_basket_cents: int
    delivery_fee_cents: int


@dataclass
class AlternativeStore:
    store: StoreInfo
    distance_km: float


@dataclass
class GeoCheckResult:
    within_area: bool
    message: str
    lat: float | None = None
    lng: float | None = None
    nearest_store: StoreInfo | None = None
    distance_km: float | None = None
    delivery_rule: DeliveryRuleInfo | None = None
    alternatives: list[AlternativeStore] = field(default_factory=list)

    def to_json(self) -> str:
        return json.dumps(asdict(self), ensure_ascii=False)

    @classmethod
    def from_json(cls, raw: str | None) -> "GeoCheckResult | None":
        if not raw:
            return None
        try:
            data = json.loads(raw)
        except (TypeError, ValueError):
            return None
        nearest = data.get("nearest_store")
        rule = data.get("delivery_rule")
        return cls(
            within_area=bool(data.get("within_area")),
            message=data.get("message") or "",
            lat=data.get("lat"),
            lng=data.get("lng"),
            nearest_store=StoreInfo(**nearest) if nearest else None,
            distance_km=data.get("distance_km"),
            delivery_rule=DeliveryRuleInfo(**rule) if rule else None,
            alternatives=[
                AlternativeStore(store=StoreInfo(**entry["store"]), distance_km=entry["distance_km"])
                for entry in data.get("alternatives") or []
            ],
        )


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    delta_lat = math.radians(lat2 - lat1)
    delta_lng = math.radians(lng2 - lng1)
    a = math.sin(delta_lat / 2) ** 2 + math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(delta_lng / 2) ** 2
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def _active_rules(db: Session, tenant_id: int) -> dict[int, list[DeliveryRule]]:
    rules = (
        db.query(DeliveryRule)
        .filter(DeliveryRule.tenant_id == tenant_id, DeliveryRule.is_active.is_(True))
        .order_by(DeliveryRule.radius_km.asc())
        .all()
    )
    by_store: dict[int, list[DeliveryRule]] = {}
    for rule in rules:
        by_store.setdefault(rule.store_id, []).append(rule)
    return by_store


def check_service_area(db: Session, tenant_id: int, lat: float, lng: float) -> GeoCheckResult:
    stores = db.query(Store).filter(Store.tenant_id == tenant_id, Store.is_active.is_(True)).all()
    if not stores:
        return GeoCheckResult(
            within_area=False,
            lat=lat,
            lng=lng,
            message="Henuz hizmet veren subemiz bulunmamaktadir.",
        )

    rules_by_store = _active_rules(db, tenant_id)
    ranked = sorted(
        ((store, haversine_km(lat, lng, store.lat, store.lng)) for store in stores),
        key=lambda entry: entry[1],
    )
    nearest, distance = ranked[0]
    nearest_info = StoreInfo(id=nearest.id, name=nearest.name, lat=nearest.lat, lng=nearest.lng)

    # menor raio que cobre o ponto = regra mais barata aplicavel
    applicable = next((rule for rule in rules_by_store.get(nearest.id, []) if distance <= rule.radius_km), None)
    if applicable:
        logger.info(
            "Location within service area: tenant=%s store=%s distance=%.2f radius=%s",
            tenant_id,
            nearest.id,
            distance,
            applicable.radius_km,
        )
        return GeoCheckResult(
            within_area=True,
            lat=lat,
            lng=lng,
            nearest_store=nearest_info,
            distance_km=round(distance, 2),
            delivery_rule=DeliveryRuleInfo(
                id=applicable.id,
                radius_km=applicable.radius_km,
                min_basket_cents=int(applicable.min_basket_cents or 0),
                delivery_fee_cents=int(applicable.delivery_fee_cents or 0),
            ),
            message=f"En yakin subemiz: {nearest.name} ({distance:.1f} km)",
        )

    alternatives: list[AlternativeStore] = []
    for store, store_distance in ranked:
        max_radius = max((rule.radius_km for rule in rules_by_store.get(store.id, [])), default=0)
        if max_radius > 0 and store_distance <= max_radius * ALTERNATIVE_RADIUS_FACTOR:
            alternatives.append(
                AlternativeStore(
                    store=StoreInfo(id=store.id, name=store.name, lat=store.lat, lng=store.lng),
                    distance_km=round(store_distance, 2),
                )
            )
        if len(alternatives) >= MAX_ALTERNATIVES:
            break

    logger.info("Location outside service area: tenant=%s nearest=%s distance=%.2f", tenant_id, nearest.id, distance)
    message = "Maalesef bu bolgeye hizmet veremiyoruz."
    if alternatives:
        names = ", ".join(f"{entry.store.name} ({entry.distance_km:.1f} km)" for entry in alternatives)
        message += f" En yakin subelerimiz: {names}"
    return GeoCheckResult(
        within_area=False,
        lat=lat,
        lng=lng,
        nearest_store=nearest_info,
        distance_km=round(distance, 2),
        alternatives=alternatives,
        message=message,
    )


def minimum_basket_cents(db: Session, tenant_id: int) -> int | None:
    """Smallest positive minimum basket among active rules, used for early warnings."""
    values = [
        int(rule.min_basket_cents)
        for rule in db.query(DeliveryRule)
        .filter(DeliveryRule.tenant_id == tenant_id, DeliveryRule.is_active.is_(True))
        .all()
        if rule.min_basket_cents and rule.min_basket_cents > 0
    ]
    return min(values) if values else None
