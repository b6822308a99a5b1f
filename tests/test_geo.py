import pytest

from orderflow.models.delivery_rule import DeliveryRule
from orderflow.models.store import Store
from orderflow.services.geo import GeoCheckResult, check_service_area, haversine_km, minimum_basket_cents
from tests.fixtures_data import LOCATION_ALTERNATIVE, LOCATION_FAR, LOCATION_NEAR


def _check(db, point, tenant_id=1):
    return check_service_area(db, tenant_id, point["latitude"], point["longitude"])


def test_haversine_distance_is_symmetric_and_plausible():
    forward = haversine_km(40.99, 29.03, 41.0, 29.03)
    backward = haversine_km(41.0, 29.03, 40.99, 29.03)

    assert forward == pytest.approx(backward)
    assert forward == pytest.approx(1.11, abs=0.01)
    assert haversine_km(41.0, 29.0, 41.0, 29.0) == 0


def test_smallest_covering_radius_decides_fee_and_minimum(db):
    result = _check(db, LOCATION_NEAR)

    assert result.within_area is True
    assert result.nearest_store.name == "Kadikoy Subesi"
    assert result.delivery_rule.radius_km == 3.0
    assert result.delivery_rule.delivery_fee_cents == 1000
    assert result.delivery_rule.min_basket_cents == 5000


def test_outer_ring_uses_larger_rule(db):
    result = check_service_area(db, 1, 41.0305, 29.03)

    assert result.within_area is True
    assert result.delivery_rule.radius_km == 6.0
    assert result.delivery_rule.delivery_fee_cents == 2500


def test_outside_area_lists_stores_within_twice_their_radius(db):
    result = _check(db, LOCATION_ALTERNATIVE)

    assert result.within_area is False
    assert [entry.store.name for entry in result.alternatives] == ["Kadikoy Subesi"]
    assert "Kadikoy Subesi" in result.message


def test_far_outside_area_has_no_alternatives(db):
    result = _check(db, LOCATION_FAR)

    assert result.within_area is False
    assert result.alternatives == []
    assert result.message == "Maalesef bu bolgeye hizmet veremiyoruz."


def test_nearest_store_wins_when_several_exist(db):
    db.add(Store(id=2, tenant_id=1, name="Sariyer Subesi", lat=41.2, lng=29.03, is_active=True))
    db.add(DeliveryRule(tenant_id=1, store_id=2, radius_km=5.0, min_basket_cents=8000, delivery_fee_cents=1500))
    db.commit()

    result = _check(db, LOCATION_FAR)

    assert result.within_area is True
    assert result.nearest_store.id == 2
    assert result.delivery_rule.min_basket_cents == 8000


def test_inactive_rules_are_ignored(db):
    for rule in db.query(DeliveryRule).all():
        rule.is_active = False
    db.commit()

    result = _check(db, LOCATION_NEAR)

    assert result.within_area is False
    assert minimum_basket_cents(db, 1) is None


def test_tenant_without_stores(db):
    result = _check(db, LOCATION_NEAR, tenant_id=2)

    assert result.within_area is False
    assert result.nearest_store is None
    assert result.message == "Henuz hizmet veren subemiz bulunmamaktadir."


def test_minimum_basket_is_smallest_active_minimum(db):
    assert minimum_basket_cents(db, 1) == 5000


def test_result_survives_json_storage(db):
    stored = _check(db, LOCATION_ALTERNATIVE).to_json()

    restored = GeoCheckResult.from_json(stored)

    assert restored.within_area is False
    assert restored.alternatives[0].store.name == "Kadikoy Subesi"
    assert GeoCheckResult.from_json("not json") is None
    assert GeoCheckResult.from_json(None) is None
