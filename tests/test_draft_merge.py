import json

from orderflow.ai.schema import ExtractedItem, ExtraSelection, OptionSelection
from orderflow.models.order import Order
from orderflow.services.catalog import get_published_menu
from orderflow.services.draft_merge import ResolvedOption, item_key, merge_extraction


def _merge(db, conversation, items, **kwargs):
    menu = get_published_menu(db, conversation.tenant_id)
    result = merge_extraction(db, conversation, menu, items, **kwargs)
    db.commit()
    return result


def _assert_total_invariant(order):
    assert order.total_cents == sum(item.quantity * item.unit_price_cents for item in order.items)


def test_first_add_creates_draft_and_links_conversation(db, conversation):
    result = _merge(db, conversation, [ExtractedItem(menu_item_id=20, qty=2)])

    assert result.order is not None
    assert result.order.status == "DRAFT"
    assert conversation.active_order_id == result.order.id
    assert result.added == ["Kola"]
    assert result.order.total_cents == 6000


def test_same_identity_key_sums_quantities(db, conversation):
    _merge(db, conversation, [ExtractedItem(menu_item_id=20, qty=2)])
    result = _merge(db, conversation, [ExtractedItem(menu_item_id=20, qty=1)])

    order = result.order
    assert len(order.items) == 1
    assert order.items[0].quantity == 3
    assert result.updated == ["Kola"]
    _assert_total_invariant(order)


def test_same_item_and_options_twice_in_one_message_is_one_line(db, conversation):
    result = _merge(
        db,
        conversation,
        [
            ExtractedItem(
                menu_item_id=10,
                qty=1,
                option_selections=[OptionSelection(group_name="Boyut", option_name="Büyük")],
            ),
            ExtractedItem(
                menu_item_id=10,
                qty=2,
                option_selections=[OptionSelection(group_name="boyut", option_name="BUYUK")],
            ),
        ],
    )

    order = result.order
    assert len(order.items) == 1
    assert order.items[0].quantity == 3
    assert order.items[0].unit_price_cents == 12500
    assert order.total_cents == 37500
    _assert_total_invariant(order)


def test_option_sets_produce_separate_lines_with_option_prices(db, conversation):
    result = _merge(
        db,
        conversation,
        [
            ExtractedItem(menu_item_id=10, qty=1),
            ExtractedItem(
                menu_item_id=10,
                qty=2,
                option_selections=[OptionSelection(group_name="Boyut", option_name="Büyük")],
            ),
        ],
    )

    order = result.order
    assert len(order.items) == 2
    prices = sorted(item.unit_price_cents for item in order.items)
    assert prices == [9500, 12500]
    keys = {item.item_key for item in order.items}
    assert "10" in keys
    assert len(keys) == 2
    assert order.total_cents == 9500 + 2 * 12500


def test_item_key_is_order_independent():
    first = [ResolvedOption("Sos", "Aci"), ResolvedOption("Boyut", "Buyuk")]
    second = list(reversed(first))

    assert item_key(10, first) == item_key(10, second)
    assert item_key(10, []) == "10"


def test_unknown_option_is_dropped(db, conversation):
    result = _merge(
        db,
        conversation,
        [ExtractedItem(menu_item_id=10, option_selections=[OptionSelection(group_name="Sos", option_name="Ranch")])],
    )

    line = result.order.items[0]
    assert line.item_key == "10"
    assert json.loads(line.options_json) == []


def test_remove_falls_back_to_any_variant_of_the_item(db, conversation):
    _merge(
        db,
        conversation,
        [
            ExtractedItem(
                menu_item_id=10,
                option_selections=[OptionSelection(group_name="Boyut", option_name="Buyuk")],
            ),
            ExtractedItem(menu_item_id=20, qty=1),
        ],
    )
    result = _merge(db, conversation, [ExtractedItem(menu_item_id=10, action="remove")])

    order = result.order
    assert result.removed == ["Tavuk Döner"]
    assert [item.menu_item_id for item in order.items] == [20]
    _assert_total_invariant(order)


def test_keep_appends_notes_and_extras(db, conversation):
    _merge(db, conversation, [ExtractedItem(menu_item_id=10, notes="sogansiz")])
    result = _merge(
        db,
        conversation,
        [
            ExtractedItem(
                menu_item_id=10,
                action="keep",
                notes="aci sos",
                extras=[ExtraSelection(name="Ekstra peynir", qty=1)],
            )
        ],
    )

    line = result.order.items[0]
    assert line.quantity == 1
    assert line.notes == "sogansiz, aci sos"
    assert json.loads(line.extras_json) == [{"name": "Ekstra peynir", "qty": 1}]


def test_removing_last_line_deletes_draft(db, conversation):
    first = _merge(db, conversation, [ExtractedItem(menu_item_id=20, qty=1)])
    order_id = first.order.id

    result = _merge(db, conversation, [ExtractedItem(menu_item_id=20, action="remove")])

    assert result.draft_deleted is True
    assert result.order is None
    assert conversation.active_order_id is None
    assert db.get(Order, order_id) is None


def test_items_outside_published_menu_are_skipped(db, conversation):
    result = _merge(db, conversation, [ExtractedItem(menu_item_id=22), ExtractedItem(menu_item_id=21)])

    assert result.skipped == [22]
    assert [item.name for item in result.order.items] == ["Ayran"]


def test_order_notes_are_kept_on_the_draft(db, conversation):
    result = _merge(
        db,
        conversation,
        [ExtractedItem(menu_item_id=21)],
        order_notes="kapiyi calmayin",
    )

    assert result.order.notes == "kapiyi calmayin"


def test_remove_without_draft_is_a_noop(db, conversation):
    result = _merge(db, conversation, [ExtractedItem(menu_item_id=20, action="remove")])

    assert result.order is None
    assert result.changed is False
