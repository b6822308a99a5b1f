import uuid
from datetime import timedelta

import pytest

from orderflow.core.clock import utcnow
from orderflow.fsm import states
from orderflow.fsm.engine import ConversationFlow, classify_small_talk
from orderflow.models.customer_address import CustomerAddress
from orderflow.models.customer_profile import CustomerProfile
from orderflow.models.order import Order
from orderflow.models.order_payment import OrderPayment
from orderflow.services import message_templates as templates
from orderflow.services.payments import complete_card_payment, get_pending_payment
from orderflow.whatsapp.base import InboundMessage
from tests.fixtures_data import CUSTOMER_PHONE, LOCATION_ALTERNATIVE, LOCATION_FAR, LOCATION_NEAR


def _message(text="", kind="text", **kwargs):
    return InboundMessage(message_id=f"wamid.{uuid.uuid4().hex[:10]}", sender=CUSTOMER_PHONE, kind=kind, text=text, **kwargs)


def _location(point):
    return _message(kind="location", latitude=point["latitude"], longitude=point["longitude"])


def _say(flow, db, conversation, message):
    if isinstance(message, str):
        message = _message(message)
    result = flow.handle_message(db, conversation, message)
    db.commit()
    return result


def _texts(result):
    return [message.text for message in result.messages]


class RaisingProvider:
    name = "broken"

    def extract(self, request):
        raise ConnectionError("upstream unavailable")


class BrokenGateway:
    name = "broken"

    def create_checkout(self, order, amount_cents):
        raise RuntimeError("gateway down")


@pytest.fixture
def flow():
    return ConversationFlow()


def _to_payment_selection(flow, db, conversation, order_text="2 kola"):
    assert _say(flow, db, conversation, order_text).phase == states.ORDER_COLLECTING
    assert _say(flow, db, conversation, "evet").phase == states.ORDER_REVIEW
    assert _say(flow, db, conversation, "evet").phase == states.LOCATION_REQUEST
    return _say(flow, db, conversation, _location(LOCATION_NEAR))


def test_happy_path_reaches_payment_selection_with_two_buttons(flow, db, conversation):
    first = _say(flow, db, conversation, "2 kola")
    assert first.previous_phase == states.IDLE
    assert first.phase == states.ORDER_COLLECTING
    assert "2x Kola - 60.00 TL" in first.messages[0].text

    review = _say(flow, db, conversation, "evet")
    assert review.phase == states.ORDER_REVIEW
    assert "Siparis ozeti" in review.messages[0].text

    location_request = _say(flow, db, conversation, "evet")
    assert location_request.phase == states.LOCATION_REQUEST
    assert location_request.messages[0].kind == "location_request"

    result = _say(flow, db, conversation, _location(LOCATION_NEAR))
    assert result.phase == states.PAYMENT_METHOD_SELECTION
    buttons = result.messages[-1]
    assert buttons.kind == "buttons"
    assert [button.id for button in buttons.buttons] == [templates.PAY_CASH_ID, templates.PAY_CARD_ID]

    order = db.get(Order, conversation.active_order_id)
    assert order.status == "DRAFT"
    assert order.store_id == 1
    assert order.delivery_fee_cents == 1000
    assert conversation.phase == states.PAYMENT_METHOD_SELECTION


def test_location_pin_during_review_counts_as_confirmation(flow, db, conversation):
    _say(flow, db, conversation, "2 kola")
    _say(flow, db, conversation, "evet")

    result = _say(flow, db, conversation, _location(LOCATION_NEAR))

    assert result.phase == states.PAYMENT_METHOD_SELECTION


def test_cash_confirms_order_and_allocates_number(flow, db, conversation):
    _to_payment_selection(flow, db, conversation)
    order_id = conversation.active_order_id

    result = _say(flow, db, conversation, _message("Nakit", kind="interactive", selection_id=templates.PAY_CASH_ID))

    assert result.phase == states.ORDER_CONFIRMED
    order = db.get(Order, order_id)
    assert order.status == "PENDING_CONFIRMATION"
    assert order.order_number == 1
    assert order.payment_method == "CASH"
    payment = db.query(OrderPayment).filter(OrderPayment.order_id == order_id).one()
    assert payment.status == "SUCCESS"
    assert payment.amount_cents == 6000 + 1000
    assert "#1" in result.messages[0].text
    profile = db.query(CustomerProfile).one()
    assert profile.order_count == 1

    after = _say(flow, db, conversation, "tesekkurler")
    assert after.phase == states.IDLE
    assert conversation.active_order_id is None


def test_order_numbers_increase_per_tenant(flow, db, conversation):
    _to_payment_selection(flow, db, conversation)
    _say(flow, db, conversation, "nakit")
    _say(flow, db, conversation, "tamam")

    _say(flow, db, conversation, "2 ayran ve 1 kola")
    _say(flow, db, conversation, "evet")
    _say(flow, db, conversation, "evet")
    _say(flow, db, conversation, _location(LOCATION_NEAR))
    result = _say(flow, db, conversation, "kapida odeyecegim")

    assert result.phase == states.ORDER_CONFIRMED
    numbers = sorted(order.order_number for order in db.query(Order).filter(Order.order_number.isnot(None)))
    assert numbers == [1, 2]


def test_card_payment_creates_link_and_waits(flow, db, conversation):
    _to_payment_selection(flow, db, conversation)

    result = _say(flow, db, conversation, "kart")

    assert result.phase == states.PAYMENT_PENDING
    payment = get_pending_payment(db, conversation.active_order_id)
    assert payment is not None
    assert "/api/payments/checkout/" in payment.checkout_url
    assert payment.checkout_url in result.messages[0].text
    assert payment.expires_at > utcnow()

    reminder = _say(flow, db, conversation, "odedim mi")
    assert reminder.phase == states.PAYMENT_PENDING
    assert payment.checkout_url in reminder.messages[0].text


def test_card_callback_success_confirms_order(flow, db, conversation):
    _to_payment_selection(flow, db, conversation)
    _say(flow, db, conversation, "kredi karti")
    payment = get_pending_payment(db, conversation.active_order_id)

    callback = complete_card_payment(db, payment.token, True)
    result = flow.handle_payment_callback(db, conversation, callback)
    db.commit()

    assert result.phase == states.ORDER_CONFIRMED
    order = db.get(Order, payment.order_id)
    assert order.status == "PENDING_CONFIRMATION"
    assert order.payment_method == "CREDIT_CARD"
    assert order.order_number == 1
    assert payment.paid_at is not None

    duplicate = complete_card_payment(db, payment.token, True)
    assert duplicate.duplicate is True
    replay = flow.handle_payment_callback(db, conversation, duplicate)
    assert replay.messages == []


def test_card_callback_failure_keeps_waiting_and_allows_cash(flow, db, conversation):
    _to_payment_selection(flow, db, conversation)
    _say(flow, db, conversation, "kart")
    payment = get_pending_payment(db, conversation.active_order_id)

    result = flow.handle_payment_callback(db, conversation, complete_card_payment(db, payment.token, False))
    db.commit()

    assert result.phase == states.PAYMENT_PENDING
    assert _texts(result) == [templates.payment_failed()]

    switched = _say(flow, db, conversation, "nakit")
    assert switched.phase == states.ORDER_CONFIRMED


def test_expired_link_returns_to_payment_selection(flow, db, conversation):
    _to_payment_selection(flow, db, conversation)
    _say(flow, db, conversation, "kart")
    payment = get_pending_payment(db, conversation.active_order_id)
    payment.expires_at = utcnow() - timedelta(minutes=1)
    db.commit()

    result = _say(flow, db, conversation, "link calismiyor")

    assert result.phase == states.PAYMENT_METHOD_SELECTION
    assert result.messages[0].text == templates.payment_link_expired()
    assert result.messages[-1].kind == "buttons"
    db.refresh(payment)
    assert payment.status == "EXPIRED"


def test_switching_to_card_again_replaces_pending_link(flow, db, conversation):
    _to_payment_selection(flow, db, conversation)
    _say(flow, db, conversation, "kart")
    first = get_pending_payment(db, conversation.active_order_id)

    _say(flow, db, conversation, "kart")

    db.refresh(first)
    assert first.status == "EXPIRED"
    latest = get_pending_payment(db, conversation.active_order_id)
    assert latest.id != first.id


def test_gateway_failure_stays_in_payment_selection(db, conversation):
    flow = ConversationFlow(payment_gateway=BrokenGateway())
    _to_payment_selection(flow, db, conversation)

    result = _say(flow, db, conversation, "kart")

    assert result.phase == states.PAYMENT_METHOD_SELECTION
    assert _texts(result) == [templates.payment_link_failed()]


def test_out_of_area_lists_alternatives(flow, db, conversation):
    _say(flow, db, conversation, "2 kola")
    _say(flow, db, conversation, "evet")
    _say(flow, db, conversation, "evet")

    result = _say(flow, db, conversation, _location(LOCATION_ALTERNATIVE))

    assert result.phase == states.LOCATION_REQUEST
    assert "Kadikoy Subesi" in result.messages[0].text
    assert conversation.geo_check_json is not None
    assert db.query(CustomerAddress).count() == 0


def test_out_of_area_without_coverage(flow, db, conversation):
    _say(flow, db, conversation, "2 kola")
    _say(flow, db, conversation, "evet")
    _say(flow, db, conversation, "evet")

    result = _say(flow, db, conversation, _location(LOCATION_FAR))

    assert result.phase == states.LOCATION_REQUEST
    assert "hizmet veremiyoruz" in result.messages[0].text
    assert "Kadikoy" not in result.messages[0].text


def test_minimum_basket_not_met_returns_to_collecting(flow, db, conversation):
    first = _say(flow, db, conversation, "1 ayran")
    assert templates.min_basket_warning(5000, 2000) in _texts(first)
    _say(flow, db, conversation, "evet")
    _say(flow, db, conversation, "evet")

    result = _say(flow, db, conversation, _location(LOCATION_NEAR))

    assert result.phase == states.ORDER_COLLECTING
    assert "50.00 TL" in result.messages[0].text


def test_saved_address_can_be_selected_on_next_order(flow, db, conversation):
    _to_payment_selection(flow, db, conversation)
    _say(flow, db, conversation, "nakit")
    _say(flow, db, conversation, "tamam")
    address = db.query(CustomerAddress).one()
    assert address.label == "Son konum"

    _say(flow, db, conversation, "3 kola")
    _say(flow, db, conversation, "evet")
    request = _say(flow, db, conversation, "evet")
    assert [message.kind for message in request.messages] == ["location_request", "list"]
    row = request.messages[1].sections[0].rows[0]
    assert row.id == f"addr_{address.id}"

    result = _say(
        flow, db, conversation, _message("Son konum", kind="interactive", selection_id=row.id, selection_title="Son konum")
    )
    assert result.phase == states.PAYMENT_METHOD_SELECTION


def test_location_request_reminders(flow, db, conversation):
    _say(flow, db, conversation, "2 kola")
    _say(flow, db, conversation, "evet")
    _say(flow, db, conversation, "evet")

    image = _say(flow, db, conversation, _message(kind="image"))
    text = _say(flow, db, conversation, "Moda caddesi no 5")

    assert image.phase == text.phase == states.LOCATION_REQUEST
    assert _texts(image) == [templates.reminder_location_pin()]
    assert _texts(text) == [templates.reminder_send_location()]


@pytest.mark.parametrize("steps", [1, 2, 3, 4])
def test_reset_keyword_returns_to_idle_from_any_phase(flow, db, conversation, steps):
    script = ["2 kola", "evet", "evet", _location(LOCATION_NEAR)]
    for step in script[:steps]:
        _say(flow, db, conversation, step)
    order_id = conversation.active_order_id

    result = _say(flow, db, conversation, "sifirla")

    assert result.phase == states.IDLE
    assert _texts(result) == [templates.reset_done()]
    assert conversation.active_order_id is None
    assert db.get(Order, order_id).status == "CANCELLED"


def test_reset_keyword_in_idle_only_greets(flow, db, conversation):
    result = _say(flow, db, conversation, "bastan")

    assert result.phase == states.IDLE
    assert _texts(result) == [templates.greeting()]


def test_cancel_voids_draft_but_item_removal_does_not(flow, db, conversation):
    _say(flow, db, conversation, "2 kola")

    removal = _say(flow, db, conversation, "kolayi sil")
    assert removal.phase == states.ORDER_COLLECTING
    assert _texts(removal) == [templates.order_empty()]

    _say(flow, db, conversation, "1 ayran")
    cancel = _say(flow, db, conversation, "iptal")
    assert cancel.phase == states.IDLE
    assert _texts(cancel) == [templates.order_cancelled()]


def test_confirm_without_draft_stays_collecting(flow, db, conversation):
    conversation.phase = states.ORDER_COLLECTING
    db.commit()

    result = _say(flow, db, conversation, "tamam")

    assert result.phase == states.ORDER_COLLECTING
    assert conversation.active_order_id is None


def test_confirm_word_next_to_item_name_is_an_order(flow, db, conversation):
    conversation.phase = states.ORDER_COLLECTING
    db.commit()

    result = _say(flow, db, conversation, "2 kola olsun")

    assert result.phase == states.ORDER_COLLECTING
    order = db.get(Order, conversation.active_order_id)
    assert [(item.name, item.quantity) for item in order.items] == [("Kola", 2)]


def test_review_edit_goes_back_to_collecting(flow, db, conversation):
    _say(flow, db, conversation, "2 kola")
    _say(flow, db, conversation, "evet")

    edit = _say(flow, db, conversation, "degistir")
    assert edit.phase == states.ORDER_COLLECTING
    assert _texts(edit) == [templates.edit_prompt()]

    _say(flow, db, conversation, "evet")
    direct = _say(flow, db, conversation, "1 ayran ekle")
    assert direct.phase == states.ORDER_COLLECTING
    order = db.get(Order, conversation.active_order_id)
    assert {item.name for item in order.items} == {"Kola", "Ayran"}


def test_idle_nudges_for_non_text(flow, db, conversation):
    image = _say(flow, db, conversation, _message(kind="image"))
    location = _say(flow, db, conversation, _location(LOCATION_NEAR))

    assert image.phase == location.phase == states.IDLE
    assert _texts(image) == [templates.media_not_supported()]
    assert _texts(location) == [templates.order_first()]


def test_menu_keyword_lists_catalog(flow, db, conversation):
    result = _say(flow, db, conversation, "menu")

    assert result.phase == states.IDLE
    assert "Tavuk Döner: 95.00 TL" in result.messages[0].text
    assert "Eski Gazoz" not in result.messages[0].text


def test_small_talk_fallbacks_depend_on_draft(flow, db, conversation):
    greeting = _say(flow, db, conversation, "selam")
    assert greeting.phase == states.IDLE
    assert _texts(greeting) == [templates.fallback("greeting", False)]

    _say(flow, db, conversation, "2 kola")
    thanks = _say(flow, db, conversation, "tesekkurler")
    assert thanks.phase == states.ORDER_COLLECTING
    assert _texts(thanks) == [templates.fallback("thanks", True)]


def test_classify_small_talk():
    assert classify_small_talk("Merhaba") == "greeting"
    assert classify_small_talk("sagolun") == "thanks"
    assert classify_small_talk("yardim eder misiniz") == "help"
    assert classify_small_talk("hava nasil") == "help"
    assert classify_small_talk("asdf") == "unknown"


def test_handoff_keeps_draft_and_recovers_on_next_text(db, conversation):
    ConversationFlow().handle_message(db, conversation, _message("2 kola"))
    db.commit()
    draft_id = conversation.active_order_id
    broken = ConversationFlow(extraction_provider=RaisingProvider())

    handoff = _say(broken, db, conversation, "1 ayran")
    assert handoff.phase == states.AGENT_HANDOFF
    assert conversation.status == "pending_agent"
    assert _texts(handoff) == [templates.agent_handoff()]
    assert conversation.active_order_id == draft_id

    silent = _say(broken, db, conversation, _location(LOCATION_NEAR))
    assert silent.phase == states.AGENT_HANDOFF
    assert silent.messages == []

    recovered = _say(broken, db, conversation, "menu")
    assert recovered.phase == states.IDLE
    assert conversation.status == "open"
    assert "Menumuz" in recovered.messages[0].text


def test_unknown_phase_is_treated_as_idle(flow, db, conversation):
    conversation.phase = "SOMETHING_OLD"
    db.commit()

    result = _say(flow, db, conversation, "menu")

    assert result.previous_phase == states.IDLE
    assert result.phase == states.IDLE
