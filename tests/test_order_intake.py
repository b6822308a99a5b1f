import json

from orderflow.ai.service import extraction_breaker
from orderflow.core.config import EXTRACTION_BREAKER_THRESHOLD
from orderflow.models.ai_message_log import AIMessageLog
from orderflow.models.order_intent import OrderIntent
from orderflow.services import message_templates as templates
from orderflow.services.order_intake import (
    CLARIFY,
    DRAFT_CLEARED,
    HANDOFF,
    MERGED,
    NO_MATCH,
    interpret_message,
)


def _payload(items, confidence=0.9, question=None, order_notes=None):
    return {
        "items": items,
        "confidence": confidence,
        "clarification_question": question,
        "order_notes": order_notes,
        "missing_fields": [],
    }


def _item(menu_item_id, qty=1, action="add", item_confidence=0.95, notes=None):
    return {
        "menu_item_id": menu_item_id,
        "qty": qty,
        "action": action,
        "option_selections": [],
        "extras": [],
        "notes": notes,
        "item_confidence": item_confidence,
    }


class FakeProvider:
    name = "fake"

    def __init__(self, payload):
        self.payload = payload
        self.requests = []

    def extract(self, request):
        self.requests.append(request)
        return self.payload


class RaisingProvider:
    name = "broken"

    def __init__(self):
        self.calls = 0

    def extract(self, request):
        self.calls += 1
        raise TimeoutError("completion timed out")


def test_low_overall_confidence_asks_without_touching_draft(db, conversation):
    provider = FakeProvider(_payload([_item(20, qty=2)], confidence=0.69))

    result = interpret_message(db, conversation, "2 kola", provider=provider)

    assert result.outcome == CLARIFY
    assert result.reply == templates.clarification_fallback()
    assert result.order is None
    assert conversation.active_order_id is None
    assert result.intent.confidence == 0.69


def test_clarification_question_is_surfaced(db, conversation):
    provider = FakeProvider(_payload([], confidence=0.95, question="Hangi doner?"))

    result = interpret_message(db, conversation, "doner", provider=provider)

    assert result.outcome == CLARIFY
    assert result.reply == "Hangi doner?"
    assert result.intent.needs_clarification is True


def test_low_item_confidence_names_only_uncertain_items(db, conversation):
    provider = FakeProvider(_payload([_item(20), _item(10, item_confidence=0.4)]))

    result = interpret_message(db, conversation, "kola ve tavuk doner", provider=provider)

    assert result.outcome == CLARIFY
    assert "Tavuk Döner" in result.reply
    assert "Kola" not in result.reply
    assert result.order is None


def test_confident_extraction_is_merged(db, conversation):
    provider = FakeProvider(_payload([_item(20, qty=2)], order_notes="zile basmayin"))

    result = interpret_message(db, conversation, "2 kola", message_id="wamid.1", provider=provider)

    assert result.outcome == MERGED
    assert result.order.total_cents == 6000
    assert result.order.notes == "zile basmayin"
    intent = db.query(OrderIntent).one()
    assert intent.message_id == "wamid.1"
    assert 20 in json.loads(intent.candidate_ids_json)


def test_request_carries_draft_and_followup_candidates(db, conversation):
    interpret_message(db, conversation, "2 kola", provider=FakeProvider(_payload([_item(20, qty=2)])))
    provider = FakeProvider(_payload([_item(20, qty=1)]))

    interpret_message(db, conversation, "bir tane daha", provider=provider)

    request = provider.requests[0]
    assert [line.menu_item_id for line in request.draft] == [20]
    assert 20 in {candidate.item_id for candidate in request.candidates}
    assert request.ambiguity_policy in {"ask", "pick"}


def test_items_outside_candidates_are_discarded(db, conversation):
    provider = FakeProvider(_payload([_item(20), _item(999)]))

    result = interpret_message(db, conversation, "kola", provider=provider)

    assert result.outcome == MERGED
    assert [item.menu_item_id for item in result.order.items] == [20]


def test_removing_everything_reports_cleared_draft(db, conversation):
    interpret_message(db, conversation, "kola", provider=FakeProvider(_payload([_item(20)])))

    result = interpret_message(db, conversation, "kolayi sil", provider=FakeProvider(_payload([_item(20, action="remove")])))

    assert result.outcome == DRAFT_CLEARED
    assert conversation.active_order_id is None


def test_nothing_recognized_is_no_match(db, conversation):
    provider = FakeProvider(_payload([]))

    result = interpret_message(db, conversation, "kola var mi", provider=provider)

    assert result.outcome == NO_MATCH


def test_no_candidates_skips_extraction(db, conversation):
    provider = FakeProvider(_payload([_item(20)]))

    result = interpret_message(db, conversation, "xyzq", provider=provider)

    assert result.outcome == NO_MATCH
    assert provider.requests == []


def test_provider_failure_hands_off_and_is_logged(db, conversation):
    result = interpret_message(db, conversation, "2 kola", provider=RaisingProvider())

    assert result.outcome == HANDOFF
    assert result.reply == templates.agent_handoff()
    db.commit()
    errors =db.query(AIMessageLog).filter(AIMessageLog.direction == "out").all()
    assert errors and "provider_error" in errors[0].error


def test_invalid_payload_hands_off(db, conversation):
    provider = FakeProvider({"items": [{"menu_item_id": 20, "qty": 0}], "confidence": 3})

    result = interpret_message(db, conversation, "kola", provider=provider)

    assert result.outcome == HANDOFF


def test_open_circuit_skips_provider(db, conversation):
    provider = RaisingProvider()

    for _ in range(EXTRACTION_BREAKER_THRESHOLD):
        assert interpret_message(db, conversation, "2 kola", provider=provider).outcome == HANDOFF
    result = interpret_message(db, conversation, "2 kola", provider=provider)

    assert result.outcome == HANDOFF
    assert provider.calls == EXTRACTION_BREAKER_THRESHOLD
    decision = extraction_breaker.before_request(tenant_id=conversation.tenant_id, integration="llm_extraction")
    assert decision.allowed is False


def test_mock_provider_extracts_quantities_and_items(db, conversation):
    result = interpret_message(db, conversation, "iki tavuk döner ve bir ayran")

    assert result.outcome == MERGED
    lines = {item.name: item.quantity for item in result.order.items}
    assert lines == {"Tavuk Döner": 2, "Ayran": 1}
    assert result.order.total_cents == 2 * 9500 + 2000
