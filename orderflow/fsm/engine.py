"""Per-conversation ordering workflow.

``ConversationFlow.handle_message`` reads the stored phase, runs the phase
handler and writes the next phase. Handlers append outbound descriptors and
return the phase to enter; business conditions never raise. The caller owns
the transaction and the per-conversation mutex.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable

from sqlalchemy.orm import Session

from orderflow.ai.base import ExtractionProvider
from orderflow.core.metrics import flow_metrics
from orderflow.fsm import keywords, states
from orderflow.models.conversation import Conversation
from orderflow.models.customer_address import CustomerAddress
from orderflow.models.order import Order
from orderflow.services import message_templates as templates
from orderflow.services import orders as order_service
from orderflow.services import payments as payment_service
from orderflow.services.catalog import get_published_menu
from orderflow.services.embeddings import EmbeddingProvider
from orderflow.services.geo import check_service_area, minimum_basket_cents
from orderflow.services.inbox import STATUS_OPEN, STATUS_PENDING_AGENT
from orderflow.services.menu_candidates import mentions_menu_item
from orderflow.services.order_intake import CLARIFY, DRAFT_CLEARED, HANDOFF, MERGED, interpret_message
from orderflow.services.payments import MockPaymentGateway, PaymentCallbackResult, PaymentGateway
from orderflow.services.preferences import learn_from_order
from orderflow.services.text_normalizer import contains_keyword
from orderflow.whatsapp.base import InboundMessage, OutboundMessage

logger = logging.getLogger(__name__)

LAST_LOCATION_LABEL = "Son konum"
MEDIA_KINDS = {"image", "voice"}


@dataclass
class FlowResult:
    previous_phase: str
    phase: str
    messages: list[OutboundMessage] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return self.previous_phase != self.phase


Handler = Callable[[Session, Conversation, InboundMessage, list], str]


def classify_small_talk(text: str) -> str:
    if contains_keyword(text, keywords.GREETING):
        return "greeting"
    if contains_keyword(text, keywords.THANKS):
        return "thanks"
    if contains_keyword(text, keywords.HELP):
        return "help"
    return "unknown"


def payment_choice(message: InboundMessage) -> str | None:
    if message.selection_id == templates.PAY_CASH_ID:
        return order_service.PAYMENT_CASH
    if message.selection_id == templates.PAY_CARD_ID:
        return order_service.PAYMENT_CREDIT_CARD
    if contains_keyword(message.text, keywords.CASH):
        return order_service.PAYMENT_CASH
    if contains_keyword(message.text, keywords.CARD):
        return order_service.PAYMENT_CREDIT_CARD
    return None


class ConversationFlow:
    def __init__(
        self,
        extraction_provider: ExtractionProvider | None = None,
        payment_gateway: PaymentGateway | None = None,
        embedding_provider: EmbeddingProvider | None = None,
    ) -> None:
        self.extraction_provider = extraction_provider
        self.payment_gateway = payment_gateway or MockPaymentGateway()
        self.embedding_provider = embedding_provider
        self._handlers: dict[str, Handler] = {
            states.IDLE: self._handle_idle,
            states.ORDER_COLLECTING: self._handle_collecting,
            states.ORDER_REVIEW: self._handle_review,
            states.LOCATION_REQUEST: self._handle_location_request,
            states.PAYMENT_METHOD_SELECTION: self._handle_payment_selection,
            states.PAYMENT_PENDING: self._handle_payment_pending,
            states.ORDER_CONFIRMED: self._handle_confirmed,
            states.AGENT_HANDOFF: self._handle_handoff,
        }

    # ------------------------------------------------------------------ entry points

    def handle_message(self, db: Session, conversation: Conversation, message: InboundMessage) -> FlowResult:
        previous = conversation.phase or states.IDLE
        if previous not in self._handlers:
            logger.warning("Unknown phase '%s' reset to IDLE: conversation=%s", previous, conversation.id)
            previous = states.IDLE
        out: list[OutboundMessage] = []

        if previous != states.IDLE and contains_keyword(message.text, keywords.RESET):
            order_service.cancel_active_order(db, conversation)
            if conversation.status == STATUS_PENDING_AGENT:
                conversation.status = STATUS_OPEN
            out.append(templates.text(templates.reset_done()))
            next_phase = states.IDLE
        else:
            next_phase = self._handlers[previous](db, conversation, message, out)

        self._enter(conversation, previous, next_phase)
        db.flush()
        return FlowResult(previous_phase=previous, phase=next_phase, messages=out)

    def handle_payment_callback(
        self,
        db: Session,
        conversation: Conversation,
        callback: PaymentCallbackResult,
    ) -> FlowResult:
        previous = conversation.phase or states.IDLE
        if not callback.found or callback.duplicate or callback.payment is None:
            return FlowResult(previous_phase=previous, phase=previous)

        order = db.get(Order, callback.payment.order_id)
        out: list[OutboundMessage] = []
        if order is None:
            logger.warning("Payment callback for missing order: payment=%s", callback.payment.id)
            return FlowResult(previous_phase=previous, phase=previous)

        if order.status != order_service.DRAFT:
            logger.warning("Payment callback for non-draft order ignored: order=%s status=%s", order.id, order.status)
            return FlowResult(previous_phase=previous, phase=previous)

        if callback.success:
            next_phase = self._finalize_order(db, conversation, order, order_service.PAYMENT_CREDIT_CARD, out)
        else:
            out.append(templates.text(templates.payment_failed()))
            next_phase = states.PAYMENT_PENDING if previous == states.PAYMENT_PENDING else previous

        self._enter(conversation, previous, next_phase)
        db.flush()
        return FlowResult(previous_phase=previous, phase=next_phase, messages=out)

    def _enter(self, conversation: Conversation, previous: str, next_phase: str) -> None:
        conversation.phase = next_phase
        if previous != next_phase:
            flow_metrics.observe_transition(previous, next_phase)
            logger.info(
                "Phase transition %s -> %s",
                previous,
                next_phase,
                extra={"tenant_id": conversation.tenant_id, "phase": next_phase},
            )

    # ------------------------------------------------------------------ helpers

    def _intake(
        self,
        db: Session,
        conversation: Conversation,
        message: InboundMessage,
        out: list,
        current_phase: str,
    ) -> str:
        intake = interpret_message(
            db,
            conversation,
            message.text,
            message_id=message.message_id,
            provider=self.extraction_provider,
            embedding_provider=self.embedding_provider,
        )
        if intake.outcome == HANDOFF:
            conversation.status = STATUS_PENDING_AGENT
            out.append(templates.text(intake.reply or templates.agent_handoff()))
            return states.AGENT_HANDOFF
        if intake.outcome == CLARIFY:
            out.append(templates.text(intake.reply or templates.clarification_fallback()))
            return states.ORDER_COLLECTING
        if intake.outcome == DRAFT_CLEARED:
            out.append(templates.text(templates.order_empty()))
            return states.ORDER_COLLECTING
        if intake.outcome == MERGED:
            if intake.order is not None and intake.order.items:
                out.append(templates.text(templates.draft_updated(intake.order)))
                warning = self._min_basket_warning(db, conversation, intake.order)
                if warning:
                    out.append(templates.text(warning))
                return states.ORDER_COLLECTING
            out.append(templates.text(templates.order_empty()))
            return states.ORDER_COLLECTING if current_phase != states.IDLE else states.IDLE

        has_draft = intake.order is not None and bool(intake.order.items)
        out.append(templates.text(templates.fallback(classify_small_talk(message.text), has_draft)))
        return current_phase

    def _min_basket_warning(self, db: Session, conversation: Conversation, order: Order) -> str | None:
        try:
            minimum = minimum_basket_cents(db, conversation.tenant_id)
        except Exception:
            logger.exception("Minimum basket check failed: tenant=%s", conversation.tenant_id)
            return None
        if minimum and int(order.total_cents or 0) < minimum:
            return templates.min_basket_warning(minimum, int(order.total_cents or 0))
        return None

    def _cancel(self, db: Session, conversation: Conversation, out: list) -> str:
        order_service.cancel_active_order(db, conversation)
        out.append(templates.text(templates.order_cancelled()))
        return states.IDLE

    def _names_item(self, db: Session, conversation: Conversation, text: str) -> bool:
        menu = get_published_menu(db, conversation.tenant_id)
        return mentions_menu_item(menu, text)

    def _saved_addresses(self, db: Session, conversation: Conversation) -> list[CustomerAddress]:
        return (
            db.query(CustomerAddress)
            .filter(
                CustomerAddress.tenant_id == conversation.tenant_id,
                CustomerAddress.customer_phone == conversation.customer_phone,
            )
            .order_by(CustomerAddress.updated_at.desc(), CustomerAddress.id.desc())
            .all()
        )

    def _remember_location(self, db: Session, conversation: Conversation, lat: float, lng: float) -> None:
        address = (
            db.query(CustomerAddress)
            .filter(
                CustomerAddress.tenant_id == conversation.tenant_id,
                CustomerAddress.customer_phone == conversation.customer_phone,
                CustomerAddress.label == LAST_LOCATION_LABEL,
            )
            .first()
        )
        if address is None:
            address = CustomerAddress(
                tenant_id=conversation.tenant_id,
                customer_phone=conversation.customer_phone,
                label=LAST_LOCATION_LABEL,
                lat=lat,
                lng=lng,
            )
            db.add(address)
        else:
            address.lat = lat
            address.lng = lng
        address.address_text = f"{lat:.5f}, {lng:.5f}"

    def _request_location(self, db: Session, conversation: Conversation, out: list) -> str:
        out.append(templates.location_request())
        saved = templates.saved_addresses(self._saved_addresses(db, conversation))
        if saved is not None:
            out.append(saved)
        return states.LOCATION_REQUEST

    def _process_location(self, db: Session, conversation: Conversation, lat: float, lng: float, out: list) -> str:
        order = order_service.get_active_draft(db, conversation)
        if order is None or not order.items:
            out.append(templates.text(templates.order_empty()))
            return states.IDLE

        geo = check_service_area(db, conversation.tenant_id, lat, lng)
        conversation.geo_check_json = geo.to_json()
        if not geo.within_area:
            out.append(templates.text(templates.location_out_of_service(geo)))
            return states.LOCATION_REQUEST

        self._remember_location(db, conversation, lat, lng)
        rule = geo.delivery_rule
        order.store_id = geo.nearest_store.id if geo.nearest_store else None
        order.delivery_lat = lat
        order.delivery_lng = lng
        order.delivery_fee_cents = rule.delivery_fee_cents if rule else 0

        minimum = rule.min_basket_cents if rule else 0
        if minimum and int(order.total_cents or 0) < minimum:
            out.append(templates.text(templates.location_min_basket_not_met(minimum, int(order.total_cents or 0))))
            return states.ORDER_COLLECTING

        out.append(templates.text(templates.location_confirmed(geo)))
        out.append(templates.payment_method_buttons(order))
        return states.PAYMENT_METHOD_SELECTION

    def _finalize_order(
        self,
        db: Session,
        conversation: Conversation,
        order: Order,
        payment_method: str,
        out: list,
    ) -> str:
        change = order_service.set_pending_confirmation(db, order, payment_method)
        if not change.ok:
            logger.warning("Order not finalized: order=%s error=%s", order.id, change.error)
            if change.error == "EMPTY_ORDER":
                out.append(templates.text(templates.order_empty()))
                return states.ORDER_COLLECTING
            out.append(templates.text(templates.APOLOGY))
            return conversation.phase or states.IDLE

        if payment_method == order_service.PAYMENT_CASH:
            payment_service.record_cash_payment(db, order)
            out.append(templates.text(templates.cash_confirmed(order)))
        else:
            out.append(templates.text(templates.payment_success(order)))
        learn_from_order(db, order)
        conversation.active_order_id = order.id
        return states.ORDER_CONFIRMED

    def _start_card_payment(self, db: Session, conversation: Conversation, order: Order, out: list) -> str:
        previous = payment_service.get_pending_payment(db, order.id)
        if previous is not None:
            payment_service.expire_payment(db, previous)
        link = payment_service.initiate_card_payment(db, order, self.payment_gateway)
        if not link.ok:
            out.append(templates.text(templates.payment_link_failed()))
            return states.PAYMENT_METHOD_SELECTION
        order.payment_method = order_service.PAYMENT_CREDIT_CARD
        out.append(templates.text(templates.payment_link_sent(link.checkout_url)))
        return states.PAYMENT_PENDING

    # ------------------------------------------------------------------ phase handlers

    def _handle_idle(self, db: Session, conversation: Conversation, message: InboundMessage, out: list) -> str:
        if message.kind in MEDIA_KINDS:
            out.append(templates.text(templates.media_not_supported()))
            return states.IDLE
        if message.kind == "location":
            out.append(templates.text(templates.order_first()))
            return states.IDLE
        if not message.text:
            out.append(templates.text(templates.greeting()))
            return states.IDLE
        if contains_keyword(message.text, keywords.RESET):
            out.append(templates.text(templates.greeting()))
            return states.IDLE
        if contains_keyword(message.text, keywords.MENU):
            menu = get_published_menu(db, conversation.tenant_id)
            out.append(templates.text(templates.menu_overview(menu)))
            return states.IDLE
        return self._intake(db, conversation, message, out, states.IDLE)

    def _handle_collecting(self, db: Session, conversation: Conversation, message: InboundMessage, out: list) -> str:
        if message.kind in MEDIA_KINDS:
            out.append(templates.text(templates.media_not_supported()))
            return states.ORDER_COLLECTING
        if message.kind == "location":
            out.append(templates.text(templates.confirm_first()))
            return states.ORDER_COLLECTING
        if not message.text:
            out.append(templates.text(templates.fallback("unknown", True)))
            return states.ORDER_COLLECTING

        names_item = self._names_item(db, conversation, message.text)
        if contains_keyword(message.text, keywords.CANCEL) and not names_item:
            return self._cancel(db, conversation, out)
        if contains_keyword(message.text, keywords.CONFIRM) and not names_item:
            order = order_service.get_active_draft(db, conversation)
            if order is not None and order.items:
                out.append(templates.text(templates.review_prompt(order)))
                return states.ORDER_REVIEW
        if contains_keyword(message.text, keywords.MENU) and not names_item:
            menu = get_published_menu(db, conversation.tenant_id)
            out.append(templates.text(templates.menu_overview(menu)))
            return states.ORDER_COLLECTING
        return self._intake(db, conversation, message, out, states.ORDER_COLLECTING)

    def _handle_review(self, db: Session, conversation: Conversation, message: InboundMessage, out: list) -> str:
        text = message.text
        if message.has_location:
            # pin durante a revisao vale como confirmacao
            return self._process_location(db, conversation, float(message.latitude), float(message.longitude), out)
        if contains_keyword(text, keywords.CANCEL):
            return self._cancel(db, conversation, out)
        if contains_keyword(text, keywords.EDIT):
            if self._names_item(db, conversation, text):
                return self._intake(db, conversation, message, out, states.ORDER_COLLECTING)
            out.append(templates.text(templates.edit_prompt()))
            return states.ORDER_COLLECTING
        if contains_keyword(text, keywords.CONFIRM):
            order = order_service.get_active_draft(db, conversation)
            if order is None or not order.items:
                out.append(templates.text(templates.order_empty()))
                return states.ORDER_COLLECTING
            return self._request_location(db, conversation, out)
        out.append(templates.text(templates.review_reminder()))
        return states.ORDER_REVIEW

    def _handle_location_request(
        self,
        db: Session,
        conversation: Conversation,
        message: InboundMessage,
        out: list,
    ) -> str:
        if message.has_location:
            return self._process_location(db, conversation, float(message.latitude), float(message.longitude), out)

        selection = message.selection_id or ""
        if selection.startswith(templates.ADDRESS_ROW_PREFIX):
            address = self._selected_address(db, conversation, selection)
            if address is not None:
                return self._process_location(db, conversation, address.lat, address.lng, out)
            logger.info("Unknown saved address selected: conversation=%s row=%s", conversation.id, selection)

        if contains_keyword(message.text, keywords.CANCEL):
            return self._cancel(db, conversation, out)
        if message.kind == "image":
            out.append(templates.text(templates.reminder_location_pin()))
            return states.LOCATION_REQUEST
        out.append(templates.text(templates.reminder_send_location()))
        return states.LOCATION_REQUEST

    def _selected_address(self, db: Session, conversation: Conversation, row_id: str) -> CustomerAddress | None:
        try:
            address_id = int(row_id[len(templates.ADDRESS_ROW_PREFIX):])
        except ValueError:
            return None
        return (
            db.query(CustomerAddress)
            .filter(
                CustomerAddress.id == address_id,
                CustomerAddress.tenant_id == conversation.tenant_id,
                CustomerAddress.customer_phone == conversation.customer_phone,
            )
            .first()
        )

    def _handle_payment_selection(
        self,
        db: Session,
        conversation: Conversation,
        message: InboundMessage,
        out: list,
    ) -> str:
        if contains_keyword(message.text, keywords.CANCEL):
            return self._cancel(db, conversation, out)
        order = order_service.get_active_draft(db, conversation)
        if order is None or not order.items:
            out.append(templates.text(templates.order_empty()))
            return states.IDLE

        choice = payment_choice(message)
        if choice == order_service.PAYMENT_CASH:
            return self._finalize_order(db, conversation, order, order_service.PAYMENT_CASH, out)
        if choice == order_service.PAYMENT_CREDIT_CARD:
            return self._start_card_payment(db, conversation, order, out)
        out.append(templates.payment_method_buttons(order))
        return states.PAYMENT_METHOD_SELECTION

    def _handle_payment_pending(
        self,
        db: Session,
        conversation: Conversation,
        message: InboundMessage,
        out: list,
    ) -> str:
        order = order_service.get_active_draft(db, conversation)
        if order is None:
            out.append(templates.text(templates.order_confirmed_ack()))
            return states.IDLE
        pending = payment_service.get_pending_payment(db, order.id)

        if contains_keyword(message.text, keywords.CANCEL):
            if pending is not None:
                payment_service.expire_payment(db, pending)
            return self._cancel(db, conversation, out)

        choice = payment_choice(message)
        if choice == order_service.PAYMENT_CASH:
            if pending is not None:
                payment_service.expire_payment(db, pending)
            return self._finalize_order(db, conversation, order, order_service.PAYMENT_CASH, out)
        if choice == order_service.PAYMENT_CREDIT_CARD:
            return self._start_card_payment(db, conversation, order, out)

        if pending is None:
            out.append(templates.payment_method_buttons(order))
            return states.PAYMENT_METHOD_SELECTION
        if payment_service.is_expired(pending):
            payment_service.expire_payment(db, pending)
            out.append(templates.text(templates.payment_link_expired()))
            out.append(templates.payment_method_buttons(order))
            return states.PAYMENT_METHOD_SELECTION
        out.append(templates.text(templates.reminder_payment(pending.checkout_url)))
        return states.PAYMENT_PENDING

    def _handle_confirmed(self, db: Session, conversation: Conversation, message: InboundMessage, out: list) -> str:
        conversation.active_order_id = None
        out.append(templates.text(templates.order_confirmed_ack()))
        return states.IDLE

    def _handle_handoff(self, db: Session, conversation: Conversation, message: InboundMessage, out: list) -> str:
        if message.kind not in {"text", "interactive"} or not message.text:
            return states.AGENT_HANDOFF
        conversation.status = STATUS_OPEN
        logger.info("Recovered from handoff: conversation=%s", conversation.id)
        return self._handle_idle(db, conversation, message, out)
