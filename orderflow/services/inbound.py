"""Top-level handling of one inbound customer message.

Deduplicates, serializes per conversation, runs the flow, commits, then
delivers replies. Unexpected failures roll back and still answer the customer.
"""

from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from orderflow.core.request_context import set_request_context
from orderflow.fsm.engine import ConversationFlow, FlowResult
from orderflow.models.conversation import Conversation
from orderflow.services import message_templates as templates
from orderflow.services.conversation_mutex import ConversationBusyError, conversation_mutex
from orderflow.services.inbox import claim_message, get_or_create_conversation, record_inbound
from orderflow.services.payments import PaymentCallbackResult, complete_card_payment, get_payment_by_token
from orderflow.whatsapp.base import InboundMessage, OutboundMessage
from orderflow.whatsapp.service import MessagingService

logger = logging.getLogger(__name__)


def _send_apology(db: Session, tenant_id: int, sender: str, messaging: MessagingService) -> list[OutboundMessage]:
    apology = [templates.text(templates.APOLOGY)]
    try:
        conversation = get_or_create_conversation(db, tenant_id, sender)
        messaging.send(db, conversation, apology)
        db.commit()
    except Exception:
        db.rollback()
        logger.exception("Apology delivery failed: tenant=%s", tenant_id)
    return apology


def handle_inbound_message(
    db: Session,
    *,
    tenant_id: int,
    message: InboundMessage,
    flow: ConversationFlow,
    messaging: MessagingService,
) -> dict:
    if not claim_message(db, tenant_id, message.message_id):
        logger.info("Duplicate inbound message ignored: tenant=%s message_id=%s", tenant_id, message.message_id)
        return {"status": "duplicate"}
    db.commit()

    try:
        with conversation_mutex.hold(tenant_id, message.sender):
            conversation = get_or_create_conversation(db, tenant_id, message.sender, message.contact_name)
            set_request_context(tenant_id=str(tenant_id), conversation_id=str(conversation.id))
            record_inbound(db, conversation, message)
            result = flow.handle_message(db, conversation, message)
            db.commit()

            messaging.send(db, conversation, result.messages)
            db.commit()
    except ConversationBusyError:
        db.rollback()
        return {"status": "busy", "messages": [m.to_dict() for m in _send_apology(db, tenant_id, message.sender, messaging)]}
    except Exception:
        db.rollback()
        logger.exception("Inbound message processing failed: tenant=%s message_id=%s", tenant_id, message.message_id)
        apology = _send_apology(db, tenant_id, message.sender, messaging)
        return {"status": "error", "messages": [m.to_dict() for m in apology]}

    return {
        "status": "ok",
        "phase": result.phase,
        "messages": [outbound.to_dict() for outbound in result.messages],
    }


def handle_payment_callback(
    db: Session,
    *,
    token: str,
    success: bool,
    flow: ConversationFlow,
    messaging: MessagingService,
) -> tuple[PaymentCallbackResult, FlowResult | None]:
    """Records a gateway callback and applies it to the owning conversation.

    The payment row is only written while the conversation mutex is held, the
    same order message handling uses. ConversationBusyError propagates so the
    gateway can retry.
    """
    payment = get_payment_by_token(db, token)
    if payment is None:
        db.rollback()
        return PaymentCallbackResult(found=False), None
    conversation = db.get(Conversation, payment.conversation_id) if payment.conversation_id else None
    if conversation is None:
        callback = complete_card_payment(db, token, success)
        db.commit()
        return callback, None

    tenant_id, customer_phone = conversation.tenant_id, conversation.customer_phone
    # encerra a leitura antes de esperar pelo mutex
    db.rollback()
    with conversation_mutex.hold(tenant_id, customer_phone):
        callback = complete_card_payment(db, token, success)
        if callback.duplicate:
            db.rollback()
            return callback, None
        result = flow.handle_payment_callback(db, conversation, callback)
        db.commit()
        messaging.send(db, conversation, result.messages)
        db.commit()
    return callback, result
