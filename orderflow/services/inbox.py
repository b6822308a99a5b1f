from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from orderflow.ai.base import HistoryTurn
from orderflow.core.clock import utcnow
from orderflow.core.config import EXTRACTION_HISTORY_TURNS
from orderflow.models.conversation import Conversation
from orderflow.models.message_log import MessageLog
from orderflow.models.processed_message import ProcessedMessage
from orderflow.whatsapp.base import InboundMessage, OutboundMessage, safe_json, sanitize_payload

logger = logging.getLogger(__name__)

STATUS_OPEN = "open"
STATUS_PENDING_AGENT = "pending_agent"


def get_or_create_conversation(
    db: Session,
    tenant_id: int,
    customer_phone: str,
    customer_name: str | None = None,
) -> Conversation:
    conversation = (
        db.query(Conversation)
        .filter(Conversation.tenant_id == tenant_id, Conversation.customer_phone == customer_phone)
        .first()
    )
    if conversation:
        if customer_name and not conversation.customer_name:
            conversation.customer_name = customer_name
        return conversation
    conversation = Conversation(
        tenant_id=tenant_id,
        customer_phone=customer_phone,
        customer_name=customer_name,
        phase="IDLE",
        status=STATUS_OPEN,
    )
    db.add(conversation)
    db.flush()
    logger.info("Conversation created: tenant=%s conversation=%s", tenant_id, conversation.id)
    return conversation


def get_conversation(db: Session, tenant_id: int, conversation_id: int) -> Conversation | None:
    return (
        db.query(Conversation)
        .filter(Conversation.id == conversation_id, Conversation.tenant_id == tenant_id)
        .first()
    )


def claim_message(db: Session, tenant_id: int, message_id: str) -> bool:
    """Registers a provider message id; False when it was already processed."""
    if db.get(ProcessedMessage, message_id) is not None:
        return False
    try:
        with db.begin_nested():
            db.add(ProcessedMessage(message_id=message_id, tenant_id=tenant_id))
    except IntegrityError:
        return False
    return True


def record_inbound(db: Session, conversation: Conversation, message: InboundMessage) -> MessageLog:
    conversation.last_message_at = utcnow()
    entry = MessageLog(
        tenant_id=conversation.tenant_id,
        conversation_id=conversation.id,
        direction="in",
        phone=message.sender,
        message_type=message.kind,
        text=message.text or None,
        payload_json=safe_json(message.to_payload()),
        status="received",
        provider_message_id=message.message_id,
    )
    db.add(entry)
    db.flush()
    return entry


def record_outbound(
    db: Session,
    conversation: Conversation,
    message: OutboundMessage,
    *,
    status: str,
    provider_message_id: str | None = None,
    error: str | None = None,
    response_payload: dict | None = None,
) -> MessageLog:
    payload = message.to_dict()
    if response_payload:
        payload["response"] = sanitize_payload(response_payload)
    entry = MessageLog(
        tenant_id=conversation.tenant_id,
        conversation_id=conversation.id,
        direction="out",
        phone=conversation.customer_phone,
        message_type=message.kind,
        text=message.text,
        payload_json=safe_json(payload),
        status=status,
        error=error,
        provider_message_id=provider_message_id,
    )
    db.add(entry)
    db.flush()
    return entry


def recent_history(
    db: Session,
    conversation: Conversation,
    limit: int = EXTRACTION_HISTORY_TURNS,
    *,
    exclude_message_id: str | None = None,
) -> list[HistoryTurn]:
    query = db.query(MessageLog).filter(
        MessageLog.conversation_id == conversation.id,
        MessageLog.text.isnot(None),
        MessageLog.text != "",
    )
    if exclude_message_id:
        query = query.filter(
            (MessageLog.provider_message_id.is_(None)) | (MessageLog.provider_message_id != exclude_message_id)
        )
    rows = query.order_by(MessageLog.id.desc()).limit(limit).all()
    return [
        HistoryTurn(role="customer" if row.direction == "in" else "assistant", text=row.text)
        for row in reversed(rows)
    ]
