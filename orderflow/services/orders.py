from __future__ import annotations

import json
import logging
from dataclasses import dataclass

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from orderflow.core.clock import utcnow
from orderflow.models.conversation import Conversation
from orderflow.models.order import Order
from orderflow.models.order_item import OrderItem
from orderflow.models.order_number_sequence import OrderNumberSequence

logger = logging.getLogger(__name__)

DRAFT = "DRAFT"
PENDING_CONFIRMATION = "PENDING_CONFIRMATION"
CONFIRMED = "CONFIRMED"
PREPARING = "PREPARING"
READY = "READY"
DELIVERED = "DELIVERED"
CANCELLED = "CANCELLED"

ALLOWED_TRANSITIONS = {
    DRAFT: {PENDING_CONFIRMATION, CANCELLED},
    PENDING_CONFIRMATION: {CONFIRMED, CANCELLED},
    CONFIRMED: {PREPARING, CANCELLED},
    PREPARING: {READY, CANCELLED},
    READY: {DELIVERED},
    DELIVERED: set(),
    CANCELLED: set(),
}

PAYMENT_CASH = "CASH"
PAYMENT_CREDIT_CARD = "CREDIT_CARD"


@dataclass
class OrderStatusChange:
    ok: bool
    order: Order | None = None
    previous_status: str | None = None
    error: str | None = None


def _increment_sequence(db: Session, tenant_id: int) -> int | None:
    statement = (
        update(OrderNumberSequence)
        .where(OrderNumberSequence.tenant_id == tenant_id)
        .values(last_number=OrderNumberSequence.last_number + 1)
        .returning(OrderNumberSequence.last_number)
        .execution_options(synchronize_session=False)
    )
    return db.execute(statement).scalar_one_or_none()


def allocate_order_number(db: Session, tenant_id: int) -> int:
    """Next per-tenant order number.

    The increment is a single UPDATE ... RETURNING, so the counter row stays
    write-locked until the caller commits and a concurrent allocation waits for it.
    """
    number = _increment_sequence(db, tenant_id)
    if number is not None:
        return int(number)
    try:
        with db.begin_nested():
            db.add(OrderNumberSequence(tenant_id=tenant_id, last_number=1))
        return 1
    except IntegrityError:
        # outra transacao criou o contador primeiro
        number = _increment_sequence(db, tenant_id)
        if number is None:
            raise
        return int(number)


def recompute_total(order: Order) -> int:
    order.total_cents = sum(int(item.quantity) * int(item.unit_price_cents) for item in order.items)
    return order.total_cents


def get_active_draft(db: Session, conversation: Conversation) -> Order | None:
    if conversation.active_order_id:
        order = (
            db.query(Order)
            .filter(
                Order.id == conversation.active_order_id,
                Order.tenant_id == conversation.tenant_id,
                Order.status == DRAFT,
            )
            .first()
        )
        if order:
            return order
    return (
        db.query(Order)
        .filter(
            Order.tenant_id == conversation.tenant_id,
            Order.conversation_id == conversation.id,
            Order.status == DRAFT,
        )
        .order_by(Order.id.desc())
        .first()
    )


def create_draft(db: Session, conversation: Conversation) -> Order:
    order = Order(
        tenant_id=conversation.tenant_id,
        conversation_id=conversation.id,
        status=DRAFT,
        customer_phone=conversation.customer_phone,
        customer_name=conversation.customer_name,
        total_cents=0,
    )
    db.add(order)
    db.flush()
    conversation.active_order_id = order.id
    logger.info("Draft created: tenant=%s conversation=%s order=%s", conversation.tenant_id, conversation.id, order.id)
    return order


def delete_draft(db: Session, conversation: Conversation, order: Order) -> None:
    if order.status != DRAFT:
        raise ValueError(f"only DRAFT orders can be deleted (order={order.id} status={order.status})")
    db.delete(order)
    if conversation.active_order_id == order.id:
        conversation.active_order_id = None
    db.flush()


def cancel_active_order(db: Session, conversation: Conversation) -> bool:
    order = get_active_draft(db, conversation)
    conversation.active_order_id = None
    if not order:
        return False
    order.status = CANCELLED
    db.flush()
    logger.info("Draft cancelled: tenant=%s order=%s", conversation.tenant_id, order.id)
    return True


def change_status(db: Session, order: Order, new_status: str) -> OrderStatusChange:
    new_status = (new_status or "").strip().upper()
    previous = order.status
    if new_status not in ALLOWED_TRANSITIONS:
        return OrderStatusChange(ok=False, order=order, previous_status=previous, error="UNKNOWN_STATUS")
    if new_status == previous:
        return OrderStatusChange(ok=True, order=order, previous_status=previous)
    if new_status not in ALLOWED_TRANSITIONS.get(previous, set()):
        return OrderStatusChange(ok=False, order=order, previous_status=previous, error="INVALID_TRANSITION")
    order.status = new_status
    order.updated_at = utcnow()
    db.flush()
    logger.info("Order status changed: order=%s %s -> %s", order.id, previous, new_status)
    return OrderStatusChange(ok=True, order=order, previous_status=previous)


def set_pending_confirmation(db: Session, order: Order, payment_method: str) -> OrderStatusChange:
    if order.status != DRAFT:
        return OrderStatusChange(ok=False, order=order, previous_status=order.status, error="NOT_DRAFT")
    if not order.items:
        return OrderStatusChange(ok=False, order=order, previous_status=order.status, error="EMPTY_ORDER")
    order.order_number = allocate_order_number(db, order.tenant_id)
    order.payment_method = payment_method
    return change_status(db, order, PENDING_CONFIRMATION)


def item_options(item: OrderItem) -> list[dict]:
    try:
        value = json.loads(item.options_json or "[]")
    except (TypeError, ValueError):
        return []
    return value if isinstance(value, list) else []


def item_extras(item: OrderItem) -> list[dict]:
    try:
        value = json.loads(item.extras_json or "[]")
    except (TypeError, ValueError):
        return []
    return value if isinstance(value, list) else []
