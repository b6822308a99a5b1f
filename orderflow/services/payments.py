from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Protocol

from sqlalchemy.orm import Session

from orderflow.core.clock import utcnow
from orderflow.core.config import APP_BASE_URL, PAYMENT_LINK_EXPIRY_MINUTES
from orderflow.models.order import Order
from orderflow.models.order_payment import OrderPayment
from orderflow.services.orders import PAYMENT_CASH, PAYMENT_CREDIT_CARD

logger = logging.getLogger(__name__)

PENDING = "PENDING"
SUCCESS = "SUCCESS"
FAILED = "FAILED"
EXPIRED = "EXPIRED"


@dataclass
class CheckoutSession:
    token: str
    checkout_url: str


@dataclass
class PaymentLinkResult:
    ok: bool
    payment: OrderPayment | None = None
    checkout_url: str | None = None
    error: str | None = None


@dataclass
class PaymentCallbackResult:
    found: bool
    success: bool = False
    payment: OrderPayment | None = None
    duplicate: bool = False


class PaymentGateway(Protocol):
    name: str

    def create_checkout(self, order: Order, amount_cents: int) -> CheckoutSession:
        ...


class MockPaymentGateway:
    name = "mock"

    def __init__(self, base_url: str = APP_BASE_URL) -> None:
        self.base_url = base_url.rstrip("/")

    def create_checkout(self, order: Order, amount_cents: int) -> CheckoutSession:
        token = uuid.uuid4().hex
        return CheckoutSession(token=token, checkout_url=f"{self.base_url}/api/payments/checkout/{token}")


def payment_amount_cents(order: Order) -> int:
    return int(order.total_cents or 0) + int(order.delivery_fee_cents or 0)


def initiate_card_payment(
    db: Session,
    order: Order,
    gateway: PaymentGateway,
    *,
    expiry_minutes: int = PAYMENT_LINK_EXPIRY_MINUTES,
) -> PaymentLinkResult:
    amount = payment_amount_cents(order)
    try:
        session = gateway.create_checkout(order, amount)
    except Exception as exc:
        logger.warning("Payment link creation failed: order=%s gateway=%s error=%s", order.id, gateway.name, exc)
        return PaymentLinkResult(ok=False, error=str(exc))

    now = utcnow()
    payment = OrderPayment(
        tenant_id=order.tenant_id,
        order_id=order.id,
        conversation_id=order.conversation_id,
        method=PAYMENT_CREDIT_CARD,
        status=PENDING,
        amount_cents=amount,
        token=session.token,
        checkout_url=session.checkout_url,
        created_at=now,
        expires_at=now + timedelta(minutes=expiry_minutes),
    )
    db.add(payment)
    db.flush()
    logger.info("Payment link created: order=%s payment=%s", order.id, payment.id)
    return PaymentLinkResult(ok=True, payment=payment, checkout_url=session.checkout_url)


def record_cash_payment(db: Session, order: Order) -> OrderPayment:
    payment = OrderPayment(
        tenant_id=order.tenant_id,
        order_id=order.id,
        conversation_id=order.conversation_id,
        method=PAYMENT_CASH,
        status=SUCCESS,
        amount_cents=payment_amount_cents(order),
    )
    db.add(payment)
    db.flush()
    return payment


def get_pending_payment(db: Session, order_id: int) -> OrderPayment | None:
    return (
        db.query(OrderPayment)
        .filter(
            OrderPayment.order_id == order_id,
            OrderPayment.method == PAYMENT_CREDIT_CARD,
            OrderPayment.status == PENDING,
        )
        .order_by(OrderPayment.id.desc())
        .first()
    )


def is_expired(payment: OrderPayment, now: datetime | None = None) -> bool:
    if payment.expires_at is None:
        return False
    return (now or utcnow()) > payment.expires_at


def expire_payment(db: Session, payment: OrderPayment) -> None:
    payment.status = EXPIRED
    db.flush()


def get_payment_by_token(db: Session, token: str) -> OrderPayment | None:
    return db.query(OrderPayment).filter(OrderPayment.token == token).first()


def complete_card_payment(db: Session, token: str, success: bool) -> PaymentCallbackResult:
    payment = get_payment_by_token(db, token)
    if not payment:
        return PaymentCallbackResult(found=False)
    if payment.status != PENDING:
        return PaymentCallbackResult(found=True, success=payment.status == SUCCESS, payment=payment, duplicate=True)
    payment.status = SUCCESS if success else FAILED
    if success:
        payment.paid_at = utcnow()
    db.flush()
    logger.info("Payment callback: payment=%s order=%s success=%s", payment.id, payment.order_id, success)
    return PaymentCallbackResult(found=True, success=success, payment=payment)
