from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from orderflow.core.database import get_db
from orderflow.deps import get_conversation_flow, get_messaging_service
from orderflow.fsm.engine import ConversationFlow
from orderflow.models.order_payment import OrderPayment
from orderflow.services.conversation_mutex import ConversationBusyError
from orderflow.services.inbound import handle_payment_callback
from orderflow.services.payments import PENDING, get_payment_by_token, is_expired
from orderflow.whatsapp.service import MessagingService

router = APIRouter(prefix="/api/payments", tags=["payments"])


class PaymentCallback(BaseModel):
    token: str = Field(..., min_length=8)
    success: bool


class PaymentRead(BaseModel):
    id: int
    order_id: int
    method: str
    status: str
    amount_cents: int
    checkout_url: Optional[str]
    expires_at: Optional[datetime]
    paid_at: Optional[datetime]


def _payment_to_dict(payment: OrderPayment) -> dict:
    return {
        "id": payment.id,
        "order_id": payment.order_id,
        "method": payment.method,
        "status": payment.status,
        "amount_cents": payment.amount_cents,
        "checkout_url": payment.checkout_url,
        "expires_at": payment.expires_at,
        "paid_at": payment.paid_at,
    }


@router.get("/checkout/{token}", response_model=PaymentRead)
def get_checkout(token: str, db: Session = Depends(get_db)):
    payment = get_payment_by_token(db, token)
    if not payment:
        raise HTTPException(status_code=404, detail="Payment not found")
    if payment.status == PENDING and is_expired(payment):
        raise HTTPException(status_code=410, detail="Payment link expired")
    return _payment_to_dict(payment)


@router.post("/callback")
def payment_callback(
    payload: PaymentCallback,
    db: Session = Depends(get_db),
    flow: ConversationFlow = Depends(get_conversation_flow),
    messaging: MessagingService = Depends(get_messaging_service),
):
    try:
        result, flow_result = handle_payment_callback(
            db,
            token=payload.token,
            success=payload.success,
            flow=flow,
            messaging=messaging,
        )
    except ConversationBusyError:
        db.rollback()
        raise HTTPException(status_code=503, detail="Conversation busy, retry later")
    if not result.found:
        raise HTTPException(status_code=404, detail="Payment not found")
    if result.duplicate:
        return {"status": "duplicate", "payment_status": result.payment.status}
    return {
        "status": "ok",
        "payment_status": result.payment.status,
        "phase": flow_result.phase if flow_result else None,
    }
