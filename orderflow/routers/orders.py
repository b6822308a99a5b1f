import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from orderflow.core.database import get_db
from orderflow.deps import get_active_tenant, get_messaging_service
from orderflow.models.conversation import Conversation
from orderflow.models.order import Order
from orderflow.models.tenant import Tenant
from orderflow.services import message_templates as templates
from orderflow.services.orders import DRAFT, change_status, item_extras, item_options
from orderflow.whatsapp.service import MessagingService

router = APIRouter(prefix="/api/orders", tags=["orders"])
logger = logging.getLogger(__name__)


class StatusUpdate(BaseModel):
    status: str = Field(..., min_length=3)


def _order_to_dict(order: Order) -> Dict[str, Any]:
    return {
        "id": order.id,
        "tenant_id": order.tenant_id,
        "order_number": order.order_number,
        "status": order.status,
        "customer_phone": order.customer_phone,
        "customer_name": order.customer_name,
        "total_cents": order.total_cents,
        "delivery_fee_cents": order.delivery_fee_cents,
        "payment_method": order.payment_method,
        "store_id": order.store_id,
        "notes": order.notes,
        "items": [
            {
                "id": item.id,
                "menu_item_id": item.menu_item_id,
                "name": item.name,
                "quantity": item.quantity,
                "unit_price_cents": item.unit_price_cents,
                "options": item_options(item),
                "extras": item_extras(item),
                "notes": item.notes,
            }
            for item in order.items
        ],
    }


def _get_order(db: Session, tenant_id: int, order_id: int) -> Order:
    order = db.query(Order).filter(Order.id == order_id, Order.tenant_id == tenant_id).first()
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    return order


@router.get("/{tenant_id}/{order_id}")
def get_order(order_id: int, tenant: Tenant = Depends(get_active_tenant), db: Session = Depends(get_db)):
    return _order_to_dict(_get_order(db, tenant.id, order_id))


@router.patch("/{tenant_id}/{order_id}/status")
def update_status(
    order_id: int,
    payload: StatusUpdate,
    tenant: Tenant = Depends(get_active_tenant),
    db: Session = Depends(get_db),
    messaging: MessagingService = Depends(get_messaging_service),
):
    order = _get_order(db, tenant.id, order_id)
    if order.status == DRAFT:
        raise HTTPException(status_code=409, detail="Draft orders are managed by the conversation")

    change = change_status(db, order, payload.status)
    if not change.ok:
        db.rollback()
        code = 400 if change.error == "UNKNOWN_STATUS" else 409
        raise HTTPException(status_code=code, detail=change.error)
    db.commit()

    if change.previous_status != order.status and order.conversation_id:
        conversation = db.get(Conversation, order.conversation_id)
        notification = templates.status_notification(order)
        if conversation and notification:
            messaging.send(db, conversation, [templates.text(notification)])
            db.commit()

    db.refresh(order)
    return _order_to_dict(order)
