import uuid
from typing import Literal, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from orderflow.core.database import get_db
from orderflow.deps import get_active_tenant, get_conversation_flow, get_messaging_service
from orderflow.fsm.engine import ConversationFlow
from orderflow.models.tenant import Tenant
from orderflow.services.inbound import handle_inbound_message
from orderflow.whatsapp.base import InboundMessage
from orderflow.whatsapp.service import MessagingService

router = APIRouter(prefix="/simulator", tags=["simulator"])


class SimulatedMessage(BaseModel):
    phone: str = Field(..., min_length=3, max_length=30)
    kind: Literal["text", "location", "image", "voice", "interactive"] = "text"
    text: str = ""
    latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    longitude: Optional[float] = Field(default=None, ge=-180, le=180)
    selection_id: Optional[str] = None
    selection_title: Optional[str] = None
    message_id: Optional[str] = None
    contact_name: Optional[str] = None


@router.post("/{tenant_id}/messages")
def simulate_message(
    body: SimulatedMessage,
    tenant: Tenant = Depends(get_active_tenant),
    db: Session = Depends(get_db),
    flow: ConversationFlow = Depends(get_conversation_flow),
    messaging: MessagingService = Depends(get_messaging_service),
):
    message = InboundMessage(
        message_id=body.message_id or f"sim-{uuid.uuid4().hex[:12]}",
        sender=body.phone,
        kind=body.kind,
        text=(body.text or body.selection_title or "").strip(),
        latitude=body.latitude,
        longitude=body.longitude,
        selection_id=body.selection_id,
        selection_title=body.selection_title,
        contact_name=body.contact_name,
    )
    return handle_inbound_message(db, tenant_id=tenant.id, message=message, flow=flow, messaging=messaging)
