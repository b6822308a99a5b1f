import logging

from fastapi import APIRouter, Body, Depends, HTTPException, Request
from fastapi.responses import PlainTextResponse
from sqlalchemy.orm import Session

from orderflow.core.config import META_WA_VERIFY_TOKEN
from orderflow.core.database import get_db
from orderflow.deps import get_active_tenant, get_conversation_flow, get_messaging_service
from orderflow.fsm.engine import ConversationFlow
from orderflow.models.tenant import Tenant
from orderflow.models.whatsapp_config import WhatsAppConfig
from orderflow.services.inbound import handle_inbound_message
from orderflow.whatsapp.base import InboundMessage
from orderflow.whatsapp.cloud_provider import parse_cloud_webhook
from orderflow.whatsapp.mock_provider import parse_simple_message
from orderflow.whatsapp.service import MessagingService

router = APIRouter(prefix="/api/whatsapp", tags=["whatsapp"])
logger = logging.getLogger(__name__)


def _get_verify_token_for_tenant(db: Session, tenant_id: int) -> str:
    config = db.query(WhatsAppConfig).filter(WhatsAppConfig.tenant_id == tenant_id).first()
    if config and config.verify_token:
        return config.verify_token
    return META_WA_VERIFY_TOKEN


def parse_inbound_payload(payload: dict) -> list[InboundMessage]:
    if payload.get("entry"):
        return parse_cloud_webhook(payload)
    simple = payload.get("message")
    if isinstance(simple, dict):
        parsed = parse_simple_message(simple)
        return [parsed] if parsed else []
    return []


@router.get("/{tenant_id}/webhook")
def verify_whatsapp_webhook(tenant_id: int, request: Request, db: Session = Depends(get_db)):
    qp = request.query_params
    mode = qp.get("hub.mode")
    token = qp.get("hub.verify_token")
    challenge = qp.get("hub.challenge")

    verify_token = _get_verify_token_for_tenant(db, tenant_id)
    if mode == "subscribe" and verify_token and token == verify_token:
        return PlainTextResponse(challenge or "")

    raise HTTPException(status_code=403, detail="Invalid verify token")


# sync: roda no threadpool e pode bloquear no mutex da conversa
@router.post("/{tenant_id}/webhook")
def receive_whatsapp_webhook(
    payload: dict = Body(...),
    tenant: Tenant = Depends(get_active_tenant),
    db: Session = Depends(get_db),
    flow: ConversationFlow = Depends(get_conversation_flow),
    messaging: MessagingService = Depends(get_messaging_service),
):
    messages = parse_inbound_payload(payload)
    if not messages:
        return {"status": "ignored"}

    results = [
        handle_inbound_message(db, tenant_id=tenant.id, message=message, flow=flow, messaging=messaging)
        for message in messages
    ]
    return {"status": "ok", "results": results}
