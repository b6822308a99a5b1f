from __future__ import annotations

import logging
import uuid
from typing import Any

from orderflow.models.whatsapp_config import WhatsAppConfig
from orderflow.whatsapp.base import InboundMessage, OutboundMessage, WhatsAppSendResult

logger = logging.getLogger(__name__)


class MockWhatsAppProvider:
    """Accepts every message without network I/O; used in dev, tests and the simulator."""

    name = "mock"

    def __init__(self) -> None:
        self.sent: list[tuple[str, OutboundMessage]] = []

    def send(
        self,
        *,
        tenant_id: int,
        config: WhatsAppConfig | None,
        to_phone: str,
        message: OutboundMessage,
    ) -> WhatsAppSendResult:
        self.sent.append((to_phone, message))
        logger.debug("Mock WhatsApp send: tenant=%s kind=%s", tenant_id, message.kind)
        return WhatsAppSendResult(
            status="sent",
            provider_message_id=f"mock-{uuid.uuid4().hex[:10]}",
            response_payload={"mock": True},
        )


def parse_simple_message(payload: dict[str, Any]) -> InboundMessage | None:
    """Flat JSON body used by the simulator and mock webhooks."""
    sender = payload.get("from") or payload.get("sender")
    if not sender:
        return None
    kind = (payload.get("type") or payload.get("kind") or "text").strip().lower()
    message = InboundMessage(
        message_id=payload.get("id") or payload.get("message_id") or f"mock-{uuid.uuid4().hex[:8]}",
        sender=str(sender),
        kind=kind,
        text=(payload.get("text") or "").strip(),
        contact_name=payload.get("contact_name"),
    )
    if kind == "location":
        message.latitude = payload.get("latitude")
        message.longitude = payload.get("longitude")
    if kind == "interactive":
        message.selection_id = payload.get("selection_id")
        message.selection_title = payload.get("selection_title")
        if not message.text and message.selection_title:
            message.text = message.selection_title
    return message
