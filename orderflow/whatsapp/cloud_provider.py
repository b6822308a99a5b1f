from __future__ import annotations

import json
import logging
from typing import Any

import httpx

from orderflow.core.config import META_API_VERSION
from orderflow.models.whatsapp_config import WhatsAppConfig
from orderflow.services.circuit_breaker import InMemoryTenantCircuitBreaker
from orderflow.whatsapp.base import (
    BUTTONS,
    LIST,
    LOCATION_REQUEST,
    InboundMessage,
    OutboundMessage,
    WhatsAppSendResult,
)

logger = logging.getLogger(__name__)
_breaker = InMemoryTenantCircuitBreaker(threshold=5, cooldown_seconds=30.0)

MAX_BUTTON_TITLE = 20
MAX_ROW_TITLE = 24


def _parse_message(msg: dict[str, Any], contact_name: str | None) -> InboundMessage | None:
    message_id = msg.get("id")
    from_number = msg.get("from")
    if not message_id or not from_number:
        return None

    msg_type = msg.get("type") or "text"
    inbound = InboundMessage(message_id=message_id, sender=from_number, contact_name=contact_name)

    if msg_type == "text":
        inbound.kind = "text"
        inbound.text = (((msg.get("text") or {}).get("body")) or "").strip()
    elif msg_type == "location":
        location = msg.get("location") or {}
        try:
            inbound.latitude = float(location["latitude"])
            inbound.longitude = float(location["longitude"])
        except (KeyError, TypeError, ValueError):
            logger.info("Location message without coordinates skipped: %s", message_id)
            return None
        inbound.kind = "location"
    elif msg_type == "interactive":
        interactive = msg.get("interactive") or {}
        reply = interactive.get("button_reply") or interactive.get("list_reply") or {}
        if not reply.get("id"):
            return None
        inbound.kind = "interactive"
        inbound.selection_id = reply.get("id")
        inbound.selection_title = reply.get("title")
        inbound.text = (reply.get("title") or "").strip()
    elif msg_type == "button":
        # resposta de template com quick reply
        button = msg.get("button") or {}
        inbound.kind = "interactive"
        inbound.selection_id = button.get("payload")
        inbound.selection_title = button.get("text")
        inbound.text = (button.get("text") or "").strip()
    elif msg_type == "image":
        inbound.kind = "image"
        inbound.text = (((msg.get("image") or {}).get("caption")) or "").strip()
    elif msg_type in {"audio", "voice"}:
        inbound.kind = "voice"
    else:
        logger.info("Unsupported inbound message type skipped: %s", msg_type)
        return None
    return inbound


def parse_cloud_webhook(payload: dict[str, Any]) -> list[InboundMessage]:
    messages: list[InboundMessage] = []
    for entry in payload.get("entry", []) or []:
        for change in entry.get("changes", []) or []:
            value = change.get("value") or {}

            contacts = value.get("contacts") or []
            contact_name = None
            if contacts:
                contact_name = ((contacts[0].get("profile") or {}).get("name")) or None

            for msg in value.get("messages", []) or []:
                if not isinstance(msg, dict):
                    continue
                parsed = _parse_message(msg, contact_name)
                if parsed is not None:
                    messages.append(parsed)
    return messages


def build_cloud_payload(to_phone: str, message: OutboundMessage) -> dict[str, Any]:
    base = {"messaging_product": "whatsapp", "to": to_phone}
    if message.kind == BUTTONS:
        return {
            **base,
            "type": "interactive",
            "interactive": {
                "type": "button",
                "body": {"text": message.text},
                "action": {
                    "buttons": [
                        {"type": "reply", "reply": {"id": button.id, "title": button.title[:MAX_BUTTON_TITLE]}}
                        for button in message.buttons
                    ]
                },
            },
        }
    if message.kind == LIST:
        return {
            **base,
            "type": "interactive",
            "interactive": {
                "type": "list",
                "body": {"text": message.text},
                "action": {
                    "button": (message.button_label or "Sec")[:MAX_BUTTON_TITLE],
                    "sections": [
                        {
                            "title": section.title,
                            "rows": [
                                {
                                    "id": row.id,
                                    "title": row.title[:MAX_ROW_TITLE],
                                    **({"description": row.description} if row.description else {}),
                                }
                                for row in section.rows
                            ],
                        }
                        for section in message.sections
                    ],
                },
            },
        }
    if message.kind == LOCATION_REQUEST:
        return {
            **base,
            "type": "interactive",
            "interactive": {
                "type": "location_request_message",
                "body": {"text": message.text},
                "action": {"name": "send_location"},
            },
        }
    return {**base, "type": "text", "text": {"preview_url": False, "body": message.text}}


class CloudWhatsAppProvider:
    name = "cloud"
    MAX_RETRIES = 3
    INTEGRATION_NAME = "whatsapp_cloud"

    def __init__(self, transport: httpx.BaseTransport | None = None, timeout: float = 20.0) -> None:
        self._transport = transport
        self._timeout = timeout

    def send(
        self,
        *,
        tenant_id: int,
        config: WhatsAppConfig | None,
        to_phone: str,
        message: OutboundMessage,
    ) -> WhatsAppSendResult:
        if not config or not config.access_token or not config.phone_number_id:
            return WhatsAppSendResult(status="failed", error="WhatsApp Cloud credentials incomplete")

        url = f"https://graph.facebook.com/{META_API_VERSION}/{config.phone_number_id}/messages"
        headers = {"Authorization": f"Bearer {config.access_token}", "Content-Type": "application/json"}
        payload = build_cloud_payload(to_phone, message)

        last_error: str | None = None
        for attempt in range(1, self.MAX_RETRIES + 1):
            decision = _breaker.before_request(tenant_id=tenant_id, integration=self.INTEGRATION_NAME)
            if not decision.allowed:
                logger.warning(
                    "tenant integration circuit open",
                    extra={
                        "tenant_id": tenant_id,
                        "integration": self.INTEGRATION_NAME,
                        "outcome": "skipped",
                    },
                )
                return WhatsAppSendResult(status="failed", error="circuit open")

            try:
                with httpx.Client(timeout=self._timeout, transport=self._transport) as client:
                    response = client.post(url, headers=headers, json=payload)

                if 200 <= response.status_code < 300:
                    _breaker.register_success(tenant_id=tenant_id, integration=self.INTEGRATION_NAME)
                    provider_id = None
                    try:
                        data = response.json()
                        provider_id = ((data.get("messages") or [{}])[0].get("id"))
                    except json.JSONDecodeError:
                        data = {"raw": response.text}
                    return WhatsAppSendResult(status="sent", provider_message_id=provider_id, response_payload=data)

                last_error = f"WhatsApp error {response.status_code}: {response.text}"
                # 4xx nao melhora com retry
                if 400 <= response.status_code < 500 and response.status_code != 429:
                    _breaker.register_failure(tenant_id=tenant_id, integration=self.INTEGRATION_NAME)
                    break
            except httpx.HTTPError as exc:
                last_error = str(exc)

            failures = _breaker.register_failure(tenant_id=tenant_id, integration=self.INTEGRATION_NAME)
            if failures == _breaker.threshold:
                logger.warning(
                    "tenant integration failure threshold reached",
                    extra={"tenant_id": tenant_id, "integration": self.INTEGRATION_NAME},
                )
            if attempt >= self.MAX_RETRIES:
                break

        return WhatsAppSendResult(status="failed", error=last_error)


def reset_cloud_breaker() -> None:
    _breaker.reset()
