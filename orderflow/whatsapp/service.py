from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from orderflow.core.config import IS_DEV
from orderflow.models.conversation import Conversation
from orderflow.models.message_log import MessageLog
from orderflow.models.whatsapp_config import WhatsAppConfig
from orderflow.services.inbox import record_outbound
from orderflow.whatsapp.base import OutboundMessage, WhatsAppProvider
from orderflow.whatsapp.cloud_provider import CloudWhatsAppProvider
from orderflow.whatsapp.mock_provider import MockWhatsAppProvider

logger = logging.getLogger(__name__)


class MessagingService:
    def __init__(
        self,
        mock_provider: MockWhatsAppProvider | None = None,
        cloud_provider: CloudWhatsAppProvider | None = None,
    ) -> None:
        self._mock_provider = mock_provider or MockWhatsAppProvider()
        self._cloud_provider = cloud_provider or CloudWhatsAppProvider()

    def get_config(self, db: Session, tenant_id: int) -> WhatsAppConfig | None:
        return (
            db.query(WhatsAppConfig)
            .filter(WhatsAppConfig.tenant_id == tenant_id)
            .first()
        )

    def _select_provider(self, config: WhatsAppConfig | None) -> WhatsAppProvider:
        if not config or not config.is_enabled:
            return self._mock_provider
        if config.provider == "cloud" and config.access_token and config.phone_number_id:
            return self._cloud_provider
        return self._mock_provider

    def _should_fallback(self) -> bool:
        return IS_DEV

    def send(self, db: Session, conversation: Conversation, messages: list[OutboundMessage]) -> list[MessageLog]:
        """Delivers replies in order; failures are logged and recorded, never raised."""
        if not messages:
            return []
        config = self.get_config(db, conversation.tenant_id)
        provider = self._select_provider(config)
        logs: list[MessageLog] = []
        for message in messages:
            result = provider.send(
                tenant_id=conversation.tenant_id,
                config=config,
                to_phone=conversation.customer_phone,
                message=message,
            )
            if result.status == "failed" and provider is self._cloud_provider and self._should_fallback():
                logger.warning("WhatsApp Cloud failed, falling back to mock (tenant=%s)", conversation.tenant_id)
                result = self._mock_provider.send(
                    tenant_id=conversation.tenant_id,
                    config=config,
                    to_phone=conversation.customer_phone,
                    message=message,
                )
            if result.status == "failed":
                logger.warning(
                    "Outbound message failed: tenant=%s conversation=%s error=%s",
                    conversation.tenant_id,
                    conversation.id,
                    result.error,
                )
            logs.append(
                record_outbound(
                    db,
                    conversation,
                    message,
                    status=result.status,
                    provider_message_id=result.provider_message_id,
                    error=result.error,
                    response_payload=result.response_payload,
                )
            )
        return logs


messaging_service = MessagingService()
