# orderflow/deps.py
from __future__ import annotations

import logging

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from orderflow.core.database import get_db
from orderflow.fsm.engine import ConversationFlow
from orderflow.models.tenant import Tenant
from orderflow.services.conversation_locks import ConversationLockService, lock_service
from orderflow.services.embeddings import get_embedding_provider
from orderflow.whatsapp.service import MessagingService, messaging_service

logger = logging.getLogger(__name__)

_flow: ConversationFlow | None = None


def get_conversation_flow() -> ConversationFlow:
    """Flow singleton; tests replace it through dependency_overrides."""
    global _flow
    if _flow is None:
        _flow = ConversationFlow(embedding_provider=get_embedding_provider())
    return _flow


def get_messaging_service() -> MessagingService:
    return messaging_service


def get_lock_service() -> ConversationLockService:
    return lock_service


def get_active_tenant(tenant_id: int, db: Session = Depends(get_db)) -> Tenant:
    tenant = db.query(Tenant).filter(Tenant.id == tenant_id).first()
    if not tenant or not tenant.is_active:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Tenant not found")
    return tenant


def get_agent_id(x_agent_id: str | None = Header(default=None)) -> str:
    agent_id = (x_agent_id or "").strip()
    if not agent_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="X-Agent-ID header required")
    return agent_id
