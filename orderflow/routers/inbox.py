from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from orderflow.core.clock import utcnow
from orderflow.core.database import get_db
from orderflow.deps import get_active_tenant, get_agent_id, get_lock_service, get_messaging_service
from orderflow.models.conversation import Conversation
from orderflow.models.conversation_lock import ConversationLock
from orderflow.models.order_intent import OrderIntent
from orderflow.models.tenant import Tenant
from orderflow.services import message_templates as templates
from orderflow.services.conversation_locks import CONVERSATION_LOCKED, LOCK_NOT_FOUND, ConversationLockService
from orderflow.services.inbox import get_conversation
from orderflow.whatsapp.service import MessagingService

router = APIRouter(prefix="/api/inbox", tags=["inbox"])


class AgentReply(BaseModel):
    text: str = Field(..., min_length=1, max_length=4096)


class IntentFeedback(BaseModel):
    feedback: Literal["correct", "incorrect"]


def _lock_to_dict(lock: Optional[ConversationLock]) -> Optional[dict]:
    if lock is None:
        return None
    return {
        "conversation_id": lock.conversation_id,
        "locked_by": lock.locked_by,
        "locked_at": lock.locked_at,
        "expires_at": lock.expires_at,
    }


def _require_conversation(db: Session, tenant_id: int, conversation_id: int) -> Conversation:
    conversation = get_conversation(db, tenant_id, conversation_id)
    if not conversation:
        raise HTTPException(status_code=404, detail="Conversation not found")
    return conversation


def _raise_for_lock_error(error: Optional[str]) -> None:
    if error == LOCK_NOT_FOUND:
        raise HTTPException(status_code=404, detail=error)
    if error == CONVERSATION_LOCKED:
        raise HTTPException(status_code=409, detail=error)
    raise HTTPException(status_code=403, detail=error)


@router.get("/{tenant_id}/conversations/{conversation_id}/lock")
def get_lock(
    conversation_id: int,
    tenant: Tenant = Depends(get_active_tenant),
    db: Session = Depends(get_db),
    locks: ConversationLockService = Depends(get_lock_service),
):
    _require_conversation(db, tenant.id, conversation_id)
    lock = locks.get_lock(db, conversation_id)
    db.commit()
    return {"lock": _lock_to_dict(lock)}


@router.post("/{tenant_id}/conversations/{conversation_id}/lock")
def acquire_lock(
    conversation_id: int,
    tenant: Tenant = Depends(get_active_tenant),
    agent_id: str = Depends(get_agent_id),
    db: Session = Depends(get_db),
    locks: ConversationLockService = Depends(get_lock_service),
):
    conversation = _require_conversation(db, tenant.id, conversation_id)
    result = locks.acquire(db, conversation, agent_id)
    if not result.ok:
        db.commit()
        _raise_for_lock_error(result.error)
    db.commit()
    return {"lock": _lock_to_dict(result.lock)}


@router.post("/{tenant_id}/conversations/{conversation_id}/lock/refresh")
def refresh_lock(
    conversation_id: int,
    tenant: Tenant = Depends(get_active_tenant),
    agent_id: str = Depends(get_agent_id),
    db: Session = Depends(get_db),
    locks: ConversationLockService = Depends(get_lock_service),
):
    _require_conversation(db, tenant.id, conversation_id)
    result = locks.refresh(db, conversation_id, agent_id)
    db.commit()
    if not result.ok:
        _raise_for_lock_error(result.error)
    return {"lock": _lock_to_dict(result.lock)}


@router.delete("/{tenant_id}/conversations/{conversation_id}/lock")
def release_lock(
    conversation_id: int,
    tenant: Tenant = Depends(get_active_tenant),
    agent_id: str = Depends(get_agent_id),
    db: Session = Depends(get_db),
    locks: ConversationLockService = Depends(get_lock_service),
):
    _require_conversation(db, tenant.id, conversation_id)
    result = locks.release(db, conversation_id, agent_id)
    db.commit()
    if not result.ok:
        _raise_for_lock_error(result.error)
    return {"status": "released"}


@router.post("/{tenant_id}/conversations/{conversation_id}/reply")
def agent_reply(
    conversation_id: int,
    payload: AgentReply,
    tenant: Tenant = Depends(get_active_tenant),
    agent_id: str = Depends(get_agent_id),
    db: Session = Depends(get_db),
    locks: ConversationLockService = Depends(get_lock_service),
    messaging: MessagingService = Depends(get_messaging_service),
):
    conversation = _require_conversation(db, tenant.id, conversation_id)
    if not locks.can_write(db, conversation_id, agent_id):
        db.commit()
        raise HTTPException(status_code=409, detail=CONVERSATION_LOCKED)

    logs = messaging.send(db, conversation, [templates.text(payload.text.strip())])
    db.commit()
    return {"status": logs[0].status if logs else "skipped"}


@router.post("/{tenant_id}/intents/{intent_id}/feedback")
def intent_feedback(
    intent_id: int,
    payload: IntentFeedback,
    tenant: Tenant = Depends(get_active_tenant),
    db: Session = Depends(get_db),
):
    intent = db.query(OrderIntent).filter(OrderIntent.id == intent_id, OrderIntent.tenant_id == tenant.id).first()
    if not intent:
        raise HTTPException(status_code=404, detail="Intent not found")
    intent.agent_feedback = payload.feedback
    intent.feedback_at = utcnow()
    db.commit()
    return {"id": intent.id, "agent_feedback": intent.agent_feedback}
