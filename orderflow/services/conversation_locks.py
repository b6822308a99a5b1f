"""Human-agent takeover lock, one holder per conversation.

Independent from the message-processing mutex: it only gates replies typed
by an agent. Expired rows are swept before every read or acquire.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable

from sqlalchemy.orm import Session

from orderflow.core.clock import utcnow
from orderflow.core.config import CONVERSATION_LOCK_TTL_SECONDS
from orderflow.models.conversation import Conversation
from orderflow.models.conversation_lock import ConversationLock

logger = logging.getLogger(__name__)

CONVERSATION_LOCKED = "CONVERSATION_LOCKED"
NOT_LOCK_OWNER = "NOT_LOCK_OWNER"
LOCK_NOT_FOUND = "LOCK_NOT_FOUND"


@dataclass
class LockResult:
    ok: bool
    lock: ConversationLock | None = None
    error: str | None = None


class ConversationLockService:
    def __init__(
        self,
        ttl_seconds: int = CONVERSATION_LOCK_TTL_SECONDS,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock

    def cleanup_expired(self, db: Session) -> int:
        deleted = (
            db.query(ConversationLock)
            .filter(ConversationLock.expires_at <= self._clock())
            .delete(synchronize_session=False)
        )
        if deleted:
            db.expire_all()
            logger.info("Expired conversation locks removed: %s", deleted)
        return deleted

    def get_lock(self, db: Session, conversation_id: int) -> ConversationLock | None:
        self.cleanup_expired(db)
        return db.query(ConversationLock).filter(ConversationLock.conversation_id == conversation_id).first()

    def acquire(self, db: Session, conversation: Conversation, agent_id: str) -> LockResult:
        existing = self.get_lock(db, conversation.id)
        now = self._clock()
        if existing and existing.locked_by != agent_id:
            return LockResult(ok=False, lock=existing, error=CONVERSATION_LOCKED)
        if existing:
            existing.expires_at = now + self.ttl
            db.flush()
            return LockResult(ok=True, lock=existing)
        lock = ConversationLock(
            tenant_id=conversation.tenant_id,
            conversation_id=conversation.id,
            locked_by=agent_id,
            locked_at=now,
            expires_at=now + self.ttl,
        )
        db.add(lock)
        db.flush()
        logger.info("Conversation locked: conversation=%s agent=%s", conversation.id, agent_id)
        return LockResult(ok=True, lock=lock)

    def refresh(self, db: Session, conversation_id: int, agent_id: str) -> LockResult:
        existing = self.get_lock(db, conversation_id)
        if not existing:
            return LockResult(ok=False, error=LOCK_NOT_FOUND)
        if existing.locked_by != agent_id:
            return LockResult(ok=False, lock=existing, error=NOT_LOCK_OWNER)
        existing.expires_at = self._clock() + self.ttl
        db.flush()
        return LockResult(ok=True, lock=existing)

    def release(self, db: Session, conversation_id: int, agent_id: str) -> LockResult:
        existing = self.get_lock(db, conversation_id)
        if not existing:
            return LockResult(ok=True)
        if existing.locked_by != agent_id:
            return LockResult(ok=False, lock=existing, error=NOT_LOCK_OWNER)
        db.delete(existing)
        db.flush()
        logger.info("Conversation unlocked: conversation=%s agent=%s", conversation_id, agent_id)
        return LockResult(ok=True)

    def can_write(self, db: Session, conversation_id: int, agent_id: str) -> bool:
        existing = self.get_lock(db, conversation_id)
        return existing is None or existing.locked_by == agent_id


lock_service = ConversationLockService()
