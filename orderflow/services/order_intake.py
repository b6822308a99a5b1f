"""Turns one customer text into a draft-order change.

Pipeline: candidate retrieval, structured extraction, confidence gating,
merge. Nothing here raises for business conditions; the caller inspects
``IntakeResult.outcome``.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass

from sqlalchemy.orm import Session

from orderflow.ai.base import DraftLine, ExtractionProvider, ExtractionRequest
from orderflow.ai.schema import ExtractionResult
from orderflow.ai.service import extract_order
from orderflow.core.config import (
    AMBIGUOUS_ITEM_POLICY,
    EXTRACTION_CONFIDENCE_THRESHOLD,
    EXTRACTION_HISTORY_TURNS,
    EXTRACTION_ITEM_CONFIDENCE_THRESHOLD,
)
from orderflow.models.conversation import Conversation
from orderflow.models.order import Order
from orderflow.models.order_intent import OrderIntent
from orderflow.services import message_templates as templates
from orderflow.services import orders as order_service
from orderflow.services.catalog import PublishedMenu, get_published_menu
from orderflow.services.draft_merge import MergeResult, merge_extraction
from orderflow.services.embeddings import EmbeddingProvider
from orderflow.services.inbox import recent_history
from orderflow.services.menu_candidates import MenuCandidate, find_candidates
from orderflow.services.preferences import get_preferences

logger = logging.getLogger(__name__)

MERGED = "merged"
CLARIFY = "clarify"
NO_MATCH = "no_match"
HANDOFF = "handoff"
DRAFT_CLEARED = "draft_cleared"


@dataclass
class IntakeResult:
    outcome: str
    order: Order | None = None
    reply: str | None = None
    merge: MergeResult | None = None
    intent: OrderIntent | None = None


def _draft_lines(order: Order | None) -> list[DraftLine]:
    if not order:
        return []
    return [
        DraftLine(
            menu_item_id=item.menu_item_id,
            name=item.name,
            qty=int(item.quantity),
            options=tuple(
                option.get("option_name") for option in order_service.item_options(item) if option.get("option_name")
            ),
            notes=item.notes,
        )
        for item in order.items
    ]


def _previous_candidate_ids(db: Session, conversation: Conversation) -> list[int]:
    last_intent = (
        db.query(OrderIntent)
        .filter(OrderIntent.conversation_id == conversation.id)
        .order_by(OrderIntent.id.desc())
        .first()
    )
    if not last_intent:
        return []
    ids: list[int] = []
    try:
        ids.extend(int(value) for value in json.loads(last_intent.candidate_ids_json or "[]"))
        extracted = json.loads(last_intent.extracted_json or "{}")
        ids.extend(int(item["menu_item_id"]) for item in extracted.get("items") or [] if "menu_item_id" in item)
    except (TypeError, ValueError, KeyError):
        logger.info("Unreadable previous intent ignored: intent=%s", last_intent.id)
    return ids


def followup_item_ids(db: Session, conversation: Conversation, draft: Order | None) -> list[int]:
    ids = _previous_candidate_ids(db, conversation)
    if draft:
        ids.extend(int(item.menu_item_id) for item in draft.items if item.menu_item_id)
    seen: set[int] = set()
    ordered: list[int] = []
    for item_id in ids:
        if item_id not in seen:
            seen.add(item_id)
            ordered.append(item_id)
    return ordered


def _save_intent(
    db: Session,
    conversation: Conversation,
    message_id: str | None,
    text: str,
    candidates: list[MenuCandidate],
    result: ExtractionResult,
) -> OrderIntent:
    intent = OrderIntent(
        tenant_id=conversation.tenant_id,
        conversation_id=conversation.id,
        message_id=message_id,
        user_text=text,
        extracted_json=result.model_dump_json(),
        candidate_ids_json=json.dumps([candidate.item_id for candidate in candidates]),
        confidence=result.confidence,
        needs_clarification=result.needs_clarification,
        clarification_question=result.clarification_question,
    )
    db.add(intent)
    db.flush()
    return intent


def _low_confidence_names(menu: PublishedMenu, result: ExtractionResult) -> list[str]:
    names = []
    for item in result.items:
        if item.action == "add" and item.item_confidence < EXTRACTION_ITEM_CONFIDENCE_THRESHOLD:
            catalog_item = menu.get_item(item.menu_item_id)
            names.append(catalog_item.name if catalog_item else str(item.menu_item_id))
    return names


def interpret_message(
    db: Session,
    conversation: Conversation,
    text: str,
    *,
    message_id: str | None = None,
    provider: ExtractionProvider | None = None,
    embedding_provider: EmbeddingProvider | None = None,
) -> IntakeResult:
    menu = get_published_menu(db, conversation.tenant_id)
    draft = order_service.get_active_draft(db, conversation)
    if menu.is_empty:
        logger.info("Empty menu, nothing to extract: tenant=%s", conversation.tenant_id)
        return IntakeResult(outcome=NO_MATCH, order=draft)

    candidates = find_candidates(
        menu,
        text,
        followup_item_ids=followup_item_ids(db, conversation, draft),
        embedding_provider=embedding_provider,
    )
    if not candidates:
        return IntakeResult(outcome=NO_MATCH, order=draft)

    request = ExtractionRequest(
        tenant_id=conversation.tenant_id,
        conversation_id=conversation.id,
        user_text=text,
        candidates=candidates,
        option_groups={candidate.item_id: menu.option_groups_for(candidate.item_id) for candidate in candidates},
        history=recent_history(db, conversation, EXTRACTION_HISTORY_TURNS, exclude_message_id=message_id),
        draft=_draft_lines(draft),
        preferences=get_preferences(db, conversation.tenant_id, conversation.customer_phone),
        ambiguity_policy=AMBIGUOUS_ITEM_POLICY,
    )
    outcome = extract_order(db, request, provider=provider)
    if not outcome.ok:
        logger.warning(
            "Extraction unavailable, handing off: tenant=%s conversation=%s status=%s",
            conversation.tenant_id,
            conversation.id,
            outcome.status,
        )
        return IntakeResult(outcome=HANDOFF, order=draft, reply=templates.agent_handoff())

    result = outcome.result
    intent = _save_intent(db, conversation, message_id, text, candidates, result)

    if result.needs_clarification or result.confidence < EXTRACTION_CONFIDENCE_THRESHOLD:
        question = (result.clarification_question or "").strip() or templates.clarification_fallback()
        logger.info("Clarification requested: conversation=%s confidence=%.2f", conversation.id, result.confidence)
        return IntakeResult(outcome=CLARIFY, order=draft, reply=question, intent=intent)

    uncertain = _low_confidence_names(menu, result)
    if uncertain:
        return IntakeResult(
            outcome=CLARIFY,
            order=draft,
            reply=templates.item_clarification(uncertain),
            intent=intent,
        )

    if not result.items:
        if result.order_notes and draft is not None:
            merge = merge_extraction(db, conversation, menu, [], order_notes=result.order_notes)
            return IntakeResult(outcome=MERGED, order=merge.order, merge=merge, intent=intent)
        return IntakeResult(outcome=NO_MATCH, order=draft, intent=intent)

    merge = merge_extraction(db, conversation, menu, result.items, order_notes=result.order_notes)
    if merge.draft_deleted:
        return IntakeResult(outcome=DRAFT_CLEARED, merge=merge, intent=intent)
    return IntakeResult(outcome=MERGED, order=merge.order, merge=merge, intent=intent)
