from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass

from pydantic import ValidationError
from sqlalchemy.orm import Session

from orderflow.ai.base import ExtractionProvider, ExtractionRequest
from orderflow.ai.mock_provider import MockExtractionProvider
from orderflow.ai.openai_provider import OpenAIExtractionProvider
from orderflow.ai.schema import ExtractionResult
from orderflow.core.config import (
    DEFAULT_EXTRACTION_PROVIDER,
    EXTRACTION_BREAKER_COOLDOWN_SECONDS,
    EXTRACTION_BREAKER_THRESHOLD,
    OPENAI_API_KEY,
)
from orderflow.core.metrics import flow_metrics
from orderflow.models.ai_config import AIConfig
from orderflow.models.ai_message_log import AIMessageLog
from orderflow.services.circuit_breaker import InMemoryTenantCircuitBreaker

logger = logging.getLogger(__name__)

INTEGRATION_NAME = "llm_extraction"

extraction_breaker = InMemoryTenantCircuitBreaker(
    threshold=EXTRACTION_BREAKER_THRESHOLD,
    cooldown_seconds=EXTRACTION_BREAKER_COOLDOWN_SECONDS,
)


@dataclass
class ExtractionOutcome:
    status: str  # ok / unavailable / failed
    result: ExtractionResult | None = None
    error: str | None = None
    provider: str | None = None
    duration_ms: float = 0.0

    @property
    def ok(self) -> bool:
        return self.status == "ok" and self.result is not None


def get_ai_config(db: Session, tenant_id: int) -> AIConfig:
    config = db.query(AIConfig).filter(AIConfig.tenant_id == tenant_id).first()
    if not config:
        config = AIConfig(tenant_id=tenant_id, provider=DEFAULT_EXTRACTION_PROVIDER, enabled=True)
        db.add(config)
        db.flush()
    return config


def get_provider(config: AIConfig) -> ExtractionProvider | None:
    if not config.enabled:
        return None
    provider = (config.provider or "mock").strip().lower()
    if provider == "openai":
        if not OPENAI_API_KEY:
            logger.warning("OpenAI extraction selected without OPENAI_API_KEY (tenant=%s)", config.tenant_id)
            return None
        return OpenAIExtractionProvider()
    if provider == "mock":
        return MockExtractionProvider()
    logger.warning("Unknown extraction provider '%s' (tenant=%s)", provider, config.tenant_id)
    return None


def _log_message(
    db: Session,
    *,
    tenant_id: int,
    conversation_id: int | None,
    direction: str,
    provider: str,
    prompt: str | None = None,
    raw_response: str | None = None,
    parsed_json: str | None = None,
    error: str | None = None,
    duration_ms: float | None = None,
) -> None:
    db.add(
        AIMessageLog(
            tenant_id=tenant_id,
            conversation_id=conversation_id,
            direction=direction,
            provider=provider,
            prompt=prompt,
            raw_response=raw_response,
            parsed_json=parsed_json,
            error=error,
            duration_ms=duration_ms,
        )
    )


def _restrict_to_candidates(result: ExtractionResult, request: ExtractionRequest) -> ExtractionResult:
    allowed = {candidate.item_id for candidate in request.candidates}
    kept = [item for item in result.items if item.menu_item_id in allowed]
    if len(kept) != len(result.items):
        dropped = [item.menu_item_id for item in result.items if item.menu_item_id not in allowed]
        logger.warning("Extraction returned items outside the candidate set: %s", dropped)
    return result.model_copy(update={"items": kept})


def extract_order(
    db: Session,
    request: ExtractionRequest,
    *,
    provider: ExtractionProvider | None = None,
) -> ExtractionOutcome:
    config = get_ai_config(db, request.tenant_id)
    provider = provider or get_provider(config)
    if provider is None:
        flow_metrics.observe_extraction(request.tenant_id, "unavailable")
        return ExtractionOutcome(status="unavailable", error="extraction provider not configured")

    decision = extraction_breaker.before_request(tenant_id=request.tenant_id, integration=INTEGRATION_NAME)
    if not decision.allowed:
        logger.warning(
            "extraction circuit open",
            extra={
                "tenant_id": request.tenant_id,
                "integration": INTEGRATION_NAME,
                "outcome": "unavailable",
            },
        )
        flow_metrics.observe_extraction(request.tenant_id, "circuit_open")
        return ExtractionOutcome(status="unavailable", error="circuit open", provider=provider.name)

    request.model = request.model or config.model
    if request.temperature is None:
        request.temperature = config.temperature
    request.extra_instructions = request.extra_instructions or config.system_prompt

    _log_message(
        db,
        tenant_id=request.tenant_id,
        conversation_id=request.conversation_id,
        direction="in",
        provider=provider.name,
        prompt=request.user_text,
    )

    raw_response = None
    result: ExtractionResult | None = None
    error_message = None
    start = time.perf_counter()
    try:
        raw_payload = provider.extract(request)
        raw_response = json.dumps(raw_payload, ensure_ascii=False)
        result = ExtractionResult.model_validate(raw_payload)
    except ValidationError as exc:
        error_message = f"validation_error: {exc}"
    except Exception as exc:
        error_message = f"provider_error: {exc}"
    duration_ms = round((time.perf_counter() - start) * 1000, 2)

    if result is None:
        extraction_breaker.register_failure(tenant_id=request.tenant_id, integration=INTEGRATION_NAME)
        logger.warning("Extraction failed (tenant=%s): %s", request.tenant_id, error_message)
        _log_message(
            db,
            tenant_id=request.tenant_id,
            conversation_id=request.conversation_id,
            direction="out",
            provider=provider.name,
            raw_response=raw_response,
            error=error_message,
            duration_ms=duration_ms,
        )
        flow_metrics.observe_extraction(request.tenant_id, "failed", duration_ms)
        return ExtractionOutcome(status="failed", error=error_message, provider=provider.name, duration_ms=duration_ms)

    extraction_breaker.register_success(tenant_id=request.tenant_id, integration=INTEGRATION_NAME)
    result = _restrict_to_candidates(result, request)
    _log_message(
        db,
        tenant_id=request.tenant_id,
        conversation_id=request.conversation_id,
        direction="out",
        provider=provider.name,
        raw_response=raw_response,
        parsed_json=result.model_dump_json(),
        duration_ms=duration_ms,
    )
    flow_metrics.observe_extraction(request.tenant_id, "ok", duration_ms)
    return ExtractionOutcome(status="ok", result=result, provider=provider.name, duration_ms=duration_ms)
