from __future__ import annotations

import json
from typing import Any

from openai import OpenAI

from orderflow.ai.base import ExtractionRequest
from orderflow.ai.prompts import build_messages
from orderflow.ai.schema import EXTRACTION_JSON_SCHEMA
from orderflow.core.config import (
    EXTRACTION_MAX_TOKENS,
    EXTRACTION_TEMPERATURE,
    EXTRACTION_TIMEOUT_SECONDS,
    OPENAI_API_KEY,
    OPENAI_MODEL,
)


class OpenAIExtractionProvider:
    name = "openai"

    def __init__(self, client: OpenAI | None = None, api_key: str | None = None) -> None:
        # sem retry automatico: falha vira handoff e o cliente tenta de novo na proxima mensagem
        self._client = client or OpenAI(
            api_key=api_key or OPENAI_API_KEY,
            timeout=EXTRACTION_TIMEOUT_SECONDS,
            max_retries=0,
        )

    def extract(self, request: ExtractionRequest) -> dict[str, Any]:
        response = self._client.chat.completions.create(
            model=request.model or OPENAI_MODEL,
            messages=build_messages(request),
            response_format={"type": "json_schema", "json_schema": EXTRACTION_JSON_SCHEMA},
            temperature=request.temperature if request.temperature is not None else EXTRACTION_TEMPERATURE,
            max_tokens=EXTRACTION_MAX_TOKENS,
        )
        content = response.choices[0].message.content
        if not content:
            raise ValueError("empty completion")
        return json.loads(content)
