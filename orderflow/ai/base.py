from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol

from orderflow.services.catalog import CatalogOptionGroup
from orderflow.services.menu_candidates import MenuCandidate


@dataclass(frozen=True)
class HistoryTurn:
    role: str  # customer / assistant
    text: str


@dataclass(frozen=True)
class DraftLine:
    menu_item_id: int
    name: str
    qty: int
    options: tuple[str, ...] = ()
    notes: str | None = None


@dataclass
class ExtractionRequest:
    tenant_id: int
    conversation_id: int | None
    user_text: str
    candidates: list[MenuCandidate]
    option_groups: dict[int, list[CatalogOptionGroup]] = field(default_factory=dict)
    history: list[HistoryTurn] = field(default_factory=list)
    draft: list[DraftLine] = field(default_factory=list)
    preferences: dict[str, Any] = field(default_factory=dict)
    ambiguity_policy: str = "ask"
    extra_instructions: str | None = None
    model: str | None = None
    temperature: float | None = None


class ExtractionProvider(Protocol):
    name: str

    def extract(self, request: ExtractionRequest) -> dict[str, Any]:
        """Raw JSON payload; validated by the caller against ExtractionResult."""
        ...
