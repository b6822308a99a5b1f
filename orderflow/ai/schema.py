from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import BaseModel, Field


class OptionSelection(BaseModel):
    group_name: str = Field(..., min_length=1)
    option_name: str = Field(..., min_length=1)


class ExtraSelection(BaseModel):
    name: str = Field(..., min_length=1)
    qty: int = Field(1, ge=1)


class ExtractedItem(BaseModel):
    menu_item_id: int
    qty: int = Field(1, ge=1)
    action: Literal["add", "remove", "keep"] = "add"
    option_selections: List[OptionSelection] = Field(default_factory=list)
    extras: List[ExtraSelection] = Field(default_factory=list)
    notes: Optional[str] = None
    item_confidence: float = Field(1.0, ge=0.0, le=1.0)


class ExtractionResult(BaseModel):
    items: List[ExtractedItem] = Field(default_factory=list)
    confidence: float = Field(..., ge=0.0, le=1.0)
    clarification_question: Optional[str] = None
    order_notes: Optional[str] = None
    missing_fields: List[str] = Field(default_factory=list)

    @property
    def needs_clarification(self) -> bool:
        return bool((self.clarification_question or "").strip())


# Structured Outputs schema sent to the completion API; mirrors ExtractionResult.
_NULLABLE_STRING = {"type": ["string", "null"]}

EXTRACTION_JSON_SCHEMA = {
    "name": "order_extraction",
    "strict": True,
    "schema": {
        "type": "object",
        "additionalProperties": False,
        "properties": {
            "items": {
                "type": "array",
                "items": {
                    "type": "object",
                    "additionalProperties": False,
                    "properties": {
                        "menu_item_id": {"type": "integer"},
                        "qty": {"type": "integer"},
                        "action": {"type": "string", "enum": ["add", "remove", "keep"]},
                        "option_selections": {
                            "type": "array",
                            "items": {
                                "type": "object",
                                "additionalProperties": False,
                                "properties": {
                                    "group_name": {"type": "string"},
                                    "option_name": {"type": "string"},
                                },
                                "required": ["group_name", "option_name"],
                            },
                        },
                        "extras": {
                            "type": "array",
                            "items": {
                                "type": "object",
                                "additionalProperties": False,
                                "properties": {
                                    "name": {"type": "string"},
                                    "qty": {"type": "integer"},
                                },
                                "required": ["name", "qty"],
                            },
                        },
                        "notes": _NULLABLE_STRING,
                        "item_confidence": {"type": "number"},
                    },
                    "required": [
                        "menu_item_id",
                        "qty",
                        "action",
                        "option_selections",
                        "extras",
                        "notes",
                        "item_confidence",
                    ],
                },
            },
            "confidence": {"type": "number"},
            "clarification_question": _NULLABLE_STRING,
            "order_notes": _NULLABLE_STRING,
            "missing_fields": {"type": "array", "items": {"type": "string"}},
        },
        "required": ["items", "confidence", "clarification_question", "order_notes", "missing_fields"],
    },
}
