from __future__ import annotations

import re
from typing import Any

from orderflow.ai.base import ExtractionRequest
from orderflow.services.menu_candidates import MenuCandidate
from orderflow.services.text_normalizer import SLANG_MAP, normalize, stem


_QUANTITY_WORDS = {
    "bir": 1,
    "iki": 2,
    "uc": 3,
    "dort": 4,
    "bes": 5,
    "alti": 6,
    "yedi": 7,
    "sekiz": 8,
    "dokuz": 9,
    "on": 10,
}

_REMOVE_WORDS = ("cikar", "iptal", "sil", "istemiyorum", "kaldir")
_SEGMENT_SPLIT_RE = re.compile(r"\s*(?:,|\+|\bve\b|\bbir de\b|\bayrica\b)\s*")
_ORDER_NOTE_RE = re.compile(r"\bnot\s*:\s*(.+)$", re.IGNORECASE)
_WITHOUT_RE = re.compile(r"\b([a-z]{3,}?)(siz|suz)\b")
_WITHOUT_PHRASE_RE = re.compile(r"\b([a-z]{3,})\s+olmadan\b")


def _expand(text: str) -> str:
    return " ".join(SLANG_MAP.get(token, (token,))[0] for token in text.split())


def _extract_quantity(segment: str) -> int:
    for token in segment.split():
        if token.isdigit():
            return max(int(token), 1)
        if token in _QUANTITY_WORDS:
            return _QUANTITY_WORDS[token]
    return 1


def _word_set(text: str) -> set[str]:
    tokens = [token for token in text.split() if len(token) >= 3]
    return set(tokens) | {stem(token) for token in tokens}


def _match_strength(segment: str, candidate: MenuCandidate) -> tuple[int, bool]:
    """(strength, specific): specific means the full item name or a synonym was found."""
    name = normalize(candidate.name)
    if name and name in segment:
        return len(name), True
    for synonym in candidate.matched_synonyms:
        phrase = normalize(synonym)
        if phrase and phrase in segment:
            return len(phrase), True
    name_words = {token for token in name.split() if len(token) >= 3}
    if not name_words:
        return 0, False
    overlap = name_words & _word_set(segment)
    if overlap and overlap == name_words:
        return sum(len(token) for token in overlap), True
    if overlap:
        return sum(len(token) for token in overlap), False
    return 0, False


def _extract_options(segment: str, request: ExtractionRequest, item_id: int) -> list[dict[str, str]]:
    selections = []
    for group in request.option_groups.get(item_id, []):
        for option in group.options:
            option_name = normalize(option.name)
            if option_name and re.search(rf"\b{re.escape(option_name)}\b", segment):
                selections.append({"group_name": group.name, "option_name": option.name})
                break
    return selections


def _extract_notes(segment: str, option_names: set[str]) -> str | None:
    notes = []
    for match in _WITHOUT_RE.finditer(segment):
        word = match.group(0)
        if word not in option_names:
            notes.append(word)
    for match in _WITHOUT_PHRASE_RE.finditer(segment):
        notes.append(match.group(0))
    return ", ".join(notes) if notes else None


class MockExtractionProvider:
    """Rule-based extractor for development and tests; no network."""

    name = "mock"

    def extract(self, request: ExtractionRequest) -> dict[str, Any]:
        raw_text = request.user_text or ""
        order_notes = None
        note_match = _ORDER_NOTE_RE.search(raw_text)
        if note_match:
            order_notes = note_match.group(1).strip()
            raw_text = raw_text[: note_match.start()]

        text = _expand(normalize(raw_text))
        segments = [segment for segment in _SEGMENT_SPLIT_RE.split(text) if segment.strip()]

        items: list[dict[str, Any]] = []
        for segment in segments:
            scored = []
            for candidate in request.candidates:
                strength, specific = _match_strength(segment, candidate)
                if strength:
                    scored.append((strength, specific, candidate))
            if not scored:
                continue
            scored.sort(key=lambda entry: (entry[1], entry[0], entry[2].score), reverse=True)
            _, best_specific, best = scored[0]

            item_confidence = 0.95
            if not best_specific:
                rivals = [entry[2] for entry in scored if not entry[1]]
                if len(rivals) > 1:
                    if request.ambiguity_policy == "ask":
                        names = ", ".join(candidate.name for candidate in rivals[:4])
                        return {
                            "items": [],
                            "confidence": 0.4,
                            "clarification_question": f"Hangisini istersiniz: {names}?",
                            "order_notes": order_notes,
                            "missing_fields": ["menu_item_id"],
                        }
                    item_confidence = 0.6
                else:
                    item_confidence = 0.8

            option_selections = _extract_options(segment, request, best.item_id)
            option_names = {normalize(selection["option_name"]) for selection in option_selections}
            action = "remove" if any(re.search(rf"\b{word}", segment) for word in _REMOVE_WORDS) else "add"
            items.append(
                {
                    "menu_item_id": best.item_id,
                    "qty": _extract_quantity(segment),
                    "action": action,
                    "option_selections": option_selections,
                    "extras": [],
                    "notes": _extract_notes(segment, option_names) if action == "add" else None,
                    "item_confidence": item_confidence,
                }
            )

        return {
            "items": items,
            "confidence": 0.9,
            "clarification_question": None,
            "order_notes": order_notes,
            "missing_fields": [],
        }
