"""Scores catalog items against a customer's message.

Text scoring is additive and clamped to [0, 1]; an optional vector signal
is blended on top. Items referenced by the previous turn or by the current
draft are always returned so follow-ups ("ondan iki tane") can resolve.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from difflib import SequenceMatcher
from typing import Iterable

from orderflow.services.catalog import CatalogItem, PublishedMenu
from orderflow.services.embeddings import EmbeddingProvider
from orderflow.services.text_normalizer import MenuMatchText, normalize, process_for_menu_match, stem

logger = logging.getLogger(__name__)

TOP_N = 10
MIN_SCORE = 0.15
FOLLOWUP_SCORE = 0.2
CATEGORY_FLOOR = 0.3
FUZZY_WORD_THRESHOLD = 0.7
FUZZY_PHRASE_THRESHOLD = 0.5
VECTOR_BLEND_THRESHOLD = 0.3
VECTOR_ADMIT_THRESHOLD = 0.5
VECTOR_BLEND_WEIGHT = 0.3
VECTOR_ADMIT_WEIGHT = 0.4
DESCRIPTION_WORDS = 10


@dataclass
class MenuCandidate:
    item_id: int
    name: str
    base_price_cents: int
    category_name: str | None = None
    description: str | None = None
    option_group_ids: tuple[int, ...] = ()
    matched_synonyms: list[str] = field(default_factory=list)
    score: float = 0.0
    source: str = "text"

    @classmethod
    def from_item(cls, item: CatalogItem, score: float, *, source: str = "text", synonyms: list[str] | None = None):
        return cls(
            item_id=item.id,
            name=item.name,
            base_price_cents=item.base_price_cents,
            category_name=item.category_name,
            description=item.description,
            option_group_ids=item.option_group_ids,
            matched_synonyms=list(synonyms or []),
            score=round(min(1.0, max(0.0, score)), 4),
            source=source,
        )


def similarity(left: str, right: str) -> float:
    if not left or not right:
        return 0.0
    return SequenceMatcher(None, left, right).ratio()


def _significant(tokens: Iterable[str]) -> list[str]:
    return [token for token in tokens if len(token) >= 3]


def _word_matches(word: str, user_words: set[str]) -> bool:
    return word in user_words or stem(word) in user_words


def _category_stem(name: str) -> str:
    value = normalize(name)
    for suffix in ("leri", "lari", "ler", "lar"):
        if value.endswith(suffix) and len(value) - len(suffix) >= 3:
            return value[: -len(suffix)]
    return value


def matched_category_ids(menu: PublishedMenu, processed: MenuMatchText) -> set[int]:
    user_words = processed.all_words
    matched: set[int] = set()
    for category in menu.categories:
        category_stem = _category_stem(category.name)
        if len(category_stem) < 3:
            continue
        for word in user_words:
            if len(word) < 3:
                continue
            if word == category_stem or word.startswith(category_stem) or (len(word) >= 4 and category_stem.startswith(word)):
                matched.add(category.id)
                break
    return matched


def score_item(item: CatalogItem, menu: PublishedMenu, processed: MenuMatchText) -> tuple[float, list[str]]:
    user_words = processed.all_words
    name_norm = normalize(item.name)
    score = 0.0

    if name_norm and any(name_norm in text for text in processed.expanded_texts):
        score += 0.8
    else:
        name_words = [token for token in name_norm.split() if len(token) > 1]
        if name_words:
            exact = [token for token in name_words if len(token) >= 3 and _word_matches(token, user_words)]
            score += 0.5 * len(exact) / len(name_words)
            remaining = [token for token in name_words if token not in exact and len(token) >= 3]
            fuzzy = [
                token
                for token in remaining
                if any(len(word) >= 3 and similarity(token, word) > FUZZY_WORD_THRESHOLD for word in user_words)
            ]
            score += 0.3 * len(fuzzy) / len(name_words)

    score += 0.2 * max((similarity(text, name_norm) for text in processed.expanded_texts), default=0.0)

    matched_synonyms: list[str] = []
    for synonym in menu.synonyms_for(item.id):
        phrase = normalize(synonym.phrase)
        if not phrase:
            continue
        weight = synonym.weight
        if any(phrase in text for text in processed.expanded_texts):
            score += 0.5 * weight
            matched_synonyms.append(synonym.phrase)
            continue
        phrase_words = _significant(phrase.split())
        overlap = [token for token in phrase_words if _word_matches(token, user_words)]
        if phrase_words and overlap:
            score += 0.4 * weight * len(overlap) / len(phrase_words)
            matched_synonyms.append(synonym.phrase)
            continue
        phrase_similarity = max((similarity(text, phrase) for text in processed.expanded_texts), default=0.0)
        if phrase_similarity > FUZZY_PHRASE_THRESHOLD:
            score += phrase_similarity * 0.3 * weight
            matched_synonyms.append(synonym.phrase)

    if item.description:
        description_words = _significant(normalize(item.description).split())[:DESCRIPTION_WORDS]
        if description_words:
            hits = [
                token
                for token in description_words
                if token in user_words
                or any(len(word) >= 3 and similarity(token, word) > FUZZY_WORD_THRESHOLD for word in user_words)
            ]
            score += 0.1 * len(hits) / len(description_words)

    return min(1.0, score), matched_synonyms


def find_candidates(
    menu: PublishedMenu,
    user_text: str,
    *,
    followup_item_ids: Iterable[int] = (),
    embedding_provider: EmbeddingProvider | None = None,
    top_n: int = TOP_N,
    min_score: float = MIN_SCORE,
) -> list[MenuCandidate]:
    processed = process_for_menu_match(user_text)
    category_ids = matched_category_ids(menu, processed)

    scored: dict[int, MenuCandidate] = {}
    for item in menu.items():
        score, synonyms = score_item(item, menu, processed)
        if item.category_id in category_ids:
            score = max(score, CATEGORY_FLOOR)
        scored[item.id] = MenuCandidate.from_item(item, score, synonyms=synonyms)

    if embedding_provider is not None and user_text.strip():
        _blend_vector_scores(menu, user_text, scored, embedding_provider, min_score)

    ranked = sorted(
        (candidate for candidate in scored.values() if candidate.score >= min_score),
        key=lambda candidate: (-candidate.score, candidate.item_id),
    )[:top_n]

    present = {candidate.item_id for candidate in ranked}
    for item_id in followup_item_ids:
        item = menu.get_item(item_id)
        if item is None or item.id in present:
            continue
        ranked.append(MenuCandidate.from_item(item, FOLLOWUP_SCORE, source="followup"))
        present.add(item.id)

    return ranked


def _blend_vector_scores(
    menu: PublishedMenu,
    user_text: str,
    scored: dict[int, MenuCandidate],
    provider: EmbeddingProvider,
    min_score: float,
) -> None:
    try:
        provider.ensure_indexed(menu)
        similar = provider.search_similar(menu.tenant_id, provider.embed(user_text), top_k=TOP_N)
    except Exception as exc:
        logger.warning("Vector search skipped: tenant=%s error=%s", menu.tenant_id, exc)
        return

    for entry in similar:
        candidate = scored.get(entry.item_id)
        if candidate is None:
            continue
        if candidate.score >= min_score:
            if entry.score > VECTOR_BLEND_THRESHOLD:
                candidate.score = round(min(1.0, candidate.score + entry.score * VECTOR_BLEND_WEIGHT), 4)
        elif entry.score > VECTOR_ADMIT_THRESHOLD:
            candidate.score = round(max(candidate.score, entry.score * VECTOR_ADMIT_WEIGHT), 4)
            candidate.source = "vector"


def mentions_menu_item(menu: PublishedMenu, user_text: str, threshold: float = 0.5) -> bool:
    """True when the text plausibly names a catalog item (no category floor, no vector)."""
    processed = process_for_menu_match(user_text)
    for item in menu.items():
        score, _ = score_item(item, menu, processed)
        if score >= threshold:
            return True
    return False
