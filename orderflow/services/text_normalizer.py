"""Turkish text normalization used by menu matching and keyword detection.

Everything here is pure: no I/O, no catalog access. ``normalize`` is
idempotent and its output only contains ``[a-z0-9]`` and single spaces.
"""

from __future__ import annotations

import itertools
import re
import unicodedata
from dataclasses import dataclass, field

# Letters that do not decompose under NFKD (or decompose to the wrong base).
_TURKISH_MAP = str.maketrans(
    {
        "ı": "i",
        "İ": "i",
        "ğ": "g",
        "Ğ": "g",
        "ü": "u",
        "Ü": "u",
        "ş": "s",
        "Ş": "s",
        "ö": "o",
        "Ö": "o",
        "ç": "c",
        "Ç": "c",
        "â": "a",
        "î": "i",
        "û": "u",
    }
)

SLANG_MAP: dict[str, tuple[str, ...]] = {
    "lmc": ("lahmacun",),
    "lahmcun": ("lahmacun",),
    "lhmcn": ("lahmacun",),
    "lahmajun": ("lahmacun",),
    "donr": ("doner",),
    "dnr": ("doner",),
    "kebap": ("kebab", "kebap"),
    "kebab": ("kebab", "kebap"),
    "kebp": ("kebab", "kebap"),
    "pid": ("pide",),
    "ayrn": ("ayran",),
    "hmbrg": ("hamburger",),
    "hmbrgr": ("hamburger",),
    "brgr": ("burger",),
    "pzza": ("pizza",),
    "pizz": ("pizza",),
    "cola": ("kola",),
    "coke": ("kola",),
    "icck": ("icecek",),
    "ptt": ("patates",),
    "ptts": ("patates",),
    "tvk": ("tavuk",),
    "adn": ("adana",),
    "iskdr": ("iskender",),
    "mrcmk": ("mercimek",),
    "plv": ("pilav",),
    "crb": ("corba",),
    "crba": ("corba",),
    "slt": ("salata",),
    "slata": ("salata",),
    "bi": ("bir",),
    "ii": ("iki",),
    "byk": ("buyuk",),
    "kck": ("kucuk",),
}

_SUFFIXES = (
    "lardan", "lerden", "larina", "lerine",
    "larim", "lerim", "larin", "lerin",
    "lari", "leri", "imiz", "iniz", "umuz", "unuz",
    "lar", "ler", "dan", "den", "tan", "ten",
    "nin", "nun", "ina", "ine", "una", "une",
    "siz", "suz",
    "da", "de", "ta", "te", "yi", "yu", "ya", "ye",
    "ni", "nu", "na", "ne", "in", "un", "im", "um",
    "li", "lu", "si", "su",
)
# Longest first so the longest matching suffix wins.
TURKISH_SUFFIXES = tuple(sorted(set(_SUFFIXES), key=lambda suffix: (-len(suffix), suffix)))

MIN_STEM_LENGTH = 2
MAX_EXPANSIONS = 8

_NON_ALNUM_RE = re.compile(r"[^a-z0-9]+")


@dataclass
class MenuMatchText:
    expanded_texts: list[str] = field(default_factory=list)
    stemmed_words: set[str] = field(default_factory=set)
    original_words: list[str] = field(default_factory=list)

    @property
    def all_words(self) -> set[str]:
        return set(self.original_words) | self.stemmed_words


def normalize(text: str | None) -> str:
    if not text:
        return ""
    value = text.translate(_TURKISH_MAP).lower()
    value = unicodedata.normalize("NFKD", value)
    value = "".join(ch for ch in value if not unicodedata.combining(ch))
    value = value.translate(_TURKISH_MAP)
    value = _NON_ALNUM_RE.sub(" ", value)
    return value.strip()


def words(text: str | None) -> list[str]:
    normalized = normalize(text)
    return normalized.split() if normalized else []


def stem(word: str) -> str:
    """Strips the longest known suffix once; stems never drop below three letters."""
    normalized = normalize(word)
    if len(normalized) <= MIN_STEM_LENGTH:
        return normalized
    for suffix in TURKISH_SUFFIXES:
        if len(normalized) > len(suffix) + MIN_STEM_LENGTH and normalized.endswith(suffix):
            return normalized[: -len(suffix)]
    return normalized


def stem_variants(word: str) -> set[str]:
    normalized = normalize(word)
    return {normalized, stem(normalized)}


def expand_slang(text: str) -> list[str]:
    """Normalized text first, then every slang expansion combination (capped)."""
    normalized = normalize(text)
    tokens = normalized.split()
    expanded = [SLANG_MAP.get(token, (token,)) for token in tokens]
    results = [normalized]
    if not any(token in SLANG_MAP for token in tokens):
        return results
    for combo in itertools.product(*expanded):
        if len(results) >= MAX_EXPANSIONS:
            break
        candidate = " ".join(combo)
        if candidate not in results:
            results.append(candidate)
    return results


def process_for_menu_match(text: str) -> MenuMatchText:
    expanded_texts = expand_slang(text)
    original_words: list[str] = []
    stemmed: set[str] = set()
    for variant in expanded_texts:
        for token in variant.split():
            if len(token) <= 1:
                continue
            if token not in original_words:
                original_words.append(token)
            stemmed.update(stem_variants(token))
    return MenuMatchText(
        expanded_texts=expanded_texts,
        stemmed_words=stemmed,
        original_words=original_words,
    )


def contains_keyword(text: str, keywords) -> bool:
    """Word-prefix keyword match on normalized text.

    Keywords of two letters or fewer must match a whole word ("sa" never
    matches "saat"); longer ones may carry Turkish suffixes ("iptali").
    """
    normalized = normalize(text)
    if not normalized:
        return False
    padded = f" {normalized} "
    for keyword in keywords:
        key = normalize(keyword)
        if not key:
            continue
        if len(key) <= 2:
            if f" {key} " in padded:
                return True
        elif f" {key}" in padded:
            return True
    return False
