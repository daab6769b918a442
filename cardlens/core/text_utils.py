import re
from typing import Optional

from rapidfuzz.distance import Levenshtein

# OCR frequently reads the vertical strokes of a title font as pipes or slashes
OCR_MIXUPS = {
    '|': 'I',
    '\\': 'I',
    '¦': 'I',
}

_BRACKET_NOISE = re.compile(r"[\[\]{}()<>]")
_NOISE = re.compile(r"[^\w\s',.\-]")
_WHITESPACE = re.compile(r"\s+")


def levenshtein_distance(a: str, b: str, max_distance: Optional[int] = None) -> int:
    """
    Edit distance between two strings.
    With max_distance set, any distance above it comes back as max_distance + 1.
    """
    return Levenshtein.distance(a, b, score_cutoff=max_distance)


def similarity(query: str, candidate: str) -> float:
    """Returns a case-insensitive similarity in [0, 1]."""
    q = query.lower()
    c = candidate.lower()
    if q == c:
        return 1.0
    if not q or not c:
        return 0.0
    return 1.0 - levenshtein_distance(q, c) / max(len(q), len(c))


def normalize_key(text: str) -> str:
    return text.strip().lower()


def clean_ocr_text(text: str) -> str:
    """
    Normalizes raw OCR output for catalog lookup.
    Maps pipe-like glyphs to 'I', drops bracket and symbol noise,
    collapses whitespace and lower-cases.
    """
    if not text:
        return ""
    for wrong, right in OCR_MIXUPS.items():
        text = text.replace(wrong, right)
    text = _BRACKET_NOISE.sub("", text)
    text = _NOISE.sub("", text)
    text = _WHITESPACE.sub(" ", text)
    return text.strip().lower()
