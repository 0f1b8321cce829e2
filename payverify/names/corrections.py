"""OCR character-confusion table for recipient names.

Each entry maps a glyph (or glyph pair) to the canonical member of its
confusion class. Both sides of a comparison are canonicalized in one
left-to-right pass, so the outcome does not depend on table order and a
confusion in either direction ("SM1TH" vs "SMITH", "SMITH" vs "SM1TH")
collapses to the same string.
"""

import re

OCR_CONFUSIONS: dict[str, str] = {
    "0": "O",
    "1": "I",
    "L": "I",
    "|": "I",
    "5": "S",
    "8": "B",
    "6": "G",
    "2": "Z",
    "RN": "M",
    "CL": "D",
}

_PUNCTUATION = re.compile(r"[^\w\s|\u1780-\u17FF]")
_WHITESPACE = re.compile(r"\s+")


def _build_pattern(table: dict[str, str]) -> re.Pattern[str]:
    # Longest keys first so "RN" wins over any single-glyph entry
    keys = sorted(table, key=len, reverse=True)
    return re.compile("|".join(re.escape(key) for key in keys))


_CONFUSION_PATTERN = _build_pattern(OCR_CONFUSIONS)


def normalize_name(text: str | None) -> str:
    """Uppercase, strip punctuation and collapse whitespace."""
    if not text:
        return ""
    upper = _PUNCTUATION.sub("", text.upper()).replace("_", "")
    return _WHITESPACE.sub(" ", upper).strip()


def canonicalize(text: str, table: dict[str, str] | None = None) -> str:
    """Replace every confusable glyph with its canonical form.

    Args:
        text: Normalized (uppercase) name
        table: Confusion table, defaults to OCR_CONFUSIONS

    Returns:
        Canonical string
    """
    if not text:
        return ""
    if table is None:
        pattern, mapping = _CONFUSION_PATTERN, OCR_CONFUSIONS
    else:
        pattern, mapping = _build_pattern(table), table
    return pattern.sub(lambda match: mapping[match.group(0)], text)
