"""Script-mix analysis (Latin vs Khmer) for OCR routing.

Character ratios and banking vocabulary in either language are scored; the
side with the higher score above 30 points is the primary script. Khmer
dominance is what sends an image to the hosted vision engine.
"""

import re
from enum import Enum

from pydantic import BaseModel, Field

KHMER_CHAR = re.compile(r"[\u1780-\u17FF]")
LATIN_CHAR = re.compile(r"[A-Za-z]")
DIGIT_CHAR = re.compile(r"[0-9]")
_WHITESPACE = re.compile(r"\s+")

ENGLISH_BANKING_TERMS = (
    "transfer",
    "payment",
    "account",
    "balance",
    "transaction",
    "recipient",
    "amount",
    "success",
    "completed",
    "failed",
)
KHMER_BANKING_TERMS = ("ប្រាក់", "គណនី", "ផ្ទេរ", "ជោគជ័យ", "រួចរាល់", "បានបញ្ចប់", "ទទួល", "ចេញ")

# (ratio, points), highest first
KHMER_RATIO_POINTS = ((0.3, 40), (0.15, 25), (0.05, 10))
LATIN_RATIO_POINTS = ((0.7, 40), (0.5, 25), (0.3, 10))


class Script(str, Enum):
    KHMER = "khmer"
    ENGLISH = "english"
    MIXED = "mixed"
    UNKNOWN = "unknown"


class ScriptAnalysis(BaseModel):
    """Result of script-mix analysis.

    Attributes:
        primary: Dominant script
        confidence: Confidence in ``primary`` (0-1)
        khmer_ratio: Share of non-space characters in the Khmer block
        latin_ratio: Share of ASCII letters
        digit_ratio: Share of ASCII digits
        khmer_terms: Khmer banking terms found
        english_terms: English banking terms found
    """

    primary: Script = Script.UNKNOWN
    confidence: float = 0.0
    khmer_ratio: float = 0.0
    latin_ratio: float = 0.0
    digit_ratio: float = 0.0
    khmer_terms: list[str] = Field(default_factory=list)
    english_terms: list[str] = Field(default_factory=list)

    @property
    def has_khmer(self) -> bool:
        return self.khmer_ratio > 0

    @property
    def khmer_dominant(self) -> bool:
        return self.primary == Script.KHMER


def _ratio_points(ratio: float, table: tuple[tuple[float, int], ...]) -> int:
    for threshold, points in table:
        if ratio >= threshold:
            return points
    return 0


def analyze_script(text: str | None) -> ScriptAnalysis:
    """Classify the dominant script of OCR text.

    Args:
        text: Text extracted by one or more engines

    Returns:
        ScriptAnalysis (UNKNOWN for empty input)
    """
    if not text:
        return ScriptAnalysis()
    compact = _WHITESPACE.sub("", text)
    if not compact:
        return ScriptAnalysis()

    total = len(compact)
    khmer_ratio = len(KHMER_CHAR.findall(compact)) / total
    latin_ratio = len(LATIN_CHAR.findall(compact)) / total
    digit_ratio = len(DIGIT_CHAR.findall(compact)) / total

    lowered = text.lower()
    english_terms = [t for t in ENGLISH_BANKING_TERMS if re.search(rf"\b{t}\b", lowered)]
    khmer_terms = [t for t in KHMER_BANKING_TERMS if t in text]

    khmer_score = _ratio_points(khmer_ratio, KHMER_RATIO_POINTS)
    english_score = _ratio_points(latin_ratio, LATIN_RATIO_POINTS)
    if digit_ratio > 0.1:
        english_score += 10
    if english_terms:
        english_score += 15
    if khmer_terms:
        khmer_score += 15

    if khmer_score > english_score and khmer_score > 30:
        primary, confidence = Script.KHMER, min(khmer_score / 50, 1.0)
    elif english_score > khmer_score and english_score > 30:
        primary, confidence = Script.ENGLISH, min(english_score / 50, 1.0)
    elif khmer_score > 15 or english_score > 15:
        primary, confidence = Script.MIXED, min((khmer_score + english_score) / 80, 0.8)
    else:
        primary, confidence = Script.UNKNOWN, 0.1

    return ScriptAnalysis(
        primary=primary,
        confidence=round(confidence, 2),
        khmer_ratio=khmer_ratio,
        latin_ratio=latin_ratio,
        digit_ratio=digit_ratio,
        khmer_terms=khmer_terms,
        english_terms=english_terms,
    )


def khmer_fragments(text: str | None) -> list[str]:
    """Lines of ``text`` that contain Khmer script."""
    if not text:
        return []
    return [line.strip() for line in text.splitlines() if KHMER_CHAR.search(line)]
