"""Rule-based recipient name matching (Name Intelligence).

Deterministic cascade, no statistical guessing:

1. exact (case-insensitive)          -> 100
2. normalized                        -> 98
3. OCR confusion correction          -> 95
4. token similarity                  -> accept >= 85
5. initials / prefixes               -> accept >= 80
6. Levenshtein distance <= max       -> max(70, 90 - 10 * distance)
7. tenant aliases                    -> accept >= 80

Every failed rule is appended to ``details["steps"]`` for auditing.
"""

import logging
import math
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from rapidfuzz import fuzz
from rapidfuzz.distance import Levenshtein

from payverify.names.corrections import canonicalize, normalize_name
from payverify.shared import metrics
from payverify.shared.config import Settings

logger = logging.getLogger(__name__)

TOKEN_SIMILARITY_THRESHOLD = 0.8
TOKEN_ACCEPT_SCORE = 85
INITIAL_ACCEPT_SCORE = 80
ALIAS_ACCEPT_SCORE = 80


class MatchType(str, Enum):
    EXACT = "exact"
    NORMALIZED = "normalized"
    OCR_CORRECTED = "ocr_corrected"
    TOKEN_MATCH = "token_match"
    INITIAL_MATCH = "initial_match"
    FUZZY = "fuzzy"
    ALIAS_MATCH = "alias_match"
    NO_MATCH = "no_match"


class AliasGroup(BaseModel):
    """Tenant-approved alternative spellings for one recipient."""

    primary: str
    aliases: list[str] = Field(default_factory=list)


class NameMatchResult(BaseModel):
    """Outcome of a name comparison.

    Attributes:
        confidence: Score 0-100
        match_type: Rule that produced the score
        reason: Human-readable explanation
        is_match: confidence >= gpt threshold
        requires_gpt_judgment: gpt threshold <= confidence < strict threshold
        details: Audit trail; always carries ``steps``
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    confidence: int = Field(ge=0, le=100)
    match_type: MatchType
    reason: str
    is_match: bool
    requires_gpt_judgment: bool = Field(alias="requiresGPTJudgment")
    details: dict[str, Any] = Field(default_factory=dict)


def _round_percent(value: float) -> int:
    return int(math.floor(value + 0.5))


def _tokens(text: str) -> list[str]:
    return [token for token in text.split(" ") if token]


def token_similarity(first: str, second: str) -> float:
    """String similarity of two tokens on a 0-1 scale."""
    return fuzz.ratio(first, second) / 100.0


def token_match_score(extracted: str, expected: str) -> int:
    """Share of extracted tokens with a close counterpart in the expected name.

    Args:
        extracted: Normalized extracted name
        expected: Normalized expected name

    Returns:
        Score 0-100, matched tokens over the larger token count
    """
    extracted_tokens = _tokens(extracted)
    expected_tokens = _tokens(expected)
    if not extracted_tokens or not expected_tokens:
        return 0

    matched = sum(
        1
        for token in extracted_tokens
        if max(token_similarity(token, other) for other in expected_tokens)
        >= TOKEN_SIMILARITY_THRESHOLD
    )
    total = max(len(extracted_tokens), len(expected_tokens))
    return _round_percent(matched / total * 100)


def is_initial_of(short: str, full: str) -> bool:
    """Check if a 1-2 character token abbreviates ``full``."""
    clean = short.replace(".", "")
    if not clean or not full or len(clean) > 2:
        return False
    return full.upper().startswith(clean.upper())


def initial_match_score(extracted: str, expected: str) -> int:
    """Positional initial/prefix score ("K SOKHA" vs "KIM SOKHA").

    Identical tokens score 100, an initial 90 and a longer prefix 70; the
    total is averaged over the larger token count.
    """
    extracted_tokens = _tokens(extracted)
    expected_tokens = _tokens(expected)
    total = max(len(extracted_tokens), len(expected_tokens))
    if total == 0:
        return 0

    score = 0
    for first, second in zip(extracted_tokens, expected_tokens):
        if first == second:
            score += 100
        elif is_initial_of(first, second) or is_initial_of(second, first):
            score += 90
        elif first.startswith(second) or second.startswith(first):
            score += 70
    return min(100, _round_percent(score / total))


class NameMatcher:
    """Deterministic recipient-name matcher.

    Raises:
        ValueError: If thresholds are outside 0-100, the GPT threshold exceeds
            the strict threshold, or the edit distance is negative
    """

    def __init__(
        self,
        strict_threshold: int = 85,
        gpt_threshold: int = 70,
        max_levenshtein_distance: int = 2,
        enable_ocr_correction: bool = True,
        enable_initial_matching: bool = True,
    ) -> None:
        if not 0 <= gpt_threshold <= 100 or not 0 <= strict_threshold <= 100:
            raise ValueError("Name match thresholds must be between 0 and 100")
        if gpt_threshold > strict_threshold:
            raise ValueError("gpt_threshold must not exceed strict_threshold")
        if max_levenshtein_distance < 0:
            raise ValueError("max_levenshtein_distance must be non-negative")

        self.strict_threshold = strict_threshold
        self.gpt_threshold = gpt_threshold
        self.max_levenshtein_distance = max_levenshtein_distance
        self.enable_ocr_correction = enable_ocr_correction
        self.enable_initial_matching = enable_initial_matching

    @classmethod
    def from_settings(cls, settings: Settings) -> "NameMatcher":
        return cls(
            strict_threshold=settings.name_match_strict_threshold,
            gpt_threshold=settings.name_match_gpt_threshold,
            max_levenshtein_distance=settings.max_levenshtein_distance,
            enable_ocr_correction=settings.enable_ocr_correction,
            enable_initial_matching=settings.enable_initial_matching,
        )

    def _result(
        self, confidence: int, match_type: MatchType, reason: str, **details: Any
    ) -> NameMatchResult:
        details.setdefault("steps", [])
        return NameMatchResult(
            confidence=confidence,
            match_type=match_type,
            reason=reason,
            is_match=confidence >= self.gpt_threshold,
            requires_gpt_judgment=self.gpt_threshold <= confidence < self.strict_threshold,
            details=details,
        )

    def match(
        self,
        extracted: str | None,
        expected_names: list[str] | str | None,
        aliases: list[AliasGroup] | None = None,
    ) -> NameMatchResult:
        """Match an OCR-extracted name against one or more expected names.

        A strict match on any expected name returns immediately; otherwise the
        best result at or above the GPT threshold wins.

        Args:
            extracted: Recipient name read from the screenshot
            expected_names: Acceptable recipient names
            aliases: Tenant alias groups

        Returns:
            NameMatchResult
        """
        if isinstance(expected_names, str):
            expected_names = [expected_names]
        candidates = [name for name in expected_names or [] if name]
        if not extracted or not candidates:
            result = self._result(
                0, MatchType.NO_MATCH, "Missing extracted or expected name", steps=["missing_input"]
            )
            metrics.name_match_results_total.labels(match_type=result.match_type.value).inc()
            return result

        best: NameMatchResult | None = None
        attempted: list[str] = []
        for expected in candidates:
            result = self.match_pair(extracted, expected, aliases or [])
            if result.confidence >= self.strict_threshold:
                best = result
                break
            if result.confidence >= self.gpt_threshold and (
                best is None or result.confidence > best.confidence
            ):
                best = result
            attempted.extend(f"{expected}: {step}" for step in result.details["steps"])

        if best is None:
            best = self._result(
                0, MatchType.NO_MATCH, f"No match found for: {extracted}", steps=attempted
            )

        logger.debug(
            f"Name match '{extracted}' -> {best.match_type.value} ({best.confidence})"
        )
        metrics.name_match_results_total.labels(match_type=best.match_type.value).inc()
        return best

    def match_pair(
        self, extracted: str, expected: str, aliases: list[AliasGroup] | None = None
    ) -> NameMatchResult:
        """Run the cascade for a single expected name."""
        steps: list[str] = []

        if extracted.strip().lower() == expected.strip().lower():
            return self._result(100, MatchType.EXACT, "Exact match", steps=["exact_match"])
        steps.append("exact_match_failed")

        norm_extracted = normalize_name(extracted)
        norm_expected = normalize_name(expected)
        if norm_extracted and norm_extracted == norm_expected:
            return self._result(
                98,
                MatchType.NORMALIZED,
                "Match after normalization",
                steps=[*steps, "normalized_match"],
                normalization=f'"{extracted}" -> "{norm_extracted}"',
            )
        steps.append("normalized_match_failed")

        if self.enable_ocr_correction:
            corrected = canonicalize(norm_extracted)
            if corrected and corrected == canonicalize(norm_expected):
                return self._result(
                    95,
                    MatchType.OCR_CORRECTED,
                    "Match after OCR correction",
                    steps=[*steps, "ocr_corrected"],
                    correction=f'"{norm_extracted}" ~ "{norm_expected}"',
                )
            steps.append("ocr_correction_failed")

        token_score = token_match_score(norm_extracted, norm_expected)
        if token_score >= TOKEN_ACCEPT_SCORE:
            return self._result(
                token_score,
                MatchType.TOKEN_MATCH,
                "High token similarity",
                steps=[*steps, "token_match"],
                token_score=token_score,
            )
        steps.append(f"token_match_failed_{token_score}")

        if self.enable_initial_matching:
            initial_score = initial_match_score(norm_extracted, norm_expected)
            if initial_score >= INITIAL_ACCEPT_SCORE:
                return self._result(
                    initial_score,
                    MatchType.INITIAL_MATCH,
                    "Initial/prefix match",
                    steps=[*steps, "initial_match"],
                    initial_score=initial_score,
                )
            steps.append(f"initial_match_failed_{initial_score}")

        distance = Levenshtein.distance(norm_extracted, norm_expected)
        if distance <= self.max_levenshtein_distance:
            return self._result(
                max(70, 90 - 10 * distance),
                MatchType.FUZZY,
                f"Levenshtein distance: {distance}",
                steps=[*steps, "levenshtein_match"],
                distance=distance,
            )
        steps.append(f"levenshtein_failed_{distance}")

        alias, alias_score = self._check_aliases(norm_extracted, norm_expected, aliases or [])
        if alias is not None:
            return self._result(
                alias_score,
                MatchType.ALIAS_MATCH,
                f"Matched alias: {alias}",
                steps=[*steps, "alias_match"],
                alias=alias,
            )
        steps.append("alias_match_failed")

        return self._result(0, MatchType.NO_MATCH, "All matching strategies failed", steps=steps)

    def _check_aliases(
        self, extracted: str, expected: str, aliases: list[AliasGroup]
    ) -> tuple[str | None, int]:
        for group in aliases:
            if normalize_name(group.primary) != expected:
                continue
            for alias in group.aliases:
                score = self._alias_score(extracted, alias)
                if score >= ALIAS_ACCEPT_SCORE:
                    return alias, score
        return None, 0

    @staticmethod
    def _alias_score(extracted: str, alias: str) -> int:
        norm_alias = normalize_name(alias)
        if not norm_alias:
            return 0
        if extracted == norm_alias:
            return 95
        token_score = token_match_score(extracted, norm_alias)
        if token_score >= TOKEN_ACCEPT_SCORE:
            return token_score
        return _round_percent(fuzz.ratio(extracted, norm_alias))

    def is_character_level_error(self, ocr_read: str, actual: str) -> bool:
        """Check whether a correction looks like an OCR glyph error.

        Name variations (different words) are excluded: at most two edits and
        at most two characters of length difference.
        """
        if not ocr_read or not actual or ocr_read == actual:
            return False
        if Levenshtein.distance(ocr_read, actual) > 2:
            return False
        return abs(len(ocr_read) - len(actual)) <= 2
