"""Confidence-weighted fusion of adapter results.

Fusion is a pure fold over the completed results: each engine whose own
confidence reaches its threshold adds ``confidence * weight`` to the numerator
and ``weight`` to the denominator. Results are ordered by engine name before
folding, so arrival order never changes the output.
"""

import logging
from collections.abc import Iterable
from functools import reduce

from pydantic import BaseModel, Field

from payverify.ocr.base import AdapterResult
from payverify.ocr.language import Script, khmer_fragments
from payverify.ocr.schema import Confidence, OcrRecord

logger = logging.getLogger(__name__)

KHMER_MARKER = "[Khmer]"


class FusedOcrResult(BaseModel):
    """Single best-effort extraction combined from several engines.

    Attributes:
        record: Primary engine's record, with supplementary Khmer text merged
        confidence: Fused confidence (0-1)
        success: Whether fused confidence reached the combined threshold
        primary_engine: Engine that supplied the structured fields
        contributing_engines: Engines that cleared their own threshold
        engine_results: Every adapter result, ordered by engine name
        strategy: Strategy tier used to pick engines
        script: Dominant script of the extracted text
        fallback_reasons: Why each escalation step was taken
    """

    record: OcrRecord
    confidence: float = Field(default=0.0, ge=0, le=1)
    success: bool = False
    primary_engine: str | None = None
    contributing_engines: list[str] = Field(default_factory=list)
    engine_results: list[AdapterResult] = Field(default_factory=list)
    strategy: str | None = None
    script: Script | None = None
    fallback_reasons: list[str] = Field(default_factory=list)


def _contributes(
    result: AdapterResult, weights: dict[str, float], thresholds: dict[str, float]
) -> bool:
    return (
        result.success
        and weights.get(result.engine, 0.0) > 0
        and result.confidence >= thresholds.get(result.engine, 0.0)
    )


def weighted_confidence(
    results: Iterable[AdapterResult], weights: dict[str, float], thresholds: dict[str, float]
) -> tuple[float, list[str]]:
    """Fold results into a weighted mean confidence.

    Args:
        results: Adapter results in any order
        weights: Fusion weight per engine
        thresholds: Minimum confidence per engine

    Returns:
        (fused confidence, contributing engine names)
    """
    contributors = sorted(
        (r for r in results if _contributes(r, weights, thresholds)), key=lambda r: r.engine
    )
    numerator, denominator = reduce(
        lambda acc, r: (acc[0] + r.confidence * weights[r.engine], acc[1] + weights[r.engine]),
        contributors,
        (0.0, 0.0),
    )
    fused = numerator / denominator if denominator else 0.0
    return min(fused, 1.0), [r.engine for r in contributors]


def select_primary(results: Iterable[AdapterResult]) -> AdapterResult | None:
    """Highest-confidence result carrying a record; ties go to the lower engine name."""
    candidates = [r for r in results if r.success and r.record is not None]
    if not candidates:
        return None
    return min(candidates, key=lambda r: (-r.confidence, r.engine))


def merge_khmer_text(primary: OcrRecord, supplements: Iterable[AdapterResult]) -> OcrRecord:
    """Append Khmer fragments other engines read to the primary's raw text.

    Structured fields are never touched.
    """
    existing = set(khmer_fragments(primary.raw_text))
    additions: list[str] = []
    for result in sorted(supplements, key=lambda r: r.engine):
        for fragment in khmer_fragments(result.text):
            if fragment not in existing:
                existing.add(fragment)
                additions.append(fragment)
    if not additions:
        return primary
    merged = primary.raw_text + f"\n{KHMER_MARKER} " + "\n".join(additions)
    return primary.model_copy(update={"raw_text": merged})


def fuse_results(
    results: Iterable[AdapterResult],
    weights: dict[str, float],
    thresholds: dict[str, float],
    combined_threshold: float = 0.6,
) -> FusedOcrResult:
    """Fuse adapter results into one record.

    The primary engine supplies every structured field. When the fused
    confidence misses ``combined_threshold`` the best candidate is still
    returned, tagged LOW. If no engine produced a record the result carries a
    FAILED record.

    Args:
        results: Completed adapter results
        weights: Fusion weight per engine
        thresholds: Minimum confidence per engine
        combined_threshold: Fused confidence required for success

    Returns:
        FusedOcrResult
    """
    ordered = sorted(results, key=lambda r: r.engine)
    fused, contributors = weighted_confidence(ordered, weights, thresholds)
    primary = select_primary(ordered)

    if primary is None or primary.record is None:
        logger.warning("All OCR engines failed; returning terminal failed record")
        return FusedOcrResult(
            record=OcrRecord.failed(),
            confidence=0.0,
            success=False,
            engine_results=ordered,
        )

    success = bool(contributors) and fused >= combined_threshold
    supplements = [r for r in ordered if r.engine != primary.engine and r.engine in contributors]
    record = merge_khmer_text(primary.record, supplements)
    if not success:
        record = record.model_copy(update={"confidence": Confidence.LOW})

    logger.info(
        f"Fused {len(ordered)} engine results: primary={primary.engine}, "
        f"confidence={fused:.2f}, success={success}"
    )
    return FusedOcrResult(
        record=record,
        confidence=fused,
        success=success,
        primary_engine=primary.engine,
        contributing_engines=contributors,
        engine_results=ordered,
    )
