"""Cheap bank detection pass used to pick an extraction strategy.

Pixel-level logo and color matching lives upstream; this pass only trusts a
bank hint supplied by the caller. A hint naming a bank with a known screenshot
layout yields a template match; any other hint is a moderate signal.
"""

import logging
from enum import Enum

from pydantic import BaseModel, Field

from payverify.ocr.parser import normalize_bank_name

logger = logging.getLogger(__name__)

TEMPLATE_BANKS = frozenset({"ABA Bank", "ACLEDA", "Wing"})

TEMPLATE_MATCH_CONFIDENCE = 0.8
UNKNOWN_BANK_CONFIDENCE = 0.4
MODERATE_CONFIDENCE_FLOOR = 0.3


class Strategy(str, Enum):
    """Engine selection strategy, cheapest first."""

    TEMPLATE = "template"
    MODERATE = "moderate"
    GENERAL = "general"


class BankDetection(BaseModel):
    """Outcome of bank detection.

    Attributes:
        bank: Canonical bank name, if any
        confidence: Detection confidence (0-1)
        template_match: Whether a layout template exists for the bank
    """

    bank: str | None = None
    confidence: float = Field(default=0.0, ge=0, le=1)
    template_match: bool = False


def detect_bank(bank_hint: str | None) -> BankDetection:
    """Detect the issuing bank from the caller's hint.

    Args:
        bank_hint: Free-text bank name ("aba", "ACLEDA Bank", ...)

    Returns:
        BankDetection
    """
    bank = normalize_bank_name(bank_hint)
    if bank is None:
        return BankDetection()
    if bank in TEMPLATE_BANKS:
        return BankDetection(bank=bank, confidence=TEMPLATE_MATCH_CONFIDENCE, template_match=True)
    return BankDetection(bank=bank, confidence=UNKNOWN_BANK_CONFIDENCE)


def select_strategy(detection: BankDetection, template_threshold: float = 0.6) -> Strategy:
    """Map a detection to a strategy tier.

    Args:
        detection: Bank detection result
        template_threshold: Confidence above which the template tier is used

    Returns:
        TEMPLATE above the threshold with a template match, MODERATE from
        0.3 up to the threshold, GENERAL otherwise
    """
    if detection.template_match and detection.confidence > template_threshold:
        strategy = Strategy.TEMPLATE
    elif detection.confidence >= MODERATE_CONFIDENCE_FLOOR:
        strategy = Strategy.MODERATE
    else:
        strategy = Strategy.GENERAL
    logger.debug(
        f"Bank detection: {detection.bank or 'none'} ({detection.confidence:.2f}) "
        f"-> {strategy.value} strategy"
    )
    return strategy
