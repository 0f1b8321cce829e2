"""Screenshot date fraud detection and fraud alert records.

``validate_transaction_date`` is a pure function of its three inputs: it never
reads the wall clock, so the same screenshot text and upload time always give
the same verdict.
"""

import itertools
import logging
import math
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from payverify.fraud.khmer_date import parse_khmer_date

logger = logging.getLogger(__name__)

MISSING_SENTINELS = frozenset({"", "null", "undefined", "none"})

ONE_DAY = timedelta(days=1)


class FraudType(str, Enum):
    MISSING_DATE = "MISSING_DATE"
    INVALID_DATE = "INVALID_DATE"
    FUTURE_DATE = "FUTURE_DATE"
    OLD_SCREENSHOT = "OLD_SCREENSHOT"
    DUPLICATE_TRANSACTION = "DUPLICATE_TRANSACTION"
    WRONG_RECIPIENT = "WRONG_RECIPIENT"


class Severity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class ReviewStatus(str, Enum):
    """Review lifecycle; transitions after PENDING belong to the audit service."""

    PENDING = "PENDING"
    CONFIRMED_FRAUD = "CONFIRMED_FRAUD"
    FALSE_POSITIVE = "FALSE_POSITIVE"
    DISMISSED = "DISMISSED"


class DateValidation(BaseModel):
    """Outcome of transaction date validation.

    Attributes:
        is_valid: Whether the screenshot date passed every check
        fraud_type: First failed check, None when valid
        age_days: Whole days between transaction and upload (negative if future)
        parsed_date: Parsed transaction timestamp, if any
        reason: Human-readable explanation of the failure
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    is_valid: bool
    fraud_type: FraudType | None = None
    age_days: int | None = None
    parsed_date: datetime | None = None
    reason: str | None = None


class FraudAlert(BaseModel):
    """Durable evidence record for a fraud-relevant rejection.

    Never mutated by the verification core; review fields are owned by the
    audit service.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    alert_id: str
    fraud_type: FraudType
    severity: Severity
    detected_at: datetime

    payment_id: str | None = None
    invoice_id: str | None = None
    customer_id: str | None = None
    tenant_id: str | None = None

    transaction_date: datetime | None = None
    uploaded_at: datetime | None = None
    screenshot_age_days: int | None = None
    max_allowed_age_days: int = 7

    transaction_id: str | None = None
    reference_number: str | None = None
    amount: Decimal | None = None
    currency: str | None = None
    bank_name: str | None = None
    screenshot_path: str | None = None

    review_status: ReviewStatus = ReviewStatus.PENDING
    reviewed_by: str | None = None
    reviewed_at: datetime | None = None
    review_notes: str | None = None

    verification_notes: str | None = None
    confidence: str | None = None
    action_taken: str = "HELD_FOR_REVIEW"
    resolution_date: datetime | None = None


def _align_timezones(parsed: datetime, uploaded_at: datetime) -> datetime:
    # Naive screenshot times are read in the upload's timezone
    if parsed.tzinfo is None and uploaded_at.tzinfo is not None:
        return parsed.replace(tzinfo=uploaded_at.tzinfo)
    # Naive upload times are UTC; offset screenshot times are converted before comparing
    if parsed.tzinfo is not None and uploaded_at.tzinfo is None:
        return parsed.astimezone(UTC).replace(tzinfo=None)
    return parsed


def validate_transaction_date(
    transaction_date: str | None, uploaded_at: datetime, max_age_days: int = 7
) -> DateValidation:
    """Validate a screenshot's transaction date against its upload time.

    Checks in order, first failure wins: missing, unparseable, future,
    older than ``max_age_days``.

    Args:
        transaction_date: Raw date text extracted from the screenshot
        uploaded_at: When the screenshot was uploaded
        max_age_days: Maximum allowed age in days

    Returns:
        DateValidation describing the verdict
    """
    if transaction_date is None or transaction_date.strip().lower() in MISSING_SENTINELS:
        return DateValidation(
            is_valid=False,
            fraud_type=FraudType.MISSING_DATE,
            reason="Transaction date not found in screenshot",
        )

    parsed = parse_khmer_date(transaction_date)
    if parsed is None:
        return DateValidation(
            is_valid=False,
            fraud_type=FraudType.INVALID_DATE,
            reason=f"Invalid date format: {transaction_date}",
        )

    parsed = _align_timezones(parsed, uploaded_at)
    logger.debug(f"Parsed date: {transaction_date!r} -> {parsed.isoformat()}")

    if parsed > uploaded_at:
        future_days = math.ceil((parsed - uploaded_at) / ONE_DAY)
        return DateValidation(
            is_valid=False,
            fraud_type=FraudType.FUTURE_DATE,
            age_days=-future_days,
            parsed_date=parsed,
            reason=f"Transaction date is {future_days} days in the future",
        )

    age = (uploaded_at - parsed) / ONE_DAY
    age_days = math.floor(age)
    if age > max_age_days:
        return DateValidation(
            is_valid=False,
            fraud_type=FraudType.OLD_SCREENSHOT,
            age_days=age_days,
            parsed_date=parsed,
            reason=f"Screenshot is {age_days} days old (max allowed: {max_age_days} days)",
        )

    return DateValidation(is_valid=True, age_days=age_days, parsed_date=parsed)


def determine_severity(fraud_type: FraudType, age_days: int | None = None) -> Severity:
    """Map a fraud type (and screenshot age) to alert severity."""
    if fraud_type == FraudType.DUPLICATE_TRANSACTION:
        return Severity.CRITICAL
    if fraud_type == FraudType.OLD_SCREENSHOT:
        return Severity.HIGH if (age_days or 0) > 30 else Severity.MEDIUM
    if fraud_type in (FraudType.FUTURE_DATE, FraudType.WRONG_RECIPIENT):
        return Severity.HIGH
    if fraud_type == FraudType.MISSING_DATE:
        return Severity.LOW
    return Severity.MEDIUM


class AlertIdGenerator:
    """Issues human-readable alert ids: FA-<YYYYMMDD>-<sequence>."""

    def __init__(self, start: int = 1) -> None:
        self._counter = itertools.count(start)

    def next_id(self, on: datetime) -> str:
        return f"FA-{on:%Y%m%d}-{next(self._counter):06d}"


def create_fraud_alert(
    fraud_type: FraudType,
    detected_at: datetime,
    alert_id: str,
    severity: Severity | None = None,
    **evidence: Any,
) -> FraudAlert:
    """Build a fraud alert record.

    Args:
        fraud_type: Detected fraud condition
        detected_at: Detection timestamp (the upload time in the pipeline)
        alert_id: Human-readable alert id
        severity: Explicit severity; derived from fraud type and age if omitted
        **evidence: Remaining FraudAlert fields (amount, transaction_id, ...)

    Returns:
        FraudAlert in PENDING review state
    """
    if severity is None:
        severity = determine_severity(fraud_type, evidence.get("screenshot_age_days"))
    return FraudAlert(
        alert_id=alert_id,
        fraud_type=fraud_type,
        severity=severity,
        detected_at=detected_at,
        **evidence,
    )
