"""Data models for payment verification.

JSON field names are camelCase (``recordId``, ``paymentLabel``, ...) because
persistence and notification collaborators read them as-is.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator
from pydantic.alias_generators import to_camel

from payverify.fraud.detector import DateValidation, FraudAlert
from payverify.names.matcher import AliasGroup
from payverify.ocr.schema import Confidence, Currency, OcrRecord


class VerificationStatus(str, Enum):
    VERIFIED = "verified"
    PENDING = "pending"
    REJECTED = "rejected"


class PaymentLabel(str, Enum):
    PAID = "PAID"
    PENDING = "PENDING"
    UNPAID = "UNPAID"


PAYMENT_LABELS = {
    VerificationStatus.VERIFIED: PaymentLabel.PAID,
    VerificationStatus.PENDING: PaymentLabel.PENDING,
    VerificationStatus.REJECTED: PaymentLabel.UNPAID,
}


class RejectionReason(str, Enum):
    NOT_BANK_STATEMENT = "NOT_BANK_STATEMENT"
    BLURRY = "BLURRY"
    WRONG_RECIPIENT = "WRONG_RECIPIENT"
    MISSING_DATE = "MISSING_DATE"
    INVALID_DATE = "INVALID_DATE"
    FUTURE_DATE = "FUTURE_DATE"
    OLD_SCREENSHOT = "OLD_SCREENSHOT"
    AMOUNT_MISMATCH = "AMOUNT_MISMATCH"
    REQUIRES_GPT_JUDGMENT = "REQUIRES_GPT_JUDGMENT"


class Stage(str, Enum):
    """Pipeline stages in execution order."""

    TYPE_CHECK = "type_check"
    CONFIDENCE_CHECK = "confidence_check"
    RECIPIENT_CHECK = "recipient_check"
    DATE_CHECK = "date_check"
    BANK_CHECK = "bank_check"
    AMOUNT_CHECK = "amount_check"
    NAME_JUDGMENT = "name_judgment"
    COMPLETE = "complete"


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class ExpectedPayment(_CamelModel):
    """Caller-declared ground truth. A None field skips that check.

    Attributes:
        amount: Expected amount in ``currency``
        currency: Currency of ``amount``
        bank: Expected bank name
        to_account: Expected recipient account number
        recipient_names: Acceptable recipient names
        allowed_aliases: Tenant alias groups for name matching
        tolerance_percent: Allowed amount deviation (settings default if None)
    """

    amount: Decimal | None = None
    currency: Currency = Currency.KHR
    bank: str | None = None
    to_account: str | None = None
    recipient_names: list[str] | None = None
    allowed_aliases: list[AliasGroup] = Field(default_factory=list)
    tolerance_percent: float | None = Field(default=None, ge=0)


class VerificationContext(_CamelModel):
    """Request metadata. ``uploaded_at`` is the only clock the pipeline uses.

    A naive ``uploaded_at`` is read as UTC.
    """

    uploaded_at: datetime
    invoice_id: str | None = None
    customer_id: str | None = None
    tenant_id: str = "default"
    payment_id: str | None = None


class FieldValidation(_CamelModel):
    """Expected vs actual outcome for one checked field."""

    expected: Any = None
    actual: Any = None
    match: bool | None = None
    skipped: bool = False
    confidence: int | None = None
    match_type: str | None = None
    reason: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)


class Validation(_CamelModel):
    amount: FieldValidation = Field(default_factory=FieldValidation)
    bank: FieldValidation = Field(default_factory=FieldValidation)
    to_account: FieldValidation = Field(default_factory=FieldValidation)
    recipient_names: FieldValidation = Field(default_factory=FieldValidation)
    is_old_screenshot: bool = False
    date_validation: DateValidation | None = None


class Verdict(_CamelModel):
    """Terminal decision returned by a stage handler."""

    status: VerificationStatus
    reason: RejectionReason | None = None
    stage: Stage


class VerificationResult(_CamelModel):
    """Pipeline output.

    Exactly one of: rejected with a reason, pending with a reason, verified
    without one. ``payment_label`` is derived from ``status``.
    """

    record_id: UUID
    invoice_id: str | None = None
    status: VerificationStatus
    rejection_reason: RejectionReason | None = None
    stage: Stage
    confidence: Confidence
    requires_gpt_judgment: bool = Field(default=False, alias="requiresGPTJudgment")
    payment: OcrRecord
    validation: Validation = Field(default_factory=Validation)
    fraud: FraudAlert | None = None
    ocr_confidence: float | None = None
    ocr_engine: str | None = None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def payment_label(self) -> PaymentLabel:
        return PAYMENT_LABELS[self.status]

    @model_validator(mode="after")
    def _check_reason(self) -> "VerificationResult":
        if self.status == VerificationStatus.VERIFIED and self.rejection_reason is not None:
            raise ValueError("Verified results must not carry a rejection reason")
        if self.status != VerificationStatus.VERIFIED and self.rejection_reason is None:
            raise ValueError(f"{self.status.value} results require a rejection reason")
        return self
