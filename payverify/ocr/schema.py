"""Payment screenshot data models.

JSON field names (``isBankStatement``, ``bankName``, ``transactionDate``, ...)
are the contract other components consume; the Python attributes use
snake_case and serialize by alias.
"""

from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class Confidence(str, Enum):
    """Discrete extraction confidence. Only HIGH unlocks security checks."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    FAILED = "failed"


class Currency(str, Enum):
    KHR = "KHR"
    USD = "USD"


CURRENCY_ALIASES = {
    "KHR": Currency.KHR,
    "៛": Currency.KHR,
    "R": Currency.KHR,
    "RIEL": Currency.KHR,
    "USD": Currency.USD,
    "$": Currency.USD,
}


def normalize_amount(value: Any) -> Decimal | None:
    """Normalize an extracted amount to a positive magnitude.

    Accepts numbers or strings such as "-28,000" and strips the sign and
    thousands separators. Idempotent.

    Args:
        value: Raw amount value

    Returns:
        Non-negative Decimal, or None if the value is missing or unparseable
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, int | float):
        amount = Decimal(str(value))
    else:
        text = str(value).strip().replace(",", "").replace(" ", "")
        if not text:
            return None
        try:
            amount = Decimal(text)
        except InvalidOperation:
            return None
    if not amount.is_finite():
        return None
    return abs(amount)


def normalize_currency(value: Any) -> Currency:
    """Map currency codes and symbols to Currency, defaulting to KHR."""
    if isinstance(value, Currency):
        return value
    if not value:
        return Currency.KHR
    return CURRENCY_ALIASES.get(str(value).strip().upper(), Currency.KHR)


class OcrRecord(BaseModel):
    """Normalized output of text extraction for one image.

    ``is_bank_statement`` and ``is_paid`` are None when unknown.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    is_bank_statement: bool | None = None
    is_paid: bool | None = None
    amount: Decimal | None = None
    currency: Currency = Currency.KHR
    transaction_id: str | None = None
    reference_number: str | None = None
    from_account: str | None = None
    to_account: str | None = None
    recipient_name: str | None = None
    bank_name: str | None = None
    transaction_date_raw: str | None = Field(default=None, alias="transactionDate")
    remark: str | None = None
    confidence: Confidence = Confidence.LOW
    engine: str = "none"
    raw_text: str = ""

    @field_validator("amount", mode="before")
    @classmethod
    def _normalize_amount(cls, value: Any) -> Decimal | None:
        return normalize_amount(value)

    @field_validator("currency", mode="before")
    @classmethod
    def _normalize_currency(cls, value: Any) -> Currency:
        return normalize_currency(value)

    @field_validator("confidence", mode="before")
    @classmethod
    def _normalize_confidence(cls, value: Any) -> Confidence:
        if isinstance(value, Confidence):
            return value
        try:
            return Confidence(str(value).strip().lower())
        except ValueError:
            return Confidence.LOW

    @field_validator(
        "transaction_id",
        "reference_number",
        "from_account",
        "to_account",
        "recipient_name",
        "bank_name",
        "transaction_date_raw",
        "remark",
        mode="before",
    )
    @classmethod
    def _coerce_text(cls, value: Any) -> str | None:
        if value is None:
            return None
        text = str(value).strip()
        return text or None

    @classmethod
    def failed(cls, engine: str = "none", raw_text: str = "") -> "OcrRecord":
        """Terminal record for an extraction where every engine failed."""
        return cls(confidence=Confidence.FAILED, engine=engine, raw_text=raw_text)
