"""Currency conversion and amount tolerance checks.

Amounts are compared in KHR. Riel has no fractional unit in practice, so
conversions round half-up to whole riel.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

USD_CODES = frozenset({"USD", "$"})

ONE = Decimal(1)


def _to_decimal(value: Any) -> Decimal | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = Decimal(str(value))
    except InvalidOperation:
        return None
    return number if number.is_finite() else None


def _round(value: Decimal) -> int:
    return int(value.quantize(ONE, rounding=ROUND_HALF_UP))


def convert_to_khr(amount: Any, currency: Any = "KHR", rate: float = 4000.0) -> int:
    """Convert an amount to whole riel.

    Args:
        amount: Amount in ``currency``
        currency: KHR/R/៛ or USD/$ (anything unrecognized is treated as KHR)
        rate: USD to KHR exchange rate

    Returns:
        Amount in KHR, 0 for missing or non-numeric input
    """
    number = _to_decimal(amount)
    if not number:
        return 0
    code = str(getattr(currency, "value", currency) or "KHR").strip().upper()
    if code in USD_CODES:
        return _round(number * Decimal(str(rate)))
    return _round(number)


class AmountCheck(BaseModel):
    """Result of comparing an actual amount against the expected one."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    match: bool
    difference: int | None = None
    percent_diff: float | None = None
    min_acceptable: int | None = None
    max_acceptable: int | None = None
    reason: str | None = None


def verify_amount(expected: Any, actual: Any, tolerance_percent: float = 5.0) -> AmountCheck:
    """Check that ``actual`` lies within ``tolerance_percent`` of ``expected``.

    Both amounts must already be in the same currency.
    """
    expected_amount = _to_decimal(expected)
    actual_amount = _to_decimal(actual)
    if not expected_amount or not actual_amount:
        return AmountCheck(match=False, reason="Missing amount value")

    difference = actual_amount - expected_amount
    percent_diff = difference / expected_amount * 100
    tolerance = expected_amount * Decimal(str(tolerance_percent)) / 100
    min_acceptable = expected_amount - tolerance
    max_acceptable = expected_amount + tolerance
    match = min_acceptable <= actual_amount <= max_acceptable

    return AmountCheck(
        match=match,
        difference=_round(difference),
        percent_diff=float(percent_diff.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)),
        min_acceptable=_round(min_acceptable),
        max_acceptable=_round(max_acceptable),
        reason=None
        if match
        else (
            f"Amount {actual_amount} outside tolerance range "
            f"[{_round(min_acceptable)}, {_round(max_acceptable)}]"
        ),
    )


def format_currency(amount: Any, currency: Any = "KHR") -> str:
    """Format an amount for display: ``$12.50`` or ``28,000 KHR``."""
    number = _to_decimal(amount)
    if not number:
        return "0"
    formatted = f"{int(number):,}" if number == number.to_integral_value() else f"{number:,.2f}"
    code = str(getattr(currency, "value", currency) or "KHR").strip().upper()
    if code in USD_CODES:
        return f"${formatted}"
    return f"{formatted} KHR"
