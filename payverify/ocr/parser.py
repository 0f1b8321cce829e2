"""Regex extraction of payment fields from raw OCR text.

Handles Cambodian bank transfer screenshots. Bank-specific pattern sets
(ABA Bank, ACLEDA, Wing) are tried first and fall back to generic patterns.
"""

import logging
import re

from payverify.fraud.khmer_date import KHMER_MONTHS, KHMER_MONTHS_SHORT
from payverify.ocr.schema import Confidence, Currency, OcrRecord, normalize_currency

logger = logging.getLogger(__name__)

_AMOUNT_NUMBER = r"(-?\d{1,3}(?:,\d{3})+(?:\.\d{1,2})?|-?\d+(?:\.\d{1,2})?)"
_DATE_NUMERIC = (
    r"(?<![\d/\-])"
    r"(\d{1,2}[/\-]\d{1,2}[/\-](?:\d{4}|\d{2})(?: \d{1,2}:\d{2})?"
    r"|\d{4}[/\-]\d{1,2}[/\-]\d{1,2}(?:[T ]\d{1,2}:\d{2}(?::\d{2})?)?)"
    r"(?!\d)"
)

_KHMER_MONTH_NAMES = "|".join(
    sorted([*KHMER_MONTHS, *KHMER_MONTHS_SHORT], key=len, reverse=True)
)

GENERIC_PATTERNS: dict[str, list[re.Pattern[str]]] = {
    "amount": [
        re.compile(
            rf"\b(?:Amount|Total|CT|Transfer)\b[\s\S]*?{_AMOUNT_NUMBER}\s*(KHR|USD|៛|\$)",
            re.IGNORECASE,
        ),
        re.compile(rf"(\$|៛)\s*{_AMOUNT_NUMBER}"),
    ],
    "transaction_id": [
        re.compile(
            r"\b(?:Trx\.? ?ID|Transaction ID|TXN ID|ID)[ \t:]*([A-Z0-9]{6,})", re.IGNORECASE
        ),
    ],
    "to_account": [
        re.compile(r"\b(?i:To account|Account No|Account|To)[ \t:.]*(\d[\d \-]{5,}\d)"),
    ],
    "recipient_name": [
        re.compile(
            r"\b(?i:Recipient|Beneficiary|Account Name|Name|To)[ \t:]*([A-Z][A-Z .&]{2,})"
        ),
    ],
    "reference_number": [
        re.compile(r"\b(?:Ref|Reference|Remark)\b[ \t:.]*([A-Z0-9]{4,})", re.IGNORECASE),
    ],
    "date": [
        re.compile(
            rf"([០-៩\d]{{1,2}} ?(?:{_KHMER_MONTH_NAMES}) ?[០-៩\d]{{2,4}}(?: [០-៩\d]{{1,2}}:[០-៩\d]{{2}})?)"
        ),
        re.compile(
            r"([A-Z][a-z]{2,8} \d{1,2}, \d{4}(?: \d{1,2}:\d{2}(?: ?[AP]M)?)?)", re.IGNORECASE
        ),
        re.compile(_DATE_NUMERIC),
    ],
}

BANK_PATTERNS: dict[str, dict[str, list[re.Pattern[str]]]] = {
    "ABA Bank": {
        "transaction_id": [
            re.compile(r"\b(?:Trx\.? ?ID|Transaction ID)[ \t:]*([A-Z0-9]+)", re.IGNORECASE)
        ],
        "amount": [
            re.compile(rf"\b(?:CT|Transfer)\b[\s\S]*?{_AMOUNT_NUMBER}\s*(KHR|USD)", re.IGNORECASE)
        ],
        "reference_number": [
            re.compile(r"\b(?:Ref|Reference)\b[ \t:.]*([A-Z0-9]+)", re.IGNORECASE)
        ],
    },
    "ACLEDA": {
        "transaction_id": [
            re.compile(r"\b(?:Transaction ID|TXN ID)[ \t:]*([A-Z0-9]+)", re.IGNORECASE)
        ],
        "amount": [
            re.compile(rf"\b(?:Amount|Total)\b[ \t:]*{_AMOUNT_NUMBER}\s*(KHR|USD)", re.IGNORECASE)
        ],
        "to_account": [
            re.compile(r"\b(?i:Account No|To Account)[ \t:.]*(\d[\d \-]{5,}\d)")
        ],
        "recipient_name": [
            re.compile(r"\b(?i:Account Name|Recipient)[ \t:]*([A-Z][A-Z .&]{2,})")
        ],
    },
    "Wing": {
        "transaction_id": [
            re.compile(r"\bTransaction ID[ \t:]*([A-Z0-9]+)", re.IGNORECASE)
        ],
        "amount": [
            re.compile(rf"\bAmount\b[ \t:]*{_AMOUNT_NUMBER}\s*(KHR|USD)", re.IGNORECASE)
        ],
        "recipient_name": [
            re.compile(r"\b(?i:Name)[ \t:]*([A-Z][A-Z .&]{2,})")
        ],
    },
}

BANK_NAME_PATTERN = re.compile(
    r"(ABA\s*Bank|ABA|ACLEDA|Wing|Prince\s*Bank|Canadia|Sathapana)", re.IGNORECASE
)

BANK_ALIASES = (
    ("ABA", "ABA Bank"),
    ("ACLEDA", "ACLEDA"),
    ("WING", "Wing"),
    ("PRINCE", "Prince Bank"),
    ("CANADIA", "Canadia Bank"),
    ("SATHAPANA", "Sathapana Bank"),
)

SUCCESS_PATTERNS = (
    re.compile(r"\bSuccess(?:ful)?\b", re.IGNORECASE),
    re.compile(r"\bCompleted\b", re.IGNORECASE),
    re.compile(r"រួចរាល់"),
    re.compile(r"ជោគជ័យ"),
    re.compile(r"✓"),
)

ABA_TRANSFER_PATTERN = re.compile(r"\bCT\b[\s\S]{0,40}?-\s?\d")

_SPECIAL_CHARS = re.compile(r"[^\w\s.\-,:$៛✓\u1780-\u17FF]")
_HORIZONTAL_SPACE = re.compile(r"[ \t\r\f\v]+")
_SPLIT_THOUSANDS = re.compile(r"(?<=\d) (?=\d{3}\b)")

FIELD_SCORES = {
    "amount": 25,
    "transaction_id": 20,
    "bank_name": 15,
    "to_account": 15,
    "recipient_name": 15,
    "transaction_date_raw": 10,
}


def preprocess_text(text: str) -> str:
    """Strip OCR noise while keeping line structure, currency symbols and Khmer."""
    cleaned = _SPECIAL_CHARS.sub(" ", text)
    lines = (_HORIZONTAL_SPACE.sub(" ", line).strip() for line in cleaned.splitlines())
    joined = "\n".join(line for line in lines if line)
    return _SPLIT_THOUSANDS.sub("", joined)


def normalize_bank_name(raw: str | None) -> str | None:
    """Map a bank mention to its canonical display name."""
    if not raw:
        return None
    upper = raw.upper()
    for token, canonical in BANK_ALIASES:
        if token in upper:
            return canonical
    return " ".join(raw.split())


def detect_bank(text: str) -> str | None:
    match = BANK_NAME_PATTERN.search(text)
    return normalize_bank_name(match.group(1)) if match else None


def score_confidence(record: OcrRecord) -> Confidence:
    """Score field completeness, then demote records that cannot be trusted.

    Args:
        record: Parsed record (its own confidence is ignored)

    Returns:
        HIGH (>= 85 points), MEDIUM (>= 65) or LOW
    """
    score = sum(points for field, points in FIELD_SCORES.items() if getattr(record, field))
    if score >= 85:
        confidence = Confidence.HIGH
    elif score >= 65:
        confidence = Confidence.MEDIUM
    else:
        confidence = Confidence.LOW

    if not record.is_bank_statement or not record.is_paid:
        return Confidence.LOW
    if record.amount is None or not record.bank_name:
        return Confidence.LOW
    return confidence


class PaymentTextParser:
    """Extract structured payment fields from OCR text."""

    def _patterns(self, bank: str | None, field: str) -> list[re.Pattern[str]]:
        specific = BANK_PATTERNS.get(bank or "", {}).get(field, [])
        return [*specific, *GENERIC_PATTERNS[field]]

    def _search(self, text: str, bank: str | None, field: str) -> re.Match[str] | None:
        for pattern in self._patterns(bank, field):
            match = pattern.search(text)
            if match:
                return match
        return None

    def _extract(self, text: str, bank: str | None, field: str) -> str | None:
        match = self._search(text, bank, field)
        return match.group(1).strip() if match else None

    def _extract_amount(self, text: str, bank: str | None) -> tuple[str | None, Currency | None]:
        match = self._search(text, bank, "amount")
        if not match:
            return None, None
        first, second = match.group(1), match.group(2)
        # Prefix-symbol pattern captures the symbol first
        if first in ("$", "៛"):
            first, second = second, first
        return first, normalize_currency(second)

    @staticmethod
    def _fallback_currency(text: str) -> Currency:
        if "KHR" in text or "៛" in text:
            return Currency.KHR
        if "USD" in text or "$" in text:
            return Currency.USD
        return Currency.KHR

    def detect_payment_status(self, text: str, bank: str | None) -> bool:
        if bank == "ABA Bank" and ABA_TRANSFER_PATTERN.search(text):
            return True
        return any(pattern.search(text) for pattern in SUCCESS_PATTERNS)

    def parse(
        self, ocr_text: str | None, bank_hint: str | None = None, engine: str = "none"
    ) -> OcrRecord:
        """Parse OCR text into an OcrRecord.

        Args:
            ocr_text: Raw text from an OCR engine
            bank_hint: Bank name supplied by the caller or bank detector
            engine: Engine that produced the text

        Returns:
            OcrRecord with a completeness-based confidence
        """
        if not ocr_text or not ocr_text.strip():
            return OcrRecord(
                is_bank_statement=False, is_paid=False, confidence=Confidence.LOW, engine=engine
            )

        text = preprocess_text(ocr_text)
        bank = normalize_bank_name(bank_hint) or detect_bank(text)

        amount, currency = self._extract_amount(text, bank)
        name = self._extract(text, bank, "recipient_name")
        account = self._extract(text, bank, "to_account")

        record = OcrRecord(
            bank_name=bank,
            amount=amount,
            currency=currency or self._fallback_currency(text),
            transaction_id=self._extract(text, bank, "transaction_id"),
            reference_number=self._extract(text, bank, "reference_number"),
            to_account=" ".join(account.split()) if account else None,
            recipient_name=" ".join(name.split()) if name else None,
            transaction_date_raw=self._extract(text, bank, "date"),
            is_paid=self.detect_payment_status(text, bank),
            engine=engine,
            raw_text=ocr_text,
        )
        has_identifier = bool(record.transaction_id or record.to_account or record.recipient_name)
        record.is_bank_statement = (
            record.amount is not None and has_identifier and record.bank_name is not None
        )
        record.confidence = score_confidence(record)

        logger.debug(
            f"Parsed {engine} text: bank={record.bank_name}, amount={record.amount} "
            f"{record.currency.value}, confidence={record.confidence.value}"
        )
        return record


def parse_payment_text(
    ocr_text: str | None, bank_hint: str | None = None, engine: str = "none"
) -> OcrRecord:
    """Module-level convenience wrapper around PaymentTextParser.parse."""
    return PaymentTextParser().parse(ocr_text, bank_hint, engine)
