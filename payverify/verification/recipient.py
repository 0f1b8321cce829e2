"""Recipient verification: account number first, then Name Intelligence."""

import logging
import re

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from payverify.names.matcher import NameMatcher, NameMatchResult
from payverify.verification.schema import ExpectedPayment

logger = logging.getLogger(__name__)

_ACCOUNT_SEPARATORS = re.compile(r"[\s\-]")


class AccountCheck(BaseModel):
    verified: bool
    reason: str


class RecipientCheck(BaseModel):
    """Outcome of recipient verification.

    Attributes:
        verified: True on a match, False on a definite mismatch, None when
            skipped or deferred to judgment
        skipped: No recipient data was expected
        reason: Human-readable explanation
        confidence: Match confidence (0-100)
        match_type: account_exact, a name match type, no_data, no_match or skipped
        requires_gpt_judgment: Borderline name match needing review
        name_match: Name Intelligence result, when names were compared
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    verified: bool | None
    skipped: bool = False
    reason: str
    confidence: int | None = None
    match_type: str
    requires_gpt_judgment: bool = Field(default=False, alias="requiresGPTJudgment")
    name_match: NameMatchResult | None = None


def normalize_account(value: str) -> str:
    return _ACCOUNT_SEPARATORS.sub("", value)


def verify_account_number(extracted: str | None, expected: str | None) -> AccountCheck:
    """Compare account numbers ignoring spaces and dashes.

    Containment in either direction counts, since OCR often reads the account
    together with surrounding digits or drops a masked prefix.
    """
    if not extracted or not expected:
        return AccountCheck(verified=False, reason="Missing account information")

    normalized_extracted = normalize_account(extracted)
    normalized_expected = normalize_account(expected)
    if not normalized_extracted or not normalized_expected:
        return AccountCheck(verified=False, reason="Missing account information")

    if normalized_extracted == normalized_expected:
        return AccountCheck(verified=True, reason=f"Account number matched: {expected}")
    if normalized_expected in normalized_extracted or normalized_extracted in normalized_expected:
        return AccountCheck(verified=True, reason=f"Account number partially matched: {expected}")
    return AccountCheck(
        verified=False, reason=f"Account mismatch: expected {expected}, got {extracted}"
    )


def verify_recipient(
    to_account: str | None,
    recipient_name: str | None,
    expected: ExpectedPayment,
    matcher: NameMatcher,
) -> RecipientCheck:
    """Verify the screenshot's recipient against the expected payment.

    Args:
        to_account: Account number read from the screenshot
        recipient_name: Recipient name read from the screenshot
        expected: Expected payment (account, names, aliases)
        matcher: Name Intelligence matcher

    Returns:
        RecipientCheck
    """
    if not expected.to_account and not expected.recipient_names:
        return RecipientCheck(
            verified=None,
            skipped=True,
            reason="No recipient verification required",
            match_type="skipped",
        )

    if expected.to_account and to_account:
        account = verify_account_number(to_account, expected.to_account)
        if account.verified:
            return RecipientCheck(
                verified=True, reason=account.reason, confidence=100, match_type="account_exact"
            )
        logger.debug(account.reason)

    if expected.recipient_names and recipient_name:
        name_match = matcher.match(
            recipient_name, expected.recipient_names, expected.allowed_aliases
        )
        if name_match.confidence >= matcher.strict_threshold:
            return RecipientCheck(
                verified=True,
                reason=name_match.reason,
                confidence=name_match.confidence,
                match_type=name_match.match_type.value,
                name_match=name_match,
            )
        if name_match.requires_gpt_judgment:
            return RecipientCheck(
                verified=None,
                reason="Borderline match - GPT judgment required",
                confidence=name_match.confidence,
                match_type=name_match.match_type.value,
                requires_gpt_judgment=True,
                name_match=name_match,
            )
        return RecipientCheck(
            verified=False,
            reason=f"Name mismatch: {name_match.reason}",
            confidence=name_match.confidence,
            match_type=name_match.match_type.value,
            name_match=name_match,
        )

    if not to_account and not recipient_name:
        return RecipientCheck(
            verified=False,
            reason="No recipient info found in screenshot",
            confidence=0,
            match_type="no_data",
        )

    return RecipientCheck(
        verified=False,
        reason=f"Recipient mismatch: got {to_account or 'N/A'} / {recipient_name or 'N/A'}",
        confidence=0,
        match_type="no_match",
    )
