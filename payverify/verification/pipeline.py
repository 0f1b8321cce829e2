"""Staged payment verification.

Turns a fused OCR record plus the expected payment into a terminal verdict:

    Stage 1  type check        not a bank statement   -> rejected
    Stage 2  confidence gate   confidence != high     -> pending (BLURRY)
    Stage 3a recipient         definite mismatch      -> rejected
    Stage 3b date              stale/future/invalid   -> rejected + fraud alert
    Stage 3c bank              recorded only
    Stage 3d amount            outside tolerance      -> pending
    Stage 4  name judgment     borderline name match  -> pending
             all passed                               -> verified

Each stage handler returns a Verdict to stop or None to continue. Given the
same record, expected payment and upload time the verdict is always the same.
"""

import logging
from collections.abc import Callable
from uuid import UUID, uuid4

from pydantic import BaseModel

from payverify.fraud.detector import (
    AlertIdGenerator,
    FraudAlert,
    FraudType,
    create_fraud_alert,
    validate_transaction_date,
)
from payverify.names.matcher import MatchType, NameMatcher
from payverify.ocr.orchestrator import OcrOrchestrator
from payverify.ocr.schema import Confidence, OcrRecord
from payverify.shared import metrics
from payverify.shared.config import Settings
from payverify.verification.audit import AuditSink, LoggingAuditSink, NameMatchAudit, append_audit
from payverify.verification.currency import convert_to_khr, verify_amount
from payverify.verification.recipient import verify_recipient
from payverify.verification.schema import (
    ExpectedPayment,
    FieldValidation,
    RejectionReason,
    Stage,
    Validation,
    Verdict,
    VerificationContext,
    VerificationResult,
    VerificationStatus,
)

logger = logging.getLogger(__name__)


class PipelineState(BaseModel):
    """Mutable working state carried through the stages of one verification."""

    record_id: UUID
    record: OcrRecord
    expected: ExpectedPayment
    context: VerificationContext
    validation: Validation
    requires_gpt_judgment: bool = False
    fraud: FraudAlert | None = None

    def update_validation(self, **fields: object) -> None:
        self.validation = self.validation.model_copy(update=fields)


def _initial_validation(record: OcrRecord, expected: ExpectedPayment) -> Validation:
    return Validation(
        amount=FieldValidation(expected=expected.amount),
        bank=FieldValidation(
            expected=expected.bank, actual=record.bank_name, skipped=not expected.bank
        ),
        to_account=FieldValidation(
            expected=expected.to_account, actual=record.to_account, skipped=not expected.to_account
        ),
        recipient_names=FieldValidation(
            expected=expected.recipient_names,
            actual=record.recipient_name,
            skipped=not expected.recipient_names,
        ),
    )


class VerificationPipeline:
    """Four-stage verification state machine.

    ``verify`` runs OCR and then ``evaluate``; ``evaluate`` is synchronous and
    free of I/O apart from the fire-and-forget audit sink.
    """

    def __init__(
        self,
        settings: Settings,
        orchestrator: OcrOrchestrator | None = None,
        name_matcher: NameMatcher | None = None,
        audit_sink: AuditSink | None = None,
        alert_ids: AlertIdGenerator | None = None,
    ) -> None:
        """Initialize pipeline.

        Args:
            settings: Application settings
            orchestrator: OCR orchestrator (built from settings on first use)
            name_matcher: Recipient name matcher
            audit_sink: Destination for name-match audit records
            alert_ids: Fraud alert id sequence
        """
        self.settings = settings
        self._orchestrator = orchestrator
        self.name_matcher = name_matcher or NameMatcher.from_settings(settings)
        self.audit_sink: AuditSink = audit_sink or LoggingAuditSink()
        self.alert_ids = alert_ids or AlertIdGenerator()

    @property
    def orchestrator(self) -> OcrOrchestrator:
        if self._orchestrator is None:
            self._orchestrator = OcrOrchestrator(self.settings)
        return self._orchestrator

    @property
    def stages(self) -> list[tuple[Stage, Callable[[PipelineState], Verdict | None]]]:
        return [
            (Stage.TYPE_CHECK, self._check_type),
            (Stage.CONFIDENCE_CHECK, self._check_confidence),
            (Stage.RECIPIENT_CHECK, self._check_recipient),
            (Stage.DATE_CHECK, self._check_date),
            (Stage.BANK_CHECK, self._check_bank),
            (Stage.AMOUNT_CHECK, self._check_amount),
            (Stage.NAME_JUDGMENT, self._check_name_judgment),
        ]

    async def verify(
        self,
        image_bytes: bytes,
        expected: ExpectedPayment,
        context: VerificationContext,
        bank_hint: str | None = None,
    ) -> VerificationResult:
        """Extract a payment record from a screenshot and verify it.

        Args:
            image_bytes: Encoded screenshot
            expected: Expected payment
            context: Request metadata, including the upload time
            bank_hint: Bank name hint for OCR (defaults to the expected bank)

        Returns:
            VerificationResult

        Raises:
            InvalidImageError: If the image is empty or undecodable
        """
        fused = await self.orchestrator.process(image_bytes, bank_hint or expected.bank)
        result = self.evaluate(fused.record, expected, context)
        return result.model_copy(
            update={"ocr_confidence": fused.confidence, "ocr_engine": fused.primary_engine}
        )

    def evaluate(
        self,
        record: OcrRecord,
        expected: ExpectedPayment,
        context: VerificationContext,
        record_id: UUID | None = None,
    ) -> VerificationResult:
        """Run the stages over an already extracted record.

        Args:
            record: Fused OCR record
            expected: Expected payment
            context: Request metadata, including the upload time
            record_id: Verification record id (generated if omitted)

        Returns:
            VerificationResult
        """
        state = PipelineState(
            record_id=record_id or uuid4(),
            record=record,
            expected=expected,
            context=context,
            validation=_initial_validation(record, expected),
        )
        for stage, handler in self.stages:
            logger.debug(f"{stage.value} | Record {state.record_id}")
            verdict = handler(state)
            if verdict is not None:
                return self._finish(state, verdict)
        verified = Verdict(status=VerificationStatus.VERIFIED, stage=Stage.COMPLETE)
        return self._finish(state, verified)

    def _finish(self, state: PipelineState, verdict: Verdict) -> VerificationResult:
        result = VerificationResult(
            record_id=state.record_id,
            invoice_id=state.context.invoice_id,
            status=verdict.status,
            rejection_reason=verdict.reason,
            stage=verdict.stage,
            confidence=state.record.confidence,
            requires_gpt_judgment=state.requires_gpt_judgment,
            payment=state.record,
            validation=state.validation,
            fraud=state.fraud,
            ocr_engine=state.record.engine,
        )
        metrics.verification_outcomes_total.labels(
            status=verdict.status.value, reason=verdict.reason.value if verdict.reason else "none"
        ).inc()
        return result

    # Stage 1
    def _check_type(self, state: PipelineState) -> Verdict | None:
        if state.record.is_bank_statement is False:
            logger.info(f"Stage 1: NOT a bank statement | Record {state.record_id}")
            return Verdict(
                status=VerificationStatus.REJECTED,
                reason=RejectionReason.NOT_BANK_STATEMENT,
                stage=Stage.TYPE_CHECK,
            )
        return None

    # Stage 2
    def _check_confidence(self, state: PipelineState) -> Verdict | None:
        if state.record.confidence != Confidence.HIGH:
            logger.info(
                f"Stage 2: Blurry/unclear ({state.record.confidence.value} confidence) "
                f"| Record {state.record_id}"
            )
            return Verdict(
                status=VerificationStatus.PENDING,
                reason=RejectionReason.BLURRY,
                stage=Stage.CONFIDENCE_CHECK,
            )
        return None

    # Stage 3a
    def _check_recipient(self, state: PipelineState) -> Verdict | None:
        record = state.record
        check = verify_recipient(
            record.to_account, record.recipient_name, state.expected, self.name_matcher
        )

        details = check.name_match.details if check.name_match else {}
        fields = {
            "match": check.verified,
            "skipped": check.skipped,
            "confidence": check.confidence,
            "match_type": check.match_type,
            "reason": check.reason,
        }
        state.update_validation(
            to_account=state.validation.to_account.model_copy(update=fields),
            recipient_names=state.validation.recipient_names.model_copy(
                update={**fields, "details": details}
            ),
        )

        name_match = check.name_match
        if (
            name_match is not None
            and name_match.match_type != MatchType.EXACT
            and name_match.confidence >= self.name_matcher.gpt_threshold
        ):
            append_audit(
                self.audit_sink,
                NameMatchAudit(
                    timestamp=state.context.uploaded_at,
                    record_id=state.record_id,
                    tenant_id=state.context.tenant_id,
                    extracted=record.recipient_name or "",
                    expected=state.expected.recipient_names or [],
                    match_type=name_match.match_type.value,
                    confidence=name_match.confidence,
                    reason=name_match.reason,
                    details=name_match.details,
                ),
            )

        if check.skipped:
            logger.info(
                f"Stage 3a: Recipient check SKIPPED | Record {state.record_id} | {check.reason}"
            )
            return None
        if check.verified:
            logger.info(
                f"Stage 3a: Recipient MATCHED | Record {state.record_id} "
                f"| Type: {check.match_type} | Confidence: {check.confidence}% | {check.reason}"
            )
            return None
        if check.requires_gpt_judgment:
            state.requires_gpt_judgment = True
            logger.info(
                f"Stage 3a: Recipient BORDERLINE - GPT judgment required "
                f"| Record {state.record_id} | Confidence: {check.confidence}% | {check.reason}"
            )
            return None

        logger.info(
            f"Stage 3a: Wrong recipient | Record {state.record_id} | Type: {check.match_type} "
            f"| Confidence: {check.confidence}% | {check.reason}"
        )
        return Verdict(
            status=VerificationStatus.REJECTED,
            reason=RejectionReason.WRONG_RECIPIENT,
            stage=Stage.RECIPIENT_CHECK,
        )

    # Stage 3b
    def _check_date(self, state: PipelineState) -> Verdict | None:
        record = state.record
        if not record.transaction_date_raw:
            return None

        max_age_days = self.settings.max_screenshot_age_days
        uploaded_at = state.context.uploaded_at
        validation = validate_transaction_date(
            record.transaction_date_raw, uploaded_at, max_age_days
        )
        state.update_validation(
            date_validation=validation,
            is_old_screenshot=validation.fraud_type == FraudType.OLD_SCREENSHOT,
        )
        if validation.is_valid or validation.fraud_type is None:
            return None

        state.fraud = create_fraud_alert(
            validation.fraud_type,
            detected_at=uploaded_at,
            alert_id=self.alert_ids.next_id(uploaded_at),
            payment_id=state.context.payment_id,
            invoice_id=state.context.invoice_id,
            customer_id=state.context.customer_id,
            tenant_id=state.context.tenant_id,
            transaction_date=validation.parsed_date,
            uploaded_at=uploaded_at,
            screenshot_age_days=validation.age_days,
            max_allowed_age_days=max_age_days,
            transaction_id=record.transaction_id,
            reference_number=record.reference_number,
            amount=record.amount,
            currency=record.currency.value,
            bank_name=record.bank_name,
            confidence=record.confidence.value,
            verification_notes=validation.reason,
        )
        metrics.fraud_alerts_total.labels(
            fraud_type=state.fraud.fraud_type.value, severity=state.fraud.severity.value
        ).inc()
        logger.info(
            f"Stage 3b: {validation.fraud_type.value} | Record {state.record_id} "
            f"| {validation.reason}"
        )
        return Verdict(
            status=VerificationStatus.REJECTED,
            reason=RejectionReason(validation.fraud_type.value),
            stage=Stage.DATE_CHECK,
        )

    # Stage 3c
    def _check_bank(self, state: PipelineState) -> Verdict | None:
        expected_bank = state.expected.bank
        actual_bank = state.record.bank_name
        if expected_bank and actual_bank:
            match = expected_bank.lower() in actual_bank.lower()
            state.update_validation(
                bank=state.validation.bank.model_copy(update={"match": match, "skipped": False})
            )
            if not match:
                logger.info(
                    f"Stage 3c: Bank mismatch (informational) | Record {state.record_id} "
                    f"| Expected: {expected_bank}, Got: {actual_bank}"
                )
        return None

    # Stage 3d
    def _check_amount(self, state: PipelineState) -> Verdict | None:
        rate = self.settings.usd_to_khr_rate
        amount_khr = convert_to_khr(state.record.amount, state.record.currency, rate)
        expected = state.expected

        if not expected.amount:
            state.update_validation(
                amount=state.validation.amount.model_copy(
                    update={"actual": amount_khr, "skipped": True}
                )
            )
            return None

        expected_khr = convert_to_khr(expected.amount, expected.currency, rate)
        tolerance = (
            expected.tolerance_percent
            if expected.tolerance_percent is not None
            else self.settings.payment_tolerance_percent
        )
        check = verify_amount(expected_khr, amount_khr, tolerance)
        state.update_validation(
            amount=state.validation.amount.model_copy(
                update={
                    "actual": amount_khr,
                    "match": check.match,
                    "reason": check.reason,
                    "details": check.model_dump(by_alias=True),
                }
            )
        )
        if check.match:
            return None

        logger.info(
            f"Stage 3d: Amount mismatch | Record {state.record_id} "
            f"| Expected: {expected_khr}, Got: {amount_khr}"
        )
        return Verdict(
            status=VerificationStatus.PENDING,
            reason=RejectionReason.AMOUNT_MISMATCH,
            stage=Stage.AMOUNT_CHECK,
        )

    # Stage 4
    def _check_name_judgment(self, state: PipelineState) -> Verdict | None:
        if not state.requires_gpt_judgment:
            logger.info(
                f"VERIFIED | Record {state.record_id} | Amount: "
                f"{state.validation.amount.actual} KHR | OCR Engine: {state.record.engine}"
            )
            return None
        logger.info(f"Stage 4: Marked for manual review/GPT judgment | Record {state.record_id}")
        return Verdict(
            status=VerificationStatus.PENDING,
            reason=RejectionReason.REQUIRES_GPT_JUDGMENT,
            stage=Stage.NAME_JUDGMENT,
        )
