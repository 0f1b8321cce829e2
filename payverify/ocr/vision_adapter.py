"""Hosted vision-language engine adapter (OpenAI GPT-4o).

Most expensive engine, used selectively: for Khmer-dominant screenshots and
as the last fallback. Calls share one RateLimiter per provider quota and are
retried with exponential backoff on transient errors.

Requires OPENAI_API_KEY environment variable.
"""

import base64
import io
import json
import logging
import os
import re
from typing import Any

from openai import AsyncOpenAI
from PIL import Image

from payverify.ocr.base import AdapterContext, AdapterKind, AdapterResult, OcrAdapter
from payverify.ocr.schema import Confidence, OcrRecord
from payverify.shared.config import Settings
from payverify.shared.ratelimit import RateLimiter, RetryOptions, retry_with_backoff

logger = logging.getLogger(__name__)

CONFIDENCE_SCORES = {
    Confidence.HIGH: 0.95,
    Confidence.MEDIUM: 0.75,
    Confidence.LOW: 0.4,
    Confidence.FAILED: 0.0,
}

BANK_STATEMENT_PROMPT = """You are a BANK STATEMENT VERIFICATION OCR system for Cambodian banks.

STEP 1: IDENTIFY IMAGE TYPE
Set isBankStatement=FALSE if this is a chat screenshot, an invoice, bill, receipt or
QR code, a random photo, or text without a banking app interface.
Set isBankStatement=TRUE if this shows a banking app interface (ABA Bank, Wing, ACLEDA,
Canadia, Prince Bank, Sathapana), even if blurry, cropped or partially visible.

STEP 2: VERIFY PAYMENT (only if isBankStatement=TRUE)
Set isPaid=TRUE if this is a COMPLETED TRANSFER:
- ABA Bank: CT logo with a minus amount (e.g. "-28,000 KHR"), "Trx. ID:", "To account:".
  ABA shows no "Success" text; the minus sign means the money was sent.
- ACLEDA/Wing: "រួចរាល់" (completed) or a checkmark on a green success screen.
- Other banks: "Success", "Completed", "ជោគជ័យ" or a green confirmation.
Set isPaid=FALSE but keep isBankStatement=TRUE if the image is too blurry, cropped,
or shows "Pending", "Failed" or "Processing".

STEP 3: EXTRACT PAYMENT DATA (only if isPaid=TRUE)
- toAccount: recipient account number (CRITICAL for security)
- amount: transfer amount as a POSITIVE number (-28,000 KHR -> 28000)
- transactionId: the Trx. ID or Transaction ID
- transactionDate: ISO format (2026-01-04T13:35:00) if possible; Khmer dates as-is

Return ONLY JSON:
{
  "isBankStatement": true/false,
  "isPaid": true/false,
  "amount": number,
  "currency": "KHR" or "USD",
  "transactionId": "string",
  "referenceNumber": "string",
  "fromAccount": "string",
  "toAccount": "string",
  "bankName": "string",
  "transactionDate": "string",
  "remark": "string",
  "recipientName": "string",
  "confidence": "high/medium/low"
}

RULES:
1. Random photo -> isBankStatement=false, isPaid=false, confidence=low
2. Blurry bank statement -> isBankStatement=true, isPaid=false, confidence=low
3. Clear bank statement -> isBankStatement=true, isPaid=true, confidence=high/medium"""


def demote_untrusted(record: OcrRecord) -> OcrRecord:
    """Cap confidence at LOW unless the model saw a completed bank transfer."""
    untrusted = record.is_bank_statement is not True or record.is_paid is False
    if untrusted and record.confidence in (Confidence.HIGH, Confidence.MEDIUM):
        return record.model_copy(update={"confidence": Confidence.LOW})
    return record


def build_prompt(hints: dict[str, str]) -> str:
    """Append other engines' text to the base prompt as reference material."""
    prompt = BANK_STATEMENT_PROMPT
    for engine, text in sorted(hints.items()):
        if text and text.strip():
            prompt += f"\n\n{engine.upper()} EXTRACTED TEXT (for reference):\n{text.strip()}"
    return prompt


def parse_json_response(response_text: str) -> dict[str, Any]:
    """Extract and parse JSON from an LLM response.

    Handles markdown code blocks around the object.

    Raises:
        json.JSONDecodeError: If no valid JSON found
    """
    json_match = re.search(r"```(?:json)?\s*([\s\S]*?)```", response_text)
    if json_match:
        result: dict[str, Any] = json.loads(json_match.group(1).strip())
        return result

    json_match = re.search(r"\{[\s\S]*\}", response_text)
    if json_match:
        result = json.loads(json_match.group(0))
        return result

    result = json.loads(response_text.strip())
    return result


def image_data_url(image_bytes: bytes) -> str:
    with Image.open(io.BytesIO(image_bytes)) as image:
        mime = Image.MIME.get(image.format or "", "image/jpeg")
    encoded = base64.b64encode(image_bytes).decode("ascii")
    return f"data:{mime};base64,{encoded}"


class VisionOcrAdapter(OcrAdapter):
    """Hosted engine backed by an OpenAI vision model."""

    kind = AdapterKind.HOSTED

    def __init__(
        self,
        settings: Settings,
        rate_limiter: RateLimiter | None = None,
        client: AsyncOpenAI | None = None,
    ) -> None:
        """Initialize vision adapter.

        Args:
            settings: Application settings
            rate_limiter: Limiter shared by every caller of the same quota
            client: Optional pre-built OpenAI client
        """
        super().__init__(settings, timeout_seconds=settings.vision_timeout_seconds)
        self.rate_limiter = rate_limiter or RateLimiter(settings.ocr_rate_limit_per_minute)
        self.retry_options = RetryOptions(
            max_retries=settings.ocr_max_retries,
            initial_delay=settings.retry_initial_delay_seconds,
            max_delay=settings.retry_max_delay_seconds,
            backoff_factor=settings.retry_backoff_factor,
        )
        self._client = client

    @property
    def engine_name(self) -> str:
        return "vision"

    def is_available(self) -> bool:
        """Check if an OpenAI client or API key is configured."""
        return self._client is not None or os.getenv("OPENAI_API_KEY") is not None

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = AsyncOpenAI(
                api_key=os.getenv("OPENAI_API_KEY"), timeout=self.timeout_seconds
            )
        return self._client

    async def _call_model(self, prompt: str, image_url: str) -> str:
        await self.rate_limiter.wait_for_slot()
        logger.info(f"Calling {self.settings.vision_model} for bank statement OCR")
        response = await self._get_client().chat.completions.create(
            model=self.settings.vision_model,
            messages=[
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": prompt},
                        {"type": "image_url", "image_url": {"url": image_url}},
                    ],
                }
            ],
            max_tokens=self.settings.vision_max_tokens,
            temperature=0,
        )
        return response.choices[0].message.content or ""

    async def extract(self, image_bytes: bytes, context: AdapterContext) -> AdapterResult:
        if not self.is_available():
            return AdapterResult.stub(
                self.engine_name, "OPENAI_API_KEY environment variable not set", "unavailable"
            )

        prompt = build_prompt(context.hints)
        image_url = image_data_url(image_bytes)
        content = await retry_with_backoff(
            lambda: self._call_model(prompt, image_url), self.retry_options
        )

        try:
            payload = parse_json_response(content)
        except json.JSONDecodeError as e:
            logger.warning(f"Failed to parse JSON from vision response: {e}")
            return AdapterResult.stub(
                self.engine_name, f"JSON parsing failed: {e}", "execution_failed"
            )

        reported = OcrRecord.model_validate(
            {**payload, "engine": self.engine_name, "rawText": content}
        )
        record = demote_untrusted(reported)
        if record.confidence != reported.confidence:
            logger.info(
                f"Vision OCR: demoted {reported.confidence.value} confidence to low "
                f"(isBankStatement={record.is_bank_statement}, isPaid={record.is_paid})"
            )
        confidence = CONFIDENCE_SCORES[record.confidence]
        logger.info(
            f"Vision OCR complete: bank={record.bank_name}, confidence={record.confidence.value}"
        )
        return AdapterResult(
            engine=self.engine_name,
            success=True,
            confidence=confidence,
            text=content,
            record=record,
        )
