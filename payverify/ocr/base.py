"""Abstract base class for OCR engine adapters.

Enables switching between text-extraction backends (PaddleOCR, Tesseract,
EasyOCR, hosted vision model) behind one interface so the orchestrator holds
a plain list of adapters and never inspects concrete types.

Based on Strategy Pattern:
https://refactoring.guru/design-patterns/strategy/python
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from enum import Enum

from pydantic import BaseModel, Field

from payverify.ocr.parser import PaymentTextParser
from payverify.ocr.schema import OcrRecord
from payverify.shared import metrics
from payverify.shared.config import Settings

logger = logging.getLogger(__name__)


class InvalidImageError(ValueError):
    """Raised for empty or undecodable image input."""


class AdapterKind(str, Enum):
    """Cost tier of an adapter, used for strategy selection."""

    STRUCTURED = "structured"
    GENERAL = "general"
    HOSTED = "hosted"


class AdapterContext(BaseModel):
    """Per-call inputs beyond the image bytes.

    Attributes:
        bank_hint: Bank name supplied by the caller or the bank detector
        hints: Text extracted by other engines, keyed by engine name
    """

    bank_hint: str | None = None
    hints: dict[str, str] = Field(default_factory=dict)


class AdapterResult(BaseModel):
    """Result of one adapter invocation.

    Attributes:
        engine: Name of the adapter that produced the result
        success: Whether the engine ran to completion
        confidence: Engine confidence on a 0-1 scale (0 for stubs)
        text: Raw text extracted by the engine
        record: Structured payment fields parsed from the text
        error: Error message if the engine failed
        error_type: timeout, execution_failed, unavailable or no_text
        duration_seconds: Wall time spent in the engine
    """

    engine: str
    success: bool
    confidence: float = Field(default=0.0, ge=0, le=1)
    text: str = ""
    record: OcrRecord | None = None
    error: str | None = None
    error_type: str | None = None
    duration_seconds: float = 0.0

    @classmethod
    def stub(cls, engine: str, error: str, error_type: str) -> "AdapterResult":
        """Zero-confidence placeholder for a failed engine."""
        return cls(engine=engine, success=False, confidence=0.0, error=error, error_type=error_type)


class OcrAdapter(ABC):
    """Abstract base class for OCR engine adapters.

    Subclasses implement ``extract``; callers use ``run``, which applies the
    adapter timeout and converts every failure into a zero-confidence stub.
    """

    kind: AdapterKind = AdapterKind.GENERAL

    def __init__(self, settings: Settings, timeout_seconds: float = 30.0) -> None:
        """Initialize adapter with settings.

        Args:
            settings: Application settings
            timeout_seconds: Per-call timeout applied by ``run``
        """
        self.settings = settings
        self.timeout_seconds = timeout_seconds
        self.parser = PaymentTextParser()

    def text_result(self, text: str, confidence: float, context: AdapterContext) -> AdapterResult:
        """Build a result from raw engine text, parsing payment fields.

        Args:
            text: Text returned by the engine
            confidence: Engine confidence (0-1), clamped into range
            context: Call context carrying the bank hint

        Returns:
            Successful AdapterResult, or a ``no_text`` stub for blank text
        """
        if not text or not text.strip():
            return AdapterResult.stub(self.engine_name, "No text extracted", "no_text")
        record = self.parser.parse(text, context.bank_hint, engine=self.engine_name)
        return AdapterResult(
            engine=self.engine_name,
            success=True,
            confidence=min(max(confidence, 0.0), 1.0),
            text=text,
            record=record,
        )

    @property
    @abstractmethod
    def engine_name(self) -> str:
        """Engine identifier used for weights, thresholds and metrics."""

    @abstractmethod
    def is_available(self) -> bool:
        """Check if the engine's prerequisites are installed/configured."""

    @abstractmethod
    async def extract(self, image_bytes: bytes, context: AdapterContext) -> AdapterResult:
        """Extract text and payment fields from an image.

        Args:
            image_bytes: Encoded image (PNG, JPEG, ...)
            context: Bank hint and other engines' text

        Returns:
            AdapterResult for this engine
        """

    async def run(self, image_bytes: bytes, context: AdapterContext) -> AdapterResult:
        """Call ``extract`` under the adapter timeout, never raising."""
        start = time.perf_counter()
        try:
            result = await asyncio.wait_for(
                self.extract(image_bytes, context), timeout=self.timeout_seconds
            )
        except TimeoutError:
            logger.warning(f"{self.engine_name} timed out after {self.timeout_seconds}s")
            result = AdapterResult.stub(
                self.engine_name, f"Timed out after {self.timeout_seconds}s", "timeout"
            )
        except Exception as e:
            logger.error(f"{self.engine_name} failed: {e}")
            result = AdapterResult.stub(self.engine_name, str(e), "execution_failed")

        duration = time.perf_counter() - start
        result = result.model_copy(update={"duration_seconds": duration})

        metrics.ocr_engine_duration_seconds.labels(engine=self.engine_name).observe(duration)
        metrics.ocr_engine_requests_total.labels(
            engine=self.engine_name, status="success" if result.success else "failed"
        ).inc()
        return result
