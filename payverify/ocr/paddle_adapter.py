"""PaddleOCR structured engine adapter.

Fast local engine tried first. The model is loaded lazily on first use and
inference runs in a worker thread so the event loop stays free.

Based on PaddleOCR v3.x:
https://github.com/PaddlePaddle/PaddleOCR
"""

import asyncio
import logging
import os
import tempfile
from pathlib import Path

from payverify.ocr.base import AdapterContext, AdapterKind, AdapterResult, OcrAdapter
from payverify.shared.config import Settings

logger = logging.getLogger(__name__)


class PaddleOcrAdapter(OcrAdapter):
    """Structured engine backed by PaddleOCR."""

    kind = AdapterKind.STRUCTURED

    def __init__(self, settings: Settings) -> None:
        """Initialize PaddleOCR adapter.

        Args:
            settings: Application settings
        """
        super().__init__(settings, timeout_seconds=settings.paddle_timeout_seconds)
        self._ocr: object | None = None  # Lazy loading (PaddleOCR instance)
        os.environ.setdefault("DISABLE_MODEL_SOURCE_CHECK", "True")

    @property
    def engine_name(self) -> str:
        return "paddle"

    def _get_ocr(self) -> object:
        """Get or initialize the PaddleOCR instance (lazy loading)."""
        if self._ocr is None:
            try:
                from paddleocr import PaddleOCR

                logger.info(f"Initializing PaddleOCR engine (lang={self.settings.paddle_lang})...")
                self._ocr = PaddleOCR(lang=self.settings.paddle_lang)
                logger.info("PaddleOCR initialized successfully")
            except ImportError as e:
                raise ImportError(
                    "PaddleOCR not installed. Install with: pip install paddlepaddle paddleocr"
                ) from e
        return self._ocr

    def is_available(self) -> bool:
        """Check if PaddleOCR can be imported."""
        try:
            from paddleocr import PaddleOCR  # noqa: F401

            return True
        except ImportError:
            return False

    def _recognize(self, image_bytes: bytes) -> tuple[str, float]:
        ocr = self._get_ocr()
        with tempfile.TemporaryDirectory() as workdir:
            image_path = Path(workdir) / "screenshot.png"
            image_path.write_bytes(image_bytes)
            result = ocr.ocr(str(image_path))  # type: ignore[attr-defined]

        if not result or not result[0]:
            return "", 0.0

        page = result[0]
        texts = page.get("rec_texts", [])
        scores = page.get("rec_scores", [])
        avg_confidence = sum(scores) / len(scores) if scores else 0.0
        return "\n".join(texts), avg_confidence

    async def extract(self, image_bytes: bytes, context: AdapterContext) -> AdapterResult:
        if not self.is_available():
            return AdapterResult.stub(self.engine_name, "PaddleOCR not installed", "unavailable")

        text, confidence = await asyncio.to_thread(self._recognize, image_bytes)
        logger.info(f"PaddleOCR extracted {len(text)} chars (confidence {confidence:.2f})")
        return self.text_result(text, confidence, context)
