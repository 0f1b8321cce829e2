"""Tesseract general engine adapter.

Based on pytesseract documentation:
https://github.com/madmaze/pytesseract
"""

import asyncio
import io
import logging
import os
import shutil

import pytesseract
from PIL import Image

from payverify.ocr.base import AdapterContext, AdapterResult, OcrAdapter
from payverify.shared.config import Settings

logger = logging.getLogger(__name__)

# Uniform block of text, keep spacing between words
TESSERACT_CONFIG = "--psm 6 -c preserve_interword_spaces=1"


class TesseractOcrAdapter(OcrAdapter):
    """General engine backed by the Tesseract binary."""

    def __init__(self, settings: Settings) -> None:
        """Initialize Tesseract adapter.

        Allows overriding the Tesseract binary via the TESSERACT_CMD
        environment variable.

        Args:
            settings: Application settings
        """
        super().__init__(settings, timeout_seconds=settings.tesseract_timeout_seconds)
        tesseract_cmd = os.getenv("TESSERACT_CMD")
        if tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = tesseract_cmd

    @property
    def engine_name(self) -> str:
        return "tesseract"

    def is_available(self) -> bool:
        """Check if the tesseract binary is on PATH (or configured)."""
        return shutil.which(pytesseract.pytesseract.tesseract_cmd) is not None

    def _recognize(self, image_bytes: bytes) -> tuple[str, float]:
        with Image.open(io.BytesIO(image_bytes)) as image:
            lang = self.settings.tesseract_lang
            text = pytesseract.image_to_string(image, lang=lang, config=TESSERACT_CONFIG)
            data = pytesseract.image_to_data(
                image, lang=lang, config=TESSERACT_CONFIG, output_type=pytesseract.Output.DICT
            )

        # Tesseract reports -1 for non-word boxes
        word_scores = [float(conf) for conf in data.get("conf", []) if float(conf) >= 0]
        confidence = sum(word_scores) / len(word_scores) / 100 if word_scores else 0.0
        return text, confidence

    async def extract(self, image_bytes: bytes, context: AdapterContext) -> AdapterResult:
        text, confidence = await asyncio.to_thread(self._recognize, image_bytes)
        logger.info(f"Tesseract extracted {len(text)} chars (confidence {confidence:.2f})")
        return self.text_result(text, confidence, context)
