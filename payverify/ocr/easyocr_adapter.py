"""EasyOCR microservice adapter.

EasyOCR runs as a separate HTTP service (default localhost:8867) exposing
``POST /extract`` and ``GET /health``. Good for mixed Latin/Khmer screenshots.
"""

import base64
import logging

import httpx

from payverify.ocr.base import AdapterContext, AdapterResult, OcrAdapter
from payverify.shared.config import Settings

logger = logging.getLogger(__name__)


class EasyOcrAdapter(OcrAdapter):
    """General engine backed by the EasyOCR HTTP service."""

    def __init__(self, settings: Settings, client: httpx.AsyncClient | None = None) -> None:
        """Initialize EasyOCR adapter.

        Args:
            settings: Application settings
            client: Optional shared HTTP client (created per call if omitted)
        """
        super().__init__(settings, timeout_seconds=settings.easyocr_timeout_seconds)
        self._base_url = settings.easyocr_url.rstrip("/")
        self._client = client

    @property
    def engine_name(self) -> str:
        return "easyocr"

    def is_available(self) -> bool:
        """Check if the EasyOCR service answers its health endpoint."""
        try:
            response = httpx.get(f"{self._base_url}/health", timeout=5.0)
            return response.status_code == 200
        except httpx.HTTPError:
            return False

    async def _post(self, payload: dict[str, object]) -> httpx.Response:
        if self._client is not None:
            return await self._client.post(f"{self._base_url}/extract", json=payload)
        async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
            return await client.post(f"{self._base_url}/extract", json=payload)

    async def extract(self, image_bytes: bytes, context: AdapterContext) -> AdapterResult:
        payload = {
            "image": base64.b64encode(image_bytes).decode("ascii"),
            "preprocessing": True,
            "detail": 1,
        }
        response = await self._post(payload)
        response.raise_for_status()
        data = response.json()

        text = data.get("text") or ""
        confidence = float(data.get("confidence") or 0.0)
        # Service reports percentages
        if confidence > 1:
            confidence /= 100

        logger.info(f"EasyOCR extracted {len(text)} chars (confidence {confidence:.2f})")
        return self.text_result(text, confidence, context)
