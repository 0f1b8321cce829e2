"""Factory for creating OCR engine adapters based on configuration.

Implements Factory Pattern for adapter selection with registry pattern for
extensibility.

Based on:
- Factory Pattern: https://refactoring.guru/design-patterns/factory-method/python
- Registry Pattern: Python Cookbook 3rd Edition, Recipe 9.22
"""

import logging

from payverify.ocr.base import OcrAdapter
from payverify.ocr.easyocr_adapter import EasyOcrAdapter
from payverify.ocr.paddle_adapter import PaddleOcrAdapter
from payverify.ocr.tesseract_adapter import TesseractOcrAdapter
from payverify.ocr.vision_adapter import VisionOcrAdapter
from payverify.shared.config import Settings
from payverify.shared.ratelimit import RateLimiter

logger = logging.getLogger(__name__)


class AdapterRegistry:
    """Registry of available OCR engine adapters.

    Maps engine names (as used in engine weights/thresholds) to adapter
    classes. Supports runtime registration of new engines.
    """

    _adapters: dict[str, type[OcrAdapter]] = {
        "paddle": PaddleOcrAdapter,
        "tesseract": TesseractOcrAdapter,
        "easyocr": EasyOcrAdapter,
        "vision": VisionOcrAdapter,
    }

    @classmethod
    def register(cls, name: str, adapter_class: type[OcrAdapter]) -> None:
        """Register a new adapter.

        Args:
            name: Engine identifier
            adapter_class: Class implementing OcrAdapter
        """
        cls._adapters[name] = adapter_class
        logger.info(f"Registered OCR adapter: {name}")

    @classmethod
    def get_adapter_class(cls, name: str) -> type[OcrAdapter]:
        """Get adapter class by name.

        Raises:
            ValueError: If adapter not found in registry
        """
        if name not in cls._adapters:
            available = ", ".join(cls._adapters.keys())
            raise ValueError(f"Unknown OCR engine: '{name}'. Available engines: {available}")
        return cls._adapters[name]

    @classmethod
    def list_adapters(cls) -> list[str]:
        return list(cls._adapters.keys())


def enabled_engines(settings: Settings) -> list[str]:
    """Engine names switched on in settings, cheapest first."""
    flags = {
        "paddle": settings.paddle_enabled,
        "tesseract": settings.tesseract_enabled,
        "easyocr": settings.easyocr_enabled,
        "vision": settings.vision_enabled,
    }
    return [name for name, enabled in flags.items() if enabled]


def create_ocr_adapters(
    settings: Settings, rate_limiter: RateLimiter | None = None
) -> list[OcrAdapter]:
    """Create one adapter per enabled engine.

    Logs a warning for engines whose prerequisites are missing; they stay in
    the list and degrade to ``unavailable`` stubs at run time.

    Args:
        settings: Application settings
        rate_limiter: Limiter for the hosted engine quota (created if omitted)

    Returns:
        Adapters in cost order: structured, general, hosted
    """
    adapters: list[OcrAdapter] = []
    for name in enabled_engines(settings):
        adapter_class = AdapterRegistry.get_adapter_class(name)
        if adapter_class is VisionOcrAdapter:
            adapter: OcrAdapter = VisionOcrAdapter(settings, rate_limiter=rate_limiter)
        else:
            adapter = adapter_class(settings)  # type: ignore[call-arg]

        if not adapter.is_available():
            logger.warning(
                f"OCR engine '{name}' is not fully available. "
                f"Check configuration (e.g., API keys, binaries, service URL)."
            )
        adapters.append(adapter)

    logger.info(f"Created OCR adapters: {', '.join(a.engine_name for a in adapters) or 'none'}")
    return adapters
