"""Unit tests for the OCR adapter registry and factory."""

from unittest.mock import patch

import pytest

from payverify.ocr.base import AdapterContext, AdapterResult, OcrAdapter
from payverify.ocr.easyocr_adapter import EasyOcrAdapter
from payverify.ocr.factory import AdapterRegistry, create_ocr_adapters, enabled_engines
from payverify.ocr.paddle_adapter import PaddleOcrAdapter
from payverify.ocr.tesseract_adapter import TesseractOcrAdapter
from payverify.ocr.vision_adapter import VisionOcrAdapter
from payverify.shared.config import Settings
from payverify.shared.ratelimit import RateLimiter


class DummyAdapter(OcrAdapter):
    """Minimal adapter used for registration tests."""

    @property
    def engine_name(self) -> str:
        return "dummy"

    def is_available(self) -> bool:
        return True

    async def extract(self, image_bytes: bytes, context: AdapterContext) -> AdapterResult:
        return AdapterResult.stub(self.engine_name, "dummy", "no_text")


class TestAdapterRegistry:
    """Test AdapterRegistry lookups."""

    @pytest.mark.parametrize(
        ("name", "adapter_class"),
        [
            ("paddle", PaddleOcrAdapter),
            ("tesseract", TesseractOcrAdapter),
            ("easyocr", EasyOcrAdapter),
            ("vision", VisionOcrAdapter),
        ],
    )
    def test_builtin_adapters(self, name: str, adapter_class: type[OcrAdapter]) -> None:
        """Built-in engines resolve to their classes."""
        assert AdapterRegistry.get_adapter_class(name) is adapter_class

    def test_unknown_engine(self) -> None:
        """Unknown names raise with the available list."""
        with pytest.raises(ValueError, match="Unknown OCR engine: 'abbyy'"):
            AdapterRegistry.get_adapter_class("abbyy")

    def test_register(self) -> None:
        """New engines can be registered at run time."""
        with patch.dict(AdapterRegistry._adapters):
            AdapterRegistry.register("dummy", DummyAdapter)

            assert AdapterRegistry.get_adapter_class("dummy") is DummyAdapter
            assert "dummy" in AdapterRegistry.list_adapters()

        assert "dummy" not in AdapterRegistry.list_adapters()


class TestCreateOcrAdapters:
    """Test create_ocr_adapters."""

    def test_enabled_engines_default(self) -> None:
        """EasyOCR is off by default."""
        assert enabled_engines(Settings(_env_file=None)) == ["paddle", "tesseract", "vision"]

    def test_creates_enabled_adapters_in_cost_order(self) -> None:
        """One adapter per enabled engine, sharing the given rate limiter."""
        settings = Settings(_env_file=None, easyocr_enabled=True)
        limiter = RateLimiter(5)

        with (
            patch.object(PaddleOcrAdapter, "is_available", return_value=True),
            patch.object(TesseractOcrAdapter, "is_available", return_value=True),
            patch.object(EasyOcrAdapter, "is_available", return_value=True),
            patch.object(VisionOcrAdapter, "is_available", return_value=True),
        ):
            adapters = create_ocr_adapters(settings, rate_limiter=limiter)

        assert [a.engine_name for a in adapters] == ["paddle", "tesseract", "easyocr", "vision"]
        vision = adapters[-1]
        assert isinstance(vision, VisionOcrAdapter)
        assert vision.rate_limiter is limiter

    def test_unavailable_engines_are_kept(self, caplog: pytest.LogCaptureFixture) -> None:
        """Engines with missing prerequisites stay and log a warning."""
        settings = Settings(_env_file=None, paddle_enabled=False, vision_enabled=False)

        with patch.object(TesseractOcrAdapter, "is_available", return_value=False):
            adapters = create_ocr_adapters(settings)

        assert [a.engine_name for a in adapters] == ["tesseract"]
        assert "not fully available" in caplog.text

    def test_all_disabled(self) -> None:
        """No enabled engines yields an empty list."""
        settings = Settings(
            _env_file=None, paddle_enabled=False, tesseract_enabled=False, vision_enabled=False
        )

        assert create_ocr_adapters(settings) == []
