"""Unit tests for OCR engine adapters.

Engines are mocked at their library boundary (PaddleOCR instance,
pytesseract functions, HTTP client, OpenAI client).
"""

import asyncio
import io
import json
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest
from PIL import Image

from payverify.ocr.base import AdapterContext, AdapterKind, AdapterResult, OcrAdapter
from payverify.ocr.easyocr_adapter import EasyOcrAdapter
from payverify.ocr.paddle_adapter import PaddleOcrAdapter
from payverify.ocr.schema import Confidence, Currency, OcrRecord
from payverify.ocr.tesseract_adapter import TesseractOcrAdapter
from payverify.ocr.vision_adapter import (
    VisionOcrAdapter,
    build_prompt,
    demote_untrusted,
    image_data_url,
    parse_json_response,
)
from payverify.shared.config import Settings
from payverify.shared.ratelimit import RateLimiter

RECEIPT_TEXT = "ACLEDA Bank\nTransfer Successful\nAmount: 50.00 USD\nTransaction ID: TXN998877"


@pytest.fixture
def settings() -> Settings:
    """Create test settings."""
    return Settings(_env_file=None)


@pytest.fixture
def png_bytes() -> bytes:
    """A tiny valid PNG."""
    buffer = io.BytesIO()
    Image.new("RGB", (10, 10), "white").save(buffer, "PNG")
    return buffer.getvalue()


class SlowAdapter(OcrAdapter):
    """Adapter whose extract never finishes in time."""

    @property
    def engine_name(self) -> str:
        return "slow"

    def is_available(self) -> bool:
        return True

    async def extract(self, image_bytes: bytes, context: AdapterContext) -> AdapterResult:
        await asyncio.sleep(10)
        return self.text_result("late", 1.0, context)


class BrokenAdapter(SlowAdapter):
    """Adapter whose extract raises."""

    @property
    def engine_name(self) -> str:
        return "broken"

    async def extract(self, image_bytes: bytes, context: AdapterContext) -> AdapterResult:
        raise RuntimeError("engine crashed")


class TestOcrAdapterBase:
    """Test behaviour shared by every adapter."""

    @pytest.mark.asyncio
    async def test_run_converts_timeout_to_stub(self, settings: Settings) -> None:
        """A slow engine yields a timeout stub instead of raising."""
        adapter = SlowAdapter(settings, timeout_seconds=0.01)

        result = await adapter.run(b"img", AdapterContext())

        assert result.success is False
        assert result.error_type == "timeout"
        assert result.confidence == 0.0
        assert result.duration_seconds > 0

    @pytest.mark.asyncio
    async def test_run_converts_exception_to_stub(self, settings: Settings) -> None:
        """A crashing engine yields an execution_failed stub."""
        adapter = BrokenAdapter(settings)

        result = await adapter.run(b"img", AdapterContext())

        assert result.success is False
        assert result.error_type == "execution_failed"
        assert result.error == "engine crashed"

    def test_text_result_blank_is_no_text(self, settings: Settings) -> None:
        """Blank engine output is a no_text stub."""
        result = SlowAdapter(settings).text_result("  \n", 0.9, AdapterContext())

        assert result.success is False
        assert result.error_type == "no_text"

    def test_text_result_parses_and_clamps(self, settings: Settings) -> None:
        """Engine text is parsed and confidence clamped into 0-1."""
        result = SlowAdapter(settings).text_result(RECEIPT_TEXT, 1.7, AdapterContext())

        assert result.success is True
        assert result.confidence == 1.0
        assert result.record is not None
        assert result.record.bank_name == "ACLEDA"
        assert result.record.engine == "slow"

    def test_text_result_uses_bank_hint(self, settings: Settings) -> None:
        """The context bank hint reaches the parser."""
        context = AdapterContext(bank_hint="wing")

        result = SlowAdapter(settings).text_result("Amount: 5000 KHR", 0.8, context)

        assert result.record is not None
        assert result.record.bank_name == "Wing"

    def test_stub(self) -> None:
        """Stubs have zero confidence and no record."""
        stub = AdapterResult.stub("paddle", "boom", "execution_failed")

        assert stub.confidence == 0.0
        assert stub.record is None
        assert stub.success is False


class TestPaddleOcrAdapter:
    """Test PaddleOcrAdapter."""

    def test_kind_and_name(self, settings: Settings) -> None:
        """Paddle is the structured engine."""
        adapter = PaddleOcrAdapter(settings)

        assert adapter.kind == AdapterKind.STRUCTURED
        assert adapter.engine_name == "paddle"
        assert adapter.timeout_seconds == settings.paddle_timeout_seconds

    def test_lazy_loading(self, settings: Settings) -> None:
        """The model is not loaded at construction."""
        adapter = PaddleOcrAdapter(settings)

        assert adapter._ocr is None

    @pytest.mark.asyncio
    async def test_extract_with_mock(self, settings: Settings, png_bytes: bytes) -> None:
        """Recognized lines are joined and scores averaged."""
        adapter = PaddleOcrAdapter(settings)
        mock_ocr = MagicMock()
        mock_ocr.ocr.return_value = [
            {"rec_texts": RECEIPT_TEXT.split("\n"), "rec_scores": [0.9, 0.95, 0.97, 0.98]}
        ]

        with (
            patch.object(adapter, "is_available", return_value=True),
            patch.object(adapter, "_get_ocr", return_value=mock_ocr),
        ):
            result = await adapter.run(png_bytes, AdapterContext())

        assert result.success is True
        assert result.text == RECEIPT_TEXT
        assert result.confidence == pytest.approx(0.95)
        assert result.record is not None
        assert result.record.currency == Currency.USD

    @pytest.mark.asyncio
    async def test_empty_result_is_no_text(self, settings: Settings, png_bytes: bytes) -> None:
        """An empty page is a no_text stub."""
        adapter = PaddleOcrAdapter(settings)
        mock_ocr = MagicMock()
        mock_ocr.ocr.return_value = [None]

        with (
            patch.object(adapter, "is_available", return_value=True),
            patch.object(adapter, "_get_ocr", return_value=mock_ocr),
        ):
            result = await adapter.run(png_bytes, AdapterContext())

        assert result.error_type == "no_text"

    @pytest.mark.asyncio
    async def test_unavailable(self, settings: Settings, png_bytes: bytes) -> None:
        """Missing package is reported as unavailable."""
        adapter = PaddleOcrAdapter(settings)

        with patch.object(adapter, "is_available", return_value=False):
            result = await adapter.run(png_bytes, AdapterContext())

        assert result.success is False
        assert result.error_type == "unavailable"


class TestTesseractOcrAdapter:
    """Test TesseractOcrAdapter."""

    @pytest.mark.asyncio
    async def test_extract_with_mock(self, settings: Settings, png_bytes: bytes) -> None:
        """Word confidences are averaged, skipping -1 boxes."""
        adapter = TesseractOcrAdapter(settings)

        with (
            patch(
                "payverify.ocr.tesseract_adapter.pytesseract.image_to_string",
                return_value=RECEIPT_TEXT,
            ) as to_string,
            patch(
                "payverify.ocr.tesseract_adapter.pytesseract.image_to_data",
                return_value={"conf": ["95", "-1", "85"]},
            ),
        ):
            result = await adapter.run(png_bytes, AdapterContext())

        assert result.success is True
        assert result.confidence == pytest.approx(0.9)
        assert result.record is not None
        assert result.record.transaction_id == "TXN998877"
        assert to_string.call_args.kwargs["lang"] == "eng"

    @pytest.mark.asyncio
    async def test_invalid_image_fails(self, settings: Settings) -> None:
        """Undecodable bytes become an execution_failed stub."""
        adapter = TesseractOcrAdapter(settings)

        result = await adapter.run(b"not an image", AdapterContext())

        assert result.success is False
        assert result.error_type == "execution_failed"

    def test_is_available_checks_binary(self, settings: Settings) -> None:
        """Availability follows the binary lookup."""
        adapter = TesseractOcrAdapter(settings)

        with patch("payverify.ocr.tesseract_adapter.shutil.which", return_value=None):
            assert adapter.is_available() is False
        with patch(
            "payverify.ocr.tesseract_adapter.shutil.which", return_value="/usr/bin/tesseract"
        ):
            assert adapter.is_available() is True


class TestEasyOcrAdapter:
    """Test EasyOcrAdapter."""

    @staticmethod
    def _response(status: int, body: dict[str, object]) -> httpx.Response:
        request = httpx.Request("POST", "http://localhost:8867/extract")
        return httpx.Response(status, json=body, request=request)

    @pytest.mark.asyncio
    async def test_extract_scales_percent_confidence(
        self, settings: Settings, png_bytes: bytes
    ) -> None:
        """Percent confidences from the service are scaled to 0-1."""
        client = AsyncMock()
        client.post.return_value = self._response(200, {"text": RECEIPT_TEXT, "confidence": 88})
        adapter = EasyOcrAdapter(settings, client=client)

        result = await adapter.run(png_bytes, AdapterContext())

        assert result.success is True
        assert result.confidence == pytest.approx(0.88)
        url = client.post.call_args.args[0]
        payload = client.post.call_args.kwargs["json"]
        assert url == "http://localhost:8867/extract"
        assert payload["image"]
        assert payload["detail"] == 1

    @pytest.mark.asyncio
    async def test_service_error(self, settings: Settings, png_bytes: bytes) -> None:
        """HTTP errors become an execution_failed stub."""
        client = AsyncMock()
        client.post.return_value = self._response(500, {"error": "down"})
        adapter = EasyOcrAdapter(settings, client=client)

        result = await adapter.run(png_bytes, AdapterContext())

        assert result.success is False
        assert result.error_type == "execution_failed"

    def test_is_available_unreachable(self, settings: Settings) -> None:
        """An unreachable service is unavailable."""
        adapter = EasyOcrAdapter(settings)

        with patch(
            "payverify.ocr.easyocr_adapter.httpx.get", side_effect=httpx.ConnectError("refused")
        ):
            assert adapter.is_available() is False


class TestVisionHelpers:
    """Test vision prompt and response helpers."""

    def test_parse_code_block(self) -> None:
        """JSON inside a markdown fence is parsed."""
        assert parse_json_response('```json\n{"isPaid": true}\n```') == {"isPaid": True}

    def test_parse_embedded_object(self) -> None:
        """JSON surrounded by prose is parsed."""
        assert parse_json_response('Here you go: {"amount": 5} done') == {"amount": 5}

    def test_parse_invalid(self) -> None:
        """Non-JSON raises JSONDecodeError."""
        with pytest.raises(json.JSONDecodeError):
            parse_json_response("I cannot read this image")

    def test_build_prompt_appends_hints(self) -> None:
        """Non-empty hints are appended per engine."""
        prompt = build_prompt({"tesseract": "ABA Bank", "paddle": "  "})

        assert "TESSERACT EXTRACTED TEXT (for reference):\nABA Bank" in prompt
        assert "PADDLE EXTRACTED TEXT" not in prompt

    def test_image_data_url(self, png_bytes: bytes) -> None:
        """The data URL carries the detected MIME type."""
        assert image_data_url(png_bytes).startswith("data:image/png;base64,")


class TestVisionOcrAdapter:
    """Test VisionOcrAdapter with a mocked OpenAI client."""

    @staticmethod
    def _client(content: str) -> MagicMock:
        response = MagicMock()
        response.choices = [MagicMock(message=MagicMock(content=content))]
        client = MagicMock()
        client.chat.completions.create = AsyncMock(return_value=response)
        return client

    @pytest.mark.asyncio
    async def test_extract_maps_json_to_record(
        self, settings: Settings, png_bytes: bytes
    ) -> None:
        """The model's JSON becomes an OcrRecord with mapped confidence."""
        content = json.dumps(
            {
                "isBankStatement": True,
                "isPaid": True,
                "amount": -28000,
                "currency": "KHR",
                "toAccount": "012345678",
                "bankName": "ABA Bank",
                "transactionDate": "2026-01-04T13:35:00",
                "confidence": "high",
            }
        )
        client = self._client(f"```json\n{content}\n```")
        adapter = VisionOcrAdapter(settings, rate_limiter=RateLimiter(10), client=client)

        result = await adapter.run(png_bytes, AdapterContext(hints={"tesseract": "ABA Bank"}))

        assert result.success is True
        assert result.confidence == 0.95
        assert result.record is not None
        assert result.record.amount == 28000
        assert result.record.confidence == Confidence.HIGH
        assert result.record.transaction_date_raw == "2026-01-04T13:35:00"
        assert result.record.engine == "vision"

        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "gpt-4o"
        assert kwargs["temperature"] == 0
        prompt = kwargs["messages"][0]["content"][0]["text"]
        assert "TESSERACT EXTRACTED TEXT" in prompt

    @pytest.mark.asyncio
    async def test_unpaid_transfer_demoted_to_low(
        self, settings: Settings, png_bytes: bytes
    ) -> None:
        """A clear but unpaid transfer cannot keep the model's high confidence."""
        content = json.dumps(
            {
                "isBankStatement": True,
                "isPaid": False,
                "amount": 28000,
                "toAccount": "123456789",
                "transactionDate": "2026-01-04T13:35:00",
                "confidence": "high",
            }
        )
        adapter = VisionOcrAdapter(
            settings, rate_limiter=RateLimiter(10), client=self._client(content)
        )

        result = await adapter.run(png_bytes, AdapterContext())

        assert result.success is True
        assert result.record is not None
        assert result.record.confidence == Confidence.LOW
        assert result.confidence == 0.4

    @pytest.mark.asyncio
    async def test_unparseable_response(self, settings: Settings, png_bytes: bytes) -> None:
        """Non-JSON model output is an execution_failed stub."""
        adapter = VisionOcrAdapter(settings, client=self._client("Sorry, I can't help."))

        result = await adapter.run(png_bytes, AdapterContext())

        assert result.success is False
        assert result.error_type == "execution_failed"
        assert "JSON parsing failed" in (result.error or "")

    @pytest.mark.asyncio
    async def test_uses_rate_limiter(self, settings: Settings, png_bytes: bytes) -> None:
        """Every model call first waits for a quota slot."""
        limiter = MagicMock()
        limiter.wait_for_slot = AsyncMock()
        adapter = VisionOcrAdapter(
            settings, rate_limiter=limiter, client=self._client('{"confidence": "low"}')
        )

        result = await adapter.run(png_bytes, AdapterContext())

        limiter.wait_for_slot.assert_awaited_once()
        assert result.confidence == 0.4

    @pytest.mark.asyncio
    async def test_unavailable_without_key(
        self, settings: Settings, png_bytes: bytes, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Without a client or API key the engine is unavailable."""
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        adapter = VisionOcrAdapter(settings)

        result = await adapter.run(png_bytes, AdapterContext())

        assert adapter.kind == AdapterKind.HOSTED
        assert result.error_type == "unavailable"


class TestDemoteUntrusted:
    """Test demote_untrusted."""

    @pytest.mark.parametrize(
        ("is_bank_statement", "is_paid"),
        [(True, False), (False, True), (None, True), (False, False)],
    )
    def test_untrusted_capped_at_low(
        self, is_bank_statement: bool | None, is_paid: bool | None
    ) -> None:
        """Unpaid or non-statement records are demoted to LOW."""
        record = OcrRecord(
            is_bank_statement=is_bank_statement, is_paid=is_paid, confidence=Confidence.HIGH
        )

        assert demote_untrusted(record).confidence == Confidence.LOW

    def test_paid_transfer_kept(self) -> None:
        """A completed transfer keeps the reported confidence."""
        record = OcrRecord(is_bank_statement=True, is_paid=True, confidence=Confidence.MEDIUM)

        assert demote_untrusted(record) is record

    def test_failed_not_promoted(self) -> None:
        """Demotion never raises a FAILED record to LOW."""
        record = OcrRecord(is_bank_statement=True, is_paid=False, confidence=Confidence.FAILED)

        assert demote_untrusted(record).confidence == Confidence.FAILED
