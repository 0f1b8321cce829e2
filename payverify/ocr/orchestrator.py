"""Multi-engine OCR orchestration.

Runs the adapters picked by the bank-detection strategy concurrently under
one overall deadline, escalates to the hosted vision engine when Khmer script
dominates or the local engines fall short, then fuses everything into a
single record.
"""

import asyncio
import io
import logging
from collections import Counter

from PIL import Image

from payverify.ocr.bank_detector import Strategy, detect_bank, select_strategy
from payverify.ocr.base import (
    AdapterContext,
    AdapterKind,
    AdapterResult,
    InvalidImageError,
    OcrAdapter,
)
from payverify.ocr.factory import create_ocr_adapters
from payverify.ocr.fusion import FusedOcrResult, fuse_results
from payverify.ocr.language import ScriptAnalysis, analyze_script
from payverify.ocr.schema import Confidence
from payverify.shared import metrics
from payverify.shared.config import Settings
from payverify.shared.ratelimit import RateLimiter

logger = logging.getLogger(__name__)


def validate_image(image_bytes: bytes) -> None:
    """Reject empty or undecodable image bytes.

    Raises:
        InvalidImageError: If the bytes are not a readable image
    """
    if not image_bytes:
        raise InvalidImageError("Image is empty")
    try:
        with Image.open(io.BytesIO(image_bytes)) as image:
            image.verify()
    except (OSError, SyntaxError, ValueError) as e:
        raise InvalidImageError(f"Unreadable image: {e}") from e


class OcrOrchestrator:
    """Coordinates OCR adapters for one image at a time.

    Adapters are grouped by cost tier. Local (structured and general) engines
    run first; the hosted engine is reserved for Khmer-dominant text and
    fallback, and runs at most once per image.
    """

    def __init__(
        self,
        settings: Settings,
        adapters: list[OcrAdapter] | None = None,
        rate_limiter: RateLimiter | None = None,
    ) -> None:
        """Initialize orchestrator.

        Args:
            settings: Application settings
            adapters: Adapters to coordinate (built from settings if omitted)
            rate_limiter: Limiter shared with the hosted engine
        """
        self.settings = settings
        self.rate_limiter = rate_limiter or RateLimiter(settings.ocr_rate_limit_per_minute)
        self.adapters = (
            adapters if adapters is not None else create_ocr_adapters(settings, self.rate_limiter)
        )
        self._total_requests = 0
        self._successful_extractions = 0
        self._engine_usage: Counter[str] = Counter()

    def _by_kind(self, kind: AdapterKind) -> list[OcrAdapter]:
        return [adapter for adapter in self.adapters if adapter.kind == kind]

    def select_adapters(self, strategy: Strategy) -> list[OcrAdapter]:
        """Local adapters to run first for a strategy tier.

        TEMPLATE runs the structured engine plus one general engine, MODERATE
        runs the structured engine plus every general engine, and GENERAL runs
        the general engines alone (the structured engine if there are none).
        """
        structured = self._by_kind(AdapterKind.STRUCTURED)
        general = self._by_kind(AdapterKind.GENERAL)

        if strategy == Strategy.TEMPLATE and structured:
            return structured + general[:1]
        if strategy in (Strategy.TEMPLATE, Strategy.MODERATE):
            return structured + general
        return general or structured

    async def _run_adapters(
        self,
        adapters: list[OcrAdapter],
        image_bytes: bytes,
        context: AdapterContext,
        timeout: float,
    ) -> list[AdapterResult]:
        """Run adapters concurrently, abandoning any still running at ``timeout``."""
        if not adapters:
            return []

        tasks = {
            asyncio.create_task(adapter.run(image_bytes, context)): adapter for adapter in adapters
        }
        done, pending = await asyncio.wait(tasks, timeout=timeout)

        results = [task.result() for task in done]
        for task in pending:
            task.cancel()
            engine = tasks[task].engine_name
            logger.warning(f"{engine} abandoned at overall OCR deadline")
            results.append(
                AdapterResult.stub(engine, "Abandoned at overall OCR deadline", "timeout")
            )
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        for result in results:
            self._engine_usage[result.engine] += 1
        return results

    def _fallback_reason(
        self, fused: FusedOcrResult, script: ScriptAnalysis, local_ran: bool
    ) -> str | None:
        if self.settings.vision_for_khmer and script.khmer_dominant:
            return "khmer_dominant"
        if not self.settings.vision_fallback_enabled:
            return None
        if not local_ran:
            return "no_local_engines"
        if fused.primary_engine is None:
            return "all_engines_failed"
        if not fused.success:
            return "below_combined_threshold"
        if fused.record.confidence != Confidence.HIGH:
            return "primary_not_high"
        return None

    def _fuse(self, results: list[AdapterResult]) -> FusedOcrResult:
        return fuse_results(
            results,
            weights=self.settings.engine_weights,
            thresholds=self.settings.engine_thresholds,
            combined_threshold=self.settings.combined_threshold,
        )

    async def process(self, image_bytes: bytes, bank_hint: str | None = None) -> FusedOcrResult:
        """Extract one payment record from a screenshot.

        Never raises for engine failures: a crashed or slow engine becomes a
        zero-confidence stub, and if every engine fails the result carries a
        FAILED record.

        Args:
            image_bytes: Encoded screenshot
            bank_hint: Bank name supplied by the caller, if known

        Returns:
            FusedOcrResult with the primary record, fused confidence,
            strategy, script analysis and fallback reasons

        Raises:
            InvalidImageError: If the image is empty or undecodable
        """
        validate_image(image_bytes)
        self._total_requests += 1

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.settings.ocr_deadline_seconds

        detection = detect_bank(bank_hint)
        strategy = select_strategy(detection, self.settings.template_confidence_threshold)
        context = AdapterContext(bank_hint=detection.bank or bank_hint)

        local = self.select_adapters(strategy)
        engine_names = ", ".join(a.engine_name for a in local) or "no local engines"
        logger.info(f"OCR strategy {strategy.value}: running {engine_names}")
        results = await self._run_adapters(
            local, image_bytes, context, self.settings.ocr_deadline_seconds
        )

        script = analyze_script("\n".join(r.text for r in results if r.text))
        fused = self._fuse(results)
        fallback_reasons: list[str] = []

        hosted = self._by_kind(AdapterKind.HOSTED)
        reason = self._fallback_reason(fused, script, local_ran=bool(local))
        if hosted and reason:
            remaining = deadline - loop.time()
            if remaining <= 0:
                fallback_reasons.append("deadline_exceeded")
                logger.warning(f"Skipping vision fallback ({reason}): OCR deadline exceeded")
            else:
                fallback_reasons.append(reason)
                metrics.ocr_fallbacks_total.labels(reason=reason).inc()
                logger.info(f"Escalating to {hosted[0].engine_name}: {reason}")
                hints = {r.engine: r.text for r in results if r.text}
                vision_context = context.model_copy(update={"hints": hints})
                results += await self._run_adapters(
                    hosted[:1], image_bytes, vision_context, remaining
                )
                fused = self._fuse(results)

        if fused.success:
            self._successful_extractions += 1
        metrics.ocr_fused_confidence.observe(fused.confidence)

        return fused.model_copy(
            update={
                "strategy": strategy.value,
                "script": script.primary,
                "fallback_reasons": fallback_reasons,
            }
        )

    def health(self) -> dict[str, object]:
        """Report availability of every configured engine."""
        engines = {adapter.engine_name: adapter.is_available() for adapter in self.adapters}
        return {
            "status": "healthy" if any(engines.values()) else "unhealthy",
            "engines": engines,
        }

    def stats(self) -> dict[str, object]:
        """Request counters since construction."""
        success_rate = 0.0
        if self._total_requests:
            success_rate = self._successful_extractions / self._total_requests * 100
        return {
            "total_requests": self._total_requests,
            "successful_extractions": self._successful_extractions,
            "success_rate": round(success_rate, 2),
            "engine_usage": dict(self._engine_usage),
        }
