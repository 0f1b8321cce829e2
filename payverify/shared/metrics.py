"""Prometheus metrics for OCR orchestration and verification.

Exposes key metrics for monitoring:
- Per-engine request counts and latency
- Fused confidence distribution and fallback reasons
- Verification outcomes and fraud alerts

Based on Prometheus best practices:
https://prometheus.io/docs/practices/naming/
"""

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest

# OCR engine metrics
ocr_engine_requests_total = Counter(
    "ocr_engine_requests_total",
    "Total OCR engine invocations",
    ["engine", "status"],  # success, failed
)

ocr_engine_duration_seconds = Histogram(
    "ocr_engine_duration_seconds",
    "OCR engine call duration in seconds",
    ["engine"],
    buckets=(0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0),
)

ocr_fused_confidence = Histogram(
    "ocr_fused_confidence",
    "Distribution of fused OCR confidence scores",
    buckets=(0.1, 0.2, 0.3, 0.4, 0.5, 0.6, 0.7, 0.8, 0.9, 1.0),
)

ocr_fallbacks_total = Counter(
    "ocr_fallbacks_total",
    "Total escalations to the hosted vision engine",
    ["reason"],  # khmer_dominant, below_combined_threshold, ...
)

# Verification metrics
verification_outcomes_total = Counter(
    "verification_outcomes_total",
    "Total verification verdicts",
    ["status", "reason"],
)

fraud_alerts_total = Counter(
    "fraud_alerts_total",
    "Total fraud alerts raised",
    ["fraud_type", "severity"],
)

name_match_results_total = Counter(
    "name_match_results_total",
    "Total recipient name matches by match type",
    ["match_type"],
)


def get_metrics() -> tuple[bytes, str]:
    """Generate Prometheus metrics in text format.

    Returns:
        Tuple of (metrics bytes, content type)
    """
    return generate_latest(), CONTENT_TYPE_LATEST
