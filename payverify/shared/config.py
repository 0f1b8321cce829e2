"""Shared configuration management for payment verification.

Based on Pydantic Settings v2 best practices:
https://docs.pydantic.dev/latest/concepts/pydantic_settings/
"""

import logging
from typing import Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

KNOWN_ENGINES = ("paddle", "tesseract", "easyocr", "vision")


class Settings(BaseSettings):
    """Application settings with environment variable support.

    All settings can be overridden via environment variables with the prefix 'APP_'.
    Example: APP_MAX_SCREENSHOT_AGE_DAYS=3
    """

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    environment: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Deployment environment",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging level",
    )
    service_name: str = Field(
        default="payment-verifier",
        description="Service identifier for metrics and logs",
    )
    service_version: str = Field(
        default="0.1.0",
        description="Service version",
    )

    # OCR engines
    paddle_enabled: bool = Field(
        default=True,
        description="Run the PaddleOCR structured engine (requires paddleocr)",
    )
    paddle_lang: str = Field(default="en", description="PaddleOCR recognition language")
    paddle_timeout_seconds: float = Field(default=30.0, gt=0)

    tesseract_enabled: bool = Field(
        default=True,
        description="Run the Tesseract general engine (requires tesseract binary)",
    )
    tesseract_lang: str = Field(default="eng", description="Tesseract language pack(s)")
    tesseract_timeout_seconds: float = Field(default=30.0, gt=0)

    easyocr_enabled: bool = Field(
        default=False,
        description="Call the EasyOCR microservice",
    )
    easyocr_url: str = Field(
        default="http://localhost:8867",
        description="EasyOCR microservice base URL",
    )
    easyocr_timeout_seconds: float = Field(default=30.0, gt=0)

    vision_enabled: bool = Field(
        default=True,
        description="Allow the hosted vision-language engine (requires OPENAI_API_KEY)",
    )
    vision_model: str = Field(default="gpt-4o", description="Hosted vision model name")
    vision_timeout_seconds: float = Field(default=60.0, gt=0)
    vision_max_tokens: int = Field(default=1500, gt=0)

    # Orchestration
    ocr_deadline_seconds: float = Field(
        default=90.0,
        gt=0,
        description="Overall deadline for one multi-engine extraction",
    )
    engine_weights: dict[str, float] = Field(
        default={"paddle": 0.4, "easyocr": 0.3, "tesseract": 0.3, "vision": 0.3},
        description="Fusion weight per engine",
    )
    engine_thresholds: dict[str, float] = Field(
        default={"paddle": 0.6, "easyocr": 0.5, "tesseract": 0.7, "vision": 0.5},
        description="Minimum confidence (0-1) an engine must reach to contribute to fusion",
    )
    combined_threshold: float = Field(
        default=0.6,
        ge=0,
        le=1,
        description="Fused confidence required to declare extraction successful",
    )
    template_confidence_threshold: float = Field(
        default=0.6,
        ge=0,
        le=1,
        description="Bank detection confidence above which the template strategy is used",
    )
    vision_for_khmer: bool = Field(
        default=True,
        description="Invoke the hosted engine when Khmer script dominates the extracted text",
    )
    vision_fallback_enabled: bool = Field(
        default=True,
        description="Invoke the hosted engine when local engines fall below the threshold",
    )

    # Hosted engine quota
    ocr_rate_limit_per_minute: int = Field(default=10, gt=0)
    ocr_max_retries: int = Field(default=3, gt=0)
    retry_initial_delay_seconds: float = Field(default=1.0, ge=0)
    retry_max_delay_seconds: float = Field(default=30.0, ge=0)
    retry_backoff_factor: float = Field(default=2.0, ge=1)

    # Verification rules
    max_screenshot_age_days: int = Field(
        default=7,
        ge=0,
        description="Screenshots older than this are rejected as OLD_SCREENSHOT",
    )
    payment_tolerance_percent: float = Field(
        default=5.0,
        ge=0,
        description="Allowed deviation between expected and extracted amount",
    )
    usd_to_khr_rate: float = Field(default=4000.0, gt=0, description="USD to KHR exchange rate")

    # Name Intelligence
    name_match_strict_threshold: int = Field(default=85, ge=0, le=100)
    name_match_gpt_threshold: int = Field(default=70, ge=0, le=100)
    max_levenshtein_distance: int = Field(default=2, ge=0)
    enable_ocr_correction: bool = Field(default=True)
    enable_initial_matching: bool = Field(default=True)

    @field_validator("engine_weights", "engine_thresholds")
    @classmethod
    def _check_engine_map(cls, value: dict[str, float]) -> dict[str, float]:
        for engine, number in value.items():
            if engine not in KNOWN_ENGINES:
                raise ValueError(
                    f"Unknown engine '{engine}'. Available: {', '.join(KNOWN_ENGINES)}"
                )
            if number < 0:
                raise ValueError(f"Engine '{engine}' value must be non-negative, got {number}")
        return value

    @model_validator(mode="after")
    def _check_name_thresholds(self) -> "Settings":
        if self.name_match_gpt_threshold > self.name_match_strict_threshold:
            raise ValueError(
                "name_match_gpt_threshold must not exceed name_match_strict_threshold"
            )
        return self


def get_settings() -> Settings:
    """Factory function to get settings instance.

    Returns:
        Configured Settings instance
    """
    return Settings()


def configure_logging(settings: Settings) -> None:
    """Configure root logging from settings."""
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
