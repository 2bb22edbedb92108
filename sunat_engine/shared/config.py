"""Shared configuration management for the engine.

Based on Pydantic Settings v2 best practices:
https://docs.pydantic.dev/latest/concepts/pydantic_settings/
"""

from decimal import Decimal
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with environment variable support.

    All settings can be overridden via environment variables with the prefix 'APP_'.
    Example: APP_LOG_LEVEL=debug

    SUNAT credentials arrive already decrypted; decryption belongs to the
    credential store that provisions the environment.
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

    # Service configuration
    service_name: str = Field(
        default="sunat-invoice-engine",
        description="Service identifier for metrics and logs",
    )
    service_version: str = Field(
        default="0.1.0",
        description="Service version",
    )

    # OCR configuration
    ocr_language: str = Field(
        default="spa",
        description="Tesseract language pack used for word detection",
    )
    line_merge_threshold_px: float = Field(
        default=3.0,
        ge=0,
        description=(
            "Maximum vertical distance (pixels) between consecutive words on the same line. "
            "Kept well below a full line height so dense invoice tables stay split."
        ),
    )

    # Extraction configuration
    local_currency: Literal["PEN", "USD"] = Field(
        default="PEN",
        description="Currency assumed when the document shows no currency marker",
    )
    valid_tax_rates: list[int] = Field(
        default=[10, 18],
        description="IGV rates accepted when the rate is inferred from amounts",
    )
    amount_tolerance: Decimal = Field(
        default=Decimal("1.00"),
        ge=0,
        description="Absolute tolerance for subtotal + tax == total",
    )
    coherence_policy: Literal["keep_extracted", "derive_tax_from_total"] = Field(
        default="keep_extracted",
        description=(
            "What to do when subtotal + tax disagrees with an anchored total: "
            "keep_extracted (log only) or derive_tax_from_total"
        ),
    )

    # SUNAT authority configuration
    sunat_client_id: str = Field(
        default="",
        description="SUNAT API client id (use env var APP_SUNAT_CLIENT_ID)",
    )
    sunat_client_secret: str = Field(
        default="",
        description="SUNAT API client secret (use env var APP_SUNAT_CLIENT_SECRET)",
    )
    sunat_ruc: str = Field(
        default="",
        description="RUC of the organization issuing the queries",
    )
    sunat_token_url: str = Field(
        default="https://api-seguridad.sunat.gob.pe/v1/clientesextranet/{client_id}/oauth2/token/",
        description="OAuth2 token endpoint template ({client_id} is substituted)",
    )
    sunat_api_base_url: str = Field(
        default="https://api.sunat.gob.pe/v1",
        description="SUNAT API base URL",
    )
    sunat_scope: str = Field(
        default="https://api.sunat.gob.pe/v1/contribuyente/contribuyentes",
        description="OAuth2 scope requested in the client-credentials exchange",
    )
    sunat_request_timeout: float = Field(
        default=30.0,
        gt=0,
        description="Timeout in seconds for every SUNAT HTTP request",
    )
    sunat_token_safety_margin: int = Field(
        default=300,
        ge=0,
        description="Seconds subtracted from the token lifetime before it is refreshed",
    )

    # Validation configuration
    validation_max_attempts: int = Field(
        default=3,
        ge=1,
        description="Maximum validation queries per document (exact + perturbations)",
    )

    # Batch configuration
    batch_pause_seconds: float = Field(
        default=0.5,
        ge=0,
        description="Pause between documents to respect SUNAT rate limits",
    )


def get_settings() -> Settings:
    """Factory function to get settings instance.

    Returns:
        Configured Settings instance
    """
    return Settings()
