from functools import lru_cache

from pydantic import Field, AliasChoices
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Read env from container + optionally from files
    model_config = SettingsConfigDict(
        env_file=(".env", ".env.docker"),
        extra="ignore",
        case_sensitive=False,
    )

    # App
    ENVIRONMENT: str = Field(default="development", validation_alias=AliasChoices("ENVIRONMENT", "environment"))
    APP_NAME: str = Field(default="itr_filing_engine", validation_alias=AliasChoices("APP_NAME", "app_name"))
    LOG_LEVEL: str = Field(default="INFO", validation_alias=AliasChoices("LOG_LEVEL", "log_level"))
    DEBUG: bool = Field(default=False, validation_alias=AliasChoices("DEBUG", "debug"))

    # Infrastructure (empty -> in-memory filing repository)
    DATABASE_URL: str = Field(default="", validation_alias=AliasChoices("DATABASE_URL", "database_url"))

    # E-filing gateway
    EFILING_GATEWAY_BASE_URL: str = Field(
        default="https://sandbox.efiling.example.in",
        validation_alias=AliasChoices("EFILING_GATEWAY_BASE_URL", "efiling_gateway_base_url"),
    )
    EFILING_GATEWAY_API_KEY: str = Field(default="", validation_alias=AliasChoices("EFILING_GATEWAY_API_KEY", "efiling_gateway_api_key"))
    EFILING_GATEWAY_TIMEOUT_SECONDS: float = Field(
        default=30.0,
        validation_alias=AliasChoices("EFILING_GATEWAY_TIMEOUT_SECONDS", "efiling_gateway_timeout_seconds"),
    )

    # Submission retry budget
    SUBMISSION_MAX_ATTEMPTS: int = Field(default=3, validation_alias=AliasChoices("SUBMISSION_MAX_ATTEMPTS", "submission_max_attempts"))
    SUBMISSION_BACKOFF_SECONDS: float = Field(
        default=2.0,
        validation_alias=AliasChoices("SUBMISSION_BACKOFF_SECONDS", "submission_backoff_seconds"),
    )

    # Reconciliation of multi-source facts
    DISCREPANCY_ABSOLUTE_TOLERANCE: float = Field(
        default=1.0,
        validation_alias=AliasChoices("DISCREPANCY_ABSOLUTE_TOLERANCE", "discrepancy_absolute_tolerance"),
    )
    DISCREPANCY_RELATIVE_TOLERANCE_PCT: float = Field(
        default=2.0,
        validation_alias=AliasChoices("DISCREPANCY_RELATIVE_TOLERANCE_PCT", "discrepancy_relative_tolerance_pct"),
    )
    DISCREPANCY_MATERIAL_THRESHOLD_PCT: float = Field(
        default=10.0,
        validation_alias=AliasChoices("DISCREPANCY_MATERIAL_THRESHOLD_PCT", "discrepancy_material_threshold_pct"),
    )
    AGGREGATED_STATEMENT_BASELINE_CONFIDENCE: float = Field(
        default=0.95,
        validation_alias=AliasChoices("AGGREGATED_STATEMENT_BASELINE_CONFIDENCE", "aggregated_statement_baseline_confidence"),
    )

    # Optional JSON file with per-assessment-year slab overrides
    TAX_RATE_OVERRIDES_PATH: str = Field(default="", validation_alias=AliasChoices("TAX_RATE_OVERRIDES_PATH", "tax_rate_overrides_path"))


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
