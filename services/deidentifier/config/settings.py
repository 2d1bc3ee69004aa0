"""Settings definitions for the de-identification service."""

from __future__ import annotations

from enum import Enum
from functools import lru_cache

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class KAnonymityPolicy(str, Enum):
    """How the pipeline reacts to undersized demographic cohorts."""

    REJECT = "reject"
    SUPPRESS = "suppress"


class AppSettings(BaseSettings):
    """Identity of the running service."""

    service_name: str = Field(
        default="deidentifier",
        description="Human friendly identifier used in audit events and logging.",
        validation_alias=AliasChoices("DEIDENTIFIER_SERVICE_NAME", "SERVICE_NAME"),
    )

    model_config = SettingsConfigDict(env_file=".env", extra="ignore", populate_by_name=True)


class LoggingSettings(BaseSettings):
    """Logging configuration for the service."""

    level: str = Field(
        default="info",
        description="Logging verbosity level (e.g. debug, info, warning).",
        validation_alias=AliasChoices("DEIDENTIFIER_LOG_LEVEL", "LOG_LEVEL"),
    )
    json_logs: bool = Field(
        default=True,
        description="Emit structured JSON logs when set to true.",
        validation_alias=AliasChoices("DEIDENTIFIER_LOG_JSON", "LOG_JSON"),
    )

    model_config = SettingsConfigDict(env_file=".env", extra="ignore", populate_by_name=True)


class PipelineSettings(BaseSettings):
    """Configuration driving generalization and release gating."""

    k: int = Field(
        default=5,
        ge=1,
        description="Minimum cohort size required for every released demographic group.",
        validation_alias=AliasChoices("DEIDENTIFIER_K", "KANONYMITY_K"),
    )
    kanonymity_policy: KAnonymityPolicy = Field(
        default=KAnonymityPolicy.REJECT,
        description=(
            "Reject the whole batch on an undersized cohort, or suppress the "
            "records of undersized cohorts and release the rest."
        ),
        validation_alias=AliasChoices(
            "DEIDENTIFIER_KANONYMITY_POLICY", "KANONYMITY_POLICY"
        ),
    )
    hospital_country: str | None = Field(
        default=None,
        description="Country used when a record's address does not resolve to one.",
        validation_alias=AliasChoices("DEIDENTIFIER_HOSPITAL_COUNTRY", "HOSPITAL_COUNTRY"),
    )
    default_consent_type: str = Field(
        default="data_sharing",
        description="Consent type recorded for patients without an explicit consent.",
        validation_alias=AliasChoices(
            "DEIDENTIFIER_DEFAULT_CONSENT_TYPE", "DEFAULT_CONSENT_TYPE"
        ),
    )
    consent_per_patient: bool = Field(
        default=True,
        description="Issue a default consent hash for every patient lacking one.",
        validation_alias=AliasChoices(
            "DEIDENTIFIER_CONSENT_PER_PATIENT", "CONSENT_PER_PATIENT"
        ),
    )
    workers: int = Field(
        default=1,
        ge=1,
        description="Threads used for generalization and hashing after PID assignment.",
        validation_alias=AliasChoices("DEIDENTIFIER_WORKERS", "PIPELINE_WORKERS"),
    )

    model_config = SettingsConfigDict(env_file=".env", extra="ignore", populate_by_name=True)


class Settings(BaseSettings):
    """Aggregated settings namespace for the de-identification service."""

    app: AppSettings = Field(default_factory=AppSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    pipeline: PipelineSettings = Field(default_factory=PipelineSettings)

    model_config = SettingsConfigDict(
        env_prefix="DEIDENTIFIER_",
        env_file=".env",
        env_nested_delimiter="__",
        extra="ignore",
    )


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()


__all__ = [
    "AppSettings",
    "KAnonymityPolicy",
    "LoggingSettings",
    "PipelineSettings",
    "Settings",
    "get_settings",
]
