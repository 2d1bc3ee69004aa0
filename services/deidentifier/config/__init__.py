"""Configuration package for the de-identification service."""

from .settings import (
    AppSettings,
    KAnonymityPolicy,
    LoggingSettings,
    PipelineSettings,
    Settings,
    get_settings,
)

__all__ = [
    "AppSettings",
    "KAnonymityPolicy",
    "LoggingSettings",
    "PipelineSettings",
    "Settings",
    "get_settings",
]
