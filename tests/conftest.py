"""Shared pytest fixtures for the de-identification test-suite."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Iterator

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from services.deidentifier.config import get_settings  # noqa: E402

_SETTINGS_ENV_VARS = (
    "DEIDENTIFIER_SERVICE_NAME",
    "SERVICE_NAME",
    "DEIDENTIFIER_LOG_LEVEL",
    "LOG_LEVEL",
    "DEIDENTIFIER_LOG_JSON",
    "LOG_JSON",
    "DEIDENTIFIER_K",
    "KANONYMITY_K",
    "DEIDENTIFIER_KANONYMITY_POLICY",
    "KANONYMITY_POLICY",
    "DEIDENTIFIER_HOSPITAL_COUNTRY",
    "HOSPITAL_COUNTRY",
    "DEIDENTIFIER_DEFAULT_CONSENT_TYPE",
    "DEFAULT_CONSENT_TYPE",
    "DEIDENTIFIER_CONSENT_PER_PATIENT",
    "CONSENT_PER_PATIENT",
    "DEIDENTIFIER_WORKERS",
    "PIPELINE_WORKERS",
)


@pytest.fixture(autouse=True)
def _isolated_settings(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Run every test against default settings, unaffected by the host env."""

    for name in _SETTINGS_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
