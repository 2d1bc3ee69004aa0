"""Fixtures for the de-identification service tests."""

from __future__ import annotations

from typing import Any, Callable

import pytest

from services.deidentifier.config import PipelineSettings, Settings
from services.deidentifier.pipeline import DeidentificationPipeline

from factories import AS_OF, FIXED_NOW, make_male_row, make_row


@pytest.fixture
def make_settings() -> Callable[..., Settings]:
    def _factory(**pipeline: Any) -> Settings:
        return Settings(pipeline=PipelineSettings(**pipeline))

    return _factory


@pytest.fixture
def make_pipeline(
    make_settings: Callable[..., Settings],
) -> Callable[..., DeidentificationPipeline]:
    def _factory(**pipeline: Any) -> DeidentificationPipeline:
        return DeidentificationPipeline(
            make_settings(**pipeline), clock=lambda: FIXED_NOW, as_of=AS_OF
        )

    return _factory


@pytest.fixture
def uganda_cohort() -> list[dict[str, Any]]:
    return [make_row(f"P-{100 + index}") for index in range(5)]


@pytest.fixture
def kenya_cohort() -> list[dict[str, Any]]:
    return [make_male_row(f"K-{200 + index}") for index in range(5)]
