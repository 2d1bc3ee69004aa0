"""Observability utilities shared across the de-identification services."""

from .logger import (
    batch_context,
    configure_logging,
    generate_batch_id,
    get_batch_id,
    get_logger,
)

__all__ = [
    "batch_context",
    "configure_logging",
    "generate_batch_id",
    "get_batch_id",
    "get_logger",
]
