"""Logging utilities for the de-identification service.

This module wraps the shared observability helpers so the service emits
structured logs enriched with the batch identifier and exposes a focused audit
trail for every released or rejected batch.
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterator, Mapping

from shared.observability.logger import (
    batch_context,
    configure_logging as _base_configure_logging,
    generate_batch_id,
    get_logger as _get_logger,
)

__all__ = [
    "DeidentificationAuditEvent",
    "configure_logging",
    "deidentifier_logging_context",
    "get_logger",
    "record_deidentification_audit",
]


_SERVICE_NAME: str | None = None
_AUDIT_LOGGER = _get_logger("deidentifier.audit")


def configure_logging(
    *, service_name: str, level: str | int = "INFO", json: bool = True
) -> None:
    """Configure structured logging for the de-identification service."""

    global _SERVICE_NAME

    _base_configure_logging(service_name=service_name, level=level, json=json)
    _SERVICE_NAME = service_name


def get_logger(name: str | None = None):
    """Return a structlog bound logger."""

    return _get_logger(name)


@dataclass(frozen=True, slots=True)
class DeidentificationAuditEvent:
    """Structured payload describing one batch outcome.

    Only counts, hashes and the batch identifier are carried; record content
    and the patient mapping never reach the audit trail.
    """

    event: str
    status: str
    batch_id: str
    actor: str
    record_count: int
    chain_record_count: int
    patient_count: int
    consent_count: int
    suppressed_count: int
    storage_batch_hash: str | None
    chain_batch_hash: str | None
    timestamp: str = field(
        default_factory=lambda: datetime.now(tz=timezone.utc).isoformat()
    )
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "event": self.event,
            "status": self.status,
            "batchId": self.batch_id,
            "actor": self.actor,
            "recordCount": self.record_count,
            "chainRecordCount": self.chain_record_count,
            "patientCount": self.patient_count,
            "consentCount": self.consent_count,
            "suppressedCount": self.suppressed_count,
            "storageBatchHash": self.storage_batch_hash,
            "chainBatchHash": self.chain_batch_hash,
            "timestamp": self.timestamp,
            "metadata": dict(self.metadata),
        }


@contextmanager
def deidentifier_logging_context(
    *,
    batch_id: str | None = None,
    input_format: str | None = None,
    **extra: Any,
) -> Iterator[str]:
    """Bind batch specific context for the duration of a pipeline run."""

    context: dict[str, Any] = dict(extra)
    if input_format:
        context.setdefault("input_format", input_format)

    with batch_context(batch_id=batch_id or generate_batch_id(), **context) as bound_id:
        yield bound_id


def record_deidentification_audit(
    *,
    batch_id: str,
    status: str,
    record_count: int,
    chain_record_count: int = 0,
    patient_count: int = 0,
    consent_count: int = 0,
    suppressed_count: int = 0,
    storage_batch_hash: str | None = None,
    chain_batch_hash: str | None = None,
    actor: str | None = None,
    timestamp: str | None = None,
    metadata: Mapping[str, Any] | None = None,
) -> DeidentificationAuditEvent:
    """Emit an audit entry capturing the outcome of a batch."""

    event_actor = actor or _SERVICE_NAME or "deidentifier"
    optional: dict[str, Any] = {}
    if timestamp is not None:
        optional["timestamp"] = timestamp

    audit_event = DeidentificationAuditEvent(
        event="deidentification",
        status=status,
        batch_id=batch_id,
        actor=event_actor,
        record_count=record_count,
        chain_record_count=chain_record_count,
        patient_count=patient_count,
        consent_count=consent_count,
        suppressed_count=suppressed_count,
        storage_batch_hash=storage_batch_hash,
        chain_batch_hash=chain_batch_hash,
        metadata=metadata or {},
        **optional,
    )

    payload = audit_event.to_dict()
    payload["audit_event"] = payload.pop("event")
    _AUDIT_LOGGER.info("deidentifier.audit.batch", **payload)
    return audit_event
