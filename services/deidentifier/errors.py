"""Typed failures raised by the de-identification pipeline.

Every error aborts the whole batch. ``details`` carries field names, group
keys, counts and record indices so callers can audit the failure; it never
carries the raw value that triggered a PII or identifier violation.
"""

from __future__ import annotations

from types import MappingProxyType
from typing import Any, Literal, Mapping, NamedTuple, Sequence, cast

__all__ = [
    "ConfigurationError",
    "DeidentificationError",
    "GroupViolation",
    "InvalidIdentifierError",
    "KAnonymityViolation",
    "MissingDemographicError",
    "NormalizationError",
    "PIILeakError",
    "ProvenanceLinkError",
]

PipelineStage = Literal[
    "configuration",
    "normalization",
    "identity",
    "generalization",
    "kanonymity",
    "provenance",
    "validation",
]


class DeidentificationError(RuntimeError):
    """Base error raised when a batch cannot be released."""

    default_stage: PipelineStage | None = None

    def __init__(
        self,
        message: str,
        *,
        stage: PipelineStage | None = None,
        details: Mapping[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        sanitized: dict[str, Any] = {}
        resolved_stage = stage or self.default_stage
        if resolved_stage is not None:
            sanitized["stage"] = resolved_stage
        if details:
            sanitized.update(details)
        self.stage: PipelineStage | None = cast(
            "PipelineStage | None", sanitized.get("stage")
        )
        self._details = MappingProxyType(dict(sanitized))

    @property
    def details(self) -> Mapping[str, Any]:
        """Return structured, PHI-free metadata describing the failure."""

        return self._details


class ConfigurationError(DeidentificationError):
    """Raised when pipeline settings are inconsistent."""

    default_stage = "configuration"


class NormalizationError(DeidentificationError):
    """Raised when input is malformed or declares an unsupported type tag."""

    default_stage = "normalization"


class PIILeakError(DeidentificationError):
    """Raised when a denylisted field survives generalization."""

    default_stage = "validation"

    def __init__(self, field: str, record_index: int, *, label: str | None = None) -> None:
        self.field = field
        self.record_index = record_index
        details: dict[str, Any] = {"field": field, "record_index": record_index}
        if label:
            details["release_set"] = label
        super().__init__(
            f"PII field '{field}' present at record {record_index}.",
            details=details,
        )


class MissingDemographicError(DeidentificationError):
    """Raised when a required demographic field is missing or empty."""

    default_stage = "validation"

    def __init__(self, field: str, record_index: int, *, label: str | None = None) -> None:
        self.field = field
        self.record_index = record_index
        details: dict[str, Any] = {"field": field, "record_index": record_index}
        if label:
            details["release_set"] = label
        super().__init__(
            f"Record {record_index}: required demographic '{field}' is missing.",
            details=details,
        )


class InvalidIdentifierError(DeidentificationError):
    """Raised when a PID is malformed or an original identifier leaks."""

    default_stage = "validation"

    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        record_index: int | None = None,
        stage: PipelineStage | None = None,
    ) -> None:
        self.field = field
        self.record_index = record_index
        details: dict[str, Any] = {}
        if field is not None:
            details["field"] = field
        if record_index is not None:
            details["record_index"] = record_index
        super().__init__(message, stage=stage, details=details)


class GroupViolation(NamedTuple):
    """``(group_key, count)`` pair describing an undersized cohort."""

    key: str
    count: int

    def to_dict(self) -> dict[str, Any]:
        return {"key": self.key, "count": self.count}


class KAnonymityViolation(DeidentificationError):
    """Raised when one or more demographic cohorts fall below ``k``."""

    default_stage = "kanonymity"

    def __init__(
        self,
        violations: Sequence[GroupViolation],
        *,
        k: int,
        label: str | None = None,
    ) -> None:
        self.violations: tuple[GroupViolation, ...] = tuple(violations)
        self.k = k
        listing = "\n".join(
            f"  - {violation.key}: {violation.count} records"
            for violation in self.violations
        )
        details: dict[str, Any] = {
            "k": k,
            "violations": [violation.to_dict() for violation in self.violations],
        }
        if label:
            details["release_set"] = label
        super().__init__(
            f"K-anonymity violation: {len(self.violations)} groups have < {k} records:\n"
            f"{listing}",
            details=details,
        )


class ProvenanceLinkError(DeidentificationError):
    """Raised when a chain record is not a coarsening of its storage record."""

    default_stage = "provenance"

    def __init__(self, message: str, *, field: str, anonymous_pid: str | None = None) -> None:
        self.field = field
        details: dict[str, Any] = {"field": field}
        if anonymous_pid is not None:
            details["anonymous_pid"] = anonymous_pid
        super().__init__(message, details=details)
