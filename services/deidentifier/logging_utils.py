"""Utilities to ensure de-identification logging never emits PHI."""

from __future__ import annotations

from collections.abc import Collection, Mapping
from dataclasses import asdict, is_dataclass
from datetime import date, datetime
from enum import Enum
from itertools import islice
from typing import Any, Iterable
from uuid import UUID

from pydantic import BaseModel

DEFAULT_ALLOWED_KEYS: frozenset[str] = frozenset(
    {
        "event",
        "status",
        "service",
        "component",
        "stage",
        "reason",
        "code",
        "field",
        "record_index",
        "resource_type",
        "resourcetype",
        "release_set",
        "group",
        "key",
        "batch_id",
    }
)

# Keys whose values are generated by the pipeline and carry no PHI.
_PID_KEYS: frozenset[str] = frozenset({"anonymouspid", "anonymous_pid"})


def scrub_for_logging(
    payload: Any,
    *,
    allow_keys: Iterable[str] | None = None,
    redaction: str = "<redacted>",
    max_depth: int = 5,
    max_items: int = 5,
) -> Any:
    """Return ``payload`` converted into a structure safe for log emission.

    Strings, UUIDs, temporal values, and arbitrary objects are replaced with the
    ``redaction`` placeholder unless their key is explicitly allowed. Anonymous
    PIDs are kept since they are generated by the pipeline. Nested collections
    are summarized to a bounded sample so that the resulting log payload only
    contains high-level metadata while preserving enough structure for
    debugging.
    """

    if max_depth < 0:
        raise ValueError("max_depth must be non-negative")
    if max_items < 1:
        raise ValueError("max_items must be a positive integer")

    allowed = set(DEFAULT_ALLOWED_KEYS) | _PID_KEYS
    if allow_keys:
        allowed.update(key.lower() for key in allow_keys)

    seen: set[int] = set()

    def _preserve_allowed(value: Any, depth: int) -> Any:
        if value is None or isinstance(value, (bool, int, float)):
            return value
        if isinstance(value, Enum):
            enum_value = value.value
            if isinstance(enum_value, (str, int, float, bool)):
                return enum_value
            return value.name
        if isinstance(value, (str, bytes, bytearray, UUID)):
            return str(value)
        return _scrub(value, depth)

    def _scrub(obj: Any, depth: int) -> Any:
        if depth < 0:
            return redaction
        if obj is None or isinstance(obj, (bool, int, float)):
            return obj
        if isinstance(obj, Enum):
            enum_value = obj.value
            if isinstance(enum_value, (str, int, float, bool)):
                return enum_value
            return obj.name
        if isinstance(obj, (str, bytes, bytearray, UUID, date, datetime)):
            return redaction
        if is_dataclass(obj) and not isinstance(obj, type):
            marker = id(obj)
            if marker in seen:
                return redaction
            seen.add(marker)
            try:
                return _scrub(asdict(obj), depth - 1)
            finally:
                seen.remove(marker)
        if isinstance(obj, BaseModel):
            return _scrub(obj.model_dump(mode="python", by_alias=True), depth - 1)
        if isinstance(obj, Mapping):
            marker = id(obj)
            if marker in seen:
                return redaction
            seen.add(marker)
            try:
                sanitized: dict[str, Any] = {}
                for key, value in obj.items():
                    key_str = str(key)
                    if key_str.lower() in allowed:
                        sanitized[key_str] = _preserve_allowed(value, depth - 1)
                    else:
                        sanitized[key_str] = _scrub(value, depth - 1)
                return sanitized
            finally:
                seen.remove(marker)
        if isinstance(obj, Collection) and not isinstance(
            obj, (str, bytes, bytearray, Mapping)
        ):
            marker = id(obj)
            if marker in seen:
                return redaction
            seen.add(marker)
            try:
                count = len(obj)
                sample = [_scrub(item, depth - 1) for item in islice(obj, max_items)]
                summary: dict[str, Any] = {
                    "count": count,
                    "__type__": type(obj).__name__,
                }
                if sample:
                    summary["sample"] = sample
                if count > len(sample):
                    summary["truncated"] = True
                return summary
            finally:
                seen.remove(marker)
        return redaction

    return _scrub(payload, max_depth)


def summarize_canonical_record(record: BaseModel | Mapping[str, Any]) -> dict[str, Any]:
    """Return presence flags describing a canonical record without its values."""

    if isinstance(record, BaseModel):
        data: Mapping[str, Any] = record.model_dump(mode="python", by_alias=True)
    elif isinstance(record, Mapping):
        data = record
    else:
        raise TypeError("record must be a mapping or a pydantic model")

    clinical = data.get("clinical") or {}
    if not isinstance(clinical, Mapping):
        clinical = {}

    resource_type = data.get("resourceType")
    if isinstance(resource_type, Enum):
        resource_type = resource_type.value

    return {
        "resource_type": resource_type,
        "has_name": bool(data.get("name")),
        "has_address": bool(data.get("address") or data.get("city")),
        "has_birth_date": bool(data.get("birthDate")),
        "has_age": data.get("age") is not None,
        "has_gender": bool(data.get("gender")),
        "has_occupation": bool(data.get("occupation")),
        "has_country": bool(data.get("country")),
        "clinical_field_count": len(clinical),
    }


__all__ = ["DEFAULT_ALLOWED_KEYS", "scrub_for_logging", "summarize_canonical_record"]
