"""Generalized record variants handed to external collaborators.

Both models forbid extra fields, so PII-only attributes such as a name or a
phone number cannot be attached to them. The runtime denylist scan in
:mod:`services.deidentifier.validation` remains as a regression check.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .records import ResourceKind

__all__ = [
    "ChainRecord",
    "GeneralizationStrength",
    "RESERVED_RELEASE_FIELDS",
    "StorageRecord",
]


class GeneralizationStrength(str, Enum):
    """Generalization levels applied to canonical records."""

    STORAGE = "storage"
    CHAIN = "chain"


RESERVED_RELEASE_FIELDS: frozenset[str] = frozenset(
    {
        "anonymousPID",
        "resourceType",
        "ageRange",
        "country",
        "region",
        "gender",
        "occupationCategory",
    }
)


class _GeneralizedBase(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    anonymous_pid: str = Field(alias="anonymousPID", pattern=r"^PID-\d{3,}$")
    resource_type: ResourceKind = Field(alias="resourceType")
    age_range: str | None = Field(default=None, alias="ageRange")
    country: str | None = Field(default=None, alias="country")
    gender: str | None = Field(default=None, alias="gender")
    occupation_category: str = Field(default="Unknown", alias="occupationCategory")
    clinical: Mapping[str, str] = Field(default_factory=dict, alias="clinical")

    @field_validator("clinical")
    @classmethod
    def _reject_reserved_keys(cls, value: Mapping[str, str]) -> Mapping[str, str]:
        collisions = sorted(set(value) & RESERVED_RELEASE_FIELDS)
        if collisions:
            raise ValueError(
                f"clinical fields collide with demographic fields: {', '.join(collisions)}"
            )
        return value

    def to_release(self) -> dict[str, Any]:
        """Return the flat mapping that is hashed and handed to collaborators."""

        payload = self.model_dump(mode="json", by_alias=True, exclude={"clinical"})
        payload.update(self.clinical)
        return payload


class StorageRecord(_GeneralizedBase):
    """Storage-strength record: 5-year age bucket, exact dates, region kept."""

    region: str | None = Field(default=None, alias="region")


class ChainRecord(_GeneralizedBase):
    """Chain-strength record derived from a :class:`StorageRecord`."""
