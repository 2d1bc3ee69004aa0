"""Canonical intermediate records produced by the normalizer.

These models exist only inside the pipeline's trust boundary. They carry the
raw identifying fields that the generalizer consumes and are never emitted.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Annotated, Literal, Mapping, Union

from pydantic import BaseModel, ConfigDict, Field

__all__ = [
    "CanonicalRecord",
    "ConsentRecord",
    "ObservationRecord",
    "PatientGroup",
    "PatientRecord",
    "ResourceKind",
]


class ResourceKind(str, Enum):
    """Clinical resource kinds understood by the pipeline."""

    PATIENT = "Patient"
    OBSERVATION = "Observation"
    CONSENT = "Consent"


class _CanonicalBase(BaseModel):
    """Fields shared by every canonical record."""

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    patient_key: str = Field(alias="patientKey", min_length=1)
    name: str | None = Field(default=None, alias="name")
    address: str | None = Field(default=None, alias="address")
    city: str | None = Field(default=None, alias="city")
    postal_code: str | None = Field(default=None, alias="postalCode")
    country: str | None = Field(default=None, alias="country")
    phone: str | None = Field(default=None, alias="phone")
    email: str | None = Field(default=None, alias="email")
    national_id: str | None = Field(default=None, alias="nationalId")
    birth_date: str | None = Field(default=None, alias="birthDate")
    age: int | None = Field(default=None, alias="age", ge=0)
    gender: str | None = Field(default=None, alias="gender")
    occupation: str | None = Field(default=None, alias="occupation")
    clinical: Mapping[str, str] = Field(default_factory=dict, alias="clinical")


class PatientRecord(_CanonicalBase):
    """Demographic-only record for a patient without observations."""

    resource_type: Literal[ResourceKind.PATIENT] = Field(
        default=ResourceKind.PATIENT, alias="resourceType"
    )


class ObservationRecord(_CanonicalBase):
    """Patient demographics joined with one observation's clinical fields."""

    resource_type: Literal[ResourceKind.OBSERVATION] = Field(
        default=ResourceKind.OBSERVATION, alias="resourceType"
    )


class ConsentRecord(_CanonicalBase):
    """Consent captured for a patient; feeds consent hashing only."""

    resource_type: Literal[ResourceKind.CONSENT] = Field(
        default=ResourceKind.CONSENT, alias="resourceType"
    )
    consent_date: str | None = Field(default=None, alias="consentDate")
    consent_type: str | None = Field(default=None, alias="consentType")


CanonicalRecord = Annotated[
    Union[PatientRecord, ObservationRecord, ConsentRecord],
    Field(discriminator="resource_type"),
]


@dataclass(slots=True, frozen=True)
class PatientGroup:
    """Canonical records bucketed under one original patient key."""

    patient_key: str
    records: tuple["PatientRecord | ObservationRecord | ConsentRecord", ...] = ()

    @property
    def size(self) -> int:
        return len(self.records)
