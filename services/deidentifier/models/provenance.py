"""Provenance, consent and identity artifacts."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from .records import ResourceKind

__all__ = ["AnonymousIdentity", "ConsentHash", "ProvenanceRecord"]

_HEX_DIGEST = r"^[a-f0-9]{64}$"
_PID = r"^PID-\d{3,}$"


class AnonymousIdentity(BaseModel):
    """Pairing of an original patient key with its anonymous PID.

    Stays with the caller; it is never part of the release payload.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    anonymous_pid: str = Field(alias="anonymousPID", pattern=_PID)
    original_patient_key: str = Field(alias="originalPatientKey", min_length=1)


class ProvenanceRecord(BaseModel):
    """Immutable link between a storage hash and the chain hash derived from it."""

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    anonymous_pid: str = Field(alias="anonymousPID", pattern=_PID)
    storage_hash: str = Field(alias="storageHash", pattern=_HEX_DIGEST)
    chain_hash: str = Field(alias="chainHash", pattern=_HEX_DIGEST)
    provenance_proof: str = Field(alias="provenanceProof", pattern=_HEX_DIGEST)
    resource_type: ResourceKind = Field(alias="resourceType")
    timestamp: str = Field(alias="timestamp", min_length=1)


class ConsentHash(BaseModel):
    """Consent proof computed from the anonymous PID and consent metadata only."""

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    anonymous_pid: str = Field(alias="anonymousPID", pattern=_PID)
    consent_date: str = Field(alias="consentDate")
    consent_type: str = Field(alias="consentType")
    timestamp: str = Field(alias="timestamp")
    hash: str = Field(alias="hash", pattern=_HEX_DIGEST)
