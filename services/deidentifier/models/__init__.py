"""Pydantic data models used by the de-identification pipeline."""

from .generalized import (  # noqa: F401
    RESERVED_RELEASE_FIELDS,
    ChainRecord,
    GeneralizationStrength,
    StorageRecord,
)
from .provenance import AnonymousIdentity, ConsentHash, ProvenanceRecord  # noqa: F401
from .records import (  # noqa: F401
    CanonicalRecord,
    ConsentRecord,
    ObservationRecord,
    PatientGroup,
    PatientRecord,
    ResourceKind,
)

__all__ = [
    "AnonymousIdentity",
    "CanonicalRecord",
    "ChainRecord",
    "ConsentHash",
    "ConsentRecord",
    "GeneralizationStrength",
    "ObservationRecord",
    "PatientGroup",
    "PatientRecord",
    "ProvenanceRecord",
    "RESERVED_RELEASE_FIELDS",
    "ResourceKind",
    "StorageRecord",
]
