"""Release gates run over generalized records before they leave the pipeline.

Each check raises the typed error of its category and reports field names and
record indices only, never the offending value.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from .errors import (
    DeidentificationError,
    InvalidIdentifierError,
    MissingDemographicError,
    PIILeakError,
    ProvenanceLinkError,
)
from .identity import PID_PREFIX, IdentityMap, is_valid_pid
from .kanonymity import DEFAULT_K, KAnonymityReport, validate_k_anonymity
from .logging import get_logger
from .models import ChainRecord, StorageRecord
from .normalizer import normalize_field_name
from .provenance import verify_provenance_record

if TYPE_CHECKING:  # pragma: no cover - import used only for static typing
    from .pipeline import DeidentificationResult

__all__ = [
    "ID_LIKE_FIELDS",
    "PII_FIELDS",
    "REQUIRED_DEMOGRAPHICS",
    "OutputValidator",
    "ValidationReport",
    "validate_identifiers",
    "validate_no_pii",
    "validate_release",
    "validate_required_demographics",
]

logger = get_logger(__name__)

# Normalized field names (case-folded, non-alphanumerics removed).
PII_FIELDS: frozenset[str] = frozenset(
    {
        "patientname",
        "patientid",
        "name",
        "fullname",
        "address",
        "streetaddress",
        "homeaddress",
        "city",
        "postalcode",
        "zipcode",
        "phonenumber",
        "phone",
        "telephone",
        "mobile",
        "mobilenumber",
        "dateofbirth",
        "dob",
        "birthdate",
        "email",
        "emailaddress",
        "nationalid",
        "nationalidnumber",
        "ssn",
        "socialsecuritynumber",
        "passport",
        "passportnumber",
        "telecom",
        "photo",
        "contact",
        "patientkey",
    }
)

ID_LIKE_FIELDS: frozenset[str] = frozenset(
    {"patientid", "originalpatientid", "originalid", "id", "patientkey"}
)

REQUIRED_DEMOGRAPHICS: tuple[str, ...] = ("ageRange", "country", "gender")

_Releasable = StorageRecord | ChainRecord | Mapping[str, Any]


def _as_release(record: _Releasable) -> Mapping[str, Any]:
    if isinstance(record, (StorageRecord, ChainRecord)):
        return record.to_release()
    if isinstance(record, Mapping):
        return record
    raise TypeError("records must be generalized records or release mappings")


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, dict, set)):
        return not value
    return False


def validate_no_pii(
    records: Sequence[_Releasable], *, label: str | None = None
) -> None:
    """Raise :class:`PIILeakError` when a denylisted field carries a value."""

    for index, record in enumerate(records):
        for field, value in _as_release(record).items():
            if normalize_field_name(field) in PII_FIELDS and not _is_blank(value):
                raise PIILeakError(str(field), index, label=label)


def validate_required_demographics(
    records: Sequence[_Releasable], *, label: str | None = None
) -> None:
    """Raise :class:`MissingDemographicError` for a missing required demographic."""

    for index, record in enumerate(records):
        payload = _as_release(record)
        for field in REQUIRED_DEMOGRAPHICS:
            if _is_blank(payload.get(field)):
                raise MissingDemographicError(field, index, label=label)


def validate_identifiers(
    records: Sequence[_Releasable],
    identity_map: IdentityMap | None = None,
    *,
    label: str | None = None,
) -> None:
    """Check PIDs and reject original-identifier-like fields.

    Every record needs a well formed ``anonymousPID`` that, when
    ``identity_map`` is given, belongs to it. Fields that look like an original
    identifier must hold a PID as well.
    """

    for index, record in enumerate(records):
        payload = _as_release(record)
        pid = payload.get("anonymousPID")
        if _is_blank(pid):
            raise InvalidIdentifierError(
                f"Record {index}: anonymous PID is missing.",
                field="anonymousPID",
                record_index=index,
            )
        if not is_valid_pid(pid):
            raise InvalidIdentifierError(
                f"Record {index}: anonymous PID is malformed; expected PID-NNN.",
                field="anonymousPID",
                record_index=index,
            )
        if identity_map is not None and not identity_map.contains_pid(pid):
            raise InvalidIdentifierError(
                f"Record {index}: anonymous PID is not part of this batch.",
                field="anonymousPID",
                record_index=index,
            )
        for field, value in payload.items():
            if normalize_field_name(field) not in ID_LIKE_FIELDS or _is_blank(value):
                continue
            if not str(value).startswith(PID_PREFIX):
                raise InvalidIdentifierError(
                    f"Record {index}: original patient identifier detected in field '{field}'.",
                    field=str(field),
                    record_index=index,
                )


@dataclass(slots=True, frozen=True)
class ValidationReport:
    """Summary of a successful release-set validation."""

    label: str
    record_count: int
    kanonymity: KAnonymityReport


class OutputValidator:
    """Composite gate applied to a final release set.

    Runs the PII scan, the demographic check, the identifier check and the
    k-anonymity check in that order and raises the error of the first failing
    category.
    """

    def __init__(self, k: int = DEFAULT_K, identity_map: IdentityMap | None = None) -> None:
        if k < 1:
            raise ValueError("k must be a positive integer")
        self.k = k
        self.identity_map = identity_map

    def validate(
        self, records: Sequence[_Releasable], *, label: str = "release"
    ) -> ValidationReport:
        if not records:
            raise DeidentificationError(
                "No records to validate.",
                stage="validation",
                details={"release_set": label},
            )
        validate_no_pii(records, label=label)
        validate_required_demographics(records, label=label)
        validate_identifiers(records, self.identity_map, label=label)
        report = validate_k_anonymity(records, self.k, label=label)

        logger.info(
            event="deidentifier.validation.passed",
            message="Release set passed output validation.",
            release_set=label,
            record_count=len(records),
            group_count=len(report.groups),
            kanonymity_bypassed=report.bypassed,
        )
        return ValidationReport(label=label, record_count=len(records), kanonymity=report)


def validate_release(result: "DeidentificationResult") -> tuple[ValidationReport, ValidationReport]:
    """Re-validate a pipeline result before handing it to a collaborator.

    Both record sets go through :class:`OutputValidator` against the result's
    own identity mapping. Every storage record must have exactly one provenance
    record whose proof recomputes and whose hashes match both records.
    """

    identity_map = IdentityMap.from_mapping(result.patient_mapping)
    validator = OutputValidator(result.kanonymity.k, identity_map)
    storage_report = validator.validate(result.anonymized_records, label="storage")
    chain_report = validator.validate(result.chain_records, label="chain")

    storage_records = result.anonymized_records
    chain_records = result.chain_records
    provenance_records = result.provenance_records
    if not (len(storage_records) == len(chain_records) == len(provenance_records)):
        raise ProvenanceLinkError(
            "Storage, chain and provenance record counts differ.",
            field="provenanceRecords",
        )
    for storage, chain, provenance in zip(storage_records, chain_records, provenance_records):
        if provenance.anonymous_pid != storage.anonymous_pid:
            raise ProvenanceLinkError(
                "Provenance record does not belong to its storage record.",
                field="anonymousPID",
                anonymous_pid=provenance.anonymous_pid,
            )
        if not verify_provenance_record(provenance, storage=storage, chain=chain):
            raise ProvenanceLinkError(
                "Provenance proof does not match its storage and chain records.",
                field="provenanceProof",
                anonymous_pid=provenance.anonymous_pid,
            )
    return storage_report, chain_report
