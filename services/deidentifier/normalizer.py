"""Convert heterogeneous clinical input into canonical records.

Two input shapes are accepted:

* tabular rows, i.e. a sequence of flat ``column -> value`` mappings such as
  the rows of a CSV export, and
* FHIR-shaped bundles (``{"resourceType": "Bundle", "entry": [...]}``) carrying
  ``Patient``, ``Observation`` and ``Consent`` resources.

Both shapes are reduced to :data:`~services.deidentifier.models.CanonicalRecord`
instances. Identifying attributes are lifted into dedicated fields so the
generalizer can drop them; every other tabular column is kept verbatim as a
clinical field.
"""

from __future__ import annotations

import re
from collections.abc import Mapping, Sequence
from typing import Any, Iterable, Literal

from pydantic import ValidationError

from .errors import NormalizationError
from .generalizer import match_country
from .logging import get_logger
from .logging_utils import summarize_canonical_record
from .models import (
    RESERVED_RELEASE_FIELDS,
    ConsentRecord,
    ObservationRecord,
    PatientGroup,
    PatientRecord,
    ResourceKind,
)

__all__ = [
    "InputFormat",
    "group_by_patient",
    "normalize_field_name",
    "normalize_records",
]

InputFormat = Literal["tabular", "bundle"]

logger = get_logger(__name__)

_NON_ALNUM = re.compile(r"[^0-9a-z]")

OCCUPATION_EXTENSION_URL = "http://hl7.org/fhir/StructureDefinition/patient-occupation"

_CanonicalModel = PatientRecord | ObservationRecord | ConsentRecord


def normalize_field_name(name: Any) -> str:
    """Return ``name`` case-folded with every non-alphanumeric removed.

    ``"Patient Name"``, ``"patient_name"`` and ``"patientName"`` all map to
    ``"patientname"``.
    """

    return _NON_ALNUM.sub("", str(name).casefold())


# Canonical field -> accepted column names (already normalized).
_COLUMN_ALIASES: dict[str, frozenset[str]] = {
    "patient_key": frozenset(
        {
            "patientid",
            "id",
            "mrn",
            "patientkey",
            "patientidentifier",
            "medicalrecordnumber",
            "originalpatientid",
            "originalid",
        }
    ),
    "name": frozenset({"patientname", "name", "fullname"}),
    "address": frozenset({"address", "streetaddress", "homeaddress"}),
    "city": frozenset({"city", "location", "district", "town"}),
    "postal_code": frozenset({"postalcode", "zipcode", "zip", "postcode"}),
    "country": frozenset({"country"}),
    "phone": frozenset({"phonenumber", "phone", "telephone", "mobile", "mobilenumber"}),
    "email": frozenset({"email", "emailaddress"}),
    "national_id": frozenset(
        {
            "nationalid",
            "nationalidnumber",
            "nin",
            "ssn",
            "socialsecuritynumber",
            "passport",
            "passportnumber",
        }
    ),
    "birth_date": frozenset({"dateofbirth", "dob", "birthdate"}),
    "age": frozenset({"age"}),
    "gender": frozenset({"gender", "sex"}),
    "occupation": frozenset({"occupation", "job", "profession"}),
    "resource_type": frozenset({"resourcetype"}),
    "consent_date": frozenset({"consentdate"}),
    "consent_type": frozenset({"consenttype"}),
}

_ALIAS_LOOKUP: dict[str, str] = {
    alias: canonical
    for canonical, aliases in _COLUMN_ALIASES.items()
    for alias in aliases
}

_RESOURCE_KINDS: dict[str, ResourceKind] = {
    normalize_field_name(kind.value): kind for kind in ResourceKind
}


def normalize_records(
    payload: Any,
    *,
    input_format: str | None = None,
    hospital_country: str | None = None,
) -> list[_CanonicalModel]:
    """Return canonical records extracted from ``payload``.

    ``input_format`` may be ``"tabular"``, ``"bundle"`` or ``None`` to detect
    the shape automatically (mappings are bundles, sequences are tabular).
    When ``hospital_country`` is given, records without an explicit country get
    the country matched from their address text, falling back to the hospital
    country.
    """

    resolved = _resolve_format(payload, input_format)
    try:
        if resolved == "bundle":
            records = _normalize_bundle(payload, hospital_country=hospital_country)
        else:
            records = _normalize_rows(payload, hospital_country=hospital_country)
    except ValidationError as exc:
        raise NormalizationError(
            "Input record failed schema validation.",
            details={"error_count": exc.error_count(), "input_format": resolved},
        ) from exc

    logger.info(
        event="deidentifier.normalizer.completed",
        message="Normalized input into canonical records.",
        input_format=resolved,
        record_count=len(records),
        incomplete=_incomplete_counts(records),
    )
    return records


def _incomplete_counts(records: Iterable[_CanonicalModel]) -> dict[str, int]:
    counts = {"age": 0, "gender": 0, "location": 0}
    for record in records:
        if isinstance(record, ConsentRecord):
            continue
        summary = summarize_canonical_record(record)
        if not (summary["has_birth_date"] or summary["has_age"]):
            counts["age"] += 1
        if not summary["has_gender"]:
            counts["gender"] += 1
        if not (summary["has_address"] or summary["has_country"]):
            counts["location"] += 1
    return counts


def group_by_patient(records: Iterable[_CanonicalModel]) -> list[PatientGroup]:
    """Bucket ``records`` by original patient key in first-encounter order."""

    buckets: dict[str, list[_CanonicalModel]] = {}
    for record in records:
        buckets.setdefault(record.patient_key, []).append(record)
    return [
        PatientGroup(patient_key=key, records=tuple(items))
        for key, items in buckets.items()
    ]


def _resolve_format(payload: Any, input_format: str | None) -> InputFormat:
    if input_format is None:
        if isinstance(payload, Mapping):
            return "bundle"
        if isinstance(payload, Sequence) and not isinstance(payload, (str, bytes)):
            return "tabular"
        raise NormalizationError(
            "Unable to detect input format; expected a bundle mapping or a sequence of rows.",
            details={"payload_type": type(payload).__name__},
        )

    tag = str(input_format).strip().lower()
    if tag not in ("tabular", "bundle"):
        raise NormalizationError(
            f"Unsupported input format '{input_format}'.",
            details={"input_format": str(input_format)},
        )
    return tag  # type: ignore[return-value]


# ---------------------------------------------------------------------------
# Tabular rows
# ---------------------------------------------------------------------------


def _clean(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _default_country(fields: Mapping[str, Any], hospital_country: str | None) -> str | None:
    country = fields.get("country")
    if country or not hospital_country:
        return country
    return match_country(fields.get("address"), fields.get("city")) or hospital_country


def _parse_age(value: str | None) -> int | None:
    if value is None:
        return None
    try:
        age = int(float(value))
    except (ValueError, OverflowError):
        return None
    return age if age >= 0 else None


def _normalize_rows(
    payload: Any, *, hospital_country: str | None
) -> list[_CanonicalModel]:
    if not isinstance(payload, Sequence) or isinstance(payload, (str, bytes)):
        raise NormalizationError(
            "Tabular input must be a sequence of rows.",
            details={"payload_type": type(payload).__name__},
        )

    records: list[_CanonicalModel] = []
    for index, row in enumerate(payload):
        if not isinstance(row, Mapping):
            raise NormalizationError(
                f"Row {index} is not a mapping of column to value.",
                details={"record_index": index, "row_type": type(row).__name__},
            )
        records.append(_normalize_row(row, index, hospital_country=hospital_country))
    return records


def _normalize_row(
    row: Mapping[str, Any], index: int, *, hospital_country: str | None
) -> _CanonicalModel:
    fields: dict[str, Any] = {}
    clinical: dict[str, str] = {}

    for column, raw_value in row.items():
        canonical = _ALIAS_LOOKUP.get(normalize_field_name(column))
        if canonical is None:
            if raw_value is None:
                continue
            key = str(column).strip()
            if key in RESERVED_RELEASE_FIELDS:
                raise NormalizationError(
                    f"Row {index}: column '{key}' collides with a generated demographic field.",
                    details={"record_index": index, "field": key},
                )
            clinical[key] = str(raw_value).strip()
            continue
        value = _clean(raw_value)
        if value is not None:
            fields.setdefault(canonical, value)

    kind = ResourceKind.OBSERVATION
    declared = fields.pop("resource_type", None)
    if declared is not None:
        kind = _RESOURCE_KINDS.get(normalize_field_name(declared))  # type: ignore[assignment]
        if kind is None:
            raise NormalizationError(
                f"Row {index}: unsupported resource type.",
                details={"record_index": index, "field": "resourceType"},
            )

    patient_key = fields.pop("patient_key", None) or fields.get("name")
    if patient_key is None:
        raise NormalizationError(
            f"Row {index}: a patient identifier or name is required.",
            details={"record_index": index, "field": "patientKey"},
        )

    fields["age"] = _parse_age(fields.get("age"))
    fields["country"] = _default_country(fields, hospital_country)
    consent_fields = {
        "consent_date": fields.pop("consent_date", None),
        "consent_type": fields.pop("consent_type", None),
    }

    if kind is ResourceKind.CONSENT:
        return ConsentRecord(
            patient_key=patient_key, clinical=clinical, **fields, **consent_fields
        )
    if kind is ResourceKind.PATIENT:
        return PatientRecord(patient_key=patient_key, clinical=clinical, **fields)
    return ObservationRecord(patient_key=patient_key, clinical=clinical, **fields)


# ---------------------------------------------------------------------------
# FHIR-shaped bundles
# ---------------------------------------------------------------------------


def _first(items: Any) -> Any:
    if isinstance(items, Sequence) and not isinstance(items, (str, bytes)) and items:
        return items[0]
    return None


def _as_mapping(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


def _date_part(value: Any) -> str | None:
    text = _clean(value)
    if text is None:
        return None
    return text.split("T", 1)[0]


def _reference_id(reference: Any) -> str | None:
    text = _clean(reference)
    if text is None:
        return None
    return text.rsplit("/", 1)[-1] or None


def _patient_id(resource: Mapping[str, Any]) -> str | None:
    identifier = _as_mapping(_first(resource.get("identifier")))
    return _clean(resource.get("id")) or _clean(identifier.get("value"))


def _patient_name(resource: Mapping[str, Any]) -> str | None:
    name = _as_mapping(_first(resource.get("name")))
    text = _clean(name.get("text"))
    if text:
        return text
    given = name.get("given") or []
    if isinstance(given, str):
        given = [given]
    parts = [str(part) for part in given if part] + [str(name.get("family") or "")]
    return _clean(" ".join(parts))


def _telecom(resource: Mapping[str, Any], system: str) -> str | None:
    for contact in resource.get("telecom") or []:
        contact = _as_mapping(contact)
        if contact.get("system") == system and _clean(contact.get("value")):
            return _clean(contact.get("value"))
    return None


def _occupation(resource: Mapping[str, Any]) -> str | None:
    for extension in resource.get("extension") or []:
        extension = _as_mapping(extension)
        if extension.get("url") != OCCUPATION_EXTENSION_URL:
            continue
        concept = _as_mapping(extension.get("valueCodeableConcept"))
        coding = _as_mapping(_first(concept.get("coding")))
        return (
            _clean(extension.get("valueString"))
            or _clean(concept.get("text"))
            or _clean(coding.get("display"))
        )
    return None


def _patient_fields(
    resource: Mapping[str, Any], *, hospital_country: str | None
) -> dict[str, Any]:
    address = _as_mapping(_first(resource.get("address")))
    lines = address.get("line") or []
    if isinstance(lines, str):
        lines = [lines]
    city = _clean(address.get("city"))
    country = _clean(address.get("country"))
    address_text = _clean(address.get("text")) or _clean(
        ", ".join(str(part) for part in [*lines, city, country] if part)
    )

    fields: dict[str, Any] = {
        "name": _patient_name(resource),
        "address": address_text,
        "city": city,
        "postal_code": _clean(address.get("postalCode")),
        "country": country,
        "phone": _telecom(resource, "phone"),
        "email": _telecom(resource, "email"),
        "birth_date": _clean(resource.get("birthDate")),
        "gender": _clean(resource.get("gender")),
        "occupation": _occupation(resource),
    }
    fields["country"] = _default_country(fields, hospital_country)
    return fields


def _observation_clinical(resource: Mapping[str, Any]) -> dict[str, str]:
    code = _as_mapping(resource.get("code"))
    coding = _as_mapping(_first(code.get("coding")))
    period = _as_mapping(resource.get("effectivePeriod"))
    quantity = _as_mapping(resource.get("valueQuantity"))
    concept = _as_mapping(resource.get("valueCodeableConcept"))

    value: Any = quantity.get("value")
    if value is None:
        value = resource.get("valueString")
    if value is None:
        value = _as_mapping(_first(concept.get("coding"))).get("display")

    reference_text = None
    reference_range = _first(resource.get("referenceRange"))
    if reference_range is not None:
        reference_range = _as_mapping(reference_range)
        low = _as_mapping(reference_range.get("low"))
        high = _as_mapping(reference_range.get("high"))
        low_value = low.get("value")
        high_value = high.get("value")
        reference_text = _clean(
            f"{'' if low_value is None else low_value}-"
            f"{'' if high_value is None else high_value} {low.get('unit') or ''}"
        )

    candidates = {
        "Lab Test": _clean(coding.get("display")) or _clean(code.get("text")) or "Unknown Test",
        "Test Date": _date_part(resource.get("effectiveDateTime") or period.get("start")),
        "Result": _clean(value),
        "Unit": _clean(quantity.get("unit")),
        "Reference Range": reference_text,
    }
    return {key: text for key, text in candidates.items() if text is not None}


def _consent_fields(resource: Mapping[str, Any]) -> dict[str, str | None]:
    category = _as_mapping(_first(resource.get("category")))
    category_coding = _as_mapping(_first(category.get("coding")))
    scope = _as_mapping(resource.get("scope"))
    scope_coding = _as_mapping(_first(scope.get("coding")))
    return {
        "consent_date": _date_part(resource.get("dateTime")),
        "consent_type": _clean(category_coding.get("code"))
        or _clean(category.get("text"))
        or _clean(scope_coding.get("code")),
    }


def _normalize_bundle(
    payload: Any, *, hospital_country: str | None
) -> list[_CanonicalModel]:
    if not isinstance(payload, Mapping) or payload.get("resourceType") != "Bundle":
        raise NormalizationError(
            "Input is not a FHIR Bundle.",
            details={"resource_type": str(_as_mapping(payload).get("resourceType"))},
        )
    entries = payload.get("entry") or []
    if not isinstance(entries, Sequence) or isinstance(entries, (str, bytes)):
        raise NormalizationError(
            "Bundle 'entry' must be a list.",
            details={"entry_type": type(entries).__name__},
        )

    patients: list[tuple[str, dict[str, Any]]] = []
    observations: list[tuple[int, Mapping[str, Any]]] = []
    consents: list[tuple[int, Mapping[str, Any]]] = []

    for index, entry in enumerate(entries):
        resource = _as_mapping(_as_mapping(entry).get("resource"))
        resource_type = resource.get("resourceType")
        if resource_type == "Patient":
            fields = _patient_fields(resource, hospital_country=hospital_country)
            key = _patient_id(resource) or fields["name"]
            if key is None:
                raise NormalizationError(
                    f"Bundle entry {index}: patient has neither an identifier nor a name.",
                    details={"record_index": index, "field": "patientKey"},
                )
            patients.append((key, fields))
        elif resource_type == "Observation":
            observations.append((index, resource))
        elif resource_type == "Consent":
            consents.append((index, resource))

    lookup = {key: fields for key, fields in patients}
    records: list[_CanonicalModel] = []

    def _resolve(reference: Any, index: int, kind: str) -> tuple[str, dict[str, Any]] | None:
        patient_id = _reference_id(reference)
        if patient_id is not None and patient_id in lookup:
            return patient_id, lookup[patient_id]
        if not patients:
            logger.warning(
                event="deidentifier.normalizer.orphan_skipped",
                message="Skipped a resource because the bundle has no patients.",
                resource_type=kind,
                record_index=index,
            )
            return None
        logger.warning(
            event="deidentifier.normalizer.reference_fallback",
            message="Unresolved patient reference; attributed to the first patient in the bundle.",
            resource_type=kind,
            record_index=index,
            reference_present=patient_id is not None,
        )
        return patients[0]

    for index, resource in observations:
        resolved = _resolve(
            _as_mapping(resource.get("subject")).get("reference"), index, "Observation"
        )
        if resolved is None:
            continue
        key, fields = resolved
        records.append(
            ObservationRecord(
                patient_key=key, clinical=_observation_clinical(resource), **fields
            )
        )

    if not records:
        records.extend(
            PatientRecord(patient_key=key, **fields) for key, fields in patients
        )

    for index, resource in consents:
        resolved = _resolve(
            _as_mapping(resource.get("patient")).get("reference"), index, "Consent"
        )
        if resolved is None:
            continue
        key, fields = resolved
        records.append(
            ConsentRecord(patient_key=key, **fields, **_consent_fields(resource))
        )

    return records
