"""Quasi-identifier generalization at storage and chain strength.

Every function in this module is pure: outputs depend only on the arguments,
so records can be generalized concurrently once PIDs are assigned.

Storage strength keeps enough precision for query-time analytics (5-year age
buckets, exact clinical dates, sub-national region). Chain strength is always
derived from a storage record and coarsens it further (10-year buckets,
``YYYY-MM`` dates, no region, broad occupation), so re-applying it to a chain
record returns the same record.
"""

from __future__ import annotations

import re
from datetime import date, datetime
from typing import Mapping

from .models import (
    ChainRecord,
    ConsentRecord,
    GeneralizationStrength,
    ObservationRecord,
    PatientRecord,
    StorageRecord,
)

__all__ = [
    "CHAIN_DATE_FIELDS",
    "UNKNOWN",
    "age_from_birth_date",
    "age_range",
    "chain_age_range",
    "chain_occupation_category",
    "generalize",
    "generalize_chain",
    "generalize_storage",
    "is_date_field",
    "match_country",
    "match_region",
    "normalize_country",
    "normalize_gender",
    "parse_age_range",
    "storage_occupation_category",
    "truncate_to_month",
]

UNKNOWN = "Unknown"

# Country -> city/district patterns recognized in free-text addresses.
COUNTRY_PATTERNS: dict[str, tuple[str, ...]] = {
    "Uganda": ("kampala", "entebbe", "jinja", "gulu", "mbale", "mbarara", "masaka"),
    "Kenya": ("nairobi", "mombasa", "kisumu", "nakuru"),
    "Tanzania": ("dar es salaam", "arusha", "dodoma"),
    "Rwanda": ("kigali",),
    "Ghana": ("accra", "kumasi"),
    "Nigeria": ("lagos", "abuja", "kano"),
    "South Africa": ("johannesburg", "cape town", "pretoria"),
    "Ethiopia": ("addis ababa",),
    "Zimbabwe": ("harare",),
    "Zambia": ("lusaka",),
}

_COUNTRY_REGEXES: tuple[tuple[str, re.Pattern[str]], ...] = tuple(
    (
        country,
        re.compile(
            r"\b(?:"
            + "|".join(re.escape(term) for term in (*cities, country.lower()))
            + r")\b"
        ),
    )
    for country, cities in COUNTRY_PATTERNS.items()
)

_CITY_REGEXES: tuple[tuple[str, re.Pattern[str]], ...] = tuple(
    (city, re.compile(rf"\b{re.escape(city)}\b"))
    for cities in COUNTRY_PATTERNS.values()
    for city in cities
)

# Storage categories, checked in order; the first keyword hit wins.
STORAGE_OCCUPATION_RULES: tuple[tuple[str, tuple[str, ...]], ...] = (
    (
        "Healthcare Worker",
        ("doctor", "nurse", "medical", "healthcare", "physician", "surgeon"),
    ),
    ("Education Worker", ("teacher", "professor", "educator", "lecturer")),
    ("Government Worker", ("government", "civil service", "public servant")),
    ("Business Professional", ("business", "entrepreneur", "merchant", "trader")),
    ("Agriculture Worker", ("farmer", "agriculture", "farming")),
    ("Technology Worker", ("tech", "software", "engineer", "developer", "programmer")),
    ("Service Worker", ("service", "retail", "sales")),
    ("Student", ("student", "pupil")),
    ("Not Employed", ("unemployed", "retired")),
)

CHAIN_OCCUPATION_RULES: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("Healthcare", ("health", "medical", "doctor", "nurse")),
    ("Education", ("education", "teacher")),
    ("Agriculture", ("agriculture", "farmer")),
    ("Technology", ("technology", "engineer", "tech")),
    ("Business", ("business", "commerce", "trade")),
)

# Clinical date fields coarsened at chain strength. Any other clinical field
# whose last word is "date" ("Test Date", "consent_date") is treated the same
# way; "Update" or "Vaccine Candidate" are not dates.
CHAIN_DATE_FIELDS: frozenset[str] = frozenset(
    {
        "effectiveDate",
        "onsetDate",
        "diagnosisDate",
        "abatementDate",
        "admissionDate",
        "dischargeDate",
        "performedDate",
        "collectionDate",
    }
)

_GENDERS: dict[str, str] = {
    "male": "Male",
    "m": "Male",
    "female": "Female",
    "f": "Female",
    "other": "Other",
    "o": "Other",
}

_AGE_RANGE = re.compile(r"^(\d+)-(\d+)$")
_YEAR_MONTH = re.compile(r"^(\d{4})-(\d{2})$")
_NAME_WORDS = re.compile(r"[A-Z]?[a-z]+|[A-Z]+(?![a-z])|\d+")
_BIRTH_DATE_FORMATS = ("%Y-%m-%d", "%Y/%m/%d", "%d/%m/%Y")

_Canonical = PatientRecord | ObservationRecord | ConsentRecord


# ---------------------------------------------------------------------------
# Demographic helpers
# ---------------------------------------------------------------------------


def _joined_lower(*texts: str | None) -> str:
    return " ".join(text for text in texts if text).lower()


def match_country(*texts: str | None) -> str | None:
    """Return the first country whose city or name appears in ``texts``."""

    haystack = _joined_lower(*texts)
    if not haystack:
        return None
    for country, pattern in _COUNTRY_REGEXES:
        if pattern.search(haystack):
            return country
    return None


def normalize_country(value: str | None) -> str | None:
    """Return the canonical spelling of a country name.

    Known countries map to their table spelling regardless of case; other
    all-lowercase names are title-cased and anything else is kept as written.
    """

    if value is None:
        return None
    text = " ".join(value.split())
    if not text:
        return None
    folded = text.casefold()
    for country in COUNTRY_PATTERNS:
        if country.casefold() == folded:
            return country
    return text.title() if text.islower() else text


def match_region(*texts: str | None) -> str | None:
    """Return the title-cased city or district found in ``texts``, if known."""

    haystack = _joined_lower(*texts)
    if not haystack:
        return None
    for city, pattern in _CITY_REGEXES:
        if pattern.search(haystack):
            return city.title()
    return None


def _parse_birth_date(value: str) -> date | None:
    text = value.strip()
    try:
        return datetime.fromisoformat(text).date()
    except ValueError:
        pass
    for fmt in _BIRTH_DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


def age_from_birth_date(birth_date: str | None, as_of: date) -> int | None:
    """Return the age in whole years at ``as_of``, or ``None`` when unknown."""

    if not birth_date:
        return None
    born = _parse_birth_date(birth_date)
    if born is None:
        return None
    years = as_of.year - born.year
    if (as_of.month, as_of.day) < (born.month, born.day):
        years -= 1
    return years if years >= 0 else None


def age_range(age: int | None) -> str | None:
    """Return the 5-year bucket for ``age`` (``"35-39"``, ``"<1"``, ``"90+"``)."""

    if age is None or age < 0:
        return None
    if age < 1:
        return "<1"
    if age >= 90:
        return "90+"
    lower = (age // 5) * 5
    return f"{lower}-{lower + 4}"


def chain_age_range(storage_range: str | None) -> str | None:
    """Widen a 5-year bucket to its 10-year bucket.

    Everything below ten collapses into ``"<10"`` so the chain set never holds
    both ``"<10"`` and ``"0-9"``. ``"90+"`` and 10-year buckets are returned
    unchanged.
    """

    if storage_range is None:
        return None
    if storage_range in ("<1", "<10"):
        return "<10"
    if storage_range == "90+":
        return "90+"
    match = _AGE_RANGE.match(storage_range)
    if match is None:
        return storage_range
    lower = (int(match.group(1)) // 10) * 10
    if lower < 10:
        return "<10"
    return f"{lower}-{lower + 9}"


def parse_age_range(value: str | None) -> tuple[int, float] | None:
    """Return the inclusive ``(low, high)`` bounds of an age bucket label."""

    if value is None:
        return None
    if value == "<1":
        return (0, 0)
    if value == "<10":
        return (0, 9)
    if value == "90+":
        return (90, float("inf"))
    match = _AGE_RANGE.match(value)
    if match is None:
        return None
    return (int(match.group(1)), int(match.group(2)))


def normalize_gender(gender: str | None) -> str:
    """Map common gender spellings to ``Male``/``Female``/``Other``."""

    if not gender or not gender.strip():
        return UNKNOWN
    return _GENDERS.get(gender.strip().lower(), gender.strip())


def _categorize(
    value: str | None, rules: tuple[tuple[str, tuple[str, ...]], ...]
) -> str:
    if not value or not value.strip():
        return UNKNOWN
    lowered = value.lower()
    for category, keywords in rules:
        if any(keyword in lowered for keyword in keywords):
            return category
    return "Other"


def storage_occupation_category(occupation: str | None) -> str:
    """Return the storage-strength category for a free-text occupation."""

    return _categorize(occupation, STORAGE_OCCUPATION_RULES)


def chain_occupation_category(category: str | None) -> str:
    """Return the broad chain category for a storage category.

    ``Unknown`` stays ``Unknown``; chain categories map to themselves.
    """

    if category is None or category == UNKNOWN:
        return UNKNOWN
    return _categorize(category, CHAIN_OCCUPATION_RULES)


# ---------------------------------------------------------------------------
# Dates
# ---------------------------------------------------------------------------


def is_date_field(name: str) -> bool:
    """Return ``True`` when clinical field ``name`` holds a date."""

    if name in CHAIN_DATE_FIELDS:
        return True
    words = _NAME_WORDS.findall(name)
    return bool(words) and words[-1].lower() == "date"


def truncate_to_month(value: str | None) -> str | None:
    """Return ``value`` as ``YYYY-MM``; ``None`` when it is not a date."""

    if value is None:
        return None
    text = value.strip()
    match = _YEAR_MONTH.match(text)
    if match is not None:
        return text if 1 <= int(match.group(2)) <= 12 else None
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    return f"{parsed.year:04d}-{parsed.month:02d}"


# ---------------------------------------------------------------------------
# Record level generalization
# ---------------------------------------------------------------------------


def generalize_storage(
    record: _Canonical,
    pid: str,
    *,
    as_of: date | None = None,
    hospital_country: str | None = None,
) -> StorageRecord:
    """Return the storage-strength generalization of a canonical ``record``.

    Direct identifiers are dropped. The age comes from the explicit ``age``
    field, else from the birth date relative to ``as_of`` (today by default).
    The country comes from the record, else from the address text, else from
    ``hospital_country``.
    """

    reference_date = as_of or date.today()
    age = record.age
    if age is None:
        age = age_from_birth_date(record.birth_date, reference_date)

    country = (
        normalize_country(record.country)
        or match_country(record.address, record.city)
        or normalize_country(hospital_country)
    )

    return StorageRecord(
        anonymous_pid=pid,
        resource_type=record.resource_type,
        age_range=age_range(age),
        country=country,
        region=match_region(record.address, record.city),
        gender=normalize_gender(record.gender),
        occupation_category=storage_occupation_category(record.occupation),
        clinical=dict(record.clinical),
    )


def _chain_clinical(clinical: Mapping[str, str]) -> dict[str, str]:
    coarsened: dict[str, str] = {}
    for key, value in clinical.items():
        if not is_date_field(key):
            coarsened[key] = value
            continue
        month = truncate_to_month(value)
        if month is not None:
            coarsened[key] = month
    return coarsened


def generalize_chain(record: StorageRecord | ChainRecord) -> ChainRecord:
    """Return the chain-strength generalization of a storage ``record``.

    Passing a :class:`ChainRecord` returns an equal record.
    """

    return ChainRecord(
        anonymous_pid=record.anonymous_pid,
        resource_type=record.resource_type,
        age_range=chain_age_range(record.age_range),
        country=record.country,
        gender=record.gender,
        occupation_category=chain_occupation_category(record.occupation_category),
        clinical=_chain_clinical(record.clinical),
    )


def generalize(
    record: _Canonical | StorageRecord | ChainRecord,
    strength: GeneralizationStrength | str,
    *,
    pid: str | None = None,
    as_of: date | None = None,
    hospital_country: str | None = None,
) -> StorageRecord | ChainRecord:
    """Generalize ``record`` to ``strength``.

    Canonical records need ``pid``. Chain strength on a canonical record goes
    through storage strength first; a storage record asked for storage strength
    is returned as-is.
    """

    level = GeneralizationStrength(strength)

    if isinstance(record, ChainRecord):
        if level is GeneralizationStrength.STORAGE:
            raise ValueError("A chain record cannot be generalized back to storage strength.")
        return generalize_chain(record)

    if isinstance(record, StorageRecord):
        if level is GeneralizationStrength.STORAGE:
            return record
        return generalize_chain(record)

    if pid is None:
        raise ValueError("pid is required to generalize a canonical record.")
    storage = generalize_storage(
        record, pid, as_of=as_of, hospital_country=hospital_country
    )
    if level is GeneralizationStrength.STORAGE:
        return storage
    return generalize_chain(storage)
