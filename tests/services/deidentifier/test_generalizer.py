"""Tests for storage and chain strength generalization."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from services.deidentifier.generalizer import (
    age_from_birth_date,
    age_range,
    chain_age_range,
    chain_occupation_category,
    generalize,
    generalize_chain,
    generalize_storage,
    is_date_field,
    match_country,
    match_region,
    normalize_country,
    normalize_gender,
    parse_age_range,
    storage_occupation_category,
    truncate_to_month,
)
from services.deidentifier.models import (
    ChainRecord,
    GeneralizationStrength,
    ObservationRecord,
    PatientRecord,
    StorageRecord,
)

from services.deidentifier.provenance import verify_coarsening

from factories import AS_OF, make_storage_record


def _observation(**overrides) -> ObservationRecord:
    values = {
        "patient_key": "P-100",
        "name": "Jane Doe",
        "address": "Plot 4, Kampala Road, Kampala",
        "phone": "+256700000123",
        "email": "jane@example.org",
        "national_id": "CM12345",
        "birth_date": "1988-06-01",
        "gender": "F",
        "occupation": "Registered Nurse",
        "clinical": {
            "Lab Test": "Glucose",
            "Test Date": "2024-03-15",
            "Result": "95",
        },
    }
    values.update(overrides)
    return ObservationRecord(**values)


@pytest.mark.parametrize(
    "age, expected",
    [
        (0, "<1"),
        (1, "0-4"),
        (4, "0-4"),
        (5, "5-9"),
        (34, "30-34"),
        (35, "35-39"),
        (89, "85-89"),
        (90, "90+"),
        (104, "90+"),
        (None, None),
        (-1, None),
    ],
)
def test_age_range_buckets(age, expected) -> None:
    assert age_range(age) == expected


@pytest.mark.parametrize(
    "storage_range, expected",
    [
        ("<1", "<10"),
        ("0-4", "<10"),
        ("5-9", "<10"),
        ("10-14", "10-19"),
        ("35-39", "30-39"),
        ("30-34", "30-39"),
        ("85-89", "80-89"),
        ("90+", "90+"),
        ("30-39", "30-39"),
        ("<10", "<10"),
        (None, None),
    ],
)
def test_chain_age_range_widens_to_ten_years(storage_range, expected) -> None:
    assert chain_age_range(storage_range) == expected


def test_every_storage_bucket_is_contained_in_its_chain_bucket() -> None:
    for age in range(0, 110):
        storage_range = age_range(age)
        chain_range = chain_age_range(storage_range)
        storage_low, storage_high = parse_age_range(storage_range)
        chain_low, chain_high = parse_age_range(chain_range)
        assert chain_low <= storage_low <= storage_high <= chain_high
        assert chain_age_range(chain_range) == chain_range


@pytest.mark.parametrize(
    "birth_date, expected",
    [
        ("1988-06-01", 36),
        ("1988-07-01", 35),
        ("1988/06/30", 36),
        ("01/07/1988", 35),
        ("2024-06-30", 0),
        ("2030-01-01", None),
        ("not a date", None),
        (None, None),
    ],
)
def test_age_from_birth_date(birth_date, expected) -> None:
    assert age_from_birth_date(birth_date, AS_OF) == expected


def test_country_and_region_matching_uses_word_boundaries() -> None:
    assert match_country("Plot 4, Kampala Road, Kampala") == "Uganda"
    assert match_country("Westlands, Nairobi") == "Kenya"
    assert match_country("12 High Street", "Kigali") == "Rwanda"
    assert match_country("Somewhere in Ghana") == "Ghana"
    assert match_country("Kanoa Street") is None
    assert match_country(None, "") is None

    assert match_region("Plot 4, Kampala Road") == "Kampala"
    assert match_region("Near Dar es Salaam port") == "Dar Es Salaam"
    assert match_region("Kanoa Street") is None


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("F", "Female"),
        ("female", "Female"),
        ("M", "Male"),
        (" male ", "Male"),
        ("o", "Other"),
        ("non-binary", "non-binary"),
        ("", "Unknown"),
        (None, "Unknown"),
    ],
)
def test_normalize_gender(raw, expected) -> None:
    assert normalize_gender(raw) == expected


@pytest.mark.parametrize(
    "occupation, storage, chain",
    [
        ("Registered Nurse", "Healthcare Worker", "Healthcare"),
        ("Secondary school teacher", "Education Worker", "Education"),
        ("Farmer", "Agriculture Worker", "Agriculture"),
        ("Software developer", "Technology Worker", "Technology"),
        ("Market trader", "Business Professional", "Business"),
        ("Civil service clerk", "Government Worker", "Other"),
        ("University student", "Student", "Other"),
        ("Retired", "Not Employed", "Other"),
        ("Astronaut", "Other", "Other"),
        (None, "Unknown", "Unknown"),
        ("  ", "Unknown", "Unknown"),
    ],
)
def test_occupation_categories(occupation, storage, chain) -> None:
    category = storage_occupation_category(occupation)

    assert category == storage
    assert chain_occupation_category(category) == chain
    assert chain_occupation_category(chain) == chain


def test_date_fields_and_month_truncation() -> None:
    assert is_date_field("effectiveDate")
    assert is_date_field("Test Date")
    assert is_date_field("consent_date")
    assert not is_date_field("Result")
    assert not is_date_field("Dates Attended")
    assert not is_date_field("Update")
    assert not is_date_field("Vaccine Candidate")
    assert not is_date_field("Mandate")

    assert truncate_to_month("2024-03-15") == "2024-03"
    assert truncate_to_month("2024-03-15T08:30:00Z") == "2024-03"
    assert truncate_to_month("2024-03") == "2024-03"
    assert truncate_to_month("2024-13") is None
    assert truncate_to_month("last week") is None
    assert truncate_to_month(None) is None


def test_generalize_storage_drops_identifiers() -> None:
    record = generalize_storage(_observation(), "PID-001", as_of=AS_OF)

    assert record.to_release() == {
        "anonymousPID": "PID-001",
        "resourceType": "Observation",
        "ageRange": "35-39",
        "country": "Uganda",
        "region": "Kampala",
        "gender": "Female",
        "occupationCategory": "Healthcare Worker",
        "Lab Test": "Glucose",
        "Test Date": "2024-03-15",
        "Result": "95",
    }


def test_generalize_storage_prefers_explicit_age_and_country() -> None:
    record = generalize_storage(
        _observation(age=61, country="Kenya"), "PID-002", as_of=AS_OF
    )

    assert record.age_range == "60-64"
    assert record.country == "Kenya"


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("uganda", "Uganda"),
        ("  UGANDA ", "Uganda"),
        ("south  africa", "South Africa"),
        ("france", "France"),
        ("DRC", "DRC"),
        ("", None),
        (None, None),
    ],
)
def test_normalize_country(raw, expected) -> None:
    assert normalize_country(raw) == expected


def test_explicit_country_spellings_share_one_cohort() -> None:
    lower = generalize_storage(_observation(country="uganda"), "PID-001", as_of=AS_OF)
    upper = generalize_storage(_observation(country="Uganda"), "PID-002", as_of=AS_OF)

    assert lower.country == upper.country == "Uganda"


def test_generalize_storage_falls_back_to_hospital_country() -> None:
    record = generalize_storage(
        _observation(address="12 Unknown Street"),
        "PID-003",
        as_of=AS_OF,
        hospital_country="Uganda",
    )

    assert record.country == "Uganda"
    assert record.region is None


def test_generalize_storage_without_birth_date_leaves_age_range_empty() -> None:
    record = generalize_storage(
        PatientRecord(patient_key="P-1", gender=None), "PID-004", as_of=AS_OF
    )

    assert record.age_range is None
    assert record.gender == "Unknown"
    assert record.occupation_category == "Unknown"


def test_generalize_chain_coarsens_storage_record() -> None:
    storage = make_storage_record(
        occupation_category="Healthcare Worker",
        clinical={
            "Lab Test": "Glucose",
            "Test Date": "2024-03-15",
            "collectionDate": "sometime",
            "Result": "95",
        },
    )

    chain = generalize_chain(storage)

    assert isinstance(chain, ChainRecord)
    assert chain.to_release() == {
        "anonymousPID": "PID-001",
        "resourceType": "Observation",
        "ageRange": "30-39",
        "country": "Uganda",
        "gender": "Female",
        "occupationCategory": "Healthcare",
        "Lab Test": "Glucose",
        "Test Date": "2024-03",
        "Result": "95",
    }


def test_generalize_chain_keeps_fields_that_only_end_in_date() -> None:
    storage = make_storage_record(
        clinical={"Vaccine Candidate": "ABC-1", "Update": "yes", "Test Date": "2024-03-15"}
    )

    chain = generalize_chain(storage)

    assert chain.clinical == {
        "Vaccine Candidate": "ABC-1",
        "Update": "yes",
        "Test Date": "2024-03",
    }
    verify_coarsening(storage, chain)


def test_chain_generalization_is_a_fixed_point() -> None:
    chain = generalize_chain(make_storage_record())

    assert generalize_chain(chain) == chain
    assert generalize(chain, GeneralizationStrength.CHAIN) == chain


def test_generalize_dispatches_on_strength() -> None:
    canonical = _observation()

    storage = generalize(canonical, "storage", pid="PID-001", as_of=AS_OF)
    chain = generalize(canonical, GeneralizationStrength.CHAIN, pid="PID-001", as_of=AS_OF)

    assert isinstance(storage, StorageRecord)
    assert chain == generalize_chain(storage)
    assert generalize(storage, "storage") is storage


def test_generalize_rejects_invalid_requests() -> None:
    chain = generalize_chain(make_storage_record())

    with pytest.raises(ValueError):
        generalize(chain, "storage")
    with pytest.raises(ValueError):
        generalize(_observation(), "storage")
    with pytest.raises(ValueError):
        generalize(_observation(), "strongest", pid="PID-001")


def test_generalized_records_refuse_identifier_fields() -> None:
    with pytest.raises(ValidationError):
        StorageRecord(
            anonymous_pid="PID-001",
            resource_type="Observation",
            name="Jane Doe",
        )
    with pytest.raises(ValidationError):
        ChainRecord(
            anonymous_pid="PID-001",
            resource_type="Observation",
            clinical={"ageRange": "30-39"},
        )
