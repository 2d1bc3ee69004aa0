"""Tests for canonical hashing and provenance records."""

from __future__ import annotations

import hashlib

import pytest

from services.deidentifier.errors import ProvenanceLinkError
from services.deidentifier.generalizer import generalize_chain
from services.deidentifier.hashing import (
    batch_hash,
    canonical_hash,
    canonical_json,
    consent_hash,
    is_hex_digest,
    provenance_proof,
)
from services.deidentifier.models import ChainRecord
from services.deidentifier.provenance import (
    build_provenance_record,
    verify_coarsening,
    verify_provenance_record,
)

from factories import FIXED_TIMESTAMP, make_storage_record


def test_canonical_json_sorts_keys_without_whitespace() -> None:
    assert canonical_json({"b": 1, "a": "é"}) == '{"a":"é","b":1}'


def test_canonical_hash_ignores_key_order() -> None:
    first = canonical_hash({"gender": "Female", "country": "Uganda"})
    second = canonical_hash({"country": "Uganda", "gender": "Female"})

    assert first == second
    assert is_hex_digest(first)
    assert first == hashlib.sha256(b'{"country":"Uganda","gender":"Female"}').hexdigest()


def test_canonical_hash_of_model_uses_release_mapping() -> None:
    record = make_storage_record()

    assert canonical_hash(record) == canonical_hash(record.to_release())


def test_canonical_hash_rejects_unsupported_values() -> None:
    with pytest.raises(TypeError):
        canonical_hash(["not", "a", "record"])  # type: ignore[arg-type]


def test_consent_hash_covers_only_pid_and_consent_metadata() -> None:
    digest = consent_hash("PID-001", "2024-01-01", "data_sharing", FIXED_TIMESTAMP)

    expected = canonical_hash(
        {
            "anonymousPID": "PID-001",
            "consentDate": "2024-01-01",
            "consentType": "data_sharing",
            "timestamp": FIXED_TIMESTAMP,
        }
    )
    assert digest == expected
    assert digest != consent_hash("PID-002", "2024-01-01", "data_sharing", FIXED_TIMESTAMP)


def test_provenance_proof_requires_hex_digests() -> None:
    storage_hash = canonical_hash({"a": 1})

    with pytest.raises(ValueError):
        provenance_proof(storage_hash, "not-a-digest", "PID-001", "Observation", "t")
    with pytest.raises(ValueError):
        provenance_proof(storage_hash.upper(), storage_hash, "PID-001", "Observation", "t")


def test_batch_hash_concatenates_constituent_digests() -> None:
    records = [make_storage_record("PID-001"), make_storage_record("PID-002")]

    expected = hashlib.sha256(
        (canonical_hash(records[0]) + canonical_hash(records[1])).encode("utf-8")
    ).hexdigest()

    assert batch_hash(records) == expected
    assert batch_hash(reversed(records)) != expected
    assert batch_hash([]) == hashlib.sha256(b"").hexdigest()


def test_build_provenance_record_links_storage_and_chain() -> None:
    storage = make_storage_record()
    chain = generalize_chain(storage)

    record = build_provenance_record(storage, chain, FIXED_TIMESTAMP)

    assert record.anonymous_pid == "PID-001"
    assert record.storage_hash == canonical_hash(storage)
    assert record.chain_hash == canonical_hash(chain)
    assert record.provenance_proof == provenance_proof(
        record.storage_hash, record.chain_hash, "PID-001", "Observation", FIXED_TIMESTAMP
    )
    assert record.model_dump(by_alias=True, mode="json")["resourceType"] == "Observation"
    assert verify_provenance_record(record, storage=storage, chain=chain)


def test_verify_provenance_record_detects_tampering() -> None:
    storage = make_storage_record()
    chain = generalize_chain(storage)
    record = build_provenance_record(storage, chain, FIXED_TIMESTAMP)

    other_storage = make_storage_record(age_range="40-44")
    forged = record.model_copy(update={"timestamp": "2030-01-01T00:00:00+00:00"})

    assert not verify_provenance_record(record, storage=other_storage)
    assert not verify_provenance_record(record, chain=generalize_chain(other_storage))
    assert not verify_provenance_record(forged)


@pytest.mark.parametrize(
    "override, field",
    [
        ({"anonymous_pid": "PID-002"}, "anonymous_pid"),
        ({"country": "Kenya"}, "country"),
        ({"gender": "Male"}, "gender"),
        ({"age_range": "40-49"}, "ageRange"),
        ({"age_range": "20-39"}, "ageRange"),
        ({"age_range": None}, "ageRange"),
        ({"occupation_category": "Healthcare"}, "occupationCategory"),
        ({"clinical": {"Lab Test": "Glucose", "Test Date": "2024-04", "Result": "95"}}, "Test Date"),
        ({"clinical": {"Lab Test": "Insulin", "Test Date": "2024-03", "Result": "95"}}, "Lab Test"),
        (
            {"clinical": {"Lab Test": "Glucose", "Test Date": "2024-03", "Result": "95", "Extra": "x"}},
            "clinical",
        ),
    ],
)
def test_verify_coarsening_rejects_mismatches(override, field) -> None:
    storage = make_storage_record()
    chain = generalize_chain(storage).model_copy(update=override)

    with pytest.raises(ProvenanceLinkError) as excinfo:
        verify_coarsening(storage, chain)

    assert excinfo.value.field == field
    assert excinfo.value.stage == "provenance"


def test_verify_coarsening_allows_dropped_unparseable_dates() -> None:
    storage = make_storage_record(
        clinical={"Lab Test": "Glucose", "Test Date": "unknown", "Result": "95"}
    )
    chain = generalize_chain(storage)

    assert "Test Date" not in chain.clinical
    verify_coarsening(storage, chain)


def test_build_provenance_record_refuses_a_non_coarsening() -> None:
    storage = make_storage_record()
    chain = ChainRecord(
        anonymous_pid="PID-001",
        resource_type="Observation",
        age_range="30-39",
        country="Kenya",
        gender="Female",
        clinical={"Lab Test": "Glucose", "Test Date": "2024-03", "Result": "95"},
    )

    with pytest.raises(ProvenanceLinkError):
        build_provenance_record(storage, chain, FIXED_TIMESTAMP)
