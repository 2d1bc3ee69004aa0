"""Provenance records linking storage-strength and chain-strength records."""

from __future__ import annotations

from .errors import ProvenanceLinkError
from .generalizer import (
    chain_age_range,
    chain_occupation_category,
    is_date_field,
    parse_age_range,
    truncate_to_month,
)
from .hashing import canonical_hash, provenance_proof
from .models import ChainRecord, ProvenanceRecord, StorageRecord

__all__ = [
    "build_provenance_record",
    "verify_coarsening",
    "verify_provenance_record",
]


def _mismatch(field: str, storage: StorageRecord) -> ProvenanceLinkError:
    return ProvenanceLinkError(
        f"Chain record is not a coarsening of its storage record ({field}).",
        field=field,
        anonymous_pid=storage.anonymous_pid,
    )


def verify_coarsening(storage: StorageRecord, chain: ChainRecord) -> None:
    """Raise :class:`ProvenanceLinkError` unless ``chain`` coarsens ``storage``."""

    for field in ("anonymous_pid", "resource_type", "country", "gender"):
        if getattr(storage, field) != getattr(chain, field):
            raise _mismatch(field, storage)

    storage_bounds = parse_age_range(storage.age_range)
    chain_bounds = parse_age_range(chain.age_range)
    if (storage_bounds is None) != (chain_bounds is None):
        raise _mismatch("ageRange", storage)
    if storage_bounds is not None and chain_bounds is not None:
        contains = (
            chain_bounds[0] <= storage_bounds[0] and storage_bounds[1] <= chain_bounds[1]
        )
        if not contains or chain.age_range != chain_age_range(storage.age_range):
            raise _mismatch("ageRange", storage)

    if chain.occupation_category != chain_occupation_category(storage.occupation_category):
        raise _mismatch("occupationCategory", storage)

    extra = set(chain.clinical) - set(storage.clinical)
    if extra:
        raise _mismatch("clinical", storage)
    for key, value in storage.clinical.items():
        if is_date_field(key):
            if key in chain.clinical and chain.clinical[key] != truncate_to_month(value):
                raise _mismatch(key, storage)
        elif chain.clinical.get(key) != value:
            raise _mismatch(key, storage)


def build_provenance_record(
    storage: StorageRecord, chain: ChainRecord, timestamp: str
) -> ProvenanceRecord:
    """Verify the coarsening and return the immutable provenance record."""

    verify_coarsening(storage, chain)
    storage_hash = canonical_hash(storage)
    chain_hash = canonical_hash(chain)
    resource_type = storage.resource_type.value
    return ProvenanceRecord(
        anonymous_pid=storage.anonymous_pid,
        storage_hash=storage_hash,
        chain_hash=chain_hash,
        provenance_proof=provenance_proof(
            storage_hash, chain_hash, storage.anonymous_pid, resource_type, timestamp
        ),
        resource_type=storage.resource_type,
        timestamp=timestamp,
    )


def verify_provenance_record(
    record: ProvenanceRecord,
    *,
    storage: StorageRecord | None = None,
    chain: ChainRecord | None = None,
) -> bool:
    """Return ``True`` when the proof matches its inputs.

    When ``storage`` or ``chain`` is given, its canonical hash must also match
    the hash recorded in ``record``.
    """

    if storage is not None and canonical_hash(storage) != record.storage_hash:
        return False
    if chain is not None and canonical_hash(chain) != record.chain_hash:
        return False
    expected = provenance_proof(
        record.storage_hash,
        record.chain_hash,
        record.anonymous_pid,
        record.resource_type.value,
        record.timestamp,
    )
    return expected == record.provenance_proof
