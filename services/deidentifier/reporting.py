"""Reporting helpers for the de-identification service."""

from __future__ import annotations

from collections import Counter
from typing import TYPE_CHECKING, Any, Sequence

from .generalizer import is_date_field
from .models import ChainRecord, StorageRecord

if TYPE_CHECKING:  # pragma: no cover - import used only for static typing
    from .pipeline import DeidentificationResult


def summarize_generalization(
    storage_records: Sequence[StorageRecord],
    chain_records: Sequence[ChainRecord],
) -> dict[str, Any]:
    """Aggregate the storage-to-chain coarsening into a JSON friendly summary.

    Only counts are reported: how many age ranges were widened, how many dates
    were truncated to their month or dropped as unparseable, how many regions
    were removed and how many occupation categories were broadened.

    Parameters
    ----------
    storage_records:
        Storage-strength records, in release order.
    chain_records:
        Chain-strength records derived from ``storage_records``, same order.

    Returns
    -------
    dict[str, Any]
        Summary dictionary with keys:

        ``total_records``
            Number of record pairs compared.

        ``transformations``
            Mapping of transformation name to the number of occurrences.

        ``resource_types``
            Mapping of resource type to record count.
    """

    if len(storage_records) != len(chain_records):
        raise ValueError("storage and chain record sets must have the same length")

    transformations: Counter[str] = Counter()
    resource_types: Counter[str] = Counter()

    for storage, chain in zip(storage_records, chain_records):
        resource_types[storage.resource_type.value] += 1
        if storage.age_range != chain.age_range:
            transformations["age_range_widened"] += 1
        if storage.region:
            transformations["region_dropped"] += 1
        if storage.occupation_category != chain.occupation_category:
            transformations["occupation_broadened"] += 1
        for key, value in storage.clinical.items():
            if not is_date_field(key):
                continue
            if key not in chain.clinical:
                transformations["date_dropped"] += 1
            elif chain.clinical[key] != value:
                transformations["date_truncated"] += 1

    return {
        "total_records": len(storage_records),
        "transformations": dict(sorted(transformations.items())),
        "resource_types": dict(sorted(resource_types.items())),
    }


def summarize_batch(result: "DeidentificationResult") -> dict[str, Any]:
    """Return a PHI-free overview of a pipeline result."""

    report = result.kanonymity
    return {
        "batch_id": result.batch_id,
        "record_count": len(result.anonymized_records),
        "patient_count": len(result.patient_mapping),
        "consent_count": len(result.consent_hashes),
        "suppressed_count": result.suppressed_count,
        "kanonymity": {
            "k": report.k,
            "group_count": len(report.groups),
            "smallest_group": min(report.groups.values(), default=0),
            "bypassed": report.bypassed,
        },
        "generalization": summarize_generalization(
            result.anonymized_records, result.chain_records
        ),
        "storage_batch_hash": result.storage_batch_hash,
        "chain_batch_hash": result.chain_batch_hash,
    }


__all__ = ["summarize_batch", "summarize_generalization"]
