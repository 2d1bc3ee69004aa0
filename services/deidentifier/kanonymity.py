"""Demographic cohort grouping and k-anonymity enforcement."""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, TypeVar

from .errors import GroupViolation, KAnonymityViolation
from .generalizer import UNKNOWN
from .logging import get_logger
from .models import ChainRecord, StorageRecord

__all__ = [
    "DEFAULT_K",
    "KAnonymityReport",
    "evaluate_k_anonymity",
    "group_key",
    "group_records",
    "suppress_violations",
    "validate_k_anonymity",
]

DEFAULT_K = 5

logger = get_logger(__name__)

_Generalized = TypeVar("_Generalized", StorageRecord, ChainRecord)


def group_key(record: StorageRecord | ChainRecord | Mapping[str, Any]) -> str:
    """Return ``country|ageRange|gender|occupation`` for ``record``.

    Release mappings (as produced by ``to_release``) are accepted as well.
    """

    if isinstance(record, Mapping):
        parts = (
            record.get("country"),
            record.get("ageRange"),
            record.get("gender"),
            record.get("occupationCategory"),
        )
    else:
        parts = (
            record.country,
            record.age_range,
            record.gender,
            record.occupation_category,
        )
    country, age, gender, occupation = parts
    return "|".join(
        (str(country or ""), str(age or ""), str(gender or ""), str(occupation or UNKNOWN))
    )


def group_records(
    records: Iterable[StorageRecord | ChainRecord | Mapping[str, Any]]
) -> dict[str, int]:
    """Return cohort sizes keyed by group key, in first-encounter order."""

    return dict(Counter(group_key(record) for record in records))


@dataclass(slots=True, frozen=True)
class KAnonymityReport:
    """Outcome of a k-anonymity evaluation."""

    k: int
    total: int
    groups: dict[str, int]
    violations: tuple[GroupViolation, ...] = ()
    bypassed: bool = False

    @property
    def passed(self) -> bool:
        return not self.violations

    def to_dict(self) -> dict[str, object]:
        return {
            "k": self.k,
            "total": self.total,
            "groupCount": len(self.groups),
            "groups": dict(self.groups),
            "violations": [violation.to_dict() for violation in self.violations],
            "bypassed": self.bypassed,
        }


def evaluate_k_anonymity(
    records: Sequence[StorageRecord | ChainRecord | Mapping[str, Any]], k: int = DEFAULT_K
) -> KAnonymityReport:
    """Group ``records`` and report every cohort smaller than ``k``.

    A corpus with fewer than ``k`` records cannot satisfy any cohort bound; the
    check is bypassed and a warning is logged.
    """

    if k < 1:
        raise ValueError("k must be a positive integer")

    groups = group_records(records)
    total = len(records)

    if total < k:
        logger.warning(
            event="deidentifier.kanonymity.bypassed",
            message="Corpus is smaller than k; k-anonymity check bypassed.",
            k=k,
            total=total,
            group_count=len(groups),
        )
        return KAnonymityReport(k=k, total=total, groups=groups, bypassed=True)

    violations = tuple(
        GroupViolation(key=key, count=count)
        for key, count in groups.items()
        if count < k
    )
    return KAnonymityReport(k=k, total=total, groups=groups, violations=violations)


def validate_k_anonymity(
    records: Sequence[StorageRecord | ChainRecord | Mapping[str, Any]],
    k: int = DEFAULT_K,
    *,
    label: str | None = None,
) -> KAnonymityReport:
    """Return the report, raising :class:`KAnonymityViolation` on any violation."""

    report = evaluate_k_anonymity(records, k)
    if report.violations:
        raise KAnonymityViolation(report.violations, k=k, label=label)
    return report


def suppress_violations(
    records: Sequence[_Generalized], report: KAnonymityReport
) -> list[_Generalized]:
    """Return the records that do not belong to a violating cohort."""

    if not report.violations:
        return list(records)
    rejected = {violation.key for violation in report.violations}
    return [record for record in records if group_key(record) not in rejected]
