"""Anonymous identity assignment.

An :class:`IdentityMap` belongs to exactly one batch. It hands out sequential
``PID-NNN`` identifiers in first-encounter order and is the only place that
knows which original patient key a PID stands for.
"""

from __future__ import annotations

import re
from collections.abc import Iterator, Mapping
from types import MappingProxyType

from .errors import InvalidIdentifierError
from .models import AnonymousIdentity

__all__ = ["PID_PATTERN", "PID_PREFIX", "IdentityMap", "format_pid", "is_valid_pid"]

PID_PREFIX = "PID-"
PID_PATTERN = re.compile(r"^PID-(\d{3,})$")


def format_pid(sequence: int) -> str:
    """Return the PID for ``sequence`` (``1`` -> ``PID-001``, ``1000`` -> ``PID-1000``)."""

    if sequence < 1:
        raise ValueError("PID sequence numbers start at 1")
    return f"{PID_PREFIX}{sequence:03d}"


def is_valid_pid(value: object) -> bool:
    return isinstance(value, str) and PID_PATTERN.match(value) is not None


class IdentityMap:
    """Injective mapping of original patient keys to anonymous PIDs."""

    __slots__ = ("_by_key", "_by_pid", "_next")

    def __init__(self) -> None:
        self._by_key: dict[str, str] = {}
        self._by_pid: dict[str, str] = {}
        self._next = 1

    @classmethod
    def from_mapping(cls, existing: Mapping[str, str]) -> "IdentityMap":
        """Seed a map from a persisted ``original key -> PID`` mapping.

        Every PID must be well formed and used once. New assignments continue
        after the highest seeded sequence number.
        """

        identity_map = cls()
        highest = 0
        for key, pid in existing.items():
            if not key:
                raise InvalidIdentifierError(
                    "Seeded identity map contains an empty patient key.",
                    field="originalPatientKey",
                    stage="identity",
                )
            match = PID_PATTERN.match(pid) if isinstance(pid, str) else None
            if match is None:
                raise InvalidIdentifierError(
                    "Seeded identity map contains a malformed PID.",
                    field="anonymousPID",
                    stage="identity",
                )
            if pid in identity_map._by_pid:
                raise InvalidIdentifierError(
                    f"Seeded identity map assigns {pid} to more than one patient.",
                    field="anonymousPID",
                    stage="identity",
                )
            identity_map._by_key[key] = pid
            identity_map._by_pid[pid] = key
            highest = max(highest, int(match.group(1)))
        identity_map._next = highest + 1
        return identity_map

    def assign(self, patient_key: str) -> str:
        """Return the PID for ``patient_key``, allocating the next one if new."""

        if not patient_key:
            raise InvalidIdentifierError(
                "Cannot assign a PID to an empty patient key.",
                field="patientKey",
                stage="identity",
            )
        existing = self._by_key.get(patient_key)
        if existing is not None:
            return existing
        pid = format_pid(self._next)
        self._next += 1
        self._by_key[patient_key] = pid
        self._by_pid[pid] = patient_key
        return pid

    def merge(self, other: Mapping[str, str]) -> None:
        """Add the ``original key -> PID`` pairs of ``other`` to this map.

        Pairs already present are skipped. A key or PID that ``other`` binds
        differently raises :class:`InvalidIdentifierError` and leaves the map
        untouched.
        """

        additions: list[tuple[str, str]] = []
        for key, pid in other.items():
            match = PID_PATTERN.match(pid) if isinstance(pid, str) else None
            if not key or match is None:
                raise InvalidIdentifierError(
                    "Merged identity map contains an invalid entry.",
                    field="anonymousPID",
                    stage="identity",
                )
            if self._by_key.get(key) == pid:
                continue
            if key in self._by_key or pid in self._by_pid:
                raise InvalidIdentifierError(
                    f"Merging would bind {pid} inconsistently.",
                    field="anonymousPID",
                    stage="identity",
                )
            additions.append((key, pid))

        for key, pid in additions:
            self._by_key[key] = pid
            self._by_pid[pid] = key
            self._next = max(self._next, int(PID_PATTERN.match(pid).group(1)) + 1)

    def get(self, patient_key: str) -> str | None:
        return self._by_key.get(patient_key)

    def contains_pid(self, pid: str) -> bool:
        return pid in self._by_pid

    def identities(self) -> list[AnonymousIdentity]:
        """Return every identity in assignment order."""

        return [
            AnonymousIdentity(anonymous_pid=pid, original_patient_key=key)
            for key, pid in self._by_key.items()
        ]

    def as_mapping(self) -> Mapping[str, str]:
        """Return a read-only ``original key -> PID`` view."""

        return MappingProxyType(dict(self._by_key))

    def __len__(self) -> int:
        return len(self._by_key)

    def __iter__(self) -> Iterator[str]:
        return iter(self._by_key)

    def __contains__(self, patient_key: object) -> bool:
        return patient_key in self._by_key

    def __repr__(self) -> str:
        # Original keys are PHI; only the size is shown.
        return f"IdentityMap(size={len(self)})"
