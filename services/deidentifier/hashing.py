"""Deterministic SHA-256 digests over generalized records and consent metadata.

All digests are lowercase hexadecimal strings of 64 characters. Records are
serialized as JSON with sorted keys and compact separators before hashing so
that field order never changes a digest.
"""

from __future__ import annotations

import hashlib
import json
import re
from collections.abc import Iterable, Mapping
from typing import Any

from pydantic import BaseModel

__all__ = [
    "HEX_DIGEST_PATTERN",
    "batch_hash",
    "canonical_hash",
    "canonical_json",
    "consent_hash",
    "is_hex_digest",
    "provenance_proof",
    "sha256_hex",
]

HEX_DIGEST_PATTERN = re.compile(r"^[a-f0-9]{64}$")


def is_hex_digest(value: object) -> bool:
    return isinstance(value, str) and HEX_DIGEST_PATTERN.match(value) is not None


def sha256_hex(data: str) -> str:
    return hashlib.sha256(data.encode("utf-8")).hexdigest()


def _release_mapping(record: BaseModel | Mapping[str, Any]) -> Mapping[str, Any]:
    to_release = getattr(record, "to_release", None)
    if callable(to_release):
        return to_release()
    if isinstance(record, BaseModel):
        return record.model_dump(mode="json", by_alias=True)
    if isinstance(record, Mapping):
        return record
    raise TypeError("record must be a mapping or a pydantic model")


def canonical_json(record: BaseModel | Mapping[str, Any]) -> str:
    """Return the canonical JSON text hashed for ``record``."""

    return json.dumps(
        _release_mapping(record),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    )


def canonical_hash(record: BaseModel | Mapping[str, Any]) -> str:
    """Return the SHA-256 digest of ``record``'s canonical JSON."""

    return sha256_hex(canonical_json(record))


def consent_hash(
    anonymous_pid: str, consent_date: str, consent_type: str, timestamp: str
) -> str:
    """Return the consent digest.

    Only the anonymous PID and consent metadata are hashed; patient
    demographics never enter the digest.
    """

    return canonical_hash(
        {
            "anonymousPID": anonymous_pid,
            "consentDate": consent_date,
            "consentType": consent_type,
            "timestamp": timestamp,
        }
    )


def provenance_proof(
    storage_hash: str,
    chain_hash: str,
    anonymous_pid: str,
    resource_type: str,
    timestamp: str,
) -> str:
    """Return the digest binding a storage hash to the chain hash derived from it."""

    for name, digest in (("storageHash", storage_hash), ("chainHash", chain_hash)):
        if not is_hex_digest(digest):
            raise ValueError(f"{name} must be a 64 character lowercase hex digest")
    return canonical_hash(
        {
            "storageHash": storage_hash,
            "chainHash": chain_hash,
            "anonymousPID": anonymous_pid,
            "resourceType": resource_type,
            "timestamp": timestamp,
        }
    )


def batch_hash(records: Iterable[BaseModel | Mapping[str, Any]]) -> str:
    """Return the digest over the concatenated canonical hashes of ``records``.

    Constituents are joined without a separator. Each one is checked to be a
    64 character digest, which keeps the concatenation unambiguous.
    """

    digests: list[str] = []
    for record in records:
        digest = canonical_hash(record)
        if not is_hex_digest(digest):  # pragma: no cover - sha256 invariant
            raise ValueError("canonical hash is not a 64 character hex digest")
        digests.append(digest)
    return sha256_hex("".join(digests))
