"""Batch orchestration for two-stage de-identification.

A run performs the following steps, aborting the whole batch on the first
failure:

1. Normalize tabular rows or a FHIR-shaped bundle into canonical records.
2. Assign anonymous PIDs serially, in first-encounter order.
3. Generalize every record to storage strength.
4. Check the storage set for leaked identifiers, missing demographics and
   bad PIDs, then enforce k-anonymity over it (reject, or suppress when the
   ``suppress`` policy is configured). Suppressed patients get no consent
   hash and no new mapping entry.
5. Derive chain-strength records from the storage records and bind each pair
   with a provenance record.
6. Compute consent hashes.
7. Re-validate both release sets with :class:`OutputValidator`.
8. Emit the audit event.

Steps 3 and 5 are pure and run on a thread pool when ``workers > 1``; results
keep input order.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from types import MappingProxyType
from typing import Any, Callable, Iterable, Mapping, Sequence, TypeVar

from .config import KAnonymityPolicy, Settings, get_settings
from .errors import (
    ConfigurationError,
    DeidentificationError,
    KAnonymityViolation,
    NormalizationError,
)
from .generalizer import generalize_chain, generalize_storage
from .hashing import batch_hash, consent_hash
from .identity import IdentityMap
from .kanonymity import KAnonymityReport, evaluate_k_anonymity, suppress_violations
from .logging import (
    deidentifier_logging_context,
    get_logger,
    record_deidentification_audit,
)
from .logging_utils import scrub_for_logging
from .models import (
    ChainRecord,
    ConsentHash,
    ConsentRecord,
    ProvenanceRecord,
    StorageRecord,
)
from .normalizer import normalize_records
from .provenance import build_provenance_record
from .reporting import summarize_batch
from .validation import (
    OutputValidator,
    validate_identifiers,
    validate_no_pii,
    validate_required_demographics,
)

__all__ = [
    "BatchContext",
    "Clock",
    "DeidentificationPipeline",
    "DeidentificationResult",
]

Clock = Callable[[], datetime]

logger = get_logger(__name__)

_In = TypeVar("_In")
_Out = TypeVar("_Out")


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


@dataclass(slots=True)
class BatchContext:
    """State owned by a single batch; never shared between runs."""

    batch_id: str
    identity_map: IdentityMap
    as_of: date
    timestamp: str


@dataclass(slots=True, frozen=True)
class DeidentificationResult:
    """Artifacts produced by one successful batch."""

    batch_id: str
    anonymized_records: tuple[StorageRecord, ...]
    patient_mapping: Mapping[str, str]
    chain_records: tuple[ChainRecord, ...]
    provenance_records: tuple[ProvenanceRecord, ...]
    consent_hashes: tuple[ConsentHash, ...]
    storage_batch_hash: str
    chain_batch_hash: str
    kanonymity: KAnonymityReport
    suppressed_count: int = 0
    timestamp: str = field(default="")

    def release_payload(self) -> dict[str, Any]:
        """Return the collaborator-facing payload.

        The patient mapping is deliberately absent; it stays with the caller.
        """

        return {
            "batchId": self.batch_id,
            "anonymizedRecords": [record.to_release() for record in self.anonymized_records],
            "chainRecords": [record.to_release() for record in self.chain_records],
            "provenanceRecords": [
                record.model_dump(mode="json", by_alias=True)
                for record in self.provenance_records
            ],
            "consentHashes": [
                record.model_dump(mode="json", by_alias=True)
                for record in self.consent_hashes
            ],
            "storageBatchHash": self.storage_batch_hash,
            "chainBatchHash": self.chain_batch_hash,
            "kAnonymity": self.kanonymity.to_dict(),
            "suppressedCount": self.suppressed_count,
        }

    def to_dict(self) -> dict[str, Any]:
        """Return the full payload including the ``patientMapping``."""

        payload = self.release_payload()
        payload["patientMapping"] = dict(self.patient_mapping)
        return payload


class DeidentificationPipeline:
    """Run raw clinical batches through both generalization stages."""

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        clock: Clock | None = None,
        as_of: date | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        pipeline_settings = self._settings.pipeline
        # model_copy(update=...) skips field validation.
        if pipeline_settings.k < 1:
            raise ConfigurationError("k must be a positive integer.", details={"field": "k"})
        if pipeline_settings.workers < 1:
            raise ConfigurationError(
                "workers must be a positive integer.", details={"field": "workers"}
            )
        self._clock = clock or _utcnow
        self._as_of = as_of

    @property
    def settings(self) -> Settings:
        return self._settings

    def run(
        self,
        payload: Any,
        *,
        input_format: str | None = None,
        identity_map: IdentityMap | None = None,
        batch_id: str | None = None,
    ) -> DeidentificationResult:
        """De-identify ``payload`` and return the release artifacts.

        ``identity_map`` seeds PID assignment (for example from a persisted
        mapping). The batch assigns PIDs on a copy; the released mapping is
        merged back into ``identity_map`` only when the batch succeeds. Any
        failure raises a
        :class:`~services.deidentifier.errors.DeidentificationError`, nothing is
        released and ``identity_map`` is left unchanged.
        """

        pipeline_settings = self._settings.pipeline
        now = self._clock()
        with deidentifier_logging_context(
            batch_id=batch_id, input_format=input_format
        ) as bound_batch_id:
            context = BatchContext(
                batch_id=bound_batch_id,
                identity_map=(
                    IdentityMap.from_mapping(identity_map.as_mapping())
                    if identity_map is not None
                    else IdentityMap()
                ),
                as_of=self._as_of or now.date(),
                timestamp=now.isoformat(),
            )
            logger.info(
                event="deidentifier.batch.started",
                message="Starting de-identification batch.",
                k=pipeline_settings.k,
                policy=pipeline_settings.kanonymity_policy.value,
                workers=pipeline_settings.workers,
            )
            try:
                result = self._run(payload, context, input_format=input_format)
            except DeidentificationError as exc:
                logger.warning(
                    event="deidentifier.batch.rejected",
                    message="Batch rejected; no records were released.",
                    stage=exc.stage,
                    error_type=type(exc).__name__,
                    details=scrub_for_logging(dict(exc.details)),
                )
                record_deidentification_audit(
                    batch_id=context.batch_id,
                    status="rejected",
                    record_count=0,
                    patient_count=len(context.identity_map),
                    timestamp=context.timestamp,
                    metadata={"stage": exc.stage, "error_type": type(exc).__name__},
                )
                raise

            if identity_map is not None:
                identity_map.merge(result.patient_mapping)
            logger.info(
                event="deidentifier.batch.completed",
                message="De-identification batch released.",
                summary=summarize_batch(result),
            )
            record_deidentification_audit(
                batch_id=result.batch_id,
                status="released",
                record_count=len(result.anonymized_records),
                chain_record_count=len(result.chain_records),
                patient_count=len(result.patient_mapping),
                consent_count=len(result.consent_hashes),
                suppressed_count=result.suppressed_count,
                storage_batch_hash=result.storage_batch_hash,
                chain_batch_hash=result.chain_batch_hash,
                timestamp=context.timestamp,
                metadata={
                    "k": result.kanonymity.k,
                    "policy": pipeline_settings.kanonymity_policy.value,
                    "kanonymity_bypassed": result.kanonymity.bypassed,
                },
            )
            return result

    def _map(self, func: Callable[[_In], _Out], items: Sequence[_In]) -> list[_Out]:
        workers = self._settings.pipeline.workers
        if workers <= 1 or len(items) <= 1:
            return [func(item) for item in items]
        with ThreadPoolExecutor(max_workers=workers) as executor:
            return list(executor.map(func, items))

    def _run(
        self,
        payload: Any,
        context: BatchContext,
        *,
        input_format: str | None,
    ) -> DeidentificationResult:
        settings = self._settings.pipeline
        canonical = normalize_records(
            payload,
            input_format=input_format,
            hospital_country=settings.hospital_country,
        )
        consents = [record for record in canonical if isinstance(record, ConsentRecord)]
        releasable = [
            record for record in canonical if not isinstance(record, ConsentRecord)
        ]
        if not releasable:
            raise NormalizationError(
                "Input contains no patient or observation records to release.",
                details={"record_count": len(canonical)},
            )

        # Single serialization point: every PID exists before parallel work.
        identity_map = context.identity_map
        seeded_keys = set(identity_map)
        assignments = [(record, identity_map.assign(record.patient_key)) for record in releasable]
        consent_pids = [identity_map.assign(record.patient_key) for record in consents]

        storage = self._map(
            lambda pair: generalize_storage(
                pair[0],
                pair[1],
                as_of=context.as_of,
                hospital_country=settings.hospital_country,
            ),
            assignments,
        )

        # Incomplete records fail here instead of forming their own cohort.
        validate_no_pii(storage, label="storage")
        validate_required_demographics(storage, label="storage")
        validate_identifiers(storage, identity_map, label="storage")

        storage, report, suppressed = self._enforce_k_anonymity(storage)

        released_pids = {record.anonymous_pid for record in storage}
        suppressed_pids = {pid for _, pid in assignments} - released_pids
        kept_consents = [
            (record, pid)
            for record, pid in zip(consents, consent_pids)
            if pid not in suppressed_pids
        ]
        patient_mapping = {
            key: pid
            for key, pid in identity_map.as_mapping().items()
            if pid not in suppressed_pids or key in seeded_keys
        }

        chain = self._map(generalize_chain, storage)
        provenance = self._map(
            lambda pair: build_provenance_record(pair[0], pair[1], context.timestamp),
            list(zip(storage, chain)),
        )

        batch_pids = list(
            dict.fromkeys(
                [record.anonymous_pid for record in storage]
                + [pid for _, pid in kept_consents]
            )
        )
        consent_hashes = self._consent_hashes(context, kept_consents, batch_pids)

        validator = OutputValidator(settings.k, identity_map)
        validator.validate(storage, label="storage")
        validator.validate(chain, label="chain")

        return DeidentificationResult(
            batch_id=context.batch_id,
            anonymized_records=tuple(storage),
            patient_mapping=MappingProxyType(patient_mapping),
            chain_records=tuple(chain),
            provenance_records=tuple(provenance),
            consent_hashes=tuple(consent_hashes),
            storage_batch_hash=batch_hash(storage),
            chain_batch_hash=batch_hash(chain),
            kanonymity=report,
            suppressed_count=suppressed,
            timestamp=context.timestamp,
        )

    def _enforce_k_anonymity(
        self, storage: list[StorageRecord]
    ) -> tuple[list[StorageRecord], KAnonymityReport, int]:
        settings = self._settings.pipeline
        report = evaluate_k_anonymity(storage, settings.k)
        if not report.violations:
            return storage, report, 0

        if settings.kanonymity_policy is KAnonymityPolicy.REJECT:
            raise KAnonymityViolation(report.violations, k=settings.k, label="storage")

        kept = suppress_violations(storage, report)
        suppressed = len(storage) - len(kept)
        logger.warning(
            event="deidentifier.kanonymity.suppressed",
            message="Suppressed records of undersized cohorts instead of rejecting the batch.",
            k=settings.k,
            suppressed_count=suppressed,
            violations=[violation.to_dict() for violation in report.violations],
        )
        return kept, evaluate_k_anonymity(kept, settings.k), suppressed

    def _consent_hashes(
        self,
        context: BatchContext,
        consents: Iterable[tuple[ConsentRecord, str]],
        batch_pids: Sequence[str],
    ) -> list[ConsentHash]:
        settings = self._settings.pipeline
        batch_date = context.as_of.isoformat()
        hashes: list[ConsentHash] = []
        covered: set[str] = set()

        def _issue(pid: str, consent_date: str, consent_type: str) -> None:
            hashes.append(
                ConsentHash(
                    anonymous_pid=pid,
                    consent_date=consent_date,
                    consent_type=consent_type,
                    timestamp=context.timestamp,
                    hash=consent_hash(pid, consent_date, consent_type, context.timestamp),
                )
            )
            covered.add(pid)

        for record, pid in consents:
            _issue(
                pid,
                record.consent_date or batch_date,
                record.consent_type or settings.default_consent_type,
            )

        if settings.consent_per_patient:
            for pid in batch_pids:
                if pid not in covered:
                    _issue(pid, batch_date, settings.default_consent_type)

        return hashes
