"""Utility script for de-identifying a CSV export or a FHIR bundle file."""

from __future__ import annotations

import argparse
import csv
import json
import sys
from pathlib import Path
from typing import Any, Iterable

from services.deidentifier.config import KAnonymityPolicy, Settings, get_settings
from services.deidentifier.errors import DeidentificationError
from services.deidentifier.logging import configure_logging
from services.deidentifier.pipeline import DeidentificationPipeline
from services.deidentifier.reporting import summarize_batch


def _positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"expected an integer, got {value!r}") from exc
    if number < 1:
        raise argparse.ArgumentTypeError("k must be at least 1")
    return number


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description=(
            "De-identify a CSV export or FHIR bundle and print the storage and "
            "chain record sets with their provenance proofs as JSON."
        )
    )
    parser.add_argument(
        "input",
        type=Path,
        help="Path to a CSV file (tabular rows) or a JSON file (bundle or list of rows).",
    )
    parser.add_argument(
        "--format",
        dest="input_format",
        choices=("tabular", "bundle"),
        default=None,
        help="Input shape; detected from the file contents when omitted.",
    )
    parser.add_argument(
        "-k",
        dest="k",
        type=_positive_int,
        default=None,
        help="Minimum cohort size (default: DEIDENTIFIER_K or 5).",
    )
    parser.add_argument(
        "--hospital-country",
        dest="hospital_country",
        default=None,
        help="Country used when a record's address does not resolve to one.",
    )
    parser.add_argument(
        "--policy",
        dest="policy",
        choices=[policy.value for policy in KAnonymityPolicy],
        default=None,
        help="Reject the batch on undersized cohorts, or suppress those cohorts.",
    )
    parser.add_argument(
        "--dump-summary",
        action="store_true",
        help="Emit a JSON summary of the batch to stderr.",
    )
    return parser


def _load_payload(path: Path) -> Any:
    if path.suffix.lower() == ".csv":
        with path.open(newline="", encoding="utf-8-sig") as handle:
            return list(csv.DictReader(handle))
    with path.open(encoding="utf-8") as handle:
        return json.load(handle)


def _apply_overrides(settings: Settings, args: argparse.Namespace) -> Settings:
    overrides: dict[str, Any] = {}
    if args.k is not None:
        overrides["k"] = args.k
    if args.hospital_country:
        overrides["hospital_country"] = args.hospital_country
    if args.policy:
        overrides["kanonymity_policy"] = KAnonymityPolicy(args.policy)
    if not overrides:
        return settings
    return settings.model_copy(
        update={"pipeline": settings.pipeline.model_copy(update=overrides)}
    )


def main(argv: Iterable[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(None if argv is None else list(argv))

    settings = _apply_overrides(get_settings(), args)
    configure_logging(
        service_name=settings.app.service_name,
        level=settings.logging.level,
        json=settings.logging.json_logs,
    )

    try:
        payload = _load_payload(args.input)
    except (OSError, UnicodeDecodeError, json.JSONDecodeError, csv.Error) as exc:
        print(f"Unable to read {args.input}: {exc}", file=sys.stderr)
        return 1

    try:
        result = DeidentificationPipeline(settings).run(
            payload, input_format=args.input_format
        )
    except DeidentificationError as exc:
        print(str(exc), file=sys.stderr)
        return 2

    print(json.dumps(result.release_payload(), indent=2))
    if args.dump_summary:
        print(json.dumps(summarize_batch(result)), file=sys.stderr)
    return 0


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    raise SystemExit(main())
