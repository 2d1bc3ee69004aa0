"""Record builders shared by the de-identification tests."""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any

from services.deidentifier.models import ResourceKind, StorageRecord

AS_OF = date(2024, 6, 30)
FIXED_NOW = datetime(2024, 6, 30, 12, 0, tzinfo=timezone.utc)
FIXED_TIMESTAMP = FIXED_NOW.isoformat()


def make_row(patient_id: str, **overrides: Any) -> dict[str, Any]:
    """Return a tabular row for a 36 year old woman living in Kampala."""

    row: dict[str, Any] = {
        "Patient ID": patient_id,
        "Patient Name": f"Jane Doe {patient_id}",
        "Address": "Plot 4, Kampala Road, Kampala",
        "Phone Number": "+256700000123",
        "Date of Birth": "1988-06-01",
        "Gender": "F",
        "Lab Test": "Hemoglobin",
        "Test Date": "2024-03-15",
        "Result": "12.5",
        "Unit": "g/dL",
    }
    row.update(overrides)
    return row


def make_male_row(patient_id: str, **overrides: Any) -> dict[str, Any]:
    """Return a tabular row for a 52 year old man living in Nairobi."""

    values: dict[str, Any] = {
        "Patient Name": f"John Roe {patient_id}",
        "Address": "Westlands, Nairobi",
        "Date of Birth": "1972-01-15",
        "Gender": "male",
    }
    values.update(overrides)
    return make_row(patient_id, **values)


def make_storage_record(pid: str = "PID-001", **overrides: Any) -> StorageRecord:
    values: dict[str, Any] = {
        "anonymous_pid": pid,
        "resource_type": ResourceKind.OBSERVATION,
        "age_range": "35-39",
        "country": "Uganda",
        "region": "Kampala",
        "gender": "Female",
        "occupation_category": "Unknown",
        "clinical": {"Lab Test": "Glucose", "Test Date": "2024-03-15", "Result": "95"},
    }
    values.update(overrides)
    return StorageRecord(**values)
