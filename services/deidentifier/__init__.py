"""Two-stage de-identification and provenance-proof service package."""

from pathlib import Path

from dotenv import load_dotenv

from .errors import (
    ConfigurationError,
    DeidentificationError,
    InvalidIdentifierError,
    KAnonymityViolation,
    MissingDemographicError,
    NormalizationError,
    PIILeakError,
    ProvenanceLinkError,
)
from .identity import IdentityMap
from .pipeline import DeidentificationPipeline, DeidentificationResult

__all__ = [
    "__version__",
    "ConfigurationError",
    "DeidentificationError",
    "DeidentificationPipeline",
    "DeidentificationResult",
    "IdentityMap",
    "InvalidIdentifierError",
    "KAnonymityViolation",
    "MissingDemographicError",
    "NormalizationError",
    "PIILeakError",
    "ProvenanceLinkError",
]

__version__ = "0.1.0"

load_dotenv(Path(__file__).resolve().parents[2] / ".env", override=False)
