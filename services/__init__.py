"""Service modules for the clinical de-identification pipeline."""

__all__ = ["deidentifier"]
