"""Bank-statement ingestion: parse, validate, reconcile and categorize."""

__version__ = "0.1.0"
