"""Exception hierarchy for statement ingestion.

Parsers and the validator report most problems as diagnostic strings. The
exceptions here cover the few cases that do propagate: normalization
failures (caught by the parsers), strict-mode escalation, and failures of an
external rule store (caught by the categorization engine).
"""

from __future__ import annotations


class IngestError(Exception):
    """Base class for all statement-ingest errors."""


class NormalizationError(IngestError, ValueError):
    """A locale-formatted value could not be converted."""

    def __init__(self, value: object, reason: str) -> None:
        self.value = value
        self.reason = reason
        super().__init__(f"{reason}: {value!r}")


class InvalidDateError(NormalizationError):
    """A date string is malformed or names a non-existent calendar day."""


class InvalidAmountError(NormalizationError):
    """An amount string has non-numeric residue or is not finite."""


class MalformedRecordError(IngestError):
    """A single line or row is malformed and the caller asked for strict mode.

    Attributes:
        location: Human-readable position, e.g. ``"line 4"`` or ``"row 7"``.
        reason: What was wrong with the record.
    """

    def __init__(self, location: str, reason: str) -> None:
        self.location = location
        self.reason = reason
        super().__init__(f"{location}: {reason}")


class RuleStoreError(IngestError):
    """The external rule store could not supply a rule snapshot."""
