"""Helpers shared by the statement parsers."""

from __future__ import annotations

import logging
import re

from statement_ingest.exceptions import MalformedRecordError
from statement_ingest.models import ParseMetadata, ParserConfig, RawMovement

logger = logging.getLogger(__name__)

_WHITESPACE_RE = re.compile(r"\s+")
_EDGE_ASTERISKS_RE = re.compile(r"^\*+|\*+$")


def clean_description(raw: str) -> str:
    """Trim, drop quotes and edge asterisks, and collapse whitespace."""
    text = raw.replace('"', "")
    text = _WHITESPACE_RE.sub(" ", text).strip()
    return _EDGE_ASTERISKS_RE.sub("", text).strip()


def record_failure(
    errors: list[str],
    location: str,
    reason: str,
    config: ParserConfig,
) -> None:
    """Handle a malformed line or row according to the caller's mode.

    In tolerant mode the record is skipped and a warning is appended to
    *errors*. In strict mode the failure is escalated.

    Raises:
        MalformedRecordError: If ``config.tolerate_format_errors`` is False.
    """
    if not config.tolerate_format_errors:
        raise MalformedRecordError(location, reason)
    logger.warning("Skipping malformed %s: %s", location, reason)
    errors.append(f"skipped malformed {location} ({reason})")


def fill_date_range(metadata: ParseMetadata, movements: list[RawMovement]) -> None:
    """Record the parsed count and the earliest/latest movement dates."""
    metadata.parsed_count = len(movements)
    if movements:
        dates = [m.date for m in movements]
        metadata.first_date = min(dates)
        metadata.last_date = max(dates)
