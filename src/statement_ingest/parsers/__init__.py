"""Parser registry for statement parsers.

Each parser is a module exposing a ``parse(payload, config=None)`` function
that returns a :class:`~statement_ingest.models.ParseResult`. The payload is
a text blob for the ``text`` and ``pdf`` parsers and a 2-D cell grid for
``tabular``. The ``PARSERS`` dict maps parser names (used on the command
line and by :mod:`statement_ingest.pipeline`) to parse functions, and
``get_parser()`` provides a convenient lookup with a clear error on unknown
names.
"""

from __future__ import annotations

from collections.abc import Callable

from statement_ingest.parsers import pdf, tabular, text

PARSERS: dict[str, Callable] = {
    "text": text.parse,
    "tabular": tabular.parse,
    "pdf": pdf.parse,
}


def get_parser(name: str) -> Callable:
    """Look up a parser by name.

    Args:
        name: Parser name, e.g. "text".

    Returns:
        The parse function for the named parser.

    Raises:
        KeyError: If no parser is registered under the given name.
    """
    return PARSERS[name]
