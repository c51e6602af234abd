"""Rule store interface and implementations.

The categorization engine does not own rule storage. It asks a
:class:`RuleStore` for a fresh snapshot on every categorization call.
Three implementations are provided:

- ``InMemoryRuleStore``: a fixed list, for tests and library callers.
- ``TomlRuleStore``: the project's ``rules.toml``, re-read on every call so
  edits take effect without a restart.
- ``HttpRuleStore``: a remote rules service, queried with ``httpx``.

Every store returns global rules (no ``account_id``) plus, when an account
is given, the rules scoped to that account. Failures surface as
:class:`~statement_ingest.exceptions.RuleStoreError`; the engine turns them
into a fallback to its built-in rules.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from pathlib import Path
from typing import Protocol

import httpx

from statement_ingest import config as config_module
from statement_ingest.exceptions import RuleStoreError
from statement_ingest.models import AppConfig, CategorizationRule

logger = logging.getLogger(__name__)


class RuleStore(Protocol):
    """Protocol that rule stores must implement."""

    def list_rules(self, account_id: str | None = None) -> list[CategorizationRule]:
        """Return global rules plus rules scoped to *account_id*.

        Raises:
            RuleStoreError: If the backing store cannot be read.
        """
        ...


def select_rules(
    rules: Iterable[CategorizationRule],
    account_id: str | None,
) -> list[CategorizationRule]:
    """Keep global rules and, if *account_id* is given, that account's rules."""
    return [r for r in rules if r.account_id is None or r.account_id == account_id]


class InMemoryRuleStore:
    """Rule store over a list held in memory."""

    def __init__(self, rules: Iterable[CategorizationRule] = ()) -> None:
        self._rules = list(rules)

    def list_rules(self, account_id: str | None = None) -> list[CategorizationRule]:
        return select_rules(self._rules, account_id)


class TomlRuleStore:
    """Rule store backed by a ``rules.toml`` file.

    A missing file means "no external rules"; an unreadable or invalid one
    raises :class:`RuleStoreError`.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def list_rules(self, account_id: str | None = None) -> list[CategorizationRule]:
        if not self.path.exists():
            logger.debug("Rules file %s not found; no external rules", self.path)
            return []
        try:
            rules = config_module.load_rules(self.path)
        except (OSError, ValueError) as exc:
            raise RuleStoreError(f"cannot read rules from {self.path}: {exc}") from exc
        return select_rules(rules, account_id)


class HttpRuleStore:
    """Rule store backed by a remote HTTP service.

    Issues ``GET {base_url}/rules`` with an ``account_id`` query parameter
    when an account is given. The response body must be a JSON array of
    rule objects (or an object with a ``rules`` array), using the same keys
    as ``rules.toml``.

    Args:
        base_url: Service root, e.g. ``"http://localhost:8000"``.
        timeout: Request timeout in seconds.
    """

    def __init__(self, base_url: str, timeout: float = 10.0) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def list_rules(self, account_id: str | None = None) -> list[CategorizationRule]:
        params = {"account_id": account_id} if account_id else {}
        url = f"{self.base_url}/rules"

        try:
            response = httpx.get(url, params=params, timeout=self.timeout)
            response.raise_for_status()
        except httpx.TimeoutException as exc:
            raise RuleStoreError(f"rule service timed out: {url}") from exc
        except httpx.HTTPStatusError as exc:
            raise RuleStoreError(
                f"rule service returned HTTP {exc.response.status_code}: "
                f"{exc.response.text[:200]}"
            ) from exc
        except httpx.HTTPError as exc:
            raise RuleStoreError(f"rule service request failed: {exc}") from exc

        try:
            body = response.json()
            entries = body.get("rules", []) if isinstance(body, dict) else body
            rules = [config_module.rule_from_dict(entry) for entry in entries]
        except (ValueError, KeyError, TypeError, AttributeError) as exc:
            raise RuleStoreError(f"rule service sent an invalid response: {exc}") from exc

        return select_rules(rules, account_id)


def build_rule_store(app_config: AppConfig, root: Path) -> RuleStore | None:
    """Create the rule store described by ``[rules]`` in ``ingest.toml``.

    Returns:
        The configured store, or ``None`` for ``store = "none"``.

    Raises:
        ValueError: If ``store = "http"`` is set without a ``url``.
    """
    settings = app_config.rule_store
    if settings.kind == "none":
        return None
    if settings.kind == "http":
        if not settings.url:
            raise ValueError("rules store 'http' requires a url in [rules]")
        return HttpRuleStore(settings.url, timeout=settings.timeout)
    return TomlRuleStore(Path(root) / settings.path)
