"""Configuration loading, writing, and project initialization.

Reads TOML config files using stdlib ``tomllib`` and writes them using
``tomli_w``.  Depends only on ``models.py``.
"""

from __future__ import annotations

import re
import sys
from datetime import date
from pathlib import Path

if sys.version_info >= (3, 11):
    import tomllib
else:
    try:
        import tomllib
    except ModuleNotFoundError:
        import tomli as tomllib  # type: ignore[no-redef]

import tomli_w

from statement_ingest.models import (
    AppConfig,
    CategorizationRule,
    MatchType,
    ParserConfig,
    RuleStoreConfig,
)

CONFIG_FILE = "ingest.toml"
RULES_FILE = "rules.toml"

# ---------------------------------------------------------------------------
# Default file content
# ---------------------------------------------------------------------------

_DEFAULT_CONFIG_TOML = """\
# statement-ingest configuration

[general]
output_dir = "output"
# account_id = "ing-nomina"     # Selects account-scoped rules

[parser]
tolerate_format_errors = true   # false: abort on the first malformed line/row
validate_balances = true        # Check running balances
detect_source_categories = true # Fill source categories from description keywords

[validation]
ignore_duplicates = false
exclude_duplicates = false      # true: drop repeated movements instead of only warning
min_date = 2020-01-01
# max_date = 2030-12-31         # Default: tomorrow

[rules]
store = "toml"                  # "toml", "http", or "none"
path = "rules.toml"
# url = "http://localhost:8000"
timeout = 10.0
"""

_DEFAULT_RULES_TOML = """\
# Categorization rules, applied on top of the built-in ones.
# Lower priority values are evaluated first and win.
# match_type: "contains", "starts-with", "ends-with", "exact", or "regex".
# Leave out account_id for a rule that applies to every account.

# [[rules]]
# id = "lidl"
# name = "Lidl"
# pattern = "LIDL"
# match_type = "contains"
# category = "Alimentación"
# subcategory = "Supermercado"
# priority = 2
"""

# Directories that ``initialize`` creates.
_INIT_DIRS = [
    "input",
    "output",
]

_SLUG_RE = re.compile(r"[^a-z0-9]+")


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(root: Path) -> AppConfig:
    """Load ``ingest.toml`` from *root* and return an :class:`AppConfig`.

    Missing sections and keys fall back to the defaults.

    Args:
        root: Project root directory containing ``ingest.toml``.

    Returns:
        A fully-populated :class:`AppConfig` instance.

    Raises:
        FileNotFoundError: If ``ingest.toml`` does not exist.
        ValueError: If a value has the wrong type or the file is not
            valid TOML.
    """
    data = _read_toml(Path(root) / CONFIG_FILE)

    general = data.get("general", {})
    parser = data.get("parser", {})
    validation = data.get("validation", {})
    rules = data.get("rules", {})

    defaults = ParserConfig()
    parser_config = ParserConfig(
        tolerate_format_errors=bool(
            parser.get("tolerate_format_errors", defaults.tolerate_format_errors)
        ),
        ignore_duplicates=bool(validation.get("ignore_duplicates", defaults.ignore_duplicates)),
        exclude_duplicates=bool(
            validation.get("exclude_duplicates", defaults.exclude_duplicates)
        ),
        validate_balances=bool(parser.get("validate_balances", defaults.validate_balances)),
        detect_source_categories=bool(
            parser.get("detect_source_categories", defaults.detect_source_categories)
        ),
        min_date=_as_date(validation.get("min_date", defaults.min_date), "min_date"),
        max_date=_as_date(validation.get("max_date"), "max_date"),
    )

    store_kind = rules.get("store", "toml")
    if store_kind not in ("toml", "http", "none"):
        raise ValueError(f"{CONFIG_FILE}: unknown rules store {store_kind!r}")

    return AppConfig(
        parser=parser_config,
        rule_store=RuleStoreConfig(
            kind=store_kind,
            path=rules.get("path", RULES_FILE),
            url=rules.get("url", ""),
            timeout=float(rules.get("timeout", 10.0)),
        ),
        output_dir=general.get("output_dir", "output"),
        account_id=general.get("account_id"),
    )


def load_rules(path: Path) -> list[CategorizationRule]:
    """Load the ``[[rules]]`` tables of a rules file.

    Args:
        path: Path to the rules TOML file.

    Returns:
        Rules in file order, inactive ones included.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If the file is not valid TOML or a rule is incomplete.
    """
    data = _read_toml(Path(path))
    rules: list[CategorizationRule] = []
    for position, entry in enumerate(data.get("rules", []), start=1):
        try:
            rules.append(rule_from_dict(entry))
        except (KeyError, ValueError, TypeError) as exc:
            raise ValueError(f"{path}: rule {position} is invalid: {exc}") from exc
    return rules


def save_rules(path: Path, rules: list[CategorizationRule]) -> None:
    """Write *rules* as ``[[rules]]`` tables, replacing the file.

    The explanatory header of a fresh ``rules.toml`` is kept at the top.
    """
    body = tomli_w.dumps({"rules": [rule_to_dict(r) for r in rules]}) if rules else ""
    Path(path).write_text(_DEFAULT_RULES_TOML + "\n" + body, encoding="utf-8")


def rule_from_dict(data: dict) -> CategorizationRule:
    """Build a rule from a TOML table or JSON object.

    ``id`` defaults to a slug of ``name``; ``match_type`` defaults to
    ``contains``.

    Raises:
        KeyError: If ``name``, ``pattern`` or ``category`` is missing.
        ValueError: If ``match_type`` is unknown.
    """
    name = str(data["name"])
    return CategorizationRule(
        id=str(data.get("id") or _slug(name)),
        name=name,
        pattern=str(data["pattern"]),
        match_type=MatchType(data.get("match_type", MatchType.CONTAINS.value)),
        category=str(data["category"]),
        subcategory=data.get("subcategory") or None,
        priority=int(data.get("priority", 5)),
        active=bool(data.get("active", True)),
        account_id=data.get("account_id") or None,
    )


def rule_to_dict(rule: CategorizationRule) -> dict:
    """Serialize a rule for TOML; ``None`` fields are left out."""
    data = {
        "id": rule.id,
        "name": rule.name,
        "pattern": rule.pattern,
        "match_type": MatchType(rule.match_type).value,
        "category": rule.category,
        "subcategory": rule.subcategory,
        "priority": rule.priority,
        "active": rule.active,
        "account_id": rule.account_id,
    }
    return {key: value for key, value in data.items() if value is not None}


def initialize(target_dir: Path) -> None:
    """Create the standard directory structure and default config files.

    Idempotent: existing directories are left alone and existing files
    are **not** overwritten.

    Args:
        target_dir: The directory in which to create the project structure.
    """
    target_dir = Path(target_dir)
    target_dir.mkdir(parents=True, exist_ok=True)

    for d in _INIT_DIRS:
        (target_dir / d).mkdir(parents=True, exist_ok=True)

    _write_if_missing(target_dir / CONFIG_FILE, _DEFAULT_CONFIG_TOML)
    _write_if_missing(target_dir / RULES_FILE, _DEFAULT_RULES_TOML)


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _read_toml(path: Path) -> dict:
    """Read and parse a TOML file."""
    with open(path, "rb") as f:
        return tomllib.load(f)


def _as_date(value: object, key: str) -> date | None:
    """Accept a TOML date or an ISO string."""
    if value is None or isinstance(value, date):
        return value
    if isinstance(value, str):
        return date.fromisoformat(value)
    raise ValueError(f"{CONFIG_FILE}: {key} must be a date, got {value!r}")


def _slug(name: str) -> str:
    return _SLUG_RE.sub("-", name.lower()).strip("-") or "rule"


def _write_if_missing(path: Path, content: str) -> None:
    """Write *content* to *path* only if the file does not already exist."""
    if not path.exists():
        path.write_text(content, encoding="utf-8")
