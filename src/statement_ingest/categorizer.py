"""Categorization engine: source-category mapping, rules, and heuristics.

Each movement goes through four tiers and stops at the first that gives an
answer:

1. **Source category:** if the institution already labelled the movement
   and the label is in :data:`SOURCE_CATEGORY_MAP`, use that mapping at a
   fixed confidence of 60. Institution labels are coarse, so this is
   deliberately below any rule match.

2. **Rules:** built-in :data:`DEFAULT_RULES` plus the rules supplied by a
   :class:`~statement_ingest.rule_store.RuleStore`, active only, sorted by
   ascending priority. The first rule whose pattern matches the uppercased
   description wins. See :func:`rule_confidence` for the score.

3. **Heuristics:** an ordered list of named amount/keyword checks
   (:data:`DEFAULT_HEURISTICS`).

4. **Default bucket:** ``Ingresos`` for inflows, ``Otros Gastos`` for
   outflows, subcategory ``Sin categorizar``, confidence 10.

Categorization never raises. A broken regex rule logs a warning and never
matches; an unavailable rule store logs an error and the engine runs on
the built-in rules alone.
"""

from __future__ import annotations

import dataclasses
import logging
import re
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from decimal import Decimal

from statement_ingest.exceptions import RuleStoreError
from statement_ingest.models import (
    CategorizationRule,
    CategorizedMovement,
    MatchType,
    RawMovement,
)
from statement_ingest.rule_store import RuleStore

logger = logging.getLogger(__name__)

SOURCE_MAPPING_CONFIDENCE = 60
DEFAULT_CONFIDENCE = 10
MIN_RULE_CONFIDENCE = 50
MAX_RULE_CONFIDENCE = 100
PATTERN_COVERAGE_BONUS = 10

SOURCE_MAPPING_NAME = "source category mapping"
DEFAULT_BUCKET_NAME = "default"
DEFAULT_INCOME_CATEGORY = "Ingresos"
DEFAULT_EXPENSE_CATEGORY = "Otros Gastos"
DEFAULT_SUBCATEGORY = "Sin categorizar"

BASE_CONFIDENCE: dict[MatchType, int] = {
    MatchType.EXACT: 100,
    MatchType.REGEX: 95,
    MatchType.STARTS_WITH: 90,
    MatchType.CONTAINS: 85,
    MatchType.ENDS_WITH: 80,
}


# ---------------------------------------------------------------------------
# Built-in rules and mappings
# ---------------------------------------------------------------------------


def _default_rule(
    rule_id: str,
    name: str,
    pattern: str,
    category: str,
    subcategory: str,
    match_type: MatchType = MatchType.CONTAINS,
) -> CategorizationRule:
    return CategorizationRule(
        id=rule_id,
        name=name,
        pattern=pattern,
        match_type=match_type,
        category=category,
        subcategory=subcategory,
        priority=1,
    )


DEFAULT_RULES: tuple[CategorizationRule, ...] = (
    _default_rule("mercadona", "Mercadona", "MERCADONA", "Alimentación", "Supermercado"),
    _default_rule("bizum-enviado", "Bizum Enviado", "BIZUM ENVIADO", "Bizum", "Enviado"),
    _default_rule("bizum-recibido", "Bizum Recibido", "BIZUM RECIBIDO", "Bizum", "Recibido"),
    _default_rule(
        "gasolineras",
        "Gasolineras",
        r"\b(REPSOL|BP|CEPSA|SHELL|PETRONOR)\b",
        "Transporte",
        "Gasolina",
        match_type=MatchType.REGEX,
    ),
    _default_rule("amazon", "Amazon", "AMAZON", "Compras Online", "Amazon"),
    _default_rule("carrefour", "Carrefour", "CARREFOUR", "Alimentación", "Supermercado"),
    _default_rule("dia", "Supermercados DIA", "SUPERMERCADOS DIA", "Alimentación", "Supermercado"),
    _default_rule("retirada-cajero", "Retirada Cajero", "RETIRADA CAJERO", "Efectivo", "Cajero"),
    _default_rule(
        "transferencia", "Transferencia", "TRANSFERENCIA", "Transferencias", "Transferencia"
    ),
    _default_rule("nomina", "Nómina", "NOMINA", "Ingresos", "Nómina"),
    _default_rule("recibo", "Recibo", "RECIBO", "Gastos Fijos", "Recibo"),
    _default_rule("netflix", "Netflix", "NETFLIX", "Suscripciones", "Streaming"),
    _default_rule("spotify", "Spotify", "SPOTIFY", "Suscripciones", "Música"),
)

# Institution label (uppercased) -> (category, subcategory). ``None`` as the
# subcategory means "use the institution's subcategory, else General".
SOURCE_CATEGORY_MAP: dict[str, tuple[str, str | None]] = {
    "COMPRAS": ("Compras Online", "General"),
    "SUPERMERCADOS": ("Alimentación", "Supermercado"),
    "GASOLINERAS": ("Transporte", "Gasolina"),
    "RESTAURANTES": ("Salidas", "Restaurantes"),
    "CAJEROS": ("Efectivo", "Cajero"),
    "TRANSFERENCIAS": ("Transferencias", "Transferencia"),
    "BIZUM": ("Bizum", None),
    "RECIBOS": ("Gastos Fijos", "Recibo"),
    "NOMINA": ("Ingresos", "Nómina"),
}


def map_source_category(
    category: str | None,
    subcategory: str | None = None,
) -> tuple[str, str] | None:
    """Translate an institution category label, or ``None`` if unknown."""
    if not category:
        return None
    mapped = SOURCE_CATEGORY_MAP.get(category.strip().upper())
    if mapped is None:
        return None
    target, target_sub = mapped
    return target, target_sub or subcategory or "General"


# ---------------------------------------------------------------------------
# Heuristics
# ---------------------------------------------------------------------------

# An inflow above this is most likely a salary payment.
LARGE_INFLOW_THRESHOLD = Decimal("800")
# Outflows below this with supermarket wording are groceries.
SMALL_OUTFLOW_LIMIT = Decimal("100")
# Outflows strictly between these with purchase wording are online shopping.
MEDIUM_OUTFLOW_MIN = Decimal("50")
MEDIUM_OUTFLOW_MAX = Decimal("200")

GROCERY_KEYWORDS = ("SUPER", "MARKET")
ONLINE_KEYWORDS = ("COMPRA", "ONLINE")


@dataclass(frozen=True)
class Heuristic:
    """A named fallback check used when no rule matches.

    Attributes:
        name: Reported as ``applied_rule_name``.
        category: Category to assign when *predicate* holds.
        subcategory: Subcategory to assign.
        confidence: Fixed confidence of this heuristic.
        predicate: Called with the movement; True means "applies".
    """

    name: str
    category: str
    subcategory: str | None
    confidence: int
    predicate: Callable[[RawMovement], bool]


def _large_inflow(movement: RawMovement) -> bool:
    return movement.amount > LARGE_INFLOW_THRESHOLD


def _small_grocery_outflow(movement: RawMovement) -> bool:
    description = movement.description.upper()
    return (
        movement.amount < 0
        and abs(movement.amount) < SMALL_OUTFLOW_LIMIT
        and any(keyword in description for keyword in GROCERY_KEYWORDS)
    )


def _medium_online_outflow(movement: RawMovement) -> bool:
    description = movement.description.upper()
    return (
        movement.amount < 0
        and MEDIUM_OUTFLOW_MIN < abs(movement.amount) < MEDIUM_OUTFLOW_MAX
        and any(keyword in description for keyword in ONLINE_KEYWORDS)
    )


DEFAULT_HEURISTICS: tuple[Heuristic, ...] = (
    Heuristic("heuristic: large inflow", "Ingresos", "Nómina", 70, _large_inflow),
    Heuristic(
        "heuristic: small grocery outflow", "Alimentación", "Supermercado", 60,
        _small_grocery_outflow,
    ),
    Heuristic(
        "heuristic: medium online outflow", "Compras Online", "General", 50,
        _medium_online_outflow,
    ),
)


# ---------------------------------------------------------------------------
# Matchers
# ---------------------------------------------------------------------------


class ContainsMatcher:
    def __init__(self, pattern: str) -> None:
        self.pattern = pattern.upper()

    def matches(self, description: str) -> bool:
        return self.pattern in description.upper()


class StartsWithMatcher:
    def __init__(self, pattern: str) -> None:
        self.pattern = pattern.upper()

    def matches(self, description: str) -> bool:
        return description.upper().startswith(self.pattern)


class EndsWithMatcher:
    def __init__(self, pattern: str) -> None:
        self.pattern = pattern.upper()

    def matches(self, description: str) -> bool:
        return description.upper().endswith(self.pattern)


class ExactMatcher:
    def __init__(self, pattern: str) -> None:
        self.pattern = pattern.upper()

    def matches(self, description: str) -> bool:
        return description.upper() == self.pattern


class RegexMatcher:
    """Case-insensitive search; a pattern that does not compile never matches."""

    def __init__(self, pattern: str, rule_name: str = "") -> None:
        self.regex: re.Pattern[str] | None
        try:
            self.regex = re.compile(pattern, re.IGNORECASE)
        except re.error as exc:
            logger.warning("Regex rule %r has an invalid pattern %r: %s", rule_name, pattern, exc)
            self.regex = None

    def matches(self, description: str) -> bool:
        if self.regex is None:
            return False
        return self.regex.search(description.upper()) is not None


_MATCHERS = {
    MatchType.CONTAINS: ContainsMatcher,
    MatchType.STARTS_WITH: StartsWithMatcher,
    MatchType.ENDS_WITH: EndsWithMatcher,
    MatchType.EXACT: ExactMatcher,
}


def matcher_for(rule: CategorizationRule):
    """Build the matcher for *rule*'s match type."""
    match_type = MatchType(rule.match_type)
    if match_type is MatchType.REGEX:
        return RegexMatcher(rule.pattern, rule.name)
    return _MATCHERS[match_type](rule.pattern)


def rule_confidence(description: str, rule: CategorizationRule) -> int:
    """Score a rule match.

    Base score by match type (exact 100, regex 95, starts-with 90, contains
    85, ends-with 80), plus 10 when the pattern is longer than half the
    description, plus ``10 - priority``, clamped to ``[50, 100]``.
    """
    confidence = BASE_CONFIDENCE[MatchType(rule.match_type)]
    if description and len(rule.pattern) / len(description) > 0.5:
        confidence += PATTERN_COVERAGE_BONUS
    confidence += 10 - rule.priority
    return min(MAX_RULE_CONFIDENCE, max(MIN_RULE_CONFIDENCE, confidence))


@dataclass
class RuleEvaluation:
    """Outcome of trying one rule against one description."""

    matches: bool
    confidence: int | None = None


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


def _active_sorted(rules: Iterable[CategorizationRule]) -> list[CategorizationRule]:
    return sorted((r for r in rules if r.active), key=lambda r: r.priority)


class CategorizationEngine:
    """Assigns a category, subcategory and confidence to movements.

    The engine holds an ordered snapshot of active rules (built-in defaults
    first, then external rules, sorted by priority). With a *rule_store*,
    :meth:`categorize` and :meth:`categorize_all` refresh that snapshot on
    every call; :meth:`categorize_movement` always uses the current one.

    Args:
        rule_store: Source of external rules, or ``None``.
        rules: Extra rules to add to the defaults without a store.
        heuristics: Ordered fallback checks.
    """

    def __init__(
        self,
        rule_store: RuleStore | None = None,
        rules: Iterable[CategorizationRule] = (),
        heuristics: Iterable[Heuristic] = DEFAULT_HEURISTICS,
    ) -> None:
        self.rule_store = rule_store
        self.heuristics = list(heuristics)
        self._rules: list[CategorizationRule] = []
        self._matchers: dict[CategorizationRule, object] = {}
        self._set_rules([*DEFAULT_RULES, *rules])

    @property
    def rules(self) -> list[CategorizationRule]:
        """Copy of the active rules in evaluation order."""
        return list(self._rules)

    # -- rule snapshot --------------------------------------------------------

    def reload_rules(self, account_id: str | None = None) -> None:
        """Replace the snapshot with defaults plus the store's rules.

        Store failures are logged and leave the engine on the built-in
        rules only.
        """
        if self.rule_store is None:
            return
        try:
            external = self.rule_store.list_rules(account_id)
        except (RuleStoreError, OSError) as exc:
            logger.error("Could not load categorization rules, using built-in rules: %s", exc)
            self._set_rules(DEFAULT_RULES)
            return
        self._set_rules([*DEFAULT_RULES, *external])
        logger.debug("Loaded %d external rule(s) for account %s", len(external), account_id)

    def add_rule(self, rule: CategorizationRule) -> None:
        """Add *rule*; inactive rules are ignored."""
        self._set_rules([*self._rules, rule])

    def update_rule(self, rule_id: str, **changes: object) -> CategorizationRule:
        """Replace fields of the rule with id *rule_id*.

        Returns:
            The updated rule.

        Raises:
            KeyError: If no active rule has that id.
        """
        idx = self._index_of(rule_id)
        updated = dataclasses.replace(self._rules[idx], **changes)
        rules = list(self._rules)
        rules[idx] = updated
        self._set_rules(rules)
        return updated

    def remove_rule(self, rule_id: str) -> None:
        """Remove the rule with id *rule_id*.

        Raises:
            KeyError: If no active rule has that id.
        """
        idx = self._index_of(rule_id)
        self._set_rules(self._rules[:idx] + self._rules[idx + 1 :])

    # -- categorization -------------------------------------------------------

    def categorize(
        self,
        movement: RawMovement,
        account_id: str | None = None,
    ) -> CategorizedMovement:
        """Refresh rules from the store, then categorize one movement."""
        self.reload_rules(account_id)
        return self.categorize_movement(movement)

    def categorize_all(
        self,
        movements: Iterable[RawMovement],
        account_id: str | None = None,
    ) -> list[CategorizedMovement]:
        """Refresh rules once, then categorize every movement in order."""
        self.reload_rules(account_id)
        return [self.categorize_movement(m) for m in movements]

    def categorize_movement(self, movement: RawMovement) -> CategorizedMovement:
        """Categorize one movement against the current rule snapshot."""
        mapped = map_source_category(movement.source_category, movement.source_subcategory)
        if mapped is not None:
            return _categorized(
                movement, mapped[0], mapped[1], SOURCE_MAPPING_CONFIDENCE, SOURCE_MAPPING_NAME
            )

        description = movement.description.upper()
        for rule in self._rules:
            if self._matchers[rule].matches(description):
                return _categorized(
                    movement,
                    rule.category,
                    rule.subcategory,
                    rule_confidence(description, rule),
                    rule.name,
                )

        for heuristic in self.heuristics:
            if heuristic.predicate(movement):
                return _categorized(
                    movement,
                    heuristic.category,
                    heuristic.subcategory,
                    heuristic.confidence,
                    heuristic.name,
                )

        category = DEFAULT_INCOME_CATEGORY if movement.amount > 0 else DEFAULT_EXPENSE_CATEGORY
        return _categorized(
            movement, category, DEFAULT_SUBCATEGORY, DEFAULT_CONFIDENCE, DEFAULT_BUCKET_NAME
        )

    # -- rule testing ---------------------------------------------------------

    def matching_rules(
        self,
        description: str,
        account_id: str | None = None,
    ) -> list[CategorizationRule]:
        """Refresh rules, then list every rule matching *description*."""
        self.reload_rules(account_id)
        upper = description.upper()
        return [rule for rule in self._rules if self._matchers[rule].matches(upper)]

    def evaluate_rule(self, description: str, rule: CategorizationRule) -> RuleEvaluation:
        """Try a single (possibly unsaved) rule against *description*."""
        upper = description.upper()
        if not matcher_for(rule).matches(upper):
            return RuleEvaluation(matches=False)
        return RuleEvaluation(matches=True, confidence=rule_confidence(upper, rule))

    # -- internals ------------------------------------------------------------

    def _set_rules(self, rules: Iterable[CategorizationRule]) -> None:
        self._rules = _active_sorted(rules)
        matchers = {}
        for rule in self._rules:
            matchers[rule] = self._matchers.get(rule) or matcher_for(rule)
        self._matchers = matchers

    def _index_of(self, rule_id: str) -> int:
        for idx, rule in enumerate(self._rules):
            if rule.id == rule_id:
                return idx
        raise KeyError(rule_id)


def _categorized(
    movement: RawMovement,
    category: str,
    subcategory: str | None,
    confidence: int,
    rule_name: str,
) -> CategorizedMovement:
    return CategorizedMovement(
        date=movement.date,
        description=movement.description,
        amount=movement.amount,
        balance=movement.balance,
        source_category=movement.source_category,
        source_subcategory=movement.source_subcategory,
        detected_category=category,
        detected_subcategory=subcategory,
        confidence=max(0, min(100, confidence)),
        applied_rule_name=rule_name,
    )
