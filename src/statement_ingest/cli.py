"""Click CLI entry point for the statement-ingest command.

Handles argument parsing, config loading, and error display. All business
logic is delegated to ``pipeline``, ``categorizer``, ``config``, and
``export`` modules.
"""

from __future__ import annotations

import dataclasses
import logging
import sys
from datetime import date
from pathlib import Path

import click

from statement_ingest import __version__
from statement_ingest.categorizer import CategorizationEngine
from statement_ingest.models import AppConfig, MatchType, RawMovement

_FORMAT_CHOICES = ["auto", "text", "tabular", "pdf"]
_MATCH_TYPE_CHOICES = [m.value for m in MatchType]


def _configure_logging(verbose: bool, debug: bool) -> None:
    """Set up logging based on verbosity flags."""
    if debug:
        level = logging.DEBUG
    elif verbose:
        level = logging.INFO
    else:
        level = logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(levelname)s: %(message)s",
        force=True,
    )


def _load_app_config(root: Path) -> AppConfig:
    """Load ``ingest.toml`` or exit with a hint to run ``init``."""
    from statement_ingest.config import load_config

    try:
        return load_config(root)
    except FileNotFoundError as exc:
        click.echo(
            f"Error: {exc}. Run 'statement-ingest init' to create the project structure.",
            err=True,
        )
        sys.exit(1)
    except Exception as exc:
        click.echo(f"Error loading configuration: {exc}", err=True)
        sys.exit(1)


def _build_engine(app_config: AppConfig, root: Path) -> CategorizationEngine:
    from statement_ingest.rule_store import build_rule_store

    try:
        store = build_rule_store(app_config, root)
    except ValueError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)
    return CategorizationEngine(rule_store=store)


@click.group()
@click.version_option(version=__version__, prog_name="statement-ingest")
def cli() -> None:
    """Parse, validate and categorize bank statement exports."""


@cli.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--format",
    "input_format",
    type=click.Choice(_FORMAT_CHOICES),
    default="auto",
    show_default=True,
    help="Input format; 'auto' decides from the file name.",
)
@click.option("--strict", is_flag=True, default=False, help="Abort on the first malformed record.")
@click.option("--account", default=None, help="Account id for account-scoped rules.")
@click.option("--output", type=click.Path(dir_okay=False), default=None, help="CSV file to write.")
@click.option(
    "--against",
    "previous",
    multiple=True,
    type=click.Path(exists=True, dir_okay=False),
    help="Earlier export to check for already imported movements (repeatable).",
)
@click.option("--verbose", is_flag=True, default=False, help="Detailed progress output.")
@click.option("--debug", is_flag=True, default=False, help="Developer-level diagnostics.")
def parse(
    file: str,
    input_format: str,
    strict: bool,
    account: str | None,
    output: str | None,
    previous: tuple[str, ...],
    verbose: bool,
    debug: bool,
) -> None:
    """Ingest a statement FILE and export the categorized movements."""
    _configure_logging(verbose, debug)
    root = Path.cwd()

    app_config = _load_app_config(root)
    parser_config = app_config.parser
    if strict:
        parser_config = dataclasses.replace(parser_config, tolerate_format_errors=False)

    engine = _build_engine(app_config, root)

    from statement_ingest.exceptions import MalformedRecordError
    from statement_ingest.export import export, load_export, print_summary
    from statement_ingest.pipeline import ingest_file

    existing: list[RawMovement] = []
    for previous_path in previous:
        try:
            existing.extend(load_export(previous_path))
        except (OSError, ValueError) as exc:
            click.echo(f"Error loading previous export {previous_path}: {exc}", err=True)
            sys.exit(1)

    path = Path(file)
    kind = None if input_format == "auto" else input_format
    account_id = account or app_config.account_id
    if verbose:
        click.echo(f"Ingesting {path}")

    try:
        result = ingest_file(
            path,
            parser_config,
            engine,
            kind=kind,
            account_id=account_id,
            existing=existing,
        )
    except MalformedRecordError as exc:
        click.echo(f"Error: malformed record in {path.name}: {exc}", err=True)
        sys.exit(1)
    except Exception as exc:
        click.echo(f"Error ingesting {path.name}: {exc}", err=True)
        sys.exit(1)

    # Export results
    output_path = Path(output) if output else root / app_config.output_dir / f"{path.stem}.csv"
    try:
        written = export(result.movements, output_path, account_id=account_id)
        if verbose:
            click.echo(f"Wrote output to {written}")
    except Exception as exc:
        click.echo(f"Error writing output: {exc}", err=True)
        sys.exit(1)

    print_summary(result, path.name)


@cli.group()
def rules() -> None:
    """List, add and test categorization rules."""


@rules.command("list")
@click.option("--account", default=None, help="Include rules scoped to this account.")
def list_rules(account: str | None) -> None:
    """Show the active rules in evaluation order."""
    _configure_logging(verbose=False, debug=False)
    root = Path.cwd()
    app_config = _load_app_config(root)
    engine = _build_engine(app_config, root)
    engine.reload_rules(account or app_config.account_id)

    for rule in engine.rules:
        target = f"{rule.category}/{rule.subcategory}" if rule.subcategory else rule.category
        scope = f" [{rule.account_id}]" if rule.account_id else ""
        click.echo(
            f"{rule.priority:>3}  {rule.id:<20} {rule.match_type.value:<11} "
            f"{rule.pattern!r} -> {target}{scope}"
        )


@rules.command("add")
@click.option("--name", required=True, help="Rule name.")
@click.option("--pattern", required=True, help="Text or regular expression to match.")
@click.option("--category", required=True, help="Category to assign.")
@click.option("--subcategory", default=None, help="Subcategory to assign.")
@click.option(
    "--match-type",
    type=click.Choice(_MATCH_TYPE_CHOICES),
    default=MatchType.CONTAINS.value,
    show_default=True,
)
@click.option("--priority", type=int, default=5, show_default=True, help="Lower wins.")
@click.option("--account", default=None, help="Scope the rule to one account.")
@click.option("--id", "rule_id", default=None, help="Rule id (default: derived from the name).")
def add_rule(
    name: str,
    pattern: str,
    category: str,
    subcategory: str | None,
    match_type: str,
    priority: int,
    account: str | None,
    rule_id: str | None,
) -> None:
    """Append a rule to the project's rules file."""
    from statement_ingest.config import RULES_FILE, load_rules, rule_from_dict, save_rules

    root = Path.cwd()
    app_config = _load_app_config(root)
    if app_config.rule_store.kind != "toml":
        click.echo(
            f"Error: rules can only be added to a TOML rules file "
            f"(store is {app_config.rule_store.kind!r}).",
            err=True,
        )
        sys.exit(1)
    rules_path = root / (app_config.rule_store.path or RULES_FILE)

    new_rule = rule_from_dict(
        {
            "id": rule_id,
            "name": name,
            "pattern": pattern,
            "match_type": match_type,
            "category": category,
            "subcategory": subcategory,
            "priority": priority,
            "account_id": account,
        }
    )

    try:
        existing = load_rules(rules_path) if rules_path.exists() else []
    except Exception as exc:
        click.echo(f"Error loading rules: {exc}", err=True)
        sys.exit(1)

    if any(r.id == new_rule.id for r in existing):
        click.echo(f"Error: a rule with id {new_rule.id!r} already exists.", err=True)
        sys.exit(1)

    try:
        save_rules(rules_path, [*existing, new_rule])
    except Exception as exc:
        click.echo(f"Error saving rules: {exc}", err=True)
        sys.exit(1)

    click.echo(f"Added rule {new_rule.id!r}: {new_rule.pattern!r} -> {new_rule.category}")


@rules.command("test")
@click.argument("description")
@click.option("--amount", default="-1", show_default=True, help="Movement amount, e.g. -1.234,56.")
@click.option("--account", default=None, help="Include rules scoped to this account.")
def try_rules(description: str, amount: str, account: str | None) -> None:
    """Show which rules match DESCRIPTION and the resulting category."""
    _configure_logging(verbose=False, debug=False)
    root = Path.cwd()
    app_config = _load_app_config(root)
    engine = _build_engine(app_config, root)

    from statement_ingest.exceptions import NormalizationError
    from statement_ingest.normalizer import parse_locale_amount

    try:
        value = parse_locale_amount(amount)
    except NormalizationError:
        click.echo(f"Error: invalid amount {amount!r}", err=True)
        sys.exit(1)

    account_id = account or app_config.account_id
    matching = engine.matching_rules(description, account_id=account_id)
    if matching:
        click.echo("Matching rules:")
        for rule in matching:
            evaluation = engine.evaluate_rule(description, rule)
            click.echo(f"  {rule.name} (priority {rule.priority}, confidence {evaluation.confidence})")
    else:
        click.echo("No rule matches.")

    result = engine.categorize_movement(
        RawMovement(date=date.today(), description=description, amount=value)
    )
    target = result.detected_category
    if result.detected_subcategory:
        target = f"{target}/{result.detected_subcategory}"
    click.echo(f"Result: {target} (confidence {result.confidence}, via {result.applied_rule_name})")


@cli.command()
@click.option(
    "--dir", "target_dir", default=".", type=click.Path(), help="Directory to initialize."
)
def init(target_dir: str) -> None:
    """Initialize a new data directory with the standard structure."""
    from statement_ingest.config import initialize

    target = Path(target_dir).resolve()

    try:
        initialize(target)
    except Exception as exc:
        click.echo(f"Error initializing project: {exc}", err=True)
        sys.exit(1)

    click.echo(f"Initialized statement-ingest project in {target}")
