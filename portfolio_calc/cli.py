"""
portfolio-calc — CLI entry point.

All commands follow this pattern:
  1. Load ``AppConfig`` via ``load_config()``.
  2. Configure logging.
  3. Open the SQLite database (schema applied idempotently).
  4. Run the calculation / lookup.
  5. Report the result to stdout (``--json`` for machine-readable output).

Install and run::

    pip install -e .
    portfolio-calc --help
    portfolio-calc init-db
    portfolio-calc validate-config
    portfolio-calc add-rate USD BRL 5.0
    portfolio-calc convert 1000 BRL USD
    portfolio-calc score --criteria criteria.json --assets assets.json --user-id u1
    portfolio-calc preview --criteria criteria.json --assets assets.json
    portfolio-calc replay <correlation-id>
    portfolio-calc recommend --request request.json --user-id u1
    portfolio-calc history --user-id u1
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any, Optional

import typer

app = typer.Typer(
    name="portfolio-calc",
    help="Deterministic portfolio scoring, currency conversion and recommendations with an audit trail.",
    add_completion=False,
)


# ── Helpers ───────────────────────────────────────────────────────────────────

def _load_config_or_exit(config_path: Optional[str] = None):
    """Load AppConfig, printing a friendly error and exiting on failure."""
    from portfolio_calc.config import load_config

    try:
        cfg_path = Path(config_path) if config_path else None
        return load_config(cfg_path)
    except FileNotFoundError as exc:
        typer.echo(f"[ERROR] {exc}", err=True)
        raise typer.Exit(code=1)
    except Exception as exc:
        typer.echo(f"[ERROR] Config validation failed: {exc}", err=True)
        raise typer.Exit(code=1)


def _configure_logging(config):
    """Set up logging from config."""
    from portfolio_calc.utils.logging import configure_logging
    configure_logging(config.logging)


def _open_db(config, db_path: Optional[str]):
    """Connection context manager for ``db_path`` (or the configured path)."""
    from portfolio_calc.db.connection import connect_from_config

    db_config = config.database
    if db_path:
        db_config = db_config.model_copy(update={"db_path": db_path})
    return connect_from_config(db_config)


def _read_json_or_exit(path: str, label: str) -> Any:
    file_path = Path(path)
    if not file_path.exists():
        typer.echo(f"[ERROR] {label} file not found: {file_path}", err=True)
        raise typer.Exit(code=1)
    try:
        return json.loads(file_path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        typer.echo(f"[ERROR] {label} JSON parse error: {exc}", err=True)
        raise typer.Exit(code=1)


def _fail(exc: Exception) -> None:
    """Print an engine error and exit 1."""
    from portfolio_calc.errors import PortfolioCalcError

    if isinstance(exc, PortfolioCalcError):
        typer.echo(f"[ERROR] {exc.code}: {exc.message}", err=True)
    else:
        typer.echo(f"[ERROR] {exc}", err=True)
    raise typer.Exit(code=1)


_DB_PATH_OPTION = typer.Option(None, "--db-path", help="Override DB path from config.")
_CONFIG_OPTION = typer.Option(None, "--config", help="Path to TOML config file.")


# ── Commands ──────────────────────────────────────────────────────────────────

@app.command("init-db")
def init_db(
    db_path: Optional[str] = _DB_PATH_OPTION,
    config_path: Optional[str] = _CONFIG_OPTION,
) -> None:
    """Initialize the SQLite database and apply the schema.

    Safe to run multiple times: all DDL uses IF NOT EXISTS.
    """
    from portfolio_calc.db.schema import ALL_TABLE_NAMES, apply_schema

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    target_path = db_path or config.database.db_path
    typer.echo(f"Initializing database at: {target_path}")

    with _open_db(config, db_path) as conn:
        apply_schema(conn)

    typer.echo(f"  Tables: {len(ALL_TABLE_NAMES)} created/verified.")
    typer.echo("[OK] Database ready.")


@app.command("validate-config")
def validate_config(
    config_path: Optional[str] = _CONFIG_OPTION,
    show_full: bool = typer.Option(False, "--full", help="Print the full config as JSON."),
) -> None:
    """Validate the configuration file and print parsed values.

    Exits with code 1 if the config fails validation.
    """
    config = _load_config_or_exit(config_path)

    typer.echo("Configuration validated successfully.")
    typer.echo("")
    typer.echo(f"  Database path:    {config.database.db_path}")
    typer.echo(f"  Decimal:          {config.decimal.precision} digits, {config.decimal.output_places} dp output")
    typer.echo(f"  Base currency:    {config.currency.base_currency}")
    typer.echo(f"  Currencies:       {', '.join(config.currency.supported)}")
    typer.echo(f"  Stale after (h):  {config.currency.stale_threshold_hours}")
    typer.echo(f"  Conversion audit: {config.currency.emit_events}")
    typer.echo(f"  Log level:        {config.logging.level}")
    typer.echo(f"  Debug mode:       {config.debug}")

    if show_full:
        typer.echo("")
        typer.echo("Full config (JSON):")
        typer.echo(json.dumps(config.model_dump(), indent=2, default=str))

    typer.echo("")
    typer.echo("[OK] Config valid.")


@app.command("add-rate")
def add_rate(
    base: str = typer.Argument(..., help="Base currency (1 base = RATE target)."),
    target: str = typer.Argument(..., help="Target currency."),
    rate: str = typer.Argument(..., help="Rate as a decimal string, e.g. 5.0."),
    rate_date: Optional[str] = typer.Option(None, "--date", help="Rate date YYYY-MM-DD (default: today UTC)."),
    fetched_at: Optional[str] = typer.Option(None, "--fetched-at", help="ISO timestamp the rate was fetched (default: now)."),
    source: str = typer.Option("manual", "--source", help="Rate provider name."),
    db_path: Optional[str] = _DB_PATH_OPTION,
    config_path: Optional[str] = _CONFIG_OPTION,
) -> None:
    """Store an exchange rate (replaces the rate for the same pair and day)."""
    from pydantic import ValidationError

    from portfolio_calc.currency.rates import SqliteRateRepository
    from portfolio_calc.db.schema import apply_schema
    from portfolio_calc.models.currency import ExchangeRate
    from portfolio_calc.utils.time_utils import parse_iso_date, parse_iso_datetime, utcnow

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    now = utcnow()
    try:
        record = ExchangeRate(
            base_currency=base,
            target_currency=target,
            rate=rate,
            source=source,
            fetched_at=parse_iso_datetime(fetched_at) if fetched_at else now,
            rate_date=parse_iso_date(rate_date) if rate_date else now.date(),
        )
    except (ValidationError, ValueError) as exc:
        typer.echo(f"[ERROR] Invalid rate: {exc}", err=True)
        raise typer.Exit(code=1)

    for code in (record.base_currency, record.target_currency):
        if code not in config.currency.supported:
            typer.echo(f"[ERROR] Unsupported currency: {code}", err=True)
            raise typer.Exit(code=1)

    with _open_db(config, db_path) as conn:
        apply_schema(conn)
        rate_id = SqliteRateRepository(conn).save(record)

    typer.echo(
        f"[OK] Stored {record.base_currency}→{record.target_currency} = {record.rate} "
        f"for {record.rate_date.isoformat()} (rate_id={rate_id})."
    )


@app.command("convert")
def convert(
    value: str = typer.Argument(..., help="Amount to convert."),
    from_currency: str = typer.Argument(..., help="Source currency."),
    to_currency: str = typer.Argument(..., help="Target currency."),
    rate_date: Optional[str] = typer.Option(None, "--date", help="Use the latest rate on or before YYYY-MM-DD."),
    as_json: bool = typer.Option(False, "--json", help="Print the result as JSON."),
    db_path: Optional[str] = _DB_PATH_OPTION,
    config_path: Optional[str] = _CONFIG_OPTION,
) -> None:
    """Convert an amount using stored exchange rates."""
    from portfolio_calc.currency.converter import CurrencyConverter
    from portfolio_calc.currency.rates import SqliteRateRepository
    from portfolio_calc.db.schema import apply_schema
    from portfolio_calc.errors import PortfolioCalcError
    from portfolio_calc.events.store import SqliteEventStore
    from portfolio_calc.models.currency import ConversionOptions
    from portfolio_calc.utils.time_utils import parse_iso_date

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    try:
        options = ConversionOptions(rate_date=parse_iso_date(rate_date) if rate_date else None)
    except ValueError as exc:
        typer.echo(f"[ERROR] Invalid --date: {exc}", err=True)
        raise typer.Exit(code=1)

    with _open_db(config, db_path) as conn:
        apply_schema(conn)
        converter = CurrencyConverter(
            SqliteRateRepository(conn),
            event_store=SqliteEventStore(conn),
            config=config.currency,
        )

        async def _run():
            try:
                return await converter.convert(value, from_currency, to_currency, options)
            finally:
                await converter.drain()

        try:
            result = asyncio.run(_run())
        except PortfolioCalcError as exc:
            _fail(exc)

    if as_json:
        typer.echo(result.model_dump_json(indent=2))
        return

    typer.echo(f"{value} {result.from_currency} = {result.value} {result.to_currency}")
    typer.echo(f"  Rate:   {result.rate} ({result.rate_source}, {result.rate_date.isoformat()})")
    if result.is_stale_rate:
        typer.echo("  [WARN] Rate is older than the stale threshold.")


@app.command("score")
def score(
    criteria_file: str = typer.Option(..., "--criteria", help="JSON array of criterion rules."),
    assets_file: str = typer.Option(..., "--assets", help="JSON array of assets with fundamentals."),
    user_id: str = typer.Option(..., "--user-id", help="Owner of the calculation."),
    criteria_version_id: str = typer.Option("cli", "--criteria-version", help="Criteria version identifier."),
    market: Optional[str] = typer.Option(None, "--market", help="Target market recorded with the run."),
    as_json: bool = typer.Option(False, "--json", help="Print scores as JSON."),
    db_path: Optional[str] = _DB_PATH_OPTION,
    config_path: Optional[str] = _CONFIG_OPTION,
) -> None:
    """Score assets against a criteria set and record the audit events."""
    from pydantic import TypeAdapter, ValidationError

    from portfolio_calc.db.schema import apply_schema
    from portfolio_calc.events.store import SqliteEventStore
    from portfolio_calc.models.criteria import AssetWithFundamentals, CriterionRule
    from portfolio_calc.scoring.engine import ScoringEngineConfig, calculate_scores_with_events

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    try:
        criteria = TypeAdapter(list[CriterionRule]).validate_python(
            _read_json_or_exit(criteria_file, "Criteria")
        )
        assets = TypeAdapter(list[AssetWithFundamentals]).validate_python(
            _read_json_or_exit(assets_file, "Assets")
        )
    except ValidationError as exc:
        typer.echo(f"[ERROR] Invalid input:\n{exc}", err=True)
        raise typer.Exit(code=1)

    engine_config = ScoringEngineConfig(
        user_id=user_id,
        criteria_version_id=criteria_version_id,
        target_market=market or config.scoring.default_market or None,
    )

    with _open_db(config, db_path) as conn:
        apply_schema(conn)
        store = SqliteEventStore(conn)
        try:
            result = asyncio.run(
                calculate_scores_with_events(engine_config, criteria, assets, store)
            )
        except Exception as exc:
            _fail(exc)

    if as_json:
        typer.echo(json.dumps(
            {
                "correlation_id": result.correlation_id,
                "duration_ms": result.duration_ms,
                "scores": [s.model_dump(mode="json") for s in result.scores],
            },
            indent=2,
        ))
        return

    typer.echo(f"Scored {result.asset_count} assets against {len(criteria)} criteria.")
    typer.echo(f"  Correlation ID: {result.correlation_id}")
    typer.echo("")
    typer.echo(f"  {'SYMBOL':<12} {'SCORE':>12}  MATCHED")
    for s in result.scores:
        matched = sum(1 for r in s.breakdown if r.matched)
        skipped = sum(1 for r in s.breakdown if r.skipped_reason)
        note = f"  ({skipped} skipped)" if skipped else ""
        typer.echo(f"  {s.symbol:<12} {s.score:>12}  {matched}/{len(s.breakdown)}{note}")


@app.command("preview")
def preview(
    criteria_file: str = typer.Option(..., "--criteria", help="JSON array of criterion rules."),
    assets_file: str = typer.Option(..., "--assets", help="JSON array of assets with fundamentals."),
    previous_file: Optional[str] = typer.Option(
        None, "--previous", help="JSON array of the criteria to compare against."
    ),
    top_n: int = typer.Option(10, "--top", min=1, help="Number of assets to show."),
    config_path: Optional[str] = _CONFIG_OPTION,
) -> None:
    """Preview the top-scoring assets for a criteria set. Records nothing."""
    from pydantic import TypeAdapter, ValidationError

    from portfolio_calc.models.criteria import AssetWithFundamentals, CriterionRule
    from portfolio_calc.scoring.preview import preview_scores

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    rules = TypeAdapter(list[CriterionRule])
    try:
        criteria = rules.validate_python(_read_json_or_exit(criteria_file, "Criteria"))
        previous = (
            rules.validate_python(_read_json_or_exit(previous_file, "Previous criteria"))
            if previous_file
            else None
        )
        assets = TypeAdapter(list[AssetWithFundamentals]).validate_python(
            _read_json_or_exit(assets_file, "Assets")
        )
    except ValidationError as exc:
        typer.echo(f"[ERROR] Invalid input:\n{exc}", err=True)
        raise typer.Exit(code=1)

    result = preview_scores(criteria, assets, previous, top_n=top_n)

    typer.echo(f"Top {len(result.top_assets)} of {result.sample_size} assets:")
    for asset in result.top_assets:
        typer.echo(f"  {asset.rank:>3}. {asset.symbol:<12} {asset.score:>12}")
    if result.comparison is not None:
        c = result.comparison
        typer.echo(
            f"  vs previous: {c.improved} improved, {c.declined} declined, "
            f"{c.unchanged} unchanged (avg {c.previous_average} → {c.current_average})"
        )


@app.command("replay")
def replay(
    correlation_id: str = typer.Argument(..., help="Correlation ID of a recorded scoring run."),
    db_path: Optional[str] = _DB_PATH_OPTION,
    config_path: Optional[str] = _CONFIG_OPTION,
) -> None:
    """Re-run a recorded scoring run and verify it reproduces the stored scores.

    Exits with code 1 on a mismatch or when the run cannot be replayed.
    """
    from portfolio_calc.db.schema import apply_schema
    from portfolio_calc.events.replay import replay as replay_run
    from portfolio_calc.events.store import SqliteEventStore

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    with _open_db(config, db_path) as conn:
        apply_schema(conn)
        result = asyncio.run(replay_run(correlation_id, SqliteEventStore(conn)))

    if not result.success:
        typer.echo(f"[ERROR] Replay failed: {result.error}", err=True)
        raise typer.Exit(code=1)

    typer.echo(f"Replayed {len(result.replay_results)} assets for {correlation_id}.")
    if result.matches:
        typer.echo("[OK] Replay matches the recorded scores.")
        return

    for d in result.discrepancies:
        typer.echo(f"  {d.asset_id}: {d.field} recorded={d.original} replayed={d.replayed}")
    typer.echo("[FAIL] Replay does not match the recorded scores.", err=True)
    raise typer.Exit(code=1)


@app.command("recommend")
def recommend(
    request_file: str = typer.Option(..., "--request", help="JSON recommendation request."),
    user_id: str = typer.Option(..., "--user-id", help="Owner of the calculation."),
    as_json: bool = typer.Option(False, "--json", help="Print the result as JSON."),
    db_path: Optional[str] = _DB_PATH_OPTION,
    config_path: Optional[str] = _CONFIG_OPTION,
) -> None:
    """Distribute an investable amount across portfolio assets."""
    from pydantic import ValidationError

    from portfolio_calc.currency.converter import CurrencyConverter
    from portfolio_calc.currency.rates import SqliteRateRepository
    from portfolio_calc.db.schema import apply_schema
    from portfolio_calc.events.store import SqliteEventStore
    from portfolio_calc.models.recommendation import RecommendationRequest
    from portfolio_calc.recommendations.service import RecommendationGenerator

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    try:
        request = RecommendationRequest.model_validate(
            _read_json_or_exit(request_file, "Request")
        )
    except ValidationError as exc:
        typer.echo(f"[ERROR] Invalid request:\n{exc}", err=True)
        raise typer.Exit(code=1)

    with _open_db(config, db_path) as conn:
        apply_schema(conn)
        store = SqliteEventStore(conn)
        converter = CurrencyConverter(
            SqliteRateRepository(conn), event_store=store, config=config.currency
        )
        generator = RecommendationGenerator(store, converter, config.recommendations)

        async def _run():
            try:
                return await generator.generate(user_id, request)
            finally:
                await converter.drain()

        try:
            result = asyncio.run(_run())
        except Exception as exc:
            _fail(exc)

    if as_json:
        typer.echo(result.model_dump_json(indent=2))
        return

    typer.echo(
        f"Investable {result.total_investable} {result.base_currency} "
        f"across {len(result.items)} assets."
    )
    typer.echo(f"  Correlation ID: {result.correlation_id}")
    typer.echo("")
    typer.echo(f"  {'SYMBOL':<12} {'AMOUNT':>14} {'PRIORITY':>10}  NOTE")
    for item in result.items:
        note = "over-allocated" if item.is_over_allocated else ""
        typer.echo(f"  {item.symbol:<12} {item.recommended_amount:>14} {item.priority:>10}  {note}")


@app.command("history")
def history(
    user_id: str = typer.Option(..., "--user-id", help="Whose events to list."),
    event_type: Optional[str] = typer.Option(None, "--type", help="Only this event type."),
    limit: int = typer.Option(20, "--limit", help="Maximum events to show."),
    db_path: Optional[str] = _DB_PATH_OPTION,
    config_path: Optional[str] = _CONFIG_OPTION,
) -> None:
    """List a user's most recent audit events, newest first."""
    from portfolio_calc.db.schema import apply_schema
    from portfolio_calc.events.store import SqliteEventStore
    from portfolio_calc.models.events import EVENT_TYPES

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    if event_type is not None and event_type not in EVENT_TYPES:
        typer.echo(
            f"[ERROR] Unknown event type '{event_type}'. Valid: {', '.join(EVENT_TYPES)}",
            err=True,
        )
        raise typer.Exit(code=1)

    with _open_db(config, db_path) as conn:
        apply_schema(conn)
        store = SqliteEventStore(conn)
        if event_type:
            events = asyncio.run(store.get_by_event_type(user_id, event_type, limit))
        else:
            events = asyncio.run(store.get_by_user_id(user_id, limit))

    if not events:
        typer.echo(f"No events recorded for user '{user_id}'.")
        return

    for e in events:
        typer.echo(
            f"  #{e.event_id:<6} {e.created_at.strftime('%Y-%m-%dT%H:%M:%SZ')}  "
            f"{e.event_type:<22} {e.correlation_id}"
        )


def main() -> None:
    app()


if __name__ == "__main__":
    main()
