"""
Statement snapshots - the last computed statement per (year, quarter) and per
(year, month), so repeated reads and exports see the same numbers.

A snapshot is written whole (every column, replace not merge) and is only
trusted while it is younger than ``statement_cache_ttl_seconds`` and no
override row feeding its period changed after it was written.
"""
import logging
from datetime import datetime, timedelta, timezone

from app.config import settings
from app.services import override_store
from app.services.errors import PersistenceError
from app.services.money import to_decimal
from app.services.override_store import parse_timestamp
from app.services.period_resolver import Period, PeriodType

logger = logging.getLogger(__name__)

QUARTERLY_RESULTS_TABLE = "quarterly_financial_results"
MONTHLY_RESULTS_TABLE = "monthly_financial_results"

# snapshot column -> path inside the statement
SNAPSHOT_COLUMNS = {
    "total_operation": ("receitas", "operacoes"),
    "total_other_income": ("receitas", "outras"),
    "total_income": ("receitas", "total"),
    "total_fator": ("custos", "fator"),
    "total_ad_valorem": ("custos", "adValorem"),
    "total_iof": ("custos", "iof"),
    "total_tarifas": ("custos", "tarifas"),
    "total_costs": ("custos", "total"),
    "tax_deduction": ("deducaoFiscal",),
    "net_revenue": ("receitaLiquida",),
    "gross_result": ("resultadoBruto",),
    "total_non_taxable_expenses": ("despesas", "operacionais"),
    "total_taxable_expenses": ("despesas", "tributaveis"),
    "total_expenses": ("despesas", "total"),
    "operating_result": ("resultadoOperacional",),
    "total_pis": ("impostos", "pis"),
    "total_cofins": ("impostos", "cofins"),
    "total_issqn": ("impostos", "issqn"),
    "total_irpj": ("impostos", "ir"),
    "total_csll": ("impostos", "csll"),
    "total_taxes": ("impostos", "total"),
    "net_result": ("resultadoLiquido",),
    "net_margin": ("margemLiquida",),
}


def _table_and_key(period: Period) -> tuple[str, dict]:
    if period.period_type is PeriodType.QUARTERLY:
        return QUARTERLY_RESULTS_TABLE, {"year": period.year, "quarter": period.quarter}
    if period.period_type is PeriodType.MONTHLY:
        return MONTHLY_RESULTS_TABLE, {"year": period.year, "month": period.month}
    raise ValueError(f"No snapshot table for {period.period_type.value} periods")


def supports(period: Period) -> bool:
    return period.period_type is not PeriodType.ANNUAL


def _get_path(statement: dict, path: tuple):
    value = statement
    for part in path:
        value = value[part]
    return value


def statement_to_row(statement: dict) -> dict:
    return {column: str(_get_path(statement, path)) for column, path in SNAPSHOT_COLUMNS.items()}


def row_to_statement(row: dict, period: Period) -> dict:
    statement: dict = {"periodo": period.to_periodo()}
    for column, path in SNAPSHOT_COLUMNS.items():
        target = statement
        for part in path[:-1]:
            target = target.setdefault(part, {})
        target[path[-1]] = to_decimal(row.get(column))
    statement["impostos"]["fonte"] = row.get("tax_source") or "snapshot"
    return statement


def read_snapshot(db, period: Period) -> dict | None:
    table, key = _table_and_key(period)
    q = db.table(table).select("*")
    for column, value in key.items():
        q = q.eq(column, value)
    try:
        result = q.limit(1).execute()
    except Exception as e:
        raise PersistenceError(f"read {table}", e) from e
    return result.data[0] if result.data else None


def write_snapshot(db, period: Period, statement: dict) -> dict:
    """Replace the snapshot of ``period`` with ``statement`` and return the stored row."""
    table, key = _table_and_key(period)
    on_conflict = ",".join(key)
    payload = {
        **key,
        **statement_to_row(statement),
        "tax_source": statement["impostos"].get("fonte"),
        "updated_at": datetime.now(timezone.utc).isoformat(),
    }
    try:
        db.table(table).upsert(payload, on_conflict=on_conflict).execute()
    except Exception as e:
        logger.error("statement_cache: snapshot write failed for %s", period.key, exc_info=True)
        raise PersistenceError(f"upsert {table}", e) from e
    logger.info("Snapshot %s written (net_result=%s)", period.key, payload["net_result"])
    return read_snapshot(db, period)


def staleness(db, period: Period, row: dict, now: datetime | None = None) -> str | None:
    """Why ``row`` can't be served (``"ttl"`` or ``"override"``), or None when fresh."""
    now = now or datetime.now(timezone.utc)
    written_at = parse_timestamp(row["updated_at"]) if row.get("updated_at") else None
    if written_at is None:
        return "ttl"
    if now - written_at > timedelta(seconds=settings.statement_cache_ttl_seconds):
        return "ttl"

    if period.period_type is PeriodType.MONTHLY:
        latest = override_store.latest_override_update(db, period.year, period.months(), [])
    else:
        latest = override_store.latest_override_update(db, period.year, period.months(), period.quarters())
    if latest and parse_timestamp(latest) > written_at:
        return "override"
    return None


def invalidate(db, year: int, months: list[int] | None = None, quarters: list[int] | None = None) -> None:
    """Drop snapshots touched by an override write.

    Best effort: a failed delete is logged and the freshness check still
    rejects the snapshot, since the override row is newer than it.
    """
    targets = []
    if months:
        targets.append((MONTHLY_RESULTS_TABLE, "month", months))
    if quarters:
        targets.append((QUARTERLY_RESULTS_TABLE, "quarter", quarters))
    for table, column, values in targets:
        try:
            db.table(table).delete().eq("year", year).in_(column, values).execute()
            logger.info("Snapshots invalidated: %s year=%d %s=%s", table, year, column, values)
        except Exception:
            logger.warning("Snapshot invalidation failed: %s year=%d %s=%s", table, year, column, values, exc_info=True)
