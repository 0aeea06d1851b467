"""
DRE engine - wires period, aggregation, reconciliation, assembly and snapshots.

Every read path (statement API, comparison, save-results) goes through
compute_statement, and every override write goes through the save_* functions
here so the affected snapshots are invalidated in the same request.
"""
import logging
from decimal import Decimal

from app.services import override_store, statement_cache
from app.services.dre_assembler import assemble_statement, serialize_statement
from app.services.errors import PeriodValidationError
from app.services.money import ZERO, to_cents, to_decimal, to_display
from app.services.period_resolver import Period, PeriodType, quarter_of_month, quarter_period
from app.services.raw_aggregator import aggregate_period
from app.services.reconciliation import SOURCE_MONTHLY, DeductionResolution, resolve_deduction

logger = logging.getLogger(__name__)

HEADLINE_LINES = {
    "receitaTotal": ("receitas", "total"),
    "despesaTotal": ("despesas", "total"),
    "impostoTotal": ("impostos", "total"),
    "resultadoLiquido": ("resultadoLiquido",),
    "margemLiquida": ("margemLiquida",),
}


def compute_statement(db, period: Period) -> tuple[dict, DeductionResolution]:
    """Compute the statement for ``period`` from raw rows and current overrides."""
    raw = aggregate_period(db, period)
    resolution = resolve_deduction(db, period)

    manual = None
    manual_by_quarter = None
    if period.period_type is PeriodType.QUARTERLY:
        manual = override_store.get_manual_taxes(db, period.year, period.quarter)
    elif period.period_type is PeriodType.ANNUAL:
        manual_by_quarter = override_store.list_manual_taxes(db, period.year)

    statement = assemble_statement(period, raw, resolution.value, manual, manual_by_quarter)
    logger.info(
        "DRE %s computed: receita=%s bruto=%s operacional=%s liquido=%s deducao=%s (%s)",
        period.key,
        to_cents(statement["receitas"]["total"]),
        to_cents(statement["resultadoBruto"]),
        to_cents(statement["resultadoOperacional"]),
        to_cents(statement["resultadoLiquido"]),
        to_cents(resolution.value),
        resolution.source,
    )
    return statement, resolution


def get_statement(db, period: Period, use_cache: bool = True) -> dict:
    """Serialized statement for ``period``, served from a fresh snapshot when one exists."""
    cache_status = "bypass"
    if use_cache and statement_cache.supports(period):
        row = statement_cache.read_snapshot(db, period)
        if row is None:
            cache_status = "miss"
        else:
            reason = statement_cache.staleness(db, period, row)
            if reason is None:
                logger.debug("Snapshot hit for %s", period.key)
                return {
                    "statement": serialize_statement(statement_cache.row_to_statement(row, period)),
                    "cache": "hit",
                    "snapshotUpdatedAt": row.get("updated_at"),
                }
            cache_status = f"stale:{reason}"
            logger.info("Snapshot for %s is stale (%s), recomputing", period.key, reason)

    statement, _ = compute_statement(db, period)
    return {"statement": serialize_statement(statement), "cache": cache_status, "snapshotUpdatedAt": None}


def _line(statement: dict, path: tuple) -> Decimal:
    value = statement
    for part in path:
        value = value[part]
    return value


def percentage_change(current: Decimal, previous: Decimal) -> Decimal:
    if previous == 0:
        return ZERO
    return (current - previous) / abs(previous) * 100


def compare_with_previous(db, period: Period) -> dict:
    current, _ = compute_statement(db, period)
    previous_period = period.previous()
    previous, _ = compute_statement(db, previous_period)
    return {
        "atual": serialize_statement(current),
        "anterior": serialize_statement(previous),
        "variacoes": {
            name: to_display(percentage_change(_line(current, path), _line(previous, path)))
            for name, path in HEADLINE_LINES.items()
        },
    }


# ── Override writes ───────────────────────────────────────────

def save_monthly_deduction(db, year: int, month: int, value) -> dict:
    row = override_store.save_monthly_deduction(db, year, month, value)
    statement_cache.invalidate(db, year, months=[month], quarters=[quarter_of_month(month)])
    return row


def save_quarterly_deduction(db, year: int, quarter: int, value) -> dict:
    """Store the quarterly override and report which value the quarter will use.

    When the quarter already has monthly rows, those still win; the response
    says so instead of silently ignoring or adding the quarterly value.
    """
    row = override_store.save_quarterly_deduction(db, year, quarter, value)
    statement_cache.invalidate(db, year, quarters=[quarter])
    resolution = resolve_deduction(db, quarter_period(year, quarter))
    notice = None
    if resolution.source == SOURCE_MONTHLY:
        notice = (
            f"Monthly deductions exist for {year} Q{quarter}; the quarter uses their sum "
            f"({to_cents(resolution.value)}) instead of the quarterly value."
        )
        logger.warning(notice)
    return {"row": row, "resolution": resolution, "notice": notice}


def save_manual_taxes(db, year: int, quarter: int, csll, irpj) -> dict:
    row = override_store.save_manual_taxes(db, year, quarter, csll, irpj)
    statement_cache.invalidate(db, year, quarters=[quarter])
    return row


# ── Save results ──────────────────────────────────────────────

def _flatten(statement: dict, prefix: str = "") -> dict[str, Decimal]:
    flat = {}
    for key, value in statement.items():
        if key == "periodo":
            continue
        name = f"{prefix}{key}"
        if isinstance(value, dict):
            flat.update(_flatten(value, f"{name}."))
        elif isinstance(value, (int, float, Decimal)) and not isinstance(value, bool):
            flat[name] = to_decimal(value)
    return flat


def diff_statements(submitted: dict, computed: dict) -> list[dict]:
    """Lines where a submitted statement disagrees with the computed one, in cents."""
    computed_flat = _flatten(computed)
    mismatches = []
    for name, value in _flatten(submitted).items():
        if name not in computed_flat:
            continue
        if to_cents(value) != to_cents(computed_flat[name]):
            mismatches.append({
                "linha": name,
                "enviado": to_display(value),
                "calculado": to_display(computed_flat[name]),
            })
    return mismatches


def _propagate_deduction(db, period: Period, resolution: DeductionResolution) -> dict | None:
    """Bring the quarterly store in line with the reconciled deduction.

    Only a monthly-sourced value is written back; a quarterly or absent one is
    already what the store holds.
    """
    if resolution.source != SOURCE_MONTHLY:
        return None
    if resolution.quarterly_value is not None and resolution.quarterly_value == resolution.value:
        return None
    row = override_store.save_quarterly_deduction(db, period.year, period.quarter, resolution.value)
    logger.info("Quarterly deduction %s aligned to monthly sum %s", period.key, resolution.value)
    return row


def save_results(db, period: Period, submitted: dict | None = None) -> dict:
    """Recompute and snapshot the statement of a quarter or month.

    The stored figures are always the engine's; a submitted statement is only
    compared against them and any difference is reported and logged.

    The propagated quarterly deduction is written before the snapshot so the new
    snapshot is not older than it. If the snapshot write then fails the request
    fails, and the quarterly row keeps the reconciled value: the same figure
    every read already resolves, so a retry recomputes an identical statement.
    """
    if not statement_cache.supports(period):
        raise PeriodValidationError([
            {"field": "period", "message": "results can only be saved for a quarter or a month"},
        ])

    statement, resolution = compute_statement(db, period)

    mismatches = diff_statements(submitted, statement) if submitted else []
    if mismatches:
        logger.warning(
            "Save results %s: %d submitted lines differ from the computed statement: %s",
            period.key, len(mismatches), mismatches,
        )

    propagated = None
    if period.period_type is PeriodType.QUARTERLY:
        propagated = _propagate_deduction(db, period, resolution)

    snapshot = statement_cache.write_snapshot(db, period, statement)
    return {
        "statement": serialize_statement(statement),
        "snapshotUpdatedAt": (snapshot or {}).get("updated_at"),
        "deducao": resolution.to_dict(),
        "deducaoPropagada": propagated is not None,
        "divergencias": mismatches,
    }


def get_results(db, period: Period) -> dict:
    """Stored snapshot (zero-filled when absent) plus whether it may still be served."""
    if not statement_cache.supports(period):
        raise PeriodValidationError([
            {"field": "period", "message": "results are stored per quarter or month"},
        ])
    row = statement_cache.read_snapshot(db, period)
    if row is None:
        empty = {column: ZERO for column in statement_cache.SNAPSHOT_COLUMNS}
        return {
            "statement": serialize_statement(statement_cache.row_to_statement(empty, period)),
            "updatedAt": None,
            "exists": False,
            "stale": True,
        }
    return {
        "statement": serialize_statement(statement_cache.row_to_statement(row, period)),
        "updatedAt": row.get("updated_at"),
        "exists": True,
        "stale": statement_cache.staleness(db, period, row) is not None,
    }
