"""
Raw aggregator - sums ledger and CSV operation rows inside a period.

Every period is summed straight from the raw rows of its full date range, so a
quarter never re-adds monthly subtotals. Annual reads also bucket the same
rows by quarter in the same pass (each row lands in exactly one bucket), which
the assembler needs when only some quarters carry manual CSLL/IRPJ. Sums stay Decimal
end to end.
"""
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import timedelta
from decimal import Decimal

from app.db.supabase import paginate
from app.services.errors import PersistenceError
from app.services.money import ZERO, sum_field, to_decimal
from app.services.period_resolver import Period, PeriodType, quarter_of_month

logger = logging.getLogger(__name__)

OPERATIONS_TABLE = "financial_data_csv"
ENTRIES_TABLE = "entries"
EXPENSES_TABLE = "expenses"

OPERATION_COLUMNS = (
    "id, id_operacao, data, valor_fator, valor_ad_valorem, valor_iof, "
    "valor_tarifas, valor_liquido, pis, cofins, issqn"
)


@dataclass
class RawTotals:
    operacoes: Decimal = ZERO
    outras: Decimal = ZERO
    fator: Decimal = ZERO
    ad_valorem: Decimal = ZERO
    iof: Decimal = ZERO
    tarifas: Decimal = ZERO
    liquido: Decimal = ZERO
    despesas_operacionais: Decimal = ZERO
    despesas_tributaveis: Decimal = ZERO
    pis: Decimal = ZERO
    cofins: Decimal = ZERO
    issqn: Decimal = ZERO
    row_counts: dict = field(default_factory=dict)
    by_quarter: dict[int, "RawTotals"] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "operacoes": self.operacoes,
            "outras": self.outras,
            "custos": {
                "fator": self.fator,
                "adValorem": self.ad_valorem,
                "iof": self.iof,
                "tarifas": self.tarifas,
            },
            "despesas": {
                "operacionais": self.despesas_operacionais,
                "tributaveis": self.despesas_tributaveis,
            },
            "impostosRetidos": {
                "pis": self.pis,
                "cofins": self.cofins,
                "issqn": self.issqn,
            },
        }


def _fetch_range(db, table: str, columns: str, date_column: str, period: Period) -> list[dict]:
    # Half-open on the day after end_date keeps the whole last day, whatever the time part.
    start = period.start_date.isoformat()
    stop = (period.end_date + timedelta(days=1)).isoformat()
    q = (
        db.table(table)
        .select(columns)
        .gte(date_column, start)
        .lt(date_column, stop)
        .order("id")
    )
    try:
        return paginate(q)
    except Exception as e:
        logger.error("raw_aggregator: failed reading %s for %s", table, period.key, exc_info=True)
        raise PersistenceError(f"read {table}", e) from e


def _operation_value(row: dict) -> Decimal:
    return (
        to_decimal(row.get("valor_fator"))
        + to_decimal(row.get("valor_ad_valorem"))
        + to_decimal(row.get("valor_iof"))
        + to_decimal(row.get("valor_tarifas"))
        + to_decimal(row.get("valor_liquido"))
    )


def _row_quarter(row: dict, date_column: str) -> int:
    # ISO dates and timestamps both start with YYYY-MM
    return quarter_of_month(int(str(row[date_column])[5:7]))


def totals_from_rows(operations: list[dict], entries: list[dict], expenses: list[dict]) -> RawTotals:
    taxable = [e for e in expenses if e.get("is_taxable")]
    non_taxable = [e for e in expenses if not e.get("is_taxable")]

    return RawTotals(
        operacoes=sum((_operation_value(r) for r in operations), ZERO),
        outras=sum_field(entries, "value"),
        fator=sum_field(operations, "valor_fator"),
        ad_valorem=sum_field(operations, "valor_ad_valorem"),
        iof=sum_field(operations, "valor_iof"),
        tarifas=sum_field(operations, "valor_tarifas"),
        liquido=sum_field(operations, "valor_liquido"),
        despesas_operacionais=sum_field(non_taxable, "value"),
        despesas_tributaveis=sum_field(taxable, "value"),
        pis=sum_field(operations, "pis"),
        cofins=sum_field(operations, "cofins"),
        issqn=sum_field(operations, "issqn"),
        row_counts={
            "operacoes": len(operations),
            "entradas": len(entries),
            "despesas": len(expenses),
        },
    )


def _bucket_by_quarter(rows: list[dict], date_column: str) -> dict[int, list[dict]]:
    buckets: dict[int, list[dict]] = defaultdict(list)
    for row in rows:
        buckets[_row_quarter(row, date_column)].append(row)
    return buckets


def aggregate_period(db, period: Period) -> RawTotals:
    """Sum operation, entry and expense rows dated inside ``period``."""
    operations = _fetch_range(db, OPERATIONS_TABLE, OPERATION_COLUMNS, "data", period)
    entries = _fetch_range(db, ENTRIES_TABLE, "id, date, value", "date", period)
    expenses = _fetch_range(db, EXPENSES_TABLE, "id, date, value, is_taxable", "date", period)

    totals = totals_from_rows(operations, entries, expenses)

    if period.period_type is PeriodType.ANNUAL:
        ops_q = _bucket_by_quarter(operations, "data")
        entries_q = _bucket_by_quarter(entries, "date")
        expenses_q = _bucket_by_quarter(expenses, "date")
        totals.by_quarter = {
            q: totals_from_rows(ops_q.get(q, []), entries_q.get(q, []), expenses_q.get(q, []))
            for q in period.quarters()
        }

    logger.debug(
        "raw_aggregator %s: %d operations, %d entries, %d expenses",
        period.key, len(operations), len(entries), len(expenses),
    )
    return totals
