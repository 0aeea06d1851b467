"""
Override store - user-entered figures keyed by period.

Three independent tables:
- monthly_tax_deductions   (year, month)   -> value
- tax_deductions           (year, quarter) -> value
- manual_quarterly_taxes   (year, quarter) -> csll, irpj

Writes are a single upsert on the unique key (last write wins) followed by a
re-read, so the caller always gets the row that is actually persisted. Reads
never fail on a missing row: the default is zero.
"""
import logging
import re
from datetime import datetime, timezone
from decimal import Decimal

from app.services.errors import PeriodValidationError, PersistenceError
from app.services.money import ZERO, to_decimal

logger = logging.getLogger(__name__)

MONTHLY_DEDUCTIONS_TABLE = "monthly_tax_deductions"
QUARTERLY_DEDUCTIONS_TABLE = "tax_deductions"
MANUAL_TAXES_TABLE = "manual_quarterly_taxes"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _check_amount(field: str, value, errors: list[dict]) -> Decimal | None:
    try:
        amount = to_decimal(value)
    except ValueError:
        errors.append({"field": field, "message": f"{field} must be a decimal number"})
        return None
    if amount < 0:
        errors.append({"field": field, "message": f"{field} must be >= 0"})
        return None
    return amount


def _check_key(year: int, errors: list[dict], month: int | None = None, quarter: int | None = None) -> None:
    if not isinstance(year, int) or year <= 0:
        errors.append({"field": "year", "message": "year must be a positive integer"})
    if month is not None and not 1 <= month <= 12:
        errors.append({"field": "month", "message": "month must be between 1 and 12"})
    if quarter is not None and not 1 <= quarter <= 4:
        errors.append({"field": "quarter", "message": "quarter must be between 1 and 4"})


def _select_one(db, table: str, **keys) -> dict | None:
    q = db.table(table).select("*")
    for column, value in keys.items():
        q = q.eq(column, value)
    try:
        result = q.limit(1).execute()
    except Exception as e:
        raise PersistenceError(f"read {table}", e) from e
    return result.data[0] if result.data else None


def _select_year(db, table: str, year: int, column: str | None = None, values: list[int] | None = None) -> list[dict]:
    q = db.table(table).select("*").eq("year", year)
    if column and values is not None:
        q = q.in_(column, values)
    try:
        return q.execute().data or []
    except Exception as e:
        raise PersistenceError(f"read {table}", e) from e


def _upsert(db, table: str, payload: dict, on_conflict: str) -> None:
    try:
        db.table(table).upsert(payload, on_conflict=on_conflict).execute()
    except Exception as e:
        logger.error("override_store: upsert into %s failed for %s", table, payload, exc_info=True)
        raise PersistenceError(f"upsert {table}", e) from e


def _deduction_row(row: dict | None, **keys) -> dict:
    if not row:
        return {**keys, "value": ZERO, "updated_at": None, "exists": False}
    return {**keys, "value": to_decimal(row.get("value")), "updated_at": row.get("updated_at"), "exists": True}


# ── Monthly deduction ─────────────────────────────────────────

def get_monthly_deduction(db, year: int, month: int) -> dict:
    row = _select_one(db, MONTHLY_DEDUCTIONS_TABLE, year=year, month=month)
    return _deduction_row(row, year=year, month=month)


def list_monthly_deductions(db, year: int, months: list[int]) -> list[dict]:
    """Stored monthly rows of ``year`` among ``months``; missing months are absent."""
    rows = _select_year(db, MONTHLY_DEDUCTIONS_TABLE, year, "month", months)
    return sorted(
        (_deduction_row(r, year=year, month=int(r["month"])) for r in rows),
        key=lambda r: r["month"],
    )


def save_monthly_deduction(db, year: int, month: int, value) -> dict:
    errors: list[dict] = []
    _check_key(year, errors, month=month)
    amount = _check_amount("value", value, errors)
    if errors:
        raise PeriodValidationError(errors)

    previous = get_monthly_deduction(db, year, month)
    _upsert(db, MONTHLY_DEDUCTIONS_TABLE, {
        "year": year,
        "month": month,
        "value": str(amount),
        "updated_at": _now_iso(),
    }, on_conflict="year,month")
    stored = get_monthly_deduction(db, year, month)
    logger.info(
        "Monthly deduction %d/%02d saved: %s -> %s",
        year, month, previous["value"], stored["value"],
    )
    return stored


# ── Quarterly deduction ───────────────────────────────────────

def get_quarterly_deduction(db, year: int, quarter: int) -> dict:
    row = _select_one(db, QUARTERLY_DEDUCTIONS_TABLE, year=year, quarter=quarter)
    return _deduction_row(row, year=year, quarter=quarter)


def list_quarterly_deductions(db, year: int) -> list[dict]:
    rows = _select_year(db, QUARTERLY_DEDUCTIONS_TABLE, year)
    return sorted(
        (_deduction_row(r, year=year, quarter=int(r["quarter"])) for r in rows),
        key=lambda r: r["quarter"],
    )


def save_quarterly_deduction(db, year: int, quarter: int, value) -> dict:
    errors: list[dict] = []
    _check_key(year, errors, quarter=quarter)
    amount = _check_amount("value", value, errors)
    if errors:
        raise PeriodValidationError(errors)

    previous = get_quarterly_deduction(db, year, quarter)
    _upsert(db, QUARTERLY_DEDUCTIONS_TABLE, {
        "year": year,
        "quarter": quarter,
        "value": str(amount),
        "updated_at": _now_iso(),
    }, on_conflict="year,quarter")
    stored = get_quarterly_deduction(db, year, quarter)
    logger.info(
        "Quarterly deduction %d Q%d saved: %s -> %s",
        year, quarter, previous["value"], stored["value"],
    )
    return stored


# ── Manual CSLL / IRPJ ────────────────────────────────────────

def _manual_row(row: dict | None, year: int, quarter: int) -> dict:
    if not row:
        return {"year": year, "quarter": quarter, "csll": ZERO, "irpj": ZERO, "updated_at": None, "exists": False}
    return {
        "year": year,
        "quarter": quarter,
        "csll": to_decimal(row.get("csll")),
        "irpj": to_decimal(row.get("irpj")),
        "updated_at": row.get("updated_at"),
        "exists": True,
    }


def get_manual_taxes(db, year: int, quarter: int) -> dict:
    """Manual row for the quarter; ``exists`` tells a stored zero from the default."""
    row = _select_one(db, MANUAL_TAXES_TABLE, year=year, quarter=quarter)
    return _manual_row(row, year, quarter)


def list_manual_taxes(db, year: int) -> dict[int, dict]:
    rows = _select_year(db, MANUAL_TAXES_TABLE, year)
    return {int(r["quarter"]): _manual_row(r, year, int(r["quarter"])) for r in rows}


def save_manual_taxes(db, year: int, quarter: int, csll, irpj) -> dict:
    errors: list[dict] = []
    _check_key(year, errors, quarter=quarter)
    csll_amount = _check_amount("csll", csll, errors)
    irpj_amount = _check_amount("irpj", irpj, errors)
    if errors:
        raise PeriodValidationError(errors)

    previous = get_manual_taxes(db, year, quarter)
    _upsert(db, MANUAL_TAXES_TABLE, {
        "year": year,
        "quarter": quarter,
        "csll": str(csll_amount),
        "irpj": str(irpj_amount),
        "updated_at": _now_iso(),
    }, on_conflict="year,quarter")
    stored = get_manual_taxes(db, year, quarter)
    logger.info(
        "Manual taxes %d Q%d saved: csll %s -> %s, irpj %s -> %s",
        year, quarter, previous["csll"], stored["csll"], previous["irpj"], stored["irpj"],
    )
    return stored


# ── Freshness ─────────────────────────────────────────────────

def latest_override_update(db, year: int, months: list[int], quarters: list[int]) -> str | None:
    """Most recent ``updated_at`` among the override rows that feed a period."""
    stamps: list[str] = []
    stamps += [r["updated_at"] for r in list_monthly_deductions(db, year, months) if r["updated_at"]]
    stamps += [
        r["updated_at"] for r in list_quarterly_deductions(db, year)
        if r["quarter"] in quarters and r["updated_at"]
    ]
    stamps += [
        r["updated_at"] for q, r in list_manual_taxes(db, year).items()
        if q in quarters and r["updated_at"]
    ]
    if not stamps:
        return None
    return max(stamps, key=parse_timestamp)


# Postgres trims trailing zeros of the fraction ("...:00.1234+00:00")
_FRACTION = re.compile(r"\.(\d+)")


def parse_timestamp(value: str) -> datetime:
    """Parse a PostgREST timestamptz; naive values are taken as UTC."""
    text = value.strip().replace("Z", "+00:00").replace(" ", "T", 1)
    text = _FRACTION.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text, count=1)
    dt = datetime.fromisoformat(text)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt
