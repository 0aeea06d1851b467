"""
Tax-deduction reconciliation - the one place that decides which deduction a
period gets when monthly and quarterly overrides both exist.

Rule, for a quarter:
1. at least one monthly row inside the quarter -> sum of those monthly rows
2. otherwise the quarterly row, if stored
3. otherwise zero

A month uses its own monthly row (zero if absent). A year is the sum of its
four quarters, each resolved with the rule above. Values are added as stored,
in the ledger's unit: nothing here multiplies, divides or averages.
"""
import logging
from dataclasses import dataclass, field
from decimal import Decimal

from app.services import override_store
from app.services.money import ZERO, to_display
from app.services.period_resolver import Period, PeriodType, quarter_months

logger = logging.getLogger(__name__)

SOURCE_MONTHLY = "monthly"
SOURCE_QUARTERLY = "quarterly"
SOURCE_NONE = "none"
SOURCE_MIXED = "mixed"


@dataclass
class DeductionResolution:
    period_key: str
    value: Decimal
    source: str
    monthly_values: dict[int, Decimal] = field(default_factory=dict)
    quarterly_value: Decimal | None = None
    conflict: bool = False
    parts: list["DeductionResolution"] = field(default_factory=list)

    def to_dict(self) -> dict:
        data = {
            "periodo": self.period_key,
            "value": to_display(self.value),
            "source": self.source,
            "monthly": {str(m): to_display(v) for m, v in sorted(self.monthly_values.items())},
            "quarterly": to_display(self.quarterly_value) if self.quarterly_value is not None else None,
            "conflict": self.conflict,
        }
        if self.parts:
            data["quarters"] = [p.to_dict() for p in self.parts]
        return data


def reconcile_quarter(
    year: int,
    quarter: int,
    monthly_rows: list[dict],
    quarterly_row: dict | None,
) -> DeductionResolution:
    """Apply the rule to already-loaded rows of one quarter.

    ``monthly_rows`` may hold rows of any month; only the quarter's are used.
    ``quarterly_row`` is the stored quarterly deduction or None.
    """
    months = set(quarter_months(quarter))
    monthly_values = {
        int(r["month"]): r["value"]
        for r in monthly_rows
        if int(r["month"]) in months and r.get("exists", True)
    }
    quarterly_value = quarterly_row["value"] if quarterly_row and quarterly_row.get("exists", True) else None
    key = f"{year}-Q{quarter}"

    if monthly_values:
        value = sum(monthly_values.values(), ZERO)
        conflict = quarterly_value is not None and quarterly_value != value
        if conflict:
            logger.warning(
                "Deduction conflict %s: monthly sum %s (%s) vs quarterly %s; using monthly sum %s",
                key, value, {m: str(v) for m, v in sorted(monthly_values.items())}, quarterly_value, value,
            )
        return DeductionResolution(key, value, SOURCE_MONTHLY, monthly_values, quarterly_value, conflict)

    if quarterly_value is not None:
        return DeductionResolution(key, quarterly_value, SOURCE_QUARTERLY, {}, quarterly_value)

    return DeductionResolution(key, ZERO, SOURCE_NONE)


def _combined_source(parts: list[DeductionResolution]) -> str:
    sources = {p.source for p in parts if p.source != SOURCE_NONE}
    if not sources:
        return SOURCE_NONE
    if len(sources) == 1:
        return sources.pop()
    return SOURCE_MIXED


def resolve_deduction(db, period: Period) -> DeductionResolution:
    """Deduction applied to ``period``, read fresh from the override store."""
    if period.period_type is PeriodType.MONTHLY:
        row = override_store.get_monthly_deduction(db, period.year, period.month)
        if row["exists"]:
            return DeductionResolution(
                period.key, row["value"], SOURCE_MONTHLY, {period.month: row["value"]},
            )
        return DeductionResolution(period.key, ZERO, SOURCE_NONE)

    monthly_rows = override_store.list_monthly_deductions(db, period.year, period.months())
    quarterly_rows = {r["quarter"]: r for r in override_store.list_quarterly_deductions(db, period.year)}

    if period.period_type is PeriodType.QUARTERLY:
        return reconcile_quarter(period.year, period.quarter, monthly_rows, quarterly_rows.get(period.quarter))

    parts = [
        reconcile_quarter(period.year, q, monthly_rows, quarterly_rows.get(q))
        for q in period.quarters()
    ]
    value = sum((p.value for p in parts), ZERO)
    monthly_values: dict[int, Decimal] = {}
    for p in parts:
        monthly_values.update(p.monthly_values)
    return DeductionResolution(
        period.key,
        value,
        _combined_source(parts),
        monthly_values,
        None,
        any(p.conflict for p in parts),
        parts,
    )
