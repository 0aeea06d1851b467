"""
Period resolver - turns a (year, month?, quarter?, annual?) request into a
concrete inclusive date range, a period key and the previous period.

Quarter q covers months 3q-2 .. 3q. No default period is chosen here:
"current month" is an API-boundary concern.
"""
import calendar
from dataclasses import dataclass
from datetime import date
from enum import Enum

from app.services.errors import PeriodValidationError


class PeriodType(str, Enum):
    MONTHLY = "mensal"
    QUARTERLY = "trimestral"
    ANNUAL = "anual"


MIN_YEAR = 1900
MAX_YEAR = 9999


def quarter_of_month(month: int) -> int:
    return (month - 1) // 3 + 1


def quarter_months(quarter: int) -> list[int]:
    return [3 * quarter - 2, 3 * quarter - 1, 3 * quarter]


def end_of_month(year: int, month: int) -> date:
    return date(year, month, calendar.monthrange(year, month)[1])


@dataclass(frozen=True)
class Period:
    year: int
    period_type: PeriodType
    month: int | None = None
    quarter: int | None = None

    @property
    def start_date(self) -> date:
        if self.period_type is PeriodType.MONTHLY:
            return date(self.year, self.month, 1)
        if self.period_type is PeriodType.QUARTERLY:
            return date(self.year, 3 * (self.quarter - 1) + 1, 1)
        return date(self.year, 1, 1)

    @property
    def end_date(self) -> date:
        if self.period_type is PeriodType.MONTHLY:
            return end_of_month(self.year, self.month)
        if self.period_type is PeriodType.QUARTERLY:
            return end_of_month(self.year, 3 * self.quarter)
        return date(self.year, 12, 31)

    @property
    def key(self) -> str:
        if self.period_type is PeriodType.MONTHLY:
            return f"{self.year}-{self.month:02d}"
        if self.period_type is PeriodType.QUARTERLY:
            return f"{self.year}-Q{self.quarter}"
        return str(self.year)

    def months(self) -> list[int]:
        """Months of ``year`` covered by this period."""
        if self.period_type is PeriodType.MONTHLY:
            return [self.month]
        if self.period_type is PeriodType.QUARTERLY:
            return quarter_months(self.quarter)
        return list(range(1, 13))

    def quarters(self) -> list[int]:
        """Quarters whose snapshots are affected by this period."""
        if self.period_type is PeriodType.MONTHLY:
            return [quarter_of_month(self.month)]
        if self.period_type is PeriodType.QUARTERLY:
            return [self.quarter]
        return [1, 2, 3, 4]

    def previous(self) -> "Period":
        if self.period_type is PeriodType.MONTHLY:
            if self.month == 1:
                return Period(self.year - 1, PeriodType.MONTHLY, month=12)
            return Period(self.year, PeriodType.MONTHLY, month=self.month - 1)
        if self.period_type is PeriodType.QUARTERLY:
            if self.quarter == 1:
                return Period(self.year - 1, PeriodType.QUARTERLY, quarter=4)
            return Period(self.year, PeriodType.QUARTERLY, quarter=self.quarter - 1)
        return Period(self.year - 1, PeriodType.ANNUAL)

    def to_periodo(self) -> dict:
        """Shape used in the statement's ``periodo`` block."""
        return {
            "tipo": self.period_type.value,
            "chave": self.key,
            "ano": self.year,
            "mes": self.month or 0,
            "trimestre": self.quarter or 0,
            "dataInicio": self.start_date.isoformat(),
            "dataFim": self.end_date.isoformat(),
            "trimestral": self.period_type is PeriodType.QUARTERLY,
            "anual": self.period_type is PeriodType.ANNUAL,
        }


def _validate_year(year, errors: list[dict]) -> None:
    if year is None:
        errors.append({"field": "year", "message": "year is required"})
    elif not isinstance(year, int) or isinstance(year, bool):
        errors.append({"field": "year", "message": "year must be an integer"})
    elif not MIN_YEAR <= year <= MAX_YEAR:
        errors.append({"field": "year", "message": f"year must be between {MIN_YEAR} and {MAX_YEAR}"})


def _validate_month(month, errors: list[dict]) -> None:
    if month is None:
        errors.append({"field": "month", "message": "month is required"})
    elif not isinstance(month, int) or isinstance(month, bool) or not 1 <= month <= 12:
        errors.append({"field": "month", "message": "month must be between 1 and 12"})


def _validate_quarter(quarter, errors: list[dict]) -> None:
    if quarter is None:
        errors.append({"field": "quarter", "message": "quarter is required"})
    elif not isinstance(quarter, int) or isinstance(quarter, bool) or not 1 <= quarter <= 4:
        errors.append({"field": "quarter", "message": "quarter must be between 1 and 4"})


def resolve_period(
    year: int | None,
    month: int | None = None,
    quarter: int | None = None,
    annual: bool = False,
) -> Period:
    """Build a Period from request fields.

    Exactly one of ``month``, ``quarter`` or ``annual`` must be given.
    Raises PeriodValidationError listing every invalid field.
    """
    errors: list[dict] = []
    _validate_year(year, errors)

    selectors = [name for name, given in (
        ("month", month is not None),
        ("quarter", quarter is not None),
        ("annual", bool(annual)),
    ) if given]

    if not selectors:
        errors.append({"field": "period", "message": "one of month, quarter or annual is required"})
    elif len(selectors) > 1:
        errors.append({
            "field": "period",
            "message": f"only one of month, quarter or annual may be given (got {', '.join(selectors)})",
        })
    elif month is not None:
        _validate_month(month, errors)
    elif quarter is not None:
        _validate_quarter(quarter, errors)

    if errors:
        raise PeriodValidationError(errors)

    if month is not None:
        return Period(year, PeriodType.MONTHLY, month=month)
    if quarter is not None:
        return Period(year, PeriodType.QUARTERLY, quarter=quarter)
    return Period(year, PeriodType.ANNUAL)


def month_period(year: int, month: int) -> Period:
    return resolve_period(year, month=month)


def quarter_period(year: int, quarter: int) -> Period:
    return resolve_period(year, quarter=quarter)


def year_period(year: int) -> Period:
    return resolve_period(year, annual=True)
