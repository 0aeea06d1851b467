"""
DRE assembler - builds the income statement from aggregated rows, the
reconciled deduction and the profit-tax inputs.

Evaluation order (each line uses only lines computed before it):
1. receitas.total        = operacoes + outras
2. custos.total          = fator + adValorem + iof + tarifas
3. resultadoBruto        = receitas.total - custos.total
4. deducaoFiscal           (reconciled; subtracted once, in receitaLiquida)
5. despesas.total        = operacionais + tributaveis
6. resultadoOperacional  = resultadoBruto - despesas.total
7. impostos: pis/cofins/issqn from retained withholding, csll/ir manual or by rate
8. resultadoLiquido      = resultadoOperacional - impostos.total

Everything is Decimal here. serialize_statement rounds to cents on the way out.
"""
import logging
from decimal import Decimal

from app.services.money import ZERO, to_display
from app.services.period_resolver import Period, PeriodType
from app.services.raw_aggregator import RawTotals

logger = logging.getLogger(__name__)

CSLL_RATE = Decimal("0.09")
IRPJ_RATE = Decimal("0.15")

TAX_SOURCE_MANUAL = "manual"
TAX_SOURCE_COMPUTED = "calculado"
TAX_SOURCE_MIXED = "misto"


def gross_result(raw: RawTotals) -> Decimal:
    """Steps 1-3 on their own, for per-quarter tax assessment."""
    receitas_total = raw.operacoes + raw.outras
    custos_total = raw.fator + raw.ad_valorem + raw.iof + raw.tarifas
    return receitas_total - custos_total


def profit_taxes(resultado_bruto: Decimal, manual: dict | None = None) -> tuple[Decimal, Decimal, str]:
    """(csll, irpj, source) for one assessment period.

    A stored manual row wins, even when it holds zeros.
    """
    if manual and manual.get("exists"):
        return manual["csll"], manual["irpj"], TAX_SOURCE_MANUAL
    csll = max(ZERO, resultado_bruto * CSLL_RATE)
    irpj = max(ZERO, resultado_bruto * IRPJ_RATE)
    return csll, irpj, TAX_SOURCE_COMPUTED


def annual_profit_taxes(raw: RawTotals, manual_by_quarter: dict[int, dict]) -> tuple[Decimal, Decimal, str]:
    """CSLL/IRPJ of a year.

    Without manual rows the rates apply to the annual gross result. Quarters
    with a stored manual row contribute that row; the rates apply once to the
    combined gross result of the remaining quarters, so a loss quarter offsets
    a profitable one.
    """
    manual_quarters = {q: m for q, m in (manual_by_quarter or {}).items() if m.get("exists")}
    if not manual_quarters:
        return profit_taxes(gross_result(raw))

    csll = sum((m["csll"] for m in manual_quarters.values()), ZERO)
    irpj = sum((m["irpj"] for m in manual_quarters.values()), ZERO)
    computed = [q for q in (1, 2, 3, 4) if q not in manual_quarters]
    if not computed:
        return csll, irpj, TAX_SOURCE_MANUAL

    rest_gross = sum((gross_result(raw.by_quarter.get(q, RawTotals())) for q in computed), ZERO)
    rest_csll, rest_irpj, _ = profit_taxes(rest_gross)
    return csll + rest_csll, irpj + rest_irpj, TAX_SOURCE_MIXED


def _margin(numerator: Decimal, denominator: Decimal) -> Decimal:
    if denominator == 0:
        return ZERO
    return numerator / denominator * 100


def assemble_statement(
    period: Period,
    raw: RawTotals,
    deducao_fiscal: Decimal,
    manual_taxes: dict | None = None,
    manual_taxes_by_quarter: dict[int, dict] | None = None,
) -> dict:
    """Build the statement for ``period``.

    ``manual_taxes`` is the quarter's manual row (quarterly periods);
    ``manual_taxes_by_quarter`` maps quarter -> manual row (annual periods).
    Monthly periods always use the rates.
    """
    # 1-3
    receitas_total = raw.operacoes + raw.outras
    custos_total = raw.fator + raw.ad_valorem + raw.iof + raw.tarifas
    resultado_bruto = receitas_total - custos_total

    # 4
    receita_liquida = receitas_total - deducao_fiscal

    # 5-6
    despesas_total = raw.despesas_operacionais + raw.despesas_tributaveis
    resultado_operacional = resultado_bruto - despesas_total

    # 7
    if period.period_type is PeriodType.ANNUAL:
        csll, irpj, tax_source = annual_profit_taxes(raw, manual_taxes_by_quarter or {})
    elif period.period_type is PeriodType.QUARTERLY:
        csll, irpj, tax_source = profit_taxes(resultado_bruto, manual_taxes)
    else:
        csll, irpj, tax_source = profit_taxes(resultado_bruto)
    impostos_total = raw.pis + raw.cofins + raw.issqn + irpj + csll

    # 8
    resultado_liquido = resultado_operacional - impostos_total

    return {
        "periodo": period.to_periodo(),
        "receitas": {
            "operacoes": raw.operacoes,
            "outras": raw.outras,
            "total": receitas_total,
        },
        "custos": {
            "fator": raw.fator,
            "adValorem": raw.ad_valorem,
            "iof": raw.iof,
            "tarifas": raw.tarifas,
            "total": custos_total,
        },
        "deducaoFiscal": deducao_fiscal,
        "receitaLiquida": receita_liquida,
        "resultadoBruto": resultado_bruto,
        "despesas": {
            "operacionais": raw.despesas_operacionais,
            "tributaveis": raw.despesas_tributaveis,
            "total": despesas_total,
        },
        "resultadoOperacional": resultado_operacional,
        "impostos": {
            "pis": raw.pis,
            "cofins": raw.cofins,
            "issqn": raw.issqn,
            "ir": irpj,
            "csll": csll,
            "total": impostos_total,
            "fonte": tax_source,
        },
        "resultadoLiquido": resultado_liquido,
        "margemLiquida": _margin(resultado_liquido, receitas_total),
    }


def empty_statement(period: Period) -> dict:
    """Zero-filled statement with the full shape."""
    return assemble_statement(period, RawTotals(), ZERO)


def serialize_statement(statement: dict) -> dict:
    """Round every Decimal to cents for JSON; other values pass through."""
    out = {}
    for key, value in statement.items():
        if isinstance(value, dict):
            out[key] = serialize_statement(value)
        elif isinstance(value, Decimal):
            out[key] = to_display(value)
        else:
            out[key] = value
    return out
