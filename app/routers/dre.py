"""
DRE API - income statement reads, period comparison, deduction breakdown,
results snapshots and operation ingestion.

GET /dre/statement?year=2025&quarter=1
GET /dre/statement?year=2025&month=4&quarterly=true   (quarter of April)
GET /dre/statement?year=2025&annual=true
"""
import logging
from datetime import datetime, timedelta, timezone

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from app.config import settings
from app.db.supabase import get_db
from app.models.statement import StatementPayload
from app.routers.auth import require_session
from app.services import dre_engine
from app.services.operations_ingest import upsert_operations
from app.services.period_resolver import Period, quarter_of_month, resolve_period
from app.services.reconciliation import resolve_deduction

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/dre", tags=["dre"], dependencies=[Depends(require_session)])

BRT = timezone(timedelta(hours=-3))


def period_from_query(
    year: int | None = Query(None, description="Ano (YYYY)"),
    month: int | None = Query(None, description="Mês 1-12"),
    quarter: int | None = Query(None, description="Trimestre 1-4"),
    annual: bool = Query(False, description="Período anual"),
    quarterly: bool = Query(False, description="Trimestre que contém `month`"),
) -> Period:
    """Dependency: resolve the query string into a Period (400 on bad input)."""
    # Out-of-range months stay as they are so the 400 names `month`
    if quarterly and month is not None and quarter is None and 1 <= month <= 12:
        quarter, month = quarter_of_month(month), None
    if settings.default_to_current_month and year is None and month is None and quarter is None and not annual:
        now_brt = datetime.now(BRT)
        year, month = now_brt.year, now_brt.month
    return resolve_period(year, month=month, quarter=quarter, annual=annual)


# ── Statement ─────────────────────────────────────────────────

@router.get("/statement")
async def get_dre(
    period: Period = Depends(period_from_query),
    fresh: bool = Query(False, description="Ignora o snapshot e recalcula"),
):
    db = get_db()
    result = dre_engine.get_statement(db, period, use_cache=not fresh)
    return {
        "success": True,
        "data": result["statement"],
        "meta": {"cache": result["cache"], "snapshotUpdatedAt": result["snapshotUpdatedAt"]},
    }


@router.get("/statement/compare")
async def compare_dre(period: Period = Depends(period_from_query)):
    db = get_db()
    return {"success": True, "data": dre_engine.compare_with_previous(db, period)}


@router.get("/deduction")
async def get_applied_deduction(period: Period = Depends(period_from_query)):
    db = get_db()
    return {"success": True, "data": resolve_deduction(db, period).to_dict()}


# ── Results snapshot ──────────────────────────────────────────

class SaveResultsRequest(BaseModel):
    model_config = {"extra": "forbid"}

    year: int = Field(..., gt=0)
    quarter: int | None = Field(None, ge=1, le=4)
    month: int | None = Field(None, ge=1, le=12)
    statement: StatementPayload | None = None


@router.post("/results")
async def save_results(req: SaveResultsRequest):
    """Recompute and store the statement of a quarter or month.

    A submitted statement is checked against the engine's figures; the
    response lists any line that differed.
    """
    period = resolve_period(req.year, month=req.month, quarter=req.quarter)
    db = get_db()
    submitted = req.statement.model_dump(exclude_unset=True) if req.statement else None
    return {"success": True, "data": dre_engine.save_results(db, period, submitted)}


@router.get("/results")
async def get_results(
    year: int | None = Query(None),
    quarter: int | None = Query(None),
    month: int | None = Query(None),
):
    period = resolve_period(year, month=month, quarter=quarter)
    db = get_db()
    return {"success": True, "data": dre_engine.get_results(db, period)}


# ── Operation ingestion ───────────────────────────────────────

class OperationRecord(BaseModel):
    id_operacao: str
    data: str
    valor_fator: str | float | None = None
    valor_ad_valorem: str | float | None = None
    valor_iof: str | float | None = None
    valor_tarifas: str | float | None = None
    valor_liquido: str | float | None = None
    pis: str | float | None = None
    csll: str | float | None = None
    cofins: str | float | None = None
    issqn: str | float | None = None
    irpj: str | float | None = None


class OperationsRequest(BaseModel):
    operations: list[OperationRecord] = Field(..., min_length=1)


@router.post("/operations")
async def ingest_operations(req: OperationsRequest):
    db = get_db()
    result = upsert_operations(db, [op.model_dump() for op in req.operations])
    return {"success": True, "data": result}
