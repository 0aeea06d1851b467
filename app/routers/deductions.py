"""
Override API - fiscal deductions (monthly and quarterly) and manual CSLL/IRPJ.

Each endpoint has its own request model with a fixed set of required fields.
GET never answers 404 for a period that was not set yet: zero is the default.
"""
import logging
from decimal import Decimal

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from app.db.supabase import get_db
from app.routers.auth import require_session
from app.services import dre_engine, override_store
from app.services.money import to_display

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/finance", tags=["finance"], dependencies=[Depends(require_session)])


class MonthlyDeductionRequest(BaseModel):
    model_config = {"extra": "forbid"}

    year: int = Field(..., gt=0)
    month: int = Field(..., ge=1, le=12)
    value: Decimal = Field(..., ge=0)


class QuarterlyDeductionRequest(BaseModel):
    model_config = {"extra": "forbid"}

    year: int = Field(..., gt=0)
    quarter: int = Field(..., ge=1, le=4)
    value: Decimal = Field(..., ge=0)


class ManualTaxesRequest(BaseModel):
    model_config = {"extra": "forbid"}

    year: int = Field(..., gt=0)
    quarter: int = Field(..., ge=1, le=4)
    csll: Decimal = Field(..., ge=0)
    irpj: Decimal = Field(..., ge=0)


def _deduction_out(row: dict) -> dict:
    out = {k: v for k, v in row.items() if k not in ("value", "exists")}
    out["value"] = to_display(row["value"])
    return out


def _manual_out(row: dict) -> dict:
    out = {k: v for k, v in row.items() if k not in ("csll", "irpj", "exists")}
    out["csll"] = to_display(row["csll"])
    out["irpj"] = to_display(row["irpj"])
    return out


# ── Monthly deduction ─────────────────────────────────────────

@router.post("/monthly-tax-deduction")
async def save_monthly_deduction(req: MonthlyDeductionRequest):
    db = get_db()
    row = dre_engine.save_monthly_deduction(db, req.year, req.month, req.value)
    return {"success": True, "data": _deduction_out(row)}


@router.get("/monthly-tax-deduction")
async def get_monthly_deduction(
    year: int = Query(..., gt=0),
    month: int = Query(..., ge=1, le=12),
):
    db = get_db()
    row = override_store.get_monthly_deduction(db, year, month)
    return {"success": True, "data": _deduction_out(row)}


# ── Quarterly deduction ───────────────────────────────────────

@router.post("/quarterly-tax-deduction")
async def save_quarterly_deduction(req: QuarterlyDeductionRequest):
    db = get_db()
    result = dre_engine.save_quarterly_deduction(db, req.year, req.quarter, req.value)
    return {
        "success": True,
        "data": _deduction_out(result["row"]),
        "appliedDeduction": result["resolution"].to_dict(),
        "notice": result["notice"],
    }


@router.get("/quarterly-tax-deduction")
async def get_quarterly_deduction(
    year: int = Query(..., gt=0),
    quarter: int = Query(..., ge=1, le=4),
):
    db = get_db()
    row = override_store.get_quarterly_deduction(db, year, quarter)
    return {"success": True, "data": _deduction_out(row)}


# ── Manual CSLL / IRPJ ────────────────────────────────────────

@router.post("/manual-quarterly-taxes")
async def save_manual_taxes(req: ManualTaxesRequest):
    db = get_db()
    row = dre_engine.save_manual_taxes(db, req.year, req.quarter, req.csll, req.irpj)
    return {"success": True, "data": _manual_out(row)}


@router.get("/manual-quarterly-taxes")
async def get_manual_taxes(
    year: int = Query(..., gt=0),
    quarter: int = Query(..., ge=1, le=4),
):
    db = get_db()
    row = override_store.get_manual_taxes(db, year, quarter)
    return {"success": True, "data": _manual_out(row)}
