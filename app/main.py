"""
DRE Engine - income statement aggregation for factoring operations.
Statement reads + fiscal overrides + results snapshots.
"""
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.config import settings
from app.routers import auth, deductions, dre, health
from app.services.errors import PeriodValidationError, PersistenceError

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
# Silence httpx per-request logs (supabase client goes through httpx)
logging.getLogger("httpx").setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


app = FastAPI(
    title="DRE Engine",
    description="Demonstração do Resultado do Exercício: agregação, deduções fiscais e snapshots",
    version="1.0.0",
)

# CORS for dashboard
origins = [o.strip() for o in settings.cors_origins.split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _field_from_loc(loc) -> str:
    # ("body", "value") -> "value"; ("query", "month") -> "month"
    parts = [str(p) for p in loc if p not in ("body", "query")]
    return ".".join(parts) or "body"


@app.exception_handler(PeriodValidationError)
async def period_validation_handler(request: Request, exc: PeriodValidationError):
    return JSONResponse(
        status_code=400,
        content={"success": False, "error": "Invalid period", "details": exc.errors},
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    details = [
        {"field": _field_from_loc(err.get("loc", ())), "message": err.get("msg", "invalid")}
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content={"success": False, "error": "Invalid request body", "details": details},
    )


@app.exception_handler(PersistenceError)
async def persistence_handler(request: Request, exc: PersistenceError):
    logger.error("Persistence failure on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=500,
        content={"success": False, "error": "Persistence failure", "details": [{"operation": exc.operation}]},
    )


app.include_router(health.router)
app.include_router(auth.router)
app.include_router(deductions.router)
app.include_router(dre.router)
