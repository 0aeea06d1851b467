"""
Operation ingestion store - upserts CSV operation rows keyed by id_operacao.

CSV parsing lives upstream; this only normalizes the decimal-string money
fields of already-parsed records and writes them, so re-importing the same
operation updates the row instead of duplicating it.
"""
import logging
from datetime import date, datetime, timezone

from app.services.errors import PeriodValidationError, PersistenceError
from app.services.money import to_decimal
from app.services.raw_aggregator import OPERATIONS_TABLE

logger = logging.getLogger(__name__)

MONEY_FIELDS = (
    "valor_fator", "valor_ad_valorem", "valor_iof", "valor_tarifas", "valor_liquido",
    "pis", "csll", "cofins", "issqn", "irpj",
)

BATCH_SIZE = 500


def _parse_date(raw) -> str | None:
    if raw in (None, ""):
        return None
    if isinstance(raw, datetime):
        return raw.date().isoformat()
    if isinstance(raw, date):
        return raw.isoformat()
    text = str(raw).strip()
    # Accept DD/MM/YYYY as exported by the operations system
    if len(text) >= 10 and text[2] == "/" and text[5] == "/":
        return datetime.strptime(text[:10], "%d/%m/%Y").date().isoformat()
    return date.fromisoformat(text[:10]).isoformat()


def normalize_operation(record: dict, index: int = 0) -> dict:
    """Return a row ready for upsert, or raise PeriodValidationError."""
    errors: list[dict] = []
    op_id = str(record.get("id_operacao") or "").strip()
    if not op_id:
        errors.append({"field": f"operations[{index}].id_operacao", "message": "id_operacao is required"})

    row: dict = {"id_operacao": op_id}
    try:
        row["data"] = _parse_date(record.get("data"))
        if row["data"] is None:
            errors.append({"field": f"operations[{index}].data", "message": "data is required"})
    except ValueError:
        errors.append({"field": f"operations[{index}].data", "message": "invalid date"})

    for name in MONEY_FIELDS:
        try:
            row[name] = str(to_decimal(record.get(name)))
        except ValueError:
            errors.append({"field": f"operations[{index}].{name}", "message": "must be a decimal number"})

    if errors:
        raise PeriodValidationError(errors)
    return row


def upsert_operations(db, records: list[dict]) -> dict:
    """Validate every record first, then upsert in batches on id_operacao."""
    rows: list[dict] = []
    errors: list[dict] = []
    for i, record in enumerate(records):
        try:
            rows.append(normalize_operation(record, i))
        except PeriodValidationError as e:
            errors.extend(e.errors)
    if errors:
        raise PeriodValidationError(errors)

    # Last occurrence of a duplicated id wins, as a re-import would.
    by_id = {row["id_operacao"]: row for row in rows}
    now = datetime.now(timezone.utc).isoformat()
    payload = [{**row, "updated_at": now} for row in by_id.values()]

    existing: set[str] = set()
    ids = list(by_id)
    try:
        for i in range(0, len(ids), BATCH_SIZE):
            chunk = ids[i:i + BATCH_SIZE]
            result = db.table(OPERATIONS_TABLE).select("id_operacao").in_("id_operacao", chunk).execute()
            existing.update(r["id_operacao"] for r in result.data or [])
        for i in range(0, len(payload), BATCH_SIZE):
            db.table(OPERATIONS_TABLE).upsert(payload[i:i + BATCH_SIZE], on_conflict="id_operacao").execute()
    except Exception as e:
        logger.error("operations_ingest: upsert failed after %d rows", len(payload), exc_info=True)
        raise PersistenceError(f"upsert {OPERATIONS_TABLE}", e) from e

    inserted = len(payload) - len(existing)
    logger.info("Operations ingested: %d new, %d updated", inserted, len(existing))
    return {"received": len(records), "inserted": inserted, "updated": len(existing)}
