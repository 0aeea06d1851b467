"""
Engine endpoints under /dre: statement reads, comparison, deduction
breakdown, results snapshots and operation ingestion.
"""
from app.config import settings
from app.services.override_store import QUARTERLY_DEDUCTIONS_TABLE
from app.services.raw_aggregator import ENTRIES_TABLE, EXPENSES_TABLE, OPERATIONS_TABLE
from app.services.statement_cache import QUARTERLY_RESULTS_TABLE

STATEMENT_KEYS = {
    "periodo", "receitas", "custos", "deducaoFiscal", "receitaLiquida", "resultadoBruto",
    "despesas", "resultadoOperacional", "impostos", "resultadoLiquido", "margemLiquida",
}


def _seed_quarter(db):
    # receitas 55000, custos 4300, despesas 25000
    db.seed(OPERATIONS_TABLE, [
        {"id_operacao": "A", "data": "2025-01-10", "valor_fator": "3000", "valor_ad_valorem": "800",
         "valor_iof": "300", "valor_tarifas": "200", "valor_liquido": "25700"},
        {"id_operacao": "B", "data": "2025-03-31", "valor_liquido": "20000"},
    ])
    db.seed(ENTRIES_TABLE, [{"date": "2025-02-14", "value": "5000"}])
    db.seed(EXPENSES_TABLE, [
        {"date": "2025-01-20", "value": "20000", "is_taxable": False},
        {"date": "2025-02-20", "value": "5000", "is_taxable": True},
    ])


# ── Statement ─────────────────────────────────────────────────

def test_statement_for_quarter(client, patched_db):
    _seed_quarter(patched_db)
    client.post("/finance/quarterly-tax-deduction", json={"year": 2025, "quarter": 1, "value": 10000})

    r = client.get("/dre/statement", params={"year": 2025, "quarter": 1})
    assert r.status_code == 200
    body = r.json()
    assert body["success"] is True
    data = body["data"]
    assert set(data) == STATEMENT_KEYS
    assert data["receitas"]["total"] == 55000
    assert data["custos"]["total"] == 4300
    assert data["deducaoFiscal"] == 10000
    assert data["resultadoBruto"] == 50700
    assert data["resultadoOperacional"] == 25700
    assert data["impostos"]["csll"] == 4563
    assert data["impostos"]["ir"] == 7605
    assert body["meta"]["cache"] == "miss"


def test_empty_period_returns_full_zero_shape(client):
    data = client.get("/dre/statement", params={"year": 2031, "month": 5}).json()["data"]
    assert set(data) == STATEMENT_KEYS
    assert data["resultadoLiquido"] == 0
    assert data["impostos"]["total"] == 0


def test_quarterly_flag_selects_quarter_of_month(client):
    data = client.get("/dre/statement", params={"year": 2025, "month": 4, "quarterly": "true"}).json()["data"]
    assert data["periodo"]["chave"] == "2025-Q2"


def test_annual_statement(client, patched_db):
    _seed_quarter(patched_db)
    data = client.get("/dre/statement", params={"year": 2025, "annual": "true"}).json()["data"]
    assert data["periodo"]["tipo"] == "anual"
    assert data["receitas"]["total"] == 55000


def test_missing_period_is_400(client):
    r = client.get("/dre/statement", params={"year": 2025})
    assert r.status_code == 400
    body = r.json()
    assert body["error"] == "Invalid period"
    assert body["details"][0]["field"] == "period"


def test_current_month_default_when_enabled(client, monkeypatch):
    monkeypatch.setattr(settings, "default_to_current_month", True)
    r = client.get("/dre/statement")
    assert r.status_code == 200
    assert r.json()["data"]["periodo"]["tipo"] == "mensal"


def test_invalid_month_is_400(client):
    r = client.get("/dre/statement", params={"year": 2025, "month": 13})
    assert r.status_code == 400
    assert r.json()["details"] == [{"field": "month", "message": "month must be between 1 and 12"}]


def test_statement_requires_session(anon_client):
    assert anon_client.get("/dre/statement", params={"year": 2025, "month": 1}).status_code == 401


# ── Compare / deduction ───────────────────────────────────────

def test_compare_with_previous_month(client, patched_db):
    patched_db.seed(ENTRIES_TABLE, [
        {"date": "2024-12-05", "value": "1000"},
        {"date": "2025-01-05", "value": "1500"},
    ])
    data = client.get("/dre/statement/compare", params={"year": 2025, "month": 1}).json()["data"]
    assert data["anterior"]["periodo"]["chave"] == "2024-12"
    assert data["variacoes"]["receitaTotal"] == 50.0
    assert data["variacoes"]["despesaTotal"] == 0


def test_deduction_breakdown(client):
    client.post("/finance/monthly-tax-deduction", json={"year": 2025, "month": 1, "value": 10000})
    client.post("/finance/monthly-tax-deduction", json={"year": 2025, "month": 2, "value": 0})
    data = client.get("/dre/deduction", params={"year": 2025, "quarter": 1}).json()["data"]
    assert data["value"] == 10000
    assert data["source"] == "monthly"
    assert data["monthly"] == {"1": 10000, "2": 0}


# ── Results ───────────────────────────────────────────────────

def test_save_results_propagates_reconciled_deduction(client, patched_db):
    _seed_quarter(patched_db)
    client.post("/finance/monthly-tax-deduction", json={"year": 2025, "month": 1, "value": 10000})

    r = client.post("/dre/results", json={"year": 2025, "quarter": 1})
    assert r.status_code == 200
    data = r.json()["data"]
    assert data["deducaoPropagada"] is True
    assert data["statement"]["deducaoFiscal"] == 10000

    stored = client.get("/finance/quarterly-tax-deduction", params={"year": 2025, "quarter": 1}).json()["data"]
    assert stored["value"] == 10000

    meta = client.get("/dre/statement", params={"year": 2025, "quarter": 1}).json()["meta"]
    assert meta["cache"] == "hit"


def test_save_results_does_not_overwrite_quarterly_source(client, patched_db):
    client.post("/finance/quarterly-tax-deduction", json={"year": 2025, "quarter": 2, "value": 700})
    before = [dict(r) for r in patched_db.rows(QUARTERLY_DEDUCTIONS_TABLE)]
    data = client.post("/dre/results", json={"year": 2025, "quarter": 2}).json()["data"]
    assert data["deducaoPropagada"] is False
    assert patched_db.rows(QUARTERLY_DEDUCTIONS_TABLE) == before


def test_save_results_reports_divergent_lines(client, patched_db):
    _seed_quarter(patched_db)
    r = client.post("/dre/results", json={
        "year": 2025, "quarter": 1,
        "statement": {"resultadoBruto": 50700, "receitas": {"total": 23333333}},
    })
    data = r.json()["data"]
    assert data["divergencias"] == [{"linha": "receitas.total", "enviado": 23333333.0, "calculado": 55000.0}]
    row = patched_db.rows(QUARTERLY_RESULTS_TABLE)[0]
    assert float(row["total_income"]) == 55000


def test_save_results_requires_quarter_or_month(client):
    r = client.post("/dre/results", json={"year": 2025})
    assert r.status_code == 400


def test_get_results_defaults_and_snapshot(client, patched_db):
    empty = client.get("/dre/results", params={"year": 2025, "quarter": 3}).json()["data"]
    assert empty["exists"] is False
    assert empty["statement"]["resultadoLiquido"] == 0

    _seed_quarter(patched_db)
    client.post("/dre/results", json={"year": 2025, "month": 1})
    stored = client.get("/dre/results", params={"year": 2025, "month": 1}).json()["data"]
    assert stored["exists"] is True
    assert stored["stale"] is False


# ── Operations ────────────────────────────────────────────────

def test_operations_upsert_by_id(client, patched_db):
    payload = {"operations": [
        {"id_operacao": "OP-1", "data": "15/01/2025", "valor_liquido": "1.000,50", "valor_fator": 10},
    ]}
    first = client.post("/dre/operations", json=payload).json()["data"]
    assert first == {"received": 1, "inserted": 1, "updated": 0}
    second = client.post("/dre/operations", json=payload).json()["data"]
    assert second == {"received": 1, "inserted": 0, "updated": 1}
    assert len(patched_db.rows(OPERATIONS_TABLE)) == 1

    data = client.get("/dre/statement", params={"year": 2025, "month": 1}).json()["data"]
    assert data["receitas"]["operacoes"] == 1010.5


def test_operations_bad_date_is_400(client):
    r = client.post("/dre/operations", json={"operations": [{"id_operacao": "X", "data": "31/02/2025"}]})
    assert r.status_code == 400
    assert r.json()["details"][0]["field"] == "operations[0].data"


def test_quarterly_flag_with_bad_month_names_month(client):
    r = client.get("/dre/statement", params={"year": 2025, "month": 13, "quarterly": "true"})
    assert r.status_code == 400
    assert [d["field"] for d in r.json()["details"]] == ["month"]
