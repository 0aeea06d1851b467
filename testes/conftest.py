"""
Shared fixtures: an in-memory stand-in for the Supabase query builder and
TestClients for the FastAPI app.

FakeSupabase keeps one list of dict rows per table and understands the subset
of the postgrest builder the app uses (select/eq/gte/lt/lte/in_/order/limit/
range + upsert/insert/update/delete, then execute().data).
"""
import copy
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient


class FakeQuery:
    def __init__(self, db: "FakeSupabase", table: str):
        self.db = db
        self.table = table
        self.action = "select"
        self.payload = None
        self.on_conflict = None
        self.filters: list = []
        self.order_by: str | None = None
        self.order_desc = False
        self.limit_n: int | None = None
        self.range_bounds: tuple[int, int] | None = None

    # ── Actions ──
    def select(self, *_columns):
        self.action = "select"
        return self

    def insert(self, payload):
        self.action, self.payload = "insert", payload
        return self

    def upsert(self, payload, on_conflict: str | None = None):
        self.action, self.payload, self.on_conflict = "upsert", payload, on_conflict
        return self

    def update(self, payload):
        self.action, self.payload = "update", payload
        return self

    def delete(self):
        self.action = "delete"
        return self

    # ── Filters ──
    def eq(self, column, value):
        self.filters.append(lambda r: r.get(column) == value)
        return self

    def gte(self, column, value):
        self.filters.append(lambda r: r.get(column) is not None and str(r[column]) >= str(value))
        return self

    def lt(self, column, value):
        self.filters.append(lambda r: r.get(column) is not None and str(r[column]) < str(value))
        return self

    def lte(self, column, value):
        self.filters.append(lambda r: r.get(column) is not None and str(r[column]) <= str(value))
        return self

    def in_(self, column, values):
        allowed = list(values)
        self.filters.append(lambda r: r.get(column) in allowed)
        return self

    def order(self, column, desc: bool = False):
        self.order_by, self.order_desc = column, desc
        return self

    def limit(self, n: int):
        self.limit_n = n
        return self

    def range(self, start: int, end: int):
        self.range_bounds = (start, end)
        return self

    # ── Execution ──
    def _matches(self, row: dict) -> bool:
        return all(f(row) for f in self.filters)

    def execute(self):
        self.db.calls.append((self.table, self.action))
        if self.table in self.db.failing_tables:
            raise RuntimeError(f"connection refused ({self.table})")
        rows = self.db.tables.setdefault(self.table, [])

        if self.action == "select":
            found = [copy.deepcopy(r) for r in rows if self._matches(r)]
            if self.order_by:
                found.sort(key=lambda r: (r.get(self.order_by) is None, r.get(self.order_by)), reverse=self.order_desc)
            if self.range_bounds:
                start, end = self.range_bounds
                found = found[start:end + 1]
            if self.limit_n is not None:
                found = found[:self.limit_n]
            return SimpleNamespace(data=found)

        if self.action == "insert":
            items = self.payload if isinstance(self.payload, list) else [self.payload]
            return SimpleNamespace(data=[self.db._insert(self.table, item) for item in items])

        if self.action == "upsert":
            items = self.payload if isinstance(self.payload, list) else [self.payload]
            keys = (self.on_conflict or "id").split(",")
            out = []
            for item in items:
                existing = next(
                    (r for r in rows if all(r.get(k) == item.get(k) for k in keys)),
                    None,
                )
                if existing is None:
                    out.append(self.db._insert(self.table, item))
                else:
                    existing.update(copy.deepcopy(item))
                    out.append(copy.deepcopy(existing))
            return SimpleNamespace(data=out)

        if self.action == "update":
            changed = []
            for r in rows:
                if self._matches(r):
                    r.update(copy.deepcopy(self.payload))
                    changed.append(copy.deepcopy(r))
            return SimpleNamespace(data=changed)

        if self.action == "delete":
            removed = [r for r in rows if self._matches(r)]
            self.db.tables[self.table] = [r for r in rows if not self._matches(r)]
            return SimpleNamespace(data=removed)

        raise AssertionError(f"unsupported action {self.action}")


class FakeSupabase:
    def __init__(self):
        self.tables: dict[str, list[dict]] = {}
        self.failing_tables: set[str] = set()
        self.calls: list[tuple[str, str]] = []
        self._next_id = 1

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)

    def _insert(self, table: str, item: dict) -> dict:
        row = copy.deepcopy(item)
        if "id" not in row:
            row["id"] = self._next_id
            self._next_id += 1
        self.tables.setdefault(table, []).append(row)
        return copy.deepcopy(row)

    def seed(self, table: str, rows: list[dict]) -> None:
        for row in rows:
            self._insert(table, row)

    def rows(self, table: str) -> list[dict]:
        return self.tables.get(table, [])


@pytest.fixture
def db():
    return FakeSupabase()


@pytest.fixture
def patched_db(db, monkeypatch):
    """FakeSupabase wired into every module that calls get_db()."""
    from app.routers import auth, deductions, dre

    for module in (auth, deductions, dre):
        monkeypatch.setattr(module, "get_db", lambda: db)
    return db


@pytest.fixture
def client(patched_db):
    """TestClient with the session gate satisfied."""
    from app.main import app
    from app.routers.auth import require_session

    app.dependency_overrides[require_session] = lambda: True
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def anon_client(patched_db):
    """TestClient without a session."""
    from app.main import app

    app.dependency_overrides.clear()
    with TestClient(app) as c:
        yield c
