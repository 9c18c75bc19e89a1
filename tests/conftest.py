import os
import tempfile

# Static mount directory for the app; must exist before promonex.main is imported
os.environ.setdefault("PUBLIC_DIR", tempfile.mkdtemp(prefix="promonex-public-"))

import httpx
import pytest

from promonex import http_client, metrics, rate_limiter
from promonex.pipeline import db

SHOP = "demo-store.myshopify.com"

VENDOR_ENV = [
    "BACKEND_URL",
    "REMOTION_URL",
    "PHOTOROOM_API_KEY",
    "ELEVENLABS_API_KEY",
    "PEXELS_API_KEY",
    "PIXABAY_API_KEY",
    "COVERR_API_KEY",
    "STORYBLOCKS_API_KEY",
    "STORYBLOCKS_API_SECRET",
    "R2_ACCOUNT_ID",
    "R2_ACCESS_KEY_ID",
    "R2_SECRET_ACCESS_KEY",
    "R2_PUBLIC_URL",
    "APP_SHARED_SECRET",
]


# ── In-memory Supabase ───────────────────────────────────────────────────────

class _Result:
    def __init__(self, data):
        self.data = data


class FakeQuery:
    """The subset of the postgrest query builder the services use."""

    def __init__(self, db: "FakeSupabase", table: str):
        self._db = db
        self._table = table
        self._op = "select"
        self._payload = None
        self._filters: list[tuple[str, object]] = []
        self._order: list[tuple[str, bool]] = []
        self._limit = None
        self._on_conflict = ""

    def select(self, *columns):
        self._op = "select"
        return self

    def insert(self, payload):
        self._op, self._payload = "insert", payload
        return self

    def update(self, payload):
        self._op, self._payload = "update", payload
        return self

    def upsert(self, payload, on_conflict=""):
        self._op, self._payload, self._on_conflict = "upsert", payload, on_conflict
        return self

    def delete(self):
        self._op = "delete"
        return self

    def eq(self, column, value):
        self._filters.append((column, value))
        return self

    def order(self, column, desc=False):
        self._order.append((column, desc))
        return self

    def limit(self, n):
        self._limit = n
        return self

    def _matches(self, row: dict) -> bool:
        return all(row.get(column) == value for column, value in self._filters)

    def execute(self) -> _Result:
        rows = self._db.tables.setdefault(self._table, [])

        if self._op == "select":
            found = [dict(r) for r in rows if self._matches(r)]
            for column, desc in reversed(self._order):
                found.sort(key=lambda r: (r.get(column) is None, r.get(column)), reverse=desc)
            if self._limit is not None:
                found = found[: self._limit]
            return _Result(found)

        if self._op == "insert":
            payload = self._payload if isinstance(self._payload, list) else [self._payload]
            rows.extend(dict(p) for p in payload)
            return _Result([dict(p) for p in payload])

        if self._op == "update":
            updated = []
            for row in rows:
                if self._matches(row):
                    row.update(self._payload)
                    updated.append(dict(row))
            return _Result(updated)

        if self._op == "upsert":
            keys = [k.strip() for k in self._on_conflict.split(",") if k.strip()]
            for row in rows:
                if keys and all(row.get(k) == self._payload.get(k) for k in keys):
                    row.update(self._payload)
                    return _Result([dict(row)])
            rows.append(dict(self._payload))
            return _Result([dict(self._payload)])

        if self._op == "delete":
            removed = [r for r in rows if self._matches(r)]
            self._db.tables[self._table] = [r for r in rows if not self._matches(r)]
            return _Result(removed)

        raise AssertionError(f"unsupported op {self._op}")


class FakeSupabase:
    def __init__(self):
        self.tables: dict[str, list[dict]] = {}

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)

    def rows(self, name: str) -> list[dict]:
        return self.tables.get(name, [])


# ── Fixtures ─────────────────────────────────────────────────────────────────

@pytest.fixture(autouse=True)
def fake_db(monkeypatch):
    fake = FakeSupabase()
    monkeypatch.setattr(db, "_client", fake)
    return fake


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    for name in VENDOR_ENV:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("ENVIRONMENT", "development")
    monkeypatch.setenv("PUBLIC_DIR", str(tmp_path / "public"))
    monkeypatch.setenv("PUBLIC_BASE_URL", "http://assets.test")
    monkeypatch.setenv("POLL_INTERVAL_SECONDS", "0")
    monkeypatch.setenv("POLL_TIMEOUT_SECONDS", "5")
    monkeypatch.setattr(http_client, "BASE_DELAY", 0)
    monkeypatch.setattr(http_client, "JITTER_MAX", 0)
    monkeypatch.setattr(http_client, "_transport", None)
    metrics.reset()
    rate_limiter.reset()
    yield
    rate_limiter.reset()


@pytest.fixture
def mock_http(monkeypatch):
    """Route every outbound httpx call through handler(request) -> httpx.Response."""
    def install(handler):
        monkeypatch.setattr(http_client, "_transport", httpx.MockTransport(handler))
    return install


@pytest.fixture
def client():
    from fastapi.testclient import TestClient
    from promonex.main import app

    with TestClient(app, headers={"X-Shopify-Shop-Domain": SHOP}) as test_client:
        yield test_client


@pytest.fixture
def short(fake_db):
    """A draft Short with three pending scenes owned by SHOP."""
    from promonex.pipeline import short_service

    created = short_service.create_short(SHOP, "Summer promo", "gid://shopify/Product/1", with_scenes=True)
    return created
