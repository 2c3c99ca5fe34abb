"""
ai-spot-backend - Pytest Configuration
======================================

Shared fixtures: an in-memory stand-in for the Supabase client and a
TestClient with auth and database dependencies overridden.
"""

import copy
import os
import re
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from unittest.mock import MagicMock

import pytest

# Set test environment BEFORE any app imports
os.environ["ENVIRONMENT"] = "development"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["SUPABASE_URL"] = "http://localhost:54321"
os.environ["SUPABASE_KEY"] = "test-anon-key"
os.environ["OPENAI_API_KEY"] = ""
os.environ["RESEND_API_KEY"] = ""

from fastapi.testclient import TestClient
from postgrest.exceptions import APIError

from app.core.ai import reset_openai_clients
from app.core.cache import memory_cache
from app.core.dependencies import get_current_user_id, get_optional_user
from app.core.rate_limit import reset_rate_limits
from app.database.supabase_client import get_supabase, get_service_supabase
from app.main import app
from app.modules.agents.service import agent_cache
from app.modules.auth.service import clear_auth_cache
from app.modules.integrations import manager as integration_manager


# =============================================================================
# In-memory Supabase
# =============================================================================

EMBED_PATTERN = re.compile(r"(\w+)\(([^)]*)\)")


class FakeResponse:
    def __init__(self, data: Any, count: Optional[int] = None):
        self.data = data
        self.count = count


class FakeQuery:
    """Query builder that evaluates PostgREST-style chains against FakeSupabase.tables."""

    def __init__(self, db: "FakeSupabase", table: str):
        self.db = db
        self.table = table
        self.op = "select"
        self.columns = "*"
        self.payload: Any = None
        self.on_conflict: Optional[str] = None
        self.filters: List = []
        self._order: List = []
        self._limit: Optional[int] = None
        self._range: Optional[tuple] = None
        self._single = False
        self._count: Optional[str] = None

    # operations
    def select(self, columns: str = "*", count: Optional[str] = None):
        self.columns = columns
        self._count = count
        return self

    def insert(self, payload):
        self.op, self.payload = "insert", payload
        return self

    def update(self, payload):
        self.op, self.payload = "update", payload
        return self

    def upsert(self, payload, on_conflict: Optional[str] = None, **kwargs):
        self.op, self.payload, self.on_conflict = "upsert", payload, on_conflict
        return self

    def delete(self):
        self.op = "delete"
        return self

    # filters
    def eq(self, column, value):
        self.filters.append(lambda r: r.get(column) == value)
        return self

    def neq(self, column, value):
        self.filters.append(lambda r: r.get(column) != value)
        return self

    def gt(self, column, value):
        self.filters.append(lambda r: r.get(column) is not None and r[column] > value)
        return self

    def gte(self, column, value):
        self.filters.append(lambda r: r.get(column) is not None and r[column] >= value)
        return self

    def lt(self, column, value):
        self.filters.append(lambda r: r.get(column) is not None and r[column] < value)
        return self

    def lte(self, column, value):
        self.filters.append(lambda r: r.get(column) is not None and r[column] <= value)
        return self

    def in_(self, column, values):
        values = list(values)
        self.filters.append(lambda r: r.get(column) in values)
        return self

    def is_(self, column, value):
        if value in ("null", None):
            self.filters.append(lambda r: r.get(column) is None)
        else:
            self.filters.append(lambda r: r.get(column) is not None)
        return self

    # modifiers
    def order(self, column, desc: bool = False, **kwargs):
        self._order.append((column, desc))
        return self

    def limit(self, count: int, **kwargs):
        self._limit = count
        return self

    def range(self, start: int, end: int, **kwargs):
        self._range = (start, end)
        return self

    def single(self):
        self._single = True
        return self

    # execution
    def _matches(self) -> List[Dict[str, Any]]:
        rows = self.db.tables.setdefault(self.table, [])
        return [r for r in rows if all(f(r) for f in self.filters)]

    def _embed(self, row: Dict[str, Any]) -> Dict[str, Any]:
        row = copy.deepcopy(row)
        for name, _cols in EMBED_PATTERN.findall(self.columns or ""):
            fk = f"{name[:-1] if name.endswith('s') else name}_id"
            related = [r for r in self.db.tables.get(name, []) if r.get("id") == row.get(fk)]
            row[name] = copy.deepcopy(related[0]) if related else None
        return row

    def _new_row(self, values: Dict[str, Any]) -> Dict[str, Any]:
        row = copy.deepcopy(values)
        row.setdefault("id", str(uuid.uuid4()))
        row.setdefault("created_at", datetime.now(timezone.utc).isoformat())
        return row

    def execute(self) -> FakeResponse:
        self.db.calls.append((self.table, self.op))
        error = self.db.errors.get((self.table, self.op))
        if error is not None:
            raise error

        if self.op == "insert":
            payload = self.payload if isinstance(self.payload, list) else [self.payload]
            rows = [self._new_row(p) for p in payload]
            self.db.tables.setdefault(self.table, []).extend(rows)
            return FakeResponse(copy.deepcopy(rows))

        if self.op == "upsert":
            payload = self.payload if isinstance(self.payload, list) else [self.payload]
            keys = (self.on_conflict or "id").split(",")
            table = self.db.tables.setdefault(self.table, [])
            out = []
            for values in payload:
                existing = next(
                    (r for r in table if all(r.get(k) == values.get(k) for k in keys)), None
                )
                if existing is not None:
                    existing.update(copy.deepcopy(values))
                    out.append(copy.deepcopy(existing))
                else:
                    row = self._new_row(values)
                    table.append(row)
                    out.append(copy.deepcopy(row))
            return FakeResponse(out)

        matches = self._matches()

        if self.op == "update":
            for row in matches:
                row.update(copy.deepcopy(self.payload))
            return FakeResponse(copy.deepcopy(matches))

        if self.op == "delete":
            table = self.db.tables[self.table]
            self.db.tables[self.table] = [r for r in table if r not in matches]
            return FakeResponse(copy.deepcopy(matches))

        for column, desc in reversed(self._order):
            matches = sorted(matches, key=lambda r: (r.get(column) is None, r.get(column) or ""), reverse=desc)
        total = len(matches)
        if self._range:
            start, end = self._range
            matches = matches[start:end + 1]
        if self._limit is not None:
            matches = matches[:self._limit]
        data = [self._embed(r) for r in matches]

        if self._single:
            if len(data) != 1:
                raise APIError({
                    "code": "PGRST116",
                    "message": "JSON object requested, multiple (or no) rows returned",
                    "details": f"The result contains {len(data)} rows",
                    "hint": None,
                })
            return FakeResponse(data[0], total if self._count else None)
        return FakeResponse(data, total if self._count else None)


class FakeRpc:
    def __init__(self, db: "FakeSupabase", name: str, params: Dict[str, Any]):
        self.db, self.name, self.params = db, name, params

    def execute(self) -> FakeResponse:
        self.db.rpc_calls.append((self.name, self.params))
        return FakeResponse(copy.deepcopy(self.db.rpc_results.get(self.name, [])))


class FakeSupabase:
    """Enough of supabase.Client for the services: tables, rpc, storage and auth."""

    def __init__(self):
        self.tables: Dict[str, List[Dict[str, Any]]] = {}
        self.errors: Dict[tuple, Exception] = {}
        self.calls: List[tuple] = []
        self.rpc_results: Dict[str, Any] = {}
        self.rpc_calls: List[tuple] = []
        self.auth = MagicMock()
        self.storage = MagicMock()

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)

    def rpc(self, name: str, params: Optional[Dict[str, Any]] = None) -> FakeRpc:
        return FakeRpc(self, name, params or {})

    def seed(self, table: str, *rows: Dict[str, Any]) -> List[Dict[str, Any]]:
        stored = []
        for values in rows:
            row = copy.deepcopy(values)
            row.setdefault("id", str(uuid.uuid4()))
            row.setdefault("created_at", datetime.now(timezone.utc).isoformat())
            self.tables.setdefault(table, []).append(row)
            stored.append(row)
        return stored

    def rows(self, table: str) -> List[Dict[str, Any]]:
        return self.tables.get(table, [])


# =============================================================================
# Fixtures
# =============================================================================

TEST_USER = {
    "id": "user-1",
    "email": "owner@example.com",
    "user_metadata": {"full_name": "Olive Owner"},
    "app_metadata": {},
}


@pytest.fixture(autouse=True)
def reset_state():
    """Process-wide caches and limiters must not leak between tests."""
    reset_rate_limits()
    reset_openai_clients()
    agent_cache.clear()
    memory_cache.clear()
    clear_auth_cache()
    integration_manager._manager = None
    yield
    app.dependency_overrides.clear()


@pytest.fixture
def fake_supabase() -> FakeSupabase:
    return FakeSupabase()


@pytest.fixture
def test_user() -> Dict[str, Any]:
    return copy.deepcopy(TEST_USER)


@pytest.fixture
def agent(fake_supabase, test_user) -> Dict[str, Any]:
    return fake_supabase.seed("agents", {
        "id": "agent-1",
        "user_id": test_user["id"],
        "name": "Support Bot",
        "description": "Answers product questions",
        "purpose": "Help customers with orders",
        "tone": "friendly",
        "model": "gpt-4o-mini",
        "temperature": 0.7,
        "max_tokens": 500,
        "is_public": False,
        "use_platform_key": True,
        "api_key_id": None,
        "status": "active",
    })[0]


@pytest.fixture
def anon_client(fake_supabase) -> TestClient:
    """Client without a signed-in user."""
    app.dependency_overrides[get_supabase] = lambda: fake_supabase
    app.dependency_overrides[get_service_supabase] = lambda: fake_supabase
    app.dependency_overrides[get_optional_user] = lambda: None
    with TestClient(app) as client:
        yield client


@pytest.fixture
def client(fake_supabase, test_user) -> TestClient:
    """Client authenticated as test_user."""
    app.dependency_overrides[get_supabase] = lambda: fake_supabase
    app.dependency_overrides[get_service_supabase] = lambda: fake_supabase
    app.dependency_overrides[get_current_user_id] = lambda: test_user
    app.dependency_overrides[get_optional_user] = lambda: test_user
    with TestClient(app) as client:
        yield client


def make_completion(content: str, total_tokens: int = 42) -> MagicMock:
    """Shape of an OpenAI chat completion as the services read it."""
    completion = MagicMock()
    completion.choices = [MagicMock()]
    completion.choices[0].message.content = content
    completion.usage.total_tokens = total_tokens
    completion.usage.prompt_tokens = total_tokens // 2
    completion.usage.completion_tokens = total_tokens - total_tokens // 2
    return completion


@pytest.fixture
def openai_client() -> MagicMock:
    client = MagicMock()
    client.chat.completions.create.return_value = make_completion("Hello from the agent")
    return client
