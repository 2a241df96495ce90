import re
import uuid
from types import SimpleNamespace
from typing import Any, Dict, List, Optional

import pytest
from fastapi.testclient import TestClient

from app.core import rate_limit
from app.database.supabase_client import get_service_supabase, get_session_client_factory
from app.main import app
from app.modules.auth.service import clear_auth_cache
from app.modules.products.csv_import import reset_column_cache
from app.modules.zoho.token_manager import clear_token_cache


class SimulatedDatabaseError(Exception):
    pass


def _same(a: Any, b: Any) -> bool:
    if a == b:
        return True
    return a is not None and b is not None and str(a) == str(b)


def _like(value: Any, pattern: str, ignore_case: bool) -> bool:
    if value is None:
        return False
    regex = "^" + ".*".join(re.escape(part) for part in str(pattern).split("%")) + "$"
    return re.match(regex, str(value), re.IGNORECASE if ignore_case else 0) is not None


def _sort_key(value: Any) -> tuple:
    if isinstance(value, bool) or value is None:
        return (0, 0, str(value))
    if isinstance(value, (int, float)):
        return (1, value, "")
    return (1, 0, str(value))


class FakeQuery:
    """Just enough of the postgrest builder for the services under test."""

    def __init__(self, db: "FakeSupabase", name: str):
        self.db = db
        self.name = name
        self.op = "select"
        self.payload: Any = None
        self.on_conflict = "id"
        self.filters: List = []
        self.count_mode: Optional[str] = None
        self.order_by: List = []
        self.bounds: Optional[tuple] = None
        self.max_rows: Optional[int] = None

    # builders
    def select(self, columns: str = "*", count: Optional[str] = None):
        self.count_mode = count
        return self

    def insert(self, payload):
        self.op, self.payload = "insert", payload
        return self

    def update(self, payload):
        self.op, self.payload = "update", payload
        return self

    def upsert(self, payload, on_conflict: str = "id"):
        self.op, self.payload, self.on_conflict = "upsert", payload, on_conflict
        return self

    def delete(self):
        self.op = "delete"
        return self

    # filters
    def eq(self, column, value):
        self.filters.append(lambda row: _same(row.get(column), value))
        return self

    def neq(self, column, value):
        self.filters.append(lambda row: not _same(row.get(column), value))
        return self

    def in_(self, column, values):
        values = list(values)
        self.filters.append(lambda row: any(_same(row.get(column), v) for v in values))
        return self

    def gte(self, column, value):
        self.filters.append(lambda row: row.get(column) is not None and str(row[column]) >= str(value))
        return self

    def lt(self, column, value):
        self.filters.append(lambda row: row.get(column) is not None and str(row[column]) < str(value))
        return self

    def like(self, column, pattern):
        self.filters.append(lambda row: _like(row.get(column), pattern, False))
        return self

    def ilike(self, column, pattern):
        self.filters.append(lambda row: _like(row.get(column), pattern, True))
        return self

    def or_(self, expression: str):
        clauses = []
        for part in expression.split(","):
            column, op, value = part.split(".", 2)
            clauses.append((column, op, value))

        def matches(row):
            for column, op, value in clauses:
                if op == "eq" and _same(row.get(column), value):
                    return True
                if op == "ilike" and _like(row.get(column), value, True):
                    return True
                if op == "like" and _like(row.get(column), value, False):
                    return True
            return False
        self.filters.append(matches)
        return self

    def order(self, column, desc: bool = False):
        self.order_by.append((column, desc))
        return self

    def range(self, start, end):
        self.bounds = (start, end)
        return self

    def limit(self, n):
        self.max_rows = n
        return self

    # execution
    def _matching(self) -> List[Dict[str, Any]]:
        return [row for row in self.db.rows(self.name) if all(f(row) for f in self.filters)]

    def _store(self, row: Dict[str, Any]) -> Dict[str, Any]:
        stored = dict(row)
        stored.setdefault("id", str(uuid.uuid4()))
        self.db.rows(self.name).append(stored)
        return dict(stored)

    def execute(self):
        self.db.calls.append((self.name, self.op, self.payload))
        failure = self.db.failures.get((self.name, self.op))
        if failure:
            if callable(failure):
                failure = failure(self.payload)
            if failure:
                raise SimulatedDatabaseError(failure if isinstance(failure, str) else "simulated failure")

        if self.op == "select":
            rows = [dict(r) for r in self._matching()]
            total = len(rows)
            for column, desc in reversed(self.order_by):
                rows.sort(key=lambda r: _sort_key(r.get(column)), reverse=desc)
            if self.bounds:
                rows = rows[self.bounds[0]:self.bounds[1] + 1]
            if self.max_rows is not None:
                rows = rows[:self.max_rows]
            return SimpleNamespace(data=rows, count=total if self.count_mode else None)

        if self.op == "insert":
            items = self.payload if isinstance(self.payload, list) else [self.payload]
            return SimpleNamespace(data=[self._store(item) for item in items], count=None)

        if self.op == "update":
            updated = []
            for row in self._matching():
                row.update(self.payload)
                updated.append(dict(row))
            return SimpleNamespace(data=updated, count=None)

        if self.op == "upsert":
            keys = [k.strip() for k in self.on_conflict.split(",")]
            items = self.payload if isinstance(self.payload, list) else [self.payload]
            out = []
            for item in items:
                existing = next(
                    (r for r in self.db.rows(self.name) if all(_same(r.get(k), item.get(k)) for k in keys)),
                    None
                )
                if existing is not None:
                    existing.update(item)
                    out.append(dict(existing))
                else:
                    out.append(self._store(item))
            return SimpleNamespace(data=out, count=None)

        if self.op == "delete":
            removed = self._matching()
            self.db.tables[self.name] = [r for r in self.db.rows(self.name) if r not in removed]
            return SimpleNamespace(data=[dict(r) for r in removed], count=None)
        raise AssertionError(f"unsupported op {self.op}")


class FakeAdminAuth:
    def __init__(self, auth: "FakeAuth"):
        self.auth = auth
        self.deleted: List[str] = []
        self.updated: List[tuple] = []

    def list_users(self):
        return list(self.auth.users.values())

    def create_user(self, attrs):
        if self.auth.fail_create:
            raise Exception(self.auth.fail_create)
        user = SimpleNamespace(
            id=str(uuid.uuid4()), email=attrs["email"], user_metadata=attrs.get("user_metadata") or {},
            app_metadata={}, created_at="2026-01-01T00:00:00+00:00", updated_at=None,
            email_confirmed_at=None, last_sign_in_at=None, banned_until=None
        )
        self.auth.users[user.id] = user
        self.auth.passwords[attrs["email"]] = attrs["password"]
        return SimpleNamespace(user=user)

    def delete_user(self, user_id):
        self.deleted.append(user_id)
        self.auth.users.pop(user_id, None)

    def update_user_by_id(self, user_id, attrs):
        self.updated.append((user_id, attrs))

    def sign_out(self, token):
        return None


class FakeAuth:
    def __init__(self):
        self.users: Dict[str, SimpleNamespace] = {}
        self.tokens: Dict[str, str] = {}
        self.passwords: Dict[str, str] = {}
        self.fail_create: Optional[str] = None
        self.admin = FakeAdminAuth(self)

    def add_user(self, user_id: str, email: str, token: str):
        self.users[user_id] = SimpleNamespace(
            id=user_id, email=email, user_metadata={}, app_metadata={},
            created_at="2026-01-01T00:00:00+00:00", updated_at=None,
            email_confirmed_at=None, last_sign_in_at=None, banned_until=None
        )
        self.tokens[token] = user_id

    def get_user(self, jwt=None):
        user_id = self.tokens.get(jwt)
        if not user_id:
            raise Exception("invalid JWT")
        return SimpleNamespace(user=self.users[user_id])

    def sign_in_with_password(self, credentials):
        user = next((u for u in self.users.values() if u.email == credentials["email"]), None)
        if user is None or self.passwords.get(user.email) != credentials["password"]:
            raise Exception("Invalid login credentials")
        return self._session_for(user)

    def refresh_session(self, refresh_token):
        user_id = refresh_token.removeprefix("refresh-")
        if user_id not in self.users:
            raise Exception("Invalid Refresh Token")
        return self._session_for(self.users[user_id], rotated=True)

    def _session_for(self, user, rotated=False):
        prefix = "rotated" if rotated else "session"
        session = SimpleNamespace(
            access_token=f"{prefix}-{user.id}", refresh_token=f"refresh-{user.id}", expires_at=1
        )
        self.tokens[session.access_token] = user.id
        return SimpleNamespace(user=user, session=session)


class FakeSupabase:
    def __init__(self):
        self.tables: Dict[str, List[Dict[str, Any]]] = {}
        self.failures: Dict[tuple, Any] = {}
        self.calls: List[tuple] = []
        self.auth = FakeAuth()

    def rows(self, name: str) -> List[Dict[str, Any]]:
        return self.tables.setdefault(name, [])

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)

    def seed(self, name: str, *rows: Dict[str, Any]) -> None:
        for row in rows:
            stored = dict(row)
            stored.setdefault("id", str(uuid.uuid4()))
            self.rows(name).append(stored)

    def fail(self, name: str, op: str, message: Any = "simulated failure") -> None:
        self.failures[(name, op)] = message


@pytest.fixture(autouse=True)
def _reset_process_state():
    rate_limit.reset()
    clear_auth_cache()
    reset_column_cache()
    clear_token_cache()
    yield
    app.dependency_overrides.clear()


@pytest.fixture
def fake_db():
    return FakeSupabase()


@pytest.fixture
def client(fake_db):
    app.dependency_overrides[get_service_supabase] = lambda: fake_db
    app.dependency_overrides[get_session_client_factory] = lambda: (lambda: fake_db)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def login(fake_db):
    """Register a user with a profile role and return the Authorization header."""
    def _login(role: str = "customer", user_id: Optional[str] = None, **profile) -> Dict[str, str]:
        user_id = user_id or f"user-{role}"
        token = f"token-{user_id}"
        fake_db.auth.add_user(user_id, f"{user_id}@example.com", token)
        fake_db.seed("profiles", {"id": user_id, "email": f"{user_id}@example.com", "role": role, **profile})
        return {"Authorization": f"Bearer {token}"}
    return _login
