"""
Pytest configuration: in-memory Supabase fake and logbook fixtures
"""

import copy
import functools
import uuid
from datetime import datetime
from types import SimpleNamespace
from typing import Any, Callable, Dict, List, Optional
from unittest.mock import MagicMock

import httpx
import pytest
from cryptography.fernet import Fernet

from supplement_tracker.core.encryption import FieldCipher
from supplement_tracker.modules.certifications.authorities import CertificationAuthority
from supplement_tracker.modules.certifications.cache import MemoryCertificationCache
from supplement_tracker.modules.certifications.schemas import AuthorityResult, CertificationType
from supplement_tracker.modules.certifications.service import CertificationService
from supplement_tracker.modules.compliance.service import ComplianceService
from supplement_tracker.modules.logbook.service import APPEND_AUDIT_RPC, TABLE, SecureLogbookService
from supplement_tracker.modules.roles.service import PermissionResolver


def _coerce(value: Any) -> Any:
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            return value
    return value


class FakeQuery:
    """Subset of the postgrest query builder used by the services."""

    def __init__(self, db: "FakeSupabase", table: str):
        self.db = db
        self.table_name = table
        self.operation = "select"
        self.payload: Any = None
        self.on_conflict: Optional[str] = None
        self.filters: List[Callable[[Dict[str, Any]], bool]] = []
        self.order_by: Optional[tuple] = None
        self.limit_count: Optional[int] = None
        self.range_bounds: Optional[tuple] = None

    def select(self, columns: str = "*"):
        self.operation = "select"
        return self

    def insert(self, data):
        self.operation = "insert"
        self.payload = data
        return self

    def update(self, data):
        self.operation = "update"
        self.payload = data
        return self

    def upsert(self, data, on_conflict: Optional[str] = None):
        self.operation = "upsert"
        self.payload = data
        self.on_conflict = on_conflict
        return self

    def delete(self):
        self.operation = "delete"
        return self

    def eq(self, column, value):
        self.filters.append(lambda row: row.get(column) == value)
        return self

    def in_(self, column, values):
        self.filters.append(lambda row: row.get(column) in values)
        return self

    def is_(self, column, value):
        if value == "null":
            self.filters.append(lambda row: row.get(column) is None)
        else:
            self.filters.append(lambda row: row.get(column) is not None)
        return self

    def gte(self, column, value):
        self.filters.append(lambda row: row.get(column) is not None and _coerce(row[column]) >= _coerce(value))
        return self

    def lte(self, column, value):
        self.filters.append(lambda row: row.get(column) is not None and _coerce(row[column]) <= _coerce(value))
        return self

    def order(self, column, desc: bool = False):
        self.order_by = (column, desc)
        return self

    def limit(self, count: int):
        self.limit_count = count
        return self

    def range(self, start: int, end: int):
        self.range_bounds = (start, end)
        return self

    def _matching(self) -> List[Dict[str, Any]]:
        rows = self.db.tables.setdefault(self.table_name, [])
        return [row for row in rows if all(f(row) for f in self.filters)]

    def execute(self):
        self.db.calls.append((self.table_name, self.operation))
        failure = self.db.failures.get((self.table_name, self.operation)) or self.db.failures.get((self.table_name, "*"))
        if failure is not None:
            raise failure

        rows = self.db.tables.setdefault(self.table_name, [])
        if self.operation == "insert":
            items = self.payload if isinstance(self.payload, list) else [self.payload]
            inserted = []
            for item in items:
                row = copy.deepcopy(item)
                row.setdefault("id", str(uuid.uuid4()))
                rows.append(row)
                inserted.append(copy.deepcopy(row))
            return SimpleNamespace(data=inserted)

        if self.operation == "upsert":
            items = self.payload if isinstance(self.payload, list) else [self.payload]
            key = self.on_conflict or "id"
            result = []
            for item in items:
                existing = next((row for row in rows if row.get(key) == item.get(key)), None)
                if existing is None:
                    existing = copy.deepcopy(item)
                    rows.append(existing)
                else:
                    existing.update(copy.deepcopy(item))
                result.append(copy.deepcopy(existing))
            return SimpleNamespace(data=result)

        matching = self._matching()
        if self.operation == "update":
            for row in matching:
                row.update(copy.deepcopy(self.payload))
            return SimpleNamespace(data=copy.deepcopy(matching))

        if self.operation == "delete":
            self.db.tables[self.table_name] = [row for row in rows if row not in matching]
            return SimpleNamespace(data=copy.deepcopy(matching))

        if self.order_by:
            column, desc = self.order_by
            matching = sorted(matching, key=lambda row: _coerce(row.get(column)) or "", reverse=desc)
        if self.range_bounds:
            start, end = self.range_bounds
            matching = matching[start:end + 1]
        if self.limit_count is not None:
            matching = matching[:self.limit_count]
        return SimpleNamespace(data=copy.deepcopy(matching))


class FakeRpc:
    def __init__(self, db: "FakeSupabase", name: str, params: Dict[str, Any]):
        self.db = db
        self.name = name
        self.params = params

    def execute(self):
        self.db.calls.append((self.name, "rpc"))
        self.db.rpc_calls.append((self.name, copy.deepcopy(self.params)))
        failure = self.db.failures.get((self.name, "rpc"))
        if failure is not None:
            raise failure
        handler = self.db.rpc_handlers.get(self.name)
        return SimpleNamespace(data=handler(self.params) if handler else [])


class FakeAuth:
    def __init__(self):
        self.users: Dict[str, SimpleNamespace] = {}
        self.get_user_calls = 0

    def add_token(self, token: str, user_id: str, email: str):
        self.users[token] = SimpleNamespace(id=user_id, email=email, user_metadata={})

    def get_user(self, jwt: str):
        self.get_user_calls += 1
        user = self.users.get(jwt)
        if user is None:
            raise Exception("invalid JWT")
        return SimpleNamespace(user=user)


class FakeSupabase:
    def __init__(self):
        self.tables: Dict[str, List[Dict[str, Any]]] = {}
        self.failures: Dict[tuple, Exception] = {}
        self.rpc_handlers: Dict[str, Callable[[Dict[str, Any]], List[Dict[str, Any]]]] = {}
        self.calls: List[tuple] = []
        self.rpc_calls: List[tuple] = []
        self.auth = FakeAuth()

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)

    def rpc(self, name: str, params: Dict[str, Any]) -> FakeRpc:
        return FakeRpc(self, name, params)


class StubAuthority(CertificationAuthority):
    def __init__(
        self,
        name: str,
        certification_type: CertificationType,
        result: Optional[AuthorityResult] = None,
        error: Optional[Exception] = None,
    ):
        self.name = name
        self.issuer = f"{name} issuer"
        self.certification_type = certification_type
        self.result = result
        self.error = error
        self.calls: List[str] = []

    async def check(self, barcode: str, client: httpx.AsyncClient) -> AuthorityResult:
        self.calls.append(barcode)
        if self.error is not None:
            raise self.error
        return self.result or AuthorityResult(verified=False)


ATHLETE_ID = "athlete-a"
OTHER_ATHLETE_ID = "athlete-b"
COACH_ID = "coach-1"
ADMIN_ID = "admin-1"


def user(user_id: str) -> Dict[str, Any]:
    return {"id": user_id, "email": f"{user_id}@example.com"}


def append_logbook_audit(db: FakeSupabase, params: Dict[str, Any]) -> List[Dict[str, Any]]:
    """In-memory append_secure_logbook_audit: partial update plus trail append."""
    for row in db.tables.get(TABLE, []):
        if row.get("id") != params["p_entry_id"] or row.get("deleted_at") is not None:
            continue
        row.update(copy.deepcopy(params["p_changes"]))
        metadata = row.setdefault("security_metadata", {})
        metadata["audit_trail"] = [*(metadata.get("audit_trail") or []), copy.deepcopy(params["p_audit"])]
        metadata["encryption_version"] = params["p_encryption_version"]
        if params.get("p_ip_address"):
            metadata["last_modified_by_ip"] = params["p_ip_address"]
        return [copy.deepcopy(row)]
    return []


@pytest.fixture
def supabase() -> FakeSupabase:
    db = FakeSupabase()
    db.tables["user_roles"] = [
        {"user_id": COACH_ID, "role": "coach"},
        {"user_id": ADMIN_ID, "role": "admin"},
    ]
    db.tables["coach_athlete_relationships"] = [
        {"id": "rel-1", "coach_id": COACH_ID, "athlete_id": ATHLETE_ID},
    ]
    db.rpc_handlers[APPEND_AUDIT_RPC] = functools.partial(append_logbook_audit, db)
    return db


@pytest.fixture
def cipher() -> FieldCipher:
    return FieldCipher(Fernet.generate_key())


@pytest.fixture
def resolver(supabase) -> PermissionResolver:
    return PermissionResolver(supabase)


@pytest.fixture
def nsf() -> StubAuthority:
    return StubAuthority("NSF Certified for Sport", CertificationType.NSF)


@pytest.fixture
def informed_sport() -> StubAuthority:
    return StubAuthority("Informed Sport", CertificationType.INFORMED_SPORT)


@pytest.fixture
def cache() -> MemoryCertificationCache:
    return MemoryCertificationCache()


@pytest.fixture
def certification_service(supabase, cache, nsf, informed_sport) -> CertificationService:
    return CertificationService(
        supabase,
        cache=cache,
        authorities=[nsf, informed_sport],
        ttl_hours=24,
        timeout_seconds=1.0,
        http_client=MagicMock(spec=httpx.AsyncClient),
    )


@pytest.fixture
def logbook(supabase, resolver, certification_service, cipher) -> SecureLogbookService:
    return SecureLogbookService(supabase, resolver, certification_service, cipher)


@pytest.fixture
def compliance(logbook) -> ComplianceService:
    return ComplianceService(logbook, window_days=30)
