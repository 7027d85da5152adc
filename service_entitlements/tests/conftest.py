"""
Shared fixtures and in-memory fakes for Entitlements service tests.
"""

import asyncio
from collections import Counter
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple

import jwt
import pytest

from shared.config import get_config
from shared.errors import AuthenticationError
from service_entitlements.app.auth.client import AuthClient
from service_entitlements.app.cache.decision_cache import InMemoryDecisionCache
from service_entitlements.app.catalog.models import Module
from service_entitlements.app.catalog.registry import ModuleCatalog
from service_entitlements.app.catalog.seed import DEFAULT_MODULES
from service_entitlements.app.entitlements.models import Entitlement, utcnow
from service_entitlements.app.orgs.models import MemberRole, Membership, Organization
from service_entitlements.app.persistence.base import EntitlementStore

ORG_A = "6f1c2a3e-4b5d-4e6f-8a7b-9c0d1e2f3a4b"
ORG_B = "0a1b2c3d-4e5f-4a6b-9c7d-8e9f0a1b2c3d"
ORG_UNKNOWN = "11111111-2222-4333-8444-555555555555"

MEMBER = "user-member"
ADMIN = "user-platform-admin"
OUTSIDER = "user-outsider"


class FakeClock:
    """Monotonic clock the tests can move forward."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeEntitlementStore(EntitlementStore):
    """In-memory entitlement store that counts calls per operation."""

    def __init__(self, modules: Optional[Sequence[Module]] = None):
        self.modules: List[Module] = list(modules or [])
        self.organizations: Dict[str, Organization] = {}
        self.memberships: Dict[Tuple[str, str], Membership] = {}
        self.platform_admins: Set[str] = set()
        self.entitlements: Dict[Tuple[str, str], Entitlement] = {}
        self.audit_log: List[Dict[str, Any]] = []
        self.calls: Counter = Counter()
        self.fail_on: Dict[str, Exception] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._inserted = datetime(2024, 1, 1, tzinfo=timezone.utc)

    # Test setup helpers

    def add_org(self, org_id: str, name: str = "Acme Furniture") -> None:
        self.organizations[org_id] = Organization(id=org_id, name=name)

    def add_member(self, user_id: str, org_id: str, role: str = "staff",
                   is_active: bool = True, banned_until: Optional[datetime] = None) -> None:
        self._inserted += timedelta(minutes=1)
        self.memberships[(user_id, org_id)] = Membership(
            user_id=user_id,
            org_id=org_id,
            role=MemberRole.parse(role),
            is_active=is_active,
            banned_until=banned_until,
            inserted_at=self._inserted
        )

    def add_platform_admin(self, user_id: str) -> None:
        self.platform_admins.add(user_id)

    def set_entitlement(self, org_id: str, module_key: str, **fields: Any) -> Entitlement:
        entitlement = Entitlement(org_id=org_id, module_key=module_key, **fields)
        self.entitlements[(org_id, module_key)] = entitlement
        return entitlement

    def _enter(self, operation: str) -> None:
        self.calls[operation] += 1
        if operation in self.fail_on:
            raise self.fail_on[operation]

    # EntitlementStore

    async def load_module_catalog(self) -> List[Module]:
        self._enter("load_module_catalog")
        return list(self.modules)

    async def get_organization(self, org_id: str) -> Optional[Organization]:
        self._enter("get_organization")
        return self.organizations.get(org_id)

    async def get_membership(self, user_id: str, org_id: str) -> Optional[Membership]:
        self._enter("get_membership")
        return self.memberships.get((user_id, org_id))

    async def list_memberships(self, user_id: str, limit: int) -> List[Membership]:
        self._enter("list_memberships")
        rows = [m for (uid, _), m in self.memberships.items() if uid == user_id]
        rows.sort(key=lambda m: m.inserted_at)
        return rows[:limit]

    async def is_platform_admin(self, user_id: str) -> bool:
        self._enter("is_platform_admin")
        return user_id in self.platform_admins

    async def get_entitlement(self, org_id: str, module_key: str) -> Optional[Entitlement]:
        self._enter("get_entitlement")
        return self.entitlements.get((org_id, module_key))

    async def get_entitlements(self, org_id: str,
                               module_keys: Optional[Sequence[str]] = None) -> List[Entitlement]:
        self._enter("get_entitlements")
        # Yield so concurrent writers can interleave here.
        await asyncio.sleep(0)
        rows = [
            e for (oid, key), e in self.entitlements.items()
            if oid == org_id and (module_keys is None or key in module_keys)
        ]
        return sorted(rows, key=lambda e: e.module_key)

    async def has_module_access(self, org_id: str, module_keys: Sequence[str], at: datetime) -> bool:
        self._enter("has_module_access")
        keys = set(module_keys)
        if not keys:
            return False
        return all(
            (org_id, key) in self.entitlements and self.entitlements[(org_id, key)].is_satisfied(at)
            for key in keys
        )

    async def upsert_entitlement(self, entitlement: Entitlement) -> Entitlement:
        self._enter("upsert_entitlement")
        await asyncio.sleep(0)
        saved = entitlement.with_changes(updated_at=utcnow())
        self.entitlements[(saved.org_id, saved.module_key)] = saved
        return saved

    @asynccontextmanager
    async def org_lock(self, org_id: str):
        self._enter("org_lock")
        lock = self._locks.setdefault(org_id, asyncio.Lock())
        async with lock:
            yield self

    async def record_audit(self, actor: Optional[str], action: str, target: str,
                           metadata: Dict[str, Any]) -> None:
        self._enter("record_audit")
        self.audit_log.append({"actor": actor, "action": action, "target": target, "metadata": metadata})


class FakeAuthClient(AuthClient):
    """Verifies locally signed HS256 tokens instead of calling the Auth Service."""

    def __init__(self, secret: str = "test-secret", audience: str = "access-layer"):
        super().__init__("http://auth.test")
        self.secret = secret
        self.audience = audience
        self.healthy = True

    def issue_token(self, user_id: str, org_id: Optional[str] = None,
                    app_metadata: Optional[Dict[str, Any]] = None,
                    expires_in: int = 3600) -> str:
        now = datetime.now(timezone.utc)
        payload: Dict[str, Any] = {
            "sub": user_id,
            "aud": self.audience,
            "iat": int(now.timestamp()),
            "exp": int((now + timedelta(seconds=expires_in)).timestamp()),
            "email": f"{user_id}@example.com",
        }
        if org_id:
            payload["org_id"] = org_id
        if app_metadata:
            payload["app_metadata"] = app_metadata
        return jwt.encode(payload, self.secret, algorithm="HS256")

    async def verify_token(self, token: str) -> Dict[str, Any]:
        try:
            return jwt.decode(token, self.secret, algorithms=["HS256"], audience=self.audience)
        except jwt.InvalidTokenError as e:
            raise AuthenticationError(f"Invalid token: {e}")

    async def health_check(self) -> bool:
        return self.healthy


@pytest.fixture
def catalog():
    """Catalog loaded with the default modules."""
    return ModuleCatalog(DEFAULT_MODULES)


@pytest.fixture
def store():
    """Store with two orgs, a member of ORG_A and a platform admin."""
    fake = FakeEntitlementStore(DEFAULT_MODULES)
    fake.add_org(ORG_A, "Acme Furniture")
    fake.add_org(ORG_B, "Beta Cabinets")
    fake.add_member(MEMBER, ORG_A, role="manager")
    fake.add_platform_admin(ADMIN)
    return fake


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return InMemoryDecisionCache(ttl_seconds=30, max_entries=1500, stripes=4, clock=clock)


@pytest.fixture
def auth_client():
    return FakeAuthClient()


@pytest.fixture
def config():
    return get_config("entitlements", 8011, env="test")
