"""
PostgreSQL persistence layer for Entitlements Service.
"""

import json
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence

import asyncpg
from asyncpg import exceptions as pg_errors

from shared.logging import get_logger
from shared.errors import BackendError, BackendUnavailable
from ..catalog.models import Module
from ..entitlements.models import (
    ACTIVE_EQUIVALENT_STATUSES, BillingModel, Entitlement, EntitlementStatus
)
from ..orgs.models import MemberRole, Membership, Organization
from .base import EntitlementSession, EntitlementStore

ENTITLEMENT_COLUMNS = (
    "org_id, module_key, enabled, billing_model, status, starts_at, ends_at, "
    "source, notes, updated_by, updated_at"
)

SCHEMA_STATEMENTS = [
    """
    CREATE TABLE IF NOT EXISTS organizations (
        id UUID PRIMARY KEY,
        name TEXT NOT NULL,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS organization_members (
        user_id TEXT NOT NULL,
        org_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
        role TEXT NOT NULL DEFAULT 'staff',
        is_active BOOLEAN NOT NULL DEFAULT TRUE,
        banned_until TIMESTAMPTZ,
        inserted_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        PRIMARY KEY (user_id, org_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS platform_admins (
        user_id TEXT PRIMARY KEY,
        is_active BOOLEAN NOT NULL DEFAULT TRUE,
        inserted_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS module_catalog (
        module_key TEXT PRIMARY KEY,
        module_name TEXT NOT NULL,
        description TEXT,
        dependency_keys TEXT[] NOT NULL DEFAULT '{}',
        is_core BOOLEAN NOT NULL DEFAULT FALSE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS organization_module_entitlements (
        org_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
        module_key TEXT NOT NULL REFERENCES module_catalog(module_key) ON DELETE CASCADE,
        enabled BOOLEAN NOT NULL DEFAULT FALSE,
        billing_model TEXT NOT NULL DEFAULT 'manual',
        status TEXT NOT NULL DEFAULT 'active',
        starts_at TIMESTAMPTZ,
        ends_at TIMESTAMPTZ,
        source TEXT NOT NULL DEFAULT 'platform-admin',
        notes TEXT,
        updated_by TEXT,
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        PRIMARY KEY (org_id, module_key)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS platform_audit_log (
        id BIGINT GENERATED ALWAYS AS IDENTITY PRIMARY KEY,
        actor TEXT,
        action TEXT NOT NULL,
        target TEXT NOT NULL,
        metadata JSONB NOT NULL DEFAULT '{}',
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_org_members_user ON organization_members(user_id, inserted_at)",
    "CREATE INDEX IF NOT EXISTS idx_org_module_entitlements_org ON organization_module_entitlements(org_id)",
]


class PostgresEntitlementStore(EntitlementStore):
    """asyncpg-backed implementation of the entitlement store."""

    def __init__(self, dsn: str, min_size: int = 2, max_size: int = 10):
        self.dsn = dsn
        self.min_size = min_size
        self.max_size = max_size
        self.logger = get_logger("entitlements.persistence.postgres")
        self.pool: Optional[asyncpg.Pool] = None

    async def start(self):
        """Start the persistence layer."""
        try:
            self.pool = await asyncpg.create_pool(
                self.dsn,
                min_size=self.min_size,
                max_size=self.max_size,
                command_timeout=30
            )
            self.logger.info("PostgreSQL persistence started")
        except (OSError, asyncpg.PostgresError) as e:
            self.logger.error("Failed to start PostgreSQL persistence", error=str(e))
            raise BackendError(f"Failed to connect to PostgreSQL: {e}", code="POSTGRES_START_FAILED")

    async def stop(self):
        """Stop the persistence layer."""
        if self.pool:
            await self.pool.close()
            self.pool = None
            self.logger.info("PostgreSQL persistence stopped")

    async def create_schema(self):
        """Create the relations this service reads and writes."""
        async with self._connection("create_schema") as conn:
            for statement in SCHEMA_STATEMENTS:
                await conn.execute(statement)
        self.logger.info("PostgreSQL schema ensured")

    @asynccontextmanager
    async def _connection(self, operation: str) -> AsyncIterator[asyncpg.Connection]:
        """Acquire a pooled connection and translate driver errors."""
        if self.pool is None:
            raise BackendUnavailable("PostgreSQL persistence is not started")
        try:
            async with self.pool.acquire() as conn:
                yield conn
        except (pg_errors.UndefinedTableError, pg_errors.UndefinedFunctionError) as e:
            self.logger.error("Required relation missing", operation=operation, error=str(e))
            raise BackendUnavailable(
                "Module entitlement tables are not available. Run migrations first.",
                details={"operation": operation}
            )
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as e:
            self.logger.error("PostgreSQL query failed", operation=operation, error=str(e))
            raise BackendError(str(e), details={"operation": operation})

    async def load_module_catalog(self) -> List[Module]:
        async with self._connection("load_module_catalog") as conn:
            rows = await conn.fetch("""
                SELECT module_key, module_name, description, dependency_keys, is_core
                FROM module_catalog
                ORDER BY module_key
            """)
        return [
            Module(
                key=row["module_key"],
                name=row["module_name"],
                description=row["description"],
                dependency_keys=frozenset(k for k in (row["dependency_keys"] or []) if k),
                is_core=row["is_core"]
            )
            for row in rows
        ]

    async def get_organization(self, org_id: str) -> Optional[Organization]:
        async with self._connection("get_organization") as conn:
            return await self._get_organization(conn, org_id)

    async def get_membership(self, user_id: str, org_id: str) -> Optional[Membership]:
        async with self._connection("get_membership") as conn:
            row = await conn.fetchrow("""
                SELECT user_id, org_id::text AS org_id, role, is_active, banned_until, inserted_at
                FROM organization_members
                WHERE user_id = $1 AND org_id = $2::uuid
                LIMIT 1
            """, user_id, org_id)
        return self._row_to_membership(row) if row else None

    async def list_memberships(self, user_id: str, limit: int) -> List[Membership]:
        async with self._connection("list_memberships") as conn:
            rows = await conn.fetch("""
                SELECT user_id, org_id::text AS org_id, role, is_active, banned_until, inserted_at
                FROM organization_members
                WHERE user_id = $1
                ORDER BY inserted_at ASC
                LIMIT $2
            """, user_id, limit)
        return [self._row_to_membership(row) for row in rows]

    async def is_platform_admin(self, user_id: str) -> bool:
        async with self._connection("is_platform_admin") as conn:
            value = await conn.fetchval("""
                SELECT EXISTS (
                    SELECT 1 FROM platform_admins WHERE user_id = $1 AND is_active = TRUE
                )
            """, user_id)
        return bool(value)

    async def get_entitlement(self, org_id: str, module_key: str) -> Optional[Entitlement]:
        async with self._connection("get_entitlement") as conn:
            return await self._get_entitlement(conn, org_id, module_key)

    async def get_entitlements(self, org_id: str,
                               module_keys: Optional[Sequence[str]] = None) -> List[Entitlement]:
        async with self._connection("get_entitlements") as conn:
            return await self._get_entitlements(conn, org_id, module_keys)

    async def has_module_access(self, org_id: str, module_keys: Sequence[str], at: datetime) -> bool:
        keys = sorted(set(module_keys))
        if not keys:
            return False
        async with self._connection("has_module_access") as conn:
            satisfied = await conn.fetchval("""
                SELECT COUNT(DISTINCT module_key)
                FROM organization_module_entitlements
                WHERE org_id = $1::uuid
                  AND module_key = ANY($2::text[])
                  AND enabled = TRUE
                  AND status = ANY($3::text[])
                  AND (starts_at IS NULL OR starts_at <= $4)
                  AND (ends_at IS NULL OR ends_at > $4)
            """, org_id, keys, [s.value for s in ACTIVE_EQUIVALENT_STATUSES], at)
        return satisfied == len(keys)

    async def upsert_entitlement(self, entitlement: Entitlement) -> Entitlement:
        async with self._connection("upsert_entitlement") as conn:
            return await self._upsert_entitlement(conn, entitlement)

    @asynccontextmanager
    async def org_lock(self, org_id: str) -> AsyncIterator["PostgresOrgSession"]:
        # Transaction-scoped advisory lock; released on commit or rollback.
        async with self._connection("org_lock") as conn:
            async with conn.transaction():
                await conn.execute("SELECT pg_advisory_xact_lock(hashtext($1))", org_id)
                yield PostgresOrgSession(self, conn)

    async def _get_organization(self, conn: asyncpg.Connection, org_id: str) -> Optional[Organization]:
        row = await conn.fetchrow(
            "SELECT id::text AS id, name FROM organizations WHERE id = $1::uuid", org_id
        )
        return Organization(id=row["id"], name=row["name"]) if row else None

    async def _get_entitlement(self, conn: asyncpg.Connection, org_id: str,
                               module_key: str) -> Optional[Entitlement]:
        row = await conn.fetchrow(f"""
            SELECT {ENTITLEMENT_COLUMNS}
            FROM organization_module_entitlements
            WHERE org_id = $1::uuid AND module_key = $2
        """, org_id, module_key)
        return self._row_to_entitlement(row) if row else None

    async def _get_entitlements(self, conn: asyncpg.Connection, org_id: str,
                                module_keys: Optional[Sequence[str]]) -> List[Entitlement]:
        if module_keys is None:
            rows = await conn.fetch(f"""
                SELECT {ENTITLEMENT_COLUMNS}
                FROM organization_module_entitlements
                WHERE org_id = $1::uuid
                ORDER BY module_key
            """, org_id)
        else:
            rows = await conn.fetch(f"""
                SELECT {ENTITLEMENT_COLUMNS}
                FROM organization_module_entitlements
                WHERE org_id = $1::uuid AND module_key = ANY($2::text[])
                ORDER BY module_key
            """, org_id, list(module_keys))
        return [self._row_to_entitlement(row) for row in rows]

    async def _upsert_entitlement(self, conn: asyncpg.Connection, entitlement: Entitlement) -> Entitlement:
        row = await conn.fetchrow(f"""
            INSERT INTO organization_module_entitlements (
                org_id, module_key, enabled, billing_model, status,
                starts_at, ends_at, source, notes, updated_by, updated_at
            ) VALUES ($1::uuid, $2, $3, $4, $5, $6, $7, $8, $9, $10, NOW())
            ON CONFLICT (org_id, module_key) DO UPDATE SET
                enabled = EXCLUDED.enabled,
                billing_model = EXCLUDED.billing_model,
                status = EXCLUDED.status,
                starts_at = EXCLUDED.starts_at,
                ends_at = EXCLUDED.ends_at,
                source = EXCLUDED.source,
                notes = EXCLUDED.notes,
                updated_by = EXCLUDED.updated_by,
                updated_at = NOW()
            RETURNING {ENTITLEMENT_COLUMNS}
        """,
            entitlement.org_id, entitlement.module_key, entitlement.enabled,
            entitlement.billing_model.value, entitlement.status.value,
            entitlement.starts_at, entitlement.ends_at, entitlement.source,
            entitlement.notes, entitlement.updated_by
        )
        self.logger.info(
            "Entitlement saved",
            org_id=entitlement.org_id,
            module_key=entitlement.module_key,
            enabled=entitlement.enabled
        )
        return self._row_to_entitlement(row)

    async def record_audit(self, actor: Optional[str], action: str, target: str,
                           metadata: Dict[str, Any]) -> None:
        async with self._connection("record_audit") as conn:
            await conn.execute("""
                INSERT INTO platform_audit_log (actor, action, target, metadata)
                VALUES ($1, $2, $3, $4::jsonb)
            """, actor, action, target, json.dumps(metadata, default=str))

    async def health_check(self) -> bool:
        """Check database health."""
        if self.pool is None:
            return False
        try:
            async with self.pool.acquire() as conn:
                await conn.fetchval("SELECT 1")
                return True
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError):
            return False

    def _row_to_membership(self, row) -> Membership:
        return Membership(
            user_id=row["user_id"],
            org_id=row["org_id"],
            role=MemberRole.parse(row["role"]),
            is_active=bool(row["is_active"]),
            banned_until=row["banned_until"],
            inserted_at=row["inserted_at"]
        )

    def _row_to_entitlement(self, row) -> Entitlement:
        return Entitlement(
            org_id=str(row["org_id"]),
            module_key=row["module_key"],
            enabled=row["enabled"],
            billing_model=BillingModel(row["billing_model"]),
            status=EntitlementStatus(row["status"]),
            starts_at=row["starts_at"],
            ends_at=row["ends_at"],
            source=row["source"],
            notes=row["notes"],
            updated_by=row["updated_by"],
            updated_at=row["updated_at"]
        )


class PostgresOrgSession(EntitlementSession):
    """Store calls bound to the connection holding an org lock."""

    def __init__(self, store: PostgresEntitlementStore, conn: asyncpg.Connection):
        self.store = store
        self.conn = conn

    async def get_organization(self, org_id: str) -> Optional[Organization]:
        return await self.store._get_organization(self.conn, org_id)

    async def get_entitlement(self, org_id: str, module_key: str) -> Optional[Entitlement]:
        return await self.store._get_entitlement(self.conn, org_id, module_key)

    async def get_entitlements(self, org_id: str,
                               module_keys: Optional[Sequence[str]] = None) -> List[Entitlement]:
        return await self.store._get_entitlements(self.conn, org_id, module_keys)

    async def upsert_entitlement(self, entitlement: Entitlement) -> Entitlement:
        return await self.store._upsert_entitlement(self.conn, entitlement)
