"""
Persistence package for Entitlements Service.

``EntitlementStore`` is the query interface the service depends on;
``PostgresEntitlementStore`` implements it over asyncpg.
"""

from .base import EntitlementSession, EntitlementStore
from .postgres import PostgresEntitlementStore

__all__ = ["EntitlementSession", "EntitlementStore", "PostgresEntitlementStore"]
