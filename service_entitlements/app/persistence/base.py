"""
Query interface the Entitlements Service needs from its backing store.

Implementations raise shared.errors.BackendUnavailable when a required
relation or function is missing and shared.errors.BackendError for any
other query failure. They never translate a failure into an empty result.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, AsyncContextManager, Dict, List, Optional, Sequence

from ..catalog.models import Module
from ..entitlements.models import Entitlement
from ..orgs.models import Membership, Organization


class EntitlementSession(ABC):
    """Reads and writes that make up one validate-and-persist sequence.

    Sessions handed out by ``EntitlementStore.org_lock`` run every call on
    the connection that holds the lock.
    """

    @abstractmethod
    async def get_organization(self, org_id: str) -> Optional[Organization]:
        ...

    @abstractmethod
    async def get_entitlement(self, org_id: str, module_key: str) -> Optional[Entitlement]:
        ...

    @abstractmethod
    async def get_entitlements(self, org_id: str,
                               module_keys: Optional[Sequence[str]] = None) -> List[Entitlement]:
        """Rows for an org, optionally restricted to ``module_keys``."""

    @abstractmethod
    async def upsert_entitlement(self, entitlement: Entitlement) -> Entitlement:
        """Insert or update by (org_id, module_key); returns the stored row."""


class EntitlementStore(EntitlementSession):
    """Organizations, memberships, module catalog and entitlement rows."""

    async def start(self) -> None:
        """Open connections."""

    async def stop(self) -> None:
        """Release connections."""

    async def health_check(self) -> bool:
        return True

    # Module catalog

    @abstractmethod
    async def load_module_catalog(self) -> List[Module]:
        """All catalog rows."""

    # Organizations and membership directory

    @abstractmethod
    async def get_membership(self, user_id: str, org_id: str) -> Optional[Membership]:
        ...

    @abstractmethod
    async def list_memberships(self, user_id: str, limit: int) -> List[Membership]:
        """A user's memberships, earliest first, at most ``limit`` rows."""

    @abstractmethod
    async def is_platform_admin(self, user_id: str) -> bool:
        ...

    # Entitlements

    @abstractmethod
    async def has_module_access(self, org_id: str, module_keys: Sequence[str], at: datetime) -> bool:
        """True iff every key in ``module_keys`` is satisfied for the org at ``at``."""

    @abstractmethod
    def org_lock(self, org_id: str) -> AsyncContextManager[EntitlementSession]:
        """Serialize validate-and-persist sequences for one organization.

        Yields a session whose calls share the lock holder's connection, so
        the locked sequence never waits on the pool.
        """

    # Audit

    @abstractmethod
    async def record_audit(self, actor: Optional[str], action: str, target: str,
                           metadata: Dict[str, Any]) -> None:
        ...
