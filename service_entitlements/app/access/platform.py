"""
Platform operator lookup.
"""

from typing import TYPE_CHECKING

from shared.errors import AuthorizationError, BackendError, PlatformCatalogUnavailable
from shared.logging import get_logger

if TYPE_CHECKING:
    from ..persistence.base import EntitlementStore


class PlatformAdminCheck:
    """Answers whether a user holds global platform-operator authority.

    A failed lookup raises PlatformCatalogUnavailable instead of reporting
    "not an admin".
    """

    def __init__(self, store: "EntitlementStore"):
        self.store = store
        self.logger = get_logger("entitlements.access.platform")

    async def is_platform_admin(self, user_id: str) -> bool:
        try:
            return await self.store.is_platform_admin(user_id)
        except BackendError as e:
            self.logger.error("Platform admin lookup failed", user_id=user_id, error=e.message)
            raise PlatformCatalogUnavailable(
                details={"operation": "is_platform_admin", "cause": e.message}
            )

    async def require_platform_admin(self, user_id: str) -> None:
        if not await self.is_platform_admin(user_id):
            self.logger.warning("Platform admin required", user_id=user_id)
            raise AuthorizationError("Platform admin access required")
