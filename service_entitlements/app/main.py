"""
Entitlements service for the Module Access Layer.
"""

from datetime import datetime, timezone
from typing import Dict, Optional

from fastapi import Depends, Path

from shared.base_service import BaseService
from shared.config import ServiceConfig

from .access.dependencies import get_evaluate_options, get_requester
from .access.evaluator import AccessEvaluator
from .access.models import AccessDecisionResponse, EvaluateOptions, Requester
from .access.platform import PlatformAdminCheck
from .audit import AuditSink
from .auth.client import AuthClient
from .cache.decision_cache import DecisionCache, InMemoryDecisionCache
from .cache.redis_cache import RedisDecisionCache
from .catalog.registry import ModuleCatalog
from .catalog.seed import DEFAULT_MODULES
from .entitlements.dependencies import DependencyEnforcer
from .entitlements.models import (
    EntitlementResponse, EntitlementUpdateRequest, EntitlementUpdateResponse, OrgModuleListResponse
)
from .entitlements.service import EntitlementService
from .orgs.context import OrgContextResolver
from .persistence.base import EntitlementStore
from .persistence.postgres import PostgresEntitlementStore


class EntitlementsService(BaseService):
    """Entitlements service implementation."""

    def __init__(self, config: Optional[ServiceConfig] = None,
                 store: Optional[EntitlementStore] = None,
                 cache: Optional[DecisionCache] = None,
                 auth_client: Optional[AuthClient] = None,
                 catalog: Optional[ModuleCatalog] = None):
        super().__init__("entitlements", 8011, config)

        # Initialize components
        self.store = store if store is not None else PostgresEntitlementStore(
            self.config.postgres_dsn,
            min_size=self.config.postgres_pool_min_size,
            max_size=self.config.postgres_pool_max_size
        )
        self.cache = cache if cache is not None else self._build_cache()
        self.auth_client = auth_client if auth_client is not None else AuthClient(self.config.auth_service_url)
        self.catalog = catalog if catalog is not None else ModuleCatalog()

        self.platform = PlatformAdminCheck(self.store)
        self.resolver = OrgContextResolver(self.store, fallback_limit=self.config.membership_fallback_limit)
        self.evaluator = AccessEvaluator(
            self.catalog, self.store, self.cache,
            resolver=self.resolver,
            platform=self.platform,
            metrics=self.metrics
        )
        self.audit = AuditSink(self.store)
        self.entitlements = EntitlementService(
            self.catalog, self.store, self.cache, self.audit,
            enforcer=DependencyEnforcer(self.catalog, self.store),
            metrics=self.metrics
        )

        self.app.state.entitlements = self
        self._setup_entitlements_routes()

    def _build_cache(self) -> DecisionCache:
        if self.config.module_access_cache_backend == "redis":
            return RedisDecisionCache(
                self.config.redis_url,
                ttl_seconds=self.config.module_access_cache_ttl_seconds
            )
        return InMemoryDecisionCache(
            ttl_seconds=self.config.module_access_cache_ttl_seconds,
            max_entries=self.config.module_access_cache_max_entries,
            stripes=self.config.module_access_cache_stripes
        )

    def _setup_entitlements_routes(self):
        """Set up entitlements-specific routes."""

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": "entitlements",
                "message": "Module Access Layer - Entitlements Service",
                "version": "1.0.0",
                "capabilities": ["module_access", "entitlements", "dependency_enforcement", "caching"]
            }

        @self.app.get("/modules")
        async def list_modules(requester: Requester = Depends(get_requester)):
            """Module catalog."""
            return {"modules": [m.to_dict() for m in self.catalog.modules()]}

        @self.app.get("/orgs/{org_id}/modules", response_model=OrgModuleListResponse)
        async def list_org_modules(
            org_id: str = Path(..., description="Organization id"),
            requester: Requester = Depends(get_requester)
        ):
            """Catalog joined with the org's entitlement rows."""
            await self.platform.require_platform_admin(requester.user_id)
            return await self.entitlements.list_org_entitlements(org_id)

        @self.app.put("/orgs/{org_id}/modules/{module_key}", response_model=EntitlementUpdateResponse)
        async def update_org_module(
            request: EntitlementUpdateRequest,
            org_id: str = Path(..., description="Organization id"),
            module_key: str = Path(..., description="Module key"),
            requester: Requester = Depends(get_requester)
        ):
            """Create or update an org's entitlement to a module."""
            await self.platform.require_platform_admin(requester.user_id)
            saved = await self.entitlements.update_entitlement(
                org_id, module_key, request, actor=requester.user_id
            )
            return EntitlementUpdateResponse(
                success=True,
                entitlement=EntitlementResponse.from_entitlement(saved)
            )

        @self.app.get("/access/{module_key}", response_model=AccessDecisionResponse)
        async def evaluate_access(
            module_key: str = Path(..., description="Module key"),
            options: EvaluateOptions = Depends(get_evaluate_options),
            requester: Requester = Depends(get_requester)
        ):
            """Evaluate module access for the caller."""
            decision = await self.evaluator.evaluate(module_key, requester, options)
            return AccessDecisionResponse.from_decision(decision)

        @self.app.get("/access/{module_key}/require", response_model=AccessDecisionResponse)
        async def require_access(
            module_key: str = Path(..., description="Module key"),
            options: EvaluateOptions = Depends(get_evaluate_options),
            requester: Requester = Depends(get_requester)
        ):
            """Like /access/{module_key} but denials are reported as 403."""
            decision = await self.evaluator.require(module_key, requester, options)
            return AccessDecisionResponse.from_decision(decision)

        @self.app.get("/entitlements/stats")
        async def get_stats(requester: Requester = Depends(get_requester)):
            """Get entitlements service statistics."""
            await self.platform.require_platform_admin(requester.user_id)
            return {
                "catalog": self.catalog.stats(),
                "cache": await self.cache.stats(),
                "timestamp": datetime.now(timezone.utc).isoformat()
            }

        @self.app.delete("/access/cache")
        async def clear_access_cache(requester: Requester = Depends(get_requester)):
            """Drop every cached access decision."""
            await self.platform.require_platform_admin(requester.user_id)
            removed = await self.cache.clear()
            return {"success": True, "removed": removed}

    async def _check_dependencies(self) -> Dict[str, str]:
        """Check entitlements service dependencies."""
        dependencies = {
            "postgres": "ok" if await self.store.health_check() else "error",
            "cache": "ok" if await self.cache.health_check() else "error",
            "auth": "ok" if await self.auth_client.health_check() else "error",
            "catalog": "ok" if self.catalog.is_loaded else "error",
        }
        return dependencies

    async def start(self):
        """Start entitlements service components."""
        await self.store.start()
        await self.cache.start()

        if self.config.auto_migrate and isinstance(self.store, PostgresEntitlementStore):
            await self.store.create_schema()

        if not self.catalog.is_loaded:
            modules = await self.store.load_module_catalog()
            if not modules:
                self.logger.warning("Module catalog is empty, using default modules")
                modules = DEFAULT_MODULES
            self.catalog.load(modules)

        self.logger.info("Entitlements service started", modules=len(self.catalog))

    async def stop(self):
        """Stop entitlements service components."""
        await self.audit.drain()
        await self.cache.stop()
        await self.store.stop()

        self.logger.info("Entitlements service stopped")


def create_app(**components):
    """Create entitlements service application."""
    service = EntitlementsService(**components)
    return service.app


if __name__ == "__main__":
    service = EntitlementsService()
    service.run()
