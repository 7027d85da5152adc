"""
Module access evaluator.

Combines the module catalog, platform-admin check, org context resolver,
entitlement store and decision cache into a single allow/deny decision
with a reason code.
"""

from contextlib import nullcontext
from typing import TYPE_CHECKING, Optional

from shared.errors import ModuleAccessDenied
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from shared.result import Err
from .models import AccessDecision, DecisionReason, EvaluateOptions, Requester
from .platform import PlatformAdminCheck
from ..catalog.registry import ModuleCatalog
from ..cache.decision_cache import DecisionCache
from ..entitlements.models import utcnow
from ..orgs.context import (
    OrgCandidates, OrgContextErrorCode, OrgContextResolver
)

if TYPE_CHECKING:
    from ..persistence.base import EntitlementStore


class AccessEvaluator:
    """Decides whether a requester's organization may use a module."""

    def __init__(self, catalog: ModuleCatalog, store: "EntitlementStore",
                 cache: DecisionCache, resolver: Optional[OrgContextResolver] = None,
                 platform: Optional[PlatformAdminCheck] = None,
                 metrics: Optional[MetricsCollector] = None):
        self.catalog = catalog
        self.store = store
        self.cache = cache
        self.resolver = resolver or OrgContextResolver(store)
        self.platform = platform or PlatformAdminCheck(store)
        self.metrics = metrics
        self.logger = get_logger("entitlements.access.evaluator")

    async def evaluate(self, module_key: str, requester: Requester,
                       options: Optional[EvaluateOptions] = None) -> AccessDecision:
        """Evaluate access to ``module_key`` for ``requester``.

        Raises NotFoundError for an unknown module and
        PlatformCatalogUnavailable when the admin lookup fails. Store
        errors on the entitlement query propagate unchanged.
        """
        timer = (
            self.metrics.time_operation("module_access_evaluation_seconds")
            if self.metrics else nullcontext()
        )
        with timer:
            decision = await self._evaluate(module_key, requester, options or EvaluateOptions())

        if self.metrics:
            self.metrics.increment_counter("module_access_decisions_total", reason=decision.reason.value)
        return decision

    async def require(self, module_key: str, requester: Requester,
                      options: Optional[EvaluateOptions] = None,
                      forbidden_message: Optional[str] = None) -> AccessDecision:
        """Evaluate and raise ModuleAccessDenied (403) unless allowed."""
        decision = await self.evaluate(module_key, requester, options)
        if decision.allowed:
            return decision
        raise ModuleAccessDenied(
            module_key=decision.module_key,
            reason=decision.reason.value,
            org_id=decision.org_id,
            message=forbidden_message
        )

    async def _evaluate(self, module_key: str, requester: Requester,
                        options: EvaluateOptions) -> AccessDecision:
        module = self.catalog.lookup(module_key)
        is_platform_admin = await self.platform.is_platform_admin(requester.user_id)

        resolution = await self.resolver.resolve(
            requester.user_id,
            OrgCandidates(
                preferred=options.preferred_org_id,
                query=options.query_org_id,
                header=options.header_org_id,
                jwt=requester.token_org_id
            )
        )

        org_id: Optional[str] = None
        org_failure: Optional[DecisionReason] = None
        org_segment = "none"
        if isinstance(resolution, Err):
            error = resolution.error
            if error.code == OrgContextErrorCode.MEMBERSHIP_QUERY_FAILED:
                org_failure = DecisionReason.ORG_CONTEXT_UNAVAILABLE
            elif error.code == OrgContextErrorCode.REQUESTED_ORG_NOT_ACTIVE:
                org_failure = DecisionReason.ORG_NOT_MEMBER
                org_segment = f"not_member:{error.source.value}"
            else:
                org_failure = DecisionReason.MISSING_ORG_CONTEXT
        else:
            org_id = resolution.value.org_id
            org_segment = org_id

        bypass = is_platform_admin and options.allow_platform_bypass
        # Backend failures are neither served from nor written to the cache.
        cacheable = not options.bypass_cache and org_failure != DecisionReason.ORG_CONTEXT_UNAVAILABLE
        cache_key = options.cache_key_override or "|".join([
            requester.user_id,
            module.key,
            org_segment,
            "platform" if is_platform_admin else "member",
            "bypass" if options.allow_platform_bypass else "strict",
        ])

        if cacheable:
            cached = await self.cache.get(cache_key)
            self._count_cache("miss" if cached is None else "hit")
            if cached is not None:
                return cached
        else:
            self._count_cache("skipped")

        if bypass:
            decision = self._decision(module.key, org_id, is_platform_admin, True,
                                      DecisionReason.PLATFORM_ADMIN_BYPASS)
        elif org_failure is not None:
            decision = self._decision(module.key, None, is_platform_admin, False, org_failure)
        else:
            required = [module.key] + [m.key for m in self.catalog.dependencies_of(module.key, transitive=True)]
            allowed = await self.store.has_module_access(org_id, required, utcnow())
            decision = self._decision(
                module.key, org_id, is_platform_admin, allowed,
                DecisionReason.ENABLED if allowed else DecisionReason.NOT_ENTITLED
            )

        if cacheable:
            await self.cache.set(cache_key, decision)

        if not decision.allowed:
            self.logger.info(
                "Module access denied",
                user_id=requester.user_id,
                module_key=module.key,
                org_id=decision.org_id,
                reason=decision.reason.value
            )
        return decision

    def _decision(self, module_key: str, org_id: Optional[str], is_platform_admin: bool,
                  allowed: bool, reason: DecisionReason) -> AccessDecision:
        return AccessDecision(
            module_key=module_key,
            org_id=org_id,
            is_platform_admin=is_platform_admin,
            allowed=allowed,
            reason=reason
        )

    def _count_cache(self, result: str) -> None:
        if self.metrics:
            self.metrics.increment_counter("module_access_cache_total", result=result)
