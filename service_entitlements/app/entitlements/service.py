"""
Entitlement read and write operations.
"""

from typing import TYPE_CHECKING, Any, Dict, Optional

from shared.errors import AccessLayerException, NotFoundError, ValidationError
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from .dependencies import DependencyEnforcer
from .models import (
    DEFAULT_BILLING_MODEL, DEFAULT_SOURCE, DEFAULT_STATUS, BillingModel, Entitlement,
    EntitlementStatus, EntitlementUpdateRequest, OrgModuleEntitlement, OrgModuleListResponse
)
from ..audit import ENTITLEMENT_UPDATE_ACTION, AuditRecord, AuditSink
from ..cache.decision_cache import DecisionCache
from ..catalog.models import Module, normalize_module_key
from ..catalog.registry import ModuleCatalog
from ..orgs.models import normalize_org_id

if TYPE_CHECKING:
    from ..persistence.base import EntitlementStore

AUDITED_FIELDS = ("enabled", "billing_model", "status", "starts_at", "ends_at")


class EntitlementService:
    """Platform-admin entitlement management."""

    def __init__(self, catalog: ModuleCatalog, store: "EntitlementStore",
                 cache: DecisionCache, audit: AuditSink,
                 enforcer: Optional[DependencyEnforcer] = None,
                 metrics: Optional[MetricsCollector] = None):
        self.catalog = catalog
        self.store = store
        self.cache = cache
        self.audit = audit
        self.enforcer = enforcer or DependencyEnforcer(catalog, store)
        self.metrics = metrics
        self.logger = get_logger("entitlements.service")

    async def list_org_entitlements(self, org_id: str) -> OrgModuleListResponse:
        """Every catalog module with the org's entitlement row or defaults."""
        org = self._parse_org_id(org_id)
        if await self.store.get_organization(org) is None:
            raise NotFoundError("Organization not found", details={"org_id": org})

        rows = {e.module_key: e for e in await self.store.get_entitlements(org)}
        modules = []
        for module in self.catalog.modules():
            item: Dict[str, Any] = module.to_dict()
            row = rows.get(module.key)
            if row is not None:
                item.update(row.to_dict())
            modules.append(OrgModuleEntitlement(**item))
        return OrgModuleListResponse(org_id=org, modules=modules)

    async def update_entitlement(self, org_id: str, module_key: str,
                                 request: EntitlementUpdateRequest,
                                 actor: Optional[str] = None) -> Entitlement:
        """Validate, dependency-check and upsert one (org, module) row."""
        try:
            saved, previous, module = await self._update(org_id, module_key, request, actor)
        except AccessLayerException as e:
            self._count(e.code.lower())
            raise
        self._count("success")

        self.audit.emit(AuditRecord(
            actor=actor,
            action=ENTITLEMENT_UPDATE_ACTION,
            target=f"{saved.org_id}:{saved.module_key}",
            metadata=self._audit_metadata(previous, saved, module)
        ))
        await self.cache.invalidate_org(saved.org_id)

        self.logger.info(
            "Entitlement updated",
            org_id=saved.org_id,
            module_key=saved.module_key,
            enabled=saved.enabled,
            status=saved.status.value,
            actor=actor
        )
        return saved

    async def _update(self, org_id: str, module_key: str, request: EntitlementUpdateRequest,
                      actor: Optional[str]):
        org = self._parse_org_id(org_id)
        module = self._resolve_module(module_key)

        async with self.store.org_lock(org) as session:
            if await session.get_organization(org) is None:
                raise NotFoundError("Organization not found", details={"org_id": org})
            current = await session.get_entitlement(org, module.key)

            target = self._coalesce(org, module, current, request, actor)
            if target.starts_at and target.ends_at and target.ends_at <= target.starts_at:
                raise ValidationError(
                    "ends_at must be after starts_at",
                    details={"module_key": module.key}
                )

            await self.enforcer.check(org, module, target.enabled, session)

            if current is not None and current.status != target.status:
                self.logger.info(
                    "Entitlement status transition",
                    org_id=org,
                    module_key=module.key,
                    from_status=current.status.value,
                    to_status=target.status.value
                )

            saved = await session.upsert_entitlement(target)
        return saved, current, module

    def _coalesce(self, org_id: str, module: Module, current: Optional[Entitlement],
                  request: EntitlementUpdateRequest, actor: Optional[str]) -> Entitlement:
        base = current or Entitlement(
            org_id=org_id,
            module_key=module.key,
            enabled=False,
            billing_model=DEFAULT_BILLING_MODEL,
            status=DEFAULT_STATUS,
            source=DEFAULT_SOURCE
        )

        changes: Dict[str, Any] = {"updated_by": actor}
        if request.enabled is not None:
            changes["enabled"] = request.enabled
        if request.billing_model is not None:
            changes["billing_model"] = self._parse_enum(BillingModel, "billing_model", request.billing_model)
        if request.status is not None:
            changes["status"] = self._parse_enum(EntitlementStatus, "status", request.status)
        if request.source is not None and request.source.strip():
            changes["source"] = request.source.strip()
        # Nullable fields: an explicit null clears the stored value.
        for name in ("starts_at", "ends_at"):
            if request.supplied(name):
                changes[name] = getattr(request, name)
        if request.supplied("notes"):
            changes["notes"] = (request.notes or "").strip() or None
        return base.with_changes(**changes)

    def _parse_org_id(self, org_id: str) -> str:
        org = normalize_org_id(org_id)
        if org is None:
            raise ValidationError("Invalid organization id", details={"org_id": org_id})
        return org

    def _resolve_module(self, module_key: str) -> Module:
        key = normalize_module_key(module_key)
        if key is None:
            raise ValidationError("Invalid module key", details={"module_key": module_key})
        return self.catalog.lookup(key)

    def _parse_enum(self, enum_cls, field_name: str, value: str):
        try:
            return enum_cls(value.strip().lower())
        except ValueError:
            raise ValidationError(
                f"Invalid {field_name}",
                details={
                    "field": field_name,
                    "value": value,
                    "allowed": [member.value for member in enum_cls]
                }
            )

    def _audit_metadata(self, previous: Optional[Entitlement], saved: Entitlement,
                        module: Module) -> Dict[str, Any]:
        before = previous.to_dict() if previous else {}
        after = saved.to_dict()
        return {
            "org_id": saved.org_id,
            "module_key": module.key,
            "module_name": module.name,
            "before": {name: before.get(name) for name in AUDITED_FIELDS},
            "after": {name: after.get(name) for name in AUDITED_FIELDS},
        }

    def _count(self, outcome: str) -> None:
        if self.metrics:
            self.metrics.increment_counter("entitlement_mutations_total", outcome=outcome)
