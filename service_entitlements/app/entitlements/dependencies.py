"""
Dependency enforcement for entitlement writes.

Enabling a module requires every direct dependency to be active for the
org; disabling one is refused while any direct dependent is active.
"Active" here means enabled with an active-equivalent status; validity
windows are not considered at this layer.
"""

from typing import TYPE_CHECKING, Dict, List, Optional

from shared.errors import DependencyViolation
from shared.logging import get_logger
from .models import Entitlement
from ..catalog.models import Module
from ..catalog.registry import ModuleCatalog

if TYPE_CHECKING:
    from ..persistence.base import EntitlementSession, EntitlementStore


class DependencyEnforcer:
    """Validates a target ``enabled`` value against the module graph."""

    def __init__(self, catalog: ModuleCatalog, store: "EntitlementStore"):
        self.catalog = catalog
        self.store = store
        self.logger = get_logger("entitlements.dependencies")

    async def check(self, org_id: str, module: Module, target_enabled: bool,
                    session: Optional["EntitlementSession"] = None) -> None:
        """Run the check selected by the target value; raises DependencyViolation.

        Pass the session of a held org lock so the rows are read on its
        connection.
        """
        if target_enabled:
            await self.check_enable(org_id, module, session)
        else:
            await self.check_disable(org_id, module, session)

    async def check_enable(self, org_id: str, module: Module,
                           session: Optional["EntitlementSession"] = None) -> None:
        dependencies = self.catalog.dependencies_of(module.key)
        if not dependencies:
            return

        rows = await self._rows(org_id, [m.key for m in dependencies], session)
        missing = [
            m.key for m in dependencies
            if m.key not in rows or not rows[m.key].is_active_equivalent()
        ]
        if missing:
            self.logger.info(
                "Enable blocked by missing dependencies",
                org_id=org_id,
                module_key=module.key,
                missing_dependencies=missing
            )
            raise DependencyViolation(
                f'Cannot enable "{module.name}" until its dependencies are enabled',
                module_key=module.key,
                missing_dependencies=missing
            )

    async def check_disable(self, org_id: str, module: Module,
                            session: Optional["EntitlementSession"] = None) -> None:
        dependents = self.catalog.dependents_of(module.key)
        if not dependents:
            return

        rows = await self._rows(org_id, [m.key for m in dependents], session)
        blocking = [
            {"module_key": m.key, "module_name": m.name}
            for m in dependents
            if m.key in rows and rows[m.key].is_active_equivalent()
        ]
        if blocking:
            self.logger.info(
                "Disable blocked by enabled dependents",
                org_id=org_id,
                module_key=module.key,
                dependent_modules=[b["module_key"] for b in blocking]
            )
            raise DependencyViolation(
                f'Cannot disable "{module.name}" while dependent modules are enabled',
                module_key=module.key,
                dependent_modules=blocking
            )

    async def _rows(self, org_id: str, module_keys: List[str],
                    session: Optional["EntitlementSession"]) -> Dict[str, Entitlement]:
        entitlements = await (session or self.store).get_entitlements(org_id, module_keys)
        return {e.module_key: e for e in entitlements}
