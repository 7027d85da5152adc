"""
Best-effort audit sink.

Writes are scheduled in the background and never block or fail the
operation that emitted them.
"""

import asyncio
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, Optional, Set

from shared.logging import get_logger

if TYPE_CHECKING:
    from .persistence.base import EntitlementStore

ENTITLEMENT_UPDATE_ACTION = "platform_module_entitlement_update"


@dataclass(frozen=True)
class AuditRecord:
    actor: Optional[str]
    action: str
    target: str
    metadata: Dict[str, Any] = field(default_factory=dict)


class AuditSink:
    """Store-backed audit sink."""

    def __init__(self, store: "EntitlementStore"):
        self.store = store
        self.logger = get_logger("entitlements.audit")
        self._pending: Set[asyncio.Task] = set()

    def emit(self, record: AuditRecord) -> None:
        task = asyncio.create_task(self._write(record))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def drain(self) -> None:
        """Wait for scheduled writes to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending))

    async def _write(self, record: AuditRecord) -> None:
        try:
            await self.store.record_audit(record.actor, record.action, record.target, record.metadata)
        except Exception as e:
            # Never fails the operation that emitted the record.
            self.logger.warning(
                "Audit write failed",
                action=record.action,
                target=record.target,
                error=str(e)
            )
