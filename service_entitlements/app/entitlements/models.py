"""
Entitlement data models for the Entitlements Service.
"""

from typing import Any, Dict, List, Optional
from dataclasses import dataclass, asdict, replace
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field, field_validator


class BillingModel(str, Enum):
    """How a module is paid for."""
    MANUAL = "manual"
    SUBSCRIPTION = "subscription"
    PAID_IN_FULL = "paid_in_full"
    TRIAL = "trial"
    YEARLY_LICENSE = "yearly_license"


class EntitlementStatus(str, Enum):
    """Commercial status of an entitlement."""
    ACTIVE = "active"
    GRACE = "grace"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    INACTIVE = "inactive"


ACTIVE_EQUIVALENT_STATUSES = frozenset({EntitlementStatus.ACTIVE, EntitlementStatus.GRACE})

DEFAULT_BILLING_MODEL = BillingModel.MANUAL
DEFAULT_STATUS = EntitlementStatus.ACTIVE
DEFAULT_SOURCE = "platform-admin"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Entitlement:
    """Per-(org, module) entitlement row."""
    org_id: str
    module_key: str
    enabled: bool = False
    billing_model: BillingModel = DEFAULT_BILLING_MODEL
    status: EntitlementStatus = DEFAULT_STATUS
    starts_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None
    source: str = DEFAULT_SOURCE
    notes: Optional[str] = None
    updated_by: Optional[str] = None
    updated_at: Optional[datetime] = None

    def is_active_equivalent(self) -> bool:
        """Enabled and in an active-equivalent status (window ignored)."""
        return self.enabled and self.status in ACTIVE_EQUIVALENT_STATUSES

    def is_satisfied(self, at: Optional[datetime] = None) -> bool:
        """Enabled, active-equivalent and inside its validity window."""
        if not self.is_active_equivalent():
            return False
        at = at or utcnow()
        if self.starts_at is not None and self.starts_at > at:
            return False
        if self.ends_at is not None and self.ends_at <= at:
            return False
        return True

    def with_changes(self, **changes: Any) -> "Entitlement":
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["billing_model"] = self.billing_model.value
        data["status"] = self.status.value
        return data


class EntitlementUpdateRequest(BaseModel):
    """Body of an entitlement write. Omitted fields keep their current value.

    Enum fields are plain strings here so unknown values reach the service
    validation (after the org/module 404 checks) instead of failing early.
    """
    enabled: Optional[bool] = Field(None, description="Whether the module is enabled")
    billing_model: Optional[str] = Field(None, description="Billing model")
    status: Optional[str] = Field(None, description="Entitlement status")
    starts_at: Optional[datetime] = Field(None, description="Start of validity window")
    ends_at: Optional[datetime] = Field(None, description="End of validity window")
    notes: Optional[str] = Field(None, description="Operator notes")
    source: Optional[str] = Field(None, description="Origin of the change")

    @field_validator("starts_at", "ends_at", mode="before")
    @classmethod
    def _blank_is_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("starts_at", "ends_at")
    @classmethod
    def _assume_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    def supplied(self, name: str) -> bool:
        """Whether the caller sent the field at all (explicit nulls count)."""
        return name in self.model_fields_set


class EntitlementResponse(BaseModel):
    """Canonical entitlement row."""
    org_id: str
    module_key: str
    enabled: bool
    billing_model: BillingModel
    status: EntitlementStatus
    starts_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None
    source: str
    notes: Optional[str] = None
    updated_by: Optional[str] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_entitlement(cls, entitlement: Entitlement) -> "EntitlementResponse":
        return cls(**entitlement.to_dict())


class EntitlementUpdateResponse(BaseModel):
    """Response for a successful entitlement write."""
    success: bool = True
    entitlement: EntitlementResponse


class OrgModuleEntitlement(BaseModel):
    """Catalog module joined with an org's entitlement row (or defaults)."""
    module_key: str
    module_name: str
    description: Optional[str] = None
    dependency_keys: List[str] = Field(default_factory=list)
    is_core: bool = False
    enabled: bool = False
    billing_model: BillingModel = BillingModel.MANUAL
    status: EntitlementStatus = EntitlementStatus.INACTIVE
    starts_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None
    source: Optional[str] = None
    notes: Optional[str] = None
    updated_by: Optional[str] = None
    updated_at: Optional[datetime] = None


class OrgModuleListResponse(BaseModel):
    """Response for the per-org module listing."""
    org_id: str
    modules: List[OrgModuleEntitlement]
