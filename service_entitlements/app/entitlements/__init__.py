"""
Entitlement rows and the administrative write path.

``service`` and ``dependencies`` are imported from their modules directly;
this package only re-exports the data models.
"""

from .models import (
    BillingModel, Entitlement, EntitlementStatus, EntitlementUpdateRequest
)

__all__ = ["BillingModel", "Entitlement", "EntitlementStatus", "EntitlementUpdateRequest"]
