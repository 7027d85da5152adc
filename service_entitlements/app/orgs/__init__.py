"""Organizations, memberships and org context resolution."""

from .models import MemberRole, Membership, Organization, normalize_org_id
from .context import (
    OrgCandidates, OrgContextError, OrgContextErrorCode, OrgContextResolver,
    OrgContextSource, ResolvedOrg
)

__all__ = [
    "MemberRole",
    "Membership",
    "Organization",
    "normalize_org_id",
    "OrgCandidates",
    "OrgContextError",
    "OrgContextErrorCode",
    "OrgContextResolver",
    "OrgContextSource",
    "ResolvedOrg",
]
