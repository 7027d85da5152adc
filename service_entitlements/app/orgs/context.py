"""
Org context resolution.

Picks exactly one organization for a request from the candidate sources,
in strict precedence order:

1. ``preferred``: supplied by the calling code
2. ``query``: ``org_id`` query parameter
3. ``header``: ``x-org-id`` request header
4. ``jwt``: org id carried in the requester's token claims
5. ``membership``: the requester's earliest active membership

Sources 1-3 are explicit. A supplied explicit candidate that is malformed
or has no active membership fails the resolution; it never falls through
to a weaker source. A token candidate that fails validation falls through
to the membership fallback.
"""

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, List, Optional, Tuple

from shared.errors import BackendError
from shared.logging import get_logger
from shared.result import Err, Ok, Result
from .models import MemberRole, Membership, is_supplied, normalize_org_id
from ..entitlements.models import utcnow

if TYPE_CHECKING:
    from ..persistence.base import EntitlementStore


class OrgContextSource(str, Enum):
    PREFERRED = "preferred"
    QUERY = "query"
    HEADER = "header"
    JWT = "jwt"
    MEMBERSHIP = "membership"
    NONE = "none"


class OrgContextErrorCode(str, Enum):
    REQUESTED_ORG_NOT_ACTIVE = "requested_org_not_active"
    NO_ACTIVE_MEMBERSHIP = "no_active_membership"
    MEMBERSHIP_QUERY_FAILED = "membership_query_failed"


@dataclass(frozen=True)
class OrgCandidates:
    """Raw org id candidates gathered from a request."""
    preferred: Any = None
    query: Any = None
    header: Any = None
    jwt: Any = None

    def explicit(self) -> List[Tuple[OrgContextSource, Any]]:
        return [
            (OrgContextSource.PREFERRED, self.preferred),
            (OrgContextSource.QUERY, self.query),
            (OrgContextSource.HEADER, self.header),
        ]


@dataclass(frozen=True)
class ResolvedOrg:
    org_id: str
    source: OrgContextSource
    role: MemberRole = MemberRole.STAFF


@dataclass(frozen=True)
class OrgContextError:
    code: OrgContextErrorCode
    source: OrgContextSource = OrgContextSource.NONE
    message: Optional[str] = None

    @property
    def is_backend_failure(self) -> bool:
        return self.code == OrgContextErrorCode.MEMBERSHIP_QUERY_FAILED


class OrgContextResolver:
    """Resolves the org a request is authorized under."""

    def __init__(self, store: "EntitlementStore", fallback_limit: int = 20):
        self.store = store
        self.fallback_limit = fallback_limit
        self.logger = get_logger("entitlements.orgs.context")

    async def resolve(self, user_id: str,
                      candidates: OrgCandidates) -> Result[ResolvedOrg, OrgContextError]:
        try:
            for source, raw in candidates.explicit():
                if not is_supplied(raw):
                    continue
                resolved = await self._validate(user_id, raw, source)
                if resolved is None:
                    self.logger.info(
                        "Requested org is not an active membership",
                        user_id=user_id,
                        source=source.value
                    )
                    return Err(OrgContextError(
                        OrgContextErrorCode.REQUESTED_ORG_NOT_ACTIVE,
                        source=source,
                        message="Requested organization is not an active membership"
                    ))
                return Ok(resolved)

            if is_supplied(candidates.jwt):
                resolved = await self._validate(user_id, candidates.jwt, OrgContextSource.JWT)
                if resolved is not None:
                    return Ok(resolved)
                self.logger.debug("Token org rejected, using membership fallback", user_id=user_id)

            return await self._fallback(user_id)
        except BackendError as e:
            self.logger.error("Membership lookup failed", user_id=user_id, error=e.message)
            return Err(OrgContextError(
                OrgContextErrorCode.MEMBERSHIP_QUERY_FAILED,
                message=e.message
            ))

    async def _validate(self, user_id: str, raw: Any,
                        source: OrgContextSource) -> Optional[ResolvedOrg]:
        org_id = normalize_org_id(raw)
        if org_id is None:
            return None
        membership = await self.store.get_membership(user_id, org_id)
        if membership is None or not membership.is_active_at(utcnow()):
            return None
        return ResolvedOrg(org_id=org_id, source=source, role=membership.role)

    async def _fallback(self, user_id: str) -> Result[ResolvedOrg, OrgContextError]:
        memberships: List[Membership] = await self.store.list_memberships(
            user_id, self.fallback_limit
        )
        now = utcnow()
        for membership in memberships:
            org_id = normalize_org_id(membership.org_id)
            if org_id is not None and membership.is_active_at(now):
                return Ok(ResolvedOrg(
                    org_id=org_id,
                    source=OrgContextSource.MEMBERSHIP,
                    role=membership.role
                ))
        return Err(OrgContextError(
            OrgContextErrorCode.NO_ACTIVE_MEMBERSHIP,
            message="User has no active organization membership"
        ))
