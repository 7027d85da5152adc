"""
Access decision data models.
"""

from typing import Any, Dict, Optional
from dataclasses import dataclass, asdict
from enum import Enum

from pydantic import BaseModel, Field


class DecisionReason(str, Enum):
    """Why an access decision came out the way it did."""
    ENABLED = "enabled"
    PLATFORM_ADMIN_BYPASS = "platform_admin_bypass"
    ORG_CONTEXT_UNAVAILABLE = "org_context_unavailable"
    ORG_NOT_MEMBER = "org_not_member"
    MISSING_ORG_CONTEXT = "missing_org_context"
    NOT_ENTITLED = "not_entitled"


@dataclass(frozen=True)
class AccessDecision:
    """Outcome of a module access evaluation. Never persisted."""
    module_key: str
    org_id: Optional[str]
    is_platform_admin: bool
    allowed: bool
    reason: DecisionReason

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["reason"] = self.reason.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AccessDecision":
        return cls(
            module_key=data["module_key"],
            org_id=data.get("org_id"),
            is_platform_admin=bool(data.get("is_platform_admin", False)),
            allowed=bool(data["allowed"]),
            reason=DecisionReason(data["reason"])
        )


@dataclass(frozen=True)
class Requester:
    """Authenticated caller, normalized once from verified token claims."""
    user_id: str
    token_org_id: Optional[str] = None
    email: Optional[str] = None

    @classmethod
    def from_claims(cls, claims: Dict[str, Any]) -> "Requester":
        user_id = claims.get("sub") or claims.get("user_id")
        if not user_id:
            raise ValueError("Token claims carry no subject")

        token_org_id = claims.get("org_id")
        if not token_org_id:
            for metadata_key in ("app_metadata", "user_metadata"):
                metadata = claims.get(metadata_key)
                if isinstance(metadata, dict) and metadata.get("org_id"):
                    token_org_id = metadata["org_id"]
                    break

        return cls(
            user_id=str(user_id),
            token_org_id=token_org_id if isinstance(token_org_id, str) else None,
            email=claims.get("email")
        )


@dataclass(frozen=True)
class EvaluateOptions:
    """Per-call knobs for an access evaluation."""
    preferred_org_id: Optional[str] = None
    query_org_id: Optional[str] = None
    header_org_id: Optional[str] = None
    allow_platform_bypass: bool = True
    bypass_cache: bool = False
    cache_key_override: Optional[str] = None


class AccessDecisionResponse(BaseModel):
    """HTTP rendering of an access decision."""
    module_key: str
    org_id: Optional[str] = None
    is_platform_admin: bool
    allowed: bool
    reason: DecisionReason = Field(..., description="Decision reason code")

    @classmethod
    def from_decision(cls, decision: AccessDecision) -> "AccessDecisionResponse":
        return cls(**decision.to_dict())
