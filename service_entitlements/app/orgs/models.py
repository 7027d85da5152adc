"""
Organization and membership models.
"""

from typing import Any, Optional
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
import re

ORG_ID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[1-5][0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$",
    re.IGNORECASE,
)


def normalize_org_id(value: Any) -> Optional[str]:
    """Return the canonical (trimmed, lower-case) org id, or None if malformed."""
    if not isinstance(value, str):
        return None
    trimmed = value.strip()
    if not trimmed or not ORG_ID_PATTERN.match(trimmed):
        return None
    return trimmed.lower()


def is_supplied(value: Any) -> bool:
    """A candidate counts as supplied when it is a non-blank value."""
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    return True


class MemberRole(str, Enum):
    """Role of a user within an organization."""
    OWNER = "owner"
    ADMIN = "admin"
    MANAGER = "manager"
    STAFF = "staff"

    @classmethod
    def parse(cls, value: Any) -> "MemberRole":
        """Map a directory value to a role; unknown values get least privilege."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.STAFF


@dataclass(frozen=True)
class Organization:
    """Tenant organization."""
    id: str
    name: str


@dataclass(frozen=True)
class Membership:
    """A user's membership row in an organization."""
    user_id: str
    org_id: str
    role: MemberRole = MemberRole.STAFF
    is_active: bool = True
    banned_until: Optional[datetime] = None
    inserted_at: Optional[datetime] = None

    def is_active_at(self, at: Optional[datetime] = None) -> bool:
        """Active flag set and not currently banned."""
        if not self.is_active:
            return False
        if self.banned_until is None:
            return True
        return self.banned_until <= (at or datetime.now(timezone.utc))
