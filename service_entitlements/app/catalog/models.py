"""
Module catalog data models.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Optional
import re

MODULE_KEY_PATTERN = re.compile(r"^[a-z][a-z0-9_]*$")


def normalize_module_key(value: Any) -> Optional[str]:
    """Trim and lower-case a module key; None when it is not well-formed."""
    if not isinstance(value, str):
        return None
    key = value.strip().lower()
    if not key or not MODULE_KEY_PATTERN.match(key):
        return None
    return key


@dataclass(frozen=True)
class Module:
    """A feature module known to the platform."""
    key: str
    name: str
    description: Optional[str] = None
    dependency_keys: FrozenSet[str] = field(default_factory=frozenset)
    is_core: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "module_key": self.key,
            "module_name": self.name,
            "description": self.description,
            "dependency_keys": sorted(self.dependency_keys),
            "is_core": self.is_core,
        }

