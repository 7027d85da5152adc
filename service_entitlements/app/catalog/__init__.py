"""
Module catalog package.

Holds the registry of known feature modules and their dependency graph
(module -> modules it requires). The graph is validated on load and is
read-only for the lifetime of the process.
"""

from .models import Module, normalize_module_key
from .registry import ModuleCatalog
from .seed import DEFAULT_MODULES

__all__ = ["Module", "ModuleCatalog", "DEFAULT_MODULES", "normalize_module_key"]
