"""
In-memory module catalog and dependency graph.

The catalog is loaded once at service start and is read-only afterwards.
Loading validates the graph: every dependency must name a known module
and the graph must be acyclic.
"""

from typing import Dict, Iterable, List, Optional, Set

from shared.errors import CatalogCycleError, NotFoundError, ValidationError
from shared.logging import get_logger
from .models import Module, normalize_module_key


class ModuleCatalog:
    """Registry of feature modules with forward and reverse dependency edges."""

    def __init__(self, modules: Optional[Iterable[Module]] = None):
        self.logger = get_logger("entitlements.catalog")
        self._modules: Dict[str, Module] = {}
        self._dependents: Dict[str, List[str]] = {}
        if modules is not None:
            self.load(modules)

    def load(self, modules: Iterable[Module]) -> None:
        """Replace the catalog contents after validating the graph."""
        by_key: Dict[str, Module] = {}
        for module in modules:
            by_key[module.key] = module

        for module in by_key.values():
            unknown = sorted(k for k in module.dependency_keys if k not in by_key)
            if unknown:
                raise ValidationError(
                    f'Module "{module.key}" depends on unknown modules',
                    details={"module_key": module.key, "unknown_dependencies": unknown}
                )

        cycle = _find_cycle(by_key)
        if cycle:
            raise CatalogCycleError(cycle)

        dependents: Dict[str, List[str]] = {key: [] for key in by_key}
        for module in sorted(by_key.values(), key=lambda m: m.key):
            for dependency in module.dependency_keys:
                dependents[dependency].append(module.key)

        self._modules = by_key
        self._dependents = dependents
        self.logger.info("Module catalog loaded", modules=len(by_key))

    @property
    def is_loaded(self) -> bool:
        return bool(self._modules)

    def __len__(self) -> int:
        return len(self._modules)

    def __contains__(self, key: object) -> bool:
        return key in self._modules

    def modules(self) -> List[Module]:
        """All modules ordered by key."""
        return [self._modules[k] for k in sorted(self._modules)]

    def get(self, key: str) -> Optional[Module]:
        normalized = normalize_module_key(key)
        if normalized is None:
            return None
        return self._modules.get(normalized)

    def lookup(self, key: str) -> Module:
        """Return the module for a key or raise NotFoundError."""
        module = self.get(key)
        if module is None:
            raise NotFoundError(f'Module "{key}" is not configured', details={"module_key": key})
        return module

    def dependents_of(self, key: str) -> List[Module]:
        """Modules whose dependency_keys contain ``key``."""
        module = self.lookup(key)
        return [self._modules[k] for k in self._dependents.get(module.key, [])]

    def dependencies_of(self, key: str, transitive: bool = False) -> List[Module]:
        """Modules ``key`` requires, directly or (optionally) transitively."""
        module = self.lookup(key)
        if not transitive:
            return [self._modules[k] for k in sorted(module.dependency_keys)]

        resolved: List[str] = []
        seen: Set[str] = set()
        stack = sorted(module.dependency_keys, reverse=True)
        while stack:
            current = stack.pop()
            if current in seen:
                continue
            seen.add(current)
            resolved.append(current)
            stack.extend(sorted(self._modules[current].dependency_keys, reverse=True))
        return [self._modules[k] for k in resolved]

    def stats(self) -> Dict[str, int]:
        return {
            "modules": len(self._modules),
            "core_modules": len([m for m in self._modules.values() if m.is_core]),
            "dependency_edges": sum(len(m.dependency_keys) for m in self._modules.values()),
        }


def _find_cycle(modules: Dict[str, Module]) -> Optional[List[str]]:
    """Depth-first search for a dependency cycle; returns the cycle path."""
    visiting: Set[str] = set()
    done: Set[str] = set()
    path: List[str] = []

    def visit(key: str) -> Optional[List[str]]:
        if key in done:
            return None
        if key in visiting:
            return path[path.index(key):] + [key]
        visiting.add(key)
        path.append(key)
        for dependency in sorted(modules[key].dependency_keys):
            cycle = visit(dependency)
            if cycle:
                return cycle
        path.pop()
        visiting.discard(key)
        done.add(key)
        return None

    for key in sorted(modules):
        cycle = visit(key)
        if cycle:
            return cycle
    return None
