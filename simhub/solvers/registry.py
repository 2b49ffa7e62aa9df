"""Solver registry with auto-discovery of adapters."""

import importlib
import inspect
import logging
import pkgutil
from typing import Dict, List, Optional

from simhub.core.errors import ValidationError
from simhub.solvers.base import SolverAdapter, SolverSpec

logger = logging.getLogger(__name__)


class SolverRegistry:
    """Discovers and serves solver adapters keyed by job type.

    - Auto-discovers SolverAdapter subclasses in simhub/solvers/
    - Adapters can also be registered explicitly (tests, plugins)
    """

    def __init__(self):
        self._solvers: Dict[str, SolverAdapter] = {}

    def discover(self) -> None:
        """Scan the simhub.solvers package for SolverAdapter subclasses and register them."""
        import simhub.solvers as solvers_pkg

        for importer, modname, ispkg in pkgutil.walk_packages(
            solvers_pkg.__path__, prefix="simhub.solvers."
        ):
            if ispkg or modname in ("simhub.solvers.base", "simhub.solvers.registry"):
                continue
            try:
                mod = importlib.import_module(modname)
            except Exception:
                logger.exception("Failed to import solver module %s", modname)
                continue

            for name, obj in inspect.getmembers(mod, inspect.isclass):
                if (
                    issubclass(obj, SolverAdapter)
                    and obj is not SolverAdapter
                    and not inspect.isabstract(obj)
                ):
                    self.register(obj())

    def register(self, adapter: SolverAdapter) -> None:
        spec = adapter.spec()
        self._solvers[spec.job_type] = adapter
        logger.info("Registered solver: %s (%s)", spec.job_type, spec.name)

    def list_solvers(self) -> List[SolverSpec]:
        return [s.spec() for s in self._solvers.values()]

    def get(self, job_type: str) -> Optional[SolverAdapter]:
        return self._solvers.get(job_type)

    def require(self, job_type: Optional[str]) -> SolverAdapter:
        adapter = self._solvers.get(job_type or "")
        if adapter is None:
            known = ", ".join(sorted(self._solvers)) or "none"
            raise ValidationError(f"invalid simulation type '{job_type}' (expected one of: {known})")
        return adapter


# Global registry instance
registry = SolverRegistry()
