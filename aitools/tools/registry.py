"""Tool registry with auto-discovery of catalog modules."""

import importlib
import logging
import pkgutil
from typing import Dict, List, Optional

from aitools.errors import ValidationError
from aitools.tools.base import ToolSpec

logger = logging.getLogger(__name__)


class ToolRegistry:
    """Discovers and serves tool specs.

    - Auto-discovers ``TOOL`` specs in aitools/tools/catalog/
    - Groups tools by family for the one-active-job check
    """

    def __init__(self):
        self._tools: Dict[str, ToolSpec] = {}

    def discover(self) -> None:
        """Scan the catalog package for modules defining a ``TOOL`` spec."""
        import aitools.tools.catalog as catalog_pkg

        for _, modname, ispkg in pkgutil.iter_modules(
            catalog_pkg.__path__, prefix="aitools.tools.catalog."
        ):
            if ispkg:
                continue
            mod = importlib.import_module(modname)
            spec = getattr(mod, "TOOL", None)
            if isinstance(spec, ToolSpec):
                self.register(spec)

    def register(self, spec: ToolSpec) -> None:
        if spec.tool_id in self._tools:
            raise ValueError(f"Tool '{spec.tool_id}' registered twice")
        self._tools[spec.tool_id] = spec
        logger.info("Registered tool: %s (%s) table=%s", spec.tool_id, spec.name, spec.table)

    def list_tools(self, family: Optional[str] = None) -> List[ToolSpec]:
        specs = list(self._tools.values())
        if family:
            specs = [s for s in specs if s.family == family]
        return specs

    def get(self, tool_id: str) -> Optional[ToolSpec]:
        return self._tools.get(tool_id)

    def require(self, tool_id: str) -> ToolSpec:
        spec = self._tools.get(tool_id)
        if spec is None:
            raise ValidationError(f"Unknown tool '{tool_id}'")
        return spec

    def family_members(self, tool_id: str) -> List[str]:
        family = self.require(tool_id).family
        return [s.tool_id for s in self._tools.values() if s.family == family]

    def tables(self) -> Dict[str, str]:
        return {s.tool_id: s.table for s in self._tools.values()}


def build_registry() -> ToolRegistry:
    registry = ToolRegistry()
    registry.discover()
    return registry


# Global registry instance; tool specs are static configuration.
registry = build_registry()
