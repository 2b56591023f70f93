"""
Definition Registry - maps (category, type) to a BlockDefinition.
Shared, read-only during synthesis. Per-node composite definitions are not
stored here; they live on the GraphStore that owns the composite node.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

from flowsynth.compiler.errors import DefinitionNotFound
from flowsynth.compiler.graph import BlockDefinition

logger = logging.getLogger(__name__)


class DefinitionRegistry:
    """Registry of block definitions grouped by palette category."""

    def __init__(self):
        self._definitions: Dict[Tuple[str, str], BlockDefinition] = {}
        self._category_names: Dict[str, str] = {}

    @classmethod
    def with_builtins(cls) -> "DefinitionRegistry":
        from flowsynth.compiler.library import register_builtin_blocks
        registry = cls()
        register_builtin_blocks(registry)
        return registry

    def register(self, category: str, node_type: str, definition: BlockDefinition) -> BlockDefinition:
        """Register (or overwrite) a definition."""
        definition.category = category
        definition.node_type = node_type
        key = (category, node_type)
        if key in self._definitions:
            logger.debug(f"[DEFS] Overwriting definition {category}.{node_type}")
        self._definitions[key] = definition
        self._category_names.setdefault(category, category)
        return definition

    def set_category_name(self, category: str, display_name: str) -> None:
        self._category_names[category] = display_name

    def lookup(self, category: str, node_type: str) -> Optional[BlockDefinition]:
        return self._definitions.get((category, node_type))

    def require(self, category: str, node_type: str) -> BlockDefinition:
        definition = self.lookup(category, node_type)
        if definition is None:
            raise DefinitionNotFound(category, node_type)
        return definition

    def unregister(self, category: str, node_type: str) -> bool:
        return self._definitions.pop((category, node_type), None) is not None

    def list_categories(self) -> List[Dict[str, Any]]:
        counts: Dict[str, int] = {}
        for category, _ in self._definitions:
            counts[category] = counts.get(category, 0) + 1
        return [
            {"category": c, "name": self._category_names.get(c, c), "block_count": n}
            for c, n in counts.items()
        ]

    def list_definitions(self, category: Optional[str] = None) -> List[BlockDefinition]:
        return [
            d for (c, _), d in self._definitions.items()
            if category is None or c == category
        ]

    def get_stats(self) -> Dict[str, Any]:
        return {
            "total_definitions": len(self._definitions),
            "total_categories": len({c for c, _ in self._definitions}),
            "root_definitions": sum(1 for d in self._definitions.values() if d.is_root),
        }

    def __contains__(self, key: Tuple[str, str]) -> bool:
        return key in self._definitions

    def __len__(self) -> int:
        return len(self._definitions)
