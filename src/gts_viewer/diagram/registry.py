from __future__ import annotations

from typing import Dict, Iterator, Optional

from ..registry import JsonRegistry
from ..util.errors import EntityNotFoundError
from .layout import DEFAULT_DIAGRAM_CONFIG, DiagramConfig
from .model import DiagramModel, GlobalViewState
from .nodes import SchemaNodeModel


class DiagramRegistry:
    """
    Owns the diagrams built over one entity registry plus the view state they
    share. Node models are addressed by ``(diagram_id, entity_id)``, so the
    same entity in two diagrams never shares position or view state.
    """

    def __init__(self, config: DiagramConfig = DEFAULT_DIAGRAM_CONFIG) -> None:
        self.config = config
        self.view_state = GlobalViewState()
        self._diagrams: Dict[str, DiagramModel] = {}

    def get(self, diagram_id: str) -> Optional[DiagramModel]:
        return self._diagrams.get(diagram_id)

    def set(self, diagram_id: str, diagram: DiagramModel) -> None:
        self._diagrams[diagram_id] = diagram

    def has(self, diagram_id: str) -> bool:
        return diagram_id in self._diagrams

    def delete(self, diagram_id: str) -> bool:
        return self._diagrams.pop(diagram_id, None) is not None

    def clear(self) -> None:
        self._diagrams.clear()

    def __len__(self) -> int:
        return len(self._diagrams)

    def __iter__(self) -> Iterator[str]:
        return iter(self._diagrams)

    def set_maximized(self, value: bool) -> None:
        self.view_state.has_any_maximized_entity = value

    def set_raw_view_preference(self, value: bool) -> None:
        self.view_state.global_raw_view_preference = value

    def get_or_create(self, registry: JsonRegistry, root_id: str) -> DiagramModel:
        """Cached diagram for ``root_id``; built from the registry's current entities on first use."""
        root = registry.get_entity(root_id)
        if root is None:
            raise EntityNotFoundError(root_id, registry.suggest(root_id))
        diagram = self._diagrams.get(root.id)
        if diagram is None:
            diagram = DiagramModel(
                root,
                registry.json_schemas.values(),
                registry.json_objs.values(),
                self.view_state,
                self.config,
            )
            self._diagrams[root.id] = diagram
        return diagram

    def node_model(self, diagram_id: str, entity_id: str) -> Optional[SchemaNodeModel]:
        diagram = self._diagrams.get(diagram_id)
        if diagram is None:
            return None
        return diagram.get_node_model(entity_id)
