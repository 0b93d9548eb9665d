from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, List, Optional

from ..entities import JsonEntity
from ..layout.types import ExpansionState, LayoutNode, Point

if TYPE_CHECKING:
    from .edges import SchemaEdgeModel

# sub-pixel drift from renderers must not count as a move
POSITION_EPSILON = 0.5


def default_section_open(path: str) -> bool:
    """Sections nested less than two levels deep start expanded."""
    return path.count("/") < 2


class SchemaNodeModel:
    """
    Diagram-scoped view state for one entity. The same entity shown in two
    diagrams gets two independent instances; the entity itself is never mutated.
    """

    def __init__(
        self,
        entity: JsonEntity,
        *,
        position: Optional[Point] = None,
        expanded: bool = True,
        sections: Optional[Dict[str, bool]] = None,
        raw_view: bool = False,
        is_maximized: bool = False,
    ) -> None:
        self.entity = entity
        self.position = Point(position.x, position.y) if position else Point()
        self.expanded = expanded
        self.sections: Dict[str, bool] = dict(sections or {})
        self.raw_view = raw_view
        self.is_maximized = is_maximized
        self.edges: List[SchemaEdgeModel] = []
        self.reset_dirty_baseline()

    @property
    def id(self) -> str:
        return self.entity.id

    @property
    def node_type(self) -> str:
        return "schema" if self.entity.is_schema else "json"

    def add_edge(self, edge: SchemaEdgeModel) -> None:
        self.edges.append(edge)

    def init_layout(
        self,
        position: Point,
        expanded: bool,
        raw_view: bool,
        sections: Optional[Dict[str, bool]] = None,
    ) -> None:
        """Load persisted state and treat it as the clean baseline."""
        self.position = Point(position.x, position.y)
        self.expanded = expanded
        self.raw_view = raw_view
        self.sections = dict(sections or {})
        self.reset_dirty_baseline()

    def set_initial_position(self, position: Point) -> None:
        self.position = Point(position.x, position.y)
        self.orig_position = Point(position.x, position.y)

    def update_position(self, position: Point) -> None:
        self.position = Point(position.x, position.y)

    def toggle_expanded(self) -> None:
        self.expanded = not self.expanded

    def toggle_section(self, path: str, open_: bool) -> None:
        # only deviations from the default are stored
        if open_ == default_section_open(path):
            self.sections.pop(path, None)
        else:
            self.sections[path] = open_

    def is_dirty(self) -> bool:
        if abs(self.position.x - self.orig_position.x) > POSITION_EPSILON:
            return True
        if abs(self.position.y - self.orig_position.y) > POSITION_EPSILON:
            return True
        if self.expanded != self.orig_expanded or self.raw_view != self.orig_raw_view:
            return True
        return self.sections != self.orig_sections

    def reset_dirty_baseline(self) -> None:
        self.orig_position = Point(self.position.x, self.position.y)
        self.orig_expanded = self.expanded
        self.orig_raw_view = self.raw_view
        self.orig_sections = dict(self.sections)

    def serialize(self) -> LayoutNode:
        file_name = self.entity.file.name if self.entity.file else ""
        return LayoutNode(
            id=self.id,
            filename=file_name,
            schema_id=self.entity.schema_id or "",
            type=self.node_type,
            position=Point(self.position.x, self.position.y),
            expansion=ExpansionState(expanded=self.expanded, sections=dict(self.sections)),
            extra={"rawView": self.raw_view},
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.node_type,
            "label": self.entity.label,
            "position": self.position.to_dict(),
            "expanded": self.expanded,
            "sections": dict(self.sections),
            "rawView": self.raw_view,
            "isMaximized": self.is_maximized,
            "valid": self.entity.validation.valid,
        }

    def __repr__(self) -> str:
        return f"SchemaNodeModel(id={self.id!r})"
