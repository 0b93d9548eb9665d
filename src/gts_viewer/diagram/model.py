from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple, Union

from ..entities import JsonObj, JsonSchema
from ..layout.storage import LayoutStorage
from ..layout.types import CanvasState, LayoutSaveRequest, LayoutSnapshot, LayoutTarget, Point
from ..logging import get_logger
from .edges import SchemaEdgeModel, api_handle_to_id
from .layout import DEFAULT_DIAGRAM_CONFIG, DiagramConfig, choose_edges, distribute_handles, layered_layout
from .nodes import SchemaNodeModel

LOG = get_logger(__name__)

Entity = Union[JsonObj, JsonSchema]

VIEWPORT_PAN_TOLERANCE = 1.0
VIEWPORT_ZOOM_TOLERANCE = 0.01


@dataclass
class GlobalViewState:
    """Preferences shared by every diagram: the raw-view choice applies to whichever node is maximized."""

    has_any_maximized_entity: bool = False
    global_raw_view_preference: bool = False


@dataclass
class Viewport:
    x: float = 0.0
    y: float = 0.0
    zoom: float = 1.0

    def copy(self) -> Viewport:
        return Viewport(self.x, self.y, self.zoom)

    def to_dict(self) -> Dict[str, float]:
        return {"x": self.x, "y": self.y, "zoom": self.zoom}


class DiagramModel:
    """
    Reference graph rooted at one entity: DFS discovery, layered layout,
    one rendered edge per ordered pair, distributed handles and dirty tracking.
    Node and edge models belong to this diagram only.
    """

    def __init__(
        self,
        root: Entity,
        schemas: Iterable[JsonSchema],
        objs: Iterable[JsonObj],
        view_state: Optional[GlobalViewState] = None,
        config: DiagramConfig = DEFAULT_DIAGRAM_CONFIG,
    ) -> None:
        self.root = root
        self.config = config
        self.view_state = view_state if view_state is not None else GlobalViewState()
        self._schemas: Dict[str, JsonSchema] = {s.id: s for s in schemas}
        self._objs: Dict[str, JsonObj] = {o.id: o for o in objs}
        self.viewport = Viewport()
        self.orig_viewport = Viewport()
        self.snapshot_checked = False
        self.node_map: Dict[str, SchemaNodeModel] = {}
        self.edge_models: List[SchemaEdgeModel] = []
        self.edge_map: Dict[str, SchemaEdgeModel] = {}
        self.rendered_edges: List[SchemaEdgeModel] = []
        self._build()

    @property
    def id(self) -> str:
        return self.root.id

    # ---- viewport ----

    def init_viewport(self, viewport: Viewport) -> None:
        self.viewport = viewport.copy()
        self.orig_viewport = viewport.copy()

    def update_viewport(self, viewport: Viewport) -> None:
        self.viewport = viewport.copy()

    def get_viewport(self) -> Viewport:
        return self.viewport.copy()

    # ---- lookups ----

    def get_node_model(self, node_id: str) -> Optional[SchemaNodeModel]:
        return self.node_map.get(node_id)

    def get_edge_model(self, edge_id: str) -> Optional[SchemaEdgeModel]:
        return self.edge_map.get(edge_id)

    def _require_node(self, node_id: str) -> SchemaNodeModel:
        node = self.node_map.get(node_id)
        if node is None:
            raise KeyError(f"Node {node_id!r} is not part of diagram {self.id!r}")
        return node

    def _find_entity(self, entity_id: str) -> Optional[Entity]:
        return self._schemas.get(entity_id) or self._objs.get(entity_id)

    # ---- discovery ----

    def _ensure_node(self, entity_id: str) -> Optional[SchemaNodeModel]:
        existing = self.node_map.get(entity_id)
        if existing is not None:
            return existing
        entity = self._find_entity(entity_id)
        if entity is None:
            return None
        is_root = entity.id == self.root.id
        node = SchemaNodeModel(
            entity,
            is_maximized=self.view_state.has_any_maximized_entity if is_root else False,
        )
        self.node_map[entity_id] = node
        return node

    def _add_edge(self, source: SchemaNodeModel, target: SchemaNodeModel, kind: str, name: str) -> None:
        if source.id == target.id:
            return
        edge = SchemaEdgeModel(source=source, target=target, kind=kind, name=name)
        self.edge_models.append(edge)
        self.edge_map[edge.id] = edge
        source.add_edge(edge)

    def _follow(self, source: SchemaNodeModel, target_id: str, kind: str, name: str, visited: Set[str]) -> None:
        if target_id == source.id or self._find_entity(target_id) is None:
            return
        target = self._ensure_node(target_id)
        if target is None:
            return
        self._process(target_id, visited)
        self._add_edge(source, target, kind, name)

    def _process(self, entity_id: str, visited: Set[str]) -> None:
        if entity_id in visited:
            return
        visited.add(entity_id)
        source = self._ensure_node(entity_id)
        entity = self._find_entity(entity_id)
        if source is None or entity is None:
            return

        if isinstance(entity, JsonSchema):
            for ref in entity.schema_refs:
                self._follow(source, ref.id, "ref", ref.source_path, visited)
        elif entity.schema_id:
            self._follow(source, entity.schema_id, "schema", "schema", visited)

        kind = "gts" if entity.is_schema else "gts-json"
        for ref in entity.gts_refs:
            self._follow(source, ref.id, kind, ref.source_path or "", visited)

    def _center_of(self, node: SchemaNodeModel) -> Tuple[float, float]:
        return (
            node.position.x + self.config.node_width / 2,
            node.position.y + self.config.node_height / 2,
        )

    def _build(self) -> None:
        self._process(self.root.id, set())

        centers = layered_layout(
            list(self.node_map),
            ((e.source_id, e.target_id) for e in self.edge_models),
            self.config,
        )
        for node_id, node in self.node_map.items():
            center = centers.get(node_id, Point())
            node.set_initial_position(
                Point(center.x - self.config.node_width / 2, center.y - self.config.node_height / 2)
            )

        self.rendered_edges = [
            e for e in choose_edges(self.edge_models, self.config.edge_priorities) if e.source_id != e.target_id
        ]
        distribute_handles(self.rendered_edges, self._center_of)
        LOG.debug(
            "Built diagram",
            extra={
                "step": "diagram",
                "phase": "build",
                "root": self.id,
                "nodes": len(self.node_map),
                "edges": len(self.edge_models),
                "rendered_edges": len(self.rendered_edges),
            },
        )

    # ---- view state ----

    def displayed_raw_view(self, node_id: str) -> bool:
        """A maximized node shows the shared preference; otherwise its own."""
        node = self._require_node(node_id)
        if node.is_maximized:
            return self.view_state.global_raw_view_preference
        return node.raw_view

    def set_maximized(self, node_id: str, value: bool) -> None:
        node = self._require_node(node_id)
        node.is_maximized = value
        self.view_state.has_any_maximized_entity = any(n.is_maximized for n in self.node_map.values())

    def toggle_raw_view(self, node_id: str) -> bool:
        """Flip whichever preference is currently displayed and return the new displayed value."""
        node = self._require_node(node_id)
        if node.is_maximized:
            self.view_state.global_raw_view_preference = not self.view_state.global_raw_view_preference
        else:
            node.raw_view = not node.raw_view
        return self.displayed_raw_view(node_id)

    def get_root_node_raw_view(self) -> bool:
        node = self.node_map.get(self.id)
        return node.raw_view if node else False

    # ---- dirty tracking ----

    def is_dirty(self) -> bool:
        if abs(self.viewport.x - self.orig_viewport.x) > VIEWPORT_PAN_TOLERANCE:
            return True
        if abs(self.viewport.y - self.orig_viewport.y) > VIEWPORT_PAN_TOLERANCE:
            return True
        if abs(self.viewport.zoom - self.orig_viewport.zoom) > VIEWPORT_ZOOM_TOLERANCE:
            return True
        if any(n.is_dirty() for n in self.node_map.values()):
            return True
        return any(e.is_dirty() for e in self.edge_map.values())

    def reset_dirty_baseline(self) -> None:
        self.orig_viewport = self.viewport.copy()
        for node in self.node_map.values():
            node.reset_dirty_baseline()
        for edge in self.edge_map.values():
            edge.reset_dirty_baseline()

    # ---- persistence ----

    def layout_target(self, workspace_name: Optional[str] = None) -> LayoutTarget:
        return LayoutTarget(
            id=self.root.id,
            filename=self.root.file.name if self.root.file else "",
            schema_id=self.root.schema_id or "",
            workspace_name=workspace_name,
        )

    def build_save_request(
        self, workspace_name: Optional[str] = None, meta: Optional[Dict[str, Any]] = None
    ) -> LayoutSaveRequest:
        return LayoutSaveRequest(
            target=self.layout_target(workspace_name),
            canvas=CanvasState(scale=self.viewport.zoom, pan=Point(self.viewport.x, self.viewport.y)),
            nodes=[n.serialize() for n in self.node_map.values()],
            edges=[e.serialize() for e in self.rendered_edges],
            meta=meta,
        )

    def apply_layout(self, snapshot: LayoutSnapshot) -> None:
        """
        Merge persisted overrides onto the computed graph. Nodes and edges the
        snapshot does not mention keep their computed placement; snapshot
        entries for vanished nodes or edges are ignored.
        """
        canvas = snapshot.canvas
        self.init_viewport(Viewport(canvas.pan.x, canvas.pan.y, canvas.scale))
        for saved in snapshot.nodes:
            node = self.node_map.get(saved.id)
            if node is None:
                continue
            expanded = saved.expansion.expanded
            raw_view = (saved.extra or {}).get("rawView")
            node.init_layout(
                saved.position,
                node.expanded if expanded is None else expanded,
                node.raw_view if raw_view is None else bool(raw_view),
                saved.expansion.sections if saved.expansion.sections is not None else node.sections,
            )
        for saved_edge in snapshot.edges:
            edge = self.edge_map.get(saved_edge.id)
            if edge is None:
                continue
            handles = saved_edge.handles
            edge.init_handlers(
                api_handle_to_id(handles.source if handles else None) or edge.source_handle,
                api_handle_to_id(handles.target if handles else None) or edge.target_handle,
                saved_edge.label_position,
                saved_edge.label_offset,
            )
        self.snapshot_checked = True

    def load_layout(self, storage: LayoutStorage, workspace_name: Optional[str] = None) -> bool:
        snapshot = storage.get_latest_layout(self.layout_target(workspace_name))
        self.snapshot_checked = True
        if snapshot is None:
            return False
        self.apply_layout(snapshot)
        LOG.info(
            "Applied saved layout",
            extra={"step": "layout", "phase": "load", "root": self.id, "version": snapshot.version},
        )
        return True

    def save_layout(
        self, storage: LayoutStorage, workspace_name: Optional[str] = None, meta: Optional[Dict[str, Any]] = None
    ) -> LayoutSnapshot:
        snapshot = storage.save_layout(self.build_save_request(workspace_name, meta))
        self.reset_dirty_baseline()
        return snapshot

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rootId": self.id,
            "viewport": self.viewport.to_dict(),
            "nodes": [n.to_dict() for n in self.node_map.values()],
            "edges": [e.to_dict() for e in self.rendered_edges],
        }
