from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

HANDLE_SIDES = ("Left", "Right", "Top", "Bottom")
NODE_TYPES = ("json", "schema", "virtual")
EDGE_RELATIONS = ("implements", "ref", "gts", "other")


def _opt_float(value: Any) -> Optional[float]:
    if value is None:
        return None
    return float(value)


@dataclass
class Point:
    x: float = 0.0
    y: float = 0.0

    def to_dict(self) -> Dict[str, float]:
        return {"x": self.x, "y": self.y}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Point:
        return cls(x=float(data.get("x") or 0), y=float(data.get("y") or 0))


@dataclass
class Size:
    width: float
    height: float

    def to_dict(self) -> Dict[str, float]:
        return {"width": self.width, "height": self.height}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Size:
        return cls(width=float(data.get("width") or 0), height=float(data.get("height") or 0))


@dataclass(frozen=True)
class HandlePosition:
    """Wire encoding of an attachment point: a node side plus a fraction along it."""

    side: str
    pct: float

    def to_dict(self) -> Dict[str, Any]:
        return {"side": self.side, "pct": self.pct}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> HandlePosition:
        side = str(data.get("side") or "")
        if side not in HANDLE_SIDES:
            raise ValueError(f"Invalid handle side: {side!r}")
        return cls(side=side, pct=float(data.get("pct") or 0))


@dataclass
class Handles:
    source: Optional[HandlePosition] = None
    target: Optional[HandlePosition] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        if self.source is not None:
            out["source"] = self.source.to_dict()
        if self.target is not None:
            out["target"] = self.target.to_dict()
        return out

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Handles:
        source = data.get("source")
        target = data.get("target")
        return cls(
            source=HandlePosition.from_dict(source) if isinstance(source, Mapping) else None,
            target=HandlePosition.from_dict(target) if isinstance(target, Mapping) else None,
        )


@dataclass
class ExpansionState:
    expanded: Optional[bool] = None
    sections: Optional[Dict[str, bool]] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        if self.expanded is not None:
            out["expanded"] = self.expanded
        if self.sections is not None:
            out["sections"] = dict(self.sections)
        return out

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ExpansionState:
        sections = data.get("sections")
        expanded = data.get("expanded")
        return cls(
            expanded=bool(expanded) if expanded is not None else None,
            sections={str(k): bool(v) for k, v in sections.items()} if isinstance(sections, Mapping) else None,
        )


@dataclass(frozen=True)
class LayoutTarget:
    """Natural key of a persisted layout: this entity's diagram in this workspace."""

    id: str
    filename: str
    schema_id: str
    workspace_name: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "workspaceName": self.workspace_name,
            "id": self.id,
            "filename": self.filename,
            "schemaId": self.schema_id,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> LayoutTarget:
        return cls(
            id=str(data.get("id") or ""),
            filename=str(data.get("filename") or ""),
            schema_id=str(data.get("schemaId") or ""),
            workspace_name=data.get("workspaceName") or None,
        )


@dataclass
class LayoutNode:
    id: str
    filename: str
    schema_id: str
    type: str
    position: Point
    expansion: ExpansionState = field(default_factory=ExpansionState)
    size: Optional[Size] = None
    extra: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "id": self.id,
            "filename": self.filename,
            "schemaId": self.schema_id,
            "type": self.type,
            "position": self.position.to_dict(),
            "expansion": self.expansion.to_dict(),
        }
        if self.size is not None:
            out["size"] = self.size.to_dict()
        if self.extra is not None:
            out["extra"] = dict(self.extra)
        return out

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> LayoutNode:
        size = data.get("size")
        extra = data.get("extra")
        return cls(
            id=str(data.get("id") or ""),
            filename=str(data.get("filename") or ""),
            schema_id=str(data.get("schemaId") or ""),
            type=str(data.get("type") or "json"),
            position=Point.from_dict(data.get("position") or {}),
            expansion=ExpansionState.from_dict(data.get("expansion") or {}),
            size=Size.from_dict(size) if isinstance(size, Mapping) else None,
            extra=dict(extra) if isinstance(extra, Mapping) else None,
        )


@dataclass
class LayoutEdge:
    id: str
    source: str
    target: str
    relation: str
    source_key: str
    handles: Optional[Handles] = None
    label_position: Optional[float] = None
    label_offset: Optional[Point] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "id": self.id,
            "source": self.source,
            "target": self.target,
            "relation": self.relation,
            "sourceKey": self.source_key,
        }
        if self.handles is not None:
            out["handles"] = self.handles.to_dict()
        if self.label_position is not None:
            out["labelPosition"] = self.label_position
        if self.label_offset is not None:
            out["labelOffset"] = self.label_offset.to_dict()
        return out

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> LayoutEdge:
        handles = data.get("handles")
        offset = data.get("labelOffset")
        relation = str(data.get("relation") or "other")
        return cls(
            id=str(data.get("id") or ""),
            source=str(data.get("source") or ""),
            target=str(data.get("target") or ""),
            relation=relation if relation in EDGE_RELATIONS else "other",
            source_key=str(data.get("sourceKey") or ""),
            handles=Handles.from_dict(handles) if isinstance(handles, Mapping) else None,
            label_position=_opt_float(data.get("labelPosition")),
            label_offset=Point.from_dict(offset) if isinstance(offset, Mapping) else None,
        )


@dataclass
class CanvasState:
    scale: float = 1.0
    pan: Point = field(default_factory=Point)
    viewport_size: Optional[Size] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"scale": self.scale, "pan": self.pan.to_dict()}
        if self.viewport_size is not None:
            out["viewportSize"] = self.viewport_size.to_dict()
        return out

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> CanvasState:
        viewport = data.get("viewportSize")
        scale = data.get("scale")
        return cls(
            scale=float(scale) if scale is not None else 1.0,
            pan=Point.from_dict(data.get("pan") or {}),
            viewport_size=Size.from_dict(viewport) if isinstance(viewport, Mapping) else None,
        )


@dataclass
class LayoutSaveRequest:
    target: LayoutTarget
    canvas: CanvasState
    nodes: List[LayoutNode] = field(default_factory=list)
    edges: List[LayoutEdge] = field(default_factory=list)
    meta: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "target": self.target.to_dict(),
            "canvas": self.canvas.to_dict(),
            "nodes": [n.to_dict() for n in self.nodes],
            "edges": [e.to_dict() for e in self.edges],
        }
        if self.meta is not None:
            out["meta"] = dict(self.meta)
        return out

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> LayoutSaveRequest:
        meta = data.get("meta")
        return cls(
            target=LayoutTarget.from_dict(data.get("target") or {}),
            canvas=CanvasState.from_dict(data.get("canvas") or {}),
            nodes=[LayoutNode.from_dict(n) for n in data.get("nodes") or []],
            edges=[LayoutEdge.from_dict(e) for e in data.get("edges") or []],
            meta=dict(meta) if isinstance(meta, Mapping) else None,
        )


@dataclass
class LayoutSnapshot(LayoutSaveRequest):
    """A stored layout version. ``version`` is a decimal string; ``layout_id`` is stable per target."""

    layout_id: str = ""
    version: str = "1"
    created_at: str = ""

    def to_dict(self) -> Dict[str, Any]:
        out = super().to_dict()
        out.update({"layoutId": self.layout_id, "version": self.version, "createdAt": self.created_at})
        return out

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> LayoutSnapshot:
        base = LayoutSaveRequest.from_dict(data)
        return cls(
            target=base.target,
            canvas=base.canvas,
            nodes=base.nodes,
            edges=base.edges,
            meta=base.meta,
            layout_id=str(data.get("layoutId") or ""),
            version=str(data.get("version") or "1"),
            created_at=str(data.get("createdAt") or ""),
        )

    def node(self, node_id: str) -> Optional[LayoutNode]:
        for item in self.nodes:
            if item.id == node_id:
                return item
        return None

    def edge(self, edge_id: str) -> Optional[LayoutEdge]:
        for item in self.edges:
            if item.id == edge_id:
                return item
        return None


@dataclass(frozen=True)
class LayoutVersionInfo:
    layout_id: str
    version: str
    created_at: str

    def to_dict(self) -> Dict[str, str]:
        return {"layoutId": self.layout_id, "version": self.version, "createdAt": self.created_at}
