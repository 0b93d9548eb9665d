from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Dict, Mapping, Optional

from ..layout.types import HandlePosition, Handles, LayoutEdge, Point

if TYPE_CHECKING:
    from .nodes import SchemaNodeModel

EDGE_KINDS = ("schema", "ref", "gts-json", "gts", "other")

DEFAULT_SOURCE_HANDLE = "right-2"
DEFAULT_TARGET_HANDLE = "left-2"
DEFAULT_LABEL_POSITION = 0.5


@dataclass(frozen=True)
class EdgeStyle:
    stroke: str
    stroke_width: int
    stroke_dasharray: Optional[str] = None

    def to_dict(self) -> Dict[str, object]:
        out: Dict[str, object] = {"stroke": self.stroke, "strokeWidth": self.stroke_width}
        if self.stroke_dasharray:
            out["strokeDasharray"] = self.stroke_dasharray
        return out


@dataclass(frozen=True)
class EdgeConfig:
    priority: int
    style: EdgeStyle


EDGE_CONFIG: Mapping[str, EdgeConfig] = {
    "schema": EdgeConfig(4, EdgeStyle("#10b981", 2)),
    "ref": EdgeConfig(3, EdgeStyle("#8b5cf6", 1, "6 4")),
    "gts-json": EdgeConfig(2, EdgeStyle("#f59e0b", 1, "6 4")),
    "gts": EdgeConfig(1, EdgeStyle("#64748b", 1, "6 4")),
    "other": EdgeConfig(0, EdgeStyle("#9ca3af", 1, "2 2")),
}

DEFAULT_EDGE_PRIORITIES: Mapping[str, int] = {kind: cfg.priority for kind, cfg in EDGE_CONFIG.items()}

# schema edges link an instance to the type it implements
_RELATIONS: Mapping[str, str] = {
    "schema": "implements",
    "ref": "ref",
    "gts": "gts",
    "gts-json": "gts",
}


def get_edge_priority(kind: str, priorities: Optional[Mapping[str, int]] = None) -> int:
    table = priorities if priorities is not None else DEFAULT_EDGE_PRIORITIES
    if kind in table:
        return int(table[kind])
    return int(DEFAULT_EDGE_PRIORITIES.get(kind, DEFAULT_EDGE_PRIORITIES["other"]))


def get_edge_style(kind: str) -> EdgeStyle:
    return EDGE_CONFIG.get(kind, EDGE_CONFIG["other"]).style


def relation_for_kind(kind: str) -> str:
    return _RELATIONS.get(kind, "other")


_SIDE_NAMES = {"left": "Left", "right": "Right", "top": "Top", "bottom": "Bottom"}
_SLOT_PCTS = {1: 0.25, 2: 0.5, 3: 0.75}

HANDLE_MAP: Mapping[str, HandlePosition] = {
    f"{side}-{slot}": HandlePosition(api_side, pct)
    for side, api_side in _SIDE_NAMES.items()
    for slot, pct in _SLOT_PCTS.items()
}
_API_TO_ID: Mapping[tuple, str] = {(pos.side, pos.pct): handle_id for handle_id, pos in HANDLE_MAP.items()}


def handle_id_to_api(handle_id: Optional[str]) -> Optional[HandlePosition]:
    """``"left-1"`` -> ``HandlePosition("Left", 0.25)``; unknown ids give None."""
    if not handle_id:
        return None
    return HANDLE_MAP.get(handle_id)


def api_handle_to_id(handle: Optional[HandlePosition]) -> Optional[str]:
    if handle is None:
        return None
    return _API_TO_ID.get((handle.side, float(handle.pct)))


def edge_id(source_id: str, target_id: str, kind: str, name: str) -> str:
    return f"{source_id}|{target_id}|{kind}|{name}"


class SchemaEdgeModel:
    """
    One discovered reference between two diagram nodes. Handles and label
    placement are tracked against an "orig" baseline for dirty checks.
    """

    def __init__(
        self,
        *,
        source: SchemaNodeModel,
        target: SchemaNodeModel,
        kind: str,
        name: str = "",
        source_handle: Optional[str] = None,
        target_handle: Optional[str] = None,
        label_position: Optional[float] = None,
        label_offset: Optional[Point] = None,
    ) -> None:
        self.id = edge_id(source.id, target.id, kind, name)
        self.source = source
        self.target = target
        self.kind = kind
        self.name = name
        self.source_handle = source_handle or DEFAULT_SOURCE_HANDLE
        self.target_handle = target_handle or DEFAULT_TARGET_HANDLE
        self.label_position = DEFAULT_LABEL_POSITION if label_position is None else label_position
        self.label_offset = Point(label_offset.x, label_offset.y) if label_offset else Point()
        self.reset_dirty_baseline()

    @property
    def source_id(self) -> str:
        return self.source.id

    @property
    def target_id(self) -> str:
        return self.target.id

    @property
    def style(self) -> EdgeStyle:
        return get_edge_style(self.kind)

    def init_handlers(
        self,
        source_handle: str,
        target_handle: str,
        label_position: Optional[float] = None,
        label_offset: Optional[Point] = None,
    ) -> None:
        """Load persisted placement and treat it as the clean baseline."""
        self.source_handle = source_handle
        self.target_handle = target_handle
        if label_position is not None:
            self.label_position = label_position
        if label_offset is not None:
            self.label_offset = Point(label_offset.x, label_offset.y)
        self.reset_dirty_baseline()

    def set_distributed_handle(self, handle: str, *, is_source: bool) -> None:
        if is_source:
            self.source_handle = handle
            self.orig_source_handle = handle
        else:
            self.target_handle = handle
            self.orig_target_handle = handle

    def update_handles(self, source_handle: Optional[str] = None, target_handle: Optional[str] = None) -> None:
        if source_handle is not None:
            self.source_handle = source_handle
        if target_handle is not None:
            self.target_handle = target_handle

    def update_label_position(
        self, label_position: Optional[float] = None, label_offset: Optional[Point] = None
    ) -> None:
        if label_position is not None:
            self.label_position = label_position
        if label_offset is not None:
            self.label_offset = Point(label_offset.x, label_offset.y)

    def is_dirty(self) -> bool:
        if self.source_handle != self.orig_source_handle or self.target_handle != self.orig_target_handle:
            return True
        if self.label_position != self.orig_label_position:
            return True
        return self.label_offset != self.orig_label_offset

    def reset_dirty_baseline(self) -> None:
        self.orig_source_handle = self.source_handle
        self.orig_target_handle = self.target_handle
        self.orig_label_position = self.label_position
        self.orig_label_offset = Point(self.label_offset.x, self.label_offset.y)

    def serialize(self) -> LayoutEdge:
        return LayoutEdge(
            id=self.id,
            source=self.source_id,
            target=self.target_id,
            relation=relation_for_kind(self.kind),
            source_key=self.name or "",
            handles=Handles(
                source=handle_id_to_api(self.source_handle),
                target=handle_id_to_api(self.target_handle),
            ),
            label_position=self.label_position,
            label_offset=Point(self.label_offset.x, self.label_offset.y),
        )

    def to_dict(self) -> Dict[str, object]:
        return {
            "id": self.id,
            "source": self.source_id,
            "target": self.target_id,
            "kind": self.kind,
            "name": self.name,
            "sourceHandle": self.source_handle,
            "targetHandle": self.target_handle,
            "labelPosition": self.label_position,
            "labelOffset": self.label_offset.to_dict(),
            "style": self.style.to_dict(),
        }

    def __repr__(self) -> str:
        return f"SchemaEdgeModel(id={self.id!r})"
