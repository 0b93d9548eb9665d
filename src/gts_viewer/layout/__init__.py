from .storage import FileLayoutStorage, LayoutStorage, SqliteLayoutStorage, sanitize_filename
from .types import (
    CanvasState,
    ExpansionState,
    HandlePosition,
    Handles,
    LayoutEdge,
    LayoutNode,
    LayoutSaveRequest,
    LayoutSnapshot,
    LayoutTarget,
    LayoutVersionInfo,
    Point,
    Size,
)

__all__ = [
    "CanvasState",
    "ExpansionState",
    "FileLayoutStorage",
    "HandlePosition",
    "Handles",
    "LayoutEdge",
    "LayoutNode",
    "LayoutSaveRequest",
    "LayoutSnapshot",
    "LayoutStorage",
    "LayoutTarget",
    "LayoutVersionInfo",
    "Point",
    "Size",
    "SqliteLayoutStorage",
    "sanitize_filename",
]
