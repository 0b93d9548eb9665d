from .edges import EDGE_CONFIG, SchemaEdgeModel, api_handle_to_id, get_edge_priority, handle_id_to_api
from .layout import DiagramConfig, choose_edges, decide_side, distribute_handles, indices_for_count, layered_layout
from .model import DiagramModel, GlobalViewState, Viewport
from .nodes import SchemaNodeModel
from .registry import DiagramRegistry

__all__ = [
    "EDGE_CONFIG",
    "DiagramConfig",
    "DiagramModel",
    "DiagramRegistry",
    "GlobalViewState",
    "SchemaEdgeModel",
    "SchemaNodeModel",
    "Viewport",
    "api_handle_to_id",
    "choose_edges",
    "decide_side",
    "distribute_handles",
    "get_edge_priority",
    "handle_id_to_api",
    "indices_for_count",
    "layered_layout",
]
