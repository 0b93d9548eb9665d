from __future__ import annotations

import argparse
import json
import os
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

import yaml

from .diagram.edges import DEFAULT_EDGE_PRIORITIES, EDGE_KINDS
from .diagram.layout import DiagramConfig
from .entities import DEFAULT_ENTITY_ID_FIELDS, DEFAULT_SCHEMA_ID_FIELDS, GtsConfig

# --------
# Defaults
# --------
DEFAULT_NODE_WIDTH = 400.0
DEFAULT_NODE_HEIGHT = 300.0
DEFAULT_NODESEP = 250.0
DEFAULT_RANKSEP = 170.0
DEFAULT_WORKSPACE = "default"
LAYOUT_STORAGE_KINDS = {"file", "home", "sqlite", "none"}
ALLOWED_CONFIG_KEYS = {
    "entity_id_fields",
    "schema_id_fields",
    "node_width",
    "node_height",
    "nodesep",
    "ranksep",
    "edge_priorities",
    "workspace",
    "layout_storage",
    "layout_path",
    "json_logs",
    "log_level",
}
BOOL_CONFIG_KEYS = {"json_logs"}
FLOAT_CONFIG_KEYS = {"node_width", "node_height", "nodesep", "ranksep"}
LIST_CONFIG_KEYS = {"entity_id_fields", "schema_id_fields"}
PATH_CONFIG_KEYS = {"layout_path"}
STR_CONFIG_KEYS = {"workspace", "layout_storage", "log_level"}


@dataclass(frozen=True)
class ViewerConfig:
    # Entity identification
    entity_id_fields: Tuple[str, ...] = DEFAULT_ENTITY_ID_FIELDS
    schema_id_fields: Tuple[str, ...] = DEFAULT_SCHEMA_ID_FIELDS

    # Diagram layout
    node_width: float = DEFAULT_NODE_WIDTH
    node_height: float = DEFAULT_NODE_HEIGHT
    nodesep: float = DEFAULT_NODESEP
    ranksep: float = DEFAULT_RANKSEP
    edge_priorities: Dict[str, int] = field(default_factory=lambda: dict(DEFAULT_EDGE_PRIORITIES))

    # Layout persistence
    workspace: str = DEFAULT_WORKSPACE
    layout_storage: str = "file"  # file|home|sqlite|none
    layout_path: Optional[Path] = None  # repo root for "file", database file for "sqlite"

    # Logging
    json_logs: bool = False
    log_level: str = "INFO"

    def gts_config(self) -> GtsConfig:
        return GtsConfig(entity_id_fields=self.entity_id_fields, schema_id_fields=self.schema_id_fields)

    def diagram_config(self) -> DiagramConfig:
        return DiagramConfig(
            node_width=self.node_width,
            node_height=self.node_height,
            nodesep=self.nodesep,
            ranksep=self.ranksep,
            edge_priorities=dict(self.edge_priorities),
        )


def _parse_config_file(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")
    text = path.read_text(encoding="utf-8")
    try:
        if path.suffix.lower() == ".json":
            data = json.loads(text)
        else:
            # YAML is a superset of JSON
            data = yaml.safe_load(text) or {}
    except (ValueError, yaml.YAMLError) as e:
        raise ValueError(f"Failed to parse config file {path}: {e}") from e
    if not isinstance(data, dict):
        raise ValueError("Top-level config must be an object")
    return data


def _env_str(name: str) -> Optional[str]:
    raw = os.getenv(name)
    if raw is None:
        return None
    raw = raw.strip()
    if not raw:
        return None
    return raw


def _env_bool(name: str) -> Optional[bool]:
    raw = os.getenv(name)
    if raw is None:
        return None
    raw = raw.strip().lower()
    if not raw:
        return None
    return raw in {"1", "true", "yes", "on"}


def _env_float(name: str) -> Optional[float]:
    raw = _env_str(name)
    if raw is None:
        return None
    try:
        return float(raw)
    except ValueError:
        return None


def _coerce_bool(key: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        raw = value.strip().lower()
        if raw in {"1", "true", "yes", "on"}:
            return True
        if raw in {"0", "false", "no", "off"}:
            return False
    raise ValueError(f"Config field '{key}' must be a boolean")


def _coerce_float(key: str, value: Any) -> float:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    if isinstance(value, str) and value.strip():
        try:
            return float(value)
        except ValueError:
            pass
    raise ValueError(f"Config field '{key}' must be a number")


def _coerce_fields(key: str, value: Any) -> List[str]:
    if isinstance(value, str):
        return [v.strip() for v in value.split(",") if v.strip()]
    if isinstance(value, list) and all(isinstance(v, str) for v in value):
        return [v.strip() for v in value if v.strip()]
    raise ValueError(f"Config field '{key}' must be a list of strings or comma-separated string")


def _coerce_priorities(value: Any) -> Dict[str, int]:
    if not isinstance(value, Mapping):
        raise ValueError("Config field 'edge_priorities' must be a mapping of edge kind to integer")
    out: Dict[str, int] = {}
    for kind, priority in value.items():
        if kind not in EDGE_KINDS:
            raise ValueError(f"Unknown edge kind in 'edge_priorities': {kind}")
        if isinstance(priority, bool) or not isinstance(priority, int):
            raise ValueError(f"Priority for edge kind '{kind}' must be an integer")
        out[str(kind)] = priority
    return out


def _normalize_config_file(data: Dict[str, Any]) -> Dict[str, Any]:
    unknown = sorted(set(data.keys()) - ALLOWED_CONFIG_KEYS)
    if unknown:
        warnings.warn(f"Unknown config keys ignored: {', '.join(unknown)}")
    normalized: Dict[str, Any] = {}
    for key, value in data.items():
        if key not in ALLOWED_CONFIG_KEYS:
            continue
        if value is None:
            normalized[key] = None
            continue
        if key == "edge_priorities":
            normalized[key] = _coerce_priorities(value)
        elif key in LIST_CONFIG_KEYS:
            normalized[key] = _coerce_fields(key, value)
        elif key in BOOL_CONFIG_KEYS:
            normalized[key] = _coerce_bool(key, value)
        elif key in FLOAT_CONFIG_KEYS:
            normalized[key] = _coerce_float(key, value)
        elif key in PATH_CONFIG_KEYS:
            if isinstance(value, (str, Path)):
                normalized[key] = value
            else:
                raise ValueError(f"Config field '{key}' must be a string path")
        elif key in STR_CONFIG_KEYS:
            if isinstance(value, str):
                normalized[key] = value
            else:
                raise ValueError(f"Config field '{key}' must be a string")
    storage = normalized.get("layout_storage")
    if storage is not None:
        storage = str(storage).lower()
        if storage not in LAYOUT_STORAGE_KINDS:
            raise ValueError(
                f"Config field 'layout_storage' must be one of: {', '.join(sorted(LAYOUT_STORAGE_KINDS))}"
            )
        normalized["layout_storage"] = storage
    return _compact_dict(normalized)


def _compact_dict(data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Drop keys with None values so they don't override lower-precedence config.
    """
    return {k: v for k, v in data.items() if v is not None}


def _merge_dicts(a: Dict[str, Any], b: Dict[str, Any]) -> Dict[str, Any]:
    """
    Shallow merge: values in b override a.
    """
    merged = dict(a)
    merged.update(b)
    return merged


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="gts-viewer", description="GTS entity registry and diagram CLI")
    subparsers = parser.add_subparsers(dest="command", required=True)

    def add_common(p: argparse.ArgumentParser) -> None:
        p.add_argument("directory", type=Path, help="Directory containing GTS documents")
        p.add_argument("--config", type=Path, help="Optional YAML/JSON config file")
        p.add_argument(
            "--json-logs",
            action=argparse.BooleanOptionalAction,
            default=None,
            help="Enable JSON logs",
        )
        p.add_argument("--log-level", default=None, help="Log level (INFO, DEBUG, ...)")
        p.add_argument("--log-file", type=Path, default=None, help="Also append logs to this file")
        p.add_argument(
            "--entity-id-fields",
            default=None,
            help="Comma-separated candidate fields for entity ids, highest priority first",
        )
        p.add_argument(
            "--schema-id-fields",
            default=None,
            help="Comma-separated candidate fields for schema ids, highest priority first",
        )
        p.add_argument("--json", dest="json_output", action="store_true", help="Print JSON instead of tables")

    p_validate = subparsers.add_parser("validate", help="Validate every entity and report failures")
    add_common(p_validate)

    p_list = subparsers.add_parser("list", help="List schemas, objects and invalid files")
    add_common(p_list)

    p_diagram = subparsers.add_parser("diagram", help="Build the reference diagram rooted at one entity")
    add_common(p_diagram)
    p_diagram.add_argument("--root", required=True, help="Root entity id")
    p_diagram.add_argument("--save", action="store_true", help="Persist the computed layout")
    p_diagram.add_argument("--workspace", default=None, help=f"Layout workspace (default {DEFAULT_WORKSPACE})")
    p_diagram.add_argument(
        "--layout-storage",
        default=None,
        choices=sorted(LAYOUT_STORAGE_KINDS),
        help="Where layouts are kept (default: file under the source directory)",
    )
    p_diagram.add_argument("--layout-path", type=Path, default=None, help="Layout repo root or SQLite file")
    p_diagram.add_argument("--node-width", type=float, default=None, help=f"Node width (default {DEFAULT_NODE_WIDTH:g})")
    p_diagram.add_argument(
        "--node-height", type=float, default=None, help=f"Node height (default {DEFAULT_NODE_HEIGHT:g})"
    )
    p_diagram.add_argument("--nodesep", type=float, default=None, help=f"Node separation (default {DEFAULT_NODESEP:g})")
    p_diagram.add_argument("--ranksep", type=float, default=None, help=f"Rank separation (default {DEFAULT_RANKSEP:g})")

    p_suggest = subparsers.add_parser("suggest", help="Suggest entity ids close to a mistyped one")
    add_common(p_suggest)
    p_suggest.add_argument("entity_id", help="Entity id to look up")
    p_suggest.add_argument("--max-results", type=int, default=3, help="Number of suggestions (default 3)")

    return parser


def load_viewer_config(
    args: Optional[argparse.Namespace] = None,
    argv: Optional[list[str]] = None,
) -> Tuple[argparse.Namespace, ViewerConfig]:
    """
    Build ViewerConfig by merging defaults, optional config file, env vars, and CLI args.
    Precedence (low -> high): defaults < config file < env < CLI.

    Returns:
      (namespace, ViewerConfig); the namespace carries the subcommand and its positional arguments
    """
    ns = args if args is not None else build_parser().parse_args(argv)

    base: Dict[str, Any] = {
        "entity_id_fields": list(DEFAULT_ENTITY_ID_FIELDS),
        "schema_id_fields": list(DEFAULT_SCHEMA_ID_FIELDS),
        "node_width": DEFAULT_NODE_WIDTH,
        "node_height": DEFAULT_NODE_HEIGHT,
        "nodesep": DEFAULT_NODESEP,
        "ranksep": DEFAULT_RANKSEP,
        "edge_priorities": dict(DEFAULT_EDGE_PRIORITIES),
        "workspace": DEFAULT_WORKSPACE,
        "layout_storage": "file",
        "layout_path": None,
        "json_logs": False,
        "log_level": "INFO",
    }

    file_cfg: Dict[str, Any] = {}
    if getattr(ns, "config", None):
        file_cfg = _normalize_config_file(_parse_config_file(Path(ns.config)))

    env_cfg: Dict[str, Any] = _compact_dict(
        {
            "entity_id_fields": _env_str("GTS_VIEWER_ENTITY_ID_FIELDS"),
            "schema_id_fields": _env_str("GTS_VIEWER_SCHEMA_ID_FIELDS"),
            "node_width": _env_float("GTS_VIEWER_NODE_WIDTH"),
            "node_height": _env_float("GTS_VIEWER_NODE_HEIGHT"),
            "nodesep": _env_float("GTS_VIEWER_NODESEP"),
            "ranksep": _env_float("GTS_VIEWER_RANKSEP"),
            "workspace": _env_str("GTS_VIEWER_WORKSPACE"),
            "layout_storage": _env_str("GTS_VIEWER_LAYOUT_STORAGE"),
            "layout_path": _env_str("GTS_VIEWER_LAYOUT_PATH"),
            "json_logs": _env_bool("GTS_VIEWER_JSON_LOGS"),
            "log_level": _env_str("GTS_VIEWER_LOG_LEVEL"),
        }
    )

    cli_cfg: Dict[str, Any] = _compact_dict(
        {
            "entity_id_fields": getattr(ns, "entity_id_fields", None),
            "schema_id_fields": getattr(ns, "schema_id_fields", None),
            "node_width": getattr(ns, "node_width", None),
            "node_height": getattr(ns, "node_height", None),
            "nodesep": getattr(ns, "nodesep", None),
            "ranksep": getattr(ns, "ranksep", None),
            "workspace": getattr(ns, "workspace", None),
            "layout_storage": getattr(ns, "layout_storage", None),
            "layout_path": getattr(ns, "layout_path", None),
            "json_logs": getattr(ns, "json_logs", None),
            "log_level": getattr(ns, "log_level", None),
        }
    )

    merged = _merge_dicts(base, _merge_dicts(file_cfg, _merge_dicts(env_cfg, cli_cfg)))

    # env and CLI give field lists as comma-separated strings
    entity_fields = _coerce_fields("entity_id_fields", merged["entity_id_fields"])
    schema_fields = _coerce_fields("schema_id_fields", merged["schema_id_fields"])
    layout_storage = str(merged.get("layout_storage") or "file").lower()
    if layout_storage not in LAYOUT_STORAGE_KINDS:
        raise ValueError(f"layout_storage must be one of: {', '.join(sorted(LAYOUT_STORAGE_KINDS))}")
    layout_path_raw = merged.get("layout_path")

    cfg = ViewerConfig(
        entity_id_fields=tuple(entity_fields) or DEFAULT_ENTITY_ID_FIELDS,
        schema_id_fields=tuple(schema_fields) or DEFAULT_SCHEMA_ID_FIELDS,
        node_width=float(merged["node_width"]),
        node_height=float(merged["node_height"]),
        nodesep=float(merged["nodesep"]),
        ranksep=float(merged["ranksep"]),
        edge_priorities=_merge_dicts(dict(DEFAULT_EDGE_PRIORITIES), dict(merged["edge_priorities"])),
        workspace=str(merged.get("workspace") or DEFAULT_WORKSPACE),
        layout_storage=layout_storage,
        layout_path=Path(layout_path_raw) if layout_path_raw else None,
        json_logs=bool(merged["json_logs"]),
        log_level=(merged.get("log_level") or "INFO").upper(),
    )
    return ns, cfg


def dump_config(cfg: ViewerConfig) -> Dict[str, Any]:
    return {
        "entity_id_fields": list(cfg.entity_id_fields),
        "schema_id_fields": list(cfg.schema_id_fields),
        "node_width": cfg.node_width,
        "node_height": cfg.node_height,
        "nodesep": cfg.nodesep,
        "ranksep": cfg.ranksep,
        "edge_priorities": dict(cfg.edge_priorities),
        "workspace": cfg.workspace,
        "layout_storage": cfg.layout_storage,
        "layout_path": str(cfg.layout_path) if cfg.layout_path else None,
        "json_logs": cfg.json_logs,
        "log_level": cfg.log_level,
    }
