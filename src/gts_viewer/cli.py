from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Dict, Optional

from .config import ViewerConfig, dump_config, load_viewer_config
from .diagram import DiagramRegistry
from .layout import FileLayoutStorage, LayoutStorage, SqliteLayoutStorage
from .loader import load_directory
from .logging import LogConfig, add_run_log_file, get_logger, setup_logging
from .registry import LAYOUT_DIR_NAME, JsonRegistry, ingest_sources
from .util.errors import ConfigError, ExitCode, as_exit_code
from .util.rich_tables import (
    render_diagram_table,
    render_entities_table,
    render_invalid_files_table,
    render_registry_summary_table,
)
from .util.serialization import sanitize_for_json

LOG = get_logger(__name__)

SQLITE_LAYOUT_FILE = "layouts.db"


def _print_json(payload: Any) -> None:
    print(json.dumps(sanitize_for_json(payload), indent=2, ensure_ascii=False))


def _load_registry(directory: Path, cfg: ViewerConfig) -> JsonRegistry:
    files = load_directory(directory)
    return ingest_sources(files, cfg.gts_config())


def _registry_metrics(registry: JsonRegistry) -> Dict[str, int]:
    entities = list(registry.iter_entities())
    return {
        "schemas": len(registry.json_schemas),
        "objects": len(registry.json_objs),
        "invalid_entities": sum(1 for e in entities if not e.validation.valid),
        "invalid_files": len(registry.invalid_files),
        "unresolved_refs": len(registry.find_unresolved_refs()),
    }


def open_layout_storage(cfg: ViewerConfig, directory: Path) -> Optional[LayoutStorage]:
    """
    Storage selected by ``layout_storage``. The file backend defaults to the
    source directory so layouts travel with the repo they describe.
    """
    if cfg.layout_storage == "none":
        return None
    if cfg.layout_storage == "home":
        return FileLayoutStorage.for_home()
    if cfg.layout_storage == "sqlite":
        db_path = cfg.layout_path or (directory / LAYOUT_DIR_NAME / SQLITE_LAYOUT_FILE)
        return SqliteLayoutStorage(db_path, default_workspace=cfg.workspace)
    if cfg.layout_storage == "file":
        return FileLayoutStorage.for_repo(cfg.layout_path or directory)
    raise ConfigError(f"Unknown layout storage: {cfg.layout_storage}")


def cmd_validate(ns: argparse.Namespace, cfg: ViewerConfig) -> int:
    registry = _load_registry(ns.directory, cfg)
    metrics = _registry_metrics(registry)
    unparsable = [f for f in registry.sorted_invalid_files() if not f.is_parsed]
    failing = [e for e in registry.iter_entities() if not e.validation.valid]
    ok = not failing and not unparsable
    status = "OK" if ok else "FAILED"

    LOG.info(
        "Validation finished",
        extra={"step": "validate", "phase": "report", "status": status, **metrics},
    )
    if ns.json_output:
        _print_json(
            {
                "status": status,
                "metrics": metrics,
                "entities": failing,
                "invalidFiles": [
                    {"path": f.path, "validation": f.validation} for f in registry.sorted_invalid_files()
                ],
                "unresolvedRefs": registry.find_unresolved_refs(),
            }
        )
    else:
        render_registry_summary_table(enabled=True, status=status, metrics=metrics, directory=str(ns.directory))
        if failing:
            render_entities_table(enabled=True, title="Invalid Entities", entities=failing)
        render_invalid_files_table(enabled=True, files=registry.sorted_invalid_files())
    return int(ExitCode.OK) if ok else int(ExitCode.VALIDATION_FAILED)


def cmd_list(ns: argparse.Namespace, cfg: ViewerConfig) -> int:
    registry = _load_registry(ns.directory, cfg)
    if ns.json_output:
        _print_json(
            {
                "defaultFile": registry.get_default_file_path(),
                "schemas": registry.sorted_schemas(),
                "objects": registry.sorted_objects(),
                "invalidFiles": [f.path for f in registry.sorted_invalid_files()],
            }
        )
        return int(ExitCode.OK)
    render_entities_table(enabled=True, title="Schemas", entities=registry.sorted_schemas())
    render_entities_table(enabled=True, title="Objects", entities=registry.sorted_objects())
    render_invalid_files_table(enabled=True, files=registry.sorted_invalid_files())
    return int(ExitCode.OK)


def cmd_diagram(ns: argparse.Namespace, cfg: ViewerConfig) -> int:
    registry = _load_registry(ns.directory, cfg)
    diagrams = DiagramRegistry(cfg.diagram_config())
    diagram = diagrams.get_or_create(registry, ns.root)

    storage = open_layout_storage(cfg, ns.directory)
    layout: Dict[str, Any] = {"storage": cfg.layout_storage, "loaded": False, "saved": None}
    try:
        if storage is not None:
            layout["loaded"] = diagram.load_layout(storage, cfg.workspace)
            if ns.save:
                snapshot = diagram.save_layout(storage, cfg.workspace, meta={"config": dump_config(cfg)})
                layout["saved"] = {"layoutId": snapshot.layout_id, "version": snapshot.version}
    finally:
        if isinstance(storage, SqliteLayoutStorage):
            storage.close()

    payload = diagram.to_dict()
    if ns.json_output:
        payload["layout"] = layout
        _print_json(payload)
    else:
        render_diagram_table(enabled=True, diagram=payload)
    return int(ExitCode.OK)


def cmd_suggest(ns: argparse.Namespace, cfg: ViewerConfig) -> int:
    registry = _load_registry(ns.directory, cfg)
    entity = registry.get_entity(ns.entity_id)
    suggestions = registry.suggest(ns.entity_id, ns.max_results)
    if ns.json_output:
        _print_json({"entityId": ns.entity_id, "found": entity is not None, "suggestions": suggestions})
        return int(ExitCode.OK)
    if entity is not None:
        print(f"found: {entity.id}")
    for s in suggestions:
        print(s)
    return int(ExitCode.OK)


def main(argv: Optional[list[str]] = None) -> None:
    try:
        ns, cfg = load_viewer_config(argv=argv)
        setup_logging(LogConfig(level=cfg.log_level, json_logs=cfg.json_logs))
        if getattr(ns, "log_file", None):
            add_run_log_file(Path(ns.log_file))

        command = ns.command
        if command == "validate":
            code = cmd_validate(ns, cfg)
        elif command == "list":
            code = cmd_list(ns, cfg)
        elif command == "diagram":
            code = cmd_diagram(ns, cfg)
        elif command == "suggest":
            code = cmd_suggest(ns, cfg)
        else:
            raise ConfigError(f"Unknown command: {command}")

        sys.exit(code)
    except SystemExit:
        raise
    except BrokenPipeError:
        # Piping into `head` closes stdout early; exit quietly.
        sys.exit(0)
    except Exception as e:
        setup_logging(LogConfig())
        LOG.error("Execution failed", extra={"error": str(e)})
        sys.exit(as_exit_code(e))


if __name__ == "__main__":
    main()
