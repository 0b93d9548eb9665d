from __future__ import annotations

from typing import Any, Dict, Optional, Sequence

from rich.console import Console
from rich.table import Table

from ..entities import JsonEntity, JsonFile


def _error_summary(messages: Sequence[str], *, max_errors: int = 2) -> str:
    if not messages:
        return ""
    shown = list(messages[:max_errors])
    tail = len(messages) - len(shown)
    rendered = "; ".join(shown)
    if tail > 0:
        rendered = f"{rendered} (+{tail} more)"
    return rendered


def render_registry_summary_table(
    *,
    enabled: bool,
    status: str,
    metrics: Dict[str, Any],
    directory: str,
    console: Optional[Console] = None,
) -> None:
    if not enabled:
        return
    table = Table(title="Registry Summary", show_header=True, header_style="bold")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="white")
    table.add_row("Status", status)
    table.add_row("Directory", directory)
    table.add_row("Schemas", str(metrics.get("schemas", 0)))
    table.add_row("Objects", str(metrics.get("objects", 0)))
    table.add_row("Invalid entities", str(metrics.get("invalid_entities", 0)))
    table.add_row("Invalid files", str(metrics.get("invalid_files", 0)))
    table.add_row("Unresolved references", str(metrics.get("unresolved_refs", 0)))
    (console or Console()).print(table)


def render_entities_table(
    *,
    enabled: bool,
    title: str,
    entities: Sequence[JsonEntity],
    console: Optional[Console] = None,
) -> None:
    if not enabled:
        return
    table = Table(title=title, show_header=True, header_style="bold")
    table.add_column("Id", style="cyan")
    table.add_column("Schema", style="white")
    table.add_column("File", style="white")
    table.add_column("Valid", style="white")
    table.add_column("Errors", style="red")
    for entity in entities:
        table.add_row(
            entity.id,
            entity.schema_id or "",
            entity.file_path or "",
            "yes" if entity.validation.valid else "no",
            _error_summary([f"{e.instance_path or '/'}: {e.message}" for e in entity.validation.errors]),
        )
    (console or Console()).print(table)


def render_invalid_files_table(
    *,
    enabled: bool,
    files: Sequence[JsonFile],
    console: Optional[Console] = None,
) -> None:
    if not enabled or not files:
        return
    table = Table(title="Invalid Files", show_header=True, header_style="bold")
    table.add_column("Path", style="cyan")
    table.add_column("Reason", style="red")
    for f in files:
        table.add_row(f.path, _error_summary([e.message for e in f.validation.errors]))
    (console or Console()).print(table)


def render_diagram_table(
    *,
    enabled: bool,
    diagram: Dict[str, Any],
    console: Optional[Console] = None,
) -> None:
    if not enabled:
        return
    nodes = Table(title=f"Diagram {diagram.get('rootId', '')}", show_header=True, header_style="bold")
    nodes.add_column("Node", style="cyan")
    nodes.add_column("Type", style="white")
    nodes.add_column("Position", style="white")
    for node in diagram.get("nodes", []):
        pos = node.get("position") or {}
        nodes.add_row(node.get("id", ""), node.get("type", ""), f"({pos.get('x', 0):g}, {pos.get('y', 0):g})")

    edges = Table(title="Edges", show_header=True, header_style="bold")
    edges.add_column("Source", style="cyan")
    edges.add_column("Target", style="cyan")
    edges.add_column("Kind", style="white")
    edges.add_column("Handles", style="white")
    for edge in diagram.get("edges", []):
        edges.add_row(
            edge.get("source", ""),
            edge.get("target", ""),
            edge.get("kind", ""),
            f"{edge.get('sourceHandle', '')} -> {edge.get('targetHandle', '')}",
        )
    out = console or Console()
    out.print(nodes)
    out.print(edges)
