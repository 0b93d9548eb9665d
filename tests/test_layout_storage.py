from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Optional

import pytest

from gts_viewer.diagram import DiagramRegistry
from gts_viewer.layout import (
    CanvasState,
    FileLayoutStorage,
    LayoutEdge,
    LayoutNode,
    LayoutSaveRequest,
    LayoutSnapshot,
    LayoutTarget,
    Point,
    SqliteLayoutStorage,
    sanitize_filename,
)
from gts_viewer.layout.types import HandlePosition
from gts_viewer.registry import JsonRegistry, ingest_sources
from gts_viewer.util.errors import LayoutStorageError

SCHEMA_URL = "http://json-schema.org/draft-07/schema#"
EVENT_ID = "gts.x.core.events.event.v1~"
TOPIC_ID = "gts.x.core.events.topic.v1~"


def _registry() -> JsonRegistry:
    event = {
        "$schema": SCHEMA_URL,
        "$id": EVENT_ID,
        "type": "object",
        "properties": {"topic": {"$ref": TOPIC_ID}},
    }
    topic = {"$schema": SCHEMA_URL, "$id": TOPIC_ID, "type": "object"}
    return ingest_sources(
        [
            {"path": "schemas/event.schema.json", "name": "event.schema.json", "content": event},
            {"path": "schemas/topic.schema.json", "name": "topic.schema.json", "content": topic},
        ]
    )


def _request(target: LayoutTarget, x: float = 10.0) -> LayoutSaveRequest:
    return LayoutSaveRequest(
        target=target,
        canvas=CanvasState(scale=1.5, pan=Point(3, 4)),
        nodes=[
            LayoutNode(
                id=target.id,
                filename=target.filename,
                schema_id=target.schema_id,
                type="schema",
                position=Point(x, 20),
            )
        ],
        edges=[],
        meta={"note": "unit"},
    )


def _target(workspace: Optional[str] = None) -> LayoutTarget:
    return LayoutTarget(id=EVENT_ID, filename="event.schema.json", schema_id=SCHEMA_URL, workspace_name=workspace)


def test_sanitize_filename() -> None:
    assert sanitize_filename("gts.x.core.events.event.v1~") == "gts_x_core_events_event_v1_"
    assert sanitize_filename("a-b_c/d e") == "a-b_c_d_e"


def test_file_storage_round_trip_and_version_bump(tmp_path: Path) -> None:
    storage = FileLayoutStorage.for_repo(tmp_path)
    assert storage.get_latest_layout(_target()) is None

    first = storage.save_layout(_request(_target()))
    assert first.version == "1"
    assert first.layout_id.startswith("layout_gts_x_core_events_event_v1_")
    assert first.created_at.endswith("Z")

    path = tmp_path / ".gts-viewer" / "gts_x_core_events_event_v1__event_schema_json.json"
    assert path.exists()
    on_disk: Dict[str, Any] = json.loads(path.read_text(encoding="utf-8"))
    assert on_disk["target"]["schemaId"] == SCHEMA_URL
    assert on_disk["canvas"] == {"scale": 1.5, "pan": {"x": 3, "y": 4}}

    second = storage.save_layout(_request(_target(), x=99))
    assert second.version == "2"
    assert second.layout_id == first.layout_id

    latest = storage.get_latest_layout(_target())
    assert latest is not None
    assert latest.version == "2"
    assert latest.node(EVENT_ID).position == Point(99, 20)
    assert [v.version for v in storage.list_versions(_target())] == ["2"]


def test_file_storage_requires_full_target(tmp_path: Path) -> None:
    storage = FileLayoutStorage.for_repo(tmp_path)
    storage.save_layout(_request(_target()))
    partial = {"id": EVENT_ID, "filename": "event.schema.json"}
    assert storage.get_latest_layout(partial) is None
    full = {"id": EVENT_ID, "filename": "event.schema.json", "schemaId": SCHEMA_URL}
    assert storage.get_latest_layout(full) is not None


def test_file_storage_ignores_corrupt_file(tmp_path: Path) -> None:
    storage = FileLayoutStorage.for_repo(tmp_path)
    path = storage.layout_path(_target())
    path.parent.mkdir(parents=True)
    path.write_text("{not json", encoding="utf-8")
    assert storage.get_latest_layout(_target()) is None
    assert storage.save_layout(_request(_target())).version == "1"


def test_home_storage_location(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setenv("HOME", str(tmp_path))
    storage = FileLayoutStorage.for_home()
    assert storage.layouts_dir == tmp_path / ".gts-viewer" / "layouts"


def test_sqlite_storage_versions_and_restore(tmp_path: Path) -> None:
    with SqliteLayoutStorage(tmp_path / "layouts.db") as storage:
        assert storage.get_latest_layout(_target()) is None
        first = storage.save_layout(_request(_target(), x=1))
        second = storage.save_layout(_request(_target(), x=2))
        assert (first.version, second.version) == ("1", "2")
        assert first.layout_id == second.layout_id
        assert second.meta == {"note": "unit"}

        latest = storage.get_latest_layout({"id": EVENT_ID})
        assert latest is not None
        assert latest.node(EVENT_ID).position.x == 2
        assert [v.version for v in storage.list_versions(_target())] == ["2", "1"]

        restored = storage.restore_version(first.layout_id, "1")
        assert restored is not None
        assert restored.version == "3"
        assert storage.get_latest_layout(_target()).node(EVENT_ID).position.x == 1
        assert storage.get_version(first.layout_id, "99") is None
        assert storage.get_version("not-a-number", "1") is None


def test_sqlite_storage_keeps_workspaces_apart(tmp_path: Path) -> None:
    db = tmp_path / "nested" / "layouts.db"
    with SqliteLayoutStorage(db) as storage:
        storage.save_layout(_request(_target("team-a"), x=5))
        assert storage.get_latest_layout(_target("team-b")) is None
        assert storage.get_latest_layout(_target()) is None
        assert storage.get_latest_layout(_target("team-a")).node(EVENT_ID).position.x == 5

    # history survives reopening
    with SqliteLayoutStorage(db, default_workspace="team-a") as reopened:
        assert reopened.get_latest_layout({"id": EVENT_ID}) is not None


def test_sqlite_storage_open_failure(tmp_path: Path) -> None:
    blocker = tmp_path / "file"
    blocker.write_text("x", encoding="utf-8")
    with pytest.raises(LayoutStorageError):
        SqliteLayoutStorage(blocker / "layouts.db")


def test_snapshot_wire_format() -> None:
    data = {
        "target": {"id": EVENT_ID, "filename": "event.schema.json", "schemaId": SCHEMA_URL},
        "canvas": {"scale": 2, "pan": {"x": 1, "y": 2}},
        "nodes": [
            {
                "id": EVENT_ID,
                "filename": "event.schema.json",
                "schemaId": SCHEMA_URL,
                "type": "schema",
                "position": {"x": 5, "y": 6},
                "expansion": {"expanded": False, "sections": {"properties/topic/x": True}},
            }
        ],
        "edges": [
            {
                "id": "e1",
                "source": EVENT_ID,
                "target": TOPIC_ID,
                "relation": "bogus",
                "sourceKey": "properties.topic.$ref",
                "handles": {"source": {"side": "Right", "pct": 0.25}},
                "labelPosition": 0.3,
            }
        ],
        "layoutId": "7",
        "version": "4",
        "createdAt": "2024-01-01T00:00:00.000Z",
    }
    snapshot = LayoutSnapshot.from_dict(data)
    assert snapshot.edges[0].relation == "other"
    assert snapshot.edges[0].handles.source == HandlePosition("Right", 0.25)
    assert snapshot.edges[0].handles.target is None
    assert snapshot.nodes[0].expansion.expanded is False
    assert snapshot.to_dict()["layoutId"] == "7"
    assert LayoutEdge.from_dict({"id": "x"}).handles is None

    with pytest.raises(ValueError):
        HandlePosition.from_dict({"side": "Middle", "pct": 0.5})


def test_diagram_save_then_reload_applies_overrides(tmp_path: Path) -> None:
    storage = FileLayoutStorage.for_repo(tmp_path)
    registry = _registry()

    diagram = DiagramRegistry().get_or_create(registry, EVENT_ID)
    assert diagram.load_layout(storage) is False
    assert diagram.snapshot_checked

    topic = diagram.get_node_model(TOPIC_ID)
    topic.update_position(Point(1234, 567))
    topic.toggle_expanded()
    diagram.toggle_raw_view(TOPIC_ID)
    edge = diagram.rendered_edges[0]
    edge.update_handles(source_handle="bottom-3", target_handle="top-1")
    edge.update_label_position(0.8, Point(4, -4))
    assert diagram.is_dirty()

    snapshot = diagram.save_layout(storage, meta={"by": "test"})
    assert snapshot.version == "1"
    assert not diagram.is_dirty()
    saved_edge = snapshot.edge(edge.id)
    assert saved_edge is not None
    assert saved_edge.relation == "ref"
    assert saved_edge.handles.source == HandlePosition("Bottom", 0.75)

    fresh = DiagramRegistry().get_or_create(_registry(), EVENT_ID)
    assert fresh.load_layout(storage) is True
    assert not fresh.is_dirty()
    fresh_topic = fresh.get_node_model(TOPIC_ID)
    assert fresh_topic.position == Point(1234, 567)
    assert fresh_topic.expanded is False
    assert fresh_topic.raw_view is True
    fresh_edge = fresh.get_edge_model(edge.id)
    assert (fresh_edge.source_handle, fresh_edge.target_handle) == ("bottom-3", "top-1")
    assert fresh_edge.label_position == 0.8
    assert fresh_edge.label_offset == Point(4, -4)


def test_apply_layout_ignores_vanished_nodes_and_keeps_new_ones() -> None:
    diagram = DiagramRegistry().get_or_create(_registry(), EVENT_ID)
    computed_topic = diagram.get_node_model(TOPIC_ID).position
    snapshot = LayoutSnapshot(
        target=diagram.layout_target(),
        canvas=CanvasState(scale=0.5, pan=Point(7, 8)),
        nodes=[
            LayoutNode(id=EVENT_ID, filename="", schema_id="", type="schema", position=Point(-50, -60)),
            LayoutNode(id="gts.x.core.events.gone.v1~", filename="", schema_id="", type="schema", position=Point()),
        ],
        edges=[LayoutEdge(id="missing|edge|ref|x", source="a", target="b", relation="ref", source_key="x")],
    )
    diagram.apply_layout(snapshot)
    assert diagram.get_node_model(EVENT_ID).position == Point(-50, -60)
    assert diagram.get_node_model(TOPIC_ID).position == computed_topic
    assert "gts.x.core.events.gone.v1~" not in diagram.node_map
    assert diagram.get_viewport().zoom == 0.5
    assert not diagram.is_dirty()


def test_layout_target_for_root() -> None:
    diagram = DiagramRegistry().get_or_create(_registry(), EVENT_ID)
    target = diagram.layout_target("ws")
    assert target == LayoutTarget(
        id=EVENT_ID, filename="event.schema.json", schema_id=SCHEMA_URL, workspace_name="ws"
    )
    request = diagram.build_save_request("ws")
    assert {n.id for n in request.nodes} == {EVENT_ID, TOPIC_ID}
    assert all(n.extra == {"rawView": False} for n in request.nodes)


def test_root_without_schema_fields_reloads_its_layout(tmp_path: Path) -> None:
    topic_id = "gts.x.core.events.topic.v1"

    def _loose_registry() -> JsonRegistry:
        return ingest_sources([{"path": "data/topic.json", "name": "topic.json", "content": {"id": topic_id}}])

    storage = FileLayoutStorage.for_repo(tmp_path)
    diagram = DiagramRegistry().get_or_create(_loose_registry(), topic_id)
    assert diagram.layout_target().schema_id == "data/topic.json"
    diagram.get_node_model(topic_id).update_position(Point(42, 24))
    assert diagram.save_layout(storage).version == "1"

    fresh = DiagramRegistry().get_or_create(_loose_registry(), topic_id)
    assert fresh.load_layout(storage) is True
    assert fresh.get_node_model(topic_id).position == Point(42, 24)
    assert fresh.save_layout(storage).version == "2"
