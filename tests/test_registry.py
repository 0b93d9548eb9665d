from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List

from gts_viewer.entities import GtsConfig
from gts_viewer.registry import (
    JsonRegistry,
    SourceFile,
    ingest_sources,
    is_gts_candidate_file_name,
    is_layout_storage_path,
)

SCHEMA_URL = "http://json-schema.org/draft-07/schema#"
USER_SCHEMA_ID = "gts.x.core.events.user.v1~"

USER_SCHEMA: Dict[str, Any] = {
    "$schema": SCHEMA_URL,
    "$id": USER_SCHEMA_ID,
    "type": "object",
    "required": ["id", "email"],
    "properties": {"id": {"type": "string"}, "email": {"type": "string"}},
}


def _source(path: str, content: Any) -> Dict[str, Any]:
    return {"path": path, "name": path.rsplit("/", 1)[-1], "content": content}


def test_ingest_classifies_schemas_objects_and_invalid_files() -> None:
    registry = ingest_sources(
        [
            _source("schemas/user.schema.json", USER_SCHEMA),
            _source("objects/alice.json", {"id": f"{USER_SCHEMA_ID}x.core.events.alice.v1", "email": "a@x"}),
            _source("broken.json", '{"id": '),
            _source("package.json", {"name": "not-gts", "version": "1.0.0"}),
        ]
    )
    assert list(registry.json_schemas) == [USER_SCHEMA_ID]
    assert list(registry.json_objs) == [f"{USER_SCHEMA_ID}x.core.events.alice.v1"]
    assert set(registry.json_files) == {"schemas/user.schema.json", "objects/alice.json"}
    assert set(registry.invalid_files) == {"broken.json", "package.json"}

    broken = registry.invalid_files["broken.json"]
    assert not broken.is_parsed
    no_entities = registry.invalid_files["package.json"]
    assert no_entities.is_parsed
    assert no_entities.validation.errors[0].keyword == "gts"


def test_raw_jsonc_text_is_parsed() -> None:
    text = '{\n  // user\n  "id": "gts.x.core.events.user.v1~x.core.events.bob.v1",\n  "email": "b@x",\n}'
    registry = ingest_sources([SourceFile("bob.jsonc", "bob.jsonc", text)])
    assert f"{USER_SCHEMA_ID}x.core.events.bob.v1" in registry.json_objs


def test_array_files_produce_one_entity_per_item() -> None:
    registry = ingest_sources(
        [
            _source(
                "users.json",
                [
                    {"id": f"{USER_SCHEMA_ID}x.core.events.a.v1", "email": "a@x"},
                    {"id": f"{USER_SCHEMA_ID}x.core.events.b.v1", "email": "b@x"},
                ],
            )
        ]
    )
    entities = sorted(registry.json_objs.values(), key=lambda e: e.list_sequence)
    assert [e.list_sequence for e in entities] == [0, 1]
    assert all(e.file_path == "users.json" for e in entities)


def test_duplicate_ids_last_write_wins() -> None:
    entity_id = f"{USER_SCHEMA_ID}x.core.events.dup.v1"
    registry = ingest_sources(
        [
            _source("first.json", {"id": entity_id, "email": "first@x"}),
            _source("second.json", {"id": entity_id, "email": "second@x"}),
        ]
    )
    assert len(registry.json_objs) == 1
    winner = registry.json_objs[entity_id]
    assert winner.file_path == "second.json"
    assert winner.content["email"] == "second@x"


def test_layout_storage_paths_are_skipped() -> None:
    registry = ingest_sources(
        [
            _source(".gts-viewer/layout_x.json", {"id": f"{USER_SCHEMA_ID}x.core.events.cached.v1"}),
            _source("repo/.gts-viewer/other.json", {"id": f"{USER_SCHEMA_ID}x.core.events.cached2.v1"}),
        ]
    )
    assert registry.json_objs == {}
    assert registry.invalid_files == {}
    assert is_layout_storage_path("a\\.gts-viewer\\b.json")
    assert not is_layout_storage_path("gts-viewer/b.json")


def test_ingest_unions_until_reset() -> None:
    registry = JsonRegistry()
    registry.ingest_files([_source("a.json", {"id": f"{USER_SCHEMA_ID}x.core.events.a.v1"})])
    registry.ingest_files([_source("b.json", {"id": f"{USER_SCHEMA_ID}x.core.events.b.v1"})])
    assert len(registry.json_objs) == 2
    registry.reset()
    assert registry.json_objs == {}
    assert registry.json_files == {}
    assert registry.get_default_file_path() is None


def test_validation_runs_after_all_files_are_classified() -> None:
    # object listed before its schema still validates against it
    registry = ingest_sources(
        [
            _source("alice.json", {"id": f"{USER_SCHEMA_ID}x.core.events.alice.v1"}),
            _source("user.schema.json", USER_SCHEMA),
        ]
    )
    alice = registry.get_object(f"{USER_SCHEMA_ID}x.core.events.alice.v1")
    assert alice is not None
    assert [e.message for e in alice.validation.errors] == ["missing required property 'email'"]
    assert registry.get_schema(USER_SCHEMA_ID).validation.valid


def test_unknown_schema_is_validation_data() -> None:
    registry = ingest_sources([_source("o.json", {"id": "gts.x.core.events.ghost.v1~x.core.events.o.v1"})])
    obj = registry.get_object("gts.x.core.events.ghost.v1~x.core.events.o.v1")
    assert obj is not None
    assert obj.validation.errors[0].keyword == "schema"


def test_default_file_is_first_inserted() -> None:
    registry = ingest_sources(
        [
            _source("z.json", {"id": f"{USER_SCHEMA_ID}x.core.events.z.v1"}),
            _source("a.json", {"id": f"{USER_SCHEMA_ID}x.core.events.a.v1"}),
        ]
    )
    assert registry.get_default_file_path() == "z.json"
    registry.set_default_file("a.json")
    assert registry.get_default_file().path == "a.json"
    registry.set_default_file(None)
    assert registry.get_default_file_path() == "z.json"


def test_lookups_normalize_wrapped_ids() -> None:
    registry = ingest_sources([_source("user.schema.json", USER_SCHEMA)])
    assert registry.get_schema("gts://gts.x.core.events.user.v1~") is not None
    assert registry.get_entity("gts.x.core.events.user.v1%7E") is not None
    assert registry.resolve_schema("schemas/user.schema.json") is None


def test_suggest_and_unresolved_refs() -> None:
    registry = ingest_sources(
        [
            _source("user.schema.json", USER_SCHEMA),
            _source(
                "order.json",
                {
                    "id": "gts.x.core.events.order.v1~x.core.events.o1.v1",
                    "customer": "gts.x.core.events.usr.v1~",
                },
            ),
        ]
    )
    assert registry.suggest("gts.x.core.events.usr.v1~")[0] == USER_SCHEMA_ID
    unresolved = {(u.entity_id, u.ref_id) for u in registry.find_unresolved_refs()}
    assert ("gts.x.core.events.order.v1~x.core.events.o1.v1", "gts.x.core.events.usr.v1~") in unresolved
    by_ref = {u.ref_id: u for u in registry.find_unresolved_refs()}
    assert by_ref["gts.x.core.events.usr.v1~"].suggestions[0] == USER_SCHEMA_ID
    # an object's own id is never "unresolved"
    assert "gts.x.core.events.order.v1~x.core.events.o1.v1" not in by_ref


def test_custom_id_fields_per_batch() -> None:
    cfg = GtsConfig(entity_id_fields=("key",), schema_id_fields=("kind",))
    registry = ingest_sources(
        [_source("k.json", {"key": "gts.x.core.events.thing.v1", "kind": "gts.x.core.events.kind.v1~"})],
        cfg,
    )
    obj = registry.get_object("gts.x.core.events.thing.v1")
    assert obj is not None
    assert obj.schema_id == "gts.x.core.events.kind.v1~"


def test_scan_file_uses_injected_fetch() -> None:
    calls: List[str] = []

    def _fetch(path: str) -> Any:
        calls.append(path)
        return {"id": f"{USER_SCHEMA_ID}x.core.events.fetched.v1"}

    registry = JsonRegistry(fetch=_fetch)
    assert registry.scan_file("remote/fetched.json")
    assert registry.scan_file("remote/fetched.json")
    assert calls == ["remote/fetched.json"]
    assert f"{USER_SCHEMA_ID}x.core.events.fetched.v1" in registry.json_objs
    assert not registry.scan_file("notes.txt")
    assert not registry.scan_file(".gts-viewer/x.json")


def test_upsert_file_from_path_refetches_when_forced() -> None:
    versions = iter([{"v": 1}, {"v": 2}])
    registry = JsonRegistry(fetch=lambda path: next(versions))

    assert registry.upsert_file_from_path("data/a.json").content == {"v": 1}
    assert registry.upsert_file_from_path("data/a.json").content == {"v": 1}
    refreshed = registry.upsert_file_from_path("data/a.json", force=True)
    assert refreshed.content == {"v": 2}
    assert refreshed.name == "a.json"
    assert registry.json_files["data/a.json"] is refreshed


def test_scan_file_isolates_read_errors(tmp_path: Path) -> None:
    registry = JsonRegistry()
    assert not registry.scan_file(str(tmp_path / "missing.json"))

    good = tmp_path / "good.json"
    good.write_text(json.dumps({"id": f"{USER_SCHEMA_ID}x.core.events.disk.v1"}), encoding="utf-8")
    assert registry.scan_file(str(good))
    assert registry.get_object(f"{USER_SCHEMA_ID}x.core.events.disk.v1") is not None


def test_scan_file_routes_bad_yaml_to_invalid_files(tmp_path: Path) -> None:
    bad = tmp_path / "bad.yaml"
    bad.write_text("a: [1, 2\n", encoding="utf-8")
    good = tmp_path / "good.yml"
    good.write_text(f"id: {USER_SCHEMA_ID}x.core.events.yaml.v1\n", encoding="utf-8")

    registry = JsonRegistry()
    assert registry.scan_file(str(bad))
    assert registry.scan_file(str(good))
    assert list(registry.invalid_files) == [str(bad)]
    assert not registry.invalid_files[str(bad)].is_parsed
    assert registry.get_object(f"{USER_SCHEMA_ID}x.core.events.yaml.v1") is not None


def test_sorted_listings() -> None:
    registry = ingest_sources(
        [
            _source("b.json", {"id": f"{USER_SCHEMA_ID}x.core.events.b.v1"}),
            _source("a.json", {"id": f"{USER_SCHEMA_ID}x.core.events.a.v1"}),
            _source("zz.json", "{"),
            _source("aa.json", "{"),
        ]
    )
    assert [o.file.name for o in registry.sorted_objects()] == ["a.json", "b.json"]
    assert [f.name for f in registry.sorted_invalid_files()] == ["aa.json", "zz.json"]


def test_candidate_file_names() -> None:
    for name in ("a.json", "a.JSONC", "a.gts", "a.yaml", "a.yml"):
        assert is_gts_candidate_file_name(name)
    assert not is_gts_candidate_file_name("a.txt")
