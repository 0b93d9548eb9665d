from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from .entities import (
    GtsConfig,
    JsonEntity,
    JsonFile,
    JsonObj,
    JsonSchema,
    ValidationError,
    create_entity,
    get_gts_config,
)
from .ids import canonical_id, find_similar_entity_ids
from .jsonc import JsoncParseError, parse_yaml
from .logging import get_logger
from .validation import SchemaValidator

LOG = get_logger(__name__)

LAYOUT_DIR_NAME = ".gts-viewer"
GTS_CANDIDATE_SUFFIXES = (".json", ".jsonc", ".gts", ".yaml", ".yml")
_YAML_SUFFIXES = (".yaml", ".yml")
_LAYOUT_DIR_RE = re.compile(r"(^|[\\/])" + re.escape(LAYOUT_DIR_NAME) + r"[\\/]")

FetchFn = Callable[[str], Any]


@dataclass(frozen=True)
class SourceFile:
    """One ingestion input: ``content`` is parsed data or raw JSONC/YAML text."""

    path: str
    name: str
    content: Any


@dataclass(frozen=True)
class UnresolvedRef:
    """A reference to an id no entity carries, with "did you mean" candidates."""

    entity_id: str
    ref_id: str
    source_path: str
    suggestions: List[str]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entityId": self.entity_id,
            "refId": self.ref_id,
            "sourcePath": self.source_path,
            "suggestions": list(self.suggestions),
        }


def is_gts_candidate_file_name(file_name: str) -> bool:
    return file_name.lower().endswith(GTS_CANDIDATE_SUFFIXES)


def is_layout_storage_path(path: str) -> bool:
    """True for paths inside the persisted-layout directory, which must never be ingested."""
    return _LAYOUT_DIR_RE.search(path) is not None


def _read_text_file(path: str) -> Any:
    text = Path(path).read_text(encoding="utf-8")
    if path.lower().endswith(_YAML_SUFFIXES):
        try:
            return parse_yaml(text)
        except JsoncParseError as e:
            # raw text is re-parsed by JsonFile, which records the error
            LOG.warning("Failed to parse YAML", extra={"path": path, "error": str(e)})
    return text


def _coerce_source(item: Union[SourceFile, Mapping[str, Any]]) -> SourceFile:
    if isinstance(item, SourceFile):
        return item
    path = str(item["path"])
    name = str(item.get("name") or path.replace("\\", "/").rsplit("/", 1)[-1])
    return SourceFile(path=path, name=name, content=item.get("content"))


class JsonRegistry:
    """
    In-memory aggregate of one workspace snapshot: objects and schemas by id,
    files by path. Dicts keep insertion order, which consumers may rely on
    (the default file is the first one inserted).
    """

    def __init__(self, fetch: Optional[FetchFn] = None) -> None:
        self.json_objs: Dict[str, JsonObj] = {}
        self.json_schemas: Dict[str, JsonSchema] = {}
        self.json_files: Dict[str, JsonFile] = {}
        self.invalid_files: Dict[str, JsonFile] = {}
        self._fetch: FetchFn = fetch or _read_text_file
        self._fetch_cache: Dict[str, Any] = {}
        self._default_file_path: Optional[str] = None

    def reset(self) -> None:
        self.json_objs.clear()
        self.json_schemas.clear()
        self.json_files.clear()
        self.invalid_files.clear()
        self._fetch_cache.clear()
        self._default_file_path = None

    # ---- fetching ----

    def fetch_json(self, path: str, force: bool = False) -> Any:
        if not force and path in self._fetch_cache:
            return self._fetch_cache[path]
        content = self._fetch(path)
        self._fetch_cache[path] = content
        return content

    def upsert_file_from_path(self, path: str, force: bool = False) -> JsonFile:
        content = self.fetch_json(path, force=force)
        file = JsonFile(path, _file_name(path), content)
        self.json_files[path] = file
        return file

    # ---- classification ----

    def _process_file_content(self, path: str, name: str, content: Any, cfg: GtsConfig) -> None:
        json_file = JsonFile(path, name, content)
        if not json_file.is_parsed:
            LOG.warning("Unparsable file", extra={"path": path, "error": json_file.parse_error})
            self.invalid_files[path] = json_file
            return

        has_gts_entities = False
        for seq, item in json_file.sequence_content.items():
            entity = create_entity(
                file=json_file,
                list_sequence=seq if json_file.is_list else None,
                content=item,
                cfg=cfg,
            )
            if not entity.is_gts_entity():
                continue
            has_gts_entities = True
            if isinstance(entity, JsonSchema):
                self.json_schemas[entity.id] = entity
            else:
                self.json_objs[entity.id] = entity

        if has_gts_entities:
            self.invalid_files.pop(path, None)
            self.json_files.setdefault(path, json_file)
            return
        json_file.validation.add(
            ValidationError(
                instance_path="",
                schema_path="#",
                keyword="gts",
                message="No GTS entities found in file",
                params={"path": path},
            )
        )
        self.invalid_files[path] = json_file

    def scan_file(self, path: str, cfg: Union[GtsConfig, Mapping[str, Any], None] = None) -> bool:
        """Fetch and classify one file. Returns False when the file was skipped or could not be read."""
        if not is_gts_candidate_file_name(path) or is_layout_storage_path(path):
            return False
        try:
            content = self.fetch_json(path)
        except (OSError, ValueError) as e:
            LOG.error("Failed to scan file", extra={"path": path, "error": str(e)})
            return False
        self._process_file_content(path, _file_name(path), content, get_gts_config(cfg))
        return True

    def ingest_files(
        self,
        files: Iterable[Union[SourceFile, Mapping[str, Any]]],
        cfg: Union[GtsConfig, Mapping[str, Any], None] = None,
    ) -> None:
        """
        Union-merge a batch into the registry, then validate everything.
        Call reset() first for a fresh snapshot. Validation must follow
        classification so every schema is present before objects are checked.
        """
        gts_cfg = get_gts_config(cfg)
        count = 0
        for item in files:
            source = _coerce_source(item)
            if is_layout_storage_path(source.path):
                LOG.debug("Skipping layout storage file", extra={"path": source.path})
                continue
            try:
                self._process_file_content(source.path, source.name, source.content, gts_cfg)
                count += 1
            except (TypeError, ValueError, RecursionError) as e:
                LOG.error("Failed to process file", extra={"path": source.path, "error": str(e)})
        LOG.info(
            "Ingested files",
            extra={
                "step": "ingest",
                "phase": "complete",
                "files": count,
                "schemas": len(self.json_schemas),
                "objects": len(self.json_objs),
                "invalid_files": len(self.invalid_files),
            },
        )
        self.validate_entities()

    # ---- validation ----

    def resolve_schema(self, schema_id: str) -> Optional[JsonSchema]:
        """Identifier lookup only; file paths are never consulted."""
        return self.json_schemas.get(canonical_id(schema_id))

    def validate_entity(self, entity: JsonEntity, validator: Optional[SchemaValidator] = None) -> None:
        validator = validator or SchemaValidator(self.resolve_schema)
        if isinstance(entity, JsonSchema):
            entity.validation = validator.validate_schema(entity)
        else:
            schema = self.resolve_schema(entity.schema_id) if entity.schema_id else None
            entity.validation = validator.validate_object(entity, schema)

    def validate_entities(self) -> None:
        """Schemas first (meta-validation), then every object against its schema."""
        validator = SchemaValidator(self.resolve_schema)
        for schema in self.json_schemas.values():
            self.validate_entity(schema, validator)
        for obj in self.json_objs.values():
            self.validate_entity(obj, validator)
        invalid = sum(1 for e in self.iter_entities() if not e.validation.valid)
        LOG.info(
            "Validated entities",
            extra={"step": "validate", "phase": "complete", "invalid_entities": invalid},
        )

    # ---- default file ----

    def set_default_file(self, path_or_none: Optional[str]) -> None:
        if path_or_none:
            self._default_file_path = path_or_none
            return
        self._default_file_path = next(iter(self.json_files), None)

    def get_default_file_path(self) -> Optional[str]:
        return self._default_file_path or None

    def get_default_file(self) -> Optional[JsonFile]:
        if not self._default_file_path:
            return None
        return self.json_files.get(self._default_file_path)

    # ---- lookups ----

    def get_schema(self, entity_id: str) -> Optional[JsonSchema]:
        return self.json_schemas.get(canonical_id(entity_id))

    def get_object(self, entity_id: str) -> Optional[JsonObj]:
        return self.json_objs.get(canonical_id(entity_id))

    def get_entity(self, entity_id: str) -> Optional[Union[JsonObj, JsonSchema]]:
        return self.get_schema(entity_id) or self.get_object(entity_id)

    def iter_entities(self) -> Iterable[Union[JsonObj, JsonSchema]]:
        yield from self.json_schemas.values()
        yield from self.json_objs.values()

    def all_entity_ids(self) -> List[str]:
        return list(dict.fromkeys([*self.json_schemas, *self.json_objs]))

    def suggest(self, entity_id: str, max_results: int = 3) -> List[str]:
        return find_similar_entity_ids(canonical_id(entity_id), self.all_entity_ids(), max_results)

    def find_unresolved_refs(self, max_suggestions: int = 3) -> List[UnresolvedRef]:
        """
        References (gts ids and non-local ``$ref``s) that no entity carries.
        Not an ingestion error; presentation layers decide how to flag them.
        """
        known = set(self.all_entity_ids())
        out: List[UnresolvedRef] = []
        for entity in self.iter_entities():
            refs = list(entity.gts_refs)
            if isinstance(entity, JsonSchema):
                refs.extend(r for r in entity.schema_refs if not r.id.startswith("#"))
            for ref in refs:
                if ref.id in known:
                    continue
                out.append(
                    UnresolvedRef(
                        entity_id=entity.id,
                        ref_id=ref.id,
                        source_path=ref.source_path,
                        suggestions=self.suggest(ref.id, max_suggestions),
                    )
                )
        return out

    # ---- listings ----

    def sorted_objects(self) -> List[JsonObj]:
        return sorted(self.json_objs.values(), key=_entity_sort_key)

    def sorted_schemas(self) -> List[JsonSchema]:
        return sorted(self.json_schemas.values(), key=_entity_sort_key)

    def sorted_invalid_files(self) -> List[JsonFile]:
        return sorted(self.invalid_files.values(), key=lambda f: f.name)


def _entity_sort_key(entity: JsonEntity) -> str:
    return entity.file.name if entity.file else entity.id


def _file_name(path: str) -> str:
    return path.replace("\\", "/").rsplit("/", 1)[-1] or path


def ingest_sources(
    files: Sequence[Union[SourceFile, Mapping[str, Any]]],
    cfg: Union[GtsConfig, Mapping[str, Any], None] = None,
) -> JsonRegistry:
    """Build a fresh registry from a batch; swap it in only once this returns."""
    registry = JsonRegistry()
    registry.ingest_files(files, cfg)
    registry.set_default_file(None)
    return registry
