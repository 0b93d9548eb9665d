from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from .ids import (
    GTS_PREFIX,
    IS_UUID_REGEX,
    canonical_id,
    instance_schema_prefix,
    is_type_identifier,
    is_valid_identifier,
    normalize,
)
from .jsonc import JsoncParseError, parse_jsonc

DEFAULT_ENTITY_ID_FIELDS: Tuple[str, ...] = (
    "$id",
    "gtsId",
    "gtsIid",
    "gtsOid",
    "gtsI",
    "gts_id",
    "gts_oid",
    "gts_iid",
    "id",
)
DEFAULT_SCHEMA_ID_FIELDS: Tuple[str, ...] = (
    "$schema",
    "gtsTid",
    "gtsT",
    "gts_t",
    "gts_tid",
    "type",
    "schema",
)
JSON_SCHEMA_URL_PREFIXES: Tuple[str, ...] = (
    "http://json-schema.org/",
    "https://json-schema.org/",
    "gts://",
    GTS_PREFIX,
)


@dataclass(frozen=True)
class GtsConfig:
    """Ordered candidate field names probed for entity ids and schema ids."""

    entity_id_fields: Tuple[str, ...] = DEFAULT_ENTITY_ID_FIELDS
    schema_id_fields: Tuple[str, ...] = DEFAULT_SCHEMA_ID_FIELDS


DEFAULT_GTS_CONFIG = GtsConfig()


def get_gts_config(cfg: Union[GtsConfig, Mapping[str, Any], None] = None) -> GtsConfig:
    """
    Merge caller overrides onto the defaults. Empty lists keep the default list.
    Accepts a GtsConfig or a mapping with ``entity_id_fields`` / ``schema_id_fields``.
    """
    if cfg is None:
        return DEFAULT_GTS_CONFIG
    if isinstance(cfg, GtsConfig):
        entity_fields: Sequence[str] = cfg.entity_id_fields
        schema_fields: Sequence[str] = cfg.schema_id_fields
    else:
        entity_fields = cfg.get("entity_id_fields") or ()
        schema_fields = cfg.get("schema_id_fields") or ()
    return GtsConfig(
        entity_id_fields=tuple(entity_fields) or DEFAULT_ENTITY_ID_FIELDS,
        schema_id_fields=tuple(schema_fields) or DEFAULT_SCHEMA_ID_FIELDS,
    )


@dataclass
class ValidationError:
    """One field-addressable validation failure."""

    instance_path: str
    schema_path: str
    keyword: str
    message: str
    params: Dict[str, Any] = field(default_factory=dict)
    data: Any = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "instancePath": self.instance_path,
            "schemaPath": self.schema_path,
            "keyword": self.keyword,
            "message": self.message,
            "params": dict(self.params),
        }
        if self.data is not None:
            out["data"] = self.data
        return out


@dataclass
class ValidationResult:
    valid: bool = True
    errors: List[ValidationError] = field(default_factory=list)

    def add(self, error: ValidationError) -> None:
        self.valid = False
        self.errors.append(error)

    def to_dict(self) -> Dict[str, Any]:
        return {"valid": self.valid, "errors": [e.to_dict() for e in self.errors]}


@dataclass(frozen=True)
class GtsRef:
    id: str
    source_path: str

    def to_dict(self) -> Dict[str, str]:
        return {"id": self.id, "sourcePath": self.source_path}


class JsonFile:
    """
    A source document. String content is parsed as JSONC; a parse failure is
    recorded on ``validation`` instead of raised.
    """

    def __init__(self, path: str, name: str, content: Any) -> None:
        self.path = path
        self.name = name
        self.content = content
        self.validation = ValidationResult()
        self.parse_error: Optional[str] = None

        if isinstance(content, str):
            try:
                self.content = parse_jsonc(content)
            except JsoncParseError as e:
                self.content = None
                self.parse_error = str(e)
                self.validation.add(
                    ValidationError(
                        instance_path="",
                        schema_path="#",
                        keyword="type",
                        message=f"Invalid JSONC: {e}",
                        params={"type": "object", "offset": e.offset},
                    )
                )

        items = self.content if isinstance(self.content, list) else [self.content]
        self.sequence_content: Dict[int, Any] = dict(enumerate(items)) if self.is_parsed else {}

    @property
    def is_parsed(self) -> bool:
        return self.parse_error is None

    @property
    def is_list(self) -> bool:
        return isinstance(self.content, list)

    @property
    def sequences_count(self) -> int:
        return len(self.sequence_content)

    def __repr__(self) -> str:
        return f"JsonFile(path={self.path!r}, valid={self.validation.valid})"


def _walk_gts_ids(node: Any, path: str, found: List[GtsRef]) -> None:
    if node is None:
        return
    if isinstance(node, str):
        candidate = normalize(node)
        if is_valid_identifier(candidate):
            found.append(GtsRef(candidate, path or "root"))
        return
    if isinstance(node, list):
        for index, item in enumerate(node):
            _walk_gts_ids(item, f"{path}[{index}]", found)
        return
    if isinstance(node, dict):
        for key, value in node.items():
            _walk_gts_ids(value, f"{path}.{key}" if path else str(key), found)


def _walk_refs(node: Any, path: str, found: List[GtsRef]) -> None:
    if isinstance(node, list):
        for index, item in enumerate(node):
            _walk_refs(item, f"{path}[{index}]", found)
        return
    if not isinstance(node, dict):
        return
    ref = node.get("$ref")
    if isinstance(ref, str):
        found.append(GtsRef(canonical_id(ref), f"{path}.$ref" if path else "$ref"))
    for key, value in node.items():
        if isinstance(value, (dict, list)):
            _walk_refs(value, f"{path}.{key}" if path else str(key), found)


def _dedupe(refs: List[GtsRef]) -> List[GtsRef]:
    return list(dict.fromkeys(refs))


def extract_gts_refs(content: Any) -> List[GtsRef]:
    found: List[GtsRef] = []
    _walk_gts_ids(content, "", found)
    return _dedupe(found)


def extract_schema_refs(content: Any) -> List[GtsRef]:
    found: List[GtsRef] = []
    _walk_refs(content, "", found)
    return _dedupe(found)


def first_non_empty_field(content: Any, fields: Sequence[str]) -> Optional[Tuple[str, str]]:
    """
    Probe ``fields`` in order. Identifier-looking values win over any other
    string; otherwise the first non-empty string wins.
    """
    if not isinstance(content, dict):
        return None
    for name in fields:
        value = content.get(name)
        if isinstance(value, str) and value.strip():
            candidate = normalize(value)
            if is_valid_identifier(candidate):
                return name, candidate
    for name in fields:
        value = content.get(name)
        if isinstance(value, str) and value.strip():
            return name, value
    return None


class JsonEntity:
    """Common base for objects and schemas; a pure function of its inputs."""

    is_schema = False

    def __init__(
        self,
        *,
        file: Optional[JsonFile],
        list_sequence: Optional[int],
        content: Any,
        cfg: Optional[GtsConfig] = None,
    ) -> None:
        cfg = get_gts_config(cfg)
        self.file = file
        self.list_sequence = list_sequence
        self.content = content
        self.validation = ValidationResult()
        self.selected_entity_id_field: Optional[str] = None
        self.selected_schema_id_field: Optional[str] = None
        self.gts_refs: List[GtsRef] = extract_gts_refs(content)
        description = content.get("description") if isinstance(content, dict) else None
        self.description: str = description if isinstance(description, str) else ""
        self.id: str = self._calc_entity_id(cfg)
        self.schema_id: Optional[str] = self._calc_schema_id(cfg)
        self.label: str = self._calc_label()

    def _fallback_id(self) -> str:
        path = self.file.path if self.file else ""
        if self.list_sequence is not None:
            return f"{path}#{self.list_sequence}"
        return path

    def _calc_entity_id(self, cfg: GtsConfig) -> str:
        candidate = first_non_empty_field(self.content, cfg.entity_id_fields)
        if candidate:
            self.selected_entity_id_field = candidate[0]
            return candidate[1]
        return self._fallback_id()

    def _calc_schema_id(self, cfg: GtsConfig) -> Optional[str]:
        prefix = instance_schema_prefix(self.id) if self.selected_entity_id_field else None
        if prefix:
            self.selected_schema_id_field = self.selected_entity_id_field
            return prefix
        candidate = first_non_empty_field(self.content, cfg.schema_id_fields)
        if candidate:
            self.selected_schema_id_field = candidate[0]
            return candidate[1]
        if is_type_identifier(self.id):
            return self.id.strip()
        return self._fallback_id() or None

    def _calc_label(self) -> str:
        if self.selected_entity_id_field:
            return self.id
        name = self.file.name if self.file else ""
        if self.list_sequence is not None:
            return f"{name}#{self.list_sequence}"
        return name or self.id

    @property
    def file_path(self) -> Optional[str]:
        return self.file.path if self.file else None

    def is_gts_entity(self) -> bool:
        if self.id.startswith(GTS_PREFIX):
            return True
        if self.gts_refs:
            return True
        if self.schema_id and self.schema_id.startswith(GTS_PREFIX):
            return True
        return False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "isSchema": self.is_schema,
            "schemaId": self.schema_id,
            "label": self.label,
            "file": self.file_path,
            "listSequence": self.list_sequence,
            "gtsRefs": [r.to_dict() for r in self.gts_refs],
            "validation": self.validation.to_dict(),
        }

    def __repr__(self) -> str:
        return f"{type(self).__name__}(id={self.id!r}, schema_id={self.schema_id!r})"


class JsonObj(JsonEntity):
    def _calc_label(self) -> str:
        if self.selected_entity_id_field and IS_UUID_REGEX.match(self.id) and self.schema_id:
            return f"{self.schema_id}{self.id}"
        return super()._calc_label()


class JsonSchema(JsonEntity):
    is_schema = True

    def __init__(
        self,
        *,
        file: Optional[JsonFile],
        list_sequence: Optional[int],
        content: Any,
        cfg: Optional[GtsConfig] = None,
    ) -> None:
        super().__init__(file=file, list_sequence=list_sequence, content=content, cfg=cfg)
        self.schema_refs: List[GtsRef] = extract_schema_refs(content)

    def to_dict(self) -> Dict[str, Any]:
        out = super().to_dict()
        out["schemaRefs"] = [r.to_dict() for r in self.schema_refs]
        return out


def is_json_schema_document(content: Any) -> bool:
    """A document is a schema iff its top-level ``$schema`` names a JSON-Schema meta-schema."""
    if not isinstance(content, dict):
        return False
    url = content.get("$schema")
    if not isinstance(url, str):
        return False
    return url.startswith(JSON_SCHEMA_URL_PREFIXES)


def create_entity(
    *,
    file: Optional[JsonFile],
    list_sequence: Optional[int],
    content: Any,
    cfg: Optional[GtsConfig] = None,
) -> Union[JsonObj, JsonSchema]:
    if is_json_schema_document(content):
        return JsonSchema(file=file, list_sequence=list_sequence, content=content, cfg=cfg)
    return JsonObj(file=file, list_sequence=list_sequence, content=content, cfg=cfg)


def create_absent_entity(entity_id: str) -> JsonEntity:
    """Placeholder for a referenced id with no backing document."""
    entity = JsonEntity(file=None, list_sequence=None, content=None)
    entity.id = entity_id
    entity.label = entity_id
    entity.validation.add(
        ValidationError(
            instance_path="",
            schema_path="#",
            keyword="",
            message=f"GTS entity not found: {entity_id}",
            params={"gtsId": entity_id},
        )
    )
    return entity
