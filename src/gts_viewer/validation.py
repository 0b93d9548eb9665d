from __future__ import annotations

import json
import re
from collections import defaultdict
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from jsonschema import Draft7Validator
from jsonschema import ValidationError as JsonSchemaError
from jsonschema.exceptions import SchemaError
from jsonschema.validators import validator_for
from referencing import Registry, Resource
from referencing.exceptions import NoSuchResource, Unresolvable
from referencing.jsonschema import DRAFT7

from .entities import JsonEntity, JsonSchema, ValidationError, ValidationResult
from .ids import canonical_id
from .logging import get_logger

LOG = get_logger(__name__)

SchemaLookup = Callable[[str], Optional[JsonSchema]]

_COMPARISONS: Mapping[str, str] = {
    "minimum": ">=",
    "maximum": "<=",
    "exclusiveMinimum": ">",
    "exclusiveMaximum": "<",
}
_COUNT_LIMITS: Mapping[str, Tuple[str, str]] = {
    "minLength": ("fewer", "characters"),
    "maxLength": ("more", "characters"),
    "minItems": ("fewer", "items"),
    "maxItems": ("more", "items"),
    "minProperties": ("fewer", "properties"),
    "maxProperties": ("more", "properties"),
}


def _escape_pointer_token(token: Any) -> str:
    return str(token).replace("~", "~0").replace("/", "~1")


def _instance_path(error: JsonSchemaError) -> str:
    tokens = list(error.absolute_path)
    if not tokens:
        return "/"
    return "/" + "/".join(_escape_pointer_token(t) for t in tokens)


def _schema_path(error: JsonSchemaError) -> str:
    tokens = list(error.absolute_schema_path)
    if not tokens:
        return "#"
    return "#/" + "/".join(_escape_pointer_token(t) for t in tokens)


def _type_label(expected: Any) -> str:
    if isinstance(expected, (list, tuple)):
        return ",".join(str(t) for t in expected)
    return str(expected)


def _additional_properties(error: JsonSchemaError) -> List[str]:
    instance = error.instance if isinstance(error.instance, dict) else {}
    schema = error.schema if isinstance(error.schema, dict) else {}
    declared = schema.get("properties") or {}
    patterns = list((schema.get("patternProperties") or {}).keys())
    extras: List[str] = []
    for key in instance:
        if key in declared:
            continue
        if any(re.search(pattern, key) for pattern in patterns):
            continue
        extras.append(key)
    return extras


def _message_for(keyword: str, error: JsonSchemaError) -> Tuple[str, Dict[str, Any]]:
    value = error.validator_value
    if keyword == "type":
        return f"must be {_type_label(value)}", {"type": value}
    if keyword == "pattern":
        return f'must match pattern "{value}"', {"pattern": value}
    if keyword == "enum":
        return f"must be one of: {json.dumps(value)}", {"allowedValues": value}
    if keyword == "const":
        return "must be equal to constant", {"allowedValue": value}
    if keyword in _COMPARISONS:
        comparison = _COMPARISONS[keyword]
        return f"must be {comparison} {value}", {"comparison": comparison, "limit": value}
    if keyword in _COUNT_LIMITS:
        direction, unit = _COUNT_LIMITS[keyword]
        return f"must NOT have {direction} than {value} {unit}", {"limit": value}
    if keyword in {"anyOf", "oneOf", "allOf"}:
        return f"must match {keyword} schema", {}
    if keyword == "format":
        return f'must match format "{value}"', {"format": value}
    if keyword == "multipleOf":
        return f"must be multiple of {value}", {"multipleOf": value}
    if keyword == "uniqueItems":
        return "must NOT have duplicate items", {}
    if keyword == "not":
        return "must NOT be valid", {}
    return error.message, {}


def format_validation_errors(errors: Iterable[JsonSchemaError]) -> List[ValidationError]:
    """
    Translate jsonschema errors into ValidationError records with the phrasing
    renderers use to locate problems in the source text.

    ``required`` and ``additionalProperties`` fan out to one record per property.
    """
    out: List[ValidationError] = []
    required_seen: Dict[Tuple[str, str], int] = defaultdict(int)
    for err in errors:
        instance_path = _instance_path(err)
        schema_path = _schema_path(err)
        keyword = err.validator if isinstance(err.validator, str) else "false schema"

        if keyword == "required":
            instance = err.instance if isinstance(err.instance, dict) else {}
            missing = [p for p in (err.validator_value or []) if p not in instance]
            slot = (instance_path, schema_path)
            index = required_seen[slot]
            required_seen[slot] += 1
            prop = missing[index] if index < len(missing) else None
            out.append(
                ValidationError(
                    instance_path=instance_path,
                    schema_path=schema_path,
                    keyword=keyword,
                    message=f"missing required property '{prop}'",
                    params={"missingProperty": prop},
                    data=err.instance,
                )
            )
            continue

        if keyword == "additionalProperties" and err.validator_value is False:
            for extra in _additional_properties(err):
                out.append(
                    ValidationError(
                        instance_path=instance_path,
                        schema_path=schema_path,
                        keyword=keyword,
                        message=f"must NOT have additional property '{extra}'",
                        params={"additionalProperty": extra},
                        data=err.instance,
                    )
                )
            continue

        if keyword == "false schema":
            message, params = "boolean schema is false", {}
        else:
            message, params = _message_for(keyword, err)
        out.append(
            ValidationError(
                instance_path=instance_path,
                schema_path=schema_path,
                keyword=keyword,
                message=message,
                params=params,
                data=err.instance,
            )
        )
    return out


def _schema_error(message: str, **params: Any) -> ValidationError:
    return ValidationError(instance_path="", schema_path="#", keyword="schema", message=message, params=params)


class SchemaValidator:
    """
    Validates entities with jsonschema, resolving ``$ref`` and chained-id
    references through ``lookup`` (normally the entity registry).

    A fresh validator is built for every call; nothing is cached between entities.
    jsonschema interprets schemas directly, so no generated code is ever evaluated.
    """

    def __init__(self, lookup: SchemaLookup) -> None:
        self._lookup = lookup

    def _retrieve(self, uri: str) -> Resource:
        schema_id = canonical_id(uri)
        schema = self._lookup(schema_id)
        if schema is None:
            LOG.debug("Unresolved $ref", extra={"ref": schema_id})
            raise NoSuchResource(ref=schema_id)
        return Resource.from_contents(schema.content, default_specification=DRAFT7)

    def _registry(self) -> Registry:
        return Registry(retrieve=self._retrieve)

    def _validator_for(self, content: Any) -> Any:
        cls = validator_for(content, default=Draft7Validator)
        return cls(content, registry=self._registry(), format_checker=cls.FORMAT_CHECKER)

    def validate_schema(self, schema: JsonSchema) -> ValidationResult:
        """Meta-validation: the schema must satisfy its meta-schema and every external ``$ref`` must resolve."""
        result = ValidationResult()
        content = schema.content
        try:
            cls = validator_for(content, default=Draft7Validator)
            cls.check_schema(content)
            root = Resource.from_contents(content, default_specification=DRAFT7)
            resolver = self._registry().resolver_with_root(root)
            for ref in schema.schema_refs:
                if ref.id.startswith("#"):
                    continue
                resolver.lookup(ref.id)
        except SchemaError as e:
            result.add(_schema_error(f"Invalid JSON Schema: {e.message}", error=e.message))
        except Unresolvable as e:
            reason = f"Schema not found for $ref: {getattr(e, 'ref', e)}"
            result.add(_schema_error(f"Invalid JSON Schema: {reason}", error=reason))
        return result

    def validate_object(self, obj: JsonEntity, schema: Optional[JsonSchema]) -> ValidationResult:
        result = ValidationResult()
        if not obj.schema_id:
            return result
        if schema is None:
            result.add(_schema_error(f"Schema not found: {obj.schema_id}", schemaId=obj.schema_id))
            return result
        if not schema.validation.valid:
            result.add(_schema_error(f"Schema is invalid: {obj.schema_id}", schemaId=obj.schema_id))
            return result
        try:
            validator = self._validator_for(schema.content)
            errors = sorted(validator.iter_errors(obj.content), key=lambda e: [str(p) for p in e.absolute_path])
        except (Unresolvable, SchemaError, re.error) as e:
            result.add(
                ValidationError(
                    instance_path="",
                    schema_path="#",
                    keyword="validation",
                    message=f"Validation error: {e}",
                    params={"error": str(e)},
                )
            )
            return result
        for error in format_validation_errors(errors):
            result.add(error)
        return result
