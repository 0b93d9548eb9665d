from __future__ import annotations

import json
from typing import Any, Optional

import yaml


class JsoncParseError(ValueError):
    """Raised when text is not valid JSON even after comments and trailing commas are tolerated."""

    def __init__(self, message: str, offset: Optional[int] = None) -> None:
        self.offset = offset
        super().__init__(message)


def _blank(text: str) -> str:
    # keep newlines so offsets and line numbers survive
    return "".join("\n" if ch == "\n" else " " for ch in text)


def strip_jsonc(text: str) -> str:
    """
    Replace ``//`` and ``/* */`` comments and trailing commas with whitespace.

    The result has the same length as the input, so decoder offsets still
    point into the original text.
    """
    out: list[str] = []
    i = 0
    n = len(text)
    in_string = False
    pending_comma: Optional[int] = None
    while i < n:
        ch = text[i]
        if in_string:
            out.append(ch)
            if ch == "\\" and i + 1 < n:
                out.append(text[i + 1])
                i += 2
                continue
            if ch == '"':
                in_string = False
            i += 1
            continue
        if ch == '"':
            in_string = True
            pending_comma = None
            out.append(ch)
            i += 1
            continue
        if ch == "/" and i + 1 < n and text[i + 1] == "/":
            end = text.find("\n", i)
            end = n if end < 0 else end
            out.append(_blank(text[i:end]))
            i = end
            continue
        if ch == "/" and i + 1 < n and text[i + 1] == "*":
            end = text.find("*/", i + 2)
            if end < 0:
                raise JsoncParseError(f"UnexpectedEndOfComment at offset {i}", i)
            out.append(_blank(text[i : end + 2]))
            i = end + 2
            continue
        if ch == ",":
            pending_comma = len(out)
            out.append(ch)
            i += 1
            continue
        if ch in "}]" and pending_comma is not None:
            out[pending_comma] = " "
        if not ch.isspace():
            pending_comma = None
        out.append(ch)
        i += 1
    return "".join(out)


def parse_jsonc(text: str) -> Any:
    """
    Parse JSON with comments and trailing commas.
    Raises JsoncParseError carrying the character offset of the first problem.
    """
    if not text.strip():
        raise JsoncParseError("ValueExpected at offset 0 (empty content)", 0)
    cleaned = strip_jsonc(text)
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise JsoncParseError(f"{e.msg} at offset {e.pos} (line {e.lineno}, column {e.colno})", e.pos) from e


def try_parse_jsonc(text: str) -> Any:
    try:
        return parse_jsonc(text)
    except JsoncParseError:
        return None


class _PlainScalarLoader(yaml.SafeLoader):
    """SafeLoader that keeps date-like scalars as strings, matching their JSON reading."""


_PlainScalarLoader.yaml_implicit_resolvers = {
    first: [(tag, regexp) for tag, regexp in resolvers if tag != "tag:yaml.org,2002:timestamp"]
    for first, resolvers in yaml.SafeLoader.yaml_implicit_resolvers.items()
}


def parse_yaml(text: str) -> Any:
    try:
        return yaml.load(text, Loader=_PlainScalarLoader)
    except yaml.YAMLError as e:
        raise JsoncParseError(f"YAML parse error: {e}") from e
