from __future__ import annotations

import re
from typing import Iterable, List, Optional
from urllib.parse import unquote

_SEGMENT = r"[a-z_][a-z0-9_]*"
_VERSION = r"v(?:0|[1-9][0-9]*)(?:\.(?:0|[1-9][0-9]*))?"
_LINK = rf"{_SEGMENT}\.{_SEGMENT}\.{_SEGMENT}\.{_SEGMENT}\.{_VERSION}"
_CHAIN = rf"gts\.{_LINK}(?:~{_LINK})*"

GTS_PREFIX = "gts."
GTS_REGEX = re.compile(rf"^\s*{_CHAIN}~?\s*$")
GTS_OBJ_REGEX = re.compile(rf"^\s*{_CHAIN}\s*$")
GTS_TYPE_REGEX = re.compile(rf"^\s*{_CHAIN}~\s*$")
IS_UUID_REGEX = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$")

_URI_SCHEME_RE = re.compile(r"^[A-Za-z][A-Za-z0-9+.\-]*://")


def is_valid_identifier(value: object) -> bool:
    """Exact grammar match: ``gts.<vendor>.<package>.<namespace>.<type>.vN[.M]`` chains."""
    if not isinstance(value, str):
        return False
    return GTS_REGEX.match(value) is not None


def is_type_identifier(value: object) -> bool:
    """True for schema identities, i.e. identifiers ending with a bare ``~``."""
    return isinstance(value, str) and GTS_TYPE_REGEX.match(value) is not None


def is_instance_identifier(value: object) -> bool:
    return isinstance(value, str) and GTS_OBJ_REGEX.match(value) is not None


def _decode_repeatedly(value: str) -> str:
    # %257E -> %7E -> ~
    previous = None
    decoded = value
    while decoded != previous:
        previous = decoded
        decoded = unquote(decoded)
    return decoded


def normalize(value: str) -> str:
    """
    Strip whitespace, URL encoding and an optional ``scheme://`` wrapper.

    ``gts://gts.x.core.events.type.v1~`` and ``gts.x.core.events.type.v1%7E``
    both normalize to ``gts.x.core.events.type.v1~``.
    """
    text = _decode_repeatedly(value.strip())
    return _URI_SCHEME_RE.sub("", text, count=1).strip()


def canonical_id(value: str) -> str:
    """
    Return the normalized form when it is a valid identifier, otherwise the trimmed input.
    Map keys and comparisons go through this so wrapped and raw forms meet.
    """
    normalized = normalize(value)
    if is_valid_identifier(normalized):
        return normalized
    return value.strip()


def parse_chain_parts(entity_id: str) -> List[str]:
    """
    Split a chained identifier at its first ``~``.

    The first part keeps the ``~``; the remainder is returned untouched even if
    it carries further links. Ids without ``~`` come back as a single element.
    """
    idx = entity_id.find("~")
    if idx < 0:
        return [entity_id]
    head = entity_id[: idx + 1]
    tail = entity_id[idx + 1 :]
    if not tail:
        return [head]
    return [head, tail]


def instance_schema_prefix(entity_id: str) -> Optional[str]:
    """
    Schema identity of a chained instance id: everything through its last ``~``.
    Returns None for type ids (trailing ``~``) and for ids without a chain.
    """
    value = entity_id.strip()
    if not is_valid_identifier(value) or value.endswith("~"):
        return None
    idx = value.rfind("~")
    if idx < 0:
        return None
    return value[: idx + 1]


def levenshtein_distance(a: str, b: str) -> int:
    if a == b:
        return 0
    previous = list(range(len(a) + 1))
    for i, cb in enumerate(b, start=1):
        current = [i] + [0] * len(a)
        for j, ca in enumerate(a, start=1):
            if ca == cb:
                current[j] = previous[j - 1]
            else:
                current[j] = min(previous[j - 1], current[j - 1], previous[j]) + 1
        previous = current
    return previous[len(a)]


def find_similar_entity_ids(target: str, candidates: Iterable[str], max_results: int = 3) -> List[str]:
    """
    Closest candidates by edit distance, ascending. No distance cutoff is applied,
    so up to ``max_results`` ids are always returned when available.
    """
    scored = [(levenshtein_distance(target, candidate), candidate) for candidate in candidates]
    # sorted() is stable, so ties keep the caller's order
    scored = sorted(scored, key=lambda item: item[0])
    return [candidate for _, candidate in scored[: max(0, max_results)]]
