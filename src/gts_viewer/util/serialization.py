from __future__ import annotations

import json
from dataclasses import asdict, is_dataclass
from datetime import date, datetime
from pathlib import Path
from typing import Any


def stable_json_dumps(obj: Any) -> str:
    """
    Dump JSON with sort_keys=True and separators to ensure stable output.
    """
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def sanitize_for_json(value: Any) -> Any:
    """
    Convert entities, layout records and paths to JSON-ready structures.
    Objects exposing ``to_dict`` are trusted to emit their wire shape.
    """
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, bytes):
        return value.decode("utf-8", "replace")
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, dict):
        return {str(k): sanitize_for_json(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [sanitize_for_json(v) for v in value]
    to_dict = getattr(value, "to_dict", None)
    if callable(to_dict):
        return sanitize_for_json(to_dict())
    if is_dataclass(value) and not isinstance(value, type):
        return sanitize_for_json(asdict(value))
    return value
