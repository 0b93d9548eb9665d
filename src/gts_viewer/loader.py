from __future__ import annotations

import os
from pathlib import Path
from typing import List, Optional, Sequence

from .jsonc import JsoncParseError, parse_yaml
from .logging import get_logger
from .registry import LAYOUT_DIR_NAME, SourceFile, is_gts_candidate_file_name
from .util.errors import LoaderError

LOG = get_logger(__name__)

DEFAULT_IGNORE_DIRS = ("node_modules", ".git", "dist", LAYOUT_DIR_NAME)
_YAML_SUFFIXES = (".yaml", ".yml")


def _read_source(full_path: Path, rel_path: str) -> Optional[SourceFile]:
    try:
        text = full_path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        LOG.warning("Failed to read file", extra={"path": rel_path, "error": str(e)})
        return None
    content: object = text
    if full_path.name.lower().endswith(_YAML_SUFFIXES):
        try:
            content = parse_yaml(text)
        except JsoncParseError as e:
            # raw text falls through to the JSONC parser and lands in invalid files
            LOG.warning("Failed to parse YAML", extra={"path": rel_path, "error": str(e)})
    return SourceFile(path=rel_path, name=full_path.name, content=content)


def load_directory(
    root: Path,
    ignore_dirs: Sequence[str] = DEFAULT_IGNORE_DIRS,
    max_size_bytes: Optional[int] = None,
) -> List[SourceFile]:
    """
    Collect candidate documents under ``root`` in a stable order.

    Paths are relative to ``root`` with ``/`` separators. JSON, JSONC and
    ``.gts`` files are passed on as raw text so parse errors are recorded
    per file; YAML is parsed here.
    """
    root = Path(root)
    if not root.is_dir():
        raise LoaderError(f"Not a directory: {root}")

    ignored = set(ignore_dirs)
    files: List[SourceFile] = []
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = sorted(d for d in dirnames if d not in ignored)
        for name in sorted(filenames):
            if not is_gts_candidate_file_name(name):
                continue
            full_path = Path(dirpath) / name
            rel_path = full_path.relative_to(root).as_posix()
            if max_size_bytes is not None:
                try:
                    size = full_path.stat().st_size
                except OSError as e:
                    LOG.warning("Failed to stat file", extra={"path": rel_path, "error": str(e)})
                    continue
                if size > max_size_bytes:
                    LOG.info("Skipping oversized file", extra={"path": rel_path, "size": size})
                    continue
            source = _read_source(full_path, rel_path)
            if source is not None:
                files.append(source)

    LOG.info(
        "Loaded source files",
        extra={"step": "load", "phase": "complete", "path": str(root), "files": len(files)},
    )
    return files
