from __future__ import annotations

import json
import re
import sqlite3
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Protocol, Union

from ..ids import canonical_id
from ..logging import get_logger
from ..registry import LAYOUT_DIR_NAME
from ..util.errors import LayoutStorageError
from ..util.serialization import stable_json_dumps
from ..util.time import epoch_millis, utc_now_iso
from .types import LayoutSaveRequest, LayoutSnapshot, LayoutTarget, LayoutVersionInfo

LOG = get_logger(__name__)

DEFAULT_WORKSPACE = "default"
_UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9_-]")

TargetLike = Union[LayoutTarget, Mapping[str, Any]]


def sanitize_filename(name: str) -> str:
    return _UNSAFE_FILENAME_CHARS.sub("_", name)


def _as_target(target: TargetLike) -> LayoutTarget:
    if isinstance(target, LayoutTarget):
        return target
    return LayoutTarget.from_dict(target)


class LayoutStorage(Protocol):
    def get_latest_layout(self, target: TargetLike) -> Optional[LayoutSnapshot]:
        ...

    def save_layout(self, request: LayoutSaveRequest) -> LayoutSnapshot:
        ...

    def list_versions(self, target: TargetLike) -> List[LayoutVersionInfo]:
        ...


class FileLayoutStorage:
    """
    One JSON file per target. Only the latest version is kept; saving
    rewrites the file with the version bumped from whatever was read.
    """

    def __init__(self, layouts_dir: Path) -> None:
        self.layouts_dir = Path(layouts_dir)

    @classmethod
    def for_repo(cls, repo_root: Path) -> FileLayoutStorage:
        return cls(Path(repo_root) / LAYOUT_DIR_NAME)

    @classmethod
    def for_home(cls) -> FileLayoutStorage:
        return cls(Path.home() / LAYOUT_DIR_NAME / "layouts")

    def layout_path(self, target: LayoutTarget) -> Path:
        safe_name = sanitize_filename(target.filename or target.id)
        safe_id = sanitize_filename(target.id)
        return self.layouts_dir / f"{safe_id}_{safe_name}.json"

    def _read(self, path: Path) -> Optional[LayoutSnapshot]:
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            LOG.warning("Failed to read layout file", extra={"path": str(path), "error": str(e)})
            return None
        if not isinstance(data, dict):
            LOG.warning("Layout file is not an object", extra={"path": str(path)})
            return None
        return LayoutSnapshot.from_dict(data)

    def get_latest_layout(self, target: TargetLike) -> Optional[LayoutSnapshot]:
        resolved = _as_target(target)
        if not resolved.id or not resolved.filename or not resolved.schema_id:
            return None
        path = self.layout_path(resolved)
        if not path.exists():
            return None
        return self._read(path)

    def save_layout(self, request: LayoutSaveRequest) -> LayoutSnapshot:
        path = self.layout_path(request.target)
        version = "1"
        layout_id = f"layout_{sanitize_filename(request.target.id)}_{epoch_millis()}"
        if path.exists():
            existing = self._read(path)
            if existing is not None:
                try:
                    version = str(int(existing.version) + 1)
                except ValueError:
                    LOG.warning("Unreadable layout version, restarting at 1", extra={"path": str(path)})
                layout_id = existing.layout_id or layout_id

        snapshot = LayoutSnapshot(
            target=request.target,
            canvas=request.canvas,
            nodes=list(request.nodes),
            edges=list(request.edges),
            meta=request.meta,
            layout_id=layout_id,
            version=version,
            created_at=utc_now_iso(),
        )
        try:
            self.layouts_dir.mkdir(parents=True, exist_ok=True)
            path.write_text(json.dumps(snapshot.to_dict(), indent=2, ensure_ascii=False), encoding="utf-8")
        except OSError as e:
            raise LayoutStorageError(f"Failed to write layout {path}: {e}") from e
        LOG.info(
            "Saved layout",
            extra={"step": "layout", "phase": "save", "path": str(path), "version": version},
        )
        return snapshot

    def list_versions(self, target: TargetLike) -> List[LayoutVersionInfo]:
        snapshot = self.get_latest_layout(target)
        if snapshot is None:
            return []
        return [LayoutVersionInfo(snapshot.layout_id, snapshot.version, snapshot.created_at)]


class SqliteLayoutStorage:
    """
    Versioned layout history in SQLite: every save appends a row to
    ``layout_versions``; versions increase monotonically per layout.
    """

    def __init__(self, db_path: Path, default_workspace: str = DEFAULT_WORKSPACE) -> None:
        self._db_path = Path(db_path)
        self.default_workspace = default_workspace
        self._closed = False
        try:
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(str(self._db_path))
            self._create_schema()
            self._ensure_workspace(default_workspace)
            self._conn.commit()
        except (OSError, sqlite3.Error) as e:
            raise LayoutStorageError(f"Failed to open layout database {self._db_path}: {e}") from e

    def _create_schema(self) -> None:
        self._conn.execute(
            "CREATE TABLE IF NOT EXISTS workspaces ("
            "id INTEGER PRIMARY KEY AUTOINCREMENT,"
            "name TEXT UNIQUE NOT NULL,"
            "created_at TEXT NOT NULL"
            ")"
        )
        self._conn.execute(
            "CREATE TABLE IF NOT EXISTS layouts ("
            "id INTEGER PRIMARY KEY AUTOINCREMENT,"
            "workspace_id INTEGER NOT NULL,"
            "entity_id TEXT NOT NULL,"
            "target_filename TEXT,"
            "target_schema_id TEXT,"
            "created_at TEXT NOT NULL,"
            "UNIQUE (workspace_id, entity_id)"
            ")"
        )
        self._conn.execute(
            "CREATE TABLE IF NOT EXISTS layout_versions ("
            "id INTEGER PRIMARY KEY AUTOINCREMENT,"
            "layout_id INTEGER NOT NULL,"
            "version INTEGER NOT NULL,"
            "canvas TEXT NOT NULL,"
            "nodes TEXT NOT NULL,"
            "edges TEXT NOT NULL,"
            "meta TEXT,"
            "created_at TEXT NOT NULL,"
            "UNIQUE (layout_id, version)"
            ")"
        )

    def close(self) -> None:
        if self._closed:
            return
        self._conn.close()
        self._closed = True

    def __enter__(self) -> SqliteLayoutStorage:
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    # ---- helpers ----

    def _ensure_workspace(self, name: str) -> int:
        row = self._conn.execute("SELECT id FROM workspaces WHERE name = ?", (name,)).fetchone()
        if row:
            return int(row[0])
        cur = self._conn.execute(
            "INSERT INTO workspaces (name, created_at) VALUES (?, ?)",
            (name, utc_now_iso()),
        )
        return int(cur.lastrowid)

    def _find_layout(self, workspace_id: int, entity_id: str) -> Optional[int]:
        row = self._conn.execute(
            "SELECT id FROM layouts WHERE workspace_id = ? AND entity_id = ?",
            (workspace_id, entity_id),
        ).fetchone()
        return int(row[0]) if row else None

    def _ensure_layout(self, workspace_id: int, target: LayoutTarget, entity_id: str) -> int:
        layout_id = self._find_layout(workspace_id, entity_id)
        if layout_id is not None:
            return layout_id
        cur = self._conn.execute(
            "INSERT INTO layouts (workspace_id, entity_id, target_filename, target_schema_id, created_at) "
            "VALUES (?, ?, ?, ?, ?)",
            (workspace_id, entity_id, target.filename, target.schema_id, utc_now_iso()),
        )
        return int(cur.lastrowid)

    def _latest_version(self, layout_id: int) -> int:
        row = self._conn.execute(
            "SELECT MAX(version) FROM layout_versions WHERE layout_id = ?",
            (layout_id,),
        ).fetchone()
        return int(row[0]) if row and row[0] is not None else 0

    def _snapshot(self, layout_id: int, version: int) -> Optional[LayoutSnapshot]:
        row = self._conn.execute(
            "SELECT v.version, v.canvas, v.nodes, v.edges, v.meta, v.created_at, "
            "l.entity_id, l.target_filename, l.target_schema_id, w.name "
            "FROM layout_versions v "
            "JOIN layouts l ON l.id = v.layout_id "
            "JOIN workspaces w ON w.id = l.workspace_id "
            "WHERE v.layout_id = ? AND v.version = ?",
            (layout_id, version),
        ).fetchone()
        if not row:
            return None
        ver, canvas, nodes, edges, meta, created_at, entity_id, filename, schema_id, workspace = row
        data: Dict[str, Any] = {
            "target": {
                "workspaceName": workspace,
                "id": entity_id,
                "filename": filename or "",
                "schemaId": schema_id or "",
            },
            "canvas": json.loads(canvas),
            "nodes": json.loads(nodes),
            "edges": json.loads(edges),
            "meta": json.loads(meta) if meta else None,
            "layoutId": str(layout_id),
            "version": str(ver),
            "createdAt": created_at,
        }
        return LayoutSnapshot.from_dict(data)

    def _lookup(self, target: TargetLike) -> Optional[int]:
        resolved = _as_target(target)
        if not resolved.id:
            return None
        row = self._conn.execute(
            "SELECT id FROM workspaces WHERE name = ?",
            (resolved.workspace_name or self.default_workspace,),
        ).fetchone()
        if not row:
            return None
        return self._find_layout(int(row[0]), canonical_id(resolved.id))

    # ---- LayoutStorage ----

    def get_latest_layout(self, target: TargetLike) -> Optional[LayoutSnapshot]:
        try:
            layout_id = self._lookup(target)
            if layout_id is None:
                return None
            latest = self._latest_version(layout_id)
            if not latest:
                return None
            return self._snapshot(layout_id, latest)
        except sqlite3.Error as e:
            raise LayoutStorageError(f"Failed to load layout: {e}") from e

    def save_layout(self, request: LayoutSaveRequest) -> LayoutSnapshot:
        target = request.target
        entity_id = canonical_id(target.id)
        try:
            workspace_id = self._ensure_workspace(target.workspace_name or self.default_workspace)
            layout_id = self._ensure_layout(workspace_id, target, entity_id)
            version = self._latest_version(layout_id) + 1
            self._conn.execute(
                "INSERT INTO layout_versions (layout_id, version, canvas, nodes, edges, meta, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?)",
                (
                    layout_id,
                    version,
                    stable_json_dumps(request.canvas.to_dict()),
                    stable_json_dumps([n.to_dict() for n in request.nodes]),
                    stable_json_dumps([e.to_dict() for e in request.edges]),
                    stable_json_dumps(request.meta) if request.meta is not None else None,
                    utc_now_iso(),
                ),
            )
            self._conn.commit()
            snapshot = self._snapshot(layout_id, version)
        except sqlite3.Error as e:
            self._conn.rollback()
            raise LayoutStorageError(f"Failed to save layout for {entity_id}: {e}") from e
        if snapshot is None:
            raise LayoutStorageError(f"Saved layout for {entity_id} could not be read back")
        LOG.info(
            "Saved layout",
            extra={"step": "layout", "phase": "save", "layout_id": snapshot.layout_id, "version": snapshot.version},
        )
        return snapshot

    def list_versions(self, target: TargetLike) -> List[LayoutVersionInfo]:
        try:
            layout_id = self._lookup(target)
            if layout_id is None:
                return []
            rows = self._conn.execute(
                "SELECT version, created_at FROM layout_versions WHERE layout_id = ? ORDER BY version DESC",
                (layout_id,),
            ).fetchall()
        except sqlite3.Error as e:
            raise LayoutStorageError(f"Failed to list layout versions: {e}") from e
        return [LayoutVersionInfo(str(layout_id), str(ver), created_at) for ver, created_at in rows]

    def get_version(self, layout_id: str, version: str) -> Optional[LayoutSnapshot]:
        try:
            return self._snapshot(int(layout_id), int(version))
        except ValueError:
            return None
        except sqlite3.Error as e:
            raise LayoutStorageError(f"Failed to load layout version: {e}") from e

    def restore_version(self, layout_id: str, version: str) -> Optional[LayoutSnapshot]:
        """Copy an old version forward as the new latest one."""
        old = self.get_version(layout_id, version)
        if old is None:
            return None
        return self.save_layout(
            LayoutSaveRequest(
                target=old.target,
                canvas=old.canvas,
                nodes=old.nodes,
                edges=old.edges,
                meta=old.meta,
            )
        )
