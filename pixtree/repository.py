"""
File-per-entity storage for projects, trees, and nodes.

Layout inside the ``.pixtree`` directory:

    project.json        the single project
    trees/{id}.json     one file per tree
    nodes/{id}.json     one file per node

Files are pretty-printed JSON, always written whole. Updates are
read-modify-write: load the entity, change it, save it back.
"""

import json
import logging
from pathlib import Path
from typing import Union

from .content_store import atomic_write
from .errors import NotFoundError, StorageIOError
from .types import ImageNode, Project, Tree, utc_now

logger = logging.getLogger(__name__)

Entity = Union[Project, Tree, ImageNode]

PROJECT_FILENAME = "project.json"

_ENTITY_TYPES: dict[str, type] = {
    "project": Project,
    "tree": Tree,
    "node": ImageNode,
}

_KIND_DIRS = {
    "tree": "trees",
    "node": "nodes",
}


def entity_kind(entity: Entity) -> str:
    for kind, cls in _ENTITY_TYPES.items():
        if isinstance(entity, cls):
            return kind
    raise TypeError(f"Not a storable entity: {type(entity).__name__}")


class EntityRepository:
    """
    JSON-file repository for the three entity kinds.

    Args:
        base_path: The ``.pixtree`` directory
    """

    def __init__(self, base_path: Path):
        self._base = Path(base_path)

    @property
    def base_path(self) -> Path:
        return self._base

    def ensure_layout(self) -> None:
        """Create the entity directories."""
        try:
            for dirname in _KIND_DIRS.values():
                (self._base / dirname).mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageIOError(f"Failed to create {self._base}: {e}") from e

    @staticmethod
    def _check_kind(kind: str) -> None:
        if kind not in _ENTITY_TYPES:
            raise ValueError(f"Unknown entity kind: {kind!r}")

    def _dir(self, kind: str) -> Path:
        return self._base / _KIND_DIRS[kind]

    def _path(self, kind: str, id: str) -> Path:
        if kind == "project":
            return self._base / PROJECT_FILENAME
        if not id or "/" in id or "\\" in id or id.startswith("."):
            raise ValueError(f"Invalid {kind} ID: {id!r}")
        return self._dir(kind) / f"{id}.json"

    def _read(self, kind: str, path: Path) -> dict:
        try:
            with open(path, encoding="utf-8") as f:
                return json.load(f)
        except json.JSONDecodeError as e:
            raise StorageIOError(f"Corrupt {kind} file {path}: {e}") from e
        except OSError as e:
            raise StorageIOError(f"Failed to read {path}: {e}") from e

    # -------------------------------------------------------------------------
    # Write Operations
    # -------------------------------------------------------------------------

    def save(self, entity: Entity) -> None:
        """Write the whole entity to its file."""
        kind = entity_kind(entity)
        path = self._path(kind, entity.id)
        data = json.dumps(entity.to_dict(), indent=2, ensure_ascii=False) + "\n"
        atomic_write(path, data.encode("utf-8"))
        logger.debug("Saved %s %s", kind, entity.id)

    def delete(self, kind: str, id: str) -> None:
        """Remove an entity file. Raises NotFoundError if absent."""
        self._check_kind(kind)
        path = self._path(kind, id)
        if not self.exists(kind, id):
            raise NotFoundError(kind, id)
        try:
            path.unlink()
        except OSError as e:
            raise StorageIOError(f"Failed to delete {path}: {e}") from e
        logger.debug("Deleted %s %s", kind, id)

    # -------------------------------------------------------------------------
    # Read Operations
    # -------------------------------------------------------------------------

    def exists(self, kind: str, id: str) -> bool:
        self._check_kind(kind)
        if kind == "project":
            path = self._base / PROJECT_FILENAME
            if not path.exists():
                return False
            return id is None or self._read(kind, path).get("id") == id
        return self._path(kind, id).exists()

    def load(self, kind: str, id: str, *, touch: bool = False) -> Entity:
        """
        Load one entity.

        Args:
            kind: "project", "tree" or "node"
            id: Entity ID (for the project, None loads whichever project exists)
            touch: Refresh and persist ``last_accessed`` (user-facing reads)

        Raises:
            NotFoundError: If no such entity is stored
        """
        self._check_kind(kind)
        path = self._path(kind, id)
        if not path.exists():
            raise NotFoundError(kind, id if id is not None else str(path))
        data = self._read(kind, path)
        if kind == "project" and id is not None and data.get("id") != id:
            raise NotFoundError(kind, id)
        entity = _ENTITY_TYPES[kind].from_dict(data)
        if touch:
            entity.last_accessed = utc_now()
            self.save(entity)
        return entity

    def list_ids(self, kind: str) -> list[str]:
        """IDs of all stored entities of a kind, sorted."""
        self._check_kind(kind)
        if kind == "project":
            path = self._base / PROJECT_FILENAME
            return [self._read(kind, path)["id"]] if path.exists() else []
        directory = self._dir(kind)
        if not directory.exists():
            return []
        return sorted(
            p.stem for p in directory.glob("*.json")
            if not p.name.startswith(".")
        )

    def load_all(self, kind: str) -> list:
        """Load every entity of a kind (empty list when there are none)."""
        return [self.load(kind, id) for id in self.list_ids(kind)]

    # Typed conveniences

    def load_project(self, *, touch: bool = False) -> Project:
        return self.load("project", None, touch=touch)

    def load_tree(self, id: str, *, touch: bool = False) -> Tree:
        return self.load("tree", id, touch=touch)

    def load_node(self, id: str, *, touch: bool = False) -> ImageNode:
        return self.load("node", id, touch=touch)

    def load_tree_nodes(self, tree_id: str) -> list[ImageNode]:
        return [n for n in self.load_all("node") if n.tree_id == tree_id]
