"""
Workspace context: the "HEAD" of a working copy.

The context records the current tree, the current node inside it, and a
short list of recently used trees. Transitions return a new context and
never touch disk; ``ContextFile`` loads and saves the pointer file.

States:
    NO_TREE                 nothing selected
    TREE_SELECTED           a tree, no node
    TREE_AND_NODE_SELECTED  a tree and one of its nodes
"""

import json
import logging
from dataclasses import asdict, dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Optional

from .content_store import atomic_write
from .errors import CrossTreeCheckoutError, StorageIOError
from .types import ImageNode, Tree

logger = logging.getLogger(__name__)

CONTEXT_FILENAME = "context.json"
DEFAULT_RECENT_LIMIT = 10


class ContextState(Enum):
    NO_TREE = "no_tree"
    TREE_SELECTED = "tree_selected"
    TREE_AND_NODE_SELECTED = "tree_and_node_selected"


@dataclass(frozen=True)
class WorkspaceContext:
    current_tree_id: Optional[str] = None
    current_node_id: Optional[str] = None
    recent_tree_ids: tuple[str, ...] = field(default_factory=tuple)
    recent_limit: int = DEFAULT_RECENT_LIMIT

    @property
    def state(self) -> ContextState:
        if self.current_tree_id is None:
            return ContextState.NO_TREE
        if self.current_node_id is None:
            return ContextState.TREE_SELECTED
        return ContextState.TREE_AND_NODE_SELECTED

    def switch_tree(self, tree: Tree) -> "WorkspaceContext":
        """Select a tree. Always clears the current node."""
        recent = (tree.id,) + tuple(t for t in self.recent_tree_ids if t != tree.id)
        return replace(
            self,
            current_tree_id=tree.id,
            current_node_id=None,
            recent_tree_ids=recent[:self.recent_limit],
        )

    def checkout(self, node: ImageNode) -> "WorkspaceContext":
        """
        Move the current node pointer.

        Raises:
            CrossTreeCheckoutError: If no tree is selected or the node
                belongs to a different tree
        """
        if self.current_tree_id is None or node.tree_id != self.current_tree_id:
            raise CrossTreeCheckoutError(node.id, node.tree_id, self.current_tree_id)
        return replace(self, current_node_id=node.id)

    def forget_tree(self, tree_id: str) -> "WorkspaceContext":
        """Drop a deleted tree; clears both pointers if it was current."""
        recent = tuple(t for t in self.recent_tree_ids if t != tree_id)
        if tree_id == self.current_tree_id:
            return replace(self, current_tree_id=None, current_node_id=None, recent_tree_ids=recent)
        return replace(self, recent_tree_ids=recent)

    def clear_node(self) -> "WorkspaceContext":
        return replace(self, current_node_id=None)

    def to_dict(self) -> dict:
        d = asdict(self)
        d["recent_tree_ids"] = list(self.recent_tree_ids)
        d.pop("recent_limit")
        return d

    @classmethod
    def from_dict(cls, d: dict, recent_limit: int = DEFAULT_RECENT_LIMIT) -> "WorkspaceContext":
        tree_id = d.get("current_tree_id")
        return cls(
            current_tree_id=tree_id,
            # A node pointer without a tree pointer violates the invariant; drop it
            current_node_id=d.get("current_node_id") if tree_id else None,
            recent_tree_ids=tuple(d.get("recent_tree_ids") or ())[:recent_limit],
            recent_limit=recent_limit,
        )


class ContextFile:
    """The persisted pointer file (``context.json``)."""

    def __init__(self, path: Path, recent_limit: int = DEFAULT_RECENT_LIMIT):
        self._path = Path(path)
        self._recent_limit = recent_limit

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> WorkspaceContext:
        """Read the context; a missing file is an empty context."""
        if not self._path.exists():
            return WorkspaceContext(recent_limit=self._recent_limit)
        try:
            with open(self._path, encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise StorageIOError(f"Corrupt context file {self._path}: {e}") from e
        except OSError as e:
            raise StorageIOError(f"Failed to read {self._path}: {e}") from e
        return WorkspaceContext.from_dict(data, recent_limit=self._recent_limit)

    def save(self, context: WorkspaceContext) -> None:
        data = json.dumps(context.to_dict(), indent=2) + "\n"
        atomic_write(self._path, data.encode("utf-8"))
        logger.debug(
            "Context: tree=%s node=%s", context.current_tree_id, context.current_node_id
        )
