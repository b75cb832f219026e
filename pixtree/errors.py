"""
Error types and error logging for pixtree.

Logs full stack traces for debugging while showing clean messages to users.
"""

import os
import traceback
from datetime import datetime, timezone
from pathlib import Path


class PixtreeError(Exception):
    """Base class for all pixtree errors."""


class NotFoundError(PixtreeError):
    """An entity, blob, or tree does not exist."""

    def __init__(self, kind: str, id: str):
        self.kind = kind
        self.id = id
        super().__init__(f"{kind.capitalize()} not found: {id}")


class NotInitializedError(PixtreeError):
    """The working copy has no pixtree project."""

    def __init__(self, path: Path | str):
        self.path = Path(path)
        super().__init__(
            f'Project not initialized at {self.path}. Run "pixtree init" first.'
        )


class AlreadyInitializedError(PixtreeError):
    """init was called on a working copy that already holds a project."""

    def __init__(self, path: Path | str):
        self.path = Path(path)
        super().__init__(f"Project already initialized at {self.path}")


class InvalidParentError(PixtreeError):
    """A parent reference is dangling or points into another tree."""


class CrossTreeCheckoutError(PixtreeError):
    """Checkout of a node that does not belong to the current tree."""

    def __init__(self, node_id: str, node_tree_id: str, current_tree_id: str | None):
        self.node_id = node_id
        self.node_tree_id = node_tree_id
        self.current_tree_id = current_tree_id
        if current_tree_id is None:
            msg = f"Cannot checkout {node_id}: no tree selected (node is in {node_tree_id})"
        else:
            msg = (
                f"Cannot checkout {node_id}: node is in tree {node_tree_id}, "
                f"current tree is {current_tree_id}"
            )
        super().__init__(msg)


class CircularReferenceError(PixtreeError):
    """A parent chain loops back on itself."""


class NotEmptyError(PixtreeError):
    """Deleting a tree or node that still has dependents."""


class StorageIOError(PixtreeError):
    """Disk failure while reading or writing the working copy."""


class BackendFailure(PixtreeError):
    """Opaque failure reported by a generation or analysis backend."""

    def __init__(self, provider: str, message: str):
        self.provider = provider
        super().__init__(message)


def _error_log_path() -> Path:
    """Resolve error log path, respecting PIXTREE_PROJECT_PATH."""
    project = os.environ.get("PIXTREE_PROJECT_PATH")
    if project:
        return Path(project) / ".pixtree" / "pixtree-errors.log"
    return Path.home() / ".pixtree" / "pixtree-errors.log"


def log_exception(exc: Exception, context: str = "", log_path: Path | None = None) -> Path:
    """
    Log exception with full traceback to file.

    Args:
        exc: The exception that occurred
        context: Optional context string (e.g., command name)
        log_path: Explicit log file (defaults to the project error log)

    Returns:
        Path to the error log file
    """
    log_path = log_path or _error_log_path()
    timestamp = datetime.now(timezone.utc).isoformat()
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(log_path, os.O_WRONLY | os.O_CREAT | os.O_APPEND, 0o600)
        with os.fdopen(fd, "a") as f:
            f.write(f"\n{'='*60}\n")
            f.write(f"[{timestamp}]")
            if context:
                f.write(f" {context}")
            f.write("\n")
            f.write("".join(traceback.format_exception(exc)))
    except OSError:
        pass  # Error log is best effort
    return log_path
