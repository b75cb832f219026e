"""
pixtree: a versioned image artifact store.

Images are stored once by content hash; nodes record where each image
came from (a generation prompt or an imported file) and which node it was
derived from. Nodes are grouped into trees, trees into one project per
working copy.

Example:
    from pixtree import Pixtree

    pt = Pixtree("/path/to/art")
    pt.init(name="Posters")
    first = pt.generate("a lighthouse at dusk")
    second = pt.generate("same lighthouse, in snow")   # derives from first
"""

from .api import Pixtree
from .errors import (
    AlreadyInitializedError,
    BackendFailure,
    CircularReferenceError,
    CrossTreeCheckoutError,
    InvalidParentError,
    NotEmptyError,
    NotFoundError,
    NotInitializedError,
    PixtreeError,
    StorageIOError,
)
from .query import SearchQuery
from .types import ImageNode, Project, Tree

__version__ = "0.1.0"

__all__ = [
    "Pixtree",
    "SearchQuery",
    "ImageNode",
    "Project",
    "Tree",
    "PixtreeError",
    "NotFoundError",
    "NotInitializedError",
    "AlreadyInitializedError",
    "InvalidParentError",
    "CrossTreeCheckoutError",
    "CircularReferenceError",
    "NotEmptyError",
    "StorageIOError",
    "BackendFailure",
]
