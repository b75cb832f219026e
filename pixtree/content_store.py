"""
Content-addressed blob storage.

Every blob is stored once under a filename derived from the SHA-256 digest
of its bytes. Storing the same bytes again is a no-op, so any number of
nodes may share one blob.
"""

import hashlib
import logging
import os
import tempfile
from pathlib import Path

from .errors import NotFoundError, StorageIOError

logger = logging.getLogger(__name__)

# Magic-byte signatures, checked in order
_SIGNATURES: list[tuple[bytes, str]] = [
    (b"\x89PNG\r\n\x1a\n", "png"),
    (b"\xff\xd8\xff", "jpg"),
    (b"GIF87a", "gif"),
    (b"GIF89a", "gif"),
]

BLOB_EXTENSIONS = ("png", "jpg", "webp", "gif", "bin")


def content_hash(data: bytes) -> str:
    """Full SHA-256 hex digest of the bytes."""
    return hashlib.sha256(data).hexdigest()


def sniff_extension(data: bytes) -> str:
    """Guess a file extension from the leading bytes."""
    for signature, ext in _SIGNATURES:
        if data.startswith(signature):
            return ext
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "webp"
    return "bin"


def _default_file_mode() -> int:
    """Mode a plain open() would give a new file under the current umask."""
    umask = os.umask(0)
    os.umask(umask)
    return 0o666 & ~umask


def atomic_write(path: Path, data: bytes) -> None:
    """
    Write bytes to path via a temp file in the same directory and a rename.

    Either the complete file appears at ``path`` or nothing does.

    Raises:
        StorageIOError: If the write or rename fails
    """
    tmp_name = None
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.chmod(tmp_name, _default_file_mode())
        os.replace(tmp_name, path)
        tmp_name = None
    except OSError as e:
        raise StorageIOError(f"Failed to write {path}: {e}") from e
    finally:
        if tmp_name is not None:
            try:
                os.unlink(tmp_name)
            except OSError:
                pass


class ContentStore:
    """
    Blob storage keyed by content hash.

    Args:
        images_dir: Directory holding the blobs
        root: Directory that relative blob paths are reported against
    """

    def __init__(self, images_dir: Path, root: Path):
        self._dir = Path(images_dir)
        self._root = Path(root)

    @property
    def directory(self) -> Path:
        return self._dir

    def _find(self, hash: str) -> Path | None:
        for ext in BLOB_EXTENSIONS:
            candidate = self._dir / f"{hash}.{ext}"
            if candidate.exists():
                return candidate
        return None

    def put(self, data: bytes) -> tuple[str, str]:
        """
        Store bytes, skipping the write if an identical blob exists.

        Returns:
            (hash, path relative to the project root)
        """
        digest = content_hash(data)
        existing = self._find(digest)
        if existing is not None:
            logger.debug("Blob %s already stored", digest[:12])
            path = existing
        else:
            path = self._dir / f"{digest}.{sniff_extension(data)}"
            atomic_write(path, data)
            logger.debug("Stored blob %s (%d bytes)", digest[:12], len(data))
        return digest, path.relative_to(self._root).as_posix()

    def get(self, hash: str) -> bytes:
        """Read a blob. Raises NotFoundError if no file backs the hash."""
        path = self._find(hash)
        if path is None:
            raise NotFoundError("image", hash)
        try:
            return path.read_bytes()
        except OSError as e:
            raise StorageIOError(f"Failed to read {path}: {e}") from e

    def exists(self, hash: str) -> bool:
        return self._find(hash) is not None

    def path_for(self, hash: str) -> Path:
        """Absolute path of a stored blob. Raises NotFoundError if absent."""
        path = self._find(hash)
        if path is None:
            raise NotFoundError("image", hash)
        return path

    def delete(self, hash: str) -> bool:
        """Remove a blob. Returns True if a file was removed."""
        path = self._find(hash)
        if path is None:
            return False
        try:
            path.unlink()
        except OSError as e:
            raise StorageIOError(f"Failed to delete {path}: {e}") from e
        logger.debug("Deleted blob %s", hash[:12])
        return True

    def list_hashes(self) -> list[str]:
        if not self._dir.exists():
            return []
        return sorted(
            p.stem for p in self._dir.iterdir()
            if p.is_file() and not p.name.startswith(".")
        )

    def total_size(self) -> int:
        """Bytes used by all blobs."""
        if not self._dir.exists():
            return 0
        return sum(
            p.stat().st_size for p in self._dir.iterdir()
            if p.is_file() and not p.name.startswith(".")
        )
