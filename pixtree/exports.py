"""
Export bookkeeping: where each node's image has been copied to.

History is a JSON object in ``exports.json`` mapping node ID to a list of
export records, oldest first.
"""

import json
import logging
from dataclasses import asdict, dataclass
from pathlib import Path, PurePath
from typing import Iterable, Optional

from .content_store import atomic_write
from .errors import StorageIOError
from .types import parse_utc_timestamp, utc_now

logger = logging.getLogger(__name__)

EXPORTS_FILENAME = "exports.json"


@dataclass
class ExportRecord:
    node_id: str
    path: str
    exported_at: str
    format: str
    custom_name: Optional[str] = None


@dataclass
class ExportStats:
    count: int
    last_exported_at: Optional[str]
    formats: list[str]


class ExportLog:
    """Per-node export history stored in ``exports.json``."""

    def __init__(self, path: Path):
        self._path = Path(path)

    def _load(self) -> dict[str, list[ExportRecord]]:
        if not self._path.exists():
            return {}
        try:
            with open(self._path, encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise StorageIOError(f"Corrupt export log {self._path}: {e}") from e
        except OSError as e:
            raise StorageIOError(f"Failed to read {self._path}: {e}") from e
        return {
            node_id: [ExportRecord(**record) for record in records]
            for node_id, records in data.items()
        }

    def _save(self, history: dict[str, list[ExportRecord]]) -> None:
        data = {
            node_id: [asdict(r) for r in records]
            for node_id, records in history.items()
            if records
        }
        atomic_write(self._path, (json.dumps(data, indent=2) + "\n").encode("utf-8"))

    def record_export(self, node_id: str, destination: Path | str,
                      format: Optional[str] = None,
                      custom_name: Optional[str] = None) -> ExportRecord:
        """Append one export to a node's history."""
        history = self._load()
        record = ExportRecord(
            node_id=node_id,
            path=str(destination),
            exported_at=utc_now(),
            format=format or PurePath(str(destination)).suffix[1:].lower(),
            custom_name=custom_name,
        )
        history.setdefault(node_id, []).append(record)
        self._save(history)
        logger.debug("Recorded export of %s to %s", node_id, destination)
        return record

    def history(self, node_id: str) -> list[ExportRecord]:
        return self._load().get(node_id, [])

    def all_history(self) -> dict[str, list[ExportRecord]]:
        return self._load()

    def stats(self, node_id: str) -> ExportStats:
        records = self.history(node_id)
        last = max(records, key=lambda r: parse_utc_timestamp(r.exported_at), default=None)
        return ExportStats(
            count=len(records),
            last_exported_at=last.exported_at if last else None,
            formats=list(dict.fromkeys(r.format for r in records)),
        )

    def remove(self, node_id: str, path: Path | str) -> bool:
        """Drop the records of one export destination. True if any were removed."""
        history = self._load()
        records = history.get(node_id)
        if not records:
            return False
        kept = [r for r in records if r.path != str(path)]
        if len(kept) == len(records):
            return False
        history[node_id] = kept
        self._save(history)
        return True

    def prune_missing_nodes(self, existing_ids: Iterable[str]) -> int:
        """Forget exports of deleted nodes. Returns the number of records removed."""
        history = self._load()
        existing = set(existing_ids)
        removed = 0
        for node_id in list(history):
            if node_id not in existing:
                removed += len(history.pop(node_id))
        if removed:
            self._save(history)
        return removed
