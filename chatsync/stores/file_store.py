"""Document store persisted as JSON files.

Storage layout:
    <root>/<collection>/<doc_id>.json

Documents are loaded once at construction and every applied write is
mirrored to disk atomically, so a crashed process never leaves a
half-written document behind.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

from chatsync.shared.services.durable_write import atomic_write_json, remove_file
from chatsync.stores.base import AccessRules, Document
from chatsync.stores.memory_store import MemoryDocumentStore

logger = logging.getLogger(__name__)


class JsonFileDocumentStore(MemoryDocumentStore):
    """MemoryDocumentStore that survives restarts."""

    def __init__(
        self,
        root: Path | str,
        rules: AccessRules | None = None,
        *,
        latency: float = 0.0,
    ) -> None:
        super().__init__(rules, latency=latency)
        self._root = Path(root).expanduser()
        self._root.mkdir(parents=True, exist_ok=True)
        self._load_all()

    @property
    def root(self) -> Path:
        return self._root

    def _path(self, collection: str, doc_id: str) -> Path:
        return self._root / collection / f"{doc_id}.json"

    def _load_all(self) -> None:
        loaded = 0
        for collection_dir in sorted(p for p in self._root.iterdir() if p.is_dir()):
            bucket = self._docs.setdefault(collection_dir.name, {})
            for path in sorted(collection_dir.glob("*.json")):
                try:
                    data = json.loads(path.read_text(encoding="utf-8"))
                except (OSError, ValueError) as exc:
                    logger.warning("Skipping unreadable document %s: %s", path, exc)
                    continue
                if not isinstance(data, dict):
                    logger.warning("Skipping non-object document %s", path)
                    continue
                bucket[path.stem] = data
                loaded += 1
        logger.info("Loaded %d document(s) from %s", loaded, self._root)

    def _after_write(self, collection: str, doc_id: str, data: Document | None) -> None:
        path = self._path(collection, doc_id)
        if data is None:
            remove_file(path)
        else:
            atomic_write_json(path, data)
