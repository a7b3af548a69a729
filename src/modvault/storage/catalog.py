from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from pathlib import Path

from pydantic import ValidationError

from modvault.errors import StorageFailure
from modvault.schemas import ItemRecord

logger = logging.getLogger(__name__)


class CatalogStore:
    """Ordered item catalog persisted as a single JSON array.

    ``load`` never raises: a missing or unreadable catalog reads as an empty
    one. Mutations must go through ``transaction``, which serializes
    load-mutate-save cycles in this process and refuses to start over a
    catalog it cannot parse, so a corrupt file is never overwritten.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.lock = threading.RLock()

    def load(self) -> list[ItemRecord]:
        try:
            return self.load_strict()
        except StorageFailure as exc:
            logger.warning("catalog corrupt path=%s error=%s", self.path, exc.detail)
            return []

    def load_strict(self) -> list[ItemRecord]:
        """Like ``load`` but raises ``StorageFailure`` for an existing, unparseable catalog."""
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return []
        except (OSError, UnicodeDecodeError) as exc:
            raise StorageFailure(f"Catalog unreadable: {exc}") from exc

        if not raw.strip():
            return []

        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise StorageFailure(f"Catalog is not valid JSON: {exc}") from exc

        if not isinstance(payload, list):
            raise StorageFailure("Catalog root is not an array")

        try:
            return [ItemRecord.model_validate(entry) for entry in payload]
        except ValidationError as exc:
            raise StorageFailure(
                f"Catalog has an invalid record ({exc.error_count()} errors)"
            ) from exc

    def save(self, items: Iterable[ItemRecord]) -> None:
        payload = [item.model_dump(mode="json") for item in items]
        content = json.dumps(payload, ensure_ascii=False, indent=2)
        self._atomic_write_text(content)
        logger.debug("catalog saved path=%s items=%d", self.path, len(payload))

    @contextmanager
    def transaction(self) -> Iterator[list[ItemRecord]]:
        """Hold the catalog lock and yield a freshly loaded catalog.

        Raises ``StorageFailure`` before yielding when the catalog file exists
        but cannot be parsed.
        """
        with self.lock:
            items = self.load_strict()
            yield items

    def _atomic_write_text(self, content: str) -> None:
        fd, tmp_path = tempfile.mkstemp(
            dir=str(self.path.parent),
            prefix=f".{self.path.name}.",
            suffix=".tmp",
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as tmp_handle:
                tmp_handle.write(content)
                tmp_handle.flush()
                os.fsync(tmp_handle.fileno())
            os.replace(tmp_path, self.path)
        except BaseException:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise


def find_item(items: list[ItemRecord], ref: str) -> int | None:
    """Index of the record whose id or storage name equals ``ref``."""
    for index, item in enumerate(items):
        if item.id == ref or item.storage_name == ref:
            return index
    return None
