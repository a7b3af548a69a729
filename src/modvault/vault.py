from __future__ import annotations

import logging
import secrets
import time
from collections.abc import Callable, Iterator
from contextlib import ExitStack, contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import BinaryIO

from modvault.config import AppConfig, LimitsConfig
from modvault.errors import InvalidFileType, MalformedRequest, NotFound, StorageFailure
from modvault.policy import Operation, require
from modvault.query import list_public
from modvault.schemas import ItemMetadata, ItemRecord, Principal, PublicItemView, now_utc
from modvault.storage import (
    CatalogStore,
    StagedFile,
    UploadDirectory,
    extension_of,
    find_item,
    new_storage_name,
)

logger = logging.getLogger(__name__)

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"
_MAX_NAME_ATTEMPTS = 5


def new_item_id() -> str:
    """Millisecond timestamp in base36 followed by a short random suffix."""
    value = time.time_ns() // 1_000_000
    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36[remainder])
    return "".join(reversed(digits or ["0"])) + secrets.token_hex(4)


@dataclass(slots=True, frozen=True)
class ItemContent:
    item: ItemRecord
    path: Path

    def open(self) -> BinaryIO:
        try:
            return self.path.open("rb")
        except FileNotFoundError as exc:
            raise NotFound("File not found") from exc

    def iter_bytes(self, chunk_size: int = 64 * 1024) -> Iterator[bytes]:
        with self.open() as handle:
            while chunk := handle.read(chunk_size):
                yield chunk


@dataclass(slots=True, frozen=True)
class ConsistencyReport:
    orphaned_files: list[str] = field(default_factory=list)
    dangling_records: list[str] = field(default_factory=list)
    duplicate_storage_names: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not (self.orphaned_files or self.dangling_records or self.duplicate_storage_names)


class ItemVault:
    """Coordinates the upload directory with the catalog for every mutation.

    Each mutation ends either fully applied (catalog and files agree) or not
    applied at all, with staged content cleaned up. Content is streamed into
    staging outside the catalog lock; only promotion and the catalog save run
    under it.
    """

    def __init__(
        self,
        catalog: CatalogStore,
        files: UploadDirectory,
        limits: LimitsConfig | None = None,
        *,
        name_factory: Callable[[str], str] = new_storage_name,
        id_factory: Callable[[], str] = new_item_id,
        clock: Callable[[], datetime] = now_utc,
    ) -> None:
        self.catalog = catalog
        self.files = files
        self.limits = limits or LimitsConfig()
        self.name_factory = name_factory
        self.id_factory = id_factory
        self.clock = clock

    @classmethod
    def from_config(cls, config: AppConfig) -> ItemVault:
        return cls(
            catalog=CatalogStore(config.storage.catalog_file),
            files=UploadDirectory(
                config.storage.upload_dir,
                config.storage.staging_dir,
                chunk_size=config.limits.chunk_size,
            ),
            limits=config.limits,
        )

    def create_item(
        self,
        principal: Principal,
        metadata: ItemMetadata,
        stream: BinaryIO,
        original_name: str,
    ) -> ItemRecord:
        require(principal, Operation.CREATE)
        original_name = self._validate_upload_name(original_name)
        staged = self._stage(stream)

        with self._transaction_for(staged) as items:
            try:
                storage_name = self._unique_storage_name(original_name, items)
                record = ItemRecord(
                    id=self._unique_item_id(items),
                    title=metadata.title or original_name,
                    description=metadata.description,
                    category=metadata.category,
                    storage_name=storage_name,
                    original_name=original_name,
                    size_bytes=staged.size_bytes,
                    uploaded_at=self.clock(),
                    is_public=metadata.is_public,
                    uploader=principal.username,
                )
            except BaseException:
                self.files.discard(staged)
                raise

            self._promote(staged, storage_name)
            items.insert(0, record)
            self._commit(
                items,
                rollback=lambda: self._remove_quietly(storage_name),
            )

        logger.info(
            "item created id=%s storage_name=%s size=%d public=%s by=%s",
            record.id,
            record.storage_name,
            record.size_bytes,
            record.is_public,
            principal.label(),
        )
        return record

    def replace_item_file(
        self,
        principal: Principal,
        ref: str,
        stream: BinaryIO,
        original_name: str,
    ) -> ItemRecord:
        require(principal, Operation.REPLACE)
        self._lookup(ref, strict=True)
        original_name = self._validate_upload_name(original_name)
        staged = self._stage(stream)

        with self._transaction_for(staged) as items:
            try:
                index = find_item(items, ref)
                if index is None:
                    raise NotFound("File not found")
                current = items[index]
                storage_name = self._unique_storage_name(original_name, items)
            except BaseException:
                self.files.discard(staged)
                raise

            self._promote(staged, storage_name)
            updated = current.model_copy(
                update={
                    "storage_name": storage_name,
                    "original_name": original_name,
                    "size_bytes": staged.size_bytes,
                    "uploaded_at": self.clock(),
                }
            )
            items[index] = updated
            self._commit(
                items,
                rollback=lambda: self._remove_quietly(storage_name),
            )

            if not self.files.remove(current.storage_name):
                logger.error(
                    "replaced file left behind as orphan storage_name=%s",
                    current.storage_name,
                )

        logger.info(
            "item replaced id=%s old=%s new=%s size=%d by=%s",
            updated.id,
            current.storage_name,
            updated.storage_name,
            updated.size_bytes,
            principal.label(),
        )
        return updated

    def delete_item(self, principal: Principal, ref: str) -> None:
        require(principal, Operation.DELETE)

        with self.catalog.transaction() as items:
            index = find_item(items, ref)
            if index is None:
                raise NotFound("File not found")
            item = items[index]

            try:
                retired = self.files.retire(item.storage_name)
            except FileNotFoundError as exc:
                raise StorageFailure(
                    f"Failed to delete file: {item.storage_name} is missing from storage"
                ) from exc
            except OSError as exc:
                raise StorageFailure(f"Failed to delete file: {exc}") from exc

            del items[index]
            self._commit(
                items,
                rollback=lambda: self._restore_quietly(retired, item.storage_name),
            )
            self.files.discard(retired)

        logger.info(
            "item deleted id=%s storage_name=%s by=%s",
            item.id,
            item.storage_name,
            principal.label(),
        )

    def list_public_items(self) -> list[PublicItemView]:
        return list_public(self.catalog.load())

    def list_items(self, principal: Principal) -> list[ItemRecord]:
        require(principal, Operation.LIST_ALL)
        return self.catalog.load()

    def get_item(self, principal: Principal, ref: str) -> ItemRecord:
        item = self._lookup(ref)
        require(principal, Operation.READ, item)
        return item

    def read_item_content(self, principal: Principal, ref: str) -> ItemContent:
        item = self._lookup(ref)
        require(principal, Operation.READ, item)
        path = self.files.path_for(item.storage_name)
        if not path.is_file():
            logger.error("catalog references missing file storage_name=%s", item.storage_name)
            raise NotFound("File not found")
        return ItemContent(item=item, path=path)

    def verify(self) -> ConsistencyReport:
        with self.catalog.transaction() as items:
            on_disk = set(self.files.list_names())
            seen: set[str] = set()
            duplicates: list[str] = []
            for item in items:
                if item.storage_name in seen and item.storage_name not in duplicates:
                    duplicates.append(item.storage_name)
                seen.add(item.storage_name)

        return ConsistencyReport(
            orphaned_files=sorted(on_disk - seen),
            dangling_records=sorted(seen - on_disk),
            duplicate_storage_names=sorted(duplicates),
        )

    def prune_orphans(self, principal: Principal) -> list[str]:
        require(principal, Operation.DELETE)
        with self.catalog.transaction() as items:
            referenced = {item.storage_name for item in items}
            removed = [
                name
                for name in self.files.list_names()
                if name not in referenced and self.files.remove(name)
            ]
        for name in removed:
            logger.info("orphan removed storage_name=%s by=%s", name, principal.label())
        return removed

    def recover_staging(self) -> int:
        """Drop leftovers of interrupted operations; only safe while no upload is in flight."""
        with self.catalog.lock:
            removed = self.files.clear_staging()
        if removed:
            logger.warning("staging leftovers removed count=%d", removed)
        return removed

    def _lookup(self, ref: str, *, strict: bool = False) -> ItemRecord:
        items = self.catalog.load_strict() if strict else self.catalog.load()
        index = find_item(items, ref)
        if index is None:
            raise NotFound("File not found")
        return items[index]

    @contextmanager
    def _transaction_for(self, staged: StagedFile) -> Iterator[list[ItemRecord]]:
        """Catalog transaction that discards ``staged`` if the catalog cannot be opened."""
        with ExitStack() as stack:
            try:
                items = stack.enter_context(self.catalog.transaction())
            except BaseException:
                self.files.discard(staged)
                raise
            yield items

    def _validate_upload_name(self, original_name: str | None) -> str:
        name = (original_name or "").strip()
        if not name:
            raise MalformedRequest("No file uploaded")
        ext = extension_of(name)
        if ext not in self.limits.allowed_extensions:
            raise InvalidFileType(f"File type not allowed: {ext or '(none)'}")
        return name

    def _stage(self, stream: BinaryIO | None) -> StagedFile:
        if stream is None:
            raise MalformedRequest("No file uploaded")
        try:
            return self.files.stage(
                stream,
                max_bytes=self.limits.max_file_bytes,
                deadline_seconds=self.limits.upload_deadline_seconds,
            )
        except OSError as exc:
            raise StorageFailure(f"Failed to receive upload: {exc}") from exc

    def _unique_item_id(self, items: list[ItemRecord]) -> str:
        taken = {item.id for item in items}
        for _ in range(_MAX_NAME_ATTEMPTS):
            item_id = self.id_factory()
            if item_id not in taken:
                return item_id
        raise StorageFailure("Could not allocate a unique item id")

    def _unique_storage_name(self, original_name: str, items: list[ItemRecord]) -> str:
        taken = {item.storage_name for item in items}
        for _ in range(_MAX_NAME_ATTEMPTS):
            storage_name = self.name_factory(original_name)
            if storage_name not in taken and not self.files.exists(storage_name):
                return storage_name
        raise StorageFailure("Could not allocate a unique storage name")

    def _promote(self, staged: StagedFile, storage_name: str) -> None:
        try:
            self.files.promote(staged, storage_name)
        except OSError as exc:
            self.files.discard(staged)
            raise StorageFailure(f"Failed to store file: {exc}") from exc

    def _commit(self, items: list[ItemRecord], *, rollback: Callable[[], None]) -> None:
        try:
            self.catalog.save(items)
        except OSError as exc:
            logger.error("catalog save failed path=%s error=%s", self.catalog.path, exc)
            rollback()
            raise StorageFailure(f"Failed to save catalog: {exc}") from exc

    def _remove_quietly(self, storage_name: str) -> None:
        if not self.files.remove(storage_name):
            logger.error("rollback left orphan storage_name=%s", storage_name)

    def _restore_quietly(self, retired: StagedFile, storage_name: str) -> None:
        try:
            self.files.restore(retired, storage_name)
        except OSError as exc:
            logger.error(
                "rollback could not restore storage_name=%s retired=%s error=%s",
                storage_name,
                retired.path,
                exc,
            )
