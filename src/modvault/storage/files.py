from __future__ import annotations

import logging
import os
import tempfile
import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO

from modvault.errors import FileTooLarge, UploadTimeout

logger = logging.getLogger(__name__)

STAGED_PREFIX = "upload-"
RETIRED_PREFIX = "retired-"


def default_file_mode() -> int:
    """Mode a plain ``open()`` would give a new file under the current umask."""
    umask = os.umask(0o022)
    os.umask(umask)
    return 0o666 & ~umask


@dataclass(slots=True, frozen=True)
class StagedFile:
    path: Path
    size_bytes: int


class UploadDirectory:
    """Flat directory of stored files plus a staging area for in-flight content.

    Staging and upload directories must share a filesystem so that promotion
    and retirement are plain renames. Staged files are set to ``file_mode``
    (umask-derived by default) before promotion.
    """

    def __init__(
        self,
        upload_dir: str | Path,
        staging_dir: str | Path,
        *,
        chunk_size: int = 64 * 1024,
        clock: Callable[[], float] = time.monotonic,
        file_mode: int | None = None,
    ) -> None:
        if chunk_size < 1:
            raise ValueError("chunk_size must be >= 1")

        self.upload_dir = Path(upload_dir)
        self.staging_dir = Path(staging_dir)
        self.upload_dir.mkdir(parents=True, exist_ok=True)
        self.staging_dir.mkdir(parents=True, exist_ok=True)
        self.chunk_size = chunk_size
        self.clock = clock
        self.file_mode = default_file_mode() if file_mode is None else file_mode

    def path_for(self, storage_name: str) -> Path:
        if not storage_name or Path(storage_name).name != storage_name or storage_name in {".", ".."}:
            raise ValueError(f"invalid storage name: {storage_name!r}")
        return self.upload_dir / storage_name

    def exists(self, storage_name: str) -> bool:
        return self.path_for(storage_name).is_file()

    def list_names(self) -> list[str]:
        return sorted(path.name for path in self.upload_dir.iterdir() if path.is_file())

    def stage(
        self,
        stream: BinaryIO,
        *,
        max_bytes: int,
        deadline_seconds: float | None = None,
    ) -> StagedFile:
        """Copy ``stream`` into the staging area, enforcing size and duration ceilings.

        The staged file is removed before any error propagates.
        """
        started_at = self.clock()
        fd, tmp_name = tempfile.mkstemp(dir=str(self.staging_dir), prefix=STAGED_PREFIX, suffix=".part")
        staged_path = Path(tmp_name)
        written = 0
        try:
            with os.fdopen(fd, "wb") as handle:
                while True:
                    chunk = stream.read(self.chunk_size)
                    if not chunk:
                        break
                    written += len(chunk)
                    if written > max_bytes:
                        raise FileTooLarge(f"file exceeds the {max_bytes} byte limit")
                    if deadline_seconds is not None and self.clock() - started_at > deadline_seconds:
                        raise UploadTimeout(
                            f"upload exceeded the {deadline_seconds:.0f}s duration limit"
                        )
                    handle.write(chunk)
                handle.flush()
                os.fsync(handle.fileno())
            os.chmod(staged_path, self.file_mode)
        except BaseException:
            self._unlink_quietly(staged_path)
            raise

        logger.debug("staged upload path=%s size=%d", staged_path.name, written)
        return StagedFile(path=staged_path, size_bytes=written)

    def promote(self, staged: StagedFile, storage_name: str) -> Path:
        target = self.path_for(storage_name)
        if target.exists():
            raise FileExistsError(f"storage name already in use: {storage_name}")
        os.replace(staged.path, target)
        return target

    def retire(self, storage_name: str) -> StagedFile:
        """Move a stored file into staging; raises FileNotFoundError if absent."""
        source = self.path_for(storage_name)
        retired = self.staging_dir / f"{RETIRED_PREFIX}{storage_name}"
        size = source.stat().st_size
        os.replace(source, retired)
        return StagedFile(path=retired, size_bytes=size)

    def restore(self, retired: StagedFile, storage_name: str) -> None:
        os.replace(retired.path, self.path_for(storage_name))

    def discard(self, staged: StagedFile) -> None:
        self._unlink_quietly(staged.path)

    def remove(self, storage_name: str) -> bool:
        """Best-effort removal of a stored file; returns whether it is gone."""
        return self._unlink_quietly(self.path_for(storage_name))

    def clear_staging(self) -> int:
        removed = 0
        for path in self.staging_dir.iterdir():
            if not path.is_file():
                continue
            if not path.name.startswith((STAGED_PREFIX, RETIRED_PREFIX)):
                continue
            if self._unlink_quietly(path):
                removed += 1
        return removed

    @staticmethod
    def _unlink_quietly(path: Path) -> bool:
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            logger.warning("failed to remove file path=%s error=%s", path, exc)
            return False
        return True
