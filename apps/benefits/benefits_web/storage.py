"""Object storage for invoice files and the batch upload gateway.

Invoices live in a write-once bucket addressed by keys of the form
``{owner_id}/{timestamp_ms}-{file_name}``. :class:`FileUploadGateway` pushes a
batch of files into the bucket one at a time, in input order, and stops at
the first failure. Files stored earlier in the same batch are left in place;
the raised :class:`UploadError` lists them in ``uploaded_paths`` so callers
can report or clean up the orphans.
"""

from __future__ import annotations

import logging
import os
import shutil
import time
from pathlib import Path
from typing import BinaryIO, Callable, List, Optional, Sequence, Tuple

from werkzeug.datastructures import FileStorage
from werkzeug.utils import secure_filename

logger = logging.getLogger(__name__)

MAX_UPLOAD_BYTES = 50 * 1024 * 1024
DEFAULT_BUCKET = "request-attachments"


class StorageError(RuntimeError):
    """Raised when the object store rejects an operation."""


class UploadError(RuntimeError):
    """Raised when a file in an upload batch cannot be stored.

    Attributes:
        file_name: Original name of the file that failed.
        cause: Message describing the underlying failure.
        uploaded_paths: Keys stored earlier in the same batch. They are not
            rolled back.
    """

    def __init__(
        self, file_name: str, cause: str, uploaded_paths: Optional[List[str]] = None
    ):
        super().__init__(f"Error uploading file {file_name}: {cause}")
        self.file_name = file_name
        self.cause = cause
        self.uploaded_paths = list(uploaded_paths or [])


class LocalObjectStorage:
    """Filesystem-backed bucket with write-once keys."""

    def __init__(self, root: Path, bucket: str = DEFAULT_BUCKET):
        self.root = Path(root)
        self.bucket = bucket
        self._bucket_dir = (self.root / bucket).resolve()
        self._bucket_dir.mkdir(parents=True, exist_ok=True)

    def _path_for(self, key: str) -> Path:
        path = (self._bucket_dir / key).resolve()
        if self._bucket_dir not in path.parents:
            raise StorageError(f"Invalid storage key: {key!r}")
        return path

    def put(self, key: str, stream: BinaryIO) -> str:
        """Store ``stream`` under ``key`` and return the key.

        Raises:
            StorageError: When ``key`` already exists or cannot be written.
        """

        path = self._path_for(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        try:
            with path.open("xb") as target:
                shutil.copyfileobj(stream, target)
        except FileExistsError as exc:
            raise StorageError("The resource already exists") from exc
        except OSError as exc:
            path.unlink(missing_ok=True)
            raise StorageError(str(exc)) from exc
        return key

    def exists(self, key: str) -> bool:
        return self._path_for(key).is_file()

    def open(self, key: str) -> BinaryIO:
        path = self._path_for(key)
        if not path.is_file():
            raise StorageError(f"Object not found: {key}")
        return path.open("rb")

    def list(self, prefix: str = "") -> List[str]:
        """Return stored keys starting with ``prefix`` in sorted order."""

        keys = (
            path.relative_to(self._bucket_dir).as_posix()
            for path in self._bucket_dir.rglob("*")
            if path.is_file()
        )
        return sorted(key for key in keys if key.startswith(prefix))


def file_size(file: FileStorage) -> int:
    """Return the size of ``file`` in bytes, leaving its stream at offset 0."""

    stream = file.stream
    stream.seek(0, os.SEEK_END)
    size = stream.tell()
    stream.seek(0)
    return size


def _millis() -> int:
    return int(time.time() * 1000)


class FileUploadGateway:
    """Uploads invoice batches into a :class:`LocalObjectStorage` bucket."""

    def __init__(
        self,
        storage: LocalObjectStorage,
        *,
        max_bytes: int = MAX_UPLOAD_BYTES,
        clock: Callable[[], int] = _millis,
    ):
        self._storage = storage
        self._max_bytes = max_bytes
        self._clock = clock

    def build_key(self, owner_id: str, file_name: str, stamp: int) -> str:
        safe_name = secure_filename(file_name) or "invoice.bin"
        return f"{owner_id}/{stamp}-{safe_name}"

    def _free_key(self, owner_id: str, file_name: str, previous: int) -> Tuple[str, int]:
        """Return an unused key whose stamp is later than ``previous``."""

        stamp = max(self._clock(), previous + 1)
        key = self.build_key(owner_id, file_name, stamp)
        while self._storage.exists(key):
            stamp += 1
            key = self.build_key(owner_id, file_name, stamp)
        return key, stamp

    def upload(self, owner_id: str, files: Sequence[FileStorage]) -> List[str]:
        """Store ``files`` under ``owner_id`` and return their keys in order.

        Args:
            owner_id: Namespace for the keys. Must not be empty.
            files: Files to upload. An empty sequence returns ``[]`` without
                touching storage.

        Raises:
            ValueError: If ``owner_id`` is empty.
            UploadError: On the first file that is too large or that storage
                rejects. Remaining files are not attempted.
        """

        if not owner_id:
            raise ValueError("owner_id is required for uploads")
        if not files:
            return []

        uploaded: List[str] = []
        last_stamp = -1
        for file in files:
            name = file.filename or "invoice.bin"
            size = file_size(file)
            logger.info("Uploading file %s (%d bytes) for %s", name, size, owner_id)
            if size > self._max_bytes:
                limit_mb = self._max_bytes // (1024 * 1024)
                logger.warning("File %s exceeds the %d MB limit", name, limit_mb)
                raise UploadError(
                    name, f"file exceeds the {limit_mb}MB limit", uploaded
                )

            try:
                key, last_stamp = self._free_key(owner_id, name, last_stamp)
                path = self._storage.put(key, file.stream)
            except StorageError as exc:
                logger.error("Upload error for file %s: %s", name, exc)
                raise UploadError(name, str(exc), uploaded) from exc
            logger.info("Upload successful, path: %s", path)
            uploaded.append(path)

        logger.info("All uploads completed for %s: %s", owner_id, uploaded)
        return uploaded
