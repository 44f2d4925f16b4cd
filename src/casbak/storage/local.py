"""
Local-directory archive adapter.

Implements RemoteStore against a directory on a locally mounted filesystem
(external disk, NFS mount). Uses the same layout and publish guarantees as
the SFTP adapter: blobs are replaced atomically with ``os.replace`` and
write-once objects (``id``, manifests) use ``os.link`` so an existing name is
never clobbered.
"""
from __future__ import annotations

import errno
import logging
import os
import tempfile
import uuid
from pathlib import Path

from ..path_safety import safe_blob_name, safe_manifest_name
from ..runtime import write_stream_atomically
from .base import FILES_DIR, ID_NAME, MANIFESTS_DIR, ExistsResult, PublishResult, RemoteStore
from .errors import (
    ArchiveLayoutError,
    ManifestExistsError,
    RemoteConnectError,
    RemotePublishError,
)

__all__ = ["LocalRemoteStore"]

logger = logging.getLogger(__name__)


class LocalRemoteStore(RemoteStore):
    """RemoteStore adapter for an archive rooted at a local directory."""

    def __init__(self, root: Path) -> None:
        self._root = Path(root)
        self._connected = False

    def __enter__(self) -> LocalRemoteStore:
        self.connect()
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    @property
    def root(self) -> Path:
        return self._root

    def connect(self) -> None:
        """Ensure the archive root exists and is a directory."""
        try:
            self._root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise RemoteConnectError(f"Cannot open archive directory {self._root}: {e}") from e
        if not self._root.is_dir():
            raise RemoteConnectError(f"Archive root is not a directory: {self._root}")
        self._connected = True
        logger.debug(f"Opened local archive at {self._root}")

    def close(self) -> None:
        self._connected = False

    def bootstrap(self) -> str:
        id_path = self._root / ID_NAME
        if not id_path.exists():
            archive_id = uuid.uuid4().hex
            logger.info(f"Initializing new archive at {self._root}")
            try:
                (self._root / FILES_DIR).mkdir(exist_ok=True)
                (self._root / MANIFESTS_DIR).mkdir(exist_ok=True)
            except OSError as e:
                raise ArchiveLayoutError(f"Cannot create archive layout under {self._root}: {e}") from e

            if self._publish_once(id_path, f"{archive_id}\n".encode("utf-8")):
                return archive_id
            logger.info("Archive was initialized concurrently; using existing id")

        return self._read_id(id_path)

    def exists(self, sha256: str) -> ExistsResult:
        try:
            os.stat(self._root / FILES_DIR / sha256)
        except FileNotFoundError:
            return ExistsResult.ABSENT
        except OSError as e:
            logger.debug(f"Existence check for {sha256} failed: {e}")
            return ExistsResult.UNKNOWN
        return ExistsResult.PRESENT

    def publish_blob(self, sha256: str, source_path: Path) -> PublishResult:
        name = safe_blob_name(sha256)
        target = self._root / FILES_DIR / name
        try:
            with open(source_path, "rb") as src:
                size = write_stream_atomically(target, src)
        except OSError as e:
            raise RemotePublishError(f"Failed to publish {name}: {e}") from e
        return PublishResult(name=name, size=size)

    def publish_manifest(self, timestamp_id: str, payload: bytes) -> PublishResult:
        name = safe_manifest_name(timestamp_id)
        target = self._root / MANIFESTS_DIR / name
        try:
            created = self._publish_once(target, payload)
        except OSError as e:
            raise RemotePublishError(f"Failed to publish manifest {name}: {e}") from e
        if not created:
            raise ManifestExistsError(f"Manifest already exists: {name}")
        return PublishResult(name=name, size=len(payload))

    def _publish_once(self, target: Path, payload: bytes) -> bool:
        """
        Write ``payload`` under ``target`` unless the name already exists.

        Returns:
            True if this call created the object, False if it already existed
        """
        fd, temp_name = tempfile.mkstemp(prefix=f".{target.name}.", suffix=".tmp", dir=target.parent)
        try:
            with os.fdopen(fd, "wb") as out:
                out.write(payload)
                out.flush()
                os.fsync(out.fileno())
            try:
                os.link(temp_name, target)
            except FileExistsError:
                return False
            except OSError as e:
                if e.errno != errno.EEXIST:
                    raise
                return False
            return True
        finally:
            try:
                os.unlink(temp_name)
            except FileNotFoundError:
                pass

    def _read_id(self, id_path: Path) -> str:
        try:
            archive_id = id_path.read_text(encoding="utf-8").strip()
        except OSError as e:
            raise ArchiveLayoutError(f"Cannot read archive id {id_path}: {e}") from e
        if not archive_id:
            raise ArchiveLayoutError(f"Archive id is empty: {id_path}")
        return archive_id
