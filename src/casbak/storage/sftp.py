"""
SFTP archive adapter.

Implements RemoteStore over a single SSH/SFTP session (paramiko). The session
is opened once by ``connect()`` and reused for every call; there is no
reconnect or retry, so any transport failure after connecting is fatal.

Publishing follows write-to-temporary-sibling then rename:
- blobs use ``posix_rename`` (atomic replace, OpenSSH extension)
- ``id`` and manifests use plain SFTP ``rename``, which refuses to overwrite
"""
from __future__ import annotations

import errno
import logging
import posixpath
import socket
import stat
import uuid
from pathlib import Path
from typing import IO, Optional

import paramiko

from ..path_safety import safe_blob_name, safe_manifest_name
from ..settings import Destination
from .base import FILES_DIR, ID_NAME, MANIFESTS_DIR, ExistsResult, PublishResult, RemoteStore
from .errors import (
    ArchiveLayoutError,
    ManifestExistsError,
    RemoteConnectError,
    RemotePublishError,
    RemoteStoreError,
)

__all__ = ["SftpRemoteStore"]

logger = logging.getLogger(__name__)

CONNECT_TIMEOUT_S = 30


class SftpRemoteStore(RemoteStore):
    """
    RemoteStore adapter for an archive reachable as ``user@host:path``.

    Authenticates with the SSH agent, default keys, or an explicit identity
    file. Host keys are loaded from the user's known_hosts.
    """

    def __init__(
        self,
        destination: Destination,
        *,
        port: int = 22,
        identity_file: Optional[Path] = None,
        client: Optional[paramiko.SSHClient] = None,
    ) -> None:
        if destination.host is None:
            raise ValueError("SftpRemoteStore requires a remote destination (user@host:path)")
        self._dest = destination
        self._port = port
        self._identity_file = identity_file
        self._client = client
        self._sftp: Optional[paramiko.SFTPClient] = None

    def __enter__(self) -> SftpRemoteStore:
        self.connect()
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # connection

    def connect(self) -> None:
        if self._sftp is not None:
            return

        logger.info(f"Connecting to {self._dest.user}@{self._dest.host}:{self._port}")
        client = self._client or paramiko.SSHClient()
        client.load_system_host_keys()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())

        kwargs = dict(
            hostname=self._dest.host,
            port=self._port,
            username=self._dest.user,
            allow_agent=True,
            look_for_keys=True,
            timeout=CONNECT_TIMEOUT_S,
        )
        if self._identity_file is not None:
            kwargs["key_filename"] = str(self._identity_file)

        try:
            client.connect(**kwargs)
            self._sftp = client.open_sftp()
        except (paramiko.SSHException, socket.error, OSError) as e:
            client.close()
            raise RemoteConnectError(
                f"Cannot connect to {self._dest.display()}: {e}"
            ) from e

        self._client = client
        logger.debug("SFTP session established")

    def close(self) -> None:
        if self._sftp is not None:
            self._sftp.close()
            self._sftp = None
        if self._client is not None:
            self._client.close()

    @property
    def sftp(self) -> paramiko.SFTPClient:
        if self._sftp is None:
            raise RemoteStoreError("SFTP session is not connected")
        return self._sftp

    def _path(self, *parts: str) -> str:
        return posixpath.join(self._dest.path, *parts)

    # archive operations

    def bootstrap(self) -> str:
        id_path = self._path(ID_NAME)
        try:
            if not self._remote_exists(id_path):
                archive_id = uuid.uuid4().hex
                logger.info(f"Initializing new archive at {self._dest.display()}")
                self._ensure_dir(self._dest.path)
                self._ensure_dir(self._path(FILES_DIR))
                self._ensure_dir(self._path(MANIFESTS_DIR))
                if self._publish_once(id_path, f"{archive_id}\n".encode("utf-8")):
                    return archive_id
                logger.info("Archive was initialized concurrently; using existing id")

            with self.sftp.open(id_path, "rb") as fh:
                archive_id = fh.read().decode("utf-8").strip()
        except (paramiko.SSHException, socket.error, OSError) as e:
            raise ArchiveLayoutError(f"Cannot bootstrap archive {self._dest.display()}: {e}") from e

        if not archive_id:
            raise ArchiveLayoutError(f"Archive id is empty: {self._dest.display()}/{ID_NAME}")
        return archive_id

    def exists(self, sha256: str) -> ExistsResult:
        try:
            self.sftp.stat(self._path(FILES_DIR, sha256))
        except FileNotFoundError:
            return ExistsResult.ABSENT
        except (paramiko.SSHException, socket.error, OSError, RemoteStoreError) as e:
            logger.debug(f"Existence check for {sha256} failed: {e}")
            return ExistsResult.UNKNOWN
        return ExistsResult.PRESENT

    def publish_blob(self, sha256: str, source_path: Path) -> PublishResult:
        name = safe_blob_name(sha256)
        final = self._path(FILES_DIR, name)
        temp = self._path(FILES_DIR, f".{name}.{uuid.uuid4().hex}.tmp")

        try:
            with open(source_path, "rb") as src:
                size = self._upload(src, temp)
            self.sftp.posix_rename(temp, final)
        except (paramiko.SSHException, socket.error, OSError) as e:
            raise RemotePublishError(f"Failed to publish {name}: {e}") from e

        logger.debug(f"Published {name} ({size} bytes)")
        return PublishResult(name=name, size=size)

    def publish_manifest(self, timestamp_id: str, payload: bytes) -> PublishResult:
        name = safe_manifest_name(timestamp_id)
        final = self._path(MANIFESTS_DIR, name)

        try:
            created = self._publish_once(final, payload)
        except (paramiko.SSHException, socket.error, OSError) as e:
            raise RemotePublishError(f"Failed to publish manifest {name}: {e}") from e

        if not created:
            raise ManifestExistsError(f"Manifest already exists: {name}")
        return PublishResult(name=name, size=len(payload))

    # helpers

    def _upload(self, src: IO[bytes], remote_path: str) -> int:
        attrs = self.sftp.putfo(src, remote_path, confirm=True)
        return attrs.st_size

    def _publish_once(self, final: str, payload: bytes) -> bool:
        """
        Publish ``payload`` at ``final`` unless it already exists.

        SFTP ``rename`` fails when the target exists; that failure is
        distinguished from other errors by re-checking the target.

        Returns:
            True if this call created the object, False if it already existed
        """
        directory, base = posixpath.split(final)
        temp = posixpath.join(directory, f".{base}.{uuid.uuid4().hex}.tmp")

        with self.sftp.open(temp, "wb") as fh:
            fh.write(payload)

        try:
            self.sftp.rename(temp, final)
        except OSError:
            if self._remote_exists(final):
                self.sftp.remove(temp)
                return False
            raise
        return True

    def _remote_exists(self, path: str) -> bool:
        try:
            self.sftp.stat(path)
        except FileNotFoundError:
            return False
        return True

    def _ensure_dir(self, path: str) -> None:
        try:
            attrs = self.sftp.stat(path)
        except FileNotFoundError:
            pass
        else:
            if not stat.S_ISDIR(attrs.st_mode or 0):
                raise ArchiveLayoutError(f"Not a directory on archive: {path}")
            return

        try:
            self.sftp.mkdir(path)
        except OSError as e:
            # Lost a race with another bootstrap, or a generic SFTP failure
            if not self._remote_exists(path):
                raise OSError(errno.EIO, f"mkdir {path} failed: {e}") from e
