"""
casbak runtime layer.

Exception taxonomy for run-level failures and the streaming atomic write
used whenever content lands on a local filesystem (local archives and
removable media).
"""
from __future__ import annotations

import hashlib
import os
import tempfile
from pathlib import Path
from typing import IO, Optional

__all__ = [
    "UserError",
    "OptionsError",
    "LockHeldError",
    "MediaLockError",
    "DeviceNotFoundError",
    "MountError",
    "SneakernetRequiredError",
    "StagingError",
    "ContentMismatchError",
    "write_stream_atomically",
    "CHUNK_SIZE",
]


# Streaming I/O constants
CHUNK_SIZE = 1024 * 1024  # 1 MiB


# Exception Types
class UserError(Exception):
    """
    Base class for errors the operator must fix before re-running.

    User errors are reported immediately and never retried.
    """
    pass


class OptionsError(UserError, ValueError):
    """
    Raised when options or the config file fail validation.

    This corresponds to exit code 2 in the CLI.
    """
    pass


class LockHeldError(UserError):
    """
    Raised when another run already holds the archive's process lock.

    This corresponds to exit code 3 in the CLI.
    """
    pass


class MediaLockError(LockHeldError):
    """Raised when the removable media is locked by a concurrent staging run."""
    pass


class DeviceNotFoundError(UserError):
    """
    Raised when the configured sneakernet device cannot be resolved.

    This corresponds to exit code 4 in the CLI.
    """
    pass


class MountError(UserError):
    """
    Raised when mounting or unmounting the sneakernet device fails.

    The message always names the target of the failed operation.
    """
    def __init__(self, message: str, target: Path):
        super().__init__(message)
        self.target = target


class SneakernetRequiredError(UserError):
    """
    Raised when the upload exceeds the sneakernet threshold but no device is configured.

    This corresponds to exit code 5 in the CLI.
    """
    pass


class StagingError(UserError):
    """
    Raised when a source file cannot be staged onto removable media as planned.

    This corresponds to exit code 7 in the CLI.
    """
    def __init__(self, message: str, path: Path):
        super().__init__(message)
        self.path = path


class ContentMismatchError(ValueError):
    """Raised when streamed content does not hash to the expected SHA256."""
    pass


def write_stream_atomically(
    target_path: Path,
    source: IO[bytes],
    *,
    expected_sha: Optional[str] = None,
    mode: Optional[int] = None,
) -> int:
    """
    Stream content to a file with atomic write and optional SHA256 verification.

    The content goes to a temporary sibling first and is moved over the final
    name with a single rename, so no partial file is ever visible at
    ``target_path``. When ``mode`` is given the file is chmod'ed after the
    rename (used to seal staged blobs read-only).

    Args:
        target_path: Final path for the file
        source: Readable binary stream
        expected_sha: Expected SHA256 hash (64 hex chars), verified before rename
        mode: Permission bits applied once the file is in place

    Returns:
        Number of bytes written

    Raises:
        ContentMismatchError: If SHA256 verification fails
        OSError: If file operations fail
    """
    target_path.parent.mkdir(parents=True, exist_ok=True)

    hash_obj = hashlib.sha256()
    written = 0

    fd, temp_name = tempfile.mkstemp(
        prefix=f".{target_path.name}.", suffix=".tmp", dir=target_path.parent
    )
    temp_path = Path(temp_name)

    try:
        with os.fdopen(fd, "wb") as out:
            while True:
                chunk = source.read(CHUNK_SIZE)
                if not chunk:
                    break
                hash_obj.update(chunk)
                out.write(chunk)
                written += len(chunk)

            out.flush()
            os.fsync(out.fileno())

        actual_sha = hash_obj.hexdigest()
        if expected_sha is not None and actual_sha != expected_sha:
            raise ContentMismatchError(f"SHA mismatch for {target_path}: expected {expected_sha}, got {actual_sha}")

        os.replace(temp_path, target_path)

    except BaseException:
        try:
            temp_path.unlink()
        except FileNotFoundError:
            pass
        raise

    if mode is not None:
        os.chmod(target_path, mode)

    return written
