"""
Sneakernet transfer manager.

When a run's upload is too large for the network, content is staged onto a
removable device instead, for physical transport and later ingestion.

State machine::

    DIRECT --(total >= threshold, device set)--> OVERFLOW --prepare()--> PREPARED
           --transfer()--> TRANSFERRED
    DIRECT --(total >= threshold, no device)--> raises SneakernetRequiredError

Staged objects mirror the remote publish: copy to a temporary name, rename
atomically to the content-addressed name, then seal read-only.
"""
from __future__ import annotations

import logging
import os
import stat
from pathlib import Path
from typing import Iterable, Optional, Sequence, Tuple

from .locking import FileLock
from .models import TransferState, UploadCandidate
from .path_safety import media_dirname, safe_blob_name
from .runtime import (
    ContentMismatchError,
    DeviceNotFoundError,
    MediaLockError,
    SneakernetRequiredError,
    StagingError,
    write_stream_atomically,
)
from .settings import Options
from .storage.base import FILES_DIR
from .storage.mounts import Mounter

__all__ = [
    "DEVICE_SEARCH_DIRS",
    "SEALED_MODE",
    "decide_transfer",
    "resolve_device",
    "SneakernetTransfer",
]

logger = logging.getLogger(__name__)

# Stable device id namespaces, searched in order
DEVICE_SEARCH_DIRS: Tuple[Path, ...] = (
    Path("/dev/disk/by-uuid"),
    Path("/dev/disk/by-label"),
    Path("/dev/disk/by-partuuid"),
    Path("/dev/disk/by-id"),
)

SEALED_MODE = stat.S_IRUSR | stat.S_IRGRP | stat.S_IROTH  # 0o444


def decide_transfer(total_size: int, options: Options) -> TransferState:
    """
    Choose between direct upload and removable-media staging.

    Returns:
        DIRECT when no threshold is configured or total_size is below it,
        OVERFLOW when it is reached and a device is configured

    Raises:
        SneakernetRequiredError: Threshold reached but no device configured
    """
    threshold = options.sneakernet_threshold
    if threshold is None or total_size < threshold:
        return TransferState.DIRECT

    if options.sneakernet_device is None:
        raise SneakernetRequiredError(
            f"Upload of {total_size} bytes reaches the sneakernet threshold of "
            f"{threshold} bytes, but no sneakernet device is configured"
        )

    logger.info(f"Upload of {total_size} bytes reaches threshold {threshold}; staging to removable media")
    return TransferState.OVERFLOW


def resolve_device(device_id: str, search_dirs: Iterable[Path] = DEVICE_SEARCH_DIRS) -> Path:
    """
    Resolve a stable device identifier to its block device node.

    Raises:
        DeviceNotFoundError: If no search directory has an entry for the id
    """
    for directory in search_dirs:
        candidate = Path(directory) / device_id
        if candidate.exists():
            device = candidate.resolve()
            logger.debug(f"Resolved device {device_id} -> {device}")
            return device
    raise DeviceNotFoundError(f"Sneakernet device not found: {device_id}")


class SneakernetTransfer:
    """
    Stages upload candidates onto a removable device.

    Usage::

        transfer = SneakernetTransfer(options, mounter)
        transfer.prepare()
        transfer.transfer(plan.candidates)
        transfer.finish()

    ``prepare()`` takes the media lock; ``finish()`` releases it after
    unmounting. A failure in between leaves the device mounted and the lock
    file in place for the operator to inspect.
    """

    def __init__(
        self,
        options: Options,
        mounter: Mounter,
        *,
        search_dirs: Sequence[Path] = DEVICE_SEARCH_DIRS,
    ) -> None:
        if options.sneakernet_device is None:
            raise ValueError("SneakernetTransfer requires a configured sneakernet device")
        self.options = options
        self.mounter = mounter
        self.search_dirs = tuple(search_dirs)
        self.state = TransferState.OVERFLOW

        device_id = options.sneakernet_device
        self.mount_point = options.sneakernet_mount_root / device_id
        self.lock = FileLock(
            options.sneakernet_mount_root / f"{device_id}.lock",
            description=f"media lock for {device_id}",
            error_cls=MediaLockError,
        )
        self.device: Optional[Path] = None
        self.mounted_here = False

    @property
    def destination_dir(self) -> Path:
        """Per-destination directory on the media."""
        dest = self.options.destination
        return self.mount_point / media_dirname(dest.host, dest.path)

    def prepare(self) -> None:
        """Resolve the device, take the media lock and mount if needed."""
        self._expect(TransferState.OVERFLOW)

        self.device = resolve_device(self.options.sneakernet_device, self.search_dirs)
        self.lock.acquire()

        self.mount_point.mkdir(parents=True, exist_ok=True)
        if self.mounter.is_mountpoint(self.mount_point):
            logger.info(f"{self.mount_point} is already mounted")
        else:
            self.mounter.mount(self.device, self.mount_point)
            self.mounted_here = True

        self.state = TransferState.PREPARED

    def transfer(self, candidates: Sequence[UploadCandidate]) -> Tuple[int, int]:
        """
        Copy candidates to ``<mount>/<destination>/files/<hash>``, sealed read-only.

        Objects already present on the media are skipped.

        Returns:
            (number staged, number already present)

        Raises:
            StagingError: A source file no longer matches its fingerprinted hash
        """
        self._expect(TransferState.PREPARED)

        files_dir = self.destination_dir / FILES_DIR
        files_dir.mkdir(parents=True, exist_ok=True)

        staged = 0
        skipped = 0
        for candidate in candidates:
            target = files_dir / safe_blob_name(candidate.sha256)
            if target.exists():
                skipped += 1
                logger.debug(f"Already on media: {candidate.sha256}")
                continue

            try:
                with open(candidate.path, "rb") as src:
                    write_stream_atomically(target, src, expected_sha=candidate.sha256, mode=SEALED_MODE)
            except ContentMismatchError as e:
                raise StagingError(
                    f"{candidate.path} no longer hashes to {candidate.sha256}: it was edited "
                    f"without an mtime change, or changed during the run. Touch it and re-run.",
                    candidate.path,
                ) from e
            staged += 1
            logger.debug(f"Staged {candidate.relpath} as {candidate.sha256}")

        os.sync()
        self.state = TransferState.TRANSFERRED
        logger.info(f"Staged {staged} objects to {files_dir} ({skipped} already present)")
        return staged, skipped

    def finish(self) -> None:
        """Unmount the device, remove the mount point and release the media lock."""
        self._expect(TransferState.TRANSFERRED)

        self.mounter.unmount(self.mount_point)
        self.mount_point.rmdir()
        self.lock.release()

    def _expect(self, state: TransferState) -> None:
        if self.state is not state:
            raise RuntimeError(f"Sneakernet transfer is {self.state.value}, expected {state.value}")
