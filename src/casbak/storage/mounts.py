"""
Mount capability for removable media.

The sneakernet transfer manager only needs three things from the platform:
whether a directory is already a mount point, and mount/unmount of a block
device. ``LibcMounter`` performs those with direct ``mount(2)`` and
``umount2(2)`` calls; tests substitute a fake.
"""
from __future__ import annotations

import ctypes
import ctypes.util
import errno
import logging
import os
from pathlib import Path
from typing import List, Optional, Protocol, runtime_checkable

from ..runtime import MountError

__all__ = ["Mounter", "LibcMounter", "is_distinct_filesystem"]

logger = logging.getLogger(__name__)

# <sys/mount.h>
MS_NOATIME = 1024

PROC_FILESYSTEMS = Path("/proc/filesystems")


def is_distinct_filesystem(path: Path) -> bool:
    """True if ``path`` lives on a different device than its parent directory."""
    path = Path(path)
    return os.stat(path).st_dev != os.stat(path.parent).st_dev


@runtime_checkable
class Mounter(Protocol):
    """Protocol for mounting removable media."""

    def is_mountpoint(self, path: Path) -> bool:
        """True if something is already mounted at ``path``."""
        ...

    def mount(self, device: Path, target: Path) -> None:
        """
        Mount ``device`` read/write at ``target`` with access-time updates disabled.

        Raises:
            MountError: If the mount fails
        """
        ...

    def unmount(self, target: Path) -> None:
        """
        Unmount whatever is mounted at ``target``.

        Raises:
            MountError: If the unmount fails
        """
        ...


class LibcMounter(Mounter):
    """
    Mounter backed by libc.

    When no filesystem type is given, each block filesystem the kernel
    supports is tried in turn, the same way mount(8) probes.
    """

    def __init__(self, fstype: Optional[str] = None) -> None:
        self._fstype = fstype
        self._libc = None

    @property
    def libc(self):
        if self._libc is None:
            self._libc = ctypes.CDLL(ctypes.util.find_library("c"), use_errno=True)
        return self._libc

    def is_mountpoint(self, path: Path) -> bool:
        return is_distinct_filesystem(path)

    def mount(self, device: Path, target: Path) -> None:
        candidates = [self._fstype] if self._fstype else self._block_filesystems()
        last_errno = errno.ENODEV

        for fstype in candidates:
            ret = self.libc.mount(
                os.fsencode(str(device)),
                os.fsencode(str(target)),
                fstype.encode("ascii"),
                ctypes.c_ulong(MS_NOATIME),
                None,
            )
            if ret == 0:
                logger.info(f"Mounted {device} at {target} ({fstype})")
                return

            last_errno = ctypes.get_errno()
            # EINVAL/ENODEV: wrong filesystem type, keep probing
            if last_errno not in (errno.EINVAL, errno.ENODEV):
                break

        raise MountError(
            f"mount {device} on {target} failed: {os.strerror(last_errno)}",
            target,
        )

    def unmount(self, target: Path) -> None:
        ret = self.libc.umount2(os.fsencode(str(target)), 0)
        if ret != 0:
            err = ctypes.get_errno()
            raise MountError(f"unmount {target} failed: {os.strerror(err)}", target)
        logger.info(f"Unmounted {target}")

    def _block_filesystems(self) -> List[str]:
        """Filesystem types from /proc/filesystems that are backed by a block device."""
        try:
            lines = PROC_FILESYSTEMS.read_text().splitlines()
        except OSError as e:
            raise MountError(f"Cannot list filesystem types: {e}", PROC_FILESYSTEMS) from e
        return [
            line.strip()
            for line in lines
            if line.strip() and not line.startswith("nodev")
        ]
