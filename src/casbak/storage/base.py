"""
Storage interfaces for casbak.

These protocols define the boundary between the backup engine and the
archive transport, enabling clean dependency injection and testing with
fakes. The dedup logic only ever sees ``RemoteStore``.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Protocol, runtime_checkable

# Archive layout (wire contract)
ID_NAME = "id"
FILES_DIR = "files"
MANIFESTS_DIR = "manifests"


class ExistsResult(str, Enum):
    """
    Outcome of a blob existence check.

    ``UNKNOWN`` covers every failure other than a definite not-found
    (network, permission, protocol errors).
    """
    PRESENT = "present"
    ABSENT = "absent"
    UNKNOWN = "unknown"


def counts_as_present(result: ExistsResult) -> bool:
    """
    Unknown existence is treated as absent.

    Only a definite ``PRESENT`` may mark a hash present. An ambiguous check
    costs at most a redundant upload, never a skipped one.
    """
    return result is ExistsResult.PRESENT


@dataclass(frozen=True)
class PublishResult:
    """
    Outcome of a successful publish.

    Invariants:
    - name: final object name (a content hash or a manifest timestamp)
    - size: exact byte length written (>= 0)
    """
    name: str
    size: int


__all__ = [
    "ID_NAME",
    "FILES_DIR",
    "MANIFESTS_DIR",
    "ExistsResult",
    "counts_as_present",
    "PublishResult",
    "RemoteStore",
]


@runtime_checkable
class RemoteStore(Protocol):
    """Protocol for content-addressed archive operations."""

    def connect(self) -> None:
        """
        Open the session used by every later call.

        Called once, before any local filesystem work, so connectivity and
        authentication problems surface early.

        Raises:
            RemoteConnectError: If the archive cannot be reached
        """
        ...

    def close(self) -> None:
        """Release the session. Safe to call more than once."""
        ...

    def bootstrap(self) -> str:
        """
        Return the archive id, creating the archive on first contact.

        On first contact ``files/`` and ``manifests/`` are created and then
        ``id`` is published atomically, so a visible id implies a complete
        layout.

        Returns:
            Archive identifier without trailing newline

        Raises:
            ArchiveLayoutError: If the id is unreadable or empty
            RemoteStoreError: For transport errors
        """
        ...

    def exists(self, sha256: str) -> ExistsResult:
        """
        Check whether ``files/<sha256>`` exists. Never raises.

        Returns:
            PRESENT, ABSENT, or UNKNOWN when the check itself failed
        """
        ...

    def publish_blob(self, sha256: str, source_path: Path) -> PublishResult:
        """
        Upload a file as ``files/<sha256>`` via temporary sibling + atomic rename.

        Args:
            sha256: Content hash (64 hex chars), the final object name
            source_path: Local file whose content is uploaded

        Returns:
            Published name and size

        Raises:
            ValueError: If sha256 is not a valid blob name
            RemotePublishError: If writing or renaming fails
        """
        ...

    def publish_manifest(self, timestamp_id: str, payload: bytes) -> PublishResult:
        """
        Write ``manifests/<timestamp_id>``; never overwrites.

        Raises:
            ManifestExistsError: If a manifest with that name exists
            RemotePublishError: If writing or renaming fails
        """
        ...
