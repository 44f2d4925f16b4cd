"""
Remote store error classes.

Provides a clear taxonomy of errors that can occur while talking to the
archive. Adapters map SSH/SFTP and filesystem exceptions onto these so the
rest of the engine handles failures the same way regardless of transport.
"""
from __future__ import annotations


class RemoteStoreError(Exception):
    """
    Base class for all remote store errors.

    Any of these after the initial connection is fatal to the run; there is
    no reconnect or retry.
    """
    pass


class RemoteConnectError(RemoteStoreError):
    """
    Connecting or authenticating to the archive failed.

    Raised when:
    - SSH handshake, host key or authentication fails
    - The SFTP subsystem is unavailable
    - A local archive directory is missing or not a directory
    """
    pass


class RemotePublishError(RemoteStoreError):
    """
    Writing or renaming an object on the archive failed.

    A temporary sibling object may be left behind; it is never visible under
    the final name.
    """
    pass


class ManifestExistsError(RemotePublishError):
    """A manifest with the same timestamp name already exists; manifests are never overwritten."""
    pass


class ArchiveLayoutError(RemoteStoreError):
    """
    The archive root is not a valid archive.

    Raised when:
    - ``id`` exists but is empty or unreadable
    - The archive root cannot be created
    """
    pass


__all__ = [
    "RemoteStoreError",
    "RemoteConnectError",
    "RemotePublishError",
    "ManifestExistsError",
    "ArchiveLayoutError",
]
