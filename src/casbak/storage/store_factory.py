"""
Store factory for creating the archive adapter for a destination.

Provides a single point for choosing between the SFTP and local-directory
adapters so the rest of the engine only sees ``RemoteStore``.
"""
from __future__ import annotations

from pathlib import Path

from ..settings import Options
from .base import RemoteStore
from .local import LocalRemoteStore
from .sftp import SftpRemoteStore


def store_for(options: Options) -> RemoteStore:
    """
    Create the archive adapter for the configured destination.

    Args:
        options: Run options

    Returns:
        SftpRemoteStore for ``user@host:path`` destinations, LocalRemoteStore
        for plain paths. The adapter is not yet connected.
    """
    dest = options.destination
    if dest.is_remote:
        return SftpRemoteStore(dest, port=options.port, identity_file=options.identity_file)
    return LocalRemoteStore(Path(dest.path).expanduser().resolve())
