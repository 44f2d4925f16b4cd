# Archive transports and the platform mount capability

from .base import ExistsResult, PublishResult, RemoteStore, counts_as_present
from .local import LocalRemoteStore
from .sftp import SftpRemoteStore

__all__ = [
    "ExistsResult",
    "PublishResult",
    "RemoteStore",
    "counts_as_present",
    "LocalRemoteStore",
    "SftpRemoteStore",
]
