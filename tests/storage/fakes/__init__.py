# Fake implementations for testing

from .fake_mounter import FakeMounter
from .fake_remote import FakeRemoteStore
from .fake_sftp import FakeSftpClient

__all__ = ["FakeMounter", "FakeRemoteStore", "FakeSftpClient"]
