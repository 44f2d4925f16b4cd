"""Root pytest configuration for casbak tests."""
from __future__ import annotations

import hashlib
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Dict

import pytest

from casbak.settings import Destination, Options

from .storage.fakes import FakeMounter, FakeRemoteStore

DEVICE_ID = "BACKUP-DISK"

SOURCE_FILES: Dict[str, bytes] = {
    "notes.txt": b"alpha\n",
    "docs/report.md": b"# report\n",
    "docs/copy-of-notes.txt": b"alpha\n",
    "photos/2026/img.raw": b"\x00\x01\x02" * 100,
    "build/output.o": b"object code",
    "cache/tmp.bin": b"scratch",
}


def sha256_of(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


# Configure pytest markers
def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers",
        "slow: mark test as slow (may take significant time)"
    )


@pytest.fixture(autouse=True)
def test_env(monkeypatch, tmp_path):
    """Keep state written through default paths inside the test directory."""
    monkeypatch.setenv("XDG_CACHE_HOME", str(tmp_path / "xdg-cache"))
    monkeypatch.delenv("CASBAK_STATE_DIR", raising=False)


@pytest.fixture
def source_tree(tmp_path) -> Path:
    """Small source tree with one duplicated file and some excludable content."""
    root = tmp_path / "source"
    for relpath, data in SOURCE_FILES.items():
        path = root / relpath
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
    return root


@pytest.fixture
def archive_dir(tmp_path) -> Path:
    return tmp_path / "archive"


@pytest.fixture
def make_options(tmp_path, source_tree, archive_dir) -> Callable[..., Options]:
    """Factory for Options rooted in the test directory; keyword overrides apply."""

    def _make(**overrides) -> Options:
        values = dict(
            source=source_tree,
            destination=Destination(user="tester", host=None, path=str(archive_dir)),
            state_dir=tmp_path / "state",
            sneakernet_mount_root=tmp_path / "mnt",
        )
        values.update(overrides)
        return Options(**values)

    return _make


@pytest.fixture
def store() -> FakeRemoteStore:
    """Standard fake archive for testing."""
    return FakeRemoteStore()


@pytest.fixture
def device_dirs(tmp_path):
    """Stable-id search directories with DEVICE_ID present under by-label."""
    by_uuid = tmp_path / "dev" / "disk" / "by-uuid"
    by_label = tmp_path / "dev" / "disk" / "by-label"
    by_uuid.mkdir(parents=True)
    by_label.mkdir(parents=True)

    device_node = tmp_path / "dev" / "sdz1"
    device_node.write_bytes(b"")
    (by_label / DEVICE_ID).symlink_to(device_node)
    return (by_uuid, by_label)


@pytest.fixture
def mounter(tmp_path) -> FakeMounter:
    """Fake mounter whose device contents end up under tmp_path/media."""
    return FakeMounter(tmp_path / "media")


@pytest.fixture
def clock():
    """Deterministic, strictly increasing run start times."""
    state = {"now": datetime(2026, 10, 18, 9, 30, 0, tzinfo=timezone.utc)}

    def _clock() -> datetime:
        state["now"] += timedelta(seconds=1)
        return state["now"]

    return _clock
