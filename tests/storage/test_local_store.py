"""
Tests for the local-directory archive adapter.

Covers bootstrap (including a concurrent initializer), existence checks,
blob publishing with atomic replacement and write-once manifests.
"""
from __future__ import annotations

import hashlib
import os

import pytest

from casbak.storage.base import ExistsResult, RemoteStore
from casbak.storage.errors import (
    ArchiveLayoutError,
    ManifestExistsError,
    RemoteConnectError,
    RemotePublishError,
)
from casbak.storage.local import LocalRemoteStore

MANIFEST = "20261018T093000.000125Z"


@pytest.fixture
def local_store(tmp_path):
    store = LocalRemoteStore(tmp_path / "archive")
    store.connect()
    yield store
    store.close()


def _blob(tmp_path, data: bytes):
    path = tmp_path / "blob-source"
    path.write_bytes(data)
    return hashlib.sha256(data).hexdigest(), path


class TestProtocol:
    def test_is_remote_store(self, tmp_path):
        assert isinstance(LocalRemoteStore(tmp_path), RemoteStore)


class TestConnect:
    def test_creates_root(self, tmp_path):
        store = LocalRemoteStore(tmp_path / "new" / "archive")
        store.connect()
        assert (tmp_path / "new" / "archive").is_dir()

    def test_root_is_a_file(self, tmp_path):
        (tmp_path / "archive").write_text("not a dir")
        with pytest.raises(RemoteConnectError):
            LocalRemoteStore(tmp_path / "archive").connect()


class TestBootstrap:
    """Test archive identity and layout creation."""

    def test_first_contact_creates_layout(self, local_store):
        archive_id = local_store.bootstrap()
        root = local_store.root

        assert len(archive_id) == 32
        assert (root / "files").is_dir()
        assert (root / "manifests").is_dir()
        assert (root / "id").read_text() == archive_id + "\n"

    def test_id_is_stable(self, local_store):
        """Test that later contacts read the existing id."""
        first = local_store.bootstrap()
        assert local_store.bootstrap() == first
        assert LocalRemoteStore(local_store.root).bootstrap() == first

    def test_concurrent_initializer_wins(self, local_store, monkeypatch):
        """Test that losing the id race adopts the winner's id."""
        root = local_store.root
        real_link = os.link

        def _racing_link(src, dst, *args, **kwargs):
            # Another bootstrap publishes its id between our check and our link
            with open(dst, "w") as f:
                f.write("winner\n")
            return real_link(src, dst, *args, **kwargs)

        monkeypatch.setattr("casbak.storage.local.os.link", _racing_link)
        assert local_store.bootstrap() == "winner"
        assert (root / "id").read_text() == "winner\n"
        assert sorted(p.name for p in root.iterdir()) == ["files", "id", "manifests"]

    def test_empty_id_is_layout_error(self, local_store):
        (local_store.root / "id").write_text("\n")
        with pytest.raises(ArchiveLayoutError, match="empty"):
            local_store.bootstrap()


class TestExists:
    def test_absent_then_present(self, local_store, tmp_path):
        local_store.bootstrap()
        sha, path = _blob(tmp_path, b"content")
        assert local_store.exists(sha) is ExistsResult.ABSENT
        local_store.publish_blob(sha, path)
        assert local_store.exists(sha) is ExistsResult.PRESENT

    def test_failed_check_is_unknown(self, local_store, monkeypatch):
        """Test that errors other than not-found are reported as unknown."""
        local_store.bootstrap()

        def _denied(path, *args, **kwargs):
            raise PermissionError("denied")

        monkeypatch.setattr("casbak.storage.local.os.stat", _denied)
        assert local_store.exists("a" * 64) is ExistsResult.UNKNOWN


class TestPublishBlob:
    """Test content-addressed blob publishing."""

    def test_publish(self, local_store, tmp_path):
        local_store.bootstrap()
        sha, path = _blob(tmp_path, b"hello world")

        result = local_store.publish_blob(sha, path)

        assert result.name == sha
        assert result.size == len(b"hello world")
        assert (local_store.root / "files" / sha).read_bytes() == b"hello world"

    def test_republish_is_harmless(self, local_store, tmp_path):
        """Test that publishing the same content twice leaves one object."""
        local_store.bootstrap()
        sha, path = _blob(tmp_path, b"twice")
        local_store.publish_blob(sha, path)
        local_store.publish_blob(sha, path)
        assert os.listdir(local_store.root / "files") == [sha]

    def test_invalid_name_rejected(self, local_store, tmp_path):
        local_store.bootstrap()
        _, path = _blob(tmp_path, b"x")
        with pytest.raises(ValueError, match="unsafe blob name"):
            local_store.publish_blob("../id", path)

    def test_interrupted_publish_leaves_no_object(self, local_store, tmp_path, monkeypatch):
        """Test that a failed rename never exposes a partial object."""
        local_store.bootstrap()
        sha, path = _blob(tmp_path, b"interrupted")

        def _fail_replace(src, dst):
            raise OSError("connection lost")

        monkeypatch.setattr("casbak.runtime.os.replace", _fail_replace)
        with pytest.raises(RemotePublishError, match=sha):
            local_store.publish_blob(sha, path)

        assert os.listdir(local_store.root / "files") == []
        assert local_store.exists(sha) is ExistsResult.ABSENT


class TestPublishManifest:
    """Test write-once manifests."""

    def test_publish(self, local_store):
        local_store.bootstrap()
        result = local_store.publish_manifest(MANIFEST, b'{"entries":[]}\n')
        assert result.name == MANIFEST
        assert result.size == len(b'{"entries":[]}\n')
        assert (local_store.root / "manifests" / MANIFEST).read_bytes() == b'{"entries":[]}\n'

    def test_never_overwrites(self, local_store):
        local_store.bootstrap()
        local_store.publish_manifest(MANIFEST, b"first")
        with pytest.raises(ManifestExistsError):
            local_store.publish_manifest(MANIFEST, b"second")
        assert (local_store.root / "manifests" / MANIFEST).read_bytes() == b"first"
        assert os.listdir(local_store.root / "manifests") == [MANIFEST]

    def test_invalid_name_rejected(self, local_store):
        local_store.bootstrap()
        with pytest.raises(ValueError, match="unsafe manifest name"):
            local_store.publish_manifest("../id", b"x")
