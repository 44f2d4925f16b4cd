"""
Tests for source scanning, glob rules and upload planning.

Validates rule precedence, directory pruning, deterministic enumeration,
fingerprint cache use and the dedup reduction to distinct missing content.
"""
from __future__ import annotations

import os
from pathlib import Path

import pytest

from casbak.caches import FingerprintCache, PresenceCache
from casbak.models import FingerprintedFile, SourceFile
from casbak.planner import (
    RuleSet,
    compute_file_hash,
    fingerprint_files,
    plan_uploads,
    scan_source,
)

from .conftest import SOURCE_FILES, sha256_of


def _relpaths(root: Path, rules: RuleSet):
    return [f.relpath for f in scan_source(root, rules)]


def _excluded(pattern: str, path: str, is_dir: bool = False) -> bool:
    return not RuleSet(exclude=[pattern]).keeps(path, is_dir=is_dir)


class TestGlobRules:
    """Test gitignore-style rule matching."""

    @pytest.mark.parametrize("pattern,path,expected", [
        ("*.o", "output.o", True),
        ("*.o", "build/deep/output.o", True),
        ("*.o", "output.orig", False),
        ("/*.o", "output.o", True),
        ("/*.o", "build/output.o", False),
        ("build", "build", True),
        ("build", "src/build", True),
        ("/build", "src/build", False),
        ("docs/*.md", "docs/report.md", True),
        ("docs/*.md", "archive/docs/report.md", True),
        ("docs/*.md", "docs/sub/report.md", False),
        ("docs/**/*.md", "docs/sub/deep/report.md", True),
        ("docs/**/*.md", "docs/report.md", True),
        ("**/tmp", "a/b/tmp", True),
        ("file?.txt", "file1.txt", True),
        ("file?.txt", "file10.txt", False),
        ("[abc].txt", "b.txt", True),
        ("[!abc].txt", "b.txt", False),
        ("[!abc].txt", "d.txt", True),
        ("a+b(1).txt", "a+b(1).txt", True),
    ])
    def test_matches(self, pattern, path, expected):
        """Test wildcard semantics against relative paths."""
        assert _excluded(pattern, path) is expected

    def test_star_does_not_cross_directories(self):
        """Test that a single star stays in one path component."""
        assert _excluded("/docs*", "docs-old")
        assert not _excluded("/docs*.md", "docs/report.md")

    def test_negated_class_does_not_cross_directories(self):
        """Test that a negated character class never matches a separator."""
        assert _excluded("/a[!x]b", "ayb")
        assert not _excluded("/a[!x]b", "a/b")

    def test_trailing_slash_matches_directories_only(self):
        assert _excluded("build/", "build", is_dir=True)
        assert not _excluded("build/", "build")

    def test_directory_rule_covers_descendants(self):
        assert _excluded("/cache", "cache/tmp.bin")
        assert _excluded("cache", "src/cache/deep/tmp.bin")

    def test_unterminated_class_is_literal(self):
        """Test that an unmatched '[' is matched literally."""
        assert _excluded("[abc", "[abc")
        assert not _excluded("[abc", "a")


class TestRuleSet:
    """Test include/exclude precedence."""

    def test_no_rules_keeps_everything(self):
        rules = RuleSet()
        assert rules.keeps("anything/at/all")

    def test_exclude_drops(self):
        rules = RuleSet(exclude=["*.o"])
        assert not rules.keeps("build/output.o")
        assert rules.keeps("notes.txt")

    def test_include_overrides_exclude(self):
        """Test that include re-admits entries an exclude would drop."""
        rules = RuleSet(include=["keep.o"], exclude=["*.o"])
        assert rules.keeps("keep.o")
        assert not rules.keeps("other.o")

    def test_include_alone_does_not_restrict(self):
        """Test that include rules never drop non-matching entries."""
        rules = RuleSet(include=["*.md"])
        assert rules.keeps("notes.txt")


class TestScanSource:
    """Test source tree enumeration."""

    def test_enumerates_all_regular_files_sorted(self, source_tree):
        """Test deterministic, complete enumeration."""
        paths = _relpaths(source_tree, RuleSet())
        assert sorted(paths) == sorted(SOURCE_FILES)
        assert paths == [
            "notes.txt",
            "build/output.o",
            "cache/tmp.bin",
            "docs/copy-of-notes.txt",
            "docs/report.md",
            "photos/2026/img.raw",
        ]

    def test_excluded_directory_is_pruned(self, source_tree):
        """Test that excluded directories are never descended into."""
        rules = RuleSet(exclude=["cache", "build/"])
        assert _relpaths(source_tree, rules) == [
            "notes.txt",
            "docs/copy-of-notes.txt",
            "docs/report.md",
            "photos/2026/img.raw",
        ]

    def test_include_inside_pruned_dir_needs_dir_include(self, source_tree):
        """Test that a file include alone cannot reach into a pruned directory."""
        rules = RuleSet(include=["cache/tmp.bin"], exclude=["cache"])
        assert "cache/tmp.bin" not in _relpaths(source_tree, rules)

        rules = RuleSet(include=["/cache"], exclude=["cache", "*.bin"])
        assert "cache/tmp.bin" in _relpaths(source_tree, rules)

    def test_symlinks_are_skipped(self, source_tree):
        """Test that symlinks to files and directories are not followed."""
        (source_tree / "link.txt").symlink_to(source_tree / "notes.txt")
        (source_tree / "linkdir").symlink_to(source_tree / "docs", target_is_directory=True)

        paths = _relpaths(source_tree, RuleSet())
        assert "link.txt" not in paths
        assert not any(p.startswith("linkdir/") for p in paths)

    def test_fifo_is_skipped(self, source_tree):
        """Test that special files are never enumerated."""
        os.mkfifo(source_tree / "pipe")
        assert "pipe" not in _relpaths(source_tree, RuleSet())

    def test_source_file_metadata(self, source_tree):
        """Test that size and mtime come from lstat."""
        files = {f.relpath: f for f in scan_source(source_tree, RuleSet())}
        notes = files["notes.txt"]
        st = os.lstat(source_tree / "notes.txt")
        assert notes.path == source_tree / "notes.txt"
        assert notes.size == len(SOURCE_FILES["notes.txt"])
        assert notes.mtime_ns == st.st_mtime_ns


class TestFingerprinting:
    """Test hashing through the fingerprint cache."""

    def test_compute_file_hash(self, source_tree):
        assert compute_file_hash(source_tree / "notes.txt") == sha256_of(b"alpha\n")

    def test_cache_hit_skips_hashing(self, source_tree, tmp_path):
        """Test that unchanged files are not re-hashed."""
        cache = FingerprintCache(tmp_path / "fp.json")
        files = list(scan_source(source_tree, RuleSet()))

        first, hashed = fingerprint_files(files, cache)
        assert hashed == len(files)
        assert cache.dirty

        cache.save()
        second, hashed = fingerprint_files(files, FingerprintCache.load(tmp_path / "fp.json"))
        assert hashed == 0
        assert [f.sha256 for f in first] == [f.sha256 for f in second]

    def test_mtime_change_rehashes(self, source_tree, tmp_path):
        """Test that a changed mtime invalidates the cached hash."""
        cache = FingerprintCache(tmp_path / "fp.json")
        fingerprint_files(list(scan_source(source_tree, RuleSet())), cache)

        target = source_tree / "notes.txt"
        target.write_bytes(b"changed\n")
        st = os.stat(target)
        os.utime(target, ns=(st.st_atime_ns, st.st_mtime_ns + 1_000_000_000))

        files = list(scan_source(source_tree, RuleSet()))
        result, hashed = fingerprint_files(files, cache)
        assert hashed == 1
        by_path = {f.file.relpath: f.sha256 for f in result}
        assert by_path["notes.txt"] == sha256_of(b"changed\n")

    def test_same_mtime_edit_goes_unnoticed(self, source_tree, tmp_path):
        """Test the documented limitation: content edits that keep mtime reuse the stale hash."""
        cache = FingerprintCache(tmp_path / "fp.json")
        fingerprint_files(list(scan_source(source_tree, RuleSet())), cache)

        target = source_tree / "notes.txt"
        st = os.stat(target)
        target.write_bytes(b"edited\n")
        os.utime(target, ns=(st.st_atime_ns, st.st_mtime_ns))

        result, hashed = fingerprint_files(list(scan_source(source_tree, RuleSet())), cache)
        assert hashed == 0
        by_path = {f.file.relpath: f.sha256 for f in result}
        assert by_path["notes.txt"] == sha256_of(b"alpha\n")


def _fingerprinted(tmp_path: Path, items):
    out = []
    for relpath, data in items:
        path = tmp_path / relpath
        out.append(FingerprintedFile(
            file=SourceFile(path=path, relpath=relpath, mtime_ns=0, size=len(data)),
            sha256=sha256_of(data),
        ))
    return out


class TestPlanUploads:
    """Test the dedup reduction."""

    def test_duplicates_collapse_to_first_path(self, tmp_path, store):
        """Test that identical content is planned once, under its first path."""
        store.connect()
        files = _fingerprinted(tmp_path, [("a.txt", b"same"), ("b.txt", b"other"), ("c.txt", b"same")])
        presence = PresenceCache(tmp_path / "presence.json")

        plan = plan_uploads(files, presence, store)

        assert [c.relpath for c in plan.candidates] == ["a.txt", "b.txt"]
        assert plan.duplicates == 1
        assert plan.checked == 2
        assert plan.total_size == len(b"same") + len(b"other")

    def test_each_hash_checked_once(self, tmp_path, store):
        """Test that the archive sees one existence check per distinct hash."""
        store.connect()
        files = _fingerprinted(tmp_path, [("a", b"x"), ("b", b"x"), ("c", b"x")])
        plan_uploads(files, PresenceCache(tmp_path / "p.json"), store)
        assert store.exists_calls == [sha256_of(b"x")]

    def test_known_present_never_checked(self, tmp_path, store):
        """Test that cached presence avoids remote checks."""
        store.connect()
        files = _fingerprinted(tmp_path, [("a", b"cached"), ("b", b"new")])
        presence = PresenceCache(tmp_path / "p.json")
        presence.mark_present(sha256_of(b"cached"))

        plan = plan_uploads(files, presence, store)

        assert store.exists_calls == [sha256_of(b"new")]
        assert plan.known_present == 1
        assert [c.relpath for c in plan.candidates] == ["b"]

    def test_remote_present_is_cached_and_saved(self, tmp_path, store):
        """Test that definite remote presence is recorded and persisted before upload."""
        store.connect()
        store.blobs[sha256_of(b"remote")] = b"remote"
        files = _fingerprinted(tmp_path, [("a", b"remote")])
        presence = PresenceCache(tmp_path / "p.json")

        plan = plan_uploads(files, presence, store)

        assert plan.candidates == []
        assert sha256_of(b"remote") in PresenceCache.load(tmp_path / "p.json")

    def test_unknown_existence_is_treated_as_absent(self, tmp_path, store):
        """Test that a failed check plans an upload and marks nothing present."""
        store.connect()
        sha = sha256_of(b"flaky")
        store.blobs[sha] = b"flaky"
        store.unknown_hashes.add(sha)
        files = _fingerprinted(tmp_path, [("a", b"flaky")])
        presence = PresenceCache(tmp_path / "p.json")

        plan = plan_uploads(files, presence, store)

        assert [c.sha256 for c in plan.candidates] == [sha]
        assert sha not in presence

    def test_empty_input(self, tmp_path, store):
        """Test that nothing to plan writes no presence cache."""
        store.connect()
        plan = plan_uploads([], PresenceCache(tmp_path / "p.json"), store)
        assert plan.candidates == []
        assert plan.total_size == 0
        assert not (tmp_path / "p.json").exists()
