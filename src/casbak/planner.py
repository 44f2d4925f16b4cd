"""
Source scanning and upload planning.

Walks the source tree under the configured glob rules, fingerprints files
through the fingerprint cache, and reduces the result to the minimal set of
distinct-content files the archive is missing. Ensures deterministic ordering.
"""
from __future__ import annotations

import hashlib
import logging
import os
import stat
from pathlib import Path
from typing import Iterable, Iterator, List, Sequence, Set, Tuple

from pathspec import PathSpec
from pathspec.patterns import GitWildMatchPattern

from .caches import FingerprintCache, PresenceCache
from .models import FingerprintedFile, SourceFile, UploadCandidate, UploadPlan
from .runtime import CHUNK_SIZE
from .storage.base import RemoteStore, counts_as_present

__all__ = [
    "RuleSet",
    "scan_source",
    "compute_file_hash",
    "fingerprint_files",
    "plan_uploads",
]

logger = logging.getLogger(__name__)


class _RulePattern(GitWildMatchPattern):
    """gitwildmatch pattern whose negated character classes never match ``/``."""

    @classmethod
    def pattern_to_regex(cls, pattern):
        regex, include = super().pattern_to_regex(pattern)
        if regex is not None:
            regex = regex.replace("[^", "[^/")
        return regex, include


def _compile_rules(patterns: Sequence[str]) -> PathSpec:
    """
    Build one PathSpec from gitignore-style rules.

    A rule starting with ``/`` is anchored at the source root and a rule
    starting with ``**`` already matches at any depth. Any other rule is
    prefixed with ``**/`` so it matches at any depth, even when it contains
    a ``/``.
    """
    lines = [p if p.startswith(("/", "**")) else "**/" + p for p in patterns]
    return PathSpec.from_lines(_RulePattern, lines)


class RuleSet:
    """
    Include/exclude rule evaluation.

    Precedence, first match wins:
    1. An entry matching any include rule is kept (directories are descended).
    2. Otherwise an entry matching any exclude rule is dropped (directories
       are pruned, so nothing beneath them is ever seen).
    3. Otherwise the entry is kept.

    A rule matching a directory also matches everything beneath it, so
    including a directory re-admits its whole subtree. A file include alone
    cannot reach into a pruned directory.
    """

    def __init__(self, include: Sequence[str] = (), exclude: Sequence[str] = ()) -> None:
        self.include = tuple(include)
        self.exclude = tuple(exclude)
        self._include = _compile_rules(self.include)
        self._exclude = _compile_rules(self.exclude)

    def keeps(self, relpath: str, is_dir: bool = False) -> bool:
        """Whether a source-relative POSIX path survives the rules."""
        if is_dir and not relpath.endswith("/"):
            relpath += "/"
        if self._include.match_file(relpath):
            return True
        return not self._exclude.match_file(relpath)


def scan_source(root: Path, rules: RuleSet) -> Iterator[SourceFile]:
    """
    Yield the regular files under ``root`` that pass the rule set.

    Directories are visited in sorted order and excluded directories are
    pruned before descent. Symlinks, devices, sockets and FIFOs are never
    yielded, and symlinked directories are never followed.

    Args:
        root: Absolute source root
        rules: Include/exclude rules

    Yields:
        SourceFile for each kept regular file, in deterministic order
    """
    root = Path(root)

    def _on_error(err: OSError) -> None:
        logger.warning(f"Cannot read {err.filename}: {err.strerror}")

    for dirpath, dirnames, filenames in os.walk(root, topdown=True, onerror=_on_error):
        rel_dir = Path(dirpath).relative_to(root).as_posix()
        prefix = "" if rel_dir == "." else rel_dir + "/"

        kept_dirs = []
        for name in sorted(dirnames):
            if rules.keeps(prefix + name, is_dir=True):
                kept_dirs.append(name)
            else:
                logger.debug(f"Pruned directory {prefix + name}")
        dirnames[:] = kept_dirs

        for name in sorted(filenames):
            relpath = prefix + name
            if not rules.keeps(relpath):
                logger.debug(f"Excluded {relpath}")
                continue

            abs_path = Path(dirpath) / name
            try:
                st = os.lstat(abs_path)
            except FileNotFoundError:
                logger.debug(f"Vanished during scan: {relpath}")
                continue

            if not stat.S_ISREG(st.st_mode):
                continue

            yield SourceFile(
                path=abs_path,
                relpath=relpath,
                mtime_ns=st.st_mtime_ns,
                size=st.st_size,
            )


def compute_file_hash(file_path: Path) -> str:
    """
    Compute SHA256 hash of file contents.

    Args:
        file_path: Path to file

    Returns:
        SHA256 hash as hex string
    """
    sha256_hash = hashlib.sha256()

    with open(file_path, "rb") as f:
        # Read in chunks to handle large files
        for chunk in iter(lambda: f.read(CHUNK_SIZE), b""):
            sha256_hash.update(chunk)

    return sha256_hash.hexdigest()


def fingerprint_files(files: Iterable[SourceFile], cache: FingerprintCache) -> Tuple[List[FingerprintedFile], int]:
    """
    Pair every file with its content hash, hashing only cache misses.

    The cache is updated in memory; the caller persists it once afterwards.

    Returns:
        (fingerprinted files in input order, number of files actually hashed)
    """
    result: List[FingerprintedFile] = []
    hashed = 0

    for source_file in files:
        sha256 = cache.lookup(source_file.path, source_file.mtime_ns)
        if sha256 is None:
            sha256 = compute_file_hash(source_file.path)
            cache.record(source_file.path, source_file.mtime_ns, sha256)
            hashed += 1
            logger.debug(f"Hashed {source_file.relpath} -> {sha256}")
        result.append(FingerprintedFile(file=source_file, sha256=sha256))

    return result, hashed


def plan_uploads(
    files: Sequence[FingerprintedFile],
    presence: PresenceCache,
    store: RemoteStore,
) -> UploadPlan:
    """
    Reduce fingerprinted files to the distinct content missing from the archive.

    1. Hashes already in the presence cache need no further work.
    2. Every other distinct hash is checked once against the store; only a
       definite PRESENT marks it present. The presence cache is persisted
       right after this phase, before anything is uploaded.
    3. For each absent hash the first path seen becomes the upload candidate;
       later paths with the same hash are dropped.

    Args:
        files: Fingerprinted files in enumeration order
        presence: Presence cache (updated and saved)
        store: Connected remote store

    Returns:
        UploadPlan with ordered candidates
    """
    known: Set[str] = set()
    to_check: List[str] = []
    seen: Set[str] = set()

    for entry in files:
        if entry.sha256 in seen:
            continue
        seen.add(entry.sha256)
        if entry.sha256 in presence:
            known.add(entry.sha256)
        else:
            to_check.append(entry.sha256)

    absent: Set[str] = set()
    for sha256 in to_check:
        result = store.exists(sha256)
        if counts_as_present(result):
            presence.mark_present(sha256)
        else:
            absent.add(sha256)

    if to_check:
        presence.save()
    logger.info(
        f"{len(known)} hashes known present, {len(to_check)} checked remotely, {len(absent)} missing"
    )

    candidates: List[UploadCandidate] = []
    chosen: dict[str, str] = {}
    duplicates = 0

    for entry in files:
        if entry.sha256 not in absent:
            continue
        first = chosen.get(entry.sha256)
        if first is not None:
            duplicates += 1
            logger.debug(f"Skipping {entry.file.relpath}: same content as {first}")
            continue
        chosen[entry.sha256] = entry.file.relpath
        candidates.append(UploadCandidate(
            path=entry.file.path,
            relpath=entry.file.relpath,
            sha256=entry.sha256,
            size=entry.file.size,
        ))

    return UploadPlan(
        candidates=candidates,
        known_present=len(known),
        checked=len(to_check),
        duplicates=duplicates,
    )
