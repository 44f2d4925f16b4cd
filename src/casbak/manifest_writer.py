"""
Manifest handling for per-run snapshots.

A manifest records every (path, hash) pair considered in a run, not only
the newly uploaded ones, and is published once per direct run under a name
derived from the run's start time. Manifests are never overwritten.
"""
from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Sequence

from .models import FingerprintedFile, ManifestDocument, ManifestEntry
from .storage.base import PublishResult, RemoteStore

__all__ = ["manifest_name", "build_manifest", "serialize_manifest", "read_manifest", "publish_manifest"]

logger = logging.getLogger(__name__)

MANIFEST_NAME_FORMAT = "%Y%m%dT%H%M%S.%fZ"


def manifest_name(started_at: datetime) -> str:
    """
    Name of the manifest for a run started at ``started_at``.

    Examples:
        >>> manifest_name(datetime(2026, 10, 18, 9, 30, 0, 125, tzinfo=timezone.utc))
        '20261018T093000.000125Z'
    """
    if started_at.tzinfo is None:
        raise ValueError("started_at must be timezone-aware")
    return started_at.astimezone(timezone.utc).strftime(MANIFEST_NAME_FORMAT)


def build_manifest(
    files: Sequence[FingerprintedFile],
    *,
    archive_id: str,
    started_at: datetime,
    source: Path,
) -> ManifestDocument:
    """Build the manifest document for the full fingerprinted set, in enumeration order."""
    return ManifestDocument(
        archive_id=archive_id,
        started_at=started_at.astimezone(timezone.utc),
        source=str(source),
        entries=[ManifestEntry(path=f.file.relpath, sha256=f.sha256) for f in files],
    )


def serialize_manifest(doc: ManifestDocument) -> bytes:
    """Canonical JSON: sorted keys, compact separators, trailing newline."""
    payload = json.dumps(
        doc.model_dump(mode="json"),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    )
    return (payload + "\n").encode("utf-8")


def read_manifest(data: bytes) -> ManifestDocument:
    """Parse a published manifest."""
    return ManifestDocument.model_validate(json.loads(data.decode("utf-8")))


def publish_manifest(
    store: RemoteStore,
    files: Sequence[FingerprintedFile],
    *,
    archive_id: str,
    started_at: datetime,
    source: Path,
) -> PublishResult:
    """
    Serialize and publish the run's manifest.

    Raises:
        ManifestExistsError: If a manifest for the same start time exists
        RemotePublishError: If publishing fails
    """
    doc = build_manifest(files, archive_id=archive_id, started_at=started_at, source=source)
    name = manifest_name(started_at)
    result = store.publish_manifest(name, serialize_manifest(doc))
    logger.info(f"Published manifest {name} with {len(doc.entries)} entries")
    return result
