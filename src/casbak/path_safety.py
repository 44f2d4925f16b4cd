"""
Path safety utilities for casbak.

Object names on the remote store and on removable media are built from
content hashes and timestamps. This module validates those names so that
nothing derived from local data can escape its collection directory.
"""
from __future__ import annotations

import re

_BLOB_NAME_RE = re.compile(r"^[a-f0-9]{64}$")
_MANIFEST_NAME_RE = re.compile(r"^[0-9]{8}T[0-9]{6}\.[0-9]{6}Z$")


def safe_blob_name(sha256: str) -> str:
    """
    Validate a content hash used as a blob name.

    Args:
        sha256: Candidate object name

    Returns:
        The name unchanged when it is exactly 64 lowercase hex characters

    Raises:
        ValueError: If the name is anything else

    Examples:
        >>> safe_blob_name("0" * 64)
        '0000000000000000000000000000000000000000000000000000000000000000'

        >>> safe_blob_name("../id")
        ValueError: unsafe blob name: ../id
    """
    if not _BLOB_NAME_RE.match(sha256 or ""):
        raise ValueError(f"unsafe blob name: {sha256}")
    return sha256


def safe_manifest_name(timestamp_id: str) -> str:
    """Validate a manifest name of the form ``YYYYmmddTHHMMSS.ffffffZ``."""
    if not _MANIFEST_NAME_RE.match(timestamp_id or ""):
        raise ValueError(f"unsafe manifest name: {timestamp_id}")
    return timestamp_id


def media_dirname(host: str | None, path: str) -> str:
    """
    Name of the per-destination directory on removable media.

    Joins the destination host and archive path and replaces path separators,
    so each archive gets one flat directory at the media root.

    Examples:
        >>> media_dirname("nas", "/srv/archive")
        'nas:_srv_archive'

        >>> media_dirname(None, "/backups/home")
        'localhost:_backups_home'
    """
    name = f"{host or 'localhost'}:{path}".replace("/", "_").replace("\\", "_")
    if name in (".", "..") or "\0" in name:
        raise ValueError(f"unsafe media directory name: {name}")
    return name
