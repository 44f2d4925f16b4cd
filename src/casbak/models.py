"""
Data models for backup planning, caching and manifests.

These Pydantic models provide type safety and validation for the backup
workflow, from scanning the source tree to the persisted cache documents and
the per-run manifest published to the archive.
"""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, computed_field

# Version of the persisted cache and manifest documents
SCHEMA_VERSION = 1

# Digest used for fingerprints
HASH_ALGORITHM = "sha256"

SHA256_PATTERN = r"^[a-f0-9]{64}$"


class SourceFile(BaseModel):
    """Regular file discovered while walking the source tree."""
    path: Path = Field(..., description="Absolute source path")
    relpath: str = Field(..., description="POSIX path relative to the source root")
    mtime_ns: int = Field(..., description="Modification time in nanoseconds")
    size: int = Field(..., ge=0, description="File size in bytes")


class FingerprintedFile(BaseModel):
    """Source file paired with its content hash."""
    file: SourceFile
    sha256: str = Field(..., pattern=SHA256_PATTERN)


class UploadCandidate(BaseModel):
    """The one representative path chosen for a hash missing from the archive."""
    path: Path = Field(..., description="Absolute source path")
    relpath: str = Field(..., description="POSIX path relative to the source root")
    sha256: str = Field(..., pattern=SHA256_PATTERN)
    size: int = Field(..., ge=0)


class UploadPlan(BaseModel):
    """Output of the dedup planner."""
    candidates: List[UploadCandidate] = Field(default_factory=list, description="Ordered upload candidates")
    known_present: int = Field(default=0, description="Distinct hashes already known present from the cache")
    checked: int = Field(default=0, description="Distinct hashes checked against the remote store")
    duplicates: int = Field(default=0, description="Paths dropped because an earlier path shares their hash")

    @computed_field
    @property
    def total_size(self) -> int:
        """Total bytes of all candidates."""
        return sum(c.size for c in self.candidates)


class TransferState(str, Enum):
    """Sneakernet transfer manager states."""
    DIRECT = "direct"
    OVERFLOW = "overflow"
    PREPARED = "prepared"
    TRANSFERRED = "transferred"


# Persisted documents


class FingerprintRecord(BaseModel):
    """Cached hash for a path at a given modification time."""
    mtime_ns: int
    sha256: str = Field(..., pattern=SHA256_PATTERN)


class FingerprintCacheDocument(BaseModel):
    """On-disk form of the fingerprint cache."""
    schema_version: int = Field(SCHEMA_VERSION, description="Cache document schema version")
    algorithm: str = Field(HASH_ALGORITHM, description="Digest used for the cached hashes")
    entries: Dict[str, FingerprintRecord] = Field(default_factory=dict, description="Absolute path to record")


class PresenceCacheDocument(BaseModel):
    """On-disk form of the presence cache."""
    schema_version: int = Field(SCHEMA_VERSION, description="Cache document schema version")
    algorithm: str = Field(HASH_ALGORITHM, description="Digest the cached hashes were computed with")
    present: Dict[str, bool] = Field(default_factory=dict, description="Hash to known-present flag")


class ManifestEntry(BaseModel):
    """Single (path, hash) pair in a manifest."""
    path: str = Field(..., description="POSIX path relative to the source root")
    sha256: str = Field(..., pattern=SHA256_PATTERN)


class ManifestDocument(BaseModel):
    """Snapshot of the source tree for one run, published under manifests/."""
    schema_version: int = Field(SCHEMA_VERSION, description="Manifest schema version")
    algorithm: str = Field(HASH_ALGORITHM, description="Digest used for entry hashes")
    archive_id: str = Field(..., description="Identity of the archive this manifest belongs to")
    started_at: datetime = Field(..., description="UTC start time of the run")
    source: str = Field(..., description="Absolute source root")
    entries: List[ManifestEntry] = Field(..., description="Entries in enumeration order")


class BackupResult(BaseModel):
    """Outcome of a backup run, used for the operator summary."""
    archive_id: str
    state: TransferState
    files_scanned: int = 0
    files_hashed: int = 0
    plan: UploadPlan
    uploaded: int = 0
    uploaded_bytes: int = 0
    staged: int = 0
    staged_skipped: int = 0
    manifest_name: Optional[str] = None
    media_path: Optional[Path] = None
    dry_run: bool = False
