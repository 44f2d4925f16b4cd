"""
Persisted fingerprint and presence caches.

Both caches are pure optimizations over re-derivable data (content hashes and
remote existence), so a missing, corrupt or outdated cache file loads as an
empty cache. Each cache is loaded whole at start and rewritten whole with a
temp file + rename; nothing is written incrementally.
"""
from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Dict, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

from .models import (
    HASH_ALGORITHM,
    SCHEMA_VERSION,
    FingerprintCacheDocument,
    FingerprintRecord,
    PresenceCacheDocument,
)

__all__ = ["FingerprintCache", "PresenceCache", "FINGERPRINTS_FILE", "PRESENCE_FILE"]

logger = logging.getLogger(__name__)

FINGERPRINTS_FILE = "fingerprints.json"
PRESENCE_FILE = "presence.json"

_DocT = TypeVar("_DocT", bound=BaseModel)


def _load_document(path: Path, model: Type[_DocT]) -> Optional[_DocT]:
    """Load a versioned cache document, returning None when it is unusable."""
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    except OSError as e:
        logger.warning(f"Ignoring unreadable cache {path}: {e}")
        return None

    try:
        doc = model.model_validate(json.loads(raw))
    except (ValueError, ValidationError) as e:
        logger.warning(f"Ignoring corrupt cache {path}: {e}")
        return None

    if doc.schema_version != SCHEMA_VERSION or doc.algorithm != HASH_ALGORITHM:
        logger.warning(
            f"Ignoring cache {path} with schema {doc.schema_version}/{doc.algorithm}"
        )
        return None

    return doc


def _write_document(path: Path, doc: BaseModel) -> None:
    """Rewrite a cache document atomically."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(path.name + f".tmp.{os.getpid()}")
    try:
        with open(tmp, "w", encoding="utf-8", newline="\n") as f:
            json.dump(doc.model_dump(mode="json"), f, sort_keys=True, separators=(",", ":"))
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)
    except Exception:
        if tmp.exists():
            tmp.unlink()
        raise


class FingerprintCache:
    """
    Map from (path, modification time) to content hash.

    A lookup only hits when the recorded mtime equals the file's current mtime.
    Content edited without changing mtime is therefore not noticed; the cached
    hash is returned as-is.
    """

    def __init__(self, path: Path, entries: Optional[Dict[str, FingerprintRecord]] = None) -> None:
        self.path = Path(path)
        self._entries: Dict[str, FingerprintRecord] = dict(entries or {})
        self._dirty = False

    @classmethod
    def load(cls, path: Path) -> FingerprintCache:
        doc = _load_document(Path(path), FingerprintCacheDocument)
        cache = cls(path, doc.entries if doc else None)
        logger.debug(f"Loaded {len(cache)} fingerprints from {path}")
        return cache

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def dirty(self) -> bool:
        return self._dirty

    def lookup(self, path: Path | str, mtime_ns: int) -> Optional[str]:
        record = self._entries.get(str(path))
        if record is None or record.mtime_ns != mtime_ns:
            return None
        return record.sha256

    def record(self, path: Path | str, mtime_ns: int, sha256: str) -> None:
        self._entries[str(path)] = FingerprintRecord(mtime_ns=mtime_ns, sha256=sha256)
        self._dirty = True

    def save(self) -> None:
        _write_document(self.path, FingerprintCacheDocument(entries=self._entries))
        self._dirty = False
        logger.debug(f"Saved {len(self)} fingerprints to {self.path}")


class PresenceCache:
    """
    Set of hashes confirmed present in the archive.

    Hashes are only marked after a definite existence check or a successful
    publish; nothing is ever marked speculatively.
    """

    def __init__(self, path: Path, present: Optional[Dict[str, bool]] = None) -> None:
        self.path = Path(path)
        self._present: Dict[str, bool] = {k: True for k, v in (present or {}).items() if v}

    @classmethod
    def load(cls, path: Path) -> PresenceCache:
        doc = _load_document(Path(path), PresenceCacheDocument)
        cache = cls(path, doc.present if doc else None)
        logger.debug(f"Loaded {len(cache)} presence entries from {path}")
        return cache

    def __len__(self) -> int:
        return len(self._present)

    def __contains__(self, sha256: str) -> bool:
        return self._present.get(sha256, False)

    def mark_present(self, sha256: str) -> None:
        self._present[sha256] = True

    def save(self) -> None:
        _write_document(self.path, PresenceCacheDocument(present=self._present))
        logger.debug(f"Saved {len(self)} presence entries to {self.path}")
