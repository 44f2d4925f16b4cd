"""
Backup run orchestration.

Main entry point for a backup run. Sequences bootstrap, locking, scanning,
fingerprinting, dedup planning, the direct/sneakernet decision, transfer and
manifest publishing.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional, Sequence

from .caches import FINGERPRINTS_FILE, PRESENCE_FILE, FingerprintCache, PresenceCache
from .locking import FileLock
from .manifest_writer import publish_manifest
from .models import BackupResult, TransferState
from .planner import RuleSet, fingerprint_files, plan_uploads, scan_source
from .settings import Options
from .sneakernet import DEVICE_SEARCH_DIRS, SneakernetTransfer, decide_transfer
from .storage.base import RemoteStore
from .storage.mounts import LibcMounter, Mounter

__all__ = ["run_backup", "archive_workdir", "LOCK_FILE"]

logger = logging.getLogger(__name__)

LOCK_FILE = "lock"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def archive_workdir(options: Options, archive_id: str) -> Path:
    """Local working directory (lock file and caches) for an archive."""
    return options.state_dir / archive_id


def run_backup(
    options: Options,
    *,
    store: RemoteStore,
    mounter: Optional[Mounter] = None,
    dry_run: bool = False,
    clock: Callable[[], datetime] = _utcnow,
    device_search_dirs: Sequence[Path] = DEVICE_SEARCH_DIRS,
) -> BackupResult:
    """
    Run one backup of ``options.source`` into the archive behind ``store``.

    This is the main public interface for backing up. It:
    1. Connects and bootstraps the archive (before any local work)
    2. Takes the archive's process lock, then loads both caches
    3. Scans the source and fingerprints files (saving the fingerprint cache)
    4. Plans uploads against the presence cache and the archive
    5. Either uploads directly and publishes a manifest, or stages the
       candidates onto removable media when the threshold is reached

    Args:
        options: Run options
        store: Archive adapter; connected here if not already
        mounter: Mount capability for sneakernet (LibcMounter if None)
        dry_run: Stop after planning; nothing is uploaded, staged or published
        clock: Source of the run's start time (UTC)
        device_search_dirs: Where stable device ids are resolved

    Returns:
        BackupResult describing what happened

    Raises:
        LockHeldError: If another run holds the archive lock
        SneakernetRequiredError: Threshold reached without a device
        DeviceNotFoundError, MediaLockError, MountError: Sneakernet failures
        RemoteStoreError: Any archive failure
    """
    started_at = clock()

    # Phase 1: connect and bootstrap before touching the source tree
    store.connect()
    archive_id = store.bootstrap()
    logger.info(f"Archive {options.destination.display()} has id {archive_id}")

    workdir = archive_workdir(options, archive_id)
    with FileLock(workdir / LOCK_FILE, description=f"archive lock for {archive_id}"):
        # Phase 2: load caches under the lock
        fingerprints = FingerprintCache.load(workdir / FINGERPRINTS_FILE)
        presence = PresenceCache.load(workdir / PRESENCE_FILE)

        # Phase 3: scan and fingerprint
        rules = RuleSet(options.include, options.exclude)
        files = list(scan_source(options.source, rules))
        fingerprinted, hashed = fingerprint_files(files, fingerprints)
        if fingerprints.dirty:
            fingerprints.save()
        logger.info(f"Scanned {len(files)} files, hashed {hashed}")

        # Phase 4: plan
        plan = plan_uploads(fingerprinted, presence, store)
        state = decide_transfer(plan.total_size, options)

        result = BackupResult(
            archive_id=archive_id,
            state=state,
            files_scanned=len(files),
            files_hashed=hashed,
            plan=plan,
            dry_run=dry_run,
        )

        if dry_run:
            return result

        # Phase 5a: removable media; no upload and no manifest in this run
        if state is TransferState.OVERFLOW:
            transfer = SneakernetTransfer(
                options,
                mounter or LibcMounter(),
                search_dirs=device_search_dirs,
            )
            transfer.prepare()
            media_path = transfer.destination_dir
            staged, skipped = transfer.transfer(plan.candidates)
            transfer.finish()

            result.state = transfer.state
            result.staged = staged
            result.staged_skipped = skipped
            result.media_path = media_path
            return result

        # Phase 5b: direct upload, then manifest
        try:
            for candidate in plan.candidates:
                published = store.publish_blob(candidate.sha256, candidate.path)
                presence.mark_present(candidate.sha256)
                result.uploaded += 1
                result.uploaded_bytes += published.size
                logger.info(f"Uploaded {candidate.relpath} ({published.size} bytes)")
        finally:
            # Keep what did land, so a re-run after a failure skips it
            if result.uploaded:
                presence.save()

        published = publish_manifest(
            store,
            fingerprinted,
            archive_id=archive_id,
            started_at=started_at,
            source=options.source,
        )
        result.manifest_name = published.name

    return result
