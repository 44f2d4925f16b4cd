"""
Operations Facade - Application service layer.

Provides a clean interface between CLI and the backup engine, centralizing
store creation and run policy while keeping CLI commands thin and testable.
"""
from __future__ import annotations

from typing import Optional

from ..models import BackupResult
from ..publisher import run_backup
from ..settings import Options
from ..storage.base import RemoteStore
from ..storage.mounts import Mounter
from ..storage.store_factory import store_for


class Operations:
    """
    Application service facade for CLI operations.

    Design Notes: Operations Facade

    One method per CLI verb. The facade owns the archive adapter's lifetime
    (open once, close when the command ends) and lets exceptions bubble up
    for central exit-code mapping. Store and mounter are injectable so tests
    run against fakes.
    """

    def __init__(self, options: Options,
                 store: Optional[RemoteStore] = None,
                 mounter: Optional[Mounter] = None):
        """
        Initialize Operations facade.

        Args:
            options: Validated run options
            store: Archive adapter (if None, created from the destination)
            mounter: Mount capability for sneakernet (if None, libc-backed)
        """
        self.options = options
        self.store = store if store is not None else store_for(options)
        self.mounter = mounter

    def backup(self) -> BackupResult:
        """Run a full backup: upload and publish a manifest, or stage to media."""
        return self._run(dry_run=False)

    def plan(self) -> BackupResult:
        """Bootstrap, scan and plan without uploading, staging or publishing."""
        return self._run(dry_run=True)

    def _run(self, *, dry_run: bool) -> BackupResult:
        try:
            return run_backup(
                self.options,
                store=self.store,
                mounter=self.mounter,
                dry_run=dry_run,
            )
        finally:
            self.store.close()
