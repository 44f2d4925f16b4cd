"""
casbak CLI

Implements 2 CLI verbs with Operations facade integration:
- backup: Deduplicating backup to the archive (or staging to removable media)
- plan: Bootstrap, scan and plan without transferring anything

Any ``--config FILE`` argument is replaced by the flags the file translates
to before Typer parses the command line.
"""
from __future__ import annotations

import logging
import sys
from typing import List, Optional

import typer

from .models import TransferState
from .operations import Operations, exit_code_for, run_and_exit
from .operations.printers import (
    print_backup_summary, print_error, print_plan_summary, print_sneakernet_ready
)
from .runtime import OptionsError
from .settings import Options, expand_config_args

app = typer.Typer(
    name="casbak",
    help="Deduplicating content-addressed backup with sneakernet fallback. "
         "Any command accepts --config FILE (key or key=value lines, one flag each).",
)

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def setup_logging(verbose: bool) -> None:
    """Configure root logging once per process."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=LOG_FORMAT,
        stream=sys.stderr,
    )
    logging.getLogger("paramiko").setLevel(logging.WARNING)


def _build_options(
    source: str,
    destination: str,
    include: Optional[List[str]],
    exclude: Optional[List[str]],
    sneakernet_device: Optional[str],
    sneakernet_threshold: Optional[str],
    mount_root: Optional[str],
    state_dir: Optional[str],
    port: int,
    identity_file: Optional[str],
    verbose: bool,
) -> Options:
    return Options.from_cli(
        source=source,
        destination=destination,
        include=include or (),
        exclude=exclude or (),
        sneakernet_device=sneakernet_device,
        sneakernet_threshold=sneakernet_threshold,
        mount_root=mount_root,
        state_dir=state_dir,
        port=port,
        identity_file=identity_file,
        verbose=verbose,
    )


SourceArg = typer.Argument(..., help="Absolute path of the tree to back up")
DestArg = typer.Argument(..., help="Archive as [user@]host:path, or a local directory")
IncludeOpt = typer.Option(None, "--include", help="Glob re-admitting entries an exclude would drop (repeatable)")
ExcludeOpt = typer.Option(None, "--exclude", help="Glob of files to skip and directories to prune (repeatable)")
DeviceOpt = typer.Option(None, "--sneakernet-device", help="Stable id (uuid/label/partuuid/id) of the removable device")
ThresholdOpt = typer.Option(None, "--sneakernet-threshold", help="Upload size (e.g. 50g) at which data goes to removable media")
MountRootOpt = typer.Option(None, "--mount-root", help="Directory under which the device is mounted")
StateDirOpt = typer.Option(None, "--state-dir", envvar="CASBAK_STATE_DIR", help="Directory for lock files and caches")
PortOpt = typer.Option(22, "--port", help="SSH port")
IdentityOpt = typer.Option(None, "--identity-file", help="SSH private key")
VerboseOpt = typer.Option(False, "--verbose", "-v", help="Debug logging and detailed output")


@app.callback()
def main() -> None:
    """Deduplicating content-addressed backup with sneakernet fallback."""


@app.command()
def backup(
    source: str = SourceArg,
    destination: str = DestArg,
    include: Optional[List[str]] = IncludeOpt,
    exclude: Optional[List[str]] = ExcludeOpt,
    sneakernet_device: Optional[str] = DeviceOpt,
    sneakernet_threshold: Optional[str] = ThresholdOpt,
    mount_root: Optional[str] = MountRootOpt,
    state_dir: Optional[str] = StateDirOpt,
    port: int = PortOpt,
    identity_file: Optional[str] = IdentityOpt,
    verbose: bool = VerboseOpt,
) -> None:
    """Back up SOURCE into the archive at DESTINATION."""
    setup_logging(verbose)

    def _backup() -> None:
        options = _build_options(
            source, destination, include, exclude, sneakernet_device, sneakernet_threshold,
            mount_root, state_dir, port, identity_file, verbose,
        )
        ops = Operations(options)
        result = ops.backup()

        if result.state is TransferState.TRANSFERRED:
            print_sneakernet_ready(result, options, verbose=verbose)
        else:
            print_backup_summary(result, options, verbose=verbose)

    run_and_exit(_backup)


@app.command()
def plan(
    source: str = SourceArg,
    destination: str = DestArg,
    include: Optional[List[str]] = IncludeOpt,
    exclude: Optional[List[str]] = ExcludeOpt,
    sneakernet_device: Optional[str] = DeviceOpt,
    sneakernet_threshold: Optional[str] = ThresholdOpt,
    mount_root: Optional[str] = MountRootOpt,
    state_dir: Optional[str] = StateDirOpt,
    port: int = PortOpt,
    identity_file: Optional[str] = IdentityOpt,
    verbose: bool = VerboseOpt,
) -> None:
    """Show what a backup would transfer, without transferring anything."""
    setup_logging(verbose)

    def _plan() -> None:
        options = _build_options(
            source, destination, include, exclude, sneakernet_device, sneakernet_threshold,
            mount_root, state_dir, port, identity_file, verbose,
        )
        ops = Operations(options)
        result = ops.plan()
        print_plan_summary(result, options, verbose=verbose)

    run_and_exit(_plan)


def cli_main(argv: Optional[List[str]] = None) -> None:
    """Console entry point: expand ``--config`` files, then run the Typer app."""
    args = list(sys.argv[1:] if argv is None else argv)
    try:
        args = expand_config_args(args)
    except OptionsError as e:
        print_error(e)
        sys.exit(exit_code_for(e))
    app(args=args, prog_name="casbak")


if __name__ == "__main__":
    cli_main()
