"""
Error mapping and CLI utilities.

Provides centralized exception-to-exit-code mapping and CLI command wrappers
to ensure consistent error handling across all Typer commands.
"""
from __future__ import annotations

import logging
from typing import Callable, TypeVar

import typer

T = TypeVar('T')

logger = logging.getLogger(__name__)

# Exit code mapping, most specific class name first along the MRO
EXIT_CODES = {
    "OptionsError": 2,
    "ValidationError": 2,
    "ValueError": 2,
    "LockHeldError": 3,
    "MediaLockError": 3,
    "DeviceNotFoundError": 4,
    "MountError": 4,
    "SneakernetRequiredError": 5,
    "RemoteStoreError": 6,
    "StagingError": 7,
}

# Fallback for anything unexpected
EXIT_UNKNOWN = 1


def exit_code_for(exc: BaseException) -> int:
    """
    Map exception to standardized exit code.

    Returns exit codes:
    - 0: Success
    - 1: Unexpected error
    - 2: Invalid options or config file (OptionsError, ValueError)
    - 3: Archive or media lock held (LockHeldError, MediaLockError)
    - 4: Device missing or mount/unmount failed (DeviceNotFoundError, MountError)
    - 5: Sneakernet threshold reached without a device (SneakernetRequiredError)
    - 6: Archive transport or publish failure (RemoteStoreError and subclasses)
    - 7: A source file changed between fingerprinting and staging (StagingError)

    The exception's class hierarchy is walked so subclasses inherit the
    code of their nearest mapped ancestor.
    """
    for cls in type(exc).__mro__:
        code = EXIT_CODES.get(cls.__name__)
        if code is not None:
            return code
    return EXIT_UNKNOWN


def run_and_exit(func: Callable[[], T]) -> T:
    """
    Unified error wrapper for CLI commands.

    Executes the given function and maps any exceptions to appropriate
    exit codes using typer.Exit, after printing the message to stderr. This
    centralizes error handling so CLI commands don't need individual
    try/except blocks.

    Args:
        func: Function to execute

    Returns:
        Function result if successful

    Raises:
        typer.Exit: With appropriate exit code if function raises exception
    """
    try:
        return func()
    except Exception as e:
        from .printers import print_error
        code = exit_code_for(e)
        if code == EXIT_UNKNOWN:
            logger.debug("Unexpected failure", exc_info=True)
        print_error(e)
        raise typer.Exit(code=code) from e
