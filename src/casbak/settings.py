"""
Options and configuration for casbak.

Builds one immutable, validated options value that every component receives
explicitly. Also owns the small parsers the option layer needs: size literals,
``user@host:path`` destinations, and the line-oriented config file.
"""
from __future__ import annotations

import getpass
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from .runtime import OptionsError

__all__ = [
    "Destination",
    "Options",
    "parse_size",
    "parse_destination",
    "read_config_file",
    "expand_config_args",
    "default_state_dir",
]

DEFAULT_MOUNT_ROOT = Path("/mnt/casbak")
DEFAULT_SSH_PORT = 22

_SIZE_SUFFIXES = {
    "": 1,
    "k": 1 << 10,
    "m": 1 << 20,
    "g": 1 << 30,
    "t": 1 << 40,
}
_SIZE_RE = re.compile(r"^\s*(\d+)\s*([kmgt]?)b?\s*$", re.IGNORECASE)
_CONFIG_KEY_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_-]*$")
_DEVICE_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._:+-]*$")


def parse_size(text: str) -> int:
    """
    Parse a size literal into bytes.

    Suffixes are binary multiples: k=2^10, m=2^20, g=2^30, t=2^40. Case is
    ignored and a trailing ``b`` is tolerated ("10G", "512kb", "4096").

    Raises:
        OptionsError: If the literal is malformed
    """
    match = _SIZE_RE.match(text or "")
    if not match:
        raise OptionsError(f"Invalid size: {text!r} (expected e.g. 4096, 512k, 10g)")
    number, suffix = match.groups()
    return int(number) * _SIZE_SUFFIXES[suffix.lower()]


@dataclass(frozen=True)
class Destination:
    """
    Parsed archive destination.

    ``host`` is None for a local-directory archive.
    """
    user: str
    host: Optional[str]
    path: str

    @property
    def is_remote(self) -> bool:
        return self.host is not None

    def display(self) -> str:
        if self.host is None:
            return self.path
        return f"{self.user}@{self.host}:{self.path}"


def parse_destination(text: str, *, default_user: Optional[str] = None) -> Destination:
    """
    Parse ``[user@]host:path`` or a plain local path.

    The user defaults to the invoking user. A destination without a ``host:``
    part (or one that starts with ``/`` or ``.``) is a local archive.

    Examples:
        >>> parse_destination("backup@nas:/srv/archive")
        Destination(user='backup', host='nas', path='/srv/archive')
    """
    text = (text or "").strip()
    if not text:
        raise OptionsError("Destination cannot be empty")

    user = default_user or getpass.getuser()

    if text.startswith(("/", ".")) or ":" not in text:
        return Destination(user=user, host=None, path=text)

    remote, path = text.split(":", 1)
    if "@" in remote:
        user, host = remote.rsplit("@", 1)
        if not user:
            raise OptionsError(f"Destination has an empty user: {text}")
    else:
        host = remote

    if not host:
        raise OptionsError(f"Destination has an empty host: {text}")
    if not path:
        raise OptionsError(f"Destination has an empty path: {text}")

    return Destination(user=user, host=host, path=path)


def default_state_dir() -> Path:
    """Per-user directory holding lock files and caches, keyed by archive id."""
    base = os.getenv("XDG_CACHE_HOME")
    if base:
        return Path(base) / "casbak"
    return Path.home() / ".cache" / "casbak"


@dataclass(frozen=True)
class Options:
    """
    Immutable configuration for one backup run.

    Source/Destination:
        source: Absolute path of the tree to back up
        destination: Archive location (remote via SFTP, or local directory)
        port: SSH port for remote destinations
        identity_file: Optional private key for SSH authentication

    Selection:
        include: Glob rules that re-admit entries an exclude rule would drop
        exclude: Glob rules that skip files and prune directories

    Sneakernet:
        sneakernet_device: Stable device id (uuid, label, partuuid or id)
        sneakernet_threshold: Total upload size in bytes at or above which
            data goes to removable media instead of the network
        sneakernet_mount_root: Directory under which the device is mounted

    Local state:
        state_dir: Root of per-archive lock files and caches
        verbose: Debug logging and detailed summaries
    """
    source: Path
    destination: Destination
    include: Tuple[str, ...] = ()
    exclude: Tuple[str, ...] = ()
    sneakernet_device: Optional[str] = None
    sneakernet_threshold: Optional[int] = None
    sneakernet_mount_root: Path = DEFAULT_MOUNT_ROOT
    state_dir: Path = field(default_factory=default_state_dir)
    port: int = DEFAULT_SSH_PORT
    identity_file: Optional[Path] = None
    verbose: bool = False

    def __post_init__(self):
        """Validate options on construction."""
        if not self.source.is_absolute():
            raise OptionsError(f"Source must be an absolute path: {self.source}")

        if not self.source.is_dir():
            raise OptionsError(f"Source directory not found: {self.source}")

        for rule in self.include + self.exclude:
            if not rule or not rule.strip():
                raise OptionsError("Glob rules cannot be empty")

        from .planner import RuleSet
        try:
            RuleSet(self.include, self.exclude)
        except ValueError as e:
            raise OptionsError(f"Invalid glob rule: {e}") from e

        if self.sneakernet_device is not None and not _DEVICE_ID_RE.match(self.sneakernet_device):
            raise OptionsError(f"Invalid sneakernet device id: {self.sneakernet_device}")

        if self.sneakernet_threshold is not None and self.sneakernet_threshold < 0:
            raise OptionsError(f"sneakernet_threshold must be non-negative, got {self.sneakernet_threshold}")

        if not self.sneakernet_mount_root.is_absolute():
            raise OptionsError(f"Mount root must be an absolute path: {self.sneakernet_mount_root}")

        if not 0 < self.port < 65536:
            raise OptionsError(f"port must be between 1 and 65535, got {self.port}")

        if self.identity_file is not None and not self.identity_file.is_file():
            raise OptionsError(f"Identity file not found: {self.identity_file}")

    @classmethod
    def from_cli(
        cls,
        *,
        source: str,
        destination: str,
        include: Sequence[str] = (),
        exclude: Sequence[str] = (),
        sneakernet_device: Optional[str] = None,
        sneakernet_threshold: Optional[str] = None,
        mount_root: Optional[str] = None,
        state_dir: Optional[str] = None,
        port: int = DEFAULT_SSH_PORT,
        identity_file: Optional[str] = None,
        verbose: bool = False,
    ) -> Options:
        """Build options from raw CLI strings, raising OptionsError on bad input."""
        return cls(
            source=Path(source).expanduser(),
            destination=parse_destination(destination),
            include=tuple(include),
            exclude=tuple(exclude),
            sneakernet_device=sneakernet_device or None,
            sneakernet_threshold=parse_size(sneakernet_threshold) if sneakernet_threshold else None,
            sneakernet_mount_root=Path(mount_root) if mount_root else DEFAULT_MOUNT_ROOT,
            state_dir=Path(state_dir).expanduser() if state_dir else default_state_dir(),
            port=port,
            identity_file=Path(identity_file).expanduser() if identity_file else None,
            verbose=verbose,
        )


# Config file support


def read_config_file(path: Path) -> List[str]:
    """
    Translate a config file into equivalent command-line flags.

    Each non-blank line that is not a ``#`` comment must be ``key`` or
    ``key=value`` and becomes ``--key`` or ``--key=value``. Underscores in keys
    are normalized to dashes.

    Raises:
        OptionsError: If the file is missing or a line matches neither form
    """
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        raise OptionsError(f"Config file not found: {path}") from None
    except OSError as e:
        raise OptionsError(f"Cannot read config file {path}: {e}") from e

    args: List[str] = []
    for lineno, raw in enumerate(text.splitlines(), start=1):
        line = raw.strip()
        if not line or line.startswith("#"):
            continue

        key, sep, value = line.partition("=")
        key = key.strip()
        if not _CONFIG_KEY_RE.match(key):
            raise OptionsError(f"{path}:{lineno}: expected 'key' or 'key=value', got {raw!r}")

        flag = "--" + key.replace("_", "-")
        args.append(f"{flag}={value.strip()}" if sep else flag)

    return args


def expand_config_args(argv: Sequence[str]) -> List[str]:
    """
    Splice ``--config FILE`` occurrences in argv with the file's flags.

    The flags are inserted where ``--config`` appeared, so options given later
    on the command line override the file.
    """
    expanded: List[str] = []
    i = 0
    while i < len(argv):
        arg = argv[i]
        if arg == "--config":
            if i + 1 >= len(argv):
                raise OptionsError("--config requires a file argument")
            expanded.extend(read_config_file(Path(argv[i + 1])))
            i += 2
            continue
        if arg.startswith("--config="):
            expanded.extend(read_config_file(Path(arg.split("=", 1)[1])))
            i += 1
            continue
        expanded.append(arg)
        i += 1
    return expanded
