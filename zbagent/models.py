"""Data models for the zbackup agent."""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Union

FULL_PREFIX = "__zb_full_"
INCR_MARKER = "__zb_incr"
DSET_PREFIX = "__zb_dset_"

# The only suffixes the agent will ever destroy.
SANCTIONED_SUFFIX_RE = re.compile(r"__zb_incr|__zb_full_[0-9]+|__zb_dset_[0-9]+")


def full_suffix(timestamp: str) -> str:
    return f"{FULL_PREFIX}{timestamp}"


def dset_suffix(timestamp: str) -> str:
    return f"{DSET_PREFIX}{timestamp}"


def is_sanctioned_suffix(suffix: str) -> bool:
    """Return True if suffix is one of the three agent-produced forms.

    Matched with re.fullmatch, so "__zb_full_12; rm -rf /" or
    "__zb_full_" (no digits) are both rejected.
    """
    return bool(SANCTIONED_SUFFIX_RE.fullmatch(suffix))


@dataclass(frozen=True, order=True)
class Snapshot:
    """A ZFS snapshot: pool/fs@suffix."""
    filesystem: str
    suffix: str  # just the snapshot name after '@'

    @property
    def full_name(self) -> str:
        return f"{self.filesystem}@{self.suffix}"

    @classmethod
    def parse(cls, full_name: str) -> "Snapshot":
        filesystem, _, suffix = full_name.partition("@")
        if not suffix:
            raise ValueError(f"Not a snapshot: {full_name!r}")
        return cls(filesystem=filesystem, suffix=suffix)


@dataclass
class Filesystem:
    """A filesystem or volume as reported by `list`."""
    name: str
    snapshots: list[str] = field(default_factory=list)
    storage_class: str | None = None

    def render(self) -> str:
        line = f"{self.name} [{','.join(self.snapshots)}]"
        if self.storage_class:
            line += f" {{{self.storage_class}}}"
        return line


@dataclass(frozen=True)
class ListEntry:
    """One row of `zfs list` output, properties already normalised ('-' -> None)."""
    name: str
    exclude: str | None = None
    storage_class: str | None = None
    parent_be: str | None = None
    be_uuid: str | None = None

    @property
    def filesystem(self) -> str:
        return self.name.partition("@")[0]

    @property
    def suffix(self) -> str | None:
        _, sep, suffix = self.name.partition("@")
        return suffix if sep else None


@dataclass(frozen=True)
class AgentConfig:
    pattern: str = "."
    exclude_inactive_be: bool = False

    def matches(self, filesystem: str) -> bool:
        return re.search(self.pattern, filesystem) is not None


# --- operations --------------------------------------------------------------

@dataclass(frozen=True)
class ListFilesystems:
    pass


@dataclass(frozen=True)
class FullBackup:
    filesystem: str
    timestamp: str


@dataclass(frozen=True)
class IncrementalBackup:
    filesystem: str
    base: str  # timestamp of the __zb_full_ snapshot to send from


@dataclass(frozen=True)
class DatasetBackup:
    filesystem: str
    timestamp: str
    base: str | None = None


@dataclass(frozen=True)
class DeleteSnapshot:
    filesystem: str
    suffix: str


@dataclass(frozen=True)
class Restore:
    filesystem: str
    rollback_base: str | None = None


Operation = Union[
    ListFilesystems,
    FullBackup,
    IncrementalBackup,
    DatasetBackup,
    DeleteSnapshot,
    Restore,
]


@dataclass(frozen=True)
class Options:
    """Everything parsed from the command line for a single invocation."""
    operation: Operation
    config_path: str
    dry_run: bool = False
    verbose: bool = False
    progress: bool = False
