"""List eligible filesystems and their snapshots for the coordinator."""
from __future__ import annotations

import sys
from typing import TYPE_CHECKING

from zbagent import zfs
from zbagent.models import Filesystem

if TYPE_CHECKING:
    from zbagent.executor import Executor
    from zbagent.models import AgentConfig, ListEntry


def _is_inactive_be(entry: "ListEntry", active: str | None) -> bool:
    """True if entry belongs to a boot environment other than the running one."""
    for be_id in (entry.parent_be, entry.be_uuid):
        if be_id is not None and be_id != active:
            return True
    return False


def collect_filesystems(config: "AgentConfig", executor: "Executor") -> list[Filesystem]:
    """
    Query the engine and group surviving snapshots under their filesystem.

    Returns filesystems sorted by name. Snapshot suffixes keep the order
    the engine listed them in.
    """
    entries = zfs.list_entries(executor)

    active = None
    if config.exclude_inactive_be:
        active = zfs.active_be_uuid(executor)

    by_name: dict[str, Filesystem] = {}
    for entry in entries:
        if config.exclude_inactive_be and _is_inactive_be(entry, active):
            continue
        if entry.exclude == "on":
            continue
        name = entry.filesystem
        if not config.matches(name):
            continue

        fs = by_name.get(name)
        if fs is None:
            fs = by_name[name] = Filesystem(name=name)
        if entry.suffix is not None:
            fs.snapshots.append(entry.suffix)
        if entry.storage_class:
            fs.storage_class = entry.storage_class

    return [by_name[name] for name in sorted(by_name)]


def run_list(config: "AgentConfig", executor: "Executor") -> int:
    for fs in collect_filesystems(config, executor):
        sys.stdout.write(fs.render() + "\n")
    sys.stdout.flush()
    return 0
