"""ZFS operations using an Executor for dependency injection."""
from __future__ import annotations

from typing import TYPE_CHECKING

from zbagent.models import ListEntry, Snapshot

if TYPE_CHECKING:
    from zbagent.executor import Executor

EXCLUDE_PROP = "org.zbackup:exclude"
CLASS_PROP = "org.zbackup:class"
PARENT_BE_PROP = "org.opensolaris.libbe:parentbe"
BE_UUID_PROP = "org.opensolaris.libbe:uuid"

LIST_PROPS = ["name", EXCLUDE_PROP, CLASS_PROP, PARENT_BE_PROP, BE_UUID_PROP]


def _prop(value: str) -> str | None:
    value = value.strip()
    return None if value in ("", "-") else value


def list_entries(executor: "Executor") -> list[ListEntry]:
    """Return every filesystem, volume and snapshot with the tags `list` needs.

    Rows come back in engine order, which is what snapshot ordering in
    the listing relies on.
    """
    output = executor.run([
        "zfs", "list", "-H", "-t", "filesystem,volume,snapshot",
        "-o", ",".join(LIST_PROPS),
    ])
    results = []
    for line in output.splitlines():
        if not line.strip():
            continue
        fields = line.split("\t")
        fields += [""] * (len(LIST_PROPS) - len(fields))
        name, exclude, storage_class, parent_be, be_uuid = fields[:len(LIST_PROPS)]
        results.append(ListEntry(
            name=name.strip(),
            exclude=_prop(exclude),
            storage_class=_prop(storage_class),
            parent_be=_prop(parent_be),
            be_uuid=_prop(be_uuid),
        ))
    return results


def active_be_uuid(executor: "Executor") -> str | None:
    """Return the UUID of the boot environment running now, or None.

    `beadm list -H` prints `name;uuid;active;mountpoint;space;policy;created`;
    the running BE carries an 'N' in its active flags.
    """
    output = executor.run(["beadm", "list", "-H"])
    for line in output.splitlines():
        fields = line.split(";")
        if len(fields) < 3:
            continue
        if "N" in fields[2]:
            return _prop(fields[1])
    return None


def create_snapshot(snapshot: Snapshot, executor: "Executor") -> None:
    executor.run(["zfs", "snapshot", snapshot.full_name])


def destroy_snapshot(snapshot: Snapshot, executor: "Executor") -> None:
    """Destroy a single snapshot."""
    executor.run(["zfs", "destroy", snapshot.full_name])


def unmount(filesystem: str, executor: "Executor") -> None:
    executor.run(["zfs", "umount", filesystem])


def rollback(snapshot: Snapshot, executor: "Executor") -> None:
    """Roll back to snapshot, destroying any later snapshots."""
    executor.run(["zfs", "rollback", "-r", snapshot.full_name])


def send_command(target: Snapshot, base: Snapshot | None = None,
                 intermediates: bool = False) -> list[str]:
    """
    Build a `zfs send` argument vector.

    With a base, `-i` sends only base..target; `-I` also carries every
    snapshot between the two.
    """
    if base is None:
        return ["zfs", "send", target.full_name]
    flag = "-I" if intermediates else "-i"
    return ["zfs", "send", flag, base.full_name, target.full_name]


def receive_command(filesystem: str) -> list[str]:
    return ["zfs", "receive", "-F", filesystem]
