"""Backup, delete and restore operations.

Every backup variant validates its arguments, snapshots, then streams
`zfs send` to stdout through the selected handoff. A snapshot whose send
later fails is left in place; cleaning it up is the coordinator's call.
"""
from __future__ import annotations

import re
import shlex
import sys
from typing import TYPE_CHECKING

from zbagent import zfs
from zbagent.models import (
    INCR_MARKER,
    Snapshot,
    dset_suffix,
    full_suffix,
    is_sanctioned_suffix,
)

if TYPE_CHECKING:
    from zbagent.executor import Executor
    from zbagent.models import (
        DatasetBackup,
        DeleteSnapshot,
        FullBackup,
        IncrementalBackup,
        Restore,
    )
    from zbagent.relay import Handoff

RATE_FILTER = ["pv", "-f", "-b", "-t", "-r"]

_NUMERIC_RE = re.compile(r"[0-9]+")
# ZFS dataset names: pool first, then path components. Never starts with "-".
_FILESYSTEM_RE = re.compile(r"[A-Za-z0-9][A-Za-z0-9_.:/ -]*")


class ValidationError(Exception):
    pass


def _require_filesystem(filesystem: str | None) -> str:
    if not filesystem or not filesystem.strip():
        raise ValidationError("a filesystem (-z) is required")
    if "@" in filesystem:
        raise ValidationError(f"filesystem must not name a snapshot: {filesystem!r}")
    if not _FILESYSTEM_RE.fullmatch(filesystem):
        raise ValidationError(f"invalid filesystem name: {filesystem!r}")
    return filesystem


def _require_numeric(value: str | None, what: str) -> str:
    if value is None or not _NUMERIC_RE.fullmatch(value):
        raise ValidationError(f"{what} must be numeric, got {value!r}")
    return value


def _require_nonempty(value: str | None, what: str) -> str:
    if not value:
        raise ValidationError(f"{what} must not be empty")
    return value


def _stream(
    send_cmd: list[str],
    handoff: "Handoff",
    dry_run: bool = False,
    verbose: bool = False,
    progress: bool = False,
) -> int:
    pipeline = [send_cmd]
    if progress:
        pipeline.append(RATE_FILTER)
    if dry_run or verbose:
        print(f"  [send] {' | '.join(shlex.join(c) for c in pipeline)}", file=sys.stderr)
    if dry_run:
        return 0
    return handoff.run(pipeline)


def _snapshot_and_send(
    target: Snapshot,
    send_cmd: list[str],
    executor: "Executor",
    handoff: "Handoff",
    dry_run: bool,
    verbose: bool,
    progress: bool,
) -> int:
    # The snapshot must exist before send reads it.
    zfs.create_snapshot(target, executor)
    return _stream(send_cmd, handoff, dry_run=dry_run, verbose=verbose, progress=progress)


def run_full(
    op: "FullBackup",
    executor: "Executor",
    handoff: "Handoff",
    dry_run: bool = False,
    verbose: bool = False,
    progress: bool = False,
) -> int:
    fs = _require_filesystem(op.filesystem)
    ts = _require_numeric(op.timestamp, "full backup timestamp")

    target = Snapshot(fs, full_suffix(ts))
    return _snapshot_and_send(
        target, zfs.send_command(target),
        executor, handoff, dry_run, verbose, progress,
    )


def run_incremental(
    op: "IncrementalBackup",
    executor: "Executor",
    handoff: "Handoff",
    dry_run: bool = False,
    verbose: bool = False,
    progress: bool = False,
) -> int:
    fs = _require_filesystem(op.filesystem)
    base_ts = _require_numeric(op.base, "incremental base timestamp")

    target = Snapshot(fs, INCR_MARKER)
    base = Snapshot(fs, full_suffix(base_ts))
    return _snapshot_and_send(
        target, zfs.send_command(target, base),
        executor, handoff, dry_run, verbose, progress,
    )


def run_dataset(
    op: "DatasetBackup",
    executor: "Executor",
    handoff: "Handoff",
    dry_run: bool = False,
    verbose: bool = False,
    progress: bool = False,
) -> int:
    """
    Snapshot <fs>@__zb_dset_<ts> and send it.

    With a base the stream is `zfs send -I`, carrying every snapshot
    between base and target rather than just the two endpoints.
    """
    fs = _require_filesystem(op.filesystem)
    ts = _require_nonempty(op.timestamp, "dataset timestamp")
    base = None
    if op.base is not None:
        base = Snapshot(fs, dset_suffix(_require_nonempty(op.base, "dataset base")))

    target = Snapshot(fs, dset_suffix(ts))
    return _snapshot_and_send(
        target, zfs.send_command(target, base, intermediates=True),
        executor, handoff, dry_run, verbose, progress,
    )


def run_delete(op: "DeleteSnapshot", executor: "Executor") -> int:
    fs = _require_filesystem(op.filesystem)
    if not is_sanctioned_suffix(op.suffix or ""):
        raise ValidationError(f"refusing to destroy unrecognised snapshot {op.suffix!r}")

    zfs.destroy_snapshot(Snapshot(fs, op.suffix), executor)
    return 0


def run_restore(
    op: "Restore",
    executor: "Executor",
    handoff: "Handoff",
    dry_run: bool = False,
    verbose: bool = False,
) -> int:
    """
    Receive a stream from stdin into the filesystem.

    With a rollback base, the filesystem is unmounted and rolled back to
    <fs>@__zb_full_<base> first; `zfs receive -F` alone gets the ordering
    wrong on some engine versions.
    """
    fs = _require_filesystem(op.filesystem)
    base_ts = None
    if op.rollback_base is not None:
        base_ts = _require_numeric(op.rollback_base, "rollback base timestamp")

    if base_ts is not None:
        zfs.unmount(fs, executor)
        zfs.rollback(Snapshot(fs, full_suffix(base_ts)), executor)

    recv_cmd = zfs.receive_command(fs)
    if dry_run or verbose:
        print(f"  [receive] {shlex.join(recv_cmd)}", file=sys.stderr)
    if dry_run:
        return 0
    return handoff.run([recv_cmd])
