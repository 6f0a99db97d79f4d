"""CLI entry point for the zbackup agent."""
from __future__ import annotations

import argparse
import os
import sys

from zbagent import __version__
from zbagent.backup import (
    ValidationError,
    run_dataset,
    run_delete,
    run_full,
    run_incremental,
    run_restore,
)
from zbagent.config import DEFAULT_CONFIG_PATH, ConfigError, load_config
from zbagent.executor import ExecutorError, LocalExecutor
from zbagent.listing import run_list
from zbagent.models import (
    INCR_MARKER,
    DatasetBackup,
    DeleteSnapshot,
    FullBackup,
    IncrementalBackup,
    ListFilesystems,
    Options,
    Restore,
    dset_suffix,
    full_suffix,
)
from zbagent.relay import DirectHandoff, RelayError, select_handoff


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="zbagent",
        description="zbackup agent: list, snapshot and stream ZFS filesystems for a backup coordinator",
    )
    parser.add_argument("-c", dest="config", default=DEFAULT_CONFIG_PATH,
                        metavar="PATH", help="Configuration file")
    parser.add_argument("-l", dest="list", action="store_true",
                        help="List filesystems and their snapshots")
    parser.add_argument("-r", dest="restore", action="store_true",
                        help="Restore: receive a stream from stdin into -z")
    parser.add_argument("-z", dest="filesystem", metavar="FS",
                        help="Target filesystem")
    parser.add_argument("-d", dest="delete", metavar="SNAPSHOT",
                        help="Destroy a snapshot created by this agent")
    parser.add_argument("-f", dest="full", metavar="TIMESTAMP",
                        help="Full backup")
    parser.add_argument("-i", dest="incremental", metavar="TIMESTAMP",
                        help="Incremental backup from this full backup (dataset base with -s)")
    parser.add_argument("-s", dest="dataset", metavar="TIMESTAMP",
                        help="Dataset backup")
    parser.add_argument("-b", dest="rollback_base", metavar="TIMESTAMP",
                        help="Restore: roll back to this full backup before receiving")
    parser.add_argument("-v", action="version", version=f"zbagent {__version__}",
                        help="Print version and exit")
    parser.add_argument("-n", dest="dry_run", action="store_true",
                        help="Print the zfs commands without running them")
    parser.add_argument("-V", dest="verbose", action="store_true",
                        help="Echo zfs commands to stderr")
    parser.add_argument("-p", dest="progress", action="store_true",
                        help="Pipe the send stream through pv")
    return parser


def options_from_args(args: argparse.Namespace) -> Options:
    """Pick the single operation the arguments ask for."""
    fs = args.filesystem or ""
    selected = [
        flag for flag, value in (
            ("-l", args.list),
            ("-r", args.restore),
            ("-d", args.delete is not None),
            ("-f", args.full is not None),
            ("-i", args.incremental is not None and args.dataset is None),
            ("-s", args.dataset is not None),
        ) if value
    ]
    if not selected:
        raise ValidationError("no operation given (one of -l -r -d -f -i -s -v)")
    if len(selected) > 1:
        raise ValidationError(f"conflicting operations: {' '.join(selected)}")
    if args.rollback_base is not None and not args.restore:
        raise ValidationError("-b is only valid with -r")

    op = selected[0]
    if op == "-l":
        operation = ListFilesystems()
    elif op == "-r":
        operation = Restore(fs, args.rollback_base)
    elif op == "-d":
        operation = DeleteSnapshot(fs, args.delete)
    elif op == "-f":
        operation = FullBackup(fs, args.full)
    elif op == "-i":
        operation = IncrementalBackup(fs, args.incremental)
    else:
        operation = DatasetBackup(fs, args.dataset, args.incremental)

    return Options(
        operation=operation,
        config_path=args.config,
        dry_run=args.dry_run,
        verbose=args.verbose,
        progress=args.progress,
    )


def _handoff_tag(op) -> str:
    if isinstance(op, FullBackup):
        return f"{op.filesystem}.{full_suffix(op.timestamp)}"
    if isinstance(op, IncrementalBackup):
        return f"{op.filesystem}.{INCR_MARKER}"
    return f"{op.filesystem}.{dset_suffix(op.timestamp)}"


def dispatch(options: Options, executor=None, handoff=None) -> int:
    """Run the selected operation. Returns the process exit code."""
    op = options.operation

    if isinstance(op, ListFilesystems):
        config = load_config(options.config_path)
        # Listing is read-only, so it runs even under -n.
        return run_list(config, executor or LocalExecutor(verbose=options.verbose))

    executor = executor or LocalExecutor(dry_run=options.dry_run, verbose=options.verbose)

    if isinstance(op, DeleteSnapshot):
        return run_delete(op, executor)
    if isinstance(op, Restore):
        return run_restore(op, executor, handoff or DirectHandoff(),
                           dry_run=options.dry_run, verbose=options.verbose)

    handoff = handoff or select_handoff(_handoff_tag(op))
    handler = {
        FullBackup: run_full,
        IncrementalBackup: run_incremental,
        DatasetBackup: run_dataset,
    }[type(op)]
    return handler(op, executor, handoff,
                   dry_run=options.dry_run,
                   verbose=options.verbose,
                   progress=options.progress)


def _discard_stdout() -> None:
    """Point stdout at /dev/null so the exit-time flush cannot fail again."""
    try:
        fd = sys.stdout.fileno()
    except (AttributeError, ValueError, OSError):
        return
    devnull = os.open(os.devnull, os.O_WRONLY)
    os.dup2(devnull, fd)
    os.close(devnull)


def run(argv=None, executor=None, handoff=None) -> int:
    args = build_parser().parse_args(argv)
    try:
        options = options_from_args(args)
        return dispatch(options, executor=executor, handoff=handoff)
    except ConfigError as e:
        print(f"Config error: {e}", file=sys.stderr)
        return 1
    except (ValidationError, ExecutorError, RelayError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except BrokenPipeError:
        # The coordinator stopped reading; the stream is incomplete.
        _discard_stdout()
        print("Error: output closed before the stream finished", file=sys.stderr)
        return 1


def main(argv=None) -> None:
    sys.exit(run(argv))


if __name__ == "__main__":
    main()
