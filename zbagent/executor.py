"""Executor protocol and the local implementation."""
from __future__ import annotations

import shlex
import subprocess
import sys
from typing import Protocol, runtime_checkable


class ExecutorError(Exception):
    """Raised when a command exits with a non-zero status."""
    def __init__(self, cmd: list[str], returncode: int, stderr: str):
        self.cmd = cmd
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(
            f"Command {shlex.join(cmd)!r} exited {returncode}: {stderr.strip()}"
        )


@runtime_checkable
class Executor(Protocol):
    def run(self, cmd: list[str]) -> str:
        """Run a command, return stdout. Raise ExecutorError on failure."""
        raise NotImplementedError


class LocalExecutor:
    """Run commands on this host, echoing them to stderr when asked to.

    stdout of the agent carries the backup stream, so nothing here may
    print to it.
    """

    def __init__(self, dry_run: bool = False, verbose: bool = False):
        self.dry_run = dry_run
        self.verbose = verbose

    def echo(self, tag: str, cmd: list[str]) -> None:
        if self.dry_run or self.verbose:
            print(f"  [{tag}] {shlex.join(cmd)}", file=sys.stderr)

    def run(self, cmd: list[str]) -> str:
        self.echo(cmd[1] if len(cmd) > 1 else cmd[0], cmd)
        if self.dry_run:
            return ""
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                check=False,
            )
        except OSError as e:
            raise ExecutorError(cmd, 127, str(e)) from e
        if result.returncode != 0:
            raise ExecutorError(cmd, result.returncode, result.stderr)
        return result.stdout
