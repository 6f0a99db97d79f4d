"""Hand a send pipeline over to the agent's stdout.

Two strategies, picked once at startup:

* DirectHandoff replaces the agent with the last pipeline stage, so the
  engine writes straight to the inherited stdout.
* FifoBridge is for platforms where the engine cannot write to the
  agent's stdout as inherited (illumos, when stdout is the coordinator's
  socket). The pipeline writes into a named pipe from a forked child and
  the agent copies the bytes across unchanged.
"""
from __future__ import annotations

import os
import re
import signal
import subprocess
import sys
import tempfile
from typing import NoReturn, Protocol, runtime_checkable

from zbagent.executor import ExecutorError

CHUNK_SIZE = 64 * 1024

# sys.platform prefixes that need the fifo bridge
FIFO_PLATFORMS = ("sunos",)


class RelayError(Exception):
    """The fifo bridge could not be set up."""


@runtime_checkable
class Handoff(Protocol):
    def run(self, pipeline: list[list[str]]) -> int:
        """Stream the pipeline's output to stdout; return its exit status."""
        raise NotImplementedError


def exec_pipeline(pipeline: list[list[str]]) -> NoReturn:
    """
    Start every stage but the last with explicit pipes between them, then
    replace this process with the last stage reading from the previous one.

    The last stage inherits stdout (and stdin, when it is the only stage).
    """
    upstream = None
    for cmd in pipeline[:-1]:
        proc = subprocess.Popen(cmd, stdin=upstream, stdout=subprocess.PIPE)
        if upstream is not None:
            upstream.close()
        upstream = proc.stdout
    if upstream is not None:
        os.dup2(upstream.fileno(), 0)
        upstream.close()

    last = pipeline[-1]
    # Python ignores SIGPIPE; the engine should die on a closed reader as usual.
    previous = signal.signal(signal.SIGPIPE, signal.SIG_DFL)
    try:
        os.execvp(last[0], last)
    except OSError as e:
        signal.signal(signal.SIGPIPE, previous)
        raise ExecutorError(last, 127, str(e)) from e


class DirectHandoff:
    """The pipeline takes over this process; run() never returns."""

    def run(self, pipeline: list[list[str]]) -> int:
        sys.stdout.flush()
        sys.stderr.flush()
        exec_pipeline(pipeline)


def _exit_code(status: int) -> int:
    code = os.waitstatus_to_exitcode(status)
    return 128 - code if code < 0 else code


class FifoBridge:
    """Relay a forked pipeline's output through a named pipe."""

    def __init__(
        self,
        tag: str = "stream",
        directory: str | None = None,
        out_fd: int | None = None,
        chunk_size: int = CHUNK_SIZE,
    ):
        self.tag = re.sub(r"[^A-Za-z0-9_.-]", "_", tag)
        self.directory = directory or tempfile.gettempdir()
        self.out_fd = out_fd
        self.chunk_size = chunk_size

    @property
    def fifo_path(self) -> str:
        return os.path.join(self.directory, f"zbagent.{os.getpid()}.{self.tag}.fifo")

    def run(self, pipeline: list[list[str]]) -> int:
        """
        Both ends are opened before the fork, without blocking, so neither
        side can wait forever on the other's open. The child inherits the
        only write end: if it dies at any point the relay sees end-of-stream.
        """
        path = self.fifo_path
        try:
            os.mkfifo(path, 0o600)
        except OSError as e:
            raise RelayError(f"Cannot create fifo {path}: {e}") from e

        try:
            try:
                rfd = os.open(path, os.O_RDONLY | os.O_NONBLOCK)
            except OSError as e:
                raise RelayError(f"Cannot open fifo {path}: {e}") from e
            try:
                wfd = os.open(path, os.O_WRONLY | os.O_NONBLOCK)
            except OSError as e:
                os.close(rfd)
                raise RelayError(f"Cannot open fifo {path}: {e}") from e
        finally:
            # Only open descriptors keep the pipe alive from here on.
            os.unlink(path)
        os.set_blocking(rfd, True)
        os.set_blocking(wfd, True)

        sys.stdout.flush()
        sys.stderr.flush()
        pid = os.fork()
        if pid == 0:
            os.close(rfd)
            self._child(wfd, pipeline)
        os.close(wfd)

        try:
            self._relay(rfd)
        finally:
            os.close(rfd)
            _, status = os.waitpid(pid, 0)
        return _exit_code(status)

    def _child(self, wfd: int, pipeline: list[list[str]]) -> NoReturn:
        try:
            os.dup2(wfd, 1)
            os.close(wfd)
            exec_pipeline(pipeline)
        except Exception as e:
            print(f"Error: {e}", file=sys.stderr)
            sys.stderr.flush()
        finally:
            os._exit(127)

    def _relay(self, rfd: int) -> None:
        out = self.out_fd if self.out_fd is not None else sys.stdout.fileno()
        while True:
            chunk = os.read(rfd, self.chunk_size)
            if not chunk:
                break
            view = memoryview(chunk)
            while view:
                written = os.write(out, view)
                view = view[written:]


def needs_fifo_bridge(platform: str = sys.platform) -> bool:
    return platform.startswith(FIFO_PLATFORMS)


def select_handoff(tag: str, platform: str = sys.platform) -> Handoff:
    if needs_fifo_bridge(platform):
        return FifoBridge(tag=tag)
    return DirectHandoff()
