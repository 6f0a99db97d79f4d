"""MockExecutor, FakeHandoff and shared fixtures for testing."""
from __future__ import annotations

import pytest

from zbagent.zfs import LIST_PROPS


class MockExecutor:
    """
    Executor that returns pre-scripted responses for commands.

    responses: dict mapping tuple(cmd) -> stdout string (or an Exception to raise).
    If the command isn't found, raises KeyError (to catch unexpected calls in tests).
    Commands starting with one of `accept` return "" without a scripted response.
    """

    def __init__(self, responses: dict | None = None, accept: tuple = ()):
        self.responses: dict = responses or {}
        self.accept = accept
        self.calls: list[list[str]] = []  # record of all commands run

    def run(self, cmd: list[str]) -> str:
        self.calls.append(cmd)
        key = tuple(cmd)
        if key not in self.responses:
            if any(key[:len(prefix)] == prefix for prefix in self.accept):
                return ""
            raise KeyError(f"MockExecutor: unexpected command: {cmd}")
        result = self.responses[key]
        if isinstance(result, Exception):
            raise result
        return result


class FakeHandoff:
    """Records pipelines instead of exec'ing them."""

    def __init__(self, returncode: int = 0, executor: MockExecutor | None = None):
        self.returncode = returncode
        self.executor = executor
        self.pipelines: list[list[list[str]]] = []
        # how many engine commands had run when the handoff happened
        self.calls_before: list[int] = []

    def run(self, pipeline: list[list[str]]) -> int:
        self.pipelines.append(pipeline)
        if self.executor is not None:
            self.calls_before.append(len(self.executor.calls))
        return self.returncode


# ---------------------------------------------------------------------------
# `zfs list` output helpers
# ---------------------------------------------------------------------------

LIST_CMD = (
    "zfs", "list", "-H", "-t", "filesystem,volume,snapshot",
    "-o", ",".join(LIST_PROPS),
)
BEADM_CMD = ("beadm", "list", "-H")


def zfs_row(name: str, exclude: str = "-", storage_class: str = "-",
            parent_be: str = "-", be_uuid: str = "-") -> str:
    return "\t".join([name, exclude, storage_class, parent_be, be_uuid])


def list_output(rows: list[str]) -> str:
    return "\n".join(rows) + "\n"


STANDARD_ROWS = [
    zfs_row("tank"),
    zfs_row("tank/home", storage_class="gold"),
    zfs_row("tank/home@__zb_full_1700000000", storage_class="gold"),
    zfs_row("tank/home@__zb_incr", storage_class="gold"),
    zfs_row("tank/scratch", exclude="on"),
    zfs_row("tank/scratch@__zb_full_1700000000", exclude="on"),
    zfs_row("tank/db"),
    zfs_row("tank/db@__zb_dset_20"),
    zfs_row("tank/db@__zb_dset_10"),
    zfs_row("tank/vol0"),
]


def make_list_responses(rows: list[str] | None = None, beadm: str | None = None) -> dict:
    responses = {LIST_CMD: list_output(STANDARD_ROWS if rows is None else rows)}
    if beadm is not None:
        responses[BEADM_CMD] = beadm
    return responses


@pytest.fixture
def mock_executor():
    return MockExecutor(accept=(("zfs", "snapshot"), ("zfs", "destroy"),
                                ("zfs", "umount"), ("zfs", "rollback")))
