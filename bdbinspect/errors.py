"""Exception types surfaced to callers."""
from __future__ import annotations


class BdbInspectError(Exception):
    """Base class for errors reported as a single message to the caller."""


class ToolMissingError(BdbInspectError):
    """An external utility (dump, stat) could not be launched."""

    def __init__(self, tool: str, reason: str, hint: str = "Is Berkeley DB 5.3 installed?"):
        self.tool = tool
        self.hint = hint
        super().__init__(f"Failed to run {tool}: {reason}. {hint}")


class StatsError(BdbInspectError):
    """The metadata read failed or timed out."""


class CacheBuildError(BdbInspectError):
    """The index build failed, timed out, or could not start."""


class CacheMissingError(BdbInspectError):
    """A query was issued against an index that has not been built."""


class DumpError(BdbInspectError):
    """The dump utility exited with an error before emitting any data."""
