"""
Append-only event log.

Transaction snapshots record only the length of an ``EventLog``; a
rollback truncates it back to that length instead of restoring a copy.
"""

from typing import Any, List


class EventLog(List[Any]):
    """List of immutable event records that only grows between rollbacks."""

    def truncate(self, length: int) -> None:
        del self[length:]
