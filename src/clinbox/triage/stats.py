"""Per-session disposition counters."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class SessionStats:
    archived: int = 0
    deleted: int = 0
    tasks_created: int = 0
    skipped: int = 0
    replied: int = 0

    @property
    def total(self) -> int:
        return (
            self.archived + self.deleted + self.tasks_created
            + self.skipped + self.replied
        )
