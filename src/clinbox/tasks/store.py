"""Local JSON task list, loaded and rewritten wholesale."""

from __future__ import annotations

import json
import logging
import re
import time
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path

from clinbox.exceptions import ConfigError, ValidationError

logger = logging.getLogger(__name__)

_TASK_ID_RE = re.compile(r"^task_\d+$")


@dataclass
class Task:
    """A follow-up created from an email (or by hand)."""

    id: str
    title: str
    created_at: datetime
    description: str | None = None
    source_email_id: str | None = None
    source_email_subject: str | None = None
    due_date: datetime | None = None
    completed: bool = False
    completed_at: datetime | None = None

    def to_dict(self) -> dict:
        data = asdict(self)
        for key in ("created_at", "due_date", "completed_at"):
            if data[key] is not None:
                data[key] = data[key].isoformat()
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Task":
        data = dict(data)
        for key in ("created_at", "due_date", "completed_at"):
            if data.get(key):
                data[key] = datetime.fromisoformat(data[key])
        return cls(**data)


class TaskStore:
    """Ordered task collection persisted to a single JSON file.

    Every mutation rewrites the whole file immediately.
    """

    def __init__(self, path: Path, tasks: list[Task] | None = None):
        self.path = path
        self.tasks: list[Task] = tasks or []

    @classmethod
    def load(cls, path: Path) -> "TaskStore":
        if not path.exists():
            return cls(path)
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            tasks = [Task.from_dict(item) for item in data.get("tasks", [])]
        except OSError as e:
            raise ConfigError(f"Failed to read tasks file {path}: {e}") from e
        except (json.JSONDecodeError, AttributeError, TypeError, ValueError) as e:
            raise ConfigError(f"Failed to parse tasks file {path}: {e}") from e
        return cls(path, tasks)

    def save(self) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(
                json.dumps({"tasks": [t.to_dict() for t in self.tasks]}, indent=2),
                encoding="utf-8",
            )
        except OSError as e:
            raise ConfigError(f"Failed to write tasks file {self.path}: {e}") from e

    def add(
        self,
        title: str,
        description: str | None = None,
        email_id: str | None = None,
        email_subject: str | None = None,
        due_date: datetime | None = None,
    ) -> Task:
        task = Task(
            id=self._next_id(),
            title=title,
            created_at=datetime.now(timezone.utc),
            description=description,
            source_email_id=email_id,
            source_email_subject=email_subject,
            due_date=due_date,
        )
        self.tasks.append(task)
        self.save()
        logger.info(f"Created task {task.id}")
        return task

    def pending(self) -> list[Task]:
        return [t for t in self.tasks if not t.completed]

    def get(self, task_id: str) -> Task | None:
        validate_task_id(task_id)
        for task in self.tasks:
            if task.id == task_id:
                return task
        return None

    def complete(self, task_id: str) -> bool:
        """Mark a task done. Returns False if no such task exists."""
        task = self.get(task_id)
        if task is None:
            return False
        task.completed = True
        task.completed_at = datetime.now(timezone.utc)
        self.save()
        return True

    def delete(self, task_id: str) -> bool:
        """Remove a task. Returns False if no such task exists."""
        task = self.get(task_id)
        if task is None:
            return False
        self.tasks.remove(task)
        self.save()
        return True

    def _next_id(self) -> str:
        # Millisecond ids, bumped past any collision within this store.
        millis = int(time.time() * 1000)
        taken = {t.id for t in self.tasks}
        while f"task_{millis}" in taken:
            millis += 1
        return f"task_{millis}"


def validate_task_id(task_id: str) -> str:
    if not _TASK_ID_RE.match(task_id or ""):
        raise ValidationError(f"Invalid task id '{task_id}' (expected task_<number>)")
    return task_id
