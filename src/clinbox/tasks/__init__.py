"""Local task list fed by the triage session."""

from clinbox.tasks.store import Task, TaskStore, validate_task_id

__all__ = ["Task", "TaskStore", "validate_task_id"]
