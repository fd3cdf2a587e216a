"""The interactive triage session and its presentation surface."""

from clinbox.triage.session import Transition, TriageSession, task_defaults
from clinbox.triage.stats import SessionStats
from clinbox.triage.surface import Action, PresentationSurface, ReplyChoice

__all__ = [
    "Action",
    "PresentationSurface",
    "ReplyChoice",
    "SessionStats",
    "Transition",
    "TriageSession",
    "task_defaults",
]
