"""Presentation surface the triage session drives."""

from __future__ import annotations

from abc import ABC, abstractmethod
from enum import Enum

from clinbox.gmail.models import Email
from clinbox.llm.analysis import Analysis
from clinbox.triage.stats import SessionStats


class Action(Enum):
    """One user decision while an email is on screen."""

    ARCHIVE = "archive"
    DELETE = "delete"
    TASK = "task"
    REPLY = "reply"
    OPEN = "open"
    VIEW = "view"
    SKIP = "skip"
    QUIT = "quit"


class ReplyChoice(Enum):
    SEND = "send"
    EDIT = "edit"
    CANCEL = "cancel"


class PresentationSurface(ABC):
    """Everything the session needs from a UI.

    Every ``wait``/``confirm``/``review`` method blocks until the user
    answers.
    """

    @abstractmethod
    def show_email(
        self,
        email: Email,
        analysis: Analysis | None,
        index: int,
        total: int,
    ) -> None:
        ...

    @abstractmethod
    def show_message(self, text: str, error: bool = False) -> None:
        """Brief in-place info or error cue."""
        ...

    @abstractmethod
    def wait_for_action(self) -> Action:
        ...

    @abstractmethod
    def confirm_task(self, title: str, description: str, email: Email) -> bool:
        """Show the pre-filled task; True to create it, False to cancel."""
        ...

    @abstractmethod
    def show_full_email(self, email: Email) -> None:
        """Show the whole body and wait for any key."""
        ...

    @abstractmethod
    def review_reply(self, email: Email, draft: str) -> ReplyChoice:
        ...

    @abstractmethod
    def show_summary(self, stats: SessionStats) -> None:
        """End-of-session totals; waits for any key."""
        ...
