"""Interactive triage: fetch, analyze, decide, mutate, repeat.

Each email moves through an explicit state machine::

    Presenting -> (analysis, best-effort) -> WaitingForAction
    WaitingForAction --archive/delete/task/skip--> next email
    WaitingForAction --open/view/cancelled task--> WaitingForAction
    WaitingForAction --reply--> ReplyFlow --send/edit--> next email
                                         --cancel--> WaitingForAction
    WaitingForAction --quit--> summary

Action handlers return a ``Transition`` instead of breaking out of nested
loops. Only one blocking operation is ever in flight; ``quit`` is honoured
only while waiting for an action.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable

from clinbox.exceptions import ParseError, TransportError
from clinbox.gmail.client import MailGateway
from clinbox.gmail.models import Email
from clinbox.gmail.query import BatchFilter
from clinbox.llm.analysis import Analysis, AnalysisGateway
from clinbox.tasks.store import TaskStore
from clinbox.triage.stats import SessionStats
from clinbox.triage.surface import Action, PresentationSurface, ReplyChoice

logger = logging.getLogger(__name__)


class Transition(Enum):
    STAY = "stay"
    ADVANCE = "advance"
    QUIT = "quit"


@dataclass
class _Current:
    """The email on screen and what is known about it."""

    email: Email
    index: int
    total: int
    analysis: Analysis | None = None


class TriageSession:
    """Drives one triage session over a single fetched batch.

    Args:
        mail: Gateway for fetching and mutating messages.
        analyzer: AI classification and reply drafting.
        tasks: Where confirmed tasks are persisted.
        surface: The UI collaborator.
        open_url: Opens a URL outside the terminal (browser).
    """

    def __init__(
        self,
        mail: MailGateway,
        analyzer: AnalysisGateway,
        tasks: TaskStore,
        surface: PresentationSurface,
        open_url: Callable[[str], object],
    ):
        self.mail = mail
        self.analyzer = analyzer
        self.tasks = tasks
        self.surface = surface
        self.open_url = open_url
        self.stats = SessionStats()
        self._handlers: dict[Action, Callable[[_Current], Transition]] = {
            Action.ARCHIVE: self._archive,
            Action.DELETE: self._delete,
            Action.TASK: self._create_task,
            Action.REPLY: self._reply,
            Action.OPEN: self._open,
            Action.VIEW: self._view,
            Action.SKIP: self._skip,
            Action.QUIT: self._quit,
        }

    def run(
        self,
        batch_filter: BatchFilter = BatchFilter.UNREAD,
        max_results: int = 20,
    ) -> SessionStats:
        """Fetch a batch and triage it. Returns the session's statistics."""
        emails = self.mail.fetch_batch(batch_filter, max_results)
        if not emails:
            self.surface.show_message("No emails to triage. Inbox zero!")
            return self.stats
        return self.triage(emails)

    def triage(self, emails: list[Email]) -> SessionStats:
        total = len(emails)
        for index, email in enumerate(emails, start=1):
            if self._triage_one(_Current(email, index, total)) is Transition.QUIT:
                logger.info(f"Session quit at email {index} of {total}")
                break
        self.surface.show_summary(self.stats)
        return self.stats

    def _triage_one(self, current: _Current) -> Transition:
        self._present(current)
        current.analysis = self._analyze(current.email)
        self._present(current)

        while True:
            action = self.surface.wait_for_action()
            logger.debug(f"Action {action.value} on {current.email.id}")
            transition = self._handlers[action](current)
            if transition is not Transition.STAY:
                return transition
            self._present(current)

    def _present(self, current: _Current) -> None:
        self.surface.show_email(
            current.email, current.analysis, current.index, current.total,
        )

    def _analyze(self, email: Email) -> Analysis | None:
        try:
            return self.analyzer.analyze(email)
        except (TransportError, ParseError) as e:
            logger.warning(f"Analysis failed for {email.id}: {e}")
            self.surface.show_message(f"AI analysis failed: {e}", error=True)
            return None

    # ---- Terminal dispositions ----

    def _archive(self, current: _Current) -> Transition:
        self.mail.archive(current.email.id)
        self.stats.archived += 1
        self.surface.show_message("Archived")
        return Transition.ADVANCE

    def _delete(self, current: _Current) -> Transition:
        self.mail.delete(current.email.id)
        self.stats.deleted += 1
        self.surface.show_message("Deleted")
        return Transition.ADVANCE

    def _skip(self, current: _Current) -> Transition:
        self.stats.skipped += 1
        return Transition.ADVANCE

    def _quit(self, current: _Current) -> Transition:
        return Transition.QUIT

    def _create_task(self, current: _Current) -> Transition:
        title, description = task_defaults(current.email, current.analysis)
        if not self.surface.confirm_task(title, description, current.email):
            return Transition.STAY

        self.tasks.add(
            title,
            description,
            email_id=current.email.id,
            email_subject=current.email.subject,
        )
        self.mail.archive(current.email.id)
        self.stats.tasks_created += 1
        self.surface.show_message("Task created & email archived")
        return Transition.ADVANCE

    # ---- Side channels ----

    def _open(self, current: _Current) -> Transition:
        self.open_url(current.email.web_url())
        self.surface.show_message("Opened in browser")
        return Transition.STAY

    def _view(self, current: _Current) -> Transition:
        self.surface.show_full_email(current.email)
        return Transition.STAY

    # ---- Reply flow ----

    def _reply(self, current: _Current) -> Transition:
        self.surface.show_message("Generating reply draft...")
        try:
            draft = self.analyzer.generate_reply(current.email)
        except TransportError as e:
            logger.warning(f"Draft generation failed for {current.email.id}: {e}")
            self.surface.show_message(f"Failed to generate draft: {e}", error=True)
            return Transition.STAY
        return self._reply_flow(current, draft)

    def _reply_flow(self, current: _Current, draft: str) -> Transition:
        while True:
            choice = self.surface.review_reply(current.email, draft)

            if choice is ReplyChoice.SEND:
                self.surface.show_message("Sending...")
                try:
                    self.mail.send_reply(current.email, draft)
                except TransportError as e:
                    logger.warning(f"Send failed for {current.email.id}: {e}")
                    self.surface.show_message(f"Failed to send: {e}", error=True)
                    continue
                self.mail.archive(current.email.id)
                self.stats.replied += 1
                self.surface.show_message("Reply sent & archived")
                return Transition.ADVANCE

            if choice is ReplyChoice.EDIT:
                self.open_url(current.email.web_url())
                self.surface.show_message("Opened in browser for editing")
                return Transition.ADVANCE

            return Transition.STAY


def task_defaults(email: Email, analysis: Analysis | None) -> tuple[str, str]:
    """Pre-filled task title and description for an email."""
    if analysis is None:
        return email.subject, ""
    return analysis.suggested_action or email.subject, analysis.summary
