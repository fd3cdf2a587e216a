"""Data models for the Gmail module."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

WEB_URL_TEMPLATE = "https://mail.google.com/mail/u/0/#inbox/{id}"


@dataclass(frozen=True)
class Attachment:
    """Attachment metadata. Content is never downloaded."""

    filename: str
    mime_type: str
    size: int
    attachment_id: str


@dataclass(frozen=True)
class Email:
    """Snapshot of one Gmail message as it was when fetched.

    Mailbox mutations (archive, delete) go to the provider only; they are
    never reflected back into this object.
    """

    id: str
    thread_id: str
    subject: str
    sender: str
    recipient: str
    date: datetime
    snippet: str
    plain: str | None = None
    html: str | None = None
    labels: tuple[str, ...] = ()
    attachments: tuple[Attachment, ...] = field(default_factory=tuple)
    is_unread: bool = False

    def body_text(self) -> str:
        """Readable body: plain part, else flattened HTML, else the snippet."""
        if self.plain:
            return self.plain
        if self.html:
            from clinbox.gmail.parser import html_to_text
            text = html_to_text(self.html)
            if text:
                return text
        return self.snippet

    def sender_name(self) -> str:
        """Display name from ``Name <addr>``, or the raw From header."""
        idx = self.sender.find("<")
        if idx > 0:
            name = self.sender[:idx].strip().strip('"')
            if name:
                return name
        return self.sender

    def web_url(self) -> str:
        return WEB_URL_TEMPLATE.format(id=self.id)
