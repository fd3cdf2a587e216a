"""Email classification and reply drafting on top of a chat backend."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from enum import Enum

from clinbox.exceptions import ParseError
from clinbox.gmail.models import Email
from clinbox.llm.client import BaseChatBackend

logger = logging.getLogger(__name__)

ANALYSIS_EXCERPT_CHARS = 1500
REPLY_EXCERPT_CHARS = 2000
ESTIMATED_MINUTES = (1, 2, 5, 10, 15, 30)

ANALYSIS_PROMPT = """You are an email assistant for a software developer.

Analyze this email and provide a JSON response with:
- priority: "urgent" | "action_required" | "informative" | "low" | "spam"
- category: "billing" | "security" | "infrastructure" | "seo" | "newsletter" | "personal" | "github" | "other"
- summary: 1-2 sentence summary
- suggested_action: what to do (or null if no action needed)
- estimated_time_minutes: how long the action would take (1, 2, 5, 10, 15, 30)

Priority guidelines:
- urgent: Production errors, security alerts, billing limits exceeded
- action_required: Needs response or action but not time-critical
- informative: Useful info to read later
- low: Can be archived (marketing, generic newsletters)
- spam: Irrelevant, delete

Respond ONLY with valid JSON, no markdown or explanation."""

REPLY_PROMPT = """You are an email assistant helping a software developer write email replies.

Write a professional, concise reply to the email. Guidelines:
- Match the tone of the original email (formal/informal)
- Be helpful and direct
- Keep it brief (2-4 sentences typically)
- Write in the same language as the original email
- Don't use overly formal closings unless the original was formal
- If it's a notification/no-reply email, write a brief acknowledgment or suggest not replying

Respond with ONLY the reply text, no subject line, no preamble like "Here's a draft", just the email body ready to send."""


class Priority(Enum):
    URGENT = "urgent"
    ACTION_REQUIRED = "action_required"
    INFORMATIVE = "informative"
    LOW = "low"
    SPAM = "spam"

    @property
    def label(self) -> str:
        return _PRIORITY_LABELS[self]


_PRIORITY_LABELS = {
    Priority.URGENT: "URGENT",
    Priority.ACTION_REQUIRED: "ACTION",
    Priority.INFORMATIVE: "INFO",
    Priority.LOW: "LOW",
    Priority.SPAM: "SPAM",
}


class Category(Enum):
    BILLING = "billing"
    SECURITY = "security"
    INFRASTRUCTURE = "infrastructure"
    SEO = "seo"
    NEWSLETTER = "newsletter"
    PERSONAL = "personal"
    GITHUB = "github"
    OTHER = "other"

    @property
    def label(self) -> str:
        return _CATEGORY_LABELS[self]


_CATEGORY_LABELS = {
    Category.BILLING: "Billing",
    Category.SECURITY: "Security",
    Category.INFRASTRUCTURE: "Infra",
    Category.SEO: "SEO",
    Category.NEWSLETTER: "Newsletter",
    Category.PERSONAL: "Personal",
    Category.GITHUB: "GitHub",
    Category.OTHER: "Other",
}


@dataclass(frozen=True)
class Analysis:
    """AI classification of one email. Lives for one session only."""

    email_id: str
    priority: Priority
    category: Category
    summary: str
    suggested_action: str | None = None
    estimated_minutes: int = 1

    @classmethod
    def from_payload(cls, email_id: str, data: dict) -> "Analysis":
        """Validate a decoded JSON object strictly."""
        if not isinstance(data, dict):
            raise ParseError(f"AI analysis is not a JSON object: {data!r}")
        try:
            priority = Priority(data["priority"])
            category = Category(data["category"])
        except KeyError as e:
            raise ParseError(f"AI analysis missing field {e}") from e
        except ValueError as e:
            raise ParseError(f"AI analysis has invalid value: {e}") from e

        summary = data.get("summary")
        if not isinstance(summary, str):
            raise ParseError("AI analysis summary must be a string")

        suggested_action = data.get("suggested_action")
        if suggested_action is not None and not isinstance(suggested_action, str):
            raise ParseError("AI analysis suggested_action must be a string or null")

        minutes = data.get("estimated_time_minutes")
        if minutes is None:
            minutes = 1
        elif isinstance(minutes, bool) or minutes not in ESTIMATED_MINUTES:
            raise ParseError(f"AI analysis has invalid estimated_time_minutes: {minutes!r}")

        return cls(
            email_id=email_id,
            priority=priority,
            category=category,
            summary=summary,
            suggested_action=suggested_action or None,
            estimated_minutes=int(minutes),
        )


class AnalysisGateway:
    """Stateless classifier and reply drafter.

    Failures are raised as-is; the caller decides whether to degrade.
    """

    def __init__(
        self,
        backend: BaseChatBackend,
        model_analysis: str,
        model_reply: str | None = None,
    ):
        self.backend = backend
        self.model_analysis = model_analysis
        self.model_reply = model_reply or model_analysis

    def analyze(self, email: Email) -> Analysis:
        content = _email_excerpt(email, ANALYSIS_EXCERPT_CHARS, include_labels=True)
        text = self.backend.complete(
            ANALYSIS_PROMPT, content,
            model=self.model_analysis, temperature=0.3, max_tokens=500,
        )
        try:
            data = json.loads(strip_code_fence(text))
        except json.JSONDecodeError as e:
            raise ParseError(f"Failed to parse AI analysis JSON: {e}") from e
        analysis = Analysis.from_payload(email.id, data)
        logger.info(f"Analyzed {email.id}: {analysis.priority.value}/{analysis.category.value}")
        return analysis

    def generate_reply(self, email: Email) -> str:
        content = _email_excerpt(email, REPLY_EXCERPT_CHARS)
        draft = self.backend.complete(
            REPLY_PROMPT, content,
            model=self.model_reply, temperature=0.7, max_tokens=500,
        )
        return draft.strip()


def strip_code_fence(text: str) -> str:
    """Remove a surrounding markdown code fence (```json ... ```)."""
    text = text.strip()
    if text.startswith("```json"):
        text = text[len("```json"):]
    elif text.startswith("```"):
        text = text[3:]
    if text.endswith("```"):
        text = text[:-3]
    return text.strip()


def truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + "..."


def _email_excerpt(email: Email, limit: int, include_labels: bool = False) -> str:
    lines = [
        f"From: {email.sender}",
        f"Subject: {email.subject}",
        f"Date: {email.date.strftime('%Y-%m-%d %H:%M')}",
    ]
    if include_labels:
        lines.append(f"Labels: {', '.join(email.labels)}")
    lines.extend(["", "Body:", truncate(email.body_text(), limit)])
    return "\n".join(lines)
