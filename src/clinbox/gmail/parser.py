"""Parse Gmail API message payloads into ``Email`` snapshots."""

from __future__ import annotations

import base64
import binascii
import html as html_module
import logging
import re
import textwrap
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Iterator

from bs4 import BeautifulSoup

from clinbox.exceptions import ParseError
from clinbox.gmail import label
from clinbox.gmail.models import Attachment, Email

logger = logging.getLogger(__name__)

#: Parts nested deeper than this are ignored.
MAX_PART_DEPTH = 32

FALLBACK_DATE_FORMATS = (
    "%a, %d %b %Y %H:%M:%S %z",
    "%d %b %Y %H:%M:%S %z",
    "%Y-%m-%d %H:%M:%S",
)

_BLOCK_TAGS = [
    "p", "div", "tr", "li", "ul", "ol", "table", "blockquote", "pre",
    "h1", "h2", "h3", "h4", "h5", "h6",
]


def parse_message(raw_message: dict) -> Email:
    """Build an ``Email`` from a Gmail API message (format=full).

    Pure parsing, no network calls. The plain and html bodies are the first
    ``text/plain`` and first ``text/html`` parts met in a depth-first walk;
    every part with a filename becomes an attachment.
    """
    try:
        return _parse_message(raw_message)
    except (AttributeError, TypeError, ValueError) as e:
        msg_id = raw_message.get("id") if isinstance(raw_message, dict) else None
        raise ParseError(f"Malformed message payload {msg_id!r}: {e}") from e


def _parse_message(raw_message: dict) -> Email:
    if not raw_message.get("id"):
        raise ParseError("Message payload has no id")

    payload = raw_message.get("payload") or {}
    headers = _extract_headers(payload)
    label_ids = raw_message.get("labelIds") or []

    plain = None
    html = None
    attachments = []
    for part in walk_parts(payload):
        mime_type = part.get("mimeType", "")
        if mime_type == "text/plain" and plain is None:
            plain = _decode_body_data(part)
        elif mime_type == "text/html" and html is None:
            html = _decode_body_data(part)

        filename = part.get("filename")
        if filename:
            body = part.get("body") or {}
            attachments.append(Attachment(
                filename=filename,
                mime_type=mime_type,
                size=int(body.get("size") or 0),
                attachment_id=body.get("attachmentId", ""),
            ))

    return Email(
        id=raw_message["id"],
        thread_id=raw_message.get("threadId", ""),
        subject=headers.get("subject", ""),
        sender=headers.get("from", ""),
        recipient=headers.get("to", ""),
        date=parse_date(headers.get("date", "")),
        snippet=html_module.unescape(raw_message.get("snippet", "")),
        plain=plain,
        html=html,
        labels=tuple(label_ids),
        attachments=tuple(attachments),
        is_unread=label.UNREAD in label_ids,
    )


def walk_parts(payload: dict) -> Iterator[dict]:
    """Yield every MIME part depth-first, in document order.

    Uses an explicit stack so hostile nesting cannot exhaust the interpreter
    stack; parts deeper than ``MAX_PART_DEPTH`` are skipped.
    """
    stack = [(payload, 0)]
    while stack:
        part, depth = stack.pop()
        if depth > MAX_PART_DEPTH:
            logger.warning(f"Skipping MIME part nested deeper than {MAX_PART_DEPTH}")
            continue
        yield part
        children = part.get("parts") or []
        for child in reversed(children):
            stack.append((child, depth + 1))


def parse_date(value: str) -> datetime:
    """Parse a Date header, falling back to the current instant.

    Tries RFC 2822 first, then ``FALLBACK_DATE_FORMATS`` in order. Naive
    results are taken as UTC. A header matching none of them never rejects
    the message.
    """
    value = (value or "").strip()
    if value:
        try:
            return _as_utc(parsedate_to_datetime(value))
        except (TypeError, ValueError, IndexError):
            pass
        for fmt in FALLBACK_DATE_FORMATS:
            try:
                return _as_utc(datetime.strptime(value, fmt))
            except ValueError:
                continue
        logger.debug(f"Unparseable Date header {value!r}, using current time")
    return datetime.now(timezone.utc)


def html_to_text(html: str, width: int = 80) -> str:
    """Flatten HTML into plain text wrapped at ``width`` columns."""
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style", "head"]):
        tag.decompose()
    for br in soup.find_all("br"):
        br.replace_with("\n")
    for block in soup.find_all(_BLOCK_TAGS):
        block.insert_after("\n")

    lines: list[str] = []
    for raw_line in soup.get_text().splitlines():
        line = re.sub(r"\s+", " ", raw_line).strip()
        if not line:
            if lines and lines[-1] != "":
                lines.append("")
            continue
        lines.extend(textwrap.wrap(line, width=width) or [""])
    return "\n".join(lines).strip()


def _as_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _extract_headers(payload: dict) -> dict[str, str]:
    headers: dict[str, str] = {}
    for h in payload.get("headers") or []:
        # First occurrence wins, matching the provider's display.
        headers.setdefault(h.get("name", "").lower(), h.get("value", ""))
    return headers


def _decode_body_data(part: dict) -> str | None:
    data = (part.get("body") or {}).get("data")
    if not data:
        return None
    try:
        padded = data + "=" * (-len(data) % 4)
        return base64.urlsafe_b64decode(padded).decode("utf-8", errors="replace")
    except (binascii.Error, ValueError) as e:
        logger.warning(f"Undecodable body part ({part.get('mimeType')}): {e}")
        return None
