"""Gmail REST gateway: list, fetch, mutate and send for one account."""

from __future__ import annotations

import base64
import logging
from email.mime.text import MIMEText

from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from httplib2 import HttpLib2Error

from clinbox.exceptions import ParseError, TransportError
from clinbox.gmail import label
from clinbox.gmail.models import Email
from clinbox.gmail.parser import parse_message
from clinbox.gmail.query import BatchFilter, list_kwargs

logger = logging.getLogger(__name__)


class MailGateway:
    """Gmail API client bound to a single bearer access token.

    Every call is attempted exactly once; provider failures surface as
    ``TransportError`` carrying the HTTP status.

    Args:
        access_token: OAuth2 access token from ``TokenManager``.
        service: Pre-built Gmail ``Resource``. When supplied,
            ``access_token`` is ignored.
    """

    def __init__(self, access_token: str | None = None, service=None):
        if service is None:
            from google.oauth2.credentials import Credentials

            creds = Credentials(token=access_token)
            service = build("gmail", "v1", credentials=creds, cache_discovery=False)
        self._service = service

    @property
    def service(self):
        return self._service

    # -------------------------------------------------------------------------
    # Fetching
    # -------------------------------------------------------------------------

    def fetch_batch(
        self,
        batch_filter: BatchFilter = BatchFilter.UNREAD,
        max_results: int = 20,
    ) -> list[Email]:
        """Fetch up to ``max_results`` messages, newest first.

        A message whose detail fetch or parse fails is logged and left out of
        the batch instead of aborting it.
        """
        kwargs = list_kwargs(batch_filter, max_results)
        logger.info(f"Listing messages: {kwargs}")
        response = _execute(
            self._service.users().messages().list(**kwargs), "list messages",
        )

        emails: list[Email] = []
        seen: set[str] = set()
        for ref in response.get("messages", []):
            msg_id = ref["id"]
            if msg_id in seen:
                continue
            seen.add(msg_id)
            try:
                emails.append(self.fetch_message(msg_id))
            except (TransportError, ParseError) as e:
                logger.warning(f"Dropping message {msg_id} from batch: {e}")

        logger.info(f"Fetched {len(emails)} of {len(seen)} listed messages")
        return emails

    def fetch_message(self, msg_id: str) -> Email:
        raw = _execute(
            self._service.users().messages().get(userId="me", id=msg_id, format="full"),
            f"fetch message {msg_id}",
        )
        return parse_message(raw)

    def get_account_email(self) -> str:
        """Email address of the authenticated account."""
        profile = _execute(
            self._service.users().getProfile(userId="me"), "fetch user profile",
        )
        return profile.get("emailAddress", "")

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    def archive(self, msg_id: str) -> None:
        self._modify(msg_id, remove=label.ARCHIVE_REMOVES, action="archive")

    def mark_read(self, msg_id: str) -> None:
        self._modify(msg_id, remove=[label.UNREAD], action="mark as read")

    def delete(self, msg_id: str) -> None:
        """Move the message to trash."""
        _execute(
            self._service.users().messages().trash(userId="me", id=msg_id),
            f"delete email {msg_id}",
        )
        logger.info(f"Trashed message {msg_id}")

    def _modify(self, msg_id: str, remove: list[str], action: str) -> None:
        body = {"addLabelIds": [], "removeLabelIds": list(remove)}
        _execute(
            self._service.users().messages().modify(userId="me", id=msg_id, body=body),
            f"{action} email {msg_id}",
        )
        logger.info(f"Applied '{action}' to message {msg_id}")

    # -------------------------------------------------------------------------
    # Sending
    # -------------------------------------------------------------------------

    def send_reply(self, original: Email, body_text: str) -> None:
        """Send ``body_text`` as a reply threaded onto ``original``."""
        raw = encode_raw(build_reply(original, body_text))
        _execute(
            self._service.users().messages().send(
                userId="me", body={"raw": raw, "threadId": original.thread_id},
            ),
            "send reply",
        )
        logger.info(f"Sent reply to message {original.id}")


def reply_subject(subject: str) -> str:
    """Prefix ``Re:`` unless the subject already carries it."""
    if subject[:3].lower() == "re:":
        return subject
    return f"Re: {subject}"


def build_reply(original: Email, body_text: str) -> bytes:
    """Construct the RFC 2822 reply message."""
    msg = MIMEText(body_text, "plain", "utf-8")
    msg["To"] = original.sender
    msg["Subject"] = reply_subject(original.subject)
    msg["In-Reply-To"] = original.id
    msg["References"] = original.id
    return msg.as_bytes()


def encode_raw(message: bytes) -> str:
    """base64url without padding, as ``messages.send`` expects."""
    return base64.urlsafe_b64encode(message).rstrip(b"=").decode("ascii")


def _status(error: HttpError) -> int | None:
    status = getattr(error, "status_code", None) or getattr(error.resp, "status", None)
    return int(status) if status is not None else None


def _error_text(error: HttpError) -> str:
    content = error.content
    if isinstance(content, bytes):
        content = content.decode("utf-8", errors="replace")
    return content or str(error)


def _execute(request, what: str):
    """Run one API request, mapping failures to ``TransportError``."""
    try:
        return request.execute()
    except HttpError as error:
        status = _status(error)
        raise TransportError(
            f"Failed to {what}: HTTP {status}: {_error_text(error)}", status=status,
        ) from error
    except (HttpLib2Error, OSError) as e:
        raise TransportError(f"Failed to {what}: {e}") from e
