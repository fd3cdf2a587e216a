"""Tests for the Gmail REST gateway."""

import base64
import email as email_lib
from datetime import datetime, timezone
from unittest.mock import MagicMock

import httplib2
import pytest
from googleapiclient.errors import HttpError

from clinbox.exceptions import TransportError
from clinbox.gmail.client import MailGateway, build_reply, encode_raw, reply_subject
from clinbox.gmail.models import Email
from clinbox.gmail.query import BatchFilter


def _http_error(status=500, content=b'{"error": {"code": 500, "message": "backend down"}}'):
    return HttpError(resp=httplib2.Response({"status": status}), content=content)


def _raw(msg_id, subject="Hello"):
    return {
        "id": msg_id,
        "threadId": f"t-{msg_id}",
        "labelIds": ["INBOX", "UNREAD"],
        "snippet": "snip",
        "payload": {
            "mimeType": "text/plain",
            "headers": [{"name": "Subject", "value": subject}],
            "body": {"data": base64.urlsafe_b64encode(b"body").decode()},
        },
    }


def _email(subject="Quarterly report"):
    return Email(
        id="orig-1",
        thread_id="thread-9",
        subject=subject,
        sender="Alice <alice@example.com>",
        recipient="me@example.com",
        date=datetime(2024, 1, 1, tzinfo=timezone.utc),
        snippet="",
    )


@pytest.fixture
def gateway():
    service = MagicMock()
    return MailGateway(service=service), service


def test_fetch_batch_unread_query(gateway):
    client, service = gateway
    messages = service.users().messages()
    messages.list().execute.return_value = {"messages": [{"id": "a"}, {"id": "b"}]}
    messages.get().execute.side_effect = [_raw("a"), _raw("b")]

    emails = client.fetch_batch(BatchFilter.UNREAD, 5)

    assert [e.id for e in emails] == ["a", "b"]
    messages.list.assert_called_with(userId="me", maxResults=5, q="is:unread")
    messages.get.assert_called_with(userId="me", id="b", format="full")


def test_fetch_batch_inbox_uses_label(gateway):
    client, service = gateway
    messages = service.users().messages()
    messages.list().execute.return_value = {}

    assert client.fetch_batch(BatchFilter.INBOX, 10) == []
    messages.list.assert_called_with(userId="me", maxResults=10, labelIds=["INBOX"])


def test_fetch_batch_drops_failed_messages(gateway):
    client, service = gateway
    messages = service.users().messages()
    messages.list().execute.return_value = {
        "messages": [{"id": "a"}, {"id": "b"}, {"id": "c"}, {"id": "d"}],
    }
    broken = _raw("d")
    del broken["id"]
    messages.get().execute.side_effect = [_raw("a"), _http_error(404), _raw("c"), broken]

    emails = client.fetch_batch(BatchFilter.UNREAD, 10)

    assert [e.id for e in emails] == ["a", "c"]


def test_fetch_batch_drops_structurally_malformed_message(gateway):
    client, service = gateway
    messages = service.users().messages()
    messages.list().execute.return_value = {"messages": [{"id": "a"}, {"id": "b"}, {"id": "c"}]}
    bad_headers = _raw("b")
    bad_headers["payload"]["headers"] = ["Subject: Hello"]
    messages.get().execute.side_effect = [_raw("a"), bad_headers, _raw("c")]

    emails = client.fetch_batch(BatchFilter.UNREAD, 10)

    assert [e.id for e in emails] == ["a", "c"]


def test_fetch_batch_list_failure_raises(gateway):
    client, service = gateway
    service.users().messages().list().execute.side_effect = _http_error(401)
    with pytest.raises(TransportError) as exc_info:
        client.fetch_batch()
    assert exc_info.value.status == 401


def test_archive_removes_inbox_and_unread(gateway):
    client, service = gateway
    client.archive("m1")
    service.users().messages().modify.assert_called_with(
        userId="me", id="m1", body={"addLabelIds": [], "removeLabelIds": ["INBOX", "UNREAD"]},
    )


def test_mark_read_removes_unread(gateway):
    client, service = gateway
    client.mark_read("m1")
    service.users().messages().modify.assert_called_with(
        userId="me", id="m1", body={"addLabelIds": [], "removeLabelIds": ["UNREAD"]},
    )


def test_delete_trashes(gateway):
    client, service = gateway
    client.delete("m1")
    service.users().messages().trash.assert_called_with(userId="me", id="m1")


def test_mutation_failure_propagates(gateway):
    client, service = gateway
    service.users().messages().modify().execute.side_effect = _http_error(503)
    with pytest.raises(TransportError, match="Failed to archive email m1"):
        client.archive("m1")
    service.users().messages().trash().execute.side_effect = OSError("connection reset")
    with pytest.raises(TransportError, match="connection reset"):
        client.delete("m1")


def test_send_reply_threads_and_encodes(gateway):
    client, service = gateway
    original = _email()

    client.send_reply(original, "Thanks, will do.")

    kwargs = service.users().messages().send.call_args.kwargs
    assert kwargs["userId"] == "me"
    assert kwargs["body"]["threadId"] == "thread-9"
    raw = kwargs["body"]["raw"]
    assert "=" not in raw
    decoded = base64.urlsafe_b64decode(raw + "=" * (-len(raw) % 4))
    msg = email_lib.message_from_bytes(decoded)
    assert msg["To"] == "Alice <alice@example.com>"
    assert msg["Subject"] == "Re: Quarterly report"
    assert msg["In-Reply-To"] == "orig-1"
    assert msg["References"] == "orig-1"
    assert msg.get_payload(decode=True).decode("utf-8") == "Thanks, will do."


def test_send_reply_failure_carries_provider_text(gateway):
    client, service = gateway
    service.users().messages().send().execute.side_effect = _http_error(
        400, b"Invalid To header",
    )
    with pytest.raises(TransportError, match="Invalid To header"):
        client.send_reply(_email(), "hi")


def test_encode_raw_round_trip():
    message = build_reply(_email(), "Gracias por el informe, ¿lo vemos el lunes?")
    encoded = encode_raw(message)
    assert not encoded.endswith("=")
    assert base64.urlsafe_b64decode(encoded + "=" * (-len(encoded) % 4)) == message


@pytest.mark.parametrize("subject, expected", [
    ("Meeting", "Re: Meeting"),
    ("Re: Meeting", "Re: Meeting"),
    ("RE: Meeting", "RE: Meeting"),
    ("re: Meeting", "re: Meeting"),
    ("", "Re: "),
])
def test_reply_subject(subject, expected):
    assert reply_subject(subject) == expected
    assert reply_subject(reply_subject(subject)) == expected


def test_get_account_email(gateway):
    client, service = gateway
    service.users().getProfile().execute.return_value = {"emailAddress": "me@example.com"}
    assert client.get_account_email() == "me@example.com"
