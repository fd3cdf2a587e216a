"""Tests for Gmail parser."""

import base64
from datetime import datetime, timezone

import pytest

from clinbox.exceptions import ParseError
from clinbox.gmail.models import Email
from clinbox.gmail.parser import MAX_PART_DEPTH, parse_date, parse_message, walk_parts


def _b64(text):
    return base64.urlsafe_b64encode(text.encode()).decode()


def _part(mime_type, text=None, filename="", **body):
    part = {"mimeType": mime_type, "filename": filename, "body": dict(body)}
    if text is not None:
        part["body"]["data"] = _b64(text)
    return part


def _multipart(*parts, subtype="mixed"):
    return {"mimeType": f"multipart/{subtype}", "body": {"size": 0}, "parts": list(parts)}


def _make_raw_message(payload=None, label_ids=("INBOX", "UNREAD"), headers=None):
    if payload is None:
        payload = _part("text/plain", "Hello world")
    payload.setdefault("headers", headers if headers is not None else [
        {"name": "From", "value": "Alice <alice@example.com>"},
        {"name": "To", "value": "bob@example.com"},
        {"name": "Subject", "value": "Test Subject"},
        {"name": "Date", "value": "Mon, 1 Jan 2024 12:00:00 +0000"},
    ])
    return {
        "id": "msg123",
        "threadId": "thread456",
        "labelIds": list(label_ids),
        "snippet": "Hello &amp; welcome",
        "payload": payload,
    }


def test_parse_plain_message():
    result = parse_message(_make_raw_message())
    assert isinstance(result, Email)
    assert result.id == "msg123"
    assert result.thread_id == "thread456"
    assert result.sender == "Alice <alice@example.com>"
    assert result.recipient == "bob@example.com"
    assert result.subject == "Test Subject"
    assert result.plain == "Hello world"
    assert result.html is None
    assert result.is_unread is True
    assert result.date == datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


def test_parse_unescapes_snippet():
    assert parse_message(_make_raw_message()).snippet == "Hello & welcome"


def test_headers_are_case_insensitive():
    raw = _make_raw_message(headers=[
        {"name": "SUBJECT", "value": "Shouting"},
        {"name": "from", "value": "carol@example.com"},
        {"name": "tO", "value": "dave@example.com"},
    ])
    result = parse_message(raw)
    assert result.subject == "Shouting"
    assert result.sender == "carol@example.com"
    assert result.recipient == "dave@example.com"


def test_parse_missing_headers():
    raw = _make_raw_message(payload=_part("text/plain"), label_ids=(), headers=[])
    result = parse_message(raw)
    assert result.subject == ""
    assert result.plain is None
    assert result.is_unread is False


def test_parse_without_id_fails():
    raw = _make_raw_message()
    del raw["id"]
    with pytest.raises(ParseError):
        parse_message(raw)


@pytest.mark.parametrize("mutate", [
    lambda raw: raw["payload"].update(headers=["Subject: not a header object"]),
    lambda raw: raw["payload"].update(parts=["not a part"], mimeType="multipart/mixed"),
    lambda raw: raw.update(payload="text/plain"),
    lambda raw: raw.update(labelIds=7),
])
def test_malformed_structure_is_parse_error(mutate):
    raw = _make_raw_message()
    mutate(raw)
    with pytest.raises(ParseError, match="msg123"):
        parse_message(raw)


def test_malformed_attachment_size_is_parse_error():
    raw = _make_raw_message(payload=_part("application/pdf", filename="a.pdf", size="big"))
    with pytest.raises(ParseError):
        parse_message(raw)


def test_non_dict_message_is_parse_error():
    with pytest.raises(ParseError):
        parse_message(["msg123"])


def test_plain_deep_and_html_shallow_both_found():
    plain_first = _multipart(
        _multipart(_part("text/plain", "plain body"), subtype="alternative"),
        _part("text/html", "<p>html body</p>"),
    )
    html_first = _multipart(
        _part("text/html", "<p>html body</p>"),
        _multipart(_part("text/plain", "plain body"), subtype="alternative"),
    )
    for payload in (plain_first, html_first):
        result = parse_message(_make_raw_message(payload))
        assert result.plain == "plain body"
        assert result.html == "<p>html body</p>"


def test_first_part_of_each_type_wins():
    payload = _multipart(
        _part("text/plain", "first"),
        _multipart(_part("text/plain", "second"), _part("text/html", "<b>one</b>")),
        _part("text/html", "<b>two</b>"),
    )
    result = parse_message(_make_raw_message(payload))
    assert result.plain == "first"
    assert result.html == "<b>one</b>"


def test_attachments_collected_at_any_depth():
    payload = _multipart(
        _part("text/plain", "see attached"),
        _part("application/pdf", filename="invoice.pdf", size=2048, attachmentId="att-1"),
        _multipart(
            _part("image/png", filename="logo.png", size=10, attachmentId="att-2"),
            _part("image/gif", filename="", size=5, attachmentId="inline"),
            subtype="related",
        ),
    )
    result = parse_message(_make_raw_message(payload))
    assert [a.filename for a in result.attachments] == ["invoice.pdf", "logo.png"]
    assert result.attachments[0].mime_type == "application/pdf"
    assert result.attachments[0].size == 2048
    assert result.attachments[1].attachment_id == "att-2"


def test_walk_parts_is_depth_first_in_order():
    payload = _multipart(
        _multipart(_part("text/plain", "a"), _part("text/html", "b")),
        _part("image/png", filename="c.png"),
    )
    order = [p["mimeType"] for p in walk_parts(payload)]
    assert order == [
        "multipart/mixed", "multipart/mixed", "text/plain", "text/html", "image/png",
    ]


def test_deep_nesting_is_capped_without_recursion_error():
    payload = _part("text/plain", "too deep")
    for _ in range(5000):
        payload = _multipart(payload)
    result = parse_message(_make_raw_message(payload))
    assert result.plain is None


def test_nesting_at_cap_is_still_read():
    payload = _part("text/plain", "just deep enough")
    for _ in range(MAX_PART_DEPTH):
        payload = _multipart(payload)
    assert parse_message(_make_raw_message(payload)).plain == "just deep enough"


def test_unpadded_body_data_decodes():
    payload = _part("text/plain")
    payload["body"]["data"] = _b64("abcd!").rstrip("=")
    assert parse_message(_make_raw_message(payload)).plain == "abcd!"


@pytest.mark.parametrize("fallback", [
    "Mon, 15 Jan 2024 10:30:00 +0000",
    "15 Jan 2024 10:30:00 +0000",
    "2024-01-15 10:30:00",
    "Mon, 15 Jan 2024 11:30:00 +0100",
])
def test_parse_date_forms_agree(fallback):
    expected = datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc)
    assert parse_date("Mon, 15 Jan 2024 10:30:00 +0000") == expected
    assert parse_date(fallback) == expected


@pytest.mark.parametrize("value", ["not a date", "", "2024/15/01 xx"])
def test_parse_date_falls_back_to_now(value):
    before = datetime.now(timezone.utc)
    parsed = parse_date(value)
    after = datetime.now(timezone.utc)
    assert before <= parsed <= after
