"""Gmail system label ids used by the triage actions."""

INBOX = "INBOX"
UNREAD = "UNREAD"

#: Labels removed when a message is archived.
ARCHIVE_REMOVES = [INBOX, UNREAD]
