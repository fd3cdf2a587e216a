"""Batch filters mapped onto Gmail ``messages.list`` arguments."""

from __future__ import annotations

from enum import Enum

from clinbox.gmail import label

UNREAD_QUERY = "is:unread"


class BatchFilter(Enum):
    """Which messages a triage session starts from."""

    UNREAD = "unread"
    INBOX = "inbox"


def list_kwargs(batch_filter: BatchFilter, max_results: int) -> dict:
    """Build keyword arguments for ``users().messages().list``."""
    kwargs: dict = {"userId": "me", "maxResults": max_results}
    if batch_filter is BatchFilter.UNREAD:
        kwargs["q"] = UNREAD_QUERY
    else:
        kwargs["labelIds"] = [label.INBOX]
    return kwargs
