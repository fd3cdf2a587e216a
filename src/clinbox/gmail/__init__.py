"""Gmail access: OAuth2 token lifecycle, message parsing and the REST gateway.

Heavy imports are deferred. Use explicit imports:
    from clinbox.gmail.client import MailGateway
    from clinbox.gmail.auth import TokenManager
    from clinbox.gmail.parser import parse_message
    etc.
"""

# Light imports only (no external deps)
from clinbox.gmail import label
from clinbox.gmail.models import Attachment, Email
from clinbox.gmail.query import BatchFilter


def __getattr__(name):
    """Lazy imports for classes that pull in the Google client stack."""
    if name == "MailGateway":
        from clinbox.gmail.client import MailGateway
        return MailGateway
    if name == "TokenManager":
        from clinbox.gmail.auth import TokenManager
        return TokenManager
    if name == "parse_message":
        from clinbox.gmail.parser import parse_message
        return parse_message
    raise AttributeError(f"module 'clinbox.gmail' has no attribute {name!r}")


__all__ = [
    "MailGateway",
    "TokenManager",
    "Attachment",
    "Email",
    "BatchFilter",
    "label",
    "parse_message",
]
