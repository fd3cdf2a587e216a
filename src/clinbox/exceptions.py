"""Unified exception hierarchy for clinbox."""


class ClinboxError(Exception):
    """Base exception for all clinbox errors."""


class ConfigError(ClinboxError):
    """Missing or unparseable local state (config, tokens, tasks)."""


class AuthError(ClinboxError):
    """OAuth2 authorization, code exchange or refresh failure."""


class TransportError(ClinboxError):
    """Network or HTTP-status failure against the mail or AI backend."""

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status


class ParseError(ClinboxError):
    """Malformed provider or AI payload."""


class ValidationError(ClinboxError):
    """Malformed user-supplied identifier or value."""
