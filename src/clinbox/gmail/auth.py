"""Multi-account OAuth2 token lifecycle for Gmail API access.

Tokens are stored one JSON record per account under ``tokens/``. A valid
token is reused; an expired one is refreshed; anything else (no token, or a
refresh that failed for any reason) falls through to the interactive
loopback authorization flow built on ``InstalledAppFlow``.
"""

from __future__ import annotations

import json
import logging
import os
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable
from urllib.parse import parse_qs
from wsgiref.simple_server import WSGIRequestHandler, WSGIServer, make_server
from wsgiref.util import request_uri

import requests
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow
from oauthlib.oauth2.rfc6749.errors import OAuth2Error

from clinbox.config import Account, AppContext, validate_account_id
from clinbox.exceptions import AuthError, ConfigError

logger = logging.getLogger(__name__)

AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
TOKEN_URL = "https://oauth2.googleapis.com/token"
SCOPES = [
    "https://www.googleapis.com/auth/gmail.modify",
    "https://www.googleapis.com/auth/gmail.send",
    "https://www.googleapis.com/auth/userinfo.email",
]

#: Tokens this close to expiry are treated as expired.
EXPIRY_SKEW = timedelta(seconds=60)
CALLBACK_TIMEOUT = 300.0
#: Read timeout for a single connection to the loopback listener.
CONNECTION_TIMEOUT = 10.0

_SUCCESS_PAGE = (
    "<html><body><h1>Authorization successful!</h1>"
    "<p>You can close this tab and return to the terminal.</p></body></html>"
)
_FAILURE_PAGE = (
    "<html><body><h1>Authorization failed</h1>"
    "<p>Return to the terminal for details.</p></body></html>"
)


@dataclass(frozen=True)
class Token:
    """A persisted OAuth2 token record."""

    access_token: str
    refresh_token: str
    expires_at: datetime | None = None

    def is_expired(self, now: datetime | None = None) -> bool:
        """An absent expiry counts as already expired."""
        if self.expires_at is None:
            return True
        now = now or datetime.now(timezone.utc)
        return self.expires_at - EXPIRY_SKEW <= now

    def to_dict(self) -> dict:
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Token":
        expires_at = data.get("expires_at")
        parsed = datetime.fromisoformat(expires_at) if expires_at else None
        if parsed is not None and parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return cls(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token") or "",
            expires_at=parsed,
        )

    @classmethod
    def from_response(cls, payload: dict, refresh_token: str = "") -> "Token":
        """Build a token from a token-endpoint response.

        ``refresh_token`` is carried forward when the response omits one,
        which refresh grants usually do.
        """
        try:
            access_token = payload["access_token"]
        except (KeyError, TypeError) as e:
            raise AuthError(f"Token response has no access_token: {payload!r}") from e
        expires_in = payload.get("expires_in")
        expires_at = None
        if isinstance(expires_in, (int, float)):
            expires_at = datetime.now(timezone.utc) + timedelta(seconds=expires_in)
        return cls(
            access_token=access_token,
            refresh_token=payload.get("refresh_token") or refresh_token,
            expires_at=expires_at,
        )

    @classmethod
    def from_credentials(cls, creds: Credentials, refresh_token: str = "") -> "Token":
        if not creds.token:
            raise AuthError("Authorization returned no access token")
        expires_at = creds.expiry
        # google-auth keeps expiry as naive UTC
        if expires_at is not None and expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return cls(
            access_token=creds.token,
            refresh_token=creds.refresh_token or refresh_token,
            expires_at=expires_at,
        )


class TokenStore:
    """One JSON token file per account, owner-readable only."""

    def __init__(self, tokens_dir: Path):
        self._tokens_dir = tokens_dir

    def _token_path(self, account_id: str) -> Path:
        validate_account_id(account_id)
        return self._tokens_dir / f"{account_id}.json"

    def exists(self, account_id: str) -> bool:
        return self._token_path(account_id).exists()

    def load(self, account_id: str) -> Token | None:
        token_path = self._token_path(account_id)
        if not token_path.exists():
            return None
        try:
            return Token.from_dict(json.loads(token_path.read_text()))
        except OSError as e:
            raise ConfigError(f"Failed to read token file {token_path}: {e}") from e
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            raise ConfigError(f"Failed to parse token file {token_path}: {e}") from e

    def save(self, account_id: str, token: Token) -> None:
        token_path = self._token_path(account_id)
        try:
            token_path.parent.mkdir(parents=True, exist_ok=True)
            token_path.write_text(json.dumps(token.to_dict(), indent=2))
            if os.name == "posix":
                os.chmod(token_path, 0o600)
        except OSError as e:
            raise ConfigError(f"Failed to write token file {token_path}: {e}") from e

    def delete(self, account_id: str) -> bool:
        """Delete the token file for an account. Returns True if deleted."""
        token_path = self._token_path(account_id)
        if token_path.exists():
            token_path.unlink()
            return True
        return False


def client_config(account: Account) -> dict:
    """Installed-app client config in the shape Google's console exports."""
    return {
        "installed": {
            "client_id": account.client_id,
            "client_secret": account.client_secret,
            "auth_uri": AUTH_URL,
            "token_uri": TOKEN_URL,
            "redirect_uris": ["http://localhost"],
        }
    }


def build_flow(account: Account) -> InstalledAppFlow:
    """Flow for one account whose token-endpoint calls fail on non-2xx."""
    flow = InstalledAppFlow.from_client_config(client_config(account), scopes=SCOPES)
    for hook in ("access_token_response", "refresh_token_response"):
        flow.oauth2session.register_compliance_hook(hook, _check_token_response)
    return flow


def _check_token_response(response):
    if not response.ok:
        raise AuthError(
            f"Token endpoint returned HTTP {response.status_code}: {response.text}"
        )
    return response


class _CallbackApp:
    """WSGI app that records the first request carrying a query string."""

    def __init__(self):
        self.last_request_uri: str | None = None

    def __call__(self, environ, start_response):
        query = environ.get("QUERY_STRING", "")
        if not query or self.last_request_uri is not None:
            start_response("404 Not Found", [("Content-Type", "text/plain; charset=utf-8")])
            return [b"Not found"]

        self.last_request_uri = request_uri(environ)
        ok = "code" in parse_qs(query)
        start_response(
            "200 OK" if ok else "400 Bad Request",
            [("Content-Type", "text/html; charset=utf-8")],
        )
        return [(_SUCCESS_PAGE if ok else _FAILURE_PAGE).encode("utf-8")]


class _QuietHandler(WSGIRequestHandler):
    def log_message(self, format, *args):
        logger.debug(f"Loopback {self.address_string()}: {format % args}")


class _LoopbackServer(WSGIServer):
    connection_timeout: float | None = CONNECTION_TIMEOUT

    def get_request(self):
        conn, addr = super().get_request()
        conn.settimeout(self.connection_timeout)
        return conn, addr

    def handle_error(self, request, client_address):
        # Silent or broken connections (browser preconnects) are dropped.
        logger.warning(
            f"Dropped unusable connection from {client_address[0]} on the authorization listener"
        )


class LoopbackReceiver:
    """Ephemeral localhost listener for the OAuth redirect.

    Serves requests until one carries OAuth query parameters. Connections
    that send nothing, or ask for something else (``/favicon.ico``), are
    answered or dropped and the wait goes on. Use as a context manager; the
    socket is closed on exit.
    """

    def __init__(self, host: str = "127.0.0.1"):
        self._app = _CallbackApp()
        self._server = make_server(
            host, 0, self._app,
            server_class=_LoopbackServer,
            handler_class=_QuietHandler,
        )
        self.port = self._server.server_port

    @property
    def redirect_uri(self) -> str:
        return f"http://localhost:{self.port}/"

    def wait_for_redirect(self, timeout: float | None = CALLBACK_TIMEOUT) -> str:
        """Block until the redirect arrives and return its full URI."""
        deadline = None if timeout is None else time.monotonic() + timeout
        while self._app.last_request_uri is None:
            remaining = None if deadline is None else deadline - time.monotonic()
            if remaining is not None and remaining <= 0:
                raise AuthError(
                    f"Timed out after {timeout}s waiting for the authorization callback"
                )
            self._server.timeout = remaining
            self._server.connection_timeout = (
                CONNECTION_TIMEOUT if remaining is None else min(remaining, CONNECTION_TIMEOUT)
            )
            self._server.handle_request()

        # oauthlib only accepts https authorization responses.
        return "https" + self._app.last_request_uri[len("http"):]

    def close(self) -> None:
        self._server.server_close()

    def __enter__(self) -> "LoopbackReceiver":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


class TokenManager:
    """Produces a valid access token per account.

    Args:
        context: Paths for this run; tokens live in ``context.tokens_dir``.
        open_url: Called with the authorization URL (normally opens a browser).
        callback_timeout: Seconds to wait for the loopback redirect.
    """

    def __init__(
        self,
        context: AppContext,
        open_url: Callable[[str], None],
        callback_timeout: float | None = CALLBACK_TIMEOUT,
    ):
        self.store = TokenStore(context.tokens_dir)
        self._open_url = open_url
        self.callback_timeout = callback_timeout

    def get_valid_token(self, account: Account) -> str:
        stored = self.store.load(account.id)
        if stored is not None:
            if not stored.is_expired():
                return stored.access_token
            if stored.refresh_token:
                try:
                    return self.refresh(account, stored).access_token
                except AuthError as e:
                    logger.warning(
                        f"Refresh failed for account {account.id}, re-authorizing: {e}"
                    )
        return self.authorize(account).access_token

    def refresh(self, account: Account, token: Token) -> Token:
        session = build_flow(account).oauth2session
        try:
            payload = session.refresh_token(
                TOKEN_URL,
                refresh_token=token.refresh_token,
                client_id=account.client_id,
                client_secret=account.client_secret,
            )
        except (OAuth2Error, ValueError, requests.RequestException) as e:
            raise AuthError(f"Failed to refresh token: {e}") from e

        refreshed = Token.from_response(payload, refresh_token=token.refresh_token)
        self.store.save(account.id, refreshed)
        logger.info(f"Refreshed token for account {account.id}")
        return refreshed

    def authorize(self, account: Account) -> Token:
        """Run the interactive loopback authorization flow."""
        flow = build_flow(account)
        with LoopbackReceiver() as receiver:
            flow.redirect_uri = receiver.redirect_uri
            # prompt=consent makes Google issue a refresh token on every grant.
            url, _ = flow.authorization_url(access_type="offline", prompt="consent")
            logger.info(f"Starting authorization for account {account.id} on port {receiver.port}")
            self._open_url(url)
            authorization_response = receiver.wait_for_redirect(self.callback_timeout)
        return self.exchange_code(account, flow, authorization_response)

    def exchange_code(
        self,
        account: Account,
        flow: InstalledAppFlow,
        authorization_response: str,
    ) -> Token:
        """Check the redirect's state and code, then trade the code for tokens."""
        try:
            flow.fetch_token(authorization_response=authorization_response)
            creds = flow.credentials
        except OAuth2Error as e:
            raise AuthError(f"Authorization failed: {e}") from e
        except (ValueError, requests.RequestException) as e:
            raise AuthError(f"Failed to exchange code for token: {e}") from e

        token = Token.from_credentials(creds)
        self.store.save(account.id, token)
        logger.info(f"Authorized account {account.id}")
        return token

    def revoke_local(self, account_id: str) -> bool:
        """Forget the stored token for an account."""
        return self.store.delete(account_id)
