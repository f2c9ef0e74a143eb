"""
Google OAuth2: authorization URL, loopback callback listener, code exchange,
token refresh and userinfo lookup.
"""

import logging
import os
import threading
import webbrowser
from collections.abc import Mapping
from concurrent import futures
from dataclasses import dataclass
from datetime import datetime
from datetime import timedelta
from http.server import BaseHTTPRequestHandler
from http.server import HTTPServer
from urllib.parse import parse_qs
from urllib.parse import urlencode
from urllib.parse import urlparse

import requests

from switchcal.models import Account
from switchcal.models import AccountType
from switchcal.models import OAuthError
from switchcal.models import StoreError
from switchcal.models import TokenRefreshError
from switchcal.models import new_account_id
from switchcal.models import utcnow
from switchcal.providers.caldav import google_caldav_url

logger = logging.getLogger(__name__)

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"

CALENDAR_SCOPE = "https://www.googleapis.com/auth/calendar"
EMAIL_SCOPE = "https://www.googleapis.com/auth/userinfo.email"

CALLBACK_PATH = "/callback"
DEFAULT_REDIRECT_PORT = 8085
DEFAULT_EXPIRES_IN = 3600
AUTHORIZATION_TIMEOUT = 300  # seconds

ENV_CLIENT_ID = "SWITCHCAL_GOOGLE_CLIENT_ID"
ENV_CLIENT_SECRET = "SWITCHCAL_GOOGLE_CLIENT_SECRET"

UNKNOWN_EMAIL = "Google Account"


# ---------------------------------------------------------------------------
# Client configuration
# ---------------------------------------------------------------------------


@dataclass
class OAuthClientConfig:
    """OAuth client registration and endpoints."""

    client_id: str = ""
    client_secret: str = ""
    auth_url: str = GOOGLE_AUTH_URL
    token_url: str = GOOGLE_TOKEN_URL
    userinfo_url: str = GOOGLE_USERINFO_URL
    scopes: tuple[str, ...] = (CALENDAR_SCOPE, EMAIL_SCOPE)
    redirect_host: str = "127.0.0.1"
    redirect_port: int = DEFAULT_REDIRECT_PORT

    @property
    def configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    @classmethod
    def from_sources(cls, section: Mapping | None = None, environ: Mapping | None = None) -> "OAuthClientConfig":
        """
        Build the config from an INI section, with environment variables
        taking precedence for the client credentials.
        """
        section = section or {}
        environ = os.environ if environ is None else environ
        return cls(
            client_id=environ.get(ENV_CLIENT_ID) or section.get("google_client_id", ""),
            client_secret=environ.get(ENV_CLIENT_SECRET) or section.get("google_client_secret", ""),
            redirect_port=int(section.get("redirect_port", DEFAULT_REDIRECT_PORT)),
        )


def _coerce_expires_in(value) -> int:
    try:
        seconds = int(value)
    except (TypeError, ValueError):
        return DEFAULT_EXPIRES_IN
    return seconds if seconds > 0 else DEFAULT_EXPIRES_IN


def _safe_error_message(response: requests.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(payload, dict):
        description = payload.get("error_description")
        error = payload.get("error")
        if isinstance(error, dict):
            error = error.get("message")
        if description or error:
            return str(description or error)
    return response.text[:200]


# ---------------------------------------------------------------------------
# Loopback callback listener
# ---------------------------------------------------------------------------

_SUCCESS_PAGE = """<!DOCTYPE html>
<html>
<head><title>SwitchCal - Authorization Successful</title></head>
<body style="font-family: sans-serif; text-align: center; padding-top: 20vh;">
<h1>Authorization Successful!</h1>
<p>You can close this window and return to SwitchCal.</p>
</body>
</html>
"""

_FAILURE_PAGE = """<!DOCTYPE html>
<html>
<head><title>SwitchCal - Authorization Failed</title></head>
<body style="font-family: sans-serif; text-align: center; padding-top: 20vh;">
<h1>Authorization Failed</h1>
<p>{error}</p>
</body>
</html>
"""


@dataclass
class CallbackResult:
    """Outcome of one authorization round trip."""

    code: str = ""
    error: str = ""
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return bool(self.code)


class _CallbackHandler(BaseHTTPRequestHandler):
    def do_GET(self):
        parsed = urlparse(self.path)
        if parsed.path != CALLBACK_PATH:
            self.send_error(404)
            return

        query = parse_qs(parsed.query)
        code = query.get("code", [""])[0]
        if code:
            result = CallbackResult(code=code)
            status, page = 200, _SUCCESS_PAGE
        else:
            error = query.get("error", [""])[0] or "no authorization code received"
            result = CallbackResult(error=error)
            status, page = 400, _FAILURE_PAGE.format(error=error.replace("<", "&lt;"))

        if not self.server.callback_owner.resolve(result):
            logger.debug("Ignoring callback received after the first one")

        body = page.encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "text/html; charset=utf-8")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, format, *args):
        logger.debug("OAuth callback: " + format, *args)


class OAuthCallbackServer:
    """
    Single-shot HTTP listener for the OAuth redirect.

    The first request to /callback resolves the result; later ones are
    answered but ignored. wait() always shuts the listener down.

    Args:
        host: Interface to bind
        port: Port to bind, 0 for an ephemeral one
    """

    def __init__(self, host: str = "127.0.0.1", port: int = 0):
        self._host = host
        self._httpd = HTTPServer((host, port), _CallbackHandler)
        self._httpd.callback_owner = self
        self._future: futures.Future = futures.Future()
        self._lock = threading.Lock()
        self._thread: threading.Thread | None = None
        self._closed = False

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.shutdown()

    @property
    def port(self) -> int:
        return self._httpd.server_address[1]

    @property
    def redirect_uri(self) -> str:
        return f"http://{self._host}:{self.port}{CALLBACK_PATH}"

    def start(self) -> None:
        self._thread = threading.Thread(target=self._httpd.serve_forever, name="oauth-callback", daemon=True)
        self._thread.start()
        logger.debug("OAuth callback listener on %s", self.redirect_uri)

    def resolve(self, result: CallbackResult) -> bool:
        """Record the result unless one was already recorded."""
        with self._lock:
            if self._future.done():
                return False
            self._future.set_result(result)
            return True

    def wait(self, timeout: float | None = AUTHORIZATION_TIMEOUT) -> CallbackResult:
        try:
            return self._future.result(timeout=timeout)
        except futures.TimeoutError:
            self.resolve(CallbackResult(timed_out=True))
            return self._future.result()
        finally:
            self.shutdown()

    def shutdown(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
        if self._thread is not None:
            self._httpd.shutdown()
            self._thread.join()
        self._httpd.server_close()


# ---------------------------------------------------------------------------
# Token lifecycle
# ---------------------------------------------------------------------------


@dataclass
class TokenGrant:
    access_token: str
    refresh_token: str
    expiry: datetime


class TokenManager:
    """
    Obtains and renews Google access tokens and persists them on the account.

    Args:
        store: CalendarStore the refreshed accounts are written to
        config: OAuth client registration
        session: requests session used for token and userinfo calls
    """

    def __init__(self, store, config: OAuthClientConfig, session: requests.Session | None = None):
        self._store = store
        self._config = config
        self._session = session or requests.Session()
        self._refresh_lock = threading.Lock()

    @property
    def config(self) -> OAuthClientConfig:
        return self._config

    def authorization_url(self, redirect_uri: str, state: str | None = None) -> str:
        params = {
            "client_id": self._config.client_id,
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "scope": " ".join(self._config.scopes),
            "access_type": "offline",
            "prompt": "consent",
        }
        if state:
            params["state"] = state
        return f"{self._config.auth_url}?{urlencode(params)}"

    def _post_token(self, data: dict, error_cls: type[Exception], what: str) -> dict:
        data = {
            "client_id": self._config.client_id,
            "client_secret": self._config.client_secret,
            **data,
        }
        try:
            response = self._session.post(self._config.token_url, data=data, headers={"Accept": "application/json"})
        except requests.RequestException as e:
            raise error_cls(f"{what} request failed: {e}") from e

        if not 200 <= response.status_code < 300:
            raise error_cls(f"{what} failed ({response.status_code}): {_safe_error_message(response)}")
        try:
            payload = response.json()
        except ValueError as e:
            raise error_cls(f"{what}: token endpoint returned invalid JSON") from e
        if not isinstance(payload, dict):
            raise error_cls(f"{what}: unexpected token response")
        if payload.get("error"):
            raise error_cls(f"{what} failed: {payload.get('error_description') or payload['error']}")
        access_token = payload.get("access_token")
        if not isinstance(access_token, str) or not access_token.strip():
            raise error_cls(f"{what}: response is missing access_token")
        return payload

    def exchange_code(self, code: str, redirect_uri: str, now: datetime | None = None) -> TokenGrant:
        """Trade an authorization code for tokens."""
        payload = self._post_token(
            {"code": code, "redirect_uri": redirect_uri, "grant_type": "authorization_code"},
            OAuthError,
            "Code exchange",
        )
        refresh_token = payload.get("refresh_token") or ""
        if not refresh_token:
            logger.warning("No refresh token received; the account will need to re-authorize when the token expires")
        expires_in = _coerce_expires_in(payload.get("expires_in"))
        return TokenGrant(
            access_token=payload["access_token"].strip(),
            refresh_token=refresh_token,
            expiry=(now or utcnow()) + timedelta(seconds=expires_in),
        )

    def fetch_user_email(self, access_token: str) -> str:
        """Look up the signed-in user's email, or a placeholder on failure."""
        try:
            response = self._session.get(
                self._config.userinfo_url,
                headers={"Authorization": f"Bearer {access_token}"},
            )
        except requests.RequestException as e:
            logger.warning("Userinfo lookup failed: %s", e)
            return UNKNOWN_EMAIL
        if response.status_code != 200:
            logger.warning("Userinfo lookup failed with HTTP %s", response.status_code)
            return UNKNOWN_EMAIL
        try:
            email = response.json().get("email")
        except (ValueError, AttributeError):
            email = None
        return email or UNKNOWN_EMAIL

    def refresh(self, account: Account, now: datetime | None = None) -> Account:
        """Renew the access token and persist the account."""
        if not account.refresh_token:
            raise TokenRefreshError(f"{account.name}: no refresh token available, re-authorization required")

        payload = self._post_token(
            {"refresh_token": account.refresh_token, "grant_type": "refresh_token"},
            TokenRefreshError,
            "Token refresh",
        )
        expires_in = _coerce_expires_in(payload.get("expires_in"))
        account.access_token = payload["access_token"].strip()
        account.token_expiry = (now or utcnow()) + timedelta(seconds=expires_in)
        if payload.get("refresh_token"):
            account.refresh_token = payload["refresh_token"]
        logger.info(f"Refreshed access token for {account.name}")

        try:
            self._store.save_account(account)
        except StoreError as e:
            logger.error("Could not persist refreshed token for %s: %s", account.name, e)
        return account

    def ensure_fresh(self, account: Account, now: datetime | None = None) -> Account:
        """Refresh the token only when it has expired."""
        if not account.token_expired(now):
            return account
        with self._refresh_lock:
            if not account.token_expired(now):
                return account
            return self.refresh(account, now)

    def authorize_google_account(
        self,
        open_browser=webbrowser.open,
        timeout: float = AUTHORIZATION_TIMEOUT,
    ) -> Account:
        """
        Run the interactive authorization-code flow and store a new Google account.

        Raises:
            OAuthError: when the user denies access, the wait times out, or
                the code exchange fails
        """
        if not self._config.configured:
            raise OAuthError(f"Google OAuth client is not configured (set {ENV_CLIENT_ID} and {ENV_CLIENT_SECRET})")

        with OAuthCallbackServer(self._config.redirect_host, self._config.redirect_port) as server:
            redirect_uri = server.redirect_uri
            url = self.authorization_url(redirect_uri)
            logger.info("Waiting for Google authorization in the browser")
            if not open_browser(url):
                logger.warning("Could not open a browser. Visit this URL to continue: %s", url)
            result = server.wait(timeout)

        if result.timed_out:
            raise OAuthError(f"Timed out after {timeout:g}s waiting for authorization")
        if not result.ok:
            raise OAuthError(f"Authorization failed: {result.error}")

        grant = self.exchange_code(result.code, redirect_uri)
        email = self.fetch_user_email(grant.access_token)
        account = Account(
            id=new_account_id(),
            name=f"Google - {email}",
            type=AccountType.GOOGLE,
            email=email,
            server_url=google_caldav_url(email),
            access_token=grant.access_token,
            refresh_token=grant.refresh_token,
            token_expiry=grant.expiry,
        )
        self._store.save_account(account)
        logger.info(f"Added Google account {email}")
        return account
