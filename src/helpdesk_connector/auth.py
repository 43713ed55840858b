"""
Authenticators for helpdesk APIs.

An authenticator is owned by one RateLimitedClient and holds whatever auth
state that client needs (cached OAuth2 token, discovered session id).
Nothing here is module-global, so two connectors built from different
credentials never see each other's tokens.

Three hooks are called by the client:
- auth_headers(): headers for the next request
- check_response(): inspect a raw response before status handling
- observe(): inspect a successfully decoded JSON body
"""

import base64
import threading
import time
from collections.abc import Callable
from typing import Any

import httpx
import structlog

from helpdesk_connector.client import (
    AuthFatalError,
    HelpdeskConnectionError,
    MFARequiredError,
)

logger = structlog.get_logger(__name__)

# Tokens are refreshed this many seconds before the provider says they expire
TOKEN_REFRESH_MARGIN = 60


class Authenticator:
    """Base authenticator: no headers, no response inspection."""

    def auth_headers(self) -> dict[str, str]:
        return {}

    def check_response(self, response: httpx.Response) -> None:
        pass

    def observe(self, body: Any) -> None:
        pass


class StaticHeaderAuth(Authenticator):
    """Fixed set of headers attached to every request."""

    def __init__(self, headers: dict[str, str]):
        self._headers = dict(headers)

    def auth_headers(self) -> dict[str, str]:
        return dict(self._headers)


class BearerTokenAuth(StaticHeaderAuth):
    """Static API token or access token sent as `Authorization: Bearer ...`."""

    def __init__(self, token: str):
        if not token:
            raise ValueError("Bearer token is required")
        super().__init__({"Authorization": f"Bearer {token}"})


class BasicAuth(Authenticator):
    """HTTP Basic auth, encoded per request from static credentials."""

    def __init__(self, username: str, password: str):
        if not username or not password:
            raise ValueError("Basic auth requires a username and a password")
        self.username = username
        self._password = password

    def auth_headers(self) -> dict[str, str]:
        raw = f"{self.username}:{self._password}".encode("utf-8")
        return {"Authorization": "Basic " + base64.b64encode(raw).decode("ascii")}


class SessionTokenAuth(BasicAuth):
    """
    Basic auth plus a session token discovered from response bodies.

    The first JSON body carrying `session_id` fixes the session for the
    life of this authenticator; it is replayed as `X-Session-ID`. A 403
    whose body carries the OTP marker means the API user has multi-factor
    auth enabled, which no amount of retrying can get past.
    """

    MFA_MARKER = "OTP_EXPECTED"

    def __init__(
        self,
        username: str,
        password: str,
        session_header: str = "X-Session-ID",
        session_key: str = "session_id",
        source_name: str = "Helpdesk",
    ):
        super().__init__(username, password)
        self.session_header = session_header
        self.session_key = session_key
        self.source_name = source_name
        self._session_id: str | None = None
        self._lock = threading.Lock()

    @property
    def session_id(self) -> str | None:
        return self._session_id

    def reset(self) -> None:
        """Forget the current session (a fresh export starts a new one)."""
        with self._lock:
            self._session_id = None

    def auth_headers(self) -> dict[str, str]:
        headers = super().auth_headers()
        session_id = self._session_id
        if session_id:
            headers[self.session_header] = session_id
        return headers

    def check_response(self, response: httpx.Response) -> None:
        if response.status_code == 403 and self.MFA_MARKER in response.text:
            raise MFARequiredError(
                f"{self.source_name} account requires MFA (2FA). "
                "Disable MFA for the API user to allow API access.",
                status_code=403,
                path=response.request.url.path,
                response_body=response.text[:500],
            )

    def observe(self, body: Any) -> None:
        if not isinstance(body, dict):
            return
        session_id = body.get(self.session_key)
        if isinstance(session_id, str) and session_id and session_id != self._session_id:
            with self._lock:
                self._session_id = session_id
            logger.debug("Captured session id", source=self.source_name)


class OAuth2ClientCredentials(Authenticator):
    """
    OAuth2 client-credentials grant with a cached bearer token.

    The token is fetched on first use and refreshed once
    `now >= issued_at + (expires_in - 60)`. Refresh is single-flight:
    threads that find the token stale queue on one lock, and only the
    first of them calls the token endpoint.

    Example:
        auth = OAuth2ClientCredentials(
            client_id="app-id",
            client_secret="app-secret",
            token_url="https://api.helpscout.net/v2/oauth2/token",
        )
        headers = auth.auth_headers()  # {"Authorization": "Bearer ..."}
    """

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        token_url: str,
        *,
        form_encoded: bool = False,
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
        clock: Callable[[], float] = time.monotonic,
        source_name: str = "Helpdesk",
    ):
        """
        Args:
            client_id: OAuth2 client id (app id)
            client_secret: OAuth2 client secret (app secret)
            token_url: Token endpoint
            form_encoded: Send the grant as a form instead of JSON
            timeout: Token request timeout in seconds
            transport: Custom httpx transport (used by tests)
            clock: Monotonic clock used for expiry (used by tests)
            source_name: Used in error messages
        """
        if not client_id or not client_secret:
            raise ValueError("OAuth2 client credentials require a client id and secret")

        self.client_id = client_id
        self._client_secret = client_secret
        self.token_url = token_url
        self.form_encoded = form_encoded
        self.timeout = timeout
        self.source_name = source_name
        self._transport = transport
        self._clock = clock

        self._access_token: str | None = None
        self._expires_at = 0.0
        self._lock = threading.Lock()
        self.token_requests = 0

    def _is_valid(self) -> bool:
        return self._access_token is not None and self._clock() < self._expires_at

    def invalidate(self) -> None:
        with self._lock:
            self._access_token = None
            self._expires_at = 0.0

    def access_token(self) -> str:
        """Return a live access token, fetching a new one if needed."""
        if self._is_valid():
            return self._access_token  # type: ignore[return-value]

        with self._lock:
            # Another thread may have refreshed while we waited
            if not self._is_valid():
                self._fetch_token()
            return self._access_token  # type: ignore[return-value]

    def auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.access_token()}"}

    def _fetch_token(self) -> None:
        """Exchange client credentials for a token. Must hold lock."""
        grant = {
            "grant_type": "client_credentials",
            "client_id": self.client_id,
            "client_secret": self._client_secret,
        }
        issued_at = self._clock()
        self.token_requests += 1

        try:
            with httpx.Client(timeout=self.timeout, transport=self._transport) as http:
                if self.form_encoded:
                    response = http.post(self.token_url, data=grant)
                else:
                    response = http.post(self.token_url, json=grant)
        except httpx.HTTPError as e:
            raise HelpdeskConnectionError(
                f"{self.source_name} token request failed: {e}", path=self.token_url
            ) from e

        if not response.is_success:
            raise AuthFatalError(
                f"{self.source_name} OAuth2 token request failed",
                status_code=response.status_code,
                path=self.token_url,
                response_body=response.text[:500],
            )

        try:
            data = response.json()
            token = data["access_token"]
            expires_in = float(data.get("expires_in", 0))
        except (ValueError, KeyError, TypeError) as e:
            raise AuthFatalError(
                f"{self.source_name} OAuth2 token response was malformed: {e}",
                status_code=response.status_code,
                path=self.token_url,
            ) from e

        self._access_token = token
        self._expires_at = issued_at + max(0.0, expires_in - TOKEN_REFRESH_MARGIN)

        logger.info(
            "Obtained OAuth2 token",
            source=self.source_name,
            expires_in=expires_in,
        )
