"""
Rate-Limited Helpdesk API Client

Synchronous HTTP client shared by every connector:
- Pluggable authenticators (static headers, OAuth2 token, session token)
- Retry on rate-limit statuses, honouring Retry-After (tenacity)
- Optional fixed pre-request delay for sources with tiny global quotas
- Optional token bucket for a per-instance request budget
- Uniform responses: decoded body plus headers, including 201/204
- Cancellation propagated into every blocking wait
"""

import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import httpx
import structlog
from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
)

from helpdesk_connector.cancellation import CancellationToken
from helpdesk_connector.rate_limiter import TokenBucketRateLimiter

if TYPE_CHECKING:
    from helpdesk_connector.auth import Authenticator

logger = structlog.get_logger(__name__)

USER_AGENT = "helpdesk-connector/1.0"
BODY_SNIPPET_LENGTH = 500


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class HelpdeskAPIError(Exception):
    """Base exception for helpdesk API errors."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        path: str | None = None,
        response_body: str | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.path = path
        self.response_body = response_body

    def __str__(self) -> str:
        base = super().__str__()
        if self.status_code:
            return f"{base} (HTTP {self.status_code})"
        return base


class HelpdeskNotFoundError(HelpdeskAPIError):
    """Raised when a resource does not exist (404)."""
    pass


class HelpdeskConnectionError(HelpdeskAPIError):
    """Raised when the request never produced an HTTP response."""
    pass


class AuthFatalError(HelpdeskAPIError):
    """Raised when credentials are rejected or a token cannot be obtained.

    Aborts the whole export run.
    """
    pass


class MFARequiredError(AuthFatalError):
    """Raised when the source demands a one-time password for the API user."""
    pass


class RateLimitExhaustedError(HelpdeskAPIError):
    """Raised when a rate-limit status persists after every allowed retry."""
    pass


class _RateLimited(Exception):
    """Internal retry signal carrying the server's requested delay."""

    def __init__(self, status_code: int, retry_after: float, body: str):
        super().__init__(f"rate limited (HTTP {status_code})")
        self.status_code = status_code
        self.retry_after = retry_after
        self.body = body


# ---------------------------------------------------------------------------
# Response
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ApiResponse:
    """Decoded response body together with its status and headers."""

    status_code: int
    body: Any
    headers: httpx.Headers = field(default_factory=httpx.Headers)

    @property
    def location(self) -> str | None:
        return self.headers.get("location")

    def header(self, name: str, default: str | None = None) -> str | None:
        return self.headers.get(name, default)


def parse_retry_after(value: str | None, default: float, floor: float = 0.0) -> float:
    """
    Parse a Retry-After header given in seconds.

    Missing, unparseable or negative values fall back to `default`. The
    result is never below `floor`.
    """
    seconds = default
    if value is not None:
        try:
            parsed = float(value.strip())
        except ValueError:
            parsed = -1.0
        if parsed >= 0:
            seconds = parsed
    return max(seconds, floor)


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

class RateLimitedClient:
    """
    HTTP client for one source instance.

    Rate-limit responses are retried up to `max_retries` times after the
    delay the server asks for; every other non-2xx response raises
    immediately. Auth state lives on the authenticator, which belongs to
    exactly one client.

    Example:
        client = RateLimitedClient(
            base_url="https://acme.zendesk.com",
            authenticator=BasicAuth("agent@acme.com/token", "secret"),
            source_name="Zendesk",
        )

        with client:
            tickets = client.get_json("/api/v2/tickets.json")
    """

    def __init__(
        self,
        base_url: str,
        authenticator: "Authenticator",
        source_name: str,
        *,
        max_retries: int = 5,
        default_retry_after: float = 10.0,
        min_retry_after: float = 0.0,
        pre_request_delay: float = 0.0,
        rate_limit_statuses: Iterable[int] = (429,),
        requests_per_minute: int | None = None,
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
        sleep: Callable[[float], None] | None = None,
        cancel_token: CancellationToken | None = None,
        extra_headers: dict[str, str] | None = None,
    ):
        """
        Initialize the client.

        Args:
            base_url: Root URL; relative request paths are joined onto it
            authenticator: Supplies auth headers and inspects responses
            source_name: Human-readable source name used in errors and logs
            max_retries: Retries after the first attempt on rate-limit statuses
            default_retry_after: Delay in seconds when Retry-After is absent
            min_retry_after: Floor applied to every rate-limit delay
            pre_request_delay: Fixed delay in seconds before every attempt
            rate_limit_statuses: Statuses treated as "slow down"
            requests_per_minute: Token bucket budget (None disables it)
            timeout: Request timeout in seconds
            transport: Custom httpx transport (used by tests)
            sleep: Replacement sleep function (used by tests)
            cancel_token: Aborts waits and pending requests when cancelled
            extra_headers: Static headers added to every request
        """
        if max_retries < 0:
            raise ValueError("max_retries must not be negative")

        self.base_url = base_url
        self.authenticator = authenticator
        self.source_name = source_name
        self.max_retries = max_retries
        self.default_retry_after = default_retry_after
        self.min_retry_after = min_retry_after
        self.rate_limit_statuses = frozenset(rate_limit_statuses)
        self.timeout = timeout
        self.cancel_token = cancel_token
        self.extra_headers = dict(extra_headers or {})

        self._transport = transport
        self._sleep_fn = sleep
        self.rate_limiter = TokenBucketRateLimiter(
            requests_per_minute,
            pre_request_delay=pre_request_delay,
            sleep=self._sleep,
        )
        self._client: httpx.Client | None = None

        # Request counters for observability
        self._request_count = 0
        self._error_count = 0
        self._retry_count = 0

        self._log = logger.bind(source=source_name)

    def __enter__(self) -> "RateLimitedClient":
        """Open the pooled HTTP connection."""
        if self._client is None:
            self._client = self._build_client()
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    def attach_cancel_token(self, cancel_token: CancellationToken) -> None:
        """Route every later wait of this client through `cancel_token`."""
        self.cancel_token = cancel_token

    def close(self) -> None:
        if self._client:
            self._client.close()
            self._client = None

    @property
    def client(self) -> httpx.Client:
        """Get HTTP client, creating if needed."""
        if self._client is None:
            self._client = self._build_client()
        return self._client

    def _build_client(self) -> httpx.Client:
        return httpx.Client(
            base_url=self.base_url,
            timeout=self.timeout,
            limits=httpx.Limits(max_keepalive_connections=5, max_connections=10),
            headers={
                "User-Agent": USER_AGENT,
                "Accept": "application/json",
                **self.extra_headers,
            },
            transport=self._transport,
        )

    def _sleep(self, seconds: float) -> None:
        if self.cancel_token is not None:
            self.cancel_token.raise_if_cancelled()
        if seconds <= 0:
            return
        if self._sleep_fn is not None:
            self._sleep_fn(seconds)
        elif self.cancel_token is not None:
            self.cancel_token.sleep(seconds)
        else:
            time.sleep(seconds)

    @staticmethod
    def _retry_wait(retry_state: RetryCallState) -> float:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        if isinstance(exc, _RateLimited):
            return exc.retry_after
        return 0.0

    def _before_retry(self, retry_state: RetryCallState) -> None:
        self._retry_count += 1
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        self._log.info(
            "Rate limited, backing off",
            attempt=retry_state.attempt_number,
            max_retries=self.max_retries,
            status_code=getattr(exc, "status_code", None),
            wait_seconds=getattr(exc, "retry_after", None),
        )

    def request(
        self,
        path: str,
        method: str = "GET",
        json: Any = None,
        params: dict[str, Any] | None = None,
    ) -> ApiResponse:
        """
        Make an authenticated, rate-limited request.

        Args:
            path: Path relative to base_url, or an absolute URL (pagination links)
            method: HTTP method
            json: JSON body for write requests
            params: Extra query parameters

        Returns:
            ApiResponse with the decoded body ({} for empty bodies) and headers

        Raises:
            RateLimitExhaustedError: Rate-limit status persisted past max_retries
            AuthFatalError: Credentials rejected (401), token failure or MFA
            HelpdeskNotFoundError: 404
            HelpdeskAPIError: Any other non-2xx response
            HelpdeskConnectionError: Network failure
            ExportCancelled: Cancellation requested while waiting
        """
        log = self._log.bind(path=path, method=method)

        retrying = Retrying(
            retry=retry_if_exception_type(_RateLimited),
            stop=stop_after_attempt(self.max_retries + 1),
            wait=self._retry_wait,
            sleep=self._sleep,
            before_sleep=self._before_retry,
            reraise=True,
        )

        try:
            return retrying(self._send, method, path, json, params, log)
        except _RateLimited as e:
            log.warning("Rate limit retries exhausted", retries=self.max_retries)
            raise RateLimitExhaustedError(
                f"{self.source_name} rate limit exceeded after {self.max_retries} retries",
                status_code=e.status_code,
                path=path,
                response_body=e.body,
            ) from None

    def _send(
        self,
        method: str,
        path: str,
        json: Any,
        params: dict[str, Any] | None,
        log: Any,
    ) -> ApiResponse:
        """Single attempt: wait for budget, send, classify the response."""
        if self.cancel_token is not None:
            self.cancel_token.raise_if_cancelled()
        self.rate_limiter.acquire()

        headers = self.authenticator.auth_headers()

        self._request_count += 1
        request_id = self._request_count
        log.debug("API request", request_id=request_id)

        start_time = time.monotonic()
        try:
            response = self.client.request(
                method, path, json=json, params=params, headers=headers
            )
        except httpx.HTTPError as e:
            self._error_count += 1
            raise HelpdeskConnectionError(
                f"{self.source_name} request failed: {e}", path=path
            ) from e
        elapsed = time.monotonic() - start_time

        log.debug(
            "API response",
            request_id=request_id,
            status_code=response.status_code,
            elapsed_ms=round(elapsed * 1000),
        )

        status = response.status_code

        if status in self.rate_limit_statuses:
            self._error_count += 1
            raise _RateLimited(
                status,
                parse_retry_after(
                    response.headers.get("retry-after"),
                    self.default_retry_after,
                    self.min_retry_after,
                ),
                response.text[:BODY_SNIPPET_LENGTH],
            )

        self.authenticator.check_response(response)

        if status == 401:
            self._error_count += 1
            raise AuthFatalError(
                f"{self.source_name} authentication failed - check your credentials",
                status_code=status,
                path=path,
                response_body=response.text[:BODY_SNIPPET_LENGTH],
            )

        if status == 404:
            self._error_count += 1
            raise HelpdeskNotFoundError(
                f"{self.source_name} resource not found: {path}",
                status_code=status,
                path=path,
                response_body=response.text[:BODY_SNIPPET_LENGTH],
            )

        if status >= 400:
            self._error_count += 1
            raise HelpdeskAPIError(
                f"{self.source_name} API error on {method} {path}",
                status_code=status,
                path=path,
                response_body=response.text[:BODY_SNIPPET_LENGTH],
            )

        body: Any = {}
        if status != 204 and response.content.strip():
            try:
                body = response.json()
            except ValueError as e:
                raise HelpdeskAPIError(
                    f"{self.source_name} returned invalid JSON: {e}",
                    status_code=status,
                    path=path,
                    response_body=response.text[:BODY_SNIPPET_LENGTH],
                ) from e
            self.authenticator.observe(body)

        return ApiResponse(status_code=status, body=body, headers=response.headers)

    # -------------------------------------------------------------------------
    # Convenience verbs
    # -------------------------------------------------------------------------

    def get_json(self, path: str, params: dict[str, Any] | None = None) -> Any:
        """GET a path and return only the decoded body."""
        return self.request(path, params=params).body

    def post(self, path: str, json: Any = None) -> ApiResponse:
        return self.request(path, method="POST", json=json)

    def put(self, path: str, json: Any = None) -> ApiResponse:
        return self.request(path, method="PUT", json=json)

    def patch(self, path: str, json: Any = None) -> ApiResponse:
        return self.request(path, method="PATCH", json=json)

    def delete(self, path: str) -> ApiResponse:
        return self.request(path, method="DELETE")

    # -------------------------------------------------------------------------
    # Observability
    # -------------------------------------------------------------------------

    def get_stats(self) -> dict[str, Any]:
        """Get client statistics for monitoring."""
        return {
            "source": self.source_name,
            "request_count": self._request_count,
            "error_count": self._error_count,
            "retry_count": self._retry_count,
            "error_rate": round(self._error_count / max(1, self._request_count), 4),
            "rate_limiter": self.rate_limiter.get_stats(),
        }
