"""
Pytest configuration and fixtures for helpdesk connector tests.

HTTP is faked with httpx.MockTransport: a FakeAPI routes each request by
method and path to a handler and records everything it receives. Sleeps
are injected and recorded so backoff can be asserted without waiting.
"""

from collections.abc import Callable
from typing import Any

import httpx
import pytest

Handler = Callable[[httpx.Request], httpx.Response]


class FakeAPI:
    """Minimal routed HTTP server for MockTransport."""

    def __init__(self) -> None:
        self._routes: dict[tuple[str, str], Handler] = {}
        self.requests: list[httpx.Request] = []

    def route(
        self,
        method: str,
        path: str,
        body: Any = None,
        status: int = 200,
        headers: dict[str, str] | None = None,
        handler: Handler | None = None,
    ) -> None:
        """Serve `body` (or call `handler`) for every METHOD path request."""
        if handler is None:
            def handler(request: httpx.Request) -> httpx.Response:
                if body is None:
                    return httpx.Response(status, headers=headers)
                return httpx.Response(status, json=body, headers=headers)
        self._routes[(method.upper(), path)] = handler

    def get(self, path: str, body: Any = None, **kwargs: Any) -> None:
        self.route("GET", path, body, **kwargs)

    def sequence(self, method: str, path: str, responses: list[httpx.Response]) -> None:
        """Serve responses in order; the last one repeats."""
        remaining = list(responses)

        def handler(request: httpx.Request) -> httpx.Response:
            template = remaining.pop(0) if len(remaining) > 1 else remaining[0]
            return httpx.Response(
                template.status_code,
                headers=template.headers,
                content=template.content,
            )

        self._routes[(method.upper(), path)] = handler

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        handler = self._routes.get((request.method, request.url.path))
        if handler is None:
            return httpx.Response(404, json={"error": "no route"})
        return handler(request)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)

    def calls(self, path: str, method: str = "GET") -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path == path and r.method == method]


class SleepRecorder:
    """Stand-in for time.sleep that only remembers what it was asked."""

    def __init__(self) -> None:
        self.calls: list[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


def offset_pages(items: list[dict[str, Any]], key: str = "data") -> Handler:
    """Handler serving `items` by ?offset=&limit= query parameters."""

    def handler(request: httpx.Request) -> httpx.Response:
        offset = int(request.url.params.get("offset", 0))
        limit = int(request.url.params.get("limit", 100))
        return httpx.Response(200, json={key: items[offset:offset + limit], "total_count": len(items)})

    return handler


@pytest.fixture
def fake_api():
    """Fresh routed fake API."""
    return FakeAPI()


@pytest.fixture
def sleeps():
    """Recorded sleep function for clients under test."""
    return SleepRecorder()


@pytest.fixture
def client_options(fake_api, sleeps):
    """Client overrides that route a source through the fake API."""
    return {
        "transport": fake_api.transport,
        "sleep": sleeps,
        "requests_per_minute": None,
    }


# ---------------------------------------------------------------------------
# Sample source payloads
# ---------------------------------------------------------------------------

@pytest.fixture
def zendesk_credentials():
    return {"subdomain": "acme", "email": "agent@acme.com", "token": "zd-secret"}


@pytest.fixture
def sample_zendesk_ticket():
    """Zendesk ticket as returned by /api/v2/tickets/{id}.json."""
    return {
        "id": 4521,
        "subject": "Printer on floor 3 jams every morning",
        "status": "pending",
        "priority": "high",
        "requester_id": 900,
        "assignee_id": 901,
        "group_id": 70,
        "brand_id": 80,
        "ticket_form_id": 90,
        "tags": ["hardware", "printer"],
        "created_at": "2024-03-01T09:15:00Z",
        "updated_at": "2024-03-02T11:00:00Z",
        "custom_fields": [{"id": 360001, "value": "floor-3"}],
    }


@pytest.fixture
def sample_zendesk_comments():
    """Two comments: a public reply with an attachment and an internal note."""
    return [
        {
            "id": 1,
            "author_id": 900,
            "body": "It jammed again today.",
            "html_body": "<p>It jammed again today.</p>",
            "public": True,
            "created_at": "2024-03-01T09:15:00Z",
            "attachments": [
                {
                    "id": 555,
                    "file_name": "jam.jpg",
                    "size": 20480,
                    "content_type": "image/jpeg",
                    "content_url": "https://acme.zendesk.com/attachments/jam.jpg",
                }
            ],
        },
        {
            "id": 2,
            "author_id": 901,
            "body": "Ordered a new fuser unit.",
            "html_body": "<p>Ordered a new fuser unit.</p>",
            "public": False,
            "created_at": "2024-03-01T10:00:00Z",
            "attachments": [],
        },
    ]


@pytest.fixture
def sample_kayako_case():
    return {
        "id": 1,
        "subject": "Cannot log in",
        "status": {"label": "Pending"},
        "priority": {"label": "High"},
        "assigned_agent": {"id": 7, "full_name": "Ana Agent"},
        "requester": {"id": 42, "email": "jo@example.com"},
        "tags": [{"name": "login"}, {"name": "sso"}],
        "created_at": "2024-01-01T00:00:00Z",
        "updated_at": "2024-01-02T00:00:00Z",
    }


@pytest.fixture
def sample_helpscout_conversation():
    return {
        "id": 3001,
        "number": 17,
        "subject": "Refund request",
        "status": "active",
        "assignee": {"id": 12},
        "primaryCustomer": {"id": 77, "email": "buyer@example.com"},
        "tags": [{"id": 1, "tag": "billing"}],
        "createdAt": "2024-02-10T08:00:00Z",
        "userUpdatedAt": "2024-02-11T08:00:00Z",
        "customFields": [{"id": 5, "name": "Order", "value": "A-100"}],
    }


@pytest.fixture
def sample_intercom_conversation():
    return {
        "id": "c1",
        "title": None,
        "state": "snoozed",
        "priority": "priority",
        "created_at": 1704067200,
        "updated_at": 1704153600,
        "source": {"body": "Hi, my invoice is wrong", "author": {"id": "u1", "type": "user"}},
        "assignee": {"id": "a9", "type": "admin"},
        "tags": {"tags": [{"id": "t1", "name": "billing"}]},
        "contacts": {"contacts": [{"id": "u1", "type": "user"}]},
    }


@pytest.fixture
def sample_groove_ticket():
    return {
        "number": 88,
        "title": "Shipping delay",
        "state": "opened",
        "tags": ["shipping"],
        "created_at": "2024-05-01T12:00:00Z",
        "updated_at": "2024-05-02T12:00:00Z",
        "links": {
            "customer": {"href": "https://api.groovehq.com/v1/customers/jo@example.com"},
            "assignee": {"href": "https://api.groovehq.com/v1/agents/sam@shop.com"},
        },
    }
