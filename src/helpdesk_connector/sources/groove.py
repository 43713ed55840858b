"""
Groove connector.

Auth: bearer API token.
Groove throttles hard: every request waits 2.5 s first, and both 429 and
503 mean "slow down", with at least 60 s between retries. Customers and
agents are keyed by email, and related records are linked through `links`
hrefs whose last segment is the id.
"""

from typing import Any

from helpdesk_connector.auth import Authenticator, BearerTokenAuth
from helpdesk_connector.mapping import (
    GROOVE_STATUSES,
    as_str,
    display_name,
    id_from_href,
    map_status,
)
from helpdesk_connector.models import (
    Customer,
    KBArticle,
    Message,
    MessageType,
    Ticket,
    TicketPriority,
)
from helpdesk_connector.pagination import (
    PagePagination,
    ResourceDescriptor,
    SinglePage,
    dig,
)
from helpdesk_connector.sources.base import HelpdeskSource, Resource

API_BASE = "https://api.groovehq.com/v1"


def _pages(path: str, items_key: str) -> ResourceDescriptor:
    return ResourceDescriptor(
        path,
        PagePagination(next_page_key="meta.pagination.next_page"),
        items_key=items_key,
    )


class GrooveSource(HelpdeskSource):
    """Groove tickets, customers, agents and knowledge bases."""

    name = "groove"
    display_name = "Groove"
    prefix = "gv"
    credential_keys = ("api_token",)
    client_defaults = {
        "pre_request_delay": 2.5,
        "rate_limit_statuses": (429, 503),
        "default_retry_after": 90.0,
        "min_retry_after": 60.0,
        "max_retries": 10,
    }

    def __init__(self, client, page_size: int = 50):
        super().__init__(client, page_size=page_size)

    @classmethod
    def from_credentials(cls, credentials: dict[str, Any], *, page_size: int = 50, **client_options: Any) -> "GrooveSource":
        return super().from_credentials(credentials, page_size=page_size, **client_options)

    @classmethod
    def base_url_for(cls, credentials: dict[str, Any]) -> str:
        return API_BASE

    @classmethod
    def authenticator_for(cls, credentials: dict[str, Any], settings: dict[str, Any]) -> Authenticator:
        return BearerTokenAuth(credentials["api_token"])

    # -------------------------------------------------------------------------
    # Builders
    # -------------------------------------------------------------------------

    def build_ticket(self, t: dict[str, Any]) -> Ticket:
        number = t["number"]
        return Ticket(
            id=self.cid(number),
            external_id=str(number),
            source=self.name,
            subject=t.get("title") or f"Ticket #{number}",
            status=map_status(t.get("state"), GROOVE_STATUSES, self.drift),
            # The priority field is optional and mostly null
            priority=TicketPriority.NORMAL,
            assignee=id_from_href(dig(t, "links.assignee.href")),
            requester=id_from_href(dig(t, "links.customer.href")) or "unknown",
            tags=t.get("tags"),
            created_at=t.get("created_at"),
            updated_at=t.get("updated_at"),
        )

    def build_message(self, ticket_number: Any, m: dict[str, Any]) -> Message:
        message_id = id_from_href(m.get("href") or dig(m, "links.self.href"))
        if not message_id:
            raise ValueError(f"Groove message on ticket {ticket_number} has no href")
        return Message(
            id=self.cid(message_id, "msg"),
            ticket_id=self.cid(ticket_number),
            author=id_from_href(dig(m, "links.author.href")) or "unknown",
            body=m.get("plain_text_body") or m.get("body"),
            body_html=m.get("body"),
            type=MessageType.NOTE if m.get("note") else MessageType.REPLY,
            created_at=m.get("created_at"),
        )

    def build_customer(self, c: dict[str, Any]) -> Customer:
        email = c["email"]
        company = c.get("company_name")
        return Customer(
            id=self.cid(email, "user"),
            external_id=email,
            source=self.name,
            name=c.get("name") or email,
            email=email,
            phone=c.get("phone_number") or None,
            org_id=self.cid(company, "org") if company else None,
        )

    def build_agent(self, a: dict[str, Any]) -> Customer:
        email = a["email"]
        return Customer(
            id=self.cid(email, "agent"),
            external_id=f"agent-{email}",
            source=self.name,
            name=display_name(a.get("first_name"), a.get("last_name"), email),
            email=email,
        )

    def _article_builder(self, kb_title: str):
        def build(a: dict[str, Any]) -> KBArticle:
            category = a.get("category_id")
            return KBArticle(
                id=self.cid(a["id"], "kb"),
                external_id=str(a["id"]),
                source=self.name,
                title=a.get("title"),
                body=a.get("body"),
                category_path=[kb_title, str(category)] if category else [kb_title],
            )
        return build

    # -------------------------------------------------------------------------
    # Resources
    # -------------------------------------------------------------------------

    def ticket_resource(self) -> Resource:
        return Resource("tickets", _pages(f"/tickets?per_page={self.page_size}", "tickets"), self.build_ticket)

    def message_resources(self, raw_ticket: dict[str, Any]) -> list[Resource]:
        number = raw_ticket["number"]
        return [
            Resource(
                "messages",
                _pages(f"/tickets/{number}/messages?per_page={self.page_size}", "messages"),
                lambda m: self.build_message(number, m),
            )
        ]

    def customer_resource(self) -> Resource:
        return Resource("customers", _pages(f"/customers?per_page={self.page_size}", "customers"), self.build_customer)

    def agent_resource(self) -> Resource:
        return Resource("agents", ResourceDescriptor("/agents", SinglePage(), "agents"), self.build_agent)

    def organization_name(self, raw_customer: dict[str, Any]) -> str | None:
        return raw_customer.get("company_name") or None

    def kb_resources(self):
        knowledge_bases = self.client.get_json("/kb").get("knowledge_bases") or []
        for kb in knowledge_bases:
            title = kb.get("title") or str(kb["id"])
            yield Resource(
                f"articles:{title}",
                _pages(f"/kb/{kb['id']}/articles/search?per_page={self.page_size}", "articles"),
                self._article_builder(title),
            )

    # -------------------------------------------------------------------------
    # Verification and write-back
    # -------------------------------------------------------------------------

    def _verify(self) -> dict[str, Any]:
        agents = self.client.get_json("/agents").get("agents") or []
        return {"agent_count": len(agents)}

    def create_ticket(self, subject: str, body: str, requester: str) -> str:
        ticket: dict[str, Any] = {"to": requester, "body": body}
        if subject:
            ticket["subject"] = subject
        result = self.client.post("/tickets", json=ticket)
        return as_str(dig(result.body, "ticket.number"))

    def reply(self, ticket_id: str, body: str, author_id: str | None = None) -> None:
        self.client.post(f"/tickets/{ticket_id}/messages", json={"body": body, "note": False})

    def add_note(self, ticket_id: str, body: str, author_id: str | None = None) -> None:
        self.client.post(f"/tickets/{ticket_id}/messages", json={"body": body, "note": True})

    def update_ticket(self, ticket_id: str, updates: dict[str, Any]) -> None:
        # State, assignee and tags each have their own endpoint
        if updates.get("state"):
            self.client.put(f"/tickets/{ticket_id}/state", json={"state": updates["state"]})
        if updates.get("assignee"):
            self.client.put(f"/tickets/{ticket_id}/assignee", json={"assignee": updates["assignee"]})
        if updates.get("tags") is not None:
            self.client.put(f"/tickets/{ticket_id}/tags", json=updates["tags"])
