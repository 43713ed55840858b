"""
Intercom connector.

Auth: bearer access token, API version pinned with `Intercom-Version`.
Paging: `pages.next.starting_after` cursors for conversations and contacts,
the scroll API for companies, page numbers for Help Center articles.
Timestamps arrive as Unix seconds and are converted to ISO-8601.
"""

from typing import Any

from helpdesk_connector.auth import Authenticator, BearerTokenAuth
from helpdesk_connector.mapping import (
    INTERCOM_PRIORITIES,
    INTERCOM_STATUSES,
    as_str,
    epoch_to_iso,
    first_of,
    map_priority,
    map_status,
)
from helpdesk_connector.models import (
    Customer,
    KBArticle,
    Message,
    MessageType,
    Organization,
    Ticket,
)
from helpdesk_connector.pagination import (
    CursorPagination,
    PagePagination,
    ResourceDescriptor,
    SinglePage,
    dig,
)
from helpdesk_connector.sources.base import HelpdeskSource, Resource

API_BASE = "https://api.intercom.io"
API_VERSION = "2.11"
SUBJECT_PREVIEW_LENGTH = 100


def _starting_after(path: str, items_key: str) -> ResourceDescriptor:
    return ResourceDescriptor(
        path,
        CursorPagination(token_key="pages.next.starting_after", cursor_param="starting_after"),
        items_key=items_key,
    )


class IntercomSource(HelpdeskSource):
    """Intercom conversations, contacts, admins, companies and articles."""

    name = "intercom"
    display_name = "Intercom"
    prefix = "ic"
    credential_keys = ("access_token",)
    client_defaults = {
        "requests_per_minute": 500,
        "extra_headers": {"Intercom-Version": API_VERSION},
    }

    def __init__(self, client, page_size: int = 50):
        super().__init__(client, page_size=page_size)

    @classmethod
    def from_credentials(cls, credentials: dict[str, Any], *, page_size: int = 50, **client_options: Any) -> "IntercomSource":
        return super().from_credentials(credentials, page_size=page_size, **client_options)

    @classmethod
    def base_url_for(cls, credentials: dict[str, Any]) -> str:
        return API_BASE

    @classmethod
    def authenticator_for(cls, credentials: dict[str, Any], settings: dict[str, Any]) -> Authenticator:
        return BearerTokenAuth(credentials["access_token"])

    # -------------------------------------------------------------------------
    # Builders
    # -------------------------------------------------------------------------

    def build_conversation(self, conv: dict[str, Any]) -> Ticket:
        source = conv.get("source") or {}
        assignee = conv.get("assignee") or {}
        preview = (source.get("body") or "")[:SUBJECT_PREVIEW_LENGTH]
        return Ticket(
            id=self.cid(conv["id"]),
            external_id=str(conv["id"]),
            source=self.name,
            subject=conv.get("title") or preview or f"Conversation #{conv['id']}",
            status=map_status(conv.get("state"), INTERCOM_STATUSES, self.drift),
            priority=map_priority(conv.get("priority"), INTERCOM_PRIORITIES, self.drift),
            assignee=as_str(assignee.get("id")) or None,
            requester=as_str(first_of(dig(conv, "contacts.contacts"), "id"), "unknown"),
            tags=[t.get("name") for t in dig(conv, "tags.tags", [])],
            created_at=epoch_to_iso(conv.get("created_at")),
            updated_at=epoch_to_iso(conv.get("updated_at")),
        )

    def build_part(self, conversation_id: Any, part: dict[str, Any]) -> Message | None:
        if not part.get("body"):
            return None
        author = part.get("author") or {}
        return Message(
            id=self.cid(part["id"], "msg"),
            ticket_id=self.cid(conversation_id),
            author=as_str(author.get("id"), "unknown"),
            body=part["body"],
            type=MessageType.NOTE if part.get("part_type") == "note" else MessageType.REPLY,
            created_at=epoch_to_iso(part.get("created_at")),
        )

    def build_contact(self, c: dict[str, Any]) -> Customer:
        company_id = first_of(dig(c, "companies.data"), "id")
        return Customer(
            id=self.cid(c["id"], "user"),
            external_id=str(c["id"]),
            source=self.name,
            name=c.get("name") or c.get("email") or f"Contact {c['id']}",
            email=c.get("email"),
            phone=c.get("phone") or None,
            org_id=self.cid(company_id, "org") if company_id else None,
        )

    def build_admin(self, a: dict[str, Any]) -> Customer:
        return Customer(
            id=self.cid(a["id"], "admin"),
            external_id=f"admin-{a['id']}",
            source=self.name,
            name=a.get("name") or a.get("email") or f"Admin {a['id']}",
            email=a.get("email"),
        )

    def build_company(self, co: dict[str, Any]) -> Organization:
        website = co.get("website")
        return Organization(
            id=self.cid(co["id"], "org"),
            external_id=str(co["id"]),
            source=self.name,
            name=co.get("name") or f"Company {co['id']}",
            domains=[website] if website else [],
        )

    def build_article(self, a: dict[str, Any]) -> KBArticle:
        parent = a.get("parent_id")
        return KBArticle(
            id=self.cid(a["id"], "kb"),
            external_id=str(a["id"]),
            source=self.name,
            title=a.get("title"),
            body=a.get("body"),
            category_path=[str(parent)] if parent else [],
        )

    # -------------------------------------------------------------------------
    # Resources
    # -------------------------------------------------------------------------

    def ticket_resource(self) -> Resource:
        return Resource(
            "conversations",
            _starting_after(f"/conversations?per_page={self.page_size}", "conversations"),
            self.build_conversation,
        )

    def inline_messages(self, raw_ticket: dict[str, Any]) -> list[Message]:
        # The opening message lives on the conversation, not among its parts
        source = raw_ticket.get("source") or {}
        if not source.get("body"):
            return []
        return [
            Message(
                id=self.cid(f"{raw_ticket['id']}-source", "msg"),
                ticket_id=self.cid(raw_ticket["id"]),
                author=as_str((source.get("author") or {}).get("id"), "unknown"),
                body=source["body"],
                type=MessageType.REPLY,
                created_at=epoch_to_iso(raw_ticket.get("created_at")),
            )
        ]

    def message_resources(self, raw_ticket: dict[str, Any]) -> list[Resource]:
        conversation_id = raw_ticket["id"]
        return [
            Resource(
                "conversation_parts",
                ResourceDescriptor(
                    f"/conversations/{conversation_id}",
                    SinglePage(),
                    items_key="conversation_parts.conversation_parts",
                ),
                lambda part: self.build_part(conversation_id, part),
            )
        ]

    def customer_resource(self) -> Resource:
        return Resource(
            "contacts",
            _starting_after(f"/contacts?per_page={self.page_size}", "data"),
            self.build_contact,
        )

    def agent_resource(self) -> Resource:
        return Resource("admins", ResourceDescriptor("/admins", SinglePage(), "admins"), self.build_admin)

    def organization_resource(self) -> Resource:
        return Resource(
            "companies",
            ResourceDescriptor(
                "/companies/scroll",
                CursorPagination(token_key="scroll_param", cursor_param="scroll_param"),
                items_key="data",
            ),
            self.build_company,
        )

    def kb_resources(self):
        yield Resource(
            "articles",
            ResourceDescriptor(
                f"/articles?per_page={self.page_size}",
                PagePagination(total_pages_key="pages.total_pages"),
                items_key="data",
            ),
            self.build_article,
        )

    # -------------------------------------------------------------------------
    # Verification and write-back
    # -------------------------------------------------------------------------

    def _verify(self) -> dict[str, Any]:
        me = self.client.get_json("/me")
        admins = self.client.get_json("/admins")
        return {
            "app_name": dig(me, "app.name", "Unknown"),
            "admin_count": len(admins.get("admins") or []),
        }

    def create_ticket(self, subject: str, body: str, requester: str) -> str:
        # Intercom conversations have no subject on creation; it is the first line
        text = f"{subject}\n\n{body}" if subject else body
        result = self.client.post(
            "/conversations",
            json={"from": {"type": "user", "id": requester}, "body": text},
        )
        return as_str(result.body.get("conversation_id") or result.body.get("id"))

    def _admin_reply(self, ticket_id: str, body: str, message_type: str, author_id: str | None) -> None:
        if not author_id:
            raise ValueError("Intercom replies need an admin id (author_id)")
        self.client.post(
            f"/conversations/{ticket_id}/reply",
            json={"message_type": message_type, "type": "admin", "admin_id": author_id, "body": body},
        )

    def reply(self, ticket_id: str, body: str, author_id: str | None = None) -> None:
        self._admin_reply(ticket_id, body, "comment", author_id)

    def add_note(self, ticket_id: str, body: str, author_id: str | None = None) -> None:
        self._admin_reply(ticket_id, body, "note", author_id)

    def update_ticket(self, ticket_id: str, updates: dict[str, Any]) -> None:
        self.client.put(f"/conversations/{ticket_id}", json=updates)
