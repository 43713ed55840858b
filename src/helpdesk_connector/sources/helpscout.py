"""
Help Scout Mailbox API 2.0 connector.

Auth: OAuth2 client credentials (app id / app secret), token cached on the
authenticator and refreshed a minute before expiry.
Paging: HAL envelopes, items under `_embedded.<name>` and the page count
under `page.totalPages`. Help Scout has no organization resource, so
organizations are aggregated from the free-text `organization` field on
customers, and it has no rules API.
"""

from collections.abc import Iterator
from typing import Any

from helpdesk_connector.auth import Authenticator, OAuth2ClientCredentials
from helpdesk_connector.client import HelpdeskAPIError
from helpdesk_connector.mapping import (
    HELPSCOUT_STATUSES,
    as_str,
    display_name,
    first_of,
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
from helpdesk_connector.pagination import PagePagination, ResourceDescriptor
from helpdesk_connector.sources.base import HelpdeskSource, Resource

API_BASE = "https://api.helpscout.net/v2"
TOKEN_URL = f"{API_BASE}/oauth2/token"


def _hal_pages(path: str, collection: str) -> ResourceDescriptor:
    return ResourceDescriptor(
        path,
        PagePagination(total_pages_key="page.totalPages"),
        items_key=f"_embedded.{collection}",
    )


class HelpScoutSource(HelpdeskSource):
    """Help Scout conversations, customers, users and Docs."""

    name = "helpscout"
    display_name = "Help Scout"
    prefix = "hs"
    credential_keys = ("app_id", "app_secret")
    client_defaults = {"requests_per_minute": 200}

    def __init__(self, client, page_size: int = 50, mailbox_id: str | None = None):
        super().__init__(client, page_size=page_size)
        self.mailbox_id = mailbox_id

    @classmethod
    def from_credentials(cls, credentials: dict[str, Any], *, page_size: int = 50, **client_options: Any) -> "HelpScoutSource":
        source = super().from_credentials(credentials, page_size=page_size, **client_options)
        source.mailbox_id = as_str(credentials.get("mailbox_id")) or None
        return source

    @classmethod
    def base_url_for(cls, credentials: dict[str, Any]) -> str:
        return API_BASE

    @classmethod
    def authenticator_for(cls, credentials: dict[str, Any], settings: dict[str, Any]) -> Authenticator:
        return OAuth2ClientCredentials(
            credentials["app_id"],
            credentials["app_secret"],
            credentials.get("token_url") or TOKEN_URL,
            transport=settings.get("transport"),
            source_name=cls.display_name,
        )

    # -------------------------------------------------------------------------
    # Builders
    # -------------------------------------------------------------------------

    def build_conversation(self, conv: dict[str, Any]) -> Ticket:
        customer = conv.get("primaryCustomer") or {}
        assignee = conv.get("assignee") or {}
        custom_fields = conv.get("customFields")
        return Ticket(
            id=self.cid(conv["id"]),
            external_id=str(conv["id"]),
            source=self.name,
            subject=conv.get("subject") or f"Conversation #{conv.get('number', conv['id'])}",
            status=map_status(conv.get("status"), HELPSCOUT_STATUSES, self.drift),
            # Conversations carry no priority
            priority=TicketPriority.NORMAL,
            assignee=as_str(assignee.get("id")) or None,
            requester=customer.get("email") or as_str(customer.get("id"), "unknown"),
            tags=[t.get("tag") for t in conv.get("tags") or []],
            created_at=conv.get("createdAt"),
            updated_at=conv.get("userUpdatedAt") or conv.get("createdAt"),
            custom_fields=(
                {f["name"]: f.get("value") for f in custom_fields}
                if custom_fields
                else None
            ),
        )

    def build_thread(self, conversation_id: Any, t: dict[str, Any]) -> Message | None:
        if not t.get("body"):
            return None
        created_by = t.get("createdBy") or {}
        return Message(
            id=self.cid(t["id"], "msg"),
            ticket_id=self.cid(conversation_id),
            author=as_str(created_by.get("id"), "unknown"),
            body=t["body"],
            type=MessageType.NOTE if t.get("type") == "note" else MessageType.REPLY,
            created_at=t.get("createdAt"),
        )

    def build_customer(self, c: dict[str, Any]) -> Customer:
        email = first_of(c.get("emails"), "value", "")
        org = c.get("organization")
        return Customer(
            id=self.cid(c["id"], "user"),
            external_id=str(c["id"]),
            source=self.name,
            name=display_name(c.get("firstName"), c.get("lastName"), email, f"Customer {c['id']}"),
            email=email,
            phone=first_of(c.get("phones"), "value"),
            org_id=self.cid(org, "org") if org else None,
        )

    def build_user(self, u: dict[str, Any]) -> Customer:
        return Customer(
            id=self.cid(u["id"], "agent"),
            external_id=f"agent-{u['id']}",
            source=self.name,
            name=display_name(u.get("firstName"), u.get("lastName"), u.get("email"), f"User {u['id']}"),
            email=u.get("email"),
        )

    def _article_builder(self, collection_name: str):
        def build(a: dict[str, Any]) -> KBArticle:
            return KBArticle(
                id=self.cid(a["id"], "kb"),
                external_id=str(a["id"]),
                source=self.name,
                title=a.get("name"),
                body=a.get("text"),
                category_path=[collection_name, *(c.get("name") or "" for c in a.get("categories") or [])],
            )
        return build

    # -------------------------------------------------------------------------
    # Resources
    # -------------------------------------------------------------------------

    def ticket_resource(self) -> Resource:
        return Resource(
            "conversations",
            _hal_pages("/conversations?status=all", "conversations"),
            self.build_conversation,
        )

    def message_resources(self, raw_ticket: dict[str, Any]) -> list[Resource]:
        conversation_id = raw_ticket["id"]
        return [
            Resource(
                "threads",
                _hal_pages(f"/conversations/{conversation_id}/threads", "threads"),
                lambda t: self.build_thread(conversation_id, t),
            )
        ]

    def customer_resource(self) -> Resource:
        return Resource("customers", _hal_pages("/customers", "customers"), self.build_customer)

    def agent_resource(self) -> Resource:
        return Resource("users", _hal_pages("/users", "users"), self.build_user)

    def organization_name(self, raw_customer: dict[str, Any]) -> str | None:
        return raw_customer.get("organization") or None

    def kb_resources(self) -> Iterator[Resource]:
        body = self.client.get_json("/docs/collections")
        collections = (body.get("collections") or {}).get("items") or []
        for coll in collections:
            yield Resource(
                f"articles:{coll.get('name') or coll['id']}",
                ResourceDescriptor(
                    f"/docs/collections/{coll['id']}/articles",
                    PagePagination(total_pages_key="pages.totalPages"),
                    items_key="articles.items",
                ),
                self._article_builder(coll.get("name") or str(coll["id"])),
            )

    # -------------------------------------------------------------------------
    # Verification and write-back
    # -------------------------------------------------------------------------

    def _verify(self) -> dict[str, Any]:
        mailboxes = self.client.get_json("/mailboxes")
        users = self.client.get_json("/users?page=1")
        me = first_of((users.get("_embedded") or {}).get("users"))
        return {
            "user_name": display_name(me.get("firstName"), me.get("lastName"), me.get("email")) if me else "Unknown",
            "mailbox_count": len((mailboxes.get("_embedded") or {}).get("mailboxes") or []),
        }

    def _default_mailbox(self) -> str:
        if self.mailbox_id:
            return self.mailbox_id
        mailboxes = (self.client.get_json("/mailboxes").get("_embedded") or {}).get("mailboxes") or []
        if not mailboxes:
            raise HelpdeskAPIError("Help Scout account has no mailboxes", path="/mailboxes")
        self.mailbox_id = str(mailboxes[0]["id"])
        return self.mailbox_id

    def create_ticket(self, subject: str, body: str, requester: str) -> str:
        conversation = {
            "type": "email",
            "mailboxId": int(self._default_mailbox()),
            "subject": subject,
            "status": "active",
            "threads": [{
                "type": "customer",
                "customer": {"email": requester},
                "text": body,
            }],
        }
        result = self.client.post("/conversations", json=conversation)
        # The new id is reported only in response headers (201, empty body)
        created = result.header("resource-id") or id_from_href(result.location)
        if not created:
            raise HelpdeskAPIError(
                "Help Scout did not report the created conversation id",
                status_code=result.status_code,
                path="/conversations",
            )
        return created

    def reply(self, ticket_id: str, body: str, author_id: str | None = None) -> None:
        payload: dict[str, Any] = {"text": body}
        if author_id:
            payload["user"] = int(author_id) if author_id.isdigit() else author_id
        self.client.post(f"/conversations/{ticket_id}/reply", json=payload)

    def add_note(self, ticket_id: str, body: str, author_id: str | None = None) -> None:
        payload: dict[str, Any] = {"text": body}
        if author_id:
            payload["user"] = int(author_id) if author_id.isdigit() else author_id
        self.client.post(f"/conversations/{ticket_id}/notes", json=payload)

    def update_ticket(self, ticket_id: str, updates: dict[str, Any]) -> None:
        # One JSON-patch style operation per field
        for field, value in updates.items():
            self.client.patch(
                f"/conversations/{ticket_id}",
                json={"op": "replace", "path": f"/{field}", "value": value},
            )
