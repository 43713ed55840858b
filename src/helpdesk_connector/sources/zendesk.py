"""
Zendesk Support connector.

Auth: HTTP Basic with `{email}/token:{api_token}`.
Paging: incremental cursor exports for tickets and users, `next_page`
links for comments and Help Center articles, `links.next` for
organizations. Rules come from four independent admin endpoints.
"""

from typing import Any

from helpdesk_connector.auth import Authenticator, BasicAuth
from helpdesk_connector.mapping import (
    STANDARD_PRIORITIES,
    ZENDESK_STATUSES,
    as_str,
    map_priority,
    map_status,
)
from helpdesk_connector.models import (
    Attachment,
    Brand,
    Customer,
    Group,
    KBArticle,
    Message,
    MessageType,
    Organization,
    Rule,
    RuleType,
    Ticket,
    TicketForm,
)
from helpdesk_connector.pagination import (
    CursorPagination,
    ResourceDescriptor,
    SinglePage,
)
from helpdesk_connector.sources.base import HelpdeskSource, Resource


def _opt_id(value: Any) -> str | None:
    return str(value) if value else None


class ZendeskSource(HelpdeskSource):
    """Zendesk Support via the v2 REST API."""

    name = "zendesk"
    display_name = "Zendesk"
    prefix = "zd"
    credential_keys = ("subdomain", "email", "token")
    client_defaults = {"requests_per_minute": 400}

    @classmethod
    def base_url_for(cls, credentials: dict[str, Any]) -> str:
        return f"https://{credentials['subdomain']}.zendesk.com"

    @classmethod
    def authenticator_for(cls, credentials: dict[str, Any], settings: dict[str, Any]) -> Authenticator:
        return BasicAuth(f"{credentials['email']}/token", credentials["token"])

    # -------------------------------------------------------------------------
    # Builders (shared with the single-ticket sync path)
    # -------------------------------------------------------------------------

    def build_ticket(self, t: dict[str, Any]) -> Ticket:
        custom_fields = t.get("custom_fields")
        return Ticket(
            id=self.cid(t["id"]),
            external_id=str(t["id"]),
            source=self.name,
            subject=t.get("subject"),
            status=map_status(t.get("status"), ZENDESK_STATUSES, self.drift),
            priority=map_priority(t.get("priority"), STANDARD_PRIORITIES, self.drift),
            assignee=_opt_id(t.get("assignee_id")),
            group_id=_opt_id(t.get("group_id")),
            brand_id=_opt_id(t.get("brand_id")),
            ticket_form_id=_opt_id(t.get("ticket_form_id")),
            requester=as_str(t.get("requester_id")),
            tags=t.get("tags"),
            created_at=t.get("created_at"),
            updated_at=t.get("updated_at"),
            custom_fields=(
                {str(f["id"]): f.get("value") for f in custom_fields}
                if custom_fields
                else None
            ),
        )

    def build_comment(self, ticket_external_id: Any, c: dict[str, Any]) -> Message:
        message_id = self.cid(c["id"], "msg")
        attachments = [
            Attachment(
                id=self.cid(a["id"], "att"),
                external_id=str(a["id"]),
                message_id=message_id,
                filename=a.get("file_name") or "",
                size=a.get("size") or 0,
                content_type=a.get("content_type") or "",
                content_url=a.get("content_url") or "",
            )
            for a in c.get("attachments") or []
        ]
        return Message(
            id=message_id,
            ticket_id=self.cid(ticket_external_id),
            author=as_str(c.get("author_id")),
            body=c.get("body"),
            body_html=c.get("html_body"),
            type=MessageType.REPLY if c.get("public") else MessageType.NOTE,
            created_at=c.get("created_at"),
            attachments=attachments or None,
        )

    def build_user(self, u: dict[str, Any]) -> Customer:
        org_id = u.get("organization_id")
        return Customer(
            id=self.cid(u["id"], "user"),
            external_id=str(u["id"]),
            source=self.name,
            name=u.get("name") or u.get("email") or f"User {u['id']}",
            email=u.get("email"),
            phone=u.get("phone") or None,
            org_id=self.cid(org_id, "org") if org_id else None,
        )

    def build_organization(self, o: dict[str, Any]) -> Organization:
        return Organization(
            id=self.cid(o["id"], "org"),
            external_id=str(o["id"]),
            source=self.name,
            name=o.get("name") or f"Organization {o['id']}",
            domains=o.get("domain_names") or [],
        )

    def build_group(self, g: dict[str, Any]) -> Group:
        return Group(id=self.cid(g["id"], "group"), external_id=str(g["id"]), source=self.name, name=g.get("name") or "")

    def build_brand(self, b: dict[str, Any]) -> Brand:
        return Brand(id=self.cid(b["id"], "brand"), external_id=str(b["id"]), source=self.name, name=b.get("name") or "")

    def build_ticket_form(self, f: dict[str, Any]) -> TicketForm:
        return TicketForm(
            id=self.cid(f["id"], "form"),
            external_id=str(f["id"]),
            source=self.name,
            name=f.get("name") or "",
            active=bool(f.get("active", True)),
        )

    def build_article(self, a: dict[str, Any]) -> KBArticle:
        section = a.get("section_id")
        return KBArticle(
            id=self.cid(a["id"], "kb"),
            external_id=str(a["id"]),
            source=self.name,
            title=a.get("title"),
            body=a.get("body"),
            category_path=[str(section)] if section is not None else [],
        )

    def _rule_builder(self, rule_type: RuleType, kind: str, conditions_key: str, actions_key: str = "actions"):
        def build(r: dict[str, Any]) -> Rule:
            return Rule(
                id=self.cid(r["id"], kind),
                external_id=str(r["id"]),
                source=self.name,
                type=rule_type,
                title=r.get("title") or "",
                conditions=r.get(conditions_key),
                actions=r.get(actions_key),
                # SLA policies have no active flag; they are always in force
                active=bool(r.get("active", True)),
            )
        return build

    # -------------------------------------------------------------------------
    # Resources
    # -------------------------------------------------------------------------

    def ticket_resource(self) -> Resource:
        return Resource(
            "tickets",
            ResourceDescriptor(
                "/api/v2/incremental/tickets/cursor.json?start_time=0",
                CursorPagination(
                    token_key="after_cursor",
                    cursor_param="cursor",
                    end_key="end_of_stream",
                    drop_params=("start_time",),
                ),
                items_key="tickets",
            ),
            self.build_ticket,
        )

    def comments_descriptor(self, ticket_id: Any) -> ResourceDescriptor:
        return ResourceDescriptor(
            f"/api/v2/tickets/{ticket_id}/comments.json",
            CursorPagination(token_key="next_page"),
            items_key="comments",
        )

    def message_resources(self, raw_ticket: dict[str, Any]) -> list[Resource]:
        ticket_id = raw_ticket["id"]
        return [
            Resource(
                "comments",
                self.comments_descriptor(ticket_id),
                lambda c: self.build_comment(ticket_id, c),
            )
        ]

    def customer_resource(self) -> Resource:
        return Resource(
            "users",
            ResourceDescriptor(
                "/api/v2/incremental/users/cursor.json?start_time=0",
                CursorPagination(
                    token_key="after_cursor",
                    cursor_param="cursor",
                    end_key="end_of_stream",
                    drop_params=("start_time",),
                ),
                items_key="users",
            ),
            self.build_user,
        )

    def organization_resource(self) -> Resource:
        return Resource(
            "organizations",
            ResourceDescriptor(
                f"/api/v2/organizations.json?page[size]={self.page_size}",
                CursorPagination(token_key="links.next"),
                items_key="organizations",
            ),
            self.build_organization,
        )

    def kb_resources(self):
        yield Resource(
            "articles",
            ResourceDescriptor(
                f"/api/v2/help_center/articles.json?per_page={self.page_size}",
                CursorPagination(token_key="next_page"),
                items_key="articles",
            ),
            self.build_article,
        )

    def rule_resources(self) -> list[Resource]:
        return [
            Resource(
                "macros",
                ResourceDescriptor("/api/v2/macros.json", CursorPagination(token_key="next_page"), "macros"),
                self._rule_builder(RuleType.MACRO, "macro", "restriction"),
            ),
            Resource(
                "triggers",
                ResourceDescriptor("/api/v2/triggers.json", CursorPagination(token_key="next_page"), "triggers"),
                self._rule_builder(RuleType.TRIGGER, "trigger", "conditions"),
            ),
            Resource(
                "automations",
                ResourceDescriptor("/api/v2/automations.json", CursorPagination(token_key="next_page"), "automations"),
                self._rule_builder(RuleType.AUTOMATION, "auto", "conditions"),
            ),
            Resource(
                "sla_policies",
                ResourceDescriptor("/api/v2/slas/policies.json", SinglePage(), "sla_policies"),
                self._rule_builder(RuleType.SLA, "sla", "filter", "policy_metrics"),
            ),
        ]

    # -------------------------------------------------------------------------
    # Single-entity lookups
    # -------------------------------------------------------------------------

    def get_ticket(self, ticket_id: Any) -> dict[str, Any]:
        return self.client.get_json(f"/api/v2/tickets/{ticket_id}.json")["ticket"]

    def get_user(self, user_id: Any) -> dict[str, Any]:
        return self.client.get_json(f"/api/v2/users/{user_id}.json")["user"]

    def get_organization(self, org_id: Any) -> dict[str, Any]:
        return self.client.get_json(f"/api/v2/organizations/{org_id}.json")["organization"]

    def get_group(self, group_id: Any) -> dict[str, Any]:
        return self.client.get_json(f"/api/v2/groups/{group_id}.json")["group"]

    def get_brand(self, brand_id: Any) -> dict[str, Any]:
        return self.client.get_json(f"/api/v2/brands/{brand_id}.json")["brand"]

    def get_ticket_form(self, form_id: Any) -> dict[str, Any]:
        return self.client.get_json(f"/api/v2/ticket_forms/{form_id}.json")["ticket_form"]

    # -------------------------------------------------------------------------
    # Verification and write-back
    # -------------------------------------------------------------------------

    def _verify(self) -> dict[str, Any]:
        me = self.client.get_json("/api/v2/users/me.json").get("user") or {}
        count = self.client.get_json("/api/v2/tickets/count.json").get("count") or {}
        return {"user_name": me.get("name"), "ticket_count": count.get("value")}

    def create_ticket(self, subject: str, body: str, requester: str) -> str:
        ticket: dict[str, Any] = {"subject": subject, "comment": {"body": body}}
        if requester:
            ticket["requester_id"] = int(requester) if requester.isdigit() else requester
        result = self.client.post("/api/v2/tickets.json", json={"ticket": ticket})
        return str(result.body["ticket"]["id"])

    def _comment(self, ticket_id: str, body: str, public: bool, author_id: str | None) -> None:
        comment: dict[str, Any] = {"body": body, "public": public}
        if author_id:
            comment["author_id"] = int(author_id) if author_id.isdigit() else author_id
        self.client.put(f"/api/v2/tickets/{ticket_id}.json", json={"ticket": {"comment": comment}})

    def reply(self, ticket_id: str, body: str, author_id: str | None = None) -> None:
        self._comment(ticket_id, body, True, author_id)

    def add_note(self, ticket_id: str, body: str, author_id: str | None = None) -> None:
        self._comment(ticket_id, body, False, author_id)

    def update_ticket(self, ticket_id: str, updates: dict[str, Any]) -> None:
        self.client.put(f"/api/v2/tickets/{ticket_id}.json", json={"ticket": updates})

    def delete_ticket(self, ticket_id: str) -> None:
        self.client.delete(f"/api/v2/tickets/{ticket_id}.json")
