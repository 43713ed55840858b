"""
Kayako (v1 REST API) connector.

Auth: HTTP Basic on every request, plus the `X-Session-ID` token that
Kayako returns in response bodies. A 403 carrying OTP_EXPECTED means the
API user has two-factor auth enabled, which the API cannot satisfy.
Paging: offset/limit for top-level collections, `after_id` for case posts.
Status and priority are free-text labels, mapped by keyword.
"""

from typing import Any

from helpdesk_connector.auth import Authenticator, SessionTokenAuth
from helpdesk_connector.mapping import as_str, match_priority, match_status
from helpdesk_connector.models import (
    Customer,
    KBArticle,
    Message,
    MessageType,
    Organization,
    Rule,
    RuleType,
    Ticket,
)
from helpdesk_connector.pagination import (
    AfterIdPagination,
    OffsetPagination,
    ResourceDescriptor,
    SinglePage,
)
from helpdesk_connector.sources.base import HelpdeskSource, Resource

# Post sources written by staff rather than the requester
AGENT_POST_SOURCES = frozenset({"AGENT", "API"})


def _label(value: Any) -> str | None:
    if isinstance(value, dict):
        return value.get("label")
    return value


def _translation(localized: Any) -> str | None:
    if isinstance(localized, list) and localized and isinstance(localized[0], dict):
        return localized[0].get("translation")
    return None


def _primary_email(emails: Any) -> str:
    if not emails:
        return ""
    for entry in emails:
        if isinstance(entry, dict) and entry.get("is_primary"):
            return entry.get("email") or ""
    head = emails[0]
    return (head.get("email") if isinstance(head, dict) else head) or ""


class KayakoSource(HelpdeskSource):
    """Kayako cases, users, organizations, articles and triggers."""

    name = "kayako"
    display_name = "Kayako"
    prefix = "ky"
    credential_keys = ("domain", "email", "password")
    client_defaults = {"requests_per_minute": 300}

    @classmethod
    def base_url_for(cls, credentials: dict[str, Any]) -> str:
        domain = str(credentials["domain"]).rstrip("/")
        if domain.startswith(("http://", "https://")):
            return domain
        return f"https://{domain}"

    @classmethod
    def authenticator_for(cls, credentials: dict[str, Any], settings: dict[str, Any]) -> Authenticator:
        return SessionTokenAuth(
            credentials["email"],
            credentials["password"],
            source_name=cls.display_name,
        )

    def start_export(self) -> None:
        # Each run starts from a fresh session
        self.client.authenticator.reset()

    def _offset(self, path: str) -> ResourceDescriptor:
        return ResourceDescriptor(path, OffsetPagination(limit=self.page_size), items_key="data")

    # -------------------------------------------------------------------------
    # Builders
    # -------------------------------------------------------------------------

    def build_case(self, c: dict[str, Any]) -> Ticket:
        requester = c.get("requester") or {}
        assignee = c.get("assigned_agent") or {}
        return Ticket(
            id=self.cid(c["id"]),
            external_id=str(c["id"]),
            source=self.name,
            subject=c.get("subject"),
            status=match_status(_label(c.get("status")) or "open", self.drift),
            priority=match_priority(_label(c.get("priority")), self.drift),
            assignee=as_str(assignee.get("id")) or None,
            requester=requester.get("email") or as_str(requester.get("id"), "unknown"),
            tags=[t.get("name") for t in c.get("tags") or [] if isinstance(t, dict)],
            created_at=c.get("created_at"),
            updated_at=c.get("updated_at"),
        )

    def build_post(self, case_id: Any, p: dict[str, Any]) -> Message:
        creator = p.get("creator") or {}
        return Message(
            id=self.cid(p["id"], "msg"),
            ticket_id=self.cid(case_id),
            author=creator.get("full_name") or as_str(creator.get("id"), "unknown"),
            body=p.get("contents"),
            type=MessageType.NOTE if p.get("source") in AGENT_POST_SOURCES else MessageType.REPLY,
            created_at=p.get("created_at"),
        )

    def build_note(self, case_id: Any, n: dict[str, Any]) -> Message:
        user = n.get("user") or {}
        return Message(
            id=self.cid(n["id"], "note"),
            ticket_id=self.cid(case_id),
            author=user.get("full_name") or as_str(user.get("id"), "system"),
            body=n.get("body_text"),
            type=MessageType.NOTE,
            created_at=n.get("created_at"),
        )

    def build_user(self, u: dict[str, Any]) -> Customer:
        phones = u.get("phones") or []
        phone = None
        if phones and isinstance(phones[0], dict):
            phone = phones[0].get("number") or phones[0].get("phone")
        org = u.get("organization") or {}
        return Customer(
            id=self.cid(u["id"], "user"),
            external_id=str(u["id"]),
            source=self.name,
            name=u.get("full_name") or f"User {u['id']}",
            email=_primary_email(u.get("emails")),
            phone=phone,
            org_id=self.cid(org["id"], "org") if org.get("id") else None,
        )

    def build_organization(self, o: dict[str, Any]) -> Organization:
        domains = []
        for d in o.get("domains") or []:
            # Domains arrive either inline or as identity_domain references
            if isinstance(d, dict):
                domains.append(as_str(d.get("domain") or d.get("id")))
            else:
                domains.append(str(d))
        return Organization(
            id=self.cid(o["id"], "org"),
            external_id=str(o["id"]),
            source=self.name,
            name=o.get("name") or f"Organization {o['id']}",
            domains=[d for d in domains if d],
        )

    def build_article(self, a: dict[str, Any]) -> KBArticle:
        category_path = []
        if a.get("section_id"):
            category_path.append(str(a["section_id"]))
        elif isinstance(a.get("section"), dict):
            section = a["section"]
            category_path.append(_translation(section.get("titles")) or str(section.get("id")))
        return KBArticle(
            id=self.cid(a["id"], "kb"),
            external_id=str(a["id"]),
            source=self.name,
            title=_translation(a.get("titles")) or a.get("title") or f"Article {a['id']}",
            body=_translation(a.get("contents")) or a.get("body"),
            category_path=category_path,
        )

    def build_trigger(self, t: dict[str, Any]) -> Rule:
        conditions = t.get("predicate_collections")
        return Rule(
            id=self.cid(t["id"], "trigger"),
            external_id=str(t["id"]),
            source=self.name,
            type=RuleType.TRIGGER,
            title=t.get("title") or "",
            conditions=conditions if conditions is not None else t.get("conditions"),
            actions=t.get("actions"),
            active=bool(t.get("is_enabled", True)),
        )

    # -------------------------------------------------------------------------
    # Resources
    # -------------------------------------------------------------------------

    def ticket_resource(self) -> Resource:
        return Resource("cases", self._offset("/api/v1/cases.json"), self.build_case)

    def message_resources(self, raw_ticket: dict[str, Any]) -> list[Resource]:
        case_id = raw_ticket["id"]
        return [
            Resource(
                "posts",
                ResourceDescriptor(
                    f"/api/v1/cases/{case_id}/posts.json",
                    AfterIdPagination(limit=self.page_size),
                    items_key="data",
                ),
                lambda p: self.build_post(case_id, p),
            ),
            Resource(
                "notes",
                ResourceDescriptor(f"/api/v1/cases/{case_id}/notes.json?limit=100", SinglePage(), "data"),
                lambda n: self.build_note(case_id, n),
            ),
        ]

    def customer_resource(self) -> Resource:
        return Resource("users", self._offset("/api/v1/users.json"), self.build_user)

    def organization_resource(self) -> Resource:
        return Resource("organizations", self._offset("/api/v1/organizations.json"), self.build_organization)

    def kb_resources(self):
        yield Resource("articles", self._offset("/api/v1/articles.json"), self.build_article)

    def rule_resources(self) -> list[Resource]:
        return [
            Resource(
                "triggers",
                ResourceDescriptor("/api/v1/triggers.json?limit=200", SinglePage(), "data"),
                self.build_trigger,
            )
        ]

    # -------------------------------------------------------------------------
    # Verification and write-back
    # -------------------------------------------------------------------------

    def _verify(self) -> dict[str, Any]:
        users = self.client.get_json("/api/v1/users.json?limit=1")
        cases = self.client.get_json("/api/v1/cases.json?limit=1")
        first = (users.get("data") or [{}])[0]
        return {
            "user_name": first.get("full_name") or "Unknown",
            "case_count": cases.get("total_count") or 0,
        }

    def create_ticket(self, subject: str, body: str, requester: str) -> str:
        payload: dict[str, Any] = {"subject": subject, "contents": body}
        if requester:
            payload["requester"] = {"id": int(requester)} if requester.isdigit() else {"email": requester}
        result = self.client.post("/api/v1/cases.json", json=payload)
        return str(result.body["data"]["id"])

    def reply(self, ticket_id: str, body: str, author_id: str | None = None) -> None:
        self.client.post(f"/api/v1/cases/{ticket_id}/reply.json", json={"contents": body})

    def add_note(self, ticket_id: str, body: str, author_id: str | None = None) -> None:
        self.client.post(f"/api/v1/cases/{ticket_id}/notes.json", json={"body_text": body})

    def update_ticket(self, ticket_id: str, updates: dict[str, Any]) -> None:
        payload = dict(updates)
        if "assigned_agent" in payload and not isinstance(payload["assigned_agent"], dict):
            payload["assigned_agent"] = {"id": payload["assigned_agent"]}
        if "tags" in payload:
            payload["tags"] = [{"name": tag} for tag in payload["tags"]]
        self.client.patch(f"/api/v1/cases/{ticket_id}.json", json=payload)
