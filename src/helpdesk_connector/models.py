"""
Canonical record models.

Every connector maps its source-native payloads into these shapes. Records
are immutable once built and serialize to camelCase JSON (`externalId`,
`ticketId`, `kbArticles`), one object per line in the export sinks.
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class TicketStatus(str, Enum):
    OPEN = "open"
    PENDING = "pending"
    ON_HOLD = "on_hold"
    SOLVED = "solved"
    CLOSED = "closed"


class TicketPriority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


class MessageType(str, Enum):
    REPLY = "reply"
    NOTE = "note"
    SYSTEM = "system"


class RuleType(str, Enum):
    MACRO = "macro"
    TRIGGER = "trigger"
    AUTOMATION = "automation"
    SLA = "sla"


class CanonicalModel(BaseModel):
    """Base for canonical records: frozen, camelCase on the wire."""

    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        alias_generator=to_camel,
        coerce_numbers_to_str=True,
    )

    def to_record(self) -> dict[str, Any]:
        """JSON-ready dict with camelCase keys; unset optionals are omitted."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class Attachment(CanonicalModel):
    """File attached to a message."""

    id: str
    external_id: str
    message_id: str
    filename: str = ""
    size: int = 0
    content_type: str = ""
    content_url: str = ""


class Ticket(CanonicalModel):
    """Canonical ticket / conversation / case."""

    id: str
    external_id: str
    source: str
    subject: str = ""
    status: TicketStatus = TicketStatus.OPEN
    priority: TicketPriority = TicketPriority.NORMAL
    assignee: str | None = None
    requester: str = ""
    tags: list[str] = Field(default_factory=list)
    created_at: str = ""
    updated_at: str = ""
    custom_fields: dict[str, Any] | None = None

    # Related entities, filled only by sources that expose them
    group_id: str | None = None
    brand_id: str | None = None
    ticket_form_id: str | None = None

    @field_validator("subject", "requester", "created_at", "updated_at", mode="before")
    @classmethod
    def none_to_empty(cls, v: Any) -> Any:
        return "" if v is None else v

    @field_validator("tags", mode="before")
    @classmethod
    def normalize_tags(cls, v: Any) -> list[str]:
        """Drop empty tags; sources send null, strings, or numbers."""
        if not v:
            return []
        return [str(tag) for tag in v if tag not in (None, "")]


class Message(CanonicalModel):
    """Reply, internal note, or system event on a ticket."""

    id: str
    ticket_id: str
    author: str = ""
    body: str = ""
    body_html: str | None = None
    type: MessageType = MessageType.REPLY
    created_at: str = ""
    attachments: list[Attachment] | None = None

    @field_validator("author", "body", "created_at", mode="before")
    @classmethod
    def none_to_empty(cls, v: Any) -> Any:
        return "" if v is None else v


class Customer(CanonicalModel):
    """End user or agent. `org_id` may point at an organization not yet written."""

    id: str
    external_id: str
    source: str
    name: str
    email: str = ""
    phone: str | None = None
    org_id: str | None = None

    @field_validator("email", mode="before")
    @classmethod
    def none_to_empty(cls, v: Any) -> Any:
        return "" if v is None else v


class Organization(CanonicalModel):
    id: str
    external_id: str
    source: str
    name: str
    domains: list[str] = Field(default_factory=list)


class KBArticle(CanonicalModel):
    id: str
    external_id: str
    source: str
    title: str = ""
    body: str = ""
    category_path: list[str] = Field(default_factory=list)

    @field_validator("title", "body", mode="before")
    @classmethod
    def none_to_empty(cls, v: Any) -> Any:
        return "" if v is None else v


class Rule(CanonicalModel):
    """Macro, trigger, automation or SLA policy; conditions/actions kept as sent."""

    id: str
    external_id: str
    source: str
    type: RuleType
    title: str = ""
    conditions: Any = None
    actions: Any = None
    active: bool = True


class Group(CanonicalModel):
    id: str
    external_id: str
    source: str
    name: str = ""


class Brand(CanonicalModel):
    id: str
    external_id: str
    source: str
    name: str = ""


class TicketForm(CanonicalModel):
    id: str
    external_id: str
    source: str
    name: str = ""
    active: bool = True


# ---------------------------------------------------------------------------
# Export outputs
# ---------------------------------------------------------------------------

class ExportCounts(CanonicalModel):
    """Lines written per sink."""

    model_config = ConfigDict(frozen=False)

    tickets: int = 0
    messages: int = 0
    customers: int = 0
    organizations: int = 0
    kb_articles: int = 0
    rules: int = 0


class ExportManifest(CanonicalModel):
    """Summary written once, after every resource pass."""

    source: str
    exported_at: str
    counts: ExportCounts


class CanonicalBundle(CanonicalModel):
    """All canonical records for one ticket, as handed to ingestion."""

    tickets: list[Ticket] = Field(default_factory=list)
    messages: list[Message] = Field(default_factory=list)
    customers: list[Customer] = Field(default_factory=list)
    organizations: list[Organization] = Field(default_factory=list)
    groups: list[Group] = Field(default_factory=list)
    brands: list[Brand] = Field(default_factory=list)
    ticket_forms: list[TicketForm] = Field(default_factory=list)
