"""
Base class for helpdesk sources.

A source knows three things about one helpdesk product:
- how to authenticate and where its API lives (build_client)
- which collections exist and how each one pages (Resource descriptors)
- how to turn one source-native item into a canonical record (builders)

Everything that drives requests across those collections (pagination,
partial-failure isolation, sinks, manifest) lives in the exporter and the
pagination engine, so a source is mostly declarative.
"""

from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass
from typing import Any, ClassVar

import structlog

from helpdesk_connector.auth import Authenticator
from helpdesk_connector.client import HelpdeskAPIError, RateLimitedClient
from helpdesk_connector.mapping import DriftCounter, canonical_id
from helpdesk_connector.models import CanonicalModel, Message, Organization
from helpdesk_connector.pagination import ResourceDescriptor

logger = structlog.get_logger(__name__)

Builder = Callable[[Any], CanonicalModel | None]


class ConnectorMissingCredentialError(Exception):
    """Raised when required credentials are not provided."""
    pass


@dataclass(frozen=True)
class Resource:
    """
    One paginated collection and the builder for its items.

    A builder returns a canonical record, or None to skip an item the
    source includes but the canonical schema has no place for (e.g. a
    thread without a body).
    """

    label: str
    endpoint: ResourceDescriptor
    build: Builder


class HelpdeskSource(ABC):
    """
    One authenticated connection to a helpdesk.

    Subclasses set the class attributes and implement the resource and
    builder methods; the base class handles construction from credentials,
    verification and client lifecycle.
    """

    name: ClassVar[str]
    display_name: ClassVar[str]
    prefix: ClassVar[str]
    credential_keys: ClassVar[tuple[str, ...]]
    client_defaults: ClassVar[dict[str, Any]] = {}

    def __init__(self, client: RateLimitedClient, page_size: int = 100):
        if page_size <= 0:
            raise ValueError("page_size must be positive")
        self.client = client
        self.page_size = page_size
        self.drift = DriftCounter(self.name)
        self._log = logger.bind(source=self.name)

    # -------------------------------------------------------------------------
    # Construction
    # -------------------------------------------------------------------------

    @classmethod
    def from_credentials(
        cls,
        credentials: dict[str, Any],
        *,
        page_size: int = 100,
        **client_options: Any,
    ) -> "HelpdeskSource":
        """
        Build a source from a credential dict.

        Args:
            credentials: Source-specific keys (see `credential_keys`)
            page_size: Items requested per page where the source allows it
            **client_options: Overrides for RateLimitedClient settings
                (requests_per_minute, max_retries, timeout, transport, ...)

        Raises:
            ConnectorMissingCredentialError: If a required key is missing
        """
        missing = [key for key in cls.credential_keys if not credentials.get(key)]
        if missing:
            raise ConnectorMissingCredentialError(
                f"{cls.display_name} credentials are missing: {', '.join(missing)}"
            )
        return cls(cls.build_client(credentials, **client_options), page_size=page_size)

    @classmethod
    def build_client(cls, credentials: dict[str, Any], **options: Any) -> RateLimitedClient:
        settings = {**cls.client_defaults, **options}
        authenticator = cls.authenticator_for(credentials, settings)
        return RateLimitedClient(
            cls.base_url_for(credentials),
            authenticator,
            cls.display_name,
            **settings,
        )

    @classmethod
    @abstractmethod
    def base_url_for(cls, credentials: dict[str, Any]) -> str:
        ...

    @classmethod
    @abstractmethod
    def authenticator_for(cls, credentials: dict[str, Any], settings: dict[str, Any]) -> Authenticator:
        ...

    def __enter__(self) -> "HelpdeskSource":
        self.client.__enter__()
        return self

    def __exit__(self, *args: Any) -> None:
        self.client.close()

    def close(self) -> None:
        self.client.close()

    # -------------------------------------------------------------------------
    # Helpers for subclasses
    # -------------------------------------------------------------------------

    def fetch(self, path: str) -> Any:
        """Fetch function handed to the pagination engine."""
        return self.client.get_json(path)

    def cid(self, external_id: Any, kind: str | None = None) -> str:
        return canonical_id(self.prefix, external_id, kind)

    def org_from_name(self, name: str) -> Organization:
        """Organization keyed by its name, for sources without an org endpoint."""
        return Organization(
            id=self.cid(name, "org"),
            external_id=name,
            source=self.name,
            name=name,
            domains=[],
        )

    # -------------------------------------------------------------------------
    # Export surface
    # -------------------------------------------------------------------------

    def start_export(self) -> None:
        """Called once before the first request of an export run."""

    @abstractmethod
    def ticket_resource(self) -> Resource:
        """Tickets collection; its builder returns a Ticket."""

    @abstractmethod
    def message_resources(self, raw_ticket: dict[str, Any]) -> list[Resource]:
        """Sub-collections that hydrate one ticket with Messages."""

    def inline_messages(self, raw_ticket: dict[str, Any]) -> list[Message]:
        """Messages carried inside the ticket payload itself."""
        return []

    @abstractmethod
    def customer_resource(self) -> Resource | None:
        ...

    def agent_resource(self) -> Resource | None:
        """Agents/admins exported as Customers with `{prefix}-agent-` ids."""
        return None

    def organization_resource(self) -> Resource | None:
        """Organizations endpoint, or None to aggregate names from customers."""
        return None

    def organization_name(self, raw_customer: dict[str, Any]) -> str | None:
        """Organization name carried on a customer, for aggregation."""
        return None

    def kb_resources(self) -> Iterator[Resource]:
        """Knowledge-base collections. May issue requests to discover them."""
        return iter(())

    def rule_resources(self) -> Iterable[Resource]:
        """Macros, triggers, automations, SLA policies: each independently optional."""
        return ()

    # -------------------------------------------------------------------------
    # Verification
    # -------------------------------------------------------------------------

    def verify_connection(self) -> dict[str, Any]:
        """
        Authenticate and read a minimal record, without paging.

        Returns:
            {"success": True, ...summary} or {"success": False, "error": "..."}
        """
        try:
            summary = self._verify()
        except HelpdeskAPIError as e:
            self._log.warning("Connection check failed", error=str(e))
            return {"success": False, "error": str(e)}
        return {"success": True, **summary}

    @abstractmethod
    def _verify(self) -> dict[str, Any]:
        ...

    # -------------------------------------------------------------------------
    # Write-back
    # -------------------------------------------------------------------------

    @abstractmethod
    def create_ticket(self, subject: str, body: str, requester: str) -> str:
        """Create a ticket; returns its source-native id."""

    @abstractmethod
    def reply(self, ticket_id: str, body: str, author_id: str | None = None) -> None:
        """Public reply visible to the requester."""

    @abstractmethod
    def add_note(self, ticket_id: str, body: str, author_id: str | None = None) -> None:
        """Internal note visible to agents only."""

    @abstractmethod
    def update_ticket(self, ticket_id: str, updates: dict[str, Any]) -> None:
        """Change source-native ticket fields (status, assignee, tags, ...)."""

    def get_stats(self) -> dict[str, Any]:
        return {
            "source": self.name,
            "client": self.client.get_stats(),
            "unmapped_values": self.drift.summary(),
        }
