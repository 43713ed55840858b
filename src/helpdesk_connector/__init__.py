"""
Helpdesk Connector

Exports tickets, messages, customers, organizations, knowledge-base
articles and automation rules from Zendesk, Help Scout, Kayako, Intercom
and Groove into one canonical JSONL schema, and syncs single Zendesk
tickets from webhooks.

Features:
- OAuth2 client credentials, Basic and session-token auth (MFA detected)
- Retry-After aware rate limiting with bounded retries
- Offset, page-number, after-id and opaque-cursor pagination
- Partial-failure isolation per ticket and per optional resource
- Cancellable exports

Quick Start:
    pip install helpdesk-connector
    helpdesk-export test zendesk
    helpdesk-export export zendesk --out ./zendesk-export
"""

__version__ = "1.0.0"

from helpdesk_connector.auth import (
    Authenticator,
    BasicAuth,
    BearerTokenAuth,
    OAuth2ClientCredentials,
    SessionTokenAuth,
)
from helpdesk_connector.cancellation import CancellationToken, ExportCancelled
from helpdesk_connector.client import (
    ApiResponse,
    AuthFatalError,
    HelpdeskAPIError,
    HelpdeskConnectionError,
    HelpdeskNotFoundError,
    MFARequiredError,
    RateLimitedClient,
    RateLimitExhaustedError,
)
from helpdesk_connector.config import CredentialStore, load_config
from helpdesk_connector.exporter import (
    CanonicalExporter,
    ExportResult,
    ExportWarning,
    Hydrated,
    Skipped,
)
from helpdesk_connector.models import (
    CanonicalBundle,
    Customer,
    ExportCounts,
    ExportManifest,
    KBArticle,
    Message,
    Organization,
    Rule,
    Ticket,
)
from helpdesk_connector.pagination import (
    AfterIdPagination,
    CursorPagination,
    OffsetPagination,
    PagePagination,
    ResourceDescriptor,
    SinglePage,
    paginate,
)
from helpdesk_connector.sinks import (
    ExportWriter,
    IngestionSink,
    MemoryIngestionSink,
    load_manifest,
    write_manifest,
)
from helpdesk_connector.sources import SOURCES, HelpdeskSource, get_source
from helpdesk_connector.sync import ZendeskTicketSync, sync_ticket_by_id

__all__ = [
    # Sources
    "SOURCES",
    "get_source",
    "HelpdeskSource",

    # Auth
    "Authenticator",
    "BasicAuth",
    "BearerTokenAuth",
    "OAuth2ClientCredentials",
    "SessionTokenAuth",

    # HTTP client
    "RateLimitedClient",
    "ApiResponse",
    "HelpdeskAPIError",
    "HelpdeskNotFoundError",
    "HelpdeskConnectionError",
    "AuthFatalError",
    "MFARequiredError",
    "RateLimitExhaustedError",

    # Pagination
    "ResourceDescriptor",
    "SinglePage",
    "OffsetPagination",
    "PagePagination",
    "AfterIdPagination",
    "CursorPagination",
    "paginate",

    # Canonical models
    "Ticket",
    "Message",
    "Customer",
    "Organization",
    "KBArticle",
    "Rule",
    "ExportCounts",
    "ExportManifest",
    "CanonicalBundle",

    # Export
    "CanonicalExporter",
    "ExportResult",
    "ExportWarning",
    "Hydrated",
    "Skipped",
    "ExportWriter",
    "write_manifest",
    "load_manifest",
    "CancellationToken",
    "ExportCancelled",

    # Single-ticket sync
    "ZendeskTicketSync",
    "sync_ticket_by_id",
    "IngestionSink",
    "MemoryIngestionSink",

    # Config
    "CredentialStore",
    "load_config",
]
