"""
Single-ticket sync for Zendesk webhooks.

A webhook receiver hands over one ticket id. The ticket, all of its
comments and every entity they reference are fetched, mapped through the
same builders as the batch export, and passed to an IngestionSink as one
CanonicalBundle. Related-entity lookups that fail leave that entity out
of the bundle; only the ticket and its comments are required.
"""

from collections.abc import Callable, Mapping
from typing import Any

import structlog

from helpdesk_connector.cache import LookupCache
from helpdesk_connector.client import (
    AuthFatalError,
    HelpdeskAPIError,
    HelpdeskNotFoundError,
    RateLimitExhaustedError,
)
from helpdesk_connector.config import env_credentials
from helpdesk_connector.models import CanonicalBundle
from helpdesk_connector.pagination import collect
from helpdesk_connector.sinks import IngestionSink
from helpdesk_connector.sources.base import ConnectorMissingCredentialError
from helpdesk_connector.sources.zendesk import ZendeskSource

logger = structlog.get_logger(__name__)


class ZendeskTicketSync:
    """
    Builds and ingests the canonical bundle for one Zendesk ticket.

    Keep one instance per credential set: its lookup cache spares repeat
    requests for users and organizations shared by consecutive tickets.

    Example:
        syncer = ZendeskTicketSync(ZendeskSource.from_credentials(creds), sink)
        syncer.sync("acme", "support", "12345", raw_event=payload)
    """

    def __init__(
        self,
        source: ZendeskSource,
        sink: IngestionSink,
        cache: LookupCache | None = None,
    ):
        self.source = source
        self.sink = sink
        self.cache = cache or LookupCache()
        self._log = logger.bind(source=source.name)

    def _lookup(
        self,
        kind: str,
        entity_id: Any,
        fetch: Callable[[Any], dict[str, Any]],
    ) -> dict[str, Any] | None:
        """Fetch one related entity through the cache; None when unavailable."""

        def load() -> dict[str, Any] | None:
            try:
                return fetch(entity_id)
            except HelpdeskNotFoundError:
                return None

        try:
            return self.cache.lookup(kind, entity_id, load)
        except (AuthFatalError, RateLimitExhaustedError):
            raise
        except HelpdeskAPIError as e:
            self._log.warning("Lookup failed, leaving entity out", kind=kind, entity_id=entity_id, error=str(e))
            return None

    def build_bundle(self, ticket_id: Any) -> tuple[dict[str, Any], CanonicalBundle]:
        """
        Fetch one ticket and everything it references.

        Returns:
            The raw ticket and its canonical bundle

        Raises:
            HelpdeskAPIError: If the ticket or its comments cannot be fetched
        """
        source = self.source
        raw_ticket = source.get_ticket(ticket_id)
        comments = collect(source.fetch, source.comments_descriptor(raw_ticket["id"]))

        user_ids: dict[Any, None] = {}
        for user_id in (raw_ticket.get("requester_id"), raw_ticket.get("assignee_id")):
            if user_id:
                user_ids.setdefault(user_id, None)
        for comment in comments:
            if comment.get("author_id"):
                user_ids.setdefault(comment["author_id"], None)

        users = [
            user
            for user in (self._lookup("users", uid, source.get_user) for uid in user_ids)
            if user is not None
        ]

        org_ids: dict[Any, None] = {}
        for user in users:
            if user.get("organization_id"):
                org_ids.setdefault(user["organization_id"], None)
        organizations = [
            org
            for org in (self._lookup("organizations", oid, source.get_organization) for oid in org_ids)
            if org is not None
        ]

        group = brand = form = None
        if raw_ticket.get("group_id"):
            group = self._lookup("groups", raw_ticket["group_id"], source.get_group)
        if raw_ticket.get("brand_id"):
            brand = self._lookup("brands", raw_ticket["brand_id"], source.get_brand)
        if raw_ticket.get("ticket_form_id"):
            form = self._lookup("ticket_forms", raw_ticket["ticket_form_id"], source.get_ticket_form)

        bundle = CanonicalBundle(
            tickets=[source.build_ticket(raw_ticket)],
            messages=[source.build_comment(raw_ticket["id"], c) for c in comments],
            customers=[source.build_user(u) for u in users],
            organizations=[source.build_organization(o) for o in organizations],
            groups=[source.build_group(group)] if group else [],
            brands=[source.build_brand(brand)] if brand else [],
            ticket_forms=[source.build_ticket_form(form)] if form else [],
        )
        return raw_ticket, bundle

    def sync(
        self,
        tenant: str,
        workspace: str,
        ticket_id: Any,
        raw_event: Any = None,
    ) -> CanonicalBundle:
        """
        Ingest one ticket, then record the webhook event if one was given.

        Returns:
            The bundle handed to the sink
        """
        raw_ticket, bundle = self.build_bundle(ticket_id)
        self.sink.ingest(tenant, workspace, bundle)

        if raw_event is not None:
            self.sink.record_webhook_event(tenant, workspace, raw_event, str(raw_ticket["id"]))

        self._log.info(
            "Synced ticket",
            ticket_id=str(raw_ticket["id"]),
            tenant=tenant,
            workspace=workspace,
            messages=len(bundle.messages),
            customers=len(bundle.customers),
            organizations=len(bundle.organizations),
        )
        return bundle


def sync_ticket_by_id(
    tenant: str,
    workspace: str,
    ticket_id: Any,
    sink: IngestionSink,
    *,
    auth: dict[str, Any] | None = None,
    raw_event: Any = None,
    environ: Mapping[str, str] | None = None,
    **client_options: Any,
) -> CanonicalBundle:
    """
    One-shot sync entry point for webhook receivers.

    Args:
        tenant: Tenant the ticket belongs to
        workspace: Workspace within the tenant
        ticket_id: Zendesk ticket id from the webhook
        sink: Receiver of the canonical bundle
        auth: Zendesk credentials (subdomain, email, token); read from
            ZENDESK_SUBDOMAIN / ZENDESK_EMAIL / ZENDESK_TOKEN when omitted
        raw_event: Webhook payload to record alongside the bundle
        **client_options: RateLimitedClient overrides (transport, timeout, ...)

    Raises:
        ConnectorMissingCredentialError: No credentials given or in the environment
    """
    credentials = auth if auth is not None else env_credentials("zendesk", environ)
    if not all(credentials.get(key) for key in ZendeskSource.credential_keys):
        raise ConnectorMissingCredentialError(
            "Missing Zendesk credentials (ZENDESK_SUBDOMAIN, ZENDESK_EMAIL, ZENDESK_TOKEN)"
        )

    with ZendeskSource.from_credentials(credentials, **client_options) as source:
        return ZendeskTicketSync(source, sink).sync(tenant, workspace, ticket_id, raw_event)
