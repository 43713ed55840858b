"""
Canonical exporter.

Drives one source through every resource pass, in a fixed order:

    tickets (+ messages per ticket) -> customers -> agents ->
    organizations -> KB articles -> rules -> manifest

Failure policy:
- AuthFatalError, RateLimitExhaustedError and ExportCancelled unwind the run.
- Any other HelpdeskAPIError is caught at the smallest scope (one message
  sub-resource of one ticket, one resource pass) and recorded as an
  ExportWarning.
- A single source record that cannot be mapped is skipped with a warning.

The manifest is written last, from the writer's own counts, whenever the
run was not unwound.
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Protocol

import structlog
from pydantic import ValidationError

from helpdesk_connector.cancellation import CancellationToken
from helpdesk_connector.client import (
    AuthFatalError,
    HelpdeskAPIError,
    RateLimitExhaustedError,
)
from helpdesk_connector.models import (
    CanonicalModel,
    ExportManifest,
    Message,
    Ticket,
)
from helpdesk_connector.pagination import collect, iter_pages
from helpdesk_connector.sinks import ExportWriter, write_manifest
from helpdesk_connector.sources.base import HelpdeskSource, Resource

logger = structlog.get_logger(__name__)

# Errors that abort the whole run rather than one resource
FATAL_ERRORS = (AuthFatalError, RateLimitExhaustedError)

# Errors a builder raises on a malformed source record
MAPPING_ERRORS = (KeyError, TypeError, ValueError, ValidationError)


@dataclass(frozen=True)
class ExportWarning:
    """Recoverable problem surfaced to the operator."""

    resource: str
    message: str
    ticket_id: str | None = None

    def __str__(self) -> str:
        if self.ticket_id:
            return f"{self.resource} (ticket {self.ticket_id}): {self.message}"
        return f"{self.resource}: {self.message}"


@dataclass(frozen=True)
class Hydrated:
    """One message sub-resource of a ticket drained."""

    resource: str
    messages: list[Message]


@dataclass(frozen=True)
class Skipped:
    """One message sub-resource failed; only its messages are left out."""

    resource: str
    reason: str


HydrationResult = Hydrated | Skipped


class ProgressReporter(Protocol):
    """Live progress per resource pass (the CLI prints it)."""

    def resource_started(self, resource: str) -> None:
        ...

    def resource_progress(self, resource: str, count: int) -> None:
        ...

    def resource_finished(self, resource: str, count: int, warning: ExportWarning | None) -> None:
        ...


class _SilentProgress:
    def resource_started(self, resource: str) -> None:
        pass

    def resource_progress(self, resource: str, count: int) -> None:
        pass

    def resource_finished(self, resource: str, count: int, warning: ExportWarning | None) -> None:
        pass


@dataclass
class ExportResult:
    """Outcome of a completed (possibly degraded) export run."""

    manifest: ExportManifest
    out_dir: Path
    warnings: list[ExportWarning] = field(default_factory=list)
    unmapped_values: dict[str, dict[str, int]] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        """True when no resource degraded to a warning."""
        return not self.warnings


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class CanonicalExporter:
    """
    Export every canonical resource of one source into JSONL sinks.

    Example:
        with ZendeskSource.from_credentials(creds) as source:
            result = CanonicalExporter(source, "./export").run()

        print(result.manifest.counts.tickets, len(result.warnings))
    """

    def __init__(
        self,
        source: HelpdeskSource,
        out_dir: str | Path,
        progress: ProgressReporter | None = None,
        cancel_token: CancellationToken | None = None,
    ):
        self.source = source
        self.out_dir = Path(out_dir)
        self.progress = progress or _SilentProgress()
        self.cancel_token = cancel_token or CancellationToken()

        self.warnings: list[ExportWarning] = []
        self._org_names: dict[str, None] = {}
        self._log = logger.bind(source=source.name)

    # -------------------------------------------------------------------------
    # Run
    # -------------------------------------------------------------------------

    def run(self) -> ExportResult:
        """
        Run every pass and write the manifest.

        Raises:
            AuthFatalError: Credentials rejected, token failure or MFA enabled
            RateLimitExhaustedError: Source kept throttling past max_retries
            ExportCancelled: The cancel token was triggered
        """
        self.warnings = []
        self._org_names = {}
        self.source.client.attach_cancel_token(self.cancel_token)

        self._log.info("Starting export", out_dir=str(self.out_dir))
        self.source.start_export()

        with ExportWriter(self.out_dir) as writer:
            self._export_tickets(writer)
            self._export_customers(writer)
            self._export_agents(writer)
            self._export_organizations(writer)
            self._export_kb_articles(writer)
            self._export_rules(writer)
            writer.flush()
            counts = writer.counts.model_copy()

        manifest = ExportManifest(
            source=self.source.name,
            exported_at=utc_timestamp(),
            counts=counts,
        )
        write_manifest(self.out_dir, manifest)

        unmapped = self.source.drift.summary()
        if unmapped:
            self._log.info("Unmapped source values defaulted", unmapped=unmapped)

        self._log.info(
            "Export complete",
            warnings=len(self.warnings),
            **counts.model_dump(),
        )
        return ExportResult(
            manifest=manifest,
            out_dir=self.out_dir,
            warnings=list(self.warnings),
            unmapped_values=unmapped,
        )

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _warn(self, resource: str, message: str, ticket_id: str | None = None) -> ExportWarning:
        warning = ExportWarning(resource, message, ticket_id)
        self.warnings.append(warning)
        self._log.warning("Export warning", resource=resource, ticket_id=ticket_id, error=message)
        return warning

    def _build(self, resource: Resource, raw: Any) -> CanonicalModel | None:
        """Map one source item; a malformed item is skipped with a warning."""
        try:
            return resource.build(raw)
        except MAPPING_ERRORS as e:
            item_id = raw.get("id") if isinstance(raw, dict) else None
            self._warn(resource.label, f"Skipped unmappable record {item_id}: {e}")
            return None

    def _drain(
        self,
        writer: ExportWriter,
        resource: Resource,
        sink: str,
        on_record: Callable[[Any, CanonicalModel], None] | None = None,
    ) -> int:
        """
        Write every record of one resource to `sink`.

        A non-fatal API error ends this resource only; records already
        written stay written and are counted.
        """
        written = 0
        failure: ExportWarning | None = None
        self.progress.resource_started(resource.label)

        try:
            for page in iter_pages(self.source.fetch, resource.endpoint):
                self.cancel_token.raise_if_cancelled()
                for raw in page.items:
                    record = self._build(resource, raw)
                    if record is None:
                        continue
                    writer.write(sink, record)
                    written += 1
                    if on_record is not None:
                        on_record(raw, record)
                self._log.debug("Fetched page", resource=resource.label, page=page.number, items=len(page.items))
                self.progress.resource_progress(resource.label, written)
        except FATAL_ERRORS:
            raise
        except HelpdeskAPIError as e:
            failure = self._warn(resource.label, str(e))

        self.progress.resource_finished(resource.label, written, failure)
        return written

    # -------------------------------------------------------------------------
    # Passes
    # -------------------------------------------------------------------------

    def _export_tickets(self, writer: ExportWriter) -> None:
        def hydrate(raw: dict[str, Any], ticket: CanonicalModel) -> None:
            self.cancel_token.raise_if_cancelled()
            for result in self.hydrate_messages(raw, ticket):
                if isinstance(result, Hydrated):
                    writer.write_many("messages", result.messages)
                else:
                    self._warn("messages", result.reason, ticket_id=ticket.id)

        self._drain(writer, self.source.ticket_resource(), "tickets", on_record=hydrate)

    def hydrate_messages(self, raw_ticket: dict[str, Any], ticket: Ticket) -> list[HydrationResult]:
        """
        Fetch every message of one ticket, one result per sub-resource.

        A sub-resource either drains completely or is Skipped, so a failing
        notes endpoint never costs the ticket its posts. Messages carried on
        the ticket payload come first under the "inline" resource.
        """
        results: list[HydrationResult] = []
        try:
            results.append(Hydrated("inline", self.source.inline_messages(raw_ticket)))
        except MAPPING_ERRORS as e:
            results.append(Skipped("inline", f"inline message could not be mapped: {e}"))

        for resource in self.source.message_resources(raw_ticket):
            try:
                items = collect(self.source.fetch, resource.endpoint)
            except FATAL_ERRORS:
                raise
            except HelpdeskAPIError as e:
                self._log.debug("Message fetch failed", ticket_id=ticket.id, resource=resource.label)
                results.append(Skipped(resource.label, f"{resource.label} fetch failed: {e}"))
                continue

            messages = []
            for raw in items:
                message = self._build(resource, raw)
                if message is not None:
                    messages.append(message)
            results.append(Hydrated(resource.label, messages))

        return results

    def _export_customers(self, writer: ExportWriter) -> None:
        resource = self.source.customer_resource()
        if resource is None:
            return

        def remember_org(raw: dict[str, Any], customer: CanonicalModel) -> None:
            name = self.source.organization_name(raw)
            if name:
                self._org_names.setdefault(name, None)

        self._drain(writer, resource, "customers", on_record=remember_org)

    def _export_agents(self, writer: ExportWriter) -> None:
        resource = self.source.agent_resource()
        if resource is not None:
            self._drain(writer, resource, "customers")

    def _export_organizations(self, writer: ExportWriter) -> None:
        resource = self.source.organization_resource()
        if resource is not None:
            self._drain(writer, resource, "organizations")
            return

        self.progress.resource_started("organizations")
        for name in self._org_names:
            writer.write("organizations", self.source.org_from_name(name))
        self.progress.resource_finished("organizations", len(self._org_names), None)
        self._log.info("Aggregated organizations from customers", count=len(self._org_names))

    def _export_kb_articles(self, writer: ExportWriter) -> None:
        # Discovering KB collections can itself fail (Help Center disabled)
        try:
            for resource in self.source.kb_resources():
                self._drain(writer, resource, "kb_articles")
        except FATAL_ERRORS:
            raise
        except HelpdeskAPIError as e:
            warning = self._warn("kb_articles", str(e))
            self.progress.resource_finished("kb_articles", 0, warning)

    def _export_rules(self, writer: ExportWriter) -> None:
        for resource in self.source.rule_resources():
            self._drain(writer, resource, "rules")
