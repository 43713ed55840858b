"""
Output sinks.

Batch path: one newline-delimited JSON file per resource type plus a
manifest written last. Opening an ExportWriter truncates every sink and
removes any previous manifest, so a re-run against the same directory
rewrites it from scratch.

Single-entity path: an IngestionSink receives the canonical bundle for one
ticket. Upsert semantics belong to the sink, not to this package.
"""

import json
from pathlib import Path
from typing import Any, Protocol, TextIO

import structlog

from helpdesk_connector.models import (
    CanonicalBundle,
    CanonicalModel,
    ExportCounts,
    ExportManifest,
)

logger = structlog.get_logger(__name__)

SINK_FILES = {
    "tickets": "tickets.jsonl",
    "messages": "messages.jsonl",
    "customers": "customers.jsonl",
    "organizations": "organizations.jsonl",
    "kb_articles": "kb_articles.jsonl",
    "rules": "rules.jsonl",
}
MANIFEST_FILE = "manifest.json"


class ExportWriter:
    """
    Append-only JSONL writer for the six canonical sinks.

    Counts are incremented only after a line is written, so the manifest
    built from `counts` always matches the files.

    Example:
        with ExportWriter("./export") as writer:
            writer.write("tickets", ticket)
            writer.write_many("messages", messages)
        write_manifest("./export", ExportManifest(..., counts=writer.counts))
    """

    def __init__(self, out_dir: str | Path):
        self.out_dir = Path(out_dir)
        self.counts = ExportCounts()
        self._files: dict[str, TextIO] = {}
        self._log = logger.bind(out_dir=str(self.out_dir))

    def open(self) -> "ExportWriter":
        """Create the directory and truncate every sink."""
        self.out_dir.mkdir(parents=True, exist_ok=True)

        stale_manifest = self.out_dir / MANIFEST_FILE
        if stale_manifest.exists():
            stale_manifest.unlink()

        for resource, filename in SINK_FILES.items():
            self._files[resource] = open(
                self.out_dir / filename, "w", encoding="utf-8", newline="\n"
            )

        self.counts = ExportCounts()
        self._log.debug("Opened export sinks", sinks=list(SINK_FILES))
        return self

    def close(self) -> None:
        for handle in self._files.values():
            handle.close()
        self._files.clear()

    def __enter__(self) -> "ExportWriter":
        return self.open()

    def __exit__(self, *args: Any) -> None:
        self.close()

    def path_for(self, resource: str) -> Path:
        return self.out_dir / SINK_FILES[resource]

    def write(self, resource: str, record: CanonicalModel) -> None:
        """Append one record to the `resource` sink."""
        handle = self._files.get(resource)
        if handle is None:
            raise RuntimeError(f"Sink '{resource}' is not open")

        handle.write(json.dumps(record.to_record(), ensure_ascii=False) + "\n")
        setattr(self.counts, resource, getattr(self.counts, resource) + 1)

    def write_many(self, resource: str, records: list[CanonicalModel]) -> int:
        for record in records:
            self.write(resource, record)
        return len(records)

    def flush(self) -> None:
        for handle in self._files.values():
            handle.flush()


def write_manifest(out_dir: str | Path, manifest: ExportManifest) -> Path:
    """
    Write manifest.json.

    Uses atomic write (write to temp, then rename) so readers never see a
    half-written manifest.
    """
    target = Path(out_dir) / MANIFEST_FILE
    temp_file = target.with_suffix(".tmp")

    with open(temp_file, "w", encoding="utf-8") as f:
        json.dump(manifest.to_record(), f, indent=2)

    temp_file.replace(target)

    logger.info(
        "Wrote manifest",
        path=str(target),
        source=manifest.source,
        **manifest.counts.model_dump(),
    )
    return target


def load_manifest(out_dir: str | Path) -> ExportManifest | None:
    """Read a manifest back, or None if the directory has none."""
    path = Path(out_dir) / MANIFEST_FILE
    if not path.exists():
        return None
    with open(path, encoding="utf-8") as f:
        return ExportManifest.model_validate(json.load(f))


def count_lines(path: str | Path) -> int:
    """Number of records in a JSONL sink."""
    with open(path, encoding="utf-8") as f:
        return sum(1 for line in f if line.strip())


# ---------------------------------------------------------------------------
# Ingestion (single-entity path)
# ---------------------------------------------------------------------------

class IngestionSink(Protocol):
    """Receiver for the one-ticket deltas built by the sync path."""

    def ingest(self, tenant: str, workspace: str, bundle: CanonicalBundle) -> None:
        ...

    def record_webhook_event(
        self,
        tenant: str,
        workspace: str,
        payload: Any,
        external_id: str,
    ) -> None:
        ...


class MemoryIngestionSink:
    """IngestionSink that keeps everything it receives, in order."""

    def __init__(self) -> None:
        self.bundles: list[tuple[str, str, CanonicalBundle]] = []
        self.events: list[dict[str, Any]] = []

    def ingest(self, tenant: str, workspace: str, bundle: CanonicalBundle) -> None:
        self.bundles.append((tenant, workspace, bundle))

    def record_webhook_event(
        self,
        tenant: str,
        workspace: str,
        payload: Any,
        external_id: str,
    ) -> None:
        self.events.append({
            "tenant": tenant,
            "workspace": workspace,
            "externalId": external_id,
            "payload": payload,
        })
