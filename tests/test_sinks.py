"""
Tests for JSONL sinks, the manifest and the in-memory ingestion sink.
"""

import json

import pytest

from helpdesk_connector.models import (
    CanonicalBundle,
    ExportManifest,
    Organization,
    Ticket,
)
from helpdesk_connector.sinks import (
    MANIFEST_FILE,
    SINK_FILES,
    ExportWriter,
    MemoryIngestionSink,
    count_lines,
    load_manifest,
    write_manifest,
)


def ticket(n: int) -> Ticket:
    return Ticket(id=f"zd-{n}", external_id=str(n), source="zendesk", subject=f"Ticket {n}")


class TestExportWriter:
    """Tests for the six-sink JSONL writer."""

    def test_creates_every_sink(self, tmp_path):
        """Test all sinks exist after opening, even when empty."""
        with ExportWriter(tmp_path / "out"):
            pass

        for filename in SINK_FILES.values():
            assert (tmp_path / "out" / filename).exists()

    def test_counts_match_lines(self, tmp_path):
        """Test counts equal the number of lines written per sink."""
        with ExportWriter(tmp_path) as writer:
            writer.write_many("tickets", [ticket(1), ticket(2), ticket(3)])
            writer.write("organizations", Organization(id="zd-org-1", external_id="1", source="zendesk", name="Acme"))
            counts = writer.counts

        assert counts.tickets == 3 == count_lines(tmp_path / "tickets.jsonl")
        assert counts.organizations == 1 == count_lines(tmp_path / "organizations.jsonl")
        assert counts.messages == 0 == count_lines(tmp_path / "messages.jsonl")

    def test_lines_are_camel_case_json(self, tmp_path):
        """Test each line is one camelCase JSON object."""
        with ExportWriter(tmp_path) as writer:
            writer.write("tickets", ticket(7))

        line = (tmp_path / "tickets.jsonl").read_text(encoding="utf-8").splitlines()[0]
        assert json.loads(line)["externalId"] == "7"

    def test_rerun_truncates(self, tmp_path):
        """Test a second run replaces the previous output instead of appending."""
        with ExportWriter(tmp_path) as writer:
            writer.write_many("tickets", [ticket(1), ticket(2)])

        with ExportWriter(tmp_path) as writer:
            writer.write("tickets", ticket(3))

        lines = (tmp_path / "tickets.jsonl").read_text(encoding="utf-8").splitlines()
        assert [json.loads(line)["id"] for line in lines] == ["zd-3"]

    def test_stale_manifest_removed(self, tmp_path):
        """Test opening the writer deletes a manifest from an earlier run."""
        (tmp_path / MANIFEST_FILE).write_text("{}", encoding="utf-8")

        with ExportWriter(tmp_path):
            assert not (tmp_path / MANIFEST_FILE).exists()

    def test_write_after_close_fails(self, tmp_path):
        """Test writing to a closed writer is an error."""
        writer = ExportWriter(tmp_path)
        with pytest.raises(RuntimeError):
            writer.write("tickets", ticket(1))

    def test_non_ascii_preserved(self, tmp_path):
        """Test text is written as UTF-8, not escaped."""
        with ExportWriter(tmp_path) as writer:
            writer.write("tickets", Ticket(id="zd-1", external_id="1", source="zendesk", subject="Café ☕"))

        assert "Café ☕" in (tmp_path / "tickets.jsonl").read_text(encoding="utf-8")


class TestManifest:
    def test_round_trip(self, tmp_path):
        """Test the manifest reads back equal to what was written."""
        with ExportWriter(tmp_path) as writer:
            writer.write_many("tickets", [ticket(1), ticket(2)])
            counts = writer.counts.model_copy()

        manifest = ExportManifest(source="zendesk", exported_at="2024-03-01T00:00:00.000Z", counts=counts)
        path = write_manifest(tmp_path, manifest)

        assert path.name == MANIFEST_FILE
        assert not path.with_suffix(".tmp").exists()
        assert load_manifest(tmp_path) == manifest
        assert json.loads(path.read_text(encoding="utf-8"))["counts"]["tickets"] == 2

    def test_missing_manifest(self, tmp_path):
        """Test load_manifest returns None when no run completed."""
        assert load_manifest(tmp_path) is None


class TestMemoryIngestionSink:
    def test_records_bundles_and_events(self):
        """Test bundles and webhook events are kept in arrival order."""
        sink = MemoryIngestionSink()
        bundle = CanonicalBundle(tickets=[ticket(1)])

        sink.ingest("acme", "support", bundle)
        sink.record_webhook_event("acme", "support", {"type": "ticket.updated"}, "1")

        assert sink.bundles == [("acme", "support", bundle)]
        assert sink.events == [{
            "tenant": "acme",
            "workspace": "support",
            "externalId": "1",
            "payload": {"type": "ticket.updated"},
        }]
