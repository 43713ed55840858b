"""
Tests for canonical Pydantic models.
"""

import pytest
from pydantic import ValidationError

from helpdesk_connector.models import (
    Attachment,
    CanonicalBundle,
    Customer,
    ExportCounts,
    ExportManifest,
    Message,
    MessageType,
    Rule,
    RuleType,
    Ticket,
    TicketPriority,
    TicketStatus,
)


class TestTicket:
    """Tests for the Ticket model."""

    def test_defaults(self):
        """Test a minimal ticket gets open/normal and empty strings."""
        ticket = Ticket(id="zd-1", external_id="1", source="zendesk")

        assert ticket.status == TicketStatus.OPEN
        assert ticket.priority == TicketPriority.NORMAL
        assert ticket.subject == ""
        assert ticket.tags == []
        assert ticket.assignee is None

    def test_none_strings_become_empty(self):
        """Test null text fields from sources become empty strings."""
        ticket = Ticket(id="zd-1", external_id="1", source="zendesk", subject=None, requester=None, created_at=None)

        assert ticket.subject == ""
        assert ticket.requester == ""
        assert ticket.created_at == ""

    def test_tags_normalized(self):
        """Test null and empty tags are dropped and others stringified."""
        ticket = Ticket(id="gv-1", external_id="1", source="groove", tags=["vip", None, "", 42])
        assert ticket.tags == ["vip", "42"]

        assert Ticket(id="gv-2", external_id="2", source="groove", tags=None).tags == []

    def test_numeric_ids_coerced(self):
        """Test numeric external ids are accepted as strings."""
        ticket = Ticket(id="zd-1", external_id=1, source="zendesk")
        assert ticket.external_id == "1"

    def test_frozen(self):
        """Test records cannot be mutated once built."""
        ticket = Ticket(id="zd-1", external_id="1", source="zendesk")
        with pytest.raises(ValidationError):
            ticket.subject = "changed"

    def test_record_is_camel_case(self):
        """Test serialization uses camelCase keys and omits unset optionals."""
        ticket = Ticket(
            id="zd-1",
            external_id="1",
            source="zendesk",
            status=TicketStatus.ON_HOLD,
            created_at="2024-01-01T00:00:00Z",
            custom_fields={"360001": "floor-3"},
        )

        record = ticket.to_record()

        assert record["externalId"] == "1"
        assert record["createdAt"] == "2024-01-01T00:00:00Z"
        assert record["status"] == "on_hold"
        assert record["customFields"] == {"360001": "floor-3"}
        assert "assignee" not in record
        assert "groupId" not in record
        assert "external_id" not in record

    def test_invalid_status_rejected(self):
        """Test only canonical status values are accepted."""
        with pytest.raises(ValidationError):
            Ticket(id="zd-1", external_id="1", source="zendesk", status="escalated")


class TestMessage:
    def test_attachments_serialized(self):
        """Test attachments nest under the message with camelCase keys."""
        message = Message(
            id="zd-msg-1",
            ticket_id="zd-1",
            author="900",
            body="hi",
            type=MessageType.NOTE,
            attachments=[
                Attachment(
                    id="zd-att-5",
                    external_id="5",
                    message_id="zd-msg-1",
                    filename="a.png",
                    content_url="https://x/a.png",
                )
            ],
        )

        record = message.to_record()

        assert record["ticketId"] == "zd-1"
        assert record["type"] == "note"
        assert record["attachments"][0]["messageId"] == "zd-msg-1"
        assert record["attachments"][0]["contentUrl"] == "https://x/a.png"
        assert "bodyHtml" not in record


class TestOtherRecords:
    def test_customer_org_id(self):
        """Test org references serialize as orgId."""
        customer = Customer(id="zd-user-1", external_id="1", source="zendesk", name="Jo", email=None, org_id="zd-org-5")

        record = customer.to_record()

        assert record["orgId"] == "zd-org-5"
        assert record["email"] == ""

    def test_rule_keeps_conditions_verbatim(self):
        """Test rule conditions and actions are passed through untouched."""
        conditions = {"all": [{"field": "status", "operator": "is", "value": "new"}]}
        rule = Rule(
            id="zd-trigger-1",
            external_id="1",
            source="zendesk",
            type=RuleType.TRIGGER,
            conditions=conditions,
            actions=[{"field": "group_id", "value": "70"}],
        )

        record = rule.to_record()

        assert record["conditions"] == conditions
        assert record["type"] == "trigger"
        assert record["active"] is True


class TestManifest:
    def test_counts_are_mutable(self):
        """Test counts can be incremented while writing."""
        counts = ExportCounts()
        counts.tickets += 2
        assert counts.tickets == 2

    def test_manifest_round_trip(self):
        """Test a manifest survives its own camelCase serialization."""
        manifest = ExportManifest(
            source="kayako",
            exported_at="2024-01-01T00:00:00.000Z",
            counts=ExportCounts(tickets=4, kb_articles=2),
        )

        record = manifest.to_record()

        assert record["exportedAt"] == "2024-01-01T00:00:00.000Z"
        assert record["counts"]["kbArticles"] == 2
        assert ExportManifest.model_validate(record) == manifest

    def test_bundle_defaults_empty(self):
        """Test an empty bundle serializes every collection."""
        record = CanonicalBundle().to_record()
        assert record["ticketForms"] == []
        assert record["tickets"] == []
