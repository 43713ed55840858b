"""
Tests for per-source builders, verification and write-back requests.
"""

import json

import httpx
import pytest

from helpdesk_connector.client import HelpdeskAPIError, RateLimitExhaustedError
from helpdesk_connector.exporter import CanonicalExporter, Hydrated
from helpdesk_connector.models import MessageType, TicketPriority, TicketStatus
from helpdesk_connector.sources import SOURCES, get_source
from helpdesk_connector.sources.base import ConnectorMissingCredentialError
from helpdesk_connector.sources.groove import GrooveSource
from helpdesk_connector.sources.helpscout import HelpScoutSource
from helpdesk_connector.sources.intercom import IntercomSource
from helpdesk_connector.sources.kayako import KayakoSource
from helpdesk_connector.sources.zendesk import ZendeskSource


def sent_json(request: httpx.Request):
    return json.loads(request.content)


class TestRegistry:
    def test_all_sources_registered(self):
        """Test every connector is reachable by name."""
        assert set(SOURCES) == {"zendesk", "helpscout", "kayako", "intercom", "groove"}
        assert get_source("groove") is GrooveSource

    def test_unknown_source(self):
        """Test an unknown name lists the known ones."""
        with pytest.raises(KeyError) as exc_info:
            get_source("freshdesk")
        assert "zendesk" in str(exc_info.value)

    def test_missing_credentials(self):
        """Test from_credentials names the missing keys."""
        with pytest.raises(ConnectorMissingCredentialError) as exc_info:
            KayakoSource.from_credentials({"domain": "acme.kayako.com"})
        assert "email, password" in str(exc_info.value)


class TestZendeskSource:
    """Tests for Zendesk builders and write-back."""

    @pytest.fixture
    def source(self, client_options, zendesk_credentials):
        return ZendeskSource.from_credentials(zendesk_credentials, **client_options)

    def test_build_ticket(self, source, sample_zendesk_ticket):
        """Test ticket fields map to the canonical schema."""
        ticket = source.build_ticket(sample_zendesk_ticket)

        assert ticket.id == "zd-4521"
        assert ticket.status == TicketStatus.PENDING
        assert ticket.priority == TicketPriority.HIGH
        assert ticket.requester == "900"
        assert ticket.assignee == "901"
        assert ticket.tags == ["hardware", "printer"]

    def test_build_user_without_org(self, source):
        """Test users without an organization have no orgId."""
        customer = source.build_user({"id": 5, "name": None, "email": "x@y.com", "organization_id": None})

        assert customer.id == "zd-user-5"
        assert customer.name == "x@y.com"
        assert customer.org_id is None

    def test_create_ticket(self, source, fake_api):
        """Test create posts a ticket and returns the new id."""
        fake_api.route("POST", "/api/v2/tickets.json", {"ticket": {"id": 77}}, status=201)

        assert source.create_ticket("Broken", "It broke", "900") == "77"

        body = sent_json(fake_api.requests[0])
        assert body == {"ticket": {"subject": "Broken", "comment": {"body": "It broke"}, "requester_id": 900}}

    def test_note_is_private_comment(self, source, fake_api):
        """Test notes are non-public comments on the ticket."""
        fake_api.route("PUT", "/api/v2/tickets/4521.json", {"ticket": {"id": 4521}})

        source.add_note("4521", "internal only", author_id="901")

        comment = sent_json(fake_api.requests[0])["ticket"]["comment"]
        assert comment == {"body": "internal only", "public": False, "author_id": 901}

    def test_verify_connection(self, source, fake_api):
        """Test verification summarizes the account without paging."""
        fake_api.get("/api/v2/users/me.json", {"user": {"name": "Ana Agent"}})
        fake_api.get("/api/v2/tickets/count.json", {"count": {"value": 812}})

        assert source.verify_connection() == {"success": True, "user_name": "Ana Agent", "ticket_count": 812}

    def test_verify_connection_failure(self, source, fake_api):
        """Test verification reports failures instead of raising."""
        fake_api.get("/api/v2/users/me.json", {"error": "Couldn't authenticate you"}, status=401)

        result = source.verify_connection()

        assert result["success"] is False
        assert "authentication failed" in result["error"]


class TestKayakoSource:
    """Tests for Kayako builders and write-back."""

    @pytest.fixture
    def source(self, client_options):
        return KayakoSource.from_credentials(
            {"domain": "acme.kayako.com", "email": "agent@acme.com", "password": "pw"},
            **client_options,
        )

    def test_base_url(self):
        """Test bare domains get https and full URLs are kept."""
        assert KayakoSource.base_url_for({"domain": "acme.kayako.com"}) == "https://acme.kayako.com"
        assert KayakoSource.base_url_for({"domain": "http://localhost:8080/"}) == "http://localhost:8080"

    def test_build_case(self, source, sample_kayako_case):
        """Test free-text labels map by keyword."""
        ticket = source.build_case(sample_kayako_case)

        assert ticket.id == "ky-1"
        assert ticket.status == TicketStatus.PENDING
        assert ticket.priority == TicketPriority.HIGH
        assert ticket.assignee == "7"
        assert ticket.requester == "jo@example.com"
        assert ticket.tags == ["login", "sso"]

    def test_build_case_defaults(self, source):
        """Test a bare case still maps."""
        ticket = source.build_case({"id": 9})

        assert ticket.status == TicketStatus.OPEN
        assert ticket.requester == "unknown"
        assert ticket.assignee is None

    def test_agent_posts_are_notes(self, source):
        """Test posts written by agents or the API are notes."""
        assert source.build_post(1, {"id": 1, "source": "AGENT", "contents": "x"}).type == MessageType.NOTE
        assert source.build_post(1, {"id": 2, "source": "MAIL", "contents": "x"}).type == MessageType.REPLY

    def test_build_user_primary_email(self, source):
        """Test the primary identity email is preferred."""
        customer = source.build_user({
            "id": 3,
            "full_name": "Jo",
            "emails": [{"email": "old@x.com"}, {"email": "jo@x.com", "is_primary": True}],
            "organization": {"id": 5},
        })

        assert customer.email == "jo@x.com"
        assert customer.org_id == "ky-org-5"

    def test_update_wraps_references(self, source, fake_api):
        """Test assignee and tags are sent in Kayako's nested shapes."""
        fake_api.route("PATCH", "/api/v1/cases/1.json", {"data": {"id": 1}})

        source.update_ticket("1", {"assigned_agent": 7, "tags": ["vip"]})

        assert sent_json(fake_api.requests[0]) == {"assigned_agent": {"id": 7}, "tags": [{"name": "vip"}]}

    def test_create_ticket(self, source, fake_api):
        """Test create returns the new case id."""
        fake_api.route("POST", "/api/v1/cases.json", {"data": {"id": 55}}, status=201)

        assert source.create_ticket("Help", "Please", "jo@example.com") == "55"
        assert sent_json(fake_api.requests[0])["requester"] == {"email": "jo@example.com"}


class TestHelpScoutSource:
    """Tests for Help Scout builders and write-back."""

    @pytest.fixture
    def source(self, fake_api, client_options):
        fake_api.route("POST", "/v2/oauth2/token", {"access_token": "tok", "expires_in": 7200})
        return HelpScoutSource.from_credentials(
            {"app_id": "app", "app_secret": "secret", "mailbox_id": "12"},
            **client_options,
        )

    def test_build_conversation(self, source, sample_helpscout_conversation):
        """Test conversations map with custom fields by name."""
        ticket = source.build_conversation(sample_helpscout_conversation)

        assert ticket.id == "hs-3001"
        assert ticket.status == TicketStatus.OPEN
        assert ticket.requester == "buyer@example.com"
        assert ticket.tags == ["billing"]
        assert ticket.custom_fields == {"Order": "A-100"}
        assert ticket.updated_at == "2024-02-11T08:00:00Z"

    def test_create_reads_id_from_headers(self, source, fake_api):
        """Test the new conversation id comes from the 201 response headers."""
        fake_api.route(
            "POST", "/v2/conversations",
            status=201,
            headers={"Location": "https://api.helpscout.net/v2/conversations/991"},
        )

        created = source.create_ticket("Refund", "Please refund", "buyer@example.com")

        assert created == "991"
        body = sent_json(fake_api.calls("/v2/conversations", "POST")[0])
        assert body["mailboxId"] == 12
        assert body["threads"][0]["customer"] == {"email": "buyer@example.com"}

    def test_create_without_id_fails(self, source, fake_api):
        """Test a 201 with neither Resource-ID nor Location is an error."""
        fake_api.route("POST", "/v2/conversations", status=201)

        with pytest.raises(HelpdeskAPIError):
            source.create_ticket("Refund", "Please refund", "buyer@example.com")

    def test_requests_carry_oauth_token(self, source, fake_api):
        """Test API calls use the token from the token endpoint."""
        fake_api.route("POST", "/v2/conversations/3001/notes", status=201)

        source.add_note("3001", "checked", author_id="12")

        note = fake_api.calls("/v2/conversations/3001/notes", "POST")[0]
        assert note.headers["Authorization"] == "Bearer tok"
        assert sent_json(note) == {"text": "checked", "user": 12}

    def test_update_patches_each_field(self, source, fake_api):
        """Test one patch operation is sent per updated field."""
        fake_api.route("PATCH", "/v2/conversations/3001", status=204)

        source.update_ticket("3001", {"status": "closed", "subject": "Done"})

        patches = [sent_json(r) for r in fake_api.calls("/v2/conversations/3001", "PATCH")]
        assert patches == [
            {"op": "replace", "path": "/status", "value": "closed"},
            {"op": "replace", "path": "/subject", "value": "Done"},
        ]


class TestIntercomSource:
    """Tests for Intercom builders, hydration and write-back."""

    @pytest.fixture
    def source(self, client_options):
        return IntercomSource.from_credentials({"access_token": "ic-token"}, **client_options)

    def test_build_conversation(self, source, sample_intercom_conversation):
        """Test epoch dates, snoozed state and the body preview subject."""
        ticket = source.build_conversation(sample_intercom_conversation)

        assert ticket.id == "ic-c1"
        assert ticket.subject == "Hi, my invoice is wrong"
        assert ticket.status == TicketStatus.ON_HOLD
        assert ticket.priority == TicketPriority.HIGH
        assert ticket.requester == "u1"
        assert ticket.assignee == "a9"
        assert ticket.tags == ["billing"]
        assert ticket.created_at == "2024-01-01T00:00:00.000Z"

    def test_build_admin(self, source):
        """Test admins become customers under the admin kind."""
        admin = source.build_admin({"id": "a9", "name": "Sam", "email": "sam@shop.com"})

        assert admin.id == "ic-admin-a9"
        assert admin.external_id == "admin-a9"
        assert admin.name == "Sam"

    def test_hydration_includes_opening_message(self, source, fake_api, sample_intercom_conversation):
        """Test the source message comes first and body-less parts are dropped."""
        fake_api.get("/conversations/c1", {
            "id": "c1",
            "conversation_parts": {"conversation_parts": [
                {"id": "p1", "part_type": "comment", "body": "<p>Looking</p>", "author": {"id": "a9"}, "created_at": 1704067300},
                {"id": "p2", "part_type": "assignment", "body": None},
                {"id": "p3", "part_type": "note", "body": "refund ok", "author": {"id": "a9"}},
            ]},
        })
        exporter = CanonicalExporter(source, "unused")
        ticket = source.build_conversation(sample_intercom_conversation)

        results = exporter.hydrate_messages(sample_intercom_conversation, ticket)

        assert all(isinstance(r, Hydrated) for r in results)
        messages = [m for r in results for m in r.messages]
        assert [m.id for m in messages] == ["ic-msg-c1-source", "ic-msg-p1", "ic-msg-p3"]
        assert messages[2].type == MessageType.NOTE

    def test_version_header(self, source, fake_api):
        """Test the API version is pinned on every request."""
        fake_api.get("/me", {"app": {"name": "Acme"}})
        fake_api.get("/admins", {"admins": [{"id": "a9"}]})

        result = source.verify_connection()

        assert result == {"success": True, "app_name": "Acme", "admin_count": 1}
        assert fake_api.requests[0].headers["Intercom-Version"] == "2.11"

    def test_reply_requires_admin(self, source):
        """Test admin replies refuse to run without an admin id."""
        with pytest.raises(ValueError):
            source.reply("c1", "hello")

    def test_note(self, source, fake_api):
        """Test notes are admin replies of type note."""
        fake_api.route("POST", "/conversations/c1/reply", {"id": "c1"})

        source.add_note("c1", "internal", author_id="a9")

        assert sent_json(fake_api.requests[0]) == {
            "message_type": "note", "type": "admin", "admin_id": "a9", "body": "internal",
        }


class TestGrooveSource:
    """Tests for Groove builders, throttling and write-back."""

    @pytest.fixture
    def source(self, client_options):
        return GrooveSource.from_credentials({"api_token": "gv-token"}, **client_options)

    def test_build_ticket(self, source, sample_groove_ticket):
        """Test ids come from the ticket number and people from link hrefs."""
        ticket = source.build_ticket(sample_groove_ticket)

        assert ticket.id == "gv-88"
        assert ticket.status == TicketStatus.OPEN
        assert ticket.priority == TicketPriority.NORMAL
        assert ticket.requester == "jo@example.com"
        assert ticket.assignee == "sam@shop.com"

    def test_build_agent_keyed_by_email(self, source):
        """Test agents are keyed by email under the agent kind."""
        agent = source.build_agent({"email": "sam@shop.com", "first_name": "Sam", "last_name": "Lee"})

        assert agent.id == "gv-agent-sam@shop.com"
        assert agent.email == "sam@shop.com"

    def test_message_without_href_is_unmappable(self, source):
        """Test messages with no href are rejected rather than given a made-up id."""
        with pytest.raises(ValueError):
            source.build_message(88, {"body": "hello"})

    def test_message_ids_from_href(self, source):
        """Test message ids and authors are taken from links."""
        message = source.build_message(88, {
            "body": "<p>Thanks</p>",
            "plain_text_body": "Thanks",
            "note": True,
            "links": {
                "self": {"href": "https://api.groovehq.com/v1/messages/m-1"},
                "author": {"href": "https://api.groovehq.com/v1/agents/sam@shop.com"},
            },
        })

        assert message.id == "gv-msg-m-1"
        assert message.ticket_id == "gv-88"
        assert message.author == "sam@shop.com"
        assert message.body == "Thanks"
        assert message.body_html == "<p>Thanks</p>"
        assert message.type == MessageType.NOTE

    def test_customers_keyed_by_email(self, source):
        """Test customers use their email as identity and company as org."""
        customer = source.build_customer({"email": "jo@example.com", "name": "Jo", "company_name": "Acme"})

        assert customer.id == "gv-user-jo@example.com"
        assert customer.org_id == "gv-org-Acme"
        assert source.organization_name({"company_name": "Acme"}) == "Acme"

    def test_pre_request_delay(self, source, fake_api, sleeps):
        """Test every request waits 2.5 seconds first."""
        fake_api.get("/v1/agents", {"agents": [{"email": "sam@shop.com"}]})

        assert source.verify_connection() == {"success": True, "agent_count": 1}
        assert sleeps.calls == [2.5]

    def test_503_backs_off_at_least_a_minute(self, source, fake_api, sleeps):
        """Test 503 is treated as throttling with a 60 second floor."""
        fake_api.sequence("GET", "/v1/agents", [
            httpx.Response(503, headers={"Retry-After": "5"}),
            httpx.Response(200, json={"agents": []}),
        ])

        source.verify_connection()

        assert sleeps.calls == [2.5, 60.0, 2.5]

    def test_throttling_exhausted(self, client_options, fake_api):
        """Test persistent throttling surfaces as RateLimitExhaustedError."""
        fake_api.get("/v1/tickets", {}, status=429)
        source = GrooveSource.from_credentials({"api_token": "gv-token"}, max_retries=1, **client_options)

        with pytest.raises(RateLimitExhaustedError):
            source.fetch("/tickets?page=1")

    def test_update_uses_separate_endpoints(self, source, fake_api):
        """Test state, assignee and tags are each sent to their own endpoint."""
        for path in ("/v1/tickets/88/state", "/v1/tickets/88/assignee", "/v1/tickets/88/tags"):
            fake_api.route("PUT", path, status=204)

        source.update_ticket("88", {"state": "closed", "assignee": "sam@shop.com", "tags": ["vip"]})

        assert [r.url.path for r in fake_api.requests] == [
            "/v1/tickets/88/state",
            "/v1/tickets/88/assignee",
            "/v1/tickets/88/tags",
        ]
        assert sent_json(fake_api.requests[2]) == ["vip"]

    def test_create_returns_number(self, source, fake_api):
        """Test create returns the ticket number."""
        fake_api.route("POST", "/v1/tickets", {"ticket": {"number": 89}}, status=201)

        assert source.create_ticket("Hi", "Body", "jo@example.com") == "89"
