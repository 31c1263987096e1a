"""
Unit tests for audit sinks.

The REST sink is exercised against httpx.MockTransport.
"""

import json
from datetime import datetime, timedelta, timezone

import httpx
import pytest
from eduguard.audit.sinks import InMemoryAuditSink, RestAuditSink, create_sink
from eduguard.core.config import Config
from eduguard.core.exceptions import AuditSinkError, ConfigurationError
from eduguard.models.events import AuditAction, AuditEvent, AuditResource, ResourceType
from eduguard.models.requests import AuditLogFilter


BASE_TIME = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


def make_record(user_id="u1", action=AuditAction.DOCUMENT_VIEW, success=True, minutes=0, **details):
    event = AuditEvent(
        user_id=user_id,
        action=action,
        resource=AuditResource(type=ResourceType.DOCUMENT, name="Syllabus"),
        resource_id="doc-1",
        success=success,
        error_message=None if success else "denied",
        details=details,
        timestamp=BASE_TIME + timedelta(minutes=minutes)
    )
    return event.to_record()


class TestInMemoryAuditSink:
    """Tests for InMemoryAuditSink."""

    @pytest.fixture
    def sink(self):
        sink = InMemoryAuditSink()
        sink.insert([
            make_record("u1", minutes=0),
            make_record("u2", AuditAction.DOCUMENT_DELETE, success=False, minutes=1),
            make_record("u1", AuditAction.DOCUMENT_DELETE, minutes=2),
        ])
        return sink

    def test_newest_first(self, sink):
        """Test that select orders by created_at descending."""
        rows = sink.select(AuditLogFilter())
        assert [r["created_at"] for r in rows] == sorted((r["created_at"] for r in rows), reverse=True)
        assert rows[0]["user_id"] == "u1" and rows[0]["action"] == "document_delete"

    def test_filters_are_conjunctive(self, sink):
        """Test that every set predicate must match."""
        rows = sink.select(AuditLogFilter(user_id="u1", action=AuditAction.DOCUMENT_DELETE))
        assert len(rows) == 1

        assert len(sink.select(AuditLogFilter(success=False))) == 1

    def test_date_range(self, sink):
        """Test inclusive date bounds."""
        rows = sink.select(AuditLogFilter(
            date_from=BASE_TIME + timedelta(minutes=1),
            date_to=BASE_TIME + timedelta(minutes=2)
        ))
        assert len(rows) == 2

    def test_paging(self, sink):
        """Test limit and offset."""
        page = sink.select(AuditLogFilter(limit=1, offset=1))
        assert len(page) == 1
        assert page[0]["user_id"] == "u2"

    def test_returns_copies(self, sink):
        """Test that select results do not alias stored records."""
        sink.select(AuditLogFilter())[0]["user_id"] = "changed"
        assert "changed" not in {r["user_id"] for r in sink.records}


class TestRestAuditSink:
    """Tests for RestAuditSink against a mock transport."""

    @staticmethod
    def make_sink(handler, api_key="secret-key"):
        return RestAuditSink(
            "https://db.example.org/",
            api_key=api_key,
            transport=httpx.MockTransport(handler)
        )

    def test_insert_posts_batch(self):
        """Test that insert POSTs all records in one request."""
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(201)

        sink = self.make_sink(handler)
        sink.insert([make_record("u1", page=3), make_record("u2")])

        [request] = seen
        assert request.method == "POST"
        assert str(request.url) == "https://db.example.org/rest/v1/audit_logs"
        assert request.headers["apikey"] == "secret-key"
        assert request.headers["authorization"] == "Bearer secret-key"
        assert request.headers["prefer"] == "return=minimal"

        body = json.loads(request.content)
        assert [row["user_id"] for row in body] == ["u1", "u2"]
        assert json.loads(body[0]["details"]) == {"page": 3}

    def test_insert_empty_batch_is_noop(self):
        """Test that no request is made for an empty batch."""
        seen = []
        sink = self.make_sink(lambda request: seen.append(request) or httpx.Response(201))
        sink.insert([])
        assert seen == []

    def test_insert_error_status(self):
        """Test that a rejected insert raises AuditSinkError with the status."""
        sink = self.make_sink(lambda request: httpx.Response(500, text="database down"))

        with pytest.raises(AuditSinkError) as exc_info:
            sink.insert([make_record()])

        assert exc_info.value.status_code == 500
        assert exc_info.value.details["response_body"] == "database down"

    def test_insert_transport_error(self):
        """Test that connection errors become AuditSinkError."""
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(AuditSinkError):
            self.make_sink(handler).insert([make_record()])

    def test_select_builds_query(self):
        """Test the filter operators, ordering and paging parameters."""
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json=[dict(make_record("u1"), details='{"page": 3}')])

        sink = self.make_sink(handler)
        rows = sink.select(AuditLogFilter(
            user_id="u1",
            action=AuditAction.DOCUMENT_VIEW,
            success=True,
            date_from=BASE_TIME,
            date_to=BASE_TIME + timedelta(days=1),
            limit=20,
            offset=40
        ))

        params = seen[0].url.params
        assert params["user_id"] == "eq.u1"
        assert params["action"] == "eq.document_view"
        assert params["success"] == "eq.true"
        assert params.get_list("created_at") == [
            f"gte.{BASE_TIME.isoformat()}",
            f"lte.{(BASE_TIME + timedelta(days=1)).isoformat()}",
        ]
        assert params["order"] == "created_at.desc"
        assert params["limit"] == "20"
        assert params["offset"] == "40"

        assert rows[0]["details"] == {"page": 3}

    def test_select_error_status(self):
        """Test that a failed read raises AuditSinkError."""
        sink = self.make_sink(lambda request: httpx.Response(503))
        with pytest.raises(AuditSinkError):
            sink.select(AuditLogFilter())

    def test_select_invalid_json(self):
        """Test that a non-JSON body raises AuditSinkError."""
        sink = self.make_sink(lambda request: httpx.Response(200, text="<html>"))
        with pytest.raises(AuditSinkError):
            sink.select(AuditLogFilter())

    def test_requires_base_url(self):
        """Test that a missing base URL is a configuration error."""
        with pytest.raises(ConfigurationError):
            RestAuditSink("")

    def test_no_api_key_headers(self):
        """Test that auth headers are omitted without a key."""
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(201)

        self.make_sink(handler, api_key=None).insert([make_record()])
        assert "apikey" not in seen[0].headers
        assert "authorization" not in seen[0].headers


class TestCreateSink:
    """Tests for create_sink."""

    @pytest.fixture(autouse=True)
    def clean_env(self, monkeypatch):
        monkeypatch.delenv("EDUGUARD_SINK_URL", raising=False)
        monkeypatch.delenv("EDUGUARD_SINK_KEY", raising=False)

    @staticmethod
    def write_config(tmp_path, text):
        path = tmp_path / "config.yaml"
        path.write_text(text)
        return Config(str(path))

    def test_default_is_memory(self, tmp_path):
        """Test that the default configuration yields an in-memory sink."""
        config_obj = self.write_config(tmp_path, "audit_sink:\n  type: memory\n")
        assert isinstance(create_sink(config_obj), InMemoryAuditSink)

    def test_rest_from_file(self, tmp_path):
        """Test a REST sink configured in YAML."""
        config_obj = self.write_config(
            tmp_path,
            "audit_sink:\n  type: rest\n  base_url: https://db.example.org\n  table: audit_events\n"
        )
        sink = create_sink(config_obj)
        assert isinstance(sink, RestAuditSink)
        assert sink.endpoint == "https://db.example.org/rest/v1/audit_events"
        sink.close()

    def test_env_url_switches_to_rest(self, tmp_path, monkeypatch):
        """Test that EDUGUARD_SINK_URL selects the REST sink."""
        monkeypatch.setenv("EDUGUARD_SINK_URL", "https://env.example.org")
        config_obj = self.write_config(tmp_path, "audit_sink:\n  type: memory\n")

        sink = create_sink(config_obj)
        assert isinstance(sink, RestAuditSink)
        assert sink.base_url == "https://env.example.org"
        sink.close()

    def test_unknown_type(self, tmp_path):
        """Test that an unknown sink type is rejected."""
        config_obj = self.write_config(tmp_path, "audit_sink:\n  type: kafka\n")
        with pytest.raises(ConfigurationError):
            create_sink(config_obj)
