"""
Unit tests for the Calendar main service.
"""

import pytest
from fastapi.testclient import TestClient

from service_calendar.app.adapters.roster_api import RosterApiClient
from service_calendar.app.caching.kv_store import InMemoryKeyValueStore
from service_calendar.app.main import CalendarService
from shared.retry import RetryConfig
from shared.test_helpers import RosterApiStub, RosterDataFactory, test_environment

JUNE = {"start": "2024-06-01T00:00:00Z", "end": "2024-06-30T23:59:59Z"}


class TestCalendarService:
    """Test cases for CalendarService."""

    @pytest.fixture(autouse=True)
    def environment(self, monkeypatch):
        for key, value in test_environment.get_mock_config().items():
            monkeypatch.setenv(key, value)
        monkeypatch.setenv("ROSTER_DEBOUNCE_SECONDS", "0.01")

    @pytest.fixture
    def stub(self):
        return RosterApiStub.with_shifts(RosterDataFactory.create_month_of_shifts(count=10))

    @pytest.fixture
    def kv(self):
        return InMemoryKeyValueStore()

    @pytest.fixture
    def service(self, stub, kv):
        api = RosterApiClient(
            "http://roster.test",
            transport=stub.transport,
            retry_config=RetryConfig(max_attempts=1),
        )
        return CalendarService(api_client=api, kv_store=kv)

    @pytest.fixture
    def client(self, service):
        with TestClient(service.app) as client:
            yield client

    @pytest.fixture
    def session(self):
        return {"X-Session-ID": "session-1"}

    def test_root_endpoint(self, client):
        response = client.get("/")

        assert response.status_code == 200
        data = response.json()
        assert data["service"] == "calendar"
        assert data["version"] == "1.0.0"

    def test_health_check(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["dependencies"] == {"cache": "healthy", "roster_api": "closed"}

    def test_health_check_without_cache_store(self, stub):
        api = RosterApiClient("http://roster.test", transport=stub.transport)
        service = CalendarService(api_client=api)

        with TestClient(service.app) as client:
            data = client.get("/health").json()

        assert data["dependencies"]["cache"] == "disabled"

    def test_metrics_endpoint(self, client):
        client.get("/")
        response = client.get("/metrics")

        assert response.status_code == 200
        assert "http_requests_total" in response.text

    def test_request_id_is_echoed(self, client):
        response = client.get("/", headers={"X-Request-ID": "req-42"})
        assert response.headers["X-Request-ID"] == "req-42"

    def test_session_header_required(self, client):
        response = client.get("/api/v1/calendar/events", params=JUNE)

        assert response.status_code == 422
        assert response.json()["code"] == "VALIDATION_ERROR"

    def test_events_are_cached_per_session(self, client, stub, session):
        first = client.get("/api/v1/calendar/events", params=JUNE, headers=session)
        second = client.get("/api/v1/calendar/events", params=JUNE, headers=session)

        assert first.status_code == 200
        assert first.json()["count"] == 10
        assert first.json()["error"] is None
        assert second.json()["count"] == 10
        assert len(stub.calls("GET", "/api/shifts")) == 1

        event = first.json()["events"][0]
        assert event["id"] == "1"
        assert "extendedProps" in event

        client.get("/api/v1/calendar/events", params=JUNE, headers={"X-Session-ID": "session-2"})
        assert len(stub.calls("GET", "/api/shifts")) == 2

    def test_events_report_load_errors(self, client, stub, session):
        stub.fail("GET", "/api/shifts", 500, {"success": False, "message": "Database unavailable"})

        response = client.get("/api/v1/calendar/events", params=JUNE, headers=session)

        assert response.status_code == 200
        assert response.json()["events"] == []
        assert response.json()["error"] == "Database unavailable"

    def test_debounced_range_load(self, client, stub, session):
        response = client.post(
            "/api/v1/calendar/range",
            json={"start": "2024-06-03T00:00:00Z", "end": "2024-06-03T23:00:00Z", "exact": True},
            headers=session,
        )

        assert response.status_code == 200
        assert response.json() == {"loaded": True, "error": None}
        assert stub.calls("GET", "/api/shifts")[0].params["startDate"] == "2024-06-03"

    def test_reference_data(self, client, stub, session):
        response = client.get("/api/v1/calendar/reference", headers=session)
        client.get("/api/v1/calendar/reference", headers=session)

        data = response.json()
        assert [c["name"] for c in data["clients"]] == ["Acme Pty Ltd", "Globex"]
        assert data["locations"][0]["formattedAddress"] == "1 Harbour St, Sydney NSW"
        assert len(data["teams"]) == 2
        assert len(stub.calls("GET", "/api/clients")) == 1

    def test_refresh(self, client, stub, session):
        client.get("/api/v1/calendar/events", params=JUNE, headers=session)

        response = client.post("/api/v1/calendar/refresh", headers=session)

        assert response.status_code == 200
        assert response.json()["count"] == 10
        assert len(stub.calls("GET", "/api/shifts")) == 2

    def test_create_shift(self, client, stub, session):
        client.get("/api/v1/calendar/events", params=JUNE, headers=session)

        response = client.post(
            "/api/v1/calendar/shifts",
            json={
                "title": "Window clean",
                "startTime": "2024-06-15T09:00:00Z",
                "endTime": "2024-06-15T12:00:00Z",
                "staffIds": [21],
            },
            headers=session,
        )

        assert response.status_code == 201
        created = response.json()
        assert created["title"] == "Window clean"

        events = client.get("/api/v1/calendar/events", params=JUNE, headers=session).json()
        assert events["count"] == 11
        assert len(stub.calls("GET", "/api/shifts")) == 2

    def test_create_shift_rejects_bad_times(self, client, session):
        response = client.post(
            "/api/v1/calendar/shifts",
            json={"title": "Backwards", "startTime": "2024-06-15T12:00:00Z", "endTime": "2024-06-15T09:00:00Z"},
            headers=session,
        )
        assert response.status_code == 422

    def test_update_shift(self, client, session):
        client.get("/api/v1/calendar/events", params=JUNE, headers=session)

        response = client.put("/api/v1/calendar/shifts/1", json={"title": "Renamed"}, headers=session)

        assert response.status_code == 200
        assert response.json()["title"] == "Renamed"

    def test_remote_failure_maps_to_bad_gateway(self, client, session):
        response = client.put("/api/v1/calendar/shifts/999", json={"title": "Ghost"}, headers=session)

        assert response.status_code == 502
        body = response.json()
        assert body["code"] == "REMOTE_API_ERROR"
        assert body["message"] == "Shift not found"
        assert body["details"]["operation"] == "update"

    def test_delete_shift(self, client, stub, session):
        response = client.delete("/api/v1/calendar/shifts/2", headers=session)

        assert response.status_code == 200
        assert response.json() == {"id": 2, "deleted": True}
        assert 2 not in stub.shifts

    def test_cancel_shift(self, client, session):
        client.get("/api/v1/calendar/events", params=JUNE, headers=session)

        response = client.post("/api/v1/calendar/shifts/1/cancel", headers=session)

        assert response.status_code == 200
        data = response.json()
        assert data["cancelled"] is True
        assert data["shift"]["theme"] == "Danger"
        assert data["shift"]["staff"][0]["name"] == "Cover"

    def test_instructions_and_messages(self, client, session):
        client.get("/api/v1/calendar/events", params=JUNE, headers=session)

        instruction = client.post(
            "/api/v1/calendar/shifts/1/instructions",
            json={"instruction_text": "Lock the side door", "instruction_type": "yes/no"},
            headers=session,
        )
        message = client.post(
            "/api/v1/calendar/shifts/1/messages",
            json={"message_text": "Running late", "created_by": 21},
            headers=session,
        )

        assert instruction.status_code == 201
        assert instruction.json()["instructionType"] == "yes/no"
        assert message.status_code == 201
        assert message.json()["createdBy"] == 21

    def test_close_session(self, client, service, session):
        client.get("/api/v1/calendar/events", params=JUNE, headers=session)
        assert "session-1" in service.sessions

        first = client.delete("/api/v1/calendar/session", headers=session)
        second = client.delete("/api/v1/calendar/session", headers=session)

        assert first.json() == {"closed": True}
        assert second.json() == {"closed": False}

    def test_user_lookup_is_cached(self, client, stub, kv):
        first = client.get("/api/v1/users/1")
        second = client.get("/api/v1/users/1")

        assert first.status_code == 200
        assert first.json()["cached"] is False
        assert second.json()["cached"] is True
        assert second.json()["data"]["email"] == "user1@example.com"
        assert "password" not in second.json()["data"]
        assert len(stub.calls("GET", "/api/users/1")) == 1

    def test_user_not_found(self, client):
        response = client.get("/api/v1/users/77")

        assert response.status_code == 404
        assert response.json()["code"] == "NOT_FOUND"

    def test_profile_update_invalidates_cache(self, client, stub):
        client.get("/api/v1/users/1")

        response = client.put("/api/v1/users/1/profile", json={"city": "Perth"})
        after = client.get("/api/v1/users/1")

        assert response.status_code == 200
        assert response.json()["data"]["city"] == "Perth"
        assert after.json()["cached"] is False
        assert after.json()["data"]["city"] == "Perth"

    def test_circuit_breaker_states(self, client, service):
        response = client.get("/api/v1/circuit-breakers")

        assert response.status_code == 200
        assert response.json()["roster_api"]["state"] == "closed"
