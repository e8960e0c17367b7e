"""
Unit tests for the roster API client.
"""

import json
from datetime import datetime, timezone

import httpx
import pytest
import pytest_asyncio

from service_calendar.app.adapters.roster_api import RosterApiClient
from service_calendar.app.models import CreateShiftData, Shift, ShiftInstruction, UserProfile
from shared.circuit_breaker import CircuitBreaker, CircuitBreakerState
from shared.retry import RetryConfig
from shared.test_helpers import RosterApiStub, RosterDataFactory


def client_for(handler, **kwargs) -> RosterApiClient:
    kwargs.setdefault("retry_config", RetryConfig(max_attempts=3, base_delay=0, jitter=False))
    return RosterApiClient("http://roster.test", transport=httpx.MockTransport(handler), **kwargs)


class TestRosterApiClient:
    """Test cases for RosterApiClient."""

    @pytest.fixture
    def stub(self):
        return RosterApiStub.with_shifts(RosterDataFactory.create_month_of_shifts(count=4))

    @pytest_asyncio.fixture
    async def api(self, stub):
        client = RosterApiClient(
            "http://roster.test/",
            transport=stub.transport,
            retry_config=RetryConfig(max_attempts=2, base_delay=0, jitter=False),
        )
        yield client
        await client.close()

    @pytest.mark.asyncio
    async def test_list_shifts_sends_range_query(self, api, stub):
        response = await api.shifts.list(start_date="2024-06-01", end_date="2024-06-04", include_relations=True)

        assert response.success is True
        assert response.count == 2
        assert all(isinstance(s, Shift) for s in response.data)

        request = stub.calls("GET", "/api/shifts")[0]
        assert request.params == {
            "startDate": "2024-06-01",
            "endDate": "2024-06-04",
            "includeRelations": "true",
        }

    @pytest.mark.asyncio
    async def test_create_sends_camel_case_payload(self, api, stub):
        data = CreateShiftData(
            title="Deep clean",
            start_time=datetime(2024, 6, 10, 9, tzinfo=timezone.utc),
            end_time=datetime(2024, 6, 10, 13, tzinfo=timezone.utc),
            staff_ids=[11],
        )

        response = await api.shifts.create(data)

        assert response.success is True
        assert response.data.title == "Deep clean"
        body = stub.calls("POST", "/api/shifts")[0].body
        assert body["startTime"].startswith("2024-06-10T09:00:00")
        assert body["staffIds"] == [11]
        assert body["theme"] == "Primary"

    @pytest.mark.asyncio
    async def test_update_converts_snake_case_dict_keys(self, api, stub):
        response = await api.shifts.update(1, {"title": "Renamed", "is_published": False})

        assert response.success is True
        assert stub.calls("PUT", "/api/shifts/1")[0].body == {"title": "Renamed", "isPublished": False}

    @pytest.mark.asyncio
    async def test_clients_filter_names(self, api, stub):
        await api.clients.list(is_active=True, search="acme")
        assert stub.calls("GET", "/api/clients")[0].params == {"isActive": "true", "search": "acme"}

    @pytest.mark.asyncio
    async def test_action_endpoints(self, api, stub):
        instruction = await api.shifts.add_instruction(1, "Bring ladder", "ok")
        assert isinstance(instruction.data, ShiftInstruction)
        assert stub.calls("POST", "/api/shifts/1/instructions")[0].body == {
            "instructionText": "Bring ladder",
            "instructionType": "ok",
        }

        cancelled = await api.shifts.cancel(1)
        assert cancelled.success is True
        assert stub.shifts[1]["theme"] == "Danger"

    @pytest.mark.asyncio
    async def test_delete(self, api, stub):
        response = await api.shifts.delete(2)
        assert response.success is True
        assert response.message == "Shift deleted successfully"
        assert 2 not in stub.shifts

    @pytest.mark.asyncio
    async def test_user_profile(self, api):
        response = await api.users.get_profile(1)
        assert isinstance(response.data, UserProfile)
        assert not hasattr(response.data, "password")

        updated = await api.users.update_profile(1, {"city": "Perth"})
        assert updated.data.city == "Perth"

    @pytest.mark.asyncio
    async def test_not_found_is_normalized(self, api):
        response = await api.shifts.get(404)

        assert response.success is False
        assert response.status_code == 404
        assert response.error == "Shift not found"

    @pytest.mark.asyncio
    async def test_success_false_body_is_failure(self):
        async def handler(request):
            return httpx.Response(200, json={"success": False, "error": "Rejected"})

        response = await client_for(handler).shifts.list()
        assert response.success is False
        assert response.error == "Rejected"


class TestErrorExtraction:
    """Error messages are taken from the response body when present."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body,expected", [
        ({"message": "Title is required"}, "Title is required"),
        ({"error": "Shift overlaps"}, "Shift overlaps"),
        ({"error": {"message": "Nested failure"}}, "Nested failure"),
        ({}, "HTTP 400: Bad Request"),
    ])
    async def test_error_message_sources(self, body, expected):
        async def handler(request):
            return httpx.Response(400, json=body)

        response = await client_for(handler).shifts.create({"title": "x"})

        assert response.success is False
        assert response.error == expected
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_plain_text_error(self):
        async def handler(request):
            return httpx.Response(503, text="upstream unavailable")

        response = await client_for(handler).teams.list()
        assert response.error == "upstream unavailable"

    @pytest.mark.asyncio
    async def test_malformed_payload_is_failure(self):
        async def handler(request):
            return httpx.Response(200, json={"success": True, "data": [{"id": "not-a-number"}]})

        response = await client_for(handler).shifts.list()
        assert response.success is False
        assert "Malformed response" in response.error


class TestRelationEndpoints:
    """Shift relation and location usage endpoints."""

    @pytest.fixture
    def seen(self):
        return []

    @pytest.fixture
    def api(self, seen):
        async def handler(request):
            body = json.loads(request.content) if request.content else None
            seen.append((request.method, request.url.path, body))
            if request.url.path.endswith("/use"):
                return httpx.Response(200, json={
                    "success": True,
                    "data": {"id": 5, "unit": "Level 3", "name": "Harbour Tower",
                             "lastUsedAt": "2024-06-10T09:00:00Z"},
                })
            return httpx.Response(200, json={"success": True, "message": "Updated"})

        return client_for(handler)

    @pytest.mark.asyncio
    async def test_shift_relation_updates(self, api, seen):
        await api.shifts.update_location(7, 5)
        await api.shifts.update_client(7, None)
        response = await api.shifts.remove_team(7, 3)

        assert response.success is True
        assert response.message == "Updated"
        assert seen == [
            ("PUT", "/api/shifts/7/location", {"locationId": 5}),
            ("PUT", "/api/shifts/7/client", {"clientId": None}),
            ("DELETE", "/api/shifts/7/teams/3", None),
        ]

    @pytest.mark.asyncio
    async def test_mark_location_as_used(self, api, seen):
        response = await api.locations.mark_as_used(5)

        assert seen == [("PUT", "/api/locations/5/use", None)]
        assert response.data.name == "Harbour Tower"
        assert response.data.last_used_at.day == 10


class TestTransportFailures:
    """Transport failures never raise out of the client."""

    @pytest.mark.asyncio
    async def test_get_is_retried_then_succeeds(self):
        attempts = []

        async def handler(request):
            attempts.append(request)
            if len(attempts) < 3:
                raise httpx.ConnectError("connection refused", request=request)
            return httpx.Response(200, json={"success": True, "data": [], "count": 0})

        response = await client_for(handler).teams.list()

        assert response.success is True
        assert len(attempts) == 3

    @pytest.mark.asyncio
    async def test_exhausted_retries_become_failure(self):
        async def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        response = await client_for(handler).teams.list()

        assert response.success is False
        assert "connection refused" in response.error

    @pytest.mark.asyncio
    async def test_writes_are_not_retried(self):
        attempts = []

        async def handler(request):
            attempts.append(request)
            raise httpx.ConnectError("connection refused", request=request)

        response = await client_for(handler).shifts.delete(1)

        assert response.success is False
        assert len(attempts) == 1

    @pytest.mark.asyncio
    async def test_circuit_breaker_opens_and_blocks(self):
        attempts = []

        async def handler(request):
            attempts.append(request)
            raise httpx.ConnectError("connection refused", request=request)

        breaker = CircuitBreaker(failure_threshold=2, recovery_timeout=60, name="roster_api_test")
        api = client_for(handler, circuit_breaker=breaker,
                         retry_config=RetryConfig(max_attempts=1, base_delay=0, jitter=False))

        await api.shifts.delete(1)
        await api.shifts.delete(1)
        response = await api.shifts.delete(1)

        assert breaker.state == CircuitBreakerState.OPEN
        assert len(attempts) == 2
        assert response.success is False
        assert "OPEN" in response.error
