"""
Roster API client for the Calendar Service.
"""

import json
from typing import Any, Dict, Optional, Type, Union

import httpx
from pydantic import BaseModel
from pydantic import ValidationError as ModelValidationError
from pydantic.alias_generators import to_camel
from pydantic_core import to_jsonable_python

from shared.circuit_breaker import CircuitBreaker, CircuitBreakerOpenException
from shared.logging import get_logger
from shared.retry import RetryConfig, RetryError, call_with_retry

from ..models import (
    ApiResponse,
    Client,
    Location,
    Shift,
    ShiftInstruction,
    ShiftMessage,
    Staff,
    Team,
    UserProfile,
)

Payload = Union[BaseModel, Dict[str, Any]]


def _query_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _wire_key(key: str) -> str:
    return to_camel(key) if "_" in key else key


def _payload(data: Payload) -> Any:
    if isinstance(data, BaseModel):
        return data.model_dump(mode="json", by_alias=True)
    return to_jsonable_python({_wire_key(k): v for k, v in data.items()})


class RosterApiClient:
    """Client for the remote roster REST API.

    Every call resolves to an ``ApiResponse``; transport failures and non-2xx
    statuses come back as ``success=False`` with the server's message.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
        retry_config: Optional[RetryConfig] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.logger = get_logger("calendar.roster_api")
        self.circuit_breaker = circuit_breaker or CircuitBreaker(
            failure_threshold=5,
            recovery_timeout=30.0,
            name="roster_api",
        )
        self.retry_config = retry_config or RetryConfig(max_attempts=3, base_delay=0.5, max_delay=5.0)
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            transport=transport,
            headers={"Content-Type": "application/json", **(headers or {})},
        )

        self.shifts = ShiftsApi(self)
        self.clients = ClientsApi(self)
        self.locations = LocationsApi(self)
        self.teams = TeamsApi(self)
        self.staff = StaffApi(self)
        self.roster = RosterEntriesApi(self)
        self.users = UsersApi(self)

    async def close(self):
        await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        payload: Optional[Payload] = None,
    ) -> ApiResponse:
        """Issue a request and normalize the outcome."""
        query = {k: _query_value(v) for k, v in (params or {}).items() if v is not None}
        body = _payload(payload) if payload is not None else None

        try:
            if method == "GET":
                response = await call_with_retry(
                    self._send,
                    method,
                    path,
                    query,
                    body,
                    exceptions=(httpx.TransportError,),
                    config=self.retry_config,
                )
            else:
                response = await self._send(method, path, query, body)
        except RetryError as exc:
            return self._transport_failure(method, path, exc.last_exception)
        except (httpx.HTTPError, CircuitBreakerOpenException) as exc:
            return self._transport_failure(method, path, exc)

        return self._to_api_response(method, path, response)

    async def _send(self, method: str, path: str, query: Dict[str, str], body: Any) -> httpx.Response:
        return await self.circuit_breaker.call(
            self._client.request, method, path, params=query or None, json=body
        )

    def _transport_failure(self, method: str, path: str, exc: BaseException) -> ApiResponse:
        message = str(exc) or exc.__class__.__name__
        self.logger.error("Roster API unreachable", method=method, path=path, error=message)
        return ApiResponse.failure(message)

    def _to_api_response(self, method: str, path: str, response: httpx.Response) -> ApiResponse:
        if not response.is_success:
            error = self._extract_error(response)
            self.logger.warning(
                "Roster API request failed",
                method=method,
                path=path,
                status_code=response.status_code,
                error=error,
            )
            return ApiResponse.failure(error, status_code=response.status_code)

        if not response.content:
            return ApiResponse(success=True, status_code=response.status_code)

        try:
            body = response.json()
        except ValueError:
            return ApiResponse(success=True, data=response.text, status_code=response.status_code)

        if not isinstance(body, dict):
            return ApiResponse(success=True, data=body, status_code=response.status_code)

        if body.get("success") is False:
            return ApiResponse.failure(
                body.get("error") or body.get("message") or "Request failed",
                status_code=response.status_code,
            )

        return ApiResponse(
            success=True,
            data=body.get("data", body),
            message=body.get("message"),
            count=body.get("count"),
            status_code=response.status_code,
        )

    @staticmethod
    def _extract_error(response: httpx.Response) -> str:
        default = f"HTTP {response.status_code}: {response.reason_phrase}"
        try:
            body = response.json()
        except ValueError:
            return response.text or default

        if not isinstance(body, dict):
            return default
        if body.get("message"):
            return str(body["message"])
        error = body.get("error")
        if isinstance(error, str) and error:
            return error
        if isinstance(error, dict):
            return str(error.get("message") or json.dumps(error))
        return default


class ResourceApi:
    """CRUD endpoints for one roster resource."""

    path = ""
    model: Optional[Type[BaseModel]] = None

    def __init__(self, client: RosterApiClient):
        self._client = client

    def _parse(self, response: ApiResponse, model: Optional[Type[BaseModel]] = None) -> ApiResponse:
        model = model or self.model
        if not response.success or model is None or response.data is None:
            return response
        try:
            if isinstance(response.data, list):
                parsed = [model.model_validate(item) for item in response.data]
            else:
                parsed = model.model_validate(response.data)
        except ModelValidationError as exc:
            self._client.logger.error("Malformed roster API payload", path=self.path, error=str(exc))
            return ApiResponse.failure(f"Malformed response from {self.path}", status_code=response.status_code)
        return response.model_copy(update={"data": parsed})

    async def list(self, **filters) -> ApiResponse:
        params = {_wire_key(k): v for k, v in filters.items()}
        return self._parse(await self._client.request("GET", self.path, params=params))

    async def get(self, entity_id: Union[int, str]) -> ApiResponse:
        return self._parse(await self._client.request("GET", f"{self.path}/{entity_id}"))

    async def create(self, data: Payload) -> ApiResponse:
        return self._parse(await self._client.request("POST", self.path, payload=data))

    async def update(self, entity_id: Union[int, str], data: Payload) -> ApiResponse:
        return self._parse(await self._client.request("PUT", f"{self.path}/{entity_id}", payload=data))

    async def delete(self, entity_id: Union[int, str]) -> ApiResponse:
        return await self._client.request("DELETE", f"{self.path}/{entity_id}")


class ShiftsApi(ResourceApi):
    path = "/api/shifts"
    model = Shift

    async def list(
        self,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
        include_relations: Optional[bool] = None,
    ) -> ApiResponse:
        return await super().list(
            start_date=start_date,
            end_date=end_date,
            limit=limit,
            offset=offset,
            include_relations=include_relations,
        )

    async def cancel(self, shift_id: int) -> ApiResponse:
        """Cancel a shift; the server reassigns it to Cover staff."""
        return await self._client.request("POST", f"{self.path}/{shift_id}/cancel")

    async def add_instruction(self, shift_id: int, instruction_text: str,
                              instruction_type: Optional[str] = None) -> ApiResponse:
        payload = {"instructionText": instruction_text}
        if instruction_type:
            payload["instructionType"] = instruction_type
        response = await self._client.request("POST", f"{self.path}/{shift_id}/instructions", payload=payload)
        return self._parse(response, ShiftInstruction)

    async def add_message(self, shift_id: int, message_text: str,
                          created_by: Optional[int] = None) -> ApiResponse:
        payload: Dict[str, Any] = {"messageText": message_text}
        if created_by is not None:
            payload["createdBy"] = created_by
        response = await self._client.request("POST", f"{self.path}/{shift_id}/messages", payload=payload)
        return self._parse(response, ShiftMessage)

    async def update_location(self, shift_id: int, location_id: int) -> ApiResponse:
        return await self._client.request(
            "PUT", f"{self.path}/{shift_id}/location", payload={"locationId": location_id}
        )

    async def update_client(self, shift_id: int, client_id: Optional[int]) -> ApiResponse:
        return await self._client.request(
            "PUT", f"{self.path}/{shift_id}/client", payload={"clientId": client_id}
        )

    async def remove_team(self, shift_id: int, team_id: int) -> ApiResponse:
        return await self._client.request("DELETE", f"{self.path}/{shift_id}/teams/{team_id}")


class ClientsApi(ResourceApi):
    path = "/api/clients"
    model = Client


class LocationsApi(ResourceApi):
    path = "/api/locations"
    model = Location

    async def mark_as_used(self, location_id: int) -> ApiResponse:
        return self._parse(await self._client.request("PUT", f"{self.path}/{location_id}/use"))


class TeamsApi(ResourceApi):
    path = "/api/teams"
    model = Team


class StaffApi(ResourceApi):
    path = "/api/staff"
    model = Staff


class RosterEntriesApi(ResourceApi):
    """Cleaner roster entries; returned as plain dicts."""
    path = "/api/cleaner-roster"


class UsersApi(ResourceApi):
    path = "/api/users"
    model = UserProfile

    async def get_profile(self, user_id: Union[int, str]) -> ApiResponse:
        return await self.get(user_id)

    async def update_profile(self, user_id: Union[int, str], data: Payload) -> ApiResponse:
        response = await self._client.request("PUT", f"{self.path}/{user_id}/profile", payload=data)
        return self._parse(response)
