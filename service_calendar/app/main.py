"""
Calendar service for the Roster Access Layer.
"""

import time
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import Body, Depends, Header, Query
from pydantic import BaseModel, Field

from shared.base_service import BaseService
from shared.circuit_breaker import circuit_breaker_manager, get_circuit_breaker
from shared.errors import NotFoundError, RemoteApiError, ServiceError, ValidationError
from shared.logging import set_session_context

from .adapters.roster_api import RosterApiClient
from .caching.cache_service import CacheKeys, CacheService, CacheTTL
from .caching.kv_store import KeyValueStore, RedisKeyValueStore
from .calendar.coordinator import CalendarDataCoordinator
from .calendar.events import CalendarEvent
from .models import CreateShiftData, InstructionType
from .sessions import CalendarSessionRegistry


class RangeRequest(BaseModel):
    start: datetime
    end: datetime
    exact: bool = False


class InstructionRequest(BaseModel):
    instruction_text: str = Field(..., min_length=1)
    instruction_type: InstructionType = InstructionType.TEXT


class MessageRequest(BaseModel):
    message_text: str = Field(..., min_length=1)
    created_by: Optional[int] = None


def _events_payload(events: List[CalendarEvent]) -> List[Dict[str, Any]]:
    return [event.to_api() for event in events]


class CalendarService(BaseService):
    """Calendar service implementation."""

    def __init__(self, api_client: Optional[RosterApiClient] = None,
                 kv_store: Optional[KeyValueStore] = None):
        super().__init__("calendar", 8000)

        self.api = api_client or RosterApiClient(
            self.config.roster_api_url,
            self.config.roster_api_timeout,
            circuit_breaker=get_circuit_breaker("roster_api"),
        )
        if kv_store is None and self.config.redis_url:
            kv_store = RedisKeyValueStore(self.config.redis_url)
        self.cache = CacheService(kv_store, self.config.cache_default_ttl, metrics=self.metrics)
        self.sessions = CalendarSessionRegistry(
            self._new_coordinator,
            max_sessions=self.config.max_calendar_sessions,
            metrics=self.metrics,
        )

        self._setup_calendar_routes()

    def _new_coordinator(self, session_id: str) -> CalendarDataCoordinator:
        return CalendarDataCoordinator(
            self.api,
            cache_ttl=self.config.shift_cache_ttl_seconds,
            buffer_days=self.config.range_buffer_days,
            debounce_seconds=self.config.debounce_seconds,
            metrics=self.metrics,
            session_id=session_id,
        )

    async def on_startup(self):
        kv = self.cache.kv
        if isinstance(kv, RedisKeyValueStore):
            try:
                await kv.start()
            except ServiceError as e:
                # Caching is best-effort; run without it
                self.logger.warning("Cache store unavailable, caching disabled", error=e.message)
                self.cache.kv = None

    async def on_shutdown(self):
        await self.sessions.close_all()
        await self.api.close()
        if isinstance(self.cache.kv, RedisKeyValueStore):
            await self.cache.kv.stop()

    async def _check_dependencies(self) -> Dict[str, Any]:
        """Round-trip the cache store and report the roster API breaker."""
        if not self.cache.available:
            cache_status = "disabled"
        else:
            probe = {"timestamp": time.time()}
            await self.cache.set("health_check", probe, ttl=CacheTTL.SHORT)
            retrieved = await self.cache.get("health_check")
            cache_status = "healthy" if retrieved == probe else "unhealthy"

        return {
            "cache": cache_status,
            "roster_api": self.api.circuit_breaker.state.value,
        }

    async def _session(self, x_session_id: Optional[str] = Header(default=None)) -> CalendarDataCoordinator:
        if not x_session_id:
            raise ValidationError("X-Session-ID header is required")
        set_session_context(session_id=x_session_id)
        return await self.sessions.get_or_create(x_session_id)

    def _setup_calendar_routes(self):
        """Set up calendar-specific routes."""

        session = Depends(self._session)

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": "calendar",
                "message": "Roster Access Layer - Calendar Service",
                "version": "1.0.0",
                "capabilities": ["range_cache", "shift_mutations", "cache_aside"],
            }

        @self.app.get("/api/v1/calendar/events")
        async def get_events(
            start: datetime = Query(...),
            end: datetime = Query(...),
            exact: bool = Query(False),
            coordinator: CalendarDataCoordinator = session,
        ):
            """Load a window immediately and return its events."""
            await coordinator.load_range_now(start, end, exact)
            events = coordinator.events_between(start, end)
            return {
                "events": _events_payload(events),
                "count": len(events),
                "loading": coordinator.loading,
                "error": coordinator.error,
            }

        @self.app.post("/api/v1/calendar/range")
        async def load_range(request: RangeRequest, coordinator: CalendarDataCoordinator = session):
            """Debounced range load; only the latest request in a burst runs."""
            loaded = await coordinator.load_date_range(request.start, request.end, request.exact)
            return {"loaded": loaded, "error": coordinator.error}

        @self.app.get("/api/v1/calendar/reference")
        async def get_reference(coordinator: CalendarDataCoordinator = session):
            if not coordinator.reference_loaded:
                await coordinator.load_reference_data()
            return {
                "clients": [c.to_api() for c in coordinator.clients],
                "locations": [loc.to_api() for loc in coordinator.locations],
                "teams": [t.to_api() for t in coordinator.teams],
                "error": coordinator.error,
            }

        @self.app.post("/api/v1/calendar/refresh")
        async def refresh(coordinator: CalendarDataCoordinator = session):
            await coordinator.refetch()
            start, end, _ = coordinator.visible_range
            events = coordinator.events_between(start, end)
            return {
                "events": _events_payload(events),
                "count": len(events),
                "error": coordinator.error,
            }

        @self.app.post("/api/v1/calendar/shifts", status_code=201)
        async def create_shift(data: CreateShiftData, coordinator: CalendarDataCoordinator = session):
            shift = await coordinator.create_shift(data)
            return shift.to_api()

        @self.app.put("/api/v1/calendar/shifts/{shift_id}")
        async def update_shift(
            shift_id: int,
            changes: Dict[str, Any] = Body(...),
            coordinator: CalendarDataCoordinator = session,
        ):
            shift = await coordinator.update_shift(shift_id, changes)
            return shift.to_api()

        @self.app.delete("/api/v1/calendar/shifts/{shift_id}")
        async def delete_shift(shift_id: int, coordinator: CalendarDataCoordinator = session):
            await coordinator.delete_shift(shift_id)
            return {"id": shift_id, "deleted": True}

        @self.app.post("/api/v1/calendar/shifts/{shift_id}/cancel")
        async def cancel_shift(shift_id: int, coordinator: CalendarDataCoordinator = session):
            """Cancel a shift and return its reloaded state."""
            await coordinator.cancel_shift(shift_id)
            shift = coordinator.get_shift(shift_id)
            return {
                "id": shift_id,
                "cancelled": True,
                "shift": shift.to_api() if shift else None,
                "error": coordinator.error,
            }

        @self.app.post("/api/v1/calendar/shifts/{shift_id}/instructions", status_code=201)
        async def add_instruction(
            shift_id: int,
            request: InstructionRequest,
            coordinator: CalendarDataCoordinator = session,
        ):
            instruction = await coordinator.add_instruction(
                shift_id, request.instruction_text, request.instruction_type
            )
            return instruction.to_api()

        @self.app.post("/api/v1/calendar/shifts/{shift_id}/messages", status_code=201)
        async def add_message(
            shift_id: int,
            request: MessageRequest,
            coordinator: CalendarDataCoordinator = session,
        ):
            message = await coordinator.add_message(shift_id, request.message_text, request.created_by)
            return message.to_api()

        @self.app.delete("/api/v1/calendar/session")
        async def close_session(x_session_id: Optional[str] = Header(default=None)):
            if not x_session_id:
                raise ValidationError("X-Session-ID header is required")
            return {"closed": await self.sessions.close(x_session_id)}

        @self.app.get("/api/v1/users/{user_id}")
        async def get_user(user_id: int):
            """User lookup through the cache-aside store."""
            produced = False

            async def fetch_user():
                nonlocal produced
                produced = True
                response = await self.api.users.get_profile(user_id)
                if response.status_code == 404:
                    raise NotFoundError("User not found", {"user_id": user_id})
                if not response.success or response.data is None:
                    raise RemoteApiError(response.error or "Failed to fetch user", {"user_id": user_id})
                return response.data.to_api()

            user = await self.cache.get_or_set(
                CacheKeys.user_by_id(user_id),
                fetch_user,
                ttl=CacheTTL.LONG,
                prefix=CacheKeys.USERS_PREFIX,
            )
            return {"success": True, "data": user, "cached": not produced}

        @self.app.put("/api/v1/users/{user_id}/profile")
        async def update_user_profile(user_id: int, changes: Dict[str, Any] = Body(...)):
            response = await self.api.users.update_profile(user_id, changes)
            if response.status_code == 404:
                raise NotFoundError("User not found", {"user_id": user_id})
            if not response.success or response.data is None:
                raise RemoteApiError(response.error or "Failed to update profile", {"user_id": user_id})

            await self.cache.invalidate_user_cache(user_id)
            return {"success": True, "data": response.data.to_api()}

        @self.app.get("/api/v1/circuit-breakers")
        async def get_circuit_breakers():
            states = circuit_breaker_manager.get_all_states()
            states.setdefault(self.api.circuit_breaker.name, self.api.circuit_breaker.get_state())
            return states


def create_app():
    """Create calendar service application."""
    service = CalendarService()
    return service.app


if __name__ == "__main__":
    service = CalendarService()
    service.run()
