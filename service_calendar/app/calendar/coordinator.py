"""
Per-session calendar data coordinator.

Holds the shifts a calendar view has loaded plus the reference data its
forms need (clients, locations, teams), and routes every shift mutation
through the roster API before touching local state.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from pydantic import ValidationError as ModelValidationError

from shared.errors import RemoteApiError, SessionClosedError, ValidationError
from shared.logging import get_logger
from shared.metrics import MetricsCollector

from ..adapters.roster_api import RosterApiClient
from ..models import (
    ApiResponse,
    Client,
    CreateShiftData,
    InstructionType,
    Location,
    Shift,
    ShiftInstruction,
    ShiftMessage,
    Team,
)
from .debounce import Debouncer
from .events import CalendarEvent, shift_to_calendar_event
from .range_cache import (
    DEFAULT_BUFFER_DAYS,
    DEFAULT_TTL_SECONDS,
    ShiftRangeCache,
    buffered_range,
    calendar_date,
)

Listener = Callable[["CalendarDataCoordinator"], None]
VisibleRange = Tuple[datetime, datetime, bool]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def month_bounds(now: datetime) -> Tuple[datetime, datetime]:
    """First and last day of the month containing ``now``."""
    start = datetime(now.year, now.month, 1, tzinfo=timezone.utc)
    next_month = (start + timedelta(days=32)).replace(day=1)
    return start, next_month - timedelta(days=1)


class CalendarDataCoordinator:
    """Calendar state for one session.

    Shift ranges are served from a TTL cache keyed by calendar dates, with at
    most one fetch per range in flight. Loading failures are recorded in
    ``error``; mutation failures raise ``RemoteApiError`` and leave local
    state untouched.
    """

    def __init__(
        self,
        api: RosterApiClient,
        *,
        cache_ttl: float = DEFAULT_TTL_SECONDS,
        buffer_days: int = DEFAULT_BUFFER_DAYS,
        debounce_seconds: float = 0.3,
        clock: Optional[Callable[[], float]] = None,
        now: Optional[Callable[[], datetime]] = None,
        metrics: Optional[MetricsCollector] = None,
        session_id: Optional[str] = None,
    ):
        self.api = api
        self.buffer_days = buffer_days
        self.metrics = metrics
        self.session_id = session_id
        self.logger = get_logger("calendar.coordinator")
        self.range_cache = ShiftRangeCache(ttl=cache_ttl, clock=clock)

        self._now = now or _utcnow
        self._debouncer = Debouncer(debounce_seconds)
        self._shifts: Dict[int, Shift] = {}
        self._clients: List[Client] = []
        self._locations: List[Location] = []
        self._teams: List[Team] = []
        self._error: Optional[str] = None
        self._refreshing = False
        self._visible_range: Optional[VisibleRange] = None
        self._listeners: List[Listener] = []
        self._closed = False
        self.reference_loaded = False

    # Observable state

    @property
    def shifts(self) -> List[Shift]:
        return list(self._shifts.values())

    @property
    def clients(self) -> List[Client]:
        return list(self._clients)

    @property
    def locations(self) -> List[Location]:
        return list(self._locations)

    @property
    def teams(self) -> List[Team]:
        return list(self._teams)

    @property
    def error(self) -> Optional[str]:
        return self._error

    @property
    def loading(self) -> bool:
        return self._refreshing or bool(self.range_cache.in_flight)

    @property
    def visible_range(self) -> Optional[VisibleRange]:
        return self._visible_range

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def events(self) -> List[CalendarEvent]:
        return [shift_to_calendar_event(shift) for shift in self._shifts.values()]

    def events_between(self, start: datetime, end: datetime) -> List[CalendarEvent]:
        return [event for event in self.events if event.overlaps(start, end)]

    def get_shift(self, shift_id: int) -> Optional[Shift]:
        return self._shifts.get(shift_id)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a change listener; returns a function that removes it."""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self):
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception as e:
                self.logger.error("Calendar listener failed", error=str(e), exc_info=True)

    # Loading

    async def load_reference_data(self):
        """Load active clients, all locations and all teams."""
        self._ensure_open()
        try:
            clients, locations, teams = await asyncio.gather(
                self.api.clients.list(is_active=True),
                self.api.locations.list(),
                self.api.teams.list(),
            )
        except Exception as e:
            self._error = str(e) or "Failed to fetch reference data"
            self.logger.error("Error fetching reference data", error=self._error)
            self._notify()
            return

        self._clients = self._list_or_empty(clients, "clients")
        self._locations = self._list_or_empty(locations, "locations")
        self._teams = self._list_or_empty(teams, "teams")
        self.reference_loaded = True
        self._notify()

    def _list_or_empty(self, response: ApiResponse, name: str) -> list:
        if response.success and response.data:
            return list(response.data)
        if not response.success:
            self.logger.warning("Reference data unavailable", resource=name, error=response.error)
        return []

    async def load_range_now(self, start: datetime, end: datetime, exact: bool = False):
        """Load shifts for a window, from cache when fresh.

        Unless ``exact``, the window is padded by ``buffer_days`` on both
        sides. Returns without waiting when the same window is already
        being fetched.
        """
        self._ensure_open()
        self._visible_range = (start, end, exact)

        fetch_start, fetch_end = buffered_range(start, end, 0 if exact else self.buffer_days)
        start_day, end_day = calendar_date(fetch_start), calendar_date(fetch_end)
        key = self.range_cache.make_key(start_day, end_day)

        if self.range_cache.is_loading(key):
            self.logger.debug("Range already loading", range_key=key)
            return

        entry = self.range_cache.get_valid(key)
        self._record_cache_access(entry is not None)
        if entry is not None:
            self._merge(entry.shifts)
            self._notify()
            return

        self.range_cache.mark_loading(key)
        self._error = None
        self._notify()

        loop = asyncio.get_running_loop()
        started = loop.time()
        result = "error"
        try:
            response = await self.api.shifts.list(
                start_date=start_day.isoformat(),
                end_date=end_day.isoformat(),
                include_relations=True,
            )
            if response.success:
                shifts = list(response.data or [])
                self.range_cache.store(
                    key, shifts, start_day, end_day,
                    requested_start=calendar_date(start),
                    requested_end=calendar_date(end),
                )
                self._merge(shifts)
                result = "success"
                self.logger.info("Loaded shift range", range_key=key, count=len(shifts), exact=exact)
            else:
                self._error = response.error or "Failed to load shifts for date range"
                self.logger.warning("Shift range load failed", range_key=key, error=self._error)
        except Exception as e:
            self._error = str(e) or "Failed to load shifts for date range"
            self.logger.error("Error loading date range", range_key=key, error=self._error, exc_info=True)
        finally:
            self.range_cache.finish_loading(key)
            if self.metrics:
                self.metrics.increment_counter("range_fetch_total", result=result)
                self.metrics.observe_histogram("range_fetch_duration_seconds", loop.time() - started)
            self._notify()

    async def load_date_range(self, start: datetime, end: datetime, exact: bool = False) -> bool:
        """Debounced ``load_range_now``.

        Returns True when this request was the one eventually loaded and False
        when a later call superseded it.
        """
        self._ensure_open()
        handle = self._debouncer.schedule(lambda: self.load_range_now(start, end, exact))
        return await handle

    async def refetch(self):
        """Reload reference data and the visible range from the server."""
        self._ensure_open()
        self._refreshing = True
        self._error = None
        self._notify()
        try:
            self.range_cache.invalidate_all()
            await self.load_reference_data()

            if self._visible_range is not None:
                start, end, exact = self._visible_range
            else:
                start, end = month_bounds(self._now())
                exact = False
            await self.load_range_now(start, end, exact)
        finally:
            self._refreshing = False
            self._notify()

    def _merge(self, shifts: List[Shift]):
        for shift in shifts:
            self._shifts[shift.id] = shift

    def _record_cache_access(self, hit: bool):
        if self.metrics:
            self.metrics.record_cache_access("shift_range", hit)

    # Mutations

    async def create_shift(self, data: Union[CreateShiftData, Dict[str, Any]]) -> Shift:
        self._ensure_open()
        if not isinstance(data, CreateShiftData):
            try:
                data = CreateShiftData.model_validate(data)
            except ModelValidationError as e:
                errors = e.errors(include_url=False, include_context=False, include_input=False)
                raise ValidationError("Invalid shift data", {"errors": errors})

        response = await self.api.shifts.create(data)
        shift = self._require(response, "create", "Failed to create shift")

        self._shifts[shift.id] = shift
        dropped = self.range_cache.invalidate_containing(calendar_date(shift.start_time))
        self.logger.info("Shift created", shift_id=shift.id, invalidated_ranges=dropped)
        self._notify()
        return shift

    async def update_shift(self, shift_id: int, changes: Union[CreateShiftData, Dict[str, Any]]) -> Shift:
        self._ensure_open()
        response = await self.api.shifts.update(shift_id, changes)
        shift = self._require(response, "update", "Failed to update shift")

        if shift_id in self._shifts:
            self._shifts[shift_id] = shift
        self.range_cache.invalidate_all()
        self.logger.info("Shift updated", shift_id=shift_id)
        self._notify()
        return shift

    async def delete_shift(self, shift_id: int):
        self._ensure_open()
        response = await self.api.shifts.delete(shift_id)
        self._require(response, "delete", "Failed to delete shift", need_data=False)

        self._shifts.pop(shift_id, None)
        self.range_cache.invalidate_all()
        self.logger.info("Shift deleted", shift_id=shift_id)
        self._notify()

    async def cancel_shift(self, shift_id: int):
        """Cancel remotely, then reload so server-side reassignment shows."""
        self._ensure_open()
        response = await self.api.shifts.cancel(shift_id)
        self._require(response, "cancel", "Failed to cancel shift", need_data=False)

        self.logger.info("Shift cancelled", shift_id=shift_id)
        await self.refetch()

    async def add_instruction(self, shift_id: int, text: str,
                              instruction_type: InstructionType = InstructionType.TEXT) -> ShiftInstruction:
        self._ensure_open()
        response = await self.api.shifts.add_instruction(shift_id, text, InstructionType(instruction_type).value)
        instruction = self._require(response, "add_instruction", "Failed to add instruction")

        self._append_to_shift(shift_id, "instructions", instruction)
        return instruction

    async def add_message(self, shift_id: int, text: str, created_by: Optional[int] = None) -> ShiftMessage:
        self._ensure_open()
        response = await self.api.shifts.add_message(shift_id, text, created_by)
        message = self._require(response, "add_message", "Failed to add message")

        self._append_to_shift(shift_id, "messages", message)
        return message

    def _append_to_shift(self, shift_id: int, field: str, item: Any):
        shift = self._shifts.get(shift_id)
        if shift is None:
            self.range_cache.invalidate_all()
        else:
            self._shifts[shift_id] = shift.model_copy(update={field: [*getattr(shift, field), item]})
            self.range_cache.invalidate_containing(calendar_date(shift.start_time))
        self._notify()

    def _require(self, response: ApiResponse, operation: str, default_error: str, need_data: bool = True):
        ok = response.success and (response.data is not None or not need_data)
        if self.metrics:
            self.metrics.increment_counter(
                "shift_mutations_total",
                operation=operation,
                result="success" if ok else "error",
            )
        if not ok:
            message = response.error or default_error
            self.logger.error("Shift mutation failed", operation=operation, error=message)
            raise RemoteApiError(message, {"operation": operation, "status_code": response.status_code})
        return response.data

    # Lifecycle

    def _ensure_open(self):
        if self._closed:
            raise SessionClosedError(details={"session_id": self.session_id})

    async def close(self):
        """Cancel any pending debounced load and detach listeners."""
        if self._closed:
            return
        self._closed = True
        self._debouncer.cancel()
        self._listeners.clear()
        self.logger.debug("Calendar coordinator closed", session_id=self.session_id)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()
