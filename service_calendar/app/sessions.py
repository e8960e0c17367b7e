"""
Registry of per-session calendar coordinators.
"""

from collections import OrderedDict
from typing import Callable, Optional

from shared.logging import get_logger
from shared.metrics import MetricsCollector

from .calendar.coordinator import CalendarDataCoordinator

CoordinatorFactory = Callable[[str], CalendarDataCoordinator]


class CalendarSessionRegistry:
    """Creates one coordinator per session id and closes it on teardown.

    When ``max_sessions`` is reached the least recently used session is
    closed to make room.
    """

    def __init__(self, factory: CoordinatorFactory, max_sessions: int = 500,
                 metrics: Optional[MetricsCollector] = None):
        self.factory = factory
        self.max_sessions = max_sessions
        self.metrics = metrics
        self.logger = get_logger("calendar.sessions")
        self._sessions: "OrderedDict[str, CalendarDataCoordinator]" = OrderedDict()

    async def get_or_create(self, session_id: str) -> CalendarDataCoordinator:
        coordinator = self._sessions.get(session_id)
        if coordinator is not None:
            self._sessions.move_to_end(session_id)
            return coordinator

        while len(self._sessions) >= self.max_sessions:
            evicted_id, evicted = self._sessions.popitem(last=False)
            await evicted.close()
            self.logger.info("Evicted idle calendar session", session_id=evicted_id)

        coordinator = self.factory(session_id)
        self._sessions[session_id] = coordinator
        self.logger.info("Opened calendar session", session_id=session_id)
        self._update_gauge()
        return coordinator

    def get(self, session_id: str) -> Optional[CalendarDataCoordinator]:
        return self._sessions.get(session_id)

    async def close(self, session_id: str) -> bool:
        coordinator = self._sessions.pop(session_id, None)
        if coordinator is None:
            return False
        await coordinator.close()
        self.logger.info("Closed calendar session", session_id=session_id)
        self._update_gauge()
        return True

    async def close_all(self):
        while self._sessions:
            _, coordinator = self._sessions.popitem()
            await coordinator.close()
        self._update_gauge()

    def _update_gauge(self):
        if self.metrics:
            self.metrics.set_gauge("calendar_sessions", len(self._sessions))

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)
