"""
Live operational dashboard: positions for the selected event, a staffing
summary, a map viewport and the issue feed.

A ``DashboardView`` owns two background tasks (the signup-notification
consumer and the staffing monitor). Both are torn down by ``stop()``.

The shared selection scopes the monitor and only changes through
``select_event()``. Page renders go through ``snapshot()``, which takes the
caller's own event filter.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from datetime import UTC, datetime

from pydantic import BaseModel

from volunteer_ops.config import Settings
from volunteer_ops.errors import TransientServiceError
from volunteer_ops.feed import LiveIssueFeed
from volunteer_ops.models import Event, Issue, PositionStatus, SignupNotification
from volunteer_ops.monitor import StaffingMonitor
from volunteer_ops.selection import EventSelectionSync
from volunteer_ops.service import DataService, DataServiceError

logger = logging.getLogger(__name__)

NowFn = Callable[[], datetime]
SleepFn = Callable[[float], Awaitable[None]]

WORLD_ZOOM = 2
OVERVIEW_ZOOM = 13


class DashboardSummary(BaseModel):
    total_positions: int
    filled_positions: int
    needs_volunteers: int


class MapViewport(BaseModel):
    # either bounds ([[south, west], [north, east]]) or center + zoom
    bounds: list[list[float]] | None = None
    center: list[float] | None = None
    zoom: int | None = None


class DashboardSnapshot(BaseModel):
    """Everything one dashboard page render needs, for a single event filter."""

    selected_event_id: str | None
    query: dict[str, str]
    events: list[Event]
    positions: list[PositionStatus]
    summary: DashboardSummary
    viewport: MapViewport
    issues: list[Issue]


def summarize(positions: Sequence[PositionStatus]) -> DashboardSummary:
    understaffed = sum(1 for p in positions if p.understaffed)
    return DashboardSummary(
        total_positions=len(positions),
        filled_positions=len(positions) - understaffed,
        needs_volunteers=understaffed,
    )


def viewport_for(
    positions: Sequence[PositionStatus], event_id: str | None
) -> MapViewport:
    """
    Fit an event's positions when one is selected, otherwise center on all
    of them. Positions without coordinates are ignored.
    """
    located = [p.location for p in positions if p.location is not None]
    if not located:
        return MapViewport(center=[0.0, 0.0], zoom=WORLD_ZOOM)

    lats = [pt.lat for pt in located]
    lons = [pt.lon for pt in located]
    if event_id is not None:
        return MapViewport(bounds=[[min(lats), min(lons)], [max(lats), max(lons)]])
    return MapViewport(
        center=[(min(lats) + max(lats)) / 2, (min(lons) + max(lons)) / 2],
        zoom=OVERVIEW_ZOOM,
    )


class DashboardView:
    def __init__(
        self,
        service: DataService,
        selection: EventSelectionSync,
        *,
        settings: Settings | None = None,
        now_fn: NowFn = lambda: datetime.now(UTC),
        sleep_fn: SleepFn = asyncio.sleep,
    ) -> None:
        settings = settings or Settings()
        self.service = service
        self.selection = selection
        self.feed = LiveIssueFeed(settings.feed_capacity, now_fn=now_fn)
        self.monitor = StaffingMonitor(
            lambda: self.visible_positions(),
            self.feed.add,
            interval=settings.staffing_interval_s,
            now_fn=now_fn,
            sleep_fn=sleep_fn,
        )
        self.events: list[Event] = []
        self.positions: list[PositionStatus] = []
        self._channel: asyncio.Queue[SignupNotification] | None = None
        self._consumer: asyncio.Task | None = None

    async def _load(
        self, event_id: str | None
    ) -> tuple[list[Event], list[PositionStatus]]:
        try:
            events = await self.service.list_events()
            positions = await self.service.list_positions(event_id)
        except DataServiceError as exc:
            logger.warning("dashboard load failed: %s", exc)
            raise TransientServiceError(str(exc)) from exc
        return events, positions

    async def refresh(self) -> None:
        self.events, self.positions = await self._load(self.selection.selected)

    async def select_event(self, event_id: str | None) -> None:
        """
        Change the shared selection, which also scopes the staffing monitor.
        The selection only moves once the new positions are loaded.
        """
        events, positions = await self._load(event_id or None)
        self.selection.selected = event_id
        self.events, self.positions = events, positions

    async def snapshot(self, event_id: str | None) -> DashboardSnapshot:
        """Render for one caller's filter without touching the shared selection."""
        event_id = event_id or None
        events, positions = await self._load(event_id)
        selection = EventSelectionSync({}, self.selection.key)
        selection.selected = event_id
        return DashboardSnapshot(
            selected_event_id=event_id,
            query=selection.query(),
            events=events,
            positions=positions,
            summary=summarize(positions),
            viewport=viewport_for(positions, event_id),
            issues=self.feed.view(event_id),
        )

    def visible_positions(self) -> list[PositionStatus]:
        event_id = self.selection.selected
        if event_id is None:
            return list(self.positions)
        return [p for p in self.positions if p.event.id == event_id]

    def issues(self) -> list[Issue]:
        return self.feed.view(self.selection.selected)

    def summary(self) -> DashboardSummary:
        return summarize(self.visible_positions())

    def map_viewport(self) -> MapViewport:
        return viewport_for(self.visible_positions(), self.selection.selected)

    @property
    def running(self) -> bool:
        return self._consumer is not None and not self._consumer.done()

    async def start(self) -> None:
        if self.running:
            return
        self._channel = self.service.subscribe_signups()
        self._consumer = asyncio.create_task(
            self.feed.consume(self._channel, self.service.get_position_ref)
        )
        self.monitor.start()
        logger.info("dashboard started")

    async def stop(self) -> None:
        consumer, self._consumer = self._consumer, None
        if consumer is not None:
            consumer.cancel()
            await asyncio.gather(consumer, return_exceptions=True)
        if self._channel is not None:
            self.service.unsubscribe_signups(self._channel)
            self._channel = None
        await self.monitor.stop()
        logger.info("dashboard stopped")
