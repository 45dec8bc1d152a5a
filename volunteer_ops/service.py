"""
Data-service port consumed by the check-in and dashboard logic, plus an
in-memory implementation backed by ``InMemoryKeyValueDatabase``.
"""

import asyncio
import logging
from collections.abc import Iterable
from typing import Protocol
from uuid import uuid4

from volunteer_ops.database import InMemoryKeyValueDatabase
from volunteer_ops.models import (
    EligibleVolunteer,
    Event,
    EventSummary,
    Position,
    PositionDetail,
    PositionRef,
    PositionStatus,
    Signup,
    SignupCreate,
    SignupNotification,
)

logger = logging.getLogger(__name__)

Record = Event | Position | Signup


class DataServiceError(Exception):
    """Transport-level failure talking to the data service."""


class DataService(Protocol):
    async def get_position(self, position_id: str) -> PositionDetail | None: ...

    async def get_position_ref(self, position_id: str) -> PositionRef | None: ...

    async def list_eligible_signups(
        self, position_id: str
    ) -> list[EligibleVolunteer]: ...

    async def mark_arrived(self, signup_id: str) -> bool: ...

    async def list_positions(
        self, event_id: str | None = None
    ) -> list[PositionStatus]: ...

    async def list_events(self) -> list[Event]: ...

    async def insert_signups(self, rows: Iterable[SignupCreate]) -> list[Signup]: ...

    def subscribe_signups(self) -> asyncio.Queue[SignupNotification]: ...

    def unsubscribe_signups(self, queue: asyncio.Queue[SignupNotification]) -> None: ...


def _summary(event: Event) -> EventSummary:
    return EventSummary(
        id=event.id,
        name=event.name,
        date=event.date,
        time=event.time,
        location=event.location,
    )


class InMemoryDataService:
    def __init__(
        self, db: InMemoryKeyValueDatabase[str, Record] | None = None
    ) -> None:
        self.db: InMemoryKeyValueDatabase[str, Record] = (
            db if db is not None else InMemoryKeyValueDatabase()
        )
        self._subscribers: set[asyncio.Queue[SignupNotification]] = set()

    # seeding helpers (organizer CRUD lives outside this service)

    def add_event(self, event: Event) -> None:
        self.db.put(f"event:{event.id}", event)

    def add_position(self, position: Position) -> None:
        self.db.put(f"position:{position.id}", position)

    def add_signup(self, signup: Signup) -> None:
        self.db.put(f"signup:{signup.id}", signup)

    def _event(self, event_id: str) -> Event | None:
        event = self.db.get(f"event:{event_id}")
        return event if isinstance(event, Event) else None

    def _position(self, position_id: str) -> Position | None:
        position = self.db.get(f"position:{position_id}")
        return position if isinstance(position, Position) else None

    async def get_position(self, position_id: str) -> PositionDetail | None:
        position = self._position(position_id)
        if position is None:
            return None
        event = self._event(position.event_id)
        if event is None:
            return None
        return PositionDetail(
            id=position.id,
            name=position.name,
            description=position.description,
            skill_level=position.skill_level,
            latitude=position.latitude,
            longitude=position.longitude,
            event=_summary(event),
        )

    async def get_position_ref(self, position_id: str) -> PositionRef | None:
        position = self._position(position_id)
        if position is None:
            return None
        event = self._event(position.event_id)
        return PositionRef(
            id=position.id,
            name=position.name,
            event_id=position.event_id,
            event_name=event.name if event else "",
        )

    async def list_eligible_signups(
        self, position_id: str
    ) -> list[EligibleVolunteer]:
        pending = [
            s
            for s in self.db.all()
            if isinstance(s, Signup)
            and s.position_id == position_id
            and not s.arrived
        ]
        # sorted() is stable, so equal start times keep insertion order
        pending.sort(key=lambda s: s.start_time)
        return [
            EligibleVolunteer(
                id=s.id,
                volunteer_name=s.volunteer_name,
                start_time=s.start_time,
                end_time=s.end_time,
            )
            for s in pending
        ]

    async def mark_arrived(self, signup_id: str) -> bool:
        found, transitioned = self.db.mark_arrived(f"signup:{signup_id}")
        if not found:
            return False
        if transitioned:
            signup = self.db.get(f"signup:{signup_id}")
            position = self._position(signup.position_id)
            if position is not None:
                position.filled += 1
                self.add_position(position)
        return True

    async def list_positions(
        self, event_id: str | None = None
    ) -> list[PositionStatus]:
        result = []
        for p in self.db.all():
            if not isinstance(p, Position):
                continue
            if event_id is not None and p.event_id != event_id:
                continue
            event = self._event(p.event_id)
            if event is None:
                continue
            result.append(
                PositionStatus(
                    id=p.id,
                    name=p.name,
                    needed=p.needed,
                    filled=p.filled,
                    latitude=p.latitude,
                    longitude=p.longitude,
                    event=_summary(event),
                )
            )
        return result

    async def list_events(self) -> list[Event]:
        events = [e for e in self.db.all() if isinstance(e, Event)]
        return sorted(events, key=lambda e: (e.date, e.time))

    async def insert_signups(self, rows: Iterable[SignupCreate]) -> list[Signup]:
        created = [
            Signup(id=str(uuid4()), arrived=False, **row.model_dump())
            for row in rows
        ]
        for signup in created:
            self.add_signup(signup)
        for signup in created:
            self._publish(
                SignupNotification(
                    signup_id=signup.id,
                    position_id=signup.position_id,
                    volunteer_name=signup.volunteer_name,
                )
            )
        return created

    def subscribe_signups(self) -> asyncio.Queue[SignupNotification]:
        queue: asyncio.Queue[SignupNotification] = asyncio.Queue()
        self._subscribers.add(queue)
        return queue

    def unsubscribe_signups(self, queue: asyncio.Queue[SignupNotification]) -> None:
        self._subscribers.discard(queue)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def _publish(self, notification: SignupNotification) -> None:
        for queue in self._subscribers:
            queue.put_nowait(notification)
        logger.debug(
            "published signup %s to %d subscriber(s)",
            notification.signup_id,
            len(self._subscribers),
        )
