"""
Shared fixtures: a seeded in-memory data service with two events.

5K Run (event-5k)
  - Water Station      needed=3 filled=1  (understaffed)
  - Registration Desk  needed=2 filled=2
Food Drive (event-food)
  - Sorting            needed=4 filled=0  (understaffed, no coordinates)
"""

from datetime import UTC, date, datetime, time

import pytest

from volunteer_ops.models import Event, Position, Signup
from volunteer_ops.service import InMemoryDataService

WATER_STATION = (40.7812, -73.9665)
REGISTRATION_DESK = (40.7830, -73.9650)


def _at(hour: int, minute: int = 0) -> datetime:
    return datetime(2025, 7, 2, hour, minute, tzinfo=UTC)


@pytest.fixture
def service() -> InMemoryDataService:
    svc = InMemoryDataService()

    svc.add_event(
        Event(
            id="event-food",
            name="Food Drive",
            date=date(2025, 8, 15),
            time=time(10, 0),
            location="Community Hall",
            owner_id="org-1",
        )
    )
    svc.add_event(
        Event(
            id="event-5k",
            name="5K Run",
            date=date(2025, 7, 2),
            time=time(8, 0),
            location="Riverside Park",
            owner_id="org-1",
        )
    )

    svc.add_position(
        Position(
            id="water",
            event_id="event-5k",
            name="Water Station",
            needed=3,
            filled=1,
            description="Hand out cups at mile 2",
            skill_level="beginner",
            latitude=WATER_STATION[0],
            longitude=WATER_STATION[1],
        )
    )
    svc.add_position(
        Position(
            id="registration",
            event_id="event-5k",
            name="Registration Desk",
            needed=2,
            filled=2,
            latitude=REGISTRATION_DESK[0],
            longitude=REGISTRATION_DESK[1],
        )
    )
    svc.add_position(
        Position(
            id="sorting",
            event_id="event-food",
            name="Sorting",
            needed=4,
            filled=0,
        )
    )

    # alice and carol share a start time; alice was inserted first
    for signup in (
        Signup(
            id="alice",
            position_id="water",
            volunteer_name="Alice Ongwele",
            email="alice@example.com",
            start_time=_at(9),
            end_time=_at(11),
        ),
        Signup(
            id="bob",
            position_id="water",
            volunteer_name="Bob Tran",
            start_time=_at(8),
            end_time=_at(10),
        ),
        Signup(
            id="carol",
            position_id="water",
            volunteer_name="Carol Reyes",
            start_time=_at(9),
            end_time=_at(12),
        ),
        Signup(
            id="dan",
            position_id="water",
            volunteer_name="Dan Okafor",
            start_time=_at(7),
            end_time=_at(9),
            arrived=True,
        ),
        Signup(
            id="erin",
            position_id="registration",
            volunteer_name="Erin Walsh",
            start_time=_at(7, 30),
            end_time=_at(9),
            arrived=True,
        ),
    ):
        svc.add_signup(signup)

    return svc
