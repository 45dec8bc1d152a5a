import asyncio
from datetime import UTC, datetime
from unittest.mock import AsyncMock

import pytest

from volunteer_ops.checkin import CheckInSession, CheckInState
from volunteer_ops.errors import (
    InvalidRequest,
    NotFound,
    SubmissionError,
    TransientServiceError,
)
from volunteer_ops.models import Position, Signup
from volunteer_ops.service import DataServiceError, InMemoryDataService


def _session(service, position_id="water", **kwargs) -> CheckInSession:
    kwargs.setdefault("sleep_fn", AsyncMock(return_value=None))
    return CheckInSession(service, position_id, **kwargs)


@pytest.mark.asyncio
@pytest.mark.parametrize("position_id", [None, "", "   "])
async def test_missing_position_id_fails_fast(
    service: InMemoryDataService, monkeypatch, position_id
) -> None:
    lookup = AsyncMock()
    monkeypatch.setattr(service, "get_position", lookup)
    session = _session(service, position_id)

    with pytest.raises(InvalidRequest):
        await session.open()

    assert session.state is CheckInState.UNINITIALIZED
    assert lookup.await_count == 0


@pytest.mark.asyncio
async def test_unknown_position_is_not_found(service: InMemoryDataService) -> None:
    session = _session(service, "does-not-exist")

    with pytest.raises(NotFound):
        await session.open()

    assert session.state is CheckInState.POSITION_NOT_FOUND
    assert session.position is None


@pytest.mark.asyncio
async def test_open_resolves_position_and_orders_volunteers(
    service: InMemoryDataService,
) -> None:
    session = _session(service)
    state = await session.open()

    assert state is CheckInState.AWAITING_SELECTION
    assert session.position.name == "Water Station"
    assert session.position.event.name == "5K Run"
    assert session.position.event.location == "Riverside Park"
    # dan already arrived; alice and carol tie on start time
    assert [v.id for v in session.volunteers] == ["bob", "alice", "carol"]


@pytest.mark.asyncio
async def test_naive_and_aware_start_times_sort_together(
    service: InMemoryDataService,
) -> None:
    service.add_signup(
        Signup(
            id="early",
            position_id="water",
            volunteer_name="Omar Reyes",
            start_time=datetime(2025, 7, 2, 7, 45),
            end_time=datetime(2025, 7, 2, 9, 45),
        )
    )
    session = _session(service)

    assert await session.open() is CheckInState.AWAITING_SELECTION
    assert [v.id for v in session.volunteers] == ["early", "bob", "alice", "carol"]
    assert session.volunteers[0].start_time.tzinfo is UTC


@pytest.mark.asyncio
async def test_no_eligible_volunteers_never_submits(
    service: InMemoryDataService, monkeypatch
) -> None:
    mark = AsyncMock(return_value=True)
    monkeypatch.setattr(service, "mark_arrived", mark)
    session = _session(service, "registration")

    assert await session.open() is CheckInState.NO_ELIGIBLE_VOLUNTEERS
    assert session.volunteers == []

    with pytest.raises(InvalidRequest):
        await session.submit()

    assert session.state is CheckInState.NO_ELIGIBLE_VOLUNTEERS
    assert mark.await_count == 0


@pytest.mark.asyncio
async def test_transient_lookup_is_retried_with_fixed_delay(
    service: InMemoryDataService, monkeypatch
) -> None:
    detail = await service.get_position("water")
    lookup = AsyncMock(
        side_effect=[DataServiceError("timeout"), DataServiceError("timeout"), detail]
    )
    monkeypatch.setattr(service, "get_position", lookup)
    sleep = AsyncMock(return_value=None)
    session = _session(service, sleep_fn=sleep, retry_delay=1.0)

    assert await session.open() is CheckInState.AWAITING_SELECTION
    assert lookup.await_count == 3
    assert [c.args for c in sleep.await_args_list] == [(1.0,), (1.0,)]


@pytest.mark.asyncio
async def test_exhausted_retries_surface_transient_error(
    service: InMemoryDataService, monkeypatch
) -> None:
    lookup = AsyncMock(side_effect=DataServiceError("connection reset"))
    monkeypatch.setattr(service, "get_position", lookup)
    session = _session(service, retries=3)

    with pytest.raises(TransientServiceError) as excinfo:
        await session.open()

    assert "connection reset" in str(excinfo.value)
    # first attempt plus three retries
    assert lookup.await_count == 4
    assert session.state is CheckInState.FAILED
    assert session.error == "connection reset"


@pytest.mark.asyncio
async def test_lookup_succeeds_on_last_retry(
    service: InMemoryDataService, monkeypatch
) -> None:
    detail = await service.get_position("water")
    failures = [DataServiceError("timeout")] * 3
    lookup = AsyncMock(side_effect=[*failures, detail])
    monkeypatch.setattr(service, "get_position", lookup)
    sleep = AsyncMock(return_value=None)
    session = _session(service, sleep_fn=sleep)

    assert await session.open() is CheckInState.AWAITING_SELECTION
    assert lookup.await_count == 4
    assert sleep.await_count == 3
    assert session.error is None


@pytest.mark.asyncio
async def test_volunteer_list_failure_is_retried(
    service: InMemoryDataService, monkeypatch
) -> None:
    real = service.list_eligible_signups
    calls = {"n": 0}

    async def flaky(position_id: str):
        calls["n"] += 1
        if calls["n"] == 1:
            raise DataServiceError("503 from upstream")
        return await real(position_id)

    monkeypatch.setattr(service, "list_eligible_signups", flaky)
    session = _session(service)

    assert await session.open() is CheckInState.AWAITING_SELECTION
    assert calls["n"] == 2


@pytest.mark.asyncio
async def test_submit_without_selection_makes_no_call(
    service: InMemoryDataService, monkeypatch
) -> None:
    mark = AsyncMock(return_value=True)
    monkeypatch.setattr(service, "mark_arrived", mark)
    session = _session(service)
    await session.open()

    with pytest.raises(InvalidRequest):
        await session.submit()

    assert mark.await_count == 0
    assert session.state is CheckInState.AWAITING_SELECTION


@pytest.mark.asyncio
async def test_select_rejects_ids_outside_eligible_set(
    service: InMemoryDataService,
) -> None:
    session = _session(service)
    await session.open()

    with pytest.raises(InvalidRequest):
        session.select("dan")  # already arrived
    with pytest.raises(InvalidRequest):
        session.select("erin")  # other position

    assert session.selected_signup_id is None


@pytest.mark.asyncio
async def test_successful_submit_removes_volunteer(
    service: InMemoryDataService,
) -> None:
    session = _session(service)
    await session.open()
    session.select("alice")

    assert await session.submit() == "alice"

    assert session.last_arrival == "alice"
    assert session.selected_signup_id is None
    assert [v.id for v in session.volunteers] == ["bob", "carol"]
    assert session.state is CheckInState.AWAITING_SELECTION

    position = service.db.get("position:water")
    assert isinstance(position, Position)
    assert position.filled == 2

    # a fresh session never offers alice again
    again = _session(service)
    await again.open()
    assert "alice" not in [v.id for v in again.volunteers]


@pytest.mark.asyncio
async def test_last_volunteer_leaves_no_eligible_state(
    service: InMemoryDataService,
) -> None:
    session = _session(service)
    await session.open()
    for signup_id in ("bob", "alice", "carol"):
        session.select(signup_id)
        await session.submit()

    assert session.state is CheckInState.NO_ELIGIBLE_VOLUNTEERS
    assert session.volunteers == []


@pytest.mark.asyncio
async def test_submit_failure_keeps_selection_for_retry(
    service: InMemoryDataService, monkeypatch
) -> None:
    real = service.mark_arrived
    mark = AsyncMock(side_effect=[DataServiceError("write conflict"), True])
    monkeypatch.setattr(service, "mark_arrived", mark)
    session = _session(service)
    await session.open()
    session.select("bob")

    with pytest.raises(SubmissionError) as excinfo:
        await session.submit()

    assert excinfo.value.message == "write conflict"
    assert session.state is CheckInState.FAILED
    assert session.selected_signup_id == "bob"

    mark.side_effect = real
    assert await session.submit() == "bob"
    assert "bob" not in [v.id for v in session.volunteers]


@pytest.mark.asyncio
async def test_submit_for_deleted_signup_fails(
    service: InMemoryDataService, monkeypatch
) -> None:
    session = _session(service)
    await session.open()
    session.select("carol")
    # the row disappeared between listing and submitting
    monkeypatch.setattr(service, "mark_arrived", AsyncMock(return_value=False))

    with pytest.raises(SubmissionError):
        await session.submit()

    assert session.state is CheckInState.FAILED


@pytest.mark.asyncio
async def test_reapplying_arrival_is_idempotent(
    service: InMemoryDataService,
) -> None:
    assert await service.mark_arrived("bob") is True
    assert await service.mark_arrived("bob") is True

    position = service.db.get("position:water")
    assert position.filled == 2


@pytest.mark.asyncio
async def test_concurrent_checkins_for_same_signup(
    service: InMemoryDataService,
) -> None:
    first = _session(service)
    second = _session(service)
    await asyncio.gather(first.open(), second.open())
    first.select("bob")
    second.select("bob")

    await asyncio.gather(first.submit(), second.submit())

    assert service.db.get("signup:bob").arrived is True
    assert service.db.get("position:water").filled == 2


@pytest.mark.asyncio
async def test_close_discards_late_position_lookup(
    service: InMemoryDataService, monkeypatch
) -> None:
    gate = asyncio.Event()
    real = service.get_position

    async def slow_lookup(position_id: str):
        await gate.wait()
        return await real(position_id)

    monkeypatch.setattr(service, "get_position", slow_lookup)
    session = _session(service)

    task = asyncio.create_task(session.open())
    await asyncio.sleep(0)
    assert session.state is CheckInState.RESOLVING_POSITION

    session.close()
    gate.set()
    await task

    assert session.closed
    assert session.position is None
    assert session.volunteers == []
    assert session.state is CheckInState.RESOLVING_POSITION


@pytest.mark.asyncio
async def test_reopen_after_success_is_permitted(
    service: InMemoryDataService,
) -> None:
    session = _session(service)
    await session.open()
    session.select("bob")
    await session.submit()

    assert await session.open() is CheckInState.AWAITING_SELECTION
    assert [v.id for v in session.volunteers] == ["alice", "carol"]
