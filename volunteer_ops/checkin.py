"""
Check-in flow for a single position, driven from a QR-code link.

    session = CheckInSession(service, position_id)
    await session.open()          # resolve position, load eligible volunteers
    session.select(signup_id)
    await session.submit()        # sets arrived=true, then reloads the list

The durable ``arrived`` flag in the data service is the only state that
matters across sessions; a session can always be reopened.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from enum import StrEnum
from typing import TypeVar

from volunteer_ops.errors import (
    InvalidRequest,
    NotFound,
    SubmissionError,
    TransientServiceError,
)
from volunteer_ops.models import EligibleVolunteer, PositionDetail
from volunteer_ops.service import DataService, DataServiceError

logger = logging.getLogger(__name__)

T = TypeVar("T")
SleepFn = Callable[[float], Awaitable[None]]


class CheckInState(StrEnum):
    UNINITIALIZED = "uninitialized"
    RESOLVING_POSITION = "resolving_position"
    POSITION_NOT_FOUND = "position_not_found"
    POSITION_READY = "position_ready"
    LOADING_VOLUNTEERS = "loading_volunteers"
    NO_ELIGIBLE_VOLUNTEERS = "no_eligible_volunteers"
    AWAITING_SELECTION = "awaiting_selection"
    SUBMITTING = "submitting"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class CheckInSession:
    def __init__(
        self,
        service: DataService,
        position_id: str | None,
        *,
        retries: int = 3,
        retry_delay: float = 1.0,
        sleep_fn: SleepFn = asyncio.sleep,
    ) -> None:
        self.service = service
        self.position_id = position_id.strip() if position_id else None
        self.retries = retries
        self.retry_delay = retry_delay
        self.sleep_fn = sleep_fn

        self.state = CheckInState.UNINITIALIZED
        self.position: PositionDetail | None = None
        self.volunteers: list[EligibleVolunteer] = []
        self.selected_signup_id: str | None = None
        self.last_arrival: str | None = None
        self.error: str | None = None

        # bumped by open() and close(); responses from an older generation
        # are dropped
        self._generation = 0
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        self._closed = True
        self._generation += 1

    def _is_stale(self, generation: int) -> bool:
        return self._closed or generation != self._generation

    async def _with_retries(self, op: Callable[[], Awaitable[T]], what: str) -> T:
        # one initial attempt, then up to `retries` more
        attempts = self.retries + 1
        attempt = 0
        while True:
            attempt += 1
            try:
                return await op()
            except DataServiceError as exc:
                logger.warning(
                    "%s failed (attempt %d/%d): %s",
                    what,
                    attempt,
                    attempts,
                    exc,
                )
                if attempt >= attempts:
                    raise TransientServiceError(str(exc)) from exc
            await self.sleep_fn(self.retry_delay)

    def _fail(self, message: str) -> None:
        self.state = CheckInState.FAILED
        self.error = message

    async def open(self) -> CheckInState:
        """Resolve the position, then load its eligible volunteers."""
        if not self.position_id:
            raise InvalidRequest("Invalid QR code: No position ID")
        if self._closed:
            raise InvalidRequest("Check-in session is closed")

        self._generation += 1
        generation = self._generation
        self.position = None
        self.volunteers = []
        self.selected_signup_id = None
        self.error = None

        await self.resolve_position(generation)
        if self._is_stale(generation):
            return self.state
        await self.load_volunteers(generation)
        return self.state

    async def resolve_position(self, generation: int | None = None) -> None:
        generation = self._generation if generation is None else generation
        self.state = CheckInState.RESOLVING_POSITION
        try:
            position = await self._with_retries(
                lambda: self.service.get_position(self.position_id),
                f"position lookup {self.position_id}",
            )
        except TransientServiceError as exc:
            if not self._is_stale(generation):
                self._fail(exc.message)
            raise

        if self._is_stale(generation):
            logger.debug("dropping stale position %s", self.position_id)
            return

        if position is None:
            self.state = CheckInState.POSITION_NOT_FOUND
            self.error = "Position not found"
            raise NotFound("Position not found")

        self.position = position
        self.state = CheckInState.POSITION_READY

    async def load_volunteers(self, generation: int | None = None) -> None:
        if self.position is None:
            raise InvalidRequest("Position has not been resolved")
        generation = self._generation if generation is None else generation

        self.state = CheckInState.LOADING_VOLUNTEERS
        try:
            volunteers = await self._with_retries(
                lambda: self.service.list_eligible_signups(self.position.id),
                f"volunteer list for {self.position.id}",
            )
        except TransientServiceError as exc:
            if not self._is_stale(generation):
                self._fail(exc.message)
            raise

        if self._is_stale(generation):
            logger.debug("dropping stale volunteer list for %s", self.position.id)
            return

        self.volunteers = sorted(volunteers, key=lambda v: v.start_time)
        if self.volunteers:
            self.state = CheckInState.AWAITING_SELECTION
        else:
            self.state = CheckInState.NO_ELIGIBLE_VOLUNTEERS

    def select(self, signup_id: str | None) -> None:
        if not signup_id:
            self.selected_signup_id = None
            return
        if all(v.id != signup_id for v in self.volunteers):
            raise InvalidRequest(
                f"Volunteer {signup_id} is not awaiting check-in here"
            )
        self.selected_signup_id = signup_id
        if self.state is CheckInState.FAILED:
            self.state = CheckInState.AWAITING_SELECTION

    async def submit(self) -> str:
        """Mark the selected signup as arrived. Returns its id."""
        signup_id = self.selected_signup_id
        if not signup_id:
            raise InvalidRequest("Select your name to check in")

        generation = self._generation
        self.state = CheckInState.SUBMITTING
        self.error = None
        try:
            found = await self.service.mark_arrived(signup_id)
        except DataServiceError as exc:
            logger.warning("check-in of %s failed: %s", signup_id, exc)
            if not self._is_stale(generation):
                self._fail(str(exc))
            raise SubmissionError(str(exc)) from exc

        if not found:
            if not self._is_stale(generation):
                self._fail("Volunteer signup no longer exists")
            raise SubmissionError("Volunteer signup no longer exists")

        logger.info(
            "volunteer %s checked in at position %s", signup_id, self.position_id
        )
        if self._is_stale(generation):
            return signup_id

        self.state = CheckInState.SUCCEEDED
        self.last_arrival = signup_id
        self.selected_signup_id = None
        await self.load_volunteers(generation)
        return signup_id
