"""
Bounded, most-recent-first feed of dashboard issues.

Two producers append to it: signup notifications pushed on the realtime
channel, and the staffing monitor. Display order is insertion order.
"""

import asyncio
import logging
from collections import deque
from collections.abc import Awaitable, Callable, Iterator
from datetime import UTC, datetime
from uuid import uuid4

from volunteer_ops.models import Issue, IssueType, PositionRef, SignupNotification
from volunteer_ops.service import DataServiceError

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 100

NowFn = Callable[[], datetime]
PositionLookup = Callable[[str], Awaitable[PositionRef | None]]


class LiveIssueFeed:
    def __init__(
        self,
        capacity: int = DEFAULT_CAPACITY,
        *,
        now_fn: NowFn = lambda: datetime.now(UTC),
    ) -> None:
        self.capacity = capacity
        self.now_fn = now_fn
        self._issues: deque[Issue] = deque(maxlen=capacity)

    def add(self, issue: Issue) -> None:
        # deque(maxlen) drops from the right, i.e. the oldest entry
        self._issues.appendleft(issue)

    def __len__(self) -> int:
        return len(self._issues)

    def __iter__(self) -> Iterator[Issue]:
        return iter(self._issues)

    def clear(self) -> None:
        self._issues.clear()

    def view(self, event_id: str | None = None) -> list[Issue]:
        """Issues for ``event_id``; issues without a position always show."""
        if event_id is None:
            return list(self._issues)
        return [
            i
            for i in self._issues
            if i.position is None or i.position.event_id == event_id
        ]

    async def handle_signup(
        self, notification: SignupNotification, lookup: PositionLookup
    ) -> Issue | None:
        try:
            position = await lookup(notification.position_id)
        except DataServiceError as exc:
            logger.warning(
                "dropping signup notification %s: position lookup failed: %s",
                notification.signup_id,
                exc,
            )
            return None
        if position is None:
            logger.warning(
                "dropping signup notification %s: unknown position %s",
                notification.signup_id,
                notification.position_id,
            )
            return None

        issue = Issue(
            id=str(uuid4()),
            type=IssueType.INFO,
            message=(
                f"New volunteer {notification.volunteer_name} "
                f"signed up for {position.name}"
            ),
            timestamp=self.now_fn(),
            position=position,
        )
        self.add(issue)
        return issue

    async def consume(
        self,
        channel: asyncio.Queue[SignupNotification],
        lookup: PositionLookup,
    ) -> None:
        """Fold channel notifications into the feed until cancelled."""
        while True:
            notification = await channel.get()
            try:
                await self.handle_signup(notification, lookup)
            finally:
                channel.task_done()
