import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from datetime import UTC, datetime, timedelta
from uuid import uuid4

from volunteer_ops.models import Issue, IssueType, PositionRef, PositionStatus

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_S = 60.0

NowFn = Callable[[], datetime]
SleepFn = Callable[[float], Awaitable[None]]
PositionsFn = Callable[[], Sequence[PositionStatus]]
EmitFn = Callable[[Issue], None]


class StaffingMonitor:
    """
    Periodically emits one warning per understaffed position.

    Level-triggered: a position that stays understaffed is reported again on
    every tick. Ticks are scheduled at fixed offsets from ``start()``; after a
    late wake-up the missed slots are dropped and the next tick lands on the
    next future slot. A failing tick is logged and the loop keeps going.
    """

    def __init__(
        self,
        positions_fn: PositionsFn,
        emit: EmitFn,
        *,
        interval: float = DEFAULT_INTERVAL_S,
        now_fn: NowFn = lambda: datetime.now(UTC),
        sleep_fn: SleepFn = asyncio.sleep,
    ) -> None:
        self.positions_fn = positions_fn
        self.emit = emit
        self.interval = interval
        self.now_fn = now_fn
        self.sleep_fn = sleep_fn
        self.ticks = 0
        self._task: asyncio.Task | None = None

    def evaluate(self, positions: Sequence[PositionStatus]) -> list[Issue]:
        timestamp = self.now_fn()
        return [
            Issue(
                id=str(uuid4()),
                type=IssueType.WARNING,
                message=(
                    f"Position {p.name} is understaffed ({p.filled}/{p.needed})"
                ),
                timestamp=timestamp,
                position=PositionRef(
                    id=p.id,
                    name=p.name,
                    event_id=p.event.id,
                    event_name=p.event.name,
                ),
            )
            for p in positions
            if p.filled < p.needed
        ]

    def tick(self) -> list[Issue]:
        issues = self.evaluate(self.positions_fn())
        for issue in issues:
            self.emit(issue)
        self.ticks += 1
        logger.debug("staffing tick %d: %d understaffed", self.ticks, len(issues))
        return issues

    async def run(self) -> None:
        start = self.now_fn()
        scheduled = 0
        while True:
            scheduled += 1
            target = start + timedelta(seconds=self.interval * scheduled)
            remaining = (target - self.now_fn()).total_seconds()
            if remaining > 0:
                await self.sleep_fn(remaining)
            try:
                self.tick()
            except Exception:
                logger.exception("staffing tick failed; retrying next interval")
            # slots that passed while we were late are skipped, not replayed
            elapsed = (self.now_fn() - start).total_seconds()
            scheduled = max(scheduled, int(elapsed // self.interval))

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> asyncio.Task:
        if self.running:
            return self._task
        self._task = asyncio.create_task(self.run())
        logger.info("staffing monitor started (every %.0fs)", self.interval)
        return self._task

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("staffing monitor stopped after %d tick(s)", self.ticks)
