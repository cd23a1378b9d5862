"""Due-window scanner and the single-flight guard shared by periodic triggers."""

import logging
import threading
from datetime import timedelta

from medreminder.clock import Clock, SystemClock
from medreminder.exceptions import StoreUnavailable
from medreminder.metrics import scans_failed_total, scans_skipped_total, scans_total
from medreminder.services.dispatch import DispatchCoordinator
from medreminder.store import ReminderStore

logger = logging.getLogger(__name__)


class SingleFlight:
    """Non-blocking guard: at most one holder at a time, latecomers are turned away."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._lock = threading.Lock()

    def acquire(self) -> bool:
        return self._lock.acquire(blocking=False)

    def release(self) -> None:
        self._lock.release()

    @property
    def busy(self) -> bool:
        return self._lock.locked()


class DueWindowScanner:
    """Finds occurrences due within the lookahead window and dispatches them.

    Ticks are single-flight: a tick that starts while another is still in
    progress returns immediately without touching the store. The guard is
    per process only.
    """

    def __init__(
        self,
        store: ReminderStore,
        coordinator: DispatchCoordinator,
        clock: Clock | None = None,
        lookahead: timedelta = timedelta(minutes=5),
    ) -> None:
        self.store = store
        self.coordinator = coordinator
        self.clock = clock or SystemClock()
        self.lookahead = lookahead
        self.guard = SingleFlight("due-window-scan")

    async def tick(self) -> dict | None:
        """Run one scan.

        Returns:
            Summary dict of the scan, or None if skipped because a previous
            tick is still running
        """
        if not self.guard.acquire():
            scans_skipped_total.inc()
            logger.warning("Previous scan still running, skipping this tick")
            return None

        try:
            return await self._scan()
        finally:
            self.guard.release()

    async def _scan(self) -> dict:
        scans_total.inc()
        now = self.clock.now()
        window_end = now + self.lookahead

        try:
            due = self.store.find_due(now, window_end)
        except StoreUnavailable as e:
            scans_failed_total.inc()
            logger.error(f"Scan failed, will retry next tick: {e}")
            return {"success": False, "error": str(e)}

        dispatched = 0
        fully_failed = 0
        for reminder, occurrence in due:
            outcome = await self.coordinator.dispatch(reminder, occurrence)
            if outcome.marked_notified:
                dispatched += 1
            if outcome.failed and not outcome.delivered:
                fully_failed += 1

        if due:
            logger.info(
                f"Scan window {now.isoformat()} - {window_end.isoformat()}: "
                f"{len(due)} due, {dispatched} marked notified, {fully_failed} with no channel delivered"
            )
        return {"success": True, "due": len(due), "dispatched": dispatched, "fully_failed": fully_failed}
