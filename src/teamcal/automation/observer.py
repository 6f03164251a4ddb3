"""Background diagnostics for the calendar page.

``ListRegionObserver`` polls the sidebar and guest widget and logs when
their structure changes. It is purely diagnostic: reconciliation never reads
from it.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable

from teamcal.automation.page import GuestListPage, ItemRole

logger = logging.getLogger(__name__)

_WATCHED_ROLES = (ItemRole.list_region, ItemRole.guest)


class ListRegionObserver:
    def __init__(
        self,
        page: GuestListPage,
        *,
        interval_s: float = 1.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._page = page
        self._interval_s = interval_s
        self._sleep = sleep
        self._task: asyncio.Task[None] | None = None
        self._last_counts: dict[ItemRole, int] = {}
        self.changes_seen = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="teamcal-list-observer")
        logger.debug("Calendar list observer started")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        logger.debug("Calendar list observer stopped")

    async def poll_once(self) -> dict[ItemRole, int]:
        counts = {role: len(await self._page.find_items(role)) for role in _WATCHED_ROLES}
        for role, count in counts.items():
            previous = self._last_counts.get(role)
            if previous is not None and previous != count:
                self.changes_seen += 1
                logger.info("Calendar page %s changed: %d -> %d element(s)", role, previous, count)
        self._last_counts = counts
        return counts

    async def _run(self) -> None:
        while True:
            try:
                await self.poll_once()
            except Exception:
                # Diagnostics must never take the page context down.
                logger.debug("Calendar list observer poll failed", exc_info=True)
            await self._sleep(self._interval_s)
