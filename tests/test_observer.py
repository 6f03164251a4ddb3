"""Tests for the calendar page diagnostics observer."""

from __future__ import annotations

import asyncio

import pytest
from conftest import FakeCalendarPage

from teamcal.automation.observer import ListRegionObserver
from teamcal.automation.page import ItemRole

pytestmark = pytest.mark.unit


class _BrokenPage(FakeCalendarPage):
    def __init__(self) -> None:
        super().__init__()
        self.polls = 0

    async def find_items(self, role: ItemRole):
        self.polls += 1
        raise RuntimeError("page navigated away")


class TestPollOnce:
    async def test_counts_watched_regions(self):
        page = FakeCalendarPage(guests=["a@x.com"], sidebar_items=3)
        observer = ListRegionObserver(page)

        counts = await observer.poll_once()

        assert counts == {ItemRole.list_region: 3, ItemRole.guest: 1}
        assert observer.changes_seen == 0

    async def test_detects_changes_between_polls(self):
        page = FakeCalendarPage(sidebar_items=3)
        observer = ListRegionObserver(page)

        await observer.poll_once()
        page.sidebar_items = 4
        page.guests.append("a@x.com")
        await observer.poll_once()
        await observer.poll_once()

        assert observer.changes_seen == 2


class TestLifecycle:
    async def test_start_and_stop(self):
        page = FakeCalendarPage(sidebar_items=1)
        observer = ListRegionObserver(page, interval_s=0)

        observer.start()
        assert observer.running
        for _ in range(5):
            await asyncio.sleep(0)
        await observer.stop()

        assert observer.running is False

    async def test_start_is_idempotent(self):
        observer = ListRegionObserver(FakeCalendarPage(), interval_s=0)
        observer.start()
        observer.start()
        await observer.stop()
        await observer.stop()

    async def test_poll_errors_do_not_stop_the_loop(self):
        page = _BrokenPage()
        observer = ListRegionObserver(page, interval_s=0)

        observer.start()
        for _ in range(5):
            await asyncio.sleep(0)

        assert observer.running
        assert page.polls >= 2
        await observer.stop()
