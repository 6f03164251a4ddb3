"""Playwright-backed ``GuestListPage`` for the Google Calendar web UI.

Selectors are matched in order; the first that resolves wins. The calendar
UI changes its markup without notice, so selectors live in configuration
(see ``teamcal.config.PageSelectors``).
"""

from __future__ import annotations

import logging

from playwright.async_api import ElementHandle as PlaywrightElementHandle
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page

from teamcal.automation.page import ControlRole, ElementHandle, GuestListPage, ItemRole
from teamcal.config import PageSelectors

logger = logging.getLogger(__name__)


class PlaywrightElement(ElementHandle):
    def __init__(self, handle: PlaywrightElementHandle) -> None:
        self._handle = handle

    async def text(self) -> str:
        return (await self._handle.text_content()) or ""

    async def click(self) -> None:
        await self._handle.click()

    async def fill(self, value: str) -> None:
        await self._handle.fill(value)

    async def press(self, key: str) -> None:
        await self._handle.press(key)

    async def is_checked(self) -> bool:
        return await self._handle.is_checked()

    async def find_checkbox(self) -> ElementHandle | None:
        checkbox = await self._handle.query_selector('input[type="checkbox"]')
        return PlaywrightElement(checkbox) if checkbox is not None else None


class PlaywrightGuestListPage(GuestListPage):
    """Role lookups against a live Playwright ``Page``."""

    def __init__(self, page: Page, selectors: PageSelectors | None = None) -> None:
        self._page = page
        self._selectors = selectors or PageSelectors()

    async def _first(self, candidates: list[str]) -> PlaywrightElementHandle | None:
        for selector in candidates:
            try:
                handle = await self._page.query_selector(selector)
            except PlaywrightError as exc:
                logger.debug("Selector %r failed: %s", selector, exc)
                continue
            if handle is not None:
                return handle
        return None

    async def find_control(self, role: ControlRole) -> ElementHandle | None:
        if role is ControlRole.clear_guests:
            candidates = self._selectors.clear_control
        else:
            candidates = self._selectors.guest_input
        handle = await self._first(candidates)
        if handle is None:
            logger.debug("Control %s not found", role)
            return None
        return PlaywrightElement(handle)

    async def find_items(self, role: ItemRole) -> list[ElementHandle]:
        if role is ItemRole.guest:
            section_selectors = self._selectors.guest_section
            item_selector = self._selectors.guest_item
        elif role is ItemRole.calendar_label:
            section_selectors = self._selectors.calendar_section
            item_selector = self._selectors.calendar_label
        else:
            section_selectors, item_selector = self._selectors.list_region, ":scope > *"

        section = await self._first(section_selectors)
        if section is None:
            return []
        handles = await section.query_selector_all(item_selector)
        return [PlaywrightElement(handle) for handle in handles]
