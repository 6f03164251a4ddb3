"""Tests for the Playwright-backed page adapter, using mocked Playwright handles."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest
from playwright.async_api import Error as PlaywrightError

from teamcal.automation.page import ControlRole, ItemRole
from teamcal.automation.playwright_page import PlaywrightGuestListPage
from teamcal.config import PageSelectors

pytestmark = pytest.mark.unit


def _handle(text: str = "", checked: bool = False) -> MagicMock:
    handle = MagicMock()
    handle.text_content = AsyncMock(return_value=text)
    handle.click = AsyncMock()
    handle.fill = AsyncMock()
    handle.press = AsyncMock()
    handle.is_checked = AsyncMock(return_value=checked)
    handle.query_selector = AsyncMock(return_value=None)
    handle.query_selector_all = AsyncMock(return_value=[])
    return handle


def _page(found: dict[str, MagicMock]) -> MagicMock:
    async def _query_selector(selector: str):
        if selector == "bad[":
            raise PlaywrightError("invalid selector")
        return found.get(selector)

    page = MagicMock()
    page.query_selector = AsyncMock(side_effect=_query_selector)
    return page


class TestFindControl:
    async def test_first_matching_selector_wins(self):
        clear = _handle("Clear")
        selectors = PageSelectors(clear_control=["bad[", "#missing", "#clear"])
        adapter = PlaywrightGuestListPage(_page({"#clear": clear}), selectors)

        control = await adapter.find_control(ControlRole.clear_guests)

        assert control is not None
        await control.click()
        clear.click.assert_awaited_once()

    async def test_missing_control(self):
        adapter = PlaywrightGuestListPage(_page({}), PageSelectors(guest_input=["#input"]))
        assert await adapter.find_control(ControlRole.guest_input) is None

    async def test_input_operations(self):
        field = _handle()
        adapter = PlaywrightGuestListPage(
            _page({"#input": field}), PageSelectors(guest_input=["#input"])
        )

        control = await adapter.find_control(ControlRole.guest_input)
        await control.fill("a@x.com, b@x.com")
        await control.press("Enter")

        field.fill.assert_awaited_once_with("a@x.com, b@x.com")
        field.press.assert_awaited_once_with("Enter")


class TestFindItems:
    async def test_guest_items_come_from_guest_section(self):
        section = _handle()
        section.query_selector_all = AsyncMock(return_value=[_handle("a@x.com"), _handle("b")])
        selectors = PageSelectors(guest_section=["#guests"], guest_item="li")
        adapter = PlaywrightGuestListPage(_page({"#guests": section}), selectors)

        items = await adapter.find_items(ItemRole.guest)

        assert [await item.text() for item in items] == ["a@x.com", "b"]
        section.query_selector_all.assert_awaited_once_with("li")

    async def test_missing_section_means_no_items(self):
        adapter = PlaywrightGuestListPage(_page({}), PageSelectors(calendar_section=["#mine"]))
        assert await adapter.find_items(ItemRole.calendar_label) == []

    async def test_calendar_label_checkbox(self):
        checkbox = _handle(checked=True)
        label = _handle("Alice (alice@x.com)")
        label.query_selector = AsyncMock(return_value=checkbox)
        section = _handle()
        section.query_selector_all = AsyncMock(return_value=[label])
        selectors = PageSelectors(calendar_section=["#mine"])
        adapter = PlaywrightGuestListPage(_page({"#mine": section}), selectors)

        [item] = await adapter.find_items(ItemRole.calendar_label)
        found = await item.find_checkbox()

        assert found is not None
        assert await found.is_checked() is True
        label.query_selector.assert_awaited_once_with('input[type="checkbox"]')

    async def test_label_without_checkbox(self):
        label = _handle("Room 1")
        section = _handle()
        section.query_selector_all = AsyncMock(return_value=[label])
        adapter = PlaywrightGuestListPage(
            _page({"#mine": section}), PageSelectors(calendar_section=["#mine"])
        )

        [item] = await adapter.find_items(ItemRole.calendar_label)

        assert await item.find_checkbox() is None

    async def test_list_region_children(self):
        region = _handle()
        region.query_selector_all = AsyncMock(return_value=[_handle(), _handle()])
        adapter = PlaywrightGuestListPage(
            _page({"nav": region}), PageSelectors(list_region=["nav"])
        )

        assert len(await adapter.find_items(ItemRole.list_region)) == 2
        region.query_selector_all.assert_awaited_once_with(":scope > *")
