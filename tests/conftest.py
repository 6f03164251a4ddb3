"""Shared fakes for the teamcal test suite.

``FakeCalendarPage`` is an in-memory stand-in for the calendar web UI: a
guest widget with a bulk-clear control and a comma-separated input, plus a
"My calendars" section with one checkbox per calendar. ``FakeCalendarList``
records every call the reconciliation engine makes against the calendar-list
backend.
"""

from __future__ import annotations

from collections.abc import Iterable

import httpx
import pytest

from teamcal.automation.page import ControlRole, ElementHandle, GuestListPage, ItemRole
from teamcal.calendar_list import BatchResult
from teamcal.errors import SubscribeError, VisibilityError
from teamcal.messaging import Delivered, Delivery, NotificationChannel, ToggleCalendarsMessage
from teamcal.models import CalendarEntry, Member, Team, normalize_email

# ---------------------------------------------------------------------------
# Calendar page
# ---------------------------------------------------------------------------


class _FakeElement(ElementHandle):
    def __init__(self, text: str = "") -> None:
        self._text = text

    async def text(self) -> str:
        return self._text

    async def click(self) -> None:
        return None

    async def fill(self, value: str) -> None:
        return None

    async def press(self, key: str) -> None:
        return None

    async def is_checked(self) -> bool:
        return False

    async def find_checkbox(self) -> ElementHandle | None:
        return None


class _ClearControl(_FakeElement):
    def __init__(self, page: FakeCalendarPage) -> None:
        super().__init__("Clear")
        self._page = page

    async def click(self) -> None:
        self._page.clear_clicks += 1
        if self._page.clear_error is not None:
            raise self._page.clear_error
        if self._page.stuck_clears > 0:
            self._page.stuck_clears -= 1
            return
        self._page.guests.clear()


class _GuestInput(_FakeElement):
    def __init__(self, page: FakeCalendarPage) -> None:
        super().__init__("")
        self._page = page

    async def fill(self, value: str) -> None:
        self._page.input_fills.append(value)
        self._page.input_value = value

    async def press(self, key: str) -> None:
        self._page.input_presses.append(key)
        if key == "Enter":
            added = [part.strip() for part in self._page.input_value.split(",")]
            self._page.guests.extend(email for email in added if email)


class _Checkbox(_FakeElement):
    def __init__(self, page: FakeCalendarPage, email: str) -> None:
        super().__init__("")
        self._page = page
        self._email = email

    async def is_checked(self) -> bool:
        return self._page.calendars[self._email]

    async def click(self) -> None:
        self._page.checkbox_clicks.append(self._email)
        self._page.calendars[self._email] = not self._page.calendars[self._email]


class _CalendarLabel(_FakeElement):
    def __init__(self, page: FakeCalendarPage, email: str) -> None:
        local_part = email.split("@", 1)[0]
        super().__init__(f"{local_part.title()} ({email})")
        self._page = page
        self._email = email

    async def find_checkbox(self) -> ElementHandle | None:
        return _Checkbox(self._page, self._email)


class FakeCalendarPage(GuestListPage):
    """In-memory calendar page; every lookup reflects the current state."""

    def __init__(
        self,
        *,
        guests: Iterable[str] = (),
        calendars: dict[str, bool] | None = None,
        clear_control: bool = True,
        guest_input: bool = True,
        calendar_section: bool = True,
        stuck_clears: int = 0,
        sidebar_items: int = 0,
    ) -> None:
        self.guests = list(guests)
        self.calendars = dict(calendars or {})
        self.clear_control = clear_control
        self.guest_input = guest_input
        self.calendar_section = calendar_section
        self.stuck_clears = stuck_clears
        self.sidebar_items = sidebar_items
        self.clear_error: Exception | None = None
        self.clear_clicks = 0
        self.input_value = ""
        self.input_fills: list[str] = []
        self.input_presses: list[str] = []
        self.checkbox_clicks: list[str] = []

    async def find_control(self, role: ControlRole) -> ElementHandle | None:
        if role is ControlRole.clear_guests:
            return _ClearControl(self) if self.clear_control else None
        return _GuestInput(self) if self.guest_input else None

    async def find_items(self, role: ItemRole) -> list[ElementHandle]:
        if role is ItemRole.guest:
            return [_FakeElement(email) for email in self.guests]
        if role is ItemRole.calendar_label:
            if not self.calendar_section:
                return []
            return [_CalendarLabel(self, email) for email in self.calendars]
        return [_FakeElement(f"item {i}") for i in range(self.sidebar_items)]


# ---------------------------------------------------------------------------
# Calendar-list backend
# ---------------------------------------------------------------------------


class FakeCalendarList:
    """Records engine calls; entries are keyed by normalized calendar id."""

    def __init__(
        self,
        entries: Iterable[CalendarEntry] = (),
        *,
        fail_subscribe: Iterable[str] = (),
        fail_visibility: Iterable[str] = (),
    ) -> None:
        self.entries = {entry.key: entry for entry in entries}
        self.fail_subscribe = {normalize_email(e) for e in fail_subscribe}
        self.fail_visibility = {normalize_email(e) for e in fail_visibility}
        self.list_error: Exception | None = None
        self.visibility_error: Exception | None = None
        self.calls: list[tuple] = []

    @property
    def mutations(self) -> list[tuple]:
        return [call for call in self.calls if call[0] != "list"]

    async def list_entries(self) -> list[CalendarEntry]:
        self.calls.append(("list",))
        if self.list_error is not None:
            raise self.list_error
        return list(self.entries.values())

    async def batch_subscribe(
        self, emails: Iterable[str], color_id: str | None = None
    ) -> BatchResult:
        emails = list(emails)
        self.calls.append(("subscribe", tuple(emails), color_id))
        result = BatchResult()
        for email in emails:
            if normalize_email(email) in self.fail_subscribe:
                result.failed[email] = SubscribeError(
                    status_code=403, message="forbidden", calendar_id=email
                )
                continue
            self.entries[normalize_email(email)] = CalendarEntry(id=email, selected=True)
            result.succeeded.append(email)
        return result

    async def batch_toggle_visibility(
        self, calendar_ids: Iterable[str], visible: bool
    ) -> BatchResult:
        calendar_ids = list(calendar_ids)
        self.calls.append(("visibility", tuple(calendar_ids), visible))
        if self.visibility_error is not None:
            raise self.visibility_error
        result = BatchResult()
        for calendar_id in calendar_ids:
            entry = self.entries.get(normalize_email(calendar_id))
            if entry is None or normalize_email(calendar_id) in self.fail_visibility:
                result.failed[calendar_id] = VisibilityError(
                    status_code=404, message="Not Found", calendar_id=calendar_id
                )
                continue
            self.entries[entry.key] = entry.model_copy(update={"selected": visible})
            result.succeeded.append(calendar_id)
        return result

    def visible(self) -> set[str]:
        return {key for key, entry in self.entries.items() if entry.selected}


# ---------------------------------------------------------------------------
# Messaging
# ---------------------------------------------------------------------------


class RecordingChannel(NotificationChannel):
    def __init__(self, context_id: str = "page-1", *, error: Exception | None = None) -> None:
        self._context_id = context_id
        self._error = error
        self.messages: list[ToggleCalendarsMessage] = []

    @property
    def context_id(self) -> str:
        return self._context_id

    async def notify(self, message: ToggleCalendarsMessage) -> Delivery:
        self.messages.append(message)
        if self._error is not None:
            raise self._error
        return Delivered(self._context_id)


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


def make_team(team_id: str, *emails: str, owner: str = "owner@example.com") -> Team:
    return Team(
        id=team_id,
        name=team_id.title(),
        owner=owner,
        members=[Member(email=email) for email in emails],
    )


def json_response(
    status_code: int,
    payload: object | None = None,
    *,
    method: str = "GET",
    url: str = "https://example.test",
) -> httpx.Response:
    request = httpx.Request(method, url)
    if payload is None:
        return httpx.Response(status_code, request=request)
    return httpx.Response(status_code, json=payload, request=request)


@pytest.fixture
def page() -> FakeCalendarPage:
    return FakeCalendarPage()


@pytest.fixture
def calendar_list() -> FakeCalendarList:
    return FakeCalendarList()
