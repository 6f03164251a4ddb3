"""Page capability used by the guest-list automator.

The automator never touches a browser directly. It asks a ``GuestListPage``
for controls and item lists by role, so its state machine can run against a
real Playwright page or an in-memory fake.
"""

from __future__ import annotations

import abc
from enum import StrEnum


class ControlRole(StrEnum):
    """Single controls the automator needs to locate."""

    clear_guests = "clear_guests"
    guest_input = "guest_input"


class ItemRole(StrEnum):
    """Element collections the automator observes."""

    # Guests currently added to the invitation widget.
    guest = "guest"
    # Labelled rows inside the "My calendars" section, used by the fallback.
    calendar_label = "calendar_label"
    # Children of the sidebar region watched by the diagnostics observer.
    list_region = "list_region"


class ElementHandle(abc.ABC):
    """Minimal element operations the automator performs."""

    @abc.abstractmethod
    async def text(self) -> str:
        """Visible text content (empty string when there is none)."""
        ...

    @abc.abstractmethod
    async def click(self) -> None: ...

    @abc.abstractmethod
    async def fill(self, value: str) -> None:
        """Replace the element's value and fire input/change events."""
        ...

    @abc.abstractmethod
    async def press(self, key: str) -> None: ...

    @abc.abstractmethod
    async def is_checked(self) -> bool: ...

    @abc.abstractmethod
    async def find_checkbox(self) -> ElementHandle | None:
        """Return the checkbox nested in this element, if any."""
        ...


class GuestListPage(abc.ABC):
    """Role-based element discovery on the calendar page.

    Every call must observe the live page; implementations must not cache
    results because the page re-renders on its own.
    """

    @abc.abstractmethod
    async def find_control(self, role: ControlRole) -> ElementHandle | None: ...

    @abc.abstractmethod
    async def find_items(self, role: ItemRole) -> list[ElementHandle]: ...
