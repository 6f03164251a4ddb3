"""Guest-list automator: converges the calendar page's guest widget to a team.

The guest list is destructive (a removed guest is gone), so every run clears
the widget and re-adds the whole team instead of applying a diff. Each run is
an explicit state machine::

    IDLE -> CLEARING -> (CLEAR_CONFIRMED | CLEAR_RETRY) -> ADDING -> ADD_CONFIRMED -> IDLE
                \\______________________ FALLBACK ______________________/
                                            |
                                          FAILED

* CLEARING needs the bulk-clear control; without it the run goes straight to
  FALLBACK. Guests left after the first click get exactly one more click;
  anything still left after that is logged and the run moves on.
* ADDING writes all emails as one comma-separated string, submits with
  Enter, waits, then empties the input. A missing input means FALLBACK.
* FALLBACK ticks or unticks per-member checkboxes in the "My calendars"
  section, matched by label text. It is attempted once; if it fails too the
  run ends in FAILED and ``AutomationError`` is raised.

Nothing observed on the page is kept between runs.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from enum import StrEnum

from teamcal.automation.page import ControlRole, ElementHandle, GuestListPage, ItemRole
from teamcal.config import AutomationTimings
from teamcal.errors import AutomationError
from teamcal.models import normalize_email

logger = logging.getLogger(__name__)

GUEST_DELIMITER = ", "
SUBMIT_KEY = "Enter"


class AutomatorState(StrEnum):
    idle = "idle"
    clearing = "clearing"
    clear_confirmed = "clear_confirmed"
    clear_retry = "clear_retry"
    adding = "adding"
    add_confirmed = "add_confirmed"
    fallback = "fallback"
    failed = "failed"


class AutomationStrategy(StrEnum):
    bulk = "bulk"
    fallback = "fallback"


@dataclass
class AutomationReport:
    """What a single automator run did."""

    strategy: AutomationStrategy = AutomationStrategy.bulk
    states: list[AutomatorState] = field(default_factory=lambda: [AutomatorState.idle])
    added: list[str] = field(default_factory=list)
    residual_guests: int = 0
    fallback_reason: str | None = None
    toggled_on: list[str] = field(default_factory=list)
    toggled_off: list[str] = field(default_factory=list)
    unmatched: list[str] = field(default_factory=list)
    last_observation: str = "nothing observed yet"

    @property
    def state(self) -> AutomatorState:
        return self.states[-1]

    def enter(self, state: AutomatorState) -> None:
        logger.debug("Guest list automator: %s -> %s", self.state, state)
        self.states.append(state)

    def describe(self) -> str:
        reason = f", fallback reason: {self.fallback_reason}" if self.fallback_reason else ""
        return f"{self.state} ({self.last_observation}{reason})"


class _FallbackRequired(Exception):
    """Internal signal: a bulk control could not be located."""


def _dedupe(emails: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    ordered: list[str] = []
    for email in emails:
        stripped = email.strip()
        key = normalize_email(stripped)
        if stripped and key not in seen:
            seen.add(key)
            ordered.append(stripped)
    return ordered


class GuestListAutomator:
    """Drives a ``GuestListPage`` through the clear/readd state machine."""

    def __init__(
        self,
        page: GuestListPage,
        *,
        timings: AutomationTimings | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._page = page
        self._timings = timings or AutomationTimings()
        self._sleep = sleep

    async def apply(
        self,
        emails_to_show: Iterable[str],
        emails_to_hide: Iterable[str] = (),
    ) -> AutomationReport:
        """Replace the guest list with ``emails_to_show``.

        ``emails_to_hide`` is only used by the checkbox fallback, which has no
        "clear everything" operation of its own.
        """
        show = _dedupe(emails_to_show)
        show_keys = {normalize_email(email) for email in show}
        hide = [e for e in _dedupe(emails_to_hide) if normalize_email(e) not in show_keys]
        report = AutomationReport()

        try:
            await self._clear(report)
            if show:
                await self._add(report, show)
        except _FallbackRequired as signal:
            report.fallback_reason = str(signal)
            logger.warning("Guest list bulk controls unavailable: %s", signal)
        except Exception as exc:
            report.fallback_reason = f"{type(exc).__name__}: {exc}"
            logger.warning(
                "Guest list automation failed in state %s: %s", report.state, exc, exc_info=True
            )
        else:
            report.enter(AutomatorState.idle)
            logger.info(
                "Guest list converged: %d guests added, %d residual",
                len(report.added),
                report.residual_guests,
            )
            return report

        await self._fallback(report, show, hide)
        report.enter(AutomatorState.idle)
        return report

    async def clear(self, emails_to_hide: Iterable[str] = ()) -> AutomationReport:
        """Remove every guest; the fallback unticks ``emails_to_hide``."""
        return await self.apply((), emails_to_hide)

    async def _settle(self, seconds: float) -> None:
        if seconds > 0:
            await self._sleep(seconds)

    async def _observe_guests(self, report: AutomationReport) -> list[ElementHandle]:
        guests = await self._page.find_items(ItemRole.guest)
        report.last_observation = f"{len(guests)} guest(s) in widget"
        return guests

    async def _clear(self, report: AutomationReport) -> None:
        report.enter(AutomatorState.clearing)
        control = await self._page.find_control(ControlRole.clear_guests)
        if control is None:
            report.last_observation = "clear control not found"
            raise _FallbackRequired("clear control not found")

        guests = await self._observe_guests(report)
        if not guests:
            logger.debug("No guests to clear")
            report.enter(AutomatorState.clear_confirmed)
            return

        logger.info("Clearing %d guest(s)", len(guests))
        await control.click()
        await self._settle(self._timings.clear_settle_s)

        remaining = await self._observe_guests(report)
        if not remaining:
            report.enter(AutomatorState.clear_confirmed)
            return

        report.enter(AutomatorState.clear_retry)
        logger.warning("%d guest(s) remain after clearing; retrying once", len(remaining))
        retry_control = await self._page.find_control(ControlRole.clear_guests)
        if retry_control is not None:
            await retry_control.click()
            await self._settle(self._timings.clear_settle_s)
        else:
            logger.warning("Clear control disappeared before retry")

        residual = await self._observe_guests(report)
        report.residual_guests = len(residual)
        if residual:
            logger.warning("%d guest(s) still present after retry; continuing", len(residual))

    async def _add(self, report: AutomationReport, emails: list[str]) -> None:
        report.enter(AutomatorState.adding)
        guest_input = await self._page.find_control(ControlRole.guest_input)
        if guest_input is None:
            report.last_observation = "guest input not found"
            raise _FallbackRequired("guest input not found")

        logger.info("Adding %d guest(s) in one batch", len(emails))
        await guest_input.fill(GUEST_DELIMITER.join(emails))
        await self._settle(self._timings.input_settle_s)
        await guest_input.press(SUBMIT_KEY)
        await self._settle(self._timings.submit_settle_s)
        await guest_input.fill("")

        report.added = list(emails)
        report.last_observation = f"submitted {len(emails)} guest(s)"
        report.enter(AutomatorState.add_confirmed)

    async def _fallback(self, report: AutomationReport, show: list[str], hide: list[str]) -> None:
        report.strategy = AutomationStrategy.fallback
        report.enter(AutomatorState.fallback)
        try:
            if not show and not hide:
                return
            labels = await self._page.find_items(ItemRole.calendar_label)
            report.last_observation = f"{len(labels)} calendar label(s) in calendar list"
            if not labels:
                raise AutomationError(
                    "Calendar list section not found for checkbox fallback",
                    last_state=report.describe(),
                )
            for email in show:
                await self._set_checkbox(report, email, checked=True)
            for email in hide:
                await self._set_checkbox(report, email, checked=False)
        except AutomationError:
            report.enter(AutomatorState.failed)
            raise
        except Exception as exc:
            report.enter(AutomatorState.failed)
            raise AutomationError(
                f"Checkbox fallback failed: {exc}", last_state=report.describe()
            ) from exc

        if report.unmatched:
            logger.warning("No calendar checkbox found for: %s", ", ".join(report.unmatched))

    async def _find_checkbox(self, email: str) -> ElementHandle | None:
        needle = normalize_email(email)
        # Re-query on every lookup: a click re-renders the section.
        for label in await self._page.find_items(ItemRole.calendar_label):
            if needle in (await label.text()).lower():
                checkbox = await label.find_checkbox()
                if checkbox is not None:
                    return checkbox
        return None

    async def _set_checkbox(self, report: AutomationReport, email: str, *, checked: bool) -> None:
        checkbox = await self._find_checkbox(email)
        if checkbox is None:
            report.unmatched.append(email)
            return
        if await checkbox.is_checked() == checked:
            return
        await checkbox.click()
        if checked:
            report.toggled_on.append(email)
        else:
            report.toggled_off.append(email)
        logger.info("Calendar checkbox %s: %s", "checked" if checked else "unchecked", email)
