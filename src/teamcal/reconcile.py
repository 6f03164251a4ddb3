"""Team reconciliation engine.

Converges the active surface from a previous team's members to a new team's
members:

* ``calendar_list`` (persistent, flag-toggleable): diff the two member sets,
  hide ``P - N`` and show ``N - P`` concurrently, and leave shared members
  alone. Reselecting the same team issues no calls at all. Hiding never
  unsubscribes, so it is always reversible by showing again.
* ``guest_list`` (destructive, append-only): clear the widget and re-add all
  of ``N`` every time, even when ``P == N``, because the user may have edited
  the guest list by hand since the last switch.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

from opentelemetry import trace

from teamcal.automation.guest_list import AutomationReport, GuestListAutomator
from teamcal.calendar_list import BatchResult, CalendarListClient
from teamcal.errors import AuthError, CalendarRequestError, ReconcileError
from teamcal.models import ReconcileRequest, Surface, Team, normalize_email

logger = logging.getLogger(__name__)
tracer = trace.get_tracer("teamcal")


@dataclass
class ReconcileReport:
    """Summary of one reconciliation. Per-member failures are in ``failed``."""

    surface: Surface
    to_show: list[str] = field(default_factory=list)
    to_hide: list[str] = field(default_factory=list)
    subscribed: list[str] = field(default_factory=list)
    shown: list[str] = field(default_factory=list)
    hidden: list[str] = field(default_factory=list)
    failed: dict[str, CalendarRequestError] = field(default_factory=dict)
    automation: AutomationReport | None = None

    @property
    def ok(self) -> bool:
        return not self.failed

    @property
    def operation_count(self) -> int:
        return len(self.to_show) + len(self.to_hide)


@dataclass
class _ShowOutcome:
    subscribed: BatchResult = field(default_factory=BatchResult)
    visibility: BatchResult = field(default_factory=BatchResult)


class ReconciliationEngine:
    """Dispatches show/hide work to the backend of the active surface."""

    def __init__(
        self,
        *,
        surface: Surface = Surface.calendar_list,
        calendar_list: CalendarListClient | None = None,
        guest_list: GuestListAutomator | None = None,
        color_id: str | None = None,
    ) -> None:
        if surface is Surface.calendar_list and calendar_list is None:
            raise ValueError("calendar_list surface requires a CalendarListClient")
        if surface is Surface.guest_list and guest_list is None:
            raise ValueError("guest_list surface requires a GuestListAutomator")
        self.surface = surface
        self._calendar_list = calendar_list
        self._guest_list = guest_list
        self._color_id = color_id

    async def reconcile(self, new_team: Team, previous_team: Team | None = None) -> ReconcileReport:
        """Converge the surface to ``new_team``.

        Raises ``AuthError`` unchanged, ``ReconcileError`` when showing or
        hiding failed as a whole, and ``AutomationError`` when the page could
        not be driven.
        """
        request = ReconcileRequest.between(new_team, previous_team)
        with tracer.start_as_current_span("teamcal.reconcile") as span:
            span.set_attribute("teamcal.surface", self.surface.value)
            span.set_attribute("teamcal.team_id", new_team.id)
            span.set_attribute("teamcal.to_show", len(request.to_show))
            span.set_attribute("teamcal.to_hide", len(request.to_hide))
            logger.info(
                "Reconciling team %r on %s: show=%s hide=%s unchanged=%d",
                new_team.name,
                self.surface,
                sorted(request.to_show),
                sorted(request.to_hide),
                len(request.unchanged),
            )
            if self.surface is Surface.guest_list:
                report = await self._replace_guests(
                    [member.email for member in new_team.members], request
                )
            else:
                report = await self._apply_diff(request)
            span.set_attribute("teamcal.failed", len(report.failed))
            return report

    async def show(self, emails: Iterable[str]) -> ReconcileReport:
        """Make the given members visible on the active surface."""
        request = ReconcileRequest.from_emails((), emails)
        if self.surface is Surface.guest_list:
            return await self._replace_guests(sorted(request.new_members), request)
        return await self._apply_diff(request)

    async def hide(self, emails: Iterable[str]) -> ReconcileReport:
        """Hide the given members on the active surface (never unsubscribes)."""
        request = ReconcileRequest.from_emails(emails, ())
        if self.surface is Surface.guest_list:
            assert self._guest_list is not None
            automation = await self._guest_list.clear(sorted(request.to_hide))
            return ReconcileReport(
                surface=self.surface,
                to_hide=sorted(request.to_hide),
                hidden=sorted(request.to_hide),
                automation=automation,
            )
        return await self._apply_diff(request)

    async def _apply_diff(self, request: ReconcileRequest) -> ReconcileReport:
        report = ReconcileReport(
            surface=self.surface,
            to_show=sorted(request.to_show),
            to_hide=sorted(request.to_hide),
        )
        if not request.to_show and not request.to_hide:
            logger.info("Member sets unchanged; nothing to do")
            return report

        assert self._calendar_list is not None
        try:
            entries = await self._calendar_list.list_entries()
        except AuthError:
            raise
        except Exception as exc:
            raise ReconcileError(f"Could not read the calendar list: {exc}") from exc
        # One snapshot maps member keys to remote ids for both directions.
        remote_ids = {entry.key: entry.id for entry in entries}

        hide_outcome, show_outcome = await asyncio.gather(
            self._hide_calendars(report.to_hide, remote_ids),
            self._show_calendars(report.to_show, remote_ids),
            return_exceptions=True,
        )
        outcomes = (("hide", hide_outcome), ("show", show_outcome))
        for _, outcome in outcomes:
            if isinstance(outcome, AuthError):
                raise outcome
        for action, outcome in outcomes:
            if isinstance(outcome, ReconcileError):
                raise outcome
            if isinstance(outcome, BaseException):
                raise ReconcileError(f"Failed to {action} calendars: {outcome}") from outcome

        assert isinstance(hide_outcome, BatchResult)
        assert isinstance(show_outcome, _ShowOutcome)
        report.hidden = hide_outcome.succeeded
        report.subscribed = show_outcome.subscribed.succeeded
        report.shown = show_outcome.visibility.succeeded
        report.failed.update(hide_outcome.failed)
        report.failed.update(show_outcome.subscribed.failed)
        for calendar_id, error in show_outcome.visibility.failed.items():
            report.failed.setdefault(normalize_email(calendar_id), error)

        if report.failed:
            logger.warning(
                "Reconciliation finished with %d member failure(s): %s",
                len(report.failed),
                sorted(report.failed),
            )
        return report

    async def _show_calendars(self, emails: list[str], remote_ids: dict[str, str]) -> _ShowOutcome:
        if not emails:
            return _ShowOutcome()
        assert self._calendar_list is not None

        absent = [email for email in emails if normalize_email(email) not in remote_ids]
        for email in emails:
            if email not in absent:
                logger.debug("Calendar already in list, flipping visibility: %s", email)
        if absent:
            logger.info("Subscribing to %d new calendar(s): %s", len(absent), absent)

        outcome = _ShowOutcome()
        if absent:
            outcome.subscribed = await self._calendar_list.batch_subscribe(absent, self._color_id)
        calendar_ids = [remote_ids.get(normalize_email(email), email) for email in emails]
        outcome.visibility = await self._calendar_list.batch_toggle_visibility(calendar_ids, True)
        return outcome

    async def _hide_calendars(self, keys: list[str], remote_ids: dict[str, str]) -> BatchResult:
        """Hide by remote id; members missing from the list are already hidden."""
        if not keys:
            return BatchResult()
        assert self._calendar_list is not None

        absent = [key for key in keys if key not in remote_ids]
        if absent:
            logger.debug("Not in the calendar list, nothing to hide: %s", absent)
        present = [remote_ids[key] for key in keys if key in remote_ids]
        batch = BatchResult()
        if present:
            batch = await self._calendar_list.batch_toggle_visibility(present, False)
        return BatchResult(
            succeeded=sorted([normalize_email(cid) for cid in batch.succeeded] + absent),
            failed={normalize_email(cid): error for cid, error in batch.failed.items()},
        )

    async def _replace_guests(
        self, emails: list[str], request: ReconcileRequest
    ) -> ReconcileReport:
        assert self._guest_list is not None
        automation = await self._guest_list.apply(emails, sorted(request.to_hide))
        return ReconcileReport(
            surface=self.surface,
            to_show=sorted(request.new_members),
            to_hide=sorted(request.to_hide),
            shown=list(automation.added or automation.toggled_on),
            hidden=list(automation.toggled_off),
            automation=automation,
        )
