"""Team switch coordinator.

Owns the only state kept between switches: the currently selected team. The
selection is replaced only after a reconciliation succeeds; on failure the
previous selection stays and the error is raised to the UI.
"""

from __future__ import annotations

import logging

from opentelemetry import trace

from teamcal.messaging import Delivery, PageBroadcaster, ToggleCalendarsMessage
from teamcal.models import Surface, Team
from teamcal.reconcile import ReconcileReport, ReconciliationEngine

logger = logging.getLogger(__name__)
tracer = trace.get_tracer("teamcal")


class TeamSwitchCoordinator:
    """Panel-side entry point for switching and clearing teams.

    At most one switch is expected in flight; the UI disables its controls
    while ``syncing`` is true. That covers the page notification as well, so
    a second switch cannot interleave with a page still rebuilding its guest
    list.
    """

    def __init__(
        self,
        engine: ReconciliationEngine,
        *,
        broadcaster: PageBroadcaster | None = None,
    ) -> None:
        self._engine = engine
        self._broadcaster = broadcaster
        self._current: Team | None = None
        self._syncing = False
        self.last_deliveries: list[Delivery] = []

    @property
    def current_team(self) -> Team | None:
        return self._current

    @property
    def current_members(self) -> list[str]:
        if self._current is None:
            return []
        return sorted(self._current.member_keys)

    @property
    def syncing(self) -> bool:
        return self._syncing

    async def switch_to(self, team: Team) -> ReconcileReport:
        """Converge to ``team``.

        Selecting the current team again still runs a full pass: the remote
        surface may have drifted since the last switch.
        """
        team.check_activatable()
        previous = self._current
        reselect = previous is not None and previous.id == team.id
        logger.info(
            "%s team %r (%d member(s))",
            "Reselecting" if reselect else "Switching to",
            team.name,
            len(team.members),
        )

        with tracer.start_as_current_span("teamcal.switch") as span:
            span.set_attribute("teamcal.team_id", team.id)
            span.set_attribute("teamcal.reselect", reselect)
            self._syncing = True
            try:
                try:
                    report = await self._engine.reconcile(team, previous)
                except Exception:
                    logger.exception(
                        "Switch to team %r failed; keeping previous selection", team.name
                    )
                    raise
                self._current = team
                await self._notify_pages(team, previous)
            finally:
                self._syncing = False
            return report

    async def clear(self) -> ReconcileReport | None:
        """Hide every member of the current selection and select nothing."""
        if self._current is None:
            logger.info("No team selected; nothing to clear")
            return None

        team = self._current
        self._syncing = True
        try:
            try:
                report = await self._engine.hide(self.current_members)
            except Exception:
                logger.exception("Clearing team %r failed; keeping selection", team.name)
                raise
            self._current = None
            if self._broadcaster is not None and self._engine.surface is Surface.calendar_list:
                await self._broadcast(
                    ToggleCalendarsMessage(
                        emails_to_show=[], emails_to_hide=sorted(team.member_keys)
                    )
                )
        finally:
            self._syncing = False
        logger.info("Cleared team %r", team.name)
        return report

    async def _notify_pages(self, team: Team, previous: Team | None) -> None:
        # Pages run the guest-list automator themselves; only the API-backed
        # panel needs to tell them about the switch.
        if self._broadcaster is None or self._engine.surface is not Surface.calendar_list:
            return
        previous_keys = previous.member_keys if previous is not None else frozenset()
        # The guest list is rebuilt from scratch, so pages get the whole team.
        message = ToggleCalendarsMessage(
            emails_to_show=[member.email for member in team.members],
            emails_to_hide=sorted(previous_keys - team.member_keys),
        )
        await self._broadcast(message)

    async def _broadcast(self, message: ToggleCalendarsMessage) -> None:
        assert self._broadcaster is not None
        self.last_deliveries = await self._broadcaster.broadcast(message)
