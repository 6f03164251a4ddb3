"""Wiring for the two execution contexts.

* The panel reconciles through the calendar-list API and notifies open
  calendar pages (``build_panel``).
* Each calendar page runs the guest-list automator, either on messages from
  the panel (``build_page``) or from its own team selector
  (``build_page_coordinator``).

The surface follows the execution context, so it is not configurable.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

from teamcal.automation.guest_list import GuestListAutomator
from teamcal.automation.observer import ListRegionObserver
from teamcal.automation.page import GuestListPage
from teamcal.calendar_list import CalendarListClient
from teamcal.config import TeamcalConfig
from teamcal.coordinator import TeamSwitchCoordinator
from teamcal.core.logging import configure_logging
from teamcal.credentials import TokenCache, fetch_user_email, token_cache_from_env_json
from teamcal.errors import InvalidTeamError, TeamcalError, build_structured_error
from teamcal.messaging import PageBroadcaster, PageContext, PageContextChannel
from teamcal.models import Surface, Team
from teamcal.reconcile import ReconciliationEngine
from teamcal.storage import TeamStorage, find_team, teams_owned_by

logger = logging.getLogger(__name__)


@dataclass
class Panel:
    coordinator: TeamSwitchCoordinator
    engine: ReconciliationEngine
    client: CalendarListClient
    tokens: TokenCache
    broadcaster: PageBroadcaster
    http_client: httpx.AsyncClient
    owns_http_client: bool = field(default=False, repr=False)

    async def my_teams(self, storage: TeamStorage) -> list[Team]:
        """Teams owned by the signed-in user."""
        owner = await fetch_user_email(self.http_client, self.tokens.get)
        return teams_owned_by(await storage.list_teams(), owner)

    async def select_team(self, storage: TeamStorage, team_id: str) -> dict[str, Any]:
        """Switch to a stored team and return a UI-safe status payload.

        Switch failures come back as ``build_structured_error`` payloads; the
        previous selection stays in place.
        """
        surface = self.engine.surface.value
        team = find_team(await storage.list_teams(), team_id)
        if team is None:
            return build_structured_error(
                InvalidTeamError(f"Team {team_id!r} not found"), surface=surface
            )
        try:
            report = await self.coordinator.switch_to(team)
        except TeamcalError as exc:
            return build_structured_error(exc, surface=surface)
        return {
            "status": "ok",
            "team_id": team.id,
            "surface": surface,
            "subscribed": report.subscribed,
            "failed": sorted(report.failed),
        }

    async def sign_out(self) -> None:
        await self.tokens.sign_out()

    async def aclose(self) -> None:
        if self.owns_http_client:
            await self.http_client.aclose()


@dataclass
class Page:
    context: PageContext
    automator: GuestListAutomator
    observer: ListRegionObserver

    async def aclose(self) -> None:
        await self.observer.stop()


def setup_logging(config: TeamcalConfig, context_name: str) -> None:
    configure_logging(
        level=config.logging.level,
        fmt=config.logging.format,
        log_root=config.logging.log_root,
        context_name=context_name,
    )


def build_panel(
    config: TeamcalConfig,
    *,
    http_client: httpx.AsyncClient | None = None,
    tokens: TokenCache | None = None,
) -> Panel:
    """Build the API-backed coordinator."""
    owns_http_client = http_client is None
    http_client = http_client or httpx.AsyncClient(timeout=config.api.timeout_s)
    if tokens is None:
        tokens = token_cache_from_env_json(
            config.credentials_json(), http_client, ttl_seconds=config.auth.token_ttl_s
        )
    client = CalendarListClient(
        tokens.get,
        http_client=http_client,
        base_url=config.api.base_url,
        default_color_id=config.api.default_color_id,
        on_unauthorized=tokens.invalidate,
    )
    engine = ReconciliationEngine(
        surface=Surface.calendar_list,
        calendar_list=client,
        color_id=config.api.default_color_id,
    )
    broadcaster = PageBroadcaster()
    coordinator = TeamSwitchCoordinator(engine, broadcaster=broadcaster)
    return Panel(
        coordinator=coordinator,
        engine=engine,
        client=client,
        tokens=tokens,
        broadcaster=broadcaster,
        http_client=http_client,
        owns_http_client=owns_http_client,
    )


async def build_page(page: GuestListPage, config: TeamcalConfig) -> Page:
    """Build a calendar page context and start its list observer.

    Close it with ``Page.aclose`` (or ``detach_page``) when the page goes away.
    """
    timings = config.automation.timings
    automator = GuestListAutomator(page, timings=timings)
    observer = ListRegionObserver(page, interval_s=timings.observer_interval_s)
    observer.start()
    return Page(context=PageContext(automator), automator=automator, observer=observer)


def attach_page(panel: Panel, page: Page, *, context_id: str) -> None:
    """Make an open calendar page reachable from the panel."""
    panel.broadcaster.register(PageContextChannel(page.context, context_id=context_id))
    logger.info("Calendar page %s attached", context_id)


async def detach_page(panel: Panel, page: Page, *, context_id: str) -> None:
    """Forget a closed calendar page and stop its observer."""
    panel.broadcaster.unregister(context_id)
    await page.aclose()
    logger.info("Calendar page %s detached", context_id)


def build_page_coordinator(page: Page) -> TeamSwitchCoordinator:
    """Coordinator for the page's own team selector (guest-list surface only)."""
    engine = ReconciliationEngine(surface=Surface.guest_list, guest_list=page.automator)
    return TeamSwitchCoordinator(engine)
