"""Google Calendar ``users/me/calendarList`` client.

The client is stateless apart from its HTTP connection pool. Creates are
idempotent (409 "already subscribed" is success) and deletes are idempotent
(404 "already absent" is success). Batch helpers fan out one call per item
and isolate failures per item so that one bad address never blocks a team
switch.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import quote

import httpx

from teamcal.credentials import CredentialAccessor, safe_google_error_message
from teamcal.errors import (
    AuthError,
    CalendarRequestError,
    ListError,
    SubscribeError,
    UnsubscribeError,
    VisibilityError,
)
from teamcal.models import CalendarEntry

logger = logging.getLogger(__name__)

GOOGLE_CALENDAR_API_BASE_URL = "https://www.googleapis.com/calendar/v3"
CALENDAR_LIST_PATH = "/users/me/calendarList"
DEFAULT_COLOR_ID = "1"
LIST_PAGE_SIZE = 250


@dataclass
class BatchResult:
    """Outcome of a batch call. Failed items are excluded from ``succeeded``."""

    succeeded: list[str] = field(default_factory=list)
    failed: dict[str, CalendarRequestError] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed


class CalendarListClient:
    """Thin async wrapper over the calendar-list REST resource."""

    def __init__(
        self,
        get_token: CredentialAccessor,
        *,
        http_client: httpx.AsyncClient | None = None,
        base_url: str = GOOGLE_CALENDAR_API_BASE_URL,
        default_color_id: str = DEFAULT_COLOR_ID,
        timeout_s: float = 30.0,
        on_unauthorized: Callable[[], Any] | None = None,
    ) -> None:
        self._get_token = get_token
        self._owns_http_client = http_client is None
        self._http_client = http_client or httpx.AsyncClient(timeout=timeout_s)
        self._base_url = base_url.rstrip("/")
        self._default_color_id = default_color_id
        self._on_unauthorized = on_unauthorized

    async def aclose(self) -> None:
        if self._owns_http_client:
            await self._http_client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        error_type: type[CalendarRequestError],
        calendar_id: str = "",
        params: dict[str, Any] | None = None,
        json_body: dict[str, Any] | None = None,
    ) -> httpx.Response:
        token = await self._get_token()
        headers = {"Authorization": f"Bearer {token}"}
        try:
            response = await self._http_client.request(
                method,
                f"{self._base_url}{path}",
                params=params,
                json=json_body,
                headers=headers,
            )
        except httpx.HTTPError as exc:
            raise error_type(
                status_code=None,
                message=f"transport error: {exc}",
                calendar_id=calendar_id,
            ) from exc

        if response.status_code == 401:
            if self._on_unauthorized is not None:
                self._on_unauthorized()
            raise AuthError(
                f"Calendar API rejected the access token: {safe_google_error_message(response)}"
            )
        return response

    @staticmethod
    def _entry_path(calendar_id: str) -> str:
        return f"{CALENDAR_LIST_PATH}/{quote(calendar_id, safe='')}"

    async def list_entries(self) -> list[CalendarEntry]:
        """Return every entry of the user's calendar list, following pagination."""
        entries: list[CalendarEntry] = []
        page_token: str | None = None
        while True:
            params: dict[str, Any] = {"maxResults": LIST_PAGE_SIZE}
            if page_token:
                params["pageToken"] = page_token
            response = await self._request(
                "GET", CALENDAR_LIST_PATH, error_type=ListError, params=params
            )
            if response.status_code != 200:
                raise ListError(
                    status_code=response.status_code,
                    message=safe_google_error_message(response),
                )
            try:
                payload = response.json()
            except ValueError as exc:
                raise ListError(status_code=200, message="invalid JSON in calendar list") from exc

            items = payload.get("items", []) if isinstance(payload, dict) else None
            if not isinstance(items, list):
                raise ListError(status_code=200, message="calendar list response missing items")
            for item in items:
                if isinstance(item, dict) and isinstance(item.get("id"), str):
                    entries.append(CalendarEntry.model_validate(item))

            page_token = payload.get("nextPageToken")
            if not page_token:
                break

        logger.debug("Fetched %d calendar list entries", len(entries))
        return entries

    async def subscribe(self, email: str, color_id: str | None = None) -> None:
        """Add someone's calendar to the list, visible. Already subscribed is success."""
        response = await self._request(
            "POST",
            CALENDAR_LIST_PATH,
            error_type=SubscribeError,
            calendar_id=email,
            json_body={
                "id": email,
                "selected": True,
                "colorId": color_id or self._default_color_id,
            },
        )
        if response.status_code == 409:
            logger.info("Calendar already subscribed: %s", email)
            return
        if response.status_code < 200 or response.status_code >= 300:
            raise SubscribeError(
                status_code=response.status_code,
                message=safe_google_error_message(response),
                calendar_id=email,
            )
        logger.info("Subscribed to calendar: %s", email)

    async def set_visibility(self, calendar_id: str, visible: bool) -> None:
        """Flip ``selected`` on an existing entry. A missing entry is an error."""
        response = await self._request(
            "PATCH",
            self._entry_path(calendar_id),
            error_type=VisibilityError,
            calendar_id=calendar_id,
            json_body={"selected": visible},
        )
        if response.status_code < 200 or response.status_code >= 300:
            raise VisibilityError(
                status_code=response.status_code,
                message=safe_google_error_message(response),
                calendar_id=calendar_id,
            )
        logger.info("Calendar %s is now %s", calendar_id, "shown" if visible else "hidden")

    async def unsubscribe(self, calendar_id: str) -> None:
        """Remove an entry from the list. Already absent is success."""
        response = await self._request(
            "DELETE",
            self._entry_path(calendar_id),
            error_type=UnsubscribeError,
            calendar_id=calendar_id,
        )
        if response.status_code == 404:
            logger.debug("unsubscribe: %s not in calendar list; treating as success", calendar_id)
            return
        if response.status_code < 200 or response.status_code >= 300:
            raise UnsubscribeError(
                status_code=response.status_code,
                message=safe_google_error_message(response),
                calendar_id=calendar_id,
            )

    async def batch_subscribe(
        self, emails: Iterable[str], color_id: str | None = None
    ) -> BatchResult:
        return await _run_isolated(
            list(emails),
            lambda email: self.subscribe(email, color_id),
            action="subscribe",
        )

    async def batch_toggle_visibility(
        self, calendar_ids: Iterable[str], visible: bool
    ) -> BatchResult:
        return await _run_isolated(
            list(calendar_ids),
            lambda calendar_id: self.set_visibility(calendar_id, visible),
            action="show" if visible else "hide",
        )


async def _run_isolated(
    items: list[str],
    call: Callable[[str], Awaitable[None]],
    *,
    action: str,
) -> BatchResult:
    """Run ``call`` for every item concurrently; per-item request errors are collected.

    ``AuthError`` and unexpected exceptions are not per-item failures and are
    re-raised after all siblings have settled.
    """
    result = BatchResult()
    if not items:
        return result

    outcomes = await asyncio.gather(*(call(item) for item in items), return_exceptions=True)
    fatal: BaseException | None = None
    for item, outcome in zip(items, outcomes, strict=True):
        if isinstance(outcome, CalendarRequestError):
            logger.warning("Failed to %s %s: %s", action, item, outcome)
            result.failed[item] = outcome
        elif isinstance(outcome, BaseException):
            fatal = fatal or outcome
        else:
            result.succeeded.append(item)

    if fatal is not None:
        raise fatal
    if result.failed:
        logger.warning(
            "Batch %s finished with %d/%d failures", action, len(result.failed), len(items)
        )
    return result
