"""One-way notifications from the panel to open calendar pages.

After the panel reconciles through the API it tells every open calendar page
which members to show and hide, so each page can run its own guest-list
automator. Delivery is best effort: every send returns ``Delivered`` or
``Undeliverable(reason)`` and callers treat ``Undeliverable`` as non-fatal.
"""

from __future__ import annotations

import abc
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from teamcal.automation.guest_list import AutomationReport, GuestListAutomator

logger = logging.getLogger(__name__)

TOGGLE_CALENDARS = "TOGGLE_CALENDARS"


class ToggleCalendarsMessage(BaseModel):
    """Wire message sent to page contexts (camelCase on the wire)."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    type: Literal["TOGGLE_CALENDARS"] = TOGGLE_CALENDARS
    emails_to_show: list[str] = Field(default_factory=list, alias="emailsToShow")
    emails_to_hide: list[str] = Field(default_factory=list, alias="emailsToHide")

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


@dataclass(frozen=True)
class Delivered:
    context_id: str


@dataclass(frozen=True)
class Undeliverable:
    context_id: str
    reason: str


Delivery = Delivered | Undeliverable


class NotificationChannel(abc.ABC):
    """A one-way channel to a single page context."""

    @property
    @abc.abstractmethod
    def context_id(self) -> str: ...

    @abc.abstractmethod
    async def notify(self, message: ToggleCalendarsMessage) -> Delivery:
        """Send ``message``; never raises for delivery problems."""
        ...


class PageContext:
    """Page-side receiver: runs the guest-list automator for each message."""

    def __init__(self, automator: GuestListAutomator) -> None:
        self._automator = automator

    async def handle(self, payload: dict[str, Any] | ToggleCalendarsMessage) -> AutomationReport:
        message = (
            payload
            if isinstance(payload, ToggleCalendarsMessage)
            else ToggleCalendarsMessage.model_validate(payload)
        )
        logger.info(
            "Page received %s: show=%d hide=%d",
            message.type,
            len(message.emails_to_show),
            len(message.emails_to_hide),
        )
        return await self._automator.apply(message.emails_to_show, message.emails_to_hide)


class PageContextChannel(NotificationChannel):
    """Delivers messages to an in-process ``PageContext``."""

    def __init__(self, context: PageContext, *, context_id: str) -> None:
        self._context = context
        self._context_id = context_id

    @property
    def context_id(self) -> str:
        return self._context_id

    async def notify(self, message: ToggleCalendarsMessage) -> Delivery:
        try:
            await self._context.handle(message.to_wire())
        except ValidationError as exc:
            reason = f"rejected message: {exc.error_count()} error(s)"
            return Undeliverable(self._context_id, reason)
        except Exception as exc:
            return Undeliverable(self._context_id, f"{type(exc).__name__}: {exc}")
        return Delivered(self._context_id)


class PageBroadcaster:
    """Fans a message out to every registered page context."""

    def __init__(self) -> None:
        self._channels: dict[str, NotificationChannel] = {}

    def register(self, channel: NotificationChannel) -> None:
        self._channels[channel.context_id] = channel

    def unregister(self, context_id: str) -> None:
        self._channels.pop(context_id, None)

    @property
    def context_ids(self) -> list[str]:
        return list(self._channels)

    async def broadcast(self, message: ToggleCalendarsMessage) -> list[Delivery]:
        channels = list(self._channels.values())
        if not channels:
            logger.info("No open calendar pages to notify")
            return []

        results = await asyncio.gather(
            *(channel.notify(message) for channel in channels), return_exceptions=True
        )
        deliveries: list[Delivery] = []
        for channel, result in zip(channels, results, strict=True):
            if isinstance(result, BaseException):
                delivery: Delivery = Undeliverable(channel.context_id, repr(result))
            else:
                delivery = result
            if isinstance(delivery, Undeliverable):
                logger.warning(
                    "Could not notify calendar page %s: %s (reload the page)",
                    delivery.context_id,
                    delivery.reason,
                )
            deliveries.append(delivery)
        return deliveries
