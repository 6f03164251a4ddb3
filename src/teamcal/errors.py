"""Error taxonomy for team switching.

Per-item remote failures (``SubscribeError``, ``VisibilityError``,
``UnsubscribeError``) are isolated at the batch boundary and never abort a
switch. ``AuthError``, ``ReconcileError`` and ``AutomationError`` describe
whole-operation failures and are surfaced to the caller unchanged.
"""

from __future__ import annotations

import re
from typing import Any

_ERROR_MESSAGE_LIMIT = 200


class TeamcalError(RuntimeError):
    """Base error for everything raised by teamcal."""


class AuthError(TeamcalError):
    """Raised when no bearer credential could be obtained (reauthentication required)."""


class CalendarRequestError(TeamcalError):
    """Raised when a calendar-list API request fails.

    ``status_code`` is ``None`` when the request never produced a response
    (transport failure).
    """

    operation = "request"

    def __init__(self, *, status_code: int | None, message: str, calendar_id: str = "") -> None:
        self.status_code = status_code
        self.message = message
        self.calendar_id = calendar_id
        status = status_code if status_code is not None else "no response"
        target = f" for {calendar_id}" if calendar_id else ""
        super().__init__(f"Calendar list {self.operation} failed{target} ({status}): {message}")


class ListError(CalendarRequestError):
    operation = "list"


class SubscribeError(CalendarRequestError):
    operation = "subscribe"


class VisibilityError(CalendarRequestError):
    operation = "visibility change"


class UnsubscribeError(CalendarRequestError):
    operation = "unsubscribe"


class ReconcileError(TeamcalError):
    """Raised when showing or hiding a team's calendars failed as a whole."""


class AutomationError(TeamcalError):
    """Raised when the guest-list page could not be driven, even by the fallback.

    ``last_state`` describes the last observed UI state; callers should ask
    the user to reload the calendar page.
    """

    def __init__(self, message: str, *, last_state: str) -> None:
        self.last_state = last_state
        super().__init__(f"{message} (last state: {last_state})")


class InvalidTeamError(TeamcalError):
    """Raised when a team cannot be activated (for example, it has no members)."""


def redact_credential_values(message: str) -> str:
    """Redact token-like values from an error message."""
    redacted = re.sub(
        r"(?i)\b(client_secret|refresh_token|access_token|token)\s*=\s*([^\s,;&]+)",
        r"\1=[REDACTED]",
        message,
    )
    redacted = re.sub(
        r"""(?i)(['"]?(?:client_secret|refresh_token|access_token|token)['"]?\s*:\s*)(['"]).*?\2""",
        r'\1"[REDACTED]"',
        redacted,
    )
    redacted = re.sub(r"(?i)\bBearer\s+[A-Za-z0-9._\-]+", "Bearer [REDACTED]", redacted)
    return redacted


def sanitize_error_message(message: str) -> str:
    """Redact credentials, normalize whitespace and truncate."""
    return " ".join(redact_credential_values(message).split())[:_ERROR_MESSAGE_LIMIT]


def build_structured_error(exc: Exception, *, surface: str) -> dict[str, Any]:
    """Build a UI-safe error payload for a failed switch."""
    payload: dict[str, Any] = {
        "status": "error",
        "error": sanitize_error_message(str(exc)),
        "error_type": type(exc).__name__,
        "surface": surface,
    }
    if isinstance(exc, AuthError):
        payload["action"] = "reauthenticate"
    elif isinstance(exc, AutomationError):
        payload["action"] = "reload_page"
        payload["last_state"] = sanitize_error_message(exc.last_state)
    return payload
