"""Guest-list page automation.

The Playwright implementation lives in ``teamcal.automation.playwright_page``
and is imported explicitly by callers that run a browser.
"""

from teamcal.automation.guest_list import (
    AutomationReport,
    AutomationStrategy,
    AutomatorState,
    GuestListAutomator,
)
from teamcal.automation.observer import ListRegionObserver
from teamcal.automation.page import ControlRole, ElementHandle, GuestListPage, ItemRole

__all__ = [
    "AutomationReport",
    "AutomationStrategy",
    "AutomatorState",
    "ControlRole",
    "ElementHandle",
    "GuestListAutomator",
    "GuestListPage",
    "ItemRole",
    "ListRegionObserver",
]
