"""teamcal: switch the visible set of teammates' calendars by team."""

__version__ = "0.1.0"
