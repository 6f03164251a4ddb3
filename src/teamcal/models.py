"""Domain models: members, teams, remote calendar-list entries and diffs."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from teamcal.errors import InvalidTeamError


class Surface(StrEnum):
    """Where a team switch is reflected.

    ``calendar_list`` is persistent and flag-toggleable (hidden calendars stay
    subscribed). ``guest_list`` is destructive: a removed guest is gone, so
    the only way to converge is to clear everything and add the team back.
    """

    calendar_list = "calendar_list"
    guest_list = "guest_list"


class TeamSource(StrEnum):
    manual = "manual"
    google_group = "google-group"
    remote_directory = "remote-directory"


def normalize_email(value: str) -> str:
    """Return the identity key for an email address."""
    return value.strip().lower()


class Member(BaseModel):
    """A team member. Identity is the lower-cased email."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    email: str = Field(min_length=3)
    display_name: str | None = Field(default=None, alias="displayName")

    @field_validator("email")
    @classmethod
    def _normalize_email(cls, value: str) -> str:
        normalized = value.strip()
        if "@" not in normalized:
            raise ValueError(f"not an email address: {value!r}")
        return normalized

    @property
    def key(self) -> str:
        return normalize_email(self.email)


class Team(BaseModel):
    """A named set of members, owned by the storage collaborator.

    Member emails are unique case-insensitively. An empty team is a valid
    draft but cannot be activated.
    """

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(min_length=1)
    name: str
    members: list[Member] = Field(default_factory=list)
    owner: str = ""
    source: TeamSource = TeamSource.manual
    source_ref: str | None = Field(default=None, alias="sourceRef")
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC), alias="createdAt")
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC), alias="updatedAt")

    @field_validator("members")
    @classmethod
    def _reject_duplicate_members(cls, value: list[Member]) -> list[Member]:
        seen: set[str] = set()
        duplicates: list[str] = []
        for member in value:
            if member.key in seen:
                duplicates.append(member.email)
            seen.add(member.key)
        if duplicates:
            raise ValueError(f"duplicate member emails: {', '.join(duplicates)}")
        return value

    @property
    def member_keys(self) -> frozenset[str]:
        return frozenset(member.key for member in self.members)

    @property
    def is_activatable(self) -> bool:
        return bool(self.members)

    def check_activatable(self) -> None:
        if not self.is_activatable:
            raise InvalidTeamError(f"Team {self.name!r} has no members and cannot be activated")


class CalendarEntry(BaseModel):
    """Mirror of a remote calendar-list record. ``selected`` means visible."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: str
    selected: bool = False
    color_id: str | None = Field(default=None, alias="colorId")
    access_role: str | None = Field(default=None, alias="accessRole")
    summary: str | None = None
    primary: bool = False

    @property
    def key(self) -> str:
        return normalize_email(self.id)


@dataclass(frozen=True)
class ReconcileRequest:
    """Previous and new member sets for one switch; never persisted."""

    previous_members: frozenset[str]
    new_members: frozenset[str]

    @classmethod
    def between(cls, new_team: Team, previous_team: Team | None = None) -> ReconcileRequest:
        previous = previous_team.member_keys if previous_team is not None else frozenset()
        return cls(previous_members=previous, new_members=new_team.member_keys)

    @classmethod
    def from_emails(cls, previous: Iterable[str], new: Iterable[str]) -> ReconcileRequest:
        return cls(
            previous_members=frozenset(normalize_email(e) for e in previous),
            new_members=frozenset(normalize_email(e) for e in new),
        )

    @property
    def to_show(self) -> frozenset[str]:
        return self.new_members - self.previous_members

    @property
    def to_hide(self) -> frozenset[str]:
        return self.previous_members - self.new_members

    @property
    def unchanged(self) -> frozenset[str]:
        return self.previous_members & self.new_members

    def describe(self) -> dict[str, Any]:
        return {
            "to_show": sorted(self.to_show),
            "to_hide": sorted(self.to_hide),
            "unchanged": sorted(self.unchanged),
        }
