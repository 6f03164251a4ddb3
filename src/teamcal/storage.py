"""Read-only view of team definitions.

Persistence belongs to the surrounding application; the engine never calls
storage itself. The UI lists teams through ``TeamStorage`` and hands a team
snapshot to the coordinator.
"""

from __future__ import annotations

import abc
from collections.abc import Iterable

from teamcal.models import Team, normalize_email


class TeamStorage(abc.ABC):
    @abc.abstractmethod
    async def list_teams(self) -> list[Team]:
        """Return every stored team."""
        ...


def teams_owned_by(teams: Iterable[Team], owner: str) -> list[Team]:
    """Teams owned by ``owner``; only the signed-in user's teams are offered."""
    owner_key = normalize_email(owner)
    return [team for team in teams if normalize_email(team.owner) == owner_key]


def find_team(teams: Iterable[Team], team_id: str) -> Team | None:
    return next((team for team in teams if team.id == team_id), None)
