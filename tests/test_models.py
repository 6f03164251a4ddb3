"""Tests for teamcal domain models and member-set diffs."""

from __future__ import annotations

import pytest
from conftest import make_team
from pydantic import ValidationError

from teamcal.errors import InvalidTeamError
from teamcal.models import CalendarEntry, Member, ReconcileRequest, Team, TeamSource

pytestmark = pytest.mark.unit


class TestMember:
    def test_email_is_trimmed_and_key_is_lowercase(self):
        member = Member(email="  Alice@Example.COM ")
        assert member.email == "Alice@Example.COM"
        assert member.key == "alice@example.com"

    def test_display_name_alias(self):
        member = Member.model_validate({"email": "a@example.com", "displayName": "Alice"})
        assert member.display_name == "Alice"

    def test_rejects_address_without_at(self):
        with pytest.raises(ValidationError, match="not an email address"):
            Member(email="alice.example.com")


class TestTeam:
    def test_duplicate_members_rejected_case_insensitively(self):
        with pytest.raises(ValidationError, match="duplicate member emails"):
            make_team("dup", "a@example.com", "A@EXAMPLE.com")

    def test_member_keys(self):
        team = make_team("core", "A@example.com", "b@example.com")
        assert team.member_keys == frozenset({"a@example.com", "b@example.com"})

    def test_wire_aliases(self):
        team = Team.model_validate(
            {
                "id": "t1",
                "name": "Platform",
                "owner": "lead@example.com",
                "source": "google-group",
                "sourceRef": "platform@example.com",
                "members": [{"email": "a@example.com"}],
            }
        )
        assert team.source is TeamSource.google_group
        assert team.source_ref == "platform@example.com"
        assert team.created_at.tzinfo is not None

    def test_empty_team_is_a_valid_draft_but_not_activatable(self):
        team = make_team("draft")
        assert team.is_activatable is False
        with pytest.raises(InvalidTeamError, match="no members"):
            team.check_activatable()

    def test_non_empty_team_is_activatable(self):
        make_team("core", "a@example.com").check_activatable()


class TestCalendarEntry:
    def test_parses_remote_record_and_keeps_unknown_fields(self):
        entry = CalendarEntry.model_validate(
            {
                "kind": "calendar#calendarListEntry",
                "id": "Dana@Example.com",
                "selected": True,
                "colorId": "7",
                "accessRole": "reader",
            }
        )
        assert entry.key == "dana@example.com"
        assert entry.color_id == "7"
        assert entry.access_role == "reader"
        assert entry.model_extra == {"kind": "calendar#calendarListEntry"}

    def test_selected_defaults_to_hidden(self):
        assert CalendarEntry(id="x@example.com").selected is False


class TestReconcileRequest:
    def test_overlapping_teams_only_touch_the_difference(self):
        previous = make_team("p", "a@x.com", "b@x.com", "c@x.com")
        new = make_team("n", "b@x.com", "c@x.com", "d@x.com")

        request = ReconcileRequest.between(new, previous)

        assert request.to_hide == {"a@x.com"}
        assert request.to_show == {"d@x.com"}
        assert request.unchanged == {"b@x.com", "c@x.com"}

    def test_disjoint_teams_swap_everything(self):
        request = ReconcileRequest.between(
            make_team("n", "c@x.com", "d@x.com"), make_team("p", "a@x.com", "b@x.com")
        )
        assert request.to_hide == {"a@x.com", "b@x.com"}
        assert request.to_show == {"c@x.com", "d@x.com"}

    def test_same_team_is_empty_diff(self):
        team = make_team("t", "a@x.com", "b@x.com")
        request = ReconcileRequest.between(team, team)
        assert not request.to_show
        assert not request.to_hide

    def test_first_switch_shows_everyone(self):
        request = ReconcileRequest.between(make_team("t", "a@x.com"))
        assert request.to_show == {"a@x.com"}
        assert request.previous_members == frozenset()

    def test_from_emails_normalizes(self):
        request = ReconcileRequest.from_emails([" A@x.com"], ["a@X.com", "b@x.com"])
        assert request.describe() == {
            "to_show": ["b@x.com"],
            "to_hide": [],
            "unchanged": ["a@x.com"],
        }
