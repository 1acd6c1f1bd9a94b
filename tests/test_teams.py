"""Tests for team workspaces and invitations."""
from datetime import datetime, timedelta

import pytest

from superschema.config import MAX_TEAM_MEMBERS, MAX_TEAMS_PER_USER, FeatureFlags
from superschema.errors import (
	ApiError,
	BadRequestError,
	ConflictError,
	FeatureDisabledError,
	ForbiddenError,
	NotFoundError,
)
from superschema.teams import TeamService, generate_invite_token
from superschema.users import UserService


class Clock:
	def __init__(self):
		self.value = datetime(2024, 6, 1, 12, 0, 0)

	def __call__(self) -> datetime:
		return self.value


@pytest.fixture
def clock():
	return Clock()


@pytest.fixture
def users(db):
	service = UserService(db)
	for uid in ("owner", "member", "other"):
		service.get_or_create(uid, f"{uid}@example.test", first_name=uid.title())
	return service


@pytest.fixture
def teams(db, team_flags, clock, users):
	return TeamService(db, team_flags, client_url="https://app.superschema.test/", now=clock)


@pytest.fixture
def team(teams):
	return teams.create_team("owner", "Coffee Lab")


def test_generate_invite_token_is_short_and_url_safe():
	token = generate_invite_token()
	assert len(token) == 8
	assert all(c.isalnum() or c in "-_" for c in token)


def test_create_team_adds_owner_as_member(teams, team):
	assert team["owner_id"] == "owner"
	assert team["member_count"] == 1
	assert teams.is_member("owner", team["id"])
	assert teams.is_owner("owner", team["id"])
	assert teams.get_team_by_owner("owner")["id"] == team["id"]

	members = teams.members(team["id"])
	assert members[0]["is_owner"] is True
	assert members[0]["email"] == "owner@example.test"


def test_invite_flow(teams, team, clock):
	invite = teams.create_invite(team["id"], "owner")
	assert invite["invite_url"] == f"https://app.superschema.test/team/join/{invite['invite_token']}"
	assert invite["expires_at"] == "2024-06-08T12:00:00"

	info = teams.validate_invite(invite["invite_token"])
	assert info["valid"] is True
	assert info["team_owner_email"] == "owner@example.test"
	assert info["team_member_count"] == 1

	assert teams.accept_invite(invite["invite_token"], "member") == team["id"]
	assert teams.member_count(team["id"]) == 2
	assert teams.active_team_id("member") == team["id"]
	assert teams.validate_invite(invite["invite_token"]) == {"valid": False, "error": "This invitation has already been used"}


def test_only_owner_can_invite(teams, team):
	with pytest.raises(ForbiddenError, match="Only team owner can create invitations"):
		teams.create_invite(team["id"], "member")


def test_invites_disabled_by_flag(db, users, clock):
	flags = FeatureFlags(teams_enabled=True, team_invites_enabled=False, teams_beta_users=[], ga4_enabled=False)
	teams = TeamService(db, flags, client_url="https://app.test", now=clock)
	team = teams.create_team("owner")

	with pytest.raises(FeatureDisabledError):
		teams.create_invite(team["id"], "owner")


def test_expired_invite_is_gone(teams, team, clock):
	invite = teams.create_invite(team["id"], "owner")
	clock.value += timedelta(days=8)

	assert teams.validate_invite(invite["invite_token"])["error"] == "This invitation has expired"
	with pytest.raises(ApiError) as excinfo:
		teams.accept_invite(invite["invite_token"], "member")
	assert excinfo.value.status_code == 410

	assert teams.cleanup_expired_invites() == 1
	assert teams.invites(team["id"]) == []


def test_unknown_invite(teams):
	assert teams.validate_invite("nope") == {"valid": False, "error": "Invalid invitation token"}


def test_accepting_twice_conflicts(teams, team):
	first = teams.create_invite(team["id"], "owner")
	second = teams.create_invite(team["id"], "owner")
	teams.accept_invite(first["invite_token"], "member")

	with pytest.raises(ConflictError):
		teams.accept_invite(second["invite_token"], "member")


def test_used_invite_cannot_be_accepted_again(teams, team):
	invite = teams.create_invite(team["id"], "owner")
	teams.accept_invite(invite["invite_token"], "member")

	with pytest.raises(ApiError, match="already been used") as excinfo:
		teams.accept_invite(invite["invite_token"], "other")
	assert excinfo.value.status_code == 410
	assert not teams.is_member("other", team["id"])
	assert teams.invites(team["id"])[0]["used_by"] == "member"


def test_add_member_limits(teams, team, users):
	teams.add_member(team["id"], "member")
	with pytest.raises(ConflictError, match="User is already a member of this team"):
		teams.add_member(team["id"], "member")

	for i in range(MAX_TEAM_MEMBERS - 2):
		users.get_or_create(f"extra{i}", f"extra{i}@example.test")
		teams.add_member(team["id"], f"extra{i}")

	with pytest.raises(BadRequestError):
		teams.add_member(team["id"], "other")
	with pytest.raises(BadRequestError):
		teams.create_invite(team["id"], "owner")


def test_user_team_limit(teams):
	for i in range(MAX_TEAMS_PER_USER):
		teams.create_team("owner", f"Team {i}")
	with pytest.raises(BadRequestError, match="maximum limit of 10 teams"):
		teams.create_team("owner", "One too many")


def test_remove_member_rules(teams, team):
	teams.add_member(team["id"], "member")
	teams.add_member(team["id"], "other")

	with pytest.raises(BadRequestError, match="Team owner cannot leave their own team"):
		teams.remove_member(team["id"], "owner")
	with pytest.raises(ForbiddenError):
		teams.remove_member(team["id"], "other", acting_user_id="member")

	teams.remove_member(team["id"], "member")
	teams.remove_member(team["id"], "other", acting_user_id="owner")
	assert teams.member_count(team["id"]) == 1
	with pytest.raises(NotFoundError):
		teams.remove_member(team["id"], "member")


def test_switch_team_requires_membership(teams, team):
	with pytest.raises(ForbiddenError):
		teams.switch_team("other", team["id"])

	teams.switch_team("owner", team["id"])
	listed = teams.user_teams("owner")
	assert listed[0]["is_active"] is True
	assert listed[0]["is_owner"] is True


def test_initialize_team_creates_personal_team(teams):
	team = teams.initialize_team("other")

	assert team["owner_id"] == "other"
	assert teams.active_team_id("other") == team["id"]
	assert teams.initialize_team("other")["id"] == team["id"]


def test_delete_team_clears_active_team(teams, team):
	invite = teams.create_invite(team["id"], "owner")
	teams.accept_invite(invite["invite_token"], "member")

	with pytest.raises(ForbiddenError):
		teams.delete_team(team["id"], "member")
	teams.delete_team(team["id"], "owner")

	assert teams.get_team(team["id"]) is None
	assert teams.active_team_id("member") is None


def test_delete_invite(teams, team):
	invite = teams.create_invite(team["id"], "owner")
	invite_id = teams.invites(team["id"])[0]["id"]

	with pytest.raises(ForbiddenError):
		teams.delete_invite(invite_id, "member")
	teams.delete_invite(invite_id, "owner")
	assert teams.validate_invite(invite["invite_token"])["valid"] is False
