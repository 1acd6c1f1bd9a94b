"""Team workspace endpoints. Everything except invite validation needs the teams flag."""
from flask import Blueprint, g

from ..auth import require_auth
from ..errors import ApiError, BadRequestError, ForbiddenError
from . import ok, parse_body, require_teams, services
from .payloads import CreateTeamRequest

teams_bp = Blueprint("teams", __name__)


def _active_team_id() -> str:
	"""Active team of the caller, creating a personal team on first use."""
	require_teams(g.user_id)
	return services().teams.initialize_team(g.user_id)["id"]


def _require_member(team_id: str) -> None:
	if not services().teams.is_member(g.user_id, team_id):
		raise ForbiddenError("You are not a member of this team")


@teams_bp.route("/current", methods=["GET"])
@require_auth
def current():
	team_id = _active_team_id()
	svc = services().teams
	team = svc.get_team(team_id)
	team["is_owner"] = team["owner_id"] == g.user_id
	return ok(team)


@teams_bp.route("/list", methods=["GET"])
@require_auth
def list_teams():
	require_teams(g.user_id)
	return ok(services().teams.user_teams(g.user_id))


@teams_bp.route("/create", methods=["POST"])
@require_auth
def create():
	require_teams(g.user_id)
	body = parse_body(CreateTeamRequest)
	svc = services().teams
	team = svc.create_team(g.user_id, body.name)
	svc.switch_team(g.user_id, team["id"])
	return ok(team, "Team created successfully", 201)


@teams_bp.route("/switch/<team_id>", methods=["POST"])
@require_auth
def switch(team_id: str):
	require_teams(g.user_id)
	services().teams.switch_team(g.user_id, team_id)
	return ok({"team_id": team_id}, "Switched team")


@teams_bp.route("/<team_id>", methods=["DELETE"])
@require_auth
def delete(team_id: str):
	require_teams(g.user_id)
	services().teams.delete_team(team_id, g.user_id)
	return ok(None, "Team deleted")


@teams_bp.route("/members", methods=["GET"])
@require_auth
def members():
	team_id = _active_team_id()
	_require_member(team_id)
	return ok(services().teams.members(team_id))


@teams_bp.route("/members/<user_id>", methods=["DELETE"])
@require_auth
def remove_member(user_id: str):
	team_id = _active_team_id()
	services().teams.remove_member(team_id, user_id, acting_user_id=g.user_id)
	return ok(None, "Member removed from team")


@teams_bp.route("/leave", methods=["POST"])
@require_auth
def leave():
	team_id = _active_team_id()
	_require_member(team_id)
	services().teams.remove_member(team_id, g.user_id, acting_user_id=g.user_id)
	return ok(None, "You have left the team")


@teams_bp.route("/invite", methods=["POST"])
@require_auth
def create_invite():
	team_id = _active_team_id()
	return ok(services().teams.create_invite(team_id, g.user_id), "Invitation created", 201)


@teams_bp.route("/invites", methods=["GET"])
@require_auth
def invites():
	team_id = _active_team_id()
	_require_member(team_id)
	return ok(services().teams.invites(team_id))


@teams_bp.route("/invite/<invite_id>", methods=["DELETE"])
@require_auth
def delete_invite(invite_id: str):
	require_teams(g.user_id)
	services().teams.delete_invite(invite_id, g.user_id)
	return ok(None, "Invitation deleted")


@teams_bp.route("/invite/<token>", methods=["GET"])
def validate_invite(token: str):
	"""Public: lets the join page show who invited the visitor."""
	result = services().teams.validate_invite(token)
	if not result["valid"]:
		if "maximum capacity" in result["error"]:
			raise BadRequestError(result["error"])
		raise ApiError(result["error"], 410)
	return ok(result)


@teams_bp.route("/join/<token>", methods=["POST"])
@require_auth
def join(token: str):
	team_id = services().teams.accept_invite(token, g.user_id)
	return ok({"team_id": team_id}, "Successfully joined team")
