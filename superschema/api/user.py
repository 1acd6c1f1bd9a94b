"""Current user profile endpoints."""
from flask import Blueprint, g

from ..auth import require_auth
from . import ok, parse_body, parse_query, services
from .payloads import Pagination, ProfileUpdate

user_bp = Blueprint("user", __name__)


@user_bp.route("/init", methods=["POST"])
@require_auth
def init():
	"""Provisioning happens in require_auth; this just reports the result."""
	return ok(g.user, "User initialized")


@user_bp.route("/profile", methods=["GET"])
@require_auth
def profile():
	svc = services()
	data = svc.users.get(g.user_id)
	data["is_admin"] = svc.users.is_admin(g.user_id)
	data["teams_enabled"] = svc.flags.teams_enabled_for(g.user_id)
	return ok(data)


@user_bp.route("/profile", methods=["PUT"])
@require_auth
def update_profile():
	body = parse_body(ProfileUpdate)
	updated = services().users.update_profile(g.user_id, body.model_dump(exclude_none=True))
	return ok(updated, "Profile updated")


@user_bp.route("/credits", methods=["GET"])
@require_auth
def credits():
	return ok({"credit_balance": services().credits.get_balance(g.user_id)})


@user_bp.route("/transactions", methods=["GET"])
@require_auth
def transactions():
	query = parse_query(Pagination)
	return ok(services().credits.transactions(g.user_id, query.page, query.limit))


@user_bp.route("/stats", methods=["GET"])
@require_auth
def stats():
	return ok(services().generator.stats(g.user_id))
