"""URL library endpoints."""
from flask import Blueprint, g, request

from ..auth import require_auth
from ..errors import BadRequestError
from . import ok, parse_body, parse_query, services
from .payloads import LibraryQuery, SaveUrlsRequest, SchemasBody, VisibilityRequest

library_bp = Blueprint("library", __name__)


def _team_id():
	svc = services()
	if not svc.flags.teams_enabled_for(g.user_id):
		return None
	return svc.teams.active_team_id(g.user_id)


@library_bp.route("/domains", methods=["GET"])
@require_auth
def domains():
	return ok(services().library.domains(g.user_id))


@library_bp.route("/domains/<domain_id>", methods=["DELETE"])
@require_auth
def delete_domain(domain_id: str):
	services().library.delete_domain(g.user_id, domain_id)
	return ok(None, "Domain and all associated URLs deleted")


@library_bp.route("/check-url", methods=["GET"])
@require_auth
def check_url():
	url = request.args.get("url", "").strip()
	if not url:
		raise BadRequestError("URL query parameter is required")
	return ok(services().library.check_url_exists(g.user_id, url))


@library_bp.route("/urls", methods=["POST"])
@require_auth
def save_urls():
	body = parse_body(SaveUrlsRequest)
	result = services().library.save_urls(
		g.user_id, body.domain, [u.model_dump() for u in body.urls], team_id=_team_id()
	)
	return ok(result, f"Saved {result['added']} new URL(s)", 201)


@library_bp.route("/urls", methods=["GET"])
@require_auth
def list_urls():
	query = parse_query(LibraryQuery)
	return ok(services().library.list_urls(
		g.user_id,
		domain_id=query.domain_id,
		has_schema=query.has_schema,
		is_hidden=query.is_hidden,
		search=query.search,
	))


@library_bp.route("/urls/<url_id>/schema", methods=["GET"])
@require_auth
def latest_schema(url_id: str):
	return ok(services().library.latest_schema(g.user_id, url_id))


@library_bp.route("/urls/<url_id>/schemas", methods=["GET"])
@require_auth
def url_schemas(url_id: str):
	return ok(services().library.url_schemas(g.user_id, url_id))


@library_bp.route("/urls/<url_id>/schema", methods=["PUT"])
@require_auth
def update_schema(url_id: str):
	body = parse_body(SchemasBody)
	return ok(services().library.update_schema(g.user_id, url_id, body.schemas), "Schema updated")


@library_bp.route("/urls/<url_id>/visibility", methods=["PUT"])
@require_auth
def set_visibility(url_id: str):
	body = parse_body(VisibilityRequest)
	services().library.set_hidden(g.user_id, url_id, body.hidden)
	return ok(None, "URL hidden" if body.hidden else "URL restored")


@library_bp.route("/urls/<url_id>/hide", methods=["PUT"])
@require_auth
def hide(url_id: str):
	services().library.set_hidden(g.user_id, url_id, True)
	return ok(None, "URL hidden")


@library_bp.route("/urls/<url_id>/unhide", methods=["PUT"])
@require_auth
def unhide(url_id: str):
	services().library.set_hidden(g.user_id, url_id, False)
	return ok(None, "URL restored")


@library_bp.route("/urls/<url_id>", methods=["DELETE"])
@require_auth
def delete_url(url_id: str):
	services().library.delete_url(g.user_id, url_id)
	return ok(None, "URL deleted")
