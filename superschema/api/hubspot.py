"""HubSpot connection and CMS sync endpoints."""
from flask import Blueprint, g, request

from ..auth import require_auth
from ..errors import BadRequestError
from ..scoring import html_script_tags
from . import ok, parse_body, services
from .payloads import HubSpotCallbackRequest, HubSpotDomainRequest, HubSpotPushRequest

hubspot_bp = Blueprint("hubspot", __name__)


@hubspot_bp.route("/authorize", methods=["GET"])
@require_auth
def authorize():
	oauth = services().hubspot
	state = oauth.generate_state()
	return ok({"authorize_url": oauth.authorize_url(state), "state": state})


@hubspot_bp.route("/callback", methods=["POST"])
@require_auth
def callback():
	body = parse_body(HubSpotCallbackRequest)
	oauth = services().hubspot
	if body.state is not None and not oauth.is_valid_state_format(body.state):
		raise BadRequestError("Invalid state parameter")
	connection = oauth.connect(g.user_id, body.code, body.redirect_uri)
	return ok(connection, "HubSpot account connected successfully", 201)


@hubspot_bp.route("/connections", methods=["GET"])
@require_auth
def connections():
	return ok(services().hubspot.connections(g.user_id))


@hubspot_bp.route("/connections/<connection_id>/validate", methods=["GET"])
@require_auth
def validate(connection_id: str):
	valid = services().hubspot.validate_connection(g.user_id, connection_id)
	return ok({"valid": valid})


@hubspot_bp.route("/connections/<connection_id>", methods=["DELETE"])
@require_auth
def disconnect(connection_id: str):
	services().hubspot.revoke(g.user_id, connection_id)
	return ok(None, "HubSpot account disconnected")


@hubspot_bp.route("/connections/<connection_id>/domain", methods=["PATCH"])
@require_auth
def associate_domain(connection_id: str):
	body = parse_body(HubSpotDomainRequest)
	return ok(services().hubspot.associate_domain(g.user_id, connection_id, body.domain))


@hubspot_bp.route("/connections/for-domain/<path:domain>", methods=["GET"])
@require_auth
def connection_for_domain(domain: str):
	return ok(services().hubspot.connection_for_domain(g.user_id, domain))


def _connection_id() -> str:
	connection_id = request.args.get("connection_id", "").strip()
	if not connection_id:
		raise BadRequestError("connection_id query parameter is required")
	return connection_id


@hubspot_bp.route("/content/posts", methods=["GET"])
@require_auth
def posts():
	limit = request.args.get("limit", 100, type=int)
	return ok(services().hubspot_cms.list_blog_posts(g.user_id, _connection_id(), limit))


@hubspot_bp.route("/content/pages", methods=["GET"])
@require_auth
def pages():
	limit = request.args.get("limit", 100, type=int)
	return ok(services().hubspot_cms.list_pages(g.user_id, _connection_id(), limit))


@hubspot_bp.route("/content/match", methods=["GET"])
@require_auth
def match():
	url = request.args.get("url", "").strip()
	if not url:
		raise BadRequestError("url query parameter is required")
	return ok(services().hubspot_cms.match_url(g.user_id, _connection_id(), url))


@hubspot_bp.route("/sync/push", methods=["POST"])
@require_auth
def push():
	body = parse_body(HubSpotPushRequest)
	services().hubspot_cms.push_schema(
		g.user_id, body.connection_id, body.content_id, body.content_type, html_script_tags(body.schemas)
	)
	return ok({"content_id": body.content_id, "content_type": body.content_type}, "Schema pushed to HubSpot")
